"""Codeforces duels: match lifecycle, problem selection and submission scoring."""
