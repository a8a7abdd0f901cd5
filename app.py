#!/usr/bin/env python3
"""
Codeforces Duels — Flask Application
======================================
Time-boxed head-to-head matches on Codeforces problems. A duel moves through

  waiting → starting (10 s pre-roll) → active → completed     (or cancelled)

Status is derived from the schedule and reconciled on every read; scores come
from polling each participant's Codeforces submissions.

Usage:
    python app.py                          # start on port 5000
    python app.py --port 8080              # custom port
    python app.py --offline                # sample judge, no network
    python app.py --catalog catalog.json   # preload a problemset snapshot
    python app.py --debug                  # Flask debug mode
"""

import argparse

from flask import Blueprint, Flask, current_app, jsonify, request

from duels.catalog import ProblemCatalog
from duels.codeforces import CodeforcesClient
from duels.config import Settings
from duels.errors import DuelError, ValidationError
from duels.log import configure_logging, get_logger
from duels.sample import build_sample_judge
from duels.service import MatchService

logger = get_logger("duels.app")

api = Blueprint("duels", __name__, url_prefix="/api")


def _service() -> MatchService:
    return current_app.extensions["duels"]


def _body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    return body


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _tags(value):
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return [t for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return value
    raise ValidationError("tags must be a list or a comma-separated string")


def _duel(match, message: str | None = None, status: int = 200):
    payload = {"success": True, "duel": match.to_dict()}
    if message:
        payload["message"] = message
    return jsonify(payload), status


def _page(matches, total, skip, limit):
    skip, limit = int(skip), int(limit)
    return {
        "success": True,
        "count": len(matches),
        "total": total,
        "duels": [m.to_dict() for m in matches],
        "pagination": {
            "page": skip // limit + 1,
            "pageSize": limit,
            "totalPages": -(-total // limit),
        },
    }


# ═══════════════════════════════════════════════════════════════════════
#  DUELS
# ═══════════════════════════════════════════════════════════════════════

@api.route("/duels", methods=["POST"])
def create_duel():
    body = _body()
    match = _service().create(
        name=body.get("name"),
        participants=body.get("participants"),
        creator=body.get("creator") or body.get("creatorHandle"),
        scheduled_start_time=body.get("scheduledStartTime"),
        duration_minutes=body.get("durationMinutes", 60),
        rating_min=body.get("ratingMin", 800),
        rating_max=body.get("ratingMax", 3500),
        problem_count=body.get("problemCount", 3),
        is_private=_flag(body.get("isPrivate", False)),
    )
    return _duel(match, "Duel created successfully", 201)


@api.route("/duels", methods=["GET"])
def list_duels():
    """GET /api/duels?status=&includePrivate=&limit=&skip=&sort=&order="""
    args = request.args
    limit = args.get("limit", 20)
    skip = args.get("skip", 0)
    matches, total = _service().list_matches(
        status=args.get("status", "all"),
        include_private=_flag(args.get("includePrivate", "false")),
        limit=limit, skip=skip,
        sort=args.get("sort", "createdAt"),
        order=args.get("order", "desc"),
    )
    return jsonify(_page(matches, total, skip, limit))


@api.route("/duels/user/<handle>", methods=["GET"])
def duels_for_handle(handle):
    args = request.args
    limit = args.get("limit", 20)
    skip = args.get("skip", 0)
    matches, total = _service().matches_for_handle(
        handle, status=args.get("status", "all"), limit=limit, skip=skip,
        sort=args.get("sort", "createdAt"), order=args.get("order", "desc"),
    )
    payload = _page(matches, total, skip, limit)
    payload["hasMore"] = int(skip) + len(matches) < total
    return jsonify(payload)


@api.route("/duels/creator/<handle>", methods=["GET"])
def duels_by_creator(handle):
    matches, total = _service().matches_by_creator(handle)
    return jsonify({"success": True, "count": len(matches), "total": total,
                    "duels": [m.to_dict() for m in matches]})


@api.route("/duels/recent", methods=["GET"])
def recent_duels():
    matches = _service().recent(request.args.get("limit", 10))
    return jsonify({"success": True, "count": len(matches),
                    "duels": [m.to_dict() for m in matches]})


@api.route("/duels/id/<match_id>", methods=["GET"])
@api.route("/duels/<match_id>", methods=["GET"])
def get_duel(match_id):
    return _duel(_service().get(match_id))


@api.route("/duels/<match_id>/add-handle", methods=["PUT"])
def add_handle(match_id):
    body = _body()
    match = _service().add_participant(match_id, body.get("handle"))
    return _duel(match, "Handle added to duel")


@api.route("/duels/<match_id>/start", methods=["PUT"])
def start_duel(match_id):
    body = _body()
    requester = body.get("requester") or body.get("handle")
    match = _service().start(match_id, requester)
    return _duel(match, "Duel is starting")


@api.route("/duels/<match_id>/status", methods=["GET"])
def duel_status(match_id):
    """Status report; reading it reconciles the stored status."""
    match, report = _service().status(match_id)
    return jsonify({"success": True, "duelId": match.id, **report})


@api.route("/duels/<match_id>/countdown", methods=["GET"])
def duel_countdown(match_id):
    match, report = _service().status(match_id)
    return jsonify({
        "success": True,
        "duelId": match.id,
        "status": match.status,
        "countdownSeconds": report.get("countdownSeconds", 0),
    })


@api.route("/duels/<match_id>/generate-problems", methods=["POST"])
def generate_problems(match_id):
    match = _service().generate_problems(match_id)
    return _duel(match)


@api.route("/duels/<match_id>/update-score", methods=["PUT"])
def update_score(match_id):
    body = _body()
    match = _service().record_score(match_id, body.get("handle"), body.get("score"))
    return _duel(match)


@api.route("/duels/<match_id>/check-submissions", methods=["POST"])
def check_submissions(match_id):
    result = _service().check_submissions(match_id)
    return jsonify({"success": True, "duelId": match_id, **result.to_dict()})


@api.route("/duels/<match_id>/cancel", methods=["PUT"])
def cancel_duel(match_id):
    match = _service().cancel(match_id)
    return _duel(match, "Duel cancelled")


@api.route("/duels/clear-all", methods=["DELETE"])
def clear_duels():
    removed = _service().clear_all()
    return jsonify({"success": True, "deleted": removed})


@api.route("/duels/<match_id>", methods=["DELETE"])
def delete_duel(match_id):
    match = _service().delete(match_id, request.args.get("creatorHandle"))
    return jsonify({"success": True, "message": "Duel deleted", "duelId": match.id})


# ═══════════════════════════════════════════════════════════════════════
#  TASKS & PROBLEMSET
# ═══════════════════════════════════════════════════════════════════════

@api.route("/tasks/multiple-problems", methods=["POST"])
def multiple_problems():
    body = _body()
    problems = _service().pick_problems(
        body.get("ratingMin"), body.get("ratingMax"), body.get("handles"),
        count=body.get("count", 5), tags=_tags(body.get("tags")),
    )
    return jsonify({"success": True, "count": len(problems),
                    "problems": [p.to_dict() for p in problems]})


@api.route("/tasks/single-problem", methods=["POST"])
def single_problem():
    body = _body()
    problems = _service().pick_problems(
        body.get("ratingMin"), body.get("ratingMax"), body.get("handles"),
        count=1, tags=_tags(body.get("tags")),
    )
    if not problems:
        return jsonify({"success": False, "error": "No unsolved problems match the criteria"}), 404
    return jsonify({"success": True, "problem": problems[0].to_dict()})


@api.route("/tasks/user-solves/<handle>/<contest_id>/<index>", methods=["GET"])
def user_solves(handle, contest_id, index):
    subs = _service().user_solves(handle, contest_id, index,
                                  limit=request.args.get("limit", 10))
    return jsonify({"success": True, "count": len(subs),
                    "submissions": [s.to_dict() for s in subs]})


@api.route("/tasks/verify-handle/<handle>", methods=["GET"])
def verify_handle(handle):
    return jsonify({"success": True, "handle": handle,
                    "valid": _service().verify_handle(handle)})


@api.route("/tasks/update-problemset", methods=["POST"])
def update_problemset():
    return jsonify(_service().update_problemset())


@api.route("/cf/problems", methods=["GET"])
def browse_problems():
    args = request.args
    problems = _service().browse_catalog(args.get("minRating"), args.get("maxRating"),
                                         _tags(args.get("tags")))
    return jsonify({"success": True, "count": len(problems),
                    "problems": [p.to_dict() for p in problems]})


@api.route("/cf/problems/delete", methods=["DELETE"])
def delete_problems():
    removed = _service().clear_catalog()
    return jsonify({"success": True, "deletedCount": removed,
                    "message": f"Successfully deleted {removed} problems from the database"})


@api.route("/cf/user-info/<handle>", methods=["GET"])
def user_info(handle):
    return jsonify({"success": True, **_service().user_profile(handle)})


@api.route("/cf/random-problems", methods=["POST"])
def random_problems():
    body = _body()
    problems = _service().random_problems(
        min_rating=body.get("minRating", 800),
        max_rating=body.get("maxRating", 3000),
        tags=_tags(body.get("tags")),
        count=body.get("count", 3),
        handle=body.get("handle"),
    )
    return jsonify({"success": True, "count": len(problems),
                    "problems": [p.to_dict() for p in problems]})


# ═══════════════════════════════════════════════════════════════════════
#  FLASK APP
# ═══════════════════════════════════════════════════════════════════════

def _handle_duel_error(exc: DuelError):
    return jsonify({"success": False, "error": exc.message}), exc.status_code


def _handle_server_error(exc):
    original = getattr(exc, "original_exception", None) or exc
    logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=original)
    return jsonify({"success": False, "error": "Server error", "message": str(original)}), 500


def build_service(settings: Settings, offline: bool = False, catalog_path: str | None = None) -> MatchService:
    if offline:
        judge = build_sample_judge()
    else:
        judge = CodeforcesClient(settings)
    catalog = ProblemCatalog()
    catalog_path = catalog_path or settings.catalog_path
    if catalog_path:
        catalog = ProblemCatalog.load(catalog_path)
    elif offline:
        catalog.refresh(judge)
    return MatchService(judge, catalog, settings=settings)


def create_app(service: MatchService | None = None) -> Flask:
    flask_app = Flask(__name__, static_folder=None)
    flask_app.json.sort_keys = False
    if service is None:
        service = build_service(Settings.from_env())
    flask_app.extensions["duels"] = service
    flask_app.register_blueprint(api)
    flask_app.register_error_handler(DuelError, _handle_duel_error)
    flask_app.register_error_handler(500, _handle_server_error)

    @flask_app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "duels": len(service.store),
                        "problems": len(service.catalog)})

    return flask_app


app = create_app()


# ═══════════════════════════════════════════════════════════════════════
#  CLI
# ═══════════════════════════════════════════════════════════════════════

def main():
    global app

    parser = argparse.ArgumentParser(description="Codeforces Duels — Flask Server")
    parser.add_argument("--port", type=int, default=5000, help="Port (default: 5000)")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host (default: 0.0.0.0)")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    parser.add_argument("--offline", action="store_true",
                        help="Use the built-in sample judge instead of the Codeforces API")
    parser.add_argument("--catalog", type=str, default=None,
                        help="Problemset snapshot to preload (see duels.refresh_catalog)")
    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging("DEBUG" if args.debug else settings.log_level)
    service = build_service(settings, offline=args.offline, catalog_path=args.catalog)
    app = create_app(service)

    print("═══════════════════════════════════════════════════════")
    print("  Codeforces Duels — Server" + (" (offline)" if args.offline else ""))
    print(f"  http://localhost:{args.port}")
    print(f"  {len(service.catalog)} problems loaded")
    print("═══════════════════════════════════════════════════════")

    try:
        app.run(host=args.host, port=args.port, debug=args.debug)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
