import logging
import os
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from flask import Flask, jsonify, request, session
from werkzeug.exceptions import HTTPException

from auth import authenticate, register_user
from errors import AuthRequiredError, JournalError, SessionError
from insights import build_dashboard
from journal_utils import create_entry, get_user_by_id, list_entries, validate_entry
from reflection import request_reflection


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET_KEY", "dev-secret-change-in-production")
app.config.update(
    PERMANENT_SESSION_LIFETIME=timedelta(hours=int(os.getenv("SESSION_LIFETIME_HOURS", "24"))),
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=_env_flag("SESSION_COOKIE_SECURE"),
    ALLOW_ANONYMOUS_ENTRIES=_env_flag("ALLOW_ANONYMOUS_ENTRIES"),
)


@app.errorhandler(JournalError)
def handle_journal_error(exc: JournalError):
    return jsonify(exc.to_dict()), exc.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"success": False, "error": "Server error. Please try again later."}), 500


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _optional_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def current_user_id() -> Optional[int]:
    return session.get("user_id")


def current_user() -> Optional[dict]:
    user_id = current_user_id()
    if not user_id:
        return None
    user = get_user_by_id(user_id)
    if not user:
        # Account vanished under a live cookie.
        session.clear()
    return user


def require_user_id() -> int:
    user_id = current_user_id()
    if not user_id:
        raise AuthRequiredError()
    return user_id


def _entry_owner_scope() -> Optional[int]:
    """Session user, or None when anonymous access is switched on."""
    user_id = current_user_id()
    if user_id:
        return user_id
    if app.config["ALLOW_ANONYMOUS_ENTRIES"]:
        return None
    raise AuthRequiredError()


@app.route("/api/register", methods=["POST"])
def register():
    body = _json_body()
    user_id = register_user(body.get("name"), body.get("email"), body.get("password"))
    return jsonify(
        {
            "success": True,
            "message": "Account created successfully! You can now log in.",
            "userId": user_id,
        }
    )


@app.route("/api/login", methods=["POST"])
def login():
    body = _json_body()
    user = authenticate(body.get("email"), body.get("password"))

    session.clear()
    session.permanent = True
    session["user_id"] = user["id"]
    session["user_email"] = user["email"]
    session["user_name"] = user["name"]
    return jsonify({"success": True, "message": "Login successful", "user": user})


@app.route("/api/logout", methods=["POST"])
def logout():
    try:
        session.clear()
    except RuntimeError as exc:
        # Raised by Flask's null session when no secret key is configured.
        logger.error("Logout error: %s", exc)
        raise SessionError() from exc
    return jsonify({"success": True, "message": "Logged out successfully"})


@app.route("/api/session/refresh", methods=["GET"])
def refresh_session():
    user = current_user()
    if not user:
        return jsonify({"success": False, "message": "No active session"})
    return jsonify(
        {
            "success": True,
            "userId": user["id"],
            "userEmail": user["email"],
            "userName": user["name"],
        }
    )


@app.route("/api/entries", methods=["POST"])
def save_entry():
    session_user_id = _entry_owner_scope()
    body = _json_body()
    body_user_id = None
    if session_user_id is None:
        body_user_id = _optional_int(body.get("userId"))

    entry_id = create_entry(
        body.get("apps"),
        body.get("screenTime"),
        body.get("reflection"),
        body.get("tags"),
        session_user_id=session_user_id,
        body_user_id=body_user_id,
    )
    return jsonify({"success": True, "id": entry_id, "message": "Entry saved successfully"})


@app.route("/api/entries", methods=["GET"])
def get_entries():
    user_id = _entry_owner_scope()
    entries = list_entries(user_id)
    return jsonify({"success": True, "entries": entries, "userId": user_id, "count": len(entries)})


@app.route("/api/insights", methods=["GET"])
def get_insights():
    user_id = _entry_owner_scope()
    entries = list_entries(user_id)
    dashboard = build_dashboard(entries, user_name=session.get("user_name") or "User")
    return jsonify({"success": True, "insights": dashboard})


@app.route("/api/ai-analysis", methods=["POST"])
def ai_analysis():
    user_id = require_user_id()
    body = _json_body()
    apps, screen_time = body.get("apps"), body.get("screenTime")
    reflection, tags = body.get("reflection"), body.get("tags")
    validate_entry(apps, screen_time, reflection, tags)

    result = request_reflection(apps, screen_time, reflection, tags, user_id=user_id)
    if result.failed:
        return (
            jsonify(
                {
                    "success": False,
                    "error": "Failed to generate AI analysis",
                    "errorKind": result.error_kind,
                    "fallback": result.to_dict(),
                }
            ),
            500,
        )
    return jsonify(result.to_dict())


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "3000")), debug=_env_flag("FLASK_DEBUG"))
