# app.py
import logging
import os
import secrets
from typing import Any, Dict

from flask import Flask, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, login_required

import celery_app  # noqa: F401  binds shared tasks to the configured broker
from push_broadcast.channels import ExpoPushChannel
from push_broadcast.config import ADMIN_API_TOKEN, DATABASE_URL, VALID_PLATFORMS
from push_broadcast.exceptions import ValidationError
from push_broadcast.models import NotificationPayload
from push_broadcast.registry import PushTokenRegistry, create_session_factory, parse_timestamp
from push_broadcast.service import BroadcastDispatcher
from push_broadcast.tasks import enqueue_broadcast

LOGGER = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-only-key")
app.config["ADMIN_API_TOKEN"] = ADMIN_API_TOKEN

login_manager = LoginManager()
login_manager.init_app(app)

DEBUG = os.getenv("FLASK_ENV") != "production"

registry = PushTokenRegistry(create_session_factory(DATABASE_URL))
push_channel = ExpoPushChannel.from_env()


def get_dispatcher() -> BroadcastDispatcher:
    return BroadcastDispatcher(registry, push_channel)


# ------------------------------- Auth -------------------------------
class ApiUser(UserMixin):
    def __init__(self, name: str):
        self.id = name


@login_manager.request_loader
def load_api_user(req):
    expected = current_app.config.get("ADMIN_API_TOKEN")
    header = req.headers.get("Authorization", "")
    if not expected or not header.startswith("Bearer "):
        return None
    supplied = header[len("Bearer "):].strip()
    if secrets.compare_digest(supplied.encode(), expected.encode()):
        return ApiUser("admin")
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "error": "Unauthorized"}), 401


def bad_request(message: str):
    return jsonify({"success": False, "error": message}), 400


def server_error(message: str):
    return jsonify({"success": False, "error": message}), 500


def request_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@app.get("/healthz")
def healthz():
    return {"ok": True}, 200


# ------------------------------- Push tokens -------------------------------
@app.post("/api/push-token")
def register_token():
    body = request_body()
    token = body.get("token")
    platform = body.get("platform")

    if not token or not isinstance(token, str):
        return bad_request("Token is required")
    if not isinstance(platform, str) or platform not in VALID_PLATFORMS:
        return bad_request('Platform must be "android" or "ios"')
    try:
        timestamp = parse_timestamp(body.get("timestamp"))
    except ValidationError as exc:
        return bad_request(str(exc))

    try:
        record, created = registry.register(token, platform, timestamp)
    except Exception:
        LOGGER.exception("Error registering push token")
        return server_error("Failed to register token")

    return jsonify({
        "success": True,
        "message": "Token registered" if created else "Token updated",
        "id": record["id"],
    })


@app.get("/api/push-token")
@login_required
def list_tokens():
    try:
        tokens = registry.list_tokens()
    except Exception:
        LOGGER.exception("Error fetching push tokens")
        return server_error("Failed to fetch tokens")
    return jsonify({"success": True, "data": tokens, "count": len(tokens)})


@app.delete("/api/push-token/<int:token_id>")
@login_required
def delete_token(token_id):
    try:
        registry.delete(token_id)
    except Exception:
        LOGGER.exception("Error deleting push token %s", token_id)
        return server_error("Failed to delete token")
    return jsonify({"success": True, "message": "Token deleted"})


# ------------------------------- Broadcasts -------------------------------
def broadcast_response(result):
    return jsonify({
        "success": True,
        "message": f"Notification sent to {result.sent} devices",
        **result.to_dict(),
    })


@app.post("/api/push-token/send")
@login_required
def send_notification():
    body = request_body()
    try:
        payload = NotificationPayload.from_mapping(body)
    except ValidationError as exc:
        return bad_request(str(exc))

    try:
        if body.get("background"):
            task_id = enqueue_broadcast(payload)
            return jsonify({"success": True, "message": "Notification queued", "taskId": task_id}), 202
        result = get_dispatcher().send_to_all(payload)
    except Exception:
        LOGGER.exception("Error sending notification")
        return server_error("Failed to send notification")

    return broadcast_response(result)


@app.post("/api/push-token/send-to-tokens")
@login_required
def send_to_tokens():
    body = request_body()
    try:
        result = get_dispatcher().send_to_tokens(body.get("tokens"), body)
    except ValidationError as exc:
        return bad_request(str(exc))
    except Exception:
        LOGGER.exception("Error sending notification to tokens")
        return server_error("Failed to send notification")

    return broadcast_response(result)


# ------------- Run -------------
if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if DEBUG else logging.INFO)
    app.run(debug=DEBUG)
