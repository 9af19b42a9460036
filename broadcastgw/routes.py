import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from .errors import GatewayError

logger = logging.getLogger(__name__)

bp = Blueprint("routes", __name__)


def _gateway():
    return current_app.extensions["broadcastgw"]


def _current_email():
    user = session.get("user") or {}
    return user.get("email")


def login_required(view):
    """Reject the request unless the session's account is still active."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        _gateway().directory.require_active(_current_email())
        return view(*args, **kwargs)

    return wrapped


@bp.app_errorhandler(GatewayError)
def handle_gateway_error(exc: GatewayError):
    return jsonify(exc.to_dict()), exc.status_code


@bp.route("/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or {}
    _gateway().directory.register(data.get("email"), data.get("phone"), data.get("password"))
    return jsonify({"success": True})


@bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    email = _gateway().directory.login(data.get("email"), data.get("password"))
    session.clear()
    session.permanent = True
    session["user"] = {"email": email}
    return jsonify({"success": True})


# Logout clears whatever session the cookie carries, active account or not.
@bp.route("/logout", methods=["POST"])
def logout():
    email = _current_email()
    session.clear()
    logger.info("User logged out: %s", email)
    return jsonify({"success": True})


@bp.route("/status", methods=["GET"])
def status():
    email = _current_email()
    if email:
        return jsonify({"loggedIn": True, "email": email})
    return jsonify({"loggedIn": False})


# Paths are fixed by the existing web frontend.
@bp.route("/api/start-whatsapp", methods=["POST"])
@login_required
def start_connection():
    if _gateway().connection.start():
        return jsonify({"message": "Started messaging connection"})
    return jsonify({"message": "Already started"})


@bp.route("/api/whatsapp-qr", methods=["GET"])
@login_required
def pairing_code():
    return jsonify({"qr": _gateway().connection.get_pairing_artifact()})


@bp.route("/api/connection", methods=["GET"])
@login_required
def connection_status():
    return jsonify(_gateway().connection.snapshot())


@bp.route("/send-broadcast", methods=["POST"])
@login_required
def send_broadcast():
    data = request.get_json(silent=True) or {}
    result = _gateway().dispatcher.broadcast(_current_email(), data.get("message"), data.get("numbers"))
    return jsonify({"success": True, "sentTo": result.sent_to})


@bp.route("/api/logs", methods=["GET"])
@login_required
def logs():
    return jsonify(_gateway().audit.list(_current_email()))
