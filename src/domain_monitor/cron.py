"""
Cron trigger endpoints.

An external scheduler calls these routes with ``Authorization: Bearer
<CRON_SECRET>``. A request without the right token is rejected with 401
before any work is done.
"""

import asyncio
import hmac
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from .audit_logger import ComponentLogger
from .exceptions import AuthorizationError
from .services import MonitorServices

EXTENSION_KEY = "domain_monitor"

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


def check_bearer(header: Optional[str], secret: Optional[str]) -> None:
    """
    Raises:
        AuthorizationError: If no secret is configured or the header does not
            carry it as a bearer token
    """
    if not secret:
        raise AuthorizationError(code="cron_secret_unset", message="CRON_SECRET is not configured")
    expected = f"Bearer {secret}"
    if not header or not hmac.compare_digest(header.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError(code="bad_token", message="Missing or invalid bearer token")


def _services() -> MonitorServices:
    return current_app.extensions[EXTENSION_KEY]


def _log() -> ComponentLogger:
    return ComponentLogger(_services().logger, "CronEndpoint")


@cron_bp.before_request
def authorize():
    check_bearer(request.headers.get("Authorization"), _services().config.cron.secret)


@cron_bp.route("/reverify-domains", methods=["GET"])
def reverify_domains():
    """Run one re-verification sweep."""
    report = asyncio.run(_services().sweep.run())
    body = {
        "scheduled": report.scheduled,
        "successful": report.successful,
        "failed": report.failed,
        "conflicts": report.conflicts,
    }
    if report.pending is not None:
        body["pending"] = report.pending.to_dict()
    _log().info("Re-verification triggered", body)
    return jsonify(body)


@cron_bp.route("/auto-verify", methods=["GET"])
def auto_verify():
    """Process every auto-verify slot that is due."""
    report = asyncio.run(_services().scheduler.poll_due())
    body = {"started": report.started, "successful": report.successful, "failed": report.failed}
    _log().info("Auto-verify poll triggered", body)
    return jsonify(body)


@cron_bp.errorhandler(AuthorizationError)
def unauthorized(error: AuthorizationError):
    _log().warn("Rejected cron request", {"path": request.path, "reason": error.code})
    return jsonify({"error": "Unauthorized"}), 401


def create_app(services: MonitorServices) -> Flask:
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = services
    app.register_blueprint(cron_bp)
    return app
