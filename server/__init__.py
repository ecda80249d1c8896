"""Flask application exposing the make-jam job and the published jams."""
from __future__ import annotations

import hmac
import threading
import uuid
from functools import wraps
from pathlib import Path
from typing import Optional

from flask import Flask, current_app, g, jsonify, redirect, request, send_from_directory
from flask_cors import CORS

from config import API_KEY, SnapshotSettings
from jobs.controller import JobController
from observability.logger import bind_trace_id, clear_trace_id, get_logger
from observability.metrics import get_registry

LOGGER = get_logger("jam_api.api")

API_KEY_HEADER = "X-Api-Key"

_CONTROLLER: Optional[JobController] = None
_CONTROLLER_LOCK = threading.Lock()


def get_controller() -> JobController:
    """Return the process-wide controller, building it from the environment once."""

    global _CONTROLLER
    with _CONTROLLER_LOCK:
        if _CONTROLLER is None:
            settings = SnapshotSettings.from_env()
            for key, value in settings.describe().items():
                LOGGER.info(f"config: {key}={value}")
            _CONTROLLER = JobController(settings)
        return _CONTROLLER


class ApiError(Exception):
    """Exception translated into an HTTP error response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def api_key_required(view_func):
    """Reject the request with 401 unless ``X-Api-Key`` matches the configured key."""

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        expected = current_app.config["API_KEY"]
        provided = request.headers.get(API_KEY_HEADER, "")
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            LOGGER.warning("Unauthorized API key attempt", extra={"path": request.path})
            return jsonify({"success": False, "output": "unauthorized"}), 401
        return view_func(*args, **kwargs)

    return wrapper


def create_app(controller: Optional[JobController] = None, *, api_key: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    # Any origin, answered with a literal "*" rather than an echo of the request origin.
    CORS(app, resources={r"/*": {"origins": "*"}}, send_wildcard=True)

    app.config["API_KEY"] = API_KEY if api_key is None else api_key
    if not app.config["API_KEY"]:
        LOGGER.warning("API_KEY not set, using empty string")

    job_controller = controller or get_controller()
    jams_dir = Path(job_controller.settings.jams_dir).absolute()

    @app.before_request
    def _bind_request_trace() -> None:
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        g.trace_id = trace_id
        bind_trace_id(trace_id)

    @app.after_request
    def _append_trace(response):  # type: ignore[override]
        trace_id = getattr(g, "trace_id", None)
        if trace_id:
            response.headers.setdefault("X-Trace-Id", trace_id)
        clear_trace_id()
        return response

    @app.teardown_request
    def _teardown_trace(_exc):  # type: ignore[override]
        clear_trace_id()

    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError):  # type: ignore[override]
        LOGGER.warning("API error", extra={"error": exc.message, "code": exc.status_code})
        return (
            jsonify(
                {
                    "error": {
                        "message": exc.message,
                        "code": exc.status_code,
                        "trace_id": getattr(g, "trace_id", None),
                    }
                }
            ),
            exc.status_code,
        )

    @app.post("/api/make-jam")
    @api_key_required
    def make_jam():
        result = job_controller.submit()
        if not result.accepted:
            return jsonify({"success": False, "output": result.message}), 409
        return jsonify({"success": True, "output": result.message}), 202

    @app.get("/api/status")
    @api_key_required
    def status():
        return jsonify(job_controller.snapshot_status().to_dict())

    @app.get("/api/health")
    def health():
        view = job_controller.snapshot_status()
        return jsonify(
            {
                "ok": True,
                "running": view.running,
                "jam_count": view.jam_count,
                "metrics": get_registry().snapshot(),
            }
        )

    @app.get("/")
    def root():
        return redirect("/jams/", code=308)

    @app.get("/jams/", defaults={"path": ""})
    @app.get("/jams/<path:path>")
    def serve_jams(path: str):
        candidate = (jams_dir / path).resolve()
        try:
            candidate.relative_to(jams_dir.resolve())
        except ValueError as exc:
            raise ApiError("Not found", status_code=404) from exc

        if candidate.is_dir():
            candidate = candidate / "index.html"
        if not candidate.is_file():
            raise ApiError("Not found", status_code=404)
        relative_path = candidate.relative_to(jams_dir.resolve())
        return send_from_directory(jams_dir, relative_path.as_posix())

    return app


__all__ = ["ApiError", "api_key_required", "create_app", "get_controller", "API_KEY_HEADER"]
