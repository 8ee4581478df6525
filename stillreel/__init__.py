from __future__ import annotations

from pathlib import Path
import time
from uuid import uuid4

from flask import Flask, jsonify, g, request
from werkzeug.exceptions import HTTPException, NotFound
from dotenv import load_dotenv

load_dotenv()

from .config import Config, DEFAULT_INSTANCE_ROOT
from .errors import GenerationError
from .logging_utils import setup_logging
from .routes.api import bp as api_bp
from .services.storage import create_storage
from .services.video_generator import VideoGenerator


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, static_folder=None, instance_path=str(DEFAULT_INSTANCE_ROOT))
    app.config.from_object(Config)

    if test_config:
        app.config.update(test_config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    setup_logging(app)
    _register_request_hooks(app)
    _configure_services(app)

    app.register_blueprint(api_bp, url_prefix="/api")

    _register_error_handlers(app)

    return app


def _configure_services(app: Flask) -> None:
    if "STORAGE" not in app.config:
        app.config["STORAGE"] = create_storage(app.config)

    if "VIDEO_GENERATOR" not in app.config:
        app.config["VIDEO_GENERATOR"] = VideoGenerator(
            app.config["MUSIC_DIR"],
            storage=app.config["STORAGE"],
            ffmpeg_path=app.config.get("FFMPEG_PATH") or None,
            tmp_root=app.config.get("RENDER_TMP_ROOT") or None,
            fps=int(app.config.get("VIDEO_FPS", 25)),
            zoom_delta=float(app.config.get("ZOOM_DELTA", 0.6)),
            render_workers=int(app.config.get("RENDER_WORKERS", 1)),
        )

    app.logger.info(
        "services_configured",
        extra={"storage": type(app.config["STORAGE"]).__name__},
    )


def _register_request_hooks(app: Flask) -> None:
    request_id_header = app.config.get("REQUEST_ID_HEADER", "X-Request-ID")

    @app.before_request
    def _start_request_timer():
        g.request_id = request.headers.get(request_id_header) or uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_started_at", None)
        duration_ms = None
        if start is not None:
            duration_ms = round((time.perf_counter() - start) * 1000, 3)

        request_id = getattr(g, "request_id", uuid4().hex)
        response.headers.setdefault(request_id_header, request_id)
        if duration_ms is not None:
            response.headers.setdefault("X-Response-Time", f"{duration_ms}ms")

        app.logger.info(
            "request_completed",
            extra={
                "status_code": response.status_code,
                "duration": duration_ms,
            },
        )
        return response


def _register_error_handlers(app: Flask) -> None:
    def _json_error(message: str, status_code: int, **fields):
        payload = {"error": message, "status_code": status_code, **fields}
        request_id = getattr(g, "request_id", None)
        if request_id:
            payload["request_id"] = request_id
        return jsonify(payload), status_code

    @app.errorhandler(GenerationError)
    def _handle_generation_error(error: GenerationError):
        log_fn = app.logger.warning if error.status_code < 500 else app.logger.error
        log_fn(
            "generation_error",
            extra={"status_code": error.status_code, "category": error.category, "error": error.message},
        )
        fields = {"category": error.category}
        if error.stage:
            fields["stage"] = error.stage
        return _json_error(error.message, error.status_code, **fields)

    @app.errorhandler(404)
    def _handle_not_found(error):
        app.logger.warning(
            "not_found",
            extra={"status_code": 404, "error": str(error)},
        )
        return _json_error("This page was not found.", 404)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(error: HTTPException):
        if isinstance(error, NotFound):
            return _handle_not_found(error)
        status_code = error.code or 500
        message = error.description or "Request failed."
        log_fn = app.logger.warning if status_code < 500 else app.logger.error
        log_fn(
            "http_error",
            extra={"status_code": status_code, "error": message},
        )
        return _json_error(message, status_code)

    @app.errorhandler(Exception)
    def _handle_uncaught_exception(error: Exception):
        if isinstance(error, HTTPException):
            return _handle_http_exception(error)
        app.logger.exception("unhandled_exception")
        return _json_error("An unexpected error occurred.", 500)


__all__ = ["create_app"]
