from __future__ import annotations

import io
import platform
import tempfile
import time
from pathlib import Path

from flask import Blueprint, Response, abort, current_app, jsonify, request, send_from_directory
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from werkzeug.utils import secure_filename

from ..errors import StorageError
from ..services.encoder import ffmpeg_version, find_ffmpeg, probe_duration
from ..services.storage import LocalStorage
from ..services.text_overlay import normalize_overlay_text, overlay_markup
from ..templates import STYLE_ZOOM

bp = Blueprint("api", __name__)

UPLOAD_FIELD_NAME = "file"
SELF_CHECK_TOLERANCE_SECONDS = 0.04


class GenerateVideoBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_key: str = Field(alias="imageKey", min_length=1)
    template_id: str = Field(alias="templateId", min_length=1)
    product_name: str | None = Field(default=None, alias="productName")
    include_text: bool = Field(default=True, alias="includeText")


def _get_generator():
    return current_app.config["VIDEO_GENERATOR"]


def _get_storage():
    return current_app.config["STORAGE"]


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request body."


@bp.route("/upload-image", methods=["POST"])
def upload_image():
    upload_file = request.files.get(UPLOAD_FIELD_NAME)
    if upload_file is None:
        return jsonify({"error": "No file uploaded."}), 400
    filename = secure_filename(upload_file.filename or "")
    if not filename:
        return jsonify({"error": "Empty filename."}), 400

    data = upload_file.read()
    if not data:
        return jsonify({"error": "Uploaded file is empty."}), 400

    key = f"uploads/{int(time.time() * 1000)}-{filename}"
    content_type = upload_file.mimetype or "application/octet-stream"
    try:
        url = _get_storage().put(key, data, content_type)
    except StorageError as exc:
        current_app.logger.error("image_upload_failed", extra={"key": key, "error": str(exc)})
        return jsonify({"error": "Upload failed."}), 500

    current_app.logger.info("image_uploaded", extra={"key": key, "size": len(data)})
    return jsonify({"key": key, "url": url})


@bp.route("/generate-video", methods=["POST"])
def generate_video():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    try:
        body = GenerateVideoBody.model_validate(payload)
    except ValidationError as exc:
        return jsonify({"error": _validation_message(exc)}), 400

    result = _get_generator().generate_from_storage(
        body.image_key,
        body.template_id,
        overlay_text=body.product_name,
        include_text=body.include_text,
    )
    return jsonify({"videoUrl": result.url, "key": result.key})


@bp.route("/templates", methods=["GET"])
def list_templates():
    templates = [template.to_dict() for template in _get_generator().templates]
    return jsonify({"templates": templates})


@bp.route("/overlay-preview", methods=["GET"])
def overlay_preview():
    text = normalize_overlay_text(request.args.get("text"))
    if not text:
        return jsonify({"error": "Query parameter 'text' is required."}), 400
    width = request.args.get("width", 1280, type=int)
    height = request.args.get("height", 720, type=int)
    if not width or not height or width <= 0 or height <= 0:
        return jsonify({"error": "width and height must be positive integers."}), 400
    return Response(overlay_markup(text, width, height), mimetype="image/svg+xml")


@bp.route("/media/<path:key>", methods=["GET"])
def media(key: str):
    storage = _get_storage()
    if not isinstance(storage, LocalStorage):
        abort(404)
    return send_from_directory(storage.root, key)


@bp.route("/_diag", methods=["GET"])
def diagnostics():
    binary = find_ffmpeg(current_app.config.get("FFMPEG_PATH") or None)
    storage = _get_storage()
    describe = getattr(storage, "describe", None)
    payload = {
        "ffmpeg": {
            "available": bool(binary),
            "path": binary,
            "version": ffmpeg_version(binary) if binary else None,
        },
        "storage": describe() if callable(describe) else {"backend": type(storage).__name__},
        "python": platform.python_version(),
    }
    if request.args.get("selfcheck", "").strip().lower() in {"1", "true", "yes"}:
        payload["selfcheck"] = _run_self_check()
    return jsonify(payload)


def _run_self_check() -> dict:
    """Encode a plain frame with the first zoom template and measure the result."""
    generator = _get_generator()
    template = next((item for item in generator.templates if item.style == STYLE_ZOOM), None)
    if template is None:
        return {"ok": False, "error": "No zoom template registered."}

    buffer = io.BytesIO()
    Image.new("RGB", generator.output_size, (32, 96, 160)).save(buffer, "PNG")
    started = time.perf_counter()
    video = generator.generate(buffer.getvalue(), template.id, include_text=False)
    with tempfile.TemporaryDirectory(prefix="stillreel-selfcheck-") as workdir:
        target = Path(workdir) / "selfcheck.mp4"
        target.write_bytes(video)
        duration = probe_duration(target)
    return {
        "ok": abs(duration - template.duration_seconds) <= SELF_CHECK_TOLERANCE_SECONDS,
        "template_id": template.id,
        "duration": round(duration, 3),
        "size": len(video),
        "elapsed_ms": round((time.perf_counter() - started) * 1000, 3),
    }
