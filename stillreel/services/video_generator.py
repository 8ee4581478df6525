from __future__ import annotations

import io
import logging
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Sequence
from uuid import uuid4

from PIL import Image, UnidentifiedImageError

from ..errors import (
    EncodeFailure,
    EncoderUnavailable,
    GenerationError,
    InvalidInput,
    RenderFailure,
    StorageError,
    UpstreamIO,
)
from ..templates import STYLE_ZOOM, TEMPLATES, Template, get_template_by_id
from .encoder import (
    EncodeJob,
    Encoder,
    FFmpegEncoder,
    FrameSequence,
    StillImage,
    find_ffmpeg,
    resolve_audio_source,
)
from .frame_geometry import (
    DEFAULT_FPS,
    DEFAULT_ZOOM_DELTA,
    OUTPUT_SIZE,
    FrameSpec,
    frame_count,
    iter_zoom_frames,
    slide_filter,
)
from .storage import ObjectStorage
from .text_overlay import normalize_overlay_text, render_overlay

LOGGER = logging.getLogger(__name__)

FRAME_PATTERN = "frame-%04d.png"
ENCODER_MISSING_MESSAGE = (
    "FFmpeg binary not found. Set FFMPEG_PATH, install ffmpeg on PATH, "
    "or install the bundled imageio-ffmpeg binary for your host."
)


class RunState(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    RENDERING = "rendering"
    ENCODING = "encoding"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationRequest:
    image_bytes: bytes
    template: Template
    overlay_text: str | None
    include_text: bool

    @property
    def show_text(self) -> bool:
        return self.include_text and bool(self.overlay_text)


@dataclass(frozen=True)
class GenerationResult:
    run_id: str
    key: str
    url: str
    size_bytes: int


class _Run:
    """Book-keeping for a single pipeline run."""

    def __init__(self, template: Template) -> None:
        self.run_id = uuid4().hex
        self.template = template
        self.state = RunState.IDLE
        self.started_at = time.perf_counter()

    def advance(self, state: RunState) -> None:
        self.state = state
        LOGGER.info(
            "video_run_stage",
            extra={"run_id": self.run_id, "stage": state.value, "template_id": self.template.id},
        )

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 3)


class VideoGenerator:
    def __init__(
        self,
        music_dir: Path | str,
        *,
        storage: ObjectStorage | None = None,
        encoder_factory: Callable[[str], Encoder] = FFmpegEncoder,
        binary_resolver: Callable[[], str | None] | None = None,
        ffmpeg_path: str | None = None,
        tmp_root: Path | str | None = None,
        templates: Sequence[Template] = TEMPLATES,
        fps: int = DEFAULT_FPS,
        zoom_delta: float = DEFAULT_ZOOM_DELTA,
        output_size: tuple[int, int] = OUTPUT_SIZE,
        render_workers: int = 1,
    ) -> None:
        self.music_dir = Path(music_dir)
        self.storage = storage
        self.encoder_factory = encoder_factory
        self.binary_resolver = binary_resolver or (lambda: find_ffmpeg(ffmpeg_path))
        self.tmp_root = Path(tmp_root) if tmp_root else None
        if self.tmp_root is not None:
            self.tmp_root.mkdir(parents=True, exist_ok=True)
        self.templates = tuple(templates)
        self.fps = fps
        self.zoom_delta = zoom_delta
        self.output_size = output_size
        self.render_workers = max(1, int(render_workers))

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------
    def generate(
        self,
        image_bytes: bytes | None,
        template_id: str,
        overlay_text: str | None = None,
        include_text: bool = True,
    ) -> bytes:
        """Render and encode one video, returning the MP4 bytes."""
        template = self._require_template(template_id)
        text = self._validate_text(overlay_text, include_text)
        if not image_bytes:
            raise InvalidInput("No image provided.")
        encoder = self._require_encoder()

        run = _Run(template)
        LOGGER.info(
            "video_run_started",
            extra={"run_id": run.run_id, "template_id": template.id, "show_text": bool(text)},
        )
        request = GenerationRequest(
            image_bytes=image_bytes,
            template=template,
            overlay_text=text,
            include_text=include_text,
        )
        with self._tracked(run), self._workspace(run) as workdir:
            video = self._render_and_encode(run, request, encoder, workdir)
            run.advance(RunState.DONE)
        LOGGER.info(
            "video_run_completed",
            extra={"run_id": run.run_id, "size": len(video), "duration": run.elapsed_ms()},
        )
        return video

    def generate_from_storage(
        self,
        image_key: str | None,
        template_id: str,
        overlay_text: str | None = None,
        include_text: bool = True,
    ) -> GenerationResult:
        """Download the image, render, encode and publish the video."""
        if self.storage is None:
            raise RuntimeError("VideoGenerator was created without a storage backend.")
        if not (image_key or "").strip():
            raise InvalidInput("No image provided.")
        template = self._require_template(template_id)
        text = self._validate_text(overlay_text, include_text)
        encoder = self._require_encoder()

        run = _Run(template)
        LOGGER.info(
            "video_run_started",
            extra={"run_id": run.run_id, "template_id": template.id, "image_key": image_key},
        )
        with self._tracked(run), self._workspace(run) as workdir:
            run.advance(RunState.DOWNLOADING)
            try:
                image_bytes = self.storage.get(image_key)
            except StorageError as exc:
                raise UpstreamIO(f"Could not download image {image_key}: {exc}", stage=run.state.value) from exc
            if not image_bytes:
                raise InvalidInput(f"Image {image_key} is empty.", stage=run.state.value)

            request = GenerationRequest(
                image_bytes=image_bytes,
                template=template,
                overlay_text=text,
                include_text=include_text,
            )
            video = self._render_and_encode(run, request, encoder, workdir)

            run.advance(RunState.UPLOADING)
            key = f"videos/{int(time.time() * 1000)}-{run.run_id}.mp4"
            try:
                url = self.storage.put(key, video, "video/mp4")
            except StorageError as exc:
                raise UpstreamIO(f"Could not upload video: {exc}", stage=run.state.value) from exc
            run.advance(RunState.DONE)

        LOGGER.info(
            "video_run_completed",
            extra={"run_id": run.run_id, "key": key, "size": len(video), "duration": run.elapsed_ms()},
        )
        return GenerationResult(run_id=run.run_id, key=key, url=url, size_bytes=len(video))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _require_template(self, template_id: str) -> Template:
        template = get_template_by_id(template_id, self.templates)
        if template is None:
            raise InvalidInput(f"Invalid template: {template_id!r}.")
        return template

    def _validate_text(self, overlay_text: str | None, include_text: bool) -> str | None:
        if not include_text or overlay_text is None:
            return None
        cleaned = normalize_overlay_text(overlay_text)
        if not cleaned:
            raise InvalidInput("Overlay text was requested but is empty.")
        return cleaned

    def _require_encoder(self) -> Encoder:
        binary = self.binary_resolver()
        if not binary:
            LOGGER.error("ffmpeg_unavailable")
            raise EncoderUnavailable(ENCODER_MISSING_MESSAGE)
        return self.encoder_factory(binary)

    # ------------------------------------------------------------------
    # Run scaffolding
    # ------------------------------------------------------------------
    @contextmanager
    def _workspace(self, run: _Run) -> Iterator[Path]:
        with tempfile.TemporaryDirectory(
            prefix=f"stillreel-{run.run_id}-",
            dir=str(self.tmp_root) if self.tmp_root else None,
        ) as workdir:
            yield Path(workdir)

    @contextmanager
    def _tracked(self, run: _Run) -> Iterator[_Run]:
        try:
            yield run
        except GenerationError as exc:
            failed_stage = run.state.value
            run.state = RunState.FAILED
            if exc.stage is None:
                exc.stage = failed_stage
            LOGGER.error(
                "video_run_failed",
                extra={
                    "run_id": run.run_id,
                    "stage": failed_stage,
                    "category": exc.category,
                    "error": str(exc),
                },
            )
            raise
        except Exception as exc:
            failed_stage = run.state.value
            run.state = RunState.FAILED
            LOGGER.exception("video_run_failed", extra={"run_id": run.run_id, "stage": failed_stage})
            if failed_stage == RunState.ENCODING.value:
                error_cls = EncodeFailure
            elif failed_stage in (RunState.DOWNLOADING.value, RunState.UPLOADING.value):
                error_cls = UpstreamIO
            else:
                error_cls = RenderFailure
            raise error_cls(f"Video generation failed while {failed_stage}: {exc}", stage=failed_stage) from exc

    # ------------------------------------------------------------------
    # Rendering + encoding
    # ------------------------------------------------------------------
    def _render_and_encode(
        self,
        run: _Run,
        request: GenerationRequest,
        encoder: Encoder,
        workdir: Path,
    ) -> bytes:
        template = request.template
        total_frames = frame_count(template.duration_seconds, self.fps)

        run.advance(RunState.RENDERING)
        source = self._decode_image(request.image_bytes)
        if template.style == STYLE_ZOOM:
            video_source, filter_expression = self._render_zoom(source, request, total_frames, workdir)
        else:
            video_source, filter_expression = self._render_slide(source, request, total_frames, workdir)

        run.advance(RunState.ENCODING)
        job = EncodeJob(
            video_source=video_source,
            audio_source=resolve_audio_source(self.music_dir / template.music_file),
            duration_seconds=template.duration_seconds,
            output_path=str(workdir / "output.mp4"),
            filter_expression=filter_expression,
        )
        LOGGER.info(
            "video_encode_started",
            extra={
                "run_id": run.run_id,
                "frames": total_frames,
                "audio": type(job.audio_source).__name__,
            },
        )
        return encoder.encode(job)

    def _decode_image(self, image_bytes: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise RenderFailure(f"Unreadable image: {exc}") from exc
        return image.convert("RGB")

    def _overlay_layer(self, request: GenerationRequest, size: tuple[int, int]) -> Image.Image | None:
        if not request.show_text:
            return None
        try:
            return render_overlay(request.overlay_text, *size)
        except (OSError, ValueError) as exc:
            # Text is cosmetic; the video is still produced without it.
            LOGGER.warning("overlay_failed_continuing_without_text", extra={"error": str(exc)})
            return None

    def _render_zoom(
        self,
        source: Image.Image,
        request: GenerationRequest,
        total_frames: int,
        workdir: Path,
    ) -> tuple[FrameSequence, None]:
        frames_dir = workdir / "frames"
        frames_dir.mkdir()
        overlay = self._overlay_layer(request, self.output_size)

        specs = iter_zoom_frames(
            total_frames,
            source.size,
            output_size=self.output_size,
            zoom_delta=self.zoom_delta,
        )

        def _write(spec: FrameSpec) -> Path:
            target = frames_dir / (FRAME_PATTERN % spec.index)
            frame = render_frame(source, spec, overlay, self.output_size)
            frame.save(target, "PNG", compress_level=1)
            return target

        if self.render_workers > 1:
            with ThreadPoolExecutor(max_workers=self.render_workers, thread_name_prefix="frames") as pool:
                list(pool.map(_write, specs))
        else:
            for spec in specs:
                _write(spec)
        return FrameSequence(pattern=str(frames_dir / FRAME_PATTERN), fps=self.fps), None

    def _render_slide(
        self,
        source: Image.Image,
        request: GenerationRequest,
        total_frames: int,
        workdir: Path,
    ) -> tuple[StillImage, str]:
        still = source
        overlay = self._overlay_layer(request, source.size)
        if overlay is not None:
            still = Image.alpha_composite(source.convert("RGBA"), overlay).convert("RGB")
        still_path = workdir / "slide.png"
        still.save(still_path, "PNG")
        expression = slide_filter(still.size, total_frames, fps=self.fps, output_size=self.output_size)
        return StillImage(path=str(still_path), fps=self.fps), expression


def render_frame(
    source: Image.Image,
    spec: FrameSpec,
    overlay: Image.Image | None = None,
    output_size: tuple[int, int] = OUTPUT_SIZE,
) -> Image.Image:
    """Resize, crop and optionally composite one zoom frame."""
    frame = source.resize(spec.resize, Image.LANCZOS).crop(spec.crop.box)
    if frame.size != tuple(output_size):
        frame = frame.resize(output_size, Image.LANCZOS)
    if overlay is not None:
        frame = Image.alpha_composite(frame.convert("RGBA"), overlay).convert("RGB")
    return frame


__all__ = ["VideoGenerator", "GenerationRequest", "GenerationResult", "RunState", "render_frame"]
