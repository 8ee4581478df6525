from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

OUTPUT_SIZE = (1280, 720)
DEFAULT_FPS = 25
DEFAULT_ZOOM_DELTA = 0.6


@dataclass(frozen=True)
class CropWindow:
    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


@dataclass(frozen=True)
class FrameSpec:
    index: int
    progress: float
    eased_progress: float
    scale_factor: float
    scaled_width: float
    scaled_height: float
    resize: tuple[int, int]
    crop: CropWindow


def ease_in_out_sine(t: float) -> float:
    """Sine ease-in-out mapping ``[0, 1]`` onto ``[0, 1]``."""
    t = min(1.0, max(0.0, float(t)))
    return (1 - math.cos(math.pi * t)) / 2


def frame_count(duration_seconds: int, fps: int = DEFAULT_FPS) -> int:
    count = int(duration_seconds) * int(fps)
    if count <= 0:
        raise ValueError(f"Frame count must be positive, got {count}.")
    return count


def min_cover_factor(source_size: tuple[int, int], output_size: tuple[int, int] = OUTPUT_SIZE) -> float:
    src_w, src_h = source_size
    out_w, out_h = output_size
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Invalid source dimensions {src_w}x{src_h}.")
    return max(out_w / src_w, out_h / src_h)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _even(value: float) -> int:
    return max(2, 2 * int(math.ceil(value / 2)))


def zoom_frame(
    index: int,
    total_frames: int,
    source_size: tuple[int, int],
    *,
    output_size: tuple[int, int] = OUTPUT_SIZE,
    zoom_delta: float = DEFAULT_ZOOM_DELTA,
) -> FrameSpec:
    if total_frames <= 0:
        raise ValueError("total_frames must be positive.")
    if not 0 <= index < total_frames:
        raise ValueError(f"Frame index {index} outside [0, {total_frames}).")

    src_w, src_h = source_size
    out_w, out_h = output_size
    progress = 1.0 if total_frames == 1 else index / (total_frames - 1)
    eased = ease_in_out_sine(progress)
    factor = max(1 + zoom_delta * eased, min_cover_factor(source_size, output_size))

    scaled_w = src_w * factor
    scaled_h = src_h * factor
    resize_w = max(1, _round_half_up(scaled_w))
    resize_h = max(1, _round_half_up(scaled_h))
    crop_w = min(out_w, resize_w)
    crop_h = min(out_h, resize_h)
    left = max(0, _round_half_up((scaled_w - out_w) / 2))
    top = max(0, _round_half_up((scaled_h - out_h) / 2))
    # Rounding the offset and the size separately can push the window one pixel past the edge.
    left = min(left, resize_w - crop_w)
    top = min(top, resize_h - crop_h)

    return FrameSpec(
        index=index,
        progress=progress,
        eased_progress=eased,
        scale_factor=factor,
        scaled_width=scaled_w,
        scaled_height=scaled_h,
        resize=(resize_w, resize_h),
        crop=CropWindow(left=left, top=top, width=crop_w, height=crop_h),
    )


def iter_zoom_frames(
    total_frames: int,
    source_size: tuple[int, int],
    *,
    output_size: tuple[int, int] = OUTPUT_SIZE,
    zoom_delta: float = DEFAULT_ZOOM_DELTA,
) -> Iterator[FrameSpec]:
    for index in range(total_frames):
        yield zoom_frame(
            index,
            total_frames,
            source_size,
            output_size=output_size,
            zoom_delta=zoom_delta,
        )


def slide_scale_size(
    source_size: tuple[int, int], output_size: tuple[int, int] = OUTPUT_SIZE
) -> tuple[int, int]:
    """Size the still image is scaled to before the pan crop.

    The height is fixed to the output height and the width follows the aspect
    ratio. Images narrower than the output aspect are scaled to the output
    width instead so the crop window never leaves the frame.
    """
    src_w, src_h = source_size
    out_w, out_h = output_size
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Invalid source dimensions {src_w}x{src_h}.")
    width = src_w * out_h / src_h
    if width >= out_w:
        return max(out_w, _even(width)), out_h
    return out_w, max(out_h, _even(src_h * out_w / src_w))


def slide_filter(
    source_size: tuple[int, int],
    total_frames: int,
    *,
    fps: int = DEFAULT_FPS,
    output_size: tuple[int, int] = OUTPUT_SIZE,
) -> str:
    """ffmpeg filter chain panning a looped still image from left to right."""
    if total_frames <= 0:
        raise ValueError("total_frames must be positive.")
    out_w, out_h = output_size
    scaled_w, scaled_h = slide_scale_size(source_size, output_size)
    crop_x = f"min(max(0,(iw-{out_w})*n/{total_frames}),iw-{out_w})"
    return (
        f"fps={fps},scale={scaled_w}:{scaled_h},"
        f"crop={out_w}:{out_h}:x='{crop_x}':y=0"
    )


__all__ = [
    "OUTPUT_SIZE",
    "DEFAULT_FPS",
    "DEFAULT_ZOOM_DELTA",
    "CropWindow",
    "FrameSpec",
    "ease_in_out_sine",
    "frame_count",
    "min_cover_factor",
    "zoom_frame",
    "iter_zoom_frames",
    "slide_scale_size",
    "slide_filter",
]
