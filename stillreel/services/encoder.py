from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Iterable, Protocol, Union, cast

import av
import imageio_ffmpeg

from ..errors import EncodeFailure
from .frame_geometry import DEFAULT_FPS

LOGGER = logging.getLogger(__name__)

# Anything at or below this size is treated as a placeholder, not a real track.
AUDIO_STUB_THRESHOLD_BYTES = 1024
SILENT_SAMPLE_RATE = 44100
STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class FrameSequence:
    pattern: str
    fps: int = DEFAULT_FPS


@dataclass(frozen=True)
class StillImage:
    path: str
    fps: int = DEFAULT_FPS


@dataclass(frozen=True)
class AudioFile:
    path: str


@dataclass(frozen=True)
class SilentAudio:
    channel_layout: str = "stereo"
    sample_rate: int = SILENT_SAMPLE_RATE

    @property
    def descriptor(self) -> str:
        return f"anullsrc=channel_layout={self.channel_layout}:sample_rate={self.sample_rate}"


VideoSource = Union[FrameSequence, StillImage]
AudioSource = Union[AudioFile, SilentAudio]


@dataclass(frozen=True)
class EncodeJob:
    video_source: VideoSource
    audio_source: AudioSource
    duration_seconds: int
    output_path: str
    filter_expression: str | None = None


class Encoder(Protocol):
    binary: str

    def encode(self, job: EncodeJob) -> bytes: ...


# ----------------------------------------------------------------------
# Binary resolution
# ----------------------------------------------------------------------
def resolve_binary(
    candidates: Iterable[str | None],
    exists: Callable[[str], bool] = os.path.isfile,
) -> str | None:
    """Return the first candidate for which ``exists`` holds."""
    for candidate in candidates:
        if candidate and exists(candidate):
            return candidate
    return None


def bundled_ffmpeg() -> str | None:
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as exc:
        LOGGER.debug("bundled_ffmpeg_missing", extra={"error": str(exc)})
        return None


def ffmpeg_candidates(override: str | None = None) -> list[str | None]:
    """Override path, bundled imageio-ffmpeg binary, then ``ffmpeg`` on PATH."""
    return [
        (override or "").strip() or None,
        bundled_ffmpeg(),
        shutil.which("ffmpeg"),
    ]


def find_ffmpeg(override: str | None = None) -> str | None:
    return resolve_binary(ffmpeg_candidates(override))


def ffmpeg_version(binary: str, timeout: float = 2.0) -> str | None:
    try:
        result = subprocess.run(
            [binary, "-version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.warning("ffmpeg_version_failed", extra={"binary": binary, "error": str(exc)})
        return None
    first_line = (result.stdout or "").splitlines()
    return first_line[0] if first_line else None


# ----------------------------------------------------------------------
# Job assembly
# ----------------------------------------------------------------------
def resolve_audio_source(
    music_path: Path | str | None,
    min_bytes: int = AUDIO_STUB_THRESHOLD_BYTES,
) -> AudioSource:
    if music_path:
        try:
            size = os.path.getsize(music_path)
        except OSError:
            size = 0
        if size > min_bytes:
            return AudioFile(path=str(music_path))
    return SilentAudio()


def build_command(binary: str, job: EncodeJob) -> list[str]:
    cmd = [binary, "-hide_banner", "-y"]

    source = job.video_source
    if isinstance(source, FrameSequence):
        cmd += ["-framerate", str(source.fps), "-i", source.pattern]
    else:
        cmd += ["-loop", "1", "-framerate", str(source.fps), "-i", source.path]

    audio = job.audio_source
    if isinstance(audio, AudioFile):
        # Loop short tracks; -t and -shortest bound the output.
        cmd += ["-stream_loop", "-1", "-i", audio.path]
    else:
        cmd += ["-f", "lavfi", "-i", audio.descriptor]

    if job.filter_expression:
        cmd += ["-vf", job.filter_expression]

    cmd += [
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-t",
        str(job.duration_seconds),
        "-c:v",
        "libx264",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-shortest",
        "-movflags",
        "+faststart",
        str(job.output_path),
    ]
    return cmd


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------
class FFmpegEncoder:
    def __init__(self, binary: str) -> None:
        self.binary = binary

    def encode(self, job: EncodeJob) -> bytes:
        cmd = build_command(self.binary, job)
        LOGGER.info("ffmpeg_start", extra={"command": " ".join(cmd)})
        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise EncodeFailure(f"Could not start ffmpeg at {self.binary}: {exc}") from exc

        stderr = cast(IO[str], process.stderr)
        try:
            for line in stderr:
                line = line.rstrip()
                if not line:
                    continue
                tail.append(line)
                LOGGER.warning("ffmpeg_stderr %s", line)
        finally:
            stderr.close()
        return_code = process.wait()

        if return_code != 0:
            detail = tail[-1] if tail else "no diagnostic output"
            raise EncodeFailure(f"ffmpeg exited with status {return_code}: {detail}")

        output = Path(job.output_path)
        if not output.exists() or output.stat().st_size == 0:
            raise EncodeFailure("ffmpeg finished without producing an output file.")
        return output.read_bytes()


def probe_duration(path: Path | str) -> float:
    """Container duration of an encoded file in seconds."""
    with av.open(str(path)) as container:
        if container.duration is not None:
            return container.duration / av.time_base
        stream = container.streams.video[0]
        return float(stream.duration * stream.time_base)


__all__ = [
    "AUDIO_STUB_THRESHOLD_BYTES",
    "FrameSequence",
    "StillImage",
    "AudioFile",
    "SilentAudio",
    "EncodeJob",
    "Encoder",
    "FFmpegEncoder",
    "resolve_binary",
    "bundled_ffmpeg",
    "ffmpeg_candidates",
    "find_ffmpeg",
    "ffmpeg_version",
    "resolve_audio_source",
    "build_command",
    "probe_duration",
]
