import os
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_INSTANCE_ROOT = Path(
    os.getenv("STILLREEL_INSTANCE_PATH", PROJECT_ROOT / "instance")
)
DEFAULT_STORAGE_PATH = Path(
    os.getenv("STILLREEL_STORAGE_PATH", DEFAULT_INSTANCE_ROOT / "storage")
)
DEFAULT_TMP_ROOT = Path(
    os.getenv("STILLREEL_TMP_ROOT", DEFAULT_INSTANCE_ROOT / "tmp")
)
DEFAULT_MUSIC_DIR = Path(
    os.getenv("STILLREEL_MUSIC_DIR", Path(__file__).resolve().parent / "assets")
)
DEFAULT_LOG_DIR = Path(
    os.getenv("STILLREEL_LOG_DIR", DEFAULT_INSTANCE_ROOT / "logs")
)


def _env_flag(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"0", "false", "no", "off"}:
        return False
    if normalized in {"1", "true", "yes", "on"}:
        return True
    return default


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


class Config:
    MAX_CONTENT_LENGTH = 25 * 1024 * 1024  # 25MB uploads
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").strip().lower()
    LOCAL_STORAGE_PATH = os.getenv("LOCAL_STORAGE_PATH", str(DEFAULT_STORAGE_PATH))
    LOCAL_STORAGE_URL = os.getenv("LOCAL_STORAGE_URL", "/api/media")
    AWS_REGION = os.getenv("AWS_REGION", "")
    S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME", "")
    S3_PUBLIC_URL = os.getenv("S3_PUBLIC_URL", "")
    S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "")
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_API_KEY = os.getenv("SUPABASE_API_KEY", "")
    STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "stillreel-media")
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "")
    MUSIC_DIR = os.getenv("MUSIC_DIR", str(DEFAULT_MUSIC_DIR))
    RENDER_TMP_ROOT = os.getenv("RENDER_TMP_ROOT", str(DEFAULT_TMP_ROOT))
    VIDEO_FPS = _env_int("VIDEO_FPS", 25, minimum=1)
    ZOOM_DELTA = _env_float("ZOOM_DELTA", 0.6)
    RENDER_WORKERS = _env_int("RENDER_WORKERS", min(4, os.cpu_count() or 1), minimum=1)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    LOG_TO_STDOUT = _env_flag(os.getenv("LOG_TO_STDOUT"), default=True)
    LOG_TO_FILE = _env_flag(os.getenv("LOG_TO_FILE"), default=False)
    LOG_VERBOSITY = os.getenv("LOG_VERBOSITY", "essential")
    LOG_DIR = os.getenv("LOG_DIR", str(DEFAULT_LOG_DIR))
    LOG_FILE = os.getenv("LOG_FILE", str(DEFAULT_LOG_DIR / "stillreel.log"))
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", str(10 * 1024 * 1024)))
    LOG_FILE_BACKUP_COUNT = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))
    REQUEST_ID_HEADER = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
