from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stillreel import create_app
from stillreel.errors import StorageError
from stillreel.services.video_generator import GenerationResult, VideoGenerator
from stillreel.templates import STYLE_SLIDE, STYLE_ZOOM, TEMPLATES, Template

FAKE_VIDEO = b"\x00\x00\x00\x18ftypmp42fake-video"

# One-second variants keep the zoom path down to a handful of frames.
SHORT_TEMPLATES = (
    Template(id="zoom-ambient", name="Ambient Zoom", style=STYLE_ZOOM, duration_seconds=1, music_file="musics/ambient.mp3"),
    Template(id="slide-funky", name="Funky Slide", style=STYLE_SLIDE, duration_seconds=1, music_file="musics/funky.mp3"),
)


class FakeEncoder:
    """Records jobs and writes a fixed payload instead of running ffmpeg."""

    def __init__(self, binary: str = "/usr/bin/ffmpeg", payload: bytes = FAKE_VIDEO) -> None:
        self.binary = binary
        self.payload = payload
        self.jobs: list[Any] = []
        self.seen_workdirs: list[Path] = []
        self.frame_files: list[list[str]] = []

    def encode(self, job) -> bytes:
        self.jobs.append(job)
        workdir = Path(job.output_path).parent
        self.seen_workdirs.append(workdir)
        frames_dir = workdir / "frames"
        if frames_dir.exists():
            self.frame_files.append(sorted(path.name for path in frames_dir.iterdir()))
        Path(job.output_path).write_bytes(self.payload)
        return self.payload


class FakeEncoderFactory:
    def __init__(self) -> None:
        self.calls = 0
        self.encoders: list[FakeEncoder] = []

    def __call__(self, binary: str) -> FakeEncoder:
        self.calls += 1
        encoder = FakeEncoder(binary)
        self.encoders.append(encoder)
        return encoder

    @property
    def jobs(self) -> list[Any]:
        return [job for encoder in self.encoders for job in encoder.jobs]


class MemoryStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.get_calls = 0
        self.put_calls = 0
        self.fail_get = False
        self.fail_put = False

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.put_calls += 1
        if self.fail_put:
            raise StorageError("bucket unavailable", key=key)
        self.objects[key] = data
        self.content_types[key] = content_type
        return f"https://cdn.example.com/{key}"

    def get(self, key: str) -> bytes:
        self.get_calls += 1
        if self.fail_get:
            raise StorageError("connection reset", key=key)
        try:
            return self.objects[key]
        except KeyError as exc:
            raise StorageError(f"missing {key}", key=key) from exc

    def describe(self) -> dict:
        return {"backend": "memory", "configured": True, "objects": len(self.objects)}


def make_image_bytes(size=(640, 480), color=(200, 80, 40), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
def image_bytes(image_factory) -> bytes:
    return image_factory()


@pytest.fixture
def fake_video() -> bytes:
    return FAKE_VIDEO


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def encoder_factory() -> FakeEncoderFactory:
    return FakeEncoderFactory()


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    root = tmp_path / "music"
    (root / "musics").mkdir(parents=True)
    return root


@pytest.fixture
def generator_factory(tmp_path: Path, music_dir: Path, storage: MemoryStorage, encoder_factory: FakeEncoderFactory):
    def _factory(**overrides) -> VideoGenerator:
        options = {
            "storage": storage,
            "encoder_factory": encoder_factory,
            "binary_resolver": lambda: "/usr/bin/ffmpeg",
            "tmp_root": tmp_path / "runs",
            "templates": SHORT_TEMPLATES,
            "fps": 4,
        }
        options.update(overrides)
        return VideoGenerator(music_dir, **options)

    return _factory


@pytest.fixture
def generator(generator_factory) -> VideoGenerator:
    return generator_factory()


class DummyGenerator:
    """Stands in for ``VideoGenerator`` behind the HTTP layer."""

    def __init__(self) -> None:
        self.templates = TEMPLATES
        self.output_size = (1280, 720)
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def generate_from_storage(self, image_key, template_id, overlay_text=None, include_text=True):
        self.calls.append(
            {
                "image_key": image_key,
                "template_id": template_id,
                "overlay_text": overlay_text,
                "include_text": include_text,
            }
        )
        if self.error is not None:
            raise self.error
        key = "videos/1700000000000-abc123.mp4"
        return GenerationResult(run_id="abc123", key=key, url=f"https://cdn.example.com/{key}", size_bytes=42)

    def generate(self, image_bytes, template_id, overlay_text=None, include_text=True) -> bytes:
        self.calls.append({"template_id": template_id, "include_text": include_text})
        return FAKE_VIDEO


@pytest.fixture
def app(tmp_path: Path, storage: MemoryStorage):
    generator = DummyGenerator()
    app = create_app(
        {
            "TESTING": True,
            "STORAGE": storage,
            "VIDEO_GENERATOR": generator,
            "FFMPEG_PATH": "",
            "LOG_VERBOSITY": "none",
            "LOG_TO_FILE": False,
        }
    )
    app.config["_dummy_services"] = {"storage": storage, "generator": generator}
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def dummy_services(app):
    return app.config["_dummy_services"]
