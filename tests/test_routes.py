import io
import xml.etree.ElementTree as ET

from stillreel.errors import EncoderUnavailable, InvalidInput, UpstreamIO
from stillreel.routes import api as api_module


def test_upload_image_stores_under_uploads(client, dummy_services, image_bytes):
    data = {"file": (io.BytesIO(image_bytes), "My Photo.png")}
    response = client.post("/api/upload-image", data=data, content_type="multipart/form-data")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["key"].startswith("uploads/")
    assert payload["key"].endswith("-My_Photo.png")
    assert payload["url"] == f"https://cdn.example.com/{payload['key']}"
    storage = dummy_services["storage"]
    assert storage.content_types[payload["key"]] == "image/png"


def test_upload_image_requires_file(client):
    response = client.post("/api/upload-image", data={}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert "error" in response.get_json()


def test_upload_image_storage_failure_is_500(client, dummy_services):
    dummy_services["storage"].fail_put = True
    data = {"file": (io.BytesIO(b"abc"), "photo.jpg")}
    response = client.post("/api/upload-image", data=data, content_type="multipart/form-data")
    assert response.status_code == 500


def test_generate_video_returns_url_and_key(client, dummy_services):
    response = client.post(
        "/api/generate-video",
        json={"imageKey": "uploads/1-photo.png", "templateId": "zoom-ambient", "productName": "Cold Brew"},
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload == {
        "videoUrl": "https://cdn.example.com/videos/1700000000000-abc123.mp4",
        "key": "videos/1700000000000-abc123.mp4",
    }
    (call,) = dummy_services["generator"].calls
    assert call == {
        "image_key": "uploads/1-photo.png",
        "template_id": "zoom-ambient",
        "overlay_text": "Cold Brew",
        "include_text": True,
    }


def test_generate_video_validates_body(client, dummy_services):
    response = client.post("/api/generate-video", json={"templateId": "zoom-ambient"})
    assert response.status_code == 400
    assert "imageKey" in response.get_json()["error"]
    assert dummy_services["generator"].calls == []

    response = client.post("/api/generate-video", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_generate_video_maps_domain_errors(client, dummy_services):
    generator = dummy_services["generator"]
    body = {"imageKey": "uploads/1-photo.png", "templateId": "zoom-ambient"}

    generator.error = InvalidInput("Invalid template: 'x'.")
    response = client.post("/api/generate-video", json=body)
    assert response.status_code == 400
    assert response.get_json()["category"] == "invalid_input"

    generator.error = UpstreamIO("Could not download image", stage="downloading")
    response = client.post("/api/generate-video", json=body)
    payload = response.get_json()
    assert response.status_code == 502
    assert payload["category"] == "upstream_io"
    assert payload["stage"] == "downloading"
    assert payload["status_code"] == 502
    assert payload["request_id"]

    generator.error = EncoderUnavailable("FFmpeg binary not found.")
    response = client.post("/api/generate-video", json=body)
    assert response.status_code == 500
    assert response.get_json()["error"] == "FFmpeg binary not found."


def test_unexpected_errors_are_json(client, dummy_services):
    dummy_services["generator"].error = ZeroDivisionError("nope")
    response = client.post(
        "/api/generate-video",
        json={"imageKey": "uploads/1-photo.png", "templateId": "zoom-ambient"},
    )
    assert response.status_code == 500
    assert response.get_json()["error"] == "An unexpected error occurred."


def test_templates_listing(client):
    response = client.get("/api/templates")
    assert response.status_code == 200
    ids = [item["id"] for item in response.get_json()["templates"]]
    assert ids == ["zoom-ambient", "slide-funky"]


def test_overlay_preview_returns_escaped_svg(client):
    response = client.get("/api/overlay-preview", query_string={"text": "A&B<Test>", "width": 640, "height": 360})
    assert response.status_code == 200
    assert response.mimetype == "image/svg+xml"
    root = ET.fromstring(response.get_data(as_text=True))
    assert root.attrib["width"] == "640"
    assert [node.text for node in root.iter("{http://www.w3.org/2000/svg}text")] == ["A&B<Test>", "A&B<Test>"]


def test_overlay_preview_requires_text(client):
    response = client.get("/api/overlay-preview", query_string={"text": "   "})
    assert response.status_code == 400


def test_request_id_is_echoed(client):
    response = client.get("/api/templates", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Response-Time"].endswith("ms")


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.get_json()["status_code"] == 404


def test_diagnostics_reports_encoder_and_storage(client, monkeypatch):
    monkeypatch.setattr(api_module, "find_ffmpeg", lambda override=None: "/usr/bin/ffmpeg")
    monkeypatch.setattr(api_module, "ffmpeg_version", lambda binary: "ffmpeg version 6.1")

    response = client.get("/api/_diag")
    payload = response.get_json()

    assert response.status_code == 200
    assert payload["ffmpeg"] == {"available": True, "path": "/usr/bin/ffmpeg", "version": "ffmpeg version 6.1"}
    assert payload["storage"]["backend"] == "memory"
    assert payload["python"]
    assert "selfcheck" not in payload


def test_diagnostics_without_encoder(client, monkeypatch):
    monkeypatch.setattr(api_module, "find_ffmpeg", lambda override=None: None)
    payload = client.get("/api/_diag").get_json()
    assert payload["ffmpeg"] == {"available": False, "path": None, "version": None}


def test_diagnostics_self_check_probes_duration(client, dummy_services, monkeypatch):
    monkeypatch.setattr(api_module, "find_ffmpeg", lambda override=None: None)
    monkeypatch.setattr(api_module, "probe_duration", lambda path: 6.02)

    payload = client.get("/api/_diag?selfcheck=1").get_json()

    assert payload["selfcheck"]["ok"] is True
    assert payload["selfcheck"]["template_id"] == "zoom-ambient"
    assert dummy_services["generator"].calls == [{"template_id": "zoom-ambient", "include_text": False}]


def test_media_route_serves_local_storage(tmp_path):
    from stillreel import create_app
    from stillreel.services.storage import LocalStorage

    storage = LocalStorage(tmp_path / "media")
    storage.put("videos/1-run.mp4", b"mp4-bytes", "video/mp4")
    app = create_app({"TESTING": True, "STORAGE": storage, "VIDEO_GENERATOR": object(), "LOG_VERBOSITY": "none"})

    response = app.test_client().get("/api/media/videos/1-run.mp4")
    assert response.status_code == 200
    assert response.data == b"mp4-bytes"


def test_media_route_is_404_for_remote_storage(client):
    assert client.get("/api/media/videos/1-run.mp4").status_code == 404
