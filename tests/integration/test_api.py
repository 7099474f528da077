# Integration tests for the FastAPI REST backend.
#
# Uses FastAPI's built-in TestClient (backed by httpx) to send
# real HTTP requests against an app built around a real
# FaceRecognitionEngine whose detector and recognizer are the
# fakes from conftest.py.
#
# Test groups:
#   1.  Health endpoint
#   2.  Identify endpoint      — known, unknown, threshold, bad uploads
#   3.  Identify-all endpoint
#   4.  Identities endpoint
#   5.  Reload endpoint        — install, warnings, failure
#   6.  Unavailable database   — 503 after shutdown
#   7.  Middleware / errors    — X-Request-ID, 404, root route

from __future__ import annotations

import shutil
from typing import Generator

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import FakeDetector, FakeRecognizer, face_image, write_face_image
from core.pipeline.recognition_engine import FaceRecognitionEngine

pytestmark = [pytest.mark.integration, pytest.mark.api]


def _encode_png(image: np.ndarray) -> bytes:
    """Encode a BGR numpy array to PNG bytes."""
    ok, buf = cv2.imencode(".png", image)
    assert ok
    return buf.tobytes()


def _upload(image: np.ndarray, filename: str = "query.png") -> dict:
    return {"image": (filename, _encode_png(image), "image/png")}


@pytest.fixture()
def engine(db_root) -> Generator[FaceRecognitionEngine, None, None]:
    eng = FaceRecognitionEngine(FakeDetector(), FakeRecognizer())
    eng.initialize(db_root)
    yield eng
    eng.shutdown()


@pytest.fixture()
def client(engine) -> Generator[TestClient, None, None]:
    """
    TestClient around an app serving *engine*.

    The 'with' block runs the lifespan, which attaches the engine to
    app.state and shuts it down on exit.
    """
    from api.main import create_app

    app = create_app(engine=engine)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


# ============================================================
# 1. Health
# ============================================================

class TestHealthEndpoint:

    def test_health_returns_200(self, client: TestClient):
        assert client.get("/api/v1/health").status_code == 200

    def test_health_reports_database(self, client: TestClient):
        data = client.get("/api/v1/health").json()
        assert data["database_state"] == "ready"
        assert data["database_version"] == 0
        assert data["components"]["database"]["status"] == "ok"
        assert data["components"]["detector"]["status"] == "ok"

    def test_health_degraded_without_hot_reload(self, client: TestClient):
        data = client.get("/api/v1/health").json()
        assert data["watching"] is False
        assert data["components"]["watcher"]["status"] == "degraded"
        assert data["status"] == "degraded"

    def test_health_ok_with_hot_reload(self, client: TestClient, engine, polling_observer_factory):
        engine.database._observer_factory = polling_observer_factory
        assert engine.enable_hot_reload(0.2)
        data = client.get("/api/v1/health").json()
        assert data["watching"] is True
        assert data["status"] == "ok"

    def test_health_has_uptime_and_version(self, client: TestClient):
        data = client.get("/api/v1/health").json()
        assert data["uptime_seconds"] >= 0
        assert "version" in data

    def test_health_down_after_shutdown(self, client: TestClient, engine):
        engine.shutdown()
        data = client.get("/api/v1/health").json()
        assert data["status"] == "down"
        assert data["database_state"] == "stopped"
        assert data["database_version"] is None


# ============================================================
# 2. Identify
# ============================================================

class TestIdentifyEndpoint:

    def test_known_face(self, client: TestClient):
        resp = client.post("/api/v1/identify", files=_upload(face_image(seed=2)))
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Bob"
        assert data["is_known"] is True
        assert data["score"] == pytest.approx(1.0, abs=1e-4)
        assert data["threshold_used"] == pytest.approx(0.4)
        assert data["database_version"] == 0

    def test_unknown_face(self, client: TestClient):
        data = client.post("/api/v1/identify", files=_upload(face_image(seed=50))).json()
        assert data["name"] == "unknown"
        assert data["is_known"] is False
        assert data["score"] < 0.4

    def test_no_face(self, client: TestClient):
        data = client.post("/api/v1/identify", files=_upload(face_image(seed=1, faces=0))).json()
        assert data["name"] == "unknown"
        assert data["score"] == 0.0

    def test_threshold_override(self, client: TestClient):
        resp = client.post(
            "/api/v1/identify",
            files=_upload(face_image(seed=50)),
            data={"threshold": "-1"},
        )
        data = resp.json()
        assert data["is_known"] is True
        assert data["threshold_used"] == -1.0

    def test_threshold_out_of_range(self, client: TestClient):
        resp = client.post(
            "/api/v1/identify",
            files=_upload(face_image(seed=1)),
            data={"threshold": "2.5"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    def test_missing_file(self, client: TestClient):
        assert client.post("/api/v1/identify").status_code == 422

    def test_undecodable_upload(self, client: TestClient):
        resp = client.post(
            "/api/v1/identify",
            files={"image": ("x.png", b"definitely not an image", "image/png")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "bad_request"

    def test_image_too_small(self, client: TestClient):
        resp = client.post("/api/v1/identify", files=_upload(face_image(seed=1, size=5)))
        assert resp.status_code == 400
        assert "too small" in resp.json()["message"]

    def test_jpeg_upload(self, client: TestClient):
        img = np.full((64, 64, 3), 128, dtype=np.uint8)
        img[0, 0, 0] = 0
        ok, buf = cv2.imencode(".jpg", img)
        assert ok
        resp = client.post(
            "/api/v1/identify",
            files={"image": ("q.jpg", buf.tobytes(), "image/jpeg")},
        )
        assert resp.status_code == 200


# ============================================================
# 3. Identify all
# ============================================================

class TestIdentifyAllEndpoint:

    def test_every_face(self, client: TestClient):
        resp = client.post("/api/v1/identify/all", files=_upload(face_image(seed=1, faces=3)))
        assert resp.status_code == 200
        data = resp.json()
        assert data["num_faces"] == 3
        assert data["num_known"] == 3
        assert [f["name"] for f in data["faces"]] == ["Alice", "Bob", "Carol"]
        assert [f["face_index"] for f in data["faces"]] == [0, 1, 2]

    def test_mixed(self, client: TestClient):
        data = client.post(
            "/api/v1/identify/all", files=_upload(face_image(seed=3, faces=2))
        ).json()
        assert data["num_known"] == 1
        assert data["faces"][1]["name"] == "unknown"

    def test_no_faces(self, client: TestClient):
        data = client.post(
            "/api/v1/identify/all", files=_upload(face_image(seed=1, faces=0))
        ).json()
        assert data["num_faces"] == 0
        assert data["faces"] == []


# ============================================================
# 4. Identities
# ============================================================

class TestIdentitiesEndpoint:

    def test_lists_identities(self, client: TestClient):
        data = client.get("/api/v1/identities").json()
        assert data["count"] == 3
        assert data["total_descriptors"] == 3
        assert data["database_version"] == 0
        assert [i["name"] for i in data["identities"]] == ["Alice", "Bob", "Carol"]
        assert all(i["num_descriptors"] == 1 for i in data["identities"])


# ============================================================
# 5. Reload
# ============================================================

class TestReloadEndpoint:

    def test_reload_installs_new_snapshot(self, client: TestClient, db_root):
        write_face_image(db_root / "Dave" / "a.png", seed=4)
        resp = client.post("/api/v1/database/reload")
        assert resp.status_code == 200
        data = resp.json()
        assert data["installed"] is True
        assert data["database_version"] == 1
        assert data["identities"] == 4
        assert data["num_warnings"] == 0

        found = client.post("/api/v1/identify", files=_upload(face_image(seed=4))).json()
        assert found["name"] == "Dave"
        assert found["database_version"] == 1

    def test_reload_reports_warnings(self, client: TestClient, db_root):
        (db_root / "Bob" / "notes.txt").write_text("x")
        data = client.post("/api/v1/database/reload").json()
        assert data["num_warnings"] == 1
        warning = data["warnings"][0]
        assert warning["kind"] == "unsupported_format"
        assert warning["identity"] == "Bob"

    def test_reload_reports_its_own_load(self, client: TestClient, engine, db_root, monkeypatch):
        real_reload = engine.reload_with_warnings

        def reload_then_watcher_reload():
            result = real_reload()
            # A watcher-driven reload lands before the response is built
            (db_root / "Bob" / "notes.txt").write_text("x")
            engine.database.reload()
            return result

        monkeypatch.setattr(engine, "reload_with_warnings", reload_then_watcher_reload)
        data = client.post("/api/v1/database/reload").json()
        assert data["installed"] is True
        assert data["database_version"] == 1
        assert data["num_warnings"] == 0
        assert engine.database.version == 2

    def test_reload_failure_keeps_serving(self, client: TestClient, db_root):
        shutil.rmtree(db_root)
        resp = client.post("/api/v1/database/reload")
        assert resp.status_code == 500
        assert resp.json()["error"] == "internal_server_error"

        data = client.post("/api/v1/identify", files=_upload(face_image(seed=1))).json()
        assert data["name"] == "Alice"
        assert data["database_version"] == 0


# ============================================================
# 6. Unavailable database
# ============================================================

class TestUnavailable:

    @pytest.fixture(autouse=True)
    def _stopped(self, engine):
        engine.shutdown()

    def test_identify_503(self, client: TestClient):
        resp = client.post("/api/v1/identify", files=_upload(face_image(seed=1)))
        assert resp.status_code == 503
        assert resp.json()["error"] == "service_unavailable"

    def test_identify_all_503(self, client: TestClient):
        resp = client.post("/api/v1/identify/all", files=_upload(face_image(seed=1)))
        assert resp.status_code == 503

    def test_identities_503(self, client: TestClient):
        assert client.get("/api/v1/identities").status_code == 503

    def test_reload_503(self, client: TestClient):
        assert client.post("/api/v1/database/reload").status_code == 503

    def test_no_engine_503(self, client: TestClient):
        client.app.state.engine = None
        assert client.get("/api/v1/identities").status_code == 503
        assert client.get("/api/v1/health").json()["status"] == "down"


# ============================================================
# 7. Middleware and errors
# ============================================================

class TestMiddleware:

    def test_request_id_generated(self, client: TestClient):
        resp = client.get("/api/v1/health")
        assert resp.headers.get("X-Request-ID")
        assert resp.headers.get("X-Processing-Ms")

    def test_request_id_echoed(self, client: TestClient):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_error_body_carries_request_id(self, client: TestClient):
        resp = client.get("/api/v1/nope", headers={"X-Request-ID": "req-42"})
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "not_found"
        assert body["request_id"] == "req-42"

    def test_root(self, client: TestClient):
        data = client.get("/").json()
        assert data["health"] == "/api/v1/health"
