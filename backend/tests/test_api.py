"""
Tests for the HTTP boundary.

The app runs with its full lifespan (sweeper, export service) against the
fake tools from conftest; outbound HTTP goes through an httpx.MockTransport.

Run with: pytest tests/test_api.py -v
"""

import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import make_png_data_url
from video_api.main import create_app

SESSION_ID = "0123456789abcdef"
IMAGE_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/moved":
        return httpx.Response(302, headers={"location": "/image.png"})
    if request.url.path == "/image.png":
        return httpx.Response(200, content=IMAGE_BYTES, headers={"content-type": "image/png"})
    if request.url.path == "/down":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(404, content=b"missing", headers={"content-type": "text/plain"})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client(settings):
    """Test client with the app lifespan running."""
    app = create_app(settings, http_transport=httpx.MockTransport(_upstream))
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def wait_for_status(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/status/{job_id}").json()
        if body["status"] in ("ready", "error"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish in {timeout}s")


def upload_chunks(client, session_id=SESSION_ID, order=(0, 1, 2), total=3):
    responses = []
    for index in order:
        responses.append(
            client.post(
                "/podcast-upload-chunk",
                content=bytes([index + 1]) * 512,
                headers={
                    "Content-Type": "application/octet-stream",
                    "X-Session-Id": session_id,
                    "X-Chunk-Index": str(index),
                    "X-Total-Chunks": str(total),
                    "X-File-Ext": ".mp3",
                },
            )
        )
    return responses


def podcast_body(session_id=SESSION_ID, **extra):
    body = {"sessionId": session_id, "framePng": make_png_data_url(16, 9)}
    body.update(extra)
    return body


# =============================================================================
# Status
# =============================================================================


class TestStatus:
    """Service and job status endpoints."""

    def test_service_status(self, client):
        """GET /status reports liveness and job count."""
        response = client.get("/status")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "jobs": 0}

    def test_unknown_job_is_404(self, client):
        """GET /status/{id} for an unknown job returns 404 with an error body."""
        response = client.get("/status/doesnotexist")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "JOB_NOT_FOUND"
        assert "doesnotexist" in data["error"]


# =============================================================================
# Overlay export
# =============================================================================


class TestOverlayExport:
    """POST /export and the resulting output file."""

    def test_export_reaches_ready(self, client):
        """A valid export is accepted and polls through to a published URL."""
        response = client.post(
            "/export",
            json={"videoId": "dQw4w9WgXcQ", "overlayPng": make_png_data_url(), "duration": 3},
        )

        assert response.status_code == 202
        job_id = response.json()["jobId"]

        body = wait_for_status(client, job_id)
        assert body["status"] == "ready", body["error"]
        assert body["progress"] == 1.0
        assert body["url"] == f"/videos/{job_id}.mp4"
        assert body["error"] is None

    def test_output_is_served(self, client):
        """The published URL serves the MP4."""
        job_id = client.post(
            "/export", json={"videoId": "dQw4w9WgXcQ", "overlayPng": make_png_data_url()}
        ).json()["jobId"]
        url = wait_for_status(client, job_id)["url"]

        response = client.get(url)

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        assert response.content.startswith(b"\x00\x00\x00\x18ftyp")

    def test_unknown_output_is_404(self, client):
        """Missing output files are 404s."""
        response = client.get("/videos/nothing.mp4")

        assert response.status_code == 404
        assert response.json() == {"error": "File not found"}

    def test_invalid_video_id_is_400(self, client):
        """Malformed source ids fail validation with a readable message."""
        response = client.post("/export", json={"videoId": "nope", "overlayPng": make_png_data_url()})

        assert response.status_code == 400
        assert response.json()["error"].startswith("videoId:")

    def test_overlay_must_be_png_data_url(self, client):
        """overlayPng must be a PNG data URL."""
        response = client.post("/export", json={"videoId": "dQw4w9WgXcQ", "overlayPng": "https://x/y.png"})

        assert response.status_code == 400
        assert "overlayPng" in response.json()["error"]

    def test_download_failure_surfaces_in_status(self, client, monkeypatch):
        """A downloader failure ends the job in error, not a request failure."""
        monkeypatch.setenv("FAKE_YTDLP_EXIT", "1")

        response = client.post("/export", json={"videoId": "dQw4w9WgXcQ", "overlayPng": make_png_data_url()})
        assert response.status_code == 202

        body = wait_for_status(client, response.json()["jobId"])
        assert body["status"] == "error"
        assert body["url"] is None
        assert "yt-dlp failed" in body["error"]


# =============================================================================
# Chunked upload
# =============================================================================


class TestChunkUpload:
    """POST /podcast-upload-chunk."""

    def test_out_of_order_chunks_complete(self, client):
        """Chunks may arrive in any order; the last one completes the session."""
        responses = upload_chunks(client, order=(2, 0, 1))

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert [r.json()["received"] for r in responses] == [1, 2, 3]
        assert [r.json()["complete"] for r in responses] == [False, False, True]
        assert responses[-1].json()["totalChunks"] == 3

    def test_duplicate_chunk_is_flagged(self, client):
        """Re-sending a chunk does not count it twice."""
        responses = upload_chunks(client, order=(0, 0), total=2)

        assert responses[1].status_code == 200
        assert responses[1].json()["received"] == 1
        assert responses[1].json()["duplicate"] is True

    def test_missing_headers_is_400(self, client):
        """Chunk index and total are required."""
        response = client.post(
            "/podcast-upload-chunk",
            content=b"abc",
            headers={"Content-Type": "application/octet-stream", "X-Session-Id": SESSION_ID},
        )

        assert response.status_code == 400
        assert "x-chunk-index" in response.json()["error"]

    def test_bad_session_id_is_400(self, client):
        """Session ids are 16 lowercase hex characters."""
        responses = upload_chunks(client, session_id="../../etc", order=(0,), total=1)

        assert responses[0].status_code == 400

    def test_chunk_too_large_is_413(self, client, settings):
        """Chunks over the per-chunk cap are rejected."""
        response = client.post(
            "/podcast-upload-chunk",
            content=b"\x00" * (settings.max_chunk_bytes + 1),
            headers={
                "Content-Type": "application/octet-stream",
                "X-Session-Id": SESSION_ID,
                "X-Chunk-Index": "0",
                "X-Total-Chunks": "1",
            },
        )

        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"


# =============================================================================
# Podcast export
# =============================================================================


class TestPodcastExport:
    """POST /podcast-export, /podcast-cancel and /podcast-downloaded."""

    def test_export_after_out_of_order_upload(self, client):
        """An upload completed out of order renders to a published URL."""
        upload_chunks(client, order=(1, 2, 0))

        response = client.post("/podcast-export", json=podcast_body(duration=3))

        assert response.status_code == 202
        body = wait_for_status(client, response.json()["jobId"])
        assert body["status"] == "ready", body["error"]
        assert body["url"].endswith(".mp4")

    def test_incomplete_upload_is_400(self, client):
        """Exporting before every chunk arrived is rejected."""
        upload_chunks(client, order=(0, 2))

        response = client.post("/podcast-export", json=podcast_body())

        assert response.status_code == 400
        assert response.json()["code"] == "UPLOAD_INCOMPLETE"

    def test_unknown_session_is_400(self, client):
        """Exporting an unknown session is rejected."""
        response = client.post("/podcast-export", json=podcast_body())

        assert response.status_code == 400
        assert response.json()["code"] == "UPLOAD_SESSION_NOT_FOUND"

    def test_second_render_is_429(self, client, monkeypatch):
        """Only one podcast render runs at a time."""
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "3")
        upload_chunks(client)
        upload_chunks(client, session_id="fedcba9876543210")

        first = client.post("/podcast-export", json=podcast_body(duration=3))
        second = client.post("/podcast-export", json=podcast_body("fedcba9876543210", duration=3))

        assert first.status_code == 202
        assert second.status_code == 429
        data = second.json()
        assert data["code"] == "PODCAST_RENDER_BUSY"
        assert data["retryable"] is True
        assert client.get("/status").json()["jobs"] == 1

        client.post("/podcast-cancel", json={"jobId": first.json()["jobId"]})

    def test_cancel_running_render(self, client, monkeypatch):
        """Cancelling a running render ends it in error and frees the slot."""
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        upload_chunks(client)
        job_id = client.post("/podcast-export", json=podcast_body(duration=3)).json()["jobId"]

        response = client.post("/podcast-cancel", json={"jobId": job_id})

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        body = client.get(f"/status/{job_id}").json()
        assert body["status"] == "error"
        assert body["error"] == "Cancelled by user"

        upload_chunks(client, session_id="fedcba9876543210")
        again = client.post("/podcast-export", json=podcast_body("fedcba9876543210", duration=3))
        assert again.status_code == 202
        client.post("/podcast-cancel", json={"jobId": again.json()["jobId"]})

    def test_late_chunk_after_export_is_400(self, client, monkeypatch):
        """A retried chunk for a consumed session cannot reopen it."""
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "3")
        upload_chunks(client)
        job_id = client.post("/podcast-export", json=podcast_body(duration=3)).json()["jobId"]

        [late] = upload_chunks(client, order=(2,))

        assert late.status_code == 400
        assert late.json()["code"] == "CHUNK_CONFLICT"
        assert client.get(f"/status/{job_id}").json()["status"] != "error"
        client.post("/podcast-cancel", json={"jobId": job_id})

    def test_cancel_unknown_job_is_404(self, client):
        """Cancelling an unknown job is a 404."""
        response = client.post("/podcast-cancel", json={"jobId": "missing"})

        assert response.status_code == 404

    def test_cancel_rejects_path_like_job_id(self, client):
        """Job ids are validated before lookup."""
        response = client.post("/podcast-cancel", json={"jobId": "../videos"})

        assert response.status_code == 400

    def test_downloaded_queues_deletion(self, client):
        """Acknowledging a download deletes the output after the grace period."""
        upload_chunks(client)
        job_id = client.post("/podcast-export", json=podcast_body(duration=3)).json()["jobId"]
        url = wait_for_status(client, job_id)["url"]

        response = client.post("/podcast-downloaded", json={"jobId": job_id})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "queued": True}

        time.sleep(0.5)
        assert client.get(url).status_code == 404
        assert client.get(f"/status/{job_id}").status_code == 404


# =============================================================================
# Image proxy
# =============================================================================


class TestImageProxy:
    """GET /image-proxy."""

    def test_follows_one_redirect(self, client):
        """The proxy follows a redirect and streams the image with cache headers."""
        response = client.get("/image-proxy", params={"url": "https://img.example/moved"})

        assert response.status_code == 200
        assert response.content == IMAGE_BYTES
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=3600"

    def test_upstream_status_is_passed_through(self, client):
        """Upstream error statuses are relayed as-is."""
        response = client.get("/image-proxy", params={"url": "https://img.example/gone"})

        assert response.status_code == 404
        assert response.content == b"missing"

    def test_missing_url_is_400(self, client):
        """The url parameter is required."""
        response = client.get("/image-proxy")

        assert response.status_code == 400
        assert response.json()["error"] == "Missing ?url= parameter"

    def test_non_http_url_is_400(self, client):
        """Only http(s) URLs are proxied."""
        response = client.get("/image-proxy", params={"url": "file:///etc/passwd"})

        assert response.status_code == 400
        assert response.json()["error"] == "Only http/https URLs allowed"

    def test_connection_failure_is_502(self, client):
        """Unreachable upstreams are a 502."""
        response = client.get("/image-proxy", params={"url": "https://img.example/down"})

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_FETCH_FAILED"
