"""
Pytest fixtures for video export API tests.

External tools (ffmpeg, ffprobe, yt-dlp) are replaced by small executable
Python scripts written into the test's temp directory. Their behaviour is
steered through environment variables (set with ``monkeypatch.setenv``),
which the spawned subprocesses inherit:

- FAKE_FFMPEG_EXIT: exit code (default 0)
- FAKE_FFMPEG_SLEEP: seconds spent "encoding" before exiting
- FAKE_FFMPEG_LOG: file that receives one argv line per invocation
- FAKE_YTDLP_EXIT: exit code (default 0)
- FAKE_YTDLP_LOG: file that receives one line per download
- FAKE_FFPROBE_DURATION: duration reported by ffprobe
"""

import base64
import io
import os
import stat
import sys
import time
from pathlib import Path

import pytest
from PIL import Image

from video_api.config import Settings
from video_api.services.asset_store import AssetStore
from video_api.services.job_registry import JobRegistry
from video_api.services.source_resolver import SourceResolver
from video_api.services.upload_sessions import UploadSessionManager

FAKE_FFMPEG = """
import json, os, sys, time
args = sys.argv[1:]
log = os.environ.get("FAKE_FFMPEG_LOG")
if log:
    with open(log, "a") as fh:
        fh.write(json.dumps(args) + "\\n")
sleep = float(os.environ.get("FAKE_FFMPEG_SLEEP", "0"))
code = int(os.environ.get("FAKE_FFMPEG_EXIT", "0"))
for second in range(1, 4):
    sys.stderr.write(f"frame={second * 24} fps=24 time=00:00:0{second}.00 bitrate=900kbits/s\\r")
    sys.stderr.flush()
    if sleep:
        time.sleep(sleep / 3)
if code:
    sys.stderr.write("Error while filtering: simulated failure\\n")
    sys.exit(code)
with open(args[-1], "wb") as fh:
    fh.write(b"\\x00\\x00\\x00\\x18ftypmp42" + b"\\x00" * 2048)
"""

FAKE_YTDLP = """
import os, sys
args = sys.argv[1:]
log = os.environ.get("FAKE_YTDLP_LOG")
if log:
    with open(log, "a") as fh:
        fh.write(args[-1] + "\\n")
code = int(os.environ.get("FAKE_YTDLP_EXIT", "0"))
target = args[args.index("-o") + 1]
if code:
    with open(target, "wb") as fh:
        fh.write(b"partial")
    sys.stderr.write("ERROR: simulated download failure\\n")
    sys.exit(code)
with open(target, "wb") as fh:
    fh.write(b"\\x00" * 4096)
"""

FAKE_FFPROBE = """
import json, os
print(json.dumps({"format": {"duration": os.environ.get("FAKE_FFPROBE_DURATION", "12.5")}}))
"""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: test waits on background subprocesses")


def _write_tool(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def tools_dir(tmp_path: Path) -> Path:
    path = tmp_path / "bin"
    path.mkdir()
    _write_tool(path / "ffmpeg", FAKE_FFMPEG)
    _write_tool(path / "yt-dlp", FAKE_YTDLP)
    _write_tool(path / "ffprobe", FAKE_FFPROBE)
    return path


@pytest.fixture
def settings(tmp_path: Path, tools_dir: Path) -> Settings:
    """Settings pointing every asset area and tool at the test's temp directory."""
    return Settings(
        data_dir=str(tmp_path / "data"),
        ffmpeg_path=str(tools_dir / "ffmpeg"),
        ffprobe_path=str(tools_dir / "ffprobe"),
        yt_dlp_path=str(tools_dir / "yt-dlp"),
        timer_font_path=str(tmp_path / "missing-font.ttf"),
        downloader_timeout_s=20,
        downloaded_delete_delay_s=0.1,
        sweep_interval_s=3600,
        max_chunk_bytes=64 * 1024,
        max_upload_bytes=256 * 1024,
    )


@pytest.fixture
def store(settings: Settings) -> AssetStore:
    store = AssetStore(settings)
    store.ensure_dirs()
    return store


@pytest.fixture
def uploads(settings: Settings, store: AssetStore) -> UploadSessionManager:
    return UploadSessionManager(settings, store)


@pytest.fixture
def registry(store: AssetStore, uploads: UploadSessionManager) -> JobRegistry:
    return JobRegistry(store, uploads)


@pytest.fixture
def resolver(settings: Settings, store: AssetStore, uploads: UploadSessionManager) -> SourceResolver:
    return SourceResolver(settings, store, uploads)


def make_png_data_url(width: int = 8, height: int = 8, color=(255, 0, 0, 128)) -> str:
    """Small RGBA PNG encoded as a data URL."""
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


@pytest.fixture
def png_data_url() -> str:
    return make_png_data_url()


def age_file(path: Path, seconds: float) -> None:
    """Backdate a file's mtime."""
    past = time.time() - seconds
    os.utime(path, (past, past))
