"""
Tests for media duration probing.

Test cases:
1. Duration reported by ffprobe
2. Missing duration
3. ffprobe failure
"""

import pytest

from video_api.utils.media_info import get_media_duration


class TestMediaInfo:
    """Test media info extraction using ffprobe."""

    @pytest.mark.asyncio
    async def test_get_media_duration(self, settings, tmp_path, monkeypatch):
        """Duration is returned in seconds."""
        monkeypatch.setenv("FAKE_FFPROBE_DURATION", "50.7")
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"ID3")

        duration = await get_media_duration(settings.ffprobe_path, audio)

        assert duration == pytest.approx(50.7)

    @pytest.mark.asyncio
    async def test_missing_duration_raises(self, tools_dir, tmp_path):
        """A probe result without a duration is an error."""
        probe = tools_dir / "ffprobe-empty"
        probe.write_text((tools_dir / "ffprobe").read_text().replace('{"duration": ', '{"size": '))
        probe.chmod(0o755)

        with pytest.raises(RuntimeError, match="Duration not found"):
            await get_media_duration(str(probe), tmp_path / "episode.mp3")

    @pytest.mark.asyncio
    async def test_probe_failure_raises(self, tmp_path):
        """A non-zero ffprobe exit is an error."""
        with pytest.raises(RuntimeError, match="ffprobe failed"):
            await get_media_duration("false", tmp_path / "episode.mp3")
