"""
Tests for the ffmpeg runner: progress parsing, success and failure handling.
"""

import pytest

from video_api.exceptions import TranscodeError
from video_api.render.compositor import Compositor, parse_elapsed


class TestParseElapsed:
    def test_single_marker(self):
        assert parse_elapsed("frame=10 fps=24 time=00:01:02.50 bitrate=1k") == pytest.approx(62.5)

    def test_last_marker_wins(self):
        text = "time=00:00:01.00 x\rtime=00:00:02.00 y\rtime=01:00:00.00 z"
        assert parse_elapsed(text) == pytest.approx(3600)

    def test_no_marker(self):
        assert parse_elapsed("Input #0, mov,mp4 from 'x.mp4':") is None
        assert parse_elapsed("time=N/A bitrate=N/A") is None


class TestCompositor:
    @pytest.mark.asyncio
    async def test_success_reports_bounded_monotonic_progress(self, settings, tmp_path):
        output = tmp_path / "out.mp4"
        seen = []
        spawned, exited = [], []

        result = await Compositor().run(
            [settings.ffmpeg_path, "-y", str(output)],
            duration=2.0,
            output_path=output,
            on_progress=seen.append,
            on_spawn=spawned.append,
            on_exit=exited.append,
        )

        assert result == output and output.exists()
        assert seen, "expected progress callbacks"
        assert seen == sorted(seen)
        assert max(seen) <= 0.99
        assert spawned and spawned == exited

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_diagnostics(self, settings, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_EXIT", "3")
        output = tmp_path / "out.mp4"
        exited = []

        with pytest.raises(TranscodeError) as exc_info:
            await Compositor().run(
                [settings.ffmpeg_path, str(output)], duration=3, output_path=output, on_exit=exited.append
            )

        err = exc_info.value
        assert err.returncode == 3
        assert "simulated failure" in err.diagnostics
        assert err.message.startswith("ffmpeg exited with code 3")
        assert not output.exists()
        assert exited, "on_exit runs on failure too"

    @pytest.mark.asyncio
    async def test_killed_process_raises(self, settings, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "5")
        output = tmp_path / "out.mp4"

        with pytest.raises(TranscodeError):
            await Compositor().run(
                [settings.ffmpeg_path, str(output)],
                duration=3,
                output_path=output,
                on_spawn=lambda proc: proc.kill(),
            )
        assert not output.exists()
