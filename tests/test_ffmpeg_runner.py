"""Unit tests for the FFmpeg runner (no real FFmpeg process is started)."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from abr_packager.ffmpeg_runner import (
    FfmpegErrorType,
    FfmpegResult,
    FfmpegRunner,
    check_ffmpeg,
)


@pytest.fixture(autouse=True)
def fake_ffmpeg_exe():
    with patch("abr_packager.ffmpeg_runner.get_ffmpeg_exe", return_value="ffmpeg"):
        yield


def fake_popen(stderr_lines, returncode=0, wait_side_effect=None):
    process = MagicMock()
    process.pid = 4242
    process.stderr = iter(stderr_lines)
    if wait_side_effect is not None:
        process.wait.side_effect = wait_side_effect
    else:
        process.wait.return_value = returncode
    return process


class TestStderrCollection:
    """Test stderr draining on the reader thread."""

    def test_stderr_collected_in_order(self):
        runner = FfmpegRunner()
        runner._drain_stderr(iter(["Input #0, mov\n", "frame=  12 fps=25\n", "Conversion failed!\n"]))
        assert "".join(runner._stderr_lines) == "Input #0, mov\nframe=  12 fps=25\nConversion failed!\n"

    def test_result_carries_collected_stderr(self, tmp_path):
        runner = FfmpegRunner(temp_dir=str(tmp_path), save_artifacts_on_failure=False)
        process = fake_popen(["line one\n", "line two\n"], returncode=0)
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process):
            result = runner._run_ffmpeg(["ffmpeg"])
        assert result.stderr == "line one\nline two\n"


class TestErrorClassification:
    """Test FFmpeg error classification."""

    @pytest.mark.parametrize("stderr", [
        "input.mp4: No such file or directory",
        "Invalid data found when processing input",
        "Permission denied",
        "Unknown encoder 'libx265'",
        "moov atom not found",
    ])
    def test_permanent(self, stderr):
        assert FfmpegRunner()._classify_error(stderr) == FfmpegErrorType.PERMANENT

    @pytest.mark.parametrize("stderr", [
        "I/O error reading input",
        "No space left on device",
        "Resource temporarily unavailable",
    ])
    def test_transient(self, stderr):
        assert FfmpegRunner()._classify_error(stderr) == FfmpegErrorType.TRANSIENT

    def test_unknown_defaults_to_transient(self):
        assert FfmpegRunner()._classify_error("something odd") == FfmpegErrorType.TRANSIENT


class TestCommandGeneration:
    """Test HLS command generation."""

    def test_hls_command(self):
        cmd = FfmpegRunner().build_hls_command(
            input_path="in.mp4",
            playlist_path="out/720p/playlist.m3u8",
            width=1280,
            height=720,
            video_bitrate_kbps=1000,
            segment_pattern="out/720p/segment%03d.ts",
        )

        def value_after(flag):
            return cmd[cmd.index(flag) + 1]

        assert cmd[0] == "ffmpeg"
        assert value_after("-i") == "in.mp4"
        assert value_after("-vf") == "scale=w=1280:h=720"
        assert value_after("-b:v") == "1000k"
        assert value_after("-c:v") == "libx264"
        assert value_after("-c:a") == "aac"
        assert value_after("-hls_time") == "10"
        assert value_after("-hls_playlist_type") == "vod"
        assert value_after("-hls_segment_filename") == "out/720p/segment%03d.ts"
        assert cmd[-1] == "out/720p/playlist.m3u8"
        assert "-preset" not in cmd
        assert "-progress" not in cmd

    def test_preset_and_loglevel(self):
        cmd = FfmpegRunner(ffmpeg_loglevel="error").build_hls_command(
            "in.mp4", "p.m3u8", width=640, height=360, video_bitrate_kbps=400,
            segment_pattern="s%03d.ts", preset="veryfast", segment_duration_s=6,
        )
        assert cmd[cmd.index("-preset") + 1] == "veryfast"
        assert cmd[cmd.index("-loglevel") + 1] == "error"
        assert cmd[cmd.index("-hls_time") + 1] == "6"

    def test_encode_hls_variant_runs_built_command(self):
        runner = FfmpegRunner()
        captured = []

        def mock_run_ffmpeg(cmd):
            captured.append(cmd)
            return FfmpegResult(success=True, returncode=0, stderr="", duration_s=1.0)

        runner._run_ffmpeg = mock_run_ffmpeg
        result = runner.encode_hls_variant(
            "in.mp4", "p.m3u8", width=640, height=360, video_bitrate_kbps=400,
            segment_pattern="s%03d.ts",
        )
        assert result.success
        assert captured[0][-1] == "p.m3u8"


class TestRunFfmpeg:
    """Test process handling with a mocked Popen."""

    def test_success(self, tmp_path):
        runner = FfmpegRunner(temp_dir=str(tmp_path))
        process = fake_popen(["Output #0, hls\n"], returncode=0)
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process):
            result = runner._run_ffmpeg(["ffmpeg", "-i", "in.mp4", "out.m3u8"])

        assert result.success
        assert result.error_type is None
        assert result.artifacts_saved == []

    def test_failure_saves_artifacts(self, tmp_path):
        runner = FfmpegRunner(temp_dir=str(tmp_path))
        process = fake_popen(["in.mp4: No such file or directory\n"], returncode=1)
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process):
            result = runner._run_ffmpeg(["ffmpeg", "-i", "in.mp4", "out.m3u8"])

        assert not result.success
        assert result.error_type == FfmpegErrorType.PERMANENT
        assert len(result.artifacts_saved) == 2
        log = next(p for p in result.artifacts_saved if p.suffix == ".log")
        assert "No such file or directory" in log.read_text()

    def test_failure_without_artifacts(self, tmp_path):
        runner = FfmpegRunner(temp_dir=str(tmp_path), save_artifacts_on_failure=False)
        process = fake_popen(["boom\n"], returncode=1)
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process):
            result = runner._run_ffmpeg(["ffmpeg"])
        assert result.artifacts_saved == []
        assert list(tmp_path.iterdir()) == []

    def test_killed_by_signal(self, tmp_path):
        runner = FfmpegRunner(temp_dir=str(tmp_path), save_artifacts_on_failure=False)
        process = fake_popen([], returncode=-9)
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process):
            result = runner._run_ffmpeg(["ffmpeg"])
        assert result.error_type == FfmpegErrorType.PROCESS_KILLED

    def test_timeout_kills_process_tree(self, tmp_path):
        runner = FfmpegRunner(global_timeout_s=5, temp_dir=str(tmp_path), save_artifacts_on_failure=False)
        process = fake_popen([], wait_side_effect=subprocess.TimeoutExpired("ffmpeg", 5))
        with patch("abr_packager.ffmpeg_runner.subprocess.Popen", return_value=process), \
                patch.object(FfmpegRunner, "_kill_process_tree") as kill:
            result = runner._run_ffmpeg(["ffmpeg"])

        kill.assert_called_once()
        assert not result.success
        assert result.returncode == -1
        assert result.error_type == FfmpegErrorType.TIMEOUT
        assert process.wait.call_args.kwargs["timeout"] == 5


class TestFfmpegResult:
    """Test error summaries."""

    def test_error_summary_skips_stats_lines(self):
        result = FfmpegResult(
            success=False,
            returncode=1,
            stderr="frame=10\nfps=25\n[libx264] width not divisible by 2\nConversion failed!\n",
            duration_s=0.1,
        )
        assert result.error_summary() == "[libx264] width not divisible by 2 | Conversion failed!"

    def test_error_summary_empty_stderr(self):
        result = FfmpegResult(success=False, returncode=3, stderr="", duration_s=0.0)
        assert result.error_summary() == "ffmpeg exited with code 3"


class TestCheckFfmpeg:
    """Test dependency verification."""

    def test_found(self):
        with patch("abr_packager.ffmpeg_runner.subprocess.run") as run:
            assert check_ffmpeg() is True
            run.assert_called_once()

    def test_missing(self):
        with patch("abr_packager.ffmpeg_runner.subprocess.run", side_effect=FileNotFoundError):
            assert check_ffmpeg() is False
