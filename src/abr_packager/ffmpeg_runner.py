"""FFmpeg runner for HLS variant encodes.

Runs one FFmpeg process per call with:
- Process isolation with subprocess.Popen
- Optional global timeout with process tree cleanup (POSIX + Windows)
- Stderr collected on a reader thread so the pipe never fills
- Error classification
- Artifact preservation on failure (error log + reproducible command script)

A runner tracks a single process at a time. Concurrent encodes each get their
own runner instance.
"""

import os
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

import imageio_ffmpeg
import psutil
from loguru import logger


class FfmpegErrorType(Enum):
    """FFmpeg error classification."""
    PERMANENT = "permanent"     # File not found, invalid format, codec error
    TRANSIENT = "transient"     # I/O stall, disk full
    TIMEOUT = "timeout"         # Global timeout exceeded
    PROCESS_KILLED = "killed"   # Terminated by a signal


@dataclass
class FfmpegResult:
    """Result of FFmpeg execution."""
    success: bool
    returncode: int
    stderr: str
    duration_s: float
    error_type: Optional[FfmpegErrorType] = None
    artifacts_saved: List[Path] = field(default_factory=list)

    def error_summary(self, max_lines: int = 3) -> str:
        """Last non-empty stderr lines, skipping ``key=value`` stats (FFmpeg prints the cause last)."""
        lines = [
            line.strip() for line in self.stderr.splitlines()
            if line.strip() and "=" not in line.split(" ", 1)[0]
        ]
        if not lines:
            return f"ffmpeg exited with code {self.returncode}"
        return " | ".join(lines[-max_lines:])


def get_ffmpeg_exe() -> str:
    """Get FFmpeg executable path."""
    return imageio_ffmpeg.get_ffmpeg_exe()


def check_ffmpeg() -> bool:
    """Verify ffmpeg is installed and runs."""
    try:
        subprocess.run(
            [get_ffmpeg_exe(), "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return True
    except (FileNotFoundError, subprocess.CalledProcessError, OSError, RuntimeError):
        return False


class FfmpegRunner:
    """FFmpeg process wrapper with timeout and failure artifacts.

    Example:
        >>> runner = FfmpegRunner(global_timeout_s=3600)
        >>> result = runner.encode_hls_variant(
        ...     input_path="input.mp4",
        ...     playlist_path="out/720p/playlist.m3u8",
        ...     width=1280,
        ...     height=720,
        ...     video_bitrate_kbps=1000,
        ...     segment_pattern="out/720p/segment%03d.ts",
        ... )
        >>> result.success
        True
    """

    def __init__(
        self,
        global_timeout_s: Optional[int] = None,
        kill_grace_period_s: int = 5,
        save_artifacts_on_failure: bool = True,
        ffmpeg_loglevel: str = "info",
        temp_dir: Optional[str] = None,
    ):
        """Initialize FFmpeg runner.

        Args:
            global_timeout_s: Maximum duration for one FFmpeg process (None = unlimited)
            kill_grace_period_s: Grace period between SIGTERM and SIGKILL
            save_artifacts_on_failure: Save logs and commands on failure
            ffmpeg_loglevel: FFmpeg log level (error, warning, info, verbose)
            temp_dir: Directory for failure artifacts (None = system temp)
        """
        self.global_timeout_s = global_timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.save_artifacts_on_failure = save_artifacts_on_failure
        self.ffmpeg_loglevel = ffmpeg_loglevel
        self.temp_dir = temp_dir

        self._process: Optional[subprocess.Popen] = None
        self._stderr_lines: List[str] = []

    def build_hls_command(
        self,
        input_path: str,
        playlist_path: str,
        width: int,
        height: int,
        video_bitrate_kbps: int,
        segment_pattern: str,
        video_codec: str = "libx264",
        audio_codec: str = "aac",
        segment_duration_s: int = 10,
        playlist_type: str = "vod",
        preset: Optional[str] = None,
    ) -> List[str]:
        """Build the FFmpeg argument list for one HLS rendition."""
        cmd = [
            get_ffmpeg_exe(),
            "-y",
            "-i", input_path,
            "-vf", f"scale=w={width}:h={height}",
            "-c:v", video_codec,
            "-b:v", f"{video_bitrate_kbps}k",
        ]
        if preset:
            cmd.extend(["-preset", preset])
        cmd.extend([
            "-c:a", audio_codec,
            "-f", "hls",
            "-hls_time", str(segment_duration_s),
            "-hls_playlist_type", playlist_type,
            "-hls_segment_filename", segment_pattern,
            "-loglevel", self.ffmpeg_loglevel,
            playlist_path,
        ])
        return cmd

    def encode_hls_variant(self, input_path: str, playlist_path: str, **options) -> FfmpegResult:
        """Encode ``input_path`` into a segmented HLS rendition at ``playlist_path``.

        Keyword options are those of ``build_hls_command``.
        """
        cmd = self.build_hls_command(input_path, playlist_path, **options)
        return self._run_ffmpeg(cmd)

    def _run_ffmpeg(self, cmd: List[str]) -> FfmpegResult:
        """Execute FFmpeg with timeout enforcement, collecting stderr."""
        start_time = time.time()
        self._stderr_lines = []
        logger.debug("Running: {}", " ".join(cmd))

        self._process = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
            start_new_session=(os.name == "posix"),
        )
        reader = threading.Thread(
            target=self._drain_stderr,
            args=(self._process.stderr,),
            daemon=True,
        )
        reader.start()

        timed_out = False
        try:
            returncode = self._process.wait(timeout=self.global_timeout_s)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning("FFmpeg exceeded {}s, killing process tree", self.global_timeout_s)
            self._kill_process_tree()
            returncode = -1
        except BaseException:
            self._kill_process_tree()
            raise
        finally:
            reader.join(timeout=2)
            self._process = None

        stderr = "".join(self._stderr_lines)
        error_type = None
        if timed_out:
            error_type = FfmpegErrorType.TIMEOUT
        elif returncode < 0:
            error_type = FfmpegErrorType.PROCESS_KILLED
        elif returncode != 0:
            error_type = self._classify_error(stderr)

        artifacts = []
        if returncode != 0 and self.save_artifacts_on_failure:
            artifacts = self._save_failure_artifacts(cmd, stderr)

        return FfmpegResult(
            success=(returncode == 0),
            returncode=returncode,
            stderr=stderr,
            duration_s=time.time() - start_time,
            error_type=error_type,
            artifacts_saved=artifacts,
        )

    def _drain_stderr(self, stderr_stream) -> None:
        for line in stderr_stream:
            self._stderr_lines.append(line)

    def _kill_process_tree(self) -> None:
        """Kill FFmpeg and its children: SIGTERM, grace period, then SIGKILL."""
        if not self._process:
            return

        try:
            parent = psutil.Process(self._process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=self.kill_grace_period_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        if os.name == "posix":
            try:
                os.killpg(self._process.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass

        try:
            self._process.wait(timeout=self.kill_grace_period_s)
        except subprocess.TimeoutExpired:
            logger.error("FFmpeg pid {} did not exit after SIGKILL", self._process.pid)

    def _classify_error(self, stderr: str) -> FfmpegErrorType:
        """Classify FFmpeg error from its stderr output."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unknown encoder",
            "unsupported codec",
            "invalid codec",
            "moov atom not found",
            "corrupt",
        ]
        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        transient_patterns = [
            "i/o error",
            "no space left on device",
            "disk full",
            "resource temporarily unavailable",
        ]
        for pattern in transient_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.TRANSIENT

        return FfmpegErrorType.TRANSIENT

    def _save_failure_artifacts(self, cmd: List[str], stderr: str) -> List[Path]:
        """Save ``ffmpeg_error_*.log`` and a reproducible ``ffmpeg_cmd_*.sh``.

        Artifact saving is best-effort; an unwritable temp dir only logs a warning.
        """
        artifacts = []
        temp_dir = self._get_temp_dir()
        stamp = f"{int(time.time())}_{os.getpid()}_{threading.get_ident()}"

        log_path = temp_dir / f"ffmpeg_error_{stamp}.log"
        try:
            with open(log_path, "w", encoding="utf-8") as f:
                f.write("=" * 80 + "\n")
                f.write("FFmpeg Error Log\n")
                f.write(f"Timestamp: {time.ctime()}\n")
                f.write("=" * 80 + "\n\n")
                f.write("COMMAND:\n")
                f.write(" ".join(cmd) + "\n\n")
                f.write("STDERR:\n")
                f.write(stderr or "(empty)\n")
            artifacts.append(log_path)
        except OSError as e:
            logger.warning("Failed to save FFmpeg error log: {}", e)

        script_path = temp_dir / f"ffmpeg_cmd_{stamp}.sh"
        try:
            with open(script_path, "w", encoding="utf-8") as f:
                f.write("#!/bin/bash\n")
                f.write("# Reproducible FFmpeg command\n\n")
                quoted = [
                    f"'{arg}'" if any(c in arg for c in " $`\"\\%") else arg
                    for arg in cmd
                ]
                f.write(" \\\n  ".join(quoted) + "\n")
            script_path.chmod(0o755)
            artifacts.append(script_path)
        except OSError as e:
            logger.warning("Failed to save FFmpeg command script: {}", e)

        if artifacts:
            logger.info("FFmpeg failure artifacts saved to {}", temp_dir)
        return artifacts

    def _get_temp_dir(self) -> Path:
        temp_dir = Path(self.temp_dir) if self.temp_dir else Path(tempfile.gettempdir())
        temp_dir.mkdir(parents=True, exist_ok=True)
        return temp_dir
