"""Encoding engine capability.

The pipeline never encodes anything itself. It hands an ``EncodeRequest`` to an
``EncodingEngine`` and receives exactly one ``EncodeOutcome`` back. The default
engine shells out to FFmpeg; tests substitute a fake.
"""

from abc import ABC, abstractmethod
from typing import Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .ffmpeg_runner import FfmpegRunner
from .models import ErrorDetail, RunnerConfig


class EncodeRequest(BaseModel):
    """Everything the engine needs to produce one segmented rendition."""

    model_config = ConfigDict(frozen=True)

    input_path: str = Field(..., description="Source video file")
    width: int = Field(..., gt=0, description="Output scale width")
    height: int = Field(..., gt=0, description="Output scale height")
    video_bitrate_kbps: int = Field(..., gt=0, description="Target video bitrate")
    video_codec: str = Field(default="libx264")
    audio_codec: str = Field(default="aac")
    segment_duration_s: int = Field(default=10, gt=0)
    playlist_type: str = Field(default="vod")
    segment_pattern: str = Field(..., description="Segment path pattern inside the variant dir")
    playlist_path: str = Field(..., description="Media playlist output path")
    preset: Optional[str] = Field(default=None)


class EncodeOutcome(BaseModel):
    """Terminal result of one encode: completed, or failed with a reason."""

    success: bool
    error: Optional[ErrorDetail] = None
    duration_s: float = Field(default=0.0, ge=0.0)

    @classmethod
    def completed(cls, duration_s: float = 0.0) -> "EncodeOutcome":
        return cls(success=True, duration_s=duration_s)

    @classmethod
    def failed(cls, error: ErrorDetail, duration_s: float = 0.0) -> "EncodeOutcome":
        return cls(success=False, error=error, duration_s=duration_s)


class EncodingEngine(ABC):
    """Abstract encoder: given a request, produce a segmented stream or fail.

    Implementations must:
    - Return exactly one outcome per call (raising counts as a failure)
    - Write only to the paths named in the request
    - Be callable concurrently from several threads
    """

    @abstractmethod
    def encode(self, request: EncodeRequest) -> EncodeOutcome:
        """Run one encode to completion.

        Args:
            request: Rendition parameters and output locations

        Returns:
            EncodeOutcome describing success or the failure reason
        """
        pass


class FfmpegEngine(EncodingEngine):
    """Engine backed by a fresh ``FfmpegRunner`` per request."""

    def __init__(self, runner_config: Optional[RunnerConfig] = None):
        self.runner_config = runner_config or RunnerConfig()

    def _make_runner(self) -> FfmpegRunner:
        cfg = self.runner_config
        return FfmpegRunner(
            global_timeout_s=cfg.global_timeout_s,
            kill_grace_period_s=cfg.kill_grace_period_s,
            save_artifacts_on_failure=cfg.save_artifacts_on_failure,
            ffmpeg_loglevel=cfg.ffmpeg_loglevel,
            temp_dir=cfg.temp_dir,
        )

    def encode(self, request: EncodeRequest) -> EncodeOutcome:
        label = f"{request.height}p"
        result = self._make_runner().encode_hls_variant(
            request.input_path,
            request.playlist_path,
            width=request.width,
            height=request.height,
            video_bitrate_kbps=request.video_bitrate_kbps,
            segment_pattern=request.segment_pattern,
            video_codec=request.video_codec,
            audio_codec=request.audio_codec,
            segment_duration_s=request.segment_duration_s,
            playlist_type=request.playlist_type,
            preset=request.preset,
        )

        if result.success:
            logger.debug("{} encoded in {:.1f}s", label, result.duration_s)
            return EncodeOutcome.completed(result.duration_s)

        error = ErrorDetail(
            message=result.error_summary(),
            profile_label=label,
            error_type=result.error_type.value if result.error_type else None,
            returncode=result.returncode,
        )
        return EncodeOutcome.failed(error, result.duration_s)
