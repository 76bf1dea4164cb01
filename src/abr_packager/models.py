"""Pydantic models for configuration, rendition profiles and batch results."""

import re
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import PackagingFailed, ProfileConfigError

_PROFILE_PATTERN = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*@\s*(\d+)\s*(?:k|kbps)?\s*$")


class RenditionProfile(BaseModel):
    """One target rendition: output dimensions plus video bitrate."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0, description="Output width in pixels")
    height: int = Field(gt=0, description="Output height in pixels")
    bit_rate_kbps: int = Field(gt=0, description="Target video bitrate in kbit/s")

    @property
    def label(self) -> str:
        """Directory/display name, e.g. ``720p``."""
        return f"{self.height}p"

    @property
    def bandwidth_bps(self) -> int:
        return self.bit_rate_kbps * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def parse(cls, text: str) -> "RenditionProfile":
        """Parse ``WIDTHxHEIGHT@KBPS`` (e.g. ``1280x720@1000``).

        Raises:
            ProfileConfigError: If the text does not match or values are not positive
        """
        match = _PROFILE_PATTERN.match(text)
        if not match:
            raise ProfileConfigError(
                f"Invalid profile '{text}' (expected WIDTHxHEIGHT@KBPS, e.g. 1280x720@1000)"
            )
        width, height, kbps = (int(g) for g in match.groups())
        if min(width, height, kbps) <= 0:
            raise ProfileConfigError(f"Profile values must be positive: '{text}'")
        return cls(width=width, height=height, bit_rate_kbps=kbps)

    def __str__(self) -> str:
        return f"{self.resolution}@{self.bit_rate_kbps}k"


DEFAULT_PROFILES: tuple = (
    RenditionProfile(width=1920, height=1080, bit_rate_kbps=2000),
    RenditionProfile(width=1280, height=720, bit_rate_kbps=1000),
    RenditionProfile(width=854, height=480, bit_rate_kbps=500),
    RenditionProfile(width=640, height=360, bit_rate_kbps=400),
    RenditionProfile(width=256, height=144, bit_rate_kbps=200),
)


class EncodingConfig(BaseModel):
    """Fixed encoder parameters shared by every rendition."""

    video_codec: str = Field(default="libx264", description="Video codec passed to the engine")
    audio_codec: str = Field(default="aac", description="Audio codec passed to the engine")
    segment_duration_s: int = Field(default=10, gt=0, description="Target HLS segment length")
    playlist_type: Literal["vod", "event"] = Field(
        default="vod", description="HLS playlist type (vod = video-on-demand)"
    )
    segment_pattern: str = Field(
        default="segment%03d.ts", description="Segment file name pattern inside each variant dir"
    )
    playlist_name: str = Field(default="playlist.m3u8", description="Media playlist file name")
    preset: Optional[str] = Field(default=None, description="Optional encoder speed preset")


class RunnerConfig(BaseModel):
    """FFmpeg process controls."""

    global_timeout_s: Optional[int] = Field(
        default=None, gt=0, description="Kill an encode after N seconds (None = no limit)"
    )
    kill_grace_period_s: int = Field(
        default=5, gt=0, description="Grace period between SIGTERM and SIGKILL"
    )
    save_artifacts_on_failure: bool = Field(
        default=True, description="Save FFmpeg logs and commands on failure for debugging"
    )
    ffmpeg_loglevel: str = Field(
        default="info", description="FFmpeg log level: error, warning, info, verbose"
    )
    temp_dir: Optional[str] = Field(
        default=None, description="Directory for failure artifacts (None = system temp)"
    )


class ManifestConfig(BaseModel):
    """Master playlist output settings."""

    filename: str = Field(default="master.m3u8", description="Master playlist file name")
    version: int = Field(default=3, ge=1, description="EXT-X-VERSION written in the header")


class DispatchConfig(BaseModel):
    """Concurrency settings for the job dispatcher."""

    max_workers: Optional[int] = Field(
        default=None, gt=0, description="Concurrent encodes (None = one per profile)"
    )


class PackagerConfig(BaseModel):
    """Complete application configuration with validation."""

    profiles: List[RenditionProfile] = Field(default_factory=lambda: list(DEFAULT_PROFILES))
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "PackagerConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "PackagerConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("profiles"):
            config_dict["profiles"] = [
                p.model_dump() if isinstance(p, RenditionProfile) else p
                for p in cli_args["profiles"]
            ]
        if "segment_duration" in cli_args:
            config_dict["encoding"]["segment_duration_s"] = cli_args["segment_duration"]
        if "workers" in cli_args:
            config_dict["dispatch"]["max_workers"] = cli_args["workers"]
        if "timeout" in cli_args:
            config_dict["runner"]["global_timeout_s"] = cli_args["timeout"]
        if "manifest_name" in cli_args:
            config_dict["manifest"]["filename"] = cli_args["manifest_name"]

        return PackagerConfig.from_dict(config_dict)


class JobState(str, Enum):
    """Encode job lifecycle: pending -> succeeded | failed (exactly once)."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BatchPhase(str, Enum):
    """Aggregator states.

    State transitions:
        collecting → finalizing → done
        collecting → failed
        finalizing → failed     (manifest could not be written)
    """

    COLLECTING = "collecting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class ErrorDetail(BaseModel):
    """A failure captured as data."""

    message: str = Field(..., description="Human-readable failure reason")
    profile_label: Optional[str] = Field(default=None, description="Rendition that failed, if any")
    error_type: Optional[str] = Field(default=None, description="Classification, e.g. permanent")
    returncode: Optional[int] = Field(default=None, description="Engine exit code, if any")

    @classmethod
    def from_exception(cls, exc: BaseException, profile_label: Optional[str] = None) -> "ErrorDetail":
        return cls(
            message=str(exc) or exc.__class__.__name__,
            profile_label=profile_label,
            error_type=exc.__class__.__name__,
        )

    def __str__(self) -> str:
        if self.profile_label:
            return f"[{self.profile_label}] {self.message}"
        return self.message


class RenditionEntry(BaseModel):
    """One stream reference in the master manifest."""

    model_config = ConfigDict(frozen=True)

    profile: RenditionProfile
    playlist_path: str = Field(..., description="Media playlist path relative to the output root")


class PackageResult(BaseModel):
    """Outcome of one pipeline invocation: a manifest path or one error."""

    manifest_path: Optional[Path] = Field(default=None, description="Master manifest on success")
    error: Optional[ErrorDetail] = Field(default=None, description="First failure otherwise")
    renditions: List[RenditionEntry] = Field(
        default_factory=list, description="Renditions listed in the manifest, in order"
    )

    @model_validator(mode="after")
    def exactly_one_outcome(self) -> "PackageResult":
        if (self.manifest_path is None) == (self.error is None):
            raise ValueError("exactly one of manifest_path or error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Path:
        """Return the manifest path or raise ``PackagingFailed``."""
        if self.error is not None:
            raise PackagingFailed(self.error)
        return self.manifest_path
