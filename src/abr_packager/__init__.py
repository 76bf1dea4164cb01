"""Adaptive-bitrate HLS packaging pipeline."""

from .engine import EncodeOutcome, EncodeRequest, EncodingEngine, FfmpegEngine
from .errors import PackagerError, PackagingFailed, PreconditionError, ProfileConfigError
from .models import (
    DEFAULT_PROFILES,
    ErrorDetail,
    PackageResult,
    PackagerConfig,
    RenditionProfile,
)
from .pipeline import PackageBatch, StreamingPipeline, process_for_streaming
from .profiles import ProfileCatalog

__all__ = [
    "DEFAULT_PROFILES",
    "EncodeOutcome",
    "EncodeRequest",
    "EncodingEngine",
    "ErrorDetail",
    "FfmpegEngine",
    "PackageBatch",
    "PackageResult",
    "PackagerConfig",
    "PackagerError",
    "PackagingFailed",
    "PreconditionError",
    "ProfileCatalog",
    "ProfileConfigError",
    "RenditionProfile",
    "StreamingPipeline",
    "process_for_streaming",
]
