"""Pipeline façade: one input file in, one HLS package (or one error) out.

Usage:
    result = process_for_streaming("upload.mp4", "output/1700000000000")
    if result.ok:
        print(result.manifest_path)
    else:
        print(result.error)

    # Non-blocking
    pipeline = StreamingPipeline(config)
    future = pipeline.submit("upload.mp4", "output/run_001")
    result = future.result()
"""

from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from loguru import logger

from .aggregator import CompletionAggregator
from .dispatcher import EncodeJob, EncodeJobDispatcher, JobHandle
from .engine import EncodingEngine, FfmpegEngine
from .manifest import ManifestAssembler
from .models import PackageResult, PackagerConfig
from .profiles import ProfileCatalog, validate_profiles

PathLike = Union[str, Path]


@dataclass
class PackageBatch:
    """One in-flight invocation: the dispatched jobs and the batch result."""

    handles: List[JobHandle]
    result: "Future[PackageResult]"


class StreamingPipeline:
    """Wires catalog, dispatcher, aggregator and assembler for each invocation.

    Every call to ``start`` gets its own aggregator, so concurrent batches
    share nothing but the engine and (optionally) the executor.
    """

    def __init__(
        self,
        config: Optional[PackagerConfig] = None,
        engine: Optional[EncodingEngine] = None,
        executor: Optional[Executor] = None,
        on_job_complete: Optional[Callable[[EncodeJob], None]] = None,
    ):
        self.config = config or PackagerConfig()
        self.engine = engine or FfmpegEngine(self.config.runner)
        self.catalog = ProfileCatalog(self.config.profiles)
        self.dispatcher = EncodeJobDispatcher(
            self.engine,
            encoding=self.config.encoding,
            executor=executor,
            max_workers=self.config.dispatch.max_workers,
        )
        self.assembler = ManifestAssembler(self.config.manifest)
        self.on_job_complete = on_job_complete

    def start(self, input_path: PathLike, output_root: PathLike) -> PackageBatch:
        """Dispatch all renditions and return their handles with the batch future.

        Raises:
            PreconditionError: Input unusable or output directories not creatable
            ProfileConfigError: Invalid profile set
        """
        profiles = self.catalog.list()
        validate_profiles(profiles)
        logger.info(
            "Packaging {} into {} ({} renditions)", input_path, output_root, len(profiles)
        )
        aggregator = CompletionAggregator(
            total=len(profiles),
            output_root=output_root,
            assembler=self.assembler,
            on_job_complete=self.on_job_complete,
        )
        handles = self.dispatcher.dispatch(
            input_path, output_root, profiles, on_complete=aggregator.record
        )
        return PackageBatch(handles=handles, result=aggregator.result)

    def submit(self, input_path: PathLike, output_root: PathLike) -> "Future[PackageResult]":
        """Dispatch all renditions and return a future for the batch result.

        The future cannot be cancelled; every dispatched encode runs to its end.
        """
        return self.start(input_path, output_root).result

    def process(
        self, input_path: PathLike, output_root: PathLike, timeout: Optional[float] = None
    ) -> PackageResult:
        """Blocking form of ``submit``."""
        return self.submit(input_path, output_root).result(timeout=timeout)


def process_for_streaming(
    input_path: PathLike,
    output_root: PathLike,
    config: Optional[PackagerConfig] = None,
    engine: Optional[EncodingEngine] = None,
) -> PackageResult:
    """Encode ``input_path`` into an ABR HLS package under ``output_root``.

    Returns:
        PackageResult with the master manifest path, or the first job error

    Raises:
        PreconditionError: Input unusable or output directories not creatable
        ProfileConfigError: Invalid profile set
    """
    return StreamingPipeline(config=config, engine=engine).process(input_path, output_root)
