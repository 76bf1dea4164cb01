"""Encode job dispatcher.

Fans one input out into one engine invocation per rendition profile:
- Validates the profile set and the input before touching anything
- Creates the output root and every variant directory up front
- Submits all encodes to an executor and returns without waiting
- Reports each job's single terminal state to a completion handler

Variant directories of failed jobs are left on disk for the caller to clean up.
"""

import os
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from loguru import logger

from .engine import EncodeOutcome, EncodeRequest, EncodingEngine
from .errors import PreconditionError
from .models import EncodingConfig, ErrorDetail, JobState, RenditionProfile
from .profiles import validate_profiles, variant_dir_name

PathLike = Union[str, Path]


@dataclass
class EncodeJob:
    """One rendition encode; settles exactly once."""

    index: int
    profile: RenditionProfile
    input_path: Path
    output_dir: Path
    playlist_path: Path
    state: JobState = JobState.PENDING
    error: Optional[ErrorDetail] = None
    duration_s: float = 0.0

    @property
    def relative_playlist_path(self) -> str:
        """Playlist path as referenced from the master manifest."""
        return f"{self.output_dir.name}/{self.playlist_path.name}"

    def succeed(self, duration_s: float = 0.0) -> None:
        self._settle(JobState.SUCCEEDED)
        self.duration_s = duration_s

    def fail(self, error: ErrorDetail, duration_s: float = 0.0) -> None:
        self._settle(JobState.FAILED)
        self.error = error
        self.duration_s = duration_s

    def _settle(self, state: JobState) -> None:
        if self.state is not JobState.PENDING:
            raise RuntimeError(
                f"Job {self.profile.label} already {self.state.value}, cannot become {state.value}"
            )
        self.state = state


@dataclass
class JobHandle:
    """Dispatched job plus the future of its engine call."""

    job: EncodeJob
    future: Optional[Future] = field(default=None, repr=False)


def check_input(input_path: PathLike) -> Path:
    """Ensure the input is an existing, readable regular file.

    Raises:
        PreconditionError: If it is missing, not a file or unreadable
    """
    path = Path(input_path)
    if not path.exists():
        raise PreconditionError(f"Input not found: {path}")
    if not path.is_file():
        raise PreconditionError(f"Input is not a regular file: {path}")
    if not os.access(path, os.R_OK):
        raise PreconditionError(f"Input is not readable: {path}")
    return path


def make_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PreconditionError(f"Cannot create output directory {path}: {e}") from e


class EncodeJobDispatcher:
    """Launches one concurrent encode per rendition profile.

    If no executor is given, each ``dispatch`` call gets its own thread pool
    (one worker per profile unless ``max_workers`` is set) that shuts itself
    down once its jobs finish.
    """

    def __init__(
        self,
        engine: EncodingEngine,
        encoding: Optional[EncodingConfig] = None,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ):
        self.engine = engine
        self.encoding = encoding or EncodingConfig()
        self.executor = executor
        self.max_workers = max_workers

    def prepare(
        self,
        input_path: PathLike,
        output_root: PathLike,
        profiles: Sequence[RenditionProfile],
    ) -> List[EncodeJob]:
        """Validate everything and lay out directories; no encode is started.

        Raises:
            ProfileConfigError: Empty profile set or colliding variant directories
            PreconditionError: Unusable input or output location
        """
        validate_profiles(profiles)
        source = check_input(input_path)
        root = Path(output_root)
        make_dir(root)

        jobs = []
        for index, profile in enumerate(profiles):
            variant_dir = root / variant_dir_name(profile)
            make_dir(variant_dir)
            jobs.append(
                EncodeJob(
                    index=index,
                    profile=profile,
                    input_path=source,
                    output_dir=variant_dir,
                    playlist_path=variant_dir / self.encoding.playlist_name,
                )
            )
        return jobs

    def build_request(self, job: EncodeJob) -> EncodeRequest:
        enc = self.encoding
        return EncodeRequest(
            input_path=str(job.input_path),
            width=job.profile.width,
            height=job.profile.height,
            video_bitrate_kbps=job.profile.bit_rate_kbps,
            video_codec=enc.video_codec,
            audio_codec=enc.audio_codec,
            segment_duration_s=enc.segment_duration_s,
            playlist_type=enc.playlist_type,
            segment_pattern=str(job.output_dir / enc.segment_pattern),
            playlist_path=str(job.playlist_path),
            preset=enc.preset,
        )

    def dispatch(
        self,
        input_path: PathLike,
        output_root: PathLike,
        profiles: Sequence[RenditionProfile],
        on_complete: Callable[[EncodeJob], None],
    ) -> List[JobHandle]:
        """Start every encode and return immediately.

        ``on_complete`` is called exactly once per job, from whichever thread
        finishes it, after the job has reached its terminal state.

        Raises:
            ProfileConfigError: Empty profile set or colliding variant directories
            PreconditionError: Unusable input or output location
        """
        jobs = self.prepare(input_path, output_root, profiles)

        owned = self.executor is None
        executor = self.executor or ThreadPoolExecutor(
            max_workers=self.max_workers or len(jobs),
            thread_name_prefix="encode",
        )

        handles = []
        try:
            for job in jobs:
                request = self.build_request(job)
                try:
                    future = executor.submit(self.engine.encode, request)
                except RuntimeError as e:
                    logger.error("Could not submit {}: {}", job.profile.label, e)
                    job.fail(ErrorDetail.from_exception(e, job.profile.label))
                    on_complete(job)
                    handles.append(JobHandle(job))
                    continue

                logger.debug("Dispatched {} ({})", job.profile.label, job.profile)
                future.add_done_callback(partial(self._settle, job, on_complete))
                handles.append(JobHandle(job, future))
        finally:
            if owned:
                # Queued work still runs; the pool's threads exit when it drains
                executor.shutdown(wait=False)

        logger.info("Dispatched {} encode jobs for {}", len(handles), jobs[0].input_path.name)
        return handles

    @staticmethod
    def _settle(job: EncodeJob, on_complete: Callable[[EncodeJob], None], future: Future) -> None:
        if future.cancelled():
            job.fail(ErrorDetail(message="Encode was cancelled", profile_label=job.profile.label))
            on_complete(job)
            return

        exc = future.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Engine raised while encoding {}", job.profile.label)
            job.fail(ErrorDetail.from_exception(exc, job.profile.label))
        else:
            outcome: EncodeOutcome = future.result()
            if outcome.success:
                job.succeed(outcome.duration_s)
            else:
                error = outcome.error or ErrorDetail(message="Encode failed")
                if error.profile_label is None:
                    error = error.model_copy(update={"profile_label": job.profile.label})
                job.fail(error, outcome.duration_s)
        on_complete(job)
