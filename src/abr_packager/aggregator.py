"""Completion aggregator: batch state and the single finalize gate.

State transitions:
    collecting → finalizing → done      (all jobs succeeded, manifest written)
    collecting → failed                 (at least one job failed)
    finalizing → failed                 (manifest write raised)

Completion events may arrive concurrently from any worker thread. All
mutation of ``BatchState`` happens under one lock, and the move out of
``collecting`` is a compare-and-set under that lock, so the batch resolves
exactly once whatever the arrival interleaving.
"""

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from loguru import logger

from .dispatcher import EncodeJob
from .manifest import ManifestAssembler
from .models import BatchPhase, ErrorDetail, JobState, PackageResult, RenditionEntry


@dataclass
class BatchState:
    """Per-invocation progress, owned by one aggregator."""

    total: int
    completed: int = 0
    slots: List[Optional[RenditionEntry]] = field(default_factory=list)
    first_error: Optional[ErrorDetail] = None
    phase: BatchPhase = BatchPhase.COLLECTING

    def __post_init__(self):
        if not self.slots:
            self.slots = [None] * self.total

    @property
    def successes(self) -> List[RenditionEntry]:
        """Successful renditions in catalog order."""
        return [entry for entry in self.slots if entry is not None]


class CompletionAggregator:
    """Collects job outcomes and finalizes the batch exactly once.

    Args:
        total: Number of dispatched jobs
        output_root: Package root the manifest is written under
        assembler: Writes the manifest on full success
        on_job_complete: Optional hook called after each job is recorded
    """

    def __init__(
        self,
        total: int,
        output_root: Union[str, Path],
        assembler: Optional[ManifestAssembler] = None,
        on_job_complete: Optional[Callable[[EncodeJob], None]] = None,
    ):
        if total <= 0:
            raise ValueError("total must be positive")
        self.state = BatchState(total=total)
        self.output_root = Path(output_root)
        self.assembler = assembler or ManifestAssembler()
        self.on_job_complete = on_job_complete
        self.result: "Future[PackageResult]" = Future()
        # RUNNING from the start, so cancel() always returns False
        self.result.set_running_or_notify_cancel()
        self.finalize_count = 0
        self._reported = set()
        self._lock = threading.Lock()

    @property
    def phase(self) -> BatchPhase:
        return self.state.phase

    def record(self, job: EncodeJob) -> None:
        """Record one job's terminal state; finalize when it was the last one."""
        if job.state is JobState.PENDING:
            raise RuntimeError(f"Job {job.profile.label} reported before settling")

        with self._lock:
            state = self.state
            if state.completed >= state.total:
                raise RuntimeError(f"More completions than dispatched jobs ({state.total})")
            if job.index in self._reported:
                raise RuntimeError(f"Job {job.profile.label} reported twice")

            self._reported.add(job.index)
            state.completed += 1
            if job.state is JobState.SUCCEEDED:
                state.slots[job.index] = RenditionEntry(
                    profile=job.profile, playlist_path=job.relative_playlist_path
                )
            elif state.first_error is None:
                state.first_error = job.error

            should_finalize = (
                state.completed == state.total and state.phase is BatchPhase.COLLECTING
            )
            if should_finalize:
                state.phase = (
                    BatchPhase.FAILED if state.first_error is not None else BatchPhase.FINALIZING
                )
                self.finalize_count += 1
            completed = state.completed

        if job.state is JobState.SUCCEEDED:
            logger.info("[{}/{}] {} finished", completed, self.state.total, job.profile.label)
        else:
            logger.error("[{}/{}] {} failed: {}", completed, self.state.total, job.profile.label, job.error)

        if self.on_job_complete is not None:
            try:
                self.on_job_complete(job)
            except Exception:
                logger.exception("Job completion hook failed")

        if should_finalize:
            self._finalize()

    def _finalize(self) -> None:
        # Only the thread that won the compare-and-set gets here
        state = self.state
        if state.phase is BatchPhase.FAILED:
            logger.error("Packaging failed; no manifest written: {}", state.first_error)
            self.result.set_result(PackageResult(error=state.first_error))
            return

        successes = state.successes
        try:
            manifest_path = self.assembler.assemble(self.output_root, successes)
        except Exception as e:
            logger.exception("Could not write master manifest")
            with self._lock:
                state.phase = BatchPhase.FAILED
                state.first_error = ErrorDetail.from_exception(e)
            self.result.set_result(PackageResult(error=state.first_error))
            return

        with self._lock:
            state.phase = BatchPhase.DONE
        logger.success("Package ready: {}", manifest_path)
        self.result.set_result(PackageResult(manifest_path=manifest_path, renditions=successes))
