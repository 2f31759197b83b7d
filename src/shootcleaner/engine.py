"""Batch enhancement engine: run instruction chains over a batch of images."""

import logging
import re
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from shootcleaner.discovery import is_raw
from shootcleaner.executor import Executor
from shootcleaner.instructions import Format, Instruction, command_for, is_known

logger = logging.getLogger(__name__)

# Extension of the artifacts written for a camera RAW source
RAW_OUTPUT_EXTENSION = ".tif"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.ERROR}

_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.ERROR},
    JobStatus.COMPLETED: set(),
    JobStatus.ERROR: set(),
}


class JobStateError(Exception):
    """Raised on a status transition the job lifecycle does not allow."""


@dataclass
class EnhancementResult:
    """Outcome of one instruction (or a whole job) on one image."""

    success: bool
    original_path: Path
    enhancement_type: str
    command: str | None = None
    output_path: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "original_path": str(self.original_path),
            "enhancement_type": self.enhancement_type,
            "command": self.command,
            "output_path": str(self.output_path) if self.output_path else None,
            "error": self.error,
        }


@dataclass
class EnhancementJob:
    """One source image bound to one run of the pipeline."""

    id: str
    source: Path
    instructions: tuple[Instruction, ...] = ()
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    results: list[EnhancementResult] = field(default_factory=list)
    error: str | None = None

    def _transition(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise JobStateError(
                f"Job {self.id}: cannot move from {self.status.value} "
                f"to {status.value}"
            )
        self.status = status

    def start(self) -> None:
        self._transition(JobStatus.PROCESSING)

    def complete(self) -> None:
        self._transition(JobStatus.COMPLETED)
        self.progress = 100

    def fail(self, message: str) -> None:
        self._transition(JobStatus.ERROR)
        self.error = message

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def output_path(self) -> Path | None:
        """Latest artifact this job produced, if any."""
        for result in reversed(self.results):
            if result.success and result.output_path:
                return result.output_path
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": str(self.source),
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
            "output_path": str(self.output_path) if self.output_path else None,
            "results": [result.to_dict() for result in self.results],
        }


@dataclass(frozen=True)
class BatchProgress:
    completed: int
    total: int
    job_id: str


ProgressCallback = Callable[[BatchProgress], None]


class CancelToken:
    """Flag a running batch checks between jobs.

    Safe to set from a signal handler or another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def artifact_name(
    original_name: str, operation: str, step: int, extension: str | None = None
) -> str:
    """Name of the file written by step ``step`` (1-based) of a chain.

    ``photo.jpg`` + ``modulate`` + 2 -> ``photo_modulate_2.jpg``.
    """
    path = Path(original_name)
    suffix = extension if extension is not None else path.suffix
    return f"{path.stem}_{operation}_{step}{suffix}"


def build_job_id(index: int, path: Path, kind: str = "job") -> str:
    """Stable, filesystem-safe id such as ``job_0003_IMG_1234``."""
    prefix = f"{kind}_{index:04d}_"
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", path.stem).strip("_-")
    if not stem:
        stem = "image"
    max_suffix_len = max(1, 64 - len(prefix))
    return f"{prefix}{stem[:max_suffix_len]}"


def create_jobs(
    paths: Iterable[Path], instructions: Sequence[Instruction]
) -> list[EnhancementJob]:
    """Create one pending job per path, all sharing one instruction chain."""
    chain = tuple(instructions)
    return [
        EnhancementJob(id=build_job_id(index, path), source=path, instructions=chain)
        for index, path in enumerate(paths)
    ]


class BatchEngine:
    """Runs jobs one at a time through an injected executor."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def run_job(self, job: EnhancementJob, output_dir: Path) -> EnhancementJob:
        """Run a job's instruction chain in order.

        Each step reads the previous step's output. The first failing step
        ends the chain and marks the job as failed; results of earlier
        steps are kept.

        Raises:
            FileNotFoundError: If the job's source image does not exist
            JobStateError: If the job is not pending
        """
        job.start()
        logger.info(f"Enhancing {job.source.name} ({job.id})")

        if not job.source.is_file():
            raise FileNotFoundError(f"Source image not found: {job.source}")

        work_dir = output_dir / job.id
        current = job.source
        # RAW sources cannot be written back, so their artifacts are TIFF
        extension = RAW_OUTPUT_EXTENSION if is_raw(job.source) else job.source.suffix
        total_steps = sum(1 for i in job.instructions if is_known(i))
        done = 0

        for step, instruction in enumerate(job.instructions, start=1):
            if not is_known(instruction):
                logger.warning(
                    f"Skipping unknown operation {instruction.operation} "
                    f"for {job.source.name}"
                )
                continue

            if isinstance(instruction, Format):
                extension = instruction.extension

            output_path = work_dir / artifact_name(
                job.source.name, instruction.operation, step, extension
            )
            outcome = self.executor.execute(instruction, current, output_path)

            success = outcome.success and outcome.output_path is not None
            error = outcome.error
            if outcome.success and outcome.output_path is None:
                error = "Executor reported success without an output path"

            job.results.append(
                EnhancementResult(
                    success=success,
                    original_path=current,
                    enhancement_type=instruction.enhancement_type,
                    command=command_for(instruction),
                    output_path=outcome.output_path if success else None,
                    error=None if success else error,
                )
            )

            if not success:
                message = f"Step {step} ({instruction.operation}) failed: {error}"
                logger.error(f"{job.source.name}: {message}")
                job.fail(message)
                return job

            current = outcome.output_path
            done += 1
            job.progress = int(done / total_steps * 100)

        job.complete()
        logger.info(f"Completed {job.source.name} ({done} steps)")
        return job

    def run_batch(
        self,
        jobs: Sequence[EnhancementJob],
        output_dir: Path,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> list[EnhancementJob]:
        """Run every job in order, isolating failures to the job they hit.

        ``on_progress`` is called synchronously before each job starts.
        ``cancel`` is checked between jobs; once set, no further job starts.

        Returns:
            The jobs that were attempted, in order

        Raises:
            ValueError: If job ids repeat or a job is not pending
        """
        ids = [job.id for job in jobs]
        duplicates = sorted({job_id for job_id in ids if ids.count(job_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate job ids in batch: {', '.join(duplicates)}")

        not_pending = [job.id for job in jobs if job.status != JobStatus.PENDING]
        if not_pending:
            raise ValueError(f"Jobs are not pending: {', '.join(not_pending)}")

        total = len(jobs)
        attempted: list[EnhancementJob] = []
        logger.info(f"Starting batch enhancement of {total} images")

        for index, job in enumerate(jobs):
            if cancel is not None and cancel.cancelled:
                logger.warning(f"Batch cancelled after {index} of {total} images")
                break

            if on_progress is not None:
                on_progress(BatchProgress(completed=index, total=total, job_id=job.id))

            try:
                self.run_job(job, output_dir)
            except Exception as e:
                logger.error(f"Failed to enhance {job.source}: {e}")
                if job.status == JobStatus.PENDING:
                    job.start()
                if not job.is_terminal:
                    job.fail(str(e) or type(e).__name__)
                job.results.append(
                    EnhancementResult(
                        success=False,
                        original_path=job.source,
                        enhancement_type="batch_error",
                        error=str(e) or type(e).__name__,
                    )
                )

            attempted.append(job)

        succeeded = sum(1 for job in attempted if job.status == JobStatus.COMPLETED)
        logger.info(f"Batch enhancement complete: {succeeded}/{total} successful")
        return attempted
