# src/hopper/trigger/directory.py
"""DirectoryTrigger: launch a job for every new file in an inbound directory.

Each poll does two things, in order:

1. Finalize: check the executions launched for earlier files. Files of
   COMPLETED executions are moved to the archive directory (when one is
   configured); files of FAILED or STOPPED executions stay where they are, so
   the input is never lost before its execution is terminal.
2. Scan: list regular files matching the glob in name order and request a
   launch for each file not seen before. Parameters are the absolute path as
   the identifying ``file`` parameter plus the configured labels as
   non-identifying string parameters.

The repository is what guarantees one accepted execution per file: a second
launch for the same path is rejected as already running or already complete.
A launch that fails because the repository is unavailable leaves the file
unseen, so the next poll tries again. Rejected launches are logged and the
file is not offered again by this trigger.
"""

from __future__ import annotations

import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from hopper.contracts.enums import BatchStatus
from hopper.contracts.errors import JobLaunchError, JobRepositoryError
from hopper.contracts.parameters import JobParameters, JobParametersBuilder

if TYPE_CHECKING:
    from hopper.contracts.execution import JobExecution
    from hopper.engine.operator import JobOperator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PollResult:
    """What one poll did.

    Attributes:
        launched: Executions accepted for new files
        rejected: Files whose launch was rejected
        deferred: Files left for the next poll because the repository failed
        archived: Files moved to the archive directory
    """

    launched: list[JobExecution] = field(default_factory=list)
    rejected: list[Path] = field(default_factory=list)
    deferred: list[Path] = field(default_factory=list)
    archived: list[Path] = field(default_factory=list)


class DirectoryTrigger:
    """Polls a directory and starts one job execution per new file.

    Example:
        trigger = DirectoryTrigger(
            operator,
            job_name="dogs",
            directory=Path.home() / "Desktop" / "inbound",
            labels={"name": "Enterprise Integration fans"},
        )
        stop = threading.Event()
        trigger.run(stop)   # returns once stop is set
    """

    def __init__(
        self,
        operator: JobOperator,
        *,
        job_name: str,
        directory: Path,
        pattern: str = "*",
        file_parameter: str = "file",
        labels: dict[str, str] | None = None,
        poll_interval: float = 1.0,
        auto_create_directory: bool = True,
        archive_directory: Path | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        labels = dict(labels or {})
        if file_parameter in labels:
            raise ValueError(f"Label '{file_parameter}' collides with the file parameter")
        self._operator = operator
        self._job_name = job_name
        self._directory = directory
        self._pattern = pattern
        self._file_parameter = file_parameter
        self._labels = labels
        self._poll_interval = poll_interval
        self._auto_create_directory = auto_create_directory
        self._archive_directory = archive_directory
        self._seen: set[Path] = set()
        self._pending: dict[Path, int] = {}

    @property
    def job_name(self) -> str:
        return self._job_name

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def pending(self) -> dict[Path, int]:
        """Files whose executions have not finished yet, with their execution ids."""
        return dict(self._pending)

    def build_parameters(self, path: Path) -> JobParameters:
        builder = JobParametersBuilder().add_string(self._file_parameter, str(path.resolve()))
        for name, value in self._labels.items():
            builder.add_string(name, value, identifying=False)
        return builder.to_job_parameters()

    def prepare(self) -> None:
        """Make sure the inbound (and archive) directory exists.

        Raises:
            FileNotFoundError: The directory is missing and auto-creation is off
        """
        if self._auto_create_directory:
            self._directory.mkdir(parents=True, exist_ok=True)
        elif not self._directory.is_dir():
            raise FileNotFoundError(f"Inbound directory not found: {self._directory}")
        if self._archive_directory is not None:
            self._archive_directory.mkdir(parents=True, exist_ok=True)

    def _candidates(self) -> list[Path]:
        return sorted(path.resolve() for path in self._directory.glob(self._pattern) if path.is_file())

    def _archive(self, path: Path, archive_directory: Path) -> Path:
        target = archive_directory / path.name
        if target.exists():
            raise FileExistsError(f"Archive target already exists: {target}")
        shutil.move(str(path), str(target))
        return target

    def _finalize(self, result: PollResult) -> None:
        for path, execution_id in list(self._pending.items()):
            status = self._operator.repository.get_job_status(execution_id)
            if not status.is_terminal:
                continue
            del self._pending[path]
            log = logger.bind(path=str(path), job_execution_id=execution_id, status=status.value)
            if status != BatchStatus.COMPLETED or self._archive_directory is None:
                log.info("Input finished")
                continue
            try:
                target = self._archive(path, self._archive_directory)
            except OSError as e:
                log.error("Archiving input failed", error=str(e))
                continue
            # A new file arriving under the same name is a new candidate
            self._seen.discard(path)
            result.archived.append(target)
            log.info("Input archived", archived_to=str(target))

    def poll_once(self) -> PollResult:
        """Finalize finished inputs, then launch executions for new files.

        Raises:
            JobRepositoryError: Execution status could not be read while finalizing
        """
        result = PollResult()
        self._finalize(result)

        for path in self._candidates():
            if path in self._seen:
                continue
            log = logger.bind(path=str(path), job_name=self._job_name)
            try:
                execution = self._operator.start(self._job_name, self.build_parameters(path))
            except JobRepositoryError as e:
                log.error("Launch deferred: job repository unavailable", error=str(e))
                result.deferred.append(path)
                continue
            except JobLaunchError as e:
                log.warning("Launch rejected", error_type=type(e).__name__, error=str(e))
                self._seen.add(path)
                result.rejected.append(path)
                continue
            self._seen.add(path)
            self._pending[path] = execution.job_execution_id
            result.launched.append(execution)
            log.info("Launch accepted", job_execution_id=execution.job_execution_id)
        return result

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set.

        Repository failures are logged and retried on the next poll.
        """
        self.prepare()
        logger.info("Watching directory", directory=str(self._directory), pattern=self._pattern, job_name=self._job_name)
        while not stop_event.is_set():
            try:
                self.poll_once()
            except JobRepositoryError as e:
                logger.error("Poll failed: job repository unavailable", error=str(e))
            stop_event.wait(self._poll_interval)
        logger.info("Stopped watching directory", directory=str(self._directory))
