# tests/unit/trigger/test_directory_trigger.py
"""Tests for the inbound directory trigger."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from hopper.contracts.enums import BatchStatus
from hopper.contracts.errors import JobRepositoryError
from hopper.contracts.parameters import JobParameters
from hopper.engine.operator import JobOperator
from hopper.trigger import DirectoryTrigger
from tests.fixtures.jobs import FailingProcessor, make_chunk_step, make_job

LABELS = {"name": "Enterprise Integration fans"}


@pytest.fixture
def inbound(tmp_path: Path) -> Path:
    directory = tmp_path / "inbound"
    directory.mkdir()
    return directory


def _trigger(operator: JobOperator, inbound: Path, **kwargs: object) -> DirectoryTrigger:
    return DirectoryTrigger(operator, job_name="numbers", directory=inbound, pattern="*.csv", labels=LABELS, **kwargs)  # type: ignore[arg-type]


def _drop(directory: Path, *names: str) -> list[Path]:
    paths = []
    for name in names:
        path = directory / name
        path.write_text("id\n1\n", encoding="utf-8")
        paths.append(path.resolve())
    return paths


def _wait_all(operator: JobOperator, execution_ids: list[int]) -> None:
    for execution_id in execution_ids:
        operator.wait(execution_id, timeout=10)


class TestPollOnce:
    def test_launches_one_execution_per_new_file(self, operator: JobOperator, inbound: Path) -> None:
        operator.register(make_job("numbers"))
        first, second = _drop(inbound, "a.csv", "b.csv")
        _drop(inbound, "notes.txt")
        (inbound / "nested.csv").mkdir()

        result = _trigger(operator, inbound).poll_once()
        _wait_all(operator, [execution.job_execution_id for execution in result.launched])

        files = [execution.parameters.get_string("file") for execution in result.launched]
        assert files == [str(first), str(second)]
        parameters: JobParameters = result.launched[0].parameters
        assert parameters["file"].identifying
        assert not parameters["name"].identifying
        assert parameters.get_string("name") == "Enterprise Integration fans"

    def test_seen_files_not_launched_again(self, operator: JobOperator, inbound: Path) -> None:
        operator.register(make_job("numbers"))
        _drop(inbound, "a.csv")
        trigger = _trigger(operator, inbound)

        first = trigger.poll_once()
        _wait_all(operator, [execution.job_execution_id for execution in first.launched])
        second = trigger.poll_once()

        assert len(first.launched) == 1
        assert second.launched == []
        assert second.rejected == []
        assert len(operator.find_executions("numbers")) == 1

    def test_completed_file_rejected_by_another_trigger(self, operator: JobOperator, inbound: Path) -> None:
        operator.register(make_job("numbers"))
        (path,) = _drop(inbound, "a.csv")
        first = _trigger(operator, inbound).poll_once()
        _wait_all(operator, [execution.job_execution_id for execution in first.launched])

        result = _trigger(operator, inbound).poll_once()

        assert result.launched == []
        assert result.rejected == [path]

    def test_completed_input_archived(self, operator: JobOperator, inbound: Path, tmp_path: Path) -> None:
        operator.register(make_job("numbers"))
        archive = tmp_path / "archive"
        (path,) = _drop(inbound, "a.csv")
        trigger = _trigger(operator, inbound, archive_directory=archive)
        trigger.prepare()

        launched = trigger.poll_once().launched
        _wait_all(operator, [execution.job_execution_id for execution in launched])
        assert trigger.pending == {path: launched[0].job_execution_id}

        result = trigger.poll_once()

        assert result.archived == [archive / "a.csv"]
        assert not path.exists()
        assert (archive / "a.csv").exists()
        assert trigger.pending == {}

    def test_failed_input_left_in_place(self, operator: JobOperator, inbound: Path, tmp_path: Path) -> None:
        operator.register(make_job("numbers", make_chunk_step(items=range(1, 11), processor=FailingProcessor({7}))))
        (path,) = _drop(inbound, "a.csv")
        trigger = _trigger(operator, inbound, archive_directory=tmp_path / "archive")
        trigger.prepare()

        launched = trigger.poll_once().launched
        finished = operator.wait(launched[0].job_execution_id, timeout=10)
        result = trigger.poll_once()

        assert finished.status == BatchStatus.FAILED
        assert result.archived == []
        assert path.exists()
        assert result.launched == []

    def test_repository_failure_defers_file(
        self, operator: JobOperator, inbound: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        operator.register(make_job("numbers"))
        (path,) = _drop(inbound, "a.csv")
        trigger = _trigger(operator, inbound)

        def unavailable(job_name: str, parameters: JobParameters) -> None:
            raise JobRepositoryError("database is locked")

        with monkeypatch.context() as patch:
            patch.setattr(operator, "start", unavailable)
            deferred = trigger.poll_once()
        retried = trigger.poll_once()
        _wait_all(operator, [execution.job_execution_id for execution in retried.launched])

        assert deferred.deferred == [path]
        assert deferred.launched == []
        assert len(retried.launched) == 1


class TestLifecycle:
    def test_prepare_creates_directory(self, operator: JobOperator, tmp_path: Path) -> None:
        directory = tmp_path / "Desktop" / "inbound"
        _trigger(operator, directory).prepare()
        assert directory.is_dir()

    def test_prepare_without_auto_create(self, operator: JobOperator, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _trigger(operator, tmp_path / "missing", auto_create_directory=False).prepare()

    def test_label_must_not_shadow_file_parameter(self, operator: JobOperator, inbound: Path) -> None:
        with pytest.raises(ValueError, match="collides"):
            DirectoryTrigger(operator, job_name="numbers", directory=inbound, labels={"file": "x"})

    def test_poll_interval_must_be_positive(self, operator: JobOperator, inbound: Path) -> None:
        with pytest.raises(ValueError):
            _trigger(operator, inbound, poll_interval=0)

    def test_run_polls_until_stopped(self, operator: JobOperator, inbound: Path) -> None:
        operator.register(make_job("numbers"))
        _drop(inbound, "a.csv")
        trigger = _trigger(operator, inbound, poll_interval=0.01)
        stop = threading.Event()

        watcher = threading.Thread(target=trigger.run, args=(stop,), name="trigger")
        watcher.start()
        try:
            deadline = time.monotonic() + 10
            while not operator.find_executions("numbers") and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            stop.set()
            watcher.join(timeout=10)

        executions = operator.find_executions("numbers")
        assert len(executions) == 1
        assert not watcher.is_alive()
        operator.wait(executions[0].job_execution_id, timeout=10)
