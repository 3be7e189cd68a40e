# tests/integration/test_dogs_job.py
"""The dogs example job end to end: trigger, CSV reader, database writer.

Runs against a SQLite file so the repository tables and the dogs table
share one database, as they do in a real deployment.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from sqlalchemy import text

from hopper.assembly import Application, build_application
from hopper.contracts.enums import BatchStatus
from hopper.contracts.execution import JobExecution, StepExecution
from hopper.core.config import load_settings

pytestmark = pytest.mark.integration

EXAMPLE_DIR = Path(__file__).resolve().parents[2] / "examples" / "dogs"


@pytest.fixture
def inbound(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    directory = tmp_path / "inbound"
    monkeypatch.setenv("HOPPER_INBOUND", str(directory))
    monkeypatch.setenv("HOPPER_REPOSITORY_URL", f"sqlite:///{tmp_path / 'dogs.db'}")
    return directory


def _application(settings_path: Path) -> Application:
    app = build_application(load_settings(settings_path))
    assert app.trigger is not None
    app.trigger.prepare()
    return app


def _launch_dogs(app: Application, inbound: Path) -> JobExecution:
    assert app.trigger is not None
    shutil.copy(EXAMPLE_DIR / "dogs.csv", inbound / "dogs.csv")
    result = app.trigger.poll_once()
    assert len(result.launched) == 1
    return app.operator.wait(result.launched[0].job_execution_id, timeout=30)


def _step(app: Application, execution: JobExecution, name: str) -> StepExecution:
    return next(step for step in app.operator.get_execution(execution.job_execution_id).step_executions if step.step_name == name)


def _dogs(app: Application) -> list[tuple[int, str]]:
    with app.db.connection() as conn:
        return [(row.id, row.name) for row in conn.execute(text("select id, name from dogs order by id"))]


class TestDogsJob:
    def test_rejected_record_fails_after_first_chunk(self, inbound: Path) -> None:
        with _application(EXAMPLE_DIR / "settings.yaml") as app:
            finished = _launch_dogs(app, inbound)

            assert finished.status == BatchStatus.FAILED
            assert finished.exit_description == "RecordRejectedError: couldn't continue: id=101"
            assert finished.parameters.get_string("name") == "Enterprise Integration fans"
            assert _step(app, finished, "one").status == BatchStatus.COMPLETED
            two = _step(app, finished, "two")
            assert two.status == BatchStatus.FAILED
            assert (two.write_count, two.commit_count) == (5, 1)
            assert [dog_id for dog_id, _ in _dogs(app)] == [1, 2, 3, 4, 5]

    def test_restart_after_fixing_input_resumes(self, inbound: Path) -> None:
        with _application(EXAMPLE_DIR / "settings.yaml") as app:
            failed = _launch_dogs(app, inbound)
            path = inbound / "dogs.csv"
            path.write_text(path.read_text(encoding="utf-8").replace("101,Bruno", "7,Bruno"), encoding="utf-8")

            restarted = app.operator.restart(failed.job_execution_id)
            finished = app.operator.wait(restarted.job_execution_id, timeout=30)

            assert finished.status == BatchStatus.COMPLETED
            assert finished.resumed_from == failed.job_execution_id
            two = _step(app, finished, "two")
            assert (two.read_count, two.write_count) == (5, 5)
            assert _dogs(app)[6] == (7, "Bruno")
            assert len(_dogs(app)) == 10

    def test_skip_limit_lets_the_job_complete(self, inbound: Path, tmp_path: Path) -> None:
        content = (EXAMPLE_DIR / "settings.yaml").read_text(encoding="utf-8")
        skip = "        log_calls: true\n        skip:\n          limit: 1\n          skippable: [RecordRejectedError]\n"
        settings_path = tmp_path / "settings.yaml"
        settings_path.write_text(content.replace("        log_calls: true\n", skip), encoding="utf-8")
        shutil.copy(EXAMPLE_DIR / "schema.sql", tmp_path / "schema.sql")

        with _application(settings_path) as app:
            finished = _launch_dogs(app, inbound)

            assert finished.status == BatchStatus.COMPLETED
            two = _step(app, finished, "two")
            assert (two.read_count, two.write_count, two.process_skip_count) == (10, 9, 1)
            assert (101, "Bruno") not in _dogs(app)
            assert (10, "Cooper") in _dogs(app)

