# tests/unit/plugins/test_tasklets.py
"""Tests for the built-in tasklets."""

import pytest
from structlog.testing import capture_logs

from hopper.contracts.enums import RepeatStatus
from hopper.contracts.errors import JobParametersInvalidError
from hopper.plugins.tasklets import LogParametersTasklet
from tests.fixtures.jobs import make_parameters, make_step_context


class TestLogParametersTasklet:
    def test_logs_rendered_template_and_finishes(self) -> None:
        tasklet = LogParametersTasklet({"template": "setting up the world for {name}"})
        ctx = make_step_context(make_parameters(labels={"name": "Enterprise Integration fans"}), step_name="one")

        with capture_logs() as logs:
            status = tasklet.execute(ctx)

        assert status == RepeatStatus.FINISHED
        assert logs[-1]["event"] == "setting up the world for Enterprise Integration fans"
        assert logs[-1]["step_name"] == "one"

    def test_default_template(self) -> None:
        ctx = make_step_context(make_parameters(name="dogs"))
        assert LogParametersTasklet().render(ctx) == "setting up the world for dogs"

    def test_missing_parameter(self) -> None:
        tasklet = LogParametersTasklet({"template": "loading {file}"})
        with pytest.raises(JobParametersInvalidError, match="needs job parameter 'file'"):
            tasklet.execute(make_step_context())
