"""Tests for the run controller."""

from __future__ import annotations

import json
import re
from pathlib import Path

import httpx
import pytest

from suiterunner.config import RunnerSettings
from suiterunner.dsl.parser import SuiteLoadError
from suiterunner.orchestrator.controller import (
    ParallelRunResult,
    RunController,
    SuiteNotFoundError,
    generate_run_name,
)
from suiterunner.orchestrator.target import TargetFormatError
from suiterunner.runner.custom_steps import CustomStepRegistry
from suiterunner.variables.registry import Variable, VariableType
from suiterunner.variables.store import VariableStore


def users_service(request: httpx.Request) -> httpx.Response:
    if request.method == "GET" and request.url.path == "/users/1":
        return httpx.Response(200, json={"id": 1, "name": "Ada"})
    if request.method == "GET":
        return httpx.Response(404, json={"error": "not found"})
    return httpx.Response(201, json={"id": 2, **json.loads(request.content)})


@pytest.fixture
def controller(settings: RunnerSettings, store: VariableStore, session_factory, suites_dir: Path):
    client = httpx.Client(transport=httpx.MockTransport(users_service))
    store.set_global("userId", 1)
    store.set_global("username", "ada")
    yield RunController(
        settings,
        store=store,
        environment={},
        custom_steps=CustomStepRegistry(),
        client=client,
        session_factory=session_factory,
    )
    client.close()


class TestRunTargets:
    """Tests for single-target runs."""

    def test_suite_target(self, controller: RunController, settings: RunnerSettings) -> None:
        summary = controller.run("api-1:Users API")

        assert summary.success
        assert summary.suite_name == "Users API"
        assert summary.total_data_sets == 3
        assert summary.tags == {"env": "qa", "layer": "api"}
        assert Path(summary.report_path).parent == Path(settings.reports_dir)

        report = json.loads(Path(summary.report_path).read_text())
        assert report["summary"]["passed"] == 3
        assert len(report["results"]) == 3

    def test_test_case_target(self, controller: RunController) -> None:
        summary = controller.run("api-1:Users API > tc-2:Create user")

        assert summary.suite_name == "Create user (Users API)"
        assert summary.total_data_sets == 1

    def test_test_data_target(self, controller: RunController) -> None:
        summary = controller.run("api-1:Users API > tc-1:Get user > 1:Missing user")

        assert summary.suite_name == "Missing user (Get user > Users API)"
        assert summary.total_data_sets == 1
        assert summary.passed == 1

    def test_suite_matched_by_name_only(self, controller: RunController) -> None:
        summary = controller.run("unknown-id:Login UI")
        assert summary.suite_name == "Login UI"

    def test_missing_test_case_is_run_error(self, controller: RunController) -> None:
        summary = controller.run("api-1:Users API > tc-9:Nope")

        assert not summary.success
        assert summary.total_data_sets == 0
        assert summary.errors == ["TestCase not found: tc-9:Nope"]
        assert Path(summary.report_path).exists()

    def test_unknown_suite(self, controller: RunController) -> None:
        with pytest.raises(SuiteNotFoundError, match="Suite not found: zz:Nowhere"):
            controller.run("zz:Nowhere")

    def test_bad_target(self, controller: RunController) -> None:
        with pytest.raises(TargetFormatError):
            controller.run("no colon here")

    def test_file_run(self, controller: RunController, suites_dir: Path) -> None:
        summary = controller.run(file=suites_dir / "login-ui.json")

        assert summary.suite_name == "Login UI"
        assert summary.step_statistics.total == 3
        assert summary.step_statistics.passed == 3

    def test_file_with_mismatched_target(self, controller: RunController, suites_dir: Path) -> None:
        assert controller.run("ui-1:Login UI", file=suites_dir / "users-api.json") is None

    def test_filters_skip_suite(self, controller: RunController) -> None:
        assert controller.run("api-1:Users API", filters={"testType": "UI"}) is None

    def test_local_variables_wiped(self, controller: RunController, store: VariableStore) -> None:
        store.scope("api-1", "tc-1").set("scratch", "x", local=True)
        store.registry.add_variable(
            Variable(name="token", value="t", type=VariableType.LOCAL, suite_id="api-1", test_case_id="tc-1")
        )

        controller.run("api-1:Users API")

        assert not store.scope("api-1", "tc-1").has("scratch")
        assert store.registry.get_variables("api-1", "tc-1")["local"] == []
        assert store.get_global("userName") == "Ada"


class TestParallelRun:
    """Tests for running the whole suites directory."""

    def test_runs_every_suite(self, controller: RunController, settings: RunnerSettings) -> None:
        result = controller.run()

        assert isinstance(result, ParallelRunResult)
        assert result.success
        assert result.max_parallel == settings.max_parallel_suites
        assert sorted(s.suite_name for s in result.summaries) == ["Login UI", "Users API"]
        assert {s.run_id for s in result.summaries} == {result.run_id}
        assert len(list(Path(settings.reports_dir).glob("result-*.json"))) == 2

    def test_filters(self, controller: RunController, suites_dir: Path) -> None:
        result = controller.run(filters={"layer": "api"})

        assert [s.suite_name for s in result.summaries] == ["Users API"]
        assert result.skipped_suites == [str(suites_dir / "login-ui.json")]

    def test_broken_suite_file(self, controller: RunController, suites_dir: Path) -> None:
        broken = suites_dir / "broken.json"
        broken.write_text("{not json")

        result = controller.run()

        assert not result.success
        assert list(result.failed_suites) == [str(broken)]
        assert "Invalid JSON" in result.failed_suites[str(broken)]
        assert len(result.summaries) == 2

    def test_missing_suites_dir(self, settings: RunnerSettings, store: VariableStore) -> None:
        controller = RunController(settings, store=store, environment={}, custom_steps=CustomStepRegistry())

        with pytest.raises(SuiteLoadError, match="Suites directory not found"):
            controller.run()


def test_generate_run_name() -> None:
    assert re.fullmatch(r"Run #\d{1,3} - \d{2}/\d{2}/\d{4}, \d{2}:\d{2}:\d{2} (AM|PM)", generate_run_name())
