"""Tests for the partial-success aggregator."""

from __future__ import annotations

from pathlib import Path

import pytest

from autodev.core.aggregator import PartialSuccessAggregator, partition_files
from autodev.core.circuit_breaker import CircuitBreakerRegistry
from autodev.core.errors import StructuralError
from autodev.core.failover import FailoverController, ModelCandidate
from autodev.core.graceful_degradation import GracefulDegradation
from autodev.core.session import FileTargets, PlanMilestone
from autodev.metrics.observability import MetricsCollector
from autodev.utils.sanitization import PathTraversalError

from conftest import FakeInvoker, FakeSourceControl, code_for, files_in_prompt, no_sleep, timeout_error


def milestone(*paths: str, delete: tuple[str, ...] = ()) -> PlanMilestone:
    return PlanMilestone(
        name="Core",
        description="Core module",
        file_targets=FileTargets(create=list(paths), delete=list(delete)),
    )


def failing_for(*bad_paths: str):
    """Coder response that times out when any assigned file is in ``bad_paths``."""
    def respond(prompt: str):
        if set(files_in_prompt(prompt)) & set(bad_paths):
            raise timeout_error("coder-model")
        return code_for(prompt)
    return respond


def make_aggregator(
    project: Path,
    invoker: FakeInvoker,
    source_control: FakeSourceControl,
    *,
    min_success_rate: float = 0.5,
    degradation: bool = False,
    metrics: MetricsCollector | None = None,
) -> PartialSuccessAggregator:
    failover = FailoverController(
        {"coder": [ModelCandidate("coder-model", 1)]},
        invoker,
        CircuitBreakerRegistry(failure_threshold=100),
        GracefulDegradation(enabled=degradation),
        sleep=no_sleep,
    )
    return PartialSuccessAggregator(
        failover,
        source_control,
        project,
        min_success_rate=min_success_rate,
        metrics=metrics,
    )


class TestPartitionFiles:
    """Tests for partition_files."""

    def test_even_split(self):
        assert partition_files(["a", "b", "c", "d"], 2) == [["a", "b"], ["c", "d"]]

    def test_uneven_split_is_contiguous(self):
        assert partition_files(["a", "b", "c", "d", "e"], 3) == [["a", "b"], ["c", "d"], ["e"]]

    def test_fewer_files_than_workers(self):
        assert partition_files(["a", "b"], 4) == [["a"], ["b"]]

    def test_files_per_worker_limits_subsets(self):
        assert partition_files(["a", "b", "c", "d"], 4, files_per_worker=2) == [["a", "b"], ["c", "d"]]

    def test_no_files_yields_single_empty_subset(self):
        assert partition_files([], 3) == [[]]

    def test_duplicates_are_dropped(self):
        subsets = partition_files(["a", "a", "b"], 2)
        assert subsets == [["a"], ["b"]]


class TestAcceptance:
    """Success-rate thresholds and partial acceptance."""

    @pytest.mark.asyncio
    async def test_all_workers_succeed(self, temp_project_dir: Path, source_control: FakeSourceControl):
        aggregator = make_aggregator(temp_project_dir, FakeInvoker(defaults={"coder-model": code_for}), source_control)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py", "c.py"), 3)

        assert outcome.accepted is True
        assert outcome.partial_success is False
        assert outcome.failed_worker_count == 0
        assert sorted(outcome.applied_files) == ["a.py", "b.py", "c.py"]
        assert (temp_project_dir / "b.py").read_text() == "# b.py\nVALUE = 1\n"
        assert source_control.commits == ["autodev: Core"]
        assert outcome.commit_revision == "rev-1"

    @pytest.mark.asyncio
    async def test_two_of_four_is_accepted_as_partial(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        """Exactly 50% success at min_success_rate 0.5 is accepted."""
        invoker = FakeInvoker(defaults={"coder-model": failing_for("c.py", "d.py")})
        metrics = MetricsCollector("s1")
        aggregator = make_aggregator(temp_project_dir, invoker, source_control, metrics=metrics)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py", "c.py", "d.py"), 4)

        assert outcome.accepted is True
        assert outcome.partial_success is True
        assert outcome.failed_worker_count == 2
        assert outcome.success_rate == pytest.approx(0.5)
        assert sorted(outcome.applied_files) == ["a.py", "b.py"]
        assert sorted(outcome.failed_files) == ["c.py", "d.py"]
        assert not (temp_project_dir / "c.py").exists()
        assert metrics.metrics.milestones_partial == 1
        assert metrics.metrics.workers_failed == 2

    @pytest.mark.asyncio
    async def test_below_threshold_is_rejected(self, temp_project_dir: Path, source_control: FakeSourceControl):
        """Two of four succeeding is rejected at min_success_rate 0.6."""
        invoker = FakeInvoker(defaults={"coder-model": failing_for("c.py", "d.py")})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control, min_success_rate=0.6)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py", "c.py", "d.py"), 4)

        assert outcome.accepted is False
        assert outcome.should_rollback is True
        assert outcome.applied_files == []
        assert source_control.commits == []
        assert not (temp_project_dir / "a.py").exists()

    @pytest.mark.asyncio
    async def test_one_of_three_is_rejected(self, temp_project_dir: Path, source_control: FakeSourceControl):
        invoker = FakeInvoker(defaults={"coder-model": failing_for("b.py", "c.py")})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py", "c.py"), 3)

        assert outcome.accepted is False
        assert outcome.failed_worker_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_invoker_error_counts_as_failure(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        def respond(prompt: str):
            if "b.py" in files_in_prompt(prompt):
                raise RuntimeError("worker crashed")
            return code_for(prompt)

        aggregator = make_aggregator(temp_project_dir, FakeInvoker(defaults={"coder-model": respond}), source_control)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py"), 2)

        assert outcome.accepted is True
        assert outcome.failed_worker_count == 1
        assert outcome.failed_files == ["b.py"]

    @pytest.mark.asyncio
    async def test_empty_coder_output_is_failure(self, temp_project_dir: Path, source_control: FakeSourceControl):
        aggregator = make_aggregator(
            temp_project_dir, FakeInvoker(defaults={"coder-model": {"files": []}}), source_control
        )

        outcome = await aggregator.run_milestone(milestone("a.py"), 1)

        assert outcome.accepted is False
        assert outcome.worker_results[0].error_message == "Coder returned no files"

    @pytest.mark.asyncio
    async def test_degraded_worker_needs_user_input(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        invoker = FakeInvoker(defaults={"coder-model": timeout_error("coder-model")})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control, degradation=True)

        outcome = await aggregator.run_milestone(milestone("src/app.py"), 1)

        assert outcome.accepted is True
        assert outcome.degraded is True
        assert outcome.needs_user_input is True
        assert "Manual implementation needed" in (temp_project_dir / "src" / "app.py").read_text()
        assert outcome.placeholder_files == ["src/app.py"]

    @pytest.mark.asyncio
    async def test_degraded_worker_keeps_existing_file(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        (temp_project_dir / "src").mkdir()
        (temp_project_dir / "src" / "app.py").write_text("VALUE = 1\n")
        invoker = FakeInvoker(defaults={"coder-model": timeout_error("coder-model")})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control, degradation=True)
        target = PlanMilestone(
            name="Core",
            description="Extend the app",
            file_targets=FileTargets(modify=["src/app.py"]),
        )

        outcome = await aggregator.run_milestone(target, 1)

        assert outcome.accepted is True
        assert (temp_project_dir / "src" / "app.py").read_text() == "VALUE = 1\n"
        assert outcome.placeholder_files == ["src/app.py.manual.md"]
        assert "Manual implementation needed" in (temp_project_dir / "src" / "app.py.manual.md").read_text()

    @pytest.mark.asyncio
    async def test_deletes_applied_on_acceptance(self, temp_project_dir: Path, source_control: FakeSourceControl):
        (temp_project_dir / "old.py").write_text("x = 1\n")
        aggregator = make_aggregator(temp_project_dir, FakeInvoker(defaults={"coder-model": code_for}), source_control)

        outcome = await aggregator.run_milestone(milestone("new.py", delete=("old.py",)), 1)

        assert outcome.accepted is True
        assert not (temp_project_dir / "old.py").exists()
        assert "old.py" in outcome.applied_files


class TestConflictsAndPaths:
    """Conflicting or unsafe outputs are never written."""

    @pytest.mark.asyncio
    async def test_same_path_from_two_workers_is_conflict(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        invoker = FakeInvoker(
            defaults={"coder-model": {"files": [{"path": "shared.py", "content": "x = 1\n"}]}}
        )
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        outcome = await aggregator.run_milestone(milestone("a.py", "b.py"), 2)

        assert outcome.accepted is False
        assert outcome.conflicts[0].path == "shared.py"
        assert not (temp_project_dir / "shared.py").exists()
        assert source_control.commits == []

    @pytest.mark.asyncio
    async def test_merge_markers_are_conflict(self, temp_project_dir: Path, source_control: FakeSourceControl):
        content = "<<<<<<< HEAD\nx = 1\n=======\nx = 2\n>>>>>>> other\n"
        invoker = FakeInvoker(defaults={"coder-model": {"files": [{"path": "a.py", "content": content}]}})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        outcome = await aggregator.run_milestone(milestone("a.py"), 1)

        assert outcome.conflicts
        assert not (temp_project_dir / "a.py").exists()

    @pytest.mark.asyncio
    async def test_path_outside_project_raises(self, temp_project_dir: Path, source_control: FakeSourceControl):
        invoker = FakeInvoker(
            defaults={"coder-model": {"files": [{"path": "../escape.py", "content": "x = 1\n"}]}}
        )
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        with pytest.raises(PathTraversalError):
            await aggregator.run_milestone(milestone("a.py"), 1)

        assert not (temp_project_dir.parent / "escape.py").exists()
        assert source_control.commits == []

    @pytest.mark.asyncio
    async def test_directory_collision_writes_nothing(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        """A produced path that is an existing directory stops the whole write."""
        (temp_project_dir / "pkg").mkdir()

        def respond(prompt: str):
            if "pkg" in files_in_prompt(prompt):
                return {"files": [{"path": "pkg", "content": "x = 1\n"}]}
            return code_for(prompt)

        invoker = FakeInvoker(defaults={"coder-model": respond})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        with pytest.raises(StructuralError):
            await aggregator.run_milestone(milestone("a.py", "pkg"), 2)

        assert not (temp_project_dir / "a.py").exists()
        assert (temp_project_dir / "pkg").is_dir()
        assert source_control.commits == []

    @pytest.mark.asyncio
    async def test_duplicate_imports_are_removed_before_write(
        self, temp_project_dir: Path, source_control: FakeSourceControl
    ):
        content = "import os\nimport os\n\nVALUE = os.sep\n"
        invoker = FakeInvoker(defaults={"coder-model": {"files": [{"path": "a.py", "content": content}]}})
        aggregator = make_aggregator(temp_project_dir, invoker, source_control)

        outcome = await aggregator.run_milestone(milestone("a.py"), 1)

        assert outcome.accepted is True
        assert (temp_project_dir / "a.py").read_text().count("import os") == 1
