"""
Unit tests for the workflow-process command.
"""

import pytest

from workflow_engine.core.exceptions import ActionExecutionError
from workflow_engine.plugins.officers import OfficersPlugin
from workflow_engine.scripts import process_workflows
from workflow_engine.services.engine import ScheduledRunResult
from workflow_engine.tasks import InMemoryResumeQueue, ResumeJob


class StubEngine:
    def __init__(self, result: ScheduledRunResult, queue: InMemoryResumeQueue | None = None, jobs: int = 0):
        self.result = result
        self.queue = queue
        self.jobs = jobs

    async def process_scheduled_transitions(self) -> ScheduledRunResult:
        for number in range(self.jobs):
            await self.queue.enqueue(ResumeJob(instance_id=number + 1, node_id="notify"))
        return self.result


class StubTask:
    """Handles jobs; instance 2 fails and instance 3 enqueues a follow-up for instance 4."""

    def __init__(self, queue: InMemoryResumeQueue):
        self.queue = queue
        self.seen: list[int] = []

    async def handle(self, job: ResumeJob) -> bool:
        self.seen.append(job.instance_id)
        if job.instance_id == 2:
            raise ActionExecutionError(2, job.node_id, "send_email", "smtp down")
        if job.instance_id == 3:
            await self.queue.enqueue(ResumeJob(instance_id=4, node_id="notify"))
        return True


@pytest.fixture
def disposed(monkeypatch) -> list[bool]:
    calls: list[bool] = []

    async def fake_dispose():
        calls.append(True)

    monkeypatch.setattr(process_workflows, "dispose_engine", fake_dispose)
    return calls


@pytest.mark.unit
class TestArguments:
    """Tests for argument parsing and plugin loading."""

    def test_parse_args(self):
        """Should collect repeated plugins and flags."""
        args = process_workflows.parse_args(["--dry-run", "-v", "--plugin", "a:b", "--plugin", "c:d"])

        assert args.dry_run is True
        assert args.verbose is True
        assert args.plugins == ["a:b", "c:d"]

    def test_defaults(self):
        """Should default to a real run without plugins."""
        args = process_workflows.parse_args([])
        assert (args.dry_run, args.verbose, args.plugins) == (False, False, [])

    def test_load_plugin(self):
        """Should import the module and call the factory."""
        plugin = process_workflows.load_plugin("tests.factories:officers_plugin")
        assert isinstance(plugin, OfficersPlugin)

    def test_load_plugin_bad_format(self):
        """Should reject a path without a factory name."""
        with pytest.raises(ValueError, match="package.module:factory"):
            process_workflows.load_plugin("tests.factories")


@pytest.mark.unit
@pytest.mark.asyncio
class TestRun:
    """Tests for run()."""

    async def test_engine_build_failure(self, monkeypatch, disposed):
        """Should exit with 1 when the engine cannot be built."""

        def broken(plugin_paths, resume_queue):
            raise ImportError("no such plugin")

        monkeypatch.setattr(process_workflows, "build_engine", broken)

        assert await process_workflows.run(False, ["missing:factory"]) == 1
        assert disposed == []

    async def test_dry_run(self, monkeypatch, capsys, disposed):
        """Should only report the active instance count."""
        # Arrange
        async def three():
            return 3

        monkeypatch.setattr(process_workflows, "build_engine", lambda plugin_paths, resume_queue: StubEngine(ScheduledRunResult()))
        monkeypatch.setattr(process_workflows, "count_active_instances", three)

        # Act
        code = await process_workflows.run(True, [])

        # Assert
        assert code == 0
        assert "DRY RUN: 3 active workflow instances" in capsys.readouterr().out
        assert disposed == [True]

    async def test_processing_summary(self, monkeypatch, capsys, disposed):
        """Should print the counters and the collected errors."""
        result = ScheduledRunResult(processed=4, escalated=2, errors=[{"instance_id": 9, "error": "boom"}])
        monkeypatch.setattr(process_workflows, "build_engine", lambda plugin_paths, resume_queue: StubEngine(result))

        code = await process_workflows.run(False, [])

        out = capsys.readouterr().out
        assert code == 0
        assert "Processed: 4" in out
        assert "Escalated: 2" in out
        assert "Errors: 1" in out
        assert "'instance_id': 9" in out
        assert disposed == [True]

    async def test_resume_jobs_are_drained(self, monkeypatch, capsys, disposed):
        """Should run the resume jobs the pass enqueued before disposing the engine."""
        # Arrange
        tasks: list[StubTask] = []

        def build(plugin_paths, resume_queue):
            return StubEngine(ScheduledRunResult(processed=3), queue=resume_queue, jobs=3)

        def make_task(engine):
            tasks.append(StubTask(engine.queue))
            return tasks[-1]

        monkeypatch.setattr(process_workflows, "build_engine", build)
        monkeypatch.setattr(process_workflows, "ResumeTask", make_task)

        # Act
        code = await process_workflows.run(False, [])

        # Assert
        assert code == 0
        assert sorted(tasks[0].seen) == [1, 2, 3, 4]
        assert "Resume jobs: 3 handled, 1 failed" in capsys.readouterr().out
        assert disposed == [True]


@pytest.mark.unit
@pytest.mark.asyncio
class TestDrainResumeJobs:
    """Tests for drain_resume_jobs()."""

    async def test_failure_does_not_stop_the_drain(self):
        """Should keep handling jobs after one fails."""
        queue = InMemoryResumeQueue()
        task = StubTask(queue)
        for instance_id in (2, 5):
            await queue.enqueue(ResumeJob(instance_id=instance_id, node_id="notify"))

        assert await process_workflows.drain_resume_jobs(queue, task) == (1, 1)
        assert task.seen == [2, 5]
        assert queue.qsize() == 0

    async def test_empty_queue(self):
        """Should return zero counts without calling the task."""
        queue = InMemoryResumeQueue()
        task = StubTask(queue)

        assert await process_workflows.drain_resume_jobs(queue, task) == (0, 0)
        assert task.seen == []
