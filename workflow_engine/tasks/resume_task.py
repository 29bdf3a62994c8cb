"""
Resume Task

Consumes ResumeJob records. For an asynchronous action the action runs
first and its output travels into resume_workflow; otherwise the instance
is resumed directly.

Transient failures are retried with tenacity. A job whose instance already
moved on (redelivery) ends with a log line instead of an error.
"""

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from workflow_engine.config import Settings, get_settings
from workflow_engine.core.exceptions import (
    ActionExecutionError,
    DomainException,
    InstanceAlreadyCompleted,
    InvalidPayload,
    NodeMismatch,
)
from workflow_engine.models.db.workflow.constants import InstanceStatus, TERMINAL_INSTANCE_STATUSES

from .queue import ResumeJob

if TYPE_CHECKING:
    from workflow_engine.actions.executor import ActionResult
    from workflow_engine.services.engine import WorkflowEngine

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    # Domain errors describe state, retrying cannot change them
    return not isinstance(error, DomainException)


def _is_retryable_action_error(error: BaseException) -> bool:
    return isinstance(error, ActionExecutionError) or _is_transient(error)


class ResumeTask:
    """
    Adapter between a resume queue and the engine.

    Usage:
        task = ResumeTask(engine)
        queue.start(task.handle)
    """

    def __init__(self, engine: "WorkflowEngine", settings: Settings | None = None):
        self.engine = engine
        settings = settings or get_settings()
        self.max_attempts = settings.RESUME_MAX_ATTEMPTS
        self.wait_min = settings.RESUME_RETRY_MIN_SECONDS
        self.wait_max = settings.RESUME_RETRY_MAX_SECONDS

    def _retrying(self, predicate) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(predicate),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.wait_min, min=self.wait_min, max=self.wait_max),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def handle(self, job: ResumeJob | dict[str, Any]) -> bool:
        """
        Process one job.

        Returns:
            True when the instance was resumed, False when the job was stale

        Raises:
            InvalidPayload: Job without instance_id / node_id
            ActionExecutionError: Asynchronous action failed on every attempt
        """
        job = self._parse(job)

        try:
            additional_data = dict(job.additional_data)
            if job.async_action:
                result = await self._run_action(job)
                additional_data["result"] = result.output
                if result.context_updates:
                    additional_data["context_updates"] = result.context_updates

            async for attempt in self._retrying(_is_transient):
                with attempt:
                    await self.engine.resume_workflow(
                        job.instance_id, job.node_id, job.output_port, additional_data
                    )
        except (NodeMismatch, InstanceAlreadyCompleted) as e:
            logger.info(f"Skipping stale resume job for instance {job.instance_id} at '{job.node_id}': {e.message}")
            return False

        logger.info(f"Resumed instance {job.instance_id} from '{job.node_id}' on '{job.output_port}'")
        return True

    @staticmethod
    def _parse(job: ResumeJob | dict[str, Any]) -> ResumeJob:
        if isinstance(job, ResumeJob):
            return job
        try:
            return ResumeJob.model_validate(job)
        except ValidationError as e:
            raise InvalidPayload(
                "Resume job requires instance_id and node_id",
                {"job": job, "errors": e.errors(include_url=False, include_context=False)},
            ) from e

    async def _run_action(self, job: ResumeJob) -> "ActionResult":
        state = await self.engine.get_instance_state(job.instance_id)
        if state["status"] in TERMINAL_INSTANCE_STATUSES:
            raise InstanceAlreadyCompleted(job.instance_id, state["status"])
        if state["status"] != InstanceStatus.WAITING or state["current_node"] != job.node_id:
            raise NodeMismatch(job.instance_id, job.node_id, state["current_node"], state["status"])

        params = job.additional_data.get("params") or {}
        try:
            async for attempt in self._retrying(_is_retryable_action_error):
                with attempt:
                    return await self.engine.executor.execute(
                        job.async_action,
                        params,
                        state["context"],
                        instance_id=job.instance_id,
                        node_id=job.node_id,
                        resolved=True,
                    )
        except ActionExecutionError as e:
            logger.error(f"Async action '{job.async_action}' gave up after {self.max_attempts} attempts: {e.message}")
            await self.engine.fail_async_action(job.instance_id, job.node_id, e)
            raise
