"""Sequential multi-agent workflow runner with pause/resume."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from ..errors import ExecutionFailure, InvalidTransitionError, NotFoundError, WorkflowNotFoundError
from ..tracing import TraceSink, emit
from .agents import AgentResolver
from .schema import CommunicationOptions, StepSpec, Workflow, WorkflowStep, new_id, utcnow
from .threads import MessageStore

if TYPE_CHECKING:
    from ..tools.registry import ToolCatalog

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Runs workflows step by step and brokers ad hoc agent-to-agent requests.

    Workflows and shared contexts live in memory on the instance. Each
    workflow has at most one step loop; resuming while that loop is still
    awaiting a step joins it.
    """

    def __init__(
        self,
        agents: AgentResolver,
        messages: MessageStore,
        catalog: Optional[ToolCatalog] = None,
        tracer: Optional[TraceSink] = None,
    ):
        self.agents = agents
        self.messages = messages
        self.catalog = catalog
        self.tracer = tracer
        self._workflows: dict[str, Workflow] = {}
        self._shared_context: dict[str, dict[str, Any]] = {}
        # step loops still in flight, by workflow id
        self._active: dict[str, asyncio.Task[Workflow]] = {}

    # ------------------------------------------------------------------
    # Workflow lifecycle
    # ------------------------------------------------------------------

    def create_workflow(
        self,
        name: str,
        description: Optional[str] = None,
        steps: Optional[Iterable[Union[StepSpec, dict]]] = None,
    ) -> Workflow:
        workflow = Workflow(name=name, description=description)
        for spec in steps or ():
            if isinstance(spec, dict):
                spec = StepSpec(**spec)
            workflow.steps.append(_new_step(spec.agent_id, spec.input, spec.thread_id))
        self._workflows[workflow.id] = workflow
        return workflow

    def add_workflow_step(
        self,
        workflow_id: str,
        agent_id: str,
        input: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> Workflow:
        workflow = self._require(workflow_id)
        workflow.steps.append(_new_step(agent_id, input, thread_id))
        workflow.touch()
        return workflow

    async def execute_workflow(self, workflow_id: str) -> Workflow:
        """Run the workflow from ``current_step_index``.

        A failing step marks the workflow ``failed`` and is reported on the
        returned workflow rather than raised. Executing a running, paused,
        completed or failed workflow raises ``InvalidTransitionError``.
        """
        workflow = self._require(workflow_id)
        if workflow.is_terminal:
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is already {workflow.status}",
                workflow.status,
                {"workflow_id": workflow_id},
            )
        if workflow.status == "paused":
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is paused; use resume_workflow",
                workflow.status,
                {"workflow_id": workflow_id},
            )
        if workflow.status == "running" or self._is_active(workflow_id):
            raise InvalidTransitionError(
                f"Workflow {workflow_id} is already running",
                workflow.status,
                {"workflow_id": workflow_id},
            )
        return await self._start(workflow)

    def pause_workflow(self, workflow_id: str) -> Workflow:
        """Stop the workflow once its in-flight step finishes."""
        workflow = self._require(workflow_id)
        if workflow.status != "running":
            raise InvalidTransitionError(
                f"Cannot pause workflow {workflow_id} with status {workflow.status}",
                workflow.status,
                {"workflow_id": workflow_id},
            )
        workflow.status = "paused"
        workflow.touch()
        logger.info("Paused workflow %s at step %d", workflow_id, workflow.current_step_index)
        return workflow

    async def resume_workflow(self, workflow_id: str) -> Workflow:
        """Continue a paused workflow from ``current_step_index``.

        If the step that was in flight when it was paused has not finished
        yet, the existing step loop carries on instead of a second one being
        started.
        """
        workflow = self._require(workflow_id)
        if workflow.status != "paused":
            raise InvalidTransitionError(
                f"Cannot resume workflow {workflow_id} with status {workflow.status}",
                workflow.status,
                {"workflow_id": workflow_id},
            )

        active = self._active.get(workflow_id)
        if active is not None and not active.done():
            workflow.status = "running"
            workflow.touch()
            logger.info("Resumed workflow %s during step %d", workflow_id, workflow.current_step_index)
            return await asyncio.shield(active)
        return await self._start(workflow)

    def _is_active(self, workflow_id: str) -> bool:
        active = self._active.get(workflow_id)
        return active is not None and not active.done()

    async def _start(self, workflow: Workflow) -> Workflow:
        if self.catalog is not None:
            await self.catalog.ensure_initialized()

        workflow.status = "running"
        workflow.touch()
        task = asyncio.ensure_future(self._run_steps(workflow))
        self._active[workflow.id] = task
        task.add_done_callback(lambda done: self._forget(workflow.id, done))
        return await asyncio.shield(task)

    def _forget(self, workflow_id: str, task: asyncio.Task) -> None:
        if self._active.get(workflow_id) is task:
            del self._active[workflow_id]

    async def _run_steps(self, workflow: Workflow) -> Workflow:
        await emit(self.tracer, "workflow_started", {"workflow_id": workflow.id, "step": workflow.current_step_index})

        while workflow.current_step_index < len(workflow.steps):
            index = workflow.current_step_index
            step = workflow.steps[index]
            step.status = "running"
            step.updated_at = utcnow()

            try:
                agent = await self.agents.get_agent(step.agent_id)
                result = await agent.run(step.input, step.thread_id)
            except Exception as e:
                step.status = "failed"
                step.error = str(e)
                step.updated_at = utcnow()
                workflow.status = "failed"
                workflow.touch()
                logger.error(
                    "Workflow %s failed at step %d (agent %s): %s",
                    workflow.id,
                    index,
                    step.agent_id,
                    e,
                )
                await emit(
                    self.tracer,
                    "workflow_failed",
                    {"workflow_id": workflow.id, "step": index, "agent_id": step.agent_id, "error": str(e)},
                )
                return workflow

            step.result = result.output
            step.status = "completed"
            step.updated_at = utcnow()
            workflow.current_step_index = index + 1
            workflow.touch()

            # pause_workflow may have run while the agent was awaited
            if workflow.status == "paused":
                return workflow

        workflow.status = "completed"
        workflow.touch()
        await emit(self.tracer, "workflow_completed", {"workflow_id": workflow.id, "steps": len(workflow.steps)})
        return workflow

    # ------------------------------------------------------------------
    # Agent-to-agent messaging
    # ------------------------------------------------------------------

    async def agent_to_agent_communication(
        self,
        source_agent_id: str,
        target_agent_id: str,
        input: str,
        options: Optional[CommunicationOptions] = None,
    ) -> str:
        """Send ``input`` from one agent to another on a fresh thread.

        Unknown agent ids raise ``AgentNotFoundError``; an error inside the
        target agent is raised as ``ExecutionFailure``. Workflow state is
        never touched.
        """
        options = options or CommunicationOptions()
        if self.catalog is not None:
            await self.catalog.ensure_initialized()

        source = await self.agents.get_agent(source_agent_id)
        target = await self.agents.get_agent(target_agent_id)

        thread_id = new_id()
        if options.share_full_history and options.source_thread_id:
            history = await self.messages.load_messages(options.source_thread_id)
            for message in history:
                await self.messages.save_message(thread_id, message.role, message.content)
        if options.message:
            await self.messages.save_message(thread_id, "system", options.message)
        await self.messages.save_message(thread_id, "user", f"[From Agent: {source.name}] {input}")

        try:
            result = await target.run(None, thread_id)
        except NotFoundError:
            raise
        except Exception as e:
            raise ExecutionFailure(
                f"Agent {target_agent_id} failed: {e}",
                {"source_agent_id": source_agent_id, "target_agent_id": target_agent_id, "thread_id": thread_id},
            ) from e
        return result.output

    # ------------------------------------------------------------------
    # Shared context
    # ------------------------------------------------------------------

    def set_shared_context(self, workflow_id: str, key: str, value: Any) -> None:
        self._require(workflow_id)
        self._shared_context.setdefault(workflow_id, {})[key] = value

    def get_shared_context(self, workflow_id: str, key: Optional[str] = None) -> Any:
        """One value (None when unset) or, without ``key``, a copy of the whole context."""
        self._require(workflow_id)
        context = self._shared_context.get(workflow_id, {})
        if key is None:
            return dict(context)
        return context.get(key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    def list_workflows(self) -> list[Workflow]:
        return list(self._workflows.values())

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow


def _new_step(agent_id: str, input: Optional[str], thread_id: Optional[str]) -> WorkflowStep:
    if thread_id:
        return WorkflowStep(agent_id=agent_id, input=input, thread_id=thread_id)
    return WorkflowStep(agent_id=agent_id, input=input)
