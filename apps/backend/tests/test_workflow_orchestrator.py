import asyncio
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from pydantic import BaseModel

from toolflow.errors import (
    AgentNotFoundError,
    ExecutionFailure,
    InvalidTransitionError,
    WorkflowNotFoundError,
)
from toolflow.tools import ToolCatalog
from toolflow.workflow import (
    AgentRegistry,
    CommunicationOptions,
    FunctionAgent,
    SqliteMessageStore,
    WorkflowOrchestrator,
)
from toolflow.workflow.threads import init_db


def echo_agent(agent_id: str, name: str = None, messages=None) -> FunctionAgent:
    async def handler(ctx):
        return f"{agent_id}:{ctx.input}"

    return FunctionAgent(agent_id, name or agent_id.title(), handler, messages=messages)


def failing_agent(agent_id: str) -> FunctionAgent:
    async def handler(ctx):
        raise RuntimeError(f"{agent_id} exploded")

    return FunctionAgent(agent_id, agent_id.title(), handler)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="orchestrator-tests-"))
        self.messages = SqliteMessageStore(self.tmp_dir / "threads.db")
        self.agents = AgentRegistry()
        self.orchestrator = WorkflowOrchestrator(self.agents, self.messages)

    def tearDown(self):
        self.messages.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)


class WorkflowLifecycleTests(OrchestratorTestCase):
    def test_create_assigns_ids_and_thread_ids(self):
        workflow = self.orchestrator.create_workflow(
            "Research",
            "Two step research",
            [{"agent_id": "planner", "input": "plan"}, {"agent_id": "writer", "thread_id": "fixed-thread"}],
        )
        self.assertEqual(workflow.status, "pending")
        self.assertEqual(workflow.current_step_index, 0)
        self.assertTrue(workflow.steps[0].thread_id)
        self.assertNotEqual(workflow.steps[0].thread_id, workflow.steps[1].thread_id)
        self.assertEqual(workflow.steps[1].thread_id, "fixed-thread")
        self.assertIs(self.orchestrator.get_workflow(workflow.id), workflow)
        self.assertIsNone(self.orchestrator.get_workflow("missing"))

    def test_add_step_to_unknown_workflow_raises(self):
        with self.assertRaises(WorkflowNotFoundError):
            self.orchestrator.add_workflow_step("missing", "planner")

    def test_successful_run_completes_every_step_in_order(self):
        order = []

        def tracking_agent(agent_id):
            async def handler(ctx):
                order.append(agent_id)
                return f"{agent_id} done"

            return FunctionAgent(agent_id, agent_id, handler, messages=self.messages)

        for agent_id in ("planner", "researcher", "writer"):
            self.agents.register(tracking_agent(agent_id))

        workflow = self.orchestrator.create_workflow("Pipeline")
        for agent_id in ("planner", "researcher", "writer"):
            self.orchestrator.add_workflow_step(workflow.id, agent_id, input=f"task for {agent_id}")

        result = asyncio.run(self.orchestrator.execute_workflow(workflow.id))
        self.assertEqual(result.status, "completed")
        self.assertEqual(result.current_step_index, 3)
        self.assertEqual(order, ["planner", "researcher", "writer"])
        self.assertEqual([s.status for s in result.steps], ["completed"] * 3)
        self.assertEqual(result.steps[1].result, "researcher done")

        history = asyncio.run(self.messages.load_messages(result.steps[0].thread_id))
        self.assertEqual([(m.role, m.content) for m in history], [
            ("user", "task for planner"),
            ("assistant", "planner done"),
        ])

    def test_failing_step_stops_the_workflow(self):
        self.agents.register(echo_agent("first"))
        self.agents.register(failing_agent("second"))
        self.agents.register(echo_agent("third"))
        workflow = self.orchestrator.create_workflow(
            "Breaks", steps=[{"agent_id": "first"}, {"agent_id": "second"}, {"agent_id": "third"}]
        )

        with self.assertLogs("toolflow.workflow.orchestrator", level="ERROR"):
            result = asyncio.run(self.orchestrator.execute_workflow(workflow.id))

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.current_step_index, 1)
        self.assertEqual(result.steps[0].status, "completed")
        self.assertEqual(result.steps[1].status, "failed")
        self.assertEqual(result.steps[1].error, "second exploded")
        self.assertEqual(result.steps[2].status, "pending")
        self.assertIsNone(result.steps[2].result)

        with self.assertRaises(InvalidTransitionError):
            asyncio.run(self.orchestrator.execute_workflow(workflow.id))
        self.assertEqual(result.steps[2].status, "pending")

    def test_unknown_agent_is_a_step_failure(self):
        workflow = self.orchestrator.create_workflow("Ghost", steps=[{"agent_id": "ghost"}])
        with self.assertLogs("toolflow.workflow.orchestrator", level="ERROR"):
            result = asyncio.run(self.orchestrator.execute_workflow(workflow.id))
        self.assertEqual(result.status, "failed")
        self.assertEqual(result.steps[0].error, "Agent not found: ghost")

    def test_completed_workflow_cannot_run_again(self):
        self.agents.register(echo_agent("only"))
        workflow = self.orchestrator.create_workflow("Once", steps=[{"agent_id": "only", "input": "x"}])
        asyncio.run(self.orchestrator.execute_workflow(workflow.id))
        with self.assertRaises(InvalidTransitionError) as ctx:
            asyncio.run(self.orchestrator.execute_workflow(workflow.id))
        self.assertEqual(ctx.exception.current_status, "completed")

    def test_execute_unknown_workflow_raises(self):
        with self.assertRaises(WorkflowNotFoundError):
            asyncio.run(self.orchestrator.execute_workflow("missing"))


class PauseResumeTests(OrchestratorTestCase):
    def test_pause_during_step_then_resume_from_next_index(self):
        runs = []
        orchestrator = self.orchestrator

        async def pausing_handler(ctx):
            runs.append("first")
            orchestrator.pause_workflow(workflow.id)
            return "paused after me"

        async def second_handler(ctx):
            runs.append("second")
            return "second done"

        self.agents.register(FunctionAgent("first", "First", pausing_handler))
        self.agents.register(FunctionAgent("second", "Second", second_handler))
        workflow = orchestrator.create_workflow("Pausable", steps=[{"agent_id": "first"}, {"agent_id": "second"}])

        paused = asyncio.run(orchestrator.execute_workflow(workflow.id))
        self.assertEqual(paused.status, "paused")
        self.assertEqual(paused.current_step_index, 1)
        self.assertEqual(paused.steps[0].status, "completed")
        self.assertEqual(paused.steps[1].status, "pending")
        self.assertEqual(runs, ["first"])

        with self.assertRaises(InvalidTransitionError):
            asyncio.run(orchestrator.execute_workflow(workflow.id))

        resumed = asyncio.run(orchestrator.resume_workflow(workflow.id))
        self.assertEqual(resumed.status, "completed")
        self.assertEqual(resumed.current_step_index, 2)
        self.assertEqual(runs, ["first", "second"])

    def test_pause_and_resume_require_matching_status(self):
        workflow = self.orchestrator.create_workflow("Idle")
        with self.assertRaises(InvalidTransitionError):
            self.orchestrator.pause_workflow(workflow.id)
        with self.assertRaises(InvalidTransitionError):
            asyncio.run(self.orchestrator.resume_workflow(workflow.id))
        with self.assertRaises(WorkflowNotFoundError):
            self.orchestrator.pause_workflow("missing")

    def test_resume_while_step_in_flight_joins_the_running_loop(self):
        runs = []
        orchestrator = self.orchestrator

        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow_handler(ctx):
                runs.append("slow")
                started.set()
                await release.wait()
                return "slow done"

            async def next_handler(ctx):
                runs.append("next")
                return "next done"

            self.agents.register(FunctionAgent("slow", "Slow", slow_handler))
            self.agents.register(FunctionAgent("next", "Next", next_handler))
            workflow = orchestrator.create_workflow("Blocking", steps=[{"agent_id": "slow"}, {"agent_id": "next"}])

            run = asyncio.ensure_future(orchestrator.execute_workflow(workflow.id))
            await started.wait()
            with self.assertRaises(InvalidTransitionError):
                await orchestrator.execute_workflow(workflow.id)

            orchestrator.pause_workflow(workflow.id)
            with self.assertRaises(InvalidTransitionError):
                orchestrator.pause_workflow(workflow.id)

            resumed = asyncio.ensure_future(orchestrator.resume_workflow(workflow.id))
            await asyncio.sleep(0)
            release.set()
            return await asyncio.gather(run, resumed)

        first, second = asyncio.run(scenario())
        self.assertIs(first, second)
        self.assertEqual(runs, ["slow", "next"])
        self.assertEqual(first.status, "completed")
        self.assertEqual(first.current_step_index, 2)
        self.assertEqual([step.status for step in first.steps], ["completed", "completed"])

    def test_pausing_a_paused_workflow_is_rejected(self):
        orchestrator = self.orchestrator

        async def pausing_handler(ctx):
            orchestrator.pause_workflow(workflow.id)
            return "done"

        self.agents.register(FunctionAgent("first", "First", pausing_handler))
        self.agents.register(echo_agent("second"))
        workflow = orchestrator.create_workflow("Pausable", steps=[{"agent_id": "first"}, {"agent_id": "second"}])

        paused = asyncio.run(orchestrator.execute_workflow(workflow.id))
        self.assertEqual(paused.status, "paused")
        with self.assertRaises(InvalidTransitionError) as ctx:
            orchestrator.pause_workflow(workflow.id)
        self.assertEqual(ctx.exception.current_status, "paused")
        self.assertEqual(orchestrator.get_workflow(workflow.id).current_step_index, 1)


class SharedContextTests(OrchestratorTestCase):
    def test_shared_context_is_per_workflow(self):
        first = self.orchestrator.create_workflow("First")
        second = self.orchestrator.create_workflow("Second")

        self.assertEqual(self.orchestrator.get_shared_context(first.id), {})
        self.assertIsNone(self.orchestrator.get_shared_context(first.id, "topic"))

        self.orchestrator.set_shared_context(first.id, "topic", "solar")
        self.orchestrator.set_shared_context(first.id, "budget", 3)

        self.assertEqual(self.orchestrator.get_shared_context(first.id, "topic"), "solar")
        self.assertEqual(self.orchestrator.get_shared_context(first.id), {"topic": "solar", "budget": 3})
        self.assertEqual(self.orchestrator.get_shared_context(second.id), {})

        with self.assertRaises(WorkflowNotFoundError):
            self.orchestrator.get_shared_context("missing")
        with self.assertRaises(WorkflowNotFoundError):
            self.orchestrator.set_shared_context("missing", "k", "v")

    def test_list_workflows(self):
        created = [self.orchestrator.create_workflow(f"wf-{i}") for i in range(3)]
        self.assertEqual([w.id for w in self.orchestrator.list_workflows()], [w.id for w in created])


class AgentToAgentTests(OrchestratorTestCase):
    def test_history_is_copied_and_source_thread_untouched(self):
        seen = {}

        async def reviewer(ctx):
            seen["messages"] = [(m.role, m.content) for m in ctx.messages]
            seen["thread_id"] = ctx.thread_id
            return "looks good"

        self.agents.register(echo_agent("writer", "Writer"))
        self.agents.register(FunctionAgent("reviewer", "Reviewer", reviewer, messages=self.messages))

        async def scenario():
            await self.messages.save_message("source-thread", "user", "draft the intro")
            await self.messages.save_message("source-thread", "assistant", "Once upon a time")
            output = await self.orchestrator.agent_to_agent_communication(
                "writer",
                "reviewer",
                "please review",
                CommunicationOptions(
                    share_full_history=True,
                    source_thread_id="source-thread",
                    message="You are a strict reviewer",
                ),
            )
            source = await self.messages.load_messages("source-thread")
            target = await self.messages.load_messages(seen["thread_id"])
            return output, source, target

        output, source, target = asyncio.run(scenario())
        self.assertEqual(output, "looks good")
        self.assertNotEqual(seen["thread_id"], "source-thread")
        self.assertEqual(seen["messages"], [
            ("user", "draft the intro"),
            ("assistant", "Once upon a time"),
            ("system", "You are a strict reviewer"),
            ("user", "[From Agent: Writer] please review"),
        ])
        self.assertEqual(len(source), 2)
        self.assertEqual(target[-1].role, "assistant")
        self.assertEqual(target[-1].content, "looks good")

    def test_without_history_only_the_tagged_request_is_sent(self):
        seen = {}

        async def reviewer(ctx):
            seen["messages"] = [(m.role, m.content) for m in ctx.messages]
            return "ok"

        self.agents.register(echo_agent("writer", "Writer"))
        self.agents.register(FunctionAgent("reviewer", "Reviewer", reviewer, messages=self.messages))

        async def scenario():
            await self.messages.save_message("source-thread", "user", "private notes")
            return await self.orchestrator.agent_to_agent_communication(
                "writer", "reviewer", "hi", CommunicationOptions(source_thread_id="source-thread")
            )

        self.assertEqual(asyncio.run(scenario()), "ok")
        self.assertEqual(seen["messages"], [("user", "[From Agent: Writer] hi")])

    def test_unknown_agents_and_agent_errors(self):
        self.agents.register(echo_agent("writer"))
        self.agents.register(failing_agent("broken"))

        with self.assertRaises(AgentNotFoundError):
            asyncio.run(self.orchestrator.agent_to_agent_communication("writer", "ghost", "hi"))
        with self.assertRaises(AgentNotFoundError):
            asyncio.run(self.orchestrator.agent_to_agent_communication("ghost", "writer", "hi"))
        with self.assertRaises(ExecutionFailure) as ctx:
            asyncio.run(self.orchestrator.agent_to_agent_communication("writer", "broken", "hi"))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(self.orchestrator.list_workflows(), [])


class AgentToolboxTests(OrchestratorTestCase):
    def test_tool_calls_are_recorded_with_thread_and_agent(self):
        class RecordingLedger:
            def __init__(self):
                self.records = []

            async def log_execution(self, record):
                self.records.append(record)
                return "id"

        class AddParams(BaseModel):
            a: int
            b: int

        ledger = RecordingLedger()
        catalog = ToolCatalog(include_builtin=False, recorder=ledger)
        catalog.register("add", "Add", AddParams, lambda p: p["a"] + p["b"])
        catalog.register("secret", "Hidden", {"type": "object"}, lambda p: "nope")

        async def calculator(ctx):
            available = await ctx.tools.available()
            total = await ctx.tools.call("add", {"a": 2, "b": 40})
            return f"{sorted(available)}={total}"

        self.agents.register(FunctionAgent("math", "Math", calculator, catalog=catalog, tool_names=["add"]))
        orchestrator = WorkflowOrchestrator(self.agents, self.messages, catalog=catalog)
        workflow = orchestrator.create_workflow("Math", steps=[{"agent_id": "math", "thread_id": "math-thread"}])

        result = asyncio.run(orchestrator.execute_workflow(workflow.id))
        self.assertEqual(result.steps[0].result, "['add']=42")
        self.assertEqual(len(ledger.records), 1)
        self.assertEqual(ledger.records[0].thread_id, "math-thread")
        self.assertEqual(ledger.records[0].agent_id, "math")


class ThreadStoreTests(unittest.TestCase):
    def test_init_db_enables_wal_and_is_idempotent(self):
        tmp_dir = Path(tempfile.mkdtemp(prefix="thread-db-tests-"))
        try:
            conn = init_db(tmp_dir / "nested" / "threads.db")
            self.assertEqual(conn.execute("PRAGMA journal_mode").fetchone()[0], "wal")
            conn.close()
            init_db(tmp_dir / "nested" / "threads.db").close()
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main()
