"""Agent abstraction consumed by the orchestrator.

An agent is anything with ``agent_id``, ``name`` and an async
``run(input, thread_id) -> AgentResult``. Model-backed agents live outside
this package; ``FunctionAgent`` adapts a plain async handler so workflows can
be wired up (and tested) without a provider SDK.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol

from pydantic import BaseModel

from ..errors import AgentNotFoundError, ToolNotFoundError
from .threads import Message, MessageStore

if TYPE_CHECKING:
    from ..tools.registry import ToolCatalog
    from ..tools.schema import ToolDescriptor


class AgentResult(BaseModel):
    output: str


class Agent(Protocol):
    agent_id: str
    name: str

    async def run(self, input: Optional[str] = None, thread_id: Optional[str] = None) -> AgentResult: ...


class AgentResolver(Protocol):
    async def get_agent(self, agent_id: str) -> Agent: ...


class AgentToolbox:
    """Tool access for one agent run.

    Every call goes through ``ToolCatalog.execute_tool`` with the run's thread
    and agent ids, so it lands in the execution ledger.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        agent_id: str,
        thread_id: Optional[str],
        allowed: Optional[Iterable[str]] = None,
    ) -> None:
        self._catalog = catalog
        self.agent_id = agent_id
        self.thread_id = thread_id
        self._allowed = set(allowed) if allowed is not None else None

    async def available(self) -> dict[str, ToolDescriptor]:
        tools = await self._catalog.get_all_tools()
        if self._allowed is None:
            return tools
        return {name: tool for name, tool in tools.items() if name in self._allowed}

    async def call(self, name: str, parameters: Optional[dict[str, Any]] = None) -> Any:
        if self._allowed is not None and name not in self._allowed:
            raise ToolNotFoundError(name)
        return await self._catalog.execute_tool(
            name,
            parameters,
            thread_id=self.thread_id,
            agent_id=self.agent_id,
        )


@dataclass
class AgentRunContext:
    agent_id: str
    input: Optional[str]
    thread_id: str
    messages: list[Message] = field(default_factory=list)
    tools: Optional[AgentToolbox] = None


AgentHandler = Callable[[AgentRunContext], Awaitable[str]]


class FunctionAgent:
    """Agent whose reasoning is an async function of the run context."""

    def __init__(
        self,
        agent_id: str,
        name: str,
        handler: AgentHandler,
        *,
        catalog: Optional[ToolCatalog] = None,
        messages: Optional[MessageStore] = None,
        tool_names: Optional[Iterable[str]] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        self.agent_id = agent_id
        self.name = name
        self.handler = handler
        self.catalog = catalog
        self.messages = messages
        self.tool_names = list(tool_names) if tool_names is not None else None
        self.system_prompt = system_prompt

    async def run(self, input: Optional[str] = None, thread_id: Optional[str] = None) -> AgentResult:
        thread_id = thread_id or str(uuid.uuid4())

        history: list[Message] = []
        if self.messages is not None:
            history = await self.messages.load_messages(thread_id)
            if not history and self.system_prompt:
                await self.messages.save_message(thread_id, "system", self.system_prompt)
                history = [Message(role="system", content=self.system_prompt)]
            if input:
                await self.messages.save_message(thread_id, "user", input)
                history.append(Message(role="user", content=input))

        toolbox = None
        if self.catalog is not None:
            toolbox = AgentToolbox(self.catalog, self.agent_id, thread_id, self.tool_names)

        output = await self.handler(
            AgentRunContext(
                agent_id=self.agent_id,
                input=input,
                thread_id=thread_id,
                messages=history,
                tools=toolbox,
            )
        )

        if self.messages is not None:
            await self.messages.save_message(thread_id, "assistant", output)
        return AgentResult(output=output)


class AgentRegistry:
    """In-process agent lookup by id."""

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> Agent:
        self._agents[agent.agent_id] = agent
        return agent

    async def get_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent
