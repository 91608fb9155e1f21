"""Tool registry: the closed catalogue of tools the agent may call."""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from smart_email.errors import BadRequestError, SmartEmailError
from smart_email.models import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Every tool the agent can call. Names outside this enum are rejected."""
    GET_DONOR_INFO = "get_donor_info"
    GET_ORGANIZATION_CONTEXT = "get_organization_context"
    GENERATE_INSTRUCTION = "generate_instruction"
    REFINE_INSTRUCTION = "refine_instruction"
    SUMMARIZE_FOR_GENERATION = "summarize_for_generation"


CONTEXT_TOOLS = frozenset({ToolName.GET_DONOR_INFO, ToolName.GET_ORGANIZATION_CONTEXT})
DRAFTING_TOOLS = frozenset({ToolName.GENERATE_INSTRUCTION, ToolName.REFINE_INSTRUCTION})
FINALIZE_TOOL = ToolName.SUMMARIZE_FOR_GENERATION


class ToolExecutionContext(BaseModel):
    """Session facts handed to every tool executor."""
    session_id: str
    organization_id: str
    user_id: str
    donor_ids: list[int]
    history: list[dict] = Field(default_factory=list)  # role/content pairs
    donor_analysis: Optional[dict[str, Any]] = None
    org_analysis: Optional[dict[str, Any]] = None


ToolExecutor = Callable[[Any, ToolExecutionContext], Awaitable[Any]]


class Tool(ABC):
    """Base class for a registered tool."""

    name: ToolName
    description: str
    input_model: type[BaseModel]

    @abstractmethod
    async def execute(self, params: Any, context: ToolExecutionContext) -> Any:
        ...


@dataclass
class RegisteredTool:
    name: ToolName
    description: str
    input_model: type[BaseModel]
    executor: ToolExecutor


def _error_text(error: SmartEmailError) -> str:
    return f"{error.code}: {error.message}"


class ToolRegistry:
    """Validates and runs tool calls. Tool failures come back as error results, never as exceptions."""

    def __init__(self):
        self._tools: dict[ToolName, RegisteredTool] = {}

    def register(
        self,
        name: str,
        input_model: type[BaseModel],
        executor: ToolExecutor,
        description: str = "",
    ) -> None:
        """Register one tool under a name from the ToolName catalogue."""
        try:
            tool_name = ToolName(name)
        except ValueError:
            raise BadRequestError(f"Unknown tool name: {name}") from None
        if tool_name in self._tools:
            raise BadRequestError(f"Tool already registered: {tool_name.value}")
        self._tools[tool_name] = RegisteredTool(tool_name, description, input_model, executor)

    def add(self, tool: Tool) -> None:
        self.register(tool.name, tool.input_model, tool.execute, tool.description)

    @property
    def names(self) -> list[str]:
        return [name.value for name in self._tools]

    def describe(self) -> list[dict]:
        """Catalogue entries with the JSON schema of each tool's arguments."""
        return [
            {
                "name": tool.name.value,
                "description": tool.description,
                "input_schema": tool.input_model.model_json_schema(),
            }
            for tool in self._tools.values()
        ]

    def as_openai_tools(self) -> list[dict]:
        """The catalogue in OpenAI function-tool format, for bind_tools."""
        return [
            {
                "type": "function",
                "function": {
                    "name": entry["name"],
                    "description": entry["description"],
                    "parameters": entry["input_schema"],
                },
            }
            for entry in self.describe()
        ]

    async def execute(self, call: ToolCall, context: ToolExecutionContext) -> ToolResult:
        """Validate the arguments and run one call."""
        try:
            tool = self._tools.get(ToolName(call.name))
        except ValueError:
            tool = None
        if tool is None:
            logger.warning(f"Model requested unknown tool {call.name!r}", extra={"session_id": context.session_id})
            return ToolResult(tool_call_id=call.id, error=f"not_found: Unknown tool: {call.name}")

        try:
            params = tool.input_model.model_validate(call.arguments)
        except PydanticValidationError as e:
            logger.info(f"Invalid arguments for {call.name}: {e.error_count()} error(s)")
            return ToolResult(tool_call_id=call.id, error=f"validation_error: {e}")

        try:
            result = await tool.executor(params, context)
        except SmartEmailError as e:
            logger.warning(f"Tool {call.name} failed: {e.message}", extra={"session_id": context.session_id})
            return ToolResult(tool_call_id=call.id, error=_error_text(e))
        except Exception as e:
            logger.exception(f"Tool {call.name} raised unexpectedly", extra={"session_id": context.session_id})
            return ToolResult(tool_call_id=call.id, error=f"internal_error: {call.name} failed: {e}")

        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        if result is None:
            result = {}
        return ToolResult(tool_call_id=call.id, result=result)

    async def execute_many(self, calls: list[ToolCall], context: ToolExecutionContext) -> list[ToolResult]:
        """Run calls concurrently; results line up one-to-one with calls."""
        if not calls:
            return []
        logger.info(
            f"Executing {len(calls)} tool call(s): {', '.join(c.name for c in calls)}",
            extra={"session_id": context.session_id},
        )
        return list(await asyncio.gather(*(self.execute(call, context) for call in calls)))
