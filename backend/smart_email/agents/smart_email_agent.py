"""Smart email agent - runs one conversational step with tool calling."""
import json
import logging
import time
from typing import Optional
from uuid import uuid4
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from smart_email.config import settings
from smart_email.errors import UpstreamError
from smart_email.llm import CompletionClient
from smart_email.models import (
    AgentResponse,
    ConversationContext,
    ConversationMessage,
    MessageRole,
    SessionStep,
    ToolCall,
    ToolResult,
)
from smart_email.prompts import (
    AGENT_SYSTEM_PROMPT,
    DONOR_SECTION,
    INITIAL_USER_PROMPT,
    TEXT_REPLY_REMINDER,
    format_organization_section,
)
from smart_email.tools import CONTEXT_TOOLS, DRAFTING_TOOLS, FINALIZE_TOOL, ToolExecutionContext, ToolName, ToolRegistry

logger = logging.getLogger(__name__)


class PromptCache:
    """
    Rendered organization prompt sections, keyed by (organization id, user id).

    Sections include the sender's tone and writing guidelines.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or settings.prompt_cache_ttl_seconds
        self._entries: dict[tuple[str, str], tuple[float, str]] = {}

    def get(self, key: tuple[str, str]) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, section = entry
        if time.monotonic() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return section

    def set(self, key: tuple[str, str], section: str) -> None:
        self._entries[key] = (time.monotonic(), section)

    def invalidate(self, key: Optional[tuple[str, str]] = None) -> None:
        """Drop one entry, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


def succeeded_tools(tool_calls: list[ToolCall], tool_results: Optional[list[ToolResult]] = None) -> set[str]:
    """Names of the calls that produced a result. Without results every call counts."""
    if tool_results is None:
        return {call.name for call in tool_calls}
    ok_ids = {result.tool_call_id for result in tool_results if result.ok}
    return {call.name for call in tool_calls if call.id in ok_ids}


def determine_next_step(
    current_step: str,
    tool_calls: list[ToolCall],
    tool_results: Optional[list[ToolResult]] = None,
) -> SessionStep:
    """
    Next dialogue step, decided only by which tools ran this turn.

    Rules in priority order:
    1. finalize tool ran -> complete
    2. an instruction was generated or refined -> refining
    3. a context tool ran, or the session is still analyzing -> analyzing
    4. otherwise move forward; refining stays refining, unknown -> questioning
    """
    if current_step == SessionStep.COMPLETE.value:
        return SessionStep.COMPLETE

    names = succeeded_tools(tool_calls, tool_results)
    if FINALIZE_TOOL.value in names:
        return SessionStep.COMPLETE
    if names & {t.value for t in DRAFTING_TOOLS}:
        return SessionStep.REFINING
    if names & {t.value for t in CONTEXT_TOOLS} or current_step == SessionStep.ANALYZING.value:
        return SessionStep.ANALYZING
    if current_step in (SessionStep.QUESTIONING.value, SessionStep.REFINING.value):
        return SessionStep.REFINING
    return SessionStep.QUESTIONING


def merge_context_results(
    tool_calls: list[ToolCall],
    tool_results: list[ToolResult],
    donor_analysis: Optional[dict],
    org_analysis: Optional[dict],
) -> tuple[Optional[dict], Optional[dict]]:
    """Fold successful context-tool results into the cached analyses."""
    results = {r.tool_call_id: r for r in tool_results}
    for call in tool_calls:
        result = results.get(call.id)
        if result is None or not result.ok:
            continue
        if call.name == ToolName.GET_DONOR_INFO.value:
            donors = {d["id"]: d for d in (donor_analysis or {}).get("donors", [])}
            donors.update({d["id"]: d for d in result.result.get("donors", [])})
            donor_analysis = {"donors": list(donors.values())}
        elif call.name == ToolName.GET_ORGANIZATION_CONTEXT.value:
            org_analysis = result.result
    return donor_analysis, org_analysis


def latest_result(
    tool_calls: list[ToolCall],
    tool_results: list[ToolResult],
    name: ToolName,
) -> Optional[dict]:
    """Most recent successful result of the named tool."""
    results = {r.tool_call_id: r for r in tool_results}
    for call in reversed(tool_calls):
        result = results.get(call.id)
        if call.name == name.value and result is not None and result.ok:
            return result.result
    return None


def _message_text(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return (content or "").strip()


def _tool_payload(result: Optional[ToolResult]) -> str:
    if result is None:
        return json.dumps({"error": "No result recorded"})
    if result.ok:
        return json.dumps(result.result, default=str)
    return json.dumps({"error": result.error})


def replay_history(history: list[ConversationMessage]) -> list[BaseMessage]:
    """
    Rebuild model messages from the stored log.

    An assistant turn that used tools becomes the tool-call message, one
    tool message per call and then the reply text, in that order.
    """
    messages: list[BaseMessage] = []
    for entry in history:
        if entry.role == MessageRole.USER:
            messages.append(HumanMessage(content=entry.content))
        elif entry.role == MessageRole.SYSTEM:
            messages.append(SystemMessage(content=entry.content))
        elif entry.tool_calls:
            results = {r.tool_call_id: r for r in entry.tool_results}
            messages.append(
                AIMessage(
                    content="",
                    tool_calls=[{"id": c.id, "name": c.name, "args": c.arguments} for c in entry.tool_calls],
                )
            )
            for call in entry.tool_calls:
                messages.append(ToolMessage(content=_tool_payload(results.get(call.id)), tool_call_id=call.id))
            messages.append(AIMessage(content=entry.content))
        else:
            messages.append(AIMessage(content=entry.content))
    return messages


class SmartEmailAgent:
    """
    Runs one conversational step: prompt the model, execute the tools it
    asks for, feed results back, and return the reply plus the next step.

    Nothing is persisted here; the caller owns the session.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        completion: CompletionClient,
        prompt_cache: Optional[PromptCache] = None,
        max_tool_rounds: Optional[int] = None,
    ):
        self.registry = registry
        self.completion = completion
        self.prompt_cache = prompt_cache or PromptCache()
        self.max_tool_rounds = max_tool_rounds or settings.max_tool_rounds

    def organization_section(self, context: ConversationContext) -> str:
        # Only sessions that gathered the context get the section
        if not context.org_analysis:
            return ""
        key = (context.organization_id, context.user_id)
        section = self.prompt_cache.get(key)
        if section is None:
            section = format_organization_section(context.org_analysis)
            self.prompt_cache.set(key, section)
        return section

    def build_system_prompt(self, context: ConversationContext) -> str:
        donor_count = len((context.donor_analysis or {}).get("donors", []))
        return AGENT_SYSTEM_PROMPT.format(
            organization_id=context.organization_id,
            user_id=context.user_id,
            donor_ids=", ".join(str(i) for i in context.donor_ids),
            current_step=context.current_step.value,
            initial_instruction=context.initial_instruction or "Not provided",
            organization_section=self.organization_section(context),
            donor_section=DONOR_SECTION.format(count=donor_count) if donor_count else "",
        )

    async def process_initial(self, instruction: str, context: ConversationContext) -> AgentResponse:
        """First step of a session, seeded with the user's initial instruction."""
        prompt = INITIAL_USER_PROMPT.format(
            donor_count=len(context.donor_ids),
            instruction=instruction,
            donor_ids=", ".join(str(i) for i in context.donor_ids),
            organization_id=context.organization_id,
            user_id=context.user_id,
        )
        return await self._run(prompt, context)

    async def process_turn(self, user_message: str, context: ConversationContext) -> AgentResponse:
        """A follow-up step with the full history replayed."""
        return await self._run(user_message, context)

    async def _run(self, user_prompt: str, context: ConversationContext) -> AgentResponse:
        messages: list[BaseMessage] = [
            SystemMessage(content=self.build_system_prompt(context)),
            *replay_history(context.history),
            HumanMessage(content=user_prompt),
        ]
        tool_context = ToolExecutionContext(
            session_id=context.session_id,
            organization_id=context.organization_id,
            user_id=context.user_id,
            donor_ids=context.donor_ids,
            history=[{"role": m.role.value, "content": m.content} for m in context.history]
            + [{"role": MessageRole.USER.value, "content": user_prompt}],
            donor_analysis=context.donor_analysis,
            org_analysis=context.org_analysis,
        )
        tools = self.registry.as_openai_tools()

        tool_calls: list[ToolCall] = []
        tool_results: list[ToolResult] = []
        content = ""

        for _ in range(self.max_tool_rounds):
            reply = await self.completion.generate_with_tools(messages, tools)
            requested = [
                ToolCall(id=tc.get("id") or f"call_{uuid4().hex[:12]}", name=tc["name"], arguments=tc.get("args") or {})
                for tc in reply.tool_calls
            ]
            if not requested:
                content = _message_text(reply)
                break

            results = await self.registry.execute_many(requested, tool_context)
            tool_calls.extend(requested)
            tool_results.extend(results)

            messages.append(
                AIMessage(
                    content=reply.content,
                    tool_calls=[{"id": c.id, "name": c.name, "args": c.arguments} for c in requested],
                )
            )
            messages.extend(ToolMessage(content=_tool_payload(r), tool_call_id=r.tool_call_id) for r in results)

            donor_analysis, org_analysis = merge_context_results(
                requested, results, tool_context.donor_analysis, tool_context.org_analysis
            )
            if org_analysis is not tool_context.org_analysis:
                self.prompt_cache.invalidate((context.organization_id, context.user_id))
            tool_context.donor_analysis, tool_context.org_analysis = donor_analysis, org_analysis
        else:
            logger.warning(
                f"Tool round limit ({self.max_tool_rounds}) reached",
                extra={"session_id": context.session_id},
            )

        if not content:
            # An empty reply is retried once, without tools, with an explicit request for text
            logger.info("Empty reply from model, asking again for text", extra={"session_id": context.session_id})
            messages.append(HumanMessage(content=TEXT_REPLY_REMINDER))
            content = _message_text(await self.completion.generate_with_tools(messages, tools=None))
            if not content:
                raise UpstreamError("The assistant returned an empty reply")

        next_step = determine_next_step(context.current_step.value, tool_calls, tool_results)
        logger.info(
            f"Step {context.current_step.value} -> {next_step.value} after {len(tool_calls)} tool call(s)",
            extra={"session_id": context.session_id},
        )
        return AgentResponse(
            content=content,
            tool_calls=tool_calls,
            tool_results=tool_results,
            next_step=next_step,
            should_continue=next_step != SessionStep.COMPLETE,
        )
