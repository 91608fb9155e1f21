"""Session lifecycle: start, continue, inspect, abandon and resume conversations."""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4
from pydantic import BaseModel

from smart_email.agents import SmartEmailAgent, latest_result, merge_context_results
from smart_email.config import settings
from smart_email.errors import (
    BadRequestError,
    NotFoundError,
    SmartEmailError,
    UnauthorizedError,
    UpstreamError,
    UpstreamTimeoutError,
)
from smart_email.models import (
    AgentResponse,
    ConversationContext,
    ConversationMessage,
    MessageCreate,
    MessageResponse,
    MessageRole,
    SessionCreate,
    SessionResponse,
    SessionStatus,
    SessionStep,
    SessionUpdate,
    SmartEmailMessage,
    SmartEmailSession,
    ToolCall,
    ToolResult,
    utcnow,
)
from smart_email.tools import ToolName

from .session_store import SessionRepository

logger = logging.getLogger(__name__)


class StartSessionResult(BaseModel):
    session_id: str
    response: AgentResponse
    current_step: SessionStep


class ContinueResult(BaseModel):
    response: AgentResponse
    current_step: SessionStep
    is_complete: bool
    final_instruction: Optional[str] = None


class SessionState(BaseModel):
    session: SessionResponse
    messages: list[MessageResponse]
    current_step: SessionStep
    is_complete: bool


def to_conversation_message(message: SmartEmailMessage) -> ConversationMessage:
    return ConversationMessage(
        role=MessageRole(message.role),
        content=message.content,
        tool_calls=[ToolCall(**c) for c in message.tool_calls or []],
        tool_results=[ToolResult(**r) for r in message.tool_results or []],
    )


def extract_final_instruction(
    session: SmartEmailSession,
    history: list[ConversationMessage],
    response: AgentResponse,
) -> str:
    """
    Instruction to hand to generation once the session completes.

    Prefers the finalize tool's output, then a stored final instruction,
    then the latest refined or generated draft, then the initial request.
    """
    summary = latest_result(response.tool_calls, response.tool_results, ToolName.SUMMARIZE_FOR_GENERATION)
    if summary and summary.get("final_instruction"):
        return summary["final_instruction"]
    if session.final_instruction:
        return session.final_instruction

    calls: list[ToolCall] = []
    results: list[ToolResult] = []
    for message in history:
        calls.extend(message.tool_calls)
        results.extend(message.tool_results)
    calls.extend(response.tool_calls)
    results.extend(response.tool_results)

    for name, key in (
        (ToolName.REFINE_INSTRUCTION, "refined_instruction"),
        (ToolName.GENERATE_INSTRUCTION, "instruction"),
    ):
        draft = latest_result(calls, results, name)
        if draft and draft.get(key):
            return draft[key]
    return session.initial_instruction


class SmartEmailGenerationService:
    """
    Owns session state. Every turn is serialized per session and persisted
    atomically: the user message, the assistant message and the session
    update land together or not at all.
    """

    def __init__(
        self,
        store: SessionRepository,
        agent: SmartEmailAgent,
        ttl_hours: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.store = store
        self.agent = agent
        self.ttl_hours = ttl_hours or settings.session_ttl_hours
        self.max_retries = max_retries or settings.llm_max_retries
        self.backoff_seconds = settings.retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.lease_seconds = lease_seconds or settings.session_lock_seconds
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _keep_lease(self, session_id: str, holder: str):
        """Renew the lease while the holder is still working."""
        while True:
            await asyncio.sleep(self.lease_seconds / 3)
            try:
                if not self.store.renew_lease(session_id, holder, self.lease_seconds):
                    logger.warning("Session lease lost", extra={"session_id": session_id})
                    return
            except SmartEmailError as e:
                logger.error(f"Failed to renew session lease: {e}", extra={"session_id": session_id})

    @asynccontextmanager
    async def _leased(self, session_id: str) -> AsyncIterator[str]:
        """
        Hold the database lease on a session for the duration of the block.

        The lease is renewed in the background and released only by its holder,
        so another worker or the cleanup sweep never sees it lapse mid-turn.
        """
        holder = uuid4().hex
        if not self.store.acquire_lease(session_id, holder, self.lease_seconds):
            if self.store.get(session_id) is None:
                raise NotFoundError(f"Session not found: {session_id}")
            raise BadRequestError("Session is busy with another message")
        heartbeat = asyncio.create_task(self._keep_lease(session_id, holder))
        try:
            yield holder
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            self.store.release_lease(session_id, holder)

    def _load_owned(self, session_id: str, organization_id: str, user_id: str) -> SmartEmailSession:
        session = self.store.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if session.organization_id != organization_id or session.user_id != user_id:
            raise UnauthorizedError("Session belongs to another user")
        return session

    @staticmethod
    def _ensure_active(session: SmartEmailSession):
        if session.status != SessionStatus.ACTIVE.value:
            raise BadRequestError(f"Session is {session.status}; resume it before sending messages")

    def _build_context(self, session: SmartEmailSession, history: list[ConversationMessage]) -> ConversationContext:
        return ConversationContext(
            session_id=session.session_id,
            organization_id=session.organization_id,
            user_id=session.user_id,
            donor_ids=session.donor_ids,
            current_step=SessionStep(session.current_step),
            initial_instruction=session.initial_instruction,
            history=history,
            donor_analysis=session.donor_analysis,
            org_analysis=session.org_analysis,
        )

    async def _run_with_retry(
        self,
        operation: Callable[[], Awaitable[AgentResponse]],
        session_id: str,
    ) -> AgentResponse:
        """Retry transient agent failures with exponential backoff."""
        last_error: Optional[SmartEmailError] = None
        for attempt in range(self.max_retries):
            try:
                return await operation()
            except SmartEmailError as e:
                if not e.retryable:
                    raise
                last_error = e
                if attempt == self.max_retries - 1:
                    break
                delay = min(self.backoff_seconds * 2 ** attempt, settings.retry_backoff_max_seconds)
                logger.warning(
                    f"Agent step failed ({e.code}), retrying in {delay}s (attempt {attempt + 1}/{self.max_retries})",
                    extra={"session_id": session_id},
                )
                await asyncio.sleep(delay)

        logger.error(f"Agent step failed after {self.max_retries} attempts", extra={"session_id": session_id})
        error_cls = UpstreamTimeoutError if isinstance(last_error, UpstreamTimeoutError) else UpstreamError
        raise error_cls("The assistant is unavailable right now, please try again") from last_error

    def _commit_turn(
        self,
        session: SmartEmailSession,
        user_content: str,
        history: list[ConversationMessage],
        response: AgentResponse,
        lease_holder: Optional[str] = None,
    ) -> SmartEmailSession:
        donor_analysis, org_analysis = merge_context_results(
            response.tool_calls, response.tool_results, session.donor_analysis, session.org_analysis
        )
        fields = {
            "current_step": response.next_step.value,
            "donor_analysis": donor_analysis,
            "org_analysis": org_analysis,
        }
        if response.next_step == SessionStep.COMPLETE:
            fields["status"] = SessionStatus.COMPLETED.value
            fields["final_instruction"] = extract_final_instruction(session, history, response)

        messages = [
            MessageCreate(role=MessageRole.USER.value, content=user_content),
            MessageCreate(
                role=MessageRole.ASSISTANT.value,
                content=response.content,
                tool_calls=[c.model_dump(mode="json") for c in response.tool_calls] or None,
                tool_results=[r.model_dump(mode="json") for r in response.tool_results] or None,
            ),
        ]
        return self.store.commit_turn(
            session.session_id, messages, SessionUpdate(**fields), lease_holder=lease_holder
        )

    def create_session(
        self,
        organization_id: str,
        user_id: str,
        donor_ids: list[int],
        initial_instruction: str,
    ) -> SmartEmailSession:
        """Create an active session in the analyzing step."""
        if not donor_ids:
            raise BadRequestError("At least one donor is required")
        if not initial_instruction.strip():
            raise BadRequestError("An initial instruction is required")
        session = self.store.create(
            SessionCreate(
                organization_id=organization_id,
                user_id=user_id,
                donor_ids=list(dict.fromkeys(donor_ids)),
                initial_instruction=initial_instruction.strip(),
            ),
            ttl_hours=self.ttl_hours,
        )
        logger.info(f"Created session for {len(session.donor_ids)} donor(s)", extra={"session_id": session.session_id})
        return session

    async def start_session(
        self,
        organization_id: str,
        user_id: str,
        donor_ids: list[int],
        initial_instruction: str,
    ) -> StartSessionResult:
        """Create a session and run its first step. A failed first step leaves no session behind."""
        session = self.create_session(organization_id, user_id, donor_ids, initial_instruction)
        context = self._build_context(session, [])
        try:
            response = await self._run_with_retry(
                lambda: self.agent.process_initial(session.initial_instruction, context),
                session.session_id,
            )
            session = self._commit_turn(session, session.initial_instruction, [], response)
        except Exception:
            self.store.delete(session.session_id)
            raise
        return StartSessionResult(
            session_id=session.session_id,
            response=response,
            current_step=SessionStep(session.current_step),
        )

    async def continue_session(
        self,
        session_id: str,
        user_message: str,
        organization_id: str,
        user_id: str,
    ) -> ContinueResult:
        """Run one user turn. Checks ownership and status before anything is written."""
        session = self._load_owned(session_id, organization_id, user_id)
        self._ensure_active(session)
        if not user_message.strip():
            raise BadRequestError("Message cannot be empty")

        async with self._lock_for(session_id), self._leased(session_id) as holder:
            # Re-read under the guard; the previous turn may have changed it
            session = self._load_owned(session_id, organization_id, user_id)
            self._ensure_active(session)
            history = [to_conversation_message(m) for m in self.store.list_messages(session_id)]
            context = self._build_context(session, history)
            response = await self._run_with_retry(
                lambda: self.agent.process_turn(user_message, context),
                session_id,
            )
            session = self._commit_turn(session, user_message, history, response, lease_holder=holder)

        is_complete = session.current_step == SessionStep.COMPLETE.value
        return ContinueResult(
            response=response,
            current_step=SessionStep(session.current_step),
            is_complete=is_complete,
            final_instruction=session.final_instruction if is_complete else None,
        )

    def get_state(self, session_id: str, organization_id: str, user_id: str) -> SessionState:
        """Read-only snapshot of a session and its message log."""
        session = self._load_owned(session_id, organization_id, user_id)
        messages = self.store.list_messages(session_id)
        return SessionState(
            session=SessionResponse.model_validate(session),
            messages=[MessageResponse.model_validate(m) for m in messages],
            current_step=SessionStep(session.current_step),
            is_complete=session.current_step == SessionStep.COMPLETE.value,
        )

    async def abandon(self, session_id: str, organization_id: str, user_id: str) -> SessionResponse:
        """Mark a session abandoned; it accepts no turns until resumed."""
        async with self._lock_for(session_id):
            self._load_owned(session_id, organization_id, user_id)
            async with self._leased(session_id):
                session = self.store.update(session_id, SessionUpdate(status=SessionStatus.ABANDONED.value))
        logger.info("Session abandoned", extra={"session_id": session_id})
        return SessionResponse.model_validate(session)

    async def resume(self, session_id: str, organization_id: str, user_id: str) -> SessionResponse:
        """Reactivate a session and push its expiry out by the session TTL."""
        async with self._lock_for(session_id):
            self._load_owned(session_id, organization_id, user_id)
            async with self._leased(session_id):
                session = self.store.update(
                    session_id,
                    SessionUpdate(
                        status=SessionStatus.ACTIVE.value,
                        expires_at=utcnow() + timedelta(hours=self.ttl_hours),
                    ),
                )
        logger.info("Session resumed", extra={"session_id": session_id})
        return SessionResponse.model_validate(session)

    def list_active_sessions(self, organization_id: str, user_id: str) -> list[SessionResponse]:
        return [
            SessionResponse.model_validate(s)
            for s in self.store.list_active_for_user(organization_id, user_id)
        ]
