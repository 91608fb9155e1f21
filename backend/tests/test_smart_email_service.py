"""Tests for the session lifecycle service."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from smart_email.errors import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from smart_email.models import AgentResponse, SessionStatus, SessionStep, SessionUpdate, utcnow
from smart_email.services import SmartEmailGenerationService

from conftest import (
    INSTRUCTION_TEXT,
    ORG_ID,
    USER_ID,
    ai_text,
    ai_tools,
    make_generated_instruction,
    make_refined_instruction,
    make_summary,
    tool_call,
)


def _context_reply():
    return ai_tools(
        tool_call("get_donor_info", {"donor_ids": [1, 2]}, "call_donors"),
        tool_call("get_organization_context", {"organization_id": ORG_ID, "user_id": USER_ID}, "call_org"),
    )


async def _start(service, chat_model):
    chat_model.ainvoke.side_effect = [_context_reply(), ai_text("Both donors support literacy. Which tone?")]
    return await service.start_session(ORG_ID, USER_ID, [1, 2], "Thank donors for their spring gifts")


@pytest.mark.asyncio
async def test_full_conversation(service, store, chat_model):
    started = await _start(service, chat_model)
    assert started.current_step == SessionStep.ANALYZING
    session = store.get(started.session_id)
    assert [d["id"] for d in session.donor_analysis["donors"]] == [1, 2]
    assert session.org_analysis["organization"]["name"] == "Readers Rise"

    chat_model.ainvoke.side_effect = [ai_text("Warm it is. Anything else to include?")]
    turn = await service.continue_session(started.session_id, "Warm, please", ORG_ID, USER_ID)
    assert turn.current_step == SessionStep.ANALYZING
    assert not turn.is_complete

    chat_model.ainvoke.side_effect = [ai_tools(tool_call("generate_instruction")), ai_text("Here is a draft.")]
    chat_model.structured.ainvoke.side_effect = [make_generated_instruction()]
    turn = await service.continue_session(started.session_id, "Mention the open house", ORG_ID, USER_ID)
    assert turn.current_step == SessionStep.REFINING

    chat_model.ainvoke.side_effect = [
        ai_tools(tool_call("refine_instruction", {"current_instruction": INSTRUCTION_TEXT, "user_feedback": "Shorter"})),
        ai_text("Updated."),
    ]
    chat_model.structured.ainvoke.side_effect = [make_refined_instruction()]
    turn = await service.continue_session(started.session_id, "Make it shorter", ORG_ID, USER_ID)
    assert turn.current_step == SessionStep.REFINING
    assert turn.final_instruction is None

    chat_model.ainvoke.side_effect = [
        ai_tools(tool_call("summarize_for_generation", {"approved_instruction": INSTRUCTION_TEXT})),
        ai_text("The instruction is final."),
    ]
    chat_model.structured.ainvoke.side_effect = [make_summary()]
    turn = await service.continue_session(started.session_id, "Looks good, go ahead", ORG_ID, USER_ID)

    assert turn.is_complete
    assert turn.current_step == SessionStep.COMPLETE
    assert turn.final_instruction == INSTRUCTION_TEXT
    assert not turn.response.should_continue

    state = service.get_state(started.session_id, ORG_ID, USER_ID)
    assert state.is_complete
    assert state.session.status == SessionStatus.COMPLETED.value
    assert [m.message_index for m in state.messages] == list(range(10))
    assert [m.role for m in state.messages[:2]] == ["user", "assistant"]
    assert state.messages[1].tool_calls[0]["name"] == "get_donor_info"
    assert state.messages[1].tool_results[0]["tool_call_id"] == "call_donors"


@pytest.mark.asyncio
async def test_history_is_replayed_on_continue(service, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.side_effect = [ai_text("Noted.")]

    await service.continue_session(started.session_id, "Warm, please", ORG_ID, USER_ID)

    (messages,), _ = chat_model.ainvoke.call_args
    assert [m.type for m in messages] == ["system", "human", "ai", "tool", "tool", "ai", "human"]
    assert "Readers Rise" in messages[0].content
    assert messages[-1].content == "Warm, please"


@pytest.mark.asyncio
async def test_final_instruction_falls_back_to_latest_draft(service, store, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.side_effect = [ai_tools(tool_call("generate_instruction")), ai_text("Draft ready.")]
    chat_model.structured.ainvoke.side_effect = [make_generated_instruction()]
    await service.continue_session(started.session_id, "Draft it", ORG_ID, USER_ID)

    # The finalize call succeeds but returns no usable instruction text
    summary = make_summary()
    chat_model.ainvoke.side_effect = [ai_tools(tool_call("summarize_for_generation")), ai_text("Final.")]
    chat_model.structured.ainvoke.side_effect = [summary.model_copy(update={"final_instruction": ""})]
    turn = await service.continue_session(started.session_id, "Approved", ORG_ID, USER_ID)

    assert turn.is_complete
    assert turn.final_instruction == INSTRUCTION_TEXT


@pytest.mark.asyncio
async def test_failed_finalize_does_not_complete(service, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.side_effect = [ai_tools(tool_call("summarize_for_generation")), ai_text("Something broke.")]
    chat_model.structured.ainvoke.return_value = {"final_instruction": "short"}

    turn = await service.continue_session(started.session_id, "Approved", ORG_ID, USER_ID)

    assert not turn.is_complete
    assert turn.current_step == SessionStep.ANALYZING


@pytest.mark.asyncio
async def test_start_rejects_empty_donors(service, store):
    with pytest.raises(BadRequestError):
        await service.start_session(ORG_ID, USER_ID, [], "Thank them")
    assert store.list_active_for_user(ORG_ID, USER_ID) == []


@pytest.mark.asyncio
async def test_start_rejects_blank_instruction(service):
    with pytest.raises(BadRequestError):
        await service.start_session(ORG_ID, USER_ID, [1], "   ")


@pytest.mark.asyncio
async def test_failed_start_leaves_no_session(service, store, chat_model):
    chat_model.ainvoke.side_effect = asyncio.TimeoutError()

    with pytest.raises(UpstreamTimeoutError):
        await service.start_session(ORG_ID, USER_ID, [1, 2], "Thank them")

    assert chat_model.ainvoke.await_count == 3
    assert store.list_active_for_user(ORG_ID, USER_ID) == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried(service, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.side_effect = [asyncio.TimeoutError(), ai_text("Back again.")]

    turn = await service.continue_session(started.session_id, "Hello?", ORG_ID, USER_ID)

    assert turn.response.content == "Back again."
    state = service.get_state(started.session_id, ORG_ID, USER_ID)
    assert len(state.messages) == 4


@pytest.mark.asyncio
async def test_exhausted_retries_write_nothing(store, agent, chat_model):
    service = SmartEmailGenerationService(store, agent, max_retries=2, backoff_seconds=0)
    started = await _start(service, chat_model)
    agent.process_turn = AsyncMock(side_effect=ValidationError("bad output"))

    with pytest.raises(UpstreamError) as excinfo:
        await service.continue_session(started.session_id, "Hello?", ORG_ID, USER_ID)

    assert "try again" in excinfo.value.message
    assert agent.process_turn.await_count == 2
    assert len(store.list_messages(started.session_id)) == 2
    assert store.acquire_lease(started.session_id, "another-worker", 60)


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately(service, agent, chat_model):
    started = await _start(service, chat_model)
    agent.process_turn = AsyncMock(side_effect=NotFoundError("donor gone"))

    with pytest.raises(NotFoundError):
        await service.continue_session(started.session_id, "Hello?", ORG_ID, USER_ID)

    assert agent.process_turn.await_count == 1


@pytest.mark.asyncio
async def test_unknown_session(service):
    with pytest.raises(NotFoundError):
        await service.continue_session("smart_email_missing", "hi", ORG_ID, USER_ID)


@pytest.mark.asyncio
async def test_other_user_is_rejected_without_writes(service, store, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.reset_mock()

    with pytest.raises(UnauthorizedError):
        await service.continue_session(started.session_id, "hi", ORG_ID, "user-2")
    with pytest.raises(UnauthorizedError):
        service.get_state(started.session_id, "org-2", USER_ID)

    chat_model.ainvoke.assert_not_awaited()
    assert len(store.list_messages(started.session_id)) == 2


@pytest.mark.asyncio
async def test_blank_message_rejected(service, chat_model):
    started = await _start(service, chat_model)

    with pytest.raises(BadRequestError):
        await service.continue_session(started.session_id, "  ", ORG_ID, USER_ID)


@pytest.mark.asyncio
async def test_abandon_and_resume(service, store, chat_model):
    started = await _start(service, chat_model)
    before = store.get(started.session_id).expires_at

    abandoned = await service.abandon(started.session_id, ORG_ID, USER_ID)
    assert abandoned.status == SessionStatus.ABANDONED.value
    with pytest.raises(BadRequestError):
        await service.continue_session(started.session_id, "hi", ORG_ID, USER_ID)
    assert len(store.list_messages(started.session_id)) == 2
    assert service.list_active_sessions(ORG_ID, USER_ID) == []

    resumed = await service.resume(started.session_id, ORG_ID, USER_ID)
    assert resumed.status == SessionStatus.ACTIVE.value
    assert resumed.expires_at >= before

    chat_model.ainvoke.side_effect = [ai_text("Welcome back.")]
    turn = await service.continue_session(started.session_id, "hi", ORG_ID, USER_ID)
    assert turn.response.content == "Welcome back."


@pytest.mark.asyncio
async def test_abandon_requires_owner(service, chat_model):
    started = await _start(service, chat_model)

    with pytest.raises(UnauthorizedError):
        await service.abandon(started.session_id, ORG_ID, "user-2")


@pytest.mark.asyncio
async def test_get_state_is_read_only(service, chat_model):
    started = await _start(service, chat_model)

    first = service.get_state(started.session_id, ORG_ID, USER_ID)
    second = service.get_state(started.session_id, ORG_ID, USER_ID)

    assert first == second
    assert first.current_step == SessionStep.ANALYZING
    assert not first.is_complete


@pytest.mark.asyncio
async def test_concurrent_turns_are_serialized(service, store, chat_model):
    started = await _start(service, chat_model)
    chat_model.ainvoke.side_effect = [ai_text("First answer."), ai_text("Second answer.")]

    await asyncio.gather(
        service.continue_session(started.session_id, "one", ORG_ID, USER_ID),
        service.continue_session(started.session_id, "two", ORG_ID, USER_ID),
    )

    messages = store.list_messages(started.session_id)
    assert [m.message_index for m in messages] == list(range(6))
    assert [m.role for m in messages] == ["user", "assistant"] * 3


@pytest.mark.asyncio
async def test_leased_session_is_busy(service, store, chat_model):
    started = await _start(service, chat_model)
    store.acquire_lease(started.session_id, "another-worker", 60)

    with pytest.raises(BadRequestError, match="busy"):
        await service.continue_session(started.session_id, "hi", ORG_ID, USER_ID)


@pytest.mark.asyncio
async def test_abandon_and_resume_respect_a_held_lease(service, store, chat_model):
    started = await _start(service, chat_model)
    store.acquire_lease(started.session_id, "another-worker", 60)

    with pytest.raises(BadRequestError, match="busy"):
        await service.abandon(started.session_id, ORG_ID, USER_ID)
    with pytest.raises(BadRequestError, match="busy"):
        await service.resume(started.session_id, ORG_ID, USER_ID)
    assert store.get(started.session_id).status == SessionStatus.ACTIVE.value

    store.release_lease(started.session_id, "another-worker")
    abandoned = await service.abandon(started.session_id, ORG_ID, USER_ID)
    assert abandoned.status == SessionStatus.ABANDONED.value
    assert store.get(started.session_id).lease_holder is None


@pytest.mark.asyncio
async def test_lease_is_renewed_during_a_long_turn(store, agent, chat_model):
    service = SmartEmailGenerationService(store, agent, backoff_seconds=0, lease_seconds=1)
    started = await _start(service, chat_model)

    async def slow_turn(message, context):
        await asyncio.sleep(1.5)
        return AgentResponse(content="Took a while.", next_step=SessionStep.ANALYZING)

    agent.process_turn = AsyncMock(side_effect=slow_turn)

    async def sweep_mid_turn():
        await asyncio.sleep(1.2)
        swept = store.sweep_expired(utcnow() + timedelta(hours=25))
        taken = store.acquire_lease(started.session_id, "another-worker", 60)
        return swept, taken

    turn, (swept, taken) = await asyncio.gather(
        service.continue_session(started.session_id, "hi", ORG_ID, USER_ID),
        sweep_mid_turn(),
    )

    assert swept == 0
    assert not taken
    assert turn.response.content == "Took a while."
    assert len(store.list_messages(started.session_id)) == 4
    assert store.get(started.session_id).lease_holder is None


@pytest.mark.asyncio
async def test_turn_is_not_committed_after_losing_the_lease(store, agent, chat_model):
    service = SmartEmailGenerationService(store, agent, backoff_seconds=0)
    started = await _start(service, chat_model)

    async def turn_overtaken(message, context):
        # Another worker takes the session over while this turn is running
        session = store.get(started.session_id)
        store.release_lease(started.session_id, session.lease_holder)
        store.acquire_lease(started.session_id, "another-worker", 60)
        return AgentResponse(content="Too late.", next_step=SessionStep.ANALYZING)

    agent.process_turn = AsyncMock(side_effect=turn_overtaken)

    with pytest.raises(BadRequestError, match="taken over"):
        await service.continue_session(started.session_id, "hi", ORG_ID, USER_ID)

    assert len(store.list_messages(started.session_id)) == 2
    assert store.get(started.session_id).lease_holder == "another-worker"


@pytest.mark.asyncio
async def test_expired_session_cannot_continue_after_sweep(service, store, chat_model):
    started = await _start(service, chat_model)

    assert store.sweep_expired(utcnow() + timedelta(hours=25)) == 1

    with pytest.raises(NotFoundError):
        await service.continue_session(started.session_id, "hi", ORG_ID, USER_ID)


@pytest.mark.asyncio
async def test_completed_session_rejects_turns(service, store, chat_model):
    started = await _start(service, chat_model)
    store.update(
        started.session_id,
        SessionUpdate(status=SessionStatus.COMPLETED.value, current_step=SessionStep.COMPLETE.value),
    )

    with pytest.raises(BadRequestError):
        await service.continue_session(started.session_id, "one more thing", ORG_ID, USER_ID)
