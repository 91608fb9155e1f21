"""Tests for the instruction drafting tools."""

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from smart_email.models import ToolCall
from smart_email.tools import ToolExecutionContext

from conftest import INSTRUCTION_TEXT, make_generated_instruction, make_refined_instruction, make_summary


@pytest.fixture
def context():
    return ToolExecutionContext(
        session_id="s-1",
        organization_id="org-1",
        user_id="user-1",
        donor_ids=[1, 2],
        history=[{"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"} for i in range(8)],
        donor_analysis={"donors": [{"id": 1, "name": "Ada Lovelace"}]},
        org_analysis={"organization": {"name": "Readers Rise"}},
    )


def _sent_messages(chat_model):
    (messages,), _ = chat_model.structured.ainvoke.call_args
    return messages


@pytest.mark.asyncio
async def test_generate_instruction(registry, chat_model, context):
    chat_model.structured.ainvoke.return_value = make_generated_instruction()
    call = ToolCall(id="c1", name="generate_instruction", arguments={"user_preferences": {"tone": "warm"}})

    result = await registry.execute(call, context)

    assert result.ok
    assert result.result["instruction"] == INSTRUCTION_TEXT
    assert result.result["key_elements"]["tone"] == "Warm"
    system, task = _sent_messages(chat_model)
    assert isinstance(system, SystemMessage)
    assert isinstance(task, HumanMessage)
    assert "Ada Lovelace" in task.content
    assert "Readers Rise" in task.content
    assert '"tone": "warm"' in task.content
    assert "USER: turn 0" in task.content


@pytest.mark.asyncio
async def test_explicit_history_overrides_session_history(registry, chat_model, context):
    chat_model.structured.ainvoke.return_value = make_generated_instruction()
    call = ToolCall(
        id="c1",
        name="generate_instruction",
        arguments={"conversation_history": [{"role": "user", "content": "only this"}]},
    )

    await registry.execute(call, context)

    task = _sent_messages(chat_model)[1].content
    assert "USER: only this" in task
    assert "turn 0" not in task


@pytest.mark.asyncio
async def test_refine_uses_recent_turns_only(registry, chat_model, context):
    chat_model.structured.ainvoke.return_value = make_refined_instruction()
    call = ToolCall(
        id="c1",
        name="refine_instruction",
        arguments={"current_instruction": INSTRUCTION_TEXT, "user_feedback": "Make it shorter"},
    )

    result = await registry.execute(call, context)

    assert result.ok
    assert result.result["refined_instruction"].endswith("Keep it under 150 words.")
    assert result.result["changes_applied"][0]["change"] == "Added a length limit"
    task = _sent_messages(chat_model)[1].content
    assert "Make it shorter" in task
    assert "turn 2" not in task
    assert "turn 3" in task
    assert "turn 7" in task
    chat_model.with_structured_output.assert_called_once()


@pytest.mark.asyncio
async def test_refine_requires_feedback(registry, chat_model, context):
    call = ToolCall(
        id="c1",
        name="refine_instruction",
        arguments={"current_instruction": INSTRUCTION_TEXT, "user_feedback": ""},
    )

    result = await registry.execute(call, context)

    assert result.error.startswith("validation_error")
    chat_model.structured.ainvoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_summarize_for_generation(registry, chat_model, model_factory, context):
    chat_model.structured.ainvoke.return_value = make_summary()
    call = ToolCall(id="c1", name="summarize_for_generation", arguments={"approved_instruction": INSTRUCTION_TEXT})

    result = await registry.execute(call, context)

    assert result.result["final_instruction"] == INSTRUCTION_TEXT
    assert model_factory.call_args.kwargs["temperature"] == 0.3


@pytest.mark.asyncio
async def test_schema_violations_become_validation_errors(registry, chat_model, context):
    chat_model.structured.ainvoke.return_value = {"instruction": "too short", "confidence": 3}

    result = await registry.execute(ToolCall(id="c1", name="generate_instruction", arguments={}), context)

    assert result.error.startswith("validation_error")
    assert chat_model.structured.ainvoke.await_count == 3


@pytest.mark.asyncio
async def test_second_attempt_can_recover(registry, chat_model, context):
    chat_model.structured.ainvoke.side_effect = [{"instruction": "too short"}, make_generated_instruction()]

    result = await registry.execute(ToolCall(id="c1", name="generate_instruction", arguments={}), context)

    assert result.ok
    assert chat_model.structured.ainvoke.await_count == 2
