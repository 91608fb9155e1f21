"""Tests for the email drafter and reviewer."""

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from smart_email.agents import EmailDrafter, EmailReviewer
from smart_email.agents.email_drafter import DraftOutput
from smart_email.agents.email_reviewer import ReviewOutput
from smart_email.errors import ValidationError
from smart_email.models import EmailDraft, ReviewResult


@pytest.fixture
def draft():
    return EmailDraft(donor_id=1, subject="Thank you, Ada", content="Dear Ada, your gift bought 40 books.")


@pytest.mark.asyncio
async def test_reviewer_approves(completion, chat_model, draft):
    chat_model.structured.ainvoke.return_value = ReviewOutput(result=ReviewResult.OK)
    reviewer = EmailReviewer(completion)

    verdict = await reviewer.review(
        "Write warmly.",
        "Donor: Ada Lovelace",
        [{"role": "user", "content": "Mention the open house"}],
        draft,
        instruction="Thank Ada for her gift and invite her to the May 12 open house.",
    )

    assert verdict.approved
    assert verdict.feedback is None
    (messages,), _ = chat_model.structured.ainvoke.call_args
    task = messages[1].content
    assert task.startswith("EMAIL GENERATION CONTEXT:")
    assert "FINAL INSTRUCTION:\nThank Ada for her gift and invite her to the May 12 open house." in task
    assert "Mention the open house" in task
    assert "your gift bought 40 books" in task


@pytest.mark.asyncio
async def test_rejection_without_feedback_gets_default(completion, chat_model, draft):
    chat_model.structured.ainvoke.return_value = ReviewOutput(result=ReviewResult.NEEDS_IMPROVEMENT)

    verdict = await EmailReviewer(completion).review("", "", [], draft)

    assert not verdict.approved
    assert verdict.feedback


@pytest.mark.asyncio
async def test_reviewer_temperature(completion, chat_model, model_factory, draft):
    chat_model.structured.ainvoke.return_value = ReviewOutput(result=ReviewResult.OK)

    await EmailReviewer(completion, temperature=0.1).review("", "", [], draft)

    assert model_factory.call_args.kwargs["temperature"] == 0.1


@pytest.mark.asyncio
async def test_unparseable_verdict_raises(completion, chat_model, draft):
    chat_model.structured.ainvoke.return_value = {"result": "MAYBE"}

    with pytest.raises(ValidationError):
        await EmailReviewer(completion).review("", "", [], draft)


@pytest.mark.asyncio
async def test_drafter_first_attempt(completion, chat_model):
    chat_model.structured.ainvoke.return_value = DraftOutput(subject="Hello", content="Body")

    result = await EmailDrafter(completion).draft(1, "Be brief", "Donor: Ada", system_prompt="Custom system")

    assert result == EmailDraft(donor_id=1, subject="Hello", content="Body")
    system, task = chat_model.structured.ainvoke.call_args.args[0]
    assert isinstance(system, SystemMessage)
    assert system.content == "Custom system"
    assert isinstance(task, HumanMessage)
    assert "Revision required" not in task.content


@pytest.mark.asyncio
async def test_drafter_revision_includes_feedback(completion, chat_model, draft):
    chat_model.structured.ainvoke.return_value = DraftOutput(subject="Hello again", content="Shorter body")

    await EmailDrafter(completion).draft(1, "Be brief", "Donor: Ada", previous=draft, feedback="Too long", attempt=2)

    task = chat_model.structured.ainvoke.call_args.args[0][1].content
    assert "attempt #2" in task
    assert "Too long" in task
    assert "Thank you, Ada" in task


@pytest.mark.asyncio
async def test_review_without_instruction_points_to_conversation(completion, chat_model, draft):
    chat_model.structured.ainvoke.return_value = ReviewOutput(result=ReviewResult.OK)

    await EmailReviewer(completion).review("", "", [], draft)

    task = chat_model.structured.ainvoke.call_args.args[0][1].content
    assert "FINAL INSTRUCTION:\nNot provided; use the conversation." in task
