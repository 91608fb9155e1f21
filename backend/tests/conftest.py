"""Test fixtures for the smart email engine."""

import os
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from langchain_core.messages import AIMessage
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from smart_email.agents import SmartEmailAgent
from smart_email.db import init_db
from smart_email.llm import CompletionClient
from smart_email.providers import (
    CommunicationThread,
    DonationRecord,
    DonorRecord,
    InMemoryDataProvider,
    OrganizationRecord,
    PersonResearch,
    StaffRecord,
    UserRecord,
)
from smart_email.services import SmartEmailGenerationService, SqlSessionRepository
from smart_email.tools import (
    GeneratedInstruction,
    GenerationSummary,
    RefinedInstruction,
    create_tool_registry,
)

ORG_ID = "org-1"
USER_ID = "user-1"

INSTRUCTION_TEXT = (
    "Write a warm thank-you email to each donor that opens by naming their most recent gift and the "
    "project it supported, explains in two sentences what that gift made possible this year, invites "
    "them to the spring open house on May 12, and closes with a personal sign-off from the sender."
)


def tool_call(name: str, args: dict | None = None, call_id: str | None = None) -> dict:
    return {"name": name, "args": args or {}, "id": call_id or f"call_{name}"}


def ai_tools(*calls: dict, content: str = "") -> AIMessage:
    """A model reply that requests tool calls."""
    return AIMessage(content=content, tool_calls=list(calls))


def ai_text(content: str) -> AIMessage:
    return AIMessage(content=content)


def make_generated_instruction(instruction: str = INSTRUCTION_TEXT) -> GeneratedInstruction:
    return GeneratedInstruction(
        instruction=instruction,
        reasoning=(
            "Both donors gave to the literacy program within the last year, so naming the gift and its "
            "impact makes the email personal, and the open house gives a concrete next step."
        ),
        confidence=0.82,
        key_elements={
            "tone": "Warm",
            "personalization": ["Most recent gift", "Project supported"],
            "structure": "Thanks, impact, invitation, sign-off",
            "call_to_action": "RSVP to the open house",
        },
        examples={
            "opening_line": "Thank you for your gift to our reading program this spring.",
            "personalized_element": "Your gift bought 40 new books.",
            "closing_line": "I hope to see you on May 12.",
        },
    )


def make_refined_instruction(text: str = INSTRUCTION_TEXT + " Keep it under 150 words.") -> RefinedInstruction:
    return RefinedInstruction(
        refined_instruction=text,
        changes_applied=[{"change": "Added a length limit", "reasoning": "The user asked for shorter emails"}],
        improvement_summary="Shorter emails",
        confidence_score=0.9,
    )


def make_summary(final_instruction: str = INSTRUCTION_TEXT) -> GenerationSummary:
    return GenerationSummary(
        final_instruction=final_instruction,
        reasoning="The user approved the drafted instruction without further changes requested.",
        confidence=0.95,
        key_insights={"donor_insights": ["Recent literacy donors"]},
        recommended_approach={
            "tone": "Warm",
            "structure": "Thanks, impact, invitation",
            "call_to_action": "RSVP",
        },
    )


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlSessionRepository(engine)


@pytest.fixture
def provider():
    """Two donors of org-1, one donor of another organization."""
    now = datetime(2026, 10, 1, 12, 0, 0)
    return InMemoryDataProvider(
        donors=[
            DonorRecord(id=1, organization_id=ORG_ID, first_name="Ada", last_name="Lovelace",
                        email="ada@example.org", notes=["Prefers email over phone"]),
            DonorRecord(id=2, organization_id=ORG_ID, first_name="Grace", last_name="Hopper",
                        email="grace@example.org"),
            DonorRecord(id=3, organization_id="org-2", first_name="Other", last_name="Org"),
        ],
        donations=[
            DonationRecord(id=1, donor_id=1, amount=5000, date=now - timedelta(days=400), project_name="Literacy"),
            DonationRecord(id=2, donor_id=1, amount=10000, date=now - timedelta(days=200), project_name="Literacy"),
            DonationRecord(id=3, donor_id=1, amount=15000, date=now - timedelta(days=20), project_name="Literacy"),
            DonationRecord(id=4, donor_id=2, amount=2500, date=now - timedelta(days=90)),
        ],
        communications=[
            CommunicationThread(id=1, donor_id=1, messages=["Thanks for the tour last month! " * 20],
                                created_at=now - timedelta(days=30)),
        ],
        research=[
            PersonResearch(donor_id=1, answer="Ada is a startup founder and serves on a hospital board.",
                           profession="Engineer", location="London", total_sources=3),
        ],
        organizations=[
            OrganizationRecord(
                id=ORG_ID,
                name="Readers Rise",
                description="We run after-school education programs for students in underserved neighborhoods.",
                short_description="After-school literacy",
                writing_instructions="Keep it personal and warm.",
                memories=["Opened our third reading room in 2025"],
            ),
        ],
        users=[
            UserRecord(id=USER_ID, email="sam@readersrise.org", first_name="Sam", last_name="Rivera",
                       memories=["Always thank donors for their gratitude notes"]),
        ],
        staff=[
            StaffRecord(id=7, organization_id=ORG_ID, email="sam@readersrise.org", first_name="Sam",
                        last_name="Rivera", position="Development Director", signature="Sam Rivera, Readers Rise"),
        ],
    )


@pytest.fixture
def chat_model():
    """
    Stand-in chat model. Queue tool-calling replies on ``ainvoke`` and
    structured objects on ``structured.ainvoke``.
    """
    model = MagicMock()
    model.ainvoke = AsyncMock()
    model.bind_tools.return_value = model
    structured = MagicMock()
    structured.ainvoke = AsyncMock()
    model.with_structured_output.return_value = structured
    model.structured = structured
    return model


@pytest.fixture
def model_factory(chat_model):
    return MagicMock(return_value=chat_model)


@pytest.fixture
def completion(model_factory):
    return CompletionClient(model_factory=model_factory, timeout_seconds=5)


@pytest.fixture
def registry(provider, completion):
    return create_tool_registry(provider, provider, completion)


@pytest.fixture
def agent(registry, completion):
    return SmartEmailAgent(registry, completion)


@pytest.fixture
def service(store, agent):
    return SmartEmailGenerationService(store, agent, backoff_seconds=0)
