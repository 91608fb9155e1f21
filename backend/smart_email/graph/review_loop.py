"""LangGraph workflow for generating and reviewing one donor's email."""
import logging
from typing import Literal, Optional, Protocol
from langgraph.graph import END, StateGraph

from smart_email.config import settings
from smart_email.errors import SmartEmailError
from smart_email.models import (
    EmailDraft,
    ReviewedEmail,
    ReviewLoopState,
    ReviewVerdict,
    add_note,
    create_review_state,
)

logger = logging.getLogger(__name__)


class EmailGenerator(Protocol):
    async def draft(
        self,
        donor_id: int,
        instruction: str,
        donor_context: str,
        previous: Optional[EmailDraft] = None,
        feedback: str = "",
        attempt: int = 1,
        system_prompt: str = "",
    ) -> EmailDraft:
        ...


class Reviewer(Protocol):
    async def review(
        self,
        system_prompt: str,
        donor_context: str,
        chat_history: list[dict],
        draft: EmailDraft,
        instruction: str = "",
    ) -> ReviewVerdict:
        ...


def route_after_review(state: ReviewLoopState) -> Literal["drafter", "__end__"]:
    """Regenerate while the reviewer rejects and attempts remain."""
    if state.get("verified") or state.get("error"):
        return END
    if state["attempt"] >= state["max_attempts"]:
        logger.info(f"Donor {state['donor_id']}: review attempts exhausted, keeping last draft unverified")
        return END
    return "drafter"


def create_review_workflow(generator: EmailGenerator, reviewer: Reviewer):
    """
    Create the per-donor review loop.

    Graph Structure:
        drafter -> reviewer --(NEEDS_IMPROVEMENT, attempts left)--> drafter
                            --(OK, exhausted or review error)--> END
    """

    async def drafter_node(state: ReviewLoopState) -> dict:
        attempt = state["attempt"] + 1
        previous = EmailDraft(**state["current_draft"]) if state["current_draft"] else None
        draft = await generator.draft(
            donor_id=state["donor_id"],
            instruction=state["instruction"],
            donor_context=state["donor_context"],
            previous=previous,
            feedback=state["feedback"],
            attempt=attempt,
            system_prompt=state["system_prompt"],
        )
        message = f"Draft {attempt} generated" + (" from reviewer feedback." if previous else ".")
        return {
            "current_draft": draft.model_dump(),
            "attempt": attempt,
            "notes": add_note(state, "drafter", message),
        }

    async def reviewer_node(state: ReviewLoopState) -> dict:
        draft = EmailDraft(**state["current_draft"])
        try:
            verdict = await reviewer.review(
                system_prompt=state["system_prompt"],
                donor_context=state["donor_context"],
                chat_history=state["chat_history"],
                draft=draft,
                instruction=state["instruction"],
            )
        except SmartEmailError as e:
            logger.warning(f"Review failed for donor {state['donor_id']}: {e.message}")
            return {
                "verified": False,
                "error": f"Review failed: {e.message}",
                "notes": add_note(state, "reviewer", "Review failed; keeping the draft unverified."),
            }

        message = f"Verdict on draft {state['attempt']}: {verdict.result.value}"
        return {
            "verdict": verdict.result.value,
            "feedback": verdict.feedback or "",
            "verified": verdict.approved,
            "notes": add_note(state, "reviewer", message),
        }

    workflow = StateGraph(ReviewLoopState)
    workflow.add_node("drafter", drafter_node)
    workflow.add_node("reviewer", reviewer_node)
    workflow.set_entry_point("drafter")
    workflow.add_edge("drafter", "reviewer")
    workflow.add_conditional_edges(
        "reviewer",
        route_after_review,
        {
            "drafter": "drafter",
            END: END,
        },
    )
    return workflow.compile()


async def run_review_loop(
    workflow,
    donor_id: int,
    instruction: str,
    system_prompt: str,
    donor_context: str,
    chat_history: list[dict],
    max_attempts: Optional[int] = None,
) -> ReviewedEmail:
    """Run the loop for one donor and return the last draft with its verification flag."""
    max_attempts = max_attempts or settings.review_max_attempts
    state = create_review_state(
        donor_id=donor_id,
        instruction=instruction,
        system_prompt=system_prompt,
        donor_context=donor_context,
        chat_history=chat_history,
        max_attempts=max_attempts,
    )
    final = await workflow.ainvoke(state, {"recursion_limit": max_attempts * 2 + 5})
    draft = final["current_draft"] or {}
    return ReviewedEmail(
        donor_id=donor_id,
        subject=draft.get("subject", ""),
        content=draft.get("content", ""),
        verified=final["verified"],
        attempts=final["attempt"],
        feedback=final["feedback"] or None,
        error=final["error"] or None,
    )
