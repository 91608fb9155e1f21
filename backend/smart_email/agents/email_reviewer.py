"""Email Reviewer - checks a generated email against the user's instructions."""
import logging
from typing import Optional
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from smart_email.config import settings
from smart_email.llm import CompletionClient
from smart_email.models import EmailDraft, ReviewResult, ReviewVerdict
from smart_email.prompts import REVIEWER_SYSTEM_PROMPT, REVIEWER_TASK_PROMPT, format_conversation

logger = logging.getLogger(__name__)


class ReviewOutput(BaseModel):
    result: ReviewResult = Field(description="Whether the email follows all instructions")
    feedback: Optional[str] = Field(
        default=None,
        description="Which instructions were not followed (only if NEEDS_IMPROVEMENT)",
    )


class EmailReviewer:
    """Instruction-compliance reviewer. Does not judge general quality."""

    def __init__(self, completion: CompletionClient, temperature: Optional[float] = None):
        self.completion = completion
        self.temperature = settings.reviewer_temperature if temperature is None else temperature

    async def review(
        self,
        system_prompt: str,
        donor_context: str,
        chat_history: list[dict],
        draft: EmailDraft,
        instruction: str = "",
    ) -> ReviewVerdict:
        """Verdict on one draft against the final instruction and the conversation."""
        task = REVIEWER_TASK_PROMPT.format(
            system_prompt=system_prompt or "Not provided.",
            instruction=instruction or "Not provided; use the conversation.",
            donor_context=donor_context or "Not provided.",
            conversation=format_conversation(chat_history),
            subject=draft.subject,
            content=draft.content,
        )
        output = await self.completion.generate_object(
            ReviewOutput,
            [SystemMessage(content=REVIEWER_SYSTEM_PROMPT), HumanMessage(content=task)],
            temperature=self.temperature,
        )
        verdict = ReviewVerdict(result=output.result, feedback=output.feedback)
        logger.info(f"Review of email for donor {draft.donor_id}: {verdict.result.value}")
        return verdict
