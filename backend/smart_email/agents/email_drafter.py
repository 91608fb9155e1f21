"""Email Drafter - writes one donor's email from the finalized instruction."""
import logging
from typing import Optional
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from smart_email.llm import CompletionClient
from smart_email.models import EmailDraft
from smart_email.prompts import (
    EMAIL_DRAFTER_REVISION_CONTEXT,
    EMAIL_DRAFTER_SYSTEM_PROMPT,
    EMAIL_DRAFTER_TASK_PROMPT,
)

logger = logging.getLogger(__name__)


class DraftOutput(BaseModel):
    subject: str = Field(min_length=1)
    content: str = Field(min_length=1)


class EmailDrafter:
    """Default email generator used by the review loop."""

    def __init__(self, completion: CompletionClient, temperature: float = 0.7):
        self.completion = completion
        self.temperature = temperature

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
        revision_context = ""
        if previous is not None and feedback:
            revision_context = EMAIL_DRAFTER_REVISION_CONTEXT.format(
                attempt=attempt,
                feedback=feedback,
                subject=previous.subject,
                content=previous.content,
            )
        task = EMAIL_DRAFTER_TASK_PROMPT.format(
            instruction=instruction,
            donor_context=donor_context,
            revision_context=revision_context,
        )
        output = await self.completion.generate_object(
            DraftOutput,
            [SystemMessage(content=system_prompt or EMAIL_DRAFTER_SYSTEM_PROMPT), HumanMessage(content=task)],
            temperature=self.temperature,
        )
        logger.info(f"Drafted email for donor {donor_id} (attempt {attempt})")
        return EmailDraft(donor_id=donor_id, subject=output.subject, content=output.content)
