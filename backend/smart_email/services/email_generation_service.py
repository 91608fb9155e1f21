"""Per-donor email generation over a completed session."""
import asyncio
import logging
from typing import Optional
from pydantic import BaseModel

from smart_email.config import settings
from smart_email.errors import BadRequestError, SmartEmailError
from smart_email.graph import create_review_workflow, run_review_loop
from smart_email.graph.review_loop import EmailGenerator, Reviewer
from smart_email.models import MessageRole, ReviewedEmail, utcnow
from smart_email.prompts import build_generation_system_prompt, format_donor_context
from smart_email.providers import DonorDataProvider, DonorRecord

from .smart_email_service import SmartEmailGenerationService

logger = logging.getLogger(__name__)


class GenerationBatch(BaseModel):
    session_id: str
    instruction: str
    emails: list[ReviewedEmail]


class EmailGenerationService:
    """
    Generates one reviewed email per donor from a session's final instruction.

    Donors run concurrently; each donor's draft/review loop is sequential.
    A donor that fails is reported with an error instead of failing the batch.
    """

    def __init__(
        self,
        sessions: SmartEmailGenerationService,
        donor_provider: DonorDataProvider,
        generator: EmailGenerator,
        reviewer: Reviewer,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.sessions = sessions
        self.donor_provider = donor_provider
        self.workflow = create_review_workflow(generator, reviewer)
        self.concurrency = concurrency or settings.email_generation_concurrency
        self.max_attempts = max_attempts or settings.review_max_attempts

    async def _generate_one(
        self,
        semaphore: asyncio.Semaphore,
        donor: DonorRecord,
        profile: dict,
        instruction: str,
        system_prompt: str,
        chat_history: list[dict],
    ) -> ReviewedEmail:
        async with semaphore:
            # One retry for transient failures, matching the agent's retry policy
            for attempt in range(2):
                try:
                    return await run_review_loop(
                        self.workflow,
                        donor_id=donor.id,
                        instruction=instruction,
                        system_prompt=system_prompt,
                        donor_context=format_donor_context(profile),
                        chat_history=chat_history,
                        max_attempts=self.max_attempts,
                    )
                except SmartEmailError as e:
                    if e.retryable and attempt == 0:
                        logger.warning(f"Generation for donor {donor.id} failed ({e.code}), retrying")
                        await asyncio.sleep(settings.retry_backoff_seconds)
                        continue
                    logger.error(f"Generation for donor {donor.id} failed: {e.message}")
                    return ReviewedEmail(donor_id=donor.id, error=e.message)

    async def generate_for_session(self, session_id: str, organization_id: str, user_id: str) -> GenerationBatch:
        state = self.sessions.get_state(session_id, organization_id, user_id)
        session = state.session
        if not state.is_complete or not session.final_instruction:
            raise BadRequestError("Emails can only be generated once the instruction is finalized")

        stored = self.sessions.store.get(session_id)
        profiles = {d["id"]: d for d in (stored.donor_analysis or {}).get("donors", [])}
        donors = await self.donor_provider.get_donors(session.donor_ids, organization_id)
        found = {d.id for d in donors}

        system_prompt = build_generation_system_prompt(stored.org_analysis, utcnow().strftime("%B %d, %Y"))
        chat_history = [
            {"role": m.role, "content": m.content}
            for m in state.messages
            if m.role in (MessageRole.USER.value, MessageRole.ASSISTANT.value)
        ]

        semaphore = asyncio.Semaphore(self.concurrency)
        generated = await asyncio.gather(
            *(
                self._generate_one(
                    semaphore,
                    donor,
                    profiles.get(donor.id) or {"id": donor.id, "name": donor.full_name, "email": donor.email, "notes": donor.notes},
                    session.final_instruction,
                    system_prompt,
                    chat_history,
                )
                for donor in donors
            )
        )
        missing = [ReviewedEmail(donor_id=i, error="Donor not found") for i in session.donor_ids if i not in found]

        emails = sorted([*generated, *missing], key=lambda e: session.donor_ids.index(e.donor_id))
        verified = sum(1 for e in emails if e.verified)
        logger.info(
            f"Generated {len(emails)} email(s), {verified} verified",
            extra={"session_id": session_id},
        )
        return GenerationBatch(session_id=session_id, instruction=session.final_instruction, emails=emails)
