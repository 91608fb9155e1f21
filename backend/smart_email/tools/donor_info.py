"""get_donor_info: donor profiles, giving statistics and research."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field

from smart_email.errors import ValidationError
from smart_email.models import utcnow
from smart_email.providers import DonationRecord, DonorDataProvider, DonorRecord

from .registry import Tool, ToolExecutionContext, ToolName

logger = logging.getLogger(__name__)

MAX_COMMUNICATIONS = 5
EXCERPT_LENGTH = 200
DAYS_PER_MONTH = 30
RECURRING_MIN_GIFTS = 3
RECURRING_MIN_SPAN_DAYS = 6 * DAYS_PER_MONTH

# (insight, keywords) pairs checked against research text
INSIGHT_KEYWORDS = [
    ("Leadership position", ("ceo", "founder", "president")),
    ("Medical professional", ("doctor", "physician", " md")),
    ("Legal professional", ("lawyer", "attorney", "legal")),
    ("Business owner/entrepreneur", ("entrepreneur", "startup", "business owner")),
    ("High net worth individual", ("million", "wealthy", "philanthropist")),
    ("Community involvement", ("board", "trustee", "volunteer")),
]
MAX_INSIGHTS = 5


class GetDonorInfoInput(BaseModel):
    donor_ids: list[int] = Field(min_length=1, description="Donor ids to look up; must belong to this session")


class DonorStatistics(BaseModel):
    total_donations: int = 0
    total_amount: int = 0  # cents
    average_donation: float = 0
    last_donation_date: Optional[datetime] = None
    first_donation_date: Optional[datetime] = None
    months_since_last_donation: Optional[int] = None
    is_recurring: bool = False


class DonationSummary(BaseModel):
    amount: int
    date: datetime
    project_name: Optional[str] = None


class CommunicationSummary(BaseModel):
    channel: str
    excerpt: str
    date: datetime
    message_count: int


class ResearchSummary(BaseModel):
    answer: str
    profession: Optional[str] = None
    location: Optional[str] = None
    key_insights: list[str] = Field(default_factory=list)
    sources: int = 0


class DonorProfile(BaseModel):
    id: int
    name: str
    email: str
    first_name: str
    last_name: str
    notes: list[str] = Field(default_factory=list)
    last_donation: Optional[DonationSummary] = None
    donation_history: list[DonationSummary] = Field(default_factory=list)
    communication_history: list[CommunicationSummary] = Field(default_factory=list)
    person_research: Optional[ResearchSummary] = None
    statistics: DonorStatistics = Field(default_factory=DonorStatistics)
    assigned_staff_id: Optional[int] = None
    high_potential_donor: bool = False


def calculate_donor_statistics(donations: list[DonationRecord], now: Optional[datetime] = None) -> DonorStatistics:
    """Giving statistics; months are counted as whole 30-day periods."""
    if not donations:
        return DonorStatistics()

    ordered = sorted(donations, key=lambda d: d.date, reverse=True)
    now = now or utcnow()
    if ordered[0].date.tzinfo is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    total_amount = sum(d.amount for d in donations)
    last_date = ordered[0].date
    first_date = ordered[-1].date
    span_days = (last_date - first_date).total_seconds() / 86400

    return DonorStatistics(
        total_donations=len(donations),
        total_amount=total_amount,
        average_donation=total_amount / len(donations),
        last_donation_date=last_date,
        first_donation_date=first_date,
        months_since_last_donation=int((now - last_date).total_seconds() // (DAYS_PER_MONTH * 86400)),
        is_recurring=len(donations) >= RECURRING_MIN_GIFTS and span_days > RECURRING_MIN_SPAN_DAYS,
    )


def extract_key_insights(research_text: str) -> list[str]:
    """Keyword-derived insights from free-text research."""
    if not research_text:
        return []
    text = f" {research_text.lower()}"
    insights = [label for label, keywords in INSIGHT_KEYWORDS if any(k in text for k in keywords)]
    return insights[:MAX_INSIGHTS]


def make_excerpt(text: str) -> str:
    """First EXCERPT_LENGTH characters, with an ellipsis only when something was cut."""
    if len(text) > EXCERPT_LENGTH:
        return text[:EXCERPT_LENGTH] + "..."
    return text


def _minimal_profile(donor: DonorRecord) -> DonorProfile:
    return DonorProfile(
        id=donor.id,
        name=donor.full_name,
        email=donor.email,
        first_name=donor.first_name,
        last_name=donor.last_name,
        assigned_staff_id=donor.assigned_staff_id,
        high_potential_donor=donor.high_potential,
    )


class GetDonorInfoTool(Tool):
    name = ToolName.GET_DONOR_INFO
    description = (
        "Look up donors of this session: profile, notes, donation history and statistics, "
        "recent communications and background research."
    )
    input_model = GetDonorInfoInput

    def __init__(self, provider: DonorDataProvider):
        self.provider = provider

    async def _build_profile(self, donor: DonorRecord, organization_id: str) -> DonorProfile:
        try:
            donations, threads, research = await asyncio.gather(
                self.provider.list_donations(donor.id, organization_id),
                self.provider.list_communications(donor.id, organization_id),
                self.provider.get_person_research(donor.id, organization_id),
            )
        except Exception:
            # One donor's lookup failure must not fail the whole call
            logger.exception(f"Failed to load details for donor {donor.id}")
            return _minimal_profile(donor)

        statistics = calculate_donor_statistics(donations)
        history = [
            DonationSummary(amount=d.amount, date=d.date, project_name=d.project_name)
            for d in sorted(donations, key=lambda d: d.date, reverse=True)
        ]
        communications = [
            CommunicationSummary(
                channel=thread.channel,
                excerpt=make_excerpt(thread.messages[0]) if thread.messages else "No content",
                date=thread.created_at,
                message_count=len(thread.messages),
            )
            for thread in threads[:MAX_COMMUNICATIONS]
        ]
        person_research = None
        if research:
            person_research = ResearchSummary(
                answer=research.answer,
                profession=research.profession,
                location=research.location,
                key_insights=extract_key_insights(research.answer),
                sources=research.total_sources,
            )

        profile = _minimal_profile(donor)
        profile.notes = list(donor.notes)
        profile.last_donation = history[0] if history else None
        profile.donation_history = history
        profile.communication_history = communications
        profile.person_research = person_research
        profile.statistics = statistics
        return profile

    async def execute(self, params: GetDonorInfoInput, context: ToolExecutionContext) -> dict:
        allowed = set(context.donor_ids)
        requested = [i for i in dict.fromkeys(params.donor_ids) if i in allowed]
        dropped = [i for i in params.donor_ids if i not in allowed]
        if dropped:
            logger.warning(f"Ignoring donors outside the session: {dropped}", extra={"session_id": context.session_id})
        if not requested:
            raise ValidationError("None of the requested donors belong to this session")

        cached = {d["id"]: d for d in (context.donor_analysis or {}).get("donors", [])}
        if all(i in cached for i in requested):
            logger.info(f"Serving {len(requested)} donor(s) from the session cache")
            return {"donors": [cached[i] for i in requested]}

        donors = await self.provider.get_donors(requested, context.organization_id)
        profiles = await asyncio.gather(*(self._build_profile(d, context.organization_id) for d in donors))
        logger.info(f"Processed {len(profiles)} donor(s)", extra={"session_id": context.session_id})
        return {"donors": [p.model_dump(mode="json") for p in profiles]}
