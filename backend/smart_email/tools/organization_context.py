"""get_organization_context: organization profile, sender profile and writing guidance."""
import asyncio
import logging
from typing import Optional
from pydantic import BaseModel, Field

from smart_email.errors import NotFoundError, UnauthorizedError
from smart_email.providers import OrganizationDataProvider, OrganizationRecord, StaffRecord, UserRecord

from .registry import Tool, ToolExecutionContext, ToolName

logger = logging.getLogger(__name__)

TOPIC_KEYWORDS = [
    ("Education", ("education", "school", "student")),
    ("Healthcare", ("health", "medical", "hospital")),
    ("Environment", ("environment", "climate", "conservation")),
    ("Social Services", ("poverty", "homeless", "housing")),
    ("Animal Welfare", ("animal", "rescue", "shelter")),
    ("Arts & Culture", ("arts", "culture", "museum")),
    ("Research & Innovation", ("research", "innovation", "science")),
]

PERSONAL_TOUCH_KEYWORDS = [
    ("Uses personal stories", ("story", "experience")),
    ("Includes data and statistics", ("data", "statistics")),
    ("Asks engaging questions", ("question", "ask")),
    ("Emphasizes gratitude", ("gratitude", "thank")),
]


class GetOrganizationContextInput(BaseModel):
    organization_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class OrganizationProfile(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    website_url: Optional[str] = None
    website_summary: Optional[str] = None
    writing_instructions: Optional[str] = None
    donor_journey_text: Optional[str] = None
    memories: list[str] = Field(default_factory=list)
    key_topics: list[str] = Field(default_factory=list)
    writing_style: str
    brand_tone: str


class StaffProfile(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    writing_instructions: Optional[str] = None
    signature: Optional[str] = None


class UserProfile(BaseModel):
    id: str
    email: str
    full_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_signature: Optional[str] = None
    memories: list[str] = Field(default_factory=list)
    staff: Optional[StaffProfile] = None
    preferred_style: str
    personal_touch: list[str] = Field(default_factory=list)


class ContextAnalysis(BaseModel):
    recommended_tone: str
    key_messaging_points: list[str]
    writing_guidelines: list[str]
    personalization_opportunities: list[str]


class OrganizationContext(BaseModel):
    organization: OrganizationProfile
    user_context: UserProfile
    context_analysis: ContextAnalysis


def analyze_organization(organization: OrganizationRecord) -> tuple[list[str], str, str]:
    """Key topics, writing style and brand tone inferred from the organization's texts."""
    all_text = " ".join(
        [
            organization.description or "",
            organization.short_description or "",
            organization.website_summary or "",
            organization.donor_journey_text or "",
            *organization.memories,
        ]
    ).lower()
    key_topics = [topic for topic, keywords in TOPIC_KEYWORDS if any(k in all_text for k in keywords)]

    instructions = (organization.writing_instructions or "").lower()
    writing_style = "Professional and warm"
    if "formal" in instructions:
        writing_style = "Formal and professional"
    elif "casual" in instructions or "friendly" in instructions:
        writing_style = "Casual and friendly"
    elif "personal" in instructions or "warm" in instructions:
        writing_style = "Personal and warm"

    brand_tone = "Compassionate and inspiring"
    if any(k in all_text for k in ("urgent", "crisis", "emergency")):
        brand_tone = "Urgent and compelling"
    elif any(k in all_text for k in ("hope", "inspiring", "uplifting")):
        brand_tone = "Hopeful and inspiring"
    elif any(k in all_text for k in ("professional", "expertise", "research")):
        brand_tone = "Professional and authoritative"

    return key_topics, writing_style, brand_tone


def analyze_user(user: UserRecord, staff: Optional[StaffRecord]) -> tuple[str, list[str]]:
    """Preferred style and personal touches of the sender."""
    preferred_style = "Professional and approachable"
    instructions = (staff.writing_instructions or "").lower() if staff else ""
    if "formal" in instructions:
        preferred_style = "Formal and structured"
    elif "casual" in instructions or "conversational" in instructions:
        preferred_style = "Casual and conversational"
    elif "personal" in instructions or "storytelling" in instructions:
        preferred_style = "Personal and story-driven"

    touches: list[str] = []
    for memory in user.memories:
        lowered = memory.lower()
        for touch, keywords in PERSONAL_TOUCH_KEYWORDS:
            if touch not in touches and any(k in lowered for k in keywords):
                touches.append(touch)
    if staff and staff.position:
        touches.append(f"Writes as {staff.position}")
    return preferred_style, touches


def build_context_analysis(
    organization: OrganizationRecord,
    user: UserRecord,
    staff: Optional[StaffRecord],
) -> ContextAnalysis:
    org_instructions = (organization.writing_instructions or "").lower()
    staff_instructions = (staff.writing_instructions or "").lower() if staff else ""
    combined = f"{staff_instructions} {org_instructions}"

    recommended_tone = "Warm and professional"
    if "formal" in combined:
        recommended_tone = "Formal and respectful"
    elif "casual" in combined:
        recommended_tone = "Friendly and conversational"
    elif "personal" in combined:
        recommended_tone = "Personal and heartfelt"

    messaging = []
    if organization.short_description:
        messaging.append(f"Mission: {organization.short_description}")
    if organization.website_summary:
        messaging.append("Reference website insights")
    messaging += ["Emphasize donor impact", "Express genuine gratitude"]

    guidelines = [f"Use {recommended_tone.lower()} tone throughout"]
    if org_instructions:
        guidelines.append("Follow organizational writing guidelines")
    if staff_instructions:
        guidelines.append("Incorporate personal writing style")
    guidelines += ["Keep emails concise and actionable", "Use specific examples and stories when possible"]

    opportunities = []
    if user.first_name and user.last_name:
        opportunities.append(f"Sign as {user.first_name} {user.last_name}")
    if staff and staff.position:
        opportunities.append(f"Reference role as {staff.position}")
    if user.memories:
        opportunities.append("Incorporate personal memories and insights")
    if organization.memories:
        opportunities.append("Reference organizational achievements and stories")
    opportunities.append("Mention specific donor contributions and impact")

    return ContextAnalysis(
        recommended_tone=recommended_tone,
        key_messaging_points=messaging,
        writing_guidelines=guidelines,
        personalization_opportunities=opportunities,
    )


class GetOrganizationContextTool(Tool):
    name = ToolName.GET_ORGANIZATION_CONTEXT
    description = (
        "Load the organization's mission, writing guidelines and memories together with the "
        "sender's profile, signature and writing style."
    )
    input_model = GetOrganizationContextInput

    def __init__(self, provider: OrganizationDataProvider):
        self.provider = provider

    async def execute(self, params: GetOrganizationContextInput, context: ToolExecutionContext) -> dict:
        if params.organization_id != context.organization_id or params.user_id != context.user_id:
            raise UnauthorizedError("Organization context is limited to the session owner")

        if context.org_analysis:
            logger.info("Serving organization context from the session cache")
            return context.org_analysis

        organization, user = await asyncio.gather(
            self.provider.get_organization(params.organization_id),
            self.provider.get_user(params.user_id),
        )
        if organization is None:
            raise NotFoundError(f"Organization {params.organization_id} not found")
        if user is None:
            raise NotFoundError(f"User {params.user_id} not found")

        staff = await self.provider.get_staff_by_email(user.email, organization.id)
        key_topics, writing_style, brand_tone = analyze_organization(organization)
        preferred_style, personal_touch = analyze_user(user, staff)

        result = OrganizationContext(
            organization=OrganizationProfile(
                **organization.model_dump(),
                key_topics=key_topics,
                writing_style=writing_style,
                brand_tone=brand_tone,
            ),
            user_context=UserProfile(
                id=user.id,
                email=user.email,
                full_name=f"{user.first_name or ''} {user.last_name or ''}".strip() or user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                email_signature=user.email_signature,
                memories=user.memories,
                staff=StaffProfile(**staff.model_dump(exclude={"organization_id", "email"})) if staff else None,
                preferred_style=preferred_style,
                personal_touch=personal_touch,
            ),
            context_analysis=build_context_analysis(organization, user, staff),
        )
        logger.info(f"Retrieved context for {organization.name}", extra={"session_id": context.session_id})
        return result.model_dump(mode="json")
