"""summarize_for_generation: finalize the approved instruction."""
import logging
from typing import Optional
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from smart_email.prompts import SUMMARIZE_SYSTEM_PROMPT, SUMMARIZE_TASK_PROMPT

from .drafting import DraftingInput, DraftingTool
from .registry import ToolExecutionContext, ToolName

logger = logging.getLogger(__name__)


class SummarizeForGenerationInput(DraftingInput):
    approved_instruction: Optional[str] = Field(
        default=None, description="The instruction the user approved, verbatim"
    )


class KeyInsights(BaseModel):
    donor_insights: list[str] = Field(default_factory=list)
    organizational_context: list[str] = Field(default_factory=list)
    conversation_highlights: list[str] = Field(default_factory=list)
    personalization_opportunities: list[str] = Field(default_factory=list)


class RecommendedApproach(BaseModel):
    tone: str
    structure: str
    key_points: list[str] = Field(default_factory=list)
    call_to_action: str


class GenerationSummary(BaseModel):
    """The finalized instruction handed to email generation."""
    final_instruction: str = Field(min_length=100)
    reasoning: str = Field(min_length=50)
    confidence: float = Field(ge=0, le=1)
    key_insights: KeyInsights
    recommended_approach: RecommendedApproach
    potential_challenges: list[str] = Field(default_factory=list)


class SummarizeForGenerationTool(DraftingTool):
    name = ToolName.SUMMARIZE_FOR_GENERATION
    description = (
        "Finalize the instruction once the user has explicitly approved it. Ends the conversation "
        "and hands the instruction to email generation."
    )
    input_model = SummarizeForGenerationInput
    temperature = 0.3

    async def execute(self, params: SummarizeForGenerationInput, context: ToolExecutionContext) -> dict:
        task = SUMMARIZE_TASK_PROMPT.format(
            approved_instruction=params.approved_instruction or "",
            donor_analysis=self.donor_section(params, context),
            org_context=self.org_section(params, context),
            conversation=self.conversation(self.history(params, context)),
        )
        result = await self.complete(
            GenerationSummary,
            [SystemMessage(content=SUMMARIZE_SYSTEM_PROMPT), HumanMessage(content=task)],
        )
        logger.info(
            f"Finalized instruction ({len(result.final_instruction)} chars)",
            extra={"session_id": context.session_id},
        )
        return result.model_dump(mode="json")
