"""generate_instruction: first draft of the email-generation instruction."""
import logging
from typing import Optional
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from smart_email.prompts import (
    GENERATE_INSTRUCTION_SYSTEM_PROMPT,
    GENERATE_INSTRUCTION_TASK_PROMPT,
    to_prompt_json,
)

from .drafting import DraftingInput, DraftingTool
from .registry import ToolExecutionContext, ToolName

logger = logging.getLogger(__name__)


class UserPreferences(BaseModel):
    tone: Optional[str] = None
    length: Optional[str] = None
    style: Optional[str] = None
    key_points: list[str] = Field(default_factory=list)


class GenerateInstructionInput(DraftingInput):
    user_preferences: Optional[UserPreferences] = None


class KeyElements(BaseModel):
    tone: str
    personalization: list[str]
    structure: str
    call_to_action: str
    special_considerations: list[str] = Field(default_factory=list)


class InstructionExamples(BaseModel):
    opening_line: str
    personalized_element: str
    closing_line: str


class GeneratedInstruction(BaseModel):
    """A drafted email-generation instruction."""
    instruction: str = Field(min_length=200, description="The complete instruction for the email generator")
    reasoning: str = Field(min_length=100, description="Why the instruction is shaped this way")
    confidence: float = Field(ge=0, le=1)
    key_elements: KeyElements
    suggested_improvements: list[str] = Field(default_factory=list)
    examples: InstructionExamples


class GenerateInstructionTool(DraftingTool):
    name = ToolName.GENERATE_INSTRUCTION
    description = (
        "Draft the email-generation instruction from the donor analysis, organization context "
        "and conversation. Call after gathering context."
    )
    input_model = GenerateInstructionInput

    async def execute(self, params: GenerateInstructionInput, context: ToolExecutionContext) -> dict:
        preferences = params.user_preferences.model_dump(exclude_none=True) if params.user_preferences else None
        task = GENERATE_INSTRUCTION_TASK_PROMPT.format(
            donor_analysis=self.donor_section(params, context),
            org_context=self.org_section(params, context),
            user_preferences=to_prompt_json(preferences),
            conversation=self.conversation(self.history(params, context)),
        )
        result = await self.complete(
            GeneratedInstruction,
            [SystemMessage(content=GENERATE_INSTRUCTION_SYSTEM_PROMPT), HumanMessage(content=task)],
        )
        logger.info(
            f"Generated instruction ({len(result.instruction)} chars, confidence {result.confidence:.2f})",
            extra={"session_id": context.session_id},
        )
        return result.model_dump(mode="json")
