"""refine_instruction: apply user feedback to the current instruction."""
import logging
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from smart_email.prompts import REFINE_INSTRUCTION_SYSTEM_PROMPT, REFINE_INSTRUCTION_TASK_PROMPT

from .drafting import DraftingInput, DraftingTool
from .registry import ToolExecutionContext, ToolName

logger = logging.getLogger(__name__)

# Refinement only needs the recent exchange
RECENT_TURNS = 5


class RefineInstructionInput(DraftingInput):
    current_instruction: str = Field(min_length=1)
    user_feedback: str = Field(min_length=1)


class AppliedChange(BaseModel):
    change: str
    reasoning: str


class RefinedInstruction(BaseModel):
    """A revised instruction and the changes that produced it."""
    refined_instruction: str = Field(min_length=200)
    changes_applied: list[AppliedChange] = Field(min_length=1)
    improvement_summary: str
    key_differences: list[str] = Field(default_factory=list)
    confidence_score: float = Field(ge=0, le=1)
    additional_suggestions: list[str] = Field(default_factory=list)


class RefineInstructionTool(DraftingTool):
    name = ToolName.REFINE_INSTRUCTION
    description = (
        "Revise the current instruction according to the user's feedback, keeping everything "
        "the feedback does not address."
    )
    input_model = RefineInstructionInput
    temperature = 0.5

    async def execute(self, params: RefineInstructionInput, context: ToolExecutionContext) -> dict:
        task = REFINE_INSTRUCTION_TASK_PROMPT.format(
            current_instruction=params.current_instruction,
            user_feedback=params.user_feedback,
            donor_analysis=self.donor_section(params, context),
            org_context=self.org_section(params, context),
            conversation=self.conversation(self.history(params, context), last=RECENT_TURNS),
        )
        result = await self.complete(
            RefinedInstruction,
            [SystemMessage(content=REFINE_INSTRUCTION_SYSTEM_PROMPT), HumanMessage(content=task)],
        )
        logger.info(
            f"Refined instruction with {len(result.changes_applied)} change(s)",
            extra={"session_id": context.session_id},
        )
        return result.model_dump(mode="json")
