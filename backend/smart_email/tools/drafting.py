"""Shared base for the tools that draft instructions with the language model."""
from typing import Any, Optional
from pydantic import BaseModel, Field

from smart_email.llm import CompletionClient
from smart_email.config import settings
from smart_email.prompts import format_conversation, to_prompt_json

from .registry import Tool, ToolExecutionContext

PROMPT_SECTION_LIMIT = 6000


class ConversationTurn(BaseModel):
    role: str
    content: str


class DraftingInput(BaseModel):
    """Context overrides a drafting call may pass; omitted values come from the session."""
    conversation_history: Optional[list[ConversationTurn]] = Field(
        default=None, description="Defaults to the session's conversation"
    )
    donor_analysis: Optional[dict[str, Any]] = Field(
        default=None, description="Defaults to the get_donor_info result cached on the session"
    )
    org_context: Optional[dict[str, Any]] = Field(
        default=None, description="Defaults to the get_organization_context result cached on the session"
    )


class DraftingTool(Tool):
    temperature = 0.7

    def __init__(self, completion: CompletionClient):
        self.completion = completion

    @staticmethod
    def history(params: DraftingInput, context: ToolExecutionContext) -> list[dict]:
        if params.conversation_history is not None:
            return [turn.model_dump() for turn in params.conversation_history]
        return context.history

    @staticmethod
    def donor_section(params: DraftingInput, context: ToolExecutionContext) -> str:
        return to_prompt_json(params.donor_analysis or context.donor_analysis, PROMPT_SECTION_LIMIT)

    @staticmethod
    def org_section(params: DraftingInput, context: ToolExecutionContext) -> str:
        return to_prompt_json(params.org_context or context.org_analysis, PROMPT_SECTION_LIMIT)

    @staticmethod
    def conversation(history: list[dict], last: Optional[int] = None) -> str:
        return format_conversation(history, last)

    async def complete(self, schema: type[BaseModel], messages: list) -> BaseModel:
        return await self.completion.generate_object(
            schema,
            messages,
            temperature=self.temperature,
            model=settings.drafting_model,
        )
