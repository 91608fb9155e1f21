"""Tool package."""
from smart_email.llm import CompletionClient
from smart_email.providers import DonorDataProvider, OrganizationDataProvider

from .donor_info import GetDonorInfoTool, calculate_donor_statistics, extract_key_insights
from .generate_instruction import GenerateInstructionTool, GeneratedInstruction
from .organization_context import GetOrganizationContextTool
from .refine_instruction import RefineInstructionTool, RefinedInstruction
from .registry import (
    CONTEXT_TOOLS,
    DRAFTING_TOOLS,
    FINALIZE_TOOL,
    Tool,
    ToolExecutionContext,
    ToolName,
    ToolRegistry,
)
from .summarize_for_generation import GenerationSummary, SummarizeForGenerationTool


def create_tool_registry(
    donor_provider: DonorDataProvider,
    organization_provider: OrganizationDataProvider,
    completion: CompletionClient,
) -> ToolRegistry:
    """Registry holding the full tool catalogue."""
    registry = ToolRegistry()
    registry.add(GetDonorInfoTool(donor_provider))
    registry.add(GetOrganizationContextTool(organization_provider))
    registry.add(GenerateInstructionTool(completion))
    registry.add(RefineInstructionTool(completion))
    registry.add(SummarizeForGenerationTool(completion))
    return registry


__all__ = [
    "CONTEXT_TOOLS",
    "DRAFTING_TOOLS",
    "FINALIZE_TOOL",
    "GenerateInstructionTool",
    "GeneratedInstruction",
    "GenerationSummary",
    "GetDonorInfoTool",
    "GetOrganizationContextTool",
    "RefineInstructionTool",
    "RefinedInstruction",
    "SummarizeForGenerationTool",
    "Tool",
    "ToolExecutionContext",
    "ToolName",
    "ToolRegistry",
    "calculate_donor_statistics",
    "create_tool_registry",
    "extract_key_insights",
]
