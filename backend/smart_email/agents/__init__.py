"""Agent package."""
from .email_drafter import EmailDrafter
from .email_reviewer import EmailReviewer
from .smart_email_agent import (
    PromptCache,
    SmartEmailAgent,
    determine_next_step,
    latest_result,
    merge_context_results,
    replay_history,
)

__all__ = [
    "EmailDrafter",
    "EmailReviewer",
    "PromptCache",
    "SmartEmailAgent",
    "determine_next_step",
    "latest_result",
    "merge_context_results",
    "replay_history",
]
