"""Service package and the default wiring used by the API and MCP server."""
from functools import lru_cache

from smart_email.agents import EmailDrafter, EmailReviewer, PromptCache, SmartEmailAgent
from smart_email.config import settings
from smart_email.llm import CompletionClient
from smart_email.providers import InMemoryDataProvider
from smart_email.tools import create_tool_registry

from .email_generation_service import EmailGenerationService, GenerationBatch
from .session_cleanup import SessionCleanupService
from .session_store import SessionRepository, SqlSessionRepository, session_store
from .smart_email_service import (
    ContinueResult,
    SessionState,
    SmartEmailGenerationService,
    StartSessionResult,
)


@lru_cache
def get_data_provider() -> InMemoryDataProvider:
    if settings.seed_data_path:
        return InMemoryDataProvider.from_file(settings.seed_data_path)
    return InMemoryDataProvider()


@lru_cache
def get_completion_client() -> CompletionClient:
    return CompletionClient()


@lru_cache
def get_smart_email_service() -> SmartEmailGenerationService:
    provider = get_data_provider()
    completion = get_completion_client()
    registry = create_tool_registry(provider, provider, completion)
    agent = SmartEmailAgent(registry, completion, prompt_cache=PromptCache())
    return SmartEmailGenerationService(session_store, agent)


@lru_cache
def get_email_generation_service() -> EmailGenerationService:
    completion = get_completion_client()
    return EmailGenerationService(
        get_smart_email_service(),
        get_data_provider(),
        EmailDrafter(completion),
        EmailReviewer(completion),
    )


@lru_cache
def get_email_reviewer() -> EmailReviewer:
    return EmailReviewer(get_completion_client())


@lru_cache
def get_cleanup_service() -> SessionCleanupService:
    return SessionCleanupService(session_store)


__all__ = [
    "ContinueResult",
    "EmailGenerationService",
    "GenerationBatch",
    "SessionCleanupService",
    "SessionRepository",
    "SessionState",
    "SmartEmailGenerationService",
    "SqlSessionRepository",
    "StartSessionResult",
    "get_cleanup_service",
    "get_completion_client",
    "get_data_provider",
    "get_email_generation_service",
    "get_email_reviewer",
    "get_smart_email_service",
    "session_store",
]
