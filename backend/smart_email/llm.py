"""Completion capability over ChatOpenAI: tool-calling text and schema-validated objects."""
import asyncio
import logging
from typing import Any, Callable, Optional, Sequence, TypeVar
import openai
from langchain_core.exceptions import OutputParserException
from langchain_core.messages import AIMessage, BaseMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from smart_email.config import settings
from smart_email.errors import InternalError, UpstreamError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

ChatModelFactory = Callable[..., Any]


def create_chat_model(
    temperature: float,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """Build a ChatOpenAI client; retries are handled by the caller."""
    return ChatOpenAI(
        model=model or settings.openai_model,
        api_key=settings.openai_api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


class CompletionClient:
    """Thin wrapper that applies timeouts and maps provider errors onto the error taxonomy."""

    def __init__(
        self,
        model_factory: ChatModelFactory = create_chat_model,
        timeout_seconds: Optional[float] = None,
    ):
        self.model_factory = model_factory
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds

    async def _invoke(self, runnable, messages: Sequence[BaseMessage], operation: str):
        try:
            return await asyncio.wait_for(runnable.ainvoke(list(messages)), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(f"{operation} timed out after {self.timeout_seconds}s")
            raise UpstreamTimeoutError(f"{operation} timed out") from e
        except openai.APITimeoutError as e:
            raise UpstreamTimeoutError(f"{operation} timed out") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.BadRequestError) as e:
            logger.error(f"{operation} rejected by the model provider: {e}")
            raise InternalError(f"{operation} was rejected by the model provider") from e
        except openai.APIError as e:
            logger.warning(f"{operation} failed: {e}")
            raise UpstreamError(f"{operation} failed: {e.__class__.__name__}") from e

    async def generate_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Optional[list[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AIMessage:
        """Free-text completion; the model may request calls to the given tools."""
        model = self.model_factory(
            temperature=settings.agent_temperature if temperature is None else temperature,
            max_tokens=max_tokens or settings.agent_max_tokens,
        )
        runnable = model.bind_tools(tools) if tools else model
        return await self._invoke(runnable, messages, "Agent completion")

    async def generate_object(
        self,
        schema: type[T],
        messages: Sequence[BaseMessage],
        temperature: float = 0.3,
        model: Optional[str] = None,
    ) -> T:
        """
        Completion constrained to a pydantic schema.

        Output that fails validation is requested again up to
        structured_output_retries times, then raised as ValidationError.
        """
        chat_model = self.model_factory(temperature=temperature, model=model)
        runnable = chat_model.with_structured_output(schema, method="function_calling")
        last_error: Exception | None = None

        for attempt in range(settings.structured_output_retries + 1):
            try:
                result = await self._invoke(runnable, messages, f"{schema.__name__} completion")
                if isinstance(result, schema):
                    return result
                return schema.model_validate(result)
            except (OutputParserException, PydanticValidationError) as e:
                last_error = e
                logger.warning(f"{schema.__name__} output failed validation (attempt {attempt + 1}): {e}")

        raise ValidationError(f"Model output did not match {schema.__name__}: {last_error}")
