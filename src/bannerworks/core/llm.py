"""Structured completions from the language model provider.

The provider is asked to answer through a single forced function call whose
parameter schema is generated from a Pydantic model.  The returned arguments
are validated against the same model; anything that does not validate is an
:class:`~bannerworks.core.errors.UpstreamError`.  Callers never receive a
partially parsed response.
"""

from __future__ import annotations

import logging
from typing import TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from bannerworks.core.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StructuredCompletionClient:
    """Thin wrapper around ``AsyncOpenAI`` chat completions with tool calling."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Provider API key (ignored when ``client`` is given)
            model: Chat model name
            client: Pre-built client, mainly for tests

        Raises:
            ConfigurationError: If neither a client nor an API key is available
        """
        if client is None:
            if not api_key:
                raise ConfigurationError("An LLM API key is required for idea generation")
            client = AsyncOpenAI(api_key=api_key)
        self._client = client
        self.model = model

    async def complete(
        self,
        *,
        system: str,
        user: str,
        function_name: str,
        description: str,
        response_model: type[ModelT],
        temperature: float | None = None,
    ) -> ModelT:
        """Run one completion and return its validated structured answer.

        Args:
            system: System message
            user: User message
            function_name: Name of the forced function call
            description: Description of the function for the model
            response_model: Pydantic model describing the function arguments
            temperature: Optional sampling temperature

        Returns:
            An instance of ``response_model``

        Raises:
            UpstreamError: On any provider error or a response that does not
                match the schema
        """
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": function_name,
                        "description": description,
                        "parameters": response_model.model_json_schema(),
                    },
                }
            ],
            "tool_choice": {"type": "function", "function": {"name": function_name}},
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            completion = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error(f"LLM call {function_name} failed: {e}")
            status_code = getattr(e, "status_code", None)
            raise UpstreamError(f"Language model request failed: {e}", status_code=status_code) from e

        try:
            arguments = completion.choices[0].message.tool_calls[0].function.arguments
        except (AttributeError, IndexError, TypeError) as e:
            logger.error(f"LLM call {function_name} returned no tool call")
            raise UpstreamError("Bad response from language model: no function call") from e

        if not arguments:
            raise UpstreamError("Bad response from language model: empty function arguments")

        try:
            return response_model.model_validate_json(arguments)
        except PydanticValidationError as e:
            logger.error(f"LLM call {function_name} failed schema validation: {e}")
            raise UpstreamError(
                "Bad response from language model: schema validation failed",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e
