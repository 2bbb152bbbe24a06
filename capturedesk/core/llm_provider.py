"""LLM provider for structured refinement requests.

Wraps the async Anthropic client behind a small provider interface so the
refinement gateway only deals with "prompt + output schema in, dict out".
Which vendor answers is an implementation detail of this module.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import anthropic

from capturedesk.core.exceptions import ConfigurationError, RefinementError

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Standardized response from an LLM provider."""

    content: str
    model: str
    usage: Optional[dict[str, Any]] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        *,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate a text response from the LLM."""

    async def extract_structured(
        self,
        prompt: str,
        output_schema: dict[str, Any],
        *,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Request a JSON object conforming to ``output_schema``.

        Args:
            prompt: The user prompt.
            output_schema: JSON Schema the answer must follow.
            max_tokens: Optional max output tokens override.

        Returns:
            Parsed JSON dict (not yet validated against the schema).

        Raises:
            RefinementError: If the call fails or the answer is not a JSON object.
        """
        system_prompt = (
            "Respond with a single JSON object and nothing else. "
            "The object must validate against this JSON Schema:\n"
            f"{json.dumps(output_schema, indent=2)}"
        )
        response = await self.generate(prompt, system_prompt, max_tokens=max_tokens)
        return parse_json_response(response.content)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider."""

    DEFAULT_MODEL = "claude-3-5-haiku-latest"
    DEFAULT_MAX_TOKENS = 1024

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        if not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is required for Anthropic provider"
            )
        self._api_key = api_key
        self._model = model or self.DEFAULT_MODEL
        self._max_tokens = max_tokens
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        *,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens or self._max_tokens,
                system=system_prompt or "You are a helpful assistant.",
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIConnectionError as e:
            raise RefinementError(f"Failed to connect to Anthropic API: {e}")
        except anthropic.RateLimitError as e:
            raise RefinementError(f"Anthropic API rate limit exceeded: {e}")
        except anthropic.APIStatusError as e:
            raise RefinementError(
                f"Anthropic API error: {e.status_code} - {e.message}"
            )

        text = next(
            (block.text for block in response.content if block.type == "text"), None
        )
        if text is None:
            raise RefinementError("LLM returned no text content")

        return LLMResponse(
            content=text,
            model=self._model,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Parse JSON from LLM response text.

    Handles JSON wrapped in markdown code blocks.

    Raises:
        RefinementError: If response is not a JSON object.
    """
    text = response_text.strip()

    # Extract from markdown code block
    if text.startswith("```"):
        lines = text.split("\n")
        end_idx = len(lines)
        for i, line in enumerate(lines[1:], 1):
            if line.strip() == "```":
                end_idx = i
                break
        text = "\n".join(lines[1:end_idx])

    try:
        result = json.loads(text)
    except json.JSONDecodeError as e:
        raise RefinementError(f"LLM response is not valid JSON: {e.msg}")

    if not isinstance(result, dict):
        raise RefinementError(
            f"LLM response is not a JSON object: {type(result).__name__}"
        )
    return result


def create_provider(config) -> LLMProvider | None:
    """Build the refinement provider, or None when AI is not configured."""
    if not config.ai_configured:
        return None
    return AnthropicProvider(api_key=config.anthropic_api_key, model=config.refine_model)
