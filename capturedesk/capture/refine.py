"""Refinement gateway.

Sends a capture's raw content through one structured-output request and maps
the answer onto a RefinedCapture. Refinement is optional: any failure (no
provider, provider error, answer not matching the schema) yields None and the
caller falls back to the raw capture and ``generate_fallback_title``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

import tiktoken
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from capturedesk.capture.models import (
    Capture,
    InferredCollection,
    InferredNoteType,
    RefinedCapture,
)
from capturedesk.core.exceptions import RefinementError
from capturedesk.core.llm_provider import LLMProvider
from capturedesk.core.text import first_sentence, truncate

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 60
MIN_TAGS = 2
MAX_TAGS = 4

# Raw capture text sent to the model is cut to this many tokens
MAX_CAPTURE_TOKENS = 4_000

# tiktoken encoding (close enough to Anthropic's tokenizer for budget checks)
_encoding: tiktoken.Encoding | None = None


def _get_encoding() -> tiktoken.Encoding:
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return _encoding


def estimate_tokens(text: str) -> int:
    return len(_get_encoding().encode(text))


def cap_tokens(text: str, max_tokens: int = MAX_CAPTURE_TOKENS) -> str:
    """Cut text to at most ``max_tokens`` tokens."""
    tokens = _get_encoding().encode(text)
    if len(tokens) <= max_tokens:
        return text
    return _get_encoding().decode(tokens[:max_tokens])


class RefinementOutput(BaseModel):
    """Structured answer requested from the model.

    Length limits are published in the JSON schema for the model and applied
    by ``to_refined_capture``; an answer that overshoots them is trimmed, not
    discarded.
    """

    title: str = Field(
        description="Concise title under 60 characters",
        json_schema_extra={"maxLength": TITLE_MAX_LENGTH},
    )
    body: str = Field(
        description="Clean markdown body - preserve original meaning, only fix grammar"
    )
    takeaway: Optional[str] = Field(
        default=None, description="One-sentence summary of the key insight"
    )
    description: Optional[str] = Field(
        default=None, description="1-2 sentence description of a shared resource"
    )
    suggested_tags: list[str] = Field(
        description="2-4 relevant topic tags",
        json_schema_extra={"minItems": MIN_TAGS, "maxItems": MAX_TAGS},
    )
    suggested_type: InferredCollection = Field(
        description="Which collection this belongs to"
    )
    suggested_note_type: Optional[InferredNoteType] = Field(
        default=None, description="For notes collection, the type of note"
    )


REFINEMENT_PROMPT = """You are a minimal content editor. Your job is to PRESERVE the user's original message while only fixing grammar and spelling.

CRITICAL RULES:
- DO NOT add information the user didn't provide
- DO NOT remove information the user provided
- DO NOT change the meaning or tone
- DO NOT over-format with headers/lists unless the original clearly needs it
- DO NOT editorialize or add your own commentary
- ONLY fix grammar, spelling, and basic punctuation
- Keep the body SHORT - match the length of the original content

Content classification (pick the MOST appropriate):
- til: Short learnings or tips the user discovered (< 200 words, no URL focus)
- notes (link): URL + user commentary about it
- notes (thought): Personal reflections, opinions (no URL)
- notes (essay): Longer structured pieces (> 300 words)
- notes (snippet): Code-focused content
- project-update: ONLY if a project is explicitly specified

For every capture:
- title: Capture the essence in < 60 chars
- body: User's content with grammar fixes only
- takeaway: One sentence key insight
- suggested_tags: 2-4 lowercase topic tags

Raw capture:
{capture}

URL (if provided): {url}
User's comment (if provided): {comment}
Project (if specified): {project}"""


def build_prompt(capture: Capture) -> str:
    return REFINEMENT_PROMPT.format(
        capture=cap_tokens(capture.text or ""),
        url=capture.url or "None",
        comment=capture.comment or "None",
        project=capture.project or "None",
    )


class RefinementGateway:
    """Best-effort AI refinement of captures.

    Args:
        provider: LLM provider, or None when AI is not configured (every
            refinement then returns None).
    """

    def __init__(self, provider: LLMProvider | None):
        self._provider = provider

    @property
    def configured(self) -> bool:
        return self._provider is not None

    async def refine(self, capture: Capture) -> RefinedCapture | None:
        """Ask the provider for a suggestion. Never raises for provider trouble."""
        if self._provider is None:
            logger.warning("AI not configured, skipping refinement")
            return None

        try:
            prompt = build_prompt(capture)
            logger.debug(
                "Requesting refinement",
                extra={"capture_id": capture.id, "prompt_tokens": estimate_tokens(prompt)},
            )
            raw = await self._provider.extract_structured(
                prompt, RefinementOutput.model_json_schema()
            )
            output = RefinementOutput.model_validate(raw)
        except RefinementError as e:
            logger.error(
                "Refinement failed", extra={"capture_id": capture.id, "error": str(e)}
            )
            return None
        except PydanticValidationError as e:
            logger.error(
                "Refinement returned malformed output",
                extra={"capture_id": capture.id, "error_count": e.error_count()},
            )
            return None
        except Exception:
            logger.exception(
                "Unexpected refinement error", extra={"capture_id": capture.id}
            )
            return None

        return to_refined_capture(output)


def to_refined_capture(output: RefinementOutput) -> RefinedCapture:
    return RefinedCapture(
        title=truncate(output.title, TITLE_MAX_LENGTH),
        body=output.body,
        takeaway=output.takeaway,
        description=output.description,
        suggested_tags=output.suggested_tags[:MAX_TAGS],
        suggested_type=output.suggested_type,
        suggested_note_type=output.suggested_note_type,
        refined_at=datetime.now(timezone.utc),
    )


def generate_fallback_title(capture: Capture) -> str:
    """Deterministic title used when no refinement is applied.

    First sentence of the comment, else of the text, else ``Link: <host>``,
    else a placeholder. At most 60 characters.
    """
    if capture.comment and capture.comment.strip():
        return truncate(first_sentence(capture.comment), TITLE_MAX_LENGTH)

    if capture.text and capture.text.strip():
        return truncate(first_sentence(capture.text), TITLE_MAX_LENGTH)

    if capture.url:
        hostname = urlparse(capture.url).hostname
        if hostname:
            return truncate(f"Link: {hostname}", TITLE_MAX_LENGTH)
        return "Captured link"

    return "Untitled capture"
