"""One-shot structured generation: titles, thumbnail prompts and speech feedback.

Every call asks Gemini for JSON matching a response schema and parses it
into plain Python / Pydantic values. SDK faults and malformed JSON are
normalized to GeminiClientError.
"""

import json
import logging
from typing import Any

from google.genai.types import (
    GenerateContentConfig,
    HarmBlockThreshold,
    HarmCategory,
    SafetySetting,
    Schema,
    Type,
)
from pydantic import ValidationError

from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.exceptions import GeminiClientError, TranscriptTooShortError
from aiforge.services.generation.models import PresentationFeedback, ThumbnailPrompts

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
MIN_TRANSCRIPT_CHARS = 20

GENERATION_DEFAULTS: dict[str, Any] = {
    "temperature": 0.9,
    "top_k": 1,
    "top_p": 1,
    "max_output_tokens": 2048,
}

SAFETY_SETTINGS = [
    SafetySetting(category=category, threshold=HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE)
    for category in (
        HarmCategory.HARM_CATEGORY_HARASSMENT,
        HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]

_STRING_LIST = Schema(type=Type.ARRAY, items=Schema(type=Type.STRING))

TITLES_SCHEMA = _STRING_LIST

THUMBNAIL_SCHEMA = Schema(
    type=Type.OBJECT,
    properties={
        "prompts": Schema(
            type=Type.ARRAY,
            items=Schema(type=Type.STRING),
            description="A list of 5 creative prompts for an AI image generator.",
        ),
        "cues": Schema(
            type=Type.ARRAY,
            items=Schema(type=Type.STRING),
            description="A list of 3 design cues (color, font, composition).",
        ),
    },
    required=["prompts", "cues"],
)

PRESENTATION_SCHEMA = Schema(
    type=Type.OBJECT,
    properties={
        "overallScore": Schema(type=Type.NUMBER, description="An overall score from 1 to 10."),
        "feedback": Schema(
            type=Type.OBJECT,
            properties={
                "clarity": Schema(type=Type.STRING, description="Feedback on the clarity of the message."),
                "pacing": Schema(type=Type.STRING, description="Feedback on the pacing and flow."),
                "fillerWords": Schema(type=Type.STRING, description="Feedback on the use of filler words."),
                "engagement": Schema(type=Type.STRING, description="Feedback on how engaging the speech is."),
            },
            required=["clarity", "pacing", "fillerWords", "engagement"],
        ),
        "suggestions": Schema(
            type=Type.ARRAY,
            items=Schema(type=Type.STRING),
            description="A list of actionable suggestions for improvement.",
        ),
        "fillerWordCount": Schema(
            type=Type.ARRAY,
            items=Schema(
                type=Type.OBJECT,
                properties={
                    "word": Schema(type=Type.STRING),
                    "count": Schema(type=Type.NUMBER),
                },
                required=["word", "count"],
            ),
            description="A count of common filler words found in the transcript.",
        ),
    },
    required=["overallScore", "feedback", "suggestions", "fillerWordCount"],
)


class ContentGenerator:
    """Structured one-shot requests against the shared Gemini credential."""

    def __init__(
        self,
        gate: CredentialGate,
        model_id: str = DEFAULT_MODEL,
        min_transcript_chars: int = MIN_TRANSCRIPT_CHARS,
    ) -> None:
        self._gate = gate
        self._model_id = model_id
        self._min_transcript_chars = min_transcript_chars

    @property
    def min_transcript_chars(self) -> int:
        return self._min_transcript_chars

    async def generate_titles_and_hooks(
        self,
        topic: str,
        audience: str,
        system_instruction: str | None = None,
    ) -> list[str]:
        prompt = (
            "Generate 10 compelling titles and hooks for a piece of content. "
            f'The topic is "{topic}" and the target audience is "{audience}". '
            "Combine titles and hooks in single strings. For example: "
            '"Title: The #1 Mistake Coders Make | Hook: Are you making this critical error?". '
            "Return the response as a JSON array of 10 unique strings."
        )
        results = await self._generate_json(prompt, TITLES_SCHEMA, system_instruction=system_instruction)
        if not isinstance(results, list):
            raise GeminiClientError("Titles response was not a JSON array")
        return [str(item) for item in results]

    async def generate_thumbnail_prompts(self, video_topic: str, tone: str) -> ThumbnailPrompts:
        prompt = (
            "You are a creative director specializing in YouTube thumbnails. "
            f'For a video with the topic "{video_topic}" and a desired tone of "{tone}", '
            "generate the following:\n"
            "1.  A list of 5 creative, specific prompts that could be used with an AI image generator "
            "(like Midjourney or DALL-E) to create a compelling thumbnail.\n"
            "2.  A list of 3 design cues, including suggestions for color palettes, font styles, and composition.\n"
            "Your response must be a valid JSON object."
        )
        results = await self._generate_json(prompt, THUMBNAIL_SCHEMA)
        try:
            return ThumbnailPrompts.model_validate(results)
        except ValidationError as exc:
            raise GeminiClientError(f"Thumbnail response did not match schema: {exc}") from exc

    async def analyze_presentation(self, transcript: str) -> PresentationFeedback:
        """Score a presentation transcript.

        Raises:
            TranscriptTooShortError: Locally, before any remote call, when the
                stripped transcript is shorter than the configured minimum.
            GeminiConfigurationError: If the credential gate is not ready.
            GeminiClientError: If the request or response parsing fails.
        """
        stripped = transcript.strip()
        if len(stripped) < self._min_transcript_chars:
            raise TranscriptTooShortError(len(stripped), self._min_transcript_chars)

        prompt = (
            "You are a world-class public speaking coach. Analyze the following transcript of a presentation. "
            "Provide feedback on clarity, pacing (based on text flow), use of filler words, and engagement. "
            "Give an overall score out of 10. Also provide a list of actionable suggestions for improvement "
            "and a count of common filler words found.\n\n"
            "Respond ONLY with a valid JSON object matching the provided schema.\n\n"
            f"Transcript:\n---\n{stripped}\n---"
        )
        results = await self._generate_json(prompt, PRESENTATION_SCHEMA, temperature=0.4)
        try:
            return PresentationFeedback.model_validate(results)
        except ValidationError as exc:
            raise GeminiClientError(f"Presentation feedback did not match schema: {exc}") from exc

    async def _generate_json(
        self,
        prompt: str,
        schema: Schema,
        system_instruction: str | None = None,
        temperature: float | None = None,
    ) -> Any:
        client = self._gate.client

        config_kwargs = {
            **GENERATION_DEFAULTS,
            "safety_settings": SAFETY_SETTINGS,
            "response_mime_type": "application/json",
            "response_schema": schema,
        }
        if temperature is not None:
            config_kwargs["temperature"] = temperature
        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction

        try:
            response = await client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=GenerateContentConfig(**config_kwargs),
            )
        except Exception as exc:
            raise GeminiClientError(f"generate_content failed: {exc}") from exc

        raw = (response.text or "").strip()
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse JSON response: %s (raw: %s)", exc, raw[:200])
            raise GeminiClientError(f"Failed to parse JSON response: {exc}") from exc
