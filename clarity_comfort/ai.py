from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import requests

from .errors import RemoteUnavailable
from .models import GroundingSource

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

AFFIRMATION_PROMPT = (
    "Give me a short, gentle, and very comforting positive affirmation for someone going "
    "through a very hard time with family and legal issues. Keep it under 20 words."
)
COMPANION_INSTRUCTION = (
    "You are a warm, empathetic, and supportive sisterly companion. You are helping a user "
    "who is dealing with CPS and foster care issues. Be gentle, non-judgmental, and clear. "
    "If the user asks about legal or factual things, use the search tool to provide accurate "
    "information but deliver it with kindness. Keep responses concise unless asked for detail."
)
DEFAULT_IMAGE_PROMPT = "Describe this image gently."

AFFIRMATION_EMPTY = "You are stronger than you know, and you are not alone."
AFFIRMATION_FALLBACK = "Peace comes from within. Breathe deeply."
CHAT_EMPTY = "I'm here for you."
CHAT_FALLBACK = "I'm having a little trouble connecting right now, but I'm still listening."
VISION_EMPTY = "I see the image, but I can't quite describe it right now."
VISION_FALLBACK = "I couldn't analyze the image just yet. Please try again."


@dataclass(frozen=True)
class ChatReply:
    text: str
    sources: list[GroundingSource] = field(default_factory=list)


class CompanionGateway:
    """Thin client for the four Gemini calls the app makes.

    Every public method fails soft: network errors, HTTP errors and
    unexpected payloads are logged and replaced by a fixed fallback value.
    Nothing is retried.
    """

    def __init__(
        self,
        api_key: str,
        chat_model: str = "gemini-2.5-flash",
        vision_model: str = "gemini-3-pro-preview",
        speech_model: str = "gemini-2.5-flash-preview-tts",
        voice: str = "Kore",
        timeout_seconds: float = 60.0,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key.strip()
        self.chat_model = chat_model
        self.vision_model = vision_model
        self.speech_model = speech_model
        self.voice = voice
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def generate_affirmation(self) -> str:
        payload = {"contents": [{"role": "user", "parts": [{"text": AFFIRMATION_PROMPT}]}]}
        try:
            data = self._generate(self.chat_model, payload)
        except RemoteUnavailable as exc:
            logger.warning("Affirmation request failed: %s", exc)
            return AFFIRMATION_FALLBACK
        return _extract_text(data).strip() or AFFIRMATION_EMPTY

    def send_message(self, text: str, prior_turns: Sequence[dict[str, Any]]) -> ChatReply:
        payload = {
            "contents": [*prior_turns, {"role": "user", "parts": [{"text": text}]}],
            "tools": [{"google_search": {}}],
            "systemInstruction": {"parts": [{"text": COMPANION_INSTRUCTION}]},
        }
        try:
            data = self._generate(self.chat_model, payload)
        except RemoteUnavailable as exc:
            logger.warning("Chat request failed: %s", exc)
            return ChatReply(text=CHAT_FALLBACK, sources=[])
        return ChatReply(
            text=_extract_text(data).strip() or CHAT_EMPTY,
            sources=_extract_grounding_sources(data),
        )

    def analyze_image(self, image_base64: str, mime_type: str, prompt: str) -> str:
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                        {"text": prompt.strip() or DEFAULT_IMAGE_PROMPT},
                    ],
                }
            ]
        }
        try:
            data = self._generate(self.vision_model, payload)
        except RemoteUnavailable as exc:
            logger.warning("Image analysis failed: %s", exc)
            return VISION_FALLBACK
        return _extract_text(data).strip() or VISION_EMPTY

    def synthesize_speech(self, text: str) -> bytes | None:
        """Return raw 16-bit mono PCM at 24 kHz, or ``None`` when unavailable."""
        if not text.strip():
            return None
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}},
                },
            },
        }
        try:
            data = self._generate(self.speech_model, payload)
            return _extract_inline_audio(data)
        except RemoteUnavailable as exc:
            logger.warning("Speech synthesis failed: %s", exc)
            return None

    def _generate(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise RemoteUnavailable("Gemini API key is not configured.")
        return _http_post_json(
            self._session,
            GEMINI_ENDPOINT.format(model=model),
            payload,
            headers={"x-goog-api-key": self.api_key},
            timeout=self.timeout_seconds,
        )


def _http_post_json(
    session: requests.Session,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> dict[str, Any]:
    try:
        response = session.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise RemoteUnavailable(f"AI request failed: {exc}") from exc

    if response.status_code >= 400:
        raise RemoteUnavailable(f"AI request failed ({response.status_code}): {response.text[:500]}")

    try:
        data = response.json()
    except ValueError as exc:
        raise RemoteUnavailable("AI provider returned non-JSON response.") from exc
    if not isinstance(data, dict):
        raise RemoteUnavailable("AI provider returned an unexpected payload.")
    return data


def _first_candidate_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    return [part for part in parts or [] if isinstance(part, dict)]


def _extract_text(data: dict[str, Any]) -> str:
    chunks = [part["text"] for part in _first_candidate_parts(data) if isinstance(part.get("text"), str)]
    return "".join(chunks)


def _extract_grounding_sources(data: dict[str, Any]) -> list[GroundingSource]:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    metadata = candidates[0].get("groundingMetadata") or {}
    chunks = metadata.get("groundingChunks") if isinstance(metadata, dict) else None
    sources: list[GroundingSource] = []
    for chunk in chunks or []:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict):
            continue
        uri = web.get("uri")
        title = web.get("title")
        if isinstance(uri, str) and uri and isinstance(title, str) and title:
            sources.append(GroundingSource(title=title, uri=uri))
    return sources


def _extract_inline_audio(data: dict[str, Any]) -> bytes | None:
    for part in _first_candidate_parts(data):
        inline = part.get("inlineData") or part.get("inline_data")
        if not isinstance(inline, dict):
            continue
        encoded = inline.get("data")
        if not isinstance(encoded, str) or not encoded:
            continue
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RemoteUnavailable("Speech payload was not valid base64.") from exc
    return None
