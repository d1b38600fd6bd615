from __future__ import annotations

import base64
import unittest

import requests

from clarity_comfort.ai import (
    AFFIRMATION_EMPTY,
    AFFIRMATION_FALLBACK,
    CHAT_EMPTY,
    CHAT_FALLBACK,
    DEFAULT_IMAGE_PROMPT,
    VISION_FALLBACK,
    CompanionGateway,
    _extract_grounding_sources,
    _extract_text,
)
from clarity_comfort.models import GroundingSource


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, *responses):
        self.calls: list[dict] = []
        self._responses = list(responses)

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _text_payload(text: str, chunks=None) -> dict:
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if chunks is not None:
        candidate["groundingMetadata"] = {"groundingChunks": chunks}
    return {"candidates": [candidate]}


def _gateway(session: _FakeSession, api_key: str = "test-key") -> CompanionGateway:
    return CompanionGateway(api_key=api_key, timeout_seconds=5, session=session)


class AffirmationTests(unittest.TestCase):
    def test_returns_model_text(self) -> None:
        session = _FakeSession(_FakeResponse(payload=_text_payload("  You are enough.  ")))
        self.assertEqual(_gateway(session).generate_affirmation(), "You are enough.")
        call = session.calls[0]
        self.assertIn("gemini-2.5-flash:generateContent", call["url"])
        self.assertEqual(call["headers"], {"x-goog-api-key": "test-key"})
        self.assertEqual(call["timeout"], 5)

    def test_empty_answer_uses_default(self) -> None:
        session = _FakeSession(_FakeResponse(payload={"candidates": []}))
        self.assertEqual(_gateway(session).generate_affirmation(), AFFIRMATION_EMPTY)

    def test_http_error_falls_back(self) -> None:
        session = _FakeSession(_FakeResponse(status_code=503, text="overloaded"))
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            self.assertEqual(_gateway(session).generate_affirmation(), AFFIRMATION_FALLBACK)

    def test_missing_key_never_calls_remote(self) -> None:
        session = _FakeSession()
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            self.assertEqual(_gateway(session, api_key=" ").generate_affirmation(), AFFIRMATION_FALLBACK)
        self.assertEqual(session.calls, [])


class ChatTests(unittest.TestCase):
    def test_reply_with_grounding_sources(self) -> None:
        chunks = [
            {"web": {"uri": "https://example.org/rights", "title": "Parent rights"}},
            {"web": {"uri": "https://example.org/untitled"}},
            {"retrievedContext": {"uri": "ignored"}},
        ]
        session = _FakeSession(_FakeResponse(payload=_text_payload("Here is what I found.", chunks)))
        history = [{"role": "model", "parts": [{"text": "Hi there."}]}]

        reply = _gateway(session).send_message("What are my rights?", history)

        self.assertEqual(reply.text, "Here is what I found.")
        self.assertEqual(reply.sources, [GroundingSource("Parent rights", "https://example.org/rights")])
        body = session.calls[0]["json"]
        self.assertEqual(body["tools"], [{"google_search": {}}])
        self.assertEqual(body["contents"][0], history[0])
        self.assertEqual(body["contents"][-1], {"role": "user", "parts": [{"text": "What are my rights?"}]})
        self.assertIn("systemInstruction", body)

    def test_network_error_falls_back(self) -> None:
        session = _FakeSession(requests.ConnectionError("offline"))
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            reply = _gateway(session).send_message("hello", [])
        self.assertEqual(reply.text, CHAT_FALLBACK)
        self.assertEqual(reply.sources, [])

    def test_non_json_falls_back(self) -> None:
        session = _FakeSession(_FakeResponse(payload=None, text="<html>"))
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            self.assertEqual(_gateway(session).send_message("hello", []).text, CHAT_FALLBACK)

    def test_blank_answer_uses_default(self) -> None:
        session = _FakeSession(_FakeResponse(payload=_text_payload("   ")))
        self.assertEqual(_gateway(session).send_message("hello", []).text, CHAT_EMPTY)


class ImageAnalysisTests(unittest.TestCase):
    def test_sends_inline_image_and_default_prompt(self) -> None:
        session = _FakeSession(_FakeResponse(payload=_text_payload("A calm lake.")))
        answer = _gateway(session).analyze_image("QUJD", "image/png", "  ")
        self.assertEqual(answer, "A calm lake.")
        call = session.calls[0]
        self.assertIn("gemini-3-pro-preview:generateContent", call["url"])
        parts = call["json"]["contents"][0]["parts"]
        self.assertEqual(parts[0], {"inline_data": {"mime_type": "image/png", "data": "QUJD"}})
        self.assertEqual(parts[1], {"text": DEFAULT_IMAGE_PROMPT})

    def test_error_falls_back(self) -> None:
        session = _FakeSession(_FakeResponse(status_code=400, text="bad image"))
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            self.assertEqual(_gateway(session).analyze_image("QUJD", "image/png", "what is this"), VISION_FALLBACK)


class SpeechTests(unittest.TestCase):
    def test_returns_decoded_audio(self) -> None:
        pcm = b"\x00\x01\x02\x03"
        payload = {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"inlineData": {"mimeType": "audio/L16;rate=24000", "data": base64.b64encode(pcm).decode()}}
                        ]
                    }
                }
            ]
        }
        session = _FakeSession(_FakeResponse(payload=payload))
        self.assertEqual(_gateway(session).synthesize_speech("Breathe."), pcm)
        config = session.calls[0]["json"]["generationConfig"]
        self.assertEqual(config["responseModalities"], ["AUDIO"])
        self.assertEqual(config["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"], "Kore")

    def test_missing_audio_returns_none(self) -> None:
        session = _FakeSession(_FakeResponse(payload=_text_payload("no audio here")))
        self.assertIsNone(_gateway(session).synthesize_speech("Breathe."))

    def test_failure_returns_none(self) -> None:
        session = _FakeSession(requests.Timeout("slow"))
        with self.assertLogs("clarity_comfort.ai", level="WARNING"):
            self.assertIsNone(_gateway(session).synthesize_speech("Breathe."))

    def test_blank_text_skips_request(self) -> None:
        session = _FakeSession()
        self.assertIsNone(_gateway(session).synthesize_speech("  "))
        self.assertEqual(session.calls, [])


class ParsingTests(unittest.TestCase):
    def test_extract_text_joins_parts(self) -> None:
        data = {"candidates": [{"content": {"parts": [{"text": "a"}, {"inlineData": {}}, {"text": "b"}]}}]}
        self.assertEqual(_extract_text(data), "ab")

    def test_extract_sources_tolerates_missing_metadata(self) -> None:
        self.assertEqual(_extract_grounding_sources({"candidates": [{}]}), [])
        self.assertEqual(_extract_grounding_sources({}), [])


if __name__ == "__main__":
    unittest.main()
