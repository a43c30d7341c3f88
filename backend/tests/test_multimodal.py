import base64
import json

import httpx
import pytest

from backend.app.orchestration.multimodal import (
    GeminiImageAnalyzer,
    StubImageAnalyzer,
    build_prompt,
    extract_json_object,
    verdict_from_model_json,
)
from backend.app.safety.verdicts import ImageVerdict, InlineImage

IMAGE = InlineImage(data=b"\x89PNG\r\n\x1a\nfake", mime_type="image/png")


def _gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


def _analyzer(handler, api_key="k-test"):
    return GeminiImageAnalyzer(
        api_key,
        model="gemini-test",
        api_base="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


def test_extract_json_strips_fences_and_prose():
    raw = 'Sure! Here is the result:\n```json\n{"isAuthentic": true, "confidenceScore": 88}\n```\nThanks'
    assert extract_json_object(raw) == {"isAuthentic": True, "confidenceScore": 88}


def test_extract_json_skips_broken_candidates():
    raw = 'note {not json} then {"a": {"b": 1}} and {"c": 2}'
    assert extract_json_object(raw) == {"a": {"b": 1}}


def test_extract_json_raises_without_object():
    with pytest.raises(ValueError):
        extract_json_object("no braces here")


def test_verdict_prefers_image_block():
    v = verdict_from_model_json({
        "isAuthentic": True,
        "confidenceScore": 90,
        "reason": "Looks fine",
        "imageAnalysis": {"isAppropriate": False, "isRelevant": True, "description": "A weapon", "confidence": 75},
    })
    assert v == ImageVerdict(available=True, is_appropriate=False, is_relevant=True, confidence=75, description="A weapon")


def test_verdict_falls_back_to_overall_judgment():
    v = verdict_from_model_json({"isAuthentic": False, "confidenceScore": 0.8, "reason": "Unrelated stock photo"})
    assert v.is_appropriate is False
    assert v.is_relevant is True
    assert v.confidence == 80
    assert v.description == "Unrelated stock photo"


def test_verdict_without_confidence_is_unusable():
    with pytest.raises(ValueError):
        verdict_from_model_json({"isAuthentic": True})


@pytest.mark.parametrize("bad", [float("inf"), float("-inf"), float("nan"), "Infinity"])
def test_non_finite_confidence_is_unusable(bad):
    with pytest.raises(ValueError):
        verdict_from_model_json({"isAuthentic": True, "confidenceScore": bad, "imageAnalysis": {"confidence": bad}})


def test_prompt_includes_topic_guidelines_and_length_rule():
    p = build_prompt("lostnfound", "Keys", "Found keys")
    assert "Lost & Found guidelines" in p
    assert "Do NOT reject or penalize content based on length" in p
    assert "Title: Keys" in p


@pytest.mark.anyio
async def test_gemini_request_carries_inline_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.url.params.get("key")
        seen["body"] = json.loads(request.content)
        answer = {
            "isAuthentic": True,
            "confidenceScore": 92,
            "reason": "ok",
            "imageAnalysis": {"isAppropriate": True, "isRelevant": False, "description": "A cat", "confidence": 70},
        }
        return httpx.Response(200, json=_gemini_body("```json\n" + json.dumps(answer) + "\n```"))

    v = await _analyzer(handler).analyze_image("event", "Hackathon", "Join us Friday", IMAGE)
    assert seen["path"] == "/v1beta/models/gemini-test:generateContent"
    assert seen["key"] == "k-test"
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[1]["inline_data"]["mime_type"] == "image/png"
    assert base64.b64decode(parts[1]["inline_data"]["data"]) == IMAGE.data
    assert v.available is True
    assert v.is_relevant is False
    assert v.confidence == 70


@pytest.mark.anyio
@pytest.mark.parametrize("failure", ["status", "timeout", "blocked", "prose", "empty", "infinite"])
async def test_gemini_failures_pass_by_default(failure):
    def handler(request: httpx.Request) -> httpx.Response:
        if failure == "status":
            return httpx.Response(429, json={"error": {"message": "quota"}})
        if failure == "timeout":
            raise httpx.ReadTimeout("slow", request=request)
        if failure == "blocked":
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
        if failure == "infinite":
            return httpx.Response(200, json=_gemini_body('{"isAuthentic": true, "confidenceScore": 1e999}'))
        if failure == "prose":
            return httpx.Response(200, json=_gemini_body("I cannot evaluate this image."))
        return httpx.Response(200, json={"candidates": []})

    v = await _analyzer(handler).analyze_image("event", None, "x", IMAGE)
    assert v.available is False
    assert v.is_appropriate is True
    assert v.is_relevant is True
    assert v.confidence == 40
    assert "unavailable" in v.description


@pytest.mark.anyio
async def test_missing_key_skips_network():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("network used without a key")

    v = await _analyzer(handler, api_key="").analyze_image("event", None, "x", IMAGE)
    assert v.available is False


@pytest.mark.anyio
async def test_stub_analyzer_defaults_to_unavailable():
    stub = StubImageAnalyzer(unavailable_confidence=30)
    v = await stub.analyze_image("event", None, "x", IMAGE)
    assert v.available is False
    assert v.confidence == 30
    assert stub.calls == 1
