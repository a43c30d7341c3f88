from typing import Any, Dict, Optional, Protocol
import json
import logging
import math
import re

import httpx

from ..policies.appropriateness import normalize_topic
from ..safety.verdicts import ImageVerdict, InlineImage

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """
You are an AI content verification system for a university student portal.
Analyze the submitted post and its attached image and decide whether the post is
authentic, appropriate, and suitable for publishing on a university platform.

Evaluation criteria:
1. The title must be clear, relevant, and not misleading.
2. The description must match the title and must not contain false, spam, abusive, or irrelevant information.
3. The content and the image must not include hate speech, explicit material, violence, or other inappropriate material.
4. The post should appear realistic and related to university activities.
5. Judge whether the image is relevant to the title and description.

Important: Do NOT reject or penalize content based on length. Short titles and short
descriptions are acceptable. Evaluate authenticity, appropriateness, relevance and
policy compliance only.

Return ONLY one JSON object, no markdown, with exactly these keys:
{
  "isAuthentic": true | false,
  "confidenceScore": 0-100,
  "reason": "short explanation",
  "imageAnalysis": {
    "isAppropriate": true | false,
    "isRelevant": true | false,
    "description": "one sentence describing the image",
    "confidence": 0-100
  }
}
"""

TOPIC_GUIDELINES = {
    "lost-found": """
Lost & Found guidelines:
- Must describe a real, physical item that could be lost or found on campus
- Should include a clear description of the item (color, brand, size, location found)
- Must not be a scam or an attempt to sell inappropriate items
- Must not contain personal information that violates privacy
""",
    "event": """
Event guidelines:
- Must describe a legitimate university or student organization event
- Should include event details (date, time, location, purpose)
- Must not promote illegal activities or inappropriate gatherings
- Must not be spam or misleading information
""",
    "academic": """
Academic resource guidelines:
- Must be educational and relevant to university coursework
- Must not violate copyright or intellectual property
- Must not contain inappropriate or offensive material
""",
    "generic": """
General university content guidelines:
- Content must be relevant to university activities and student life
- Must be appropriate, professional, and respectful
- Must comply with university policies and community standards
""",
}

_FENCE_RE = re.compile(r"```(?:json)?", re.I)


class ImageAnalyzer(Protocol):
    async def analyze_image(
        self, topic: str, title: Optional[str], content: str, image: InlineImage
    ) -> ImageVerdict:
        ...


def build_prompt(topic: str, title: Optional[str], content: str) -> str:
    guidelines = TOPIC_GUIDELINES[normalize_topic(topic)]
    return (
        SYSTEM_PROMPT
        + guidelines
        + "\nContent to evaluate:\n"
        + f"Title: {title or '(none)'}\n"
        + f"Description: {content}\n"
        + f"Type: {topic}\n"
        + "Image provided: Yes (attached)\n"
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    """Return the first well-formed JSON object found in free-form model output."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    decoder = json.JSONDecoder()
    for m in re.finditer(r"\{", cleaned):
        try:
            obj, _ = decoder.raw_decode(cleaned, m.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("no JSON object in model output")


def _as_bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().lower() in ("true", "false"):
        return v.strip().lower() == "true"
    return default


def _as_confidence(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    # Some answers use a 0-1 scale
    if 0.0 < f <= 1.0 and isinstance(v, float):
        f *= 100
    return max(0, min(100, int(round(f))))


def verdict_from_model_json(obj: Dict[str, Any]) -> ImageVerdict:
    img = obj.get("imageAnalysis")
    img = img if isinstance(img, dict) else {}

    overall = _as_bool(obj.get("isAuthentic"), True)
    is_appropriate = _as_bool(img.get("isAppropriate"), overall)
    is_relevant = _as_bool(img.get("isRelevant"), True)

    confidence = _as_confidence(img.get("confidence"))
    if confidence is None:
        confidence = _as_confidence(obj.get("confidenceScore"))
    if confidence is None:
        raise ValueError("model answer has no usable confidence")

    description = str(img.get("description") or obj.get("reason") or "").strip()
    return ImageVerdict(
        available=True,
        is_appropriate=is_appropriate,
        is_relevant=is_relevant,
        confidence=confidence,
        description=description,
    )


def response_text(data: Dict[str, Any]) -> str:
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ValueError(f"prompt blocked: {feedback['blockReason']}")
    candidates = data.get("candidates") or []
    if not candidates:
        raise ValueError("no candidates in model response")
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    if not text.strip():
        raise ValueError("model returned empty content")
    return text


class GeminiImageAnalyzer:
    """Multimodal authenticity check against the Gemini ``generateContent`` endpoint.

    Any failure (missing key, network, timeout, non-2xx, unparsable answer) yields the
    pass-by-default ``ImageVerdict.unavailable()``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_s: float = 8.0,
        unavailable_confidence: int = 40,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.unavailable_confidence = unavailable_confidence
        self.transport = transport

    def _payload(self, topic: str, title: Optional[str], content: str, image: InlineImage) -> dict:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_prompt(topic, title, content)},
                        {"inline_data": {"mime_type": image.mime_type, "data": image.to_base64()}},
                    ],
                }
            ],
            "generationConfig": {"temperature": 0.1, "responseMimeType": "application/json"},
        }

    async def analyze_image(
        self, topic: str, title: Optional[str], content: str, image: InlineImage
    ) -> ImageVerdict:
        if not self.api_key:
            logger.warning("GEMINI_API_KEY missing; skipping image analysis")
            return ImageVerdict.unavailable(self.unavailable_confidence)

        url = f"{self.api_base}/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                resp = await client.post(
                    url,
                    params={"key": self.api_key},
                    json=self._payload(topic, title, content, image),
                )
                resp.raise_for_status()
                raw = response_text(resp.json())
            verdict = verdict_from_model_json(extract_json_object(raw))
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError, OverflowError) as e:
            logger.warning("Image analysis unavailable (%s): %s", self.model, e)
            return ImageVerdict.unavailable(self.unavailable_confidence)

        logger.debug(
            "Image analysis: appropriate=%s relevant=%s confidence=%s",
            verdict.is_appropriate, verdict.is_relevant, verdict.confidence,
        )
        return verdict


class StubImageAnalyzer:
    """Deterministic analyzer; returns a fixed verdict (or the unavailable default)."""

    def __init__(self, verdict: Optional[ImageVerdict] = None, *, unavailable_confidence: int = 40):
        self.verdict = verdict
        self.unavailable_confidence = unavailable_confidence
        self.calls = 0

    async def analyze_image(
        self, topic: str, title: Optional[str], content: str, image: InlineImage
    ) -> ImageVerdict:
        self.calls += 1
        if self.verdict is None:
            return ImageVerdict.unavailable(self.unavailable_confidence)
        return self.verdict
