from typing import Any, List, Optional, Protocol, Sequence, Tuple
import logging
import re

import httpx

from ..safety.verdicts import ClassifierVerdict

logger = logging.getLogger(__name__)

TOXIC_LABELS = (
    "toxic", "obscene", "threat", "insult", "identity_hate",
    "offensive", "abusive", "hate", "harassment", "profanity",
)
# "non-offensive", "not_toxic", "no_hate" ... are the benign side of a binary head
_NEGATED_RE = re.compile(r"^(?:non|not|no)[\s_-]")


class MalformedPayload(ValueError):
    pass


class TextClassifier(Protocol):
    async def classify(self, title: Optional[str], content: str) -> ClassifierVerdict:
        ...


def build_input(title: Optional[str], content: str) -> str:
    return f"{title}\n\n{content}" if title else content


def is_toxic_label(label: str, positive_labels: Sequence[str] = ()) -> bool:
    """Toxic-side label check. ``positive_labels`` names opaque heads such as ``LABEL_1``."""
    lab = (label or "").strip().lower()
    if not lab:
        return False
    if lab in {p.strip().lower() for p in positive_labels}:
        return True
    if _NEGATED_RE.match(lab):
        return False
    return any(t in lab for t in TOXIC_LABELS)


def parse_predictions(payload: Any) -> List[Tuple[str, float]]:
    """Normalize a text-classification payload into (label, score) pairs.

    Accepts ``[[{label, score}, ...]]``, ``[{label, score}, ...]`` or a single
    ``{label, score}`` object. Anything else raises ``MalformedPayload``.
    """
    if isinstance(payload, list) and payload and isinstance(payload[0], list):
        payload = payload[0]
    if isinstance(payload, dict):
        if "error" in payload:
            raise MalformedPayload(f"classifier error payload: {payload.get('error')}")
        payload = [payload]
    if not isinstance(payload, list):
        raise MalformedPayload(f"unexpected payload type: {type(payload).__name__}")

    out: List[Tuple[str, float]] = []
    for pred in payload:
        if not isinstance(pred, dict) or "label" not in pred or "score" not in pred:
            raise MalformedPayload(f"unexpected prediction entry: {pred!r}")
        score = float(pred["score"])
        if not 0.0 <= score <= 1.0:
            raise MalformedPayload(f"score out of range: {score}")
        out.append((str(pred["label"]), score))
    if not out:
        raise MalformedPayload("classifier returned no predictions")
    return out


def verdict_from_predictions(
    preds: Sequence[Tuple[str, float]],
    threshold: float,
    positive_labels: Sequence[str] = (),
) -> ClassifierVerdict:
    toxic_score = 0.0
    label: Optional[str] = None
    for lab, sc in preds:
        if is_toxic_label(lab, positive_labels) and sc > toxic_score:
            toxic_score, label = sc, lab.lower()
    flagged = toxic_score > threshold
    return ClassifierVerdict(
        available=True,
        toxic_score=toxic_score,
        label=label,
        flagged=flagged,
        flags=("toxic_content",) if flagged else (),
    )


class HuggingFaceToxicityClassifier:
    """Toxicity classifier backed by the Hugging Face Inference API.

    Models are tried in order; the first well-formed 2xx answer wins. Every failure
    mode degrades to ``ClassifierVerdict.unavailable()``.
    """

    def __init__(
        self,
        models: Sequence[str],
        *,
        threshold: float,
        api_base: str = "https://api-inference.huggingface.co/models",
        api_token: str = "",
        timeout_s: float = 5.0,
        positive_labels: Sequence[str] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.models = list(models)
        self.threshold = threshold
        self.positive_labels = tuple(positive_labels)
        self.api_base = api_base.rstrip("/")
        self.api_token = (api_token or "").strip()
        self.timeout_s = timeout_s
        self.transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def classify(self, title: Optional[str], content: str) -> ClassifierVerdict:
        payload = {"inputs": build_input(title, content)}
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
            for model in self.models:
                url = f"{self.api_base}/{model}"
                try:
                    resp = await client.post(url, json=payload, headers=self._headers())
                    resp.raise_for_status()
                    preds = parse_predictions(resp.json())
                except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                    logger.warning("Toxicity model %s unavailable: %s", model, e)
                    continue
                verdict = verdict_from_predictions(preds, self.threshold, self.positive_labels)
                logger.debug(
                    "Toxicity model %s: label=%s score=%.3f flagged=%s",
                    model, verdict.label, verdict.toxic_score, verdict.flagged,
                )
                return verdict
        return ClassifierVerdict.unavailable()


class StubToxicityClassifier:
    """Deterministic classifier for tests and offline deployments."""

    def __init__(
        self,
        score: float = 0.0,
        label: Optional[str] = None,
        *,
        available: bool = True,
        threshold: float = 0.55,
    ):
        self.score = score
        self.label = label
        self.available = available
        self.threshold = threshold
        self.calls = 0

    async def classify(self, title: Optional[str], content: str) -> ClassifierVerdict:
        self.calls += 1
        if not self.available:
            return ClassifierVerdict(available=False, toxic_score=self.score, label=self.label)
        preds = [(self.label or "toxic", self.score)]
        return verdict_from_predictions(preds, self.threshold)
