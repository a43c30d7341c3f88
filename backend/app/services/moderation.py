import asyncio
import hashlib
import logging
from typing import Awaitable, Optional, TypeVar

from ..config import Settings
from ..orchestration.classify import (
    HuggingFaceToxicityClassifier,
    StubToxicityClassifier,
    TextClassifier,
)
from ..orchestration.multimodal import GeminiImageAnalyzer, ImageAnalyzer
from ..policies import appropriateness
from ..policies.verdict import compose
from ..safety.guard import RuleScanner, load_rule_table
from ..safety.verdicts import (
    ClassifierVerdict,
    ImageVerdict,
    ModerationRequest,
    ModerationVerdict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _sha1(s: str) -> str:
    return hashlib.sha1((s or "").encode("utf-8")).hexdigest()


def _redact(s: str, keep: int = 80) -> str:
    s = (s or "").replace("\n", " ")
    return s[:keep] + ("…" if len(s) > keep else "")


class ModerationService:
    """Runs one submission through scanner, classifier, heuristic and image check.

    Holds no per-request state; the scanner's table is immutable and the adapters
    open their own HTTP clients per call, so one instance serves concurrent requests.
    """

    def __init__(
        self,
        scanner: RuleScanner,
        classifier: TextClassifier,
        image_analyzer: ImageAnalyzer,
        *,
        heuristic_min_score: int = 35,
        min_content_chars: int = 10,
        classifier_timeout_s: float = 5.0,
        image_timeout_s: float = 8.0,
        image_unavailable_confidence: int = 40,
        image_veto: bool = True,
    ):
        self.scanner = scanner
        self.classifier = classifier
        self.image_analyzer = image_analyzer
        self.heuristic_min_score = heuristic_min_score
        self.min_content_chars = min_content_chars
        self.classifier_timeout_s = classifier_timeout_s
        self.image_timeout_s = image_timeout_s
        self.image_unavailable_confidence = image_unavailable_confidence
        self.image_veto = image_veto

    async def _bounded(self, coro: Awaitable[T], timeout_s: float, fallback: T, stage: str) -> T:
        # Adapters already degrade on their own; this caps total time per stage
        try:
            return await asyncio.wait_for(coro, timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning("%s stage timed out after %.1fs", stage, timeout_s)
            return fallback

    async def _classify(self, request: ModerationRequest) -> ClassifierVerdict:
        return await self._bounded(
            self.classifier.classify(request.title, request.content),
            self.classifier_timeout_s,
            ClassifierVerdict.unavailable(),
            "classifier",
        )

    async def _analyze_image(self, request: ModerationRequest) -> ImageVerdict:
        return await self._bounded(
            self.image_analyzer.analyze_image(request.topic, request.title, request.content, request.image),
            self.image_timeout_s,
            ImageVerdict.unavailable(self.image_unavailable_confidence),
            "image",
        )

    async def moderate(self, request: ModerationRequest) -> ModerationVerdict:
        rule = self.scanner.scan(request.title, request.content)
        heuristic = appropriateness.score(
            request.topic,
            request.title,
            request.content,
            min_score=self.heuristic_min_score,
            min_content_chars=self.min_content_chars,
        )

        if rule.triggered:
            # Server-side only: the matched term never leaves this log line
            logger.warning(
                "Lexical rule triggered: reason=%s term=%r text_sha1=%s",
                rule.reason_code.value, rule.matched_term, _sha1(request.content),
            )
            verdict = compose(rule, ClassifierVerdict.unavailable(), heuristic, None, image_veto=self.image_veto)
            self._log_verdict(request, verdict)
            return verdict

        image: Optional[ImageVerdict] = None
        if request.image is not None:
            classifier, image = await asyncio.gather(
                self._classify(request),
                self._analyze_image(request),
            )
        else:
            classifier = await self._classify(request)

        if not classifier.available:
            logger.info("Toxicity classifier unavailable; relying on lexical rules")

        verdict = compose(rule, classifier, heuristic, image, image_veto=self.image_veto)
        self._log_verdict(request, verdict)
        return verdict

    def _log_verdict(self, request: ModerationRequest, verdict: ModerationVerdict) -> None:
        logger.info(
            "Moderation verdict: topic=%s authentic=%s confidence=%s hate=%s flags=%s text_sha1=%s text_head=%r",
            request.topic,
            verdict.is_authentic,
            verdict.confidence_score,
            verdict.hate_speech_detected,
            list(verdict.flags),
            _sha1(request.content),
            _redact(request.content),
        )


def build_moderation_service(settings: Settings) -> ModerationService:
    """Wire the service from settings. Loads the rule table once."""
    scanner = RuleScanner(load_rule_table(settings.rule_table_path))

    if settings.TOXICITY_ENABLED and settings.TOXICITY_MODELS:
        classifier: TextClassifier = HuggingFaceToxicityClassifier(
            settings.TOXICITY_MODELS,
            threshold=settings.toxicity_threshold,
            api_base=settings.TOXICITY_API_BASE,
            api_token=settings.HF_API_TOKEN,
            timeout_s=settings.TOXICITY_TIMEOUT_S,
            positive_labels=settings.TOXICITY_POSITIVE_LABELS,
        )
    else:
        logger.info("Toxicity classifier disabled; every verdict will treat it as unavailable")
        classifier = StubToxicityClassifier(available=False)

    image_analyzer = GeminiImageAnalyzer(
        settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        api_base=settings.GEMINI_API_BASE,
        timeout_s=settings.VISION_TIMEOUT_S,
        unavailable_confidence=settings.IMAGE_UNAVAILABLE_CONFIDENCE,
    )

    logger.info(
        "ModerationService config: profile=%s threshold=%s heuristic_min_score=%s image_veto=%s",
        settings.MODERATION_PROFILE,
        settings.toxicity_threshold,
        settings.HEURISTIC_MIN_SCORE,
        settings.IMAGE_INAPPROPRIATE_VETO,
    )
    # Per-model timeouts can chain (primary then fallback), so the stage budget covers both
    return ModerationService(
        scanner,
        classifier,
        image_analyzer,
        heuristic_min_score=settings.HEURISTIC_MIN_SCORE,
        min_content_chars=settings.MIN_CONTENT_CHARS,
        classifier_timeout_s=settings.TOXICITY_TIMEOUT_S * max(1, len(settings.TOXICITY_MODELS)),
        image_timeout_s=settings.VISION_TIMEOUT_S,
        image_unavailable_confidence=settings.IMAGE_UNAVAILABLE_CONFIDENCE,
        image_veto=settings.IMAGE_INAPPROPRIATE_VETO,
    )

