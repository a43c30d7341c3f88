from typing import List, Optional

from ..safety.verdicts import (
    ClassifierVerdict,
    HeuristicVerdict,
    ImageVerdict,
    ModerationVerdict,
    RuleVerdict,
    merge_flags,
)

INAPPROPRIATE_IMAGE_REASON = "Image appears inappropriate for the university platform"


def _image_flags(image: Optional[ImageVerdict]) -> List[str]:
    if image is None:
        return []
    if not image.available:
        return ["image_check_unavailable"]
    flags = []
    if not image.is_appropriate:
        flags.append("inappropriate_image")
    if not image.is_relevant:
        flags.append("image_not_relevant")
    return flags


def compose(
    rule: RuleVerdict,
    classifier: ClassifierVerdict,
    heuristic: HeuristicVerdict,
    image: Optional[ImageVerdict] = None,
    *,
    image_veto: bool = True,
) -> ModerationVerdict:
    """Merge component verdicts into the final decision.

    Precedence, first match wins:
      1) lexical rule triggered -> hate speech, rejected with zero confidence
      2) classifier available and flagged -> same outcome, sourced from the classifier
      3) heuristic authenticity AND image appropriateness (relevance is advisory)

    Unavailable components never pull the confidence down.
    """
    classifier_flags = classifier.flags if classifier.available else ()

    if rule.triggered:
        message = rule.message or "Contains inappropriate content"
        return ModerationVerdict(
            is_authentic=False,
            confidence_score=0,
            reason=f"Content rejected: {message}",
            flags=merge_flags(rule.flags, classifier_flags, heuristic.flags, _image_flags(image)),
            hate_speech_detected=True,
            hate_speech_reason=message,
            image_analysis=image,
        )

    if classifier.available and classifier.flagged:
        message = classifier.message
        return ModerationVerdict(
            is_authentic=False,
            confidence_score=0,
            reason=f"Content rejected: {message}",
            flags=merge_flags(classifier_flags or ("toxic_content",), heuristic.flags, _image_flags(image)),
            hate_speech_detected=True,
            hate_speech_reason=message,
            image_analysis=image,
        )

    image_blocks = image is not None and image_veto and not image.is_appropriate
    is_authentic = heuristic.is_authentic and not image_blocks

    confidences = [heuristic.score]
    if image is not None and image.available:
        confidences.append(image.confidence)

    if image_blocks:
        reason = INAPPROPRIATE_IMAGE_REASON
    else:
        reason = heuristic.reason

    return ModerationVerdict(
        is_authentic=is_authentic,
        confidence_score=max(0, min(100, min(confidences))),
        reason=reason,
        flags=merge_flags(heuristic.flags, classifier_flags, _image_flags(image)),
        hate_speech_detected=False,
        hate_speech_reason=None,
        image_analysis=image,
    )
