import pytest

from backend.app.policies.verdict import INAPPROPRIATE_IMAGE_REASON, compose
from backend.app.safety.guard import SEVERE_FLAGS, SEVERE_MESSAGE, THREAT_FLAGS, THREAT_MESSAGE
from backend.app.safety.verdicts import (
    ClassifierVerdict,
    HeuristicVerdict,
    ImageVerdict,
    ModerationVerdict,
    RuleReason,
    RuleVerdict,
)

CLEAN_RULE = RuleVerdict.clean()
SEVERE_RULE = RuleVerdict(True, RuleReason.SEVERE_LANGUAGE, "en:x", SEVERE_FLAGS, SEVERE_MESSAGE)
THREAT_RULE = RuleVerdict(True, RuleReason.THREAT, "i will kill you", THREAT_FLAGS, THREAT_MESSAGE)
PERFECT = HeuristicVerdict(score=100, is_relevant=True)
NO_OPINION = ClassifierVerdict.unavailable()
BENIGN = ClassifierVerdict(available=True, toxic_score=0.02, label="toxic")
TOXIC = ClassifierVerdict(available=True, toxic_score=0.87, label="insult", flagged=True, flags=("toxic_content",))
GOOD_IMAGE = ImageVerdict(available=True, is_appropriate=True, is_relevant=True, confidence=80, description="keys")


@pytest.mark.parametrize("rule", [SEVERE_RULE, THREAT_RULE])
@pytest.mark.parametrize("image", [None, GOOD_IMAGE])
def test_rule_trigger_always_rejects_with_zero_confidence(rule, image):
    v = compose(rule, BENIGN, PERFECT, image)
    assert v.is_authentic is False
    assert v.confidence_score == 0
    assert v.hate_speech_detected is True
    assert v.reason == f"Content rejected: {rule.message}"
    assert v.hate_speech_reason == rule.message
    assert set(rule.flags) <= set(v.flags)


def test_rule_reason_never_leaks_matched_term():
    v = compose(SEVERE_RULE, NO_OPINION, PERFECT)
    assert "en:x" not in v.reason
    assert "en:x" not in (v.hate_speech_reason or "")


def test_rule_flags_union_with_heuristic_flags():
    h = HeuristicVerdict(score=90, is_relevant=False, flags=("not_relevant",))
    v = compose(THREAT_RULE, NO_OPINION, h)
    assert v.flags == ("threat", "violent_content", "not_relevant")


def test_classifier_veto_matches_rule_outcome():
    v = compose(CLEAN_RULE, TOXIC, PERFECT, GOOD_IMAGE)
    assert v.is_authentic is False
    assert v.confidence_score == 0
    assert v.hate_speech_detected is True
    assert v.reason == "Content rejected: Detected insult content (confidence: 87%)"
    assert "toxic_content" in v.flags


def test_unavailable_classifier_with_high_score_is_ignored():
    stale = ClassifierVerdict(available=False, toxic_score=0.99, label="toxic", flagged=True, flags=("toxic_content",))
    assert compose(CLEAN_RULE, stale, PERFECT) == compose(CLEAN_RULE, NO_OPINION, PERFECT)


def test_heuristic_path_uses_min_of_available_confidences():
    h = HeuristicVerdict(score=90, is_relevant=True)
    v = compose(CLEAN_RULE, BENIGN, h, GOOD_IMAGE)
    assert v.is_authentic is True
    assert v.confidence_score == 80
    assert v.hate_speech_detected is False
    assert v.image_analysis == GOOD_IMAGE


def test_unavailable_image_is_excluded_from_confidence_and_never_rejects():
    h = HeuristicVerdict(score=90, is_relevant=True)
    v = compose(CLEAN_RULE, BENIGN, h, ImageVerdict.unavailable())
    assert v.is_authentic is True
    assert v.confidence_score == 90
    assert v.image_analysis.is_appropriate is True
    assert "image_check_unavailable" in v.flags


def test_inappropriate_image_rejects_with_image_reason():
    bad = ImageVerdict(available=True, is_appropriate=False, is_relevant=True, confidence=85, description="gore")
    failing = HeuristicVerdict(score=55, is_relevant=True, flags=("spam",))
    v = compose(CLEAN_RULE, BENIGN, failing, bad)
    assert v.is_authentic is False
    assert v.reason == INAPPROPRIATE_IMAGE_REASON
    assert v.flags == ("spam", "inappropriate_image")
    assert v.hate_speech_detected is False


def test_inappropriate_image_is_advisory_when_veto_disabled():
    bad = ImageVerdict(available=True, is_appropriate=False, is_relevant=True, confidence=85, description="gore")
    v = compose(CLEAN_RULE, BENIGN, PERFECT, bad, image_veto=False)
    assert v.is_authentic is True
    assert "inappropriate_image" in v.flags
    assert v.confidence_score == 85


def test_irrelevant_image_is_advisory():
    odd = ImageVerdict(available=True, is_appropriate=True, is_relevant=False, confidence=60, description="a cat")
    v = compose(CLEAN_RULE, BENIGN, PERFECT, odd)
    assert v.is_authentic is True
    assert v.confidence_score == 60
    assert "image_not_relevant" in v.flags


def test_heuristic_failure_reason_when_no_image():
    spam = HeuristicVerdict(score=25, is_relevant=True, flags=("spam",))
    v = compose(CLEAN_RULE, NO_OPINION, spam)
    assert v.is_authentic is False
    assert v.reason == "Content appears to be spam or promotional material"
    assert v.confidence_score == 25


def test_verdict_type_enforces_hate_speech_invariant():
    with pytest.raises(ValueError):
        ModerationVerdict(is_authentic=True, confidence_score=0, reason="x", hate_speech_detected=True)
    with pytest.raises(ValueError):
        ModerationVerdict(is_authentic=False, confidence_score=10, reason="x", hate_speech_detected=True)
