"""Per-request moderation types.

Every value here is immutable and lives for a single submission. Flags are
ordered, de-duplicated tuples so verdicts serialise deterministically.
"""
from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

Flags = Tuple[str, ...]

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w.+-]+=[\w.+-]+)*;base64,(?P<payload>.*)$", re.S)


class InvalidImageError(ValueError):
    """Raised when inline image data cannot be decoded."""


def merge_flags(*groups: Iterable[str]) -> Flags:
    """Union of flag groups, keeping first-seen order."""
    out: dict = {}
    for g in groups:
        for f in g or ():
            if f:
                out.setdefault(f, None)
    return tuple(out)


@dataclass(frozen=True)
class InlineImage:
    data: bytes
    mime_type: str

    @classmethod
    def from_data_url(cls, url: str) -> "InlineImage":
        """Split ``data:<mime>;base64,<payload>`` into MIME type and raw bytes."""
        m = _DATA_URL_RE.match((url or "").strip())
        if not m:
            raise InvalidImageError("imageUrl is not a base64 data URL")
        mime = m.group("mime").lower()
        if not mime.startswith("image/"):
            raise InvalidImageError(f"unsupported image type: {mime}")
        payload = re.sub(r"\s+", "", m.group("payload"))
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImageError("image payload is not valid base64") from e
        if not data:
            raise InvalidImageError("image payload is empty")
        return cls(data=data, mime_type=mime)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class ModerationRequest:
    topic: str
    content: str
    title: Optional[str] = None
    image: Optional[InlineImage] = None
    # External reference; accepted but never fetched or analysed
    image_url: Optional[str] = None

    def __post_init__(self):
        if self.image is not None and self.image_url:
            raise ValueError("image and image_url are mutually exclusive")


class RuleReason(str, Enum):
    SEVERE_LANGUAGE = "severe_language"
    THREAT = "threat"
    NONE = "none"


@dataclass(frozen=True)
class RuleVerdict:
    triggered: bool
    reason_code: RuleReason = RuleReason.NONE
    # Diagnostics only; never returned to the submitter
    matched_term: Optional[str] = None
    flags: Flags = ()
    message: Optional[str] = None

    @classmethod
    def clean(cls) -> "RuleVerdict":
        return cls(triggered=False)


@dataclass(frozen=True)
class ClassifierVerdict:
    available: bool
    toxic_score: float = 0.0
    label: Optional[str] = None
    flagged: bool = False
    flags: Flags = ()

    @classmethod
    def unavailable(cls) -> "ClassifierVerdict":
        return cls(available=False)

    @property
    def message(self) -> str:
        return f"Detected {self.label or 'toxic'} content (confidence: {round(self.toxic_score * 100)}%)"


@dataclass(frozen=True)
class HeuristicVerdict:
    score: int
    is_relevant: bool
    flags: Flags = ()
    topic: str = "generic"
    min_score: int = 35

    @property
    def is_authentic(self) -> bool:
        # Spam is a hard veto regardless of the numeric score
        return self.score >= self.min_score and "spam" not in self.flags

    @property
    def reason(self) -> str:
        if self.is_authentic:
            return "Content appears authentic and appropriate for university platform"
        if "spam" in self.flags:
            return "Content appears to be spam or promotional material"
        if "personal_info" in self.flags:
            return "Content contains personal information that should not be public"
        if "not_relevant" in self.flags:
            return "Content is not relevant to the selected topic"
        if "too_short" in self.flags:
            return "Content is too short to be meaningful"
        return "Content does not meet university platform standards"


@dataclass(frozen=True)
class ImageVerdict:
    available: bool
    is_appropriate: bool = True
    is_relevant: bool = True
    confidence: int = 40
    description: str = ""

    @classmethod
    def unavailable(cls, confidence: int = 40) -> "ImageVerdict":
        return cls(
            available=False,
            is_appropriate=True,
            is_relevant=True,
            confidence=confidence,
            description="Image analysis was unavailable; the image was not reviewed",
        )


@dataclass(frozen=True)
class ModerationVerdict:
    is_authentic: bool
    confidence_score: int
    reason: str
    flags: Flags = field(default_factory=tuple)
    hate_speech_detected: bool = False
    hate_speech_reason: Optional[str] = None
    image_analysis: Optional[ImageVerdict] = None

    def __post_init__(self):
        if self.hate_speech_detected and (self.is_authentic or self.confidence_score != 0):
            raise ValueError("hate speech verdicts must be rejected with zero confidence")
        if not 0 <= self.confidence_score <= 100:
            raise ValueError(f"confidence_score out of range: {self.confidence_score}")
