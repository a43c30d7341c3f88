from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..safety.verdicts import ImageVerdict, InlineImage, ModerationRequest, ModerationVerdict


class ContentModerationRequest(BaseModel):
    # Required fields are checked by the route so a missing one is a 400, not a 422
    topic: Optional[str] = None
    content: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def missing_fields(self) -> List[str]:
        return [name for name in ("topic", "content") if not (getattr(self, name) or "").strip()]

    def to_domain(self) -> ModerationRequest:
        """Build the engine request. Raises ``InvalidImageError`` for a malformed data URL."""
        image = None
        image_url = None
        raw = (self.image_url or "").strip()
        if raw.startswith("data:"):
            image = InlineImage.from_data_url(raw)
        elif raw:
            image_url = raw
        title = (self.title or "").strip() or None
        return ModerationRequest(
            topic=self.topic.strip(),
            content=self.content,
            title=title,
            image=image,
            image_url=image_url,
        )


class ImageAnalysis(BaseModel):
    is_appropriate: bool
    is_relevant: bool
    description: str
    confidence: int

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_verdict(cls, v: ImageVerdict) -> "ImageAnalysis":
        return cls(
            is_appropriate=v.is_appropriate,
            is_relevant=v.is_relevant,
            description=v.description,
            confidence=v.confidence,
        )


class ModerationResponse(BaseModel):
    is_authentic: bool
    confidence_score: int
    reason: str
    flags: Optional[List[str]] = None
    hate_speech_detected: Optional[bool] = None
    hate_speech_reason: Optional[str] = None
    image_analysis: Optional[ImageAnalysis] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_verdict(cls, v: ModerationVerdict) -> "ModerationResponse":
        return cls(
            is_authentic=v.is_authentic,
            confidence_score=v.confidence_score,
            reason=v.reason,
            flags=list(v.flags),
            hate_speech_detected=v.hate_speech_detected,
            hate_speech_reason=v.hate_speech_reason,
            image_analysis=ImageAnalysis.from_verdict(v.image_analysis) if v.image_analysis else None,
        )
