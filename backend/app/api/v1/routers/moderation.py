import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ....config import get_settings
from ....models.moderation import ContentModerationRequest, ModerationResponse
from ....safety.verdicts import InvalidImageError
from ....services.moderation import ModerationService, build_moderation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content-moderation", tags=["moderation"])


def get_moderation_service(request: Request) -> ModerationService:
    """Service built at startup; built here on first use when lifespan did not run."""
    service = getattr(request.app.state, "moderation_service", None)
    if service is None:
        service = build_moderation_service(get_settings())
        request.app.state.moderation_service = service
    return service


@router.post("", response_model=ModerationResponse, response_model_exclude_none=True)
async def moderate_content(
    body: ContentModerationRequest,
    service: ModerationService = Depends(get_moderation_service),
):
    """
    Moderate one submission. Rejections are normal 200 responses.
    """
    missing = body.missing_fields()
    if missing:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: topic and content are required",
        )

    try:
        moderation_request = body.to_domain()
    except InvalidImageError as e:
        raise HTTPException(status_code=400, detail=f"Invalid imageUrl: {e}")

    if moderation_request.image_url:
        logger.info("External image URL supplied; image analysis skipped")

    verdict = await service.moderate(moderation_request)
    return ModerationResponse.from_verdict(verdict)
