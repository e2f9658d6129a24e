"""Model listing adapter (GET /v1/models)."""

import time

import structlog
from fastapi import APIRouter, Request

from toolbridge.adapters.inbound.adapter_helpers import get_bridge_state
from toolbridge.adapters.inbound.request_models import ModelList, ModelObject

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["models"])


@router.get("/models")
async def list_models(request: Request) -> ModelList:
    """List the models the upstream serves, in OpenAI list format."""
    state = get_bridge_state(request)
    models = await state.backend.list_models()
    created = int(time.time())
    logger.debug("models_listed", count=len(models))
    return ModelList(
        data=[ModelObject(id=m.id, created=created, owned_by=m.owned_by) for m in models]
    )
