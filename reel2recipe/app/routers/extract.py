# reel2recipe/app/routers/extract.py
from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from reel2recipe.app.deps import get_pipeline
from reel2recipe.app.schemas.extract import ErrorResponse, ExtractRequest, ExtractResponse, RecipeOut
from reel2recipe.services.errors import (
    OverallTimeoutError,
    RateLimitExceeded,
    ServiceError,
    StageTimeoutError,
)
from reel2recipe.services.ingest import RecipePipeline

log = logging.getLogger("extract")
router = APIRouter(prefix="/recipes", tags=["extract"])


def _status_for(error: ServiceError) -> int:
    if isinstance(error, (OverallTimeoutError, StageTimeoutError)):
        return 504
    if isinstance(error, RateLimitExceeded):
        return 429
    return 422


@router.post(
    "/extract",
    response_model=ExtractResponse,
    responses={
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def extract_recipe(
    body: ExtractRequest,
    pipeline: RecipePipeline = Depends(get_pipeline),
):
    t0 = time.time()
    log.info("extract.request url=%s mode=%s", body.url, body.mode)
    try:
        recipe = await pipeline.extract_recipe(body.url, body.mode)
    except ServiceError as exc:
        dt = time.time() - t0
        log.warning("extract.fail url=%s kind=%s dt=%.2fs", body.url, exc.kind, dt)
        return JSONResponse(status_code=_status_for(exc), content=exc.to_dict())

    log.info("extract.ok url=%s source=%s dt=%.2fs", body.url, recipe.source, time.time() - t0)
    return ExtractResponse(recipe=RecipeOut.from_recipe(recipe))
