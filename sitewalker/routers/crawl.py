import logging

from fastapi import APIRouter, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from sitewalker.models.crawl_config import CrawlConfig
from sitewalker.models.crawl_result import CrawlResult
from sitewalker.models.progress import CrawlProgress
from sitewalker.services.registry import CrawlHandle

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/crawl", tags=["crawl"])


def _handle(request: Request, crawl_id: str) -> CrawlHandle:
    try:
        return request.app.state.registry.get_crawl(crawl_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown crawl: {crawl_id}")


@router.post(
    "",
    summary="Start a crawl, scrape or recording run",
    description=(
        "Starts a run in the background and returns its id.  Poll "
        "`/crawl/{crawl_id}/progress` for live progress and fetch the final "
        "result from `/crawl/{crawl_id}/result` once the run has finished."
    ),
)
@limiter.limit("5/minute")
async def start_crawl(request: Request, body: CrawlConfig) -> dict:
    logger.info(
        "Crawl request received",
        extra={"url": str(body.start_url), "mode": body.mode, "max_depth": body.max_depth},
    )
    crawl_id = request.app.state.registry.start_crawl(body)
    return {"crawl_id": crawl_id}


@router.get("/{crawl_id}/progress", response_model=CrawlProgress, summary="Latest progress snapshot")
@limiter.limit("120/minute")
async def crawl_progress(request: Request, crawl_id: str) -> CrawlProgress:
    _handle(request, crawl_id)
    return request.app.state.registry.progress(crawl_id)


@router.post("/{crawl_id}/stop", response_model=CrawlProgress, summary="Stop a running crawl")
@limiter.limit("30/minute")
async def stop_crawl(request: Request, crawl_id: str) -> CrawlProgress:
    _handle(request, crawl_id)
    return await request.app.state.registry.stop_crawl(crawl_id)


@router.get(
    "/{crawl_id}/result",
    response_model=CrawlResult,
    response_model_by_alias=True,
    summary="Final result of a finished crawl",
)
@limiter.limit("30/minute")
async def crawl_result(request: Request, crawl_id: str) -> CrawlResult:
    handle = _handle(request, crawl_id)
    if handle.error is not None:
        raise HTTPException(status_code=502, detail=handle.error)
    if handle.result is None:
        raise HTTPException(status_code=409, detail="Crawl is still running")
    return handle.result
