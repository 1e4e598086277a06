"""
Review Harvester - FastAPI Application
Main entry point with REST API endpoints.
"""
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from harvester.adapters.browser import BrowserSession, HttpxBrowserSession
from harvester.adapters.sinks import MemorySink
from harvester.config import config
from harvester.errors import NoTargetsError
from harvester.layers.harvest import HarvestSession
from harvester.layers.target_resolver import TargetResolver
from harvester.models.review import TargetOutcome
from harvester.models.settings import HarvestRequest, HarvestSettings
from harvester.utils.logger import get_logger, set_trace_id


# Initialize FastAPI app
app = FastAPI(
    title="Review Harvester",
    description="Collects product reviews through an adaptive review API pipeline",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

target_resolver = TargetResolver()

logger = get_logger("main")


class HarvestResponse(BaseModel):
    """Response model for a harvest run."""
    trace_id: str
    total_saved: int
    targets: List[TargetOutcome]
    reviews: List[dict]


def get_browser_factory() -> Callable[[Optional[str]], BrowserSession]:
    """Builds the browser session for a run from an optional proxy URL."""
    return lambda proxy_url: HttpxBrowserSession(proxy_url=proxy_url)


# API Routes
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "proxy_configured": config.is_proxy_configured(),
    }


@app.post("/api/harvest", response_model=HarvestResponse)
async def harvest_reviews(
    request: HarvestRequest,
    browser_factory: Callable[[Optional[str]], BrowserSession] = Depends(get_browser_factory),
):
    """
    Harvest reviews for the requested products.

    Targets are processed one at a time; a failing target is reported in
    its outcome and never fails the whole request.
    """
    trace_id = set_trace_id()

    logger.info(
        "harvest_request",
        product_id=request.product_id,
        start_urls=len(request.start_urls),
        trace_id=trace_id,
    )

    try:
        targets = target_resolver.resolve(request.product_id, request.start_urls)
    except NoTargetsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    output = MemorySink()
    browser = browser_factory(request.proxy_url)
    try:
        session = HarvestSession(
            browser=browser,
            settings=HarvestSettings.from_request(request),
            output=output,
        )
        summary = await session.run(targets)
    finally:
        await browser.close()

    return HarvestResponse(
        trace_id=trace_id,
        total_saved=summary.total_saved,
        targets=summary.targets,
        reviews=output.records,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
