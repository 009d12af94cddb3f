import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sitewalker.routers.crawl import limiter, router as crawl_router
from sitewalker.routers.sessions import router as sessions_router
from sitewalker.services.registry import SessionRegistry

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": "INFO", "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close browsers and persist recordings still open at shutdown
    await app.state.registry.shutdown()


app = FastAPI(
    title="Sitewalker – Crawler and Modal Trainer API",
    description=(
        "Crawls a site with a real browser, records live browsing sessions and "
        "learns the site's modal dialogs from operator training."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.state.registry = SessionRegistry()


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(crawl_router)
app.include_router(sessions_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from Sitewalker"}
