from __future__ import annotations

import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .analyzer import (
    Caller,
    Fetchers,
    add_competitor,
    analyze_competitors_only,
    default_fetchers,
    probe_ai_visibility,
    refresh_pagespeed,
    research_keywords,
    resolve_caller,
    run_analysis,
)
from .config import Settings, load_settings
from .errors import AnalysisError
from .models import (
    AIVisibilityRequest,
    AIVisibilityResponse,
    AnalyzeRequest,
    CompetitorRequest,
    CompetitorsRequest,
    CompetitorsResponse,
    CompetitorUpdateResponse,
    CompositeReport,
    ErrorResponse,
    KeywordsRequest,
    KeywordsResponse,
    PageSpeedRequest,
    PageSpeedUpdateResponse,
)
from .store import SupabaseStore


# Load environment variables from the repo root .env for local dev
_HERE = Path(__file__).resolve()
load_dotenv(_HERE.parents[1] / ".env", override=False)

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SitePulse Agent", version="0.1.0")
app.state.settings = settings
app.state.store = SupabaseStore.from_settings(settings.supabase_url, settings.supabase_key)
app.state.fetchers = default_fetchers(settings)

# For local dev, this defaults to allowing http://localhost:3000.
# In production, set SITEPULSE_CORS_ORIGINS to the deployed frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("%s %s failed: %s - %.2fs", request.method, request.url.path, e, time.perf_counter() - start)
        raise
    elapsed = time.perf_counter() - start
    logger.info("%s %s -> %d - %.2fs", request.method, request.url.path, response.status_code, elapsed)
    response.headers["X-Process-Time"] = f"{elapsed:.3f}"
    return response


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError):
    if exc.status_code >= 500:
        logger.error("%s %s: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    body = ErrorResponse(
        error="Invalid request body",
        code="VALIDATION_ERROR",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(error=f"Analysis failed: {exc}", code="INTERNAL_ERROR")
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


# Dependencies

_bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request):
    return request.app.state.store


def get_fetchers(request: Request) -> Fetchers:
    return request.app.state.fetchers


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    store=Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Caller:
    token = credentials.credentials if credentials else None
    return await resolve_caller(token, store=store, settings=settings)


# Routes


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/analyze", response_model=CompositeReport)
async def analyze_endpoint(
    req: AnalyzeRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    fetchers: Fetchers = Depends(get_fetchers),
    store=Depends(get_store),
):
    return await run_analysis(req, caller=caller, settings=settings, fetchers=fetchers, store=store)


@app.post("/analyze/pagespeed", response_model=PageSpeedUpdateResponse)
async def pagespeed_endpoint(
    req: PageSpeedRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    fetchers: Fetchers = Depends(get_fetchers),
    store=Depends(get_store),
):
    return await refresh_pagespeed(req.analysis_id, caller=caller, settings=settings, fetchers=fetchers, store=store)


@app.post("/analyze/competitor", response_model=CompetitorUpdateResponse)
async def competitor_endpoint(
    req: CompetitorRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    fetchers: Fetchers = Depends(get_fetchers),
    store=Depends(get_store),
):
    return await add_competitor(
        req.analysis_id, req.competitor_url, caller=caller, settings=settings, fetchers=fetchers, store=store,
    )


@app.post("/analyze/competitors", response_model=CompetitorsResponse)
async def competitors_endpoint(
    req: CompetitorsRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    fetchers: Fetchers = Depends(get_fetchers),
):
    return await analyze_competitors_only(req, caller=caller, settings=settings, fetchers=fetchers)


@app.post("/analyze/keywords", response_model=KeywordsResponse)
async def keywords_endpoint(req: KeywordsRequest, fetchers: Fetchers = Depends(get_fetchers)):
    return await research_keywords(req, fetchers=fetchers)


@app.post("/analyze/ai-visibility", response_model=AIVisibilityResponse)
async def ai_visibility_endpoint(req: AIVisibilityRequest, fetchers: Fetchers = Depends(get_fetchers)):
    return await probe_ai_visibility(req, fetchers=fetchers)
