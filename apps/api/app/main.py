from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.config import settings
from app.organize.errors import OrganizeError
from app.routers.boards import router as boards_router
from app.routers.organize import router as organize_router
from app.routers.realtime import router as realtime_router
from app.routers.tasks import router as tasks_router

logger = logging.getLogger(__name__)

app = FastAPI(
  title="Flowboard API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


@app.exception_handler(OrganizeError)
async def _organize_error_handler(_, exc: OrganizeError) -> JSONResponse:
  return JSONResponse(status_code=502, content={"detail": exc.message})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

# organize before tasks so /tasks/auto-organize is matched ahead of /tasks/{task_id}
app.include_router(organize_router)
app.include_router(boards_router)
app.include_router(tasks_router)
app.include_router(realtime_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}
