import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docshelf.config import settings
from docshelf.database import SessionLocal, init_db
from docshelf.dependencies import build_services, close_services
from docshelf.exceptions import PipelineError
from docshelf.routers import documents

logger = logging.getLogger("docshelf")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db()
    services = build_services(settings, SessionLocal)
    if settings.storage_create_bucket:
        await asyncio.to_thread(services.object_store.ensure_bucket)
    services.delivery_cache.start()
    app.state.services = services
    logger.info("Document pipeline ready, bucket %r", settings.storage_bucket)
    yield
    await close_services(services)
    app.state.services = None


app = FastAPI(
    title="DocShelf",
    description="Course document ingestion and delivery service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length", "Content-Type", "X-Cache"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


app.include_router(documents.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
