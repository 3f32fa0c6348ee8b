import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import PipelineError
from app.core.exceptions import PreconditionError
from app.core.logging import setup_logging
from app.generation_logic.engagement_state import reconcile_stuck_processing
from app.generation_logic.job_store import job_store
from app.generation_logic.launcher import launcher
from app.services.doc_builder import DocBuilderError
from app.services.llm import JSONParsingError
from app.services.llm import LLMError
from app.services.storage.file_storage import StorageError

setup_logging()

logger = logging.getLogger(__name__)


async def _evict_jobs_periodically(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        job_store.evict_expired()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    await asyncio.to_thread(init_db)
    live = {job.engagement_id for job in job_store.active_jobs()}
    await reconcile_stuck_processing(live)
    eviction = asyncio.create_task(_evict_jobs_periodically(settings.job_eviction_interval_seconds))
    logger.info("Application startup complete")
    try:
        yield
    finally:
        eviction.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction
        in_flight = launcher.in_flight()
        if in_flight:
            # No cancellation: the next startup moves their engagements to ERROR
            logger.warning("Shutting down with %d generation job(s) in flight: %s", len(in_flight), ", ".join(in_flight))
        logger.info("Application shutdown complete")


app = FastAPI(title="Valuation Report Generator", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error(f"HTTP exception: {exc.detail} (status: {exc.status_code})")
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")} for err in exc.errors()]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # Log the detailed Pydantic validation errors to the server console
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": jsonable_errors(exc)},
        status_code=422,
    )


@app.exception_handler(PreconditionError)
async def precondition_exception_handler(_request: Request, exc: PreconditionError) -> JSONResponse:
    logger.warning(f"Precondition failed: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(_request: Request, exc: PipelineError) -> JSONResponse:
    logger.error(f"Pipeline error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(DocBuilderError)
async def docbuilder_exception_handler(_request: Request, exc: DocBuilderError) -> JSONResponse:
    logger.error(f"DocBuilder error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(StorageError)
async def storage_exception_handler(_request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(LLMError)
async def llm_exception_handler(_request: Request, exc: LLMError) -> JSONResponse:
    logger.error(f"LLM error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(JSONParsingError)
async def jsonparsing_exception_handler(_request: Request, exc: JSONParsingError) -> JSONResponse:
    logger.error(f"JSON parsing error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    logger.info("Health check endpoint called")
    return {"status": "ok"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)
app.include_router(router)
