# notepipe/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import configure_logging, get_settings
from .db import init_db
from .errors import EnqueueError, InvalidTransition, NotFound, PipelineError, UnsupportedFormatError
from .routers import actions, meetings, transcripts, webhooks
from .services.pipeline import Pipeline

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: 404,
    InvalidTransition: 409,
    UnsupportedFormatError: 422,
    EnqueueError: 503,
}


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    """Build the API. Without a pipeline, one is built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "pipeline", None) is None:
            app.state.pipeline = Pipeline.from_settings(get_settings())
        init_db(app.state.pipeline.engine)
        logger.info("Startup complete")
        yield

    app = FastAPI(title="Notepipe", lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:8080", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        if status >= 500:
            logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    app.include_router(meetings.router)
    app.include_router(actions.router)
    app.include_router(transcripts.router)
    app.include_router(webhooks.router)
    return app


configure_logging(get_settings().log_level)
app = create_app()
