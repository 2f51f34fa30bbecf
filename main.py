from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging
from contextlib import asynccontextmanager

from skilllab.core.config import settings
from skilllab.core.errors import RecordError, ErrorCategory
from skilllab.remote.models import create_remote_engine, init_remote_db
from skilllab.remote.document_store import RemoteDocumentStore
from skilllab.api.v1 import records

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorCategory.PERMISSION: 403,
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONCURRENCY: 409,
    ErrorCategory.STATE: 409,
    ErrorCategory.NETWORK: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize the remote document store
    engine = create_remote_engine()
    await init_remote_db(engine)
    app.state.document_store = RemoteDocumentStore(engine)
    logger.info(f"{settings.APP_NAME} remote store ready")

    yield

    await engine.dispose()


app = FastAPI(
    title="SkillLab Records API",
    description="Shared document store for trainer attendance and assessment records",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(records.router, prefix="/api/v1/records", tags=["records"])


@app.get("/")
async def root():
    return {"message": "SkillLab Records API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.exception_handler(RecordError)
async def record_error_handler(request, exc: RecordError):
    logger.info(f"Request rejected: {exc.to_dict()}")
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.category, 500),
        content={"errorKind": exc.error_kind, "message": exc.message, "recordId": exc.record_id}
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "status_code": exc.status_code}
    )


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info" if not settings.DEBUG else "debug"
    )
