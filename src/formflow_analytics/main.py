"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.formflow_analytics.api.deps import status_code_for
from src.formflow_analytics.api.endpoints import health, tracking, handoffs, completions, completion_import, reports
from src.formflow_analytics.config import settings
from src.formflow_analytics.exceptions import AnalyticsError, StorageError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting FormFlow Analytics API in {settings.APP_ENV} environment")
    try:
        settings.validate_secrets_for_production()
    except ValueError as e:
        logger.error(f"Configuration invalid for production: {e}")
        raise
    if not settings.COMPLETION_WEBHOOK_SECRET:
        logger.warning("COMPLETION_WEBHOOK_SECRET not configured - completion webhooks will be rejected")

    yield

    logger.info("Shutting down FormFlow Analytics API")


app = FastAPI(
    title="FormFlow Analytics - Attribution & Completion Reconciliation",
    description="Visitor tracking, handoff reconciliation and multi-touch attribution for enrollment forms",
    version="0.1.0",
    lifespan=lifespan
)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    status_code = status_code_for(exc)
    content = {"detail": str(exc)}
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        if exc.partial_result is not None:
            content["partial_result"] = exc.partial_result.model_dump()
    return JSONResponse(status_code=status_code, content=content)


app.include_router(health.router, tags=["Health"])
app.include_router(tracking.router)
app.include_router(handoffs.router)
app.include_router(completions.router)
app.include_router(completion_import.router)
app.include_router(reports.router)


@app.get("/")
def root():
    return {
        "message": "FormFlow Analytics API",
        "environment": settings.APP_ENV,
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("src.formflow_analytics.main:app", host="0.0.0.0", port=5000, reload=not settings.is_production)
