"""
Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from brokerdesk.db import initialize_database
from brokerdesk.errors import EngineError, InfrastructureError
from brokerdesk.routers import rfqs, policies, endorsements, rates
from brokerdesk.middleware import PerformanceMiddleware
from brokerdesk.cache import config_cache
import logging

logger = logging.getLogger("brokerdesk")

app = FastAPI(
    title="Brokerdesk API",
    description="Insurance brokerage back office: codes, premiums, RFQs, policies and endorsements",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(PerformanceMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Render typed engine errors as {error, code, details}."""
    request_id = getattr(request.state, "request_id", None)
    if isinstance(exc, InfrastructureError):
        logger.error(
            f"Infrastructure failure | request_id={request_id} | code={exc.code} | "
            f"path={request.url.path} | details={exc.details}"
        )
    else:
        logger.info(
            f"Business rule rejected | request_id={request_id} | code={exc.code} | "
            f"path={request.url.path}"
        )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize database and warm up caches on startup."""
    logger.info("Starting Brokerdesk API...")

    initialize_database()
    logger.info("Database initialized")

    config_cache.get_settings()
    logger.info(f"Config cache warmed up: {len(config_cache.get_lines_of_business())} lines of business")

    logger.info("Startup complete")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


app.include_router(rfqs.router, prefix="/v1", tags=["rfqs"])
app.include_router(policies.router, prefix="/v1", tags=["policies"])
app.include_router(endorsements.router, prefix="/v1", tags=["endorsements"])
app.include_router(rates.router, prefix="/v1", tags=["rates"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
