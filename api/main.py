"""
FastAPI Backend for Pokemon Card Identification and Valuation
Handles card uploads, identification and execution lookup
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from card_valuation.config import API_HOST, API_PORT, LOG_LEVEL

# Configure logging to show INFO level messages
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(levelname)s:     %(name)s - %(message)s'
)

logger = logging.getLogger(__name__)

from api.routes import identify
from api.services.rate_limiter import limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: build the pipeline once on startup."""
    if getattr(app.state, "coordinator", None) is None:
        from card_valuation.workflow.coordinator import build_default_coordinator
        app.state.coordinator = build_default_coordinator()
        logger.info("Identification pipeline ready")

    yield  # App runs here

    logger.info("Shutting down Card Valuation API")


app = FastAPI(
    title="Pokemon Card Valuation API",
    description="Card identification, set resolution, pricing and authenticity checks",
    version="0.1.0",
    lifespan=lifespan
)

# Attach rate limiter to app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(identify.router, prefix="/api", tags=["identify"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "card-valuation"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT, reload=True)
