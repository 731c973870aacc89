"""
GasReport - Gas / flame detection maintenance reports
Fixed installations (control units + detectors) and portable detectors
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from routers import reports, lookups
from database import engine, Base
import models  # noqa: F401  (registers tables on Base.metadata)

LOG_LEVEL = os.getenv("GASREPORT_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("GASREPORT_CORS_ORIGINS", "*").split(",") if o.strip()]

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("GasReport starting up...")
    Base.metadata.create_all(bind=engine)
    yield
    # Shutdown
    logger.info("GasReport shutting down...")

app = FastAPI(
    title="GasReport API",
    description="Maintenance reports for gas and flame detection installations",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(lookups.router, prefix="/api/lookups", tags=["Lookups"])

@app.get("/")
async def root():
    return {"status": "ok", "service": "GasReport API", "version": "1.0.0"}

@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("GASREPORT_PORT", "8000")))
