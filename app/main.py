# app/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.core.errors import ReconciliationError
from app.routers import health, payments, invoices, imports

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ============================================
# Create FastAPI app
# ============================================

app = FastAPI(
    title=settings.app_name,
    description="Matching engine for payments, jobs, invoices and partner exports",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ============================================
# CORS middleware
# ============================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# Errors
# ============================================

@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

# ============================================
# Include routers
# ============================================

app.include_router(health.router, tags=["Health"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])
app.include_router(imports.router, prefix="/import", tags=["Import"])

# ============================================
# Root endpoint
# ============================================

@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.debug else None,
    }
