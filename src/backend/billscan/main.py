import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from billscan.config import settings
from billscan.patterns.store import get_default_store

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Bill extraction from emails and PDF attachments (English, Hungarian)",
    version="0.1.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": "0.1.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "languages": [language.value for language in get_default_store().languages]
    }

# Import routers
from billscan.routers import extract, transfer

# Include routers
app.include_router(extract.router)
app.include_router(transfer.router)
