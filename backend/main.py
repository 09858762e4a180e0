import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    STORE_BACKEND,
)
from backend.dependencies import reset_services
from backend.logging_config import setup_logging
from backend.routers.admin import router as admin_router
from backend.routers.auth import router as auth_router
from backend.routers.checkin import router as checkin_router
from backend.routers.core import router as core_router
from database.db import create_tables

logger = logging.getLogger(__name__)

app = FastAPI(title="Doorcheck API")


# -----------------------------
# CORS (scanner UI)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -----------------------------
# Startup / shutdown
# -----------------------------
@app.on_event("startup")
def _startup():
    setup_logging()
    create_tables()
    logger.info("Doorcheck API started (store backend: %s)", STORE_BACKEND)


@app.on_event("shutdown")
def _shutdown():
    reset_services()


app.include_router(core_router)
app.include_router(auth_router)
app.include_router(checkin_router)
app.include_router(admin_router)
