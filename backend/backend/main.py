from __future__ import annotations

import logging

from fastapi import FastAPI
from app.core import config
from app.core.audit_middleware import audit_http_middleware
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.production.api import router as production_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Shop-floor Activity & Production Entry")

@app.middleware("http")
async def _audit(request, call_next):
    return await audit_http_middleware(request, call_next)

@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

@app.on_event("shutdown")
async def _shutdown():
    from services.erp.service_layer import close_service_layer
    close_service_layer()

app.include_router(production_router)

@app.get("/health")
def health():
    return {"ok": True}
