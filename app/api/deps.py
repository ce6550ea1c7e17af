"""
API Dependencies
Common dependencies for FastAPI routes (database sessions, settings, auth).
"""

import hmac
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import SessionLocal
from app.services.dispatcher import WebhookDispatcher
from app.services.generation_client import GenerationProviderClient


def get_db() -> Generator:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def require_admin(
    x_admin_token: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """Operator routes need X-Admin-Token; an unset ADMIN_API_TOKEN disables them."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return x_admin_token


def get_dispatcher(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> WebhookDispatcher:
    return WebhookDispatcher(db, settings)


def get_generation_client(settings: Settings = Depends(get_app_settings)) -> GenerationProviderClient:
    return GenerationProviderClient(settings)
