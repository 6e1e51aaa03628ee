"""
Fingerprint Relay — Operational API Routes.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

router = APIRouter(tags=["Operations"])


class HealthResponse(BaseModel):
    status: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Simple health check."""
    return HealthResponse(status="healthy", version="0.1.0")
