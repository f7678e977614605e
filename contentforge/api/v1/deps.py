"""
Shared FastAPI dependencies for v1 API routes.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from contentforge.core.config import Settings, get_settings
from contentforge.core.security import verify_api_key
from contentforge.services.container import Services


def get_services(request: Request) -> Services:
    """The container built in main.lifespan (overridden in tests)."""
    return request.app.state.services


# Re-export for convenience in route files
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppServices = Annotated[Services, Depends(get_services)]
