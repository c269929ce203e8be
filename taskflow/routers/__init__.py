"""Routers package for the HTTP API."""
from fastapi import Request

from taskflow.services.async_repository import AsyncRepository


def get_repository(request: Request) -> AsyncRepository:
    """Dependency returning the application's repository facade."""
    return request.app.state.repository
