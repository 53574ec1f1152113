"""FastAPI dependency injection helpers."""

from fastapi import Request

from ridedispatch.services.dispatch import DispatchService


def get_service(request: Request) -> DispatchService:
    """Return the dispatch service wired into the running app."""
    return request.app.state.service
