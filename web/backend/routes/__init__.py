"""Backend API routes."""

from .flows import router as flows_router
from .llm import router as llm_router
from .providers import router as providers_router

__all__ = ["flows_router", "llm_router", "providers_router"]
