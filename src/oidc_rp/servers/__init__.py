"""HTTP surface of the relying party (Starlette)."""

from .main import build_service, create_app, main

__all__ = ["build_service", "create_app", "main"]
