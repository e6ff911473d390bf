"""HTTP surface of the career agent: FastAPI app, identity and error contract."""

from .app import create_app, main

__all__ = ["create_app", "main"]
