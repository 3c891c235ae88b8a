"""HTTP health and ingestion surface (FastAPI)."""

from .app import create_app, create_ingest_router

__all__ = ["create_app", "create_ingest_router"]
