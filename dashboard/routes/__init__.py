"""
FastAPI Dashboard Routes Package

Routes are organized by domain:
- rate_changes: year view, notification actions (plain and SSE), Clio helpers
"""

from fastapi import FastAPI


def register_routes(app: FastAPI):
    """Register all route groups with the FastAPI app."""
    from .rate_changes import router as rate_changes_router

    app.include_router(rate_changes_router)
