"""Rate change dashboard: FastAPI app, routes and view models."""
