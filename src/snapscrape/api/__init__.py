"""HTTP API: FastAPI application, routes, dependencies and metrics."""
