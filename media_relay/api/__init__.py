"""HTTP boundary: FastAPI routes, request validation and dependencies."""
