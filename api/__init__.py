"""api/ -- FastAPI HTTP layer for Stockroom."""
