"""
FastAPI Control API for readaloud.

    - routes.py: library and reader transport endpoints
    - schemas.py: request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
