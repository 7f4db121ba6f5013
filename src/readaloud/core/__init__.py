"""
Core Infrastructure for readaloud.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: ReaderError hierarchy and error codes
    - logging/: Structured logging with numeric levels
"""
