"""
Book Library.

    - extraction.py: PDF text and thumbnail extraction (PyMuPDF)
    - store.py: durable book index and position store
"""
