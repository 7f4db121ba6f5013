"""
Utility Modules for readaloud.

    - audio.py: PCM/WAV conversion
    - timeit.py: Performance measurement utilities
"""
