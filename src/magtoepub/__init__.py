"""MagToEpub - magazine PDF to EPUB conversion with Gemini."""

__version__ = "0.1.0"
