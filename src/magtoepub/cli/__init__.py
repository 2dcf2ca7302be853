"""Command line interface for MagToEpub."""
