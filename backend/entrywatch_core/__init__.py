"""Core shared logic for indicators, entry scoring, and models.

This package contains pure business logic with no I/O dependencies
(no network, cache, or file access). The application layer (entrywatch/)
feeds it price histories and writes its results back onto tracked assets.
"""
