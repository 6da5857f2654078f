"""Retrieval over the chunk archive."""
