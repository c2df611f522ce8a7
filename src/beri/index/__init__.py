"""Chunk storage and retrieval."""
