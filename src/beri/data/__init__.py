"""Bundled corpus documents."""
