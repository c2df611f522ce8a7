"""BERI - on-device question answering over a school information document."""

__version__ = "0.1.0"
