"""Text generation and stream parsing."""
