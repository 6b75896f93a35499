"""HTTP API for bonus administration."""
