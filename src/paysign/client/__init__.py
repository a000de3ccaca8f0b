"""Gateway HTTP client and service wrappers."""
