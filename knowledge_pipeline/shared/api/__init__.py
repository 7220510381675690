"""Shared API layer: middleware, exception handlers and request schemas."""
