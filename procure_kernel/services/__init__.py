"""Kernel services: configuration cache, permission resolution, data access."""
