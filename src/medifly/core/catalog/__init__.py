"""Catalog validation schemas."""
