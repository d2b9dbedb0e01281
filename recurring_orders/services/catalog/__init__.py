"""Catalog gateway used for product lookup and stock adjustment."""
