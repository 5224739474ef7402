"""Transports for the external generation API."""
