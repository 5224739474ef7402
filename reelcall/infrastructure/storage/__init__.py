"""Metric store implementations (in-memory and disk-backed)."""
