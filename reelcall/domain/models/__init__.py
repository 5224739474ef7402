"""Domain models (value objects and derived monitoring views)."""
