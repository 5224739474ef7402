"""Domain Layer: value objects, error taxonomy, events and ports.

Has no dependencies on infrastructure or third-party libraries.
"""
