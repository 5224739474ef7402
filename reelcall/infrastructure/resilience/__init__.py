"""API Resilience Implementations.

Contains the error classifier and the retry engine with exponential
backoff and jitter.
Bounded Context: API Resilience
"""
