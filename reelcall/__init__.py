"""reelcall: resilient calls to a video-generation API.

Retries with exponential backoff and jitter, classifies failures, and keeps
per-model health, statistics and alerts from the recorded outcomes.
"""

__version__ = "0.3.0"
