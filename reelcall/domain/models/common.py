"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like target identifiers, operation
names and time windows, keeping signatures readable across layers.
"""

import time
from typing import Any, Dict, NewType

# === Core Value Objects ===

TargetId = NewType("TargetId", str)            # Model ref or pseudo-target ('system', 'unknown')
OperationName = NewType("OperationName", str)  # e.g. 'create_prediction', 'list_models'
TimeWindow = NewType("TimeWindow", str)        # '<N>h' or '<N>d', e.g. '24h', '7d'
JobId = NewType("JobId", str)                  # Prediction/job identifier issued by the API

MetricContext = Dict[str, Any]                 # Key names and ids only, never payload values

# Pseudo-targets used when an operation is not tied to a single model
SYSTEM_TARGET = TargetId("system")
UNKNOWN_TARGET = TargetId("unknown")

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
