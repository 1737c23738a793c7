"""
HUMAN logging level - readable collector progress.

Custom level between INFO (20) and WARNING (30). It does not indicate
severity, it marks the few events an operator wants to see by default:
pipelines built, receivers listening, retries, the shutdown summary.

Hierarchy:
    debug  (10) -> payload sizes, per-batch details
    info   (20) -> component internals (started, flushed, settings)
    human  (25) -> * what the collector does, for the operator
    warn   (30) -> non-fatal problems (dropped data, retries exhausted)
    error  (40) -> errors
"""

import logging

import structlog

# Custom level: between INFO (20) and WARNING (30)
HUMAN = 25
logging.addLevelName(HUMAN, "HUMAN")

# Register the level in structlog to avoid KeyError: 25
if hasattr(structlog.stdlib, "LEVEL_TO_NAME"):
    structlog.stdlib.LEVEL_TO_NAME[HUMAN] = "human"
if hasattr(structlog.stdlib, "NAME_TO_LEVEL"):
    structlog.stdlib.NAME_TO_LEVEL["human"] = HUMAN
