"""
Utility modules for the docs preview deployer.
"""

from docs_preview.utils.logging import (
    get_logger,
    setup_logging,
    log_phase_transition,
    log_api_call,
)
from docs_preview.utils.metrics import (
    PublishMetrics,
    track_api_call,
)
from docs_preview.utils.resilience import (
    retry_with_backoff,
    call_with_retries,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_phase_transition",
    "log_api_call",
    "PublishMetrics",
    "track_api_call",
    "retry_with_backoff",
    "call_with_retries",
]
