"""Small HTTP-related constants shared across Castor.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Transport status codes the retry executor treats as transient.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 502, 503})

# Credential failures: never retried, always AUTH_ERROR.
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})
