"""Small HTTP-related constants shared across Castor."""

from __future__ import annotations

# Status codes a caller may reasonably retry; attached as metadata only.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504, 529})
