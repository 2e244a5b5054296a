"""UUID utilities for the keyword monitor.

This module provides UUID generation for correlation IDs used in
audit logging.
"""

import uuid


def correlation_id() -> str:
    """Generate a new UUID v4 correlation ID.

    Correlation IDs tie together audit entries written for the same
    scan cycle (the scan summary and the errors it reported).

    Returns:
        A UUID v4 string.

    Examples:
        >>> cid = correlation_id()
        >>> len(cid)
        36
    """
    return str(uuid.uuid4())
