"""
WA Blast metering engine.

Prepaid AI token balances metered per call, and subscription quotas that roll over
at UTC day and billing-cycle boundaries, kept consistent under concurrent requests
and redelivered payment notifications.
"""

__version__ = "1.0.0"


def get_version() -> str:
    """Get metering engine version."""
    return __version__
