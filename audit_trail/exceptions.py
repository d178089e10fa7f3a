"""
Exceptions raised by the audit trail core.

Chain breaks and bundle tampering are not exceptions: verifiers
report them as structured results so callers can render partial
or negative outcomes. Append failures never leave the appender.
"""


class AuditError(Exception):
    """Base class for audit trail errors."""


class ConfigMissing(AuditError):
    """A keyed-digest secret is absent or too weak."""


class InvalidWindow(AuditError, ValueError):
    """
    A proof request selects neither a valid UTC date nor a valid
    inclusive id range, or the window is larger than allowed.
    """


class SnapshotNotFound(AuditError, LookupError):
    """No daily snapshot is stored for the requested tenant and day."""
