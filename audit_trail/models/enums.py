"""
Shared enumerations.
"""

import enum


class ProofMode(str, enum.Enum):
    """How a proof bundle selects its rows."""
    DATE = "date"
    RANGE = "range"
