"""
Shared Enumerations for accountdesk Models.

StrEnum values compare equal to their string equivalents, so persisted
JSON keys such as ``"eu"`` round-trip to ``Region.EU`` without a
custom encoder.
"""

from __future__ import annotations
from enum import StrEnum


class Region(StrEnum):
    """Deployment partition that owns an account and its config."""

    NA = "na"
    EU = "eu"
    AP = "ap"
    KR = "kr"
    LATAM = "latam"
    BR = "br"
    PBE = "pbe"


class MultifactorMethod(StrEnum):
    """Delivery channel the server chose for a second-factor code."""

    EMAIL = "email"
    SMS = "sms"
    AUTHENTICATOR = "authenticator"
    UNKNOWN = "unknown"
