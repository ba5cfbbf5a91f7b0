from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models:
    from accountdesk.models import Session, Credentials, Region
    from accountdesk.models import RegionConfig, ConfigEntry, RegistryState
"""

from accountdesk.models.config_models import ConfigEntry, RegionConfig, StoredConfigs
from accountdesk.models.enums import MultifactorMethod, Region
from accountdesk.models.session import AccountID, Credentials, MultifactorInfo, Session
from accountdesk.models.state_models import FetchedEntry, RegistryState

__all__ = [
    "AccountID",
    "ConfigEntry",
    "Credentials",
    "FetchedEntry",
    "MultifactorInfo",
    "MultifactorMethod",
    "Region",
    "RegionConfig",
    "RegistryState",
    "Session",
    "StoredConfigs",
]
