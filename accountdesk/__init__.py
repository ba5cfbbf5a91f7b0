"""
accountdesk: multi-account session core.

Tracks known accounts and the active one, persists each account's
session in an encrypted local store, follows token rotations, drives
multifactor login prompts, and caches per-region configuration.

Wire everything through :func:`accountdesk.services.create_managers`.
"""

__version__ = "1.0.0"
