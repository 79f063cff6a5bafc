"""
Central constants for the ASC operations application.
"""
from __future__ import annotations

# User roles (one per user)
ROLE_ADMIN = "ADMIN"
ROLE_SCHEDULER = "SCHEDULER"
ROLE_INVENTORY_TECH = "INVENTORY_TECH"
ROLE_CIRCULATOR = "CIRCULATOR"
ROLE_SCRUB = "SCRUB"
ROLE_SURGEON = "SURGEON"
ROLE_ANESTHESIA = "ANESTHESIA"

VALID_ROLES = frozenset(
    {
        ROLE_ADMIN,
        ROLE_SCHEDULER,
        ROLE_INVENTORY_TECH,
        ROLE_CIRCULATOR,
        ROLE_SCRUB,
        ROLE_SURGEON,
        ROLE_ANESTHESIA,
    }
)
