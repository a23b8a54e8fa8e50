"""
User roles enumeration.

Defines the role types carried in access tokens.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: System-level access across organizations
        FLEET_MANAGER: Manages vehicles, drivers and trip data of one organization
        OPERATOR: Records trips for one organization
    """
    ADMIN = "ADMIN"
    FLEET_MANAGER = "FLEET_MANAGER"
    OPERATOR = "OPERATOR"
