"""
User roles enumeration.

Defines the role types for the bus clearance system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Superuser, may do anything an officer can
        OFFICER: Station officer granting departure/arrival clearance
        DRIVER: Drives the bus of an assignment
        CONDUCTOR: Crew member riding with the driver
    """
    ADMIN = "admin"
    OFFICER = "officer"
    DRIVER = "driver"
    CONDUCTOR = "conductor"


# Roles allowed to approve or reject clearance requests
RESOLVER_ROLES = (UserRole.OFFICER, UserRole.ADMIN)
