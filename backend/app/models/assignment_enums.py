"""
Assignment and clearance request enumerations.
"""

import enum


class AssignmentStatus(str, enum.Enum):
    """Assignment status enumeration."""
    ACTIVE = "ACTIVE"  # Bus is on its trip
    COMPLETED = "COMPLETED"  # Trip finished
    CANCELLED = "CANCELLED"  # Trip called off


class RequestType(str, enum.Enum):
    """Clearance request type enumeration."""
    DEPARTURE = "DEPARTURE"  # Leave the station
    ARRIVAL = "ARRIVAL"  # Enter the station


class RequestStatus(str, enum.Enum):
    """Clearance request status enumeration."""
    PENDING = "PENDING"  # Awaiting an officer
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Decision(str, enum.Enum):
    """Officer decision on a pending request."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
