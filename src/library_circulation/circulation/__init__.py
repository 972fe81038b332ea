"""
Circulation logic: the engine, its reservation queue and fine calculation.
"""

from .engine import CirculationEngine
from .fines import FineCalculator, FinePolicy
from .membership import MembershipService, OpenMembership, StaticMembership
from .queue import NoneAvailable, Promoted, ReservationQueue

__all__ = [
    "CirculationEngine",
    "FineCalculator",
    "FinePolicy",
    "MembershipService",
    "NoneAvailable",
    "OpenMembership",
    "Promoted",
    "ReservationQueue",
    "StaticMembership",
]
