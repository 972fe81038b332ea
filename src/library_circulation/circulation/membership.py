"""
Membership lookups consumed by the circulation engine.

Member records live outside this service. The engine only asks two questions
about a member ID, through whatever ``MembershipService`` it was given.
"""

from typing import Protocol


class MembershipService(Protocol):
    def member_exists(self, member_id: str) -> bool: ...

    def is_eligible(self, member_id: str) -> bool: ...


class OpenMembership:
    """Treats every non-empty member ID as an existing, eligible member."""

    def member_exists(self, member_id: str) -> bool:
        return bool(member_id)

    def is_eligible(self, member_id: str) -> bool:
        return bool(member_id)


class StaticMembership:
    """
    In-memory member registry.

    Used by the demo seed and by tests that need unknown or suspended
    members.
    """

    def __init__(self, members: dict[str, bool] | None = None):
        # member_id -> eligible
        self._members: dict[str, bool] = dict(members or {})

    def add(self, member_id: str, eligible: bool = True) -> None:
        self._members[member_id] = eligible

    def suspend(self, member_id: str) -> None:
        if member_id in self._members:
            self._members[member_id] = False

    def member_exists(self, member_id: str) -> bool:
        return member_id in self._members

    def is_eligible(self, member_id: str) -> bool:
        return self._members.get(member_id, False)
