"""Input adapters: application records → canonical Membership / Subject.

Applications store memberships and resources in their own shapes. An adapter
converts one raw record into the canonical model before resolution; at most
one adapter of each kind is installed on an evaluator at a time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .models import Membership, Subject


class MembershipAdapter(ABC):
    """Converts one application membership record into a :class:`Membership`.

    Example::

        class CellaMembershipAdapter(MembershipAdapter):
            def adapt(self, raw):
                return Membership(
                    context_name=raw["type"],
                    context_key=raw["key"],
                    role_name=raw["role"],
                    ancestors=raw.get("ancestors") or {},
                )
    """

    @abstractmethod
    def adapt(self, raw: Any) -> Membership:
        raise NotImplementedError


class SubjectAdapter(ABC):
    """Converts one application resource record into a :class:`Subject`."""

    @abstractmethod
    def adapt(self, raw: Any) -> Subject:
        raise NotImplementedError


__all__ = ["MembershipAdapter", "SubjectAdapter"]
