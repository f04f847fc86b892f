from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from kinfolk.services.graph import FactRef, PersonId, as_fact_ref, build_graph

logger = logging.getLogger(__name__)


class RejectReason(str, enum.Enum):
    DUPLICATE = "DUPLICATE"
    INVERSE_EXISTS = "INVERSE_EXISTS"
    CYCLE = "CYCLE"


REJECT_MESSAGES = {
    RejectReason.DUPLICATE: "This parent relationship already exists",
    RejectReason.INVERSE_EXISTS: "This person is already recorded as their child; a person cannot be both parent and child of someone",
    RejectReason.CYCLE: "Cannot add this parent relationship as it would create a circular family structure",
}


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    reason: Optional[RejectReason] = None

    @property
    def message(self) -> Optional[str]:
        return REJECT_MESSAGES.get(self.reason) if self.reason else None


ALLOWED = GuardResult(allowed=True)


def can_add_parent_fact(child_id: PersonId, parent_id: PersonId, existing_facts: Iterable) -> GuardResult:
    """
    Decide whether `parent_id is a parent of child_id` may be inserted.

    Checks, in order: exact duplicate, direct inversion, then any longer
    chain. The chain check walks DOWN from the child: if the proposed parent
    is already among the child's descendants, the new edge would close a loop.
    A person cannot be their own parent either.
    """
    refs = [as_fact_ref(f) for f in existing_facts]
    fact_set = set(refs)

    if FactRef(parent_id, child_id) in fact_set:
        logger.debug("reject parent fact %s -> %s: duplicate", parent_id, child_id)
        return GuardResult(False, RejectReason.DUPLICATE)

    if FactRef(child_id, parent_id) in fact_set:
        logger.debug("reject parent fact %s -> %s: inverse exists", parent_id, child_id)
        return GuardResult(False, RejectReason.INVERSE_EXISTS)

    if parent_id == child_id or parent_id in build_graph(refs).descendants(child_id):
        logger.debug("reject parent fact %s -> %s: cycle", parent_id, child_id)
        return GuardResult(False, RejectReason.CYCLE)

    return ALLOWED
