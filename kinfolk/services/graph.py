from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Set

PersonId = Hashable


@dataclass(frozen=True)
class FactRef:
    """parent_id is a parent of child_id."""
    parent_id: PersonId
    child_id: PersonId


def as_fact_ref(fact) -> FactRef:
    """Accept FactRef, ParentFact rows, or (parent_id, child_id) tuples."""
    if isinstance(fact, FactRef):
        return fact
    if isinstance(fact, tuple):
        parent_id, child_id = fact
        return FactRef(parent_id, child_id)
    return FactRef(fact.parent_id, fact.child_id)


@dataclass
class FamilyGraph:
    children_of: Dict[PersonId, Set[PersonId]] = field(default_factory=dict)
    parents_of: Dict[PersonId, Set[PersonId]] = field(default_factory=dict)

    def children(self, person_id: PersonId) -> Set[PersonId]:
        return self.children_of.get(person_id, set())

    def parents(self, person_id: PersonId) -> Set[PersonId]:
        return self.parents_of.get(person_id, set())

    def person_ids(self) -> Set[PersonId]:
        return set(self.children_of) | set(self.parents_of)

    def descendants(self, person_id: PersonId) -> Set[PersonId]:
        """BFS downward via children. Does not include the seed itself unless a cycle leads back to it."""
        out: Set[PersonId] = set()
        frontier: deque[PersonId] = deque(self.children(person_id))
        while frontier:
            node = frontier.popleft()
            if node in out:
                continue
            out.add(node)
            frontier.extend(self.children(node))
        return out


def build_graph(facts: Iterable) -> FamilyGraph:
    graph = FamilyGraph()
    for f in facts:
        ref = as_fact_ref(f)
        graph.children_of.setdefault(ref.parent_id, set()).add(ref.child_id)
        graph.parents_of.setdefault(ref.child_id, set()).add(ref.parent_id)
    return graph


def find_cycles(facts: Iterable) -> List[FactRef]:
    """
    Diagnostic for legacy data: return every fact that lies on a directed cycle
    (a parent who is also a descendant of the child). Self-parenting facts count.
    Never used to repair data automatically.
    """
    refs = [as_fact_ref(f) for f in facts]
    graph = build_graph(refs)
    reach: Dict[PersonId, Set[PersonId]] = {}
    out: List[FactRef] = []
    for ref in refs:
        if ref.child_id not in reach:
            reach[ref.child_id] = graph.descendants(ref.child_id)
        if ref.parent_id == ref.child_id or ref.parent_id in reach[ref.child_id]:
            out.append(ref)
    return sorted(out, key=lambda r: (str(r.parent_id), str(r.child_id)))
