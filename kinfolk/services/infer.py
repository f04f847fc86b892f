from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from kinfolk.models import RelationshipKind
from kinfolk.services.exceptions import InconsistentSnapshotError
from kinfolk.services.graph import FamilyGraph, PersonId, as_fact_ref


@dataclass(frozen=True)
class DerivedEdge:
    """`other_id` is `kind` of `person_id`."""
    person_id: PersonId
    other_id: PersonId
    kind: RelationshipKind
    is_inferred: bool = True


# Emission order inside one person's block; keeps output stable across runs
KIND_ORDER: List[RelationshipKind] = [
    RelationshipKind.sibling,
    RelationshipKind.grandparent,
    RelationshipKind.grandchild,
    RelationshipKind.aunt_uncle,
    RelationshipKind.niece_nephew,
    RelationshipKind.cousin,
]


def validate_snapshot(person_ids: Iterable[PersonId], facts: Iterable) -> None:
    """Raise InconsistentSnapshotError if any fact points at a person not in the snapshot."""
    known = set(person_ids)
    missing: Set[PersonId] = set()
    for f in facts:
        ref = as_fact_ref(f)
        if ref.parent_id not in known:
            missing.add(ref.parent_id)
        if ref.child_id not in known:
            missing.add(ref.child_id)
    if missing:
        raise InconsistentSnapshotError(missing)


def _siblings(graph: FamilyGraph, pid: PersonId) -> Set[PersonId]:
    # anyone sharing at least one parent; half-siblings included once
    out: Set[PersonId] = set()
    for par in graph.parents(pid):
        out |= graph.children(par)
    out.discard(pid)
    return out


def infer_for_person(person_id: PersonId, graph: FamilyGraph) -> Dict[RelationshipKind, Set[PersonId]]:
    """
    Derive every secondary kind for one person from the adjacency maps.
    Pure set algebra; the person is never their own relation.
    """
    pid = person_id
    parents = graph.parents(pid)
    children = graph.children(pid)

    siblings = _siblings(graph, pid)

    grandparents: Set[PersonId] = set()
    for par in parents:
        grandparents |= graph.parents(par)

    grandchildren: Set[PersonId] = set()
    for ch in children:
        grandchildren |= graph.children(ch)

    # Parent's siblings: other children of each grandparent, excluding that parent
    aunts_uncles: Set[PersonId] = set()
    for par in parents:
        for gpar in graph.parents(par):
            aunts_uncles |= graph.children(gpar) - {par}

    nieces_nephews: Set[PersonId] = set()
    for sib in siblings:
        nieces_nephews |= graph.children(sib)

    cousins: Set[PersonId] = set()
    for au in aunts_uncles:
        cousins |= graph.children(au)

    result = {
        RelationshipKind.sibling: siblings,
        RelationshipKind.grandparent: grandparents,
        RelationshipKind.grandchild: grandchildren,
        RelationshipKind.aunt_uncle: aunts_uncles,
        RelationshipKind.niece_nephew: nieces_nephews,
        RelationshipKind.cousin: cousins,
    }
    for others in result.values():
        others.discard(pid)
    return result


def infer_all(person_ids: Iterable[PersonId], graph: FamilyGraph, facts: Iterable = ()) -> List[DerivedEdge]:
    """
    Full derived set for the whole population, sorted for idempotent output.
    Pass `facts` to have the snapshot checked before anything is derived.
    """
    ids = sorted(set(person_ids), key=str)
    validate_snapshot(ids, facts)
    out: List[DerivedEdge] = []
    for pid in ids:
        derived = infer_for_person(pid, graph)
        for kind in KIND_ORDER:
            for other in sorted(derived[kind], key=str):
                out.append(DerivedEdge(person_id=pid, other_id=other, kind=kind))
    return out
