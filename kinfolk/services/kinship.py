from __future__ import annotations

from typing import Dict, Hashable, Optional, Tuple, Union

from kinfolk.models import RelationshipKind

K = RelationshipKind

INVERSE_KIND: Dict[RelationshipKind, RelationshipKind] = {
    K.parent: K.child,
    K.child: K.parent,
    K.sibling: K.sibling,
    K.grandparent: K.grandchild,
    K.grandchild: K.grandparent,
    K.aunt_uncle: K.niece_nephew,
    K.niece_nephew: K.aunt_uncle,
    K.cousin: K.cousin,
}

# Closest tie first; used when two people are related more than one way
KIND_PRIORITY: Tuple[RelationshipKind, ...] = (
    K.parent, K.child, K.sibling, K.grandparent, K.grandchild,
    K.aunt_uncle, K.niece_nephew, K.cousin,
)

# neutral, male, female
_LABELS: Dict[RelationshipKind, Tuple[str, str, str]] = {
    K.parent: ("parent", "father", "mother"),
    K.child: ("child", "son", "daughter"),
    K.sibling: ("sibling", "brother", "sister"),
    K.grandparent: ("grandparent", "grandfather", "grandmother"),
    K.grandchild: ("grandchild", "grandson", "granddaughter"),
    K.aunt_uncle: ("aunt/uncle", "uncle", "aunt"),
    K.niece_nephew: ("niece/nephew", "nephew", "niece"),
    K.cousin: ("cousin", "cousin", "cousin"),
}

_MALE = {"he", "him", "his", "male", "m", "man", "boy"}
_FEMALE = {"she", "her", "hers", "female", "f", "woman", "girl"}


def _kind(kind: Union[RelationshipKind, str]) -> RelationshipKind:
    return kind if isinstance(kind, RelationshipKind) else RelationshipKind(str(kind).strip().lower())


def inverse_kind(kind: Union[RelationshipKind, str]) -> RelationshipKind:
    return INVERSE_KIND[_kind(kind)]


def gender_from_pronouns(pronouns: Optional[str]) -> Optional[str]:
    """
    'he/him', 'he/they' -> male; 'she/her', 'she/they' -> female.
    Only the first pronoun decides; 'they/them', 'xe/xem' and blanks stay neutral.
    """
    p = (pronouns or "").strip().lower()
    if not p:
        return None
    first = p.replace(",", "/").replace(" ", "/").split("/")[0]
    if first in _MALE:
        return "male"
    if first in _FEMALE:
        return "female"
    return None


def format_kind(kind: Union[RelationshipKind, str]) -> str:
    return _LABELS[_kind(kind)][0]


def label_for(
    kind: Union[RelationshipKind, str],
    viewer_is_subject: bool = True,
    other_pronouns: Optional[str] = None,
) -> str:
    """
    Label for the person on the far side of a stored `(person_id, other_id, kind)` row.

    viewer_is_subject=True: the viewer is person_id, so other_id is labelled as `kind`.
    viewer_is_subject=False: the viewer is other_id, so person_id is labelled with the
    inverse kind. `other_pronouns` are the pronouns of whoever is being labelled.
    """
    k = _kind(kind)
    if not viewer_is_subject:
        k = INVERSE_KIND[k]
    neutral, male, female = _LABELS[k]
    g = gender_from_pronouns(other_pronouns)
    if g == "male":
        return male
    if g == "female":
        return female
    return neutral


def label_for_row(
    person_id: Hashable,
    other_id: Hashable,
    kind: Union[RelationshipKind, str],
    viewer_id: Hashable,
    labelled_pronouns: Optional[str] = None,
) -> str:
    """Resolve the viewpoint from ids instead of a flag."""
    if viewer_id == person_id:
        return label_for(kind, True, labelled_pronouns)
    if viewer_id == other_id:
        return label_for(kind, False, labelled_pronouns)
    raise ValueError(f"viewer {viewer_id!r} is not part of this relationship")


def closest_kind(kinds) -> Optional[RelationshipKind]:
    present = {_kind(k) for k in kinds}
    for k in KIND_PRIORITY:
        if k in present:
            return k
    return None
