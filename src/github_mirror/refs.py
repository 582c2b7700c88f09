import enum
from collections.abc import Iterable, Mapping
from types import MappingProxyType

ReferenceSnapshot = Mapping[str, str]
"""A read-only mapping of full reference name to object hash at one instant."""


class ChangeKind(enum.Enum):
    """How a single reference differs between two snapshots.

    The value of each member is the name of the hook rule set that handles it.
    """

    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


class DiffError(RuntimeError):
    """Raised when a delta cannot be computed. Indicates a logic bug."""


def make_snapshot(pairs: Iterable[tuple[str, str]]) -> ReferenceSnapshot:
    """Freezes (name, hash) pairs into a snapshot.

    Args:
        pairs (Iterable[tuple[str, str]]): Reference names and their hashes.

    Returns:
        ReferenceSnapshot: An immutable view over the collected references.

    Raises:
        ValueError: If the same reference name appears twice.
    """
    refs: dict[str, str] = {}
    for name, oid in pairs:
        if name in refs:
            raise ValueError(f"Duplicate reference in snapshot: {name}")
        refs[name] = oid
    return MappingProxyType(refs)


def diff_refs(
    before: ReferenceSnapshot, after: ReferenceSnapshot
) -> dict[str, ChangeKind]:
    """Computes which references were added, removed, or moved.

    Both inputs are copied before use; neither is mutated or retained.

    Args:
        before (ReferenceSnapshot): References prior to the fetch.
        after (ReferenceSnapshot): References after the fetch.

    Returns:
        dict[str, ChangeKind]: One entry per changed reference. Empty when
        nothing changed.
    """
    unmatched = dict(after)
    delta: dict[str, ChangeKind] = {}

    for name, oid in dict(before).items():
        if name not in unmatched:
            delta[name] = ChangeKind.REMOVED
        elif unmatched.pop(name) != oid:
            delta[name] = ChangeKind.CHANGED

    # Anything left was never seen before the fetch.
    for name in unmatched:
        delta[name] = ChangeKind.ADDED

    return delta
