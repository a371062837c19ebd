"""Commit graph rewriter: parent repair when commits are dropped."""

from __future__ import annotations

import enum
import logging
import pickle
from dataclasses import dataclass
from typing import Literal

from .errors import ConfigurationError, FatalParseError, ParseErrorKind
from .kv.base import KVStore
from .kv.memory import Memory
from .model import NULL_OID, MarkRef, ObjectRef, OidRef

logger = logging.getLogger(__name__)

DECISION_KEY = "__decision__%d"

PrunePolicy = Literal["never", "auto", "always"]
PRUNE_POLICIES = ("never", "auto", "always")


class Decision(enum.Enum):
    KEEP = "keep"
    DROP = "drop"


@dataclass(frozen=True)
class DecisionRecord:
    """Stored per commit mark.

    For a kept commit ``parents`` is the parent list it was emitted with.
    For a dropped one it is what references to it expand to.
    """

    decision: Decision
    parents: tuple[ObjectRef, ...]


def _dedupe(refs) -> list[ObjectRef]:
    seen = set()
    out = []
    for ref in refs:
        if ref not in seen:
            seen.add(ref)
            out.append(ref)
    return out


class GraphRewriter:
    """Per-commit keep/drop decisions and memoized replacement parents.

    Commits must be decided in stream order, so a replacement list only
    ever names commits decided earlier. Unmarked commits get negative
    internal marks from ``anonymous()``; those never reach the output.

    Example:
        graph = GraphRewriter()
        graph.keep(1, [])
        graph.drop(2, [MarkRef(1)])
        graph.keep(3, [MarkRef(2)])       # [MarkRef(1)]
    """

    def __init__(
        self,
        store: KVStore | None = None,
        *,
        prune_empty: PrunePolicy = "never",
        validate_order: bool = False,
    ) -> None:
        if prune_empty not in PRUNE_POLICIES:
            raise ConfigurationError(f"Unknown prune_empty policy: {prune_empty!r}")
        if store is None:
            store = Memory()
        self.store = store
        self.prune_empty = prune_empty
        self.validate_order = validate_order
        self.commits_no_longer_merges: list[int] = []
        self._input_tips: dict[bytes, ObjectRef | None] = {}
        self._emitted: dict[bytes, ObjectRef | None] = {}
        self._anonymous = 0

    # Decisions

    def _record(self, mark: int) -> DecisionRecord | None:
        raw = self.store.get(DECISION_KEY % mark)
        if raw is None:
            return None
        return pickle.loads(raw)

    def _save(self, mark: int, record: DecisionRecord) -> None:
        self.store.set(DECISION_KEY % mark, pickle.dumps(record))

    def anonymous(self) -> int:
        """Allocate an internal mark for a commit the stream left unmarked."""
        self._anonymous += 1
        return -self._anonymous

    def decision(self, mark: int) -> Decision | None:
        record = self._record(mark)
        return record.decision if record is not None else None

    def replacement(self, mark: int) -> list[ObjectRef]:
        """The memoized replacement parent list of a decided commit.

        Raises:
            KeyError: If the commit has not been decided.
        """
        record = self._record(mark)
        if record is None:
            raise KeyError(mark)
        return list(record.parents)

    def rewrite_parents(self, parents: list[ObjectRef]) -> list[ObjectRef]:
        """Expand dropped parents to their replacement lists.

        The result is flattened and de-duplicated in first-seen order, so
        the surviving ancestor of the first parent stays first.
        """
        out: list[ObjectRef] = []
        for parent in parents:
            if isinstance(parent, MarkRef):
                record = self._record(parent.mark)
                if record is None:
                    if self.validate_order:
                        raise FatalParseError(ParseErrorKind.OUT_OF_ORDER, f":{parent.mark}")
                elif record.decision is Decision.DROP:
                    out.extend(record.parents)
                    continue
            out.append(parent)
        return _dedupe(out)

    def keep(self, mark: int, parents: list[ObjectRef]) -> list[ObjectRef]:
        """Record a kept commit and return the parents to emit."""
        rewritten = self.rewrite_parents(parents)
        if len(parents) > 1 and len(rewritten) < 2:
            self.commits_no_longer_merges.append(mark)
        self._save(mark, DecisionRecord(Decision.KEEP, tuple(rewritten)))
        return rewritten

    def drop(self, mark: int, parents: list[ObjectRef]) -> list[ObjectRef]:
        """Record a dropped commit; references to it expand to the result."""
        rewritten = self.rewrite_parents(parents)
        self._save(mark, DecisionRecord(Decision.DROP, tuple(rewritten)))
        logger.debug("dropped commit :%d, replaced by %d parent(s)", mark, len(rewritten))
        return rewritten

    def alias(self, mark: int, target: ObjectRef) -> ObjectRef | None:
        """Record ``mark`` as another name for ``target``.

        Returns:
            What the alias should point at in the output, or None if
            everything it could name was dropped.
        """
        resolved = self.resolve_commitish(target)
        if isinstance(target, MarkRef) and self.decision(target.mark) is Decision.DROP:
            self._save(mark, DecisionRecord(Decision.DROP, tuple(self.replacement(target.mark))))
        else:
            self._save(mark, DecisionRecord(Decision.KEEP, (target,)))
        return resolved

    def resolve_commitish(self, ref: ObjectRef) -> ObjectRef | None:
        """What a reference to ``ref`` should name now.

        A dropped commit is replaced by the first entry of its
        replacement list; None when no ancestor survived.
        """
        if isinstance(ref, MarkRef) and self.decision(ref.mark) is Decision.DROP:
            replacement = self.replacement(ref.mark)
            return replacement[0] if replacement else None
        return ref

    def should_prune(
        self,
        original_parents: list[ObjectRef],
        rewritten: list[ObjectRef],
        *,
        had_changes: bool,
        has_changes: bool,
    ) -> bool:
        """Whether the prune policy removes a commit. Merges are never pruned."""
        if self.prune_empty == "never" or has_changes or len(rewritten) > 1:
            return False
        if self.prune_empty == "always":
            return True
        lost_parents = bool(original_parents) and not rewritten
        return had_changes or lost_parents

    # Branch tips

    def tip(self, ref: bytes) -> ObjectRef | None:
        """The last commit the input put on ``ref``."""
        return self._input_tips.get(ref)

    def set_tip(self, ref: bytes, target: ObjectRef | None) -> None:
        self._input_tips[ref] = target

    def clear_tip(self, ref: bytes) -> None:
        self._input_tips.pop(ref, None)
        self._emitted.pop(ref, None)

    def emitted(self, ref: bytes, target: ObjectRef | None) -> None:
        """Record what the importer's ``ref`` points at after our output."""
        self._emitted[ref] = target

    def emitted_tip(self, ref: bytes) -> ObjectRef | None:
        return self._emitted.get(ref)

    def expected_tip(self, ref: bytes) -> list[ObjectRef]:
        tip = self._input_tips.get(ref)
        if tip is None:
            return []
        return self.rewrite_parents([tip])

    def emitted_parents(
        self,
        ref: bytes,
        rewritten: list[ObjectRef],
        *,
        implicit: bool,
    ) -> tuple[ObjectRef | None, list[ObjectRef]]:
        """The ``from`` and ``merge`` lines that give a commit on ``ref``
        the parents ``rewritten``.

        A commit that named no ``from`` keeps omitting it while the
        importer's branch tip is still its first parent. When no parent
        survived on a branch the importer already has, the null oid is
        emitted so the commit does not continue that tip.
        """
        current = self._emitted.get(ref)
        if not rewritten:
            return (OidRef(NULL_OID) if current is not None else None), []
        if implicit and rewritten[0] == current:
            return None, rewritten[1:]
        if implicit and current is None and self._input_tips.get(ref) is None:
            return None, rewritten
        return rewritten[0], rewritten[1:]

    def pending_ref_updates(self) -> list[tuple[bytes, ObjectRef | None]]:
        """Refs whose output tip differs from the input's, with their target.

        The target is None when every commit the ref could name was
        dropped.
        """
        updates = []
        for ref in self._input_tips:
            expected = self.expected_tip(ref)
            target = expected[0] if expected else None
            if target != self._emitted.get(ref):
                updates.append((ref, target))
        return updates
