"""Mark table: session-scoped marks to object identities."""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, Iterable, Iterator, Literal

from .errors import (
    DuplicateMark,
    FatalParseError,
    MarkAlreadyFinal,
    ParseErrorKind,
    UnknownMark,
)
from .kv.base import KVStore
from .kv.memory import Memory
from .model import MarkRef, ObjectRef, OidRef, SymbolicRef, parse_mark

logger = logging.getLogger(__name__)

MARK_KEY = "__mark__%d"
MARK_PREFIX = "__mark__"

ObjectKind = Literal["blob", "commit", "tag"]


@dataclass(frozen=True)
class MarkEntry:
    """What a mark names.

    Attributes:
        kind: Object kind, or None for marks read from a marks file.
        identity: Provisional identity until ``final`` is set, then the
            object id supplied by the hashing collaborator.
        final: Whether ``identity`` has been finalized.
        defined_at: Index of the defining command, if known.
        dropped: Whether the object was removed from the output.
    """

    kind: ObjectKind | None
    identity: bytes
    final: bool = False
    defined_at: int | None = None
    dropped: bool = False


class MarkTable:
    """Write-once registry of marks, stored in a KVStore.

    A mark is defined once. Its identity starts provisional (``:<n>``
    unless the stream gave an original-oid) and may be replaced by a
    final object id exactly once.

    Example:
        marks = MarkTable()
        marks.define(1, kind="blob")
        marks.resolve(MarkRef(1))          # b":1"
        marks.reassign(1, b"e69de29b...")
    """

    def __init__(self, store: KVStore | None = None) -> None:
        if store is None:
            store = Memory()
        self.store = store
        self._count = sum(1 for _ in self._marks())

    def _load(self, mark: int) -> MarkEntry | None:
        raw = self.store.get(MARK_KEY % mark)
        if raw is None:
            return None
        return pickle.loads(raw)

    def _save(self, mark: int, entry: MarkEntry) -> None:
        self.store.set(MARK_KEY % mark, pickle.dumps(entry))

    def _marks(self) -> Iterator[int]:
        for key in self.store.keys():
            if key.startswith(MARK_PREFIX):
                yield int(key[len(MARK_PREFIX) :])

    def define(
        self,
        mark: int,
        identity: bytes | None = None,
        *,
        kind: ObjectKind | None,
        position: int | None = None,
    ) -> MarkEntry:
        """Bind a new mark.

        Args:
            mark: The mark number.
            identity: Provisional identity; defaults to ``:<mark>``.
            kind: The kind of object the mark names.
            position: Index of the defining command.

        Raises:
            DuplicateMark: If the mark is already defined.
        """
        if MARK_KEY % mark in self.store:
            raise DuplicateMark(mark)
        entry = MarkEntry(
            kind=kind,
            identity=identity if identity is not None else b":%d" % mark,
            defined_at=position,
        )
        self._save(mark, entry)
        self._count += 1
        return entry

    def entry(self, mark: int) -> MarkEntry:
        entry = self._load(mark)
        if entry is None:
            raise UnknownMark(mark)
        return entry

    def kind_of(self, mark: int) -> ObjectKind | None:
        return self.entry(mark).kind

    def resolve(self, ref: ObjectRef, *, at: int | None = None) -> bytes:
        """Return the identity a reference names.

        Object ids and symbolic refs resolve to their own bytes.

        Args:
            ref: The reference to resolve.
            at: Index of the referencing command. A mark defined by a
                later command does not resolve.

        Raises:
            UnknownMark: If a mark is not defined (at or before ``at``).
        """
        if isinstance(ref, OidRef):
            return ref.oid
        if isinstance(ref, SymbolicRef):
            return ref.name
        entry = self._load(ref.mark)
        if entry is None:
            raise UnknownMark(ref.mark)
        if at is not None and entry.defined_at is not None and entry.defined_at > at:
            raise UnknownMark(ref.mark)
        return entry.identity

    def require_kind(self, ref: ObjectRef, *kinds: ObjectKind) -> None:
        """Check that a mark names one of ``kinds``; other refs pass."""
        if not isinstance(ref, MarkRef):
            return
        kind = self.entry(ref.mark).kind
        if kind is not None and kind not in kinds:
            raise FatalParseError(
                ParseErrorKind.WRONG_OBJECT_KIND,
                f":{ref.mark} is a {kind}, expected {' or '.join(kinds)}",
            )

    def reassign(self, mark: int, final_identity: bytes) -> MarkEntry:
        """Replace a mark's provisional identity with its final one.

        Raises:
            UnknownMark: If the mark is not defined.
            MarkAlreadyFinal: If it was already finalized.
        """
        entry = self.entry(mark)
        if entry.final:
            raise MarkAlreadyFinal(mark)
        entry = replace(entry, identity=final_identity, final=True)
        self._save(mark, entry)
        return entry

    def drop(self, mark: int) -> None:
        """Record that the object behind ``mark`` is not in the output."""
        self._save(mark, replace(self.entry(mark), dropped=True))

    def is_dropped(self, mark: int) -> bool:
        entry = self._load(mark)
        return entry is not None and entry.dropped

    def finalize(self, hasher: Callable[[int, MarkEntry], bytes | None]) -> int:
        """Ask ``hasher`` for the final identity of every provisional mark.

        The hasher returns None for marks it cannot identify yet.

        Returns:
            The number of marks finalized.
        """
        count = 0
        for mark in sorted(self._marks()):
            entry = self.entry(mark)
            if entry.final or entry.dropped:
                continue
            identity = hasher(mark, entry)
            if identity is not None:
                self.reassign(mark, identity)
                count += 1
        logger.info("Finalized %d of %d marks", count, self._count)
        return count

    def import_marks(self, lines: Iterable[bytes]) -> int:
        """Load a marks file as written by ``--export-marks``.

        Each line is ``:<mark> <oid>``; the marks become final.

        Returns:
            The number of marks read.
        """
        count = 0
        for lineno, line in enumerate(lines, 1):
            line = line.rstrip(b"\n")
            if not line:
                continue
            mark_text, sep, oid = line.partition(b" ")
            if not sep or not oid:
                raise FatalParseError(
                    ParseErrorKind.INVALID_MARK, f"marks file line {lineno}: {line!r}"
                )
            mark = parse_mark(mark_text)
            self.define(mark, oid, kind=None)
            self.reassign(mark, oid)
            count += 1
        logger.info("Imported %d marks", count)
        return count

    def export_marks(self, out: BinaryIO) -> int:
        """Write every finalized, surviving mark as ``:<mark> <oid>``."""
        count = 0
        for mark in sorted(self._marks()):
            entry = self.entry(mark)
            if entry.final and not entry.dropped:
                out.write(b":%d %s\n" % (mark, entry.identity))
                count += 1
        return count

    def __contains__(self, mark: int) -> bool:
        return MARK_KEY % mark in self.store

    def __len__(self) -> int:
        return self._count
