"""Typed commands of a fast-import stream."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import BinaryIO

from .data import DataReader
from .errors import CodecError, FatalParseError, ParseErrorKind
from .numbers import Date, DateFormat, FileSize, parse_uint

NULL_OID = b"0" * 40

_OID_RE = re.compile(rb"[0-9a-fA-F]{40}(?:[0-9a-fA-F]{24})?\Z")

# Modes fast-import accepts for ``M``.
VALID_MODES = frozenset(
    [b"100644", b"644", b"100755", b"755", b"120000", b"040000", b"160000"]
)


def parse_mark(b: bytes) -> int:
    """Parse ``:<n>``. Mark 0 is rejected."""
    if not b.startswith(b":"):
        raise FatalParseError(ParseErrorKind.INVALID_MARK, repr(b))
    try:
        mark = parse_uint(b[1:])
    except CodecError as err:
        raise FatalParseError(ParseErrorKind.INVALID_MARK, str(err)) from err
    if mark == 0:
        raise FatalParseError(ParseErrorKind.ZERO_MARK)
    return mark


def is_oid(b: bytes) -> bool:
    return _OID_RE.match(b) is not None


@dataclass(frozen=True)
class MarkRef:
    mark: int

    def to_bytes(self) -> bytes:
        return b":%d" % self.mark


@dataclass(frozen=True)
class OidRef:
    """A full hex object id, opaque to the filter."""

    oid: bytes

    def to_bytes(self) -> bytes:
        return self.oid


@dataclass(frozen=True)
class SymbolicRef:
    """A ref name or any other expression git resolves, like ``main^0``."""

    name: bytes

    def to_bytes(self) -> bytes:
        return self.name


ObjectRef = MarkRef | OidRef | SymbolicRef


def parse_object_ref(b: bytes) -> ObjectRef:
    """Parse a commit-ish: a mark, a full object id, or anything else git resolves."""
    if b.startswith(b":"):
        return MarkRef(parse_mark(b))
    if is_oid(b):
        return OidRef(b)
    if not b:
        raise FatalParseError(ParseErrorKind.INVALID_DATAREF, "empty reference")
    if b"\0" in b:
        raise FatalParseError(ParseErrorKind.REF_CONTAINS_NUL, repr(b))
    return SymbolicRef(b)


def parse_dataref(b: bytes) -> ObjectRef:
    """Parse the blob reference of ``M``/``N``/``ls``/``cat-blob``: a mark or an oid."""
    if b.startswith(b":"):
        return MarkRef(parse_mark(b))
    if is_oid(b):
        return OidRef(b)
    raise FatalParseError(ParseErrorKind.INVALID_DATAREF, repr(b))


@dataclass
class PersonIdent:
    """``[<name> SP] LT <email> GT SP <date>`` from author/committer/tagger lines."""

    name: bytes
    email: bytes
    date: Date
    # Set for an empty name followed by its space, as in ``committer  <e> ...``.
    name_sep: bool = False

    def to_bytes(self, fmt: DateFormat = "raw") -> bytes:
        name = self.name + b" " if self.name or self.name_sep else b""
        return b"%s<%s> %s" % (name, self.email, self.date.format(fmt))


# File changes


@dataclass
class FileModify:
    mode: bytes
    dataref: ObjectRef | None
    path: bytes
    # Inline content when dataref is None.
    data: bytes | None = None
    data_lf: bool = False
    comments: list[bytes] = field(default_factory=list)
    # Comments between the M line and its inline data.
    data_comments: list[bytes] = field(default_factory=list)


@dataclass
class FileDelete:
    path: bytes
    comments: list[bytes] = field(default_factory=list)


@dataclass
class FileRename:
    source: bytes
    dest: bytes
    comments: list[bytes] = field(default_factory=list)


@dataclass
class FileCopy:
    source: bytes
    dest: bytes
    comments: list[bytes] = field(default_factory=list)


@dataclass
class NoteModify:
    dataref: ObjectRef | None
    commitish: ObjectRef
    data: bytes | None = None
    data_lf: bool = False
    comments: list[bytes] = field(default_factory=list)
    data_comments: list[bytes] = field(default_factory=list)


@dataclass
class FileDeleteAll:
    comments: list[bytes] = field(default_factory=list)


FileChange = (
    FileModify | FileDelete | FileRename | FileCopy | NoteModify | FileDeleteAll
)


# Commands


class Blob:
    """A ``blob`` command.

    The payload stays in the input until someone asks for it. ``data``
    loads it fully; ``open()`` streams it. Either way the serializer can
    still write the payload afterwards.
    """

    def __init__(
        self,
        data: bytes | None = None,
        *,
        mark: int | None = None,
        original_oid: bytes | None = None,
        optional_lf: bool = True,
        comments: list[bytes] | None = None,
        field_comments: dict[str, list[bytes]] | None = None,
        reader: DataReader | None = None,
    ) -> None:
        if data is None and reader is None:
            data = b""
        self.mark = mark
        self.original_oid = original_oid
        self.optional_lf = optional_lf
        self.comments = comments if comments is not None else []
        self.field_comments = field_comments if field_comments is not None else {}
        self.reader = reader
        self._data = data
        self._opened = False

    @property
    def data(self) -> bytes:
        if self._data is None:
            assert self.reader is not None
            self._data = b"".join(self.reader.replay())
        return self._data

    @data.setter
    def data(self, value: bytes) -> None:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        self._data = value

    @property
    def loaded(self) -> bool:
        """Whether the payload is held in memory."""
        return self._data is not None

    @property
    def size(self) -> int | None:
        """Payload length, if known without reading it."""
        if self._data is not None:
            return len(self._data)
        assert self.reader is not None
        return self.reader.length

    def open(self) -> BinaryIO | DataReader:
        """Return a reader over the payload.

        Raises:
            FatalParseError: DATA_ALREADY_OPENED on a second call while the
                payload is still in the input.
        """
        if self._data is not None:
            return io.BytesIO(self._data)
        if self._opened:
            raise FatalParseError(ParseErrorKind.DATA_ALREADY_OPENED)
        self._opened = True
        assert self.reader is not None
        return self.reader

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Blob):
            return NotImplemented
        return (
            self.mark == other.mark
            and self.original_oid == other.original_oid
            and self.data == other.data
        )

    def __repr__(self) -> str:
        size = self.size
        return f"Blob(mark={self.mark!r}, original_oid={self.original_oid!r}, size={size!r})"


@dataclass
class Commit:
    ref: bytes
    committer: PersonIdent
    message: bytes
    mark: int | None = None
    original_oid: bytes | None = None
    author: PersonIdent | None = None
    encoding: bytes | None = None
    from_ref: ObjectRef | None = None
    merges: list[ObjectRef] = field(default_factory=list)
    # File changes, plus in-commit Ls and CatBlob queries in stream order.
    file_changes: list = field(default_factory=list)
    message_delim: bytes | None = None
    message_lf: bool = False
    optional_lf: bool = True
    comments: list[bytes] = field(default_factory=list)
    # Comments inside the command, keyed by the line they precede.
    field_comments: dict[str, list[bytes]] = field(default_factory=dict)

    @property
    def parents(self) -> list[ObjectRef]:
        parents = [self.from_ref] if self.from_ref is not None else []
        return parents + list(self.merges)


@dataclass
class Tag:
    name: bytes
    from_ref: ObjectRef
    tagger: PersonIdent
    message: bytes
    mark: int | None = None
    original_oid: bytes | None = None
    message_delim: bytes | None = None
    optional_lf: bool = True
    comments: list[bytes] = field(default_factory=list)
    field_comments: dict[str, list[bytes]] = field(default_factory=dict)


@dataclass
class Reset:
    ref: bytes
    from_ref: ObjectRef | None = None
    optional_lf: bool = True
    comments: list[bytes] = field(default_factory=list)
    field_comments: dict[str, list[bytes]] = field(default_factory=dict)


@dataclass
class Alias:
    mark: int
    to: ObjectRef
    optional_lf: bool = False
    comments: list[bytes] = field(default_factory=list)
    field_comments: dict[str, list[bytes]] = field(default_factory=dict)


@dataclass
class Ls:
    """``ls``; ``dataref`` is None for the in-commit form."""

    path: bytes
    dataref: ObjectRef | None = None
    comments: list[bytes] = field(default_factory=list)


@dataclass
class CatBlob:
    dataref: ObjectRef
    comments: list[bytes] = field(default_factory=list)


@dataclass
class GetMark:
    mark: int
    comments: list[bytes] = field(default_factory=list)


@dataclass
class Checkpoint:
    optional_lf: bool = False
    comments: list[bytes] = field(default_factory=list)


@dataclass
class Progress:
    message: bytes
    optional_lf: bool = False
    comments: list[bytes] = field(default_factory=list)


@dataclass
class Feature:
    name: bytes
    arg: bytes | None = None
    comments: list[bytes] = field(default_factory=list)


@dataclass
class OptionGit:
    """``option git --<name>[=<value>]``.

    ``value`` is a FileSize for max-pack-size and big-file-threshold, an
    int for depth and active-branches, bytes for export-pack-edges and
    None for the flags.
    """

    name: str
    value: FileSize | int | bytes | None = None
    comments: list[bytes] = field(default_factory=list)


@dataclass
class OptionOther:
    """An ``option`` line for another importer, passed through untouched."""

    line: bytes
    comments: list[bytes] = field(default_factory=list)


@dataclass
class Done:
    # False when the stream just ended.
    explicit: bool = True
    comments: list[bytes] = field(default_factory=list)


Command = (
    Blob
    | Commit
    | Tag
    | Reset
    | Alias
    | Ls
    | CatBlob
    | GetMark
    | Checkpoint
    | Progress
    | Feature
    | OptionGit
    | OptionOther
    | Done
)
