"""Split a fast-import stream into typed commands."""

from __future__ import annotations

import enum
import logging
from typing import BinaryIO, Iterator

from .data import (
    DEFAULT_BIG_FILE_THRESHOLD,
    DataReader,
    Delimited,
    StreamInput,
    parse_data_header,
)
from .errors import CodecError, FatalParseError, ParseErrorKind, StreamPosition
from .model import (
    Alias,
    Blob,
    CatBlob,
    Checkpoint,
    Command,
    Commit,
    Done,
    Feature,
    FileCopy,
    FileDelete,
    FileDeleteAll,
    FileModify,
    FileRename,
    GetMark,
    Ls,
    NoteModify,
    OptionGit,
    OptionOther,
    PersonIdent,
    Progress,
    Reset,
    Tag,
    parse_dataref,
    parse_mark,
    parse_object_ref,
)
from .numbers import DATE_FORMATS, DateFormat, parse_date, parse_file_size, parse_uint
from .quoting import parse_commit_ls_path, parse_ls_path, parse_path, parse_path_eol

logger = logging.getLogger(__name__)

SIZE_OPTIONS = ("max-pack-size", "big-file-threshold")
COUNT_OPTIONS = ("depth", "active-branches")
FLAG_OPTIONS = ("quiet", "stats", "allow-unsafe-features")


class LexerState(enum.Enum):
    AWAIT_COMMAND = "await-command"
    IN_COMMIT = "in-commit"
    IN_TAG = "in-tag"
    DONE = "done"


class Lexer:
    """Reads commands one at a time from a binary stream.

    Blob payloads are left in the input until read through the returned
    Blob; anything unread is skipped when the next command is requested.
    Commit and tag messages are always read into memory.

    Example:
        for command in Lexer(open("export.fi", "rb")):
            ...
    """

    def __init__(
        self,
        source: BinaryIO | bytes,
        *,
        date_format: DateFormat = "raw",
        big_file_threshold: int = DEFAULT_BIG_FILE_THRESHOLD,
    ) -> None:
        self.input = StreamInput(source)
        self.state = LexerState.AWAIT_COMMAND
        self.date_format: DateFormat = date_format
        self.big_file_threshold = big_file_threshold
        self.command_index = -1
        self.done_required = False
        self._comments: list[bytes] = []
        self._data: DataReader | None = None
        self._blob: Blob | None = None

    def position(self) -> StreamPosition:
        """The current command index, line number and line offset."""
        return StreamPosition(
            max(self.command_index, 0), self.input.line, self.input.line_offset
        )

    def __iter__(self) -> Iterator[Command]:
        while (command := self.next()) is not None:
            yield command

    def next(self) -> Command | None:
        """Parse the next command, or return None once the stream is done.

        End of input without ``done`` yields ``Done(explicit=False)``
        first, unless ``feature done`` was declared.

        Raises:
            FatalParseError: With the position of the offending line.
        """
        if self.state is LexerState.DONE:
            return None
        try:
            if self._data is not None:
                self._data.close()
                self._data = None
            line = self._next_line()
            if line is None:
                if self.done_required:
                    raise FatalParseError(ParseErrorKind.MISSING_DONE)
                self.state = LexerState.DONE
                return Done(explicit=False, comments=self._take_comments())
            self.command_index += 1
            command = self._dispatch(line)
        except CodecError as err:
            raise FatalParseError(
                ParseErrorKind.INVALID_NUMBER, str(err), self.position()
            ) from err
        except FatalParseError as err:
            raise err.at(self.position())
        logger.debug("command %d: %s", self.command_index, type(command).__name__)
        return command

    # Line handling

    def _next_line(self) -> bytes | None:
        """Next line, collecting ``#`` comment lines along the way."""
        while True:
            line = self.input.readline()
            if line is None or not line.startswith(b"#"):
                return line
            self._comments.append(line)

    def _take_comments(self) -> list[bytes]:
        comments, self._comments = self._comments, []
        return comments

    def _note(self, fields: dict[str, list[bytes]], key: str) -> None:
        """File pending comments under the header line ``key`` just read."""
        if self._comments:
            fields[key] = self._take_comments()

    def _optional_lf(self) -> bool:
        """Consume one blank line if it comes next."""
        line = self.input.readline()
        if line == b"":
            return True
        if line is not None:
            self.input.unread()
        return False

    def _required(self, kind: ParseErrorKind) -> bytes:
        line = self._next_line()
        if line is None:
            raise FatalParseError(ParseErrorKind.UNEXPECTED_EOF, kind.value)
        return line

    # Dispatch

    def _dispatch(self, line: bytes) -> Command:
        if line == b"blob":
            return self._parse_blob()
        if line.startswith(b"commit "):
            return self._parse_commit(line[7:])
        if line.startswith(b"tag "):
            return self._parse_tag(line[4:])
        if line.startswith(b"reset "):
            return self._parse_reset(line[6:])
        if line == b"alias":
            return self._parse_alias()
        if line.startswith(b"ls "):
            return self._parse_ls(line[3:], in_commit=False)
        if line.startswith(b"cat-blob "):
            return CatBlob(parse_dataref(line[9:]), comments=self._take_comments())
        if line.startswith(b"get-mark "):
            return GetMark(parse_mark(line[9:]), comments=self._take_comments())
        if line == b"checkpoint":
            comments = self._take_comments()
            return Checkpoint(optional_lf=self._optional_lf(), comments=comments)
        if line.startswith(b"progress "):
            comments = self._take_comments()
            return Progress(line[9:], optional_lf=self._optional_lf(), comments=comments)
        if line.startswith(b"feature "):
            return self._parse_feature(line[8:])
        if line.startswith(b"option "):
            return self._parse_option(line[7:])
        if line == b"done":
            self.state = LexerState.DONE
            return Done(explicit=True, comments=self._take_comments())
        if not line:
            raise FatalParseError(ParseErrorKind.UNEXPECTED_BLANK)
        raise FatalParseError(ParseErrorKind.UNSUPPORTED_COMMAND, repr(line))

    # Shared fields

    def _parse_ref_name(self, ref: bytes) -> bytes:
        if b"\0" in ref:
            raise FatalParseError(ParseErrorKind.REF_CONTAINS_NUL, repr(ref))
        return ref

    def _parse_optional_mark(
        self, line: bytes, fields: dict[str, list[bytes]]
    ) -> tuple[int | None, bytes]:
        if line.startswith(b"mark "):
            self._note(fields, "mark")
            return parse_mark(line[5:]), self._required(ParseErrorKind.EXPECTED_DATA)
        return None, line

    def _parse_original_oid(
        self, line: bytes, fields: dict[str, list[bytes]]
    ) -> tuple[bytes | None, bytes]:
        if line.startswith(b"original-oid "):
            self._note(fields, "original_oid")
            return line[13:], self._required(ParseErrorKind.EXPECTED_DATA)
        return None, line

    def _parse_ident(self, ident: bytes) -> PersonIdent:
        if b"\0" in ident:
            raise FatalParseError(ParseErrorKind.IDENT_CONTAINS_NUL, repr(ident))
        lt = _find_any(ident, 0)
        if lt < 0:
            raise FatalParseError(ParseErrorKind.IDENT_NO_LT_OR_GT, repr(ident))
        if ident[lt] != ord("<"):
            raise FatalParseError(ParseErrorKind.IDENT_NO_LT_BEFORE_GT, repr(ident))
        if lt != 0 and ident[lt - 1] != ord(" "):
            raise FatalParseError(ParseErrorKind.IDENT_NO_SPACE_BEFORE_LT, repr(ident))
        gt = _find_any(ident, lt + 1)
        if gt < 0 or ident[gt] != ord(">"):
            raise FatalParseError(ParseErrorKind.IDENT_NO_GT_AFTER_LT, repr(ident))
        if ident[gt + 1 : gt + 2] != b" ":
            raise FatalParseError(ParseErrorKind.IDENT_NO_SPACE_AFTER_GT, repr(ident))
        try:
            date = parse_date(ident[gt + 2 :], self.date_format)
        except CodecError as err:
            raise FatalParseError(ParseErrorKind.INVALID_DATE, str(err)) from err
        name = ident[: lt - 1] if lt > 0 else b""
        return PersonIdent(name, ident[lt + 1 : gt], date, name_sep=lt == 1)

    def _read_message(self, line: bytes) -> tuple[bytes, bytes | None]:
        """Read a small payload fully. Returns it and its delimiter, if any."""
        header = parse_data_header(line)
        message = DataReader(self.input, header).readall()
        delim = header.delim if isinstance(header, Delimited) else None
        return message, delim

    # Commands

    def _parse_blob(self) -> Blob:
        comments = self._take_comments()
        fields: dict[str, list[bytes]] = {}
        line = self._required(ParseErrorKind.EXPECTED_DATA)
        mark, line = self._parse_optional_mark(line, fields)
        original_oid, line = self._parse_original_oid(line, fields)
        self._note(fields, "data")
        reader = DataReader(
            self.input,
            parse_data_header(line),
            spool_size=self.big_file_threshold,
            on_finish=self._finish_blob,
        )
        blob = Blob(
            mark=mark,
            original_oid=original_oid,
            comments=comments,
            field_comments=fields,
            reader=reader,
        )
        self._blob = blob
        self._data = reader
        if reader.finished:
            self._finish_blob()
        return blob

    def _finish_blob(self) -> None:
        if self._blob is not None:
            self._blob.optional_lf = self._optional_lf()
            self._blob = None

    def _parse_commit(self, ref: bytes) -> Commit:
        comments = self._take_comments()
        ref = self._parse_ref_name(ref)
        self.state = LexerState.IN_COMMIT
        fields: dict[str, list[bytes]] = {}
        line = self._required(ParseErrorKind.EXPECTED_COMMITTER)
        mark, line = self._parse_optional_mark(line, fields)
        original_oid, line = self._parse_original_oid(line, fields)
        author = None
        if line.startswith(b"author "):
            self._note(fields, "author")
            author = self._parse_ident(line[7:])
            line = self._required(ParseErrorKind.EXPECTED_COMMITTER)
        if not line.startswith(b"committer "):
            raise FatalParseError(ParseErrorKind.EXPECTED_COMMITTER, repr(line))
        self._note(fields, "committer")
        committer = self._parse_ident(line[10:])
        line = self._required(ParseErrorKind.EXPECTED_DATA)
        encoding = None
        if line.startswith(b"encoding "):
            self._note(fields, "encoding")
            encoding = line[9:]
            line = self._required(ParseErrorKind.EXPECTED_DATA)
        self._note(fields, "data")
        message, delim = self._read_message(line)
        commit = Commit(
            ref,
            committer,
            message,
            mark=mark,
            original_oid=original_oid,
            author=author,
            encoding=encoding,
            message_delim=delim,
            message_lf=self._optional_lf(),
            comments=comments,
            field_comments=fields,
        )
        line = self._next_line()
        if line is not None and line.startswith(b"from "):
            self._note(fields, "from")
            commit.from_ref = parse_object_ref(line[5:])
            line = self._next_line()
        while line is not None and line.startswith(b"merge "):
            self._note(fields, "merge:%d" % len(commit.merges))
            commit.merges.append(parse_object_ref(line[6:]))
            line = self._next_line()
        while True:
            if line is None:
                commit.optional_lf = False
                break
            if not line:
                self._note(fields, "end")
                commit.optional_lf = True
                break
            # Comments before a line that ends the commit belong to the
            # next command.
            pending = self._take_comments()
            change = self._parse_file_change(line)
            if change is None:
                self._comments = pending
                self.input.unread()
                commit.optional_lf = False
                break
            change.comments = pending
            commit.file_changes.append(change)
            line = self._next_line()
        self.state = LexerState.AWAIT_COMMAND
        return commit

    def _parse_file_change(self, line: bytes):
        """Parse one line of a commit body, or return None if it is not one."""
        try:
            if line.startswith(b"M "):
                return self._parse_modify(line)
            if line.startswith(b"D "):
                return FileDelete(parse_path_eol(line, 2))
            if line.startswith(b"R ") or line.startswith(b"C "):
                source, end = parse_path(line, 2)
                if line[end : end + 1] != b" ":
                    raise FatalParseError(
                        ParseErrorKind.INVALID_FILE_CHANGE, "missing destination"
                    )
                dest = parse_path_eol(line, end + 1)
                cls = FileRename if line[:1] == b"R" else FileCopy
                return cls(source, dest)
            if line.startswith(b"N "):
                return self._parse_note(line)
            if line == b"deleteall":
                return FileDeleteAll()
            if line.startswith(b"ls "):
                return self._parse_ls(line[3:], in_commit=True)
            if line.startswith(b"cat-blob "):
                return CatBlob(parse_dataref(line[9:]))
        except CodecError as err:
            raise FatalParseError(ParseErrorKind.INVALID_PATH, str(err)) from err
        return None

    def _parse_inline(self, ref: bytes) -> tuple[object, bytes | None, bool, list[bytes]]:
        """Returns the dataref, inline data, its optional LF and the comments before it."""
        if ref != b"inline":
            return parse_dataref(ref), None, False, []
        line = self._required(ParseErrorKind.EXPECTED_DATA)
        comments = self._take_comments()
        data, _ = self._read_message(line)
        return None, data, self._optional_lf(), comments

    def _parse_modify(self, line: bytes) -> FileModify:
        parts = line[2:].split(b" ", 2)
        if len(parts) != 3:
            raise FatalParseError(ParseErrorKind.INVALID_FILE_CHANGE, repr(line))
        mode, ref, _ = parts
        if not mode or any(b < 0x30 or b > 0x37 for b in mode):
            raise FatalParseError(ParseErrorKind.INVALID_FILE_CHANGE, f"mode {mode!r}")
        path = parse_path_eol(line, 2 + len(mode) + 1 + len(ref) + 1)
        dataref, data, data_lf, comments = self._parse_inline(ref)
        return FileModify(
            mode, dataref, path, data=data, data_lf=data_lf, data_comments=comments
        )

    def _parse_note(self, line: bytes) -> NoteModify:
        ref, sep, commitish = line[2:].partition(b" ")
        if not sep:
            raise FatalParseError(ParseErrorKind.INVALID_FILE_CHANGE, repr(line))
        target = parse_object_ref(commitish)
        dataref, data, data_lf, comments = self._parse_inline(ref)
        return NoteModify(
            dataref, target, data=data, data_lf=data_lf, data_comments=comments
        )

    def _parse_ls(self, arg: bytes, *, in_commit: bool) -> Ls:
        comments = [] if in_commit else self._take_comments()
        try:
            if arg.startswith(b'"'):
                if not in_commit:
                    raise FatalParseError(
                        ParseErrorKind.INVALID_DATAREF, "ls without a dataref outside a commit"
                    )
                return Ls(parse_commit_ls_path(arg))
            ref, sep, _ = arg.partition(b" ")
            if not sep:
                raise FatalParseError(ParseErrorKind.INVALID_PATH, repr(arg))
            return Ls(
                parse_ls_path(arg, len(ref) + 1),
                parse_dataref(ref),
                comments=comments,
            )
        except CodecError as err:
            raise FatalParseError(ParseErrorKind.INVALID_PATH, str(err)) from err

    def _parse_tag(self, name: bytes) -> Tag:
        comments = self._take_comments()
        name = self._parse_ref_name(name)
        self.state = LexerState.IN_TAG
        fields: dict[str, list[bytes]] = {}
        line = self._required(ParseErrorKind.EXPECTED_FROM)
        mark, line = self._parse_optional_mark(line, fields)
        if not line.startswith(b"from "):
            raise FatalParseError(ParseErrorKind.EXPECTED_FROM, repr(line))
        self._note(fields, "from")
        from_ref = parse_object_ref(line[5:])
        line = self._required(ParseErrorKind.EXPECTED_TAGGER)
        original_oid, line = self._parse_original_oid(line, fields)
        if not line.startswith(b"tagger "):
            raise FatalParseError(ParseErrorKind.EXPECTED_TAGGER, repr(line))
        self._note(fields, "tagger")
        tagger = self._parse_ident(line[7:])
        line = self._required(ParseErrorKind.EXPECTED_DATA)
        self._note(fields, "data")
        message, delim = self._read_message(line)
        self.state = LexerState.AWAIT_COMMAND
        return Tag(
            name,
            from_ref,
            tagger,
            message,
            mark=mark,
            original_oid=original_oid,
            message_delim=delim,
            optional_lf=self._optional_lf(),
            comments=comments,
            field_comments=fields,
        )

    def _parse_reset(self, ref: bytes) -> Reset:
        reset = Reset(self._parse_ref_name(ref), comments=self._take_comments())
        line = self._next_line()
        if line is not None and line.startswith(b"from "):
            self._note(reset.field_comments, "from")
            reset.from_ref = parse_object_ref(line[5:])
            line = self._next_line()
        if line == b"":
            self._note(reset.field_comments, "end")
            reset.optional_lf = True
        else:
            # Anything else starts the next command, comments included.
            reset.optional_lf = False
            if line is not None:
                self.input.unread()
        return reset

    def _parse_alias(self) -> Alias:
        comments = self._take_comments()
        fields: dict[str, list[bytes]] = {}
        line = self._required(ParseErrorKind.EXPECTED_MARK)
        if not line.startswith(b"mark "):
            raise FatalParseError(ParseErrorKind.EXPECTED_MARK, repr(line))
        self._note(fields, "mark")
        mark = parse_mark(line[5:])
        line = self._required(ParseErrorKind.EXPECTED_TO)
        if not line.startswith(b"to "):
            raise FatalParseError(ParseErrorKind.EXPECTED_TO, repr(line))
        self._note(fields, "to")
        to = parse_object_ref(line[3:])
        return Alias(
            mark,
            to,
            optional_lf=self._optional_lf(),
            comments=comments,
            field_comments=fields,
        )

    def _parse_feature(self, arg: bytes) -> Feature:
        name, sep, value = arg.partition(b"=")
        feature = Feature(name, value if sep else None, comments=self._take_comments())
        if name == b"date-format":
            fmt = value.decode("ascii", "replace")
            if fmt not in DATE_FORMATS:
                raise FatalParseError(ParseErrorKind.UNSUPPORTED_DATE_FORMAT, fmt)
            self.date_format = fmt  # type: ignore[assignment]
        elif name == b"done":
            self.done_required = True
        return feature

    def _parse_option(self, arg: bytes) -> OptionGit | OptionOther:
        comments = self._take_comments()
        if not arg.startswith(b"git "):
            return OptionOther(arg, comments=comments)
        flag = arg[4:]
        if not flag.startswith(b"--"):
            raise FatalParseError(ParseErrorKind.UNSUPPORTED_OPTION, repr(flag))
        raw_name, sep, value = flag[2:].partition(b"=")
        name = raw_name.decode("ascii", "replace")
        if name in SIZE_OPTIONS and sep:
            size = parse_file_size(value)
            if name == "big-file-threshold":
                self.big_file_threshold = size.num_bytes
            return OptionGit(name, size, comments=comments)
        if name in COUNT_OPTIONS and sep:
            return OptionGit(name, parse_uint(value, bits=32), comments=comments)
        if name == "export-pack-edges" and sep and value:
            return OptionGit(name, value, comments=comments)
        if name in FLAG_OPTIONS and not sep:
            return OptionGit(name, None, comments=comments)
        raise FatalParseError(ParseErrorKind.UNSUPPORTED_OPTION, repr(flag))


def _find_any(ident: bytes, start: int) -> int:
    """Index of the first ``<`` or ``>`` at or after start, or -1."""
    for i in range(start, len(ident)):
        if ident[i] in (0x3C, 0x3E):
            return i
    return -1


def parse(source: BinaryIO | bytes, **kwargs) -> list[Command]:
    """Parse a whole stream, loading every blob payload into memory."""
    commands = []
    lexer = Lexer(source, **kwargs)
    for command in lexer:
        if isinstance(command, Blob):
            # Load before the next command skips the payload.
            command.data
        commands.append(command)
    return commands
