"""Write typed commands back out as a fast-import stream."""

from __future__ import annotations

import io
from typing import BinaryIO

from .data import Delimited, write_data
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
    ObjectRef,
    OptionGit,
    OptionOther,
    PersonIdent,
    Progress,
    Reset,
    Tag,
)
from .numbers import DateFormat, FileSize
from .quoting import quote_path

_COMMIT_BODY = (
    FileModify,
    FileDelete,
    FileRename,
    FileCopy,
    NoteModify,
    FileDeleteAll,
    Ls,
    CatBlob,
)


class Serializer:
    """Mirror of the Lexer.

    An entity the lexer produced and nobody modified is written back as
    the bytes it was parsed from. Payload framing may change when a
    payload was replaced.
    """

    def __init__(
        self,
        out: BinaryIO,
        *,
        date_format: DateFormat = "raw",
        quote_non_ascii: bool = False,
    ) -> None:
        self.out = out
        self.date_format: DateFormat = date_format
        self.quote_non_ascii = quote_non_ascii

    def write(self, command: Command) -> None:
        """Write one command, preceded by its comments."""
        self._comments(command.comments)
        writer = getattr(self, "_write_" + type(command).__name__.lower(), None)
        if writer is None:
            raise TypeError(f"Cannot serialize {type(command).__name__}")
        writer(command)

    # Helpers

    def _comments(self, comments: list[bytes]) -> None:
        for comment in comments:
            self.out.write(comment + b"\n")

    def _field_comments(self, fields: dict[str, list[bytes]], key: str) -> None:
        self._comments(fields.get(key, []))

    def _line(self, *parts: bytes) -> None:
        self.out.write(b" ".join(parts) + b"\n")

    def _path(self, path: bytes) -> bytes:
        return quote_path(path, quote_non_ascii=self.quote_non_ascii)

    def _ident(self, keyword: bytes, ident: PersonIdent) -> None:
        self._line(keyword, ident.to_bytes(self.date_format))

    def _mark(self, mark: int | None) -> None:
        if mark is not None:
            self.out.write(b"mark :%d\n" % mark)

    def _original_oid(self, oid: bytes | None) -> None:
        if oid is not None:
            self._line(b"original-oid", oid)

    def _lf(self, present: bool) -> None:
        if present:
            self.out.write(b"\n")

    @staticmethod
    def _ref(ref: ObjectRef | None) -> bytes:
        return b"inline" if ref is None else ref.to_bytes()

    # Commands

    def _write_blob(self, blob: Blob) -> None:
        fields = blob.field_comments
        self.out.write(b"blob\n")
        self._field_comments(fields, "mark")
        self._mark(blob.mark)
        self._field_comments(fields, "original_oid")
        self._original_oid(blob.original_oid)
        self._field_comments(fields, "data")
        if blob.loaded or blob.reader is None:
            delim = None
            if blob.reader is not None and isinstance(blob.reader.header, Delimited):
                delim = blob.reader.header.delim
            write_data(self.out, blob.data, delim=delim)
        else:
            write_data(self.out, blob.reader)
        self._lf(blob.optional_lf)

    def _write_commit(self, commit: Commit) -> None:
        fields = commit.field_comments
        self._line(b"commit", commit.ref)
        self._field_comments(fields, "mark")
        self._mark(commit.mark)
        self._field_comments(fields, "original_oid")
        self._original_oid(commit.original_oid)
        self._field_comments(fields, "author")
        if commit.author is not None:
            self._ident(b"author", commit.author)
        self._field_comments(fields, "committer")
        self._ident(b"committer", commit.committer)
        self._field_comments(fields, "encoding")
        if commit.encoding is not None:
            self._line(b"encoding", commit.encoding)
        self._field_comments(fields, "data")
        write_data(self.out, commit.message, delim=commit.message_delim)
        self._lf(commit.message_lf)
        self._field_comments(fields, "from")
        if commit.from_ref is not None:
            self._line(b"from", commit.from_ref.to_bytes())
        for i, merge in enumerate(commit.merges):
            self._field_comments(fields, "merge:%d" % i)
            self._line(b"merge", merge.to_bytes())
        # Comments of merges that graph repair removed.
        removed = sorted(int(key[6:]) for key in fields if key.startswith("merge:"))
        for i in removed:
            if i >= len(commit.merges):
                self._field_comments(fields, "merge:%d" % i)
        for change in commit.file_changes:
            self._write_change(change)
        self._field_comments(fields, "end")
        self._lf(commit.optional_lf)

    def _write_change(self, change) -> None:
        if not isinstance(change, _COMMIT_BODY):
            raise TypeError(f"Cannot serialize file change {type(change).__name__}")
        self._comments(change.comments)
        if isinstance(change, FileModify):
            self._line(b"M", change.mode, self._ref(change.dataref), self._path(change.path))
            if change.dataref is None:
                self._comments(change.data_comments)
                write_data(self.out, change.data or b"")
                self._lf(change.data_lf)
        elif isinstance(change, FileDelete):
            self._line(b"D", self._path(change.path))
        elif isinstance(change, FileRename):
            self._line(b"R", self._path(change.source), self._path(change.dest))
        elif isinstance(change, FileCopy):
            self._line(b"C", self._path(change.source), self._path(change.dest))
        elif isinstance(change, NoteModify):
            self._line(b"N", self._ref(change.dataref), change.commitish.to_bytes())
            if change.dataref is None:
                self._comments(change.data_comments)
                write_data(self.out, change.data or b"")
                self._lf(change.data_lf)
        elif isinstance(change, FileDeleteAll):
            self.out.write(b"deleteall\n")
        elif isinstance(change, Ls):
            self._write_ls(change)
        else:
            self._write_catblob(change)

    def _write_tag(self, tag: Tag) -> None:
        fields = tag.field_comments
        self._line(b"tag", tag.name)
        self._field_comments(fields, "mark")
        self._mark(tag.mark)
        self._field_comments(fields, "from")
        self._line(b"from", tag.from_ref.to_bytes())
        self._field_comments(fields, "original_oid")
        self._original_oid(tag.original_oid)
        self._field_comments(fields, "tagger")
        self._ident(b"tagger", tag.tagger)
        self._field_comments(fields, "data")
        write_data(self.out, tag.message, delim=tag.message_delim)
        self._lf(tag.optional_lf)

    def _write_reset(self, reset: Reset) -> None:
        self._line(b"reset", reset.ref)
        self._field_comments(reset.field_comments, "from")
        if reset.from_ref is not None:
            self._line(b"from", reset.from_ref.to_bytes())
        self._field_comments(reset.field_comments, "end")
        self._lf(reset.optional_lf)

    def _write_alias(self, alias: Alias) -> None:
        self.out.write(b"alias\n")
        self._field_comments(alias.field_comments, "mark")
        self._mark(alias.mark)
        self._field_comments(alias.field_comments, "to")
        self._line(b"to", alias.to.to_bytes())
        self._lf(alias.optional_lf)

    def _write_ls(self, ls: Ls) -> None:
        if ls.dataref is None:
            path = quote_path(ls.path, quote_non_ascii=self.quote_non_ascii, force=True)
            self._line(b"ls", path)
        else:
            self._line(b"ls", ls.dataref.to_bytes(), self._path(ls.path))

    def _write_catblob(self, cat_blob: CatBlob) -> None:
        self._line(b"cat-blob", cat_blob.dataref.to_bytes())

    def _write_getmark(self, get_mark: GetMark) -> None:
        self.out.write(b"get-mark :%d\n" % get_mark.mark)

    def _write_checkpoint(self, checkpoint: Checkpoint) -> None:
        self.out.write(b"checkpoint\n")
        self._lf(checkpoint.optional_lf)

    def _write_progress(self, progress: Progress) -> None:
        self._line(b"progress", progress.message)
        self._lf(progress.optional_lf)

    def _write_feature(self, feature: Feature) -> None:
        if feature.arg is None:
            self._line(b"feature", feature.name)
        else:
            self._line(b"feature", feature.name + b"=" + feature.arg)

    def _write_optiongit(self, option: OptionGit) -> None:
        flag = b"--" + option.name.encode("ascii")
        value = option.value
        if isinstance(value, FileSize):
            flag += b"=" + value.to_bytes()
        elif isinstance(value, int):
            flag += b"=%d" % value
        elif isinstance(value, bytes):
            flag += b"=" + value
        self._line(b"option git", flag)

    def _write_optionother(self, option: OptionOther) -> None:
        self._line(b"option", option.line)

    def _write_done(self, done: Done) -> None:
        if done.explicit:
            self.out.write(b"done\n")


def dumps(command: Command, **kwargs) -> bytes:
    """Serialize one command to bytes."""
    out = io.BytesIO()
    Serializer(out, **kwargs).write(command)
    return out.getvalue()
