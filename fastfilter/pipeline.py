"""The filter session: lexer, marks, hooks, graph repair and serializer."""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, BinaryIO, Literal, cast

from .data import CHUNK_SIZE, DEFAULT_BIG_FILE_THRESHOLD
from .errors import (
    ConfigurationError,
    FatalParseError,
    PolicyWarning,
    Severity,
    StreamPosition,
)
from .graph import Decision, GraphRewriter, PrunePolicy
from .hooks import HookCategory, HookContext, HookRegistry, Outcome
from .kv.base import KVStore
from .kv.memory import Memory
from .lexer import Lexer
from .marks import MarkTable
from .model import (
    VALID_MODES,
    Alias,
    Blob,
    CatBlob,
    Checkpoint,
    Command,
    Commit,
    Done,
    FileCopy,
    FileDelete,
    FileDeleteAll,
    FileModify,
    FileRename,
    GetMark,
    Ls,
    MarkRef,
    NoteModify,
    ObjectRef,
    PersonIdent,
    Progress,
    Reset,
    Tag,
)
from .numbers import DATE_FORMATS, DateFormat
from .refs import check_refname_format
from .serializer import Serializer

logger = logging.getLogger(__name__)

DroppedTagTarget = Literal["retarget", "drop"]
DROPPED_TAG_TARGETS = ("retarget", "drop")

DEFAULT_MAX_PATH_LENGTH = 4096

TAG_PREFIX = b"refs/tags/"

_FILE_CHANGES = (FileModify, FileDelete, FileRename, FileCopy, NoteModify, FileDeleteAll)

# Submodule entries point at commits in another repository.
GITLINK_MODE = b"160000"


@dataclass(frozen=True)
class FilterResult:
    """Summary of one filter session.

    Attributes:
        commands_read: Commands parsed from the input.
        commands_written: Commands written to the output, including
            resets added for refs whose commits were dropped.
        commits_dropped: Marks of dropped commits, in stream order.
        blobs_dropped: Number of blobs removed by hooks.
        warnings: Every policy warning, in order.
        commit_map: original-oid of each commit to its mark in the
            output, or None if the commit was dropped.
        commits_no_longer_merges: Marks of kept commits that lost
            merge parents.
    """

    commands_read: int
    commands_written: int
    commits_dropped: tuple[int, ...]
    blobs_dropped: int
    warnings: tuple[PolicyWarning, ...]
    commit_map: dict[bytes, int | None]
    commits_no_longer_merges: tuple[int, ...]


class Pipeline:
    """Runs one stream through the hooks and writes the rewritten stream.

    Single-threaded: each command is parsed, hooked, repaired and
    written before the next is read. A command is serialized in full
    before any of it reaches the output, so a fatal error leaves the
    output ending at the last complete command.

    Example:
        hooks = HookRegistry()
        hooks.register("filename", lambda p: None if p.endswith(b".bin") else p)
        result = Pipeline(hooks).run(src, dst)
    """

    def __init__(
        self,
        hooks: HookRegistry | None = None,
        *,
        store: KVStore | None = None,
        date_format: DateFormat = "raw",
        big_file_threshold: int = DEFAULT_BIG_FILE_THRESHOLD,
        quote_non_ascii: bool = False,
        prune_empty: PrunePolicy = "never",
        dropped_tag_target: DroppedTagTarget = "retarget",
        validate_refnames: bool = False,
        max_path_length: int = DEFAULT_MAX_PATH_LENGTH,
        validate_order: bool = False,
    ) -> None:
        if date_format not in DATE_FORMATS:
            raise ConfigurationError(f"Unknown date_format: {date_format!r}")
        if not isinstance(big_file_threshold, int) or big_file_threshold < 0:
            raise ConfigurationError(
                f"big_file_threshold must be a non-negative int, got {big_file_threshold!r}"
            )
        if dropped_tag_target not in DROPPED_TAG_TARGETS:
            raise ConfigurationError(
                f"Unknown dropped_tag_target: {dropped_tag_target!r}"
            )
        if not isinstance(max_path_length, int) or max_path_length <= 0:
            raise ConfigurationError(
                f"max_path_length must be a positive int, got {max_path_length!r}"
            )
        if hooks is None:
            hooks = HookRegistry()
        if store is None:
            store = Memory()
        self.hooks = hooks
        self.date_format: DateFormat = date_format
        self.big_file_threshold = big_file_threshold
        self.quote_non_ascii = quote_non_ascii
        self.dropped_tag_target = dropped_tag_target
        self.validate_refnames = validate_refnames
        self.max_path_length = max_path_length
        self.marks = MarkTable(store)
        self.graph = GraphRewriter(
            store, prune_empty=prune_empty, validate_order=validate_order
        )
        self.warnings: list[PolicyWarning] = []
        self.commit_map: dict[bytes, int | None] = {}
        self.commits_dropped: list[int] = []
        self.blobs_dropped = 0
        self._position: StreamPosition | None = None
        self._index = 0

    # Session

    def run(self, source: BinaryIO | bytes, out: BinaryIO) -> FilterResult:
        """Filter ``source`` into ``out``.

        Raises:
            FatalParseError: On malformed input; ``out`` then ends with the
                last fully written command.
        """
        lexer = Lexer(
            source,
            date_format=self.date_format,
            big_file_threshold=self.big_file_threshold,
        )
        read = written = 0
        while (command := lexer.next()) is not None:
            if not isinstance(command, Done) or command.explicit:
                read += 1
            self._index = lexer.command_index
            self._position = lexer.position()
            try:
                for item in self._process(command):
                    self._emit(item, out, lexer.date_format)
                    if not isinstance(item, Done) or item.explicit:
                        written += 1
            except FatalParseError as err:
                raise err.at(self._position)
        logger.info(
            "Filtered %d commands: %d written, %d commits dropped, %d warnings",
            read,
            written,
            len(self.commits_dropped),
            len(self.warnings),
        )
        return FilterResult(
            commands_read=read,
            commands_written=written,
            commits_dropped=tuple(self.commits_dropped),
            blobs_dropped=self.blobs_dropped,
            warnings=tuple(self.warnings),
            commit_map=dict(self.commit_map),
            commits_no_longer_merges=tuple(self.graph.commits_no_longer_merges),
        )

    def _emit(self, command: Command, out: BinaryIO, date_format: DateFormat) -> None:
        with tempfile.SpooledTemporaryFile(max_size=max(self.big_file_threshold, 1)) as buf:
            Serializer(
                buf,
                date_format=date_format,
                quote_non_ascii=self.quote_non_ascii,
            ).write(command)
            buf.seek(0)
            shutil.copyfileobj(buf, out, CHUNK_SIZE)

    def _process(self, command: Command) -> list[Command]:
        if isinstance(command, Blob):
            return self._process_blob(command)
        if isinstance(command, Commit):
            return self._process_commit(command)
        if isinstance(command, Tag):
            return self._process_tag(command)
        if isinstance(command, Reset):
            return self._process_reset(command)
        if isinstance(command, Alias):
            return self._process_alias(command)
        if isinstance(command, (Ls, CatBlob, GetMark)):
            return self._process_query(command)
        if isinstance(command, Progress):
            return self._process_simple(HookCategory.PROGRESS, command)
        if isinstance(command, Checkpoint):
            return self._process_simple(HookCategory.CHECKPOINT, command)
        if isinstance(command, Done):
            return self._process_done(command)
        return [command]

    # Helpers

    def warn(self, message: str, severity: Severity = Severity.WARN) -> None:
        self._record(PolicyWarning(severity, message, self._position))

    def _record(self, warning: PolicyWarning) -> None:
        self.warnings.append(warning)
        logger.warning("%s", warning)

    def _resolve(self, ref: ObjectRef, *kinds) -> bytes:
        identity = self.marks.resolve(ref, at=self._index)
        if kinds:
            self.marks.require_kind(ref, *kinds)
        return identity

    def _run_entity(self, category: HookCategory, entity: Any) -> Any:
        if category not in self.hooks:
            return entity
        ctx = HookContext(self._position, self.marks, self.graph)
        try:
            return self.hooks.run_entity(category, entity, ctx)
        finally:
            for warning in ctx.warnings:
                self._record(warning)

    def _field(self, category: HookCategory, value: bytes) -> bytes:
        if category not in self.hooks:
            return value
        # Only filename hooks may return None; see _path.
        return cast(bytes, self.hooks.run_field(category, value))

    def _path(self, path: bytes) -> bytes | None:
        return self.hooks.run_field(HookCategory.FILENAME, path)

    def _idents(self, *idents: PersonIdent | None) -> None:
        present = [ident for ident in idents if ident is not None]
        for ident in present:
            ident.name = self._field(HookCategory.NAME, ident.name)
        for ident in present:
            ident.email = self._field(HookCategory.EMAIL, ident.email)

    def _check_refname(self, ref: bytes) -> None:
        if not self.validate_refnames:
            return
        for error in check_refname_format(ref):
            self.warn(f"invalid refname {ref!r}: {error.value}")

    def _check_path(self, path: bytes) -> None:
        if len(path) > self.max_path_length:
            self.warn(
                f"path of {len(path)} bytes exceeds {self.max_path_length}: {path[:64]!r}..."
            )

    def _nameable(self, ref: ObjectRef | None) -> bool:
        """Unmarked commits cannot be named in the output."""
        if isinstance(ref, MarkRef) and ref.mark < 0:
            self.warn("cannot name an unmarked commit; parent omitted", Severity.ERROR)
            return False
        return True

    # Blobs

    def _process_blob(self, blob: Blob) -> list[Command]:
        if blob.mark is not None:
            self.marks.define(blob.mark, blob.original_oid, kind="blob", position=self._index)
        result = self._run_entity(HookCategory.BLOB, blob)
        if result is Outcome.DROP:
            self.blobs_dropped += 1
            if blob.mark is not None:
                self.marks.drop(blob.mark)
            return []
        return [result]

    # Commits

    def _process_commit(self, commit: Commit) -> list[Command]:
        self._resolve_commit_refs(commit)
        mark = commit.mark
        if mark is not None:
            self.marks.define(mark, commit.original_oid, kind="commit", position=self._index)
        self._check_changes(commit)
        had_changes = any(isinstance(c, _FILE_CHANGES) for c in commit.file_changes)
        self._commit_fields(commit)
        result = self._run_entity(HookCategory.COMMIT, commit)
        dropped = result is Outcome.DROP
        if not dropped:
            commit = result
            self._resolve_commit_refs(commit)
        self._check_refname(commit.ref)

        graph_mark = mark if mark is not None else self.graph.anonymous()
        implicit = commit.from_ref is None
        tip = self.graph.tip(commit.ref) if implicit else None
        if implicit:
            original = ([tip] if tip is not None else []) + list(commit.merges)
        else:
            original = commit.parents

        if not dropped:
            rewritten = self.graph.rewrite_parents(original)
            has_changes = any(isinstance(c, _FILE_CHANGES) for c in commit.file_changes)
            if self.graph.should_prune(
                original, rewritten, had_changes=had_changes, has_changes=has_changes
            ):
                logger.debug("pruning empty commit %r", commit.original_oid or mark)
                dropped = True

        if dropped:
            self.graph.drop(graph_mark, original)
            self.graph.set_tip(commit.ref, MarkRef(graph_mark))
            if mark is not None:
                self.marks.drop(mark)
                self.commits_dropped.append(mark)
            if commit.original_oid is not None:
                self.commit_map[commit.original_oid] = None
            return []

        rewritten = self.graph.keep(graph_mark, original)
        commit.from_ref, commit.merges = self._emitted_parents(
            commit.ref, rewritten, implicit=implicit
        )
        self.graph.set_tip(commit.ref, MarkRef(graph_mark))
        self.graph.emitted(commit.ref, MarkRef(graph_mark))
        if commit.original_oid is not None:
            self.commit_map[commit.original_oid] = mark
        return [commit]

    def _resolve_commit_refs(self, commit: Commit) -> None:
        for parent in commit.parents:
            self._resolve(parent, "commit", "tag")
        for change in commit.file_changes:
            if isinstance(change, FileModify) and change.dataref is not None:
                if change.mode == GITLINK_MODE:
                    self._resolve(change.dataref)
                else:
                    self._resolve(change.dataref, "blob")
            elif isinstance(change, NoteModify):
                if change.dataref is not None:
                    self._resolve(change.dataref, "blob")
                self._resolve(change.commitish, "commit", "tag")
            elif isinstance(change, Ls) and change.dataref is not None:
                self._resolve(change.dataref)
            elif isinstance(change, CatBlob):
                self._resolve(change.dataref, "blob")

    def _check_changes(self, commit: Commit) -> None:
        """Warn about odd modes and long paths; drop changes to dropped blobs."""
        kept = []
        for change in commit.file_changes:
            if isinstance(change, FileModify):
                if change.mode not in VALID_MODES:
                    if change.mode.startswith(b"0"):
                        self.warn(f"zero-padded file mode {change.mode!r} for {change.path!r}")
                    else:
                        self.warn(f"unknown file mode {change.mode!r} for {change.path!r}")
                if isinstance(change.dataref, MarkRef) and self.marks.is_dropped(
                    change.dataref.mark
                ):
                    logger.debug("removing %r: blob :%d was dropped", change.path, change.dataref.mark)
                    continue
                self._check_path(change.path)
            elif isinstance(change, NoteModify):
                if isinstance(change.dataref, MarkRef) and self.marks.is_dropped(
                    change.dataref.mark
                ):
                    continue
            elif isinstance(change, FileDelete):
                self._check_path(change.path)
            elif isinstance(change, (FileRename, FileCopy)):
                self._check_path(change.source)
                self._check_path(change.dest)
            kept.append(change)
        commit.file_changes = kept

    def _commit_fields(self, commit: Commit) -> None:
        if HookCategory.FILENAME in self.hooks:
            commit.file_changes = self._filter_paths(commit.file_changes)
        commit.message = self._field(HookCategory.MESSAGE, commit.message)
        self._idents(commit.author, commit.committer)
        commit.ref = self._field(HookCategory.REFNAME, commit.ref)

    def _filter_paths(self, changes: list) -> list:
        kept = []
        for change in changes:
            if isinstance(change, (FileModify, FileDelete)) or (
                isinstance(change, Ls) and change.dataref is None
            ):
                path = self._path(change.path)
                if path is None:
                    continue
                change.path = path
            elif isinstance(change, (FileRename, FileCopy)):
                source = self._path(change.source)
                dest = self._path(change.dest)
                if dest is None:
                    if source is not None and isinstance(change, FileRename):
                        kept.append(FileDelete(source, comments=change.comments))
                    continue
                if source is None:
                    self.warn(
                        f"source of {type(change).__name__} to {dest!r} was filtered out; "
                        "change removed"
                    )
                    continue
                change.source, change.dest = source, dest
            kept.append(change)
        return kept

    def _emitted_parents(
        self, ref: bytes, rewritten: list[ObjectRef], *, implicit: bool
    ) -> tuple[ObjectRef | None, list[ObjectRef]]:
        from_ref, merges = self.graph.emitted_parents(ref, rewritten, implicit=implicit)
        if from_ref is not None and not self._nameable(from_ref):
            from_ref = None
        return from_ref, [m for m in merges if self._nameable(m)]

    # Tags, resets, aliases

    def _process_tag(self, tag: Tag) -> list[Command]:
        self._resolve(tag.from_ref)
        if tag.mark is not None:
            self.marks.define(tag.mark, tag.original_oid, kind="tag", position=self._index)
        tag.message = self._field(HookCategory.MESSAGE, tag.message)
        self._idents(tag.tagger)
        full = self._field(HookCategory.REFNAME, TAG_PREFIX + tag.name)
        tag.name = full[len(TAG_PREFIX) :] if full.startswith(TAG_PREFIX) else full
        result = self._run_entity(HookCategory.TAG, tag)
        if result is Outcome.DROP:
            return self._drop_tag(tag)
        tag = result
        target = tag.from_ref
        if isinstance(target, MarkRef):
            if self.graph.decision(target.mark) is Decision.DROP:
                if self.dropped_tag_target == "drop":
                    self.warn(f"tag {tag.name!r} dropped with its commit", Severity.INFO)
                    return self._drop_tag(tag)
                new_target = self.graph.resolve_commitish(target)
                if new_target is None or not self._nameable(new_target):
                    self.warn(f"tag {tag.name!r} dropped: no surviving ancestor", Severity.INFO)
                    return self._drop_tag(tag)
                self.warn(f"tag {tag.name!r} moved to a surviving ancestor", Severity.INFO)
                tag.from_ref = new_target
            elif self.marks.is_dropped(target.mark):
                self.warn(f"tag {tag.name!r} dropped with its target", Severity.INFO)
                return self._drop_tag(tag)
        self._check_refname(TAG_PREFIX + tag.name)
        return [tag]

    def _drop_tag(self, tag: Tag) -> list[Command]:
        if tag.mark is not None:
            self.marks.drop(tag.mark)
        return []

    def _process_reset(self, reset: Reset) -> list[Command]:
        if reset.from_ref is not None:
            self._resolve(reset.from_ref)
        reset.ref = self._field(HookCategory.REFNAME, reset.ref)
        result = self._run_entity(HookCategory.RESET, reset)
        if result is Outcome.DROP:
            return []
        reset = result
        self._check_refname(reset.ref)
        target = reset.from_ref
        resolved = self.graph.resolve_commitish(target) if target is not None else None
        if target is not None and resolved is None:
            self.warn(f"reset of {reset.ref!r}: target and its ancestors were dropped", Severity.INFO)
        if resolved is not None and not self._nameable(resolved):
            resolved = None
        reset.from_ref = resolved
        if target is None:
            self.graph.clear_tip(reset.ref)
        else:
            self.graph.set_tip(reset.ref, target)
            self.graph.emitted(reset.ref, resolved)
        return [reset]

    def _process_alias(self, alias: Alias) -> list[Command]:
        identity = self._resolve(alias.to)
        target = alias.to
        kind = self.marks.kind_of(target.mark) if isinstance(target, MarkRef) else None
        self.marks.define(alias.mark, identity, kind=kind, position=self._index)
        if isinstance(target, MarkRef) and self.marks.is_dropped(target.mark):
            if self.graph.decision(target.mark) is None:
                self.marks.drop(alias.mark)
                return []
        resolved = self.graph.alias(alias.mark, target)
        if resolved is None or not self._nameable(resolved):
            self.marks.drop(alias.mark)
            return []
        alias.to = resolved
        return [alias]

    # Everything else

    def _process_query(self, command: Ls | CatBlob | GetMark) -> list[Command]:
        if isinstance(command, GetMark):
            ref: ObjectRef | None = MarkRef(command.mark)
        else:
            ref = command.dataref
        if ref is not None:
            self._resolve(ref)
            if isinstance(ref, MarkRef) and self.marks.is_dropped(ref.mark):
                self.warn(f"{type(command).__name__} names dropped object :{ref.mark}")
        return [command]

    def _process_simple(self, category: HookCategory, command: Command) -> list[Command]:
        result = self._run_entity(category, command)
        if result is Outcome.DROP:
            return []
        return [result]

    def _process_done(self, done: Done) -> list[Command]:
        out: list[Command] = []
        for ref, target in self.graph.pending_ref_updates():
            if target is None or not self._nameable(target):
                self.warn(f"every commit on {ref!r} was dropped")
                continue
            out.append(Reset(ref, target))
            self.graph.emitted(ref, target)
        result = self._run_entity(HookCategory.DONE, done)
        if result is not Outcome.DROP:
            out.append(result)
        return out


def filter_stream(
    source: BinaryIO | bytes,
    out: BinaryIO,
    *,
    hooks: HookRegistry | None = None,
    storage: Literal["memory", "disk"] = "memory",
    path: str | None = None,
    **options: Any,
) -> FilterResult:
    """Filter one stream with sensible defaults.

    Args:
        source: The fast-export stream (binary file or bytes).
        out: Binary file the rewritten stream is written to.
        hooks: Registered hooks; none means a pass-through.
        storage: ``"memory"`` (default) or ``"disk"`` for the mark table
            and graph memo.
        path: Required when ``storage="disk"``. Directory for the disk
            backend.
        **options: Passed to Pipeline.

    Returns:
        The session's FilterResult.

    Raises:
        ConfigurationError: For invalid storage or options.
    """
    if storage == "memory":
        backend: KVStore = Memory()
    elif storage == "disk":
        if path is None:
            raise ConfigurationError("path is required when storage='disk'")
        from .kv.disk import Disk

        backend = Disk(path)
    else:
        raise ConfigurationError(f"Unknown storage: {storage!r}")
    try:
        pipeline = Pipeline(hooks, store=backend, **options)
        return pipeline.run(source, out)
    finally:
        backend.close()
