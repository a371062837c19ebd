"""fastfilter: rewrite git fast-export streams through typed hooks."""

from .data import Counted, DataReader, Delimited, parse_data_header, write_data
from .errors import (
    CodecError,
    ConfigurationError,
    DuplicateMark,
    FatalParseError,
    MarkAlreadyFinal,
    ParseErrorKind,
    PolicyWarning,
    Severity,
    StreamPosition,
    UnknownMark,
)
from .graph import Decision, GraphRewriter
from .hooks import HOOK_ORDER, HookCategory, HookContext, HookRegistry, Outcome
from .kv.base import KVStore
from .lexer import Lexer, LexerState, parse
from .marks import MarkEntry, MarkTable
from .model import (
    Alias,
    Blob,
    CatBlob,
    Checkpoint,
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
    MarkRef,
    NoteModify,
    OidRef,
    OptionGit,
    OptionOther,
    PersonIdent,
    Progress,
    Reset,
    SymbolicRef,
    Tag,
    parse_object_ref,
)
from .numbers import Date, FileSize, parse_date, parse_file_size, parse_int, parse_uint
from .pipeline import FilterResult, Pipeline, filter_stream
from .quoting import quote_path, unquote_c_style
from .refs import RefnameError, check_refname_format
from .serializer import Serializer, dumps

__all__ = [
    "Alias",
    "Blob",
    "CatBlob",
    "Checkpoint",
    "CodecError",
    "Commit",
    "ConfigurationError",
    "Counted",
    "DataReader",
    "Date",
    "Decision",
    "Delimited",
    "Done",
    "DuplicateMark",
    "FatalParseError",
    "Feature",
    "FileCopy",
    "FileDelete",
    "FileDeleteAll",
    "FileModify",
    "FileRename",
    "FileSize",
    "FilterResult",
    "GetMark",
    "GraphRewriter",
    "HOOK_ORDER",
    "HookCategory",
    "HookContext",
    "HookRegistry",
    "KVStore",
    "Lexer",
    "LexerState",
    "Ls",
    "MarkAlreadyFinal",
    "MarkEntry",
    "MarkRef",
    "MarkTable",
    "NoteModify",
    "OidRef",
    "OptionGit",
    "OptionOther",
    "Outcome",
    "ParseErrorKind",
    "PersonIdent",
    "Pipeline",
    "PolicyWarning",
    "Progress",
    "RefnameError",
    "Reset",
    "Serializer",
    "Severity",
    "StreamPosition",
    "SymbolicRef",
    "Tag",
    "UnknownMark",
    "check_refname_format",
    "dumps",
    "filter_stream",
    "parse",
    "parse_data_header",
    "parse_date",
    "parse_file_size",
    "parse_int",
    "parse_object_ref",
    "parse_uint",
    "quote_path",
    "unquote_c_style",
    "write_data",
]
