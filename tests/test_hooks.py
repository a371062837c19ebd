"""Tests for hook registration and dispatch."""

import pytest

from fastfilter.errors import ConfigurationError, Severity
from fastfilter.graph import GraphRewriter
from fastfilter.hooks import (
    HOOK_ORDER,
    HookCategory,
    HookContext,
    HookRegistry,
    Outcome,
)
from fastfilter.marks import MarkTable
from fastfilter.model import Progress, Reset


def context():
    return HookContext(None, MarkTable(), GraphRewriter())


class TestHookOrder:
    def test_fixed_order(self):
        assert [c.value for c in HOOK_ORDER] == [
            "filename",
            "message",
            "name",
            "email",
            "refname",
            "blob",
            "commit",
            "tag",
            "reset",
            "progress",
            "checkpoint",
            "done",
        ]


class TestRegistration:
    def test_register_by_name(self):
        hooks = HookRegistry()

        def hook(path):
            return path

        assert hooks.register("filename", hook) is hook
        assert "filename" in hooks
        assert hooks.hooks(HookCategory.FILENAME) == [hook]

    def test_decorator(self):
        hooks = HookRegistry()

        @hooks.on(HookCategory.MESSAGE)
        def upper(message):
            return message.upper()

        assert hooks.hooks("message") == [upper]

    def test_unknown_category(self):
        with pytest.raises(ConfigurationError, match="Unknown hook category"):
            HookRegistry().register("author", lambda v: v)

    def test_not_callable(self):
        with pytest.raises(ConfigurationError, match="not callable"):
            HookRegistry().register("filename", b"nope")

    def test_exclusive_after_other(self):
        hooks = HookRegistry()
        hooks.register("email", lambda v: v)
        with pytest.raises(ConfigurationError, match="Exclusive hook conflict"):
            hooks.register("email", lambda v: v, exclusive=True)

    def test_other_after_exclusive(self):
        hooks = HookRegistry()
        hooks.register("email", lambda v: v, exclusive=True)
        with pytest.raises(ConfigurationError, match="Exclusive hook conflict"):
            hooks.register("email", lambda v: v)

    def test_two_exclusive(self):
        hooks = HookRegistry()
        hooks.register("commit", lambda c, ctx: None, exclusive=True)
        with pytest.raises(ConfigurationError):
            hooks.register("commit", lambda c, ctx: None, exclusive=True)

    def test_exclusive_in_other_category(self):
        hooks = HookRegistry()
        hooks.register("email", lambda v: v, exclusive=True)
        hooks.register("name", lambda v: v)
        assert "name" in hooks


class TestFieldHooks:
    def test_chained_in_registration_order(self):
        hooks = HookRegistry()
        hooks.register("message", lambda m: m + b"1")
        hooks.register("message", lambda m: m + b"2")
        assert hooks.run_field(HookCategory.MESSAGE, b"x") == b"x12"

    def test_filename_none_stops(self):
        calls = []
        hooks = HookRegistry()
        hooks.register("filename", lambda p: None)
        hooks.register("filename", lambda p: calls.append(p) or p)
        assert hooks.run_field(HookCategory.FILENAME, b"a") is None
        assert calls == []

    def test_other_fields_must_return_bytes(self):
        hooks = HookRegistry()
        hooks.register("email", lambda e: None)
        with pytest.raises(TypeError, match="email hook returned NoneType"):
            hooks.run_field(HookCategory.EMAIL, b"a@example.com")

    def test_str_rejected(self):
        hooks = HookRegistry()
        hooks.register("name", lambda n: n.decode())
        with pytest.raises(TypeError, match="expected bytes"):
            hooks.run_field(HookCategory.NAME, b"A")


class TestEntityHooks:
    def test_none_keeps_mutation(self):
        hooks = HookRegistry()

        def rename(progress, ctx):
            progress.message = b"renamed"

        hooks.register("progress", rename)
        result = hooks.run_entity(HookCategory.PROGRESS, Progress(b"x"), context())
        assert result.message == b"renamed"

    def test_replacement(self):
        hooks = HookRegistry()
        hooks.register("progress", lambda p, ctx: Progress(b"new"))
        hooks.register("progress", lambda p, ctx: Progress(p.message + b"!"))
        result = hooks.run_entity(HookCategory.PROGRESS, Progress(b"old"), context())
        assert result == Progress(b"new!")

    def test_veto_stops_later_hooks(self):
        calls = []
        hooks = HookRegistry()
        hooks.register("reset", lambda r, ctx: Outcome.DROP)
        hooks.register("reset", lambda r, ctx: calls.append(r))
        result = hooks.run_entity(HookCategory.RESET, Reset(b"refs/heads/x"), context())
        assert result is Outcome.DROP
        assert calls == []

    def test_wrong_replacement_type(self):
        hooks = HookRegistry()
        hooks.register("progress", lambda p, ctx: Reset(b"refs/heads/x"))
        with pytest.raises(TypeError, match="progress hook returned Reset"):
            hooks.run_entity(HookCategory.PROGRESS, Progress(b"x"), context())

    def test_context_warn(self):
        ctx = context()
        ctx.warn("odd")
        ctx.warn("worse", Severity.ERROR)
        assert [(w.severity, w.message) for w in ctx.warnings] == [
            (Severity.WARN, "odd"),
            (Severity.ERROR, "worse"),
        ]
