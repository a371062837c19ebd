"""Typed hook registration and dispatch."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from .errors import ConfigurationError, PolicyWarning, Severity, StreamPosition

if TYPE_CHECKING:
    from .graph import GraphRewriter
    from .marks import MarkTable


class HookCategory(enum.Enum):
    FILENAME = "filename"
    MESSAGE = "message"
    NAME = "name"
    EMAIL = "email"
    REFNAME = "refname"
    BLOB = "blob"
    COMMIT = "commit"
    TAG = "tag"
    RESET = "reset"
    PROGRESS = "progress"
    CHECKPOINT = "checkpoint"
    DONE = "done"


# Evaluation order. Field hooks run on an entity's pieces before the
# entity hook sees the whole.
HOOK_ORDER: tuple[HookCategory, ...] = tuple(HookCategory)

FIELD_HOOKS = frozenset(
    [
        HookCategory.FILENAME,
        HookCategory.MESSAGE,
        HookCategory.NAME,
        HookCategory.EMAIL,
        HookCategory.REFNAME,
    ]
)


class Outcome(enum.Enum):
    """Control results an entity hook can return besides a replacement."""

    DROP = "drop"


FieldHook = Callable[[bytes], "bytes | None"]
EntityHook = Callable[[Any, "HookContext"], Any]


@dataclass
class HookContext:
    """What an entity hook can see besides the entity itself.

    Valid only while the current entity is being processed.
    """

    position: StreamPosition | None
    marks: MarkTable
    graph: GraphRewriter
    warnings: list[PolicyWarning] = field(default_factory=list)

    def warn(self, message: str, severity: Severity = Severity.WARN) -> None:
        """Surface a non-fatal finding to the caller."""
        self.warnings.append(PolicyWarning(severity, message, self.position))


@dataclass(frozen=True)
class Registration:
    fn: Callable
    exclusive: bool


class HookRegistry:
    """Hooks by category, run in registration order within a category.

    A hook registered with ``exclusive=True`` claims sole ownership of
    its category; any second registration there is a ConfigurationError.

    Example:
        hooks = HookRegistry()

        @hooks.on("filename")
        def strip_vendor(path):
            return None if path.startswith(b"vendor/") else path
    """

    def __init__(self) -> None:
        self._hooks: dict[HookCategory, list[Registration]] = {
            category: [] for category in HOOK_ORDER
        }

    @staticmethod
    def _category(category: HookCategory | str) -> HookCategory:
        try:
            return HookCategory(category)
        except ValueError as err:
            raise ConfigurationError(f"Unknown hook category: {category!r}") from err

    def register(
        self,
        category: HookCategory | str,
        fn: Callable,
        *,
        exclusive: bool = False,
    ) -> Callable:
        """Add a hook.

        Raises:
            ConfigurationError: For an unknown category, a non-callable,
                or a conflict with an exclusive hook.
        """
        category = self._category(category)
        if not callable(fn):
            raise ConfigurationError(f"Hook for {category.value} is not callable: {fn!r}")
        existing = self._hooks[category]
        if existing and (exclusive or any(r.exclusive for r in existing)):
            raise ConfigurationError(
                f"Exclusive hook conflict for {category.value}: "
                f"{len(existing)} hook(s) already registered"
            )
        existing.append(Registration(fn, exclusive))
        return fn

    def on(self, category: HookCategory | str, *, exclusive: bool = False):
        """Decorator form of register()."""

        def decorator(fn: Callable) -> Callable:
            return self.register(category, fn, exclusive=exclusive)

        return decorator

    def hooks(self, category: HookCategory | str) -> list[Callable]:
        return [r.fn for r in self._hooks[self._category(category)]]

    def __contains__(self, category: HookCategory | str) -> bool:
        return bool(self._hooks[self._category(category)])

    def run_field(self, category: HookCategory, value: bytes) -> bytes | None:
        """Pass ``value`` through each field hook of ``category``.

        Only filename hooks may return None, which removes the change.
        """
        for registration in self._hooks[category]:
            result = registration.fn(value)
            if result is None and category is HookCategory.FILENAME:
                return None
            if not isinstance(result, bytes):
                raise TypeError(
                    f"{category.value} hook returned {type(result).__name__}, expected bytes"
                )
            value = result
        return value

    def run_entity(self, category: HookCategory, entity: Any, ctx: HookContext) -> Any:
        """Run the entity hooks of ``category``.

        Returns:
            The entity (possibly mutated or replaced), or Outcome.DROP.
        """
        for registration in self._hooks[category]:
            result = registration.fn(entity, ctx)
            if result is None:
                continue
            if result is Outcome.DROP:
                return Outcome.DROP
            if type(result) is not type(entity):
                raise TypeError(
                    f"{category.value} hook returned {type(result).__name__}, "
                    f"expected {type(entity).__name__}"
                )
            entity = result
        return entity
