"""Hierarchical build metrics.

A :class:`MetricsContainer` maps metric names to either a leaf
:class:`ValueMetric` or a nested :class:`MetricsContainer`.  Every entry
also records the name of its declared parent metric.  :meth:`walk` uses
those links to present a nested view, so reporting sinks can derive dotted
names such as ``BUILD.CONFIGURATION`` regardless of how the containers
themselves are nested.

Structure::

    BUILD
      CONFIGURATION
      EXECUTION
        UP_TO_DATE_CHECKS
          UP_TO_DATE_CHECKS_BEFORE_TASK
          UP_TO_DATE_CHECKS_AFTER_TASK
        COMPILATION_TASKS
          BUILD_SRC_COMPILE
          <per task type container>
        NON_COMPILATION_TASKS
          <per task type container>
        FIRST_TEST_EXECUTION_WAITING
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

V = TypeVar("V")
W = TypeVar("W")


# ---------------------------------------------------------------------------
# TimeInterval
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class TimeInterval:
    """A duration with nanosecond resolution."""

    ns: int

    @classmethod
    def ms(cls, value: float) -> TimeInterval:
        """Create an interval from milliseconds."""
        return cls(int(round(value * 1_000_000)))

    @classmethod
    def seconds(cls, value: float) -> TimeInterval:
        """Create an interval from seconds."""
        return cls(int(round(value * 1_000_000_000)))

    @property
    def as_ns(self) -> int:
        return self.ns

    @property
    def as_ms(self) -> int:
        """Whole milliseconds (truncated)."""
        return self.ns // 1_000_000

    def __add__(self, other: object) -> TimeInterval:
        if not isinstance(other, TimeInterval):
            return NotImplemented
        return TimeInterval(self.ns + other.ns)

    def __str__(self) -> str:
        return f"{self.as_ms} ms"


ZERO_TIME = TimeInterval(0)


# ---------------------------------------------------------------------------
# Build phases
# ---------------------------------------------------------------------------


class PhaseMetric(enum.Enum):
    """Well-known time metrics and their place in the hierarchy."""

    BUILD = "BUILD"
    CONFIGURATION = "CONFIGURATION"
    EXECUTION = "EXECUTION"
    UP_TO_DATE_CHECKS = "UP_TO_DATE_CHECKS"
    UP_TO_DATE_CHECKS_BEFORE_TASK = "UP_TO_DATE_CHECKS_BEFORE_TASK"
    UP_TO_DATE_CHECKS_AFTER_TASK = "UP_TO_DATE_CHECKS_AFTER_TASK"
    COMPILATION_TASKS = "COMPILATION_TASKS"
    NON_COMPILATION_TASKS = "NON_COMPILATION_TASKS"
    BUILD_SRC_COMPILE = "BUILD_SRC_COMPILE"
    FIRST_TEST_EXECUTION_WAITING = "FIRST_TEST_EXECUTION_WAITING"

    @property
    def parent(self) -> PhaseMetric | None:
        return _PHASE_PARENTS.get(self)


_PHASE_PARENTS: dict[PhaseMetric, PhaseMetric] = {
    PhaseMetric.CONFIGURATION: PhaseMetric.BUILD,
    PhaseMetric.EXECUTION: PhaseMetric.BUILD,
    PhaseMetric.UP_TO_DATE_CHECKS: PhaseMetric.EXECUTION,
    PhaseMetric.UP_TO_DATE_CHECKS_BEFORE_TASK: PhaseMetric.UP_TO_DATE_CHECKS,
    PhaseMetric.UP_TO_DATE_CHECKS_AFTER_TASK: PhaseMetric.UP_TO_DATE_CHECKS,
    PhaseMetric.COMPILATION_TASKS: PhaseMetric.EXECUTION,
    PhaseMetric.NON_COMPILATION_TASKS: PhaseMetric.EXECUTION,
    PhaseMetric.BUILD_SRC_COMPILE: PhaseMetric.COMPILATION_TASKS,
    PhaseMetric.FIRST_TEST_EXECUTION_WAITING: PhaseMetric.EXECUTION,
}

# Always reported, whatever a scenario tracks: percentages are relative to
# the whole build and the configuration phase is the usual regression spot.
REQUIRED_TRACKED_METRICS: frozenset[str] = frozenset(
    {
        PhaseMetric.BUILD.value,
        f"{PhaseMetric.BUILD.value}.{PhaseMetric.CONFIGURATION.value}",
    }
)


def _metric_name(name: str | PhaseMetric) -> str:
    return name.value if isinstance(name, PhaseMetric) else name


# ---------------------------------------------------------------------------
# Metrics container
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValueMetric(Generic[V]):
    """A leaf metric."""

    value: V


@dataclass(frozen=True)
class _Entry(Generic[V]):
    metric: ValueMetric[V] | MetricsContainer[V]
    parent: str | None = None


class MetricsContainer(Generic[V]):
    """Ordered, named collection of metrics.

    Names are unique within one container; re-setting a name overwrites
    the entry in place, so insertion order stays deterministic.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry[V]] = {}

    # -- mutation -----------------------------------------------------------

    def set(
        self,
        name: str | PhaseMetric,
        metric: ValueMetric[V] | MetricsContainer[V],
        parent: str | PhaseMetric | None = None,
    ) -> None:
        """Insert or overwrite *name*, recording its declared *parent*.

        For a :class:`PhaseMetric` name the parent defaults to the phase's
        own parent.
        """
        if parent is None and isinstance(name, PhaseMetric):
            parent = name.parent
        self._entries[_metric_name(name)] = _Entry(
            metric,
            _metric_name(parent) if parent is not None else None,
        )

    def __setitem__(self, name: str | PhaseMetric, value: Any) -> None:
        if not isinstance(value, (ValueMetric, MetricsContainer)):
            value = ValueMetric(value)
        self.set(name, value)

    # -- access -------------------------------------------------------------

    def get_metric(self, name: str | PhaseMetric) -> ValueMetric[V] | MetricsContainer[V] | None:
        entry = self._entries.get(_metric_name(name))
        return entry.metric if entry is not None else None

    def get_value(self, name: str | PhaseMetric) -> V | None:
        """Return the leaf value stored under *name*, or None."""
        metric = self.get_metric(name)
        if isinstance(metric, ValueMetric):
            return metric.value
        return None

    def get_parent(self, name: str | PhaseMetric) -> str | None:
        entry = self._entries.get(_metric_name(name))
        return entry.parent if entry is not None else None

    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        if isinstance(name, PhaseMetric):
            name = name.value
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MetricsContainer({self.flatten()!r})"

    # -- structural operations ---------------------------------------------

    def map(self, transform: Callable[[V], W]) -> MetricsContainer[W]:
        """Return a container with the same shape and every leaf transformed."""
        result: MetricsContainer[W] = MetricsContainer()
        for name, entry in self._entries.items():
            metric = entry.metric
            mapped: ValueMetric[W] | MetricsContainer[W]
            if isinstance(metric, MetricsContainer):
                mapped = metric.map(transform)
            else:
                mapped = ValueMetric(transform(metric.value))
            result._entries[name] = _Entry(mapped, entry.parent)
        return result

    def merge(
        self,
        other: MetricsContainer[V],
        reduce: Callable[[V, V], V],
    ) -> MetricsContainer[V]:
        """Zip two containers together, reducing leaves pairwise.

        Entries present on only one side are carried over unchanged, in
        this container's order followed by the new names of *other*.

        Raises:
            ValueError: If a name is a leaf on one side and a container
                on the other.
        """
        result: MetricsContainer[V] = MetricsContainer()
        for name, entry in self._entries.items():
            other_entry = other._entries.get(name)
            if other_entry is None:
                result._entries[name] = entry
                continue
            result._entries[name] = _Entry(
                _merge_metrics(name, entry.metric, other_entry.metric, reduce),
                entry.parent,
            )
        for name, entry in other._entries.items():
            if name not in result._entries:
                result._entries[name] = entry
        return result

    def walk(
        self,
        visit: Callable[[str, V], None],
        on_enter: Callable[[str], None] | None = None,
        on_exit: Callable[[str], None] | None = None,
    ) -> None:
        """Depth-first traversal following declared parents.

        Roots are entries without a parent, or whose parent is not part of
        this container.  A leaf calls ``visit(name, value)``; a nested
        container is walked in place.  Children declared under a name are
        wrapped in ``on_enter(name)`` / ``on_exit(name)``.
        """
        children: dict[str | None, list[str]] = {}
        for name, entry in self._entries.items():
            parent = entry.parent
            if parent not in self._entries or parent == name:
                parent = None
            children.setdefault(parent, []).append(name)

        visited: set[str] = set()

        def walk_entry(name: str) -> None:
            visited.add(name)
            metric = self._entries[name].metric
            if isinstance(metric, MetricsContainer):
                metric.walk(visit, on_enter, on_exit)
            else:
                visit(name, metric.value)

            kids = [kid for kid in children.get(name, []) if kid not in visited]
            if not kids:
                return
            if on_enter is not None:
                on_enter(name)
            for kid in kids:
                if kid not in visited:
                    walk_entry(kid)
            if on_exit is not None:
                on_exit(name)

        for name in children.get(None, []):
            walk_entry(name)
        # Entries whose parents form a cycle are unreachable from any root.
        for name in self._entries:
            if name not in visited:
                walk_entry(name)

    def flatten(self) -> list[tuple[str, V]]:
        """Return ``(dotted name, value)`` pairs in walk order."""
        prefix: list[str] = []
        flat: list[tuple[str, V]] = []

        def visit(name: str, value: V) -> None:
            flat.append((".".join([*prefix, name]), value))

        self.walk(visit, on_enter=prefix.append, on_exit=lambda _name: prefix.pop())
        return flat


def _merge_metrics(
    name: str,
    left: ValueMetric[V] | MetricsContainer[V],
    right: ValueMetric[V] | MetricsContainer[V],
    reduce: Callable[[V, V], V],
) -> ValueMetric[V] | MetricsContainer[V]:
    if isinstance(left, MetricsContainer) and isinstance(right, MetricsContainer):
        return left.merge(right, reduce)
    if isinstance(left, ValueMetric) and isinstance(right, ValueMetric):
        return ValueMetric(reduce(left.value, right.value))
    raise ValueError(f"Cannot merge metric '{name}': a value and a container share the name")
