"""
Dependency-tracked memoization for the generation pipeline.

`TaskGraph` is a small pull-evaluated build graph. Inputs are set from the
outside and stamped with a revision; derived queries record which nodes they
read while computing, and are revalidated on the next read by checking
whether any of those dependencies changed since the query was last verified.
A recomputed value equal to the previous one keeps its old change stamp, so
nodes downstream of it are not recomputed (early cutoff).

The stream operators (`InputStream.map`, `.flatten`, `.collect`, `.join`)
build keyed families of queries on top of the graph.
"""
from __future__ import annotations

import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, Iterator, Optional

from .diagnostics import (
    UNEXPECTED_FAILURE,
    DeclarationError,
    Diagnostic,
    GenerationCancelled,
    GeneratorError,
    SourceLocation,
    sort_diagnostics,
)


QueryKey = tuple[Hashable, ...]
QueryFunction = Callable[..., Any]


class CycleError(GeneratorError):
    """A query (indirectly) read its own value while computing."""


# ============================================================
# Cancellation
# ============================================================

class CancellationToken:
    """Cooperative cancellation flag for one generation pass."""

    def __init__(self, generation: int = 0) -> None:
        self.generation = generation
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise GenerationCancelled(f"generation {self.generation} was cancelled")


# ============================================================
# Task graph
# ============================================================

@dataclass
class Memo:
    value: Any
    changed_at: int
    verified_at: int
    dependencies: tuple[QueryKey, ...] = ()


MISSING_INPUT = Memo(value=None, changed_at=0, verified_at=0)


class TaskGraph:
    """Memoized, revision-validated query graph."""

    def __init__(self) -> None:
        self.revision = 0
        self.executions: Counter[str] = Counter()
        self._queries: dict[str, QueryFunction] = {}
        self._inputs: dict[QueryKey, Memo] = {}
        self._memos: dict[QueryKey, Memo] = {}
        self._frames: list[list[QueryKey]] = []
        self._computing: set[QueryKey] = set()
        self._token: CancellationToken | None = None
        self._computed_this_pass: list[QueryKey] = []

    # -- definition --
    def define(self, query_name: str, function: QueryFunction) -> None:
        """Register a derived query; `function(graph, *args)` computes one key."""
        if query_name in self._queries:
            raise ValueError(f"Query already defined: {query_name}")
        self._queries[query_name] = function

    # -- inputs --
    def set_input(self, key: QueryKey, value: Any) -> bool:
        """Set an input value; returns True when it differs from the stored one."""
        if self._computing:
            raise GeneratorError("Inputs cannot change while a query is computing.")
        existing = self._inputs.get(key)
        if existing is not None and existing.value == value:
            return False
        self.revision += 1
        self._inputs[key] = Memo(value=value, changed_at=self.revision, verified_at=self.revision)
        return True

    def input_value(self, key: QueryKey) -> Any:
        return self._inputs.get(key, MISSING_INPUT).value

    # -- evaluation --
    def get(self, key: QueryKey) -> Any:
        """Read a node, recording it as a dependency of the query being computed."""
        if self._frames:
            self._frames[-1].append(key)
        return self._fetch(key).value

    def _fetch(self, key: QueryKey) -> Memo:
        query_name = key[0]
        if query_name not in self._queries:
            return self._inputs.get(key, MISSING_INPUT)

        memo = self._memos.get(key)
        if memo is not None:
            if memo.verified_at == self.revision:
                return memo
            if self._dependencies_unchanged(memo):
                memo.verified_at = self.revision
                return memo
        return self._execute(key, memo)

    def _dependencies_unchanged(self, memo: Memo) -> bool:
        for dependency_key in memo.dependencies:
            dependency_memo = self._fetch(dependency_key)
            if dependency_memo.changed_at > memo.verified_at:
                return False
        return True

    def _execute(self, key: QueryKey, previous: Memo | None) -> Memo:
        if key in self._computing:
            raise CycleError(f"Query cycle detected at {key!r}")
        if self._token is not None:
            self._token.raise_if_cancelled()

        query_name = str(key[0])
        frame: list[QueryKey] = []
        self._frames.append(frame)
        self._computing.add(key)
        try:
            value = self._queries[query_name](self, *key[1:])
        finally:
            self._frames.pop()
            self._computing.discard(key)

        self.executions[query_name] += 1
        changed_at = previous.changed_at if previous is not None and previous.value == value else self.revision
        memo = Memo(
            value=value,
            changed_at=changed_at,
            verified_at=self.revision,
            dependencies=tuple(dict.fromkeys(frame)),
        )
        self._memos[key] = memo
        self._computed_this_pass.append(key)
        return memo

    # -- passes --
    @contextmanager
    def generation_pass(self, token: CancellationToken | None = None) -> Iterator["TaskGraph"]:
        """
        Scope one pull-evaluation pass.

        When the token is cancelled the pass stops at the next query boundary
        and every memo computed during the pass is discarded.
        """
        self._token = token
        self._computed_this_pass = []
        try:
            yield self
        except GenerationCancelled:
            for computed_key in self._computed_this_pass:
                self._memos.pop(computed_key, None)
            raise
        finally:
            self._token = None
            self._computed_this_pass = []

    # -- stream factories --
    def input_stream(self, name: str) -> "InputStream":
        return InputStream(self, name)

    def value(self, name: str, function: Callable[["TaskGraph"], Any]) -> "DerivedValue":
        return DerivedValue(self, name, function)


# ============================================================
# Values and streams
# ============================================================

@dataclass(frozen=True)
class Outcome:
    """Result of one fault-isolated item computation."""
    value: Any = None
    diagnostics: tuple[Diagnostic, ...] = ()


@dataclass(frozen=True)
class JoinPair:
    left: Any
    right: tuple[Any, ...] = field(default_factory=tuple)


def _sorted_keys(keys: Iterable[Hashable]) -> tuple[Hashable, ...]:
    return tuple(sorted(set(keys), key=lambda key: (type(key).__name__, key)))


def run_isolated(function: Callable[[Any], Any], value: Any, *, item_label: str) -> Outcome:
    """Run one item handler; failures become diagnostics instead of aborting the pass."""
    try:
        result = function(value)
    except GenerationCancelled:
        raise
    except DeclarationError as declaration_error:
        return Outcome(value=None, diagnostics=(declaration_error.diagnostic,))
    except Exception as unexpected_error:  # any handler failure stays with its item
        diagnostic = Diagnostic(
            diagnostic_id=UNEXPECTED_FAILURE,
            severity="error",
            message=f"{type(unexpected_error).__name__} while processing {item_label}: {unexpected_error}",
            location=SourceLocation(path=item_label),
        )
        return Outcome(value=None, diagnostics=(diagnostic,))
    if isinstance(result, Outcome):
        return result
    return Outcome(value=result)


class DerivedValue:
    """A single memoized value computed from other nodes."""

    def __init__(self, graph: TaskGraph, name: str, function: Callable[[TaskGraph], Any]) -> None:
        self.graph = graph
        self.name = name
        graph.define(name, function)

    def get(self) -> Any:
        return self.graph.get((self.name,))


class Stream:
    """A keyed family of nodes; absent items read as None."""

    def __init__(self, graph: TaskGraph, name: str) -> None:
        self.graph = graph
        self.name = name

    def keys(self) -> tuple[Hashable, ...]:
        raise NotImplementedError

    def item(self, key: Hashable) -> Any:
        raise NotImplementedError

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return ()

    def items(self) -> list[tuple[Hashable, Any]]:
        return [(key, value) for key in self.keys() if (value := self.item(key)) is not None]

    # -- operators --
    def map(self, name: str, function: Callable[[Any], Any]) -> "MappedStream":
        return MappedStream(self.graph, name, self, function)

    def flatten(self, name: str, explode: Callable[[Any], Iterable[tuple[Hashable, Any]]]) -> "FlattenedStream":
        return FlattenedStream(self.graph, name, self, explode)

    def collect(self, name: str) -> "CollectedValue":
        return CollectedValue(self.graph, name, self)

    def join(
        self,
        name: str,
        right: "Stream",
        *,
        left_keys: Callable[[Any], Iterable[Hashable]],
        right_key: Callable[[Any], Hashable],
    ) -> "JoinedStream":
        return JoinedStream(self.graph, name, self, right, left_keys=left_keys, right_key=right_key)

    def combine(self, name: str, other: "DerivedValue | CollectedValue", function: Callable[[Any, Any], Any]) -> "MappedStream":
        """Pair every item with one shared value."""
        return MappedStream(self.graph, name, self, lambda value: function(value, other.get()))


class InputStream(Stream):
    """Items set from outside the graph, keyed by path or symbol identity."""

    def __init__(self, graph: TaskGraph, name: str) -> None:
        super().__init__(graph, name)
        self._keys_key: QueryKey = (f"{name}.keys",)

    def keys(self) -> tuple[Hashable, ...]:
        return self.graph.get(self._keys_key) or ()

    def item(self, key: Hashable) -> Any:
        return self.graph.get((f"{self.name}.item", key))

    def replace_all(self, items_by_key: dict[Hashable, Any]) -> set[Hashable]:
        """Make the stream hold exactly these items; returns the keys that changed."""
        previous_keys = set(self.graph.input_value(self._keys_key) or ())
        changed_keys: set[Hashable] = set()
        for removed_key in previous_keys - set(items_by_key):
            if self.graph.set_input((f"{self.name}.item", removed_key), None):
                changed_keys.add(removed_key)
        for key, value in items_by_key.items():
            if self.graph.set_input((f"{self.name}.item", key), value):
                changed_keys.add(key)
        self.graph.set_input(self._keys_key, _sorted_keys(items_by_key))
        return changed_keys

    def update(self, changed: dict[Hashable, Any], removed: Iterable[Hashable] = ()) -> set[Hashable]:
        """Apply a partial change set."""
        current = {key: self.graph.input_value((f"{self.name}.item", key)) for key in self.graph.input_value(self._keys_key) or ()}
        for removed_key in removed:
            current.pop(removed_key, None)
        current.update(changed)
        return self.replace_all(current)


class MappedStream(Stream):
    """Per-item transform with fault isolation at the item boundary."""

    def __init__(self, graph: TaskGraph, name: str, source: Stream, function: Callable[[Any], Any]) -> None:
        super().__init__(graph, name)
        self.source = source
        self.function = function
        graph.define(f"{name}.outcome", self._compute_outcome)
        graph.define(f"{name}.item", lambda g, key: g.get((f"{name}.outcome", key)).value)
        graph.define(f"{name}.diagnostics", self._compute_diagnostics)

    def _compute_outcome(self, graph: TaskGraph, key: Hashable) -> Outcome:
        source_value = self.source.item(key)
        if source_value is None:
            return Outcome()
        return run_isolated(self.function, source_value, item_label=str(key))

    def _compute_diagnostics(self, graph: TaskGraph) -> tuple[Diagnostic, ...]:
        collected: list[Diagnostic] = list(self.source.diagnostics())
        for key in self.keys():
            collected.extend(graph.get((f"{self.name}.outcome", key)).diagnostics)
        return sort_diagnostics(collected)

    def keys(self) -> tuple[Hashable, ...]:
        return self.source.keys()

    def item(self, key: Hashable) -> Any:
        return self.graph.get((f"{self.name}.item", key))

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return self.graph.get((f"{self.name}.diagnostics",))


class FlattenedStream(Stream):
    """One item per element of each source item; keys are (source_key, inner_key)."""

    def __init__(
        self,
        graph: TaskGraph,
        name: str,
        source: Stream,
        explode: Callable[[Any], Iterable[tuple[Hashable, Any]]],
    ) -> None:
        super().__init__(graph, name)
        self.source = source
        self.explode = explode
        graph.define(f"{name}.parts", self._compute_parts)
        graph.define(f"{name}.keys", self._compute_keys)
        graph.define(f"{name}.item", self._compute_item)

    def _compute_parts(self, graph: TaskGraph, source_key: Hashable) -> tuple[tuple[Hashable, Any], ...]:
        source_value = self.source.item(source_key)
        if source_value is None:
            return ()
        return tuple(self.explode(source_value))

    def _compute_keys(self, graph: TaskGraph) -> tuple[Hashable, ...]:
        flattened_keys: list[Hashable] = []
        for source_key in self.source.keys():
            for inner_key, _inner_value in graph.get((f"{self.name}.parts", source_key)):
                flattened_keys.append((source_key, inner_key))
        return _sorted_keys(flattened_keys)

    def _compute_item(self, graph: TaskGraph, key: tuple[Hashable, Hashable]) -> Any:
        source_key, wanted_inner_key = key
        for inner_key, inner_value in graph.get((f"{self.name}.parts", source_key)):
            if inner_key == wanted_inner_key:
                return inner_value
        return None

    def keys(self) -> tuple[Hashable, ...]:
        return self.graph.get((f"{self.name}.keys",))

    def item(self, key: Hashable) -> Any:
        return self.graph.get((f"{self.name}.item", key))

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return self.source.diagnostics()


class CollectedValue:
    """
    Aggregate of a stream: (key, value) pairs sorted by key, absent items dropped.

    Ordered by key rather than arrival, so it only changes when membership or
    an item's value changes.
    """

    def __init__(self, graph: TaskGraph, name: str, source: Stream) -> None:
        self.graph = graph
        self.name = name
        self.source = source
        graph.define(name, self._compute)

    def _compute(self, graph: TaskGraph) -> tuple[tuple[Hashable, Any], ...]:
        return tuple(self.source.items())

    def get(self) -> tuple[tuple[Hashable, Any], ...]:
        return self.graph.get((self.name,))

    def values(self) -> list[Any]:
        return [value for _key, value in self.get()]


class JoinedStream(Stream):
    """
    Pairs each left item with the right items sharing a join key.

    The right side is indexed once per change; each left item reads only the
    lookup nodes of its own join keys, so an edit on either side only
    invalidates the pairs it touches.
    """

    def __init__(
        self,
        graph: TaskGraph,
        name: str,
        left: Stream,
        right: Stream,
        *,
        left_keys: Callable[[Any], Iterable[Hashable]],
        right_key: Callable[[Any], Hashable],
    ) -> None:
        super().__init__(graph, name)
        self.left = left
        self.right = right
        self.left_keys = left_keys
        self.right_key = right_key
        graph.define(f"{name}.index", self._compute_index)
        graph.define(f"{name}.lookup", self._compute_lookup)
        graph.define(f"{name}.item", self._compute_item)

    def _compute_index(self, graph: TaskGraph) -> dict[Hashable, tuple[Any, ...]]:
        index: dict[Hashable, list[Any]] = {}
        for _right_item_key, right_value in self.right.items():
            index.setdefault(self.right_key(right_value), []).append(right_value)
        return {join_key: tuple(values) for join_key, values in index.items()}

    def _compute_lookup(self, graph: TaskGraph, join_key: Hashable) -> tuple[Any, ...]:
        return graph.get((f"{self.name}.index",)).get(join_key, ())

    def _compute_item(self, graph: TaskGraph, key: Hashable) -> Optional[JoinPair]:
        left_value = self.left.item(key)
        if left_value is None:
            return None
        matches: list[Any] = []
        for join_key in dict.fromkeys(self.left_keys(left_value)):
            for right_value in graph.get((f"{self.name}.lookup", join_key)):
                if right_value not in matches:
                    matches.append(right_value)
        return JoinPair(left=left_value, right=tuple(matches))

    def keys(self) -> tuple[Hashable, ...]:
        return self.left.keys()

    def item(self, key: Hashable) -> Any:
        return self.graph.get((f"{self.name}.item", key))

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return sort_diagnostics(self.left.diagnostics() + self.right.diagnostics())
