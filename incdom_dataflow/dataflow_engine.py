"""
incdom_dataflow.dataflow_engine
===============================

A generic monotone dataflow framework over :mod:`ctrlflow_graph` CFGs.

Theory
------
An analysis is defined by:

1.  **Lattice elements** that are immutable by convention, with structural
    equality, a deep ``copy``, a ``join`` that merges the facts arriving
    along several incoming edges, and a partial order ``leq``.
2.  A **transfer function** per CFG node.  It maps the node's incoming
    element to its outgoing element.
3.  An **initial value** given to every node before iteration ("not yet
    constrained") and a **start value** seeded at the entry node.

The driver iterates until a **fixpoint** is reached: no node's output
changes when its transfer function is re-applied to the join of its
predecessors' outputs.  Termination follows from finite lattice height
plus every transfer function being monotone; the driver does not try to
recover if that assumption is broken.

Canonical pool
--------------
Large CFGs assign many nodes the same lattice value.  Every element
produced during iteration is passed through :meth:`IntraproceduralAnalysis.recycle`,
which swaps it for an already-pooled ``equals`` instance when one exists.
Pooled elements are frozen; mutating one raises
:class:`~incdom_dataflow.errors.LatticeContractError`.  The pool belongs to a
single driver instance and is cleared at the start and end of each run.

Worklist algorithms
-------------------
``RPO`` (Reverse Post-Order, default)
    Priority worklist keyed by reverse post-order index.  Predecessors are
    processed before successors, converging in the fewest visits.
``FIFO``
    Simple BFS-like iteration.
``LIFO``
    Simple DFS-like iteration.

Every strategy reaches the same fixpoint; only the number of visits differs.

Public API
----------
    LatticeElement          - abstract base for lattice elements
    TransferFunction        - abstract base for transfer functions
    TransferFunctionId      - identity transfer function
    CanonicalPool           - per-run interning of lattice elements
    WorklistStrategy        - iteration order enum
    NodeState               - per-node fixpoint state
    AnalysisNode            - analysis data attached to one CFG node
    AnalysisInfo            - CFG node -> AnalysisNode map
    AnalysisConfig          - driver configuration
    DataflowResult          - read-only snapshot of a finished run
    IntraproceduralAnalysis - the fixpoint driver
"""

from __future__ import annotations

import abc
import enum
import heapq
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Deque,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from .ctrlflow_graph import CFG, CFGNode, validate_cfg
from .errors import (
    IncDomErrorCodes,
    LatticeContractError,
    MonotonicityError,
    NonTerminationError,
)

logger = logging.getLogger(__name__)


# ===========================================================================
# LATTICE ELEMENT: ABSTRACT BASE
# ===========================================================================

class LatticeElement(abc.ABC):
    """Abstract base class for dataflow lattice elements.

    Subclasses must provide:

    - ``copy()``            → a new, unfrozen element with equal contents.
    - ``equals(other)``     → structural equality.
    - ``structure_hash()``  → a hash consistent with ``equals``.
    - ``join(other)``       → the merge of two incoming facts.
    - ``leq(other)``        → the partial order; the driver only ever
      moves a node's output downwards in it.

    ``__eq__`` and ``__hash__`` delegate to ``equals`` and
    ``structure_hash`` so that elements can key a :class:`CanonicalPool`.
    Two elements that are ``equals`` must be interchangeable for every
    downstream computation; recycling relies on it.
    """

    def __init__(self) -> None:
        self._frozen = False

    @abc.abstractmethod
    def copy(self) -> "LatticeElement":
        """Return a deep copy that shares no mutable state with ``self``."""
        ...

    @abc.abstractmethod
    def equals(self, other: "LatticeElement") -> bool:
        """Structural equality."""
        ...

    @abc.abstractmethod
    def structure_hash(self) -> int:
        """Hash consistent with :meth:`equals`."""
        ...

    @abc.abstractmethod
    def join(self, other: "LatticeElement") -> "LatticeElement":
        """Merge two facts.  Neither operand is modified.

        The result may be one of the operands when the merge leaves it
        unchanged, so callers must :meth:`copy` before mutating.
        """
        ...

    @abc.abstractmethod
    def leq(self, other: "LatticeElement") -> bool:
        """Return ``True`` iff ``self ⊑ other``."""
        ...

    # ----- freezing ---------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Mark this element immutable.  Called when it enters a pool."""
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise LatticeContractError(
                f"attempt to mutate canonical element {self!r}",
                IncDomErrorCodes.FROZEN_MUTATION,
            )

    # ----- python protocol --------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LatticeElement):
            return NotImplemented
        return self.equals(other)

    def __hash__(self) -> int:
        return self.structure_hash()


# ===========================================================================
# TRANSFER FUNCTIONS
# ===========================================================================

class TransferFunction(abc.ABC):
    """Maps the element flowing into a CFG node to the element flowing out.

    One instance is bound to each CFG node when the analysis is set up and
    reused for every fixpoint iteration.  ``transfer`` must be
    deterministic and free of side effects other than recycling its
    result.
    """

    @abc.abstractmethod
    def transfer(self, in_value: LatticeElement) -> LatticeElement:
        ...

    def __call__(self, in_value: LatticeElement) -> LatticeElement:
        return self.transfer(in_value)


class TransferFunctionId(TransferFunction):
    """The identity: returns the incoming element itself."""

    def transfer(self, in_value: LatticeElement) -> LatticeElement:
        return in_value

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ===========================================================================
# CANONICAL POOL
# ===========================================================================

class CanonicalPool:
    """Interns structurally-equal lattice elements.

    ``recycle(e)`` returns the pooled instance ``equals`` to ``e`` if there
    is one, and otherwise freezes ``e``, pools it and returns it.  This only
    changes object identity, never analysis results.

    Attributes
    ----------
    hits : int
        Lookups answered with an existing instance.
    misses : int
        Lookups that added a new canonical instance.
    """

    def __init__(self) -> None:
        self._pool: Dict[LatticeElement, LatticeElement] = {}
        self.hits = 0
        self.misses = 0

    def recycle(self, element: LatticeElement) -> LatticeElement:
        canonical = self._pool.get(element)
        if canonical is not None:
            self.hits += 1
            return canonical
        element.freeze()
        self._pool[element] = element
        self.misses += 1
        return element

    def clear(self) -> None:
        self._pool.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, element: object) -> bool:
        return element in self._pool

    def __len__(self) -> int:
        return len(self._pool)

    def __iter__(self) -> Iterator[LatticeElement]:
        return iter(self._pool)

    def __repr__(self) -> str:
        return (
            f"CanonicalPool(size={len(self._pool)}, hits={self.hits}, "
            f"misses={self.misses})"
        )


# ===========================================================================
# WORKLIST
# ===========================================================================

class WorklistStrategy(enum.Enum):
    """Strategy for selecting the next worklist node."""
    RPO = "rpo"         # Reverse post-order priority (best for forward)
    FIFO = "fifo"
    LIFO = "lifo"


class _Worklist:
    """Duplicate-free worklist ordered according to a :class:`WorklistStrategy`."""

    def __init__(self, strategy: WorklistStrategy, order: List[CFGNode]) -> None:
        self._strategy = strategy
        self._priority: Dict[CFGNode, int] = {n: i for i, n in enumerate(order)}
        self._queued: Set[CFGNode] = set()
        self._heap: List[Tuple[int, int, CFGNode]] = []
        self._queue: Deque[CFGNode] = deque()
        for node in order:
            self.push(node)

    def push(self, node: CFGNode) -> None:
        if node in self._queued:
            return
        self._queued.add(node)
        if self._strategy is WorklistStrategy.RPO:
            heapq.heappush(self._heap, (self._priority[node], node.id, node))
        else:
            self._queue.append(node)

    def pop(self) -> CFGNode:
        if self._strategy is WorklistStrategy.RPO:
            node = heapq.heappop(self._heap)[2]
        elif self._strategy is WorklistStrategy.LIFO:
            node = self._queue.pop()
        else:
            node = self._queue.popleft()
        self._queued.discard(node)
        return node

    def __len__(self) -> int:
        return len(self._queued)


# ===========================================================================
# PER-NODE ANALYSIS DATA
# ===========================================================================

class NodeState(enum.Enum):
    """Fixpoint state of one CFG node."""
    UNINITIALIZED = "uninitialized"
    PROVISIONAL = "provisional"
    STABLE = "stable"


class AnalysisNode:
    """Analysis-specific data attached to one CFG node.

    Attributes
    ----------
    transfer_function : TransferFunction
        Bound once at setup.
    in_value, out_value : LatticeElement or None
        Element before / after the node's transfer function.
    state : NodeState
    updates : int
        How many times ``out_value`` changed during the run.
    """

    __slots__ = ("transfer_function", "in_value", "out_value", "state", "updates")

    def __init__(self, transfer_function: TransferFunction) -> None:
        self.transfer_function = transfer_function
        self.in_value: Optional[LatticeElement] = None
        self.out_value: Optional[LatticeElement] = None
        self.state = NodeState.UNINITIALIZED
        self.updates = 0

    def reset(self, initial: LatticeElement) -> None:
        self.in_value = initial
        self.out_value = initial
        self.state = NodeState.UNINITIALIZED
        self.updates = 0

    def __repr__(self) -> str:
        return (
            f"AnalysisNode(tf={self.transfer_function!r}, "
            f"state={self.state.value}, updates={self.updates})"
        )


class AnalysisInfo:
    """Map from CFG node to its :class:`AnalysisNode`."""

    def __init__(self) -> None:
        self._map: Dict[CFGNode, AnalysisNode] = {}

    def add(self, cfg_node: CFGNode, analysis_node: AnalysisNode) -> None:
        self._map[cfg_node] = analysis_node

    def get_analysis_node(self, cfg_node: CFGNode) -> AnalysisNode:
        return self._map[cfg_node]

    def get_transfer_function(self, cfg_node: CFGNode) -> TransferFunction:
        return self._map[cfg_node].transfer_function

    def __getitem__(self, cfg_node: CFGNode) -> AnalysisNode:
        return self._map[cfg_node]

    def __contains__(self, cfg_node: object) -> bool:
        return cfg_node in self._map

    def __iter__(self) -> Iterator[CFGNode]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def items(self):
        return self._map.items()

    def values(self):
        return self._map.values()


# ===========================================================================
# CONFIGURATION AND RESULT
# ===========================================================================

@dataclass
class AnalysisConfig:
    """Configuration for one fixpoint run."""
    strategy: WorklistStrategy = WorklistStrategy.RPO
    validate: bool = True                   # run validate_cfg before iterating
    check_monotonicity: bool = False        # raise on a growing output
    max_updates: Optional[int] = None       # None = unbounded
    clear_pool_on_finish: bool = True


@dataclass
class DataflowResult:
    """Read-only snapshot of a finished analysis run.

    Attributes
    ----------
    facts_in : Mapping
        CFG node → element before the node's transfer function.
    facts_out : Mapping
        CFG node → element after the node's transfer function.
    iterations : int
        Number of worklist pops.
    updates : int
        Number of times any node's output changed.
    elapsed_seconds : float
        Wall-clock time.
    pool_size, pool_hits : int
        Canonical pool statistics at the end of iteration.
    strategy : WorklistStrategy
        Iteration order used.
    """
    facts_in: Mapping[CFGNode, LatticeElement] = field(default_factory=dict)
    facts_out: Mapping[CFGNode, LatticeElement] = field(default_factory=dict)
    iterations: int = 0
    updates: int = 0
    elapsed_seconds: float = 0.0
    pool_size: int = 0
    pool_hits: int = 0
    strategy: WorklistStrategy = WorklistStrategy.RPO

    def fact_at(self, node: CFGNode, *, before: bool = True) -> Optional[LatticeElement]:
        """Return the element at *node*, before or after its transfer."""
        if before:
            return self.facts_in.get(node)
        return self.facts_out.get(node)


# ===========================================================================
# INTRAPROCEDURAL DRIVER
# ===========================================================================

class IntraproceduralAnalysis(abc.ABC):
    """Worklist fixpoint driver for forward intraprocedural analyses.

    Subclasses define the analysis through three hooks:
    :meth:`make_transfer_function`, :meth:`initial_value` and
    :meth:`start_value`.  Transfer functions are bound once in the
    constructor, so any attribute those hooks read must be set before
    calling ``super().__init__``.

    An instance is not thread-safe.  Analyse independent CFGs in parallel
    by giving each its own instance; instances share no state.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph.
    config : AnalysisConfig, optional
        Driver configuration.
    """

    def __init__(self, cfg: CFG, config: Optional[AnalysisConfig] = None) -> None:
        self.cfg = cfg
        self.config = config if config is not None else AnalysisConfig()
        self.pool = CanonicalPool()
        self.analysis_info = AnalysisInfo()
        self.result: Optional[DataflowResult] = None
        for node in cfg.nodes:
            self.analysis_info.add(node, AnalysisNode(self.make_transfer_function(node)))

    # ----- analysis hooks ---------------------------------------------------

    @abc.abstractmethod
    def make_transfer_function(self, node: CFGNode) -> TransferFunction:
        """Return the transfer function bound to *node*."""
        ...

    @abc.abstractmethod
    def initial_value(self) -> LatticeElement:
        """Element every node holds before it is first constrained."""
        ...

    @abc.abstractmethod
    def start_value(self) -> LatticeElement:
        """Element flowing into the entry node."""
        ...

    # ----- recycling --------------------------------------------------------

    def recycle(self, element: LatticeElement) -> LatticeElement:
        """Return the canonical instance of *element* for this run."""
        return self.pool.recycle(element)

    # ----- driver -----------------------------------------------------------

    def analyze(self) -> DataflowResult:
        """Run the analysis to fixpoint and return the result snapshot."""
        cfg = self.cfg
        config = self.config
        if config.validate:
            validate_cfg(cfg)

        t0 = time.monotonic()
        self.pool.clear()
        logger.info(
            "%s: analysing CFG %r (%d nodes, strategy=%s)",
            type(self).__name__, cfg.name, len(cfg.nodes), config.strategy.value,
        )

        initial = self.recycle(self.initial_value())
        start = self.recycle(self.start_value())
        for node in cfg.nodes:
            self.analysis_info[node].reset(initial)

        worklist = _Worklist(config.strategy, cfg.reverse_postorder())
        iterations = 0
        updates = 0

        while worklist:
            node = worklist.pop()
            iterations += 1
            anode = self.analysis_info[node]

            in_value = self._merge_incoming(node, start)
            anode.in_value = in_value
            out_value = anode.transfer_function.transfer(in_value)

            if out_value.equals(anode.out_value):
                anode.state = NodeState.STABLE
                continue

            if config.check_monotonicity and not out_value.leq(anode.out_value):
                raise MonotonicityError(
                    f"output grew from {anode.out_value!r} to {out_value!r}",
                    node=node,
                )

            anode.out_value = out_value
            anode.state = NodeState.PROVISIONAL
            anode.updates += 1
            updates += 1
            logger.debug("update %d: %r -> %r", updates, node, out_value)

            if config.max_updates is not None and updates > config.max_updates:
                raise NonTerminationError(
                    f"more than {config.max_updates} updates without reaching a fixpoint",
                    node=node,
                )

            for succ in cfg.successors_of(node):
                worklist.push(succ)

        # empty worklist: every provisional output has been confirmed
        for anode in self.analysis_info.values():
            anode.state = NodeState.STABLE

        elapsed = time.monotonic() - t0
        self.result = DataflowResult(
            facts_in=MappingProxyType(
                {n: a.in_value for n, a in self.analysis_info.items()}
            ),
            facts_out=MappingProxyType(
                {n: a.out_value for n, a in self.analysis_info.items()}
            ),
            iterations=iterations,
            updates=updates,
            elapsed_seconds=elapsed,
            pool_size=len(self.pool),
            pool_hits=self.pool.hits,
            strategy=config.strategy,
        )
        logger.info(
            "%s: fixpoint after %d iterations, %d updates, %d canonical elements "
            "(%.3fs)",
            type(self).__name__, iterations, updates, len(self.pool), elapsed,
        )

        if config.clear_pool_on_finish:
            self.pool.clear()
        return self.result

    def _merge_incoming(self, node: CFGNode, start: LatticeElement) -> LatticeElement:
        """Join the outputs of *node*'s predecessors (plus *start* at the entry)."""
        merged: Optional[LatticeElement] = start if node is self.cfg.entry else None
        for pred in self.cfg.predecessors_of(node):
            fact = self.analysis_info[pred].out_value
            merged = fact if merged is None else merged.join(fact)
        if merged is None:
            # no predecessors and not the entry: unreachable
            return self.analysis_info[node].in_value
        return self.recycle(merged)

    # ----- queries ----------------------------------------------------------

    def _require_result(self) -> DataflowResult:
        if self.result is None:
            raise RuntimeError(
                f"{type(self).__name__}.analyze() has not been run"
            )
        return self.result

    def get_in_value(self, node: CFGNode) -> LatticeElement:
        """Element flowing into *node* at the fixpoint."""
        return self._require_result().facts_in[node]

    def get_out_value(self, node: CFGNode) -> LatticeElement:
        """Element flowing out of *node* at the fixpoint."""
        return self._require_result().facts_out[node]

    def get_transfer_function(self, node: CFGNode) -> TransferFunction:
        return self.analysis_info.get_transfer_function(node)

    def node_state(self, node: CFGNode) -> NodeState:
        return self.analysis_info[node].state


__all__ = [
    "LatticeElement",
    "TransferFunction",
    "TransferFunctionId",
    "CanonicalPool",
    "WorklistStrategy",
    "NodeState",
    "AnalysisNode",
    "AnalysisInfo",
    "AnalysisConfig",
    "DataflowResult",
    "IntraproceduralAnalysis",
]
