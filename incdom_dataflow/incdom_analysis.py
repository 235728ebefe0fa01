"""
incdom_dataflow.incdom_analysis
===============================

Include-dominator analysis.

For every CFG node this computes the include nodes that are guaranteed to
have executed on *every* path from the entry to that node.  Dominance is a
"must" property, so the join of two incoming facts is set **intersection**:
an include dominates a merge point only if it dominated each incoming path.

Lattice conventions
-------------------
* The entry node is seeded with the empty set (nothing has been included
  before the script starts).
* Every other node starts at the *universal* set, the identity of
  intersection.  A node that still holds the universal set at the fixpoint
  is unreachable from the entry.
* An include node's own include counts only after it runs: it is in the
  node's *out* set, not its *in* set.

Usage example
-------------
::

    from incdom_dataflow import CFG, NodeKind, analyze_inc_dom

    cfg = CFG("index.php")
    a = cfg.new_node(NodeKind.INCLUDE, included_file="config.php")
    b = cfg.new_node(NodeKind.INCLUDE, included_file="config.php")
    cfg.chain(cfg.entry, a, b, cfg.exit)

    analysis = analyze_inc_dom(cfg)
    analysis.get_inc_doms(cfg.exit)      # (a, b)
    list(analysis.redundant_includes())  # [IncludeRedundancy(node=b, earlier=a)]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from .ctrlflow_graph import CFG, CFGNode, is_include_node
from .dataflow_engine import (
    AnalysisConfig,
    IntraproceduralAnalysis,
    LatticeElement,
    TransferFunction,
    TransferFunctionId,
)
from .errors import IncDomErrorCodes, LatticeContractError

logger = logging.getLogger(__name__)

IncludePredicate = Callable[[CFGNode], bool]


# ===========================================================================
# LATTICE ELEMENT
# ===========================================================================

class IncDomLatticeElement(LatticeElement):
    """Set of dominating include nodes, kept in first-execution order.

    Equality and hashing consider set membership only; the order is
    carried along for callers that want the include chain.
    """

    def __init__(self, include_nodes: Iterable[CFGNode] = ()) -> None:
        super().__init__()
        self._nodes: List[CFGNode] = []
        self._members: Set[CFGNode] = set()
        self._universal = False
        self._hash: Optional[int] = None
        for node in include_nodes:
            self.add(node)

    @classmethod
    def universal(cls) -> "IncDomLatticeElement":
        """The universal set: identity of :meth:`join`."""
        element = cls()
        element._universal = True
        return element

    # ----- accessors --------------------------------------------------------

    @property
    def is_universal(self) -> bool:
        return self._universal

    @property
    def include_nodes(self) -> Tuple[CFGNode, ...]:
        return tuple(self._nodes)

    def __contains__(self, node: object) -> bool:
        return self._universal or node in self._members

    def __iter__(self) -> Iterator[CFGNode]:
        if self._universal:
            raise TypeError("cannot iterate the universal include set")
        return iter(self._nodes)

    def __len__(self) -> int:
        if self._universal:
            raise TypeError("the universal include set has no finite size")
        return len(self._nodes)

    # ----- mutation ---------------------------------------------------------

    def add(self, node: CFGNode) -> None:
        """Insert *node*.  Adding a present node, or adding to the universal set, is a no-op."""
        self._check_mutable()
        if self._universal or node in self._members:
            return
        self._nodes.append(node)
        self._members.add(node)

    def freeze(self) -> None:
        super().freeze()
        self._hash = self._compute_hash()

    # ----- LatticeElement contract ------------------------------------------

    def copy(self) -> "IncDomLatticeElement":
        element = type(self)()
        element._nodes = list(self._nodes)
        element._members = set(self._members)
        element._universal = self._universal
        return element

    def equals(self, other: LatticeElement) -> bool:
        if self is other:
            return True
        if not isinstance(other, IncDomLatticeElement):
            return False
        if self._universal or other._universal:
            return self._universal and other._universal
        return self._members == other._members

    def structure_hash(self) -> int:
        if self._hash is not None:
            return self._hash
        return self._compute_hash()

    def _compute_hash(self) -> int:
        if self._universal:
            return hash((IncDomLatticeElement, True))
        return hash(frozenset(self._members))

    def join(self, other: LatticeElement) -> "IncDomLatticeElement":
        """Intersection.  The result keeps the receiver's order."""
        if not isinstance(other, IncDomLatticeElement):
            raise LatticeContractError(
                f"cannot join {type(self).__name__} with {type(other).__name__}",
                IncDomErrorCodes.INCOMPATIBLE_ELEMENTS,
            )
        if self._universal:
            return other
        if other._universal or self.equals(other):
            return self
        return type(self)(n for n in self._nodes if n in other._members)

    def leq(self, other: LatticeElement) -> bool:
        """Subset order; every set is below the universal set."""
        if not isinstance(other, IncDomLatticeElement):
            raise LatticeContractError(
                f"cannot compare {type(self).__name__} with {type(other).__name__}",
                IncDomErrorCodes.INCOMPATIBLE_ELEMENTS,
            )
        if other._universal:
            return True
        if self._universal:
            return False
        return self._members <= other._members

    def __repr__(self) -> str:
        if self._universal:
            return "IncDomLatticeElement(<universal>)"
        ids = ", ".join(f"N{n.id}" for n in self._nodes)
        return f"IncDomLatticeElement([{ids}])"


# ===========================================================================
# TRANSFER FUNCTIONS
# ===========================================================================

class IncDomTfAdd(TransferFunction):
    """Bound to an include node: adds that node to the incoming set."""

    def __init__(self, cfg_node: CFGNode, analysis: "IncDomAnalysis") -> None:
        self.cfg_node = cfg_node
        self.analysis = analysis

    def transfer(self, in_value: LatticeElement) -> LatticeElement:
        out = in_value.copy()
        out.add(self.cfg_node)
        return self.analysis.recycle(out)

    def __repr__(self) -> str:
        return f"IncDomTfAdd(N{self.cfg_node.id})"


class IncDomTfIdentity(TransferFunctionId):
    """Bound to every non-include node."""


# ===========================================================================
# ANALYSIS
# ===========================================================================

@dataclass(frozen=True)
class IncludeRedundancy:
    """*node* includes a file already included by the dominating *earlier*."""
    node: CFGNode
    earlier: CFGNode

    @property
    def included_file(self) -> Optional[str]:
        return self.node.included_file


class IncDomAnalysis(IntraproceduralAnalysis):
    """Include-dominator analysis over one CFG.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph.  It is validated by :meth:`analyze` unless
        ``config.validate`` is off.
    is_include : callable(CFGNode) -> bool
        Classifies include nodes.  Defaults to
        :func:`~incdom_dataflow.ctrlflow_graph.is_include_node`.
    config : AnalysisConfig, optional
        Driver configuration.
    """

    def __init__(
        self,
        cfg: CFG,
        is_include: IncludePredicate = is_include_node,
        config: Optional[AnalysisConfig] = None,
    ) -> None:
        self.is_include = is_include
        self._identity = IncDomTfIdentity()
        super().__init__(cfg, config)

    # ----- analysis hooks ---------------------------------------------------

    def make_transfer_function(self, node: CFGNode) -> TransferFunction:
        if self.is_include(node):
            return IncDomTfAdd(node, self)
        return self._identity

    def initial_value(self) -> IncDomLatticeElement:
        return IncDomLatticeElement.universal()

    def start_value(self) -> IncDomLatticeElement:
        return IncDomLatticeElement()

    # ----- queries ----------------------------------------------------------

    def is_reachable(self, node: CFGNode) -> bool:
        return not self.get_out_value(node).is_universal

    def get_inc_doms(self, node: CFGNode) -> Optional[Tuple[CFGNode, ...]]:
        """Include nodes dominating the point just after *node*.

        Returns ``None`` for nodes the entry cannot reach.
        """
        value = self.get_out_value(node)
        if value.is_universal:
            return None
        return value.include_nodes

    def get_inc_doms_before(self, node: CFGNode) -> Optional[Tuple[CFGNode, ...]]:
        """Include nodes dominating the point just before *node*."""
        value = self.get_in_value(node)
        if value.is_universal:
            return None
        return value.include_nodes

    def included_files(self, node: CFGNode) -> Tuple[str, ...]:
        """Files guaranteed to be included once *node* has executed."""
        doms = self.get_inc_doms(node) or ()
        seen: Dict[str, None] = {}
        for inc in doms:
            if inc.included_file is not None:
                seen.setdefault(inc.included_file, None)
        return tuple(seen)

    def dominator_map(self) -> Dict[CFGNode, Optional[Tuple[CFGNode, ...]]]:
        """``get_inc_doms`` for every node of the CFG."""
        return {node: self.get_inc_doms(node) for node in self.cfg.nodes}

    def redundant_includes(self) -> Iterator[IncludeRedundancy]:
        """Yield include nodes whose file is already included on every path.

        Only includes with a statically known ``included_file`` are
        considered.  The earliest dominating include of the same file is
        reported.
        """
        for node in self.cfg.nodes:
            if not self.is_include(node) or node.included_file is None:
                continue
            before = self.get_inc_doms_before(node)
            if not before:
                continue
            for earlier in before:
                if earlier.included_file == node.included_file:
                    yield IncludeRedundancy(node=node, earlier=earlier)
                    break


def analyze_inc_dom(
    cfg: CFG,
    is_include: IncludePredicate = is_include_node,
    config: Optional[AnalysisConfig] = None,
) -> IncDomAnalysis:
    """Build an :class:`IncDomAnalysis` for *cfg*, run it, and return it."""
    analysis = IncDomAnalysis(cfg, is_include=is_include, config=config)
    analysis.analyze()
    logger.debug("include dominators computed for CFG %r", cfg.name)
    return analysis


__all__ = [
    "IncDomLatticeElement",
    "IncDomTfAdd",
    "IncDomTfIdentity",
    "IncludeRedundancy",
    "IncDomAnalysis",
    "analyze_inc_dom",
]
