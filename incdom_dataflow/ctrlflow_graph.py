"""
incdom_dataflow.ctrlflow_graph
==============================

In-memory control flow graphs consumed by the dataflow engine.

The graphs are built by an external front end (parsing and include
resolution are not part of this package).  A CFG here is a directed graph
of statement-level nodes; the only classification the engine cares about
is whether a node is an *include* node, i.e. a statement that pulls in
another source file at runtime.

Public API
----------
    NodeKind         - statement classification
    EdgeKind         - edge classification
    CFGNode          - a single CFG node
    CFGEdge          - a directed edge between two CFGNodes
    CFG              - the control flow graph for one function / script
    validate_cfg     - structural checks run before any analysis
    is_include_node  - default include predicate

Typical usage::

    from incdom_dataflow.ctrlflow_graph import CFG, NodeKind

    cfg = CFG("main.php")
    inc = cfg.new_node(NodeKind.INCLUDE, label="include 'a.php'",
                       included_file="a.php")
    cfg.add_edge(cfg.entry, inc)
    cfg.add_edge(inc, cfg.exit)
"""

from __future__ import annotations

import enum
import logging
from typing import (
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
)

from .errors import CFGStructureError, IncDomErrorCodes

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node and edge kinds
# ---------------------------------------------------------------------------


class NodeKind(enum.Enum):
    """Classification of a CFG node."""

    ENTRY = "entry"
    EXIT = "exit"
    STATEMENT = "statement"
    BRANCH = "branch"
    INCLUDE = "include"


class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    BACK_EDGE = "back-edge"


# ---------------------------------------------------------------------------
# CFGNode
# ---------------------------------------------------------------------------

_next_node_id: int = 0


def _fresh_node_id() -> int:
    global _next_node_id
    nid = _next_node_id
    _next_node_id += 1
    return nid


def reset_node_counter() -> None:
    """Reset the global node-id counter (useful for deterministic tests)."""
    global _next_node_id
    _next_node_id = 0


class CFGNode:
    """A node in the CFG.

    Attributes
    ----------
    id : int
        Unique (per-process) numeric identifier.
    kind : NodeKind
        Statement classification.
    label : str or None
        Free-form text, usually the statement source.
    included_file : str or None
        For include nodes, the file being included (if statically known).
    file, linenr
        Location of the statement, when the front end knows it.
    successors : list[CFGEdge]
        Outgoing edges.
    predecessors : list[CFGEdge]
        Incoming edges.
    """

    __slots__ = (
        "id",
        "kind",
        "label",
        "included_file",
        "file",
        "linenr",
        "successors",
        "predecessors",
    )

    def __init__(
        self,
        kind: NodeKind = NodeKind.STATEMENT,
        label: Optional[str] = None,
        included_file: Optional[str] = None,
        file: Optional[str] = None,
        linenr: Optional[int] = None,
    ) -> None:
        self.id: int = _fresh_node_id()
        self.kind: NodeKind = kind
        self.label = label
        self.included_file = included_file
        self.file = file
        self.linenr = linenr
        self.successors: List[CFGEdge] = []
        self.predecessors: List[CFGEdge] = []

    def describe(self) -> str:
        """Return a compact, human-readable label for this node."""
        text = self.label if self.label else f"[{self.kind.value}]"
        if self.file and self.linenr:
            return f"{self.file}:{self.linenr} {text}"
        return text

    def __repr__(self) -> str:
        return f"CFGNode(id={self.id}, kind={self.kind.value!r})"

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGNode):
            return self.id == other.id
        return NotImplemented


def is_include_node(node: CFGNode) -> bool:
    """Default include predicate: nodes classified as ``NodeKind.INCLUDE``."""
    return node.kind is NodeKind.INCLUDE


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

class CFGEdge:
    """Directed edge between two nodes of one CFG.

    Edges compare by identity, so two parallel edges of the same kind stay
    distinct in the successor and predecessor lists.
    """

    __slots__ = ("src", "dst", "kind")

    def __init__(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return f"CFGEdge(N{self.src.id} -> N{self.dst.id}, {self.kind.value})"


# ---------------------------------------------------------------------------
# DOT rendering tables
# ---------------------------------------------------------------------------

_DOT_NODE_FILL: Dict[NodeKind, str] = {
    NodeKind.ENTRY: "#ccffcc",
    NodeKind.EXIT: "#ffcccc",
}
_DOT_INCLUDE_FILL = "#ffffcc"
_DOT_EDGE_STYLE: Dict[EdgeKind, str] = {
    EdgeKind.BRANCH_TRUE: "color=green, fontcolor=green",
    EdgeKind.BRANCH_FALSE: "color=red, fontcolor=red",
    EdgeKind.BACK_EDGE: "style=dashed, color=blue, fontcolor=blue",
}


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Control flow graph for one function or top-level script.

    Attributes
    ----------
    name : str
        Name of the function / script this CFG represents.
    entry : CFGNode
        Synthetic entry node.
    exit : CFGNode
        Synthetic exit node.
    nodes : list[CFGNode]
        All nodes (including entry and exit), in insertion order.
    edges : list[CFGEdge]
        All edges.
    """

    def __init__(self, name: str = "<main>") -> None:
        self.name = name
        self.entry: Optional[CFGNode] = CFGNode(kind=NodeKind.ENTRY)
        self.exit = CFGNode(kind=NodeKind.EXIT)
        self.nodes: List[CFGNode] = [self.entry, self.exit]
        self.edges: List[CFGEdge] = []

    # ----- graph mutation ---------------------------------------------------

    def add_node(self, node: CFGNode) -> CFGNode:
        """Register *node* in this CFG and return it."""
        self.nodes.append(node)
        return node

    def new_node(
        self,
        kind: NodeKind = NodeKind.STATEMENT,
        label: Optional[str] = None,
        included_file: Optional[str] = None,
        file: Optional[str] = None,
        linenr: Optional[int] = None,
    ) -> CFGNode:
        """Create, register, and return a fresh node."""
        return self.add_node(
            CFGNode(kind, label=label, included_file=included_file,
                    file=file, linenr=linenr)
        )

    def add_edge(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        e = CFGEdge(src, dst, kind=kind)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        return e

    def chain(self, *nodes: CFGNode) -> None:
        """Connect *nodes* with fall-through edges, in order."""
        for src, dst in zip(nodes, nodes[1:]):
            self.add_edge(src, dst)

    # ----- queries ----------------------------------------------------------

    def successors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.dst for e in node.successors]

    def predecessors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.src for e in node.predecessors]

    def include_nodes(self, is_include=is_include_node) -> List[CFGNode]:
        """Return the nodes classified as includes by *is_include*."""
        return [n for n in self.nodes if is_include(n)]

    def reachable_from(self, start: CFGNode) -> Set[CFGNode]:
        """Return the set of nodes reachable from *start*."""
        visited: Set[CFGNode] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            for e in n.successors:
                worklist.append(e.dst)
        return visited

    def reverse_postorder(self) -> List[CFGNode]:
        """Return all nodes in reverse post-order from the entry.

        Nodes not reachable from the entry are appended afterwards, each
        unreachable region in its own reverse post-order.  The traversal is
        iterative so deep graphs do not hit the recursion limit.
        """
        visited: Set[CFGNode] = set()
        order: List[CFGNode] = []

        def dfs(root: CFGNode) -> List[CFGNode]:
            post: List[CFGNode] = []
            visited.add(root)
            stack: List[tuple] = [(root, iter(self.successors_of(root)))]
            while stack:
                node, succs = stack[-1]
                for succ in succs:
                    if succ not in visited:
                        visited.add(succ)
                        stack.append((succ, iter(self.successors_of(succ))))
                        break
                else:
                    stack.pop()
                    post.append(node)
            post.reverse()
            return post

        if self.entry is not None:
            order.extend(dfs(self.entry))
        for n in self.nodes:
            if n not in visited:
                order.extend(dfs(n))
        return order

    def __iter__(self) -> Iterator[CFGNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    # ----- serialisation helpers --------------------------------------------

    def to_dot(
        self,
        title: Optional[str] = None,
        is_include: Callable[[CFGNode], bool] = is_include_node,
    ) -> str:
        """Render the CFG as Graphviz DOT text.

        Nodes accepted by *is_include* are shaded and, when the included
        file is known, carry it as a second label line.
        """
        out = [
            "digraph CFG {",
            f'  label="{_dot_escape(title or self.name)}";',
            "  node [shape=box, fontname=monospace, fontsize=10];",
        ]
        for n in self.nodes:
            text = f"N{n.id}\\n{_dot_escape(n.describe())}"
            fill = _DOT_NODE_FILL.get(n.kind)
            if is_include(n):
                fill = _DOT_INCLUDE_FILL
                if n.included_file is not None:
                    text += f"\\n-> {_dot_escape(n.included_file)}"
            attrs = f'label="{text}"'
            if fill:
                attrs += f', style=filled, fillcolor="{fill}"'
            out.append(f"  N{n.id} [{attrs}];")
        for e in self.edges:
            attrs = f'label="{e.kind.value}"'
            extra = _DOT_EDGE_STYLE.get(e.kind)
            if extra:
                attrs += f", {extra}"
            out.append(f"  N{e.src.id} -> N{e.dst.id} [{attrs}];")
        out.append("}")
        return "\n".join(out)

    def __repr__(self) -> str:
        return (
            f"CFG(name={self.name!r}, nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )


# ===========================================================================
# VALIDATION
# ===========================================================================

def validate_cfg(cfg: CFG) -> None:
    """Reject structurally malformed graphs.

    Checks that the entry exists and is registered, that node ids are
    unique, that every edge connects registered nodes, and that each
    node's predecessor and successor lists mirror each other.

    Raises
    ------
    CFGStructureError
        On the first violation found.
    """
    if cfg.entry is None:
        raise CFGStructureError(
            f"CFG {cfg.name!r} has no entry node",
            IncDomErrorCodes.MISSING_ENTRY,
        )

    by_id: Dict[int, CFGNode] = {}
    for n in cfg.nodes:
        other = by_id.get(n.id)
        if other is not None and other is not n:
            raise CFGStructureError(
                f"node id {n.id} registered twice in CFG {cfg.name!r}",
                IncDomErrorCodes.DUPLICATE_NODE,
                node=n,
            )
        by_id[n.id] = n

    registered = set(map(id, cfg.nodes))
    if id(cfg.entry) not in registered:
        raise CFGStructureError(
            f"entry node of CFG {cfg.name!r} is not registered",
            IncDomErrorCodes.UNREGISTERED_ENTRY,
            node=cfg.entry,
        )

    for n in cfg.nodes:
        for e in n.successors:
            if e.src is not n:
                raise CFGStructureError(
                    f"successor edge {e!r} does not start at its owner",
                    IncDomErrorCodes.ASYMMETRIC_EDGE,
                    node=n,
                )
            if id(e.dst) not in registered:
                raise CFGStructureError(
                    f"edge {e!r} leads to a node outside CFG {cfg.name!r}",
                    IncDomErrorCodes.DANGLING_EDGE,
                    node=n,
                )
            if not any(p is e for p in e.dst.predecessors):
                raise CFGStructureError(
                    f"edge {e!r} missing from predecessors of its target",
                    IncDomErrorCodes.ASYMMETRIC_EDGE,
                    node=e.dst,
                )
        for e in n.predecessors:
            if e.dst is not n:
                raise CFGStructureError(
                    f"predecessor edge {e!r} does not end at its owner",
                    IncDomErrorCodes.ASYMMETRIC_EDGE,
                    node=n,
                )
            if id(e.src) not in registered:
                raise CFGStructureError(
                    f"edge {e!r} comes from a node outside CFG {cfg.name!r}",
                    IncDomErrorCodes.DANGLING_EDGE,
                    node=n,
                )
            if not any(s is e for s in e.src.successors):
                raise CFGStructureError(
                    f"edge {e!r} missing from successors of its source",
                    IncDomErrorCodes.ASYMMETRIC_EDGE,
                    node=e.src,
                )

    logger.debug("CFG %r validated: %d nodes, %d edges",
                 cfg.name, len(cfg.nodes), len(cfg.edges))


__all__ = [
    "NodeKind",
    "EdgeKind",
    "CFGNode",
    "CFGEdge",
    "CFG",
    "validate_cfg",
    "is_include_node",
    "reset_node_counter",
]
