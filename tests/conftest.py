# tests/conftest.py
"""
Shared graph builders and fixtures for the incdom_dataflow test-suite.

The ``make_*`` helpers build the small CFG shapes the analyses are
exercised on and return a :class:`Graph` bundle so tests can refer to
nodes by name.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import pytest

from incdom_dataflow.ctrlflow_graph import (
    CFG,
    CFGNode,
    EdgeKind,
    NodeKind,
    reset_node_counter,
)


@dataclass
class Graph:
    cfg: CFG
    nodes: Dict[str, CFGNode] = field(default_factory=dict)

    def __getitem__(self, name: str) -> CFGNode:
        return self.nodes[name]


def include(cfg: CFG, included_file: Optional[str], linenr: int = 0) -> CFGNode:
    return cfg.new_node(
        NodeKind.INCLUDE,
        label=f"include '{included_file}'",
        included_file=included_file,
        file="index.php",
        linenr=linenr or None,
    )


def statement(cfg: CFG, label: str = "stmt") -> CFGNode:
    return cfg.new_node(NodeKind.STATEMENT, label=label)


def make_linear() -> Graph:
    """Entry -> A (include x.php) -> B (include x.php) -> Exit."""
    cfg = CFG("linear")
    a = include(cfg, "x.php", 1)
    b = include(cfg, "x.php", 2)
    cfg.chain(cfg.entry, a, b, cfg.exit)
    return Graph(cfg, {"entry": cfg.entry, "A": a, "B": b, "exit": cfg.exit})


def make_diamond() -> Graph:
    """Entry -> {A (include y.php), B} -> Merge -> Exit."""
    cfg = CFG("diamond")
    cond = cfg.new_node(NodeKind.BRANCH, label="if ($debug)")
    a = include(cfg, "y.php", 2)
    b = statement(cfg, "echo 1;")
    merge = statement(cfg, "merge")
    cfg.add_edge(cfg.entry, cond)
    cfg.add_edge(cond, a, EdgeKind.BRANCH_TRUE)
    cfg.add_edge(cond, b, EdgeKind.BRANCH_FALSE)
    cfg.add_edge(a, merge)
    cfg.add_edge(b, merge)
    cfg.add_edge(merge, cfg.exit)
    return Graph(cfg, {
        "entry": cfg.entry, "cond": cond, "A": a, "B": b,
        "merge": merge, "exit": cfg.exit,
    })


def make_loop() -> Graph:
    """Entry -> B (include z.php) -> C -> B (back edge); C -> Exit."""
    cfg = CFG("loop")
    b = include(cfg, "z.php", 3)
    c = cfg.new_node(NodeKind.BRANCH, label="while ($more)")
    cfg.add_edge(cfg.entry, b)
    cfg.add_edge(b, c)
    cfg.add_edge(c, b, EdgeKind.BACK_EDGE)
    cfg.add_edge(c, cfg.exit, EdgeKind.BRANCH_FALSE)
    return Graph(cfg, {"entry": cfg.entry, "B": b, "C": c, "exit": cfg.exit})


def make_nested() -> Graph:
    """A larger shape: include, branch with a loop on one arm, includes on
    both arms of a second branch, and an unreachable include."""
    cfg = CFG("nested")
    head = include(cfg, "head.php", 1)
    cond1 = cfg.new_node(NodeKind.BRANCH, label="if ($a)")
    loop_head = cfg.new_node(NodeKind.BRANCH, label="foreach ($xs)")
    loop_inc = include(cfg, "item.php", 4)
    other = statement(cfg, "echo 2;")
    join1 = statement(cfg, "join1")
    cond2 = cfg.new_node(NodeKind.BRANCH, label="if ($b)")
    left = include(cfg, "common.php", 8)
    right = include(cfg, "common.php", 10)
    join2 = statement(cfg, "join2")
    again = include(cfg, "head.php", 12)
    dead = include(cfg, "dead.php", 20)

    cfg.chain(cfg.entry, head, cond1)
    cfg.add_edge(cond1, loop_head, EdgeKind.BRANCH_TRUE)
    cfg.add_edge(loop_head, loop_inc, EdgeKind.BRANCH_TRUE)
    cfg.add_edge(loop_inc, loop_head, EdgeKind.BACK_EDGE)
    cfg.add_edge(loop_head, join1, EdgeKind.BRANCH_FALSE)
    cfg.add_edge(cond1, other, EdgeKind.BRANCH_FALSE)
    cfg.add_edge(other, join1)
    cfg.add_edge(join1, cond2)
    cfg.add_edge(cond2, left, EdgeKind.BRANCH_TRUE)
    cfg.add_edge(cond2, right, EdgeKind.BRANCH_FALSE)
    cfg.add_edge(left, join2)
    cfg.add_edge(right, join2)
    cfg.chain(join2, again, cfg.exit)
    cfg.add_edge(dead, cfg.exit)
    return Graph(cfg, {
        "entry": cfg.entry, "head": head, "cond1": cond1,
        "loop_head": loop_head, "loop_inc": loop_inc, "other": other,
        "join1": join1, "cond2": cond2, "left": left, "right": right,
        "join2": join2, "again": again, "dead": dead, "exit": cfg.exit,
    })


@pytest.fixture(autouse=True)
def _deterministic_node_ids():
    reset_node_counter()
    yield


@pytest.fixture()
def linear() -> Graph:
    return make_linear()


@pytest.fixture()
def diamond() -> Graph:
    return make_diamond()


@pytest.fixture()
def loop() -> Graph:
    return make_loop()


@pytest.fixture()
def nested() -> Graph:
    return make_nested()
