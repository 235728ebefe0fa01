"""
incdom_dataflow: Include-Dominator Dataflow Analysis
=====================================================

This package computes, for every node of a control-flow graph of a
scripting language with dynamic file inclusion, the set of include
statements guaranteed to have executed on every path reaching that node.
Downstream checkers use these *include-dominator sets* to flag redundant,
circular, or order-dependent includes.

Core modules
------------
errors
    Error codes and the exception hierarchy.
ctrlflow_graph
    In-memory CFG model consumed by the analyses, plus validation.
dataflow_engine
    Generic monotone framework: lattice elements, transfer functions,
    the canonical pool and the worklist fixpoint driver.
incdom_analysis
    The include-dominator lattice, its transfer functions and driver.

Quick start
-----------
>>> from incdom_dataflow import CFG, NodeKind, analyze_inc_dom
>>> cfg = CFG("index.php")
>>> inc = cfg.new_node(NodeKind.INCLUDE, included_file="lib.php")
>>> cfg.chain(cfg.entry, inc, cfg.exit)
>>> analyze_inc_dom(cfg).get_inc_doms(cfg.exit) == (inc,)
True

Package layout
--------------
::

    incdom_dataflow/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── ctrlflow_graph.py
    ├── dataflow_engine.py
    └── incdom_analysis.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__author__ = "incdom-dataflow contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "IncDomError",
        "CFGStructureError",
        "LatticeContractError",
        "TransferFunctionDefect",
        "MonotonicityError",
        "NonTerminationError",
        "IncDomErrorCodes",
    ],
    "ctrlflow_graph": [
        "NodeKind",
        "EdgeKind",
        "CFGNode",
        "CFGEdge",
        "CFG",
        "validate_cfg",
        "is_include_node",
    ],
    "dataflow_engine": [
        "LatticeElement",
        "TransferFunction",
        "TransferFunctionId",
        "CanonicalPool",
        "WorklistStrategy",
        "NodeState",
        "AnalysisConfig",
        "DataflowResult",
        "IntraproceduralAnalysis",
    ],
    "incdom_analysis": [
        "IncDomLatticeElement",
        "IncDomTfAdd",
        "IncDomTfIdentity",
        "IncludeRedundancy",
        "IncDomAnalysis",
        "analyze_inc_dom",
    ],
}

# ---------------------------------------------------------------------------
# Import helper
# ---------------------------------------------------------------------------

def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    Parameters
    ----------
    module_rel_name:
        Module name relative to this package (e.g. ``"errors"``).
    names:
        Public symbols to re-export.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"incdom_dataflow: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(
                f"incdom_dataflow.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, obj)
        __all__.append(name)

    # Also expose the submodule itself as a package attribute so that
    #   incdom_dataflow.ctrlflow_graph.CFG
    # works in addition to
    #   incdom_dataflow.CFG
    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)
    _log.debug("Loaded %s (%d names)", fq_name, len(names))

# ---------------------------------------------------------------------------
# Eagerly import everything at package load time
# ---------------------------------------------------------------------------

for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

# Clean up loop variables from the module namespace
del _mod, _names

__all__.append("__version__")

# ---------------------------------------------------------------------------
# TYPE_CHECKING block: gives IDEs full visibility without runtime cost
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .errors import (
        IncDomError as IncDomError,
        CFGStructureError as CFGStructureError,
        LatticeContractError as LatticeContractError,
        TransferFunctionDefect as TransferFunctionDefect,
        MonotonicityError as MonotonicityError,
        NonTerminationError as NonTerminationError,
        IncDomErrorCodes as IncDomErrorCodes,
    )
    from .ctrlflow_graph import (
        NodeKind as NodeKind,
        EdgeKind as EdgeKind,
        CFGNode as CFGNode,
        CFGEdge as CFGEdge,
        CFG as CFG,
        validate_cfg as validate_cfg,
        is_include_node as is_include_node,
    )
    from .dataflow_engine import (
        LatticeElement as LatticeElement,
        TransferFunction as TransferFunction,
        TransferFunctionId as TransferFunctionId,
        CanonicalPool as CanonicalPool,
        WorklistStrategy as WorklistStrategy,
        NodeState as NodeState,
        AnalysisConfig as AnalysisConfig,
        DataflowResult as DataflowResult,
        IntraproceduralAnalysis as IntraproceduralAnalysis,
    )
    from .incdom_analysis import (
        IncDomLatticeElement as IncDomLatticeElement,
        IncDomTfAdd as IncDomTfAdd,
        IncDomTfIdentity as IncDomTfIdentity,
        IncludeRedundancy as IncludeRedundancy,
        IncDomAnalysis as IncDomAnalysis,
        analyze_inc_dom as analyze_inc_dom,
    )
