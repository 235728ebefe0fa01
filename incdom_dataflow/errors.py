# incdom_dataflow/errors.py
"""
Error types raised by the include-dominator dataflow engine.

Error hierarchy::

    IncDomError (base)
    ├── CFGStructureError     - malformed graph, rejected before analysis
    ├── LatticeContractError  - lattice element misuse (frozen mutation, ...)
    └── TransferFunctionDefect
        ├── MonotonicityError - an update grew a node's output
        └── NonTerminationError - the configured update budget ran out

Error codes follow the pattern ``INCDOM-NNNN``:
  - 1000-1999: graph structure
  - 2000-2999: lattice element contract
  - 3000-3999: transfer function defects

None of these are recoverable at runtime.  The analysis is deterministic,
so a defect reproduces identically on rerun and must never be retried.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorPhase(Enum):
    """Stage of an analysis run where the error was detected."""

    VALIDATION = "validation"      # before the driver starts
    LATTICE = "lattice"            # lattice element operations
    FIXPOINT = "fixpoint"          # worklist iteration


class ErrorCode:
    """
    Structured error code ``PREFIX-NNNN``.
    """

    __slots__ = ("prefix", "number", "phase", "summary")

    def __init__(
        self,
        prefix: str,
        number: int,
        phase: ErrorPhase,
        summary: str = "",
    ) -> None:
        self.prefix = prefix
        self.number = number
        self.phase = phase
        self.summary = summary

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.phase.name})"

    def __hash__(self) -> int:
        # equal to its code string, so it must hash like one
        return hash(self.code)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class IncDomErrorCodes:
    """Predefined error codes."""

    # ───────────────────────────────────────────────────────────────────────
    # GRAPH STRUCTURE (1000-1999)
    # ───────────────────────────────────────────────────────────────────────

    MISSING_ENTRY = ErrorCode(
        "INCDOM", 1000, ErrorPhase.VALIDATION, "CFG has no entry node"
    )
    UNREGISTERED_ENTRY = ErrorCode(
        "INCDOM", 1001, ErrorPhase.VALIDATION, "entry node is not part of the CFG"
    )
    DANGLING_EDGE = ErrorCode(
        "INCDOM", 1002, ErrorPhase.VALIDATION, "edge endpoint is not part of the CFG"
    )
    ASYMMETRIC_EDGE = ErrorCode(
        "INCDOM", 1003, ErrorPhase.VALIDATION,
        "predecessor and successor links disagree",
    )
    DUPLICATE_NODE = ErrorCode(
        "INCDOM", 1004, ErrorPhase.VALIDATION, "node id registered twice"
    )

    # ───────────────────────────────────────────────────────────────────────
    # LATTICE CONTRACT (2000-2999)
    # ───────────────────────────────────────────────────────────────────────

    FROZEN_MUTATION = ErrorCode(
        "INCDOM", 2000, ErrorPhase.LATTICE, "mutation of a canonical lattice element"
    )
    INCOMPATIBLE_ELEMENTS = ErrorCode(
        "INCDOM", 2001, ErrorPhase.LATTICE, "operation on unrelated lattice elements"
    )

    # ───────────────────────────────────────────────────────────────────────
    # TRANSFER FUNCTION DEFECTS (3000-3999)
    # ───────────────────────────────────────────────────────────────────────

    NON_MONOTONE_UPDATE = ErrorCode(
        "INCDOM", 3000, ErrorPhase.FIXPOINT, "node output increased"
    )
    UPDATE_BUDGET_EXCEEDED = ErrorCode(
        "INCDOM", 3001, ErrorPhase.FIXPOINT, "fixpoint did not stabilize"
    )


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class IncDomError(Exception):
    """
    Base exception for all errors raised by this package.

    Carries the :class:`ErrorCode` and, where one exists, the CFG node
    the error is about.
    """

    default_code: ErrorCode = IncDomErrorCodes.MISSING_ENTRY

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        node: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.node = node

    def __str__(self) -> str:
        where = f" at {self.node!r}" if self.node is not None else ""
        return f"[{self.code}] {self.message}{where}"


class CFGStructureError(IncDomError):
    """The CFG handed to the driver is malformed."""

    default_code = IncDomErrorCodes.MISSING_ENTRY


class LatticeContractError(IncDomError):
    """A lattice element was used in a way its contract forbids."""

    default_code = IncDomErrorCodes.FROZEN_MUTATION


class TransferFunctionDefect(IncDomError):
    """A transfer function broke the assumptions the termination proof needs."""

    default_code = IncDomErrorCodes.NON_MONOTONE_UPDATE


class MonotonicityError(TransferFunctionDefect):

    default_code = IncDomErrorCodes.NON_MONOTONE_UPDATE


class NonTerminationError(TransferFunctionDefect):

    default_code = IncDomErrorCodes.UPDATE_BUDGET_EXCEEDED


__all__ = [
    "ErrorPhase",
    "ErrorCode",
    "IncDomErrorCodes",
    "IncDomError",
    "CFGStructureError",
    "LatticeContractError",
    "TransferFunctionDefect",
    "MonotonicityError",
    "NonTerminationError",
]
