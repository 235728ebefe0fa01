# tests/test_dataflow_engine.py
"""
Tests for the generic fixpoint driver: canonical pool, worklist
strategies, result snapshots, and the defect checks that guard the
termination argument.
"""

import pytest

from incdom_dataflow.ctrlflow_graph import CFG, CFGNode, NodeKind
from incdom_dataflow.dataflow_engine import (
    AnalysisConfig,
    CanonicalPool,
    NodeState,
    TransferFunction,
    TransferFunctionId,
    WorklistStrategy,
)
from incdom_dataflow.errors import (
    CFGStructureError,
    LatticeContractError,
    MonotonicityError,
    NonTerminationError,
    TransferFunctionDefect,
)
from incdom_dataflow.incdom_analysis import IncDomAnalysis, IncDomLatticeElement


# ── Helpers ─────────────────────────────────────────────────────

class _FreshNodeTf(TransferFunction):
    """Broken transfer function: adds a brand-new node on every call, so
    its output never settles."""

    def __init__(self, analysis):
        self.analysis = analysis

    def transfer(self, in_value):
        out = in_value.copy()
        out.add(CFGNode(NodeKind.INCLUDE))
        return self.analysis.recycle(out)


class _BrokenAnalysis(IncDomAnalysis):

    def make_transfer_function(self, node):
        if self.is_include(node):
            return _FreshNodeTf(self)
        return super().make_transfer_function(node)


def _sets(analysis, nodes):
    out = {}
    for n in nodes:
        value = analysis.get_out_value(n)
        out[n] = None if value.is_universal else frozenset(value.include_nodes)
    return out


# ── Canonical pool ──────────────────────────────────────────────

class TestCanonicalPool:

    def test_first_recycle_returns_same_instance_frozen(self):
        pool = CanonicalPool()
        e = IncDomLatticeElement()
        assert pool.recycle(e) is e
        assert e.frozen
        assert len(pool) == 1
        assert pool.misses == 1

    def test_equal_elements_share_one_instance(self):
        a, b = CFGNode(), CFGNode()
        pool = CanonicalPool()
        first = pool.recycle(IncDomLatticeElement([a, b]))
        second = pool.recycle(IncDomLatticeElement([b, a]))
        assert first is second
        assert pool.hits == 1
        assert len(pool) == 1

    def test_different_elements_kept_apart(self):
        a, b = CFGNode(), CFGNode()
        pool = CanonicalPool()
        x = pool.recycle(IncDomLatticeElement([a]))
        y = pool.recycle(IncDomLatticeElement([b]))
        z = pool.recycle(IncDomLatticeElement.universal())
        assert len({id(x), id(y), id(z)}) == 3
        assert len(pool) == 3

    def test_empty_and_universal_are_distinct(self):
        pool = CanonicalPool()
        empty = pool.recycle(IncDomLatticeElement())
        universal = pool.recycle(IncDomLatticeElement.universal())
        assert empty is not universal

    def test_clear(self):
        pool = CanonicalPool()
        e = pool.recycle(IncDomLatticeElement())
        pool.recycle(IncDomLatticeElement())
        pool.clear()
        assert len(pool) == 0
        assert e not in pool
        assert pool.hits == pool.misses == 0

    def test_pooled_element_cannot_be_mutated(self):
        pool = CanonicalPool()
        e = pool.recycle(IncDomLatticeElement())
        with pytest.raises(LatticeContractError):
            e.add(CFGNode())

    def test_copy_of_pooled_element_is_mutable(self):
        pool = CanonicalPool()
        e = pool.recycle(IncDomLatticeElement())
        c = e.copy()
        c.add(CFGNode())
        assert not c.frozen
        assert len(e) == 0


# ── Driver ──────────────────────────────────────────────────────

class TestDriver:

    def test_result_snapshot(self, linear):
        analysis = IncDomAnalysis(linear.cfg)
        result = analysis.analyze()
        assert result.iterations >= len(linear.cfg.nodes)
        assert result.updates > 0
        assert result.pool_size > 0
        assert result.strategy is WorklistStrategy.RPO
        assert result.fact_at(linear["B"], before=False) is analysis.get_out_value(linear["B"])
        assert result.fact_at(linear["B"]) is analysis.get_in_value(linear["B"])
        with pytest.raises(TypeError):
            result.facts_out[linear["B"]] = IncDomLatticeElement()

    def test_pool_cleared_after_run(self, linear):
        analysis = IncDomAnalysis(linear.cfg)
        result = analysis.analyze()
        assert result.pool_size > 0
        assert len(analysis.pool) == 0

    def test_pool_kept_when_configured(self, linear):
        analysis = IncDomAnalysis(
            linear.cfg, config=AnalysisConfig(clear_pool_on_finish=False)
        )
        result = analysis.analyze()
        assert len(analysis.pool) == result.pool_size
        assert analysis.get_out_value(linear["B"]) in analysis.pool

    def test_every_node_stable(self, nested):
        analysis = IncDomAnalysis(nested.cfg)
        analysis.analyze()
        for node in nested.cfg.nodes:
            assert analysis.node_state(node) is NodeState.STABLE

    def test_uninitialized_before_run(self, linear):
        analysis = IncDomAnalysis(linear.cfg)
        assert analysis.node_state(linear["A"]) is NodeState.UNINITIALIZED
        with pytest.raises(RuntimeError):
            analysis.get_out_value(linear["A"])

    def test_transfer_functions_bound_once(self, loop):
        analysis = IncDomAnalysis(loop.cfg)
        before = {n: analysis.get_transfer_function(n) for n in loop.cfg.nodes}
        analysis.analyze()
        analysis.analyze()
        for n in loop.cfg.nodes:
            assert analysis.get_transfer_function(n) is before[n]

    def test_rerun_gives_same_result(self, nested):
        analysis = IncDomAnalysis(nested.cfg)
        analysis.analyze()
        first = _sets(analysis, nested.cfg.nodes)
        analysis.analyze()
        assert _sets(analysis, nested.cfg.nodes) == first

    def test_validation_runs_first(self):
        cfg = CFG("dangling")
        cfg.add_edge(cfg.entry, CFGNode())
        with pytest.raises(CFGStructureError):
            IncDomAnalysis(cfg).analyze()

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_strategies_reach_same_fixpoint(self, nested, strategy):
        reference = IncDomAnalysis(nested.cfg)
        reference.analyze()
        analysis = IncDomAnalysis(nested.cfg, config=AnalysisConfig(strategy=strategy))
        result = analysis.analyze()
        assert result.strategy is strategy
        assert _sets(analysis, nested.cfg.nodes) == _sets(reference, nested.cfg.nodes)

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_update_count_bounded(self, nested, strategy):
        analysis = IncDomAnalysis(nested.cfg, config=AnalysisConfig(strategy=strategy))
        result = analysis.analyze()
        n = len(nested.cfg.nodes)
        assert result.updates <= n * n

    def test_rpo_visits_acyclic_graph_once(self, diamond):
        result = IncDomAnalysis(diamond.cfg).analyze()
        assert result.iterations == len(diamond.cfg.nodes)


# ── Transfer function defects ───────────────────────────────────

class TestDefects:

    def test_identity_transfer_returns_input(self):
        e = IncDomLatticeElement()
        assert TransferFunctionId().transfer(e) is e
        assert TransferFunctionId()(e) is e

    def test_monotonicity_check_catches_growing_output(self, loop):
        analysis = _BrokenAnalysis(
            loop.cfg, config=AnalysisConfig(check_monotonicity=True)
        )
        with pytest.raises(MonotonicityError) as info:
            analysis.analyze()
        assert info.value.node is loop["B"]
        assert isinstance(info.value, TransferFunctionDefect)

    def test_update_budget_catches_non_termination(self, loop):
        analysis = _BrokenAnalysis(loop.cfg, config=AnalysisConfig(max_updates=50))
        with pytest.raises(NonTerminationError) as info:
            analysis.analyze()
        assert info.value.code == "INCDOM-3001"

    def test_correct_analysis_passes_checks(self, nested):
        config = AnalysisConfig(check_monotonicity=True, max_updates=len(nested.cfg.nodes) ** 2)
        result = IncDomAnalysis(nested.cfg, config=config).analyze()
        assert result.updates <= config.max_updates
