import itertools

import numpy as np
import pandas as pd
import pytest

import util_test
from bn_models import DiscreteBN, GaussianNetwork, NodeType, SemiparametricBN
from bn_operators import AddArc, OperatorTabuSet, OperatorType, RemoveArc
from bn_scoring import BIC, BayesianDirichletScore, CVLikelihood
from operator_pool import ArcOperatorSet, ChangeNodeTypeSet, LocalScoreCache, OperatorPool, OperatorSet

SIZE = 500
df = util_test.generate_normal_data(SIZE, seed=0)
spbn_df = util_test.generate_nonlinear_data(120, seed=2)


def arc_pool(model, score=None, **kwargs):
    score = score if score is not None else BIC(df)
    arcs = ArcOperatorSet(model, score, **kwargs)
    pool = OperatorPool(model, score, [arcs])
    pool.cache_scores(model)
    return pool, arcs

def check_delta(model, score, op):
    """The delta of op is the score difference of applying it."""
    after = model.copy()
    op.apply(after)
    assert op.delta == pytest.approx(score.score(after) - score.score(model), rel=1e-6, abs=1e-6)

def climb(model, pool, steps, tabu=None):
    ops = []
    for _ in range(steps):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        op.apply(model)
        pool.update_scores(model, op)
        ops.append(op)
    return ops


def test_local_score_cache():
    model = GaussianNetwork(df.columns, [("a", "b")])
    score = BIC(df)
    cache = LocalScoreCache(model)
    assert len(cache) == 4
    cache.cache_local_scores(model, score)
    assert cache.sum() == pytest.approx(score.score(model))

    op = AddArc("b", "c", 0.)
    op.apply(model)
    cache.update_local_score(model, score, op)
    assert cache.local_score(2) == pytest.approx(score.local_score(model, "c"))
    assert cache.sum() == pytest.approx(score.score(model))

    model.remove_edge("a", "b")
    cache.update_local_score(model, score, 1)
    assert cache.sum() == pytest.approx(score.score(model))

def test_first_add_arc_is_best_of_all_pairs():
    model = GaussianNetwork(df.columns)
    score = BIC(df)
    pool, _ = arc_pool(model, score)

    base = score.score(model)
    deltas = {}
    for s, t in itertools.permutations(df.columns, 2):
        after = model.copy()
        after.add_edge(s, t)
        deltas[(s, t)] = score.score(after) - base
    assert len(deltas) == 12

    op = pool.find_max(model)
    assert op.type is OperatorType.ADD_ARC
    best = max(deltas.values())
    assert op.delta == pytest.approx(best)
    assert deltas[(op.source, op.target)] == pytest.approx(best)

def test_remove_after_add_has_negated_delta():
    model = GaussianNetwork(df.columns)
    pool, arcs = arc_pool(model)

    op = pool.find_max(model)
    op.apply(model)
    pool.update_scores(model, op)

    s, t = model.index(op.source), model.index(op.target)
    assert arcs.delta[s, t] == pytest.approx(-op.delta)
    assert RemoveArc(op.source, op.target, arcs.delta[s, t]) == op.opposite()

def test_delta_correctness_along_the_search():
    model = GaussianNetwork(df.columns)
    score = BIC(df)
    pool, _ = arc_pool(model, score)

    for _ in range(6):
        op = pool.find_max(model)
        if op is None:
            break
        check_delta(model, score, op)
        op.apply(model)
        pool.update_scores(model, op)
        assert pool.score() == pytest.approx(score.score(model))

def test_incremental_update_equals_full_recompute():
    model = GaussianNetwork(df.columns)
    pool, arcs = arc_pool(model)
    tabu = OperatorTabuSet()

    # include non improving moves so that removals and flips are exercised too
    for _ in range(10):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        op.apply(model)
        tabu.insert(op)
        tabu.insert(op.opposite())
        pool.update_scores(model, op)

    fresh_pool, fresh_arcs = arc_pool(model.copy())
    valid = arcs.valid_op
    assert np.allclose(arcs.delta[valid], fresh_arcs.delta[valid])
    assert pool.score() == pytest.approx(fresh_pool.score())

def test_every_operator_kind_has_correct_delta():
    model = GaussianNetwork(df.columns, [("a", "b"), ("b", "c"), ("c", "d")])
    score = BIC(df)
    _, arcs = arc_pool(model, score)

    # walk down the ranking by making every returned operator tabu
    tabu = OperatorTabuSet()
    seen = set()
    op = arcs.find_max(model, tabu)
    while op is not None:
        check_delta(model, score, op)
        seen.add(op.type)
        tabu.insert(op)
        op = arcs.find_max(model, tabu)
    assert seen == {OperatorType.ADD_ARC, OperatorType.REMOVE_ARC, OperatorType.FLIP_ARC}

def test_tabu_exclusion():
    model = GaussianNetwork(df.columns)
    pool, _ = arc_pool(model)

    best = pool.find_max(model)
    tabu = OperatorTabuSet([AddArc(best.source, best.target, 0.)])
    second = pool.find_max(model, tabu)
    assert second is not None and second != best
    assert second.delta <= best.delta

    for _ in range(8):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        assert op not in tabu
        tabu.insert(op)

def test_empty_tabu_is_plain_search():
    model = GaussianNetwork(df.columns)
    pool, _ = arc_pool(model)
    assert pool.find_max(model, OperatorTabuSet()) == pool.find_max(model)

def test_whitelist_and_blacklist():
    model = GaussianNetwork(df.columns, [("b", "a")])
    whitelist = [("b", "a")]
    blacklist = [("b", "c"), ("c", "d")]
    pool, arcs = arc_pool(model, whitelist=whitelist, blacklist=blacklist)

    assert not arcs.valid_op[model.index("b"), model.index("a")]
    assert not arcs.valid_op[model.index("a"), model.index("b")]
    assert not arcs.valid_op[model.index("b"), model.index("c")]
    assert arcs.valid_op[model.index("c"), model.index("b")]
    assert not arcs.valid_op.diagonal().any()

    tabu = OperatorTabuSet()
    for _ in range(15):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        assert (op.source, op.target) not in [("b", "a"), ("a", "b")]
        if op.type is OperatorType.ADD_ARC:
            assert (op.source, op.target) not in blacklist
        if op.type is OperatorType.FLIP_ARC:
            assert (op.target, op.source) not in blacklist
        op.apply(model)
        tabu.insert(op)
        tabu.insert(op.opposite())
        pool.update_scores(model, op)
        assert model.has_edge("b", "a")

    with pytest.raises(ValueError):
        ArcOperatorSet(model, BIC(df), whitelist=[("a", "c")], blacklist=[("a", "c")])

def test_max_indegree():
    model = GaussianNetwork(df.columns)
    pool, _ = arc_pool(model, max_indegree=1)
    tabu = OperatorTabuSet()

    for _ in range(12):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        if op.type is OperatorType.ADD_ARC:
            assert model.num_parents(op.target) == 0
        elif op.type is OperatorType.FLIP_ARC:
            assert model.num_parents(op.source) == 0
        op.apply(model)
        tabu.insert(op)
        tabu.insert(op.opposite())
        pool.update_scores(model, op)
        assert all(model.num_parents(n) <= 1 for n in model.nodes())

def test_no_operator_left():
    model = GaussianNetwork(["a", "b"])
    score = BIC(df)
    pool, _ = arc_pool(model, score, blacklist=[("a", "b"), ("b", "a")])
    assert pool.find_max(model) is None

def test_capability_checks():
    with pytest.raises(TypeError):
        ChangeNodeTypeSet(GaussianNetwork(df.columns), CVLikelihood(df, k=3))
    with pytest.raises(TypeError):
        ArcOperatorSet(DiscreteBN(df.columns), BIC(df))
    with pytest.raises(TypeError):
        ArcOperatorSet(SemiparametricBN(df.columns), BIC(df))

    class NotDecomposable(BIC):
        is_decomposable = False

    model = GaussianNetwork(df.columns)
    with pytest.raises(TypeError):
        OperatorPool(model, NotDecomposable(df), [ArcOperatorSet(model, BIC(df))])

    with pytest.raises(RuntimeError):
        ArcOperatorSet(model, BIC(df)).cache_scores(model)

class FixedOperatorSet(OperatorSet):
    supported_models = (GaussianNetwork,)

    def __init__(self, model, score, op):
        super().__init__(model, score)
        self.op = op

    def cache_scores(self, model):
        pass

    def find_max(self, model, tabu_set=None):
        return self.op

    def update_scores(self, model, op):
        pass

def test_pool_ties_go_to_first_set():
    model = GaussianNetwork(df.columns)
    score = BIC(df)
    first = FixedOperatorSet(model, score, AddArc("a", "b", 1.))
    second = FixedOperatorSet(model, score, AddArc("c", "d", 1.))
    better = FixedOperatorSet(model, score, AddArc("b", "d", 2.))

    pool = OperatorPool(model, score, [first, second])
    assert pool.find_max(model) is first.op
    pool = OperatorPool(model, score, [first, second, better])
    assert pool.find_max(model) is better.op

def test_arc_ties_are_broken_in_row_major_order():
    # symmetric contingency table: making a a parent of b scores exactly as b a parent of a
    pairs = [(1, 1)] * 10 + [(2, 2)] * 10 + [(1, 2), (2, 1)]
    data = pd.DataFrame(pairs, columns=["a", "b"])
    model = DiscreteBN(data.columns)
    pool, arcs = arc_pool(model, BayesianDirichletScore(data))

    assert arcs.delta[0, 1] == arcs.delta[1, 0]
    op = pool.find_max(model)
    assert op == AddArc("a", "b", 0.)
    assert list(arcs.sorted_candidates()) == [1, 2]
    assert list(arcs.sorted_candidates()) == [1, 2]


def spbn_pool(model, score):
    arcs = ArcOperatorSet(model, score)
    types = ChangeNodeTypeSet(model, score)
    pool = OperatorPool(model, score, [arcs, types])
    pool.cache_scores(model)
    return pool, arcs, types

def test_change_node_type_delta():
    model = SemiparametricBN(spbn_df.columns, [("a", "b")])
    score = CVLikelihood(spbn_df, k=3, seed=0)
    pool, _, types = spbn_pool(model, score)

    op = types.find_max(model)
    assert op.type is OperatorType.CHANGE_NODE_TYPE
    check_delta(model, score, op)
    idx = model.index(op.node)
    assert op.delta == pytest.approx(types.delta.max())

    op.apply(model)
    pool.update_scores(model, op)
    assert types.delta[idx] == pytest.approx(-op.delta)
    assert pool.score() == pytest.approx(score.score(model))

    _, _, fresh = spbn_pool(model.copy(), score)
    assert np.allclose(types.delta, fresh.delta)

def test_change_node_type_tabu():
    model = SemiparametricBN(spbn_df.columns)
    score = CVLikelihood(spbn_df, k=3, seed=0)
    pool, _, types = spbn_pool(model, score)

    best = types.find_max(model)
    tabu = OperatorTabuSet([best])
    op = types.find_max(model, tabu)
    assert op is not None and op not in tabu
    assert op.node != best.node

    tabu.insert(op)
    tabu.insert(types.find_max(model, tabu))
    assert types.find_max(model, tabu) is None

def test_change_node_type_whitelist():
    model = SemiparametricBN(spbn_df.columns, node_types={"b": NodeType.CKDE})
    score = CVLikelihood(spbn_df, k=3, seed=0)
    types = ChangeNodeTypeSet(model, score, type_whitelist=[("a", NodeType.LINEAR), ("b", NodeType.CKDE)])
    OperatorPool(model, score, [types]).cache_scores(model)
    assert types.find_max(model).node == "c"

def test_semiparametric_incremental_update():
    model = SemiparametricBN(spbn_df.columns)
    score = CVLikelihood(spbn_df, k=3, seed=0)
    pool, arcs, types = spbn_pool(model, score)
    tabu = OperatorTabuSet()

    kinds = set()
    for _ in range(6):
        op = pool.find_max(model, tabu)
        if op is None:
            break
        check_delta(model, score, op)
        kinds.add(op.type)
        op.apply(model)
        tabu.insert(op)
        tabu.insert(op.opposite())
        pool.update_scores(model, op)

    _, fresh_arcs, fresh_types = spbn_pool(model.copy(), score)
    assert np.allclose(arcs.delta[arcs.valid_op], fresh_arcs.delta[arcs.valid_op])
    assert np.allclose(types.delta, fresh_types.delta)
    assert pool.score() == pytest.approx(score.score(model))

def test_discrete_pool():
    data = util_test.generate_discrete_data(400, seed=3)
    model = DiscreteBN(data.columns)
    score = BayesianDirichletScore(data)
    pool, _ = arc_pool(model, score, max_indegree=2)

    ops = climb(model, pool, 4)
    assert ops[0].type is OperatorType.ADD_ARC and ops[0].delta > 0
    assert all(model.num_parents(n) <= 2 for n in model.nodes())
    assert pool.score() == pytest.approx(score.score(model))
