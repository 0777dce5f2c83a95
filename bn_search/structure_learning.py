import math
import time

import pandas as pd

from bn_models import DiscreteBN, GaussianNetwork, SemiparametricBN
from bn_operators import OperatorTabuSet
from bn_scoring import BIC, BayesianDirichletScore
from operator_pool import ArcOperatorSet, ChangeNodeTypeSet, OperatorPool


def score_dag(df, dag, score=None):
    """Score a networkx DiGraph labelled by column names with a decomposable score."""
    model = default_model(df, arcs=dag.edges)
    if score is None:
        score = default_score(df)
    return score.score(model)

def is_discrete(df: pd.DataFrame) -> bool:
    return all(pd.api.types.is_integer_dtype(t) for t in df.dtypes)

def default_model(df, arcs=()):
    cls = DiscreteBN if is_discrete(df) else GaussianNetwork
    return cls(df.columns, arcs)

def default_score(df):
    return BayesianDirichletScore(df) if is_discrete(df) else BIC(df)

def build_operator_pool(model, score, operators=("arcs",), arc_blacklist=(), arc_whitelist=(),
                        type_whitelist=(), max_indegree=0):
    """Operator sets by name: "arcs" (add/remove/flip arc) and "node_type" (semiparametric only)."""
    op_sets = []
    for name in operators:
        if name == "arcs":
            op_sets.append(ArcOperatorSet(model, score, whitelist=arc_whitelist,
                                          blacklist=arc_blacklist, max_indegree=max_indegree))
        elif name == "node_type":
            op_sets.append(ChangeNodeTypeSet(model, score, type_whitelist=type_whitelist))
        else:
            raise ValueError(f"Unknown operator set {name!r}. Use 'arcs' or 'node_type'.")
    return OperatorPool(model, score, op_sets)

def hill_climb(df, start=None, score=None, operators=("arcs",), arc_blacklist=(), arc_whitelist=(),
               type_whitelist=(), max_indegree=0, max_iters=None, epsilon=0.0, patience=0,
               verbose=False):
    """
    Greedy hill climbing with a tabu list over cached operator deltas.

    Each iteration applies the best non-tabu operator and refreshes only the
    deltas it invalidates. The search stops when no operator is left, or when the
    best delta is <= epsilon more than `patience` times in a row. Returns the best
    model seen and its score.
    """
    model = start.copy() if start is not None else default_model(df)
    if score is None:
        score = default_score(df)

    for source, target in arc_whitelist:
        if not model.has_edge(source, target):
            model.add_edge(source, target)
    for source, target in arc_blacklist:
        if model.has_edge(source, target):
            raise ValueError(f"Start model contains blacklisted arc {source} -> {target}.")

    if isinstance(model, SemiparametricBN):
        for node, node_type in type_whitelist:
            model.set_node_type(node, node_type)

    pool = build_operator_pool(model, score, operators, arc_blacklist, arc_whitelist,
                               type_whitelist, max_indegree)
    pool.cache_scores(model)

    best_model, best_score = model.copy(), pool.score()
    if verbose:
        print(f"Initial score = {best_score:.2f}")

    tabu = OperatorTabuSet()
    max_iters = math.inf if max_iters is None else max_iters
    iteration = 0
    non_improving = 0
    start_time = time.time()

    while iteration < max_iters:
        op = pool.find_max(model, tabu)
        if op is None:
            break

        if op.delta <= epsilon:
            if non_improving >= patience:
                break
            non_improving += 1

        iteration += 1
        op.apply(model)
        tabu.insert(op)
        tabu.insert(op.opposite())
        pool.update_scores(model, op)

        current = pool.score()
        if current > best_score + epsilon:
            best_model, best_score = model.copy(), current
            non_improving = 0
            tabu.clear()

        if verbose:
            print(f"Iteration {iteration}: {op}, score = {current:.2f}")

    if verbose:
        print(f"Finished after {iteration} iterations ({time.time() - start_time:.2f} s). "
              f"Best score = {best_score:.2f}")

    return best_model, best_score
