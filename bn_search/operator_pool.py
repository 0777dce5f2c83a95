"""
Cached local search over Bayesian network structures.

The score is decomposable, so the effect of every candidate edit only depends on
the local scores of the one or two nodes whose parent set changes. Each operator
set keeps a table with the delta of all its candidates; after an edit is applied
only the entries that involve the changed nodes are recomputed.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from bn_models import GaussianNetwork, DiscreteBN, SemiparametricBN
from bn_operators import (AddArc, ChangeNodeType, FlipArc, Operator, OperatorTabuSet,
                          OperatorType, RemoveArc)


class LocalScoreCache:
    """Local score of every node of the model, addressed by node index."""

    def __init__(self, model):
        self._local_score = np.zeros(model.num_nodes())

    def cache_local_scores(self, model, score):
        for i in range(model.num_nodes()):
            self._local_score[i] = score.local_score(model, i)

    def update_local_score(self, model, score, index_or_op: Union[int, Operator]):
        if isinstance(index_or_op, Operator):
            for node in index_or_op.nodes_changed():
                self.update_local_score(model, score, model.index(node))
        else:
            self._local_score[index_or_op] = score.local_score(model, index_or_op)

    def local_score(self, index: int) -> float:
        return float(self._local_score[index])

    def sum(self) -> float:
        return float(self._local_score.sum())

    def __len__(self):
        return len(self._local_score)


class OperatorSet(ABC):
    """
    Delta table of one kind of edit.

    Subclasses list the model classes they can work with in `supported_models`;
    constructing a set for any other model (or with a score that does not accept
    the model) raises a TypeError.
    """

    supported_models: Tuple[type, ...] = ()

    def __init__(self, model, score):
        if not isinstance(model, self.supported_models):
            raise TypeError(f"{self.__class__.__name__} does not support {type(model).__name__}.")
        if not score.is_compatible(model):
            raise TypeError(f"Score {score} is not compatible with {type(model).__name__}.")
        self.score = score
        self._local_cache: Optional[LocalScoreCache] = None

    def set_local_score_cache(self, local_cache: LocalScoreCache):
        self._local_cache = local_cache

    @property
    def local_cache(self) -> LocalScoreCache:
        if self._local_cache is None:
            raise RuntimeError(f"{self.__class__.__name__} has no local score cache. Add it to an OperatorPool first.")
        return self._local_cache

    @abstractmethod
    def cache_scores(self, model):
        pass

    @abstractmethod
    def find_max(self, model, tabu_set: Optional[OperatorTabuSet] = None) -> Optional[Operator]:
        pass

    @abstractmethod
    def update_scores(self, model, op: Operator):
        pass


class ArcOperatorSet(OperatorSet):
    """
    Add, remove and flip arc operators.

    Cell (s, d) of the delta table holds the delta of making s a parent of d:
    removing s -> d if it exists, reversing d -> s if that exists, adding s -> d
    otherwise.
    """

    supported_models = (GaussianNetwork, DiscreteBN, SemiparametricBN)

    def __init__(self, model, score, whitelist: Iterable[Tuple[str, str]] = (),
                 blacklist: Iterable[Tuple[str, str]] = (), max_indegree: int = 0):
        super().__init__(model, score)
        n = model.num_nodes()
        self.max_indegree = max_indegree
        self.delta = np.full((n, n), -np.inf)
        self.valid_op = np.ones((n, n), dtype=bool)

        whitelist = [(model.index(s), model.index(d)) for s, d in whitelist]
        blacklist = [(model.index(s), model.index(d)) for s, d in blacklist]
        if set(whitelist) & set(blacklist):
            raise ValueError("An arc cannot be both whitelisted and blacklisted.")

        for s, d in whitelist:
            self.valid_op[s, d] = False
            self.valid_op[d, s] = False
        for s, d in blacklist:
            self.valid_op[s, d] = False
        np.fill_diagonal(self.valid_op, False)

        # row-major order of the valid cells, the tie-break of find_max
        self._valid_idx = np.flatnonzero(self.valid_op)

    def _cell_delta(self, model, source: int, dest: int) -> float:
        cache = self.local_cache
        parents_dest = model.parent_indices(dest)

        if model.has_edge(source, dest):
            new_parents = [p for p in parents_dest if p != source]
            return self.score.local_score(model, dest, new_parents) - cache.local_score(dest)
        elif model.has_edge(dest, source):
            parents_source = [p for p in model.parent_indices(source) if p != dest]
            return (self.score.local_score(model, source, parents_source) +
                    self.score.local_score(model, dest, parents_dest + [source]) -
                    cache.local_score(source) - cache.local_score(dest))
        else:
            return self.score.local_score(model, dest, parents_dest + [source]) - cache.local_score(dest)

    def cache_scores(self, model):
        for s, d in zip(*np.nonzero(self.valid_op)):
            self.delta[s, d] = self._cell_delta(model, s, d)

    def sorted_candidates(self) -> np.ndarray:
        """Flat indices of the valid cells by descending delta."""
        values = self.delta.ravel()[self._valid_idx]
        return self._valid_idx[np.argsort(-values, kind="stable")]

    def find_max(self, model, tabu_set=None):
        n = model.num_nodes()
        limited = self.max_indegree > 0

        for idx in self.sorted_candidates():
            source, dest = divmod(int(idx), n)
            d = float(self.delta[source, dest])

            if model.has_edge(source, dest):
                op = RemoveArc(model.name(source), model.name(dest), d)
            elif model.has_edge(dest, source):
                if not model.can_flip_edge(dest, source):
                    continue
                if limited and model.num_parents(dest) >= self.max_indegree:
                    continue
                op = FlipArc(model.name(dest), model.name(source), d)
            else:
                if not model.can_add_edge(source, dest):
                    continue
                if limited and model.num_parents(dest) >= self.max_indegree:
                    continue
                op = AddArc(model.name(source), model.name(dest), d)

            if tabu_set is not None and op in tabu_set:
                continue
            return op

        return None

    def update_scores(self, model, op):
        for node in op.nodes_changed():
            self.update_node_arcs_scores(model, model.index(node))

    def update_node_arcs_scores(self, model, node: int):
        """Recompute the row and column of `node`: every cell whose delta depends on its parents."""
        for other in range(model.num_nodes()):
            if self.valid_op[other, node]:
                self.delta[other, node] = self._cell_delta(model, other, node)
            if self.valid_op[node, other]:
                self.delta[node, other] = self._cell_delta(model, node, other)


class ChangeNodeTypeSet(OperatorSet):
    """Switch a node of a semiparametric network between linear Gaussian and CKDE."""

    supported_models = (SemiparametricBN,)

    def __init__(self, model, score, type_whitelist: Iterable[Tuple[str, object]] = ()):
        super().__init__(model, score)
        if not hasattr(score, "local_score_node_type"):
            raise TypeError(f"Score {score} cannot score alternative node types.")
        n = model.num_nodes()
        self.delta = np.full(n, -np.inf)
        self.valid_op = np.ones(n, dtype=bool)
        for node, _ in type_whitelist:
            self.valid_op[model.index(node)] = False
        self._valid_idx = np.flatnonzero(self.valid_op)

    def update_local_delta(self, model, node: int):
        node_type = model.node_type(node)
        self.delta[node] = (self.score.local_score_node_type(model, node_type.opposite(), node) -
                            self.local_cache.local_score(node))

    def cache_scores(self, model):
        for i in self._valid_idx:
            self.update_local_delta(model, int(i))

    def find_max(self, model, tabu_set=None):
        if len(self._valid_idx) == 0:
            return None

        if tabu_set is None:
            idx = int(self._valid_idx[np.argmax(self.delta[self._valid_idx])])
            return ChangeNodeType(model.name(idx), model.node_type(idx).opposite(), self.delta[idx])

        order = self._valid_idx[np.argsort(-self.delta[self._valid_idx], kind="stable")]
        for idx in order:
            idx = int(idx)
            op = ChangeNodeType(model.name(idx), model.node_type(idx).opposite(), self.delta[idx])
            if op not in tabu_set:
                return op
        return None

    def update_scores(self, model, op):
        if op.type is OperatorType.CHANGE_NODE_TYPE:
            # the reverse switch undoes exactly this score change
            index = model.index(op.node)
            if self.valid_op[index]:
                self.delta[index] = -op.delta
            return

        for node in op.nodes_changed():
            index = model.index(node)
            if self.valid_op[index]:
                self.update_local_delta(model, index)


class OperatorPool:
    """
    All the operator sets of a search, sharing one LocalScoreCache.

    Usage: cache_scores once, then repeat find_max / apply / update_scores.
    """

    def __init__(self, model, score, op_sets: Sequence[OperatorSet]):
        if not getattr(score, "is_decomposable", False):
            raise TypeError(f"Score {score} is not decomposable.")
        if not op_sets:
            raise ValueError("OperatorPool needs at least one operator set.")
        self.score_fn = score
        self.local_cache = LocalScoreCache(model)
        self.op_sets: List[OperatorSet] = list(op_sets)
        for op_set in self.op_sets:
            op_set.set_local_score_cache(self.local_cache)

    def cache_scores(self, model):
        self.local_cache.cache_local_scores(model, self.score_fn)
        for op_set in self.op_sets:
            op_set.cache_scores(model)

    def find_max(self, model, tabu_set: Optional[OperatorTabuSet] = None) -> Optional[Operator]:
        if tabu_set is not None and tabu_set.empty():
            tabu_set = None

        max_op = None
        for op_set in self.op_sets:
            new_op = op_set.find_max(model, tabu_set)
            if new_op is not None and (max_op is None or new_op.delta > max_op.delta):
                max_op = new_op
        return max_op

    def update_scores(self, model, op: Operator):
        self.local_cache.update_local_score(model, self.score_fn, op)
        for op_set in self.op_sets:
            op_set.update_scores(model, op)

    def score(self) -> float:
        return self.local_cache.sum()

    def score_model(self, model) -> float:
        return self.score_fn.score(model)
