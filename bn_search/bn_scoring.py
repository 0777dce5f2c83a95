from abc import ABC, abstractmethod
from math import lgamma, log, pi
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde, norm

from bn_models import DiscreteBN, GaussianNetwork, NodeType, SemiparametricBN


def load_discrete_data(path: str) -> pd.DataFrame:
    df = pd.read_csv(path)
    for c in df.columns:
        df[c] = df[c].astype(int)
    return df

def load_continuous_data(path: str) -> pd.DataFrame:
    df = pd.read_csv(path)
    for c in df.columns:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    return df.dropna().astype(float).reset_index(drop=True)

def cardinalities(df: pd.DataFrame):
    return {col: int(df[col].max()) for col in df.columns}


class Score(ABC):
    """
    Decomposable score: score(model) is the sum of local_score(model, node) over nodes.

    local_score takes the node and an optional parent set (indices or names). When
    the parent set is omitted the current parents of the node in the model are used.
    """

    is_decomposable = True
    compatible_models = ()

    def __init__(self, df: pd.DataFrame):
        self.data = df

    def is_compatible(self, model) -> bool:
        return isinstance(model, self.compatible_models) and set(model.nodes()) <= set(self.data.columns)

    def _variable_names(self, model, variable, parents):
        if parents is None:
            parents = model.parent_indices(variable)
        return model.name(variable), [model.name(p) for p in parents]

    @abstractmethod
    def local_score(self, model, variable, parents: Optional[Sequence] = None) -> float:
        pass

    def score(self, model) -> float:
        return float(sum(self.local_score(model, i) for i in range(model.num_nodes())))

    def __repr__(self):
        return self.__class__.__name__


def _linear_fit(y: np.ndarray, X: np.ndarray):
    """Least squares with intercept. Returns (coefficients, residual variance)."""
    design = np.column_stack((np.ones(X.shape[0]), X))
    beta, _, _, _ = np.linalg.lstsq(design, y, rcond=None)
    resid = y - design @ beta
    dof = max(X.shape[0] - design.shape[1], 1)
    return beta, float(resid @ resid) / dof


class BIC(Score):
    """
    Bayesian information criterion of a linear Gaussian network.

    The log-likelihood uses the unbiased residual variance and the constant
    (1 - N) / 2, which does not depend on the number of parents.
    """

    compatible_models = (GaussianNetwork,)

    def __init__(self, df: pd.DataFrame):
        super().__init__(df)
        self._columns = {c: df[c].to_numpy(dtype=np.float64) for c in df.columns}

    def local_score(self, model, variable, parents=None) -> float:
        name, parent_names = self._variable_names(model, variable, parents)
        y = self._columns[name]
        n = y.shape[0]
        X = np.column_stack([self._columns[p] for p in parent_names]) if parent_names else np.empty((n, 0))

        _, variance = _linear_fit(y, X)
        loglik = 0.5 * (1 - n) - 0.5 * n * log(2 * pi * variance)
        return loglik - 0.5 * log(n) * (len(parent_names) + 2)


class BayesianDirichletScore(Score):
    """
    Bayesian Dirichlet score of a discrete network (categories 1..r).

    Without an equivalent sample size the prior is uniform (K2); with one, the
    prior is spread uniformly over the parent configurations (BDeu).
    """

    compatible_models = (DiscreteBN,)

    def __init__(self, df: pd.DataFrame, equivalent_sample_size: Optional[float] = None):
        super().__init__(df)
        self.equivalent_sample_size = equivalent_sample_size
        self.r = cardinalities(df)

    def local_score(self, model, variable, parents=None) -> float:
        node, parent_names = self._variable_names(model, variable, parents)
        return self.family_score(node, parent_names)

    def family_score(self, node: str, parents: List[str]) -> float:
        r_i = self.r[node]
        if self.equivalent_sample_size is None:
            alpha_ij, alpha_ijk = float(r_i), 1.0
        else:
            q_i = int(np.prod([self.r[p] for p in parents])) if parents else 1
            alpha_ij = self.equivalent_sample_size / q_i
            alpha_ijk = alpha_ij / r_i

        # unobserved parent configurations and cells add exactly zero
        if parents:
            counts = self.data.groupby(parents + [node]).size()
            n_ij = counts.groupby(level=list(range(len(parents)))).sum()
        else:
            counts = self.data[node].value_counts()
            n_ij = [counts.sum()]

        score = 0.0
        for N_ij in n_ij:
            score += lgamma(alpha_ij) - lgamma(alpha_ij + N_ij)
        for N_ijk in counts:
            score += lgamma(alpha_ijk + N_ijk) - lgamma(alpha_ijk)
        return float(score)


def bayesian_score_dirichlet_uniform(df: pd.DataFrame, graph: Dict[str, List[str]]) -> float:
    scorer = BayesianDirichletScore(df)
    score = 0.0
    for node in df.columns:
        parents = graph.get(node, [])
        parents = [p for p in parents if p in df.columns and p != node]
        score += scorer.family_score(node, parents)
    return float(score)


def _normal_reference_factor(n: int, d: int) -> float:
    return (4 / (d + 2)) ** (1 / (d + 4)) * n ** (-1 / (d + 4))


class CVLikelihood(Score):
    """
    k-fold cross-validated log-likelihood.

    LINEAR nodes are scored with a linear Gaussian fit, CKDE nodes with a conditional
    kernel density estimate f(x, parents) / f(parents). The folds are drawn once from
    `seed`, so the same family always gets the same score.
    """

    compatible_models = (GaussianNetwork, SemiparametricBN)

    def __init__(self, df: pd.DataFrame, k: int = 5, seed: int = 0):
        super().__init__(df)
        if k < 2 or k > len(df):
            raise ValueError(f"Cannot split {len(df)} instances into {k} folds.")
        self.k = k
        self.seed = seed
        self._values = df.to_numpy(dtype=np.float64)
        self._positions = {c: i for i, c in enumerate(df.columns)}

        perm = np.random.RandomState(seed).permutation(len(df))
        self.folds = []
        for test in np.array_split(perm, k):
            train = np.setdiff1d(perm, test)
            self.folds.append((train, np.sort(test)))

    def local_score(self, model, variable, parents=None) -> float:
        node_type = model.node_type(variable) if isinstance(model, SemiparametricBN) else NodeType.LINEAR
        return self.local_score_node_type(model, node_type, variable, parents)

    def local_score_node_type(self, model, node_type: NodeType, variable, parents=None) -> float:
        name, parent_names = self._variable_names(model, variable, parents)
        cols = [self._positions[name]] + [self._positions[p] for p in parent_names]

        loglik = 0.0
        for train, test in self.folds:
            data_train = self._values[np.ix_(train, cols)]
            data_test = self._values[np.ix_(test, cols)]
            if node_type is NodeType.LINEAR:
                loglik += self._linear_loglik(data_train, data_test)
            else:
                loglik += self._ckde_loglik(data_train, data_test)
        return float(loglik)

    @staticmethod
    def _linear_loglik(train, test):
        beta, variance = _linear_fit(train[:, 0], train[:, 1:])
        means = beta[0] + test[:, 1:] @ beta[1:]
        return norm.logpdf(test[:, 0], loc=means, scale=np.sqrt(variance)).sum()

    @staticmethod
    def _ckde_loglik(train, test):
        # the marginal reuses the joint factor, so its bandwidth is a sub-block of the joint one
        factor = _normal_reference_factor(*train.shape)
        joint = gaussian_kde(train.T, bw_method=factor).logpdf(test.T)
        if train.shape[1] == 1:
            return joint.sum()
        marginal = gaussian_kde(train[:, 1:].T, bw_method=factor).logpdf(test[:, 1:].T)
        return (joint - marginal).sum()
