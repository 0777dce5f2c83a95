from enum import Enum
from typing import Dict, Iterable, List, Tuple, Union

import networkx as nx
import numpy as np

Node = Union[str, int]


class NodeType(Enum):
    LINEAR = "LinearGaussianCPD"
    CKDE = "CKDE"

    def opposite(self):
        return NodeType.CKDE if self is NodeType.LINEAR else NodeType.LINEAR

    def __str__(self):
        return self.value


class BayesianNetwork:
    """
    DAG over a fixed, ordered set of named nodes.

    The graph is stored as an nx.DiGraph over node indices so that the
    search code can address nodes by position. Every method taking a node
    accepts either its name or its index.
    """

    def __init__(self, nodes: Iterable[str], arcs: Iterable[Tuple[str, str]] = ()):
        self._names = [str(n) for n in nodes]
        self._indices = {n: i for i, n in enumerate(self._names)}
        if len(self._indices) != len(self._names):
            raise ValueError("Node names must be unique.")

        self.graph = nx.DiGraph()
        self.graph.add_nodes_from(range(len(self._names)))
        for source, target in arcs:
            self.add_edge(source, target)

    def _idx(self, node: Node) -> int:
        if isinstance(node, (int, np.integer)):
            if not 0 <= node < len(self._names):
                raise ValueError(f"Node index {node} out of range.")
            return int(node)
        try:
            return self._indices[node]
        except KeyError:
            raise ValueError(f"Node {node} not present in the model.") from None

    def num_nodes(self) -> int:
        return len(self._names)

    def nodes(self) -> List[str]:
        return list(self._names)

    def name(self, idx: int) -> str:
        return self._names[self._idx(idx)]

    def index(self, name: Node) -> int:
        return self._idx(name)

    def indices(self) -> Dict[str, int]:
        return dict(self._indices)

    def arcs(self) -> List[Tuple[str, str]]:
        return [(self._names[u], self._names[v]) for u, v in self.graph.edges]

    def num_arcs(self) -> int:
        return self.graph.number_of_edges()

    def has_edge(self, source: Node, target: Node) -> bool:
        return self.graph.has_edge(self._idx(source), self._idx(target))

    def num_parents(self, node: Node) -> int:
        return self.graph.in_degree(self._idx(node))

    def parent_indices(self, node: Node) -> List[int]:
        return list(self.graph.predecessors(self._idx(node)))

    def parents(self, node: Node) -> List[str]:
        return [self._names[p] for p in self.parent_indices(node)]

    def children(self, node: Node) -> List[str]:
        return [self._names[c] for c in self.graph.successors(self._idx(node))]

    def can_add_edge(self, source: Node, target: Node) -> bool:
        """True if source -> target is absent and adding it keeps the graph acyclic."""
        s, t = self._idx(source), self._idx(target)
        if s == t or self.graph.has_edge(s, t):
            return False
        return not nx.has_path(self.graph, t, s)

    def can_flip_edge(self, source: Node, target: Node) -> bool:
        """True if the existing arc source -> target can be reversed without a cycle."""
        s, t = self._idx(source), self._idx(target)
        if not self.graph.has_edge(s, t):
            return False
        # reversing creates a cycle iff another directed path s ~> t exists
        for child in self.graph.successors(s):
            if child != t and nx.has_path(self.graph, child, t):
                return False
        return True

    def add_edge(self, source: Node, target: Node):
        s, t = self._idx(source), self._idx(target)
        if s == t or nx.has_path(self.graph, t, s):
            raise ValueError(f"Adding arc {self._names[s]} -> {self._names[t]} would create a cycle.")
        self.graph.add_edge(s, t)

    def remove_edge(self, source: Node, target: Node):
        self.graph.remove_edge(self._idx(source), self._idx(target))

    def flip_edge(self, source: Node, target: Node):
        self.remove_edge(source, target)
        self.add_edge(target, source)

    def copy(self):
        new = self.__class__.__new__(self.__class__)
        new._names = list(self._names)
        new._indices = dict(self._indices)
        new.graph = self.graph.copy()
        return new

    def to_networkx(self) -> nx.DiGraph:
        """Graph labelled by node names (as used for drawing and .gph output)."""
        return nx.relabel_nodes(self.graph, dict(enumerate(self._names)), copy=True)

    def __repr__(self):
        return f"{self.__class__.__name__}(nodes={self._names}, arcs={self.arcs()})"


class GaussianNetwork(BayesianNetwork):
    pass


class DiscreteBN(BayesianNetwork):
    pass


class SemiparametricBN(BayesianNetwork):
    """Gaussian network where every node is either linear Gaussian or a conditional KDE."""

    def __init__(self, nodes, arcs=(), node_types=None):
        super().__init__(nodes, arcs)
        self._node_types = [NodeType.LINEAR] * self.num_nodes()
        if node_types is not None:
            for node, node_type in dict(node_types).items():
                self.set_node_type(node, node_type)

    def node_type(self, node: Node) -> NodeType:
        return self._node_types[self._idx(node)]

    def set_node_type(self, node: Node, node_type: NodeType):
        self._node_types[self._idx(node)] = NodeType(node_type)

    def node_types(self) -> Dict[str, NodeType]:
        return {n: t for n, t in zip(self._names, self._node_types)}

    def copy(self):
        new = super().copy()
        new._node_types = list(self._node_types)
        return new

    def __repr__(self):
        types = {n: str(t) for n, t in self.node_types().items()}
        return f"SemiparametricBN(nodes={self._names}, arcs={self.arcs()}, node_types={types})"
