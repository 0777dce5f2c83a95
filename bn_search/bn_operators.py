"""
Graph edits as values.

An Operator is one edit of a Bayesian network (add, remove or reverse an arc, or
switch the type of a node) together with the score change `delta` it produces.
The delta is only exact for the model it was computed against; after any other
change it has to be recomputed by the operator set that produced it.
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from bn_models import NodeType


class OperatorType(Enum):
    ADD_ARC = "AddArc"
    REMOVE_ARC = "RemoveArc"
    FLIP_ARC = "FlipArc"
    CHANGE_NODE_TYPE = "ChangeNodeType"

    def __str__(self):
        return self.value


ARC_OPERATORS = (OperatorType.ADD_ARC, OperatorType.REMOVE_ARC, OperatorType.FLIP_ARC)


class Operator:
    """
    Tagged edit value. Arc kinds use (source, target); CHANGE_NODE_TYPE uses
    (node, node_type). Equality and hashing only look at the kind and that data,
    never at delta, so a tabu set recognizes the same edit with a new delta.
    """

    __slots__ = ("type", "delta", "source", "target", "node", "node_type")

    def __init__(self, type: OperatorType, delta: float, source: Optional[str] = None,
                 target: Optional[str] = None, node: Optional[str] = None,
                 node_type: Optional[NodeType] = None):
        self.type = type
        self.delta = float(delta)
        self.source = source
        self.target = target
        self.node = node
        self.node_type = node_type

    def is_arc_operator(self) -> bool:
        return self.type in ARC_OPERATORS

    def key(self) -> Tuple:
        if self.is_arc_operator():
            return (self.type, self.source, self.target)
        return (self.type, self.node, self.node_type)

    def apply(self, model):
        if self.type is OperatorType.ADD_ARC:
            model.add_edge(self.source, self.target)
        elif self.type is OperatorType.REMOVE_ARC:
            model.remove_edge(self.source, self.target)
        elif self.type is OperatorType.FLIP_ARC:
            model.remove_edge(self.source, self.target)
            model.add_edge(self.target, self.source)
        elif self.type is OperatorType.CHANGE_NODE_TYPE:
            if not hasattr(model, "set_node_type"):
                raise TypeError(f"{self} can only be applied to a model with node types, got {type(model).__name__}.")
            model.set_node_type(self.node, self.node_type)
        else:
            raise ValueError(f"Unknown operator type {self.type}.")

    def opposite(self) -> "Operator":
        if self.type is OperatorType.ADD_ARC:
            return RemoveArc(self.source, self.target, -self.delta)
        if self.type is OperatorType.REMOVE_ARC:
            return AddArc(self.source, self.target, -self.delta)
        if self.type is OperatorType.FLIP_ARC:
            return FlipArc(self.target, self.source, -self.delta)
        if self.type is OperatorType.CHANGE_NODE_TYPE:
            return ChangeNodeType(self.node, self.node_type.opposite(), -self.delta)
        raise ValueError(f"Unknown operator type {self.type}.")

    def copy(self) -> "Operator":
        return Operator(self.type, self.delta, self.source, self.target, self.node, self.node_type)

    def nodes_changed(self) -> Tuple[str, ...]:
        """Nodes whose local score changes when this operator is applied."""
        if self.type in (OperatorType.ADD_ARC, OperatorType.REMOVE_ARC):
            return (self.target,)
        if self.type is OperatorType.FLIP_ARC:
            return (self.source, self.target)
        return (self.node,)

    def __eq__(self, other):
        if not isinstance(other, Operator):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def __repr__(self):
        if self.is_arc_operator():
            return f"{self.type}({self.source} -> {self.target}; {self.delta:.6f})"
        return f"{self.type}({self.node} -> {self.node_type}; {self.delta:.6f})"


def AddArc(source: str, target: str, delta: float) -> Operator:
    return Operator(OperatorType.ADD_ARC, delta, source=source, target=target)

def RemoveArc(source: str, target: str, delta: float) -> Operator:
    return Operator(OperatorType.REMOVE_ARC, delta, source=source, target=target)

def FlipArc(source: str, target: str, delta: float) -> Operator:
    return Operator(OperatorType.FLIP_ARC, delta, source=source, target=target)

def ChangeNodeType(node: str, node_type: NodeType, delta: float) -> Operator:
    return Operator(OperatorType.CHANGE_NODE_TYPE, delta, node=node, node_type=NodeType(node_type))


class OperatorTabuSet:
    """Recently applied edits, matched by structure (see Operator.__eq__)."""

    def __init__(self, operators=()):
        self._map: Dict[Operator, Operator] = {}
        for op in operators:
            self.insert(op)

    def insert(self, op: Operator):
        self._map[op] = op

    def contains(self, op: Operator) -> bool:
        return op in self._map

    __contains__ = contains

    def clear(self):
        self._map.clear()

    def empty(self) -> bool:
        return not self._map

    def copy(self) -> "OperatorTabuSet":
        return OperatorTabuSet(self._map.values())

    def __len__(self):
        return len(self._map)

    def __iter__(self):
        return iter(self._map.values())

    def __repr__(self):
        return f"OperatorTabuSet({list(self._map.values())})"
