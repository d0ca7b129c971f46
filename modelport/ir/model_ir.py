from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Dict, Any, Tuple, Optional
import heapq

from .opcode import OpKind
from .tensor import ElementType
from ..errors import CyclicGraph, MalformedArtifact, UnresolvedReference, UnsupportedOperator


@dataclass
class ValueInfo:
    """A declared graph input or output slot.

    ``None`` inside ``shape`` marks a free dimension; ``shape=None`` marks an
    input whose rank is unknown.
    """
    name: str
    shape: Optional[Tuple[Optional[int], ...]]
    dtype: ElementType = ElementType.FLOAT32

    def to_dict(self) -> Dict[str, Any]:
        shape = None if self.shape is None else list(self.shape)
        return {"name": self.name, "shape": shape, "dtype": str(self.dtype)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ValueInfo:
        return cls(
            name=d["name"],
            shape=None if d["shape"] is None else tuple(None if s is None else int(s) for s in d["shape"]),
            dtype=ElementType(d["dtype"]),
        )


@dataclass
class Node:
    name: str
    op_type: OpKind
    inputs: List[str]
    outputs: List[str]
    attrs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "op_type": str(self.op_type),
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "attrs": dict(self.attrs),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Node:
        try:
            op_type = OpKind(d["op_type"])
        except ValueError as e:
            raise UnsupportedOperator(d["op_type"], d.get("name")) from e
        return cls(
            name=d["name"],
            op_type=op_type,
            inputs=list(d["inputs"]),
            outputs=list(d["outputs"]),
            attrs=dict(d.get("attrs", {})),
        )


@dataclass
class Graph:
    """An executable computation graph.

    Parameters (weights, biases) are referenced by name through
    ``initializers``; their buffers travel alongside the graph as a
    ``Dict[str, TensorBuffer]``.
    """
    nodes: List[Node]
    inputs: List[ValueInfo]
    outputs: List[ValueInfo]
    initializers: List[str] = field(default_factory=list)
    name: str = "graph"
    opset: int = 13

    @property
    def input_names(self) -> List[str]:
        return [v.name for v in self.inputs]

    @property
    def output_names(self) -> List[str]:
        return [v.name for v in self.outputs]

    def producers(self) -> Dict[str, Optional[int]]:
        """Maps every value name to the index of its producing node (``None`` for inputs and parameters)."""
        producers: Dict[str, Optional[int]] = {}
        for name in list(self.input_names) + list(self.initializers):
            if name in producers:
                raise MalformedArtifact(f"Value '{name}' is declared more than once.")
            producers[name] = None
        for idx, node in enumerate(self.nodes):
            for out in node.outputs:
                if not out:
                    continue
                if out in producers:
                    raise MalformedArtifact(
                        f"Value '{out}' produced by node '{node.name}' already has a producer."
                    )
                producers[out] = idx
        return producers

    def topological_order(self) -> List[Node]:
        """Returns nodes in dependency order, ties broken by original position."""
        producers = self.producers()
        consumers: Dict[int, List[int]] = {i: [] for i in range(len(self.nodes))}
        indegree = [0] * len(self.nodes)
        for idx, node in enumerate(self.nodes):
            deps = set()
            for t_in in node.inputs:
                if not t_in:
                    continue
                src = producers.get(t_in)
                if src is not None:
                    deps.add(src)
            for src in deps:
                consumers[src].append(idx)
            indegree[idx] = len(deps)

        ready = [i for i, d in enumerate(indegree) if d == 0]
        heapq.heapify(ready)
        order: List[int] = []
        while ready:
            idx = heapq.heappop(ready)
            order.append(idx)
            for nxt in consumers[idx]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(ready, nxt)

        if len(order) != len(self.nodes):
            stuck = [self.nodes[i].name for i, d in enumerate(indegree) if d > 0]
            raise CyclicGraph(stuck)
        return [self.nodes[i] for i in order]

    def validate(self) -> None:
        """Checks that every reference resolves and that the graph is acyclic."""
        producers = self.producers()
        for node in self.nodes:
            for t_in in node.inputs:
                if t_in and t_in not in producers:
                    raise UnresolvedReference(t_in, node.name)
        for out in self.output_names:
            if out not in producers:
                raise UnresolvedReference(out)
        self.topological_order()

    def op_histogram(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for n in self.nodes:
            counts[str(n.op_type)] = counts.get(str(n.op_type), 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "opset": self.opset,
            "inputs": [v.to_dict() for v in self.inputs],
            "outputs": [v.to_dict() for v in self.outputs],
            "initializers": list(self.initializers),
            "nodes": [n.to_dict() for n in self.nodes],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Graph:
        return cls(
            name=d.get("name", "graph"),
            nodes=[Node.from_dict(n) for n in d["nodes"]],
            inputs=[ValueInfo.from_dict(v) for v in d["inputs"]],
            outputs=[ValueInfo.from_dict(v) for v in d["outputs"]],
            initializers=list(d.get("initializers", [])),
            opset=int(d.get("opset", 13)),
        )
