from __future__ import annotations
from typing import Optional


class ModelportError(Exception):
    """Base class for all errors raised by modelport."""


class MalformedArtifact(ModelportError, ValueError):
    """An input file (interchange model, tensor payload or label list) is structurally invalid."""


class UnresolvedReference(ModelportError, ValueError):
    def __init__(self, name: str, node: Optional[str] = None):
        self.name = name
        self.node = node
        where = f" (consumed by node '{node}')" if node else ""
        super().__init__(f"Value '{name}' has no producer{where}.")


class CyclicGraph(ModelportError, ValueError):
    def __init__(self, nodes):
        self.nodes = list(nodes)
        super().__init__(f"Graph contains a cycle through nodes: {', '.join(self.nodes)}")


class UnsupportedOperator(ModelportError, NotImplementedError):
    def __init__(self, kind: str, node: Optional[str] = None):
        self.kind = kind
        self.node = node
        where = f" in node '{node}'" if node else ""
        super().__init__(f"Unsupported operator '{kind}'{where}.")


class ShapeMismatch(ModelportError, ValueError):
    """A tensor's shape disagrees with what the consumer declared."""


class GraphEvaluationError(ModelportError, RuntimeError):
    def __init__(self, node: str, op_type: str, cause: BaseException):
        self.node = node
        self.op_type = op_type
        self.cause = cause
        super().__init__(f"Evaluation of node '{node}' ({op_type}) failed: {cause}")


class CorruptArtifact(ModelportError, ValueError):
    """A native artifact failed structural validation while decoding."""


class IOFailure(ModelportError, OSError):
    """Reading or writing a model file failed."""
