from __future__ import annotations
from .model_ir import Graph, Node, ValueInfo
from .opcode import OpKind
from .tensor import ElementType, TensorBuffer
from ..errors import IOFailure, MalformedArtifact, UnsupportedOperator
from typing import Any, Dict, List, Tuple, Union
from pathlib import Path
import logging
import numpy as np

import onnx
from onnx import numpy_helper
from google.protobuf.message import DecodeError

logger = logging.getLogger(__name__)

ModelSource = Union[str, Path, bytes, onnx.ModelProto]

DEFAULT_OPSET = 13


def _onnx_dtype_to_element_type(onnx_dtype: int, where: str) -> ElementType:
    try:
        np_dtype = onnx.helper.tensor_dtype_to_np_dtype(onnx_dtype)
    except KeyError as e:
        raise MalformedArtifact(f"Unknown ONNX element type {onnx_dtype} for '{where}'") from e
    return ElementType.from_numpy(np_dtype)


def _decode_tensor(t: onnx.TensorProto, name: str) -> TensorBuffer:
    """Decodes an ONNX TensorProto, validating its payload against dims and dtype."""
    if t.data_location == onnx.TensorProto.EXTERNAL:
        raise MalformedArtifact(f"Tensor '{name}' uses external data, which is not supported")
    etype = _onnx_dtype_to_element_type(t.data_type, name)
    shape = tuple(int(d) for d in t.dims)

    if t.raw_data:
        return TensorBuffer.from_bytes(t.raw_data, etype, shape)

    # Typed fields (float_data, int64_data, ...)
    try:
        arr = numpy_helper.to_array(t)
    except (ValueError, TypeError) as e:
        raise MalformedArtifact(f"Tensor '{name}' payload does not match shape {shape}: {e}") from e
    if arr.shape != shape:
        raise MalformedArtifact(f"Tensor '{name}' decoded to shape {arr.shape}, declared {shape}")
    return TensorBuffer.wrap(arr.astype(etype.value))


def _attr_value(a: onnx.AttributeProto, node_name: str) -> Any:
    v = onnx.helper.get_attribute_value(a)
    if isinstance(v, bytes):
        return v.decode("utf-8")
    if isinstance(v, (int, float)):
        return v
    if isinstance(v, list) and all(isinstance(x, (int, float, bytes)) for x in v):
        return [x.decode("utf-8") if isinstance(x, bytes) else x for x in v]
    raise MalformedArtifact(
        f"Attribute '{a.name}' of node '{node_name}' has an unsupported kind ({type(v).__name__})"
    )


def _constant_value(n: onnx.NodeProto, name: str) -> TensorBuffer:
    """Extracts the payload of a Constant node."""
    attrs = {a.name: a for a in n.attribute}
    if "value" in attrs:
        return _decode_tensor(attrs["value"].t, name)
    if "value_float" in attrs:
        return TensorBuffer.wrap(np.array(attrs["value_float"].f, dtype=np.float32))
    if "value_floats" in attrs:
        return TensorBuffer.wrap(np.array(list(attrs["value_floats"].floats), dtype=np.float32))
    if "value_int" in attrs:
        return TensorBuffer.wrap(np.array(attrs["value_int"].i, dtype=np.int64))
    if "value_ints" in attrs:
        return TensorBuffer.wrap(np.array(list(attrs["value_ints"].ints), dtype=np.int64))
    raise MalformedArtifact(f"Constant node '{name}' has no supported value attribute")


def _value_info(v: onnx.ValueInfoProto) -> ValueInfo:
    ttype = v.type.tensor_type
    dtype = ElementType.FLOAT32
    if ttype.elem_type != 0:
        dtype = _onnx_dtype_to_element_type(ttype.elem_type, v.name)
    if not ttype.HasField("shape"):
        # No shape at all: rank unknown. An empty shape is a scalar.
        return ValueInfo(name=v.name, shape=None, dtype=dtype)
    dims = []
    for d in ttype.shape.dim:
        # Symbolic (dim_param) or unset dimensions are free.
        dims.append(d.dim_value if d.HasField("dim_value") and d.dim_value > 0 else None)
    return ValueInfo(name=v.name, shape=tuple(dims), dtype=dtype)


def _load_model_proto(source: ModelSource) -> onnx.ModelProto:
    if isinstance(source, onnx.ModelProto):
        return source
    try:
        if isinstance(source, (bytes, bytearray)):
            return onnx.load_model_from_string(bytes(source))
        return onnx.load(str(source))
    except OSError as e:
        raise IOFailure(f"Cannot read ONNX model '{source}': {e}") from e
    except (DecodeError, RuntimeWarning, ValueError) as e:
        raise MalformedArtifact(f"Cannot parse ONNX model: {e}") from e


def _opset_version(model: onnx.ModelProto) -> int:
    for imp in model.opset_import:
        if imp.domain in ("", "ai.onnx"):
            return int(imp.version)
    return DEFAULT_OPSET


def load_onnx(source: ModelSource) -> Tuple[Graph, Dict[str, TensorBuffer]]:
    """Loads an ONNX model into an executable Graph plus its parameter buffers.

    ``source`` may be a path, the serialized model bytes, or a parsed
    ``onnx.ModelProto``. The returned graph has been validated: every
    reference resolves and the node DAG is acyclic.
    """
    model = _load_model_proto(source)
    g = model.graph

    params: Dict[str, TensorBuffer] = {}

    # Weights and biases
    for t in g.initializer:
        params[t.name] = _decode_tensor(t, t.name)

    nodes: List[Node] = []
    for n in g.node:
        name = n.name or f"{n.op_type}_{n.output[0] if n.output else len(nodes)}"
        if n.domain not in ("", "ai.onnx"):
            raise UnsupportedOperator(f"{n.domain}::{n.op_type}", name)

        # Constants become parameters so the executable graph carries no tensor attributes.
        if n.op_type == "Constant":
            if len(n.output) != 1:
                raise MalformedArtifact(f"Constant node '{name}' must have exactly one output")
            params[n.output[0]] = _constant_value(n, name)
            continue

        try:
            op_type = OpKind(n.op_type)
        except ValueError as e:
            raise UnsupportedOperator(n.op_type, name) from e

        nodes.append(Node(
            name=name,
            op_type=op_type,
            inputs=list(n.input),
            outputs=list(n.output),
            attrs={a.name: _attr_value(a, name) for a in n.attribute}
        ))

    initializer_names = list(params)
    inputs = [_value_info(i) for i in g.input if i.name not in params]
    outputs = [_value_info(o) for o in g.output]

    graph = Graph(
        nodes=nodes,
        inputs=inputs,
        outputs=outputs,
        initializers=initializer_names,
        name=g.name or "graph",
        opset=_opset_version(model),
    )
    graph.validate()

    logger.info(
        "Imported graph '%s': %d nodes, %d parameters, opset %d",
        graph.name, len(graph.nodes), len(params), graph.opset,
    )
    return graph, params
