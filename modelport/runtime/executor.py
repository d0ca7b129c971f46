from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging
import time

import numpy as np

from ..errors import GraphEvaluationError, ShapeMismatch, UnresolvedReference
from ..ir.model_ir import Graph, ValueInfo
from ..ir.tensor import TensorBuffer
from .kernels import get_kernel

logger = logging.getLogger(__name__)


def check_input(slot: ValueInfo, batch: TensorBuffer) -> None:
    """Validates a batch against a declared input slot. Dimension 0 is the free batch dimension.

    A slot of unknown rank accepts any shape; its element type is still checked.
    """
    if slot.shape is not None:
        if batch.rank != len(slot.shape):
            raise ShapeMismatch(
                f"Input '{slot.name}' expects rank {len(slot.shape)} {slot.shape}, got {batch.shape}"
            )
        for axis, (want, got) in enumerate(zip(slot.shape, batch.shape)):
            if axis == 0 or want is None:
                continue
            if want != got:
                raise ShapeMismatch(
                    f"Input '{slot.name}' dimension {axis} must be {want}, got {got} (shape {batch.shape})"
                )
    if batch.dtype != slot.dtype:
        raise ShapeMismatch(
            f"Input '{slot.name}' expects element type {slot.dtype}, got {batch.dtype}"
        )


def run(graph: Graph, parameters: Dict[str, TensorBuffer], feeds: Dict[str, TensorBuffer],
        trace: Optional[List[Dict[str, Any]]] = None) -> Dict[str, TensorBuffer]:
    """Evaluates the graph and returns every declared output by name.

    When ``trace`` is given, one record per evaluated node is appended to it
    (node name, op, start/end in microseconds relative to the run, output shapes).
    """
    slots = {v.name: v for v in graph.inputs}
    for name in feeds:
        if name not in slots:
            raise ValueError(f"Unknown graph input '{name}'")
    graph.validate()

    values: Dict[str, np.ndarray] = {}
    for name in graph.initializers:
        if name not in parameters:
            raise UnresolvedReference(name)
        values[name] = parameters[name].numpy()
    for name, slot in slots.items():
        if name not in feeds:
            raise UnresolvedReference(name)
        check_input(slot, feeds[name])
        values[name] = feeds[name].numpy()

    t0 = time.perf_counter()
    for node in graph.topological_order():
        args = [values[t] if t else None for t in node.inputs]
        start = time.perf_counter()
        try:
            results = get_kernel(node.op_type)(node, args, graph.opset)
        except Exception as e:
            raise GraphEvaluationError(node.name, str(node.op_type), e) from e

        produced = [t for t in node.outputs if t]
        if len(results) < len(produced):
            raise GraphEvaluationError(
                node.name, str(node.op_type),
                ValueError(f"kernel returned {len(results)} outputs, node declares {len(produced)}"),
            )
        shapes = []
        for t_out, arr in zip(node.outputs, results):
            if not t_out:
                continue
            arr = np.asarray(arr)
            arr.flags.writeable = False
            values[t_out] = arr
            shapes.append(arr.shape)
        end = time.perf_counter()

        logger.debug("%s (%s) -> %s", node.name, node.op_type, shapes)
        if trace is not None:
            trace.append({
                "name": node.name,
                "op": str(node.op_type),
                "start": (start - t0) * 1e6,
                "end": (end - t0) * 1e6,
                "output_shapes": [list(s) for s in shapes],
            })

    return {name: TensorBuffer.wrap(values[name]) for name in graph.output_names}


def predict(graph: Graph, parameters: Dict[str, TensorBuffer], input_batch: TensorBuffer,
            trace: Optional[List[Dict[str, Any]]] = None) -> TensorBuffer:
    """Runs one batch through the graph's first input slot and returns its first output."""
    if not graph.inputs or not graph.outputs:
        raise ShapeMismatch(f"Graph '{graph.name}' declares no input or output slot")
    slot = graph.inputs[0]
    check_input(slot, input_batch)
    outputs = run(graph, parameters, {slot.name: input_batch}, trace=trace)
    return outputs[graph.outputs[0].name]
