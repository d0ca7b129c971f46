"""Numpy kernels for every supported operator.

Each kernel takes the node, its resolved input arrays (``None`` for an
omitted optional input) and the graph opset, and returns a list with one
array per node output. Kernels never write to their inputs.
"""
from __future__ import annotations
from functools import reduce
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import itertools
import operator

import numpy as np

from ..ir.model_ir import Node
from ..ir.opcode import OpKind

Arrays = List[Optional[np.ndarray]]
Kernel = Callable[[Node, Arrays, int], List[np.ndarray]]


def _prod(shape: Sequence[int]) -> int:
    return reduce(operator.mul, shape, 1)


def _required(node: Node, inputs: Arrays, idx: int) -> np.ndarray:
    if idx >= len(inputs) or inputs[idx] is None:
        raise ValueError(f"{node.op_type} requires input #{idx}")
    return inputs[idx]


def _optional(inputs: Arrays, idx: int) -> Optional[np.ndarray]:
    return inputs[idx] if idx < len(inputs) else None


def _scalar(x: np.ndarray, value: float):
    return np.asarray(value, dtype=x.dtype)


# --- Elementwise ---

def _binary(fn):
    def kernel(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
        a = _required(node, inputs, 0)
        b = _required(node, inputs, 1)
        return [np.asarray(fn(a, b))]
    return kernel


def _div(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    if np.issubdtype(a.dtype, np.integer) and np.issubdtype(b.dtype, np.integer):
        # Integer division truncates toward zero
        return np.trunc(np.true_divide(a, b)).astype(np.result_type(a, b))
    return np.divide(a, b)


def _unary(fn):
    def kernel(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
        return [np.asarray(fn(_required(node, inputs, 0), node))]
    return kernel


def _relu(x, node):
    return np.maximum(x, _scalar(x, 0))


def _leaky_relu(x, node):
    alpha = _scalar(x, node.attrs.get("alpha", 0.01))
    return np.where(x < 0, x * alpha, x)


def _sigmoid(x, node):
    one = _scalar(x, 1)
    return one / (one + np.exp(-x))


def _tanh(x, node):
    return np.tanh(x)


def _softmax_along(x: np.ndarray, axis: int) -> np.ndarray:
    shifted = x - np.max(x, axis=axis, keepdims=True)
    e = np.exp(shifted)
    return e / np.sum(e, axis=axis, keepdims=True)


def softmax(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    if opset >= 13:
        return [_softmax_along(x, int(node.attrs.get("axis", -1)))]
    # Before opset 13 the input is coerced to 2-D around ``axis``.
    axis = int(node.attrs.get("axis", 1))
    if axis < 0:
        axis += x.ndim
    flat = x.reshape(_prod(x.shape[:axis]), -1)
    return [_softmax_along(flat, 1).reshape(x.shape)]


def clip(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    if opset >= 11:
        lo, hi = _optional(inputs, 1), _optional(inputs, 2)
    else:
        lo = node.attrs.get("min")
        hi = node.attrs.get("max")
        lo = None if lo is None else _scalar(x, lo)
        hi = None if hi is None else _scalar(x, hi)
    if lo is None and hi is None:
        return [x.copy()]
    return [np.clip(x, lo, hi).astype(x.dtype, copy=False)]


# --- Linear algebra ---

def matmul(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    return [np.matmul(_required(node, inputs, 0), _required(node, inputs, 1))]


def gemm(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    a = _required(node, inputs, 0)
    b = _required(node, inputs, 1)
    c = _optional(inputs, 2)
    if node.attrs.get("transA", 0):
        a = a.T
    if node.attrs.get("transB", 0):
        b = b.T
    y = np.matmul(a, b)
    alpha = node.attrs.get("alpha", 1.0)
    beta = node.attrs.get("beta", 1.0)
    if alpha != 1.0:
        y = y * _scalar(y, alpha)
    if c is not None:
        y = y + (c if beta == 1.0 else c * _scalar(c, beta))
    return [y]


def _spatial_params(node: Node, spatial: Sequence[int], kernel: Sequence[int],
                    ceil_mode: bool = False) -> Tuple[List[int], List[int], List[int], List[int], List[int]]:
    """Resolves strides, dilations, padding and output size for a windowed op.

    Returns ``(strides, dilations, pad_begin, pad_end, out_shape)``.
    """
    nd = len(spatial)
    strides = list(node.attrs.get("strides", [1] * nd))
    dilations = list(node.attrs.get("dilations", [1] * nd))
    auto_pad = node.attrs.get("auto_pad", "NOTSET")
    eff_k = [(k - 1) * d + 1 for k, d in zip(kernel, dilations)]

    if auto_pad in ("SAME_UPPER", "SAME_LOWER"):
        pad_begin, pad_end = [], []
        for i in range(nd):
            out = -(-spatial[i] // strides[i])
            total = max(0, (out - 1) * strides[i] + eff_k[i] - spatial[i])
            small, big = total // 2, total - total // 2
            if auto_pad == "SAME_UPPER":
                pad_begin.append(small)
                pad_end.append(big)
            else:
                pad_begin.append(big)
                pad_end.append(small)
    elif auto_pad == "VALID":
        pad_begin, pad_end = [0] * nd, [0] * nd
    elif auto_pad == "NOTSET":
        pads = list(node.attrs.get("pads", [0] * (2 * nd)))
        if len(pads) != 2 * nd:
            raise ValueError(f"pads must have {2 * nd} values, got {len(pads)}")
        pad_begin, pad_end = pads[:nd], pads[nd:]
    else:
        raise ValueError(f"Unknown auto_pad '{auto_pad}'")

    out_shape = []
    for i in range(nd):
        span = spatial[i] + pad_begin[i] + pad_end[i] - eff_k[i]
        if ceil_mode:
            out = -(-span // strides[i]) + 1
            # The last window must start inside the input or the leading pad.
            if (out - 1) * strides[i] >= spatial[i] + pad_begin[i]:
                out -= 1
        else:
            out = span // strides[i] + 1
        if out <= 0:
            raise ValueError(f"Non-positive output size along spatial axis {i}")
        out_shape.append(out)
    return strides, dilations, pad_begin, pad_end, out_shape


def _pad_spatial(x: np.ndarray, pad_begin, pad_end, value) -> np.ndarray:
    if not any(pad_begin) and not any(pad_end):
        return x
    widths = [(0, 0), (0, 0)] + list(zip(pad_begin, pad_end))
    return np.pad(x, widths, mode="constant", constant_values=value)


def _extra_end_pad(spatial, kernel, strides, dilations, pad_begin, pad_end, out_shape) -> List[int]:
    """End padding needed beyond ``pad_end`` so that every window is in bounds (ceil_mode)."""
    extra = []
    for i in range(len(spatial)):
        need = (out_shape[i] - 1) * strides[i] + (kernel[i] - 1) * dilations[i] + 1
        have = spatial[i] + pad_begin[i] + pad_end[i]
        extra.append(max(0, need - have))
    return extra


def _windows(xp: np.ndarray, kernel, strides, dilations, out_shape):
    """Yields one strided slice of ``xp`` of shape (N, C, *out_shape) per kernel offset."""
    for k_idx in itertools.product(*(range(k) for k in kernel)):
        sl = tuple(
            slice(k * d, k * d + s * (o - 1) + 1, s)
            for k, d, s, o in zip(k_idx, dilations, strides, out_shape)
        )
        yield xp[(slice(None), slice(None)) + sl]


def conv(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    w = _required(node, inputs, 1)
    b = _optional(inputs, 2)
    group = int(node.attrs.get("group", 1))
    kernel = list(node.attrs.get("kernel_shape", w.shape[2:]))
    n, c = x.shape[:2]
    m = w.shape[0]
    if c % group or m % group:
        raise ValueError(f"Channels ({c} in, {m} out) are not divisible by group={group}")
    if w.shape[1] * group != c:
        raise ValueError(f"Weight expects {w.shape[1] * group} input channels, got {c}")

    strides, dilations, pad_begin, pad_end, out_shape = _spatial_params(node, x.shape[2:], kernel)
    xp = _pad_spatial(x, pad_begin, pad_end, 0)

    cg, mg = c // group, m // group
    k_size = _prod(kernel)
    o_size = _prod(out_shape)
    outs = []
    for g in range(group):
        xg = xp[:, g * cg:(g + 1) * cg]
        cols = np.stack(list(_windows(xg, kernel, strides, dilations, out_shape)), axis=2)
        cols = cols.reshape(n, cg * k_size, o_size)
        wg = w[g * mg:(g + 1) * mg].reshape(mg, cg * k_size)
        outs.append(np.matmul(wg, cols))
    y = np.concatenate(outs, axis=1).reshape((n, m) + tuple(out_shape))
    if b is not None:
        y = y + b.reshape((1, m) + (1,) * len(out_shape))
    return [y]


# --- Normalization and pooling ---

def batchnorm(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    scale, bias, mean, var = (_required(node, inputs, i) for i in range(1, 5))
    eps = _scalar(x, node.attrs.get("epsilon", 1e-5))
    bshape = (1, x.shape[1]) + (1,) * (x.ndim - 2)
    y = (x - mean.reshape(bshape)) / np.sqrt(var.reshape(bshape) + eps)
    return [y * scale.reshape(bshape) + bias.reshape(bshape)]


def _pool_setup(node: Node, x: np.ndarray):
    if "kernel_shape" not in node.attrs:
        raise ValueError("kernel_shape attribute is required")
    kernel = list(node.attrs["kernel_shape"])
    ceil_mode = bool(node.attrs.get("ceil_mode", 0))
    spatial = x.shape[2:]
    strides, dilations, pad_begin, pad_end, out_shape = _spatial_params(node, spatial, kernel, ceil_mode)
    extra = _extra_end_pad(spatial, kernel, strides, dilations, pad_begin, pad_end, out_shape)
    return kernel, strides, dilations, pad_begin, pad_end, extra, out_shape


def maxpool(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    if len(node.outputs) > 1 and node.outputs[1]:
        raise ValueError("MaxPool Indices output is not supported")
    kernel, strides, dilations, pad_begin, pad_end, extra, out_shape = _pool_setup(node, x)
    if np.issubdtype(x.dtype, np.floating):
        fill = -np.inf
    else:
        fill = np.iinfo(x.dtype).min
    xp = _pad_spatial(x, pad_begin, [e + x2 for e, x2 in zip(pad_end, extra)], fill)
    return [np.array(reduce(np.maximum, _windows(xp, kernel, strides, dilations, out_shape)))]


def avgpool(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    kernel, strides, dilations, pad_begin, pad_end, extra, out_shape = _pool_setup(node, x)
    end = [e + x2 for e, x2 in zip(pad_end, extra)]
    xp = _pad_spatial(x, pad_begin, end, 0)
    total = reduce(np.add, _windows(xp, kernel, strides, dilations, out_shape))

    # Divisor: window positions inside the input, plus explicit pads when
    # count_include_pad is set. Padding added for ceil_mode never counts.
    if node.attrs.get("count_include_pad", 0):
        ones = np.ones((1, 1) + tuple(s + b + e for s, b, e in zip(x.shape[2:], pad_begin, pad_end)), dtype=x.dtype)
        mask = _pad_spatial(ones, [0] * len(kernel), extra, 0)
    else:
        ones = np.ones((1, 1) + tuple(x.shape[2:]), dtype=x.dtype)
        mask = _pad_spatial(ones, pad_begin, end, 0)
    count = reduce(np.add, _windows(mask, kernel, strides, dilations, out_shape))
    return [(total / count).astype(x.dtype, copy=False)]


def global_avgpool(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    return [np.mean(x, axis=tuple(range(2, x.ndim)), keepdims=True, dtype=x.dtype)]


# --- Shape manipulation ---

def flatten(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    axis = int(node.attrs.get("axis", 1))
    if axis < 0:
        axis += x.ndim
    return [x.reshape(_prod(x.shape[:axis]), _prod(x.shape[axis:])).copy()]


def reshape(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    if opset >= 5:
        target = [int(d) for d in _required(node, inputs, 1).reshape(-1)]
    else:
        target = [int(d) for d in node.attrs.get("shape", [])]
    if not node.attrs.get("allowzero", 0):
        # A zero copies the corresponding input dimension.
        target = [x.shape[i] if d == 0 else d for i, d in enumerate(target)]
    return [x.reshape(target).copy()]


def transpose(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    perm = node.attrs.get("perm")
    return [np.ascontiguousarray(np.transpose(x, perm))]


def concat(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    if "axis" not in node.attrs:
        raise ValueError("Concat requires the axis attribute")
    parts = [t for t in inputs if t is not None]
    return [np.concatenate(parts, axis=int(node.attrs["axis"]))]


def identity(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    return [_required(node, inputs, 0).copy()]


def dropout(node: Node, inputs: Arrays, opset: int) -> List[np.ndarray]:
    x = _required(node, inputs, 0)
    outs = [x.copy()]
    if len(node.outputs) > 1 and node.outputs[1]:
        outs.append(np.ones(x.shape, dtype=bool))
    return outs


KERNELS: Dict[OpKind, Kernel] = {
    OpKind.ADD: _binary(np.add),
    OpKind.SUB: _binary(np.subtract),
    OpKind.MUL: _binary(np.multiply),
    OpKind.DIV: _binary(_div),
    OpKind.MATMUL: matmul,
    OpKind.GEMM: gemm,
    OpKind.CONV: conv,
    OpKind.RELU: _unary(_relu),
    OpKind.LEAKY_RELU: _unary(_leaky_relu),
    OpKind.SIGMOID: _unary(_sigmoid),
    OpKind.TANH: _unary(_tanh),
    OpKind.SOFTMAX: softmax,
    OpKind.CLIP: clip,
    OpKind.BATCHNORM: batchnorm,
    OpKind.MAXPOOL: maxpool,
    OpKind.AVGPOOL: avgpool,
    OpKind.GLOBAL_AVGPOOL: global_avgpool,
    OpKind.FLATTEN: flatten,
    OpKind.RESHAPE: reshape,
    OpKind.TRANSPOSE: transpose,
    OpKind.CONCAT: concat,
    OpKind.IDENTITY: identity,
    OpKind.DROPOUT: dropout,
}

_missing = set(OpKind) - set(KERNELS)
if _missing:
    raise RuntimeError(f"No kernel registered for: {sorted(str(k) for k in _missing)}")


def get_kernel(op_type: OpKind) -> Kernel:
    return KERNELS[op_type]
