from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from functools import reduce
from typing import Optional, Sequence, Tuple
import operator

import numpy as np

from ..errors import MalformedArtifact


class ElementType(str, Enum):
    """Element types a TensorBuffer may hold."""

    UINT8 = "uint8"
    INT8 = "int8"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT16 = "float16"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    BOOL = "bool"

    def __str__(self) -> str:
        return self.value

    @property
    def numpy_dtype(self) -> np.dtype:
        # Storage is always little-endian so artifacts are portable.
        return np.dtype(self.value).newbyteorder("<")

    @property
    def itemsize(self) -> int:
        return self.numpy_dtype.itemsize

    @classmethod
    def from_numpy(cls, dtype) -> ElementType:
        try:
            return cls(np.dtype(dtype).name)
        except ValueError as e:
            raise MalformedArtifact(f"Unsupported element type: {np.dtype(dtype)}") from e


def _num_elements(shape: Tuple[int, ...]) -> int:
    return reduce(operator.mul, shape, 1)


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


@dataclass(eq=False, frozen=True)
class TensorBuffer:
    """A typed, fixed-shape numeric buffer backed by a read-only numpy array.

    Buffers are never mutated after creation. Operations either return a
    read-only view that shares storage with the source (``reshape``,
    ``transpose``) or a freshly allocated copy (``cast``, ``divide``,
    ``contiguous``, ``from_bytes``). Because every storage is read-only,
    sharing is never observable to callers.
    """

    data: np.ndarray
    axes: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if not isinstance(self.data, np.ndarray):
            object.__setattr__(self, "data", np.asarray(self.data))
        ElementType.from_numpy(self.data.dtype)
        if self.axes is not None:
            axes = tuple(self.axes)
            if len(axes) != self.data.ndim:
                raise MalformedArtifact(
                    f"Axis names {axes} do not match rank {self.data.ndim}"
                )
            if len(set(axes)) != len(axes):
                raise MalformedArtifact(f"Axis names must be unique, got {axes}")
            object.__setattr__(self, "axes", axes)
        if self.data.flags.writeable:
            object.__setattr__(self, "data", _readonly(self.data.copy()))

    @classmethod
    def wrap(cls, arr, axes: Optional[Sequence[str]] = None) -> TensorBuffer:
        """Creates a buffer from an array-like. The array is copied unless it is already read-only."""
        return cls(np.asarray(arr), tuple(axes) if axes is not None else None)

    @classmethod
    def from_bytes(cls, raw: bytes, dtype, shape: Sequence[int],
                   axes: Optional[Sequence[str]] = None) -> TensorBuffer:
        """Decodes a little-endian row-major byte stream. Always copies."""
        etype = ElementType(str(dtype))
        shape = tuple(int(d) for d in shape)
        if any(d < 0 for d in shape):
            raise MalformedArtifact(f"Negative dimension in shape {shape}")
        expected = _num_elements(shape) * etype.itemsize
        if len(raw) != expected:
            raise MalformedArtifact(
                f"Byte length {len(raw)} does not match shape {shape} x {etype} ({expected} bytes)"
            )
        arr = np.frombuffer(raw, dtype=etype.numpy_dtype).reshape(shape)
        arr = arr.astype(etype.value, copy=True)
        return cls(_readonly(arr), tuple(axes) if axes is not None else None)

    @property
    def dtype(self) -> ElementType:
        return ElementType.from_numpy(self.data.dtype)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def rank(self) -> int:
        return self.data.ndim

    @property
    def num_elements(self) -> int:
        return _num_elements(self.shape)

    @property
    def nbytes(self) -> int:
        return self.num_elements * self.dtype.itemsize

    def to_bytes(self) -> bytes:
        return np.ascontiguousarray(self.data, dtype=self.dtype.numpy_dtype).tobytes()

    def numpy(self) -> np.ndarray:
        """Returns the read-only backing array."""
        return self.data

    def reshape(self, shape: Sequence[int], axes: Optional[Sequence[str]] = None) -> TensorBuffer:
        """Read-only view with a new shape (a copy when the source is not contiguous).

        Axis names are dropped unless given.
        """
        shape = tuple(int(d) for d in shape)
        if -1 not in shape and _num_elements(shape) != self.num_elements:
            raise MalformedArtifact(f"Cannot reshape {self.shape} into {shape}")
        try:
            view = self.data.reshape(shape)
        except ValueError as e:
            raise MalformedArtifact(f"Cannot reshape {self.shape} into {shape}") from e
        return TensorBuffer(_readonly(view), tuple(axes) if axes is not None else None)

    def transpose(self, perm: Optional[Sequence[int]] = None) -> TensorBuffer:
        """Read-only strided view with permuted axes; axis names follow the permutation."""
        if perm is None:
            perm = tuple(reversed(range(self.rank)))
        perm = tuple(int(p) for p in perm)
        if sorted(perm) != list(range(self.rank)):
            raise MalformedArtifact(f"Invalid permutation {perm} for rank {self.rank}")
        axes = tuple(self.axes[p] for p in perm) if self.axes is not None else None
        return TensorBuffer(_readonly(self.data.transpose(perm)), axes)

    def cast(self, dtype) -> TensorBuffer:
        """Fresh copy converted to ``dtype``."""
        etype = ElementType(str(dtype))
        return TensorBuffer(_readonly(self.data.astype(etype.value, copy=True)), self.axes)

    def divide(self, divisor: float) -> TensorBuffer:
        """Fresh floating-point copy divided elementwise by ``divisor``."""
        arr = self.data
        if not np.issubdtype(arr.dtype, np.floating):
            arr = arr.astype(np.float32)
        return TensorBuffer(_readonly(np.divide(arr, arr.dtype.type(divisor))), self.axes)

    def contiguous(self) -> TensorBuffer:
        """Fresh row-major copy."""
        return TensorBuffer(_readonly(np.array(self.data, order="C", copy=True)), self.axes)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TensorBuffer):
            return NotImplemented
        return (
            self.dtype == other.dtype
            and self.shape == other.shape
            and self.axes == other.axes
            and self.to_bytes() == other.to_bytes()
        )

    __hash__ = None

    def __repr__(self) -> str:
        axes = f", axes={self.axes}" if self.axes else ""
        return f"TensorBuffer(shape={self.shape}, dtype={self.dtype}{axes})"
