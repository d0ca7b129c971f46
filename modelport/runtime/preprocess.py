from __future__ import annotations

import numpy as np

from ..ir.tensor import TensorBuffer

LAYOUTS = ("NCHW", "NHWC")


def normalize_batch(pixels, layout: str = "NCHW", scale: float = 255.0) -> TensorBuffer:
    """Turns a decoded (N, H, W, 3) pixel batch into model input.

    Integer pixels are divided by ``scale`` into float32 values in [0, 1];
    float input is assumed to be normalized already. With ``layout="NCHW"``
    the channel axis is moved ahead of the spatial axes.
    """
    if layout not in LAYOUTS:
        raise ValueError(f"Unknown layout '{layout}', expected one of {LAYOUTS}")
    buf = pixels if isinstance(pixels, TensorBuffer) else TensorBuffer.wrap(np.asarray(pixels), axes=None)
    if buf.rank != 4:
        raise ValueError(f"Expected a (N, H, W, C) batch, got shape {buf.shape}")
    buf = TensorBuffer(buf.data, ("N", "H", "W", "C"))

    if np.issubdtype(buf.data.dtype, np.integer):
        buf = buf.divide(scale)
    if buf.dtype != "float32":
        buf = buf.cast("float32")
    if layout == "NCHW":
        buf = buf.transpose((0, 3, 1, 2)).contiguous()
    return buf
