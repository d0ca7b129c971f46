"""Native artifact format for a (graph, parameters) pair.

Layout (little-endian)::

    magic        4s   b"MPRT"
    version      H
    flags        H    reserved, always 0
    header_len   Q
    header       header_len bytes of UTF-8 JSON
    payload      one raw buffer per entry of header["parameters"], in order

The JSON header holds the graph structure and a parameter table of
``{name, dtype, shape, axes, nbytes, crc32}``. The payload is the
concatenation of each buffer's row-major bytes.
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, Tuple, Union
import json
import logging
import struct
import zlib

from ..errors import CorruptArtifact, IOFailure, MalformedArtifact, ModelportError
from ..ir.model_ir import Graph
from ..ir.tensor import TensorBuffer

logger = logging.getLogger(__name__)

MAGIC = b"MPRT"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS = (1,)
HEADER_STRUCT = struct.Struct("<4sHHQ")

PathLike = Union[str, Path]


def encode(graph: Graph, parameters: Dict[str, TensorBuffer]) -> bytes:
    """Serializes a graph and its parameters into artifact bytes."""
    extra = sorted(set(parameters) - set(graph.initializers))
    if extra:
        raise MalformedArtifact(f"Parameters {extra} are not initializers of graph '{graph.name}'")
    table = []
    blobs = []
    for name in graph.initializers:
        if name not in parameters:
            raise MalformedArtifact(f"Parameter '{name}' is referenced by the graph but missing")
        buf = parameters[name]
        raw = buf.to_bytes()
        table.append({
            "name": name,
            "dtype": str(buf.dtype),
            "shape": list(buf.shape),
            "axes": list(buf.axes) if buf.axes is not None else None,
            "nbytes": len(raw),
            "crc32": zlib.crc32(raw),
        })
        blobs.append(raw)

    header = json.dumps(
        {"graph": graph.to_dict(), "parameters": table},
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")
    return HEADER_STRUCT.pack(MAGIC, FORMAT_VERSION, 0, len(header)) + header + b"".join(blobs)


def decode(data: bytes) -> Tuple[Graph, Dict[str, TensorBuffer]]:
    """Parses artifact bytes, validating markers, lengths and checksums."""
    if len(data) < HEADER_STRUCT.size:
        raise CorruptArtifact(f"Artifact is truncated ({len(data)} bytes)")
    magic, version, _flags, header_len = HEADER_STRUCT.unpack_from(data, 0)
    if magic != MAGIC:
        raise CorruptArtifact(f"Bad magic {magic!r}, expected {MAGIC!r}")
    if version not in SUPPORTED_VERSIONS:
        raise CorruptArtifact(f"Unsupported artifact version {version}")

    offset = HEADER_STRUCT.size
    if offset + header_len > len(data):
        raise CorruptArtifact("Header length exceeds artifact size")
    try:
        header = json.loads(data[offset:offset + header_len].decode("utf-8"))
        graph = Graph.from_dict(header["graph"])
        table = header["parameters"]
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise CorruptArtifact(f"Invalid artifact header: {e}") from e
    offset += header_len

    params: Dict[str, TensorBuffer] = {}
    for entry in table:
        try:
            name, nbytes, crc = entry["name"], int(entry["nbytes"]), int(entry["crc32"])
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptArtifact(f"Invalid parameter entry: {e}") from e
        raw = data[offset:offset + nbytes]
        if len(raw) != nbytes:
            raise CorruptArtifact(f"Parameter '{name}' is truncated")
        if zlib.crc32(raw) != crc:
            raise CorruptArtifact(f"Checksum mismatch for parameter '{name}'")
        try:
            params[name] = TensorBuffer.from_bytes(raw, entry["dtype"], entry["shape"], entry.get("axes"))
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptArtifact(f"Invalid parameter '{name}': {e}") from e
        offset += nbytes
    if offset != len(data):
        raise CorruptArtifact(f"{len(data) - offset} trailing bytes after payload")

    try:
        graph.validate()
    except ModelportError as e:
        raise CorruptArtifact(f"Artifact graph failed validation: {e}") from e
    if set(params) != set(graph.initializers):
        raise CorruptArtifact("Parameter table does not match graph initializers")
    return graph, params


def save(graph: Graph, parameters: Dict[str, TensorBuffer], destination: PathLike) -> None:
    """Writes the artifact to ``destination``. Existing files are overwritten."""
    data = encode(graph, parameters)
    try:
        with open(destination, "wb") as f:
            f.write(data)
    except OSError as e:
        raise IOFailure(f"Cannot write artifact '{destination}': {e}") from e
    logger.info("Saved artifact %s (%d bytes, %d parameters)", destination, len(data), len(parameters))


def load(source: PathLike) -> Tuple[Graph, Dict[str, TensorBuffer]]:
    try:
        with open(source, "rb") as f:
            data = f.read()
    except OSError as e:
        raise IOFailure(f"Cannot read artifact '{source}': {e}") from e
    return decode(data)

