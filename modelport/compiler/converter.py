from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union
import logging

from ..config import PortConfig
from ..errors import ModelportError
from ..ir.onnx_importer import load_onnx
from ..store import model_store

logger = logging.getLogger(__name__)


class StatusKind(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value


@dataclass
class ConversionStatus:
    """Outcome of one conversion. ``reason`` is set for warnings."""
    kind: StatusKind
    destination: Path
    reason: Optional[str] = None
    removed_existing: bool = False

    @property
    def ok(self) -> bool:
        return self.kind is StatusKind.SUCCESS


def destination_for(source_path: Union[str, Path], destination_dir: Union[str, Path],
                    config: Optional[PortConfig] = None) -> Path:
    config = config or PortConfig()
    return Path(destination_dir) / config.artifact_name(str(source_path))


def convert(source_path: Union[str, Path], destination_dir: Union[str, Path],
            config: Optional[PortConfig] = None) -> ConversionStatus:
    """Converts an ONNX model into a native artifact inside ``destination_dir``.

    An existing artifact at the derived destination is deleted before the new
    one is written. This is not an atomic replace: if conversion fails after
    the deletion, no artifact remains, and the returned status says so via
    ``removed_existing``. Failures never raise; they come back as a
    ``WARNING`` status.
    """
    destination = destination_for(source_path, destination_dir, config)
    removed = False

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            destination.unlink()
            removed = True
            logger.warning("Removed existing artifact %s before conversion", destination)

        graph, params = load_onnx(source_path)
        model_store.save(graph, params, destination)
    except (ModelportError, OSError) as e:
        logger.warning("Conversion of %s failed: %s", source_path, e)
        reason = f"{type(e).__name__}: {e}"
        if removed:
            reason += f" (previous artifact at {destination} was removed)"
        return ConversionStatus(StatusKind.WARNING, destination, reason, removed)

    if not destination.exists():
        reason = f"Artifact {destination} does not exist after writing"
        logger.warning("%s", reason)
        return ConversionStatus(StatusKind.WARNING, destination, reason, removed)

    logger.info("Converted %s -> %s", source_path, destination)
    return ConversionStatus(StatusKind.SUCCESS, destination, None, removed)
