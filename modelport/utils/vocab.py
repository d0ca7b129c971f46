from __future__ import annotations
from pathlib import Path
from typing import List, Union

from ..errors import IOFailure, MalformedArtifact


def load_vocabulary(path: Union[str, Path]) -> List[str]:
    """Reads one label per line; line ``i`` names output channel ``i``.

    Surrounding whitespace is stripped and trailing blank lines are dropped.
    A blank line before the last label would shift every later label onto
    the wrong channel, so it raises ``MalformedArtifact``.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise IOFailure(f"Cannot read vocabulary '{path}': {e}") from e
    labels = [line.strip() for line in text.splitlines()]
    while labels and not labels[-1]:
        labels.pop()
    for i, label in enumerate(labels):
        if not label:
            raise MalformedArtifact(f"Vocabulary '{path}' has a blank label on line {i + 1}")
    return labels
