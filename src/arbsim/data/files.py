"""JSON file helpers shared by every persisted artifact.

Reads decode floats as Decimal. Writes go to a temp file in the same
directory and are moved into place with os.replace, so a crash mid-write
leaves the previous file intact.
"""

import json
import os
import tempfile
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import IO, Any


def read_json(path: Path) -> Any:
    """Load a JSON document with floats parsed as Decimal."""
    with open(path, encoding="utf-8") as fh:
        return json.load(fh, parse_float=Decimal)


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _write_atomic(path: Path, write: Callable[[IO[str]], None]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            write(fh)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def write_json_atomic(path: Path, data: Any, indent: int | None = 2) -> None:
    """Serialize data to path via write-temp-then-rename.

    Decimals are written as strings so a reload is exact.
    """
    _write_atomic(path, lambda fh: json.dump(data, fh, indent=indent, default=_default))


def write_text_atomic(path: Path, text: str) -> None:
    """Write a text document via write-temp-then-rename."""
    _write_atomic(path, lambda fh: fh.write(text))
