"""File helpers shared by the session logger and pattern store."""

from __future__ import annotations

import json
import os
import random
import string
import tempfile
import time
from pathlib import Path
from typing import Any

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_id(prefix: str) -> str:
    """``<prefix>_<epoch-ms>_<9 lowercase alphanumerics>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def write_text_atomic(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` so readers never see a torn file.

    Raises:
        OSError: If the directory cannot be created or the file written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, indent=2, default=str))
