# bdfstore/io/load.py
from __future__ import annotations

import os

from bdfstore.core.config import WriterConfig
from bdfstore.io.container import Container


def create(path: str | os.PathLike, config: WriterConfig | None = None) -> Container:
    """Return a writable container that will be promoted to `path` on close_file."""
    return Container(path, config)


def load(path: str | os.PathLike) -> Container:
    container = Container()
    container.load_file(path)
    return container
