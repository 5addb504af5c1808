# bdfstore/io/mdf_export.py
from __future__ import annotations

import logging
import os
from pathlib import Path

from asammdf import MDF, Signal

from bdfstore.core.metadata import CH_PHYS_UNIT_EXT
from bdfstore.io.container import Container

logger = logging.getLogger(__name__)


def export_mdf(container: Container, path: str | os.PathLike, *, version: str = "4.10") -> Path:
    """
    Write every block of every input of a readable container to an MDF file.

    Each (input, block) becomes its own MDF channel group holding one signal
    in physical units, with time zero at the block's trigger sample.
    Empty blocks are skipped.
    """
    path = Path(path)
    mdf = MDF(version=version)
    appended = 0
    try:
        for g in range(container.get_number_of_groups()):
            for i in range(container.get_number_of_inputs(g)):
                for b in range(container.get_number_of_blocks(g, i)):
                    ts = container.series(g, i, b)
                    if ts.n == 0:
                        logger.debug("skipping empty block %d of group %d input %d", b, g, i)
                        continue
                    comment = f"group {g} board {ts.attrs['board']} input {ts.attrs['input']} block {b}"
                    original_unit = ts.attrs.get(CH_PHYS_UNIT_EXT)
                    if original_unit:
                        comment += f" ({CH_PHYS_UNIT_EXT}={original_unit})"
                    sig = Signal(
                        samples=ts.values,
                        timestamps=ts.time,
                        name=ts.name,
                        unit=ts.unit or "",
                        comment=comment,
                    )
                    mdf.append([sig], comment=comment)
                    appended += 1
        saved = mdf.save(path, overwrite=True)
    finally:
        mdf.close()
    logger.info("exported %d blocks to %s", appended, saved)
    return Path(saved)
