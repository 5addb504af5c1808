# bdfstore/core/__init__.py
"""
Core model of a block container.

This module defines the storage-independent pieces:
- Scaling: analog value -> volt -> physical unit conversion
- InputChannel / Group: descriptors of inputs and recording groups
- BlockEntry / BlockDirectory: finalized blocks of one input
- EnvelopeReducer: min/max envelopes backed by reduction curves
- TimeSeries / LazyTimeSeries: time-indexed views of one block

The file layout and the Container live in bdfstore.io.
"""

from .timeseries import TimeSeries, LazyTimeSeries
from .scaling import Scaling
from .attributes import AttributeStore, ATTRIBUTE_VALUE_MAX
from .envelope import EnvelopeReducer, ReductionBuilder, segment_bounds
from .block import BlockEntry, BlockDirectory, Extent
from .channel import InputChannel
from .group import Group
from .handles import Handle, GroupHandle, StreamerHandle, HandleArena
from .config import WriterConfig
from .metadata import (
    CH_NAME,
    CH_PHYS_UNIT,
    CH_PHYS_UNIT_EXT,
    BlockInfo,
    DateTime,
    InputInfo,
    OperationMode,
)
from .exceptions import (
    ErrorCode,
    BdfError,
    ResourceError,
    ArgumentError,
    InvalidFileError,
    InvalidTimeSeries,
    InvalidHandleError,
    InternalError,
    AttributesSealedError,
)


__all__ = [
    # time series
    "TimeSeries",
    "LazyTimeSeries",

    # model
    "Scaling",
    "AttributeStore",
    "ATTRIBUTE_VALUE_MAX",
    "EnvelopeReducer",
    "ReductionBuilder",
    "segment_bounds",
    "BlockEntry",
    "BlockDirectory",
    "Extent",
    "InputChannel",
    "Group",

    # handles and configuration
    "Handle",
    "GroupHandle",
    "StreamerHandle",
    "HandleArena",
    "WriterConfig",

    # metadata
    "CH_NAME",
    "CH_PHYS_UNIT",
    "CH_PHYS_UNIT_EXT",
    "BlockInfo",
    "DateTime",
    "InputInfo",
    "OperationMode",

    # exceptions
    "ErrorCode",
    "BdfError",
    "ResourceError",
    "ArgumentError",
    "InvalidFileError",
    "InvalidTimeSeries",
    "InvalidHandleError",
    "InternalError",
    "AttributesSealedError",
]
