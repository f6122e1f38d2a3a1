"""Columnar in-memory results.

Query responses carry each column as a raw little-endian buffer. This module
slices those buffers into per-bucket numpy arrays, and packs arrays back into
buffers for writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Sequence

import numpy as np

from mkts_client.messages import MultiQueryResponse, NumpyMultiDataset

DEFAULT_CATEGORY = "Symbol/Timeframe/AttributeGroup"


@dataclass(frozen=True)
class TimeBucketKey:
    """Identifies a time bucket, e.g. "AAPL/1Min/OHLCV".

    Attributes:
        key: Slash-separated item names.
        category: Slash-separated category names, one per item.
    """

    key: str
    category: str = DEFAULT_CATEGORY

    @classmethod
    def from_string(cls, text: str) -> TimeBucketKey:
        """Parse "items" or "items:categories"."""
        key, sep, category = text.partition(":")
        return cls(key=key, category=category if sep and category else DEFAULT_CATEGORY)

    @property
    def items(self) -> dict[str, str]:
        """Map of category name to item name."""
        return dict(zip(self.category.split("/"), self.key.split("/")))

    def __str__(self) -> str:
        return f"{self.key}:{self.category}"


@dataclass(frozen=True)
class DataShape:
    """Name and numpy type string ("i8", "f4", ...) of one column."""

    name: str
    type: str


class ColumnSeries:
    """Ordered set of equal-length named columns."""

    def __init__(self) -> None:
        self._columns: dict[str, np.ndarray] = {}

    def add_column(self, name: str, values: Any) -> None:
        """Add or replace a column.

        Raises:
            ValueError: If the column length differs from existing columns.
        """
        column = np.asarray(values)
        for other_name, other in self._columns.items():
            if other_name != name and len(other) != len(column):
                raise ValueError(
                    f"column {name} has length {len(column)}, expected {len(other)}"
                )
        self._columns[name] = column

    @property
    def names(self) -> list[str]:
        return list(self._columns)

    def __getitem__(self, name: str) -> np.ndarray:
        return self._columns[name]

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        """Number of rows."""
        first = next(iter(self._columns.values()), None)
        return 0 if first is None else len(first)

    def __repr__(self) -> str:
        return f"ColumnSeries(columns={self.names}, rows={len(self)})"


ColumnSeriesMap = dict[TimeBucketKey, ColumnSeries]


def _dtype(type_str: str) -> np.dtype:
    return np.dtype(type_str).newbyteorder("<")


def dataset_to_column_series(
    dataset: NumpyMultiDataset, start: int, length: int
) -> ColumnSeries:
    """Slice rows [start, start + length) of every column into a ColumnSeries.

    Raises:
        ValueError: If the dataset is inconsistent or a buffer is too short.
    """
    if not len(dataset.names) == len(dataset.types) == len(dataset.data):
        raise ValueError("dataset names, types and data differ in length")

    series = ColumnSeries()
    for name, type_str, buf in zip(dataset.names, dataset.types, dataset.data):
        column = np.frombuffer(buf, dtype=_dtype(type_str))
        if start + length > len(column):
            raise ValueError(
                f"column {name} holds {len(column)} rows, need {start + length}"
            )
        series.add_column(name, column[start : start + length])
    return series


def convert_multi_query_reply(
    response: Optional[MultiQueryResponse],
) -> Optional[ColumnSeriesMap]:
    """Convert a query response into column series keyed by time bucket."""
    if response is None:
        return None

    csm: ColumnSeriesMap = {}
    for query_response in response.responses:
        dataset = query_response.result
        if dataset is None:
            continue
        for tbk_str, start in dataset.startindex.items():
            length = dataset.lengths.get(tbk_str, 0)
            csm[TimeBucketKey.from_string(tbk_str)] = dataset_to_column_series(
                dataset, start, length
            )
    return csm


def column_series_from_result(
    shapes: Sequence[DataShape], columns: Mapping[str, Sequence[Any]]
) -> ColumnSeries:
    """Build a ColumnSeries from column shapes and lists of values.

    Raises:
        ValueError: If a column named in ``shapes`` is missing.
    """
    series = ColumnSeries()
    for shape in shapes:
        values = columns.get(shape.name)
        if values is None:
            raise ValueError(f"unable to unpack {shape.name}")
        series.add_column(shape.name, np.asarray(values, dtype=_dtype(shape.type)))
    return series


def to_numpy_dataset(tbk: TimeBucketKey, series: ColumnSeries) -> NumpyMultiDataset:
    """Pack a ColumnSeries into column buffers for a write request."""
    types: list[str] = []
    data: list[bytes] = []
    for name in series:
        column = np.ascontiguousarray(series[name])
        little = column.astype(column.dtype.newbyteorder("<"), copy=False)
        types.append(little.dtype.str.lstrip("<|"))
        data.append(little.tobytes())

    rows = len(series)
    return NumpyMultiDataset(
        types=types,
        names=series.names,
        data=data,
        length=rows,
        startindex={str(tbk): 0},
        lengths={str(tbk): rows},
    )
