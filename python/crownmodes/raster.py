"""
Parameter fields: scalar values that may vary over the x-y-plane.

There are exactly two variants. A ConstantField returns the same value
everywhere; a GridField is a rectangular, non-rotated raster with nearest-cell
lookup. Both are immutable and only ever read by the mode calculation.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Tuple, Union

import numpy as np

from crownmodes.errors import InvalidArgumentError, OutOfRangeError


@dataclass(frozen=True)
class ConstantField:
    """Can be used like a raster but returns the same value at every location."""
    value: float

    @property
    def values(self) -> Tuple[float, ...]:
        return (self.value,)

    def has_value_at(self, x: float, y: float) -> bool:
        return True

    def value_at(self, x: float, y: float) -> float:
        return self.value

    def value_at_unchecked(self, x: float, y: float) -> float:
        return self.value

    def copy_with_values(self, values: Sequence[float]) -> "ConstantField":
        if len(values) != 1:
            raise InvalidArgumentError(
                f"Tried to copy-create a constant field with {len(values)} values instead of 1"
            )
        return ConstantField(float(values[0]))


@dataclass(frozen=True, eq=False)
class GridField:
    """
    Rectangular raster of values laid out row-wise from the top-left
    (x_min, y_max) corner to the bottom-right (x_max, y_min) corner.

    The extent is inclusive on all sides. Locations on the x_max or y_min edge
    resolve to the last column or row respectively.
    """
    values: np.ndarray
    num_rows: int
    num_cols: int
    x_min: float
    x_max: float
    y_min: float
    y_max: float
    row_height: float = field(init=False)
    col_width: float = field(init=False)

    def __post_init__(self):
        values = np.array(self.values, dtype=float).ravel()
        if self.num_rows < 1 or self.num_cols < 1:
            raise InvalidArgumentError(
                f"Raster needs at least one row and column, got {self.num_rows}x{self.num_cols}"
            )
        if len(values) != self.num_rows * self.num_cols:
            raise InvalidArgumentError(
                f"Raster with {self.num_rows}x{self.num_cols} cells got {len(values)} values"
            )
        if not (self.x_min < self.x_max and self.y_min < self.y_max):
            raise InvalidArgumentError(
                f"Invalid raster extent x=[{self.x_min}, {self.x_max}], y=[{self.y_min}, {self.y_max}]"
            )
        values.setflags(write=False)
        # frozen dataclass: bypass __setattr__ for normalized and derived fields
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "row_height", (self.y_max - self.y_min) / self.num_rows)
        object.__setattr__(self, "col_width", (self.x_max - self.x_min) / self.num_cols)

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """(x_min, x_max, y_min, y_max)"""
        return self.x_min, self.x_max, self.y_min, self.y_max

    def has_value_at(self, x: float, y: float) -> bool:
        """Whether (x, y) lies inside the raster extent. False for NaN input."""
        return self.x_min <= x <= self.x_max and self.y_min <= y <= self.y_max

    def value_at(self, x: float, y: float) -> float:
        """
        Raster value at (x, y).

        Raises
        ------
        InvalidArgumentError
            If x or y is NaN
        OutOfRangeError
            If (x, y) lies outside the raster extent
        """
        if math.isnan(x) or math.isnan(y):
            raise InvalidArgumentError("Tried to access raster value with NaN xy-coordinates")
        if not self.has_value_at(x, y):
            raise OutOfRangeError(x, y, extent=str(self.extent))
        return self.value_at_unchecked(x, y)

    def value_at_unchecked(self, x: float, y: float) -> float:
        """
        Same as value_at without the NaN and extent checks. The result for
        NaN coordinates or locations outside the extent is undefined.
        """
        row_index = int((self.y_max - y) / self.row_height)
        # y == y_min lands one row past the last one
        if row_index == self.num_rows:
            row_index -= 1

        col_index = int((x - self.x_min) / self.col_width)
        # x == x_max lands one column past the last one
        if col_index == self.num_cols:
            col_index -= 1

        return float(self.values[self.num_cols * row_index + col_index])

    def copy_with_values(self, values: Sequence[float]) -> "GridField":
        """A raster with the same geometry holding new values."""
        if len(values) != len(self.values):
            raise InvalidArgumentError(
                f"Tried to copy-create a raster with {len(values)} values instead of {len(self.values)}"
            )
        return GridField(
            values=np.asarray(values, dtype=float),
            num_rows=self.num_rows,
            num_cols=self.num_cols,
            x_min=self.x_min,
            x_max=self.x_max,
            y_min=self.y_min,
            y_max=self.y_max,
        )


ParameterField = Union[ConstantField, GridField]

_GRID_KEYS = ("values", "num_rows", "num_cols", "x_min", "x_max", "y_min", "y_max")


def as_field(value: Union[float, ParameterField]) -> ParameterField:
    """Wrap a plain number into a ConstantField; pass fields through."""
    if isinstance(value, (ConstantField, GridField)):
        return value
    return ConstantField(float(value))


def field_from_mapping(data: Mapping[str, Any]) -> ParameterField:
    """
    Build a parameter field from a plain mapping.

    A mapping with a "value" entry becomes a ConstantField. Anything else must
    describe a raster with the keys values, num_rows, num_cols, x_min, x_max,
    y_min and y_max.
    """
    if "value" in data:
        return ConstantField(float(data["value"]))

    missing = [k for k in _GRID_KEYS if k not in data]
    if missing:
        raise InvalidArgumentError(f"Raster data missing keys: {', '.join(missing)}")

    return GridField(
        values=np.asarray(data["values"], dtype=float),
        num_rows=int(data["num_rows"]),
        num_cols=int(data["num_cols"]),
        x_min=float(data["x_min"]),
        x_max=float(data["x_max"]),
        y_min=float(data["y_min"]),
        y_max=float(data["y_max"]),
    )
