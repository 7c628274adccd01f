"""Read-only numeric feature matrix, row-subset views, and label encoding."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

import numpy as np
import polars as pl

from ctreekit.exceptions import UnknownFeatureError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

Label: TypeAlias = str | int

LabelLike: TypeAlias = Sequence[Label] | pl.Series | np.ndarray

# ---------------------------------------------------------------------------
# Public interface -- FeatureMatrix
# ---------------------------------------------------------------------------


class FeatureMatrix:
    """Immutable table of named numeric features (columns) over samples (rows).

    The backing array is copied once at construction and flagged read-only, so
    a matrix can be shared between threads without locking. Row subsets are
    taken with `rows`, which returns a `FeatureMatrixView` holding only an
    index array.

    Attributes:
        feature_names (tuple[str, ...]): Unique feature names in column order.

    Examples:
        >>> matrix = FeatureMatrix([[0.0, 2.5], [1.0, 0.0]], ["CD3E", "MS4A1"])
        >>> matrix.shape
        (2, 2)
        >>> matrix.values("MS4A1").tolist()
        [2.5, 0.0]
    """

    __slots__ = ("_column_index", "_feature_names", "_values")

    def __init__(self, values: Any, feature_names: Sequence[str]) -> None:
        """Initialize a FeatureMatrix.

        Args:
            values (Any): 2-D array-like with shape `(n_rows, n_features)`.
            feature_names (Sequence[str]): One unique name per column.

        Raises:
            ValueError: If `values` is not 2-D, the names do not match the
                column count, names repeat, or any value is NaN or infinite.
        """
        array = np.array(values, dtype=np.float64, copy=True)
        names = tuple(str(name) for name in feature_names)
        if array.ndim == 1 and array.size == 0:
            array = array.reshape(0, len(names))
        if array.ndim != 2:
            raise ValueError(f"Feature values must be 2-dimensional, got {array.ndim} dimension(s)")
        if array.shape[1] != len(names):
            raise ValueError(f"Got {len(names)} feature names for {array.shape[1]} columns")
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate feature names are not allowed: {duplicates}")
        if not np.isfinite(array).all():
            raise ValueError("Feature values must be finite (no NaN or infinite values)")
        array.flags.writeable = False

        self._values = array
        self._feature_names = names
        self._column_index = {name: index for index, name in enumerate(names)}

    # ------------------------------------------------------------------
    # Alternate constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_polars(cls, df: pl.DataFrame, columns: Sequence[str] | None = None) -> FeatureMatrix:
        """Build a matrix from numeric columns of a polars DataFrame.

        Args:
            df (pl.DataFrame): Source frame, one row per sample.
            columns (Sequence[str] | None): Columns to take, in order. When
                `None`, every column is used.

        Returns:
            FeatureMatrix: The feature matrix.

        Raises:
            UnknownFeatureError: If any requested column is absent from `df`.
            ValueError: If a selected column is not numeric.
        """
        selected = list(df.columns) if columns is None else list(columns)
        missing = [name for name in selected if name not in df.columns]
        if missing:
            raise UnknownFeatureError(missing_features=missing, available_features=df.columns)
        non_numeric = [name for name in selected if not df.schema[name].is_numeric()]
        if non_numeric:
            raise ValueError(f"Feature columns must be numeric: {non_numeric}")
        values = df.select(selected).to_numpy().astype(np.float64) if selected else np.empty((df.height, 0))
        return cls(values, selected)

    @classmethod
    def from_columns(cls, columns: Mapping[str, Iterable[float]]) -> FeatureMatrix:
        """Build a matrix from a mapping of feature name to column values.

        Args:
            columns (Mapping[str, Iterable[float]]): Equal-length value
                sequences keyed by feature name, in column order.

        Returns:
            FeatureMatrix: The feature matrix.
        """
        arrays = [np.asarray(list(values), dtype=np.float64) for values in columns.values()]
        if not arrays:
            return cls(np.empty((0, 0)), [])
        lengths = {len(array) for array in arrays}
        if len(lengths) > 1:
            raise ValueError(f"Feature columns must have equal lengths, got {sorted(lengths)}")
        return cls(np.column_stack(arrays), list(columns))

    # ------------------------------------------------------------------
    # Shape and lookup
    # ------------------------------------------------------------------

    @property
    def feature_names(self) -> tuple[str, ...]:
        return self._feature_names

    @property
    def n_rows(self) -> int:
        return self._values.shape[0]

    @property
    def n_features(self) -> int:
        return self._values.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        return self.n_rows, self.n_features

    def __len__(self) -> int:
        return self.n_rows

    def __contains__(self, feature: object) -> bool:
        return feature in self._column_index

    def __repr__(self) -> str:
        return f"FeatureMatrix(n_rows={self.n_rows}, n_features={self.n_features})"

    def column_index(self, feature: str) -> int:
        """Return the position of a feature in column order.

        Args:
            feature (str): Feature name.

        Returns:
            int: Zero-based column index.

        Raises:
            UnknownFeatureError: If `feature` is not a column of this matrix.
        """
        try:
            return self._column_index[feature]
        except KeyError:
            raise UnknownFeatureError(
                missing_features=[feature],
                available_features=self._feature_names,
            ) from None

    def missing_features(self, features: Iterable[str]) -> list[str]:
        """Return the names in `features` that are not columns of this matrix, in input order."""
        return [name for name in features if name not in self._column_index]

    def values(self, feature: str, rows: np.ndarray | None = None) -> np.ndarray:
        """Return one feature's values, optionally limited to a row subset.

        Args:
            feature (str): Feature name.
            rows (np.ndarray | None): Row indices to take. `None` returns the
                whole (read-only) column.

        Returns:
            np.ndarray: 1-D float64 array of values.

        Raises:
            UnknownFeatureError: If `feature` is not a column of this matrix.
        """
        column = self.column_index(feature)
        if rows is None:
            return self._values[:, column]
        return self._values[rows, column]

    def to_numpy(self) -> np.ndarray:
        """Return the read-only backing array."""
        return self._values

    def to_polars(self) -> pl.DataFrame:
        """Return the matrix as a polars DataFrame with one Float64 column per feature."""
        return pl.DataFrame(
            {name: self._values[:, index] for index, name in enumerate(self._feature_names)},
            schema=dict.fromkeys(self._feature_names, pl.Float64),
        )

    # ------------------------------------------------------------------
    # Subsetting
    # ------------------------------------------------------------------

    def rows(self, rows: Iterable[int] | np.ndarray | None = None) -> FeatureMatrixView:
        """Return a view over a subset of rows without copying feature values.

        Args:
            rows (Iterable[int] | np.ndarray | None): Row indices; `None`
                selects every row.

        Returns:
            FeatureMatrixView: The row-subset view.

        Raises:
            IndexError: If any row index is out of range.
        """
        if rows is None:
            index = np.arange(self.n_rows, dtype=np.intp)
        else:
            index = np.array(rows if isinstance(rows, np.ndarray) else list(rows), dtype=np.intp)
        if index.size and (index.min() < 0 or index.max() >= self.n_rows):
            raise IndexError(f"Row indices must lie in [0, {self.n_rows}), got range [{index.min()}, {index.max()}]")
        index.flags.writeable = False
        return FeatureMatrixView(matrix=self, row_index=index)

    def select(self, features: Sequence[str]) -> FeatureMatrix:
        """Return a new matrix holding only the named features, in the given order.

        Args:
            features (Sequence[str]): Feature names to keep.

        Returns:
            FeatureMatrix: The column-restricted matrix.

        Raises:
            UnknownFeatureError: If any feature is absent.
        """
        missing = self.missing_features(features)
        if missing:
            raise UnknownFeatureError(missing_features=missing, available_features=self._feature_names)
        columns = [self._column_index[name] for name in features]
        return FeatureMatrix(self._values[:, columns], list(features))


@dataclass(frozen=True, slots=True, eq=False)
class FeatureMatrixView:
    """A subset of a FeatureMatrix's rows, addressed by index.

    Attributes:
        matrix (FeatureMatrix): The shared, read-only matrix.
        row_index (np.ndarray): Read-only 1-D array of row indices into `matrix`.
    """

    matrix: FeatureMatrix
    row_index: np.ndarray

    @property
    def n_rows(self) -> int:
        return int(self.row_index.size)

    def __len__(self) -> int:
        return self.n_rows

    def values(self, feature: str) -> np.ndarray:
        """Return one feature's values over the rows of this view."""
        return self.matrix.values(feature, self.row_index)

    def partition(self, feature: str, threshold: float) -> tuple[FeatureMatrixView, FeatureMatrixView]:
        """Split this view into rows with `feature <= threshold` and the rest.

        Args:
            feature (str): Feature to compare.
            threshold (float): Cut value; equal values go left.

        Returns:
            tuple[FeatureMatrixView, FeatureMatrixView]: `(left, right)` views
                whose rows are disjoint and together equal this view's rows.
        """
        goes_left = self.values(feature) <= threshold
        return self.matrix.rows(self.row_index[goes_left]), self.matrix.rows(self.row_index[~goes_left])


# ---------------------------------------------------------------------------
# Public interface -- Label encoding
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class LabelEncoding:
    """Integer codes for a label vector, with classes in first-seen order.

    Attributes:
        classes (tuple[Label, ...]): Distinct labels; `classes[code]` decodes a code.
        codes (np.ndarray): Read-only 1-D array of integer codes, one per row.

    Examples:
        >>> encoding = LabelEncoding.fit(["T cell", "B cell", "T cell"])
        >>> encoding.classes
        ('T cell', 'B cell')
        >>> encoding.codes.tolist()
        [0, 1, 0]
    """

    classes: tuple[Label, ...]
    codes: np.ndarray

    @classmethod
    def fit(cls, labels: LabelLike) -> LabelEncoding:
        """Encode a label vector.

        Args:
            labels (LabelLike): One label per row.

        Returns:
            LabelEncoding: Codes and classes, classes ordered by first occurrence.

        Raises:
            ValueError: If a label is invalid or two labels have the same text
                form, such as `1` and `"1"`.
        """
        values = as_label_list(labels)
        lookup: dict[Label, int] = {}
        codes = np.empty(len(values), dtype=np.intp)
        for position, label in enumerate(values):
            codes[position] = lookup.setdefault(label, len(lookup))
        label_column_names(tuple(lookup))
        codes.flags.writeable = False
        return cls(classes=tuple(lookup), codes=codes)

    @property
    def n_classes(self) -> int:
        return len(self.classes)

    def counts(self, rows: np.ndarray | None = None) -> np.ndarray:
        """Return per-class counts, optionally over a subset of rows.

        Args:
            rows (np.ndarray | None): Row indices; `None` counts every row.

        Returns:
            np.ndarray: Integer array of length `n_classes`.
        """
        codes = self.codes if rows is None else self.codes[rows]
        return np.bincount(codes, minlength=self.n_classes)


def as_label_list(labels: LabelLike) -> list[Label]:
    """Convert a label vector to a list of plain Python labels.

    Args:
        labels (LabelLike): A sequence, polars Series or numpy array of labels.

    Returns:
        list[Label]: The labels as `str` / `int` values.

    Raises:
        ValueError: If any label is null, boolean, or not a string or integer.
    """
    if isinstance(labels, pl.Series):
        values: list[Any] = labels.to_list()
    elif isinstance(labels, np.ndarray):
        values = labels.tolist()
    else:
        values = list(labels)
    for value in values:
        if value is None:
            raise ValueError("Labels must not contain null values")
        if isinstance(value, bool) or not isinstance(value, str | int):
            raise ValueError(f"Labels must be strings or integers, got {type(value).__name__}: {value!r}")
    return values


def label_column_names(labels: Sequence[Label], reserved: Sequence[str] = ()) -> list[str]:
    """Return the column name for each label, checking that none collide.

    Args:
        labels (Sequence[Label]): Distinct labels, one column each.
        reserved (Sequence[str]): Names already taken by other columns.

    Returns:
        list[str]: `str(label)` for each label, in order.

    Raises:
        ValueError: If two labels share a name or a label takes a reserved name.

    Examples:
        >>> label_column_names(["B", 3])
        ['B', '3']
    """
    names = [str(label) for label in labels]
    taken = Counter([*names, *reserved])
    clashes = sorted(name for name, count in taken.items() if count > 1)
    if clashes:
        raise ValueError(f"Labels cannot be used as distinct column names: {clashes}")
    return names
