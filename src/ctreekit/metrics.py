"""Evaluation metrics: confusion matrices and their normalised frequency form."""

from __future__ import annotations

from typing import Literal, TypeAlias

import numpy as np
import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sklearn.metrics import confusion_matrix as sklearn_confusion_matrix

from ctreekit.exceptions import LabelMismatchError
from ctreekit.feature_matrix import Label, LabelLike, as_label_list, label_column_names
from ctreekit.logging import FIT_LEVEL

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

NormalizeAxis: TypeAlias = Literal["column", "row"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class ConfusionMatrix(BaseModel):
    """Counts of (predicted, actual) label pairs.

    Rows are predicted labels and columns are actual labels, both in the
    order of `labels`.

    Attributes:
        labels (tuple[Label, ...]): Union of predicted and actual labels, in
            first-occurrence order across predicted then actual.
        counts (tuple[tuple[int, ...], ...]): `counts[i][j]` is the number of
            rows predicted `labels[i]` whose actual label is `labels[j]`.

    Examples:
        >>> matrix = confusion_matrix(["T", "B", "T"], ["T", "B", "B"])
        >>> matrix.counts
        ((1, 1), (0, 1))
        >>> matrix.accuracy
        0.6666666666666666
    """

    model_config = ConfigDict(frozen=True)

    labels: tuple[Label, ...] = Field(description="Label union in first-occurrence order, predicted then actual.")
    counts: tuple[tuple[int, ...], ...] = Field(description="counts[predicted][actual] row counts.")

    @model_validator(mode="after")
    def _validate_square(self) -> ConfusionMatrix:
        """Validate that `counts` is square over `labels` with non-negative cells.

        Returns:
            ConfusionMatrix: The validated model instance.

        Raises:
            ValueError: If the shape does not match `labels` or a count is negative.
        """
        size = len(self.labels)
        if len(self.counts) != size or any(len(row) != size for row in self.counts):
            raise ValueError(f"counts must be a {size}x{size} matrix")
        if any(cell < 0 for row in self.counts for cell in row):
            raise ValueError("counts must be non-negative")
        return self

    def to_numpy(self) -> np.ndarray:
        """Return the counts as a 2-D integer array indexed `[predicted, actual]`."""
        return np.array(self.counts, dtype=np.int64).reshape(len(self.labels), len(self.labels))

    @property
    def total(self) -> int:
        return int(self.to_numpy().sum())

    @property
    def trace(self) -> int:
        """Number of rows whose predicted label equals the actual label."""
        return int(np.trace(self.to_numpy()))

    @property
    def accuracy(self) -> float:
        """Trace divided by total; 0.0 for an empty matrix."""
        return self.trace / self.total if self.total else 0.0

    def count(self, predicted: Label, actual: Label) -> int:
        """Return the number of rows predicted `predicted` whose actual label is `actual`.

        Raises:
            KeyError: If either label is not in `labels`.
        """
        index = {label: position for position, label in enumerate(self.labels)}
        if predicted not in index or actual not in index:
            raise KeyError(f"Unknown label pair ({predicted!r}, {actual!r})")
        return self.counts[index[predicted]][index[actual]]

    def normalize(self, axis: NormalizeAxis = "column") -> FrequencyMatrix:
        """Convert counts to proportions. See `ctreekit.metrics.normalize`."""
        return normalize(self, axis=axis)

    def to_polars(self) -> pl.DataFrame:
        """Return the matrix as a DataFrame.

        Returns:
            pl.DataFrame: A `predicted` column of label strings followed by
                one Int64 column per actual label.

        Raises:
            ValueError: If a label is `"predicted"` or two labels share a text form.
        """
        return _to_frame(self.labels, self.to_numpy(), pl.Int64)


class FrequencyMatrix(BaseModel):
    """A confusion matrix with counts replaced by proportions along one axis.

    Attributes:
        labels (tuple[Label, ...]): Labels, as in the source confusion matrix.
        proportions (tuple[tuple[float, ...], ...]): `proportions[i][j]` for
            predicted `labels[i]` and actual `labels[j]`.
        axis (NormalizeAxis): `"column"` when each actual-label column sums
            to 1, `"row"` when each predicted-label row sums to 1. Lines
            without any rows stay all zero.
    """

    model_config = ConfigDict(frozen=True)

    labels: tuple[Label, ...] = Field(description="Labels, as in the source confusion matrix.")
    proportions: tuple[tuple[float, ...], ...] = Field(description="proportions[predicted][actual].")
    axis: NormalizeAxis = Field(description="Axis along which the proportions sum to 1.")

    def to_numpy(self) -> np.ndarray:
        """Return the proportions as a 2-D float array indexed `[predicted, actual]`."""
        return np.array(self.proportions, dtype=np.float64).reshape(len(self.labels), len(self.labels))

    def to_polars(self) -> pl.DataFrame:
        """Return the matrix as a DataFrame with a `predicted` column and one Float64 column per actual label."""
        return _to_frame(self.labels, self.to_numpy(), pl.Float64)


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def confusion_matrix(predicted: LabelLike, actual: LabelLike) -> ConfusionMatrix:
    """Cross-tabulate predicted against actual labels.

    Args:
        predicted (LabelLike): Predicted label per row.
        actual (LabelLike): Actual label per row.

    Returns:
        ConfusionMatrix: Square counts over the label union.

    Raises:
        LabelMismatchError: If the vectors differ in length.
    """
    predicted_labels, actual_labels = _aligned_labels(predicted, actual)
    logger.log(FIT_LEVEL, "confusion_matrix called", n_rows=len(predicted_labels))
    labels = tuple(dict.fromkeys([*predicted_labels, *actual_labels]))
    if not labels:
        return ConfusionMatrix(labels=(), counts=())

    codes = {label: position for position, label in enumerate(labels)}
    predicted_codes = [codes[label] for label in predicted_labels]
    actual_codes = [codes[label] for label in actual_labels]
    # sklearn indexes [actual, predicted]; transpose to [predicted, actual].
    counts = sklearn_confusion_matrix(actual_codes, predicted_codes, labels=list(range(len(labels)))).T
    return ConfusionMatrix(labels=labels, counts=tuple(tuple(int(cell) for cell in row) for row in counts))


def normalize(matrix: ConfusionMatrix, axis: NormalizeAxis = "column") -> FrequencyMatrix:
    """Divide each cell of a confusion matrix by its line total.

    With `axis="column"` (the default) each cell is divided by the number of
    rows actually of that column's label, answering "of all rows actually of
    class X, what fraction were predicted Y". With `axis="row"` each cell is
    divided by the number of rows predicted as that row's label.

    Args:
        matrix (ConfusionMatrix): Counts to normalise.
        axis (NormalizeAxis): `"column"` or `"row"`.

    Returns:
        FrequencyMatrix: The proportions.

    Raises:
        ValueError: If `axis` is not `"column"` or `"row"`.
    """
    if axis not in ("column", "row"):
        raise ValueError(f"axis must be 'column' or 'row', got {axis!r}")
    counts = matrix.to_numpy().astype(np.float64)
    totals = counts.sum(axis=0, keepdims=True) if axis == "column" else counts.sum(axis=1, keepdims=True)
    proportions = np.divide(counts, totals, out=np.zeros_like(counts), where=totals > 0)
    return FrequencyMatrix(
        labels=matrix.labels,
        proportions=tuple(tuple(float(cell) for cell in row) for row in proportions),
        axis=axis,
    )


def accuracy(predicted: LabelLike, actual: LabelLike) -> float:
    """Return the fraction of rows whose predicted label equals the actual label.

    Raises:
        LabelMismatchError: If the vectors differ in length.
    """
    return confusion_matrix(predicted, actual).accuracy


def correctness(predicted: LabelLike, actual: LabelLike) -> list[bool]:
    """Return, per row, whether the predicted label equals the actual label.

    Raises:
        LabelMismatchError: If the vectors differ in length.
    """
    predicted_labels, actual_labels = _aligned_labels(predicted, actual)
    return [p == a for p, a in zip(predicted_labels, actual_labels, strict=True)]


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _aligned_labels(predicted: LabelLike, actual: LabelLike) -> tuple[list[Label], list[Label]]:
    predicted_labels = as_label_list(predicted)
    actual_labels = as_label_list(actual)
    if len(predicted_labels) != len(actual_labels):
        raise LabelMismatchError(expected=len(actual_labels), actual=len(predicted_labels))
    return predicted_labels, actual_labels


def _to_frame(labels: tuple[Label, ...], values: np.ndarray, dtype: type[pl.DataType]) -> pl.DataFrame:
    names = label_column_names(labels, reserved=("predicted",))
    columns: dict[str, list[str] | np.ndarray] = {"predicted": names}
    columns.update({name: values[:, index] for index, name in enumerate(names)})
    return pl.DataFrame(columns, schema={"predicted": pl.String, **dict.fromkeys(names, dtype)})
