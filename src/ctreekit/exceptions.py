"""Custom exceptions for ctreekit.

All exceptions derive from `CTreeError`, so callers can catch every
recoverable ctreekit failure with a single handler:

- InvalidControlError: Raised when tree control parameters are inconsistent.
- EmptyDatasetError: Raised when a fit receives zero rows or zero features.
- UnknownFeatureError: Raised when a referenced feature is not in a matrix.
- MissingFeatureError: Raised when prediction data lacks a split feature.
- DegenerateSplitError: Raised when a feature cannot be tested within a node.
- LabelMismatchError: Raised when two label vectors (or labels and rows)
  differ in length.

`InvalidControlError` must not subclass `ValueError`: it is raised from
inside a pydantic model validator, where pydantic would wrap a `ValueError`
into a `ValidationError`.
"""

from __future__ import annotations

from collections.abc import Sequence


class CTreeError(Exception):
    """Base exception for all ctreekit errors."""


class InvalidControlError(CTreeError):
    """Raised when a combination of tree control parameters is invalid.

    Attributes:
        problems (list[str]): One human-readable description per violated
            constraint, e.g. `"minsplit (5) must be at least 2 * minbucket (6)"`.

    Examples:
        >>> err = InvalidControlError(["alpha must be in (0, 1], got 0.0"])
        >>> err.problems
        ['alpha must be in (0, 1], got 0.0']
    """

    problems: list[str]

    def __init__(self, problems: Sequence[str]) -> None:
        """Initialize InvalidControlError.

        Args:
            problems (Sequence[str]): Descriptions of each violated constraint.
        """
        super().__init__("Invalid tree control: " + "; ".join(problems))
        self.problems = list(problems)


class EmptyDatasetError(CTreeError):
    """Raised when a tree is fitted on a dataset without rows or features.

    Attributes:
        n_rows (int): Number of rows supplied.
        n_features (int): Number of candidate features supplied.
    """

    n_rows: int
    n_features: int

    def __init__(self, n_rows: int, n_features: int) -> None:
        """Initialize EmptyDatasetError.

        Args:
            n_rows (int): Number of rows supplied.
            n_features (int): Number of candidate features supplied.
        """
        super().__init__(f"Cannot fit a tree on {n_rows} rows and {n_features} features")
        self.n_rows = n_rows
        self.n_features = n_features


class UnknownFeatureError(CTreeError):
    """Raised when requested features do not exist in a feature matrix.

    Attributes:
        missing_features (list[str]): Feature names that were not found.
        available_features (list[str]): Feature names present in the matrix.

    Examples:
        >>> err = UnknownFeatureError(
        ...     missing_features=["CD19"],
        ...     available_features=["CD3E", "MS4A1"],
        ... )
        >>> err.missing_features
        ['CD19']
    """

    missing_features: list[str]
    available_features: list[str]

    def __init__(
        self,
        missing_features: Sequence[str],
        available_features: Sequence[str],
    ) -> None:
        """Initialize UnknownFeatureError.

        Args:
            missing_features (Sequence[str]): Feature names not found.
            available_features (Sequence[str]): Feature names present in the matrix.
        """
        super().__init__(self._message(sorted(missing_features)))
        self.missing_features = list(missing_features)
        self.available_features = list(available_features)

    @staticmethod
    def _message(missing_features: list[str]) -> str:
        return f"Features not found in feature matrix: {missing_features}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including the missing and available features.
        """
        return (
            f"{self.__class__.__name__}("
            f"missing_features={self.missing_features!r}, "
            f"available_features={self.available_features!r})"
        )


class MissingFeatureError(UnknownFeatureError):
    """Raised when data passed for prediction lacks a feature the tree splits on.

    Attributes:
        missing_features (list[str]): Split features absent from the new data.
        available_features (list[str]): Feature names present in the new data.
    """

    @staticmethod
    def _message(missing_features: list[str]) -> str:
        return f"Prediction data is missing features required by the tree: {missing_features}"


class DegenerateSplitError(CTreeError):
    """Raised when a feature cannot be tested for association within a node.

    A split selector treats this as a failed candidate rather than a fatal
    error; it only escapes to callers of the low-level test functions.

    Attributes:
        feature (str | None): The feature being tested, when known.
        reason (str): Why the test is undefined, e.g. `"zero variance"`.
    """

    feature: str | None
    reason: str

    def __init__(self, reason: str, feature: str | None = None) -> None:
        """Initialize DegenerateSplitError.

        Args:
            reason (str): Why the test is undefined.
            feature (str | None): The feature being tested, when known.
        """
        subject = f"feature '{feature}'" if feature is not None else "feature"
        super().__init__(f"Cannot test {subject}: {reason}")
        self.feature = feature
        self.reason = reason


class LabelMismatchError(CTreeError):
    """Raised when two aligned sequences differ in length.

    Attributes:
        expected (int): Length of the reference sequence.
        actual (int): Length of the mismatched sequence.

    Examples:
        >>> err = LabelMismatchError(expected=10, actual=9)
        >>> str(err)
        'Length mismatch: expected 10 labels, got 9'
    """

    expected: int
    actual: int

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize LabelMismatchError.

        Args:
            expected (int): Length of the reference sequence.
            actual (int): Length of the mismatched sequence.
        """
        super().__init__(f"Length mismatch: expected {expected} labels, got {actual}")
        self.expected = expected
        self.actual = actual
