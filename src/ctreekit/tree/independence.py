"""Conditional (permutation) independence tests between a feature and class labels.

Both the variable-selection test and the cut-point search use the same
statistic. With an influence function `h` of the feature and the one-hot
class indicator `g`, the linear statistic is `T = sum_i h(x_i) g(y_i)`.
Under the permutation distribution its expectation is `mu_k = n_k * mean(h)`
and its covariance is `V(h) * B`, where

    B = n / (n - 1) * (diag(n_k) - n_k n_k' / n)

(Strasser and Weber, 1999). The quadratic form
`c = (T - mu)' B^+ (T - mu) / V(h)` is asymptotically chi-square with
`rank(B) = K - 1` degrees of freedom for `K` classes present in the node.

For variable selection `h` is the raw value (or its mid-rank, which gives the
Kruskal-Wallis statistic); for the cut-point search `h = 1{x <= cut}`.
"""

from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np
from scipy.stats import chi2, rankdata

from ctreekit.exceptions import DegenerateSplitError
from ctreekit.tree.control import TestType

_RELATIVE_TIE_TOLERANCE: float = 1e-9  # Cut statistics this close to the maximum count as tied.
_LOG_P_APPROXIMATION_CUTOFF: float = 1e-10  # Below this p, Bonferroni uses the linear approximation m * p.

# ---------------------------------------------------------------------------
# Public result types
# ---------------------------------------------------------------------------


class IndependenceTest(NamedTuple):
    """Outcome of testing one feature for association with the class labels.

    Attributes:
        statistic (float): Quadratic test statistic.
        df (int): Degrees of freedom of the chi-square reference distribution.
        log_p_value (float): Natural log of the unadjusted p-value.
    """

    statistic: float
    df: int
    log_p_value: float

    @property
    def p_value(self) -> float:
        return math.exp(self.log_p_value)


class CutPoint(NamedTuple):
    """Best binary cut of one feature within a node.

    Attributes:
        threshold (float): Rows with `value <= threshold` go left.
        statistic (float): Quadratic two-sample statistic of the cut.
        n_left (int): Rows sent left.
        n_right (int): Rows sent right.
    """

    threshold: float
    statistic: float
    n_left: int
    n_right: int


class LabelCovariance:
    """Class-indicator part `B^+` of the permutation covariance for one node.

    Only classes present in the node take part.
    """

    __slots__ = ("class_counts", "df", "n", "pinv", "present")

    def __init__(self, label_codes: np.ndarray, n_classes: int) -> None:
        """Initialize from the label codes of a node's rows.

        Args:
            label_codes (np.ndarray): Integer class codes of the node's rows.
            n_classes (int): Size of the tree's class set.

        Raises:
            DegenerateSplitError: If fewer than two classes or two rows are present.
        """
        counts = np.bincount(label_codes, minlength=n_classes)
        self.present = counts > 0
        self.class_counts = counts[self.present].astype(np.float64)
        self.n = int(label_codes.size)
        if self.class_counts.size < 2 or self.n < 2:
            raise DegenerateSplitError("fewer than two classes present in node")
        n = float(self.n)
        covariance = n / (n - 1.0) * (np.diag(self.class_counts) - np.outer(self.class_counts, self.class_counts) / n)
        self.pinv = np.linalg.pinv(covariance)
        self.df = int(self.class_counts.size - 1)

    def quadratic_form(self, deviations: np.ndarray) -> np.ndarray:
        """Return `d' B^+ d` for each row `d` of a 2-D deviation array."""
        return np.einsum("ij,jk,ik->i", deviations, self.pinv, deviations)


# ---------------------------------------------------------------------------
# Public interface -- Variable selection test
# ---------------------------------------------------------------------------


def independence_test(
    values: np.ndarray,
    label_codes: np.ndarray,
    *,
    n_classes: int,
    ranks: bool = False,
    covariance: LabelCovariance | None = None,
) -> IndependenceTest:
    """Test a numeric feature for association with class labels.

    Args:
        values (np.ndarray): Feature values of the node's rows.
        label_codes (np.ndarray): Integer class codes of the same rows.
        n_classes (int): Size of the tree's class set.
        ranks (bool): Use within-node mid-ranks of `values` as influence.
        covariance (LabelCovariance | None): Precomputed label covariance for
            these rows; computed when `None`.

    Returns:
        IndependenceTest: Statistic, degrees of freedom and log p-value.

    Raises:
        DegenerateSplitError: If the feature has zero variance over these
            rows, or fewer than two classes are present.

    Examples:
        >>> values = np.array([1.0, 2.0, 3.0, 7.0, 8.0, 9.0])
        >>> codes = np.array([0, 0, 0, 1, 1, 1])
        >>> result = independence_test(values, codes, n_classes=2)
        >>> result.df
        1
        >>> round(result.statistic, 4)
        4.6552
    """
    if covariance is None:
        covariance = LabelCovariance(label_codes, n_classes)
    influence = rankdata(values) if ranks else np.asarray(values, dtype=np.float64)
    mean = float(influence.mean())
    variance = float(np.mean((influence - mean) ** 2))
    if np.ptp(influence) == 0.0 or variance <= 0.0:
        raise DegenerateSplitError("zero variance")

    linear = np.bincount(label_codes, weights=influence, minlength=n_classes)[covariance.present]
    expected = covariance.class_counts * mean
    statistic = float(covariance.quadratic_form((linear - expected)[np.newaxis, :])[0]) / variance
    statistic = max(statistic, 0.0)
    return IndependenceTest(
        statistic=statistic,
        df=covariance.df,
        log_p_value=float(chi2.logsf(statistic, covariance.df)),
    )


def adjust_log_p_value(log_p_value: float, n_tests: int, testtype: TestType) -> float:
    """Adjust a log p-value for the number of features tested at a node.

    Bonferroni adjustment uses `1 - (1 - p) ** m`, evaluated on the log scale
    so that p-values too small for float64 still order correctly.

    Args:
        log_p_value (float): Natural log of the unadjusted p-value.
        n_tests (int): Number of features tested at the node.
        testtype (TestType): `"bonferroni"` or `"univariate"`.

    Returns:
        float: Natural log of the adjusted p-value (at most 0.0).
    """
    if testtype == "univariate" or n_tests <= 1:
        return min(log_p_value, 0.0)
    p_value = math.exp(log_p_value)
    if p_value >= 1.0:
        return 0.0
    if p_value < _LOG_P_APPROXIMATION_CUTOFF:
        return min(log_p_value + math.log(n_tests), 0.0)
    return min(math.log(-math.expm1(n_tests * math.log1p(-p_value))), 0.0)


# ---------------------------------------------------------------------------
# Public interface -- Cut-point search
# ---------------------------------------------------------------------------


def best_cutpoint(
    values: np.ndarray,
    label_codes: np.ndarray,
    *,
    n_classes: int,
    minbucket: int,
    covariance: LabelCovariance | None = None,
) -> CutPoint | None:
    """Find the binary cut of a feature most associated with the class labels.

    Candidate cuts lie between consecutive distinct values in ascending
    order. The threshold is the midpoint of the two values, not the lower
    observed value itself. Both put the same training rows on each side;
    with the midpoint, classes observed at 4 and 6 split at 5. Cuts leaving
    fewer than `minbucket` rows on either side are skipped. Ties in the
    statistic go to the smallest threshold.

    Args:
        values (np.ndarray): Feature values of the node's rows.
        label_codes (np.ndarray): Integer class codes of the same rows.
        n_classes (int): Size of the tree's class set.
        minbucket (int): Minimum rows on each side of the cut.
        covariance (LabelCovariance | None): Precomputed label covariance for
            these rows; computed when `None`.

    Returns:
        CutPoint | None: The best cut, or `None` if no cut satisfies
            `minbucket` (including when the feature is constant).

    Raises:
        DegenerateSplitError: If fewer than two classes are present.
    """
    if covariance is None:
        covariance = LabelCovariance(label_codes, n_classes)
    n = covariance.n
    order = np.argsort(values, kind="stable")
    sorted_values = np.asarray(values, dtype=np.float64)[order]
    sorted_codes = label_codes[order]

    # Row i of `left_counts` holds the class counts of the first i + 1 sorted rows.
    one_hot = np.zeros((n, n_classes), dtype=np.float64)
    one_hot[np.arange(n), sorted_codes] = 1.0
    left_counts = np.cumsum(one_hot, axis=0)[:, covariance.present]

    positions = np.flatnonzero(sorted_values[:-1] < sorted_values[1:])
    n_left = positions + 1
    positions = positions[(n_left >= minbucket) & (n - n_left >= minbucket)]
    if positions.size == 0:
        return None
    n_left = positions + 1

    share_left = n_left / n
    expected = np.outer(share_left, covariance.class_counts)
    deviations = left_counts[positions] - expected
    statistics = covariance.quadratic_form(deviations) / (share_left * (1.0 - share_left))

    best_value = float(statistics.max())
    tolerance = _RELATIVE_TIE_TOLERANCE * max(1.0, abs(best_value))
    best = int(np.flatnonzero(statistics >= best_value - tolerance)[0])

    position = int(positions[best])
    lower, upper = float(sorted_values[position]), float(sorted_values[position + 1])
    threshold = (lower + upper) / 2.0
    if not lower <= threshold < upper:
        threshold = lower
    n_left_best = int(n_left[best])
    return CutPoint(
        threshold=threshold,
        statistic=max(float(statistics[best]), 0.0),
        n_left=n_left_best,
        n_right=n - n_left_best,
    )
