"""Split selection: choose the most significant feature and its best cut point."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from ctreekit.exceptions import DegenerateSplitError
from ctreekit.feature_matrix import FeatureMatrixView, LabelEncoding
from ctreekit.tree.control import TreeControl
from ctreekit.tree.independence import (
    LabelCovariance,
    adjust_log_p_value,
    best_cutpoint,
    independence_test,
)

# ---------------------------------------------------------------------------
# Public result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FeatureAssociation:
    """Association of one candidate feature with the labels at a node.

    Attributes:
        feature (str): Feature name.
        statistic (float): Quadratic test statistic.
        log_p_value (float): Log of the p-value after multiplicity adjustment.
    """

    feature: str
    statistic: float
    log_p_value: float

    @property
    def p_value(self) -> float:
        return math.exp(self.log_p_value)


@dataclass(frozen=True, slots=True, eq=False)
class Split:
    """An accepted binary split of a node's rows.

    Attributes:
        feature (str): Feature the node splits on.
        threshold (float): Rows with `feature <= threshold` go left.
        statistic (float): Association statistic of `feature` at the node.
        p_value (float): Adjusted p-value of that association.
        left (FeatureMatrixView): Rows sent left.
        right (FeatureMatrixView): Rows sent right.
    """

    feature: str
    threshold: float
    statistic: float
    p_value: float
    left: FeatureMatrixView
    right: FeatureMatrixView


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


class SplitSelector:
    """Finds the best (feature, threshold) pair for a node, or reports none.

    Candidate features are tested in declared order; the smallest adjusted
    p-value wins, with ties going to the earlier feature. A winning feature
    whose p-value exceeds `alpha`, or whose every cut would leave fewer than
    `minbucket` rows on a side, yields no split.

    Examples:
        >>> selector = SplitSelector(labels, control, features=matrix.feature_names)  # doctest: +SKIP
        >>> split = selector.select(matrix.rows())  # doctest: +SKIP
    """

    def __init__(self, labels: LabelEncoding, control: TreeControl, features: Sequence[str]) -> None:
        """Initialize the selector.

        Args:
            labels (LabelEncoding): Encoded labels for every row of the matrix.
            control (TreeControl): Significance and size constraints.
            features (Sequence[str]): Candidate features, in tie-break order.
        """
        self.labels = labels
        self.control = control
        self.features = tuple(features)
        self._log_alpha = math.log(control.alpha)

    def associations(self, view: FeatureMatrixView) -> list[FeatureAssociation]:
        """Test every candidate feature against the labels of a node's rows.

        Features that cannot be tested (zero variance over the rows) are left
        out of the result; they still count towards the multiplicity
        adjustment.

        Args:
            view (FeatureMatrixView): The node's rows.

        Returns:
            list[FeatureAssociation]: One entry per testable feature, in
                declared order. Empty when fewer than two classes are present.
        """
        codes = self.labels.codes[view.row_index]
        try:
            covariance = LabelCovariance(codes, self.labels.n_classes)
        except DegenerateSplitError:
            return []

        results: list[FeatureAssociation] = []
        for feature in self.features:
            try:
                test = independence_test(
                    view.values(feature),
                    codes,
                    n_classes=self.labels.n_classes,
                    ranks=self.control.ranks,
                    covariance=covariance,
                )
            except DegenerateSplitError as exc:
                logger.trace("Candidate feature skipped", feature=feature, reason=exc.reason, n=view.n_rows)
                continue
            log_p_value = adjust_log_p_value(test.log_p_value, len(self.features), self.control.testtype)
            results.append(FeatureAssociation(feature=feature, statistic=test.statistic, log_p_value=log_p_value))
        return results

    def select(self, view: FeatureMatrixView) -> Split | None:
        """Choose the split for a node.

        Args:
            view (FeatureMatrixView): The node's rows.

        Returns:
            Split | None: The accepted split, or `None` when the node should
                become a leaf.
        """
        associations = self.associations(view)
        if not associations:
            logger.debug("No testable feature", n=view.n_rows)
            return None

        best = associations[0]
        for candidate in associations[1:]:
            if candidate.log_p_value < best.log_p_value:
                best = candidate

        if best.log_p_value > self._log_alpha:
            logger.debug(
                "Best feature not significant",
                feature=best.feature,
                p_value=best.p_value,
                alpha=self.control.alpha,
                n=view.n_rows,
            )
            return None

        codes = self.labels.codes[view.row_index]
        cut = best_cutpoint(
            view.values(best.feature),
            codes,
            n_classes=self.labels.n_classes,
            minbucket=self.control.minbucket,
        )
        if cut is None:
            logger.debug(
                "No cut point satisfies minbucket",
                feature=best.feature,
                minbucket=self.control.minbucket,
                n=view.n_rows,
            )
            return None

        left, right = view.partition(best.feature, cut.threshold)
        logger.debug(
            "Split accepted",
            feature=best.feature,
            threshold=cut.threshold,
            p_value=best.p_value,
            n_left=left.n_rows,
            n_right=right.n_rows,
        )
        return Split(
            feature=best.feature,
            threshold=cut.threshold,
            statistic=best.statistic,
            p_value=best.p_value,
            left=left,
            right=right,
        )
