"""Recursive partitioning: grow a conditional inference tree from a feature matrix."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, NamedTuple, TypeAlias

import numpy as np
import polars as pl
from loguru import logger

from ctreekit.exceptions import EmptyDatasetError, LabelMismatchError, UnknownFeatureError
from ctreekit.feature_matrix import FeatureMatrix, FeatureMatrixView, LabelEncoding, LabelLike
from ctreekit.logging import FIT_LEVEL
from ctreekit.tree.control import TreeControl, resolve_control
from ctreekit.tree.models import ConditionalTree, LeafNode, SplitNode, TreeNode
from ctreekit.tree.splitting import Split, SplitSelector

# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def fit_ctree(
    features: FeatureMatrix | pl.DataFrame,
    labels: LabelLike,
    control: TreeControl | Mapping[str, Any] | None = None,
    **control_overrides: Any,
) -> ConditionalTree:
    """Fit a conditional inference classification tree.

    Args:
        features (FeatureMatrix | pl.DataFrame): Numeric features, one row
            per sample. A DataFrame is converted with
            `FeatureMatrix.from_polars`.
        labels (LabelLike): One class label per row.
        control (TreeControl | Mapping[str, Any] | None): Control parameters;
            `None` uses the defaults.
        **control_overrides (Any): Individual control parameters applied on
            top of `control`, e.g. `alpha=0.01, maxdepth=3`.

    Returns:
        ConditionalTree: The fitted tree.

    Raises:
        InvalidControlError: If the control parameters are inconsistent.
        UnknownFeatureError: If `genes_use` names a feature the matrix lacks.
        EmptyDatasetError: If there are no rows or no candidate features.
        LabelMismatchError: If the label count differs from the row count.
        ValueError: If a label is invalid or two labels share a text form.

    Examples:
        >>> matrix = FeatureMatrix.from_columns({"CD3E": [0.1, 0.2, 3.1, 2.9]})  # doctest: +SKIP
        >>> tree = fit_ctree(matrix, ["B", "B", "T", "T"], minbucket=1, minsplit=2)  # doctest: +SKIP
    """
    resolved = resolve_control(control, control_overrides)
    matrix = features if isinstance(features, FeatureMatrix) else FeatureMatrix.from_polars(features)
    logger.log(
        FIT_LEVEL,
        "fit_ctree called",
        n_rows=matrix.n_rows,
        n_features=matrix.n_features,
        alpha=resolved.alpha,
        maxdepth=resolved.maxdepth,
        minbucket=resolved.minbucket,
        minsplit=resolved.minsplit,
    )

    candidates = _candidate_features(matrix, resolved.genes_use)
    if matrix.n_rows == 0 or not candidates:
        raise EmptyDatasetError(n_rows=matrix.n_rows, n_features=len(candidates))

    encoding = LabelEncoding.fit(labels)
    if encoding.codes.size != matrix.n_rows:
        raise LabelMismatchError(expected=matrix.n_rows, actual=int(encoding.codes.size))

    root = TreeBuilder(encoding, resolved, candidates).build(matrix.rows())
    tree = ConditionalTree(
        root=root,
        control=resolved,
        feature_names=tuple(candidates),
        classes=encoding.classes,
        n_samples=matrix.n_rows,
    )
    logger.info("Tree fitted", depth=tree.depth, leaf_count=tree.leaf_count, n_classes=len(tree.classes))
    return tree


class TreeBuilder:
    """Grows a tree top-down, one accepted split at a time.

    A node becomes a leaf when it is at `maxdepth`, holds fewer than
    `minsplit` rows, or the split selector finds no acceptable split. Splits
    are final: there is no backtracking or pruning pass.

    With `control.n_jobs > 1`, nodes above a fork depth of
    `ceil(log2(n_jobs))` are split on the calling thread and the subtrees
    below it are grown on a thread pool. Worker tasks never wait on other
    tasks, and the resulting tree is identical to a serial build.
    """

    def __init__(self, labels: LabelEncoding, control: TreeControl, features: Sequence[str]) -> None:
        """Initialize the builder.

        Args:
            labels (LabelEncoding): Encoded labels for every row of the matrix.
            control (TreeControl): Control parameters.
            features (Sequence[str]): Candidate features, in tie-break order.
        """
        self.labels = labels
        self.control = control
        self.selector = SplitSelector(labels, control, features)
        self._fork_depth = math.ceil(math.log2(control.n_jobs)) if control.n_jobs > 1 else 0

    def build(self, view: FeatureMatrixView) -> TreeNode:
        """Grow the tree over the rows of `view`.

        Args:
            view (FeatureMatrixView): Rows of the root node.

        Returns:
            TreeNode: The root node.
        """
        if self.control.n_jobs == 1:
            return self._grow(view, depth=0)
        with ThreadPoolExecutor(max_workers=self.control.n_jobs, thread_name_prefix=__name__) as executor:
            return self._resolve(self._grow_forked(view, 0, executor))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _grow(self, view: FeatureMatrixView, depth: int) -> TreeNode:
        split = self._find_split(view, depth)
        if split is None:
            return self._make_leaf(view, depth)
        left = self._grow(split.left, depth + 1)
        right = self._grow(split.right, depth + 1)
        return self._make_split(view, depth, split, left, right)

    def _grow_forked(self, view: FeatureMatrixView, depth: int, executor: ThreadPoolExecutor) -> _Pending:
        if depth >= self._fork_depth:
            return executor.submit(self._grow, view, depth)
        split = self._find_split(view, depth)
        if split is None:
            return self._make_leaf(view, depth)
        return _PendingSplit(
            view=view,
            depth=depth,
            split=split,
            left=self._grow_forked(split.left, depth + 1, executor),
            right=self._grow_forked(split.right, depth + 1, executor),
        )

    def _resolve(self, pending: _Pending) -> TreeNode:
        if isinstance(pending, Future):
            return pending.result()
        if isinstance(pending, _PendingSplit):
            left = self._resolve(pending.left)
            right = self._resolve(pending.right)
            return self._make_split(pending.view, pending.depth, pending.split, left, right)
        return pending

    def _find_split(self, view: FeatureMatrixView, depth: int) -> Split | None:
        if depth >= self.control.maxdepth:
            logger.debug("Leaf at maxdepth", depth=depth, n=view.n_rows)
            return None
        if view.n_rows < self.control.minsplit:
            logger.debug("Leaf below minsplit", depth=depth, n=view.n_rows, minsplit=self.control.minsplit)
            return None
        return self.selector.select(view)

    def _class_counts(self, view: FeatureMatrixView) -> tuple[int, ...]:
        return tuple(int(count) for count in self.labels.counts(view.row_index))

    def _make_leaf(self, view: FeatureMatrixView, depth: int) -> LeafNode:
        class_counts = self._class_counts(view)
        majority = int(np.argmax(class_counts))  # first maximum, i.e. earliest-seen class on ties
        return LeafNode(
            n=view.n_rows,
            depth=depth,
            class_counts=class_counts,
            prediction=self.labels.classes[majority],
        )

    def _make_split(
        self,
        view: FeatureMatrixView,
        depth: int,
        split: Split,
        left: TreeNode,
        right: TreeNode,
    ) -> SplitNode:
        return SplitNode(
            n=view.n_rows,
            depth=depth,
            class_counts=self._class_counts(view),
            feature=split.feature,
            threshold=split.threshold,
            statistic=split.statistic,
            p_value=min(split.p_value, 1.0),
            left=left,
            right=right,
        )


class _PendingSplit(NamedTuple):
    """A split accepted on the calling thread whose subtrees may still be growing."""

    view: FeatureMatrixView
    depth: int
    split: Split
    left: _Pending
    right: _Pending


_Pending: TypeAlias = TreeNode | Future[TreeNode] | _PendingSplit


def _candidate_features(matrix: FeatureMatrix, genes_use: Sequence[str] | None) -> list[str]:
    """Return the candidate features in matrix column order.

    Args:
        matrix (FeatureMatrix): The training matrix.
        genes_use (Sequence[str] | None): Requested features, or `None` for all.

    Returns:
        list[str]: Candidate feature names.

    Raises:
        UnknownFeatureError: If any requested feature is absent from `matrix`.
    """
    if genes_use is None:
        return list(matrix.feature_names)
    missing = matrix.missing_features(genes_use)
    if missing:
        raise UnknownFeatureError(missing_features=missing, available_features=matrix.feature_names)
    requested = set(genes_use)
    return [name for name in matrix.feature_names if name in requested]
