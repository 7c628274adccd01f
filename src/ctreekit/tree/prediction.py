"""Prediction: route new rows through a fitted tree by feature name."""

from __future__ import annotations

import numpy as np
import polars as pl
from loguru import logger

from ctreekit.exceptions import MissingFeatureError
from ctreekit.feature_matrix import FeatureMatrix, Label, label_column_names
from ctreekit.logging import FIT_LEVEL
from ctreekit.tree.models import ConditionalTree, LeafNode, TreeNode

# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def predict(tree: ConditionalTree, newdata: FeatureMatrix | pl.DataFrame) -> list[Label]:
    """Predict the majority class of the reached leaf for every row.

    Args:
        tree (ConditionalTree): A fitted tree.
        newdata (FeatureMatrix | pl.DataFrame): Rows to classify. Columns are
            matched by name; extra columns are ignored.

    Returns:
        list[Label]: One predicted label per row, in row order.

    Raises:
        MissingFeatureError: If `newdata` lacks a feature the tree splits on.
    """
    logger.log(FIT_LEVEL, "predict called", n_rows=_row_count(newdata))
    leaf_numbers, leaves = _route(tree, newdata)
    return [leaves[number].prediction for number in leaf_numbers.tolist()]


def predict_proba(tree: ConditionalTree, newdata: FeatureMatrix | pl.DataFrame) -> pl.DataFrame:
    """Predict the class distribution of the reached leaf for every row.

    Args:
        tree (ConditionalTree): A fitted tree.
        newdata (FeatureMatrix | pl.DataFrame): Rows to classify.

    Returns:
        pl.DataFrame: One Float64 column per class (named `str(label)`, in
            the tree's class order) and one row per input row; each row sums
            to 1.

    Raises:
        MissingFeatureError: If `newdata` lacks a feature the tree splits on.
        ValueError: If two classes have the same text form.
    """
    logger.log(FIT_LEVEL, "predict_proba called", n_rows=_row_count(newdata))
    leaf_numbers, leaves = _route(tree, newdata)
    leaf_probabilities = np.array([leaf.class_probabilities for leaf in leaves], dtype=np.float64)
    row_probabilities = leaf_probabilities[leaf_numbers].reshape(len(leaf_numbers), len(tree.classes))
    column_names = label_column_names(tree.classes)
    return pl.DataFrame(
        {name: row_probabilities[:, index] for index, name in enumerate(column_names)},
        schema=dict.fromkeys(column_names, pl.Float64),
    )


def apply(tree: ConditionalTree, newdata: FeatureMatrix | pl.DataFrame) -> list[int]:
    """Return the number of the leaf each row reaches.

    Leaves are numbered from 0 in pre-order, which is also the order of the
    rules produced by `ctreekit.rules.export_rules`.

    Args:
        tree (ConditionalTree): A fitted tree.
        newdata (FeatureMatrix | pl.DataFrame): Rows to route.

    Returns:
        list[int]: Leaf number per row.

    Raises:
        MissingFeatureError: If `newdata` lacks a feature the tree splits on.
    """
    leaf_numbers, _ = _route(tree, newdata)
    return leaf_numbers.tolist()


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _row_count(newdata: FeatureMatrix | pl.DataFrame) -> int:
    return newdata.n_rows if isinstance(newdata, FeatureMatrix) else newdata.height


def _as_matrix(tree: ConditionalTree, newdata: FeatureMatrix | pl.DataFrame) -> FeatureMatrix:
    """Check `newdata` holds every split feature and return it as a matrix.

    Args:
        tree (ConditionalTree): The tree whose split features are required.
        newdata (FeatureMatrix | pl.DataFrame): Rows to route.

    Returns:
        FeatureMatrix: `newdata` itself, or the required columns of a DataFrame.

    Raises:
        MissingFeatureError: If any split feature is absent.
    """
    required = tree.split_features
    available = list(newdata.feature_names) if isinstance(newdata, FeatureMatrix) else list(newdata.columns)
    missing = [name for name in required if name not in available]
    if missing:
        raise MissingFeatureError(missing_features=missing, available_features=available)
    if isinstance(newdata, FeatureMatrix):
        return newdata
    return FeatureMatrix.from_polars(newdata, columns=required)


def _route(tree: ConditionalTree, newdata: FeatureMatrix | pl.DataFrame) -> tuple[np.ndarray, list[LeafNode]]:
    """Assign every row of `newdata` to a leaf.

    Args:
        tree (ConditionalTree): A fitted tree.
        newdata (FeatureMatrix | pl.DataFrame): Rows to route.

    Returns:
        tuple[np.ndarray, list[LeafNode]]: A 2-tuple of
            `(leaf_numbers, leaves)` where `leaf_numbers[i]` indexes the
            pre-order `leaves` list for row `i`.
    """
    matrix = _as_matrix(tree, newdata)
    leaf_numbers = np.zeros(matrix.n_rows, dtype=np.intp)
    _assign_leaves(tree.root, np.arange(matrix.n_rows, dtype=np.intp), matrix, leaf_numbers, next_leaf=0)
    return leaf_numbers, tree.leaves()


def _assign_leaves(
    node: TreeNode,
    rows: np.ndarray,
    matrix: FeatureMatrix,
    leaf_numbers: np.ndarray,
    next_leaf: int,
) -> int:
    """Route `rows` down from `node`, writing leaf numbers in pre-order.

    Args:
        node (TreeNode): Current node.
        rows (np.ndarray): Indices of the rows that reached `node`.
        matrix (FeatureMatrix): The data being routed.
        leaf_numbers (np.ndarray): Output array, written in place.
        next_leaf (int): Number of the first leaf under `node`.

    Returns:
        int: Number of the first leaf after `node`'s subtree.
    """
    if isinstance(node, LeafNode):
        leaf_numbers[rows] = next_leaf
        return next_leaf + 1
    goes_left = matrix.values(node.feature, rows) <= node.threshold
    next_leaf = _assign_leaves(node.left, rows[goes_left], matrix, leaf_numbers, next_leaf)
    return _assign_leaves(node.right, rows[~goes_left], matrix, leaf_numbers, next_leaf)
