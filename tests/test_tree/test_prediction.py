"""Tests for prediction: labels, class probabilities, leaf assignment and missing features."""

from __future__ import annotations

import polars as pl
import pytest
from pytest_check import check

from ctreekit.exceptions import MissingFeatureError, UnknownFeatureError
from ctreekit.feature_matrix import FeatureMatrix
from ctreekit.tree.builder import fit_ctree
from ctreekit.tree.control import TreeControl
from ctreekit.tree.models import ConditionalTree, LeafNode
from ctreekit.tree.prediction import apply, predict, predict_proba


class TestPredict:
    """Tests for `predict`."""

    def test_new_rows_follow_the_threshold(self) -> None:
        """Values at or below the threshold go left; above go right."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = FeatureMatrix.from_columns({"CD3E": [0.0, 5.0, 5.0001, 12.0]})

        # Act
        predictions = predict(tree, newdata)

        # Assert
        assert predictions == ["lo", "lo", "hi", "hi"]

    def test_columns_are_matched_by_name(self) -> None:
        """Column order and extra columns in new data do not matter."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = pl.DataFrame({"cell_id": ["c1", "c2"], "NKG7": [3.0, 0.0], "CD3E": [8.0, 2.0]})

        # Act
        predictions = predict(tree, newdata)

        # Assert
        assert predictions == ["hi", "lo"]

    def test_missing_split_feature_raises(self) -> None:
        """Prediction data without the split feature fails instead of defaulting."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = pl.DataFrame({"NOISE": [1.0, 2.0], "MS4A1": [0.0, 4.0]})

        # Act / Assert
        with pytest.raises(MissingFeatureError) as exc_info:
            predict(tree, newdata)
        with check:
            assert exc_info.value.missing_features == ["CD3E"]
        with check:
            assert isinstance(exc_info.value, UnknownFeatureError)

    def test_single_leaf_tree_needs_no_features(self) -> None:
        """A tree without splits predicts its majority class for any rows."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"CD3E": [1.0, 2.0, 3.0]})
        tree = fit_ctree(matrix, ["B", "T", "T"], minbucket=1, minsplit=10)
        newdata = pl.DataFrame({"LYZ": [0.0, 1.0]})

        # Act
        predictions = predict(tree, newdata)

        # Assert
        assert predictions == ["T", "T"]

    def test_method_form_matches_function_form(self) -> None:
        """`ConditionalTree.predict` delegates to `predict`."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = FeatureMatrix.from_columns({"CD3E": [3.0, 7.0]})

        # Act / Assert
        assert tree.predict(newdata) == predict(tree, newdata)


class TestPredictProba:
    """Tests for `predict_proba`."""

    def test_one_column_per_class_in_class_order(self) -> None:
        """Columns are named after the classes, in first-seen order."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = FeatureMatrix.from_columns({"CD3E": [3.0, 7.0]})

        # Act
        probabilities = predict_proba(tree, newdata)

        # Assert
        with check:
            assert probabilities.columns == ["lo", "hi"]
        with check:
            assert probabilities.rows() == [(1.0, 0.0), (0.0, 1.0)]

    def test_rows_sum_to_one_for_mixed_leaf(self) -> None:
        """A mixed leaf reports its training class proportions."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"CD3E": [1.0, 2.0, 3.0, 4.0]})
        tree = fit_ctree(matrix, ["B", "T", "T", "T"], minbucket=1, minsplit=10)

        # Act
        probabilities = predict_proba(tree, matrix)

        # Assert
        with check:
            assert probabilities.row(0) == (0.25, 0.75)
        with check:
            assert probabilities.sum_horizontal().to_list() == pytest.approx([1.0] * 4)

    def test_classes_with_the_same_text_form_are_rejected(self) -> None:
        """Classes `1` and `"1"` cannot both become columns, so the call raises."""
        # Arrange
        leaf = LeafNode(n=5, depth=0, class_counts=(3, 2), prediction=1)
        tree = ConditionalTree(
            root=leaf, control=TreeControl(), feature_names=("CD3E",), classes=(1, "1"), n_samples=5
        )
        newdata = FeatureMatrix.from_columns({"CD3E": [3.0, 7.0]})

        # Act / Assert
        with pytest.raises(ValueError, match="distinct column names"):
            predict_proba(tree, newdata)


class TestApply:
    """Tests for `apply`."""

    def test_leaf_numbers_follow_pre_order(self) -> None:
        """Leaves are numbered from 0 left to right."""
        # Arrange
        tree = _fit_separable_tree()
        newdata = FeatureMatrix.from_columns({"CD3E": [9.0, 1.0, 4.9]})

        # Act
        leaf_numbers = apply(tree, newdata)

        # Assert
        assert leaf_numbers == [1, 0, 0]


# ---------------------------------------------------------------------------
# Private test helpers
# ---------------------------------------------------------------------------


def _fit_separable_tree() -> ConditionalTree:
    matrix = FeatureMatrix.from_columns({
        "CD3E": [1.0, 2.0, 3.0, 4.0] * 10 + [6.0, 7.0, 8.0, 9.0] * 10,
        "NOISE": [0.0, 1.0, 2.0, 3.0] * 20,
    })
    return fit_ctree(matrix, ["lo"] * 40 + ["hi"] * 40)
