"""Tests for `fit_ctree` and TreeBuilder: stopping rules, structure invariants and errors."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from ctreekit.exceptions import EmptyDatasetError, InvalidControlError, LabelMismatchError, UnknownFeatureError
from ctreekit.feature_matrix import FeatureMatrix
from ctreekit.tree.builder import fit_ctree
from ctreekit.tree.control import TreeControl
from ctreekit.tree.models import LeafNode, SplitNode
from ctreekit.tree.prediction import apply, predict


class TestSingleSplitScenario:
    """Two classes separated by one marker at 5."""

    def test_fits_depth_one_tree_split_at_five(self) -> None:
        """The tree should split once on the marker at 5 and fit the training data perfectly."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act
        tree = fit_ctree(matrix, labels, alpha=0.05)

        # Assert
        assert isinstance(tree.root, SplitNode)
        with check:
            assert tree.depth == 1
        with check:
            assert tree.root.feature == "CD3E"
        with check:
            assert tree.root.threshold == 5.0
        with check:
            assert tree.leaf_count == 2
        with check:
            assert predict(tree, matrix) == labels

    def test_leaves_are_pure_with_expected_predictions(self) -> None:
        """Left leaf holds the "lo" cells and right leaf the "hi" cells."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act
        tree = fit_ctree(matrix, labels)

        # Assert
        left, right = tree.leaves()
        with check:
            assert (left.prediction, left.n, left.class_counts) == ("lo", 40, (40, 0))
        with check:
            assert (right.prediction, right.n, right.class_counts) == ("hi", 40, (0, 40))

    def test_polars_input_gives_the_same_tree(self) -> None:
        """Fitting on a DataFrame and a Series gives the same tree as the matrix form."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act
        from_matrix = fit_ctree(matrix, labels)
        from_frame = fit_ctree(matrix.to_polars(), pl.Series("cell_type", labels))

        # Assert
        assert from_frame.root == from_matrix.root


class TestStoppingRules:
    """Tests for minsplit, minbucket, maxdepth and alpha."""

    def test_minsplit_above_row_count_gives_single_majority_leaf(self) -> None:
        """When no node can be split, the root is a leaf predicting the majority class."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"CD3E": [1.0, 2.0, 3.0, 7.0, 8.0, 9.0, 9.5, 9.9, 10.0, 11.0]})
        labels = ["B"] * 4 + ["T"] * 6

        # Act
        tree = fit_ctree(matrix, labels, alpha=1.0, minbucket=1, minsplit=50)

        # Assert
        assert isinstance(tree.root, LeafNode)
        with check:
            assert tree.root.prediction == "T"
        with check:
            assert tree.root.class_counts == (4, 6)
        with check:
            assert tree.depth == 0

    def test_majority_ties_go_to_the_first_seen_class(self) -> None:
        """An evenly split leaf predicts the class that appeared first."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"CD3E": [1.0, 2.0, 3.0, 4.0]})

        # Act
        tree = fit_ctree(matrix, ["NK", "B", "B", "NK"], minbucket=1, minsplit=10)

        # Assert
        assert tree.root.prediction == "NK"  # type: ignore[union-attr]

    def test_every_leaf_holds_at_least_minbucket_rows(self) -> None:
        """No leaf of a multi-level tree may hold fewer than `minbucket` rows."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        tree = fit_ctree(matrix, labels, minbucket=15, minsplit=30)

        # Assert
        with check:
            assert tree.leaf_count > 2, "The data should support more than one split"
        with check:
            assert min(leaf.n for leaf in tree.leaves()) >= 15

    @pytest.mark.parametrize("maxdepth", [1, 2, 3])
    def test_depth_never_exceeds_maxdepth(self, maxdepth: int) -> None:
        """Tree depth is bounded by `maxdepth`.

        Args:
            maxdepth (int): Depth limit under test.
        """
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        tree = fit_ctree(matrix, labels, maxdepth=maxdepth, minbucket=2, minsplit=4)

        # Assert
        assert tree.depth <= maxdepth

    def test_strict_alpha_grows_no_larger_tree(self) -> None:
        """A stricter significance level cannot add leaves."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        loose = fit_ctree(matrix, labels, alpha=0.5)
        strict = fit_ctree(matrix, labels, alpha=1e-6)

        # Assert
        assert strict.leaf_count <= loose.leaf_count

    def test_noise_only_data_gives_single_leaf(self) -> None:
        """Features unrelated to the labels produce no split."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"NOISE": [0.0, 1.0, 2.0, 3.0] * 10})
        labels = ["B"] * 20 + ["T"] * 20

        # Act
        tree = fit_ctree(matrix, labels)

        # Assert
        assert tree.leaf_count == 1


class TestStructureInvariants:
    """Tests for partition exactness, reproducibility and feature restriction."""

    def test_leaves_partition_the_training_rows(self) -> None:
        """Routing the training rows reproduces every leaf's row count exactly."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        tree = fit_ctree(matrix, labels, minbucket=5, minsplit=10)
        leaf_numbers = apply(tree, matrix)

        # Assert
        counts = np.bincount(leaf_numbers, minlength=tree.leaf_count).tolist()
        with check:
            assert counts == [leaf.n for leaf in tree.leaves()]
        with check:
            assert sum(counts) == tree.n_samples == matrix.n_rows

    def test_refitting_gives_an_identical_tree(self) -> None:
        """Fitting is deterministic."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        first = fit_ctree(matrix, labels, minbucket=5, minsplit=10)
        second = fit_ctree(matrix, labels, minbucket=5, minsplit=10)

        # Assert
        assert first.model_dump_json() == second.model_dump_json()

    @pytest.mark.parametrize("n_jobs", [2, 4])
    def test_parallel_growth_matches_serial_growth(self, n_jobs: int) -> None:
        """Growing subtrees on worker threads yields the serial tree.

        Args:
            n_jobs (int): Number of worker threads.
        """
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        serial = fit_ctree(matrix, labels, minbucket=5, minsplit=10)
        parallel = fit_ctree(matrix, labels, minbucket=5, minsplit=10, n_jobs=n_jobs)

        # Assert
        assert parallel.root == serial.root

    def test_genes_use_restricts_candidate_features(self) -> None:
        """Only features named in `genes_use` may appear in splits."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        tree = fit_ctree(matrix, labels, genes_use=["MS4A1", "NOISE"])

        # Assert
        with check:
            assert set(tree.split_features) <= {"MS4A1", "NOISE"}
        with check:
            assert tree.feature_names == ("MS4A1", "NOISE")

    def test_split_nodes_carry_significant_p_values(self) -> None:
        """Every accepted split has an adjusted p-value at most `alpha`."""
        # Arrange
        matrix, labels = _make_three_class_data()

        # Act
        tree = fit_ctree(matrix, labels, alpha=0.01)

        # Assert
        p_values = [node.p_value for node in tree.iter_nodes() if isinstance(node, SplitNode)]
        with check:
            assert p_values, "At least one split expected"
        with check:
            assert all(p <= 0.01 for p in p_values)

    def test_integer_labels_are_preserved(self) -> None:
        """Integer class labels come back as integers."""
        # Arrange
        matrix, labels = _make_separable_data()
        int_labels = [0 if label == "lo" else 1 for label in labels]

        # Act
        tree = fit_ctree(matrix, int_labels)

        # Assert
        with check:
            assert tree.classes == (0, 1)
        with check:
            assert predict(tree, matrix) == int_labels


class TestFitErrors:
    """Tests for the errors raised by `fit_ctree`."""

    def test_zero_rows_raises_empty_dataset(self) -> None:
        """A matrix without rows cannot be fitted."""
        # Arrange
        matrix = FeatureMatrix(np.empty((0, 2)), ["CD3E", "MS4A1"])

        # Act / Assert
        with pytest.raises(EmptyDatasetError) as exc_info:
            fit_ctree(matrix, [])
        with check:
            assert exc_info.value.n_rows == 0

    def test_zero_features_raises_empty_dataset(self) -> None:
        """A matrix without features cannot be fitted."""
        # Arrange
        matrix = FeatureMatrix(np.empty((3, 0)), [])

        # Act / Assert
        with pytest.raises(EmptyDatasetError):
            fit_ctree(matrix, ["B", "T", "B"])

    def test_unknown_genes_use_raises_unknown_feature(self) -> None:
        """Requesting a feature the matrix lacks is an error, not a silent skip."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act / Assert
        with pytest.raises(UnknownFeatureError) as exc_info:
            fit_ctree(matrix, labels, genes_use=["CD3E", "CD19"])
        with check:
            assert exc_info.value.missing_features == ["CD19"]

    def test_label_count_mismatch_raises(self) -> None:
        """Labels must align one-to-one with rows."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act / Assert
        with pytest.raises(LabelMismatchError) as exc_info:
            fit_ctree(matrix, labels[:-1])
        with check:
            assert (exc_info.value.expected, exc_info.value.actual) == (80, 79)

    def test_invalid_control_raises_before_fitting(self) -> None:
        """Inconsistent overrides are rejected."""
        # Arrange
        matrix, labels = _make_separable_data()

        # Act / Assert
        with pytest.raises(InvalidControlError):
            fit_ctree(matrix, labels, TreeControl(), minbucket=20, minsplit=30)


# ---------------------------------------------------------------------------
# Private test helpers
# ---------------------------------------------------------------------------


def _make_separable_data() -> tuple[FeatureMatrix, list[str]]:
    """Eighty cells: CD3E below 5 marks "lo", above 5 marks "hi"; NOISE is balanced across classes."""
    matrix = FeatureMatrix.from_columns({
        "CD3E": [1.0, 2.0, 3.0, 4.0] * 10 + [6.0, 7.0, 8.0, 9.0] * 10,
        "NOISE": [0.0, 1.0, 2.0, 3.0] * 20,
    })
    return matrix, ["lo"] * 40 + ["hi"] * 40


def _make_three_class_data() -> tuple[FeatureMatrix, list[str]]:
    """Three hundred cells whose type is set by CD3E and MS4A1 thresholds, with 10% label noise."""
    rng = np.random.default_rng(7)
    n = 300
    cd3e = rng.uniform(0.0, 10.0, n)
    ms4a1 = rng.uniform(0.0, 10.0, n)
    noise = rng.uniform(0.0, 10.0, n)
    cell_types = np.where(cd3e > 6.0, "T", np.where(ms4a1 > 5.0, "B", "NK"))
    flipped = rng.random(n) < 0.1
    cell_types[flipped] = rng.choice(np.array(["T", "B", "NK"]), int(flipped.sum()))
    matrix = FeatureMatrix.from_columns({"CD3E": cd3e, "MS4A1": ms4a1, "NOISE": noise})
    return matrix, [str(label) for label in cell_types]
