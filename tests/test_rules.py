"""Tests for rule export, the rule text format and rule-based prediction."""

from __future__ import annotations

import polars as pl
import pytest
from pydantic import ValidationError
from pytest_check import check

from ctreekit.exceptions import MissingFeatureError
from ctreekit.feature_matrix import FeatureMatrix
from ctreekit.rules import Predicate, Rule, RuleFormat, RuleSet, export_rules
from ctreekit.tree.builder import fit_ctree
from ctreekit.tree.models import ConditionalTree
from ctreekit.tree.prediction import predict


class TestPredicate:
    """Tests for Predicate formatting and evaluation."""

    def test_str_writes_exact_threshold(self) -> None:
        """The default format writes the threshold so it reads back exactly."""
        # Arrange
        predicate = Predicate(feature="CD3E", operator=">", threshold=0.1 + 0.2)

        # Act
        text = str(predicate)

        # Assert
        with check:
            assert text == "CD3E > 0.30000000000000004"
        with check:
            assert float(text.split()[-1]) == predicate.threshold

    def test_format_rounds_when_decimals_given(self) -> None:
        """`decimals` rounds the written threshold."""
        # Arrange
        predicate = Predicate(feature="CD3E", operator="<=", threshold=1.23456)

        # Act / Assert
        assert predicate.format(decimals=2) == "CD3E <= 1.23"

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [("<=", 1.5, True), ("<=", 1.6, False), (">", 1.5, False), (">", 1.6, True)],
    )
    def test_eval(self, operator: str, value: float, expected: bool) -> None:
        """Left edges include the threshold, right edges exclude it.

        Args:
            operator (str): Predicate operator.
            value (float): Feature value to test.
            expected (bool): Expected outcome.
        """
        # Arrange
        predicate = Predicate(feature="CD3E", operator=operator, threshold=1.5)  # type: ignore[arg-type]

        # Act / Assert
        assert predicate.eval(value) is expected


class TestRule:
    """Tests for Rule matching and formatting."""

    def test_matches_requires_every_predicate(self) -> None:
        """A row matches only when all predicates hold."""
        # Arrange
        rule = _make_rule()

        # Act / Assert
        with check:
            assert rule.matches({"CD3E": 2.1, "CD8A": 0.0})
        with check:
            assert not rule.matches({"CD3E": 2.1, "CD8A": 1.0})

    def test_matches_missing_feature_raises(self) -> None:
        """A row lacking a tested feature is an error."""
        # Arrange
        rule = _make_rule()

        # Act / Assert
        with pytest.raises(MissingFeatureError):
            rule.matches({"CD3E": 2.1})

    def test_format_with_stats(self) -> None:
        """`include_stats` appends the leaf sample count and confidence."""
        # Arrange
        rule = _make_rule()

        # Act
        line = rule.format(RuleFormat(include_stats=True))

        # Assert
        assert line == "CD3E > 1.5 & CD8A <= 0.4 => CD4 T cell  # n=120 confidence=0.9300"

    def test_empty_rule_uses_empty_condition(self) -> None:
        """The rule of a single-leaf tree has the constant condition."""
        # Arrange
        rule = Rule(predicates=[], prediction="B", samples=3, confidence=1.0)

        # Act / Assert
        assert rule.format() == "TRUE => B"


class TestExportRules:
    """Tests for `export_rules`."""

    def test_one_rule_per_leaf_in_pre_order(self) -> None:
        """The single-split tree exports its left rule before its right rule."""
        # Arrange
        tree = _fit_separable_tree()

        # Act
        rules = export_rules(tree)

        # Assert
        with check:
            assert len(rules) == tree.leaf_count == 2
        with check:
            assert rules.to_text() == "CD3E <= 5.0 => lo\nCD3E > 5.0 => hi\n"
        with check:
            assert [rule.samples for rule in rules.rules] == [40, 40]

    def test_export_is_deterministic(self) -> None:
        """Exporting the same tree twice gives byte-identical text."""
        # Arrange
        tree = _fit_separable_tree()
        fmt = RuleFormat(include_stats=True)

        # Act / Assert
        assert export_rules(tree).to_text(fmt) == tree.export_rules().to_text(fmt)

    def test_rules_are_disjoint_and_complete(self) -> None:
        """Every training row satisfies exactly one rule."""
        # Arrange
        tree = _fit_separable_tree()
        matrix = _make_separable_matrix()
        rules = export_rules(tree)

        # Act
        rows = matrix.to_polars().to_dicts()
        match_counts = [sum(rule.matches(row) for rule in rules.rules) for row in rows]

        # Assert
        assert set(match_counts) == {1}

    def test_single_leaf_tree_exports_one_unconditional_rule(self) -> None:
        """A tree without splits has one rule with no predicates."""
        # Arrange
        matrix = FeatureMatrix.from_columns({"CD3E": [1.0, 2.0, 3.0]})
        tree = fit_ctree(matrix, ["B", "B", "T"], minbucket=1, minsplit=10)

        # Act
        rules = export_rules(tree)

        # Assert
        assert rules.to_text() == "TRUE => B\n"


class TestRuleSetText:
    """Tests for the rule text round trip and rule-based prediction."""

    def test_text_round_trip_with_stats(self) -> None:
        """Parsing exported text gives back an equal rule set."""
        # Arrange
        rules = export_rules(_fit_separable_tree())
        fmt = RuleFormat(include_stats=True)

        # Act
        restored = RuleSet.from_text(rules.to_text(fmt), fmt)

        # Assert
        assert restored == rules

    def test_custom_separators_round_trip(self) -> None:
        """Non-default separators are honoured on both write and read."""
        # Arrange
        rules = export_rules(_fit_separable_tree())
        fmt = RuleFormat(term_separator=" AND ", outcome_separator=" -> ")

        # Act
        text = rules.to_text(fmt)
        restored = RuleSet.from_text(text, fmt)

        # Assert
        with check:
            assert text.splitlines()[0] == "CD3E <= 5.0 -> lo"
        with check:
            assert [rule.predicates for rule in restored.rules] == [rule.predicates for rule in rules.rules]

    def test_unparseable_line_raises(self) -> None:
        """A line without an outcome separator is rejected."""
        # Act / Assert
        with pytest.raises(ValueError, match="outcome separator"):
            RuleSet.from_text("CD3E <= 5.0 lo\n")

    def test_rule_set_predictions_match_tree(self) -> None:
        """Rules written exactly predict the same labels as the tree."""
        # Arrange
        tree = _fit_separable_tree()
        rules = RuleSet.from_text(export_rules(tree).to_text())
        newdata = pl.DataFrame({"CD3E": [0.5, 4.99, 5.0, 5.01, 11.0]})

        # Act / Assert
        assert rules.predict(newdata) == predict(tree, newdata)

    def test_rule_text_reproduces_training_predictions_of_deep_tree(self) -> None:
        """Rules read back from text classify every training row as the tree does."""
        # Arrange
        matrix, labels = _make_three_population_data()
        tree = fit_ctree(matrix, labels, minbucket=3, minsplit=6)
        rules = RuleSet.from_text(export_rules(tree).to_text())

        # Act
        rule_predictions = rules.predict(matrix)

        # Assert
        with check:
            assert tree.depth >= 2
        with check:
            assert len(rules.rules) == tree.leaf_count
        with check:
            assert rule_predictions == predict(tree, matrix)
        with check:
            assert rule_predictions == labels

    def test_rows_matching_no_rule_raise(self) -> None:
        """A hand-written incomplete rule set reports unmatched rows."""
        # Arrange
        rules = RuleSet.from_text("CD3E <= 1.0 => lo\n")
        newdata = FeatureMatrix.from_columns({"CD3E": [0.5, 2.0]})

        # Act / Assert
        with pytest.raises(ValueError, match="1 row"):
            rules.predict(newdata)

    def test_predictions_outside_classes_are_rejected(self) -> None:
        """Every rule must predict one of the declared classes."""
        # Act / Assert
        with pytest.raises(ValidationError, match="not in classes"):
            RuleSet(rules=[_make_rule()], classes=("B cell",))


# ---------------------------------------------------------------------------
# Private test helpers
# ---------------------------------------------------------------------------


def _make_rule() -> Rule:
    return Rule(
        predicates=[
            Predicate(feature="CD3E", operator=">", threshold=1.5),
            Predicate(feature="CD8A", operator="<=", threshold=0.4),
        ],
        prediction="CD4 T cell",
        samples=120,
        confidence=0.93,
    )


def _make_separable_matrix() -> FeatureMatrix:
    return FeatureMatrix.from_columns({
        "CD3E": [1.0, 2.0, 3.0, 4.0] * 10 + [6.0, 7.0, 8.0, 9.0] * 10,
        "NOISE": [0.0, 1.0, 2.0, 3.0] * 20,
    })


def _fit_separable_tree() -> ConditionalTree:
    return fit_ctree(_make_separable_matrix(), ["lo"] * 40 + ["hi"] * 40)


def _make_three_population_data() -> tuple[FeatureMatrix, list[str]]:
    low = [0.1, 0.4, 0.7, 1.0, 1.3, 1.6, 1.9, 2.2, 2.5, 2.8]
    high = [6.2, 6.5, 6.8, 7.1, 7.4, 7.7, 8.0, 8.3, 8.6, 8.9]
    matrix = FeatureMatrix.from_columns({
        "CD3E": low * 2 + high * 2 + low * 2,
        "MS4A1": high * 2 + low * 2 + low * 2,
        "NKG7": low * 4 + high * 2,
    })
    return matrix, ["B"] * 20 + ["T"] * 20 + ["NK"] * 20
