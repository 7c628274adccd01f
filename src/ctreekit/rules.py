"""Rule export: flatten a fitted tree into an ordered, disjoint set of conjunctive rules.

Each leaf becomes one rule whose predicates are the edges on the path from
the root (`feature <= threshold` for left edges, `feature > threshold` for
right edges). Rules are emitted in pre-order, left before right, so the same
tree always produces the same rule set, byte for byte.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Mapping
from typing import Any, Literal, TypeAlias

import numpy as np
import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ctreekit.exceptions import MissingFeatureError
from ctreekit.feature_matrix import FeatureMatrix, Label
from ctreekit.logging import FIT_LEVEL
from ctreekit.tree.models import ConditionalTree, LeafNode, TreeNode

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

PredicateOp: TypeAlias = Literal["<=", ">"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single threshold condition on one feature.

    Predicates are the building blocks of rules; each rule holds the ordered
    predicates on the path from the tree root to a leaf.

    Attributes:
        feature (str): Feature name the condition applies to, e.g. `"CD3E"`.
        operator (PredicateOp): `"<="` for a left edge, `">"` for a right edge.
        threshold (float): Split threshold.

    Examples:
        >>> p = Predicate(feature="CD3E", operator=">", threshold=1.5)
        >>> str(p)
        'CD3E > 1.5'
        >>> p.eval(2.0)
        True
    """

    model_config = ConfigDict(frozen=True)

    feature: str = Field(description="Feature name the condition applies to, e.g. 'CD3E'.")
    operator: PredicateOp = Field(description="'<=' for a left edge, '>' for a right edge.")
    threshold: float = Field(description="Split threshold the feature value is compared against.")

    def __str__(self) -> str:
        """Return the predicate as `"<feature> <operator> <threshold>"`."""
        return self.format()

    def format(self, decimals: int | None = None) -> str:
        """Format the predicate, optionally rounding the threshold.

        Args:
            decimals (int | None): Decimal places for the threshold; `None`
                writes the shortest representation that reads back exactly.

        Returns:
            str: The formatted predicate, e.g. `"CD3E <= 1.25"`.
        """
        threshold = self.threshold if decimals is None else round(self.threshold, decimals)
        return f"{self.feature} {self.operator} {threshold!r}"

    def eval(self, x: float) -> bool:
        """Evaluate this predicate against a feature value.

        Args:
            x (float): The feature value to test.

        Returns:
            bool: `True` if the predicate holds for `x`.
        """
        return _apply_operator(self.operator, x, self.threshold)


class Rule(BaseModel):
    """A conjunctive rule describing one leaf of a tree.

    Attributes:
        predicates (list[Predicate]): Predicates along the root-to-leaf path.
            An empty list means the tree is a single leaf.
        prediction (Label): Predicted class for rows satisfying every predicate.
        samples (int): Number of training rows that reached the leaf.
        confidence (float): Fraction of those rows in the predicted class.

    Examples:
        >>> rule = Rule(
        ...     predicates=[
        ...         Predicate(feature="CD3E", operator=">", threshold=1.5),
        ...         Predicate(feature="CD8A", operator="<=", threshold=0.4),
        ...     ],
        ...     prediction="CD4 T cell",
        ...     samples=120,
        ...     confidence=0.93,
        ... )
        >>> rule.matches({"CD3E": 2.1, "CD8A": 0.0})
        True
    """

    model_config = ConfigDict(frozen=True)

    predicates: list[Predicate] = Field(
        description="Predicates along the root-to-leaf path. Empty for a single-leaf tree.",
    )
    prediction: Label = Field(description="Predicted class for rows satisfying every predicate.")
    samples: int = Field(ge=1, description="Number of training rows that reached the leaf.")
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Fraction of the leaf's training rows in the predicted class.",
    )

    def matches(self, row: Mapping[str, float]) -> bool:
        """Return whether every predicate holds for a row given as feature values by name.

        Raises:
            MissingFeatureError: If `row` lacks a feature the rule tests.
        """
        missing = [p.feature for p in self.predicates if p.feature not in row]
        if missing:
            raise MissingFeatureError(missing_features=missing, available_features=list(row))
        return all(predicate.eval(row[predicate.feature]) for predicate in self.predicates)

    def format(self, fmt: RuleFormat | None = None) -> str:
        """Format the rule as one line of the rule text format.

        Args:
            fmt (RuleFormat | None): Formatting options; `None` uses defaults.

        Returns:
            str: E.g. `"CD3E > 1.5 & CD8A <= 0.4 => CD4 T cell"`.
        """
        fmt = fmt or RuleFormat()
        if self.predicates:
            condition = fmt.term_separator.join(p.format(fmt.decimals) for p in self.predicates)
        else:
            condition = fmt.empty_condition
        line = f"{condition}{fmt.outcome_separator}{self.prediction}"
        if fmt.include_stats:
            line += f"  # n={self.samples} confidence={self.confidence:.4f}"
        return line


class RuleFormat(BaseModel):
    """Options for the line-oriented rule text format.

    Passed explicitly to `RuleSet.to_text` / `RuleSet.from_text` instead of
    living in global state.

    Attributes:
        term_separator (str): Joins the predicates of one rule.
        outcome_separator (str): Separates the condition from the class.
        empty_condition (str): Condition written for a single-leaf tree.
        decimals (int | None): Decimal places for thresholds; `None` writes
            thresholds exactly, so the text predicts like the tree.
        include_stats (bool): Append `# n=<samples> confidence=<confidence>`.
    """

    model_config = ConfigDict(frozen=True)

    term_separator: str = Field(default=" & ", min_length=1, description="Joins the predicates of one rule.")
    outcome_separator: str = Field(
        default=" => ",
        min_length=1,
        description="Separates the condition from the predicted class.",
    )
    empty_condition: str = Field(default="TRUE", min_length=1, description="Condition for a single-leaf tree.")
    decimals: int | None = Field(
        default=None,
        ge=0,
        description="Decimal places for thresholds; None writes thresholds exactly.",
    )
    include_stats: bool = Field(default=False, description="Append leaf sample count and confidence.")


class RuleSet(BaseModel):
    """Ordered rules of a tree, one per leaf, in pre-order.

    The rules are disjoint and complete: every row satisfies exactly one.

    Attributes:
        rules (list[Rule]): Rules in pre-order leaf order.
        classes (tuple[Label, ...]): Class labels of the tree, in class order.
    """

    model_config = ConfigDict(frozen=True)

    rules: list[Rule] = Field(min_length=1, description="Rules in pre-order leaf order.")
    classes: tuple[Label, ...] = Field(description="Class labels of the tree, in class order.")

    @model_validator(mode="after")
    def _validate_predictions_in_classes(self) -> RuleSet:
        """Validate that every rule predicts one of the declared classes.

        Returns:
            RuleSet: The validated model instance.

        Raises:
            ValueError: If a rule predicts a label outside `classes`.
        """
        unknown = [rule.prediction for rule in self.rules if rule.prediction not in self.classes]
        if unknown:
            raise ValueError(f"rules predict labels not in classes: {unknown}")
        return self

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def features(self) -> list[str]:
        """Features tested by at least one rule, in order of first use."""
        return list(dict.fromkeys(p.feature for rule in self.rules for p in rule.predicates))

    def to_text(self, fmt: RuleFormat | None = None) -> str:
        """Serialise the rules, one line per rule, in order.

        Args:
            fmt (RuleFormat | None): Formatting options; `None` uses defaults.

        Returns:
            str: Newline-terminated rule text.
        """
        return "".join(rule.format(fmt) + "\n" for rule in self.rules)

    @classmethod
    def from_text(cls, text: str, fmt: RuleFormat | None = None) -> RuleSet:
        """Parse rule text written by `to_text`.

        Class labels are read back as strings, and `classes` lists them in
        order of first appearance. Missing statistics default to
        `samples=1, confidence=1.0`.

        Args:
            text (str): Rule text, one rule per non-blank line.
            fmt (RuleFormat | None): The options the text was written with.

        Returns:
            RuleSet: The parsed rule set.

        Raises:
            ValueError: If a line cannot be parsed.
        """
        fmt = fmt or RuleFormat()
        rules = [_parse_rule_line(line, fmt) for line in text.splitlines() if line.strip()]
        if not rules:
            raise ValueError("Rule text contains no rules")
        classes = tuple(dict.fromkeys(rule.prediction for rule in rules))
        return cls(rules=rules, classes=classes)

    def predict(self, newdata: FeatureMatrix | pl.DataFrame) -> list[Label]:
        """Classify rows by the first rule they satisfy.

        Args:
            newdata (FeatureMatrix | pl.DataFrame): Rows to classify; columns
                are matched by name.

        Returns:
            list[Label]: One predicted label per row.

        Raises:
            MissingFeatureError: If `newdata` lacks a feature the rules test.
            ValueError: If some row satisfies no rule.
        """
        available = list(newdata.feature_names) if isinstance(newdata, FeatureMatrix) else list(newdata.columns)
        missing = [name for name in self.features if name not in available]
        if missing:
            raise MissingFeatureError(missing_features=missing, available_features=available)
        matrix = newdata if isinstance(newdata, FeatureMatrix) else FeatureMatrix.from_polars(newdata, self.features)

        rule_numbers = np.full(matrix.n_rows, -1, dtype=np.intp)
        for number, rule in enumerate(self.rules):
            unassigned = rule_numbers < 0
            if not unassigned.any():
                break
            satisfied = unassigned.copy()
            for predicate in rule.predicates:
                satisfied &= _SCALAR_OPS[predicate.operator](matrix.values(predicate.feature), predicate.threshold)
            rule_numbers[satisfied] = number
        unmatched = int((rule_numbers < 0).sum())
        if unmatched:
            raise ValueError(f"{unmatched} row(s) satisfy no rule")
        return [self.rules[number].prediction for number in rule_numbers.tolist()]


# ---------------------------------------------------------------------------
# Public interface -- Export
# ---------------------------------------------------------------------------


def export_rules(tree: ConditionalTree) -> RuleSet:
    """Flatten a fitted tree into its ordered rule set.

    Args:
        tree (ConditionalTree): A fitted tree.

    Returns:
        RuleSet: One rule per leaf, in pre-order (left before right).
    """
    logger.log(FIT_LEVEL, "export_rules called", leaf_count=tree.leaf_count)
    rules: list[Rule] = []
    _walk_tree(tree.root, path_predicates=[], rules=rules)
    return RuleSet(rules=rules, classes=tree.classes)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], Any]] = {
    "<=": operator.le,
    ">": operator.gt,
}

_TERM_PATTERN = re.compile(r"^(?P<feature>.+?) (?P<operator><=|>) (?P<threshold>\S+)$")
_STATS_PATTERN = re.compile(r"\s+#\s*n=(?P<samples>\d+)\s+confidence=(?P<confidence>[0-9.eE+-]+)\s*$")


def _apply_operator(op: PredicateOp, x: float, threshold: float) -> bool:
    """Apply a comparison operator between a feature value and a threshold.

    Args:
        op (PredicateOp): The comparison operator to apply.
        x (float): The feature value to compare.
        threshold (float): The threshold to compare against.

    Returns:
        bool: Result of applying `op` between `x` and `threshold`.

    Raises:
        ValueError: If `op` is not a recognized `PredicateOp` value.
    """
    if op not in _SCALAR_OPS:
        raise ValueError(f"Unexpected operator: {op!r}")
    return bool(_SCALAR_OPS[op](x, threshold))


def _walk_tree(node: TreeNode, *, path_predicates: list[Predicate], rules: list[Rule]) -> None:
    """Recursively walk a node and append one rule per leaf, in pre-order.

    Args:
        node (TreeNode): The current node.
        path_predicates (list[Predicate]): Predicates from the root to `node`.
        rules (list[Rule]): Accumulator; leaf rules are appended in place.
    """
    if isinstance(node, LeafNode):
        rules.append(
            Rule(
                predicates=path_predicates,
                prediction=node.prediction,
                samples=node.n,
                confidence=round(node.confidence, 4),
            )
        )
        return
    left_predicate = Predicate(feature=node.feature, operator="<=", threshold=node.threshold)
    right_predicate = Predicate(feature=node.feature, operator=">", threshold=node.threshold)
    _walk_tree(node.left, path_predicates=[*path_predicates, left_predicate], rules=rules)
    _walk_tree(node.right, path_predicates=[*path_predicates, right_predicate], rules=rules)


def _parse_rule_line(line: str, fmt: RuleFormat) -> Rule:
    """Parse one line of rule text.

    Args:
        line (str): A line written by `Rule.format`.
        fmt (RuleFormat): The options the line was written with.

    Returns:
        Rule: The parsed rule.

    Raises:
        ValueError: If the line does not follow the rule format.
    """
    samples, confidence = 1, 1.0
    stats = _STATS_PATTERN.search(line)
    if stats is not None:
        samples, confidence = int(stats["samples"]), float(stats["confidence"])
        line = line[: stats.start()]

    condition, separator, prediction = line.rstrip().partition(fmt.outcome_separator)
    if not separator or not prediction:
        raise ValueError(f"Rule line has no outcome separator {fmt.outcome_separator!r}: {line!r}")

    predicates: list[Predicate] = []
    if condition.strip() != fmt.empty_condition:
        for term in condition.split(fmt.term_separator):
            match = _TERM_PATTERN.match(term.strip())
            if match is None:
                raise ValueError(f"Cannot parse rule term {term!r}")
            predicates.append(
                Predicate(
                    feature=match["feature"],
                    operator=match["operator"],  # type: ignore[arg-type]
                    threshold=float(match["threshold"]),
                )
            )
    return Rule(predicates=predicates, prediction=prediction, samples=samples, confidence=confidence)
