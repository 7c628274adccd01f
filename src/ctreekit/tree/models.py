"""Pydantic models for fitted conditional inference trees."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable, TypeAlias

import polars as pl
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ctreekit.feature_matrix import FeatureMatrix, Label
from ctreekit.tree.control import TreeControl

if TYPE_CHECKING:
    from ctreekit.rules import RuleSet

# ---------------------------------------------------------------------------
# Public models -- Nodes
# ---------------------------------------------------------------------------


class LeafNode(BaseModel):
    """A terminal node holding the class distribution of its training rows.

    Attributes:
        kind (Literal["leaf"]): Discriminator field; always `"leaf"`.
        n (int): Number of training rows that reached this node.
        depth (int): Distance from the root (the root has depth 0).
        class_counts (tuple[int, ...]): Training row count per class, in the
            tree's class order.
        prediction (Label): Majority class; ties go to the earlier class.

    Examples:
        >>> leaf = LeafNode(n=10, depth=1, class_counts=(8, 2), prediction="T cell")
        >>> leaf.confidence
        0.8
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = Field(default="leaf", description='Discriminator field. Always "leaf".')
    n: int = Field(ge=1, description="Number of training rows that reached this node.")
    depth: int = Field(ge=0, description="Distance from the root; the root has depth 0.")
    class_counts: tuple[int, ...] = Field(description="Training row count per class, in the tree's class order.")
    prediction: Label = Field(description="Majority class of the node's training rows.")

    @model_validator(mode="after")
    def _validate_counts_match_n(self) -> LeafNode:
        """Validate that the class counts add up to `n`.

        Returns:
            LeafNode: The validated model instance.

        Raises:
            ValueError: If `sum(class_counts) != n`.
        """
        if sum(self.class_counts) != self.n:
            raise ValueError(f"class_counts sum to {sum(self.class_counts)}, expected n={self.n}")
        return self

    @property
    def is_leaf(self) -> bool:
        return True

    @property
    def confidence(self) -> float:
        """Fraction of the leaf's training rows in the majority class."""
        return max(self.class_counts) / self.n

    @property
    def class_probabilities(self) -> tuple[float, ...]:
        """Class proportions of the leaf's training rows, in class order."""
        return tuple(count / self.n for count in self.class_counts)


class SplitNode(BaseModel):
    """An internal node splitting its rows on one feature threshold.

    Attributes:
        kind (Literal["split"]): Discriminator field; always `"split"`.
        n (int): Number of training rows that reached this node.
        depth (int): Distance from the root.
        class_counts (tuple[int, ...]): Training row count per class.
        feature (str): Feature the node splits on.
        threshold (float): Rows with `feature <= threshold` go to `left`,
            the rest to `right`.
        statistic (float): Association test statistic of `feature` here.
        p_value (float): Adjusted p-value of that association.
        left (SplitNode | LeafNode): Child for `feature <= threshold`.
        right (SplitNode | LeafNode): Child for `feature > threshold`.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = Field(default="split", description='Discriminator field. Always "split".')
    n: int = Field(ge=2, description="Number of training rows that reached this node.")
    depth: int = Field(ge=0, description="Distance from the root; the root has depth 0.")
    class_counts: tuple[int, ...] = Field(description="Training row count per class, in the tree's class order.")
    feature: str = Field(description="Feature the node splits on.")
    threshold: float = Field(description="Rows with feature <= threshold go left, the rest go right.")
    statistic: float = Field(ge=0.0, description="Association test statistic of the split feature.")
    p_value: float = Field(ge=0.0, le=1.0, description="Adjusted p-value of the split feature's association.")
    left: SplitNode | LeafNode = Field(discriminator="kind", description="Child for feature <= threshold.")
    right: SplitNode | LeafNode = Field(discriminator="kind", description="Child for feature > threshold.")

    @model_validator(mode="after")
    def _validate_children_partition_rows(self) -> SplitNode:
        """Validate that the children partition this node's rows one level down.

        Returns:
            SplitNode: The validated model instance.

        Raises:
            ValueError: If the children's row counts or class counts do not
                add up to this node's, or a child is not one level deeper.
        """
        errors: list[str] = []
        if self.left.n + self.right.n != self.n:
            errors.append(f"children hold {self.left.n} + {self.right.n} rows, expected {self.n}")
        child_counts = tuple(a + b for a, b in zip(self.left.class_counts, self.right.class_counts, strict=True))
        if child_counts != self.class_counts:
            errors.append(f"children class counts {child_counts} differ from {self.class_counts}")
        if self.left.depth != self.depth + 1 or self.right.depth != self.depth + 1:
            errors.append(f"children must have depth {self.depth + 1}")
        if errors:
            raise ValueError("; ".join(errors))
        return self

    @property
    def is_leaf(self) -> bool:
        return False


SplitNode.model_rebuild()

TreeNode: TypeAlias = SplitNode | LeafNode

# ---------------------------------------------------------------------------
# Public models -- Tree
# ---------------------------------------------------------------------------


@runtime_checkable
class Classifier(Protocol):
    """Capability shared by fitted classifiers: label prediction and rule export."""

    def predict(self, newdata: FeatureMatrix | pl.DataFrame) -> list[Label]: ...

    def export_rules(self) -> RuleSet: ...


class ConditionalTree(BaseModel):
    """A fitted conditional inference classification tree.

    Immutable and JSON-serialisable: `ConditionalTree.model_validate_json(
    tree.model_dump_json())` reproduces the tree exactly.

    Attributes:
        root (SplitNode | LeafNode): Root node.
        control (TreeControl): Control parameters the tree was grown with.
        feature_names (tuple[str, ...]): Candidate features, in matrix order.
        classes (tuple[Label, ...]): Class labels in first-seen order; the
            index space of every node's `class_counts`.
        n_samples (int): Number of training rows.
    """

    model_config = ConfigDict(frozen=True)

    root: SplitNode | LeafNode = Field(discriminator="kind", description="Root node of the tree.")
    control: TreeControl = Field(description="Control parameters the tree was grown with.")
    feature_names: tuple[str, ...] = Field(description="Candidate features considered while growing, in matrix order.")
    classes: tuple[Label, ...] = Field(description="Class labels in first-seen order.")
    n_samples: int = Field(ge=1, description="Number of training rows.")

    @model_validator(mode="after")
    def _validate_root_matches_tree(self) -> ConditionalTree:
        """Validate the root's row and class counts against the tree metadata.

        Returns:
            ConditionalTree: The validated model instance.

        Raises:
            ValueError: If the root does not hold `n_samples` rows or its
                class counts do not have one entry per class.
        """
        if self.root.n != self.n_samples:
            raise ValueError(f"root holds {self.root.n} rows, expected n_samples={self.n_samples}")
        if len(self.root.class_counts) != len(self.classes):
            raise ValueError(f"root has {len(self.root.class_counts)} class counts for {len(self.classes)} classes")
        return self

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def iter_nodes(self) -> Iterator[TreeNode]:
        """Yield every node in pre-order (node, then left subtree, then right subtree)."""
        stack: list[TreeNode] = [self.root]
        while stack:
            node = stack.pop()
            yield node
            if isinstance(node, SplitNode):
                stack.append(node.right)
                stack.append(node.left)

    def leaves(self) -> list[LeafNode]:
        """Return the leaves in pre-order; a leaf's position is its leaf number."""
        return [node for node in self.iter_nodes() if isinstance(node, LeafNode)]

    @property
    def depth(self) -> int:
        return max(leaf.depth for leaf in self.leaves())

    @property
    def leaf_count(self) -> int:
        return len(self.leaves())

    @property
    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())

    @property
    def split_features(self) -> list[str]:
        """Features used by at least one split, in pre-order of first use."""
        used = (node.feature for node in self.iter_nodes() if isinstance(node, SplitNode))
        return list(dict.fromkeys(used))

    # ------------------------------------------------------------------
    # Classifier capability
    # ------------------------------------------------------------------

    def predict(self, newdata: FeatureMatrix | pl.DataFrame) -> list[Label]:
        """Predict one class label per row of `newdata`. See `ctreekit.tree.prediction.predict`."""
        from ctreekit.tree.prediction import predict

        return predict(self, newdata)

    def predict_proba(self, newdata: FeatureMatrix | pl.DataFrame) -> pl.DataFrame:
        """Predict class probabilities per row. See `ctreekit.tree.prediction.predict_proba`."""
        from ctreekit.tree.prediction import predict_proba

        return predict_proba(self, newdata)

    def export_rules(self) -> RuleSet:
        """Flatten the tree into its ordered rule set. See `ctreekit.rules.export_rules`."""
        from ctreekit.rules import export_rules

        return export_rules(self)
