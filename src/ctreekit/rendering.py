"""Indented text rendering of fitted trees."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ctreekit.feature_matrix import Label
from ctreekit.tree.models import ConditionalTree, LeafNode, TreeNode

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class DisplayOptions(BaseModel):
    """Options for `format_tree`.

    Attributes:
        digits (int): Significant digits for thresholds.
        show_counts (bool): Append each leaf's per-class training counts.
        indent (str): Prefix repeated once per depth level below the root.
    """

    model_config = ConfigDict(frozen=True)

    digits: int = Field(default=4, ge=1, description="Significant digits for thresholds.")
    show_counts: bool = Field(default=False, description="Append each leaf's per-class training counts.")
    indent: str = Field(default="|   ", description="Prefix repeated once per depth level below the root.")


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def format_tree(tree: ConditionalTree, options: DisplayOptions | None = None) -> str:
    """Render a tree as indented text, one node per line.

    Nodes are numbered from 1 in pre-order. The root line reads `[1] root`;
    every other line shows the edge condition leading to the node, and leaf
    lines add the prediction, row count and training error rate.

    Args:
        tree (ConditionalTree): A fitted tree.
        options (DisplayOptions | None): Rendering options; `None` uses defaults.

    Returns:
        str: Newline-terminated text.

    Examples:
        >>> print(format_tree(tree))  # doctest: +SKIP
        [1] root
        |   [2] CD3E <= 5: B (n = 40, err = 0.0%)
        |   [3] CD3E > 5: T (n = 40, err = 0.0%)
    """
    options = options or DisplayOptions()
    lines: list[str] = []
    _render(tree.root, "root", level=0, number=1, tree=tree, options=options, lines=lines)
    return "".join(line + "\n" for line in lines)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _render(
    node: TreeNode,
    label: str,
    *,
    level: int,
    number: int,
    tree: ConditionalTree,
    options: DisplayOptions,
    lines: list[str],
) -> int:
    """Append the lines of `node`'s subtree and return the next free node number."""
    line = f"{options.indent * level}[{number}] {label}"
    if isinstance(node, LeafNode):
        lines.append(line + _leaf_summary(node, tree.classes, options))
        return number + 1
    lines.append(line)
    threshold = f"{node.threshold:.{options.digits}g}"
    next_number = _render(
        node.left,
        f"{node.feature} <= {threshold}",
        level=level + 1,
        number=number + 1,
        tree=tree,
        options=options,
        lines=lines,
    )
    return _render(
        node.right,
        f"{node.feature} > {threshold}",
        level=level + 1,
        number=next_number,
        tree=tree,
        options=options,
        lines=lines,
    )


def _leaf_summary(leaf: LeafNode, classes: tuple[Label, ...], options: DisplayOptions) -> str:
    error_rate = 1.0 - leaf.confidence
    summary = f": {leaf.prediction} (n = {leaf.n}, err = {error_rate:.1%})"
    if options.show_counts:
        counts = ", ".join(f"{label}: {count}" for label, count in zip(classes, leaf.class_counts, strict=True))
        summary += f" [{counts}]"
    return summary
