"""Fit-time control parameters for conditional inference trees."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ctreekit.exceptions import InvalidControlError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

TestType: TypeAlias = Literal["bonferroni", "univariate"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class TreeControl(BaseModel):
    """Stopping rules and test settings used while growing a tree.

    Constraint violations raise `InvalidControlError` listing every problem
    at once; values of the wrong type raise pydantic's `ValidationError`.

    Attributes:
        alpha (float): Maximum (adjusted) p-value for a split to be accepted,
            in `(0, 1]`. Smaller values grow shallower trees.
        maxdepth (int): Maximum depth of any node; the root has depth 0.
        minbucket (int): Minimum number of rows in every leaf and in each
            child of an accepted split.
        minsplit (int): Minimum number of rows a node needs before a split
            is attempted. Must be at least `2 * minbucket`.
        genes_use (tuple[str, ...] | None): Restrict candidate features to
            these names; `None` considers every feature.
        testtype (TestType): `"bonferroni"` adjusts each feature's p-value for
            the number of features tested at the node; `"univariate"` uses raw
            p-values.
        ranks (bool): Test on within-node mid-ranks instead of raw values.
        n_jobs (int): Worker threads used to grow independent subtrees.

    Examples:
        >>> control = TreeControl(alpha=0.01, maxdepth=4, minbucket=5, minsplit=10)
        >>> control.maxdepth
        4
        >>> TreeControl(minbucket=10, minsplit=12)  # doctest: +SKIP
        Traceback (most recent call last):
        ctreekit.exceptions.InvalidControlError: Invalid tree control: minsplit (12) must be at least 2 * minbucket (20)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    alpha: float = Field(
        default=0.05,
        description="Maximum (adjusted) p-value for a split to be accepted, in (0, 1].",
    )
    maxdepth: int = Field(
        default=30,
        description="Maximum depth of any node; the root has depth 0.",
    )
    minbucket: int = Field(
        default=7,
        description="Minimum rows in every leaf and in each child of an accepted split.",
    )
    minsplit: int = Field(
        default=20,
        description="Minimum rows a node needs before a split is attempted; at least 2 * minbucket.",
    )
    genes_use: tuple[str, ...] | None = Field(
        default=None,
        description="Candidate feature names; None considers every feature of the matrix.",
    )
    testtype: TestType = Field(
        default="bonferroni",
        description="Multiplicity handling across features tested at a node.",
    )
    ranks: bool = Field(
        default=False,
        description="Test on within-node mid-ranks of the feature values instead of raw values.",
    )
    n_jobs: int = Field(
        default=1,
        description="Worker threads used to grow independent subtrees.",
    )

    @field_validator("genes_use", mode="before")
    @classmethod
    def _normalize_genes_use(cls, value: Any) -> Any:
        """Store `genes_use` as a duplicate-free tuple.

        Unordered collections are sorted so the model serialises
        deterministically; ordered ones keep their first-seen order.

        Args:
            value (Any): Raw field value.

        Returns:
            Any: A tuple of names, or the value unchanged when it is `None`
                or a string (left for pydantic to reject).
        """
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, set | frozenset):
            return tuple(sorted(value))
        if isinstance(value, Iterable):
            return tuple(dict.fromkeys(value))
        return value

    @model_validator(mode="after")
    def _validate_control_combination(self) -> TreeControl:
        """Validate each parameter's range and the minsplit/minbucket relation.

        Returns:
            TreeControl: The validated model instance.

        Raises:
            InvalidControlError: If any constraint is violated.
        """
        problems: list[str] = []
        if not 0.0 < self.alpha <= 1.0:
            problems.append(f"alpha must be in (0, 1], got {self.alpha}")
        if self.maxdepth < 1:
            problems.append(f"maxdepth must be at least 1, got {self.maxdepth}")
        if self.minbucket < 1:
            problems.append(f"minbucket must be at least 1, got {self.minbucket}")
        if self.minsplit < 2 * self.minbucket:
            problems.append(f"minsplit ({self.minsplit}) must be at least 2 * minbucket ({2 * self.minbucket})")
        if self.genes_use is not None and not self.genes_use:
            problems.append("genes_use must name at least one feature when given")
        if self.n_jobs < 1:
            problems.append(f"n_jobs must be at least 1, got {self.n_jobs}")
        if problems:
            raise InvalidControlError(problems)
        return self

    def with_overrides(self, **overrides: Any) -> TreeControl:
        """Return a validated copy with some parameters replaced.

        Args:
            **overrides (Any): Parameter values to replace.

        Returns:
            TreeControl: The new control.
        """
        return TreeControl.model_validate({**self.model_dump(), **overrides})


def resolve_control(
    control: TreeControl | Mapping[str, Any] | None,
    overrides: Mapping[str, Any] | None = None,
) -> TreeControl:
    """Coerce the accepted control inputs to a validated `TreeControl`.

    Args:
        control (TreeControl | Mapping[str, Any] | None): A control model, a
            mapping of parameter values, or `None` for defaults.
        overrides (Mapping[str, Any] | None): Parameter values applied on top
            of `control`.

    Returns:
        TreeControl: The validated control.

    Raises:
        InvalidControlError: If the resulting parameters are inconsistent.
    """
    if control is None:
        base: dict[str, Any] = {}
    elif isinstance(control, TreeControl):
        if not overrides:
            return control
        base = control.model_dump()
    else:
        base = dict(control)
    return TreeControl.model_validate({**base, **(overrides or {})})
