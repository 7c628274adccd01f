"""Environment-driven defaults for tree fitting."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctreekit.tree.control import TestType, TreeControl


class CTreeSettings(BaseSettings):
    """Default control parameters read from the environment or a `.env` file.

    Every field maps to the environment variable `CTREEKIT_<FIELD>`, e.g.
    `CTREEKIT_ALPHA=0.01` or `CTREEKIT_GENES_USE='["CD3E", "MS4A1"]'`.
    Validation of the combined parameters happens in `to_control`.

    Attributes:
        alpha (float): Significance level a split must reach.
        maxdepth (int): Maximum tree depth.
        minbucket (int): Minimum number of rows per leaf.
        minsplit (int): Minimum number of rows a node needs to be split.
        genes_use (list[str] | None): Candidate features; `None` means all.
        testtype (TestType): Multiplicity adjustment of feature p-values.
        ranks (bool): Use mid-ranks instead of raw values in the test.
        n_jobs (int): Worker threads used while growing.

    Examples:
        >>> CTreeSettings(maxdepth=3, minbucket=5, minsplit=10).to_control().minsplit
        10
    """

    model_config = SettingsConfigDict(
        env_prefix="CTREEKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    alpha: float = Field(default=0.05, description="Significance level a split must reach.")
    maxdepth: int = Field(default=30, description="Maximum tree depth.")
    minbucket: int = Field(default=7, description="Minimum number of rows per leaf.")
    minsplit: int = Field(default=20, description="Minimum number of rows a node needs to be split.")
    genes_use: list[str] | None = Field(default=None, description="Candidate features; None means all.")
    testtype: TestType = Field(default="bonferroni", description="Multiplicity adjustment of feature p-values.")
    ranks: bool = Field(default=False, description="Use mid-ranks instead of raw values in the test.")
    n_jobs: int = Field(default=1, description="Worker threads used while growing.")

    def to_control(self) -> TreeControl:
        """Build a validated `TreeControl` from these settings.

        Returns:
            TreeControl: The control parameters.

        Raises:
            InvalidControlError: If the parameters are inconsistent.
        """
        return TreeControl(**self.model_dump())
