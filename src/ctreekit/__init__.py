"""ctreekit: Conditional inference classification trees for expression data."""

from loguru import logger

from ctreekit.exceptions import (
    CTreeError,
    DegenerateSplitError,
    EmptyDatasetError,
    InvalidControlError,
    LabelMismatchError,
    MissingFeatureError,
    UnknownFeatureError,
)
from ctreekit.feature_matrix import FeatureMatrix
from ctreekit.logging import PACKAGE_NAME, enable_logging
from ctreekit.metrics import ConfusionMatrix, FrequencyMatrix, accuracy, confusion_matrix, correctness, normalize
from ctreekit.rendering import DisplayOptions, format_tree
from ctreekit.rules import Predicate, Rule, RuleFormat, RuleSet, export_rules
from ctreekit.settings import CTreeSettings
from ctreekit.tree import ConditionalTree, TreeControl, apply, fit_ctree, predict, predict_proba

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the ctreekit module by default

__all__ = [
    "CTreeError",
    "CTreeSettings",
    "ConditionalTree",
    "ConfusionMatrix",
    "DegenerateSplitError",
    "DisplayOptions",
    "EmptyDatasetError",
    "FeatureMatrix",
    "FrequencyMatrix",
    "InvalidControlError",
    "LabelMismatchError",
    "MissingFeatureError",
    "Predicate",
    "Rule",
    "RuleFormat",
    "RuleSet",
    "TreeControl",
    "UnknownFeatureError",
    "accuracy",
    "apply",
    "confusion_matrix",
    "correctness",
    "enable_logging",
    "export_rules",
    "fit_ctree",
    "format_tree",
    "normalize",
    "predict",
    "predict_proba",
]
