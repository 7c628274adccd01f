"""Conditional inference tree sub-package: control, split selection, fitting, and prediction."""

from __future__ import annotations

from ctreekit.tree.builder import TreeBuilder, fit_ctree
from ctreekit.tree.control import TestType, TreeControl
from ctreekit.tree.models import Classifier, ConditionalTree, LeafNode, SplitNode, TreeNode
from ctreekit.tree.prediction import apply, predict, predict_proba
from ctreekit.tree.splitting import FeatureAssociation, Split, SplitSelector

__all__ = [
    "Classifier",
    "ConditionalTree",
    "FeatureAssociation",
    "LeafNode",
    "Split",
    "SplitNode",
    "SplitSelector",
    "TestType",
    "TreeBuilder",
    "TreeControl",
    "TreeNode",
    "apply",
    "fit_ctree",
    "predict",
    "predict_proba",
]
