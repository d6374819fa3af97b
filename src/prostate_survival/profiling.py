"""Missing-data profiling: where values are missing and what predicts it.

All functions are read-only over the input frame. Their outputs are
advisory artifacts (tables, a dendrogram, a decision tree) for choosing a
missing-data strategy.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging

import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt  # noqa: E402
from scipy.cluster.hierarchy import dendrogram, linkage  # noqa: E402
from scipy.spatial.distance import squareform  # noqa: E402
from sklearn import tree as sktree  # noqa: E402

from prostate_survival.data import EVENT_COL, NON_ANALYSIS_COLS, TIME_COL, analysis_columns  # noqa: E402

logger = logging.getLogger("prostate_survival.profiling")


def missing_summary(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Count missing values per variable.

    Args:
        df: Patient records
        columns: Variables to report. Defaults to every column

    Returns:
        DataFrame indexed by variable with columns ``n_missing`` and
        ``pct_missing``, sorted by ``n_missing`` descending. Over all columns
        ``n_missing`` sums to the number of missing cells in the frame.

    Example:
        >>> summary = missing_summary(df)
        >>> summary.head(2)
             n_missing  pct_missing
        sg           11        2.191
        wt            2        0.398
    """
    cols = list(df.columns) if columns is None else list(columns)
    counts = df[cols].isna().sum()
    summary = pd.DataFrame({
        "n_missing": counts.astype(int),
        "pct_missing": (100.0 * counts / len(df)).round(3) if len(df) else 0.0,
    })
    summary.index.name = "variable"
    return summary.sort_values("n_missing", ascending=False, kind="mergesort")


def missing_per_record(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.Series:
    """Distribution of the number of missing values per record.

    Returns:
        Series indexed by missing-value count (0, 1, ...) giving how many
        records have that many missing values
    """
    cols = list(df.columns) if columns is None else list(columns)
    per_record = df[cols].isna().sum(axis=1)
    dist = per_record.value_counts().sort_index()
    dist.index.name = "n_missing"
    dist.name = "n_records"
    return dist


@dataclass
class MissingnessClusters:
    """Hierarchical clustering of variables by co-missingness.

    Attributes:
        variables: Clustered variable names, in frame order
        similarity: Fraction of records in which both variables are missing
        linkage: scipy linkage matrix over ``1 - similarity``
        method: Linkage method used
    """
    variables: List[str]
    similarity: pd.DataFrame
    linkage: np.ndarray
    method: str = "average"


def cluster_missingness(
    df: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    method: str = "average",
) -> MissingnessClusters:
    """Cluster variables by how often they are missing together.

    Similarity between two variables is the fraction of records in which both
    are missing; the clustering distance is ``1 - similarity``.

    Args:
        df: Patient records
        columns: Variables to cluster. Defaults to the analysis columns
        method: scipy linkage method ("average", "complete", "single", ...)

    Returns:
        MissingnessClusters with the similarity matrix and linkage

    Raises:
        ValueError: If fewer than two variables are given
    """
    cols = analysis_columns(df) if columns is None else list(columns)
    if len(cols) < 2:
        raise ValueError(f"Clustering needs at least two variables, got {cols}")

    indicators = df[cols].isna().to_numpy(dtype=float)
    n = max(len(df), 1)
    both = indicators.T @ indicators / n
    similarity = pd.DataFrame(both, index=cols, columns=cols)

    distance = 1.0 - both
    np.fill_diagonal(distance, 0.0)
    Z = linkage(squareform(distance, checks=False), method=method)

    logger.info(f"Clustered {len(cols)} variables by co-missingness ({method} linkage)")
    return MissingnessClusters(variables=cols, similarity=similarity, linkage=Z, method=method)


def plot_dendrogram(clusters: MissingnessClusters, path: str) -> str:
    """Save a dendrogram of the co-missingness clustering.

    Args:
        clusters: Result of ``cluster_missingness``
        path: Output PNG path

    Returns:
        The path written
    """
    fig, ax = plt.subplots(figsize=(8, 5))
    dendrogram(clusters.linkage, labels=clusters.variables, ax=ax, leaf_rotation=90)
    ax.set_ylabel("1 - fraction of records missing both")
    ax.set_title("Variables clustered by co-missingness")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


@dataclass
class MissingnessTree:
    """Decision tree classifying whether ``target`` is missing.

    Attributes:
        target: Variable whose missingness is predicted
        predictors: Candidate predictor columns before encoding
        feature_names: Encoded feature names seen by the tree
        estimator: Fitted scikit-learn DecisionTreeClassifier
        n_missing: Number of records with the target missing
        min_leaf: Minimum leaf size the tree was grown with
    """
    target: str
    predictors: List[str]
    feature_names: List[str]
    estimator: sktree.DecisionTreeClassifier
    n_missing: int
    min_leaf: int
    rules: str = field(default="")

    def leaf_sizes(self) -> np.ndarray:
        """Number of training records in each leaf."""
        t = self.estimator.tree_
        is_leaf = t.children_left == -1
        return t.n_node_samples[is_leaf]


def _encode_predictors(df: pd.DataFrame, predictors: List[str]) -> pd.DataFrame:
    # Categoricals one-hot encoded; numeric columns keep NaN for native tree handling
    parts = []
    for col in predictors:
        s = df[col]
        if isinstance(s.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(s):
            dummies = pd.get_dummies(s, prefix=col, prefix_sep="=", dtype=float)
            dummies.loc[s.isna()] = np.nan
            parts.append(dummies)
        else:
            parts.append(s.astype(float).to_frame(col))
    return pd.concat(parts, axis=1)


def missingness_tree(
    df: pd.DataFrame,
    target: str = "sg",
    predictors: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    min_leaf: int = 15,
    max_depth: int = 4,
    random_state: int = 0,
) -> MissingnessTree:
    """Fit a shallow decision tree predicting "is ``target`` missing".

    Args:
        df: Cleaned patient records
        target: Variable whose missingness is classified. Defaults to "sg"
        predictors: Candidate predictors. Defaults to every other column
            not in ``exclude``
        exclude: Columns never used as default predictors. Defaults to
            ``NON_ANALYSIS_COLS`` plus follow-up time and the event indicator
        min_leaf: No split may create a leaf with fewer records than this
        max_depth: Maximum depth of the tree
        random_state: Seed for tie-breaking among equally good splits

    Returns:
        MissingnessTree with the fitted estimator and its text rules

    Raises:
        KeyError: If ``target`` is not a column of ``df``
        ValueError: If no predictor columns are available

    Example:
        >>> result = missingness_tree(df, target="sg", min_leaf=15)
        >>> print(result.rules)
        |--- ap <= 0.85
        |   |--- class: 0
        ...
    """
    if target not in df.columns:
        raise KeyError(f"Target column '{target}' not found")

    if predictors is None:
        if exclude is None:
            exclude = NON_ANALYSIS_COLS + [TIME_COL, EVENT_COL]
        predictors = [c for c in analysis_columns(df, exclude=list(exclude)) if c != target]
    else:
        predictors = [c for c in predictors if c != target]
        unknown = [c for c in predictors if c not in df.columns]
        if unknown:
            raise KeyError(f"Predictor columns {unknown} not found")
    if not predictors:
        raise ValueError(f"No predictor columns available for missingness of '{target}'")

    X = _encode_predictors(df, list(predictors))
    y = df[target].isna().astype(int).to_numpy()

    estimator = sktree.DecisionTreeClassifier(
        min_samples_leaf=min_leaf,
        max_depth=max_depth,
        random_state=random_state,
    )
    estimator.fit(X, y)
    rules = sktree.export_text(estimator, feature_names=list(X.columns))

    logger.info(
        f"Missingness tree for '{target}': {int(y.sum())} missing, "
        f"{estimator.get_n_leaves()} leaves, depth {estimator.get_depth()}"
    )
    return MissingnessTree(
        target=target,
        predictors=list(predictors),
        feature_names=list(X.columns),
        estimator=estimator,
        n_missing=int(y.sum()),
        min_leaf=min_leaf,
        rules=rules,
    )


def plot_tree(result: MissingnessTree, path: str) -> str:
    """Save a diagram of the missingness decision tree.

    Args:
        result: Result of ``missingness_tree``
        path: Output PNG path

    Returns:
        The path written
    """
    fig, ax = plt.subplots(figsize=(12, 7))
    sktree.plot_tree(
        result.estimator,
        feature_names=result.feature_names,
        class_names=["observed", "missing"],
        filled=True,
        impurity=False,
        proportion=False,
        ax=ax,
    )
    ax.set_title(f"Predictors of missing '{result.target}'")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path
