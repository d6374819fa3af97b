"""Missing-data strategies: multiple imputation, complete cases, median fill.

Multiple imputation uses chained equations from statsmodels
(``MICEData``). Each incomplete variable is modelled on its predictors and
missing cells are filled by predictive mean matching, so every imputed value
is a value observed elsewhere in the data.

Example:
    >>> from prostate_survival.config import ImputationConfig
    >>> result = impute(df, ImputationConfig(n_imputations=5, n_iter=10))
    >>> len(result)
    5
    >>> result.datasets[0].isna().sum().sum()
    0
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging
import math

import numpy as np
import pandas as pd
from sklearn.impute import SimpleImputer
from statsmodels.discrete.discrete_model import Logit
from statsmodels.imputation.mice import MICEData
from statsmodels.regression.linear_model import OLS

from prostate_survival.config import ImputationConfig
from prostate_survival.data import analysis_columns
from prostate_survival.errors import InsufficientPredictors

logger = logging.getLogger("prostate_survival.imputation")

# Conditional model per method; both fill cells by predictive mean matching
METHODS = {
    "pmm": OLS,
    "logreg": Logit,
}


@dataclass
class ImputedDatasets:
    """M completed copies of a dataset plus how they were produced.

    Attributes:
        datasets: Completed copies with the input's columns, index and dtypes
        methods: Method used for each incomplete variable
        predictors: Predictor columns used for each incomplete variable
        seeds: Random seed of each copy
        chains: Long table (imputation, iteration, variable, mean) of the mean
            of the imputed cells after every cycle
    """
    datasets: List[pd.DataFrame]
    methods: Dict[str, str] = field(default_factory=dict)
    predictors: Dict[str, List[str]] = field(default_factory=dict)
    seeds: List[int] = field(default_factory=list)
    chains: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=["imputation", "iteration", "variable", "mean"])
    )

    def __len__(self) -> int:
        return len(self.datasets)

    def __iter__(self):
        return iter(self.datasets)

    def __getitem__(self, i: int) -> pd.DataFrame:
        return self.datasets[i]

    @property
    def n_imputations(self) -> int:
        return len(self.datasets)

    @property
    def incomplete_variables(self) -> List[str]:
        return list(self.methods)


def default_imputation_count(
    df: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    minimum: int = 5,
) -> int:
    """Number of imputations derived from the share of incomplete records.

    Computes ``max(minimum, ceil(100 * fraction of incomplete records))``.

    Args:
        df: Patient records
        columns: Columns considered. Defaults to the analysis columns
        minimum: Lower bound on the count

    Returns:
        Number of completed copies to generate

    Example:
        >>> default_imputation_count(df)  # 11 of 502 records incomplete
        5
    """
    cols = analysis_columns(df) if columns is None else list(columns)
    if len(df) == 0:
        return minimum
    fraction = df[cols].isna().any(axis=1).mean()
    return max(minimum, math.ceil(round(100 * fraction, 9)))


def _is_categorical(s: pd.Series) -> bool:
    return isinstance(s.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(s)


def _encode(df: pd.DataFrame, columns: List[str]):
    """Numeric frame for MICEData plus the categories needed to decode it."""
    encoded = {}
    categories = {}
    for col in columns:
        s = df[col]
        if _is_categorical(s):
            cat = s if isinstance(s.dtype, pd.CategoricalDtype) else s.astype("category")
            categories[col] = cat.cat.categories
            codes = np.array(cat.cat.codes, dtype=float)
            codes[codes < 0] = np.nan
            encoded[col] = codes
        else:
            encoded[col] = s.astype(float).to_numpy()
    frame = pd.DataFrame(encoded)
    # MICEData requires object-dtype column labels
    frame.columns = pd.Index(columns, dtype=object)
    return frame, categories


def _decode(
    original: pd.DataFrame,
    imputed: pd.DataFrame,
    incomplete: List[str],
    categories: Dict[str, pd.Index],
) -> pd.DataFrame:
    out = original.copy()
    for col in incomplete:
        values = imputed[col].to_numpy()
        if col in categories:
            codes = np.rint(values).astype(int)
            decoded = pd.Categorical.from_codes(codes, categories=categories[col])
            if isinstance(original[col].dtype, pd.CategoricalDtype):
                out[col] = pd.Series(decoded, index=original.index)
            else:
                out[col] = pd.Series(np.asarray(decoded, dtype=object), index=original.index)
        else:
            out[col] = pd.Series(values, index=original.index)
    return out


def _usable_predictors(
    df: pd.DataFrame,
    variable: str,
    candidates: Sequence[str],
    columns: List[str],
) -> List[str]:
    usable = []
    for col in candidates:
        if col == variable or col not in columns:
            continue
        if df[col].dropna().nunique() < 2:
            logger.debug(f"Predictor '{col}' for '{variable}' has fewer than two distinct values")
            continue
        usable.append(col)
    return usable


def _resolve_method(variable: str, config: ImputationConfig, observed: pd.Series) -> str:
    method = config.methods.get(variable, config.method_default)
    if method not in METHODS:
        raise ValueError(
            f"Unknown imputation method '{method}' for '{variable}'. "
            f"Supported methods: {sorted(METHODS)}"
        )
    if method == "logreg" and not set(np.unique(observed)) <= {0.0, 1.0}:
        raise ValueError(f"Method 'logreg' needs a binary variable, '{variable}' is not binary")
    return method


def impute(df: pd.DataFrame, config: Optional[ImputationConfig] = None) -> ImputedDatasets:
    """Generate M completed copies by multiple imputation with chained equations.

    Every incomplete analysis column gets its own conditional model on its
    usable predictors: other analysis columns, present in the frame, with at
    least two distinct observed values. Categorical columns are imputed on
    their integer codes and decoded afterwards, and enter other variables'
    models as ``C(name)``. Codes of unordered factors such as ``ekg`` are
    predicted by OLS as if ordered; predictive mean matching then draws an
    observed code from the nearest donors, so only valid levels appear.
    Copy ``m`` runs ``config.n_iter`` full cycles seeded with
    ``config.random_state + m``.

    Args:
        df: Cleaned patient records
        config: Imputation options. Defaults to ``ImputationConfig()``

    Returns:
        ImputedDatasets with M completed copies. Excluded columns are carried
        through unchanged.

    Raises:
        InsufficientPredictors: If an incomplete variable has no observed
            values or no usable predictors
        ValueError: If a method name is unknown, or "logreg" is requested for
            a non-binary variable
    """
    config = config or ImputationConfig()
    columns = analysis_columns(df, exclude=list(config.exclude_columns))
    m_total = config.n_imputations or default_imputation_count(df, columns)
    seeds = [config.random_state + m for m in range(m_total)]

    for name, method in config.methods.items():
        if method not in METHODS:
            raise ValueError(
                f"Unknown imputation method '{method}' for '{name}'. "
                f"Supported methods: {sorted(METHODS)}"
            )
    if config.method_default not in METHODS:
        raise ValueError(f"Unknown default imputation method '{config.method_default}'")

    n_missing = df[columns].isna().sum()
    incomplete = [col for col in columns if n_missing[col] > 0]

    if not incomplete:
        logger.info(f"No missing values in {len(columns)} analysis columns; returning {m_total} copies")
        return ImputedDatasets(datasets=[df.copy() for _ in range(m_total)], seeds=seeds)

    encoded, categories = _encode(df, columns)

    methods = {}
    predictors = {}
    formulas = {}
    for col in incomplete:
        observed = encoded[col].dropna()
        if observed.empty:
            raise InsufficientPredictors(col, "no observed values")
        candidates = config.predictors.get(col, columns)
        usable = _usable_predictors(df, col, candidates, columns)
        if not usable:
            raise InsufficientPredictors(col)
        methods[col] = _resolve_method(col, config, observed.to_numpy())
        predictors[col] = usable
        formulas[col] = " + ".join(f"C({p})" if p in categories else p for p in usable)

    empty_rows = encoded.isna().all(axis=1)
    if empty_rows.any():
        raise ValueError(f"{int(empty_rows.sum())} records have no observed analysis values")

    # MICEData keeps a single donor pool size for all variables
    k_pmm = min([config.k_pmm] + [int(len(df) - n_missing[c]) for c in incomplete])

    logger.info(
        f"Imputing {len(incomplete)} variables {incomplete} "
        f"with M={m_total}, n_iter={config.n_iter}, k_pmm={k_pmm}"
    )

    datasets = []
    chain_rows = []
    for m, seed in enumerate(seeds):
        mice = MICEData(
            encoded,
            perturbation_method=config.perturbation_method,
            k_pmm=k_pmm,
            rng=np.random.default_rng(seed),
        )
        for col in incomplete:
            model_class = METHODS[methods[col]]
            mice.set_imputer(
                col,
                formula=formulas[col],
                model_class=model_class,
                fit_kwds={"disp": False} if model_class is Logit else None,
                k_pmm=k_pmm,
            )

        for iteration in range(1, config.n_iter + 1):
            mice.update_all(1)
            for col in incomplete:
                imputed_cells = mice.data[col].iloc[mice.ix_miss[col]]
                chain_rows.append({
                    "imputation": m,
                    "iteration": iteration,
                    "variable": col,
                    "mean": float(imputed_cells.mean()),
                })

        datasets.append(_decode(df, mice.data, incomplete, categories))
        logger.debug(f"Completed imputation {m + 1}/{m_total} (seed={seed})")

    return ImputedDatasets(
        datasets=datasets,
        methods=methods,
        predictors=predictors,
        seeds=seeds,
        chains=pd.DataFrame(chain_rows, columns=["imputation", "iteration", "variable", "mean"]),
    )


def complete_case(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Drop every record with a missing value in ``columns`` (listwise deletion).

    Args:
        df: Cleaned patient records
        columns: Columns checked for missing values. Defaults to the analysis
            columns

    Returns:
        New DataFrame holding only complete records
    """
    cols = analysis_columns(df) if columns is None else list(columns)
    out = df.dropna(subset=cols).copy()
    logger.info(f"Complete-case analysis keeps {len(out)} of {len(df)} records")
    return out


def median_fill(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Single imputation: median for numeric columns, mode for categorical ones.

    Args:
        df: Cleaned patient records
        columns: Columns to fill. Defaults to the analysis columns

    Returns:
        New DataFrame with the selected columns filled; categorical dtypes are
        preserved
    """
    cols = analysis_columns(df) if columns is None else list(columns)
    incomplete = [c for c in cols if df[c].isna().any()]
    out = df.copy()
    if not incomplete:
        return out

    numeric = [c for c in incomplete if not _is_categorical(df[c])]
    categorical = [c for c in incomplete if _is_categorical(df[c])]

    if numeric:
        imputer = SimpleImputer(strategy="median")
        filled = imputer.fit_transform(df[numeric].astype(float))
        for i, col in enumerate(numeric):
            out[col] = pd.Series(filled[:, i], index=df.index)

    if categorical:
        imputer = SimpleImputer(strategy="most_frequent", missing_values=np.nan)
        filled = imputer.fit_transform(df[categorical].astype(object))
        for i, col in enumerate(categorical):
            if isinstance(df[col].dtype, pd.CategoricalDtype):
                values = pd.Categorical(filled[:, i], categories=df[col].cat.categories)
            else:
                values = filled[:, i]
            out[col] = pd.Series(values, index=df.index)

    logger.info(f"Median/mode fill applied to {incomplete}")
    return out
