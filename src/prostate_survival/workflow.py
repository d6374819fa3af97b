"""End-to-end workflow: load, clean, profile, impute, fit, pool, report.

Each stage runs under a timer and fails fast: an exception is logged by the
stage timer and then propagates unchanged to the caller.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

import pandas as pd

from prostate_survival.cleaning import clean_status, event_counts
from prostate_survival.config import Strategy, WorkflowConfig
from prostate_survival.data import analysis_columns, load_data
from prostate_survival.imputation import ImputedDatasets, complete_case, impute, median_fill
from prostate_survival.logging_config import capture_warnings, log_performance
from prostate_survival.models import CoxFit, CoxModelSpec, build_formula, fit_imputed
from prostate_survival.pooling import PooledCoxModel, pool_fits
from prostate_survival.profiling import (
    MissingnessClusters,
    MissingnessTree,
    cluster_missingness,
    missing_per_record,
    missing_summary,
    missingness_tree,
)
from prostate_survival.report import write_report
from prostate_survival.timing import Timer
from prostate_survival.validation import pooled_ph_flags


@dataclass
class WorkflowResult:
    """Everything a run produced.

    Attributes:
        config: Effective configuration
        data: Cleaned records (event column is 0/1)
        events: Counts of censored (0) and event (1) records
        missing_summary: Missing values per variable
        missing_per_record: Distribution of missing values per record
        clusters: Co-missingness clustering
        tree: Decision tree for missingness of the configured target
        imputed: Completed copies (multiple imputation strategy only)
        fits: One Cox fit per analysed dataset
        pooled: Pooled model
        ph_flags: Proportional hazards check per term
        artifacts: Written files by name
        warnings: Count of captured library warnings by category
    """
    config: WorkflowConfig
    data: pd.DataFrame
    events: pd.Series
    missing_summary: pd.DataFrame
    missing_per_record: pd.Series
    clusters: Optional[MissingnessClusters]
    tree: Optional[MissingnessTree]
    imputed: Optional[ImputedDatasets]
    fits: List[CoxFit]
    pooled: PooledCoxModel
    ph_flags: pd.DataFrame
    artifacts: Dict[str, str] = field(default_factory=dict)
    warnings: Dict[str, int] = field(default_factory=dict)


def _datasets_for_strategy(
    cleaned: pd.DataFrame,
    config: WorkflowConfig,
    spec: CoxModelSpec,
    logger: logging.Logger,
):
    if config.strategy is Strategy.MULTIPLE_IMPUTATION:
        with Timer(logger, "Multiple imputation"):
            imputed = impute(cleaned, config.imputation)
        log_performance(
            logger,
            "Imputation summary",
            m=imputed.n_imputations,
            variables=len(imputed.incomplete_variables),
        )
        return imputed.datasets, imputed

    model_columns = [spec.duration, spec.event] + list(spec.covariates)
    if config.strategy is Strategy.COMPLETE_CASE:
        with Timer(logger, "Complete-case selection"):
            return [complete_case(cleaned, columns=model_columns)], None

    with Timer(logger, "Median/mode fill"):
        exclude = list(config.imputation.exclude_columns)
        return [median_fill(cleaned, columns=analysis_columns(cleaned, exclude=exclude))], None


def run_workflow(
    config: Optional[WorkflowConfig] = None,
    logger: Optional[logging.Logger] = None,
    base_dir: Optional[str] = None,
    write: bool = True,
) -> WorkflowResult:
    """Run the survival workflow.

    1. Loads the dataset and applies the schema
    2. Recodes the outcome to a 0/1 event indicator
    3. Profiles missing data (tables, co-missingness clusters, decision tree)
    4. Applies the missing-data strategy (multiple imputation, complete
       cases or median fill)
    5. Fits one Cox model per dataset and pools them with Rubin's rules
    6. Checks proportional hazards and writes the report artifacts

    Args:
        config: Workflow configuration. Defaults to
            ``WorkflowConfig.for_run_type("sample")``
        logger: Logger for stage messages. Defaults to the
            ``prostate_survival.workflow`` logger
        base_dir: Output directory override (default data/outputs/<run_type>)
        write: Whether to write report artifacts

    Returns:
        WorkflowResult with every intermediate product

    Raises:
        WorkflowError: Subclasses for unavailable data, schema problems,
            unrecognized outcome values, impossible imputation models and
            non-converging fits
    """
    config = config or WorkflowConfig.for_run_type("sample")
    if logger is None:
        logger = logging.getLogger("prostate_survival.workflow")

    logger.info(
        f"Workflow starting: dataset={config.data.identifier}, strategy={config.strategy.value}, "
        f"run_type={config.run_type}"
    )

    with capture_warnings(logger) as warning_logger:
        with Timer(logger, "Data loading"):
            raw = load_data(config.data.identifier, data_dir=config.data.data_dir, run_type=config.run_type)

        with Timer(logger, "Outcome recoding"):
            cleaned = clean_status(raw, column=config.data.event_column)
            events = event_counts(cleaned, column=config.data.event_column)

        with Timer(logger, "Missing-data profiling"):
            columns = analysis_columns(cleaned, exclude=list(config.data.exclude_columns))
            summary = missing_summary(cleaned)
            per_record = missing_per_record(cleaned, columns=columns)
            clusters = cluster_missingness(cleaned, columns=columns, method=config.profiler.cluster_method)
            tree = missingness_tree(
                cleaned,
                target=config.profiler.tree_target,
                predictors=config.profiler.tree_predictors,
                exclude=[config.data.time_column, config.data.event_column, *config.data.exclude_columns],
                min_leaf=config.profiler.min_leaf,
                max_depth=config.profiler.max_depth,
            )
        n_incomplete = int(per_record[per_record.index > 0].sum())
        logger.info(
            f"{int(summary['n_missing'].sum())} missing cells; "
            f"{n_incomplete} of {len(cleaned)} records incomplete"
        )

        spec = CoxModelSpec.from_config(
            config.model, duration=config.data.time_column, event=config.data.event_column
        )
        formula = build_formula(spec, cleaned)
        logger.info(f"Model formula: {formula}")

        datasets, imputed = _datasets_for_strategy(cleaned, config, spec, logger)

        with Timer(logger, "Cox fits"):
            fits = fit_imputed(
                datasets,
                spec,
                formula=formula,
                n_jobs=config.execution.n_jobs,
                backend=config.execution.backend,
                verbose=config.execution.verbose,
            )

        with Timer(logger, "Pooling"):
            pooled = pool_fits(fits, alpha=config.model.alpha)
            ph_flags = pooled_ph_flags(fits)

    result = WorkflowResult(
        config=config,
        data=cleaned,
        events=events,
        missing_summary=summary,
        missing_per_record=per_record,
        clusters=clusters,
        tree=tree,
        imputed=imputed,
        fits=fits,
        pooled=pooled,
        ph_flags=ph_flags,
        warnings=warning_logger.summary(),
    )

    if write:
        with Timer(logger, "Report"):
            result.artifacts = write_report(result, base_dir=base_dir)
        logger.info(f"Report written to {result.artifacts['report.md']}")

    log_performance(
        logger,
        "Workflow complete",
        records=len(cleaned),
        events=int(events.get(1, 0)),
        censored=int(events.get(0, 0)),
        fits=len(fits),
    )
    return result
