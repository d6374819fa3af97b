"""Report artifacts: CSV tables, PNG plots, the pooled model and a Markdown narrative.

Layout under ``data/outputs/<run_type>/``::

    report.md
    config.json
    tables/   missing_summary.csv, missing_per_record.csv, imputation_chains.csv,
              per_imputation.csv, pooled_summary.csv, ph_flags.csv,
              missingness_tree.txt
    figures/  missingness_dendrogram.png, missingness_tree.png
    models/   <run_type>_pooled_cox_<timestamp>.joblib
"""
from __future__ import annotations
from typing import TYPE_CHECKING, Dict, Optional
import logging
import os

import joblib
import pandas as pd

from prostate_survival.profiling import plot_dendrogram, plot_tree
from prostate_survival.utils import get_output_paths, versioned_name

if TYPE_CHECKING:
    from prostate_survival.workflow import WorkflowResult

logger = logging.getLogger("prostate_survival.report")


def write_tables(result: "WorkflowResult", tables_dir: str) -> Dict[str, str]:
    """Write the CSV tables and the tree rules; return their paths by name."""
    written = {}

    def _save(name: str, frame, **kwargs):
        path = os.path.join(tables_dir, name)
        frame.to_csv(path, **kwargs)
        written[name] = path

    _save("missing_summary.csv", result.missing_summary)
    _save("missing_per_record.csv", result.missing_per_record)
    _save("per_imputation.csv", result.pooled.diagnostics, index=False)
    _save("pooled_summary.csv", result.pooled.summary())
    _save("ph_flags.csv", result.ph_flags)
    if result.imputed is not None:
        _save("imputation_chains.csv", result.imputed.chains, index=False)

    if result.tree is not None:
        path = os.path.join(tables_dir, "missingness_tree.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write(result.tree.rules)
        written["missingness_tree.txt"] = path
    return written


def write_figures(result: "WorkflowResult", figures_dir: str) -> Dict[str, str]:
    """Save the dendrogram and decision tree plots; return their paths by name."""
    written = {}
    if result.clusters is not None:
        written["missingness_dendrogram.png"] = plot_dendrogram(
            result.clusters, os.path.join(figures_dir, "missingness_dendrogram.png")
        )
    if result.tree is not None:
        written["missingness_tree.png"] = plot_tree(
            result.tree, os.path.join(figures_dir, "missingness_tree.png")
        )
    return written


def render_markdown(result: "WorkflowResult", artifacts: Optional[Dict[str, str]] = None) -> str:
    """Narrative report of one run."""
    artifacts = artifacts or {}
    config = result.config
    pooled = result.pooled
    n_records = len(result.data)
    events = int(result.events.get(1, 0))
    censored = int(result.events.get(0, 0))

    lines = [
        f"# Survival analysis report ({config.run_type})",
        "",
        f"Dataset `{config.data.identifier}`: {n_records} records, {len(result.data.columns)} columns.",
        f"Outcome `{config.data.event_column}`: {events} deaths, {censored} censored.",
    ]
    if config.description:
        lines += ["", config.description]

    lines += [
        "",
        "## Missing data",
        "",
        result.missing_summary[result.missing_summary["n_missing"] > 0].to_markdown(floatfmt=".3f"),
        "",
        "Records by number of missing values:",
        "",
        result.missing_per_record.to_frame().to_markdown(),
    ]
    if "missingness_dendrogram.png" in artifacts:
        report_dir = os.path.dirname(artifacts.get("report.md", "")) or "."
        rel = os.path.relpath(artifacts["missingness_dendrogram.png"], report_dir)
        lines += ["", f"![Co-missingness dendrogram]({rel})"]
    if result.tree is not None:
        lines += [
            "",
            f"### What predicts missing `{result.tree.target}`",
            "",
            f"{result.tree.n_missing} records missing; minimum leaf size {result.tree.min_leaf}.",
            "",
            "```",
            result.tree.rules.rstrip(),
            "```",
        ]

    lines += ["", "## Strategy", "", f"Missing-data strategy: `{config.strategy.value}`."]
    if result.imputed is not None:
        imputed = result.imputed
        lines += [
            "",
            f"{imputed.n_imputations} imputations, {config.imputation.n_iter} cycles each, "
            f"seeds {imputed.seeds[0]} to {imputed.seeds[-1]}.",
        ]
        if imputed.methods:
            methods = pd.DataFrame({
                "method": pd.Series(imputed.methods),
                "predictors": pd.Series({k: ", ".join(v) for k, v in imputed.predictors.items()}),
            })
            methods.index.name = "variable"
            lines += ["", methods.to_markdown()]

    lines += [
        "",
        "## Pooled Cox model",
        "",
        f"`{pooled.formula}`",
        "",
        f"Pooled over {pooled.n_imputations} fit(s); ties handled with {config.model.ties}.",
        "",
        pooled.summary()[["hr", "hr_lower", "hr_upper", "p", "fmi"]].to_markdown(floatfmt=".3f"),
        "",
        "### Per-imputation fits",
        "",
        pooled.diagnostics.to_markdown(index=False, floatfmt=".3f"),
        "",
        "### Proportional hazards check",
        "",
        result.ph_flags.to_markdown(floatfmt=".3f"),
        "",
    ]
    return "\n".join(lines)


def write_report(result: "WorkflowResult", base_dir: Optional[str] = None) -> Dict[str, str]:
    """Write every artifact of a run.

    Args:
        result: Completed workflow result
        base_dir: Output directory. Defaults to data/outputs/<run_type>

    Returns:
        Mapping of artifact name to path
    """
    paths = get_output_paths(result.config.run_type, base_dir=base_dir)

    artifacts = {}
    artifacts.update(write_tables(result, paths["tables"]))
    artifacts.update(write_figures(result, paths["figures"]))

    model_path = os.path.join(
        paths["models"], versioned_name("pooled_cox", run_type=result.config.run_type) + ".joblib"
    )
    joblib.dump(result.pooled, model_path)
    artifacts["pooled_model"] = model_path

    config_path = os.path.join(paths["base_dir"], "config.json")
    result.config.save(config_path)
    artifacts["config.json"] = config_path

    report_path = os.path.join(paths["base_dir"], "report.md")
    artifacts["report.md"] = report_path
    with open(report_path, "w", encoding="utf-8") as f:
        f.write(render_markdown(result, artifacts))

    logger.info(f"Wrote {len(artifacts)} artifacts to {paths['base_dir']}")
    return artifacts
