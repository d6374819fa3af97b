"""Main entry point for the prostate survival workflow.

Loads the data, profiles missing values, applies the missing-data strategy,
fits and pools the Cox models and writes the report.
Supports both sample (development) and production runs.

Can be used as CLI or imported as a function.
"""
from prostate_survival.config import ExecutionConfig, Strategy, WorkflowConfig
from prostate_survival.data import RunType
from prostate_survival.errors import WorkflowError
from prostate_survival.logging_config import setup_logging
from prostate_survival.workflow import run_workflow
import logging
import argparse
from typing import Optional


def run_pipeline(
    input_file: Optional[str] = None,
    run_type: RunType = "sample",
    strategy: Optional[str] = None,
    n_imputations: Optional[int] = None,
    min_leaf: Optional[int] = None,
    n_jobs: Optional[int] = None,
    config_path: Optional[str] = None,
    log_level: str = "INFO",
    output_dir: Optional[str] = None,
) -> int:
    """Run the survival workflow.

    This function can be called directly from Python code or via CLI.
    Options left as None keep the value from the configuration file (or
    the run type defaults when no file is given).

    Args:
        input_file: Registered dataset name or path to a CSV/pickle file.
            Default: the configured dataset ("prostate")
        run_type: "sample" or "production". Default: "sample"
        strategy: "multiple_imputation", "complete_case" or "median"
        n_imputations: Number of imputations; 0 derives it from the share of
            incomplete records
        min_leaf: Minimum leaf size of the missingness decision tree
        n_jobs: Parallel jobs for the per-imputation Cox fits
        config_path: JSON configuration saved by ``WorkflowConfig.save``
        log_level: Console log level name
        output_dir: Output directory override (default data/outputs/<run_type>)

    Returns:
        Exit code (0 for success, 1 for failure)

    Example:
        >>> from main import run_pipeline
        >>> run_pipeline(input_file="prostate", run_type="sample", n_imputations=5)
        0

        >>> run_pipeline(input_file="data/inputs/prostate.csv", strategy="complete_case")
        0
    """
    if config_path:
        config = WorkflowConfig.load(config_path)
        config.run_type = run_type
    else:
        config = WorkflowConfig.for_run_type(run_type)

    if input_file is not None:
        config.data.identifier = input_file
    if strategy is not None:
        config.strategy = Strategy(strategy)
    if n_imputations is not None:
        config.imputation.n_imputations = n_imputations or None
    if min_leaf is not None:
        config.profiler.min_leaf = min_leaf
    if n_jobs is not None:
        config.execution = ExecutionConfig(
            n_jobs=n_jobs,
            verbose=config.execution.verbose,
            backend=config.execution.backend,
        )

    log_dir = f"{output_dir}/logs" if output_dir else None
    logger = setup_logging(
        run_type=run_type,
        log_level=getattr(logging, log_level.upper()),
        log_dir=log_dir,
    )

    logger.info("=" * 70)
    logger.info(f"PROSTATE SURVIVAL WORKFLOW - {run_type.upper()} RUN")
    logger.info("=" * 70)
    logger.info(f"Input:      {config.data.identifier}")
    logger.info(f"Strategy:   {config.strategy.value}")
    logger.info(f"Imputation: M={config.imputation.n_imputations or 'derived'}, n_iter={config.imputation.n_iter}")
    logger.info(f"Execution:  {config.execution}")

    try:
        result = run_workflow(config, logger=logger, base_dir=output_dir)
    except WorkflowError as e:
        logger.error(f"Workflow failed: {e}")
        return 1

    logger.info("=" * 70)
    logger.info(f"{run_type.upper()} RUN COMPLETED SUCCESSFULLY")
    logger.info(f"Report: {result.artifacts.get('report.md')}")
    logger.info("=" * 70)
    return 0


def main():
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Prostate survival workflow - missing-data profiling, multiple imputation and pooled Cox regression",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sample run on the registered prostate dataset
  python src/main.py --input prostate --run-type sample

  # Local CSV, 20 imputations
  python src/main.py --input data/inputs/prostate.csv --n-imputations 20

  # Complete-case analysis for comparison
  python src/main.py --input prostate --strategy complete_case

  # Reproduce a previous run
  python src/main.py --config data/outputs/sample/config.json --log-level DEBUG
        """
    )

    parser.add_argument(
        "--input",
        type=str,
        default=None,
        help="Registered dataset name or path to a CSV/pickle file. Default: prostate"
    )

    parser.add_argument(
        "--run-type",
        type=str,
        choices=["sample", "production"],
        default="sample",
        help="Run type: 'sample' for development, 'production' for the full run. Default: sample"
    )

    parser.add_argument(
        "--strategy",
        type=str,
        choices=["multiple_imputation", "complete_case", "median"],
        default=None,
        help="Missing-data strategy. Default: multiple_imputation"
    )

    parser.add_argument(
        "--n-imputations",
        type=int,
        default=None,
        help="Number of imputations. 0 derives it as max(5, 100 x fraction of incomplete records)"
    )

    parser.add_argument(
        "--min-leaf",
        type=int,
        default=None,
        help="Minimum leaf size of the missingness decision tree. Default: 15"
    )

    parser.add_argument(
        "--n-jobs",
        type=int,
        default=None,
        help="Parallel jobs for the Cox fits. -1 means use all cores"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON configuration file (as written to the output directory by a previous run)"
    )

    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Output directory. Default: data/outputs/<run-type>"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level. Default: INFO"
    )

    args = parser.parse_args()

    return run_pipeline(
        input_file=args.input,
        run_type=args.run_type,
        strategy=args.strategy,
        n_imputations=args.n_imputations,
        min_leaf=args.min_leaf,
        n_jobs=args.n_jobs,
        config_path=args.config,
        log_level=args.log_level,
        output_dir=args.output_dir,
    )


if __name__ == "__main__":
    exit(main())
