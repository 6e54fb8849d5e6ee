"""Main entry point for batch Cox screening.

Fits one proportional-hazards model per candidate variable (or one candidate
across subgroups) and writes the result and failure tables to CSV.
Accepts CSV or pickle input formats.

Can be used as CLI or imported as a function.
"""
from batchcox.batch import run_batch
from batchcox.config import BatchOptions, create_execution_config
from batchcox.data import declare_categorical, load_data
from batchcox.errors import AllSpecsFailedError, ConfigurationError
from batchcox.grouped import run_grouped
from batchcox.logging_config import setup_logging
from batchcox.results import filter_controls, save_results
from batchcox.utils import versioned_name
import os
import sys
import argparse
import logging
from typing import Dict, List, Optional


def parse_levels(specs: Optional[List[str]]) -> Dict[str, List[str]]:
    """Parse ``col=a,b,c`` declarations into a column -> levels mapping.

    Raises:
        ConfigurationError: If a declaration is malformed

    Example:
        >>> parse_levels(["stage=I,II,III", "sex=F,M"])
        {'stage': ['I', 'II', 'III'], 'sex': ['F', 'M']}
    """
    levels = {}
    for spec in specs or []:
        col, sep, values = spec.partition("=")
        if not sep or not col or not values:
            raise ConfigurationError(f"Categorical declaration must be col=level1,level2,..., got {spec!r}")
        levels[col.strip()] = [v.strip() for v in values.split(",") if v.strip()]
    return levels


def run_screen(
    input_file: str,
    covariates: List[str],
    controls: Optional[List[str]] = None,
    time: str = "time",
    status: str = "status",
    categorical: Optional[Dict[str, List[str]]] = None,
    options: Optional[BatchOptions] = None,
    group_var: Optional[str] = None,
    output_dir: str = "outputs",
    drop_controls: bool = False,
) -> int:
    """Run a batch (or grouped) screen and write its tables.

    This function can be called directly from Python code or via CLI.

    Args:
        input_file: Path to input file (CSV or pickle)
        covariates: Candidate variables (exactly one when group_var is given)
        controls: Adjustment variables
        time: Survival time column
        status: Event status column
        categorical: Columns to declare categorical with their level order
        options: Batch options
        group_var: Re-fit the candidate within each value of this column
        output_dir: Directory for result CSVs and logs
        drop_controls: Leave control-variable rows out of the written results

    Returns:
        Exit code (0 success, 1 missing input or every model failed, 2 configuration error)

    Example:
        >>> from main import run_screen
        >>> run_screen("data/tcga_brca.csv", ["TP53", "KRAS"], ["age"],
        ...            time="OS.time", status="OS", output_dir="outputs/brca")
        0
    """
    logger = setup_logging(output_dir=output_dir)

    if not os.path.exists(input_file):
        logger.error(f"Input file not found: {input_file}")
        return 1

    options = options or BatchOptions()

    print("\n" + "=" * 70)
    print("BATCH COX SCREEN")
    print("=" * 70)
    print(f"Input file: {input_file}")
    print(f"Candidates: {len(covariates)}")
    print(f"Controls:   {controls or []}")
    print(f"Grouping:   {group_var or '-'}")
    print(f"Execution:  {options.execution}")
    print("=" * 70 + "\n")

    try:
        df = load_data(input_file)
        if categorical:
            df = declare_categorical(df, categorical)

        if group_var is not None:
            if len(covariates) != 1:
                raise ConfigurationError(
                    f"--group-var takes exactly one covariate, got {len(covariates)}"
                )
            grouped = run_grouped(df, group_var, covariates[0], controls, time, status, options)
            results, failures = grouped.results, grouped.failures
            if not grouped.succeeded:
                logger.error(f"No group could be fitted for '{covariates[0]}'")
                save_results(failures, output_dir, versioned_name("cox_failures"))
                return 1
        else:
            result = run_batch(df, covariates, controls, time, status, options)
            results, failures = result.results, result.failures
            if result.models is not None and result.models.on_disk:
                logger.info(f"Models persisted to {result.models.run_dir}")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except AllSpecsFailedError as e:
        logger.error(str(e))
        save_results(e.failures, output_dir, versioned_name("cox_failures"))
        return 1

    if drop_controls:
        results = filter_controls(results)

    results_path = save_results(results, output_dir, versioned_name("cox_results"))
    logger.info(f"Results: {len(results)} rows -> {results_path}")
    if len(failures):
        failures_path = save_results(failures, output_dir, versioned_name("cox_failures"))
        logger.warning(f"{len(failures)} failures -> {failures_path}")

    print("\n" + "=" * 70)
    print("SCREEN COMPLETED")
    print("=" * 70 + "\n")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Batch Cox screening - one proportional-hazards model per candidate variable",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Screen two genes adjusting for age and sex
  python src/main.py --input data.csv --covariates TP53 KRAS --controls age sex \\
      --time OS.time --status OS

  # Declare a categorical candidate (first level is the reference)
  python src/main.py --input data.csv --covariates stage --categorical stage=I,II,III,IV

  # 20,000 genes in parallel batches of 500, models kept on disk
  python src/main.py --input expr.pkl --covariates $(cat genes.txt) --execution parallel \\
      --batch-size 500 --keep-models --model-dir models

  # One gene across cancer types
  python src/main.py --input pancan.pkl --covariates TP53 --group-var cancer_type
        """
    )

    parser.add_argument("--input", type=str, required=True,
                        help="Path to input file (CSV or pickle)")
    parser.add_argument("--covariates", nargs="+", required=True,
                        help="Candidate variables, one model each")
    parser.add_argument("--controls", nargs="*", default=[],
                        help="Adjustment variables shared by every model")
    parser.add_argument("--time", type=str, default="time",
                        help="Survival time column. Default: time")
    parser.add_argument("--status", type=str, default="status",
                        help="Event status column (1 = event). Default: status")
    parser.add_argument("--categorical", action="append", metavar="COL=L1,L2,...",
                        help="Declare a categorical column and its level order (repeatable)")
    parser.add_argument(
        "--execution",
        type=str,
        choices=["sequential", "parallel", "auto"],
        default="auto",
        help="Execution mode. Default: auto (parallel only when there is more than one batch)"
    )
    parser.add_argument("--batch-size", type=int, default=100,
                        help="Candidates per parallel work unit. Default: 100")
    parser.add_argument("--n-jobs", type=int, default=-1,
                        help="Number of parallel jobs. -1 means use all cores. Default: -1")
    parser.add_argument("--keep-models", action="store_true",
                        help="Persist fitted models to disk")
    parser.add_argument("--model-dir", type=str, default=None,
                        help="Root directory for persisted models. Default: system temp dir")
    parser.add_argument("--min-complete-rows", type=int, default=10,
                        help="Minimum complete rows per model. Default: 10")
    parser.add_argument("--group-var", type=str, default=None,
                        help="Re-fit the single covariate within each value of this column")
    parser.add_argument("--output-dir", type=str, default="outputs",
                        help="Directory for result CSVs and logs. Default: outputs")
    parser.add_argument("--drop-controls", action="store_true",
                        help="Write only the candidates' own coefficient rows")
    parser.add_argument("--track", action="store_true",
                        help="Log run parameters and counts to MLflow")

    args = parser.parse_args(argv)

    try:
        execution = create_execution_config(
            mode=args.execution,
            n_specs=len(args.covariates),
            n_jobs=args.n_jobs,
            batch_size=args.batch_size,
        )
        options = BatchOptions(
            keep_models=args.keep_models,
            model_dir=args.model_dir,
            execution=execution,
            min_complete_rows=args.min_complete_rows,
            track=args.track,
        )
        categorical = parse_levels(args.categorical)
    except ConfigurationError as e:
        logging.getLogger("batchcox").error(f"Configuration error: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    return run_screen(
        input_file=args.input,
        covariates=args.covariates,
        controls=args.controls,
        time=args.time,
        status=args.status,
        categorical=categorical,
        options=options,
        group_var=args.group_var,
        output_dir=args.output_dir,
        drop_controls=args.drop_controls,
    )


if __name__ == "__main__":
    sys.exit(main())
