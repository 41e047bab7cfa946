"""
rpdmeta CLI entry point.

Usage:
    # Full analysis with the published defaults:
    rpdmeta --data base.xlsx

    # One category, selected analyses, with an HTML report:
    rpdmeta --data base.xlsx --category cjd --analysis forest --analysis publication_bias --report

    # Settings from a file:
    rpdmeta --config config.yaml --output-dir ./results/run1
"""

import argparse
import sys
from pathlib import Path

from .config import Settings, ANALYSES, configure
from .core import ProportionDataset, DatasetValidationError
from .analysis.transforms import SUMMARY_MEASURES
from .analysis.proportions import TAU_METHODS, POOLING_METHODS, resolve_methods
from .pipelines import run_all, generate_report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpdmeta",
        description="Meta-analysis of the etiology of rapidly progressive dementia",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rpdmeta --data base.xlsx
  rpdmeta --data base.xlsx --category nd --analysis gosh
  rpdmeta --config config.yaml --method Inverse --method-tau DL --hakn --report

Available analyses: %(analyses)s
        """ % {"analyses": ", ".join(ANALYSES)},
    )

    parser.add_argument(
        "--data", type=str, default=None,
        help="Study spreadsheet (.xlsx or .csv); overrides the config",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Settings file (JSON or YAML)",
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory for figures, tables and the report",
    )
    parser.add_argument(
        "--category", action="append", default=None,
        help="Etiology category to analyse (repeatable; default: all)",
    )
    parser.add_argument(
        "--analysis", action="append", default=None, choices=list(ANALYSES),
        help="Analysis to run (repeatable; default: the category's analyses)",
    )
    parser.add_argument(
        "--sm", type=str.upper, default=None, choices=list(SUMMARY_MEASURES),
        help="Summary measure (default: PLOGIT)",
    )
    parser.add_argument(
        "--method", default=None, choices=list(POOLING_METHODS),
        help="Pooling method (default: GLMM for PLOGIT, otherwise Inverse)",
    )
    parser.add_argument(
        "--method-tau", type=str.upper, default=None, choices=list(TAU_METHODS),
        help="Between-study variance estimator (default: ML)",
    )
    parser.add_argument(
        "--hakn", action="store_true",
        help="Use the Hartung-Knapp adjustment",
    )
    parser.add_argument(
        "--show", action="store_true",
        help="Display figures interactively",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress verbose output",
    )
    parser.add_argument(
        "--report", action="store_true",
        help="Write an HTML report to the output directory",
    )
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config:
        settings = Settings.from_file(args.config)
    else:
        settings = Settings.from_env()
    if args.data:
        settings.data.path = args.data
    if args.sm:
        settings.analysis.sm = args.sm
    if args.method_tau:
        settings.analysis.method_tau = args.method_tau
    if args.method:
        settings.analysis.method = args.method
    elif args.sm or args.method_tau:
        settings.analysis.method = None
    if args.hakn:
        settings.analysis.hakn = True
    a = settings.analysis
    try:
        resolve_methods(a.sm, a.method, a.method_tau)
    except ValueError as e:
        parser.error(str(e))
    configure(settings)

    categories = args.category or list(settings.categories)
    for key in categories:
        try:
            settings.category(key)
        except ValueError as e:
            parser.error(str(e))

    try:
        dataset = ProportionDataset.from_file(settings.data.path, settings)
    except (DatasetValidationError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Error reading {settings.data.path}: {e}", file=sys.stderr)
        return 2

    verbose = not args.quiet
    if verbose:
        print(dataset.summary())
        print()

    output_dir = Path(args.output_dir or settings.paths.results_dir)
    outputs = run_all(
        settings,
        dataset=dataset,
        categories=categories,
        analyses=args.analysis,
        output_dir=str(output_dir),
        show=args.show,
        verbose=verbose,
    )

    if args.report:
        generate_report(
            {key: out.to_report_entry() for key, out in outputs.items()},
            output_path=output_dir / "report.html",
        )

    if verbose:
        print("\nDone:")
        for out in outputs.values():
            print(out.summary())
            print()

    return 0


if __name__ == "__main__":
    sys.exit(main())
