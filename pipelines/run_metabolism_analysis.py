#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Population Metabolism Analysis Pipeline Orchestrator

This script provides a single entry point for running the complete
population metabolism analysis. It executes all stages in sequence, passing
each stage's result object to the next one.

Usage:
    # Run complete pipeline with the configured inputs
    python pipelines/run_metabolism_analysis.py

    # Explicit inputs and output directory
    python pipelines/run_metabolism_analysis.py --measurements data/respirometry.csv \\
        --climate data/population_climate.csv --output-dir results

    # Skip figures
    python pipelines/run_metabolism_analysis.py --skip-stages figures

    # Dry run (validate inputs without executing)
    python pipelines/run_metabolism_analysis.py --dry-run
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

# Add project root to path (pipelines/ is one level below root)
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import config
from metabolism.data_loader import MetabolismDataLoader
from metabolism.validator import MetabolismDataValidator
from metabolism.preprocessor import MetabolismPreprocessor, PreparedData
from metabolism.lme_analyzer import FittedModel, MetabolicRateLMEAnalyzer
from metabolism.marginal_means import MarginalMeans, MarginalMeansAnalyzer
from metabolism.pca_analyzer import ClimatePCAAnalyzer, PCAResult
from metabolism.regression_analyzer import CrossDomainRegressionAnalyzer, RegressionResults
from metabolism.__version__ import get_version_info
from metabolism.metadata import RunMetadata
from metabolism.reporter import MetabolismReporter

CRITICAL_STAGES = ['ingestion', 'reshaping', 'lme', 'marginal_means', 'pca', 'regression']
OPTIONAL_STAGES = ['figures', 'report']


@dataclass(frozen=True)
class PipelineResult:
    """Stage statuses and the value objects produced by one run."""

    statuses: Dict[str, str]
    prepared: Optional[PreparedData] = None
    fitted: Optional[FittedModel] = None
    marginal_means: Optional[MarginalMeans] = None
    pca: Optional[PCAResult] = None
    regression: Optional[RegressionResults] = None
    outputs: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        """True when no critical stage failed; optional stage failures are only logged."""
        return not any(self.statuses.get(stage) == 'failed' for stage in CRITICAL_STAGES)


class PipelineValidator:
    """Validates pipeline inputs."""

    def __init__(self, logger):
        """Initialize validator with logger."""
        self.logger = logger

    def validate_inputs(self, measurements_path: str, climate_path: str,
                        boundary_path: Optional[str] = None) -> Tuple[bool, str]:
        """
        Check that the input tables exist.

        Returns:
            Tuple of (is_valid, error_message)
        """
        missing = [p for p in (measurements_path, climate_path) if not Path(p).is_file()]
        if missing:
            return False, (
                "Input file(s) not found:\n" +
                "\n".join(f"  - {p}" for p in missing) +
                "\n\nPass the tables with --measurements and --climate."
            )
        if boundary_path and not Path(boundary_path).exists():
            self.logger.warning(f"Boundary file not found: {boundary_path}; map drawn without it")
        self.logger.debug("Input files validated")
        return True, ""


class MetabolismAnalysisPipeline:
    """
    Orchestrates the population metabolism analysis.

    Critical stages (ingestion through regression) stop the run when they
    fail. Figures and report are optional; their failure is logged and the
    run continues.

    Attributes:
        measurements_path: Respirometry table
        climate_path: Climate/geography table
        output_dir: Root of every output
        boundary_path: Optional quarantine boundary polygons for the map
        n_jobs: joblib workers for the regressions
        logger: Logger instance
        results: Dictionary tracking stage execution results

    Example:
        >>> pipeline = MetabolismAnalysisPipeline('data/respirometry.csv',
        ...                                       'data/population_climate.csv', 'results')
        >>> result = pipeline.run()
        >>> result.marginal_means.estimates.head()
    """

    def __init__(self, measurements_path: str = config.MEASUREMENTS_PATH,
                 climate_path: str = config.CLIMATE_PATH,
                 output_dir: str = config.RESULTS_DIR,
                 boundary_path: Optional[str] = None,
                 n_jobs: int = config.N_JOBS,
                 verbose: bool = False):
        self.measurements_path = measurements_path
        self.climate_path = climate_path
        self.output_dir = Path(output_dir)
        self.boundary_path = boundary_path
        self.n_jobs = n_jobs
        self.log_path = self.output_dir / 'pipeline_execution.log'
        self.logger = self._setup_logging(verbose)
        self.validator = PipelineValidator(self.logger)
        self.stages = self._define_stages()
        self.results: Dict[str, str] = {}
        self.artifacts: Dict[str, Any] = {}
        self.outputs: Dict[str, Any] = {}

    def _setup_logging(self, verbose=False) -> logging.Logger:
        """
        Set up logging for the pipeline and every analysis module.

        Handlers are attached to the 'metabolism' logger so messages of
        metabolism.* modules and of the pipeline share one log file.

        Returns:
            Configured pipeline logger
        """
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        level = logging.DEBUG if verbose else logging.INFO

        file_handler = logging.FileHandler(self.log_path, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(formatter)
        console_handler.setFormatter(formatter)

        package_logger = logging.getLogger('metabolism')
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()
        package_logger.setLevel(logging.DEBUG)
        package_logger.addHandler(file_handler)
        package_logger.addHandler(console_handler)

        return logging.getLogger('metabolism.pipeline')

    def _define_stages(self) -> List[Tuple[str, Callable[[], Any]]]:
        """
        Define pipeline stages in execution order.

        Returns:
            List of (stage_name, stage_function) tuples
        """
        return [
            ('ingestion', self._run_ingestion),
            ('reshaping', self._run_reshaping),
            ('lme', self._run_lme),
            ('marginal_means', self._run_marginal_means),
            ('pca', self._run_pca),
            ('regression', self._run_regression),
            ('figures', self._run_figures),
            ('report', self._run_report),
        ]

    def _stage_dir(self, stage: str) -> str:
        return config.get_results_dir(stage, root=str(self.output_dir))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run_ingestion(self):
        loader = MetabolismDataLoader(self.measurements_path, self.climate_path)
        measurements, climate = loader.load_data()

        validator = MetabolismDataValidator(measurements, climate)
        validation = validator.validate_all()
        validator.raise_for_errors()

        self.artifacts['measurements'] = measurements
        self.artifacts['climate'] = climate
        self.artifacts['validation'] = validation
        self.artifacts['n_excluded_climate_rows'] = len(loader.excluded_climate_rows)

    def _run_reshaping(self):
        preprocessor = MetabolismPreprocessor(self.artifacts['measurements'], self.artifacts['climate'])
        self.artifacts['prepared'] = preprocessor.preprocess_all()

    def _run_lme(self):
        prepared: PreparedData = self.artifacts['prepared']
        analyzer = MetabolicRateLMEAnalyzer(prepared.long)
        fitted = analyzer.fit()
        self.outputs['lme'] = analyzer.export_results(fitted, self._stage_dir('lme'))
        self.artifacts['fitted'] = fitted

    def _run_marginal_means(self):
        analyzer = MarginalMeansAnalyzer(self.artifacts['fitted'])
        marginal_means = analyzer.compute_all()
        self.outputs['marginal_means'] = analyzer.export_results(
            marginal_means, self._stage_dir('marginal_means')
        )
        self.artifacts['marginal_means'] = marginal_means

    def _run_pca(self):
        prepared: PreparedData = self.artifacts['prepared']
        analyzer = ClimatePCAAnalyzer(prepared.climate_wide)
        pca_result = analyzer.compute_all()
        self.outputs['pca'] = analyzer.export_results(pca_result, self._stage_dir('pca'))
        self.artifacts['pca'] = pca_result

    def _run_regression(self):
        marginal_means: MarginalMeans = self.artifacts['marginal_means']
        pca_result: PCAResult = self.artifacts['pca']
        analyzer = CrossDomainRegressionAnalyzer(
            marginal_means.estimates,
            pca_result.scores,
            components=pca_result.component_names(config.N_REGRESSION_COMPONENTS),
            n_jobs=self.n_jobs,
        )
        regression = analyzer.fit_all()
        self.outputs['regression'] = analyzer.export_results(regression, self._stage_dir('regression'))
        self.artifacts['regression'] = regression

    def _run_figures(self):
        # Plotting stack is only imported when figures are requested
        from metabolism.visualizer import generate_all_figures

        self.outputs['figures'] = generate_all_figures(
            self.artifacts['prepared'],
            self.artifacts['fitted'],
            self.artifacts['marginal_means'],
            self.artifacts['pca'],
            self.artifacts['regression'],
            self._stage_dir('figures'),
            boundary_path=self.boundary_path,
        )

    def _run_report(self):
        reporter = MetabolismReporter(
            self.artifacts['prepared'],
            self.artifacts['fitted'],
            self.artifacts['marginal_means'],
            self.artifacts['pca'],
            self.artifacts['regression'],
            validation_results=self.artifacts.get('validation'),
        )
        report_path = reporter.generate_report(str(self.output_dir / 'metabolism_report.md'))

        metadata_gen = RunMetadata(
            self.measurements_path,
            self.climate_path,
            boundary_path=self.boundary_path,
            n_excluded_climate_rows=self.artifacts.get('n_excluded_climate_rows', 0),
        )
        metadata = metadata_gen.generate_metadata(
            self.artifacts['prepared'],
            self.artifacts['fitted'],
            self.artifacts['marginal_means'],
            self.artifacts['pca'],
            self.artifacts['regression'],
        )
        metadata_path = metadata_gen.write(metadata, str(self.output_dir / 'run_metadata.json'))
        self.outputs['report'] = {'report': report_path, 'metadata': metadata_path}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, skip_stages: Optional[List[str]] = None, dry_run: bool = False) -> PipelineResult:
        """
        Execute pipeline stages.

        Args:
            skip_stages: Optional stages to skip ('figures', 'report')
            dry_run: Validate inputs without executing

        Returns:
            PipelineResult with stage statuses and stage outputs
        """
        skip_stages = skip_stages or []
        invalid = [s for s in skip_stages if s not in OPTIONAL_STAGES]
        if invalid:
            raise ValueError(f"Only optional stages can be skipped ({OPTIONAL_STAGES}), got {invalid}")

        self.logger.info("=" * 80)
        self.logger.info("POPULATION METABOLISM ANALYSIS PIPELINE")
        self.logger.info("=" * 80)
        self.logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self.logger.info(f"Measurements: {self.measurements_path}")
        self.logger.info(f"Climate: {self.climate_path}")
        self.logger.info(f"Output directory: {self.output_dir}")
        self.logger.info(f"Log file: {self.log_path}")
        if dry_run:
            self.logger.info("DRY RUN MODE - Validation only, no execution")
        self.logger.info("=" * 80)

        is_valid, error_msg = self.validator.validate_inputs(
            self.measurements_path, self.climate_path, self.boundary_path
        )

        for i, (stage_name, stage_func) in enumerate(self.stages, 1):
            if stage_name in skip_stages:
                self.results[stage_name] = 'skipped'
                continue

            self.logger.info(f"\nStage {i}/{len(self.stages)}: {stage_name.upper()}")
            self.logger.info("-" * 80)

            if not is_valid:
                self.logger.error(f"Validation failed for stage '{stage_name}':")
                self.logger.error(error_msg)
                self.results[stage_name] = 'failed'
                self.logger.error("Critical stage failed. Stopping pipeline.")
                break

            if dry_run:
                self.logger.info(f"✓ Validation passed for '{stage_name}'")
                self.results[stage_name] = 'validated'
                continue

            start_time = time.time()
            try:
                stage_func()
                elapsed = time.time() - start_time
                self.logger.info(f"✓ Stage '{stage_name}' completed ({elapsed:.1f}s)")
                self.results[stage_name] = 'success'
            except Exception as e:
                elapsed = time.time() - start_time
                self.logger.error(f"✗ Stage '{stage_name}' failed ({elapsed:.1f}s): {e}", exc_info=True)
                self.results[stage_name] = 'failed'

                if stage_name in CRITICAL_STAGES:
                    self.logger.error("Critical stage failed. Stopping pipeline.")
                    break
                self.logger.warning("Non-critical stage failed. Continuing...")

        for stage_name, _ in self.stages:
            self.results.setdefault(stage_name, 'skipped')

        self._print_summary()

        return PipelineResult(
            statuses=dict(self.results),
            prepared=self.artifacts.get('prepared'),
            fitted=self.artifacts.get('fitted'),
            marginal_means=self.artifacts.get('marginal_means'),
            pca=self.artifacts.get('pca'),
            regression=self.artifacts.get('regression'),
            outputs=dict(self.outputs),
        )

    def _print_summary(self):
        """Print pipeline execution summary."""
        self.logger.info("\n" + "=" * 80)
        self.logger.info("PIPELINE EXECUTION SUMMARY")
        self.logger.info("=" * 80)

        success_count = sum(1 for status in self.results.values() if status == 'success')
        failed_count = sum(1 for status in self.results.values() if status == 'failed')
        skipped_count = sum(1 for status in self.results.values() if status == 'skipped')

        self.logger.info(f"Total stages: {len(self.results)}")
        self.logger.info(f"  Successful: {success_count}")
        self.logger.info(f"  Failed: {failed_count}")
        self.logger.info(f"  Skipped: {skipped_count}")

        if self.results:
            self.logger.info("\nStage Results:")
            for stage_name, status in self.results.items():
                symbol = "✓" if status in ('success', 'validated') else "✗" if status == 'failed' else "⊘"
                self.logger.info(f"  {symbol} {stage_name}: {status}")

        self.logger.info("\n" + "=" * 80)
        self.logger.info(f"End time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self.logger.info(f"Log file: {self.log_path}")
        self.logger.info("=" * 80)


def build_parser() -> argparse.ArgumentParser:
    """Command-line interface of the pipeline."""
    parser = argparse.ArgumentParser(
        description='Run the population metabolism analysis pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run complete pipeline with the configured inputs
  python pipelines/run_metabolism_analysis.py

  # Explicit inputs, boundary map layer and output directory
  python pipelines/run_metabolism_analysis.py --measurements data/respirometry.csv \\
      --climate data/population_climate.csv --boundary data/quarantine/boundary.shp \\
      --output-dir results

  # Skip figure generation
  python pipelines/run_metabolism_analysis.py --skip-stages figures

  # Dry run (validate inputs without executing)
  python pipelines/run_metabolism_analysis.py --dry-run
        """
    )

    parser.add_argument(
        '--measurements',
        default=config.MEASUREMENTS_PATH,
        help='Respirometry table (default: %(default)s)'
    )

    parser.add_argument(
        '--climate',
        default=config.CLIMATE_PATH,
        help='Population climate/geography table (default: %(default)s)'
    )

    parser.add_argument(
        '--boundary',
        default=None,
        help='Quarantine boundary polygons for the population map (optional)'
    )

    parser.add_argument(
        '--output-dir',
        default=config.RESULTS_DIR,
        help='Output directory (default: %(default)s)'
    )

    parser.add_argument(
        '--skip-stages',
        nargs='+',
        choices=OPTIONAL_STAGES,
        help='Optional stages to skip'
    )

    parser.add_argument(
        '--n-jobs',
        type=int,
        default=config.N_JOBS,
        help='joblib workers for the regressions (default: %(default)s)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate inputs without executing'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=get_version_info()
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    args = build_parser().parse_args(argv)

    pipeline = MetabolismAnalysisPipeline(
        measurements_path=args.measurements,
        climate_path=args.climate,
        output_dir=args.output_dir,
        boundary_path=args.boundary,
        n_jobs=args.n_jobs,
        verbose=args.verbose,
    )

    try:
        result = pipeline.run(skip_stages=args.skip_stages, dry_run=args.dry_run)
        return 0 if result.succeeded else 1

    except KeyboardInterrupt:
        pipeline.logger.info("\n\nPipeline interrupted by user")
        return 1
    except Exception as e:
        pipeline.logger.error(f"\n\nUnexpected error: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
