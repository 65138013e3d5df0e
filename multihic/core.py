"""
Core multihic analysis orchestrator
"""

import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import Config, SampleConfig, load_config, validate_config
from .data.models import ComparisonResult, InteractionTable, SampleSet
from .differential import DifferentialAnalyzer
from .exceptions import ConfigurationError, MultiHiCError
from .normalization import cyclic_loess, fastlo
from .utils import (get_logger, load_hic_table, save_table, setup_logging,
                    validate_environment)

logger = get_logger(__name__)

PIPELINE_STEPS = ("load", "normalization", "differential")


class MultiHiCAnalysis:
    """
    Orchestrates loading, joint normalization and differential testing of a
    multi-sample Hi-C experiment
    """

    def __init__(
        self,
        config: Union[str, Path, Config, Dict[str, Any]],
        log_level: str = "INFO",
        log_file: Optional[Union[str, Path]] = None,
        configure_logging: bool = True,
    ):
        """
        Initialize a multihic analysis

        Args:
            config: Configuration file path, Config object, or config dict
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
            configure_logging: Set up package logging handlers
        """
        if configure_logging:
            setup_logging(level=log_level, log_file=log_file)
        logger.info("Initializing multihic analysis")

        if isinstance(config, (str, Path)):
            self.config = load_config(config)
        elif isinstance(config, dict):
            self.config = Config(**config)
        elif isinstance(config, Config):
            self.config = config
        else:
            raise ConfigurationError(
                "Invalid config type. Expected str, Path, dict, or Config object"
            )

        self._validate_environment()

        self.samples: SampleSet = SampleConfig.from_dict(self.config.samples).to_sample_set()
        self.differential_analyzer = DifferentialAnalyzer(self.config)

        self.table: Optional[InteractionTable] = None
        self.normalized: Optional[InteractionTable] = None
        self.comparison: Optional[ComparisonResult] = None
        self.results: Dict[str, Any] = {}
        self.execution_times: Dict[str, float] = {}

    def _validate_environment(self) -> None:
        """Validate configuration and environment"""
        issues = validate_config(self.config)
        if issues:
            for issue in issues:
                logger.error(f"  - {issue}")
            raise ConfigurationError("Invalid configuration: " + "; ".join(issues))

        env_issues = validate_environment()
        for issue in env_issues:
            logger.warning(f"  - {issue}")

        if self.config.output_dir:
            Path(self.config.output_dir).mkdir(parents=True, exist_ok=True)

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output_dir or ".")

    def load_data(
        self, file_path: Optional[Union[str, Path]] = None, normalized: bool = False
    ) -> InteractionTable:
        """
        Load the interaction table named in the configuration

        Args:
            file_path: Table to load instead of the configured input_file
            normalized: Mark the loaded frequencies as already normalized
        """
        file_path = file_path or self.config.input_file
        if file_path is None:
            raise ConfigurationError("No input_file configured")

        self.table = load_hic_table(
            file_path, samples=self.samples.names, resolution=self.config.resolution,
            normalized=normalized,
        )
        return self.table

    def normalize(self, table: Optional[InteractionTable] = None) -> InteractionTable:
        """Jointly normalize the samples with the configured method"""
        table = table if table is not None else self.table
        if table is None:
            table = self.load_data()

        params = self.config.normalization
        method = params.get("method", "cyclic_loess")
        common = {
            "iterations": params.get("iterations", 3),
            "parallel": self.config.parallel,
            "n_jobs": self.config.n_threads,
            "tolerance": params.get("tolerance"),
            "verbose": params.get("verbose", False),
        }

        if method == "cyclic_loess":
            normalized = cyclic_loess(table, span=params.get("span", "auto"), **common)
        elif method == "fastlo":
            normalized = fastlo(
                table,
                span=params.get("span", 0.7),
                max_pool=params.get("max_pool", 0.7),
                **common,
            )
        elif method == "none":
            logger.info("Normalization disabled; testing raw interaction frequencies")
            normalized = table
        else:
            raise ConfigurationError(f"Unknown normalization method {method!r}")

        self.normalized = normalized
        return normalized

    def compare(self, table: Optional[InteractionTable] = None) -> ComparisonResult:
        """Run the configured differential test"""
        if table is None:
            table = self.normalized if self.normalized is not None else self.table
        if table is None:
            table = self.normalize()
        self.comparison = self.differential_analyzer.run(table, self.samples)
        return self.comparison

    def run_full_pipeline(self, steps: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Run the analysis pipeline

        Args:
            steps: Pipeline steps to run, in order (defaults to all)

        Returns:
            Dictionary of per-step results
        """
        steps = list(steps or PIPELINE_STEPS)
        unknown = [step for step in steps if step not in PIPELINE_STEPS]
        if unknown:
            raise ConfigurationError(f"Unknown pipeline steps: {unknown}")

        logger.info("=" * 60)
        logger.info("Starting multihic analysis pipeline")
        logger.info("=" * 60)

        start_time = time.time()
        try:
            for step in steps:
                step_start = time.time()
                logger.info(f"{'=' * 20} STEP: {step.upper()} {'=' * 20}")
                try:
                    self.results[step] = self._run_step(step)
                except (MultiHiCError, ValueError, OSError) as e:
                    logger.error(f"Step {step} failed: {e}")
                    self.results[step] = {"success": False, "error": str(e)}
                    raise
                finally:
                    self.execution_times[step] = time.time() - step_start
                logger.info(
                    f"Step {step} completed in {self.execution_times[step]:.2f} seconds"
                )
        finally:
            self.execution_times["total"] = time.time() - start_time
            self._create_pipeline_summary()

        return self.results

    def _run_step(self, step: str) -> Dict[str, Any]:
        if step == "load":
            table = self.load_data()
            return {
                "success": True,
                "n_records": len(table),
                "chromosomes": table.chromosomes,
            }

        if step == "normalization":
            normalized = self.normalize()
            output_file = self.output_dir / "normalized_table.txt"
            save_table(normalized.frame, output_file)
            return {
                "success": True,
                "output_file": str(output_file),
                "failed_units": [str(failure) for failure in normalized.failures],
            }

        comparison = self.compare()
        output_file = self.output_dir / "comparison.txt"
        save_table(comparison.table, output_file)
        params = self.config.differential
        return {
            "success": True,
            "output_file": str(output_file),
            "summary": comparison.summary(
                params.get("fdr_threshold", 0.05), params.get("logfc_threshold", 0.0)
            ),
            "failed_units": [str(failure) for failure in comparison.failures],
        }

    def get_execution_times(self) -> Dict[str, float]:
        return dict(self.execution_times)

    def _create_pipeline_summary(self) -> None:
        """Log and write a summary of the pipeline run"""
        logger.info("EXECUTION TIMES:")
        for step, exec_time in self.execution_times.items():
            if step != "total":
                logger.info(f"  {step}: {exec_time:.2f} seconds")
        logger.info(f"  TOTAL: {self.execution_times.get('total', 0):.2f} seconds")

        summary_file = self.output_dir / "pipeline_summary.txt"
        summary_file.parent.mkdir(parents=True, exist_ok=True)
        with open(summary_file, "w") as f:
            f.write("multihic Pipeline Summary\n")
            f.write("=" * 30 + "\n\n")

            f.write("Configuration:\n")
            f.write(f"  Project: {self.config.project_name}\n")
            f.write(f"  Samples: {', '.join(self.samples.names)}\n")
            f.write(f"  Normalization: {self.config.normalization.get('method')}\n")
            f.write(f"  Test: {self.config.differential.get('test')}\n")
            f.write(f"  Output directory: {self.output_dir}\n\n")

            f.write("Execution Times:\n")
            for step, exec_time in self.execution_times.items():
                f.write(f"  {step}: {exec_time:.2f} seconds\n")

            f.write("\nResults:\n")
            for step, result in self.results.items():
                status = "SUCCESS" if result.get("success") else "FAILED"
                f.write(f"  {step}: {status}\n")
                if "summary" in result:
                    for key, value in result["summary"].items():
                        f.write(f"    {key}: {value}\n")
                for failure in result.get("failed_units", []):
                    f.write(f"    failed unit {failure}\n")
                if "error" in result:
                    f.write(f"    error: {result['error']}\n")

        logger.info(f"Pipeline summary written to {summary_file}")
