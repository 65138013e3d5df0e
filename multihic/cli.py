"""
Command-line interface for multihic
"""

import sys
from pathlib import Path
from typing import List, Optional

import click

from . import __version__, check_dependencies, get_info
from .config import Config, get_default_config, load_config, save_config
from .core import MultiHiCAnalysis
from .differential import hic_exact_test, hic_glm
from .differential.models import TEST_METHODS
from .differential.results import P_ADJUST_METHODS
from .exceptions import MultiHiCError
from .normalization import cyclic_loess, fastlo
from .utils import load_hic_table, load_sample_sheet, save_table, setup_logging

CLI_ERRORS = (MultiHiCError, OSError, ValueError)


# Global context for CLI
class CLIContext:
    def __init__(self):
        self.config_file: Optional[Path] = None
        self.config: Optional[Config] = None
        self.verbose: bool = False
        self.quiet: bool = False

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else "WARNING" if self.quiet else "INFO"


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [name.strip() for name in value.split(",") if name.strip()]


def _fail(message: str, verbose: bool = False) -> None:
    click.echo(message, err=True)
    if verbose:
        import traceback

        traceback.print_exc()
    sys.exit(1)


@click.group()
@click.version_option(__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Configuration file path"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Enable quiet mode (minimal output)")
@click.pass_context
def main(ctx, config, verbose, quiet):
    """
    multihic: joint normalization and differential analysis of Hi-C samples

    Normalizes interaction frequencies across any number of Hi-C samples with
    cyclic loess or fast loess, then tests for differential chromatin
    interactions with negative-binomial exact tests or GLMs.
    """
    cli_ctx = CLIContext()
    cli_ctx.verbose = verbose
    cli_ctx.quiet = quiet

    setup_logging(level=cli_ctx.log_level)

    if config:
        cli_ctx.config_file = Path(config)
        try:
            cli_ctx.config = load_config(cli_ctx.config_file)
        except CLI_ERRORS as e:
            _fail(f"Could not load configuration: {e}")

    ctx.obj = cli_ctx


@main.command()
def info():
    """Show multihic package information"""

    info_data = get_info()

    click.echo("=" * 50)
    click.echo(f"multihic v{info_data['version']}")
    click.echo("=" * 50)
    click.echo(f"Description: {info_data['description']}")
    click.echo(f"Python version: {info_data['python_version']}")
    click.echo()

    click.echo("Available modules:")
    for module in info_data["modules"]:
        click.echo(f"  - {module}")
    click.echo()

    deps = check_dependencies()
    click.echo("Dependency status:")
    for dep, available in deps.items():
        status = "✓" if available else "✗"
        click.echo(f"  {status} {dep}")


@main.command()
@click.argument("output_file", type=click.Path())
@click.option(
    "--format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format for configuration file",
)
def init_config(output_file, format):
    """Initialize a new multihic configuration file"""

    output_path = Path(output_file)
    if format == "json" and output_path.suffix.lower() != ".json":
        output_path = output_path.with_suffix(".json")

    if output_path.exists():
        if not click.confirm(f"File {output_path} already exists. Overwrite?"):
            click.echo("Configuration initialization cancelled.")
            return

    config = get_default_config()
    try:
        save_config(config, output_path)
    except OSError as e:
        _fail(f"Failed to create configuration file: {e}")

    click.echo(f"Configuration file created: {output_path}")
    click.echo("Add your samples and input_file before running the pipeline.")


@main.command()
@click.argument("config_file", type=click.Path(exists=True))
def validate_config(config_file):
    """Validate a multihic configuration file"""

    from .config import validate_config as validate_config_func

    try:
        config = load_config(config_file)
    except CLI_ERRORS as e:
        _fail(f"Configuration validation failed: {e}")

    click.echo(f"Configuration loaded successfully: {config_file}")

    issues = validate_config_func(config)
    if not issues:
        click.echo("✓ Configuration is valid")
    else:
        click.echo("Configuration issues found:")
        for issue in issues:
            click.echo(f"  ✗ {issue}")
        sys.exit(1)


@main.command()
def check_env():
    """Check multihic dependencies"""

    click.echo("Checking multihic environment...")
    click.echo()

    deps = check_dependencies()
    click.echo("Python dependencies:")
    all_good = True
    for dep, available in deps.items():
        status = "✓" if available else "✗"
        click.echo(f"  {status} {dep}")
        if not available:
            all_good = False

    click.echo()
    if all_good:
        click.echo("✓ Environment check passed!")
    else:
        click.echo("✗ Environment check failed. Please install missing dependencies.")
        click.echo("  pip install multihic")
        sys.exit(1)


@main.command()
@click.option(
    "--steps",
    default="load,normalization,differential",
    show_default=True,
    help="Comma-separated pipeline steps to run",
)
@click.pass_context
def run(ctx, steps):
    """Run the complete multihic analysis pipeline"""

    cli_ctx = ctx.obj

    if cli_ctx.config is None:
        _fail(
            "Error: No configuration file provided. Use --config option or 'multihic init-config'"
        )

    try:
        analysis = MultiHiCAnalysis(
            config=cli_ctx.config,
            log_level=cli_ctx.log_level,
            configure_logging=False,
        )

        click.echo("Starting multihic analysis pipeline...")
        results = analysis.run_full_pipeline(_split_list(steps))
    except CLI_ERRORS as e:
        _fail(f"Pipeline execution failed: {e}", cli_ctx.verbose)

    execution_times = analysis.get_execution_times()
    click.echo(f"Total execution time: {execution_times.get('total', 0):.2f} seconds")

    for step, result in results.items():
        status = "✓" if result.get("success", False) else "✗"
        click.echo(f"  {status} {step}")
        if "output_file" in result:
            click.echo(f"      -> {result['output_file']}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("output_file", type=click.Path())
@click.option("--samples", help="Comma-separated sample columns (default: all)")
@click.option(
    "--method",
    type=click.Choice(["cyclic_loess", "fastlo"]),
    default="cyclic_loess",
    show_default=True,
    help="Normalization method",
)
@click.option("--iterations", type=int, default=3, show_default=True)
@click.option(
    "--span", default=None, help="Loess span or 'auto' (default: auto for cyclic loess, 0.7 for fastlo)"
)
@click.option("--max-pool", type=float, default=0.7, show_default=True)
@click.option("--tolerance", type=float, default=None, help="Early stop tolerance")
@click.option("--parallel", is_flag=True, help="Process units in parallel")
@click.option("--n-jobs", type=int, default=None, help="Number of parallel workers")
@click.pass_context
def normalize(
    ctx,
    input_file,
    output_file,
    samples,
    method,
    iterations,
    span,
    max_pool,
    tolerance,
    parallel,
    n_jobs,
):
    """Jointly normalize the samples in INPUT_FILE"""

    verbose = ctx.obj.verbose if ctx.obj else False
    try:
        table = load_hic_table(input_file, samples=_split_list(samples))
        if method == "cyclic_loess":
            normalized = cyclic_loess(
                table,
                iterations=iterations,
                span=span or "auto",
                parallel=parallel,
                n_jobs=n_jobs,
                tolerance=tolerance,
                verbose=verbose,
            )
        else:
            normalized = fastlo(
                table,
                iterations=iterations,
                span=span or 0.7,
                max_pool=max_pool,
                parallel=parallel,
                n_jobs=n_jobs,
                tolerance=tolerance,
                verbose=verbose,
            )
        save_table(normalized.frame, output_file)
    except CLI_ERRORS as e:
        _fail(f"Normalization failed: {e}", verbose)

    click.echo(f"Normalized {len(normalized)} records -> {output_file}")
    for failure in normalized.failures:
        click.echo(f"  ✗ {failure}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("output_file", type=click.Path())
@click.option(
    "--sample-sheet",
    required=True,
    type=click.Path(exists=True),
    help="Sample sheet with 'sample' and 'group' columns",
)
@click.option(
    "--test",
    type=click.Choice(["exact", "glm"]),
    default="exact",
    show_default=True,
)
@click.option(
    "--method",
    type=click.Choice(list(TEST_METHODS)),
    default="QLFTest",
    show_default=True,
    help="GLM test method",
)
@click.option("--design", default="~ group", show_default=True, help="Design formula")
@click.option("--coef", type=int, default=None, help="0-based design column to test")
@click.option("--contrast", default=None, help="Comma-separated contrast vector")
@click.option("--lfc", type=float, default=1.0, show_default=True, help="Treat threshold")
@click.option(
    "--p-adjust",
    type=click.Choice(sorted(P_ADJUST_METHODS)),
    default="fdr",
    show_default=True,
)
@click.option("--max-pool", type=float, default=0.7, show_default=True)
@click.option(
    "--library-size",
    type=click.Choice(["equal", "pool"]),
    default="equal",
    show_default=True,
)
@click.option(
    "--normalized/--raw",
    default=False,
    show_default=True,
    help="Whether INPUT_FILE holds normalized frequencies",
)
@click.option("--parallel", is_flag=True, help="Process units in parallel")
@click.option("--n-jobs", type=int, default=None, help="Number of parallel workers")
@click.pass_context
def compare(
    ctx,
    input_file,
    output_file,
    sample_sheet,
    test,
    method,
    design,
    coef,
    contrast,
    lfc,
    p_adjust,
    max_pool,
    library_size,
    normalized,
    parallel,
    n_jobs,
):
    """Test for differential interactions in INPUT_FILE"""

    verbose = ctx.obj.verbose if ctx.obj else False
    try:
        samples = load_sample_sheet(sample_sheet)
        table = load_hic_table(input_file, samples=samples.names, normalized=normalized)
        options = dict(
            p_adjust=p_adjust,
            max_pool=max_pool,
            parallel=parallel,
            n_jobs=n_jobs,
            library_size=library_size,
        )
        if test == "exact":
            result = hic_exact_test(table, samples, **options)
        else:
            if coef is None and contrast is None:
                coef = 1
            result = hic_glm(
                table,
                samples,
                design=design,
                coef=coef,
                contrast=[float(v) for v in contrast.split(",")] if contrast else None,
                method=method,
                M=lfc,
                **options,
            )
        save_table(result.table, output_file)
    except CLI_ERRORS as e:
        _fail(f"Differential analysis failed: {e}", verbose)

    summary = result.summary()
    click.echo(f"Tested {summary['n_tested']} interactions -> {output_file}")
    click.echo(
        f"  {summary['n_significant']} significant at FDR {summary['fdr_threshold']} "
        f"({summary['n_up']} up, {summary['n_down']} down)"
    )
    for failure in result.failures:
        click.echo(f"  ✗ {failure}")


if __name__ == "__main__":
    main()
