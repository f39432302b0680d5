# cli/main.py
"""Main CLI entry point for the FHIR code generator."""

import click
from pathlib import Path
import sys

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fhirgen import __version__  # noqa: E402
from fhirgen.config import get_settings  # noqa: E402
from fhirgen.log_config import setup_logging  # noqa: E402


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Log level (default from FHIRGEN_LOG_LEVEL)')
@click.pass_context
def cli(ctx, log_level):
    """FHIR code generator - load packages, generate code, compare and convert."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings


def register_commands():
    """Register all CLI commands."""
    from cli.commands.generate import generate
    cli.add_command(generate)

    from cli.commands.compare import compare
    cli.add_command(compare)

    from cli.commands.convert import convert
    cli.add_command(convert)

    from cli.commands.languages import languages
    cli.add_command(languages)


register_commands()


if __name__ == '__main__':
    cli()
