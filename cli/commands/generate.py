# cli/commands/generate.py
"""Code generation command."""

from pathlib import Path

import click

from cli.commands.common import (
    async_command,
    hard_failures,
    loader_options,
    make_cache,
    make_context,
    parse_option_pairs,
    print_diagnostics,
    settings_from,
    split_counts,
)
from fhirgen.pipeline import generate as run_generate
from languages.base import ExtensionSupport
from languages.sink import FileSystemSink


@click.command()
@click.argument('directives', nargs=-1, required=True)
@click.option('--language', '-l', help='Target language (see `fhirgen languages`)')
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Output directory')
@click.option('--module', help='Root module or namespace of the generated code')
@click.option('--file-format', help='Serialization of emitted schema/metadata files')
@click.option('--extension-support', type=click.Choice([e.value for e in ExtensionSupport]),
              help='How extension elements are emitted')
@click.option('--include', multiple=True, help='Only export these types (and what they depend on)')
@click.option('--no-dependencies', is_flag=True, help='With --include, do not add dependencies')
@click.option('--option', '-O', 'extra', multiple=True, help='Language option as key=value')
@click.option('--cache-dir', type=click.Path(file_okay=False), help='FHIR package cache directory')
@click.option('--strict/--lenient', default=None, help='Abort on the first unreadable document')
@click.option('--pipeline', type=click.Choice(['structured', 'streaming']), help='Document parse pipeline')
@click.pass_context
@hard_failures
@async_command
async def generate(ctx, directives, language, output, module, file_format, extension_support,
                   include, no_dependencies, extra, cache_dir, strict, pipeline):
    """Generate code for the packages DIRECTIVES (name#version)."""
    settings = settings_from(ctx)
    language = language or settings.default_language
    output_dir = Path(output) if output else (settings.output_dir or Path('generated') / language)

    options = parse_option_pairs(extra)
    if module:
        options['module'] = module
    if file_format:
        options['file_format'] = file_format
    if extension_support:
        options['extension_support'] = extension_support
    if include:
        options['include'] = list(include)
    if no_dependencies:
        options['include_dependencies'] = False

    context = make_context(ctx, directives[0])
    result = await run_generate(
        context,
        make_cache(ctx, cache_dir),
        list(directives),
        language,
        FileSystemSink(output_dir),
        options,
        loader_options(ctx, strict, pipeline),
    )

    click.echo(f"Generated {len(result.export.paths)} file(s) in {output_dir}")
    for path in result.export.paths:
        click.echo(f"  {path}")

    print_diagnostics(result.load.failures, "Parse failures")
    print_diagnostics(result.graph.diagnostics, "Resolution diagnostics")
    print_diagnostics(result.export.diagnostics, "Emission diagnostics")
    errors, warnings = split_counts(result.diagnostics)
    if errors or warnings:
        click.echo(f"{errors} error(s), {warnings} warning(s)", err=True)
