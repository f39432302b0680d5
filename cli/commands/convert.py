# cli/commands/convert.py
"""Cross-version conversion of FHIR instances."""

import json
from pathlib import Path

import click

from cli.commands.common import (
    async_command,
    hard_failures,
    loader_options,
    make_cache,
    make_context,
    print_diagnostics,
)
from fhirgen.converter import CrossVersionConverter, MappingRegistry, MappingTable
from fhirgen.errors import InvalidConfigurationError
from fhirgen.models.releases import parse_release
from fhirgen.pipeline import load_and_resolve


def _keep_value(path, value, target_type):
    return value


@click.command()
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--from', 'from_version', required=True, help='Release of the input (R4, 4.0.1, ...)')
@click.option('--to', 'to_version', required=True, help='Release to convert to')
@click.option('--mapping', '-m', 'mappings', multiple=True, type=click.Path(exists=True, dir_okay=False),
              help='Additional mapping table (YAML)')
@click.option('--source-package', help='Derive identity rules from this package (name#version)...')
@click.option('--target-package', help='...and this one')
@click.option('--keep-invalid', is_flag=True, help='Keep values that do not fit their target type')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the converted resource to a file')
@click.option('--cache-dir', type=click.Path(file_okay=False), help='FHIR package cache directory')
@click.pass_context
@hard_failures
@async_command
async def convert(ctx, input_file, from_version, to_version, mappings, source_package, target_package,
                  keep_invalid, output, cache_dir):
    """Convert the resource in INPUT_FILE between FHIR releases."""
    for value, hint in ((from_version, '--from'), (to_version, '--to')):
        try:
            parse_release(value)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint=hint)

    try:
        with open(input_file, 'r', encoding='utf-8-sig') as f:
            node = json.load(f)
    except ValueError as e:
        raise InvalidConfigurationError(f"{input_file} is not valid JSON: {e}")

    registry = MappingRegistry()
    for path in mappings:
        registry.register(MappingTable.from_yaml(Path(path)))

    target_collection = None
    if source_package or target_package:
        if not (source_package and target_package):
            raise click.UsageError("--source-package and --target-package go together")
        cache = make_cache(ctx, cache_dir)
        options = loader_options(ctx, None, None)
        source, _ = await load_and_resolve(make_context(ctx, source_package), cache, [source_package], options)
        target, _ = await load_and_resolve(make_context(ctx, target_package), cache, [target_package], options)
        registry.derive(source.collection, target.collection)
        target_collection = target.collection

    converter = CrossVersionConverter(registry, make_context(ctx, 'convert'), target_collection)
    result = converter.convert(node, from_version, to_version, fallback=_keep_value if keep_invalid else None)

    if result.entity is not None:
        text = json.dumps(result.entity, indent=2, ensure_ascii=False)
        if output:
            with open(output, 'w', encoding='utf-8', newline='\n') as f:
                f.write(text + "\n")
            click.echo(f"Converted resource written to {output}")
        else:
            click.echo(text)

    print_diagnostics(result.diagnostics, "Conversion diagnostics")
    print_diagnostics([f"{e.path}: {e.reason}" for e in result.errors], "Conversion errors")
