# cli/commands/compare.py
"""Structural comparison of two package sets."""

import json

import click

from cli.commands.common import (
    async_command,
    hard_failures,
    loader_options,
    make_cache,
    make_context,
    print_diagnostics,
)
from fhirgen.compare import DiffKind, DifferOptions, compare as compare_collections, summarize
from fhirgen.models.definitions import DefinitionKind
from fhirgen.pipeline import load_and_resolve


@click.command()
@click.argument('first')
@click.argument('second')
@click.option('--format', 'output_format', type=click.Choice(['text', 'json']), default='text', help='Output format')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the report to a file')
@click.option('--kind', 'kinds', multiple=True, type=click.Choice([k.value for k in DefinitionKind]),
              help='Definition kinds to compare (default: types, resources and value sets)')
@click.option('--only', multiple=True, type=click.Choice([k.value for k in DiffKind]),
              help='Only report these difference kinds')
@click.option('--bindings/--no-bindings', default=True, help='Report binding changes')
@click.option('--codes', is_flag=True, help='Compare value set codes')
@click.option('--cache-dir', type=click.Path(file_okay=False), help='FHIR package cache directory')
@click.option('--strict/--lenient', default=None, help='Abort on the first unreadable document')
@click.pass_context
@hard_failures
@async_command
async def compare(ctx, first, second, output_format, output, kinds, only, bindings, codes, cache_dir, strict):
    """Compare package FIRST with package SECOND (name#version each)."""
    cache = make_cache(ctx, cache_dir)
    options = loader_options(ctx, strict, None)
    load_a, graph_a = await load_and_resolve(make_context(ctx, first), cache, [first], options)
    load_b, graph_b = await load_and_resolve(make_context(ctx, second), cache, [second], options)

    differ_options = DifferOptions(compare_bindings=bindings, compare_value_set_codes=codes)
    if kinds:
        differ_options.kinds = [DefinitionKind(k) for k in kinds]
    result = compare_collections(load_a.collection, load_b.collection, differ_options)

    if output_format == 'json':
        report = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    else:
        selected = [DiffKind(k) for k in only] if only else list(DiffKind)
        lines = summarize(result, selected)
        counts = ", ".join(f"{k}: {v}" for k, v in result.counts().items()) or "no differences"
        report = "\n".join(lines + [f"{result.a} -> {result.b}: {counts}"])

    if output:
        with open(output, 'w', encoding='utf-8', newline='\n') as f:
            f.write(report + "\n")
        click.echo(f"Report written to {output}")
    else:
        click.echo(report)

    print_diagnostics(load_a.failures + load_b.failures, "Parse failures")
    print_diagnostics(graph_a.errors + graph_b.errors, "Resolution errors")
