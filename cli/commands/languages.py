# cli/commands/languages.py
"""Listing of the available language backends."""

import json

import click
import yaml

from languages.registry import language_registry


@click.command()
@click.option('--format', 'output_format', type=click.Choice(['table', 'yaml', 'json']), default='table',
              help='Output format')
def languages(output_format):
    """List the available target languages."""
    listing = language_registry.list_languages()

    if output_format == 'yaml':
        click.echo(yaml.safe_dump(listing, default_flow_style=False, sort_keys=False))
    elif output_format == 'json':
        click.echo(json.dumps(listing, indent=2))
    else:
        if not listing:
            click.echo("No languages found.")
            return
        click.echo("Available languages:")
        click.echo("-" * 60)
        for language in listing:
            aliases = f" (aliases: {', '.join(language['aliases'])})" if language['aliases'] else ""
            click.echo(f"{language['name']} v{language['version']}{aliases}")
            click.echo(f"   {language['description']}")
            for option, description in language['options'].items():
                click.echo(f"   --option {option}=...  {description}")

    for name, error in sorted(language_registry.errors.items()):
        click.echo(f"Language '{name}' failed to load: {error}", err=True)
