"""
Command Line Interface for dcforge.
"""
import logging

import click
from pydantic import ValidationError

from ..CONFIG.settings import Settings
from ..MANAGERS.devcontainer_service import DevcontainerService
from ..MODELS.options import DevcontainerOptions
from ..PARSERS.devcontainer_parser import DevcontainerParser
from ..REGISTRY.feed_client import FeedError
from ..UTILS.ports import parse_port_list, split_csv


def _parse_env(pairs):
    env = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--env")
        key, value = pair.split("=", 1)
        env[key.strip()] = value
    return env


def _echo_warnings(warnings):
    for warning in warnings:
        click.echo(f"Warning: {warning}")


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--env-file', default='.env', help='dotenv file with DCFORGE_* settings')
@click.pass_context
def cli(ctx, verbose, env_file):
    """
    dcforge - devcontainer configuration generator.

    Combines templates, features and editor extensions into a validated
    devcontainer.json.
    """
    ctx.ensure_object(dict)
    try:
        settings = Settings.load(env_file)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise click.UsageError(f"Invalid DCFORGE_* setting ({problems})", ctx=ctx) from e
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj['settings'] = settings
    if 'service' not in ctx.obj:
        ctx.obj['service'] = DevcontainerService(settings=settings)


@cli.command()
@click.argument('name')
@click.option('--output', '-o', default='.', help='Project directory')
@click.option('--template', '-t', help='Built-in template id')
@click.option('--package', 'package_id', help='Template package id to extract')
@click.option('--version', 'package_version', help='Template package version')
@click.option('--source', '-s', multiple=True, help='Package source folder or feed URL')
@click.option('--features', '-f', default='', help='Comma-separated feature ids')
@click.option('--extensions', default='', help='Comma-separated editor extension ids')
@click.option('--ports', '-p', default='', help='Comma-separated ports to forward')
@click.option('--post-create', help='Command to run after the container is created')
@click.option('--env', '-e', multiple=True, help='Environment variable as KEY=VALUE')
@click.option('--image', help='Base image override')
@click.option('--workspace-folder', help='Workspace folder inside the container')
@click.option('--description', default='', help='Project description for template tokens')
@click.option('--compose', is_flag=True, help='Use Docker Compose')
@click.option('--force', is_flag=True, help='Overwrite an existing configuration')
@click.option('--no-recommended', is_flag=True, help='Skip recommended extensions')
@click.option('--custom-settings', type=click.Path(exists=True, dir_okay=False),
              help='devcontainer.json fragment merged on top')
@click.pass_context
def init(ctx, name, output, template, package_id, package_version, source, features, extensions, ports,
         post_create, env, image, workspace_folder, description, compose, force, no_recommended, custom_settings):
    """Generate .devcontainer files for a project."""
    overlay = None
    if custom_settings:
        try:
            overlay = DevcontainerParser().parse(custom_settings)
        except (OSError, ValueError, TypeError) as e:
            click.echo(f"Error: cannot read {custom_settings}: {e}")
            ctx.exit(1)

    options = DevcontainerOptions(
        name=name,
        output_path=output,
        description=description,
        template=template,
        template_package=package_id,
        template_version=package_version,
        sources=list(source),
        features=split_csv(features),
        extensions=split_csv(extensions),
        include_recommended_extensions=not no_recommended,
        ports=parse_port_list(ports),
        post_create_command=post_create,
        env=_parse_env(env),
        workspace_folder=workspace_folder,
        base_image=image,
        use_docker_compose=compose,
        force=force,
        custom_settings=overlay,
    )

    result = ctx.obj['service'].initialize(options)
    _echo_warnings(result.warnings)
    if not result.success:
        click.echo(f"Error: {result.first_error}")
        ctx.exit(1)

    click.echo(f"Created devcontainer configuration for {name}")
    for path in result.generated_files:
        click.echo(f"  {path}")


@cli.command()
@click.option('--source', '-s', multiple=True, help='Also list packages from these sources')
@click.option('--tag', help='Discovery tag')
@click.pass_context
def templates(ctx, source, tag):
    """List available templates."""
    service = ctx.obj['service']
    click.echo(f"{'TEMPLATE':24} {'CATEGORY':14} DESCRIPTION")
    click.echo("-" * 60)
    for item in service.catalog.templates:
        click.echo(f"{item.id:24} {item.category.value:14} {item.description}")

    if source:
        result = service.discovery.discover(list(source), tag)
        for package in result.packages:
            category = package.category.value
            click.echo(f"{package.package_id + '@' + package.version:24} {category:14} {package.description}")
        for error in result.errors:
            click.echo(f"Error: {error.source}: {error.message}")
        _echo_warnings(result.warnings)


@cli.command()
@click.option('--category', '-c', help='Only show one category')
@click.option('--search', 'query', help='Filter by text')
@click.pass_context
def features(ctx, category, query):
    """List available features."""
    catalog = ctx.obj['service'].catalog
    items = catalog.features_by_category(category) if category else catalog.search_features(query or "")
    if category and query:
        matches = {f.id for f in catalog.search_features(query)}
        items = [f for f in items if f.id in matches]

    click.echo(f"{'FEATURE':24} {'CATEGORY':12} REFERENCE")
    click.echo("-" * 70)
    for feature in items:
        suffix = " (deprecated)" if feature.deprecated else ""
        click.echo(f"{feature.id:24} {feature.category.value:12} {feature.qualified_id}{suffix}")


@cli.command()
@click.option('--source', '-s', multiple=True, help='Package source folder or feed URL')
@click.option('--tag', help='Discovery tag')
@click.option('--query', '-q', help='Free-text search')
@click.option('--refresh', is_flag=True, help='Ignore cached results')
@click.pass_context
def discover(ctx, source, tag, query, refresh):
    """Discover template packages."""
    service = ctx.obj['service']
    sources = list(source) or service.settings.sources
    if not sources:
        click.echo("Error: no package sources given (use --source or DCFORGE_SOURCES)")
        ctx.exit(1)

    if refresh:
        for location in sources:
            service.discovery.refresh(location, tag)
    if query:
        result = service.discovery.search(sources, query, tag)
    else:
        result = service.discovery.discover(sources, tag)

    if not result.packages:
        click.echo("No template packages found.")
    for package in result.packages:
        click.echo(f"{package.package_id} {package.version}  {package.title or package.description}")
    for error in result.errors:
        click.echo(f"Error: {error.source}: {error.message}")
    _echo_warnings(result.warnings)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate(ctx, path):
    """Validate an existing devcontainer.json."""
    result = ctx.obj['service'].validate_file(path)
    _echo_warnings(result.warnings)
    if not result.is_valid:
        for error in result.errors:
            click.echo(f"Error: {error}")
        ctx.exit(1)
    click.echo(f"{path} is valid.")


@cli.command('add-features')
@click.argument('path', type=click.Path(exists=True))
@click.option('--features', '-f', default='', help='Comma-separated feature ids')
@click.option('--extensions', default='', help='Comma-separated editor extension ids')
@click.option('--ports', '-p', default='', help='Comma-separated ports to forward')
@click.option('--env', '-e', multiple=True, help='Environment variable as KEY=VALUE')
@click.option('--no-recommended', is_flag=True, help='Skip recommended extensions')
@click.pass_context
def add_features(ctx, path, features, extensions, ports, env, no_recommended):
    """Add features to an existing devcontainer.json (or project directory)."""
    result = ctx.obj['service'].add_features(
        path,
        split_csv(features),
        extensions=split_csv(extensions),
        ports=parse_port_list(ports),
        env=_parse_env(env),
        include_recommended_extensions=not no_recommended,
    )
    _echo_warnings(result.warnings)
    if not result.success:
        click.echo(f"Error: {result.first_error}")
        ctx.exit(1)
    click.echo(f"Updated {result.generated_files[0]}")


@cli.command('check-sources')
@click.option('--source', '-s', multiple=True, help='Package source folder or feed URL')
@click.pass_context
def check_sources(ctx, source):
    """Check that package sources answer."""
    service = ctx.obj['service']
    sources = list(source) or service.settings.sources
    if not sources:
        click.echo("Error: no package sources given (use --source or DCFORGE_SOURCES)")
        ctx.exit(1)

    result = service.discovery.validate_sources(sources)
    for location in result.valid_sources:
        click.echo(f"OK    {location}")
    for error in result.errors:
        click.echo(f"Error: {error.source}: {error.message}")
    _echo_warnings(result.warnings)
    if not result.is_valid:
        ctx.exit(1)


@cli.command()
@click.argument('package_id')
@click.option('--source', '-s', multiple=True, help='Package source folder or feed URL')
@click.option('--prerelease', is_flag=True, help='Consider prerelease versions')
@click.pass_context
def latest(ctx, package_id, source, prerelease):
    """Show the newest version of a template package."""
    service = ctx.obj['service']
    sources = list(source) or service.settings.sources
    if not sources:
        click.echo("Error: no package sources given (use --source or DCFORGE_SOURCES)")
        ctx.exit(1)

    try:
        version = service.discovery.latest_version(sources, package_id, include_prerelease=prerelease)
    except FeedError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)
    if version is None:
        click.echo(f"Error: package {package_id} not found")
        ctx.exit(1)
    click.echo(f"{package_id} {version}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
