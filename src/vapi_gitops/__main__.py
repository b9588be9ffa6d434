"""CLI entry point for Vapi GitOps.

Provides commands for pushing local resources to an environment,
inspecting the identifier state, and listing orphaned resources.
"""

import asyncio
from pathlib import Path

import click

from vapi_gitops import __version__
from vapi_gitops.models.resources import VALID_ENVIRONMENTS, ResourceType

ENVIRONMENT = click.Choice(list(VALID_ENVIRONMENTS))
RESOURCE_TYPE = click.Choice([rt.value for rt in ResourceType])

config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Vapi GitOps.

    Keeps assistants, tools, squads and simulation resources on the
    Vapi platform in sync with the YAML and Markdown files in this
    repository.
    """
    pass


@cli.command()
@click.argument("env", type=ENVIRONMENT)
@config_option
@click.option("--force", is_flag=True, help="Delete remote resources whose files were removed")
@click.option(
    "--type",
    "-t",
    "resource_types",
    multiple=True,
    type=RESOURCE_TYPE,
    help="Only apply this resource type (repeatable)",
)
@click.option(
    "--file",
    "-f",
    "file_paths",
    multiple=True,
    help="Only apply the resource defined in this file (repeatable)",
)
def push(
    env: str,
    config: Path | None,
    force: bool,
    resource_types: tuple[str, ...],
    file_paths: tuple[str, ...],
) -> None:
    """Push local resources to the platform.

    Creates or updates every selected resource, applying missing
    dependencies automatically. Orphaned resources are only deleted
    with --force.
    """
    from vapi_gitops.config.loader import load_config
    from vapi_gitops.errors import ApiError, ConfigurationError, FatalApplyError, GitOpsError
    from vapi_gitops.services.api_client import VapiClient
    from vapi_gitops.services.apply import ApplyEngine, ApplyResult, ApplyScope
    from vapi_gitops.services.loader import FileSystemLoader
    from vapi_gitops.storage.state_store import IdentifierStore
    from vapi_gitops.utils.logging import configure_logging

    cfg = load_config(config, env)
    configure_logging(cfg.logging)

    scope = ApplyScope(
        resource_types=tuple(ResourceType(t) for t in resource_types),
        file_paths=file_paths,
    )

    async def main() -> ApplyResult:
        if not cfg.token:
            raise ConfigurationError(f"VAPI_TOKEN is not set (checked environment and .env.{env})")

        store = IdentifierStore.load(cfg.paths.state_file(env))
        loader = FileSystemLoader(cfg.paths.resources_dir)
        async with VapiClient(cfg.base_url, cfg.token, cfg.api) as client:
            engine = ApplyEngine(client, store, loader, cfg, environment=env)
            return await engine.run(scope, force_delete=force)

    try:
        result = asyncio.run(main())
    except FatalApplyError as e:
        cause = e.__cause__
        detail = cause.message if isinstance(cause, ApiError) else str(e)
        raise click.ClickException(f"Apply failed: {detail}") from e
    except GitOpsError as e:
        raise click.ClickException(str(e)) from e

    created = sum(len(v) for v in result.created.values())
    updated = sum(len(v) for v in result.updated.values())
    linked = sum(len(v) for v in result.linked.values())
    click.echo(
        f"Apply complete: {created} created, {updated} updated, {linked} linked, "
        f"{result.deletion.total_deleted} deleted"
    )
    if result.deletion.total_found > result.deletion.total_deleted:
        click.echo(
            f"{result.deletion.total_found - result.deletion.total_deleted} orphaned "
            "resource(s) kept; rerun with --force to delete"
        )


@cli.command()
@click.argument("env", type=ENVIRONMENT)
@config_option
def status(env: str, config: Path | None) -> None:
    """Show tracked resources per type for an environment."""
    from vapi_gitops.config.loader import load_config
    from vapi_gitops.errors import GitOpsError
    from vapi_gitops.models.resources import APPLY_ORDER, RESOURCE_TYPES
    from vapi_gitops.storage.state_store import IdentifierStore

    cfg = load_config(config, env)
    state_file = cfg.paths.state_file(env)

    if not state_file.exists():
        click.echo(f"No state for '{env}' yet. Run 'vapi-gitops push {env}' first.")
        return

    try:
        store = IdentifierStore.load(state_file)
    except GitOpsError as e:
        raise click.ClickException(str(e)) from e

    counts = store.counts()
    click.echo(f"\nState for {env} ({state_file}):")
    click.echo("-" * 40)
    for rt in APPLY_ORDER:
        click.echo(f"  {RESOURCE_TYPES[rt].title}: {counts[rt]}")
    click.echo(f"  Credentials: {len(store.credentials)}")


@cli.command()
@click.argument("env", type=ENVIRONMENT)
@config_option
@click.option(
    "--type",
    "-t",
    "resource_types",
    multiple=True,
    type=RESOURCE_TYPE,
    help="Only check this resource type (repeatable)",
)
def orphans(env: str, config: Path | None, resource_types: tuple[str, ...]) -> None:
    """List tracked resources whose local files no longer exist.

    Never calls the API; use 'push --force' to delete them.
    """
    from vapi_gitops.config.loader import load_config
    from vapi_gitops.errors import GitOpsError
    from vapi_gitops.models.resources import APPLY_ORDER, RESOURCE_TYPES
    from vapi_gitops.services.loader import FileSystemLoader
    from vapi_gitops.services.orphans import OrphanDetector
    from vapi_gitops.storage.state_store import IdentifierStore

    cfg = load_config(config, env)

    try:
        store = IdentifierStore.load(cfg.paths.state_file(env))
        loader = FileSystemLoader(cfg.paths.resources_dir)
        loaded = {rt: loader.load_resources(rt) for rt in APPLY_ORDER}
    except GitOpsError as e:
        raise click.ClickException(str(e)) from e

    types = [ResourceType(t) for t in resource_types] or None
    found = OrphanDetector(store).find_orphans(loaded, types)

    if not found:
        click.echo("No orphaned resources.")
        return

    for rt, candidates in found.items():
        click.echo(f"\n{RESOURCE_TYPES[rt].title}:")
        for orphan in candidates:
            click.echo(f"  {orphan.local_id} ({orphan.remote_id})")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
