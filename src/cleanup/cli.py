"""Analytics cleanup admin CLI (acl).

Runs the cleanup operations as the configured service account, without
going through the HTTP API.

Usage:
    acl orphans kafka-topics          # List orphaned resources of a category
    acl delete analytics-workloads    # Delete orphaned resources of a category
    acl recreate                      # Resubmit pipelines that lost their workloads
    acl run --enforce                 # Run one full cleanup pass
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import click
from pydantic import BaseModel

from . import __version__
from .config import CleanupMode, Config, ConfigurationError
from .errors import CleanupError
from .models import Collection, DeleteStatus
from .service import CleanupService

Operation = Callable[[CleanupService, str, str], Awaitable[Any]]

ORPHAN_LISTINGS: dict[str, Operation] = {
    "pipelines": lambda s, u, t: s.get_orphaned_pipeline_services(u, t),
    "analytics-workloads": lambda s, u, t: s.get_orphaned_analytics_workloads(u, t),
    "pipeline-kube-services": lambda s, u, t: s.get_orphaned_kube_services(Collection.PIPELINE),
    "kafka-topics": lambda s, u, t: s.get_orphaned_kafka_topics(),
    "servings": lambda s, u, t: s.get_orphaned_serving_services(u, t),
    "serving-workloads": lambda s, u, t: s.get_orphaned_serving_workloads(u, t),
    "serving-kube-services": lambda s, u, t: s.get_orphaned_kube_services(Collection.SERVING),
    "influx-measurements": lambda s, u, t: s.get_orphaned_influx_measurements(u, t),
}


async def _delete_kafka_topics(service: CleanupService, user_id: str, token: str) -> DeleteStatus:
    await service.delete_orphaned_kafka_topics()
    return await service.wait_for_delete()


ORPHAN_DELETIONS: dict[str, Operation] = {
    "pipelines": lambda s, u, t: s.delete_orphaned_pipeline_services(u, t),
    "analytics-workloads": lambda s, u, t: s.delete_orphaned_analytics_workloads(u, t),
    "pipeline-kube-services": lambda s, u, t: s.delete_orphaned_kube_services(
        Collection.PIPELINE
    ),
    "kafka-topics": _delete_kafka_topics,
    "servings": lambda s, u, t: s.delete_orphaned_serving_services(u, t),
    "serving-workloads": lambda s, u, t: s.delete_orphaned_serving_workloads(u, t),
    "serving-kube-services": lambda s, u, t: s.delete_orphaned_kube_services(Collection.SERVING),
    "influx-measurements": lambda s, u, t: s.delete_orphaned_influx_measurements(u, t),
}


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, DeleteStatus):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    return value


def echo_json(value: Any) -> None:
    click.echo(json.dumps(_to_jsonable(value), indent=2, default=str))


def _service(ctx: click.Context) -> CleanupService:
    """Return the service from the context, building it from the environment once."""
    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        # Imported here so that tests injecting a service never touch the wiring
        from .main import build_service

        try:
            config = Config.from_env()
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        service, identity = build_service(config)
        try:
            identity.login()
        except CleanupError as e:
            raise click.ClickException(f"Keycloak login failed: {e}") from e
        ctx.call_on_close(identity.logout)
        obj["service"] = service
        obj["identity"] = identity
        obj["config"] = config
    service: CleanupService = obj["service"]
    return service


def _run_as_service_account(ctx: click.Context, operation: Operation) -> Any:
    service = _service(ctx)
    identity = ctx.obj.get("identity")
    if identity is None:
        raise click.ClickException("No identity provider configured for the service account")
    try:
        user_id = identity.get_user_info().sub
        return asyncio.run(operation(service, user_id, identity.get_access_token()))
    except CleanupError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e


# =============================================================================
# CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="acl")
@click.option("--verbose", "-v", is_flag=True, help="Log collaborator calls to stderr")
def cli(verbose: bool) -> None:
    """Analytics cleanup admin CLI.

    Finds and removes analytics resources (workloads, kube services,
    Kafka topics, InfluxDB measurements) whose owning pipeline or serving
    instance no longer exists. Configuration is read from the same
    environment variables as the service.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@click.argument("category", type=click.Choice(sorted(ORPHAN_LISTINGS)))
@click.pass_context
def orphans(ctx: click.Context, category: str) -> None:
    """List orphaned resources of CATEGORY as JSON."""
    echo_json(_run_as_service_account(ctx, ORPHAN_LISTINGS[category]))


@cli.command()
@click.argument("category", type=click.Choice(sorted(ORPHAN_DELETIONS)))
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, category: str, yes: bool) -> None:
    """Delete orphaned resources of CATEGORY and print what was deleted.

    Kafka topics are deleted one per DELETE_INTERVAL and the command waits
    for the whole run; the final status is printed.
    """
    if not yes:
        click.confirm(f"Delete all orphaned {category}?", abort=True)
    echo_json(_run_as_service_account(ctx, ORPHAN_DELETIONS[category]))


@cli.command()
@click.option("--servings", is_flag=True, help="Also recreate serving transfer workloads")
@click.pass_context
def recreate(ctx: click.Context, servings: bool) -> None:
    """Resubmit pipelines (and serving instances) that lost their workloads."""

    async def _recreate(service: CleanupService, user_id: str, token: str) -> dict[str, Any]:
        result: dict[str, Any] = {
            "pipelines": await service.recreate_missing_pipelines(user_id, token)
        }
        if servings:
            result["servings"] = await service.recreate_missing_serving_instances(user_id, token)
        return result

    echo_json(_run_as_service_account(ctx, _recreate))


@cli.command()
@click.option("--enforce", is_flag=True, help="Delete orphans instead of only reporting them")
@click.option("--recreate/--no-recreate", "recreate_pipes", default=False,
              help="Resubmit pipelines without workloads first")
@click.pass_context
def run(ctx: click.Context, enforce: bool, recreate_pipes: bool) -> None:
    """Run one cleanup pass and print the report."""
    service = _service(ctx)
    mode = CleanupMode.ENFORCE if enforce else CleanupMode.OBSERVE
    report = asyncio.run(service.run_cleanup(recreate_pipes, mode))
    echo_json(report.to_dict())
    if not report.success:
        raise click.ClickException(f"Cleanup pass failed: {report.error}")


if __name__ == "__main__":
    cli()
