from __future__ import annotations

import asyncio
import json
import logging
import typing as t

import click

from task_cache.core.errors import NotAuthenticatedError, TaskCacheError
from task_cache.core.models import to_jsonable
from task_cache.services.task_service import TaskService
from task_cache.utils.config import ClientConfig


def _run(ctx: click.Context, call: t.Callable[[TaskService], t.Awaitable[t.Any]]) -> None:
    config: ClientConfig = ctx.obj

    async def main() -> t.Any:
        async with TaskService.from_config(config) as service:
            return await call(service)

    try:
        result = asyncio.run(main())
    except NotAuthenticatedError as exc:
        raise click.ClickException(f"authentication required: {exc.message}") from exc
    except TaskCacheError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(to_jsonable(result), indent=2))


@click.group()
@click.option("--api-url", envvar="TASK_CACHE_API_URL", default=None, help="Base URL of the task API (ends in /api)")
@click.option("--token", envvar="TASK_CACHE_TOKEN", default=None, help="Bearer token")
@click.option("--log-level", default="WARNING", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.pass_context
def cli(ctx: click.Context, api_url: t.Optional[str], token: t.Optional[str], log_level: str) -> None:
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = ClientConfig.from_env()
    if api_url:
        config.api.base_url = api_url
    if token:
        config.api.token = token
    ctx.obj = config


@cli.command()
@click.option("--area", type=click.Choice(["foh", "boh"]), default=None)
@click.pass_context
def lists(ctx: click.Context, area: t.Optional[str]) -> None:
    """Print task lists."""
    _run(ctx, lambda service: service.get_lists(area))


@cli.command()
@click.option("--start", required=True, help="Start date (YYYY-MM-DD)")
@click.option("--end", required=True, help="End date (YYYY-MM-DD)")
@click.pass_context
def instances(ctx: click.Context, start: str, end: str) -> None:
    """Print task instances in a date range."""
    _run(ctx, lambda service: service.get_instances(start_date=start, end_date=end))


@cli.command()
@click.option("--start", required=True)
@click.option("--end", required=True)
@click.pass_context
def history(ctx: click.Context, start: str, end: str) -> None:
    """Print task history in a date range."""
    _run(ctx, lambda service: service.get_task_history(start, end))


@cli.command()
@click.option("--start", required=True)
@click.option("--end", required=True)
@click.option("--department", default=None)
@click.option("--shift", default=None)
@click.pass_context
def metrics(ctx: click.Context, start: str, end: str, department: t.Optional[str], shift: t.Optional[str]) -> None:
    """Print completion metrics."""
    _run(ctx, lambda service: service.get_metrics(start, end, department, shift))


if __name__ == "__main__":  # pragma: no cover
    cli()
