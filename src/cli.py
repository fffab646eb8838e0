"""
Command-line interface for site-pulse.

Provides commands to run job workers and the scheduler, initialize the
database, inspect queues and run diagnostic checks.

Usage:
    site-pulse worker            # Run workers for every job kind
    site-pulse scheduler         # Run the recurring task scheduler
    site-pulse evaluate-alerts   # Run one alert evaluation cycle
    site-pulse init-db           # Initialize database
    site-pulse health            # Check service health
"""

import asyncio
import json
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import click
import redis.asyncio as redis

from src.config.settings import get_settings
from src.jobs.schemas import JobKind
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics

KIND_CHOICES = [k.value for k in JobKind]


@dataclass
class Runtime:
    """Connections and services shared by the long-running commands."""

    database: Any
    redis_client: redis.Redis
    store: Any
    job_service: Any
    dispatcher: Any


@asynccontextmanager
async def open_runtime(with_limiter: bool = False) -> AsyncIterator[Runtime]:
    """Connect Postgres and Redis and wire the job and notification services."""
    from src.jobs.redis_store import RedisJobStore
    from src.jobs.service import JobService
    from src.notifications.dispatcher import NotificationDispatcher
    from src.notifications.repository import ChannelRepository
    from src.ratelimit.limiter import SlidingWindowRateLimiter
    from src.sites.repository import SiteRepository
    from src.storage.database import Database

    settings = get_settings()
    db = Database()
    await db.connect()
    client = redis.from_url(str(settings.redis_url), encoding="utf-8", decode_responses=True)
    store = RedisJobStore(redis_client=client)
    limiter = SlidingWindowRateLimiter(client) if with_limiter else None

    try:
        yield Runtime(
            database=db,
            redis_client=client,
            store=store,
            job_service=JobService(store, SiteRepository(db), limiter),
            dispatcher=NotificationDispatcher(ChannelRepository(db)),
        )
    finally:
        await client.close()
        await db.close()


def _build_alert_engine(rt: Runtime) -> Any:
    from src.alerts.repository import AlertRepository
    from src.alerts.service import AlertEngine
    from src.performance.repository import PerformanceRepository

    return AlertEngine(
        AlertRepository(rt.database),
        PerformanceRepository(rt.database),
        rt.dispatcher,
    )


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Site Pulse - SEO data sync, alerting and notifications."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--kind", "kinds", multiple=True, type=click.Choice(KIND_CHOICES),
              help="Job kind to work on (can repeat, default: all)")
@click.option("--concurrency", default=None, type=int, help="Slots per kind")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def worker(kinds: tuple[str, ...], concurrency: int | None, metrics: bool,
           metrics_port: int | None) -> None:
    """Run job workers."""
    from src.jobs.worker import JobWorker
    from src.processors import build_processors

    async def run():
        async with open_runtime() as rt:
            processors = build_processors(rt.database, rt.redis_client)
            selected = [JobKind(k) for k in kinds] or list(JobKind)
            workers = [
                JobWorker(kind, rt.store, processors[kind], concurrency=concurrency)
                for kind in selected
            ]

            if metrics:
                get_metrics().start_server(port=metrics_port)

            # Handle shutdown signals
            async def shutdown():
                await asyncio.gather(*(w.stop() for w in workers))

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(shutdown()))

            await asyncio.gather(*(w.start() for w in workers))

    asyncio.run(run())


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def scheduler(metrics: bool, metrics_port: int | None) -> None:
    """Run the recurring task scheduler."""
    from src.jobs.monitor import DeadLetterMonitor
    from src.scheduler.service import SchedulerService

    async def run():
        settings = get_settings()
        async with open_runtime() as rt:
            service = SchedulerService(
                rt.job_service,
                alert_engine=_build_alert_engine(rt),
                dead_letter_monitor=DeadLetterMonitor(
                    rt.store,
                    rt.dispatcher,
                    redis_client=rt.redis_client,
                    ops_organization_id=settings.ops_organization_id,
                ),
                cron_secret=settings.cron_secret,
            )

            if metrics:
                get_metrics().start_server(port=metrics_port)

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, service.stop)

            await service.run()

    asyncio.run(run())


@main.command("evaluate-alerts")
def evaluate_alerts() -> None:
    """Run one alert evaluation cycle and print the summary."""

    async def run():
        async with open_runtime() as rt:
            summary = await _build_alert_engine(rt).run_cycle()
            _echo_json(summary.to_dict())

    asyncio.run(run())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.storage.database import Database
    from src.storage.schema import create_tables

    async def run():
        db = Database()
        await db.connect()

        await create_tables(db)
        click.echo("Database initialized successfully")

        await db.close()

    asyncio.run(run())


@main.command()
@click.argument("kind", type=click.Choice(KIND_CHOICES))
@click.option("--site", "site_id", default=None, help="Site ID (default: every active site)")
@click.option("--org", "organization_id", default=None, help="Organization owning --site")
@click.option("--device", type=click.Choice(["MOBILE", "DESKTOP"]), default=None,
              help="Page-speed strategy (default: both)")
def enqueue(kind: str, site_id: str | None, organization_id: str | None,
            device: str | None) -> None:
    """Enqueue jobs for one site or for every active site."""
    from src.jobs.exceptions import SiteAccessError

    if site_id and not organization_id:
        raise click.UsageError("--org is required with --site")

    async def run():
        async with open_runtime() as rt:
            if site_id:
                try:
                    summary = await rt.job_service.trigger_for_site(
                        "cli", kind, site_id, organization_id, device
                    )
                except SiteAccessError as e:
                    click.echo(click.style(str(e), fg="red"))
                    sys.exit(1)
            else:
                summary = await rt.job_service.enqueue_for_active_sites(kind, device)
            click.echo(f"Enqueued: {summary.enqueued}  Skipped: {summary.skipped}")

    asyncio.run(run())


@main.command("job-status")
def job_status() -> None:
    """Show queue depth per job kind."""

    async def run():
        async with open_runtime() as rt:
            statuses = await rt.job_service.get_all_status()

        click.echo(f"{'kind':20s} {'waiting':>8s} {'active':>8s} {'delayed':>8s} "
                   f"{'completed':>10s} {'failed':>8s}")
        click.echo("-" * 68)
        for kind, status in statuses.items():
            color = "red" if status.failed else None
            click.echo(click.style(
                f"{kind:20s} {status.waiting:8d} {status.active:8d} {status.delayed:8d} "
                f"{status.completed:10d} {status.failed:8d}",
                fg=color,
            ))

    asyncio.run(run())


@main.command("dead-letters")
@click.argument("kind", type=click.Choice(KIND_CHOICES))
@click.option("--limit", default=20, help="Maximum jobs to show")
def dead_letters(kind: str, limit: int) -> None:
    """List dead-lettered jobs of one kind, newest first."""

    async def run():
        async with open_runtime() as rt:
            jobs = await rt.store.list_dead_letters(JobKind(kind), limit=limit)

        if not jobs:
            click.echo("No dead-lettered jobs")
            return
        for job in jobs:
            finished = job.finished_at.isoformat() if job.finished_at else "-"
            click.echo(f"{job.job_id}  site={job.site_id}  attempts={job.attempts}  "
                       f"finished={finished}")
            click.echo(f"    {job.last_error}")

    asyncio.run(run())


@main.command()
@click.argument("job_id")
def requeue(job_id: str) -> None:
    """Move a dead-lettered job back to waiting with a fresh attempt budget."""

    async def run():
        async with open_runtime() as rt:
            ok = await rt.store.requeue_dead_letter(job_id)
        if ok:
            click.echo(click.style(f"Requeued {job_id}", fg="green"))
        else:
            click.echo(
                click.style(
                    f"{job_id} was not requeued: not dead-lettered, or its dedupe key is held",
                    fg="red",
                )
            )
            sys.exit(1)

    asyncio.run(run())


@main.command("test-channel")
@click.argument("channel_type", type=click.Choice(["SLACK", "WEBHOOK"], case_sensitive=False))
@click.option("--config", "config_json", required=True, help="Channel config as JSON")
def test_channel(channel_type: str, config_json: str) -> None:
    """Send a test notification through an unsaved channel config."""
    from src.notifications.dispatcher import NotificationDispatcher

    try:
        config = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--config") from e

    async def run():
        # send_test never touches the channel table
        dispatcher = NotificationDispatcher(repository=None)
        return await dispatcher.send_test(channel_type.upper(), config)

    result = asyncio.run(run())
    if result.ok:
        click.echo(click.style(result.message, fg="green"))
    else:
        click.echo(click.style(f"{result.error_kind} error: {result.message}", fg="red"))
        sys.exit(1)


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}
        settings = get_settings()

        # Check Redis
        try:
            client = redis.from_url(str(settings.redis_url))
            results["redis"] = bool(await client.ping())
            await client.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Check PostgreSQL
        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check providers
        results["search_provider_configured"] = settings.search_provider_configured
        results["pagespeed_configured"] = settings.pagespeed_configured
        results["cron_configured"] = settings.cron_configured

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
