"""CLI entry-point: python -m providers [list|sync|categories|serve]."""

from __future__ import annotations

import asyncio
import json

import typer

from api.config import Settings, configure_logging
from providers.base import BaseProvider, build_providers, get_providers

app = typer.Typer(help="CitySounds – concert provider CLI")


def _configured(settings: Settings, names: list[str] | None) -> dict[str, BaseProvider]:
    providers = build_providers(settings.secrets())
    if names:
        unknown = [n for n in names if n not in get_providers()]
        if unknown:
            typer.echo(f"Unknown provider(s): {', '.join(unknown)}", err=True)
            raise typer.Exit(2)
        providers = {n: p for n, p in providers.items() if n in names}
    if not providers:
        typer.echo("No providers configured. Set TICKETMASTER_API_KEY or EVENTBRITE_API_KEY.", err=True)
        raise typer.Exit(1)
    return providers


@app.command(name="list")
def list_providers() -> None:
    """List registered providers and whether their API key is set."""
    keys = Settings().secrets()
    for name, cls in sorted(get_providers().items()):
        status = "configured" if keys.get(cls.api_key_env) else f"missing {cls.api_key_env}"
        typer.echo(f"  {name:<14} {status}")


@app.command()
def sync(
    source: list[str] | None = typer.Option(
        None, "--source", "-s", help="Provider name(s) to sync. Omit for all configured."
    ),
) -> None:
    """Run one sync pass into the concert database."""
    from api.database import init_db
    from api.jobs import ScheduledJobManager
    from api.repository import ConcertRepository

    settings = Settings()
    configure_logging(settings.log_level)
    providers = _configured(settings, source)

    async def run_once():
        await init_db(settings.database_path)
        manager = ScheduledJobManager(providers, ConcertRepository(settings.database_path))
        try:
            return await manager.run_jobs()
        finally:
            for provider in providers.values():
                await provider.aclose()

    result = asyncio.run(run_once())
    typer.echo(f"Processed {result.processed} concert(s).")
    for error in result.errors:
        typer.echo(f"  error: {error}", err=True)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def categories(name: str = typer.Argument(help="Provider name")) -> None:
    """Print a provider's category or genre taxonomy as JSON."""
    settings = Settings()
    configure_logging(settings.log_level)
    provider = _configured(settings, [name])[name]

    async def fetch():
        async with provider:
            return await provider.list_categories()

    typer.echo(json.dumps(asyncio.run(fetch()), indent=2))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("api.main:create_app", factory=True, host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
