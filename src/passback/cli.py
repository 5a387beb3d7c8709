"""
Admin CLI for the grade passback service.

Usage:
    passback serve --port 3000
    passback check-config
    passback jwks > jwks.json
"""

import json

import typer
from pydantic import ValidationError

from passback.settings import Settings, clear_settings_cache

app = typer.Typer(name="passback", help="LTI grade passback admin CLI")


def _load_settings() -> Settings:
    clear_settings_cache()
    try:
        return Settings()
    except ValidationError as e:
        typer.echo("Invalid configuration:", err=True)
        for error in e.errors():
            typer.echo(f"  {error['msg']}", err=True)
        raise typer.Exit(1)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(3000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    settings = _load_settings()
    uvicorn.run(
        "passback.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("check-config")
def check_config():
    """Validate PASSBACK_* settings and print a summary."""
    settings = _load_settings()

    typer.echo(f"Environment:     {settings.env}")
    typer.echo(f"Redis:           {settings.redis_url or '(disabled)'}")
    typer.echo(f"Score mode:      {settings.score_mode}")
    typer.echo(f"Score maximum:   {settings.score_maximum:g}")
    attempts = f"{settings.attempts_maximum:g}" if settings.track_attempts else "off"
    typer.echo(f"Attempts:        {attempts}")
    typer.echo(f"Session TTL:     {settings.session_ttl_seconds}s")
    typer.echo(f"Debug endpoints: {'on' if settings.debug else 'off'}")
    typer.echo("Configuration OK")


@app.command("jwks")
def jwks():
    """Print the tool's public key set for platform registration."""
    from passback.lti.config import get_tool_config

    settings = _load_settings()
    try:
        tool_config = get_tool_config(settings)
    except (OSError, ValueError) as e:
        typer.echo(f"Cannot load LTI tool config: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(tool_config.get_jwks(), indent=2))


if __name__ == "__main__":
    app()
