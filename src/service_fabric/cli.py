"""CLI entry point for fabric service processes."""

from __future__ import annotations

import importlib
from typing import Any

import click

from .core.enums import ServiceRole

_APP_HOOKS = ("on_start", "on_stop", "user_directory", "identity_provider", "registry")


def _load_app(spec: str) -> dict[str, Any]:
    """Resolve ``module:attribute`` into coordinator keyword arguments."""
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise click.BadParameter("expected 'module:attribute'", param_hint="--app")
    try:
        app = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise click.BadParameter(str(exc), param_hint="--app") from exc
    return {
        name: getattr(app, name)
        for name in _APP_HOOKS
        if getattr(app, name, None) is not None
    }


@click.group()
def main() -> None:
    """Service fabric: messaging, events, RPC and identity for services."""


@main.command()
@click.option(
    "--role",
    type=click.Choice([r.value for r in ServiceRole]),
    default=None,
    help="Service role (defaults to FABRIC_ROLE)",
)
@click.option("--service-name", default=None, help="Service name override")
@click.option("--config", default=None, help="TOML config file path")
@click.option("--app", "app_spec", default=None, help="Hooks object as 'module:attribute'")
@click.pass_context
def run(
    ctx: click.Context,
    role: str | None,
    service_name: str | None,
    config: str | None,
    app_spec: str | None,
) -> None:
    """Run a service process until SIGINT/SIGTERM."""
    from .bootstrap import main as run_service

    kwargs = _load_app(app_spec) if app_spec else {}
    code = run_service(
        role=role, service_name=service_name, config_path=config, **kwargs
    )
    if code:
        click.echo("Service failed to start: invalid configuration.", err=True)
    ctx.exit(code)


@main.command()
@click.option("--domain", default=None, help="Only list events of this domain")
def events(domain: str | None) -> None:
    """List registered event names."""
    from .events.catalog import build_default_registry

    registry = build_default_registry()
    for name in registry.names():
        if domain and not name.startswith(f"{domain}."):
            continue
        schema = registry.get(name)
        assert schema is not None
        context = ", ".join(schema.context_fields) or "-"
        click.echo(f"{name}  v{schema.version}  context: {context}")


if __name__ == "__main__":
    main()
