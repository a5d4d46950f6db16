from __future__ import annotations

import logging
from pathlib import Path

import typer

from .config import load_config
from .errors import CertgenError, ConfigurationError, ReconcileAborted
from .reconcile import ReconciliationDriver
from .store import KeyMaterialStore
from .verify import verify_all

app = typer.Typer(help="Provision a private certificate authority and server certificates.")


def _setup_logging(verbose: int) -> None:
    log_level = logging.WARNING
    if verbose >= 2:
        log_level = logging.DEBUG
    elif verbose == 1:
        log_level = logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")


def _load(config: str):
    try:
        return load_config(config)
    except ConfigurationError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=2)


@app.command("reconcile")
def reconcile_cmd(
    config: str = typer.Argument("certgen.toml", help="Path to configuration file (.toml or .yml)"),
    out: str = typer.Option("", "-o", "--out", help="Output directory (default: the config file's directory)"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Generate a new certificate authority without asking"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing anything"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="-v for info, -vv for debug output"),
):
    """Reuse or (re)generate the authority and every site certificate.

    Up-to-date material is left untouched. Generating a new certificate
    authority asks for confirmation unless `--yes` is given.
    """
    _setup_logging(verbose)
    cfg = _load(config)
    out_dir = Path(out) if out else Path(config).resolve().parent

    driver = ReconciliationDriver(
        KeyMaterialStore(out_dir),
        approve=None if yes else typer.confirm,
        dry_run=dry_run,
    )
    try:
        report = driver.run(cfg)
    except ReconcileAborted as e:
        typer.echo(f"Aborted: {e}", err=True)
        raise typer.Exit(code=1)
    except CertgenError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)

    for line in report.lines():
        typer.echo(line)
    if not report.ok:
        typer.echo("[FAIL] Some sites could not be reconciled", err=True)
        raise typer.Exit(code=1)


@app.command("verify")
def verify_cmd(
    config: str = typer.Argument("certgen.toml", help="Path to configuration file (.toml or .yml)"),
    out: str = typer.Option("", "-o", "--out", help="Output directory (default: the config file's directory)"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="-v for info, -vv for debug output"),
):
    """Check that stored material matches the configuration and chains to the authority."""
    _setup_logging(verbose)
    cfg = _load(config)
    out_dir = Path(out) if out else Path(config).resolve().parent
    try:
        verify_all(cfg, str(out_dir))
    except CertgenError as e:
        typer.echo(f"[FAIL] Verification failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] {cfg.authority.name} and {len(cfg.sites)} site(s) verified")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
