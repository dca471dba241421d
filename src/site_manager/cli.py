"""site-manager CLI - trusted local HTTPS sites for nginx."""

import functools
import logging
import sys
from pathlib import Path

import click
import questionary
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import load_settings
from .errors import SiteManagerError
from .manager import SiteManager
from .registry import PHP, PROXY

console = Console()

custom_style = questionary.Style([
    ('qmark', 'fg:cyan bold'),
    ('question', 'bold'),
    ('answer', 'fg:cyan bold'),
    ('pointer', 'fg:cyan bold'),
    ('highlighted', 'fg:cyan bold'),
    ('selected', 'fg:cyan'),
])


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def handle_errors(func):
    """Print SiteManagerError as a one-line error and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SiteManagerError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
    return wrapper


def spinner(message: str) -> Progress:
    progress = Progress(SpinnerColumn(), TextColumn(message), console=console)
    progress.add_task("", total=None)
    return progress


def ask(question):
    """Run a questionary prompt; Ctrl+C aborts the command."""
    answer = question.ask()
    if answer is None:
        raise click.Abort()
    return answer


def describe_target(site) -> str:
    if site.kind == PHP:
        return f"PHP {site.php_version}"
    return f"127.0.0.1:{site.proxy_port}"


@click.group()
@click.version_option(version=__version__, prog_name="site-manager")
@click.option("-v", "--verbose", is_flag=True, help="Show every command as it runs")
@click.option("--config", "config_path", default=None,
              type=click.Path(dir_okay=False, path_type=Path),
              help="Settings file (default: <app dir>/config.yaml)")
@click.pass_context
@handle_errors
def main(ctx, verbose, config_path):
    """site-manager - trusted local HTTPS development sites."""
    setup_logging(verbose)
    if ctx.obj is None:
        ctx.obj = SiteManager(load_settings(config_path))


@main.command()
@click.pass_obj
def check(manager):
    """Check that nginx, PHP, openssl and certutil are installed."""
    dependencies = manager.check_dependencies()

    table = Table(title="Dependencies")
    table.add_column("Binary")
    table.add_column("Status")
    for name, present in dependencies.items():
        table.add_row(name, "[green]✓ found[/green]" if present else "[red]✗ missing[/red]")
    console.print(table)

    if not all(dependencies.values()):
        console.print("\n[yellow]Run 'site-manager install-deps' to install what is missing.[/yellow]")


@main.command("install-deps")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def install_deps(manager, yes):
    """Install nginx, PHP-FPM, NSS tools and openssl (Debian/Ubuntu)."""
    if not yes and not ask(questionary.confirm(
        "Install nginx, php-fpm, libnss3-tools and openssl with apt-get?",
        default=True,
        style=custom_style,
    )):
        return

    with spinner("Installing dependencies..."):
        manager.install_dependencies()
    console.print("[green]✓[/green] Dependencies installed")


@main.command("php-versions")
@click.pass_obj
@handle_errors
def php_versions(manager):
    """List installed PHP versions."""
    manager.require_dependencies()
    versions = manager.list_php_versions()
    if not versions:
        console.print("[yellow]No versioned PHP binaries found.[/yellow]")
        return
    for version in versions:
        console.print(version)


@main.command("list")
@click.pass_obj
def list_sites(manager):
    """List managed sites."""
    overview = manager.overview()
    if not overview["ready"]:
        missing = [name for name, present in overview["dependencies"].items() if not present]
        console.print(f"[red]Missing dependencies:[/red] {', '.join(missing)}")
        console.print("Run 'site-manager install-deps' first.")
        sys.exit(1)

    sites = manager.list_sites()
    if not sites:
        console.print("[dim]No sites yet. Create one with 'site-manager create'.[/dim]")
        return

    table = Table(title="Sites")
    table.add_column("Domain", style="cyan")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("URL")
    for site in sites:
        table.add_row(site.domain, site.kind, describe_target(site), f"https://{site.domain}/")
    console.print(table)


@main.command()
@click.argument("domain")
@click.option("--type", "kind", type=click.Choice([PHP, PROXY]), default=None, help="Site type")
@click.option("--php-version", default=None, help="PHP-FPM version for PHP sites (e.g. 8.2)")
@click.option("--port", "proxy_port", type=int, default=None, help="Local port for proxy sites")
@click.pass_obj
@handle_errors
def create(manager, domain, kind, php_version, proxy_port):
    """Create a site with a trusted certificate, nginx config and hosts entry."""
    if kind is None:
        kind = ask(questionary.select(
            "Site type:",
            choices=[
                questionary.Choice("PHP application", value=PHP),
                questionary.Choice("Reverse proxy to a local port", value=PROXY),
            ],
            style=custom_style,
        ))

    if kind == PHP and not php_version:
        versions = manager.list_php_versions()
        if versions:
            php_version = ask(questionary.select(
                "PHP version:", choices=versions, default=versions[-1], style=custom_style
            ))
        else:
            php_version = ask(questionary.text("PHP version (e.g. 8.2):", style=custom_style))
    elif kind == PROXY and proxy_port is None:
        proxy_port = ask(questionary.text(
            "Local port to proxy to:",
            default="3000",
            validate=lambda value: value.isdigit() or "Enter a port number",
            style=custom_style,
        ))

    with spinner(f"Provisioning {domain}..."):
        site = manager.create_site(
            domain,
            kind,
            php_version=php_version if kind == PHP else None,
            proxy_port=proxy_port if kind == PROXY else None,
        )

    console.print(f"[green]✓[/green] Created {site.domain} ({describe_target(site)})")
    console.print(f"\n[bold]URL:[/bold] https://{site.domain}/")
    if site.kind == PHP:
        console.print(f"[bold]Document root:[/bold] {manager.settings.public_dir(site.domain)}")


@main.command()
@click.argument("domain")
@click.option("--php-version", default=None, help="New PHP-FPM version (PHP sites)")
@click.option("--port", "proxy_port", type=int, default=None, help="New local port (proxy sites)")
@click.pass_obj
@handle_errors
def update(manager, domain, php_version, proxy_port):
    """Change a site's PHP version or proxied port."""
    if php_version is None and proxy_port is None:
        raise click.UsageError("Pass --php-version or --port")

    with spinner(f"Updating {domain}..."):
        site = manager.update_site(domain, php_version=php_version, proxy_port=proxy_port)
    console.print(f"[green]✓[/green] Updated {site.domain} ({describe_target(site)})")


@main.command()
@click.argument("domain")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def delete(manager, domain, yes):
    """Delete a site, its files, certificate and hosts entry."""
    if not yes and not ask(questionary.confirm(
        f"Delete {domain} including /var/www content and its certificate?",
        default=False,
        style=custom_style,
    )):
        return

    with spinner(f"Deleting {domain}..."):
        manager.delete_site(domain)
    console.print(f"[green]✓[/green] Deleted {domain}")


@main.command("regenerate-ca")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def regenerate_ca(manager, yes):
    """Replace the root CA and re-issue every site certificate."""
    if not yes and not ask(questionary.confirm(
        "Replace the local root CA? Every site certificate will be re-issued.",
        default=False,
        style=custom_style,
    )):
        return

    with spinner("Regenerating root CA..."):
        domains = manager.regenerate_ca()
    console.print(f"[green]✓[/green] Root CA regenerated, {len(domains)} site certificate(s) re-issued")


@main.command("regenerate-cert")
@click.argument("domain")
@click.pass_obj
@handle_errors
def regenerate_cert(manager, domain):
    """Re-issue the certificate of one site."""
    with spinner(f"Re-issuing certificate for {domain}..."):
        cert_path = manager.regenerate_site_cert(domain)
    console.print(f"[green]✓[/green] Certificate written to {cert_path}")


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Bind port (default from settings)")
@click.pass_obj
def serve(manager, host, port):
    """Serve the JSON API for local front ends."""
    from .api import create_app

    app = create_app(manager)
    app.run(
        host=host or manager.settings.api_host,
        port=port or manager.settings.api_port,
        debug=False,
    )


if __name__ == "__main__":
    main()
