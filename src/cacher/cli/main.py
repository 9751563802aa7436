"""Main CLI entry point for cacher.

Provides the command-line interface for pushing, pulling, installing and
cleaning cache items.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional

import click
import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from cacher.cacher import Cacher, OperationResult
from cacher.config import CacherConfig

# Global console for Rich output
console = Console()

_MESSAGES = {
    "pushed": "Pushed {key} ({version}) to {path}",
    "pulled": "Pulled {key} ({version})",
    "up-to-date": "{key} ({version}) is already up to date",
    "installed": "Installed {key} ({version}) into {path}",
    "upgraded": "Upgraded {key} to {version} in {path}",
    "copied": "Copied {key} ({version}) into {path}",
    "already-latest": "{key} ({version}) is already the latest version",
    "uninstalled": "Uninstalled {key} ({version}) from {path}",
    "deleted": "Deleted {key} ({version})",
    "removed-dead": "Removed dead install of {key} ({version}): {path} is gone",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def make_cacher(ctx: click.Context, username: Optional[str] = None) -> Cacher:
    """Build a Cacher from the --config file and environment."""
    config_path = ctx.obj.get("config")
    config = CacherConfig.load(Path(config_path) if config_path else None)
    return Cacher(config, username)


def _print_result(result: OperationResult) -> None:
    template = _MESSAGES.get(result.action, "{key} ({version}): " + result.action)
    message = template.format(
        key=result.key, version=result.version, path=result.path
    )
    console.print(f"[green]✓[/green] {escape(message)}")


def _print_error(e: Exception, key: Optional[str] = None) -> None:
    logging.getLogger(__name__).debug("Command failed", exc_info=True)
    prefix = f"{key}: " if key else "Error: "
    console.print(f"[red]✗[/red] {escape(prefix + str(e))}", style="red")


def _print_json(data) -> None:
    click.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def _run_each(keys: Iterable[str], operation: Callable) -> None:
    """Run ``operation`` for every key, reporting failures without stopping.

    Exits 1 after the loop if any key failed.
    """
    failed = False
    for key in keys:
        try:
            result = operation(key)
        except Exception as e:
            _print_error(e, key)
            failed = True
            continue
        for item in result if isinstance(result, list) else [result]:
            _print_result(item)
    if failed:
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False),
    help="Path to JSON config file (default: ~/.cacher/config.json)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx, config, verbose):
    """cacher - distribute versioned artifacts between machines and users.

    Configuration comes from the config file and CACHER_* environment variables.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    _configure_logging(verbose)


# ==================== Remote Commands ====================


@cli.command("push")
@click.argument("path", type=click.Path())
@click.argument("key")
@click.argument("version", required=False)
@click.pass_context
def push(ctx, path, key, version):
    """Push a directory to the remote cache as a new version of KEY.

    VERSION defaults to the current Unix timestamp.

    Example:
        cacher push ./build team:service:web 2024.1
    """
    try:
        cacher = make_cacher(ctx)
        _print_result(cacher.push(path, key, version))
    except Exception as e:
        _print_error(e)
        sys.exit(1)


@cli.command("remote")
@click.argument("match", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.option("--exact", is_flag=True, help="Match the whole key instead of a prefix")
@click.pass_context
def remote(ctx, match, as_json, exact):
    """List remote cache items, optionally those starting with MATCH."""
    try:
        results = make_cacher(ctx).remoteinfo(match, exact)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if as_json:
        _print_json(results)
        return

    for key, item in results.items():
        console.print(f"{key} ({escape(item['version'])})")


@cli.command("deleteremote")
@click.argument("key")
@click.argument("version", required=False)
@click.pass_context
def deleteremote(ctx, key, version):
    """Delete VERSION of KEY (or every version) from the remote cache."""
    try:
        cacher = make_cacher(ctx)
        for result in cacher.deleteremote(key, version):
            _print_result(result)
    except Exception as e:
        _print_error(e)
        sys.exit(1)


@cli.command("cleanremote")
@click.pass_context
def cleanremote(ctx):
    """Delete old remote versions superseded by a settled one."""
    try:
        results = make_cacher(ctx).cleanremote()
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if not results:
        console.print("[yellow]Nothing to clean[/yellow]")
    for result in results:
        _print_result(result)


# ==================== Local Commands ====================


@cli.command("pull")
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def pull(ctx, keys):
    """Pull the newest remote version of each KEY into the local cache."""
    try:
        cacher = make_cacher(ctx)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    _run_each(keys, cacher.pull)


@cli.command("local")
@click.argument("match", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.option("--exact", is_flag=True, help="Match the whole key instead of a prefix")
@click.pass_context
def local(ctx, match, as_json, exact):
    """List local cache items, optionally those starting with MATCH."""
    try:
        results = make_cacher(ctx).localinfo(match, exact)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if as_json:
        _print_json(results)
        return

    for key, item in results.items():
        status = "up-to-date" if item["up_to_date"] else "needs update"
        console.print(f"{key} ({escape(item['local_version'])}, {status})")


@cli.command("deletelocal")
@click.argument("key")
@click.argument("version", required=False)
@click.pass_context
def deletelocal(ctx, key, version):
    """Delete VERSION of KEY (or every version) from the local cache."""
    try:
        cacher = make_cacher(ctx)
        for result in cacher.deletelocal(key, version):
            _print_result(result)
    except Exception as e:
        _print_error(e)
        sys.exit(1)


@cli.command("cleanlocal")
@click.pass_context
def cleanlocal(ctx):
    """Delete old local versions and installs whose path is gone."""
    try:
        results = make_cacher(ctx).cleanlocal()
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if not results:
        console.print("[yellow]Nothing to clean[/yellow]")
    for result in results:
        _print_result(result)


# ==================== Install Commands ====================


@cli.command("install")
@click.option(
    "--symlink", is_flag=True, help="Hard-link files from the local cache instead of copying"
)
@click.argument("username")
@click.argument("path", type=click.Path())
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def install(ctx, symlink, username, path, keys):
    """Install each KEY into PATH for USERNAME.

    Example:
        cacher install --symlink deploy /srv/app team:service:web
    """
    try:
        cacher = make_cacher(ctx, username)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    _run_each(keys, lambda key: cacher.install(key, path, use_symlink=symlink))


@cli.command("copy")
@click.argument("username")
@click.argument("path", type=click.Path())
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def copy(ctx, username, path, keys):
    """Copy each KEY into PATH for USERNAME (like install, but won't be upgraded)."""
    try:
        cacher = make_cacher(ctx, username)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    _run_each(keys, lambda key: cacher.copy(key, path))


@cli.command("uninstall")
@click.argument("username")
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def uninstall(ctx, username, keys):
    """Uninstall each KEY for USERNAME."""
    try:
        cacher = make_cacher(ctx, username)
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    _run_each(keys, cacher.uninstall)


@cli.command("upgrade")
@click.argument("username")
@click.pass_context
def upgrade(ctx, username):
    """Upgrade every item installed for USERNAME."""
    try:
        cacher = make_cacher(ctx, username)
        keys = cacher.installed_index.all().keys()
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if not keys:
        console.print("[yellow]Nothing installed[/yellow]")
    _run_each(keys, lambda key: cacher.upgrade([key]))


@cli.command("installed")
@click.argument("username")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def installed(ctx, username, as_json):
    """List items installed for USERNAME."""
    try:
        results = make_cacher(ctx, username).installedinfo()
    except Exception as e:
        _print_error(e)
        sys.exit(1)

    if as_json:
        _print_json(results)
        return

    for key, item in results.items():
        status = "up-to-date" if item["up_to_date"] else "needs update"
        props = [item["installed_version"], status]
        if item["is_symlink"]:
            props.append("symlink")
        console.print(f"{key} ({escape(', '.join(props))}): {escape(item['path'])}")


if __name__ == "__main__":
    cli()
