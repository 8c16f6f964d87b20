"""SecretSage command line.

Thin layer over :class:`~secretsage.service.CredentialService`: every
command gathers input, asks for confirmation where configured, calls one
service operation and renders the structured result.
"""
import sys
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import click
import orjson
import yaml

from .conf import LOG_LEVEL
from .envfile import format_env, parse_env
from .exceptions import SecretSageError
from .fileio import atomic_write
from .models import VaultLocation
from .service import CredentialService
from .vault.config import VaultSettings, config_path, save_config, set_config_value
from .version import __version__

logger = logging.getLogger("secretsage.cli")

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


class ValueSource(Enum):
    """Where a credential value comes from."""

    LITERAL = "literal"
    PROMPT = "prompt"
    STDIN = "stdin"

    @classmethod
    def from_option(cls, value: Optional[str]) -> "ValueSource":
        """``--value -`` reads stdin, no ``--value`` prompts."""
        if value is None:
            return cls.PROMPT
        if value == "-":
            return cls.STDIN
        return cls.LITERAL


def read_value(source: ValueSource, name: str, literal: Optional[str] = None) -> str:
    """Obtain the value for *name*; nothing is stored before this returns."""
    if source is ValueSource.LITERAL:
        return literal or ""
    if source is ValueSource.STDIN:
        data = sys.stdin.read()
        if data.endswith("\n"):
            data = data[:-1]
        if data.endswith("\r"):
            data = data[:-1]
        return data
    return click.prompt(f"Value for {name}", hide_input=True)


class SageGroup(click.Group):
    """Reports any SecretSage error as a failed command (exit status 1)."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except SecretSageError as err:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(str(err)) from err


def run(coro) -> Any:
    return asyncio.run(coro)


def dump_json(data: Any) -> str:
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")


def confirm_or_abort(ctx: click.Context, message: str, yes: bool, default: bool = True) -> None:
    """Ask *message* unless *yes* or the configuration skips confirmations."""
    service: CredentialService = ctx.obj
    if yes or not service.config.agent.require_confirmation:
        return
    if not click.confirm(message, default=default):
        click.echo("Aborted.")
        ctx.exit(0)


@click.group(cls=SageGroup, context_settings=CONTEXT_SETTINGS)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.version_option(__version__, prog_name="secretsage")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Encrypted local credentials, granted into .env on demand."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else LOG_LEVEL,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = CredentialService()


@cli.command("init")
@click.option("--local", "-l", is_flag=True, help="Create the vault in ./.secretsage")
@click.option("--path", "-p", "custom_path", type=str, help="Create the vault in a custom directory")
@click.option("--force", is_flag=True, help="Overwrite an existing vault without asking")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.pass_context
def init_command(
    ctx: click.Context,
    local: bool,
    custom_path: Optional[str],
    force: bool,
    yes: bool,
) -> None:
    """Initialize a vault and generate its key pair."""
    service: CredentialService = ctx.obj
    presence = run(service.has_vault())
    overwrite = force or yes
    if presence.any and not overwrite:
        where = "local" if presence.local else ("custom" if presence.custom else "global")
        click.echo(f"A vault already exists ({where}).", err=True)
        if not click.confirm("Overwrite it? This deletes all stored credentials.", default=False):
            click.echo("Aborted.")
            return
        overwrite = True

    if custom_path:
        location = VaultLocation.CUSTOM
    elif local:
        location = VaultLocation.LOCAL
    elif yes:
        location = VaultLocation.GLOBAL
    else:
        location = VaultLocation(
            click.prompt(
                "Vault location",
                type=click.Choice([loc.value for loc in VaultLocation]),
                default=VaultLocation.GLOBAL.value,
            )
        )
        if location is VaultLocation.CUSTOM:
            custom_path = click.prompt("Vault directory")

    result = run(service.initialize_vault(location, custom_path, overwrite=overwrite))

    vault = VaultSettings(
        default_location=location,
        custom_path=str(result.vault_dir) if location is VaultLocation.CUSTOM else None,
    )
    config = service.config.model_copy(update={"vault": vault})
    save_config(config, local=location is VaultLocation.LOCAL, cwd=service.cwd, home=service.home)

    added = service.update_gitignore() if config.agent.auto_gitignore else []

    click.echo("Vault initialized.")
    click.echo(f"  Vault location: {result.vault_dir}")
    click.echo(f"  Public key:     {result.public_key}")
    if added:
        click.echo(f"  .gitignore:     added {', '.join(added)}")
    click.echo("Add credentials with: secretsage add OPENAI_API_KEY")


@cli.command("add")
@click.argument("name")
@click.option("--value", "value", type=str, help='Credential value ("-" reads stdin, prompts if omitted)')
@click.option("--from-env", is_flag=True, help="Take the value from the existing .env")
@click.option("--description", "-d", type=str, help="Free-text description")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_context
def add_command(
    ctx: click.Context,
    name: str,
    value: Optional[str],
    from_env: bool,
    description: Optional[str],
    tags: tuple[str, ...],
) -> None:
    """Encrypt and store a credential."""
    service: CredentialService = ctx.obj
    run(service.ensure_vault())

    if from_env:
        env = service.env.read()
        if name not in env:
            raise click.ClickException(f"Credential '{name}' not found in {service.env.env_path}")
        value = env[name]
    else:
        value = read_value(ValueSource.from_option(value), name, value)

    run(service.add(name, value, description=description, tags=tags or None))
    click.echo(f"Saved {name} to {service.vault_path()}")
    click.echo(f"Grant it to .env with: secretsage grant {name}")


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Machine readable output")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include metadata")
@click.option("--search", "-s", "pattern", type=str, help="Filter names (regex or glob)")
@click.pass_context
def list_command(ctx: click.Context, as_json: bool, show_all: bool, pattern: Optional[str]) -> None:
    """List stored credentials (values are never shown)."""
    service: CredentialService = ctx.obj
    if pattern:
        items = run(service.search(pattern))
    else:
        items = run(service.list())

    if as_json:
        if show_all:
            payload = [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in items]
        else:
            payload = [m.name for m in items]
        click.echo(dump_json(payload))
        return

    if not items:
        click.echo("No credentials stored. Add one with: secretsage add NAME")
        return
    for meta in items:
        if not show_all:
            click.echo(meta.name)
            continue
        updated = meta.updated_at.isoformat() if meta.updated_at else "-"
        line = f"{meta.name:<32} {updated}"
        if meta.tags:
            line += f"  [{', '.join(meta.tags)}]"
        if meta.description:
            line += f"  {meta.description}"
        click.echo(line)


@cli.command("grant")
@click.argument("names", nargs=-1)
@click.option("--all", "-a", "grant_all", is_flag=True, help="Grant every stored credential")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--backup/--no-backup", default=None, help="Back up .env before writing")
@click.pass_context
def grant_command(
    ctx: click.Context,
    names: tuple[str, ...],
    grant_all: bool,
    yes: bool,
    backup: Optional[bool],
) -> None:
    """Write credentials into .env."""
    service: CredentialService = ctx.obj
    stored = run(service.names())
    if not stored:
        raise click.ClickException("No credentials in vault. Add one with: secretsage add NAME")

    if grant_all:
        selected = stored
    elif names:
        selected = list(names)
    else:
        click.echo("Stored credentials: " + ", ".join(stored))
        answer = click.prompt("Credentials to grant (comma separated)")
        selected = [n.strip() for n in answer.split(",") if n.strip()]
    if not selected:
        click.echo("No credentials selected.")
        return

    confirm_or_abort(ctx, f"Write {', '.join(selected)} to {service.env.env_path}?", yes)
    result = run(service.grant(selected, backup=backup, strict=True))

    click.echo(f"Granted {len(result.granted)} credential(s) to {result.env_path}")
    for name in result.granted:
        click.echo(f"  + {name}")
    if result.backup_path:
        click.echo(f"Backup: {result.backup_path}")
    click.echo("Remember to revoke when done: secretsage revoke --all")


@cli.command("revoke")
@click.argument("names", nargs=-1)
@click.option("--all", "-a", "revoke_all", is_flag=True, help="Remove every key from .env")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def revoke_command(ctx: click.Context, names: tuple[str, ...], revoke_all: bool, yes: bool) -> None:
    """Remove credentials from .env; the vault is left intact."""
    service: CredentialService = ctx.obj
    env = service.env.read()
    if not env:
        click.echo("Nothing to revoke.")
        return

    if revoke_all:
        selected = list(env)
    elif names:
        selected = list(names)
    else:
        managed = run(service.granted())
        if not managed:
            click.echo("No SecretSage-managed credentials found in .env. Use --all to remove everything.")
            return
        selected = managed

    confirm_or_abort(ctx, f"Remove {', '.join(selected)} from {service.env.env_path}?", yes)
    result = run(service.revoke(selected))

    click.echo(f"Revoked {len(result.revoked)} credential(s) from {result.env_path}")
    for name in result.revoked:
        click.echo(f"  - {name}")
    if result.skipped:
        click.echo(f"Not in .env: {', '.join(result.skipped)}", err=True)


@cli.command("rotate")
@click.argument("name")
@click.option("--value", "value", type=str, help='New value ("-" reads stdin, prompts if omitted)')
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def rotate_command(ctx: click.Context, name: str, value: Optional[str], yes: bool) -> None:
    """Replace the value of an existing credential."""
    service: CredentialService = ctx.obj
    if run(service.missing([name])):
        raise click.ClickException(f"Credential '{name}' not found")
    confirm_or_abort(ctx, f"Replace the value of {name}?", yes)
    new_value = read_value(ValueSource.from_option(value), name, value)
    run(service.rotate(name, new_value))
    click.echo(f"Rotated {name}. Re-grant it to refresh .env: secretsage grant {name}")


@cli.command("remove")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def remove_command(ctx: click.Context, name: str, yes: bool) -> None:
    """Delete a credential from the vault."""
    service: CredentialService = ctx.obj
    if run(service.missing([name])):
        raise click.ClickException(f"Credential '{name}' not found")
    confirm_or_abort(ctx, f"Permanently delete {name}?", yes, default=False)
    run(service.remove(name))
    click.echo(f"Removed {name}")


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Machine readable output")
@click.pass_context
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show vault and .env state."""
    service: CredentialService = ctx.obj
    report = run(service.status())
    if as_json:
        click.echo(dump_json({
            "vault": {
                "path": str(report.vault_path),
                "type": report.location.value if report.location else "none",
                "exists": report.exists,
            },
            "credentials": {
                "stored": report.stored,
                "granted": len(report.granted),
                "available": report.available,
            },
            "env": {"path": str(report.env_path), "exists": report.env_exists},
        }))
        return

    if not report.exists:
        click.echo("Vault: not initialized. Run `secretsage init` to create one.")
        return
    click.echo(f"Vault:       {report.vault_path} ({report.location.value})")
    click.echo(f"Credentials: {report.stored} stored")
    click.echo(f".env:        {len(report.granted)} granted, {report.available} available")


@cli.command("export")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Output file (default: stdout)")
@click.option("--format", "-f", "fmt", type=click.Choice(["json", "env"]), default="json", show_default=True)
@click.option("--encrypted", is_flag=True, help="Export the vault file with values still encrypted")
@click.pass_context
def export_command(ctx: click.Context, output: Optional[Path], fmt: str, encrypted: bool) -> None:
    """Export credentials for backup or transfer."""
    service: CredentialService = ctx.obj
    failures: dict[str, str] = {}
    if encrypted:
        content = run(service.export_encrypted())
    else:
        result = run(service.get_all())
        failures = result.failures
        if fmt == "env":
            content = format_env({c.name: c.value for c in result.credentials})
        else:
            content = dump_json([
                {
                    "name": c.name,
                    "value": c.value,
                    "createdAt": c.metadata.created_at.isoformat() if c.metadata and c.metadata.created_at else None,
                    "updatedAt": c.metadata.updated_at.isoformat() if c.metadata and c.metadata.updated_at else None,
                }
                for c in result.credentials
            ]) + "\n"
        if output is None:
            click.echo("Exporting DECRYPTED credentials. Handle with care!", err=True)

    if output is not None:
        atomic_write(output, content.encode("utf-8"), mode=0o600)
        click.echo(f"Exported to {output}", err=True)
    else:
        click.echo(content, nl=False)

    for name, reason in failures.items():
        click.echo(f"Failed to decrypt {name}: {reason}", err=True)
    if failures:
        ctx.exit(1)


def parse_import(content: str, fmt: str) -> list[dict[str, Any]]:
    """Turn import input into ``{"name", "value"}`` items."""
    if fmt == "env":
        return [{"name": k, "value": v} for k, v in parse_env(content).items()]
    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError as err:
        raise click.ClickException(f"Failed to parse json input: {err}") from err
    if not isinstance(data, list):
        raise click.ClickException("Invalid JSON format. Expected an array of {name, value} objects.")
    return [item if isinstance(item, dict) else {} for item in data]


@cli.command("import")
@click.option("--input", "-i", "input_file", type=click.File("r", encoding="utf-8"), default="-", help="Input file (default: stdin)")
@click.option("--format", "-f", "fmt", type=click.Choice(["json", "env"]), default="json", show_default=True)
@click.option("--merge", is_flag=True, help="Overwrite credentials that already exist")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def import_command(ctx: click.Context, input_file, fmt: str, merge: bool, yes: bool) -> None:
    """Import credentials from an export."""
    service: CredentialService = ctx.obj
    run(service.ensure_vault())
    content = input_file.read()
    if not content.strip():
        raise click.ClickException("Empty input.")
    items = parse_import(content, fmt)
    if not items:
        click.echo("No credentials found in input.")
        return

    confirm_or_abort(ctx, f"Import {len(items)} credential(s) into the vault?", yes)
    result = run(service.import_credentials(items, merge=merge))
    click.echo(
        f"Imported {len(result.added) + len(result.updated)} credential(s): "
        f"{len(result.added)} new, {len(result.updated)} updated, {len(result.skipped)} skipped"
    )


@cli.command("config")
@click.option("--show", "-s", is_flag=True, help="Show the merged configuration (default)")
@click.option("--path", "show_path", is_flag=True, help="Show the configuration file path")
@click.option("--set", "assignment", type=str, metavar="KEY=VALUE", help="Set a configuration value")
@click.pass_context
def config_command(ctx: click.Context, show: bool, show_path: bool, assignment: Optional[str]) -> None:
    """View or change configuration."""
    service: CredentialService = ctx.obj
    local = run(service.has_vault()).local
    if show_path:
        click.echo(config_path(local, cwd=service.cwd, home=service.home))
        return

    if assignment:
        key, sep, value = assignment.partition("=")
        if not key or not sep:
            raise click.UsageError("Use: secretsage config --set key=value")
        config = set_config_value(service.config, key, value)
        path = save_config(config, local=local, cwd=service.cwd, home=service.home)
        click.echo(f"Set {key} = {value} in {path}")
        return

    data = service.config.model_dump(mode="json", by_alias=True, exclude_none=True)
    click.echo(yaml.safe_dump(data, sort_keys=False, default_flow_style=False), nl=False)


def main() -> None:
    cli(prog_name="secretsage")


if __name__ == "__main__":
    main()
