"""CLI for secret-agent - a secret broker for the AI agent era."""

import argparse
import getpass
import logging
import sys
from pathlib import Path

import keyring
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from . import envfile, instructions
from .broker import exec_injection, exec_template
from .config import ENV_PASSPHRASE, load_settings
from .crypto import wipe
from .errors import KeyStoreError, SecretExistsError, SecretNotFoundError, SecretsError
from .executor import ExecConfig
from .generate import CHARSETS, DEFAULT_LENGTH, generate
from .keys import KeyFileProvider
from .plan import build_command
from .vault import Vault

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("secret_agent")


def setup_logging(verbosity: int) -> None:
    """WARNING by default, INFO with -v, DEBUG with -vv. Always on stderr."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = RichHandler(console=err_console, show_path=False, show_time=False)
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def say(args, message: str) -> None:
    """Informational output, silenced by --quiet."""
    if not args.quiet:
        err_console.print(message)


def open_vault(args) -> Vault:
    return Vault.open(args.settings)


def read_secret_value(args) -> bytearray:
    """
    Read a value from --from-file, piped stdin or a hidden prompt.

    Never from a command argument, so it stays out of shell history and
    process listings. Piped input is read whole (PEM blocks survive); one
    trailing newline is dropped.
    """
    if args.from_file:
        file_path = Path(args.from_file).expanduser()
        if not file_path.exists():
            raise SecretsError(f"File not found: {file_path}")
        value = bytearray(file_path.read_bytes())

        # Delete the file after reading (security)
        if args.delete_file:
            file_path.unlink()
            say(args, f"[dim]Deleted source file: {file_path}[/dim]")

    elif not sys.stdin.isatty():
        value = bytearray(sys.stdin.buffer.read())

    else:
        # Interactive hidden input (recommended)
        err_console.print(f"[cyan]Importing secret:[/cyan] {args.name}")
        entered = getpass.getpass("Enter value (hidden): ")
        confirm = getpass.getpass("Confirm value (hidden): ")
        if entered != confirm:
            raise SecretsError("Values don't match")
        value = bytearray(entered.encode("utf-8"))

    if value.endswith(b"\r\n"):
        del value[-2:]
    elif value.endswith(b"\n"):
        del value[-1:]
    return value


def cmd_import(args):
    """Store a secret from piped input, a file or a hidden prompt."""
    value = read_secret_value(args)
    try:
        if not value:
            raise SecretsError("Empty value not allowed")
        with open_vault(args) as vault:
            vault.put(args.name, value, overwrite=args.replace)
    finally:
        wipe(value)

    console.print(f"[green]Imported secret:[/green] {args.name}")
    return 0


def cmd_create(args):
    """Generate and store a random secret."""
    try:
        value = bytearray(generate(args.length, args.charset).encode("ascii"))
    except ValueError as e:
        raise SecretsError(str(e)) from e

    try:
        with open_vault(args) as vault:
            vault.put(args.name, value, overwrite=args.force)
    finally:
        wipe(value)

    console.print(f"[green]Created secret:[/green] {args.name}")
    return 0


def cmd_list(args):
    """List secret names (values never shown - safe for agents)."""
    with open_vault(args) as vault:
        records = vault.list(bucket=args.bucket)

    if not records:
        console.print("[dim]No secrets stored.[/dim]")
        return 0

    table = Table(title="Stored Secrets", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Created", style="dim")

    for record in records:
        table.add_row(record.name, record.created_at.strftime("%Y-%m-%d %H:%M:%S"))

    console.print(table)
    console.print(f"\n[dim]Total: {len(records)} secrets[/dim]")
    return 0


def cmd_get(args):
    """
    Show secret metadata, or the value with --unsafe-display.

    WARNING: --unsafe-display prints the full secret. Never use it in agent
    sessions or logged terminals.
    """
    with open_vault(args) as vault:
        if not args.unsafe_display:
            record = vault.record(args.name)
            table = Table(show_header=False)
            table.add_column("Field", style="cyan")
            table.add_column("Value")
            table.add_row("name", record.name)
            table.add_row("bucket", record.bucket or "-")
            table.add_row("created", record.created_at.isoformat())
            table.add_row("updated", record.updated_at.isoformat())
            console.print(table)
            console.print("[dim]Value hidden. Use --unsafe-display to print it (not for agent use)[/dim]")
            return 0

        value = vault.get(args.name)

    try:
        err_console.print("[yellow]WARNING:[/yellow] Displaying secret value. Do not use in agent contexts.")
        # Raw value, no newline, for piping
        sys.stdout.buffer.write(value)
        sys.stdout.buffer.flush()
    finally:
        wipe(value)
    return 0


def cmd_delete(args):
    """Delete a secret."""
    with open_vault(args) as vault:
        if not args.force and sys.stdin.isatty():
            vault.record(args.name)
            confirm = input(f"Delete {args.name}? Type 'yes' to confirm: ")
            if confirm.lower() != "yes":
                console.print("[dim]Cancelled[/dim]")
                return 0
        vault.delete(args.name)

    console.print(f"[green]Deleted secret:[/green] {args.name}")
    return 0


def cmd_exec(args):
    """
    Run a command with secrets, returning only redacted output.

    Examples:
        secret-agent exec --env API_KEY -- node app.js
        secret-agent exec -- curl -H 'Authorization: Bearer {{API_KEY}}' https://api.example.com
    """
    # Strip leading '--' separator if present (argparse.REMAINDER includes it)
    command = args.exec_command
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        raise SecretsError("No command specified")

    config = ExecConfig.from_process(shell=args.settings.shell)
    with open_vault(args) as vault:
        if args.env_secrets:
            result = exec_injection(vault, args.env_secrets, command, config)
        else:
            result = exec_template(vault, build_command(command), config)

    sys.stdout.buffer.write(result.stdout)
    sys.stdout.buffer.flush()
    sys.stderr.buffer.write(result.stderr)
    sys.stderr.buffer.flush()

    if result.signal is not None:
        logger.info("Command %s", result.describe())
    return result.exit_status


def cmd_env_import(args):
    """Import NAME=value lines from a .env file."""
    with open_vault(args) as vault:
        imported, skipped = envfile.import_env_file(vault, Path(args.file).expanduser())

    if not imported and not skipped:
        say(args, f"[dim]No secrets found in {args.file}[/dim]")
    if imported:
        say(args, f"[green]Imported {len(imported)} secrets:[/green] {', '.join(imported)}")
    if skipped:
        say(args, f"[yellow]Skipped {len(skipped)} existing secrets:[/yellow] {', '.join(skipped)}")
    return 0


def cmd_env_export(args):
    """Write secrets to a .env file."""
    if not args.names and not args.all:
        raise SecretsError("Name secrets to export or use --all")

    with open_vault(args) as vault:
        names = None if args.all else args.names
        exported = envfile.export_env_file(vault, Path(args.file).expanduser(), names)

    if exported:
        say(args, f"[green]Exported {len(exported)} secrets to[/green] {args.file}")
    else:
        say(args, "[dim]No secrets to export.[/dim]")
    return 0


def cmd_inject(args):
    """Write a secret into a file (.env line or placeholder replacement)."""
    if args.env_format == bool(args.placeholder):
        raise SecretsError("Use exactly one of --placeholder or --env-format")

    path = Path(args.file).expanduser()
    with open_vault(args) as vault:
        if args.env_format:
            envfile.inject_env_format(vault, args.name, path, export=args.export)
        else:
            envfile.inject_placeholder(vault, args.name, path, args.placeholder)

    say(args, f"[green]Injected[/green] {args.name} into {args.file}")
    return 0


def cmd_setup(args):
    """Install agent usage instructions (once)."""
    if args.print:
        sys.stdout.write(instructions.INSTRUCTIONS)
        return 0

    path = Path(args.file).expanduser() if args.file else instructions.default_path()
    if instructions.install(path):
        say(args, f"[green]Added secret-agent instructions to[/green] {path}")
    else:
        say(args, f"[dim]Already configured in {path}[/dim]")
    return 0


def cmd_status(args):
    """Show status and configuration."""
    settings = args.settings
    console.print("[bold]secret-agent status[/bold]\n")

    table = Table(show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Path/Info", style="dim")

    table.add_row(
        "vault",
        "[green]exists[/green]" if settings.vault_path.exists() else "[yellow]not created yet[/yellow]",
        str(settings.vault_path),
    )

    table.add_row(
        "key backend",
        settings.key_backend,
        "SECRET_AGENT_USE_FILE" if settings.use_file else "",
    )

    table.add_row(
        "passphrase",
        "[green]set[/green]" if settings.passphrase else "[dim]not set[/dim]",
        ENV_PASSPHRASE,
    )

    if not settings.use_file:
        table.add_row("keychain", "available", type(keyring.get_keyring()).__name__)

    key_file = KeyFileProvider(settings.key_file)
    if settings.key_file.exists():
        try:
            key_file.check_permissions()
            key_status = "[green]exists[/green]"
        except KeyStoreError:
            key_status = "[red]permissions too open[/red]"
    else:
        key_status = "[yellow]not found[/yellow]"
    table.add_row("key file", key_status, str(settings.key_file))

    console.print(table)

    with open_vault(args) as vault:
        console.print(f"\n[dim]Secrets: {vault.count()}[/dim]")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secret-agent",
        description="A local secret broker for the AI agent era - use secrets without exposing them to agent context",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  secret-agent create API_KEY                          # Generate a random secret
  echo 'sk-...' | secret-agent import OPENAI_KEY       # Import from stdin
  secret-agent list                                    # List names (safe for agents)
  secret-agent exec --env API_KEY -- node app.js       # Inject as env var
  secret-agent exec -- curl -H 'Auth: {{API_KEY}}' https://api.example.com
  secret-agent inject DB_PASS --file .env --env-format # Write NAME=value into a file
  secret-agent setup                                   # Install agent instructions

Agent Safety:
  - 'list' and 'get' (without --unsafe-display) never show values
  - 'import' reads from stdin or a hidden prompt - never in shell history
  - 'exec' output is redacted: secrets become [REDACTED:NAME]

Environment:
  SECRET_AGENT_PASSPHRASE   Master key passphrase (unattended use)
  SECRET_AGENT_USE_FILE     Store the master key in a file, not the keychain
  SECRET_AGENT_VAULT_DIR    Override the vault directory
  SECRET_AGENT_CONFIG       Override the config.yaml location
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress informational output")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # status
    subparsers.add_parser("status", help="Show status and configuration")

    # create
    create_parser = subparsers.add_parser("create", help="Generate and store a random secret")
    create_parser.add_argument("name", help="Secret name (e.g. API_KEY or prod/API_KEY)")
    create_parser.add_argument("-l", "--length", type=int, default=DEFAULT_LENGTH,
                               help=f"Length (default: {DEFAULT_LENGTH})")
    create_parser.add_argument("-c", "--charset", default="alphanumeric", choices=sorted(CHARSETS),
                               help="Character set (default: alphanumeric)")
    create_parser.add_argument("-f", "--force", action="store_true", help="Overwrite an existing secret")

    # import
    import_parser = subparsers.add_parser("import", help="Store a secret from stdin or hidden input")
    import_parser.add_argument("name", help="Secret name")
    import_parser.add_argument("-r", "--replace", action="store_true", help="Replace an existing secret")
    import_parser.add_argument("--from-file", help="Read value from file")
    import_parser.add_argument("--delete-file", action="store_true", help="Delete source file after reading")

    # list
    list_parser = subparsers.add_parser("list", help="List secret names (safe for agents)")
    list_parser.add_argument("-b", "--bucket", help="Only secrets in this bucket")

    # get
    get_parser = subparsers.add_parser("get", help="Show secret metadata (value only with --unsafe-display)")
    get_parser.add_argument("name", help="Secret name")
    get_parser.add_argument("--unsafe-display", action="store_true",
                            help="Print the value in plaintext (NOT for agent use)")

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a secret")
    delete_parser.add_argument("name", help="Secret name")
    delete_parser.add_argument("--force", action="store_true", help="Skip confirmation")

    # exec
    exec_parser = subparsers.add_parser("exec", help="Run command with secrets (output redacted)")
    exec_parser.add_argument("-e", "--env", dest="env_secrets", action="append", default=[],
                             metavar="SECRET[:VAR]", help="Inject secret as env var (can repeat)")
    exec_parser.add_argument("exec_command", nargs=argparse.REMAINDER,
                             help="Command to run; use {{NAME}} to template secrets in")

    # inject
    inject_parser = subparsers.add_parser("inject", help="Write a secret into a file")
    inject_parser.add_argument("name", help="Secret name")
    inject_parser.add_argument("-f", "--file", required=True, help="Target file")
    inject_parser.add_argument("--placeholder", help="Replace this string in the file with the value")
    inject_parser.add_argument("--env-format", action="store_true",
                               help="Write NAME=value, replacing an existing NAME line")
    inject_parser.add_argument("--export", action="store_true", help="With --env-format, write 'export NAME=value'")

    # setup
    setup_parser = subparsers.add_parser("setup", help="Install agent usage instructions")
    setup_parser.add_argument("--print", action="store_true", help="Print the instructions instead")
    setup_parser.add_argument("--file", help="Instructions file (default: ~/.claude/CLAUDE.md)")

    # env
    env_parser = subparsers.add_parser("env", help="Bulk import/export .env files")
    env_subparsers = env_parser.add_subparsers(dest="env_action")
    env_import = env_subparsers.add_parser("import", help="Read secrets from a .env file")
    env_import.add_argument("-f", "--file", required=True, help="Source .env file")
    env_export = env_subparsers.add_parser("export", help="Write secrets to a .env file")
    env_export.add_argument("-f", "--file", required=True, help="Target .env file")
    env_export.add_argument("names", nargs="*", help="Secrets to export")
    env_export.add_argument("--all", action="store_true", help="Export all secrets")

    return parser


COMMANDS = {
    "status": cmd_status,
    "create": cmd_create,
    "import": cmd_import,
    "list": cmd_list,
    "get": cmd_get,
    "delete": cmd_delete,
    "exec": cmd_exec,
    "inject": cmd_inject,
    "setup": cmd_setup,
}

ENV_COMMANDS = {
    "import": cmd_env_import,
    "export": cmd_env_export,
}


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "env":
        handler = ENV_COMMANDS.get(args.env_action)
        if handler is None:
            parser.parse_args(["env", "--help"])
            return 0
    else:
        handler = COMMANDS[args.command]

    try:
        args.settings = load_settings()
        return handler(args)
    except SecretNotFoundError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        err_console.print("[dim]Use 'secret-agent list' to see stored secrets[/dim]")
        return 1
    except SecretExistsError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1
    except SecretsError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
