import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import daemon
from .config import Config, ConfigError
from .constants import APP_NAME
from .github import DiscoveryError, GitHubClient
from .refs import ChangeKind, DiffError

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def list_repos(config: Config) -> None:
    """Prints every discovered repository and whether it is ignored."""
    config.require_token()
    with console.status("Discovering repositories...", spinner="dots"):
        repos = GitHubClient(config.token).list_repositories()

    table = Table(title=f"Watched Repositories ({len(repos)})")
    table.add_column("Repository", style="cyan")
    table.add_column("Mirror", style="dim")
    table.add_column("Status")

    for repo in sorted(repos):
        if repo in config.ignore:
            status = "[yellow]ignored[/yellow]"
        elif config.mirror_path(repo).exists():
            status = "[green]mirrored[/green]"
        else:
            status = "[blue]new[/blue]"
        table.add_row(repo, str(config.mirror_path(repo)), status)

    console.print(table)


def show_rules(config: Config) -> None:
    """Prints the configured hook rules, longest prefix first per kind."""
    table = Table(title="Hook Rules")
    table.add_column("Event", style="bold")
    table.add_column("Prefix", style="cyan")
    table.add_column("Command")

    for kind in ChangeKind:
        rules = config.rules.for_kind(kind)
        for prefix in sorted(rules, key=len, reverse=True):
            table.add_row(kind.value, prefix or "[dim](any)[/dim]", rules[prefix])

    if not table.row_count:
        console.print("[yellow]No hook rules configured.[/yellow]")
        return
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for the github-mirror CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Mirror your GitHub repositories and run hooks on ref changes.",
    )

    # Global flags (override the config file and environment).
    parser.add_argument("--config", type=Path, help="Path to the TOML config file")
    parser.add_argument("--token", help="GitHub token")
    parser.add_argument("--username", help="GitHub username sent with the token")
    parser.add_argument("--basepath", help="Directory holding the local mirrors")
    parser.add_argument("--workers", type=int, help="Number of workers (default: 5)")
    parser.add_argument(
        "--loglevel", type=int, help="Log level, 0 is silent, 3 is verbose"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Sync every repository once (default)")
    subparsers.add_parser("list", help="List discovered repositories")
    subparsers.add_parser("rules", help="Show the configured hook rules")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the github-mirror CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {
        "token": args.token,
        "username": args.username,
        "basepath": args.basepath,
        "workers": args.workers,
        "loglevel": args.loglevel,
    }

    try:
        config = Config.load(args.config, overrides)
        daemon.setup_logging(config.loglevel)

        if args.command == "list":
            list_repos(config)
        elif args.command == "rules":
            show_rules(config)
        else:
            daemon.main(config)
    except (ConfigError, DiscoveryError, DiffError) as e:
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
