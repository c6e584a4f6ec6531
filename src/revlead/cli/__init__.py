"""CLI commands for revlead.

Provides command-line interface using Typer:
- revlead run: Join a leader election
- revlead status: Show the current lock record
- revlead set-default: Designate the default revision

Usage:
    revlead --help
    revlead run --name pod-1 --revision v2
    revlead set-default v2
"""

import typer

from revlead.cli.run_cmd import app as run_app
from revlead.cli.status_cmd import default_app, status_app

# Main CLI application
app = typer.Typer(
    name="revlead",
    help="revlead: revision-aware leader election",
    no_args_is_help=True,
)

app.add_typer(run_app, name="run")
app.add_typer(status_app, name="status")
app.add_typer(default_app, name="set-default")


@app.callback()
def callback() -> None:
    """revlead: revision-aware leader election."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
