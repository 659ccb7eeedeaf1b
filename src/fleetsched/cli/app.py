"""Main CLI application."""

import typer

from fleetsched.cli.commands import config, cron, database, history, serve, task

app = typer.Typer(
    name="fleetsched",
    help="fleetsched - scheduled commands for server fleets",
    no_args_is_help=True,
)

serve.register(app)
config.register(app)
database.register(app)
cron.register(app)
task.register(app)
history.register(app)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
