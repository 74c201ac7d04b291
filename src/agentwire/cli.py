"""Root CLI group and version flag."""

import signal

import click

# Keep a closed stdout pipe from killing the process mid-echo.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from agentwire import __version__
from agentwire.commands.init import init
from agentwire.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="agentwire")
def cli() -> None:
    """agentwire — drive an agent CLI over its stream-json control protocol."""


cli.add_command(init)
cli.add_command(run)
