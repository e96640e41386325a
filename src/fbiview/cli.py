"""Command-line interface for fbiview."""

import logging
import shlex
from pathlib import Path

import click
import yaml

from . import __version__
from .config import (
    CONFIG_FILENAME,
    config_to_dict,
    create_default_config,
    find_config_file,
    load_config,
)
from .launcher import FbiError, SubprocessLauncher, kill_by_name
from .viewer import Fbi


@click.group()
@click.version_option(version=__version__, prog_name="fbiview")
@click.option(
    "-v", "--verbose", count=True, help="Log what is run (-vv for debug output)"
)
def main(verbose):
    """Show images on the Linux framebuffer with fbi.

    \b
    Quick start:
      fbiview config init           # Create .fbiview.yaml
      fbiview show photo.jpg -t 5   # Show for 5 seconds, then stop
      fbiview show photo.jpg -t 0   # Show until 'fbiview kill'
      fbiview command photo.jpg -a  # Print the command without running it
      fbiview kill                  # Stop every running fbi
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )


def viewer_options(f):
    """Options shared by commands that build an fbi invocation."""
    options = [
        click.argument("image", type=click.Path()),
        click.option(
            "-c",
            "--config",
            "config_path",
            type=click.Path(exists=True),
            help="Config file path",
        ),
        click.option("-T", "--frame-buffer", help="Console / frame buffer to use"),
        click.option("-d", "--device", help="Framebuffer device (default: /dev/fb0)"),
        click.option("-m", "--mode", help="Video mode from /etc/fb.modes"),
        click.option(
            "--status-bar/--no-status-bar",
            default=None,
            help="Show the status bar (hidden by default)",
        ),
        click.option(
            "-t",
            "--display-for",
            type=int,
            help="Seconds to show the image; 0 keeps it up until killed",
        ),
        click.option("-g", "--gamma", is_flag=True, help="Enable gamma correction"),
        click.option("-s", "--scroll-steps", type=int, help="Scroll step in pixels"),
        click.option("-a", "--autozoom", is_flag=True, help="Pick a zoom factor"),
        click.option("--autoup", is_flag=True, help="Autozoom, scaling up only"),
        click.option("--autodown", is_flag=True, help="Autozoom, scaling down only"),
        click.option(
            "-u", "--random", "random_order", is_flag=True, help="Randomize order"
        ),
        click.option(
            "--comments", is_flag=True, help="Show comment tags instead of filename"
        ),
        click.option(
            "-P",
            "--text-threading",
            is_flag=True,
            help="Scroll before advancing, for images of text pages",
        ),
    ]

    for option in reversed(options):
        f = option(f)
    return f


def _build_viewer(
    image,
    config_path,
    frame_buffer,
    device,
    mode,
    status_bar,
    display_for,
    gamma,
    scroll_steps,
    autozoom,
    autoup,
    autodown,
    random_order,
    comments,
    text_threading,
    **config_overrides,
) -> Fbi:
    """Build an Fbi from config plus command-line options."""
    cfg = load_config(
        config_path=Path(config_path) if config_path else None,
        frame_buffer=frame_buffer,
        device=device,
        **config_overrides,
    )
    viewer = Fbi.from_config(cfg)

    if mode:
        viewer.video_mode(mode)
    if status_bar is True:
        viewer.show_status_bar()
    elif status_bar is False:
        viewer.without_status_bar()
    if text_threading:
        viewer.enable_text_threading()
    if display_for is not None:
        viewer.display_for(display_for)
    if gamma:
        viewer.with_gamma_correction()
    if scroll_steps is not None:
        viewer.scroll_steps(scroll_steps)
    if autozoom:
        viewer.with_autozoom()
    if autoup:
        viewer.auto_up()
    if autodown:
        viewer.auto_down()
    if random_order:
        viewer.in_random_order()
    if comments:
        viewer.with_comments()

    return viewer.image(image)


@main.command()
@viewer_options
@click.option(
    "--by-name",
    is_flag=True,
    help="Stop with killall instead of only the launched process",
)
@click.option("--check", is_flag=True, help="Fail if the viewer reports an error")
def show(by_name, check, **options):
    """Display IMAGE with fbi.

    Blocks for the display duration, then stops the viewer. With
    --display-for 0 the viewer keeps running after this command exits.

    \b
    Examples:
      fbiview show photo.jpg
      fbiview show photo.jpg -t 30 -a --status-bar
      fbiview show slides/ -t 0 -u
    """
    try:
        viewer = _build_viewer(kill_by_name=True if by_name else None, **options)
        process = viewer.display(check=check)
    except FbiError as e:
        raise click.ClickException(str(e))

    if viewer.duration > 0:
        click.echo(f"Displayed {viewer.target} for {viewer.duration}s")
    else:
        click.echo(f"Displaying {viewer.target} (pid {process.pid})")
        click.echo("Run 'fbiview kill' to stop it.")


@main.command()
@viewer_options
@click.option(
    "--legacy",
    is_flag=True,
    help="Print the single-string form with compiled options",
)
def command(legacy, **options):
    """Print the fbi command for IMAGE without running it."""
    try:
        viewer = _build_viewer(**options)
        if legacy:
            click.echo(viewer.command_line())
        else:
            click.echo(shlex.join([*viewer.launcher.elevate, *viewer.command()]))
    except FbiError as e:
        raise click.ClickException(str(e))


@main.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def kill(config_path):
    """Stop every running fbi process (killall)."""
    try:
        cfg = load_config(config_path=Path(config_path) if config_path else None)
        launcher = SubprocessLauncher(
            elevate=cfg.elevate, quiet=cfg.quiet, kill_timeout=cfg.kill_timeout
        )
        result = kill_by_name(launcher, cfg.binary)
    except FbiError as e:
        raise click.ClickException(str(e))

    if not result.ok:
        raise click.ClickException(
            f"No {cfg.binary} process stopped (killall exited with {result.returncode})"
        )
    click.echo(f"Stopped all {cfg.binary} processes.")


@main.group()
def config():
    """Manage fbiview configuration."""
    pass


@config.command("init")
@click.option(
    "-d",
    "--directory",
    type=click.Path(),
    default=".",
    help="Directory to create config in",
)
def config_init(directory):
    """Create a new .fbiview.yaml configuration file."""
    try:
        config_path = create_default_config(Path(directory))
        click.echo(f"Created: {config_path}")
        click.echo("\nNext steps:")
        click.echo("  1. Check the device and elevate settings in .fbiview.yaml")
        click.echo("  2. Run: fbiview show <image>")
    except FbiError as e:
        raise click.ClickException(str(e))


@config.command("show")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def config_show(config_path):
    """Display current configuration.

    Shows merged configuration from file, environment, and defaults.
    """
    try:
        cfg = load_config(config_path=Path(config_path) if config_path else None)
        data = config_to_dict(cfg)
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
    except FbiError as e:
        raise click.ClickException(str(e))


@config.command("where")
@click.option(
    "-d",
    "--directory",
    type=click.Path(exists=True),
    help="Directory to search from",
)
def config_where(directory):
    """Show which config file would be used.

    Searches up the directory tree for .fbiview.yaml.
    """
    start = Path(directory) if directory else Path.cwd()
    config_path = find_config_file(start)

    if config_path:
        click.echo(f"Config file: {config_path}")
    else:
        click.echo(f"No {CONFIG_FILENAME} found (searched from {start})")


if __name__ == "__main__":
    main()
