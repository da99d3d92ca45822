#!/usr/bin/env python3

# cli.py - bfbridge Click CLI main library
# Part of the bfbridge host-to-BlueField network bootstrap tool
#
#    Copyright (C) 2018-2024 Joshua M. Boniface <joshua@boniface.me>
#
#    This program is free software: you can redistribute it and/or modify
#    it under the terms of the GNU General Public License as published by
#    the Free Software Foundation, version 3.
#
#    This program is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#    GNU General Public License for more details.
#
#    You should have received a copy of the GNU General Public License
#    along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
###############################################################################

from colorama import Fore
from sys import exit

from bfbridge.cli.helpers import MAX_CONTENT_WIDTH, VERSION, audit, build_overrides, echo
from bfbridge.cli.formatters import cli_report_format_pretty

import bfbridge.lib.bootstrap
import bfbridge.lib.config
import bfbridge.lib.log

from bfbridge.lib.common import BridgeError, ConfigError

import click


###############################################################################
# Context and globals
###############################################################################


CONTEXT_SETTINGS = dict(
    help_option_names=["-h", "--help"], max_content_width=MAX_CONTENT_WIDTH
)

CLI_CONFIG = dict()


###############################################################################
# Local helper functions
###############################################################################


def finish(success=True, data=None, formatter=None):
    """
    Output data to the terminal and exit 0 on success or 1 on failure
    """

    if data is not None:
        if formatter is not None and success:
            echo(CLI_CONFIG, formatter(CLI_CONFIG, data))
        else:
            echo(CLI_CONFIG, data)

    if success:
        exit(0)
    else:
        exit(1)


def version(ctx, param, value):
    """
    Show the version of the CLI client
    """

    if not value or ctx.resilient_parsing:
        return

    echo(CLI_CONFIG, f"bfbridge host-to-BlueField bootstrap version {VERSION}")
    ctx.exit()


###############################################################################
# > bfbridge
###############################################################################
@click.command(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--mode",
    "mode",
    default=None,
    metavar="<ipv6|ipv4|dual>",
    help="Address families to bridge (default: ipv6).",
)
@click.option(
    "--host-if",
    "link_if",
    default=None,
    metavar="<ifname>",
    help="Host tmfifo interface (default: tmfifo_net0).",
)
@click.option(
    "--host-v4",
    "host_v4",
    default=None,
    metavar="<addr/cidr>",
    help="Host IPv4 on tmfifo (default: 192.168.100.1/24).",
)
@click.option(
    "--bf-v4",
    "peer_v4",
    default=None,
    metavar="<addr/cidr>",
    help="BF IPv4 on tmfifo (default: 192.168.100.2/24).",
)
@click.option(
    "--host-v6",
    "host_v6",
    default=None,
    metavar="<addr/cidr>",
    help="Host IPv6 on tmfifo (default: fd00:bf3::1/64).",
)
@click.option(
    "--prefix-v6",
    "prefix_v6",
    default=None,
    metavar="<cidr>",
    help="IPv6 prefix (default: fd00:bf3::/64).",
)
@click.option(
    "--bf-v6",
    "peer_v6",
    default=None,
    metavar="<addr/cidr>",
    help="BF IPv6 on tmfifo (default: fd00:bf3::2/64).",
)
@click.option(
    "--bf-ssh-user",
    "peer_ssh_user",
    default=None,
    metavar="<user>",
    help="BF SSH user (default: ubuntu).",
)
@click.option(
    "--bf-ssh-host",
    "peer_ssh_host",
    default=None,
    metavar="<host>",
    help="BF SSH host (default: 192.168.100.2).",
)
@click.option(
    "--bfb",
    "bfb_path",
    default=None,
    metavar="<path>",
    help="Run bfb-install with this .bfb image before configuring the BF.",
)
@click.option(
    "--no-install",
    "no_install",
    is_flag=True,
    default=False,
    help="Skip apt installs on host.",
)
@click.option(
    "--ssh-key",
    "ssh_key",
    default=None,
    metavar="<path>",
    help="Private key for the BF (default: ~$SUDO_USER/.ssh/id_ed25519).",
)
@click.option(
    "--config",
    "config_file",
    envvar="BFBRIDGE_CONFIG_FILE",
    default=None,
    metavar="<path>",
    help="YAML configuration file providing defaults for any option.",
)
@click.option(
    "--command-timeout",
    "command_timeout",
    default=None,
    type=float,
    metavar="<seconds>",
    help="Deadline for each remote command once connected (default: none).",
)
@click.option(
    "--dry-run",
    "dry_run",
    is_flag=True,
    default=False,
    help="Check every step and report what would change without applying it.",
)
@click.option(
    "--resume-from",
    "resume_from",
    default=None,
    metavar="<step>",
    help="Skip host steps before the named step.",
)
@click.option(
    "--validate-only",
    "validate_only",
    is_flag=True,
    default=False,
    help="Only run the SSH preflight and the validation probes.",
)
@click.option(
    "--log-file",
    "log_file",
    default=None,
    metavar="<path>",
    help="Also append log output to this file.",
)
@click.option(
    "--no-colour",
    "--no-color",
    "no_colour",
    is_flag=True,
    default=False,
    help="Disable colourized output.",
)
@click.option(
    "-v",
    "--debug",
    "debug",
    envvar="BFBRIDGE_DEBUG",
    is_flag=True,
    default=False,
    help="Show every executed command.",
)
@click.option(
    "--version",
    is_flag=True,
    callback=version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
def cli(
    mode,
    link_if,
    host_v4,
    peer_v4,
    host_v6,
    prefix_v6,
    peer_v6,
    peer_ssh_user,
    peer_ssh_host,
    bfb_path,
    no_install,
    ssh_key,
    config_file,
    command_timeout,
    dry_run,
    resume_from,
    validate_only,
    log_file,
    no_colour,
    debug,
):
    """
    Bootstrap NAT, forwarding and DNS between this host and a BlueField reached over rshim.

    Must be run as root (use sudo). SSH to the BlueField uses only the invoking user's key
    ($SUDO_USER's ~/.ssh/id_ed25519 unless "--ssh-key" is given); install it first with:

      ssh-copy-id -i ~/.ssh/id_ed25519 ubuntu@192.168.100.2

    Environment variables:

      "BFBRIDGE_CONFIG_FILE": YAML configuration file instead of using --config

      "BFBRIDGE_DEBUG": Show every executed command instead of using --debug/-v
    """

    CLI_CONFIG["colour"] = not no_colour

    overrides = build_overrides(
        mode=mode,
        link_if=link_if,
        host_v4=host_v4,
        peer_v4=peer_v4,
        host_v6=host_v6,
        prefix_v6=prefix_v6,
        peer_v6=peer_v6,
        peer_ssh_user=peer_ssh_user,
        peer_ssh_host=peer_ssh_host,
        bfb_path=bfb_path,
        install_packages=False if no_install else None,
        ssh_key=ssh_key,
        command_timeout=command_timeout,
    )

    logger = None
    try:
        config = bfbridge.lib.config.get_configuration(
            overrides, config_file=config_file
        )

        try:
            logger = bfbridge.lib.log.Logger(
                {
                    "debug": debug,
                    "log_colours": not no_colour,
                    "file_logging": log_file is not None,
                    "log_file": log_file,
                }
            )
        except OSError as e:
            raise ConfigError(f'Cannot open log file "{log_file}": {e.strerror}')

        if not dry_run:
            audit()

        report = bfbridge.lib.bootstrap.bootstrap(
            config,
            logger,
            dry_run=dry_run,
            resume_from=resume_from,
            validate_only=validate_only,
        )
    except BridgeError as e:
        if CLI_CONFIG["colour"]:
            echo(CLI_CONFIG, Fore.RED + str(e) + Fore.RESET, stderr=True)
        else:
            echo(CLI_CONFIG, str(e), stderr=True)
        finish(False)
    finally:
        if logger is not None:
            logger.terminate()

    finish(True, report, cli_report_format_pretty)


if __name__ == "__main__":
    cli()
