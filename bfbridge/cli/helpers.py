#!/usr/bin/env python3

# helpers.py - bfbridge Click CLI helper function library
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

from click import echo as click_echo
from os import environ, getpid, get_terminal_size
from sys import argv
from syslog import syslog, openlog, closelog, LOG_AUTH


VERSION = "1.0.0"

try:
    # Define the content width to be the maximum terminal size
    MAX_CONTENT_WIDTH = get_terminal_size().columns - 1
except OSError:
    # Fall back to 80 columns if "Inappropriate ioctl for device"
    MAX_CONTENT_WIDTH = 80


def echo(config, message, newline=True, stderr=False):
    """
    Output a message with click.echo respecting our configuration
    """

    if config.get("colour", False):
        colour = True
    else:
        colour = None

    click_echo(message=message, color=colour, nl=newline, err=stderr)


def audit():
    """
    Log an audit message to the local syslog AUTH facility; this tool changes
    host routing and firewall state
    """

    args = argv
    pid = getpid()

    openlog(facility=LOG_AUTH, ident=f"{args[0].split('/')[-1]}[{pid}]")
    syslog(
        f"""bfbridge audit: command "{' '.join(args)}" by user {environ.get('SUDO_USER', environ.get('USER', None))}"""
    )
    closelog()


def build_overrides(**kwargs):
    """
    Map CLI option values onto configuration keys, dropping unset ones
    """

    return {key: value for key, value in kwargs.items() if value is not None}
