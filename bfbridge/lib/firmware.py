#!/usr/bin/env python3

# firmware.py - bfbridge optional BFB image installation
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

import os

import bfbridge.lib.common as common

from bfbridge.lib.common import FirmwareError


BFB_INSTALL = "bfb-install"
RSHIM_CHANNEL = "rshim0"


def flash_firmware(bfb_path, logger, rshim=RSHIM_CHANNEL):
    """
    Write a BFB image to the BlueField through rshim.

    The BlueField reboots afterwards; it is not probed again here.
    """

    if not common.has_command(BFB_INSTALL):
        raise FirmwareError(f"{BFB_INSTALL} not found")
    if not os.path.isfile(bfb_path):
        raise FirmwareError(f"BFB image not found: {bfb_path}")

    logger.out(f"Running {BFB_INSTALL}: {bfb_path}", state="i")
    command = [BFB_INSTALL, "--bfb", bfb_path, "--rshim", rshim]
    logger.out(f"$ {' '.join(command)}", state="d")
    retcode, stdout, stderr = common.run_os_command(command)
    for line in stdout.splitlines():
        logger.out(line, prefix=BFB_INSTALL)
    if retcode != 0:
        raise FirmwareError(f"{BFB_INSTALL} failed with code {retcode}: {stderr.strip()}")

    logger.out(
        f"{BFB_INSTALL} completed (BF may reboot); if SSH fails, re-run with --validate-only once it is back",
        state="o",
    )
