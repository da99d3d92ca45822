#!/usr/bin/env python3

# dns.py - bfbridge DNS forwarder (dnsmasq) configuration
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

from bfbridge.lib.plan import Step


DNSMASQ_CONF = "/etc/dnsmasq.d/bf3-rshim.conf"
DNSMASQ_SERVICE = "dnsmasq"
UPSTREAM_RESOLVER = "127.0.0.53"


def render_dnsmasq_configuration(config):
    """
    Render the forwarder configuration for the link interface
    """

    lines = [
        "# Managed by bfbridge; regenerated on every run",
        f"interface={config.link_if}",
        "bind-interfaces",
    ]
    if config.use_ipv4:
        lines.append(f"listen-address={config.host_v4_ip}")
    if config.use_ipv6:
        lines.append(f"listen-address={config.host_v6_ip}")
    lines += [
        f"server={UPSTREAM_RESOLVER}",
        "cache-size=1000",
        "neg-ttl=60",
    ]

    return "\n".join(lines) + "\n"


def write_dnsmasq_configuration(config, logger, conf_file=DNSMASQ_CONF):
    content = render_dnsmasq_configuration(config)

    try:
        with open(conf_file, "r") as cfh:
            changed = cfh.read() != content
    except FileNotFoundError:
        changed = True

    os.makedirs(os.path.dirname(conf_file), exist_ok=True)
    with open(conf_file, "w") as cfh:
        cfh.write(content)
    logger.out(f"Wrote {conf_file}", state="d")

    common.run_required_command(f"systemctl restart {DNSMASQ_SERVICE}", logger=logger)

    retcode, _, stderr = common.run_os_command(f"systemctl enable {DNSMASQ_SERVICE}")
    if retcode != 0:
        logger.out(f"Failed to enable {DNSMASQ_SERVICE}: {stderr.strip()}", state="w")

    return changed


def build_dns_steps(config, logger, conf_file=DNSMASQ_CONF):
    return [
        Step(
            "dns-forwarder",
            f"Host: configure dnsmasq on {config.link_if} to forward to {UPSTREAM_RESOLVER}",
            lambda: write_dnsmasq_configuration(config, logger, conf_file=conf_file),
        )
    ]
