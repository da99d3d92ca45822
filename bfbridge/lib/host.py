#!/usr/bin/env python3

# host.py - bfbridge host network configuration
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

from collections import namedtuple

import bfbridge.lib.common as common

from bfbridge.lib.common import HostCommandError, MissingToolError
from bfbridge.lib.plan import Step


HOST_PACKAGES = ["iptables", "dnsmasq"]


###############################################################################
# Firewall rules
###############################################################################


class FirewallRule(namedtuple("FirewallRule", ["family", "table", "chain", "spec"])):
    """
    One iptables/ip6tables rule; spec is the argument list after the chain
    """

    __slots__ = ()

    @property
    def binary(self):
        return "iptables" if self.family == 4 else "ip6tables"

    def command(self, action):
        command = [self.binary]
        if self.table != "filter":
            command += ["-t", self.table]
        return command + [action, self.chain] + list(self.spec)

    def __str__(self):
        return " ".join(self.command("-A"))


def firewall_rules(config, family, egress_if):
    link_if = config.link_if
    if family == 4:
        source = config.masquerade_v4
    else:
        source = config.prefix_v6

    return [
        FirewallRule(
            family, "filter", "FORWARD", ["-i", link_if, "-o", egress_if, "-j", "ACCEPT"]
        ),
        FirewallRule(
            family,
            "filter",
            "FORWARD",
            [
                "-i",
                egress_if,
                "-o",
                link_if,
                "-m",
                "state",
                "--state",
                "ESTABLISHED,RELATED",
                "-j",
                "ACCEPT",
            ],
        ),
        FirewallRule(
            family,
            "nat",
            "POSTROUTING",
            ["-s", source, "-o", egress_if, "-j", "MASQUERADE"],
        ),
    ]


def firewall_rule_present(rule):
    retcode, _, _ = common.run_os_command(rule.command("-C"))
    return retcode == 0


def add_firewall_rule(rule, logger=None):
    command = rule.command("-A")
    if logger is not None:
        logger.out(f"$ {' '.join(command)}", state="d")
    retcode, _, stderr = common.run_os_command(command)
    if retcode != 0:
        raise HostCommandError(" ".join(command), retcode, stderr)


###############################################################################
# Interface state
###############################################################################


def link_is_up(link_if):
    retcode, stdout, _ = common.run_os_command(f"ip link show dev {link_if}")
    if retcode != 0:
        return False
    first_line = stdout.splitlines()[0] if stdout else ""
    try:
        flags = first_line.split("<", 1)[1].split(">", 1)[0].split(",")
    except IndexError:
        return False
    return "UP" in flags


def interface_addresses(link_if, family):
    """
    Return the list of addresses (without prefix) assigned to an interface
    """

    retcode, stdout, _ = common.run_os_command(f"ip -{family} addr show dev {link_if}")
    if retcode != 0:
        return list()

    keyword = "inet" if family == 4 else "inet6"
    addresses = list()
    for line in stdout.splitlines():
        tokens = line.split()
        if len(tokens) >= 2 and tokens[0] == keyword:
            addresses.append(tokens[1].split("/")[0])
    return addresses


def address_present(link_if, family, address):
    return address in interface_addresses(link_if, family)


def route_present(family, destination, link_if):
    retcode, stdout, _ = common.run_os_command(
        f"ip -{family} route show {destination} dev {link_if}"
    )
    return retcode == 0 and stdout.strip() != ""


def sysctl_is(key, value):
    return common.sysctl_get(key) == str(value)


###############################################################################
# Preflight
###############################################################################


def install_packages(logger):
    logger.out(
        f'Host: installing required packages ({", ".join(HOST_PACKAGES)})', state="i"
    )
    environment = dict(os.environ)
    environment["DEBIAN_FRONTEND"] = "noninteractive"
    command = ["apt-get", "install", "-y"] + HOST_PACKAGES
    logger.out(f"$ {' '.join(command)}", state="d")
    retcode, _, stderr = common.run_os_command(command, environment=environment)
    if retcode != 0:
        raise HostCommandError(" ".join(command), retcode, stderr)


def required_tools(config):
    tools = ["ip", "sysctl", "systemctl", "dnsmasq"]
    if config.use_ipv4:
        tools.append("iptables")
    if config.use_ipv6:
        tools.append("ip6tables")
    return tools


def check_required_tools(config):
    for tool in required_tools(config):
        if not common.has_command(tool):
            raise MissingToolError(f"Missing '{tool}'")


def start_rshim(logger):
    # The rshim driver may be built in or run as a service; neither is required
    for command in ["modprobe rshim", "systemctl start rshim"]:
        logger.out(f"$ {command}", state="d")
        retcode, _, stderr = common.run_os_command(command)
        if retcode != 0:
            logger.out(f"{command}: {stderr.strip()} (ignored)", state="d")


###############################################################################
# Steps
###############################################################################


def _run(command, logger):
    def apply():
        common.run_required_command(command, logger=logger)

    return apply


def address_steps(config, logger):
    steps = list()
    link_if = config.link_if

    if config.use_ipv4:
        steps.append(
            Step(
                "address-v4",
                f"Host: assign IPv4 {config.host_v4} on {link_if}",
                _run(f"ip addr add {config.host_v4} dev {link_if}", logger),
                check=lambda: address_present(link_if, 4, config.host_v4_ip),
            )
        )

    if config.use_ipv6:
        steps.append(
            Step(
                "address-v6",
                f"Host: assign IPv6 {config.host_v6} on {link_if}",
                _run(f"ip -6 addr add {config.host_v6} dev {link_if}", logger),
                check=lambda: address_present(link_if, 6, config.host_v6_ip),
            )
        )

    return steps


def forwarding_steps(config, family, egress_if, logger):
    link_if = config.link_if
    steps = list()

    if family == 6:
        sysctls = [
            ("forwarding-v6", "net.ipv6.conf.all.forwarding", False),
            (f"forwarding-v6-{link_if}", f"net.ipv6.conf.{link_if}.forwarding", False),
            (f"forwarding-v6-{egress_if}", f"net.ipv6.conf.{egress_if}.forwarding", True),
        ]
    else:
        sysctls = [
            ("forwarding-v4", "net.ipv4.ip_forward", False),
            (f"forwarding-v4-{link_if}", f"net.ipv4.conf.{link_if}.forwarding", False),
        ]

    for name, key, best_effort in sysctls:
        steps.append(
            Step(
                name,
                f"Host: enable {key}",
                (lambda key=key: common.sysctl_set(key, 1, logger=logger)),
                check=(lambda key=key: sysctl_is(key, 1)),
                best_effort=best_effort,
            )
        )

    if family == 6:
        steps.append(
            Step(
                "route-v6",
                f"Host: ensure route for {config.prefix_v6} via {link_if}",
                _run(f"ip -6 route add {config.prefix_v6} dev {link_if}", logger),
                check=lambda: route_present(6, config.prefix_v6, link_if),
                best_effort=True,
            )
        )

    return steps


def firewall_steps(config, family, egress_if, logger):
    names = ["forward-out", "forward-in", "masquerade"]
    steps = list()
    for name, rule in zip(names, firewall_rules(config, family, egress_if)):
        steps.append(
            Step(
                f"{name}-v{family}",
                f"Host: {rule.binary} {rule.table} {rule.chain} {' '.join(rule.spec)}",
                (lambda rule=rule: add_firewall_rule(rule, logger=logger)),
                check=(lambda rule=rule: firewall_rule_present(rule)),
            )
        )
    return steps


def build_host_steps(config, egress, logger):
    """
    Return the ordered host configuration steps for the active families
    """

    link_if = config.link_if

    steps = [
        Step(
            "rshim",
            "Host: ensure rshim is running (best-effort)",
            lambda: start_rshim(logger),
            best_effort=True,
        ),
        Step(
            "link-up",
            f"Host: bring up {link_if}",
            _run(f"ip link set {link_if} up", logger),
            check=lambda: link_is_up(link_if),
            best_effort=True,
        ),
    ]

    steps += address_steps(config, logger)

    for family in config.families:
        steps += forwarding_steps(config, family, egress[family], logger)
        steps += firewall_steps(config, family, egress[family], logger)

    return steps
