#!/usr/bin/env python3

# validation.py - bfbridge post-configuration probes
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

from collections import namedtuple

import bfbridge.lib.common as common

from bfbridge.lib.common import RemoteExecError, ValidationWarning
from bfbridge.lib.dns import DNSMASQ_SERVICE
from bfbridge.lib.peer import DNS_CHECK_NAME


PROBE_TARGETS = {
    4: "1.1.1.1",
    6: "2606:4700:4700::1111",
}
PROBE_URL = "https://ifconfig.co"
MAX_OUTPUT_LINES = 160


Probe = namedtuple("Probe", ["name", "target", "command"])


def peer_probes(config):
    probes = [
        Probe("BF link addresses", "peer", f"ip addr show {config.link_if}"),
    ]

    for family in config.families:
        address = PROBE_TARGETS[family]
        probes += [
            Probe(f"BF IPv{family} route", "peer", f"ip -{family} route get {address}"),
            Probe(f"BF IPv{family} ping", "peer", f"ping -{family} -c 2 {address}"),
            Probe(f"BF IPv{family} HTTP", "peer", f"curl -{family} -sS {PROBE_URL}"),
        ]

    probes.append(Probe("BF DNS", "peer", f"getent ahosts {DNS_CHECK_NAME}"))

    return probes


def host_probes(config):
    probes = [
        Probe(
            "Host dnsmasq status",
            "host",
            f"systemctl --no-pager --full status {DNSMASQ_SERVICE}",
        ),
    ]

    for family in config.families:
        binary = "iptables" if family == 4 else "ip6tables"
        probes.append(
            Probe(f"Host {binary} NAT counters", "host", f"{binary} -t nat -L -v -n")
        )

    return probes


def run_probe(probe, session, cancel=None):
    """
    Execute one probe, raising ValidationWarning if it did not succeed
    """

    if probe.target == "peer":
        try:
            retcode, stdout, stderr = session.run(
                probe.command, description=probe.name, cancel=cancel
            )
        except RemoteExecError as e:
            raise ValidationWarning(probe.name, str(e))
    else:
        retcode, stdout, stderr = common.run_os_command(probe.command)

    if retcode != 0:
        raise ValidationWarning(
            probe.name, stderr.strip() or f"exited with code {retcode}"
        )

    return stdout


def run_validation(config, session, logger, cancel=None):
    """
    Run every probe; failures are logged and recorded, never raised
    """

    results = list()
    for probe in peer_probes(config) + host_probes(config):
        logger.out(f"{probe.name}: {probe.command}", state="i", prefix="validate")
        try:
            output = run_probe(probe, session, cancel=cancel)
        except ValidationWarning as w:
            logger.out(str(w), state="w", prefix="validate")
            results.append(
                {
                    "name": probe.name,
                    "target": probe.target,
                    "command": probe.command,
                    "ok": False,
                    "detail": w.detail,
                }
            )
            continue

        for line in output.splitlines()[:MAX_OUTPUT_LINES]:
            logger.out(line)
        results.append(
            {
                "name": probe.name,
                "target": probe.target,
                "command": probe.command,
                "ok": True,
                "detail": "",
            }
        )

    return results
