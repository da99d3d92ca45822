#!/usr/bin/env python3

# peer.py - bfbridge BlueField-side network configuration payload
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

from collections import OrderedDict
from re import match as re_match
from shlex import quote as shlex_quote

from bfbridge.lib.common import RemoteExecError


ROUTE_METRIC = 10
DNS_CHECK_NAME = "linux.mellanox.com"


# The fixed program run on the BlueField. It only ever reads the parameters
# defined in the payload header; nothing else is interpolated into it.
PEER_PROGRAM = r"""
SUDO="sudo -n"

echo "Bring up ${BF_LINK_IF}"
${SUDO} ip link set "${BF_LINK_IF}" up || true

has_address() {
    ip "-$1" -o addr show dev "${BF_LINK_IF}" | awk '{print $4}' | cut -d/ -f1 | grep -qxF "$2"
}

if [[ "${USE_V4}" == "1" ]]; then
    echo "Ensure IPv4 ${BF_V4_ADDR} on ${BF_LINK_IF}"
    if ! has_address 4 "${BF_V4_IP}"; then
        ${SUDO} ip addr add "${BF_V4_ADDR}" dev "${BF_LINK_IF}"
    fi

    echo "Set IPv4 default route via ${HOST_V4_IP}"
    while ${SUDO} ip -4 route del default 2>/dev/null; do :; done
    ${SUDO} ip -4 route add default via "${HOST_V4_IP}" dev "${BF_LINK_IF}" metric "${ROUTE_METRIC}"
fi

if [[ "${USE_V6}" == "1" ]]; then
    echo "Detect interfaces that provide RA default routes (if any)"
    RA_IFS=$(ip -6 route show default proto ra 2>/dev/null | awk '{for(i=1;i<=NF;i++) if($i=="dev") print $(i+1)}' | sort -u | tr '\n' ' ')
    echo "RA default-route interfaces detected: ${RA_IFS:-<none>}"

    echo "Ensure IPv6 ${BF_V6_ADDR} on ${BF_LINK_IF}"
    if ! has_address 6 "${BF_V6_IP}"; then
        ${SUDO} ip -6 addr add "${BF_V6_ADDR}" dev "${BF_LINK_IF}"
    fi

    echo "Disable accept_ra globally"
    ${SUDO} sysctl -w net.ipv6.conf.all.accept_ra=0 >/dev/null || true

    echo "Disable accept_ra on RA default-route interfaces"
    for IF in ${RA_IFS}; do
        if ip link show "${IF}" >/dev/null 2>&1; then
            ${SUDO} sysctl -w "net.ipv6.conf.${IF}.accept_ra=0" >/dev/null || true
            echo "accept_ra=0 on ${IF}"
        fi
    done

    echo "Remove RA-learned IPv6 default route(s)"
    while ${SUDO} ip -6 route del default proto ra 2>/dev/null; do :; done

    echo "Set IPv6 default route via ${HOST_V6_IP}"
    while ${SUDO} ip -6 route del default 2>/dev/null; do :; done
    ${SUDO} ip -6 route add default via "${HOST_V6_IP}" dev "${BF_LINK_IF}" metric "${ROUTE_METRIC}"
fi

echo "Set DNS to host"
printf '%s\n' "${RESOLV_CONTENT}" | ${SUDO} tee /etc/resolv.conf >/dev/null

echo "Routes now:"
ip route || true
ip -6 route || true

echo "DNS sanity check:"
getent ahosts "${DNS_CHECK_NAME}" | head -n 5 || true
"""


def render_resolv_content(config):
    """
    Nameserver lines for the peer resolver file, one per active family
    """

    lines = list()
    if config.use_ipv6:
        lines.append(f"nameserver {config.host_v6_ip}")
    if config.use_ipv4:
        lines.append(f"nameserver {config.host_v4_ip}")
    return "\n".join(lines)


def build_parameters(config):
    return OrderedDict(
        [
            ("BF_LINK_IF", config.link_if),
            ("USE_V4", "1" if config.use_ipv4 else "0"),
            ("USE_V6", "1" if config.use_ipv6 else "0"),
            ("BF_V4_ADDR", config.peer_v4),
            ("BF_V4_IP", config.peer_v4_ip),
            ("HOST_V4_IP", config.host_v4_ip),
            ("BF_V6_ADDR", config.peer_v6),
            ("BF_V6_IP", config.peer_v6_ip),
            ("HOST_V6_IP", config.host_v6_ip),
            ("ROUTE_METRIC", str(ROUTE_METRIC)),
            ("RESOLV_CONTENT", render_resolv_content(config)),
            ("DNS_CHECK_NAME", DNS_CHECK_NAME),
        ]
    )


def render_payload(parameters):
    lines = list()
    for name, value in parameters.items():
        if not re_match(r"^[A-Z][A-Z0-9_]*$", name):
            raise ValueError(f'Invalid payload parameter name "{name}"')
        lines.append(f"{name}={shlex_quote(str(value))}")
    return "\n".join(lines)


def build_peer_script(config):
    """
    Assemble the complete script: strict mode, the quoted parameters, then
    the fixed program
    """

    return "\n".join(
        [
            "set -euo pipefail",
            render_payload(build_parameters(config)),
            PEER_PROGRAM.lstrip("\n"),
        ]
    )


def configure_peer(session, config, logger, cancel=None):
    logger.out(
        f"BlueField: configure networking (mode={config.mode}) using SSH keys (no passwords)",
        state="i",
    )

    result = session.run_script(
        build_peer_script(config),
        description="BlueField network configuration",
        cancel=cancel,
        on_line=lambda line: logger.out(line, state="i", prefix="BF"),
    )
    if result.retcode != 0:
        raise RemoteExecError(
            "BlueField network configuration", result.retcode, result.stderr
        )

    return result
