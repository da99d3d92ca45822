#!/usr/bin/env python3

# config.py - bfbridge configuration parsing and host capability checks
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
import pwd
import yaml

from dataclasses import dataclass, fields
from ipaddress import ip_interface, ip_network
from typing import Optional

import bfbridge.lib.common as common

from bfbridge.lib.common import (
    ConfigError,
    CredentialError,
    InvalidModeError,
    MalformedConfigurationError,
    MissingKeyError,
    NoRouteError,
    PrivilegeError,
)


MODES = ("ipv4", "ipv6", "dual")

CONFIG_FILE_ENV = "BFBRIDGE_CONFIG_FILE"

DEFAULT_SSH_KEY_NAME = ".ssh/id_ed25519"

DEFAULTS = {
    "mode": "ipv6",
    "link_if": "tmfifo_net0",
    "host_v4": "192.168.100.1/24",
    "peer_v4": "192.168.100.2/24",
    "prefix_v6": "fd00:bf3::/64",
    "host_v6": "fd00:bf3::1/64",
    "peer_v6": "fd00:bf3::2/64",
    "peer_ssh_user": "ubuntu",
    "peer_ssh_host": "192.168.100.2",
    "bfb_path": None,
    "install_packages": True,
    "ssh_key": None,
    "command_timeout": None,
}


@dataclass(frozen=True)
class BridgeConfig:
    """
    Immutable configuration of one bootstrap run.

    The mode decides which of the IPv4/IPv6 fields take effect; the other
    family's values are carried but never applied.
    """

    mode: str
    link_if: str
    host_v4: str
    peer_v4: str
    prefix_v6: str
    host_v6: str
    peer_v6: str
    peer_ssh_user: str
    peer_ssh_host: str
    local_user: str
    ssh_key: str
    bfb_path: Optional[str] = None
    install_packages: bool = True
    command_timeout: Optional[float] = None

    @property
    def use_ipv4(self):
        return self.mode in ("ipv4", "dual")

    @property
    def use_ipv6(self):
        return self.mode in ("ipv6", "dual")

    @property
    def families(self):
        families = list()
        if self.use_ipv6:
            families.append(6)
        if self.use_ipv4:
            families.append(4)
        return families

    @property
    def host_v4_ip(self):
        return str(ip_interface(self.host_v4).ip)

    @property
    def peer_v4_ip(self):
        return str(ip_interface(self.peer_v4).ip)

    @property
    def host_v6_ip(self):
        return str(ip_interface(self.host_v6).ip)

    @property
    def peer_v6_ip(self):
        return str(ip_interface(self.peer_v6).ip)

    @property
    def masquerade_v4(self):
        return str(ip_interface(self.host_v4).network)

    @property
    def peer_target(self):
        return f"{self.peer_ssh_user}@{self.peer_ssh_host}"

    def host_ip(self, family):
        return self.host_v4_ip if family == 4 else self.host_v6_ip


def validate_mode(mode):
    if mode is None:
        return DEFAULTS["mode"]
    normalized = str(mode).strip().lower()
    if normalized not in MODES:
        raise InvalidModeError(mode)
    return normalized


def _validate_interface(value, family, key):
    try:
        interface = ip_interface(value)
    except ValueError:
        raise ConfigError(f'Address "{value}" for {key} is not a valid address/cidr')
    if interface.version != family:
        raise ConfigError(f'Address "{value}" for {key} is not an IPv{family} address')
    return str(interface)


def _validate_network(value, key):
    try:
        network = ip_network(value)
    except ValueError:
        raise ConfigError(f'Prefix "{value}" for {key} is not a valid network')
    if network.version != 6:
        raise ConfigError(f'Prefix "{value}" for {key} is not an IPv6 network')
    return str(network)


def get_configuration_path(config_file=None, environ=None):
    if environ is None:
        environ = os.environ

    if config_file is None:
        config_file = environ.get(CONFIG_FILE_ENV, None)
    if config_file is None:
        return None
    if not os.path.exists(config_file):
        raise ConfigError(f'Configuration file "{config_file}" does not exist')
    return config_file


def load_configuration_file(config_file):
    """
    Read the "bridge" section of a YAML configuration file into a flat dict
    """

    with open(config_file, "r") as cfgfh:
        try:
            o_config = yaml.load(cfgfh, Loader=yaml.SafeLoader)
        except yaml.YAMLError as e:
            raise MalformedConfigurationError(e)

    if o_config is None:
        return dict()
    if not isinstance(o_config, dict) or not isinstance(
        o_config.get("bridge", dict()), dict
    ):
        raise MalformedConfigurationError('top level "bridge" key must be a mapping')

    o_bridge = o_config.get("bridge", dict())
    unknown = set(o_bridge.keys()) - set(DEFAULTS.keys())
    if unknown:
        raise MalformedConfigurationError(
            f'unknown key(s) {", ".join(sorted(unknown))}'
        )

    return dict(o_bridge)


def get_local_user(environ=None):
    if environ is None:
        environ = os.environ
    return environ.get("SUDO_USER") or environ.get("USER") or pwd.getpwuid(
        os.getuid()
    ).pw_name


def resolve_ssh_identity(ssh_key=None, environ=None):
    """
    Determine the local user whose identity is used for the peer and the path
    of their private key; an explicit key path takes precedence
    """

    local_user = get_local_user(environ)

    if ssh_key is not None:
        return local_user, os.path.expanduser(ssh_key)

    try:
        local_home = pwd.getpwnam(local_user).pw_dir
    except KeyError:
        raise CredentialError(f"Could not determine home for SSH_USER={local_user}")

    return local_user, os.path.join(local_home, DEFAULT_SSH_KEY_NAME)


def get_configuration(overrides=None, config_file=None, environ=None):
    """
    Build the BridgeConfig from defaults, then the configuration file, then
    explicit overrides (CLI flags); None-valued overrides are ignored
    """

    config = dict(DEFAULTS)

    config_file = get_configuration_path(config_file, environ)
    if config_file is not None:
        config.update(load_configuration_file(config_file))

    for key, value in (overrides or dict()).items():
        if key not in DEFAULTS:
            raise ConfigError(f'Unknown configuration key "{key}"')
        if value is not None:
            config[key] = value

    config["mode"] = validate_mode(config["mode"])

    config["host_v4"] = _validate_interface(config["host_v4"], 4, "host_v4")
    config["peer_v4"] = _validate_interface(config["peer_v4"], 4, "peer_v4")
    config["host_v6"] = _validate_interface(config["host_v6"], 6, "host_v6")
    config["peer_v6"] = _validate_interface(config["peer_v6"], 6, "peer_v6")
    config["prefix_v6"] = _validate_network(config["prefix_v6"], "prefix_v6")

    if not config["link_if"]:
        raise ConfigError("A link interface name is required")

    if config["command_timeout"] is not None:
        try:
            config["command_timeout"] = float(config["command_timeout"])
        except (TypeError, ValueError):
            raise ConfigError(
                f'Command timeout "{config["command_timeout"]}" is not a number'
            )
        if config["command_timeout"] <= 0:
            raise ConfigError("Command timeout must be greater than zero")

    if not isinstance(config["install_packages"], bool):
        raise MalformedConfigurationError(
            f'install_packages must be true or false (got "{config["install_packages"]}")'
        )

    local_user, ssh_key = resolve_ssh_identity(config.pop("ssh_key"), environ)

    field_names = {f.name for f in fields(BridgeConfig)}
    return BridgeConfig(
        local_user=local_user,
        ssh_key=ssh_key,
        **{k: v for k, v in config.items() if k in field_names},
    )


###############################################################################
# Host capability checks
###############################################################################


def validate_privileges(euid=None):
    if euid is None:
        euid = os.geteuid()
    if euid != 0:
        raise PrivilegeError("Run as root (use sudo).")


def validate_credentials(config):
    if not os.path.isfile(config.ssh_key):
        raise MissingKeyError(config.ssh_key)


def default_route_interface(family):
    """
    Return the device of the first default route of the given family, or None
    """

    retcode, stdout, stderr = common.run_os_command(
        f"ip -{family} route show default"
    )
    if retcode != 0:
        return None

    for line in stdout.splitlines():
        tokens = line.split()
        if "dev" in tokens:
            idx = tokens.index("dev")
            if idx + 1 < len(tokens):
                return tokens[idx + 1]
        # Only the first route counts
        break

    return None


def discover_egress_interfaces(config, logger=None):
    """
    Find the host egress interface for each family the mode requires; only
    the required families are queried
    """

    egress = dict()
    for family in config.families:
        iface = default_route_interface(family)
        if not iface:
            raise NoRouteError(family, config.mode)
        if logger is not None:
            logger.out(f"Detected host IPv{family} egress interface: {iface}", state="i")
        egress[family] = iface

    return egress
