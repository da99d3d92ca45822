#!/usr/bin/env python3

# common.py - bfbridge function library, common functions
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

import subprocess

from shlex import split as shlex_split
from shutil import which


###############################################################################
# Exceptions
###############################################################################


class BridgeError(Exception):
    """
    Base of all fatal bfbridge errors; the message is shown to the user as-is
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: {error}"

    def __str__(self):
        return str(self.msg)


class ConfigError(BridgeError):
    pass


class InvalidModeError(ConfigError):
    def __init__(self, mode=None):
        self.mode = mode
        super().__init__(f'--mode must be one of: ipv4 | ipv6 | dual (got "{mode}")')


class MalformedConfigurationError(ConfigError):
    """
    An error when parsing the bfbridge YAML configuration file
    """

    def __init__(self, error=None):
        self.msg = f"ERROR: Configuration file is malformed: {error}"


class PrivilegeError(BridgeError, PermissionError):
    pass


class RouteDiscoveryError(BridgeError):
    pass


class NoRouteError(RouteDiscoveryError):
    def __init__(self, family, mode):
        self.family = family
        super().__init__(
            f"No host IPv{family} default route found; required for --mode {mode}."
        )


class CredentialError(BridgeError):
    pass


class MissingKeyError(CredentialError):
    def __init__(self, key_path):
        self.key_path = key_path
        super().__init__(
            f"SSH key not found: {key_path} (create it with ssh-keygen and run ssh-copy-id to BF)"
        )


class MissingToolError(BridgeError):
    pass


class HostCommandError(BridgeError):
    def __init__(self, command, retcode, stderr):
        self.command = command
        self.retcode = retcode
        self.stderr = stderr
        super().__init__(
            f'Host command "{command}" failed with code {retcode}: {stderr.strip()}'
        )


class PreflightSSHError(BridgeError):
    def __init__(self, target, key_path, local_user, detail=None):
        self.target = target
        self.remediation = f"ssh-copy-id -i {key_path} {target}"
        message = f"Key-based SSH failed.\nRun (as {local_user}): {self.remediation}"
        if detail:
            message = f"{message}\nDetail: {detail}"
        super().__init__(message)


class RemoteExecError(BridgeError):
    def __init__(self, description, retcode=None, stderr=""):
        self.retcode = retcode
        self.stderr = stderr
        message = f"Remote {description} failed"
        if retcode is not None:
            message = f"{message} with code {retcode}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class RemoteTimeoutError(RemoteExecError):
    def __init__(self, description, timeout):
        self.timeout = timeout
        super().__init__(description, stderr=f"no result within {timeout} seconds")


class Cancelled(BridgeError):
    def __init__(self, description):
        super().__init__(f"Remote {description} was cancelled")


class FirmwareError(BridgeError):
    pass


class ValidationWarning(UserWarning):
    """
    A single post-configuration probe failed; never fatal
    """

    def __init__(self, probe, detail=""):
        self.probe = probe
        self.detail = detail
        super().__init__(f"{probe}: {detail}" if detail else probe)


###############################################################################
# Supplemental functions
###############################################################################


#
# Run a local OS command
#
def run_os_command(command_string, environment=None, timeout=None, stdin=None):
    if not isinstance(command_string, list):
        command = shlex_split(command_string)
    else:
        command = command_string

    try:
        command_output = subprocess.run(
            command,
            env=environment,
            timeout=timeout,
            input=stdin.encode() if stdin is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        retcode = command_output.returncode
    except subprocess.TimeoutExpired:
        return 128, "", ""
    except FileNotFoundError as e:
        return 127, "", str(e)
    except Exception as e:
        return 255, "", str(e)

    stdout = command_output.stdout.decode("utf-8", errors="replace")
    stderr = command_output.stderr.decode("utf-8", errors="replace")
    return retcode, stdout, stderr


#
# Run a local OS command that must succeed
#
def run_required_command(command_string, logger=None, **kwargs):
    if logger is not None:
        logger.out(f"$ {command_string}", state="d")
    retcode, stdout, stderr = run_os_command(command_string, **kwargs)
    if retcode != 0:
        raise HostCommandError(command_string, retcode, stderr)
    return stdout


#
# Check whether a command exists in the PATH
#
def has_command(command):
    return which(command) is not None


#
# Set a sysctl value
#
def sysctl_set(key, value, logger=None, required=True):
    command = f"sysctl -w {key}={value}"
    if required:
        run_required_command(command, logger=logger)
        return True

    retcode, _, stderr = run_os_command(command)
    if retcode != 0 and logger is not None:
        logger.out(f"Failed to set {key}={value}: {stderr.strip()}", state="w")
    return retcode == 0


#
# Read a sysctl value
#
def sysctl_get(key):
    retcode, stdout, _ = run_os_command(f"sysctl -n {key}")
    if retcode != 0:
        return None
    return stdout.strip()
