#!/usr/bin/env python3

# remote.py - bfbridge remote command execution on the BlueField over SSH
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

import codecs
import socket
import time

from collections import namedtuple

import paramiko

from bfbridge.lib.common import (
    Cancelled,
    PreflightSSHError,
    RemoteExecError,
    RemoteTimeoutError,
)


CONNECT_TIMEOUT = 8
POLL_INTERVAL = 0.05


RemoteResult = namedtuple("RemoteResult", ["retcode", "stdout", "stderr"])


class RemoteSession(object):
    """
    Runs commands on the peer with a single designated private key.

    Every call opens its own connection. Only public-key authentication is
    attempted (no agent, no other keys, no password), nothing prompts, and
    host keys are accepted in memory but never loaded from or saved to a
    known_hosts file.
    """

    def __init__(
        self,
        host,
        user,
        key_filename,
        local_user=None,
        connect_timeout=CONNECT_TIMEOUT,
        command_timeout=None,
        logger=None,
    ):
        self.host = host
        self.user = user
        self.key_filename = key_filename
        self.local_user = local_user
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.logger = logger

    @classmethod
    def from_config(cls, config, logger=None):
        return cls(
            config.peer_ssh_host,
            config.peer_ssh_user,
            config.ssh_key,
            local_user=config.local_user,
            command_timeout=config.command_timeout,
            logger=logger,
        )

    @property
    def target(self):
        return f"{self.user}@{self.host}"

    def _connect(self):
        ssh_client = paramiko.client.SSHClient()
        ssh_client.set_missing_host_key_policy(paramiko.client.AutoAddPolicy())
        try:
            ssh_client.connect(
                self.host,
                username=self.user,
                key_filename=self.key_filename,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except Exception:
            ssh_client.close()
            raise
        return ssh_client

    def _collect(self, channel, description, timeout, deadline, cancel, on_line):
        stdout_chunks = list()
        stderr_chunks = list()
        stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        line_buffer = ""

        while True:
            if cancel is not None and cancel.is_set():
                channel.close()
                raise Cancelled(description)
            if deadline is not None and time.monotonic() > deadline:
                channel.close()
                raise RemoteTimeoutError(description, timeout)

            received = False
            while channel.recv_ready():
                data = stdout_decoder.decode(channel.recv(32768))
                stdout_chunks.append(data)
                received = True
                if on_line is not None:
                    line_buffer += data
                    *lines, line_buffer = line_buffer.split("\n")
                    for line in lines:
                        on_line(line)
            while channel.recv_stderr_ready():
                stderr_chunks.append(stderr_decoder.decode(channel.recv_stderr(32768)))
                received = True

            if (
                channel.exit_status_ready()
                and not channel.recv_ready()
                and not channel.recv_stderr_ready()
            ):
                break
            if not received:
                time.sleep(POLL_INTERVAL)

        # Flush any incomplete trailing sequence
        tail = stdout_decoder.decode(b"", final=True)
        stdout_chunks.append(tail)
        stderr_chunks.append(stderr_decoder.decode(b"", final=True))
        line_buffer += tail

        if on_line is not None and line_buffer:
            on_line(line_buffer)

        return RemoteResult(
            channel.recv_exit_status(), "".join(stdout_chunks), "".join(stderr_chunks)
        )

    def _execute(self, command, stdin, description, cancel, timeout, on_line):
        if timeout is None:
            timeout = self.command_timeout
        deadline = time.monotonic() + timeout if timeout is not None else None

        if self.logger is not None:
            self.logger.out(f"{self.target}$ {command}", state="d")

        try:
            ssh_client = self._connect()
        except (paramiko.SSHException, socket.error) as e:
            raise RemoteExecError(f"{description} (connect to {self.target})", stderr=str(e))

        try:
            channel = ssh_client.get_transport().open_session(timeout=self.connect_timeout)
            channel.exec_command(command)
            if stdin is not None:
                channel.sendall(stdin.encode())
            channel.shutdown_write()
            return self._collect(
                channel, description, timeout, deadline, cancel, on_line
            )
        except (paramiko.SSHException, socket.error) as e:
            raise RemoteExecError(description, stderr=str(e))
        finally:
            ssh_client.close()

    def run(self, command, description=None, cancel=None, timeout=None, on_line=None):
        """
        Run a single command line; the exit status is returned, not raised
        """

        return self._execute(
            command, None, description or command, cancel, timeout, on_line
        )

    def run_script(
        self, script, description="script", cancel=None, timeout=None, on_line=None
    ):
        """
        Stream a multi-line script to "bash -s" on the peer
        """

        return self._execute("bash -s", script, description, cancel, timeout, on_line)

    def preflight(self):
        """
        Verify key-only SSH works at all; failure is fatal with a remediation hint
        """

        try:
            result = self.run("true", description="preflight")
        except RemoteExecError as e:
            raise PreflightSSHError(
                self.target, self.key_filename, self.local_user, detail=e.stderr
            )

        if result.retcode != 0:
            raise PreflightSSHError(
                self.target,
                self.key_filename,
                self.local_user,
                detail=result.stderr.strip(),
            )
