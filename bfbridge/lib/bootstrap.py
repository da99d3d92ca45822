#!/usr/bin/env python3

# bootstrap.py - bfbridge single-pass host/BlueField bootstrap
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

import bfbridge.lib.config
import bfbridge.lib.dns
import bfbridge.lib.firmware
import bfbridge.lib.host
import bfbridge.lib.peer
import bfbridge.lib.validation

from bfbridge.lib.common import ConfigError
from bfbridge.lib.plan import Plan
from bfbridge.lib.remote import RemoteSession


def validate_host(config, logger, euid=None):
    """
    All fatal precondition checks; nothing on the host is touched before
    these pass
    """

    bfbridge.lib.config.validate_privileges(euid)
    bfbridge.lib.config.validate_credentials(config)
    return bfbridge.lib.config.discover_egress_interfaces(config, logger)


def build_plan(config, egress, logger, dns_conf_file=bfbridge.lib.dns.DNSMASQ_CONF):
    plan = Plan()
    plan.extend(bfbridge.lib.host.build_host_steps(config, egress, logger))
    plan.extend(bfbridge.lib.dns.build_dns_steps(config, logger, conf_file=dns_conf_file))
    return plan


def bootstrap(
    config,
    logger,
    session=None,
    dry_run=False,
    resume_from=None,
    validate_only=False,
    cancel=None,
    dns_conf_file=bfbridge.lib.dns.DNSMASQ_CONF,
    euid=None,
):
    """
    Run the whole sequence once:

      validate -> configure host -> [flash BFB] -> preflight SSH ->
      configure BlueField -> validate host and BlueField

    Every step up to and including the SSH preflight is fatal on failure.
    Validation probes only warn. Returns a report dictionary.
    """

    report = {
        "mode": config.mode,
        "link_if": config.link_if,
        "peer": f"{config.peer_ssh_user}@{config.peer_ssh_host}",
        "dry_run": dry_run,
        "egress": dict(),
        "steps": dict(),
        "flashed": False,
        "peer_configured": False,
        "validation": list(),
    }

    logger.out(
        f"Starting bfbridge (mode={config.mode}, link={config.link_if})", state="s"
    )

    egress = validate_host(config, logger, euid=euid)
    report["egress"] = egress

    if session is None:
        session = RemoteSession.from_config(config, logger=logger)

    if not validate_only:
        plan = build_plan(config, egress, logger, dns_conf_file=dns_conf_file)
        if resume_from is not None and resume_from not in plan.names():
            raise ConfigError(
                f'Unknown step "{resume_from}"; valid steps are: {", ".join(plan.names())}'
            )

        if config.install_packages and not dry_run:
            bfbridge.lib.host.install_packages(logger)
        bfbridge.lib.host.check_required_tools(config)

        report["steps"] = plan.run(logger, dry_run=dry_run, resume_from=resume_from)

        if config.bfb_path:
            if dry_run:
                logger.out(f"Would run bfb-install: {config.bfb_path}", state="i")
            else:
                bfbridge.lib.firmware.flash_firmware(config.bfb_path, logger)
                report["flashed"] = True

    logger.out(
        f"Preflight: verify key-based SSH to {session.target} using {config.ssh_key} (as {config.local_user})",
        state="i",
    )
    session.preflight()
    logger.out("Preflight: key-based SSH works", state="o")

    if dry_run:
        logger.out("Dry run: not configuring BlueField or running validation", state="i")
        return report

    if not validate_only:
        bfbridge.lib.peer.configure_peer(session, config, logger, cancel=cancel)
        report["peer_configured"] = True

    report["validation"] = bfbridge.lib.validation.run_validation(
        config, session, logger, cancel=cancel
    )

    logger.out("Done.", state="o")
    return report
