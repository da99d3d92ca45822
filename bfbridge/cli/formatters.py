#!/usr/bin/env python3

# formatters.py - bfbridge Click CLI output formatters
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

from colorama import Fore

from bfbridge.lib.plan import CHANGED, FAILED, PLANNED, SKIPPED, UNCHANGED


# Define colour values for use in formatters
ansii = {
    "green": Fore.GREEN,
    "yellow": Fore.YELLOW,
    "purple": Fore.MAGENTA,
    "end": Fore.RESET + "\033[0m",
}


def _colour(CLI_CONFIG, name):
    if not CLI_CONFIG.get("colour", True):
        return ""
    return ansii[name]


def cli_report_format_steps(steps):
    counts = dict()
    for state in steps.values():
        counts[state] = counts.get(state, 0) + 1

    parts = list()
    for state in CHANGED, PLANNED, UNCHANGED, SKIPPED, FAILED:
        if counts.get(state, 0):
            parts.append(f"{counts[state]} {state}")

    return ", ".join(parts) if parts else "none run"


def cli_report_format_pretty(CLI_CONFIG, data):
    """
    Pretty format the report of a bootstrap run
    """

    purple = _colour(CLI_CONFIG, "purple")
    green = _colour(CLI_CONFIG, "green")
    yellow = _colour(CLI_CONFIG, "yellow")
    end = _colour(CLI_CONFIG, "end")

    egress = data.get("egress", {})
    egress_string = (
        ", ".join(f"IPv{family} {iface}" for family, iface in sorted(egress.items()))
        or "N/A"
    )

    if data.get("flashed", False):
        firmware_string = f"{yellow}flashed{end}"
    else:
        firmware_string = "not flashed"

    if data.get("dry_run", False):
        peer_string = "not configured (dry run)"
    elif data.get("peer_configured", False):
        peer_string = f"{green}configured{end}"
    else:
        peer_string = "not configured"

    validation = data.get("validation", [])
    passed = len([v for v in validation if v["ok"]])
    if not validation:
        validation_string = "not run"
    elif passed == len(validation):
        validation_string = f"{green}{passed}/{len(validation)} probes passed{end}"
    else:
        validation_string = f"{yellow}{passed}/{len(validation)} probes passed{end}"

    output = list()
    output.append(f"{purple}Mode:{end}         {data.get('mode', 'N/A')}")
    output.append(f"{purple}Link:{end}         {data.get('link_if', 'N/A')}")
    output.append(f"{purple}BlueField:{end}    {data.get('peer', 'N/A')}")
    output.append(f"{purple}Egress:{end}       {egress_string}")
    output.append(
        f"{purple}Host steps:{end}   {cli_report_format_steps(data.get('steps', {}))}"
    )
    output.append(f"{purple}Firmware:{end}     {firmware_string}")
    output.append(f"{purple}BF network:{end}   {peer_string}")
    output.append(f"{purple}Validation:{end}   {validation_string}")

    for result in validation:
        if result["ok"]:
            continue
        output.append(f"  {yellow}warning{end} {result['name']}: {result['detail']}")

    return "\n".join(output)
