#!/usr/bin/env python3

# plan.py - bfbridge ordered plan of idempotent configuration steps
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

from bfbridge.lib.common import BridgeError, ConfigError


# Step outcomes
CHANGED = "changed"
UNCHANGED = "unchanged"
PLANNED = "would-change"
SKIPPED = "skipped"
FAILED = "failed"


class Step(object):
    """
    A single idempotent configuration action.

    If a check is given and returns True, the desired state is already
    present and nothing is applied. Otherwise apply is called; it may return
    False to signal that it ran but changed nothing. Best-effort steps log
    their failure instead of raising it.
    """

    def __init__(self, name, description, apply, check=None, best_effort=False):
        self.name = name
        self.description = description
        self.apply = apply
        self.check = check
        self.best_effort = best_effort

    def ensure(self, logger, dry_run=False):
        if self.check is not None and self.check():
            logger.out(f"{self.description}: already present", state="i")
            return UNCHANGED

        if dry_run:
            logger.out(f"{self.description}: would apply", state="i")
            return PLANNED

        logger.out(self.description, state="i")
        try:
            result = self.apply()
        except BridgeError as e:
            if not self.best_effort:
                raise
            logger.out(f"{self.description}: {e} (ignored)", state="w")
            return FAILED

        if result is False:
            return UNCHANGED
        return CHANGED

    def __repr__(self):
        return f"Step({self.name})"


class Plan(object):
    """
    An ordered list of steps executed in a single forward pass
    """

    def __init__(self, steps=None):
        self.steps = list()
        for step in steps or list():
            self.add(step)

    def add(self, step):
        if step.name in self.names():
            raise ValueError(f'Duplicate step name "{step.name}"')
        self.steps.append(step)

    def extend(self, steps):
        for step in steps:
            self.add(step)

    def names(self):
        return [step.name for step in self.steps]

    def run(self, logger, dry_run=False, resume_from=None):
        if resume_from is not None and resume_from not in self.names():
            raise ConfigError(
                f'Unknown step "{resume_from}"; valid steps are: {", ".join(self.names())}'
            )

        results = dict()
        skipping = resume_from is not None
        for step in self.steps:
            if skipping and step.name == resume_from:
                skipping = False
            if skipping:
                logger.out(f"{step.description}: skipped (resuming)", state="i")
                results[step.name] = SKIPPED
                continue
            results[step.name] = step.ensure(logger, dry_run=dry_run)

        return results
