"""Ordered, typed command steps run with or without elevation.

A pipeline is a list of (Step, Policy) pairs:

- STRICT steps abort the remainder on failure and re-raise the error.
- BEST_EFFORT steps log failures and let the pipeline continue.
- CLEANUP steps always run, even after a strict abort; failures are logged.
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .errors import CommandError

logger = logging.getLogger(__name__)


class Policy(Enum):
    STRICT = "strict"
    BEST_EFFORT = "best-effort"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class Step:
    """A single command, given as an argv list (never a shell string)."""
    description: str
    argv: Tuple[str, ...]
    input: Optional[str] = None
    elevated: bool = True

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(str(a) for a in self.argv))


def write_file(description: str, path, content: str, elevated: bool = True) -> Step:
    """Step that writes content to path by piping it through tee."""
    return Step(description, ("tee", str(path)), input=content, elevated=elevated)


@dataclass
class StepResult:
    step: Step
    policy: Policy
    ok: bool
    output: str = ""
    error: Optional[CommandError] = None


class CommandRunner:
    """Run steps with subprocess, prefixing elevated ones with sudo/pkexec."""

    def __init__(self, elevate_with: str = "sudo"):
        self.elevate_prefix = shlex.split(elevate_with) if elevate_with else []

    def command_for(self, step: Step) -> List[str]:
        if step.elevated and self.elevate_prefix and os.geteuid() != 0:
            return self.elevate_prefix + list(step.argv)
        return list(step.argv)

    def run(self, step: Step) -> str:
        argv = self.command_for(step)
        logger.debug("Running %s: %s", step.description, " ".join(argv))
        try:
            result = subprocess.run(
                argv,
                input=step.input,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise CommandError(step.description, argv, None, str(e)) from e

        if result.returncode != 0:
            raise CommandError(
                step.description,
                argv,
                result.returncode,
                result.stderr or result.stdout,
            )
        return result.stdout


@dataclass
class Pipeline:
    runner: CommandRunner
    steps: List[Tuple[Step, Policy]] = field(default_factory=list)

    def add(self, step: Step, policy: Policy = Policy.STRICT) -> "Pipeline":
        self.steps.append((step, policy))
        return self

    def strict(self, *steps: Step) -> "Pipeline":
        for step in steps:
            self.add(step, Policy.STRICT)
        return self

    def best_effort(self, *steps: Step) -> "Pipeline":
        for step in steps:
            self.add(step, Policy.BEST_EFFORT)
        return self

    def cleanup(self, *steps: Step) -> "Pipeline":
        for step in steps:
            self.add(step, Policy.CLEANUP)
        return self

    def extend(self, steps: Sequence[Step], policy: Policy = Policy.STRICT) -> "Pipeline":
        for step in steps:
            self.add(step, policy)
        return self

    def run(self) -> List[StepResult]:
        """Run every step in order according to its policy.

        Raises the first STRICT failure after the remaining CLEANUP steps ran.
        """
        results: List[StepResult] = []
        failure: Optional[CommandError] = None

        for step, policy in self.steps:
            if failure is not None and policy is not Policy.CLEANUP:
                continue
            try:
                output = self.runner.run(step)
            except CommandError as e:
                results.append(StepResult(step, policy, False, error=e))
                if policy is Policy.STRICT:
                    failure = e
                else:
                    logger.warning("Ignoring failed step: %s", e)
                continue
            results.append(StepResult(step, policy, True, output=output))

        if failure is not None:
            raise failure
        return results
