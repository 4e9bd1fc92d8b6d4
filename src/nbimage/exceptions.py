# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Exceptions raised while loading, validating and running provisioning plans.
"""
from typing import List, Optional


class NbImageError(Exception):
    """Base class for all nbimage errors."""


class PlanError(NbImageError):
    """A plan file or Dockerfile could not be turned into a valid plan."""

    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class OrderingError(NbImageError):
    """A plan breaks one of the step ordering rules."""


class ProvisioningError(NbImageError):
    """
    A step failed while running a plan. The run stops at the failing step.
    """

    def __init__(self, step_index: int, step_kind: str, cause: Exception):
        super().__init__(f"step {step_index} ({step_kind}) failed: {cause}")
        self.step_index = step_index
        self.step_kind = step_kind
        self.cause = cause


class StepFailedError(NbImageError):
    """A package manager or system command exited with a non-zero status."""

    def __init__(self, argv: List[str], returncode: int, output: str = ""):
        super().__init__(f"command {' '.join(argv)!r} exited with status {returncode}")
        self.argv = argv
        self.returncode = returncode
        self.output = output


class ChannelRestoreError(NbImageError):
    """The sources list did not return to its pre-swap content."""


class OwnershipError(NbImageError):
    """Ownership of a path could not be reassigned."""
