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
Validation of the ordering rules a provisioning plan depends on.
"""
from dataclasses import dataclass
from typing import List, Sequence

from ..exceptions import OrderingError
from ..MODELS.provisioning import (
    ADMIN_STEP_KINDS,
    AptInstallStep,
    BaseImageStep,
    ChownStep,
    DotnetToolStep,
    PipInstallStep,
    ProvisioningPlan,
    UserStep,
    normalize_project_name,
)
from .dependency_resolver import PrerequisiteResolver

# The only valid sequence of operations inside a channel swap.
SWAP_SEQUENCE = ("backup", "append", "update", "install", "restore", "clean", "clear_lists")

# Paths created by `dotnet tool install` that need their owner fixed.
DOTNET_CACHE_PATHS = ("/tmp/NuGetScratch",)

ROOT_USERS = ("root", "0")


@dataclass
class OrderViolation:
    """A broken ordering rule, located at a step index."""
    rule: str
    step_index: int
    message: str

    def __str__(self) -> str:
        return f"step {self.step_index}: [{self.rule}] {self.message}"


def check_swap_sequence(operations: Sequence[str]) -> None:
    """
    Checks the operations of a channel swap occur exactly in the order
    backup, append, update, install, restore, clean, clear_lists.

    :raises OrderingError: If any operation is missing, repeated or out of order.
    """
    if tuple(operations) != SWAP_SEQUENCE:
        raise OrderingError(
            "channel swap must run " + " -> ".join(SWAP_SEQUENCE)
            + ", got " + (" -> ".join(operations) or "nothing")
        )


class OrderValidator:
    """
    Checks the step ordering rules of a plan.
    """

    def validate(self, plan: ProvisioningPlan) -> List[OrderViolation]:
        """
        Collects every ordering violation in the plan.

        :param plan: The plan to check.
        :return: Violations in step order; empty if the plan is valid.
        """
        violations: List[OrderViolation] = []
        violations.extend(self._check_base_image(plan))
        violations.extend(self._check_privilege(plan))
        violations.extend(self._check_pip_layers(plan))
        violations.extend(self._check_dotnet_caches(plan))
        violations.extend(self._check_build_toolchain(plan))
        violations.sort(key=lambda v: v.step_index)
        return violations

    def check(self, plan: ProvisioningPlan) -> None:
        """
        :raises OrderingError: On the first violation found.
        """
        violations = self.validate(plan)
        if violations:
            raise OrderingError(str(violations[0]))

    def _check_base_image(self, plan):
        violations = []
        for index, step in enumerate(plan.steps):
            if isinstance(step, BaseImageStep) and index != 0:
                violations.append(OrderViolation(
                    "base-image", index,
                    "base image must be the first step and appear only once"))
        if not isinstance(plan.steps[0], BaseImageStep):
            violations.append(OrderViolation(
                "base-image", 0, "plan must start from a base image"))
        return violations

    def _check_privilege(self, plan):
        violations = []
        current_user = None
        for index, step in enumerate(plan.steps):
            if isinstance(step, UserStep):
                current_user = step.name
            elif step.kind in ADMIN_STEP_KINDS and current_user not in ROOT_USERS:
                violations.append(OrderViolation(
                    "privilege", index,
                    f"{step.kind} needs administrative privilege; add a 'user: root' step before it"))
        return violations

    def _check_pip_layers(self, plan):
        violations = []
        resolver = PrerequisiteResolver(plan.prerequisites)
        try:
            resolver.resolve_order(resolver.prerequisites)
        except OrderingError as e:
            return [OrderViolation("prerequisites", 0, str(e))]

        installed = set()
        for index, step in enumerate(plan.steps):
            if not isinstance(step, PipInstallStep):
                continue
            layer = set(step.project_names)
            for name in step.project_names:
                missing = sorted(resolver.requires(name) - installed)
                if missing:
                    where = "the same layer" if set(missing) & layer else "no earlier layer"
                    violations.append(OrderViolation(
                        "layer-order", index,
                        f"{name} needs {', '.join(missing)} installed first, found in {where}"))
            installed |= layer
        return violations

    def _check_dotnet_caches(self, plan):
        violations = []
        seen_dotnet = False
        for index, step in enumerate(plan.steps):
            if isinstance(step, DotnetToolStep):
                seen_dotnet = True
            elif isinstance(step, ChownStep) and not seen_dotnet:
                for path in step.paths:
                    if path.rstrip("/") in DOTNET_CACHE_PATHS:
                        violations.append(OrderViolation(
                            "ownership", index,
                            f"{path} is created by dotnet tool installs; fix its owner after one"))
        return violations

    def _check_build_toolchain(self, plan):
        violations = []
        apt_installed = set()
        for index, step in enumerate(plan.steps):
            if isinstance(step, AptInstallStep):
                apt_installed.update(p.name for p in step.apt_packages)
            elif step.kind == "channel_swap":
                apt_installed.update(p.name for p in step.apt_packages)
            elif isinstance(step, PipInstallStep):
                for tool in step.build_requires:
                    if tool not in apt_installed:
                        names = ", ".join(normalize_project_name(n) for n in step.project_names)
                        violations.append(OrderViolation(
                            "toolchain", index,
                            f"{names} build with {tool}, which no earlier apt step installs"))
        return violations
