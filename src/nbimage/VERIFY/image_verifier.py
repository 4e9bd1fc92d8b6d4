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
Verification of a provisioned image against its plan: pinned package
versions, the restored sources list, ownership fixups, pip layer order
and the reproducibility fingerprint.
"""
import hashlib
import json
import logging
import os
from typing import Dict, List, Optional

from ..exceptions import OwnershipError, StepFailedError
from ..MANAGERS.ownership_manager import OwnershipManager
from ..MANAGERS.sources_list_manager import SourcesListManager
from ..MODELS.build_report import ImageManifest
from ..MODELS.provisioning import (
    ChannelSwapStep,
    ChownStep,
    ProvisioningPlan,
    normalize_project_name,
)
from ..MODELS.verification import CheckResult, VerificationReport
from ..RUNNERS.command_runner import CommandRunner
from ..RUNNERS.dependency_resolver import PrerequisiteResolver
from ..RUNNERS.step_commands import StepCommands

logger = logging.getLogger("nbimage.verify")


def fingerprint(plan: ProvisioningPlan) -> str:
    """
    Stable SHA-256 over everything that determines the image content: the
    base image reference, the runtime user and the normalized step list.
    Plans that differ only in name or YAML formatting share a fingerprint.
    """
    payload = {
        "base": plan.base_image.reference.full_name,
        "runtime_user": plan.runtime_user,
        "steps": [step.model_dump(mode="json", by_alias=True) for step in plan.steps],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def parse_dpkg_query(output: str) -> Dict[str, str]:
    """Parses `dpkg-query -W` output (name<TAB>version per line)."""
    installed = {}
    for line in output.splitlines():
        name, sep, version = line.partition("\t")
        if sep and name.strip():
            # Multi-arch packages are reported as name:arch
            installed[name.strip().split(":")[0]] = version.strip()
    return installed


class ImageVerifier:
    """
    Runs the post-build checks. Checks that need package managers query
    them through a CommandRunner; filesystem checks read below `root`.
    """

    def __init__(self, runner: Optional[CommandRunner] = None, root: str = "/",
                 pip: str = "pip"):
        self.runner = runner or CommandRunner()
        self.sources = SourcesListManager(root)
        self.ownership = OwnershipManager(root)
        self.pip = pip

    def check_pinned_packages(self, plan: ProvisioningPlan) -> CheckResult:
        pinned = plan.pinned_apt_packages
        if not pinned:
            return CheckResult(name="pinned-packages", passed=True, detail="no pinned packages")
        try:
            output = self.runner.run(["dpkg-query", "-W"] + [p.name for p in pinned])
        except StepFailedError as e:
            return CheckResult(name="pinned-packages", passed=False,
                               detail=f"dpkg-query failed: {e.output.strip() or e}")

        installed = parse_dpkg_query(output)
        wrong = []
        for package in pinned:
            actual = installed.get(package.name)
            if actual != package.version:
                wrong.append(f"{package.name}: want {package.version}, have {actual or 'nothing'}")
        if wrong:
            return CheckResult(name="pinned-packages", passed=False, detail="; ".join(wrong))
        return CheckResult(name="pinned-packages", passed=True,
                           detail=", ".join(p.spec() for p in pinned))

    def check_pip_packages(self, plan: ProvisioningPlan) -> CheckResult:
        try:
            output = self.runner.run([self.pip, "list", "--format=json"])
            listed = json.loads(output or "[]")
        except StepFailedError as e:
            return CheckResult(name="pip-packages", passed=False, detail=str(e))
        except json.JSONDecodeError as e:
            return CheckResult(name="pip-packages", passed=False,
                               detail=f"unreadable pip list output: {e}")

        installed = {normalize_project_name(p["name"]) for p in listed}
        wanted = [name for layer in plan.pip_layers for name in layer.project_names]
        missing = [name for name in wanted if name not in installed]
        if missing:
            return CheckResult(name="pip-packages", passed=False,
                               detail="missing " + ", ".join(missing))
        return CheckResult(name="pip-packages", passed=True, detail=f"{len(wanted)} installed")

    def check_sources_list(self, plan: ProvisioningPlan,
                           snapshot_digest: Optional[str]) -> CheckResult:
        swaps = [s for s in plan.steps if isinstance(s, ChannelSwapStep)]
        if not swaps:
            return CheckResult(name="sources-list", passed=True, detail="no channel swap")
        if not snapshot_digest:
            return CheckResult(name="sources-list", passed=False,
                               detail="no pre-build snapshot digest to compare against")

        problems = []
        for swap in swaps:
            try:
                current = self.sources.snapshot(swap.sources_list)
            except OSError as e:
                problems.append(f"{swap.sources_list}: {e.strerror}")
                continue
            if current != snapshot_digest:
                problems.append(f"{swap.sources_list} differs from the pre-build snapshot")
            if os.path.exists(self.sources.host_path(swap.backup_path)):
                problems.append(f"{swap.backup_path} was left behind")
        if problems:
            return CheckResult(name="sources-list", passed=False, detail="; ".join(problems))
        return CheckResult(name="sources-list", passed=True, detail="restored byte for byte")

    def check_ownership(self, plan: ProvisioningPlan) -> CheckResult:
        commands = StepCommands(plan)
        problems = []
        for step in plan.steps:
            if not isinstance(step, ChownStep):
                continue
            owner = commands.chown_owner(step)
            for path in step.paths:
                resolved = plan.resolve_path(path)
                try:
                    wrong = self.ownership.offenders(resolved, owner, recursive=step.recursive)
                except OwnershipError as e:
                    problems.append(str(e))
                    continue
                if wrong:
                    problems.append(f"{len(wrong)} entries under {resolved} not owned by {owner}")
        if problems:
            return CheckResult(name="ownership", passed=False, detail="; ".join(problems))
        return CheckResult(name="ownership", passed=True,
                           detail=f"owned by {plan.runtime_user}")

    def check_layer_order(self, plan: ProvisioningPlan,
                          manifest: Optional[ImageManifest] = None) -> CheckResult:
        """
        Every prerequisite is installed before its dependents. Uses the
        manifest's recorded install order when given, else the plan's.
        """
        if manifest is not None:
            order = manifest.pip_packages
        else:
            order = [name for layer in plan.pip_layers for name in layer.project_names]
        position = {}
        for i, name in enumerate(order):
            position.setdefault(name, i)

        resolver = PrerequisiteResolver(plan.prerequisites)
        problems = []
        for name in order:
            for dep in sorted(resolver.requires(name)):
                if dep not in position or position[dep] > position[name]:
                    problems.append(f"{dep} is not installed before {name}")
        if problems:
            return CheckResult(name="layer-order", passed=False, detail="; ".join(problems))
        return CheckResult(name="layer-order", passed=True, detail=" -> ".join(order))

    def verify(self, plan: ProvisioningPlan, snapshot_digest: Optional[str] = None,
               manifest: Optional[ImageManifest] = None,
               checks: Optional[List[str]] = None) -> VerificationReport:
        """
        Runs the requested checks (all by default).

        :param plan: The plan the image was built from.
        :param snapshot_digest: SHA-256 of the sources list before the build.
        :param manifest: Manifest recorded by the build, if available.
        :param checks: Names of checks to run.
        :return: The verification report.
        """
        if manifest is not None and snapshot_digest is None:
            snapshot_digest = manifest.sources_list_sha256

        available = {
            "pinned-packages": lambda: self.check_pinned_packages(plan),
            "pip-packages": lambda: self.check_pip_packages(plan),
            "sources-list": lambda: self.check_sources_list(plan, snapshot_digest),
            "ownership": lambda: self.check_ownership(plan),
            "layer-order": lambda: self.check_layer_order(plan, manifest),
        }
        report = VerificationReport(plan_name=plan.name, fingerprint=fingerprint(plan))
        for name in checks or list(available):
            if name not in available:
                raise ValueError(f"unknown check {name!r}")
            result = available[name]()
            logger.info("%s: %s %s", name, "ok" if result.passed else "FAILED", result.detail)
            report.checks.append(result)
        return report
