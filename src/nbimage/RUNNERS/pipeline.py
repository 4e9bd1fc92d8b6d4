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
The provisioning pipeline: runs a plan's steps strictly in order.
"""
import logging
import time
from typing import Dict, List, Optional

from ..exceptions import NbImageError, ProvisioningError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.ownership_manager import OwnershipManager
from ..MANAGERS.sources_list_manager import SourcesListManager
from ..MODELS.build_report import BuildReport, ImageManifest, StepRecord
from ..MODELS.provisioning import (
    AptInstallStep,
    BaseImageStep,
    ChannelSwapStep,
    ChownStep,
    DotnetToolStep,
    EnvStep,
    PipInstallStep,
    ProvisioningPlan,
    UserStep,
)
from .command_runner import CommandRunner, DryRunCommandRunner
from .order_validator import OrderValidator, check_swap_sequence
from .step_commands import StepCommands

logger = logging.getLogger("nbimage.pipeline")


class ProvisioningPipeline:
    """
    Executes a provisioning plan as a single-threaded sequence of steps.
    Each step blocks until complete; the first failure aborts the run.
    """

    def __init__(self,
                 runner: Optional[CommandRunner] = None,
                 root: str = "/",
                 dry_run: bool = False,
                 env: Optional[Dict[str, str]] = None,
                 pip: str = "pip"):
        """
        Initializes the pipeline.

        :param runner: Runs package-manager commands. Defaults to a real
            runner, or a recording one when `dry_run` is set.
        :param root: Filesystem root for sources list and ownership changes.
        :param dry_run: Record commands without touching the system.
        :param env: Extra environment for every command.
        :param pip: pip executable to use.
        """
        self.dry_run = dry_run
        self.runner = runner or (DryRunCommandRunner() if dry_run else CommandRunner())
        self.sources = SourcesListManager(root)
        self.ownership = OwnershipManager(root)
        self.env_manager = EnvironmentManager()
        self.extra_env = env or {}
        self.pip = pip
        self.validator = OrderValidator()

    def run(self, plan: ProvisioningPlan) -> BuildReport:
        """
        Runs every step of the plan in order.

        :param plan: The plan to run.
        :return: The report of a successful run, with the image manifest.
        :raises OrderingError: If the plan breaks an ordering rule; nothing runs.
        :raises ProvisioningError: If a step fails; later steps do not run.
        """
        self.validator.check(plan)
        commands = StepCommands(plan, pip=self.pip)
        env = self.env_manager.get_run_environment(plan, self.extra_env)
        manifest = ImageManifest(base_image=plan.base_image.image)
        report = BuildReport(plan_name=plan.name, dry_run=self.dry_run, manifest=manifest)

        total = len(plan.steps)
        for index, step in enumerate(plan.steps):
            record = StepRecord(index=index, kind=step.kind)
            report.steps.append(record)
            logger.info("Step %d/%d: %s", index + 1, total, step.kind)
            started = time.monotonic()
            try:
                self._run_step(step, record, commands, env, manifest)
            except (NbImageError, OSError) as e:
                record.status = "failed"
                record.error = str(e)
                record.duration = time.monotonic() - started
                logger.error("Step %d (%s) failed: %s", index, step.kind, e)
                raise ProvisioningError(index, step.kind, e) from e
            record.duration = time.monotonic() - started
            if record.status == "pending":
                record.status = "ok"

        logger.info("Provisioned %s in %d steps", plan.name, total)
        return report

    def _run_step(self, step, record: StepRecord, commands: StepCommands,
                  env: Dict[str, str], manifest: ImageManifest) -> None:
        if isinstance(step, (BaseImageStep, UserStep)):
            # Applied by the container runtime, not by a command
            record.status = "skipped"
        elif isinstance(step, EnvStep):
            env.update(step.variables)
            manifest.environment.update(step.variables)
        elif isinstance(step, AptInstallStep):
            for argv in commands.apt_install(step):
                self._exec(argv, record, env)
            for package in step.apt_packages:
                manifest.apt_packages[package.name] = package.version
        elif isinstance(step, ChannelSwapStep):
            self._channel_swap(step, record, commands, env, manifest)
        elif isinstance(step, DotnetToolStep):
            for argv in commands.dotnet_tool(step):
                self._exec(argv, record, env)
            manifest.dotnet_tools[step.package] = step.version
        elif isinstance(step, PipInstallStep):
            for argv in commands.pip_install(step):
                self._exec(argv, record, env)
            manifest.pip_packages.extend(step.project_names)
        elif isinstance(step, ChownStep):
            self._chown(step, record, commands, manifest)
        else:
            raise NbImageError(f"unknown step kind {step.kind!r}")

    def _exec(self, argv: List[str], record: StepRecord, env: Dict[str, str]) -> str:
        record.commands.append(argv)
        return self.runner.run(argv, env=env)

    def _channel_swap(self, step: ChannelSwapStep, record: StepRecord,
                      commands: StepCommands, env: Dict[str, str],
                      manifest: ImageManifest) -> None:
        operations = commands.channel_swap(step)
        check_swap_sequence([name for name, _ in operations])
        by_name = dict(operations)

        if self.dry_run:
            for name, argv in operations:
                self._exec(argv, record, env)
        else:
            def clean():
                self._exec(by_name["clean"], record, env)
                record.commands.append(by_name["clear_lists"])
                self.sources.clear_lists(step.lists_dir)

            record.commands.append(by_name["backup"])
            record.commands.append(by_name["append"])
            with self.sources.swapped(step, clean=clean) as snapshot:
                self._exec(by_name["update"], record, env)
                self._exec(by_name["install"], record, env)
                record.commands.append(by_name["restore"])
            manifest.sources_list_sha256 = snapshot

        for package in step.apt_packages:
            manifest.apt_packages[package.name] = package.version

    def _chown(self, step: ChownStep, record: StepRecord, commands: StepCommands,
               manifest: ImageManifest) -> None:
        owner = commands.chown_owner(step)
        for argv in commands.chown(step):
            record.commands.append(argv)
            resolved = argv[-1]
            if not self.dry_run:
                self.ownership.apply(resolved, owner, recursive=step.recursive)
            manifest.ownership[resolved] = owner
