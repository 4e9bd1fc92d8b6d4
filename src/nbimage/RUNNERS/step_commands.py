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
Translation of plan steps into the commands that carry them out.
"""
import shlex
from typing import List, Tuple

from ..MODELS.provisioning import (
    AptInstallStep,
    ChannelSwapStep,
    ChownStep,
    DotnetToolStep,
    PipInstallStep,
    ProvisioningPlan,
)

Operation = Tuple[str, List[str]]


class StepCommands:
    """
    Produces the argv lists for each step kind. The pipeline runs these,
    and the Dockerfile converter renders them, so both agree on what a
    step does.
    """

    def __init__(self, plan: ProvisioningPlan, pip: str = "pip", apt: str = "apt-get",
                 dotnet: str = "dotnet"):
        self.plan = plan
        self.pip = pip
        self.apt = apt
        self.dotnet = dotnet

    def apt_install(self, step: AptInstallStep) -> List[List[str]]:
        commands = []
        if step.update:
            commands.append([self.apt, "-y", "update"])
        commands.append([self.apt, "-y", "install"] + [p.spec() for p in step.apt_packages])
        return commands

    def channel_swap(self, step: ChannelSwapStep) -> List[Operation]:
        """
        The swap as named operations, in the only order they may run.
        """
        return [
            ("backup", ["cp", step.sources_list, step.backup_path]),
            ("append", ["sh", "-c", f"echo {shlex.quote(step.entry)} >> {step.sources_list}"]),
            ("update", [self.apt, "-y", "update"]),
            ("install", [self.apt, "-y", "install"] + [p.spec() for p in step.apt_packages]),
            ("restore", ["mv", step.backup_path, step.sources_list]),
            ("clean", [self.apt, "clean"]),
            ("clear_lists", ["rm", "-rf", step.lists_dir]),
        ]

    def dotnet_tool(self, step: DotnetToolStep) -> List[List[str]]:
        install = [self.dotnet, "tool", "install"]
        if step.global_install:
            install.append("--global")
        if step.add_source:
            install += ["--add-source", step.add_source]
        install.append(step.package)
        if step.version:
            install += ["--version", step.version]
        return [install] + [shlex.split(cmd) for cmd in step.post_install]

    def pip_install(self, step: PipInstallStep) -> List[List[str]]:
        return [[self.pip, "install"] + list(step.requirements)]

    def chown_owner(self, step: ChownStep) -> str:
        """Owner spec with ${USER} resolved; a bare user becomes 'user:user'."""
        owner = self.plan.resolve_owner(step.owner)
        if ":" not in owner:
            owner = f"{owner}:{owner}"
        return owner

    def chown(self, step: ChownStep) -> List[List[str]]:
        flags = ["-R"] if step.recursive else []
        owner = self.chown_owner(step)
        return [["chown"] + flags + [owner, self.plan.resolve_path(p)] for p in step.paths]
