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
Converters for rendering provisioning plans as Dockerfiles.
"""
import os
import shlex
from typing import List, Tuple

from jinja2 import Template

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
from ..RUNNERS.step_commands import StepCommands

DOCKERFILE_TEMPLATE = """\
# Generated by nbimage from plan '{{ name }}'.
{% for keyword, body in instructions %}
{{ keyword }} {{ body }}
{% endfor %}
"""

CONTINUATION = " && \\\n    "


class DockerfileConverter:
    """
    Renders a provisioning plan as a Dockerfile, one instruction per step.
    """

    def __init__(self, plan: ProvisioningPlan):
        """
        Initializes the Dockerfile converter.

        :param plan: The plan to render.
        """
        self.plan = plan
        self.commands = StepCommands(plan)
        self.template = Template(DOCKERFILE_TEMPLATE, trim_blocks=True)

    def render(self) -> str:
        """
        Renders the Dockerfile text.

        :return: Dockerfile content.
        """
        return self.template.render(name=self.plan.name, instructions=self.instructions())

    def convert(self, output_path: str = "Dockerfile") -> str:
        """
        Writes the Dockerfile.

        :param output_path: Where to write it.
        :return: The path written.
        """
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(self.render())
        return output_path

    def instructions(self) -> List[Tuple[str, str]]:
        """(keyword, arguments) pairs in plan order."""
        rendered = []
        for step in self.plan.steps:
            if isinstance(step, BaseImageStep):
                rendered.append(("FROM", step.image))
            elif isinstance(step, EnvStep):
                rendered.append(("ENV", " ".join(
                    f"{k}={self._env_value(v)}" for k, v in step.variables.items())))
            elif isinstance(step, UserStep):
                rendered.append(("USER", step.name))
            elif isinstance(step, AptInstallStep):
                rendered.append(("RUN", self._join(self.commands.apt_install(step))))
            elif isinstance(step, ChannelSwapStep):
                rendered.append(("RUN", self._channel_swap(step)))
            elif isinstance(step, DotnetToolStep):
                rendered.append(("RUN", self._join(self.commands.dotnet_tool(step))))
            elif isinstance(step, PipInstallStep):
                rendered.append(("RUN", self._join(self.commands.pip_install(step))))
            elif isinstance(step, ChownStep):
                rendered.append(("RUN", self._chown(step)))
        return rendered

    @staticmethod
    def _join(commands: List[List[str]]) -> str:
        return CONTINUATION.join(shlex.join(argv) for argv in commands)

    @staticmethod
    def _env_value(value: str) -> str:
        return f'"{value}"' if any(c.isspace() for c in value) else value

    def _channel_swap(self, step: ChannelSwapStep) -> str:
        parts = []
        for name, argv in self.commands.channel_swap(step):
            if name == "append":
                # Rendered as the shell itself would run it, not via sh -c
                parts.append(f"echo {shlex.quote(step.entry)} >> {shlex.quote(step.sources_list)}")
            else:
                parts.append(shlex.join(argv))
        return CONTINUATION.join(parts)

    @staticmethod
    def _chown(step: ChownStep) -> str:
        # ${USER} must stay unquoted so the image shell expands it
        owner = step.owner if ":" in step.owner else f"{step.owner}:{step.owner}"
        flags = "-R " if step.recursive else ""
        return f"chown {flags}{owner} " + " ".join(step.paths)
