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
Models describing a provisioning plan: the base image, the ordered steps
that install packages and fix up ownership, and the package specs they carry.
"""
import re
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator, model_validator

from ..REGISTRY.image_reference import ImageReference

_PIP_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def normalize_project_name(name: str) -> str:
    """Normalizes a Python project name the way package indexes compare them."""
    return re.sub(r"[-_.]+", "-", name).lower()


class AptPackage(BaseModel):
    """
    A Debian package, optionally pinned to an exact version.
    """
    name: str
    version: Optional[str] = None

    @classmethod
    def parse(cls, spec: str) -> "AptPackage":
        """Parses 'name' or 'name=version'."""
        spec = spec.strip()
        if not spec or spec.startswith("-"):
            raise ValueError(f"Invalid apt package spec: {spec!r}")
        name, sep, version = spec.partition("=")
        if sep and not version:
            raise ValueError(f"Empty version in apt package spec: {spec!r}")
        return cls(name=name, version=version or None)

    @property
    def pinned(self) -> bool:
        return self.version is not None

    def spec(self) -> str:
        return f"{self.name}={self.version}" if self.version else self.name


class PipRequirement(BaseModel):
    """
    A pip requirement string such as 'matplotlib<=2.1.2'.
    """
    raw: str

    @field_validator("raw")
    @classmethod
    def _has_name(cls, value: str) -> str:
        if not _PIP_NAME.match(value):
            raise ValueError(f"Invalid pip requirement: {value!r}")
        return value.strip()

    @property
    def name(self) -> str:
        return normalize_project_name(_PIP_NAME.match(self.raw).group(1))


class BaseImageStep(BaseModel):
    """Selects the upstream image the build extends."""
    kind: Literal["base_image"] = "base_image"
    image: str

    @field_validator("image")
    @classmethod
    def _valid_reference(cls, value: str) -> str:
        ImageReference.parse(value)
        return value

    @property
    def reference(self) -> ImageReference:
        return ImageReference.parse(self.image)


class EnvStep(BaseModel):
    """Sets process-wide environment variables for the image."""
    kind: Literal["env"] = "env"
    variables: Dict[str, str]


class UserStep(BaseModel):
    """Switches the account subsequent steps run as."""
    kind: Literal["user"] = "user"
    name: str


class AptInstallStep(BaseModel):
    """Updates package indices and installs a fixed list of OS packages."""
    kind: Literal["apt_install"] = "apt_install"
    packages: List[str]
    update: bool = True

    @field_validator("packages")
    @classmethod
    def _valid_packages(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("apt_install needs at least one package")
        for spec in value:
            AptPackage.parse(spec)
        return value

    @property
    def apt_packages(self) -> List[AptPackage]:
        return [AptPackage.parse(p) for p in self.packages]


class ChannelSwapStep(BaseModel):
    """
    Temporarily adds a repository channel to obtain specific package
    versions, then restores the original sources list and cleans the
    package cache.
    """
    kind: Literal["channel_swap"] = "channel_swap"
    entry: str
    packages: List[str]
    sources_list: str = "/etc/apt/sources.list"
    backup_suffix: str = ".backup"
    lists_dir: str = "/var/lib/apt/lists/"

    @field_validator("packages")
    @classmethod
    def _valid_packages(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("channel_swap needs at least one package")
        for spec in value:
            AptPackage.parse(spec)
        return value

    @field_validator("entry")
    @classmethod
    def _single_line(cls, value: str) -> str:
        value = value.strip()
        if not value or "\n" in value:
            raise ValueError("channel_swap entry must be a single sources.list line")
        return value

    @property
    def apt_packages(self) -> List[AptPackage]:
        return [AptPackage.parse(p) for p in self.packages]

    @property
    def backup_path(self) -> str:
        return self.sources_list + self.backup_suffix


class DotnetToolStep(BaseModel):
    """Installs a command-line tool through `dotnet tool install`."""
    kind: Literal["dotnet_tool"] = "dotnet_tool"
    package: str
    version: Optional[str] = None
    global_install: bool = Field(True, alias="global")
    add_source: Optional[str] = None
    post_install: List[str] = []

    model_config = {"populate_by_name": True}


class PipInstallStep(BaseModel):
    """
    One pip layer. Requirements in a layer are installed together; layers
    are installed strictly in plan order.
    """
    kind: Literal["pip_install"] = "pip_install"
    requirements: List[str]
    build_requires: List[str] = []

    @field_validator("requirements")
    @classmethod
    def _valid_requirements(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("pip_install needs at least one requirement")
        for requirement in value:
            if not _PIP_NAME.match(requirement):
                raise ValueError(f"Invalid pip requirement: {requirement!r}")
        return [r.strip() for r in value]

    @property
    def pip_requirements(self) -> List[PipRequirement]:
        return [PipRequirement(raw=r) for r in self.requirements]

    @property
    def project_names(self) -> List[str]:
        return [r.name for r in self.pip_requirements]


class ChownStep(BaseModel):
    """Reassigns ownership of fixed paths to the runtime user."""
    kind: Literal["chown"] = "chown"
    paths: List[str]
    owner: str = "${USER}"
    recursive: bool = True


Step = Annotated[
    Union[
        BaseImageStep,
        EnvStep,
        UserStep,
        AptInstallStep,
        ChannelSwapStep,
        DotnetToolStep,
        PipInstallStep,
        ChownStep,
    ],
    Field(discriminator="kind"),
]

ADMIN_STEP_KINDS = ("apt_install", "channel_swap", "chown")


class ProvisioningPlan(BaseModel):
    """
    The complete, ordered provisioning pipeline for one image.
    Step order is load-bearing.
    """
    name: str
    runtime_user: str = "jovyan"
    prerequisites: Dict[str, List[str]] = {}
    steps: List[Step]

    @model_validator(mode="after")
    def _has_base_image(self) -> "ProvisioningPlan":
        if not any(isinstance(s, BaseImageStep) for s in self.steps):
            raise ValueError("plan has no base_image step")
        return self

    @property
    def base_image(self) -> BaseImageStep:
        return next(s for s in self.steps if isinstance(s, BaseImageStep))

    @property
    def environment(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for step in self.steps:
            if isinstance(step, EnvStep):
                env.update(step.variables)
        return env

    @property
    def pip_layers(self) -> List[PipInstallStep]:
        return [s for s in self.steps if isinstance(s, PipInstallStep)]

    @property
    def pinned_apt_packages(self) -> List[AptPackage]:
        pinned = []
        for step in self.steps:
            if isinstance(step, (AptInstallStep, ChannelSwapStep)):
                pinned.extend(p for p in step.apt_packages if p.pinned)
        return pinned

    @property
    def chown_paths(self) -> List[str]:
        paths = []
        for step in self.steps:
            if isinstance(step, ChownStep):
                paths.extend(step.paths)
        return paths

    def resolve_owner(self, owner: str) -> str:
        """Resolves '${USER}' placeholders against the runtime user."""
        return owner.replace("${USER}", self.runtime_user).replace("$USER", self.runtime_user)

    def resolve_path(self, path: str) -> str:
        return self.resolve_owner(path)
