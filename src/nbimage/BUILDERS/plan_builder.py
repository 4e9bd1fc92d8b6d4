"""
Builders for converting Dockerfiles into provisioning plans.
"""
import os
import shlex
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..exceptions import OrderingError, PlanError
from ..MODELS.dockerfile_ast import Instruction
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
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..PARSERS.shell_command import ShellCommandParser, ShellSegment
from ..RUNNERS.order_validator import check_swap_sequence

APT_PROGRAMS = ("apt-get", "apt")
PIP_PROGRAMS = ("pip", "pip3")


def _operands_after(seg: ShellSegment, word: str) -> List[str]:
    """Non-option arguments following the subcommand `word`."""
    index = seg.argv.index(word)
    return [a for a in seg.argv[index + 1:] if not a.startswith("-")]


class PlanBuilder:
    """
    Analyzes a Dockerfile and recognizes each RUN command as a plan step.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the PlanBuilder.

        :param base_dir: The base directory for resolving relative paths.
        """
        self.base_dir = base_dir
        self.parser = DockerfileParser()
        self.shell = ShellCommandParser()

    def build(self, dockerfile_path: str, name: str,
              runtime_user: str = "jovyan",
              prerequisites: Optional[Dict[str, List[str]]] = None) -> ProvisioningPlan:
        """
        Parses a Dockerfile and creates a ProvisioningPlan.

        :param dockerfile_path: Path to the Dockerfile.
        :param name: Name to assign to the resulting plan.
        :param runtime_user: Account that ${USER} refers to inside the image.
        :param prerequisites: Pip prerequisite map; Dockerfiles cannot express it.
        :return: A ProvisioningPlan instance.
        :raises PlanError: If an instruction or RUN command is not recognized.
        """
        full_path = os.path.join(self.base_dir, dockerfile_path)
        return self._build(self.parser.parse(full_path), name, runtime_user, prerequisites)

    def build_from_string(self, content: str, name: str,
                          runtime_user: str = "jovyan",
                          prerequisites: Optional[Dict[str, List[str]]] = None) -> ProvisioningPlan:
        """
        Same as `build`, for Dockerfile text.
        """
        return self._build(self.parser.parse_from_string(content), name, runtime_user, prerequisites)

    def _build(self, ast, name, runtime_user, prerequisites) -> ProvisioningPlan:
        steps = []
        for inst in ast.instructions:
            steps.extend(self._translate(inst))

        try:
            return ProvisioningPlan(
                name=name,
                runtime_user=runtime_user,
                prerequisites=prerequisites or {},
                steps=steps,
            )
        except ValidationError as e:
            raise PlanError(f"invalid plan {name!r}: {e}")

    def _translate(self, inst: Instruction) -> list:
        cmd = inst.instruction
        args = inst.arguments

        if cmd == "FROM":
            if not args:
                raise PlanError("FROM needs an image", line=inst.line)
            words = [w for w in args[0].split() if not w.startswith("--")]
            if not words:
                raise PlanError("FROM needs an image", line=inst.line)
            return [self._make(BaseImageStep, inst.line, image=words[0])]
        if cmd == "ENV":
            variables = {}
            for arg in args:
                key, sep, value = arg.partition("=")
                if not sep:
                    raise PlanError(f"ENV {arg!r} has no value", line=inst.line)
                variables[key] = value.strip('"')
            return [EnvStep(variables=variables)]
        if cmd == "USER":
            if not args:
                raise PlanError("USER needs an account", line=inst.line)
            return [self._make(UserStep, inst.line, name=args[0].strip())]
        if cmd == "RUN":
            command = args[0] if len(args) == 1 else shlex.join(args)
            return self._translate_run(self.shell.split(command, line=inst.line), inst.line)
        raise PlanError(f"unsupported instruction {cmd}", line=inst.line)

    def _translate_run(self, segments: List[ShellSegment], line: int) -> list:
        """
        Walks the segments of one RUN instruction. `apt-get update` attaches
        to the install after it; a sources list backup opens a channel swap
        that must run through to the package list removal.
        """
        steps = []
        pending_update = False
        i = 0
        while i < len(segments):
            seg = segments[i]
            if seg.program in APT_PROGRAMS and seg.matches(seg.program, "update"):
                pending_update = True
                i += 1
            elif seg.program in APT_PROGRAMS and seg.matches(seg.program, "install"):
                packages = _operands_after(seg, "install")
                steps.append(self._make(AptInstallStep, line, packages=packages, update=pending_update))
                pending_update = False
                i += 1
            elif seg.program == "cp" and len(seg.argv) == 3:
                step, i = self._channel_swap(segments, i, line)
                steps.append(step)
            elif seg.program == "dotnet" and seg.matches("dotnet", "tool", "install"):
                tool = self._dotnet_tool(seg, line)
                i += 1
                while i < len(segments) and segments[i].program == "dotnet" \
                        and not segments[i].matches("dotnet", "tool"):
                    tool.post_install.append(shlex.join(segments[i].argv))
                    i += 1
                steps.append(tool)
            elif seg.program in PIP_PROGRAMS and seg.matches(seg.program, "install"):
                requirements = _operands_after(seg, "install")
                steps.append(self._make(PipInstallStep, line, requirements=requirements))
                i += 1
            elif seg.program == "chown":
                steps.append(self._chown(seg, line))
                i += 1
            else:
                raise PlanError(f"unrecognized RUN command: {seg}", line=line)

        if pending_update:
            raise PlanError("apt-get update is not followed by an install", line=line)
        return steps

    def _make(self, model, line: int, **fields):
        try:
            return model(**fields)
        except ValidationError as e:
            raise PlanError(str(e), line=line)

    def _channel_swap(self, segments: List[ShellSegment], start: int, line: int):
        """
        Recognizes cp / echo >> / update / install / mv / clean / rm -rf.
        Returns the step and the index after the swap.
        """
        sources, backup = segments[start].argv[1:3]
        if not backup.startswith(sources):
            raise PlanError(f"unrecognized RUN command: {segments[start]}", line=line)

        operations = ["backup"]
        entry = None
        packages: List[str] = []
        lists_dir = "/var/lib/apt/lists/"
        i = start + 1
        while i < len(segments) and operations[-1] != "clear_lists":
            seg = segments[i]
            if seg.program == "echo" and seg.redirect == (">>", sources):
                entry = " ".join(seg.argv[1:])
                operations.append("append")
            elif seg.program in APT_PROGRAMS and seg.matches(seg.program, "update"):
                operations.append("update")
            elif seg.program in APT_PROGRAMS and seg.matches(seg.program, "install"):
                packages = _operands_after(seg, "install")
                operations.append("install")
            elif seg.argv == ["mv", backup, sources]:
                operations.append("restore")
            elif seg.program in APT_PROGRAMS and seg.matches(seg.program, "clean"):
                operations.append("clean")
            elif seg.program == "rm" and len(seg.argv) >= 3 and "lists" in seg.argv[-1]:
                lists_dir = seg.argv[-1]
                operations.append("clear_lists")
            else:
                break
            i += 1

        try:
            check_swap_sequence(operations)
        except OrderingError as e:
            raise PlanError(str(e), line=line)

        step = self._make(
            ChannelSwapStep, line,
            entry=entry,
            packages=packages,
            sources_list=sources,
            backup_suffix=backup[len(sources):],
            lists_dir=lists_dir,
        )
        return step, i

    def _dotnet_tool(self, seg: ShellSegment, line: int) -> DotnetToolStep:
        argv = seg.argv[3:]
        fields = {"global_install": False, "add_source": None, "version": None}
        package = None
        i = 0
        while i < len(argv):
            arg = argv[i]
            if arg in ("-g", "--global"):
                fields["global_install"] = True
            elif arg == "--add-source" and i + 1 < len(argv):
                fields["add_source"] = argv[i + 1]
                i += 1
            elif arg == "--version" and i + 1 < len(argv):
                fields["version"] = argv[i + 1]
                i += 1
            elif arg.startswith("-"):
                raise PlanError(f"unsupported dotnet tool option {arg}", line=line)
            elif package is None:
                package = arg
            else:
                raise PlanError(f"unexpected argument {arg} to dotnet tool install", line=line)
            i += 1
        if package is None:
            raise PlanError("dotnet tool install names no package", line=line)
        return self._make(DotnetToolStep, line, package=package, **fields)

    def _chown(self, seg: ShellSegment, line: int) -> ChownStep:
        flags = [a for a in seg.argv[1:] if a.startswith("-")]
        operands = [a for a in seg.argv[1:] if not a.startswith("-")]
        if len(operands) < 2:
            raise PlanError(f"chown needs an owner and a path: {seg}", line=line)
        owner, paths = operands[0], operands[1:]
        user, sep, group = owner.partition(":")
        if sep and user == group:
            owner = user
        return self._make(
            ChownStep, line,
            paths=paths,
            owner=owner,
            recursive=any(f in ("-R", "--recursive") for f in flags),
        )
