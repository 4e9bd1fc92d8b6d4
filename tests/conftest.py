import os

import pytest

from nbimage.exceptions import StepFailedError
from nbimage.PARSERS.plan_parser import PlanParser
from nbimage.RUNNERS.command_runner import CommandRunner

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


class RecordingRunner(CommandRunner):
    """Records commands instead of running them; fails on request."""

    def __init__(self, outputs=None, fail_on=None):
        super().__init__()
        self.outputs = outputs or {}
        self.fail_on = fail_on or []
        self.envs = []

    def run(self, argv, env=None):
        self.history.append(list(argv))
        self.envs.append(env)
        for prefix in self.fail_on:
            if argv[:len(prefix)] == list(prefix):
                raise StepFailedError(argv, 100, "E: Unable to locate package")
        return self.outputs.get(argv[0], "")


@pytest.fixture
def samples_plan():
    return PlanParser().parse(PlanParser.bundled())


@pytest.fixture
def samples_dockerfile():
    return os.path.join(FIXTURES, "samples.Dockerfile")


@pytest.fixture
def recording_runner():
    return RecordingRunner()


@pytest.fixture
def build_root(tmp_path):
    """A staged filesystem with a sources list and the chowned directories."""
    apt = tmp_path / "etc" / "apt"
    apt.mkdir(parents=True)
    (apt / "sources.list").write_bytes(
        b"deb http://deb.debian.org/debian bullseye main\n"
        b"deb http://security.debian.org/debian-security bullseye-security main\n"
    )
    lists = tmp_path / "var" / "lib" / "apt" / "lists"
    lists.mkdir(parents=True)
    (lists / "deb.debian.org_debian_dists_bullseye_InRelease").write_text("index")
    scratch = tmp_path / "tmp" / "NuGetScratch"
    scratch.mkdir(parents=True)
    (scratch / "lock").write_text("")
    return tmp_path


@pytest.fixture
def make_runner():
    return RecordingRunner
