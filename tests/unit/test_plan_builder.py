"""
Unit tests for building plans from Dockerfiles and rendering them back.
"""
import pytest
from nbimage.BUILDERS.plan_builder import PlanBuilder
from nbimage.CONVERTERS.to_dockerfile import DockerfileConverter
from nbimage.exceptions import PlanError
from nbimage.PARSERS.dockerfile_parser import DockerfileParser


def without_build_requires(plan):
    steps = [s.model_dump() for s in plan.steps]
    for step in steps:
        step.pop("build_requires", None)
    return steps


class TestPlanBuilder:
    """Tests for PlanBuilder."""

    def test_samples_dockerfile_matches_bundled_plan(self, samples_dockerfile, samples_plan):
        plan = PlanBuilder().build(samples_dockerfile, name="quantum-samples")
        assert without_build_requires(plan) == without_build_requires(samples_plan)

    def test_channel_swap_fields(self, samples_dockerfile):
        plan = PlanBuilder().build(samples_dockerfile, name="samples")
        swap = plan.steps[4]
        assert swap.kind == "channel_swap"
        assert swap.entry == "deb https://deb.debian.org/debian unstable main"
        assert swap.packages == ["ca-certificates=20211016"]
        assert swap.backup_suffix == ".backup"
        assert swap.lists_dir == "/var/lib/apt/lists/"

    def test_prerequisites_and_user_are_passed_through(self, samples_dockerfile):
        plan = PlanBuilder().build(
            samples_dockerfile, name="samples", runtime_user="alice",
            prerequisites={"qutip": ["numpy"]},
        )
        assert plan.runtime_user == "alice"
        assert plan.prerequisites == {"qutip": ["numpy"]}

    def test_restore_before_install_is_rejected(self):
        content = (
            "FROM debian:11\nUSER root\n"
            "RUN cp /etc/apt/sources.list /etc/apt/sources.list.backup && "
            "echo 'deb http://x unstable main' >> /etc/apt/sources.list && "
            "apt-get -y update && "
            "mv /etc/apt/sources.list.backup /etc/apt/sources.list && "
            "apt-get -y install ca-certificates=20211016 && "
            "apt-get clean && rm -rf /var/lib/apt/lists/\n"
        )
        with pytest.raises(PlanError) as excinfo:
            PlanBuilder().build_from_string(content, name="bad")
        assert "line 3" in str(excinfo.value)

    def test_swap_without_cleanup_is_rejected(self):
        content = (
            "FROM debian:11\nUSER root\n"
            "RUN cp /etc/apt/sources.list /etc/apt/sources.list.backup && "
            "echo 'deb http://x unstable main' >> /etc/apt/sources.list && "
            "apt-get -y update && apt-get -y install ca-certificates=20211016 && "
            "mv /etc/apt/sources.list.backup /etc/apt/sources.list\n"
        )
        with pytest.raises(PlanError):
            PlanBuilder().build_from_string(content, name="bad")

    def test_unrecognized_run_command(self):
        with pytest.raises(PlanError) as excinfo:
            PlanBuilder().build_from_string("FROM debian:11\nRUN make install\n", name="bad")
        assert "make install" in str(excinfo.value)

    def test_unsupported_instruction(self):
        with pytest.raises(PlanError):
            PlanBuilder().build_from_string("FROM debian:11\nCOPY . /src\n", name="bad")

    def test_update_without_install(self):
        with pytest.raises(PlanError):
            PlanBuilder().build_from_string("FROM debian:11\nRUN apt-get update\n", name="bad")

    def test_blank_line_inside_continued_run(self):
        plan = PlanBuilder().build_from_string(
            "FROM debian:11\nUSER root\nRUN apt-get -y update && \\\n\n    apt-get -y install curl\n",
            name="p")
        step = plan.steps[-1]
        assert step.kind == "apt_install"
        assert step.packages == ["curl"]
        assert step.update

    def test_from_with_platform_and_alias(self):
        plan = PlanBuilder().build_from_string(
            "FROM --platform=linux/amd64 debian:11 AS base\n", name="p")
        assert plan.base_image.image == "debian:11"

    def test_chown_with_distinct_group(self):
        plan = PlanBuilder().build_from_string(
            "FROM debian:11\nUSER root\nRUN chown jovyan:users /srv/a /srv/b\n", name="p")
        chown = plan.steps[-1]
        assert chown.owner == "jovyan:users"
        assert chown.paths == ["/srv/a", "/srv/b"]
        assert not chown.recursive


class TestDockerfileConverter:
    """Tests for DockerfileConverter."""

    def test_round_trip(self, samples_plan):
        text = DockerfileConverter(samples_plan).render()
        plan = PlanBuilder().build_from_string(text, name=samples_plan.name)
        assert without_build_requires(plan) == without_build_requires(samples_plan)

    def test_channel_swap_renders_in_one_run(self, samples_plan):
        text = DockerfileConverter(samples_plan).render()
        runs = DockerfileParser().parse_from_string(text).by_keyword("RUN")
        swap_run = next(r for r in runs if "sources.list.backup" in r.arguments[0])
        command = swap_run.arguments[0]
        order = [
            "cp /etc/apt/sources.list /etc/apt/sources.list.backup",
            "echo 'deb https://deb.debian.org/debian unstable main' >> /etc/apt/sources.list",
            "apt-get -y install ca-certificates=20211016",
            "mv /etc/apt/sources.list.backup /etc/apt/sources.list",
            "apt-get clean",
            "rm -rf /var/lib/apt/lists/",
        ]
        positions = [command.index(part) for part in order]
        assert positions == sorted(positions)

    def test_user_placeholder_stays_unquoted(self, samples_plan):
        text = DockerfileConverter(samples_plan).render()
        assert "RUN chown -R ${USER}:${USER} /home/${USER}/.azure" in text

    def test_convert_writes_file(self, samples_plan, tmp_path):
        out = tmp_path / "build" / "Dockerfile"
        path = DockerfileConverter(samples_plan).convert(str(out))
        assert path == str(out)
        assert out.read_text().startswith("# Generated by nbimage from plan 'quantum-samples'.")
        assert "FROM mcr.microsoft.com/quantum/iqsharp-base:0.21.2112180703" in out.read_text()
