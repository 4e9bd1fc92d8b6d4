"""
Integration tests for the nbimage command line.
"""
import json
import os

import pytest
from click.testing import CliRunner

from nbimage.CLI.main import cli
from nbimage.PARSERS.plan_parser import PlanParser
from nbimage.VERIFY.image_verifier import fingerprint


@pytest.fixture
def runner(tmp_path, monkeypatch):
    # Keep a stray .env in the working directory out of the plan context
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli, list(args), obj={})


class TestCli:
    """End-to-end runs of each command against the bundled plan."""

    def test_help(self, runner):
        result = invoke(runner, "--help")
        assert result.exit_code == 0
        assert "provision the quantum samples notebook image" in result.output

    def test_plan(self, runner):
        result = invoke(runner, "plan")
        assert result.exit_code == 0
        assert "Plan: quantum-samples (runtime user jovyan)" in result.output
        assert "mcr.microsoft.com/quantum/iqsharp-base:0.21.2112180703 [tag]" in result.output
        assert "ca-certificates=20211016" in result.output
        assert "matplotlib<=2.1.2 ipyparallel mpltools qinfer" in result.output

    def test_check(self, runner):
        result = invoke(runner, "check")
        assert result.exit_code == 0
        assert "quantum-samples: ordering OK (13 steps)" in result.output
        assert "Warning" not in result.output

    def test_check_reports_violations(self, runner, tmp_path):
        plan_file = tmp_path / "bad.yaml"
        plan_file.write_text(
            "name: bad\n"
            "prerequisites:\n"
            "  qutip: [numpy]\n"
            "steps:\n"
            "  - kind: base_image\n"
            "    image: debian\n"
            "  - kind: pip_install\n"
            "    requirements: [qutip, numpy]\n"
        )
        result = invoke(runner, "--plan", str(plan_file), "check")
        assert result.exit_code == 1
        assert "Warning: base image debian is not pinned" in result.output
        assert "same layer" in result.output
        assert "Error: 1 ordering violation(s)" in result.output

    def test_render(self, runner, tmp_path):
        out = tmp_path / "Dockerfile"
        result = invoke(runner, "render", "-o", str(out))
        assert result.exit_code == 0
        content = out.read_text()
        assert content.startswith("# Generated by nbimage from plan 'quantum-samples'.")
        assert "FROM mcr.microsoft.com/quantum/iqsharp-base:0.21.2112180703" in content
        assert "mv /etc/apt/sources.list.backup /etc/apt/sources.list" in content

    def test_render_stdout(self, runner):
        result = invoke(runner, "render", "-o", "-")
        assert result.exit_code == 0
        assert "USER root" in result.output

    def test_build_dry_run(self, runner, tmp_path):
        report_file = tmp_path / "report.json"
        result = invoke(runner, "build", "--dry-run", "--report", str(report_file))
        assert result.exit_code == 0
        assert "[3] apt-get -y update" in result.output
        assert "[10] pip install qutip" in result.output
        assert "quantum-samples: 13 steps planned" in result.output

        report = json.loads(report_file.read_text())
        assert report["dry_run"] is True
        assert report["manifest"]["pip_packages"][:4] == ["jupytext", "cython", "numpy", "scipy"]

    def test_build_report_unwritable(self, runner, tmp_path):
        report_file = tmp_path / "missing" / "report.json"
        result = invoke(runner, "build", "--dry-run", "--report", str(report_file))
        assert result.exit_code == 1
        assert f"Error: cannot write report {report_file}: No such file or directory" in result.output

    def test_verify_report_missing(self, runner, tmp_path):
        result = invoke(runner, "verify", "--report", str(tmp_path / "nope.json"), "--check", "layer-order")
        assert result.exit_code == 1
        assert "Error: cannot read report" in result.output

    def test_verify_report_invalid(self, runner, tmp_path):
        report_file = tmp_path / "report.json"
        report_file.write_text("{not json")
        result = invoke(runner, "verify", "--report", str(report_file), "--check", "layer-order")
        assert result.exit_code == 1
        assert f"Error: invalid report {report_file}" in result.output

    def test_verify_reads_build_report(self, runner, tmp_path):
        report_file = tmp_path / "report.json"
        assert invoke(runner, "build", "--dry-run", "--report", str(report_file)).exit_code == 0
        result = invoke(runner, "verify", "--report", str(report_file), "--check", "layer-order")
        assert result.exit_code == 0
        assert "PASS layer-order" in result.output

    def test_fingerprint_is_stable(self, runner):
        first = invoke(runner, "fingerprint")
        second = invoke(runner, "fingerprint")
        assert first.exit_code == 0
        assert first.output == second.output
        expected = fingerprint(PlanParser().parse(PlanParser.bundled()))
        assert first.output.strip() == expected

    def test_set_overrides_runtime_user(self, runner):
        result = invoke(runner, "--set", "USER=vscode", "plan")
        assert result.exit_code == 0
        assert "runtime user vscode" in result.output

    def test_bad_set_value(self, runner):
        result = invoke(runner, "--set", "USER", "plan")
        assert result.exit_code != 0
        assert "KEY=VALUE" in result.output

    def test_missing_plan_file(self, runner):
        result = invoke(runner, "--plan", "nope.yaml", "plan")
        assert result.exit_code == 1
        assert "Error: nope.yaml not found." in result.output

    def test_invalid_plan_file(self, runner, tmp_path):
        plan_file = tmp_path / "broken.yaml"
        plan_file.write_text("- just\n- a list\n")
        result = invoke(runner, "--plan", str(plan_file), "plan")
        assert result.exit_code == 1
        assert "Error: plan must be a mapping" in result.output

    def test_dockerfile_source(self, runner, samples_dockerfile):
        result = invoke(runner, "--dockerfile", samples_dockerfile, "--name", "from-dockerfile", "check")
        assert result.exit_code == 0
        assert "from-dockerfile: ordering OK (13 steps)" in result.output

    def test_snapshot(self, runner, build_root):
        result = invoke(runner, "snapshot", "--root", str(build_root))
        assert result.exit_code == 0
        assert len(result.output.strip()) == 64

    def test_snapshot_missing(self, runner, tmp_path):
        result = invoke(runner, "snapshot", "--root", str(tmp_path))
        assert result.exit_code == 1
        assert "Error: /etc/apt/sources.list not found." in result.output

    def test_verify_layer_order(self, runner):
        result = invoke(runner, "verify", "--check", "layer-order")
        assert result.exit_code == 0
        assert "PASS layer-order" in result.output

    def test_verify_failure_exits_nonzero(self, runner, build_root):
        result = invoke(runner, "verify", "--root", str(build_root), "--check", "sources-list")
        assert result.exit_code == 1
        assert "FAIL sources-list" in result.output
        assert "Error: 1 check(s) failed" in result.output
