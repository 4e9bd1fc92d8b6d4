"""
Command Line Interface for nbimage.
"""
import json
import logging
import sys

import click

from ..BUILDERS.plan_builder import PlanBuilder
from ..CONVERTERS.to_dockerfile import DockerfileConverter
from ..exceptions import NbImageError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.sources_list_manager import SourcesListManager
from ..MODELS.build_report import BuildReport
from ..PARSERS.plan_parser import PlanParser
from ..RUNNERS.order_validator import OrderValidator
from ..RUNNERS.pipeline import ProvisioningPipeline
from ..VERIFY.image_verifier import ImageVerifier, fingerprint


def _load_plan(ctx):
    """Loads the plan selected by the group options, once per invocation."""
    if 'plan' in ctx.obj:
        return ctx.obj['plan']

    overrides = {}
    for item in ctx.obj['set']:
        key, sep, value = item.partition('=')
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint='--set')
        overrides[key] = value
    context = EnvironmentManager().get_plan_context(ctx.obj['env_files'], overrides)

    try:
        if ctx.obj['dockerfile']:
            plan = PlanBuilder().build(
                ctx.obj['dockerfile'],
                name=ctx.obj['name'] or 'dockerfile',
                runtime_user=context.get('USER', 'jovyan'),
            )
        else:
            plan = PlanParser(context).parse(ctx.obj['plan_file'] or PlanParser.bundled())
    except NbImageError as e:
        _fail(e)
    except FileNotFoundError as e:
        _fail(f"{e.filename} not found.")
    ctx.obj['plan'] = plan
    return plan


def _fail(message):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


class ClickEchoHandler(logging.Handler):
    """Sends log records to whatever stderr click currently writes to."""

    def emit(self, record):
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(verbose):
    logger = logging.getLogger("nbimage")
    if not any(isinstance(h, ClickEchoHandler) for h in logger.handlers):
        handler = ClickEchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@click.group()
@click.option('--plan', '-p', 'plan_file', default=None, help='Plan YAML file (default: bundled samples plan)')
@click.option('--dockerfile', '-d', default=None, help='Read the plan from a Dockerfile instead')
@click.option('--name', default=None, help='Plan name when reading a Dockerfile')
@click.option('--env-file', 'env_files', multiple=True, default=['.env'], help='.env files with plan variables')
@click.option('--set', 'set_values', multiple=True, help='Override a plan variable (KEY=VALUE)')
@click.option('--verbose', '-v', is_flag=True, help='Show commands as they run')
@click.version_option(package_name='nbimage')
@click.pass_context
def cli(ctx, plan_file, dockerfile, name, env_files, set_values, verbose):
    """
    nbimage - provision the quantum samples notebook image.

    Loads an ordered provisioning plan, checks its ordering rules, renders
    it as a Dockerfile, runs it, and verifies the result.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.update(
        plan_file=plan_file,
        dockerfile=dockerfile,
        name=name,
        env_files=list(env_files),
        set=list(set_values),
    )


@cli.command()
@click.pass_context
def plan(ctx):
    """Show the plan's steps in order."""
    loaded = _load_plan(ctx)
    click.echo(f"Plan: {loaded.name} (runtime user {loaded.runtime_user})")
    reference = loaded.base_image.reference
    click.echo(f"Base: {reference.full_name} [{reference.pin_kind}]")
    for index, step in enumerate(loaded.steps):
        click.echo(f"{index:3} {step.kind:12} {_describe(step)}")


def _describe(step):
    if step.kind == 'base_image':
        return step.image
    if step.kind == 'env':
        return ' '.join(f"{k}={v}" for k, v in step.variables.items())
    if step.kind == 'user':
        return step.name
    if step.kind in ('apt_install', 'channel_swap'):
        return ' '.join(step.packages)
    if step.kind == 'dotnet_tool':
        return f"{step.package} {step.version or ''}".strip()
    if step.kind == 'pip_install':
        return ' '.join(step.requirements)
    if step.kind == 'chown':
        return f"{step.owner} {' '.join(step.paths)}"
    return ''


@cli.command()
@click.pass_context
def check(ctx):
    """Check the plan's step ordering rules."""
    loaded = _load_plan(ctx)
    violations = OrderValidator().validate(loaded)
    if not loaded.base_image.reference.is_pinned:
        click.echo(f"Warning: base image {loaded.base_image.image} is not pinned")
    if violations:
        for violation in violations:
            click.echo(str(violation))
        _fail(f"{len(violations)} ordering violation(s)")
    click.echo(f"{loaded.name}: ordering OK ({len(loaded.steps)} steps)")


@cli.command()
@click.option('--out', '-o', default='Dockerfile', help='Output file')
@click.pass_context
def render(ctx, out):
    """Write the plan as a Dockerfile."""
    loaded = _load_plan(ctx)
    if out == '-':
        click.echo(DockerfileConverter(loaded).render(), nl=False)
        return
    path = DockerfileConverter(loaded).convert(out)
    click.echo(f"Dockerfile written to {path}")


@cli.command()
@click.option('--dry-run', is_flag=True, help='Print commands without running them')
@click.option('--root', default='/', help='Filesystem root for sources list and ownership changes')
@click.option('--report', 'report_file', default=None, help='Write the build report as JSON')
@click.pass_context
def build(ctx, dry_run, root, report_file):
    """Run the plan's steps in order."""
    loaded = _load_plan(ctx)
    pipeline = ProvisioningPipeline(root=root, dry_run=dry_run)
    try:
        report = pipeline.run(loaded)
    except NbImageError as e:
        _fail(e)

    for record in report.steps:
        for argv in record.commands:
            click.echo(f"[{record.index}] {' '.join(argv)}")
    click.echo(f"{loaded.name}: {len(report.steps)} steps {'planned' if dry_run else 'completed'}")

    if report_file:
        try:
            with open(report_file, 'w', encoding='utf-8') as f:
                f.write(report.model_dump_json(indent=2))
        except OSError as e:
            _fail(f"cannot write report {report_file}: {e.strerror}")


@cli.command()
@click.option('--root', default='/', help='Filesystem root of the provisioned image')
@click.option('--snapshot', default=None, help='SHA-256 of the sources list before the build')
@click.option('--report', 'report_file', default=None, help='Build report written by `build --report`')
@click.option('--check', 'checks', multiple=True,
              type=click.Choice(['pinned-packages', 'pip-packages', 'sources-list', 'ownership', 'layer-order']),
              help='Run only these checks')
@click.pass_context
def verify(ctx, root, snapshot, report_file, checks):
    """Verify a provisioned image against the plan."""
    loaded = _load_plan(ctx)
    manifest = None
    if report_file:
        try:
            with open(report_file, 'r', encoding='utf-8') as f:
                manifest = BuildReport.model_validate(json.load(f)).manifest
        except OSError as e:
            _fail(f"cannot read report {report_file}: {e.strerror}")
        except ValueError as e:
            # Covers malformed JSON and reports that fail validation
            _fail(f"invalid report {report_file}: {e}")

    result = ImageVerifier(root=root).verify(
        loaded, snapshot_digest=snapshot, manifest=manifest, checks=list(checks) or None)
    for check_result in result.checks:
        status = 'PASS' if check_result.passed else 'FAIL'
        click.echo(f"{status} {check_result.name:16} {check_result.detail}")
    if not result.passed:
        _fail(f"{len(result.failures)} check(s) failed")


@cli.command()
@click.option('--root', default='/', help='Filesystem root')
@click.option('--sources-list', default='/etc/apt/sources.list', help='Sources list to digest')
def snapshot(root, sources_list):
    """Print the sources list digest to compare against after a build."""
    try:
        click.echo(SourcesListManager(root).snapshot(sources_list))
    except FileNotFoundError:
        _fail(f"{sources_list} not found.")


@cli.command(name='fingerprint')
@click.pass_context
def fingerprint_command(ctx):
    """Print the plan's reproducibility fingerprint."""
    click.echo(fingerprint(_load_plan(ctx)))


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
