"""VM lifecycle commands for dragonwsl.

This module provides the CLI commands that create, refresh, upgrade,
remove and inspect managed WSL VMs.
"""

from __future__ import annotations

import traceback
from typing import NoReturn

import click

from dragonwsl.cli.context import Context, pass_context
from dragonwsl.core.engine import ProfileNotification, UpgradeResult
from dragonwsl.core.exceptions import (
    BatchOperationError,
    DragonError,
    InvalidImageReferenceError,
    VMBusyError,
)
from dragonwsl.models.record import ImageReference
from dragonwsl.utils.output import (
    OutputFormat,
    OutputFormatter,
    print_error,
    print_info,
    print_success,
    print_warning,
)


def _fail(ctx: Context, error: DragonError) -> NoReturn:
    """Report a failed command and exit with status 1."""
    print_error(str(error))
    if ctx.debug:
        traceback.print_exc()
    raise SystemExit(1) from error


def _register_profile(ctx: Context, notification: ProfileNotification) -> None:
    """Create or update the Windows Terminal profile, if configured."""
    writer = ctx.init_terminal_writer()
    if writer is None:
        return
    created = writer.register(notification)
    action = "Added" if created else "Updated"
    print_info(f"{action} Windows Terminal profile '{notification.name}'")


def _report_upgrades(ctx: Context, results: list[UpgradeResult]) -> None:
    for result in results:
        plan = result.plan
        print_success(f"Upgraded '{plan.name}' to {plan.target_tag}: {plan.describe()}")
        _register_profile(ctx, result.notification)


def _report_failures(error: BatchOperationError, operation: str) -> None:
    for name, failure in error.failures.items():
        print_error(f"{name}: {failure}")
        if isinstance(failure, VMBusyError):
            print_info(f"Stop it with 'wsl --terminate {failure.vm_name}' and run {operation} again.")


@click.command("new")
@click.argument("name")
@click.argument("image")
@click.option(
    "--tag",
    default=None,
    help="Image tag to use (default: tag in IMAGE, else the newest in the registry).",
)
@pass_context
def new(ctx: Context, name: str, image: str, tag: str | None) -> None:
    """Create a VM from a container image.

    NAME identifies the VM from now on; IMAGE is registry/repository[:tag].

    Examples:

        $ dragon new devbox myregistry.azurecr.io/tools/dev

        $ dragon new devbox myregistry.azurecr.io/tools/dev --tag v1
    """
    if ctx.dry_run:
        try:
            ref = ImageReference.parse(image)
        except InvalidImageReferenceError as e:
            print_error(str(e))
            raise SystemExit(1) from e
        source = ref.with_tag(tag) if tag else str(ref)
        print_info(f"[DRY RUN] Would create VM '{name}' from '{source}'")
        return

    try:
        engine = ctx.init_engine()
        result = engine.new(name, image, tag)
        print_success(
            f"Created '{name}' from {result.record.image.with_tag(result.record.current_tag)} "
            f"as {result.record.vm_identifier}"
        )
        _register_profile(ctx, result.notification)

    except DragonError as e:
        _fail(ctx, e)


@click.command("update")
@click.argument("name", required=False)
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format.",
)
@pass_context
def update(ctx: Context, name: str | None, fmt: str) -> None:
    """Check the registry for newer tags.

    Records the newest tag of each VM's image as its latest tag. No VM is
    touched. Without NAME every record is checked.

    Examples:

        $ dragon update

        $ dragon update devbox
    """
    target = f"'{name}'" if name else "all records"
    if ctx.dry_run:
        print_info(f"[DRY RUN] Would check the registry for {target}")
        return

    try:
        engine = ctx.init_engine()
        results = engine.update(name)

        if not results:
            print_info("No VM records to update")
            return

        OutputFormatter(OutputFormat(fmt)).print_update_results(results)

    except BatchOperationError as e:
        if e.completed:
            OutputFormatter(OutputFormat(fmt)).print_update_results(e.completed)
        _report_failures(e, "update")
        raise SystemExit(1) from e
    except DragonError as e:
        _fail(ctx, e)


@click.command("upgrade")
@click.argument("name", required=False)
@pass_context
def upgrade(ctx: Context, name: str | None) -> None:
    """Move VMs to their latest tag.

    With a newer tag the new VM is created before the old one is removed.
    With an unchanged tag the VM is recreated in place. Without NAME every
    record is upgraded.
    A record that fails does not stop the others; the command then exits
    with status 1 after reporting each failure.

    Examples:

        $ dragon upgrade

        $ dragon upgrade devbox

        $ dragon --dry-run upgrade devbox
    """
    try:
        engine = ctx.init_engine()

        if ctx.dry_run:
            plans = engine.plan_upgrade(name)
            if not plans:
                print_info("No VM records to upgrade")
                return
            print_info("[DRY RUN] Would perform:")
            OutputFormatter().print_upgrade_plans(plans)
            return

        results = engine.upgrade(name)
        if not results:
            print_info("No VM records to upgrade")
            return

        _report_upgrades(ctx, results)

    except BatchOperationError as e:
        try:
            _report_upgrades(ctx, e.completed)
        except DragonError as profile_error:
            print_error(str(profile_error))
        _report_failures(e, "upgrade")
        raise SystemExit(1) from e
    except VMBusyError as e:
        print_error(str(e))
        print_info(f"Stop it with 'wsl --terminate {e.vm_name}' and run upgrade again.")
        raise SystemExit(1) from e
    except DragonError as e:
        _fail(ctx, e)


@click.command("remove")
@click.argument("name")
@click.option(
    "--keep-vm",
    is_flag=True,
    help="Forget the record but leave the VM registered in WSL.",
)
@click.option(
    "--force",
    is_flag=True,
    help="Terminate the VM first if it is running.",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt.",
)
@pass_context
def remove(ctx: Context, name: str, keep_vm: bool, force: bool, yes: bool) -> None:
    """Remove a VM record and its VM.

    NAME is the record to remove. Unless --keep-vm is given the VM is
    unregistered, which deletes its filesystem.

    Examples:

        $ dragon remove devbox

        $ dragon remove devbox --keep-vm --yes
    """
    if ctx.dry_run:
        what = "record" if keep_vm else "record and VM"
        print_info(f"[DRY RUN] Would remove {what} '{name}'")
        return

    if not yes:
        if keep_vm:
            click.confirm(f"Forget VM record '{name}'?", abort=True)
        else:
            click.confirm(
                f"Remove '{name}' and unregister its VM? This cannot be undone.",
                abort=True,
            )

    try:
        engine = ctx.init_engine()
        record = engine.remove(name, keep_vm=keep_vm, force=force)
        if keep_vm:
            print_success(f"Removed record '{name}', kept VM {record.vm_identifier}")
        else:
            print_success(f"Removed '{name}' and VM {record.vm_identifier}")

    except VMBusyError as e:
        print_error(str(e))
        print_info("Use --force to terminate it first.")
        raise SystemExit(1) from e
    except DragonError as e:
        _fail(ctx, e)


@click.command("list")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format.",
)
@pass_context
def list_records(ctx: Context, fmt: str) -> None:
    """List VM records and whether their VMs exist.

    Examples:

        $ dragon list

        $ dragon list --format json
    """
    try:
        engine = ctx.init_engine()
        statuses = engine.status()

        if not statuses:
            print_info(f"No VM records in {engine.store.path}")
            return

        OutputFormatter(OutputFormat(fmt)).print_status(statuses)

        pending = [s.record.name for s in statuses if s.record.update_available]
        if pending and fmt == "table":
            print_warning(f"Upgrade available for: {', '.join(pending)}")

    except DragonError as e:
        _fail(ctx, e)


@click.command("drift")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format.",
)
@pass_context
def drift(ctx: Context, fmt: str) -> None:
    """Compare records with the WSL inventory.

    Reports records whose VM is missing and VMs left behind by
    interrupted upgrades. Exits with status 1 when drift is found.

    Examples:

        $ dragon drift

        $ dragon drift --format yaml
    """
    try:
        engine = ctx.init_engine()
        report = engine.check_drift()
    except DragonError as e:
        _fail(ctx, e)

    OutputFormatter(OutputFormat(fmt)).print_drift(report)
    if report.has_drift:
        raise SystemExit(1)
