"""Build pipeline runner.

This module handles:
- Composing the configure/patch/build/install actions of a package
- Executing them one at a time in the package's source directory
- Capturing stdout/stderr to a per-package log file
- Enforcing step timeouts

Packages are built strictly sequentially in build order. The first failing
step aborts the run; packages built before it keep their artifacts.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from crossbuild.errors import BuildStepError
from crossbuild.types import BuildStep, PackageBuildResult, StepResult

if TYPE_CHECKING:
    from crossbuild.config import Settings
    from crossbuild.manifest.schema import PackageSchema

logger = logging.getLogger(__name__)

SHELL = "bash"
PATCH_GLOB = "*.patch"

# --forward and --batch keep patch from asking about reversed hunks on the tty
PATCH_ARGS = ["patch", "-p1", "--forward", "--batch"]
# --force assumes the patch is not reversed, so the check never prompts either
PATCH_APPLIED_ARGS = ["patch", "-p1", "--reverse", "--dry-run", "--force"]


@dataclass
class BuildAction:
    """One command of a package pipeline.

    Attributes:
        step: Pipeline stage the command belongs to.
        argv: Command as list of strings suitable for subprocess.
        description: Human-readable form for logs.
        done_check: Optional command that exits 0 when the action's effect is
            already present in the source tree, in which case it is skipped.
    """

    step: BuildStep
    argv: list[str]
    description: str
    done_check: list[str] | None = None


def shell_action(step: BuildStep, command: str) -> BuildAction:
    """Wrap a shell command line in a BuildAction."""
    return BuildAction(step=step, argv=[SHELL, "-c", command], description=command)


def default_build_command() -> str:
    """Return the default build command, a make sized to available CPUs."""
    return f"make -j {os.cpu_count() or 1}"


def list_patches(patches_dir: Path) -> list[Path]:
    """List the *.patch files of a directory in listing (name) order.

    Args:
        patches_dir: Directory holding patch files.

    Returns:
        Sorted list of patch paths; empty if the directory does not exist.
    """
    if not patches_dir.is_dir():
        logger.warning("Patch directory does not exist: %s", patches_dir)
        return []
    return sorted(p for p in patches_dir.glob(PATCH_GLOB) if p.is_file())


def compose_actions(
    package: PackageSchema,
    configure: bool = True,
    build: bool = True,
) -> list[BuildAction]:
    """Compose the ordered actions for a package.

    Args:
        package: Package with rendered command templates.
        configure: Run the configure step (when the package defines one).
        build: Run the build and install steps.

    Returns:
        Actions in execution order.
    """
    actions: list[BuildAction] = []

    if configure and package.configure_opts.strip():
        actions.append(shell_action(BuildStep.CONFIGURE, package.configure_opts))

    if package.patches_dir:
        for patch in list_patches(Path(package.patches_dir)):
            argv = [*PATCH_ARGS, "-i", str(patch)]
            actions.append(
                BuildAction(
                    step=BuildStep.PATCH,
                    argv=argv,
                    description=shlex.join(argv),
                    done_check=[*PATCH_APPLIED_ARGS, "-i", str(patch)],
                )
            )

    if build:
        command = package.build.strip() or default_build_command()
        actions.append(shell_action(BuildStep.BUILD, command))

        if package.install.strip():
            actions.append(shell_action(BuildStep.INSTALL, package.install))

    return actions


def is_already_done(
    action: BuildAction,
    cwd: Path,
    log_file: TextIO,
    timeout: int | None = None,
) -> bool:
    """Run the action's done check, if any.

    Cached sources are reused across runs, so a patch applied by an earlier
    run is already in the tree. Its reverse dry-run then succeeds.

    Returns:
        True if the check exists and exits 0.

    Raises:
        subprocess.TimeoutExpired: If the check exceeds the timeout.
        OSError: If the check cannot be started.
    """
    if not action.done_check:
        return False

    log_file.write(f"\n# Check: {shlex.join(action.done_check)}\n")
    log_file.flush()
    result = subprocess.run(
        action.done_check,
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=log_file,
        stderr=subprocess.STDOUT,
        timeout=timeout,
        check=False,
    )
    return result.returncode == 0


def run_action(
    action: BuildAction,
    cwd: Path,
    log_file: TextIO,
    timeout: int | None = None,
) -> StepResult:
    """Execute one action and wait for it to finish.

    Args:
        action: Action to run.
        cwd: Working directory.
        log_file: Open log file receiving stdout and stderr.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        StepResult with exit code and timing.

    Raises:
        subprocess.TimeoutExpired: If the action exceeds the timeout.
        OSError: If the command cannot be started.
    """
    started_at = datetime.now(timezone.utc)
    log_file.write(f"\n# Step: {action.step.value}\n")
    log_file.write(f"# Command: {action.description}\n")
    log_file.write(f"# Started: {started_at.isoformat()}\n")
    log_file.flush()

    result = subprocess.run(
        action.argv,
        cwd=cwd,
        stdout=log_file,
        stderr=subprocess.STDOUT,
        timeout=timeout,
        check=False,
    )

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()
    log_file.write(f"# Exit code: {result.returncode}\n")
    log_file.write(f"# Duration: {duration:.1f}s\n")
    log_file.flush()

    return StepResult(
        step=action.step,
        command=action.description,
        exit_code=result.returncode,
        started_at=started_at,
        finished_at=finished_at,
    )


def run_package(
    package: PackageSchema,
    source_dir: Path,
    log_dir: Path,
    configure: bool = True,
    build: bool = True,
    timeout: int | None = None,
) -> PackageBuildResult:
    """Run the pipeline of one package.

    Args:
        package: Package with rendered command templates.
        source_dir: Extracted source directory (working directory of every step).
        log_dir: Directory receiving <name>.log.
        configure: Run the configure step.
        build: Run the build and install steps.
        timeout: Per-step timeout in seconds (None = no timeout).

    Returns:
        PackageBuildResult with per-step results.

    Raises:
        BuildStepError: If the source directory is missing or a step fails.
    """
    name = package.name
    if not source_dir.is_dir():
        raise BuildStepError(
            name,
            "prepare",
            f"source directory {source_dir} does not exist",
            code="missing_source",
        )

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{name}.log"
    actions = compose_actions(package, configure=configure, build=build)

    logger.info("Building %s in %s (%d step(s))", name, source_dir, len(actions))
    result = PackageBuildResult(name=name, source_dir=source_dir, log_path=log_path)

    with log_path.open("w") as log_file:
        log_file.write(f"# Package: {name}\n")
        log_file.write(f"# CWD: {source_dir}\n")
        log_file.write("# " + "=" * 70 + "\n")
        log_file.flush()

        for action in actions:
            logger.info("[%s] %s: %s", name, action.step.value, action.description)
            try:
                if is_already_done(action, source_dir, log_file, timeout=timeout):
                    logger.info(
                        "[%s] %s already applied, skipping", name, action.description
                    )
                    log_file.write("# Already applied, skipped\n")
                    continue
                step = run_action(action, source_dir, log_file, timeout=timeout)
            except subprocess.TimeoutExpired as e:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
                raise BuildStepError(
                    name,
                    action.step.value,
                    f"timed out after {timeout} seconds",
                    exit_code=-1,
                    log_path=log_path,
                    code="build_timeout",
                ) from e
            except OSError as e:
                raise BuildStepError(
                    name,
                    action.step.value,
                    f"cannot execute {shlex.join(action.argv)}: {e}",
                    log_path=log_path,
                    code="execution_error",
                ) from e

            result.steps.append(step)
            if not step.success:
                logger.error(
                    "[%s] %s exited with %d. See log: %s",
                    name,
                    action.step.value,
                    step.exit_code,
                    log_path,
                )
                raise BuildStepError(
                    name,
                    action.step.value,
                    f"exit code {step.exit_code} (see {log_path})",
                    exit_code=step.exit_code,
                    log_path=log_path,
                )

    return result


def run_pipeline(
    order: list[PackageSchema],
    sources: Mapping[str, Path],
    settings: Settings,
    configure: bool = True,
    build: bool = True,
) -> list[PackageBuildResult]:
    """Build every package in order, one at a time.

    Args:
        order: Packages in build order.
        sources: Source directory per package name.
        settings: Settings (log dir, step timeout).
        configure: Run configure steps.
        build: Run build and install steps.

    Returns:
        Results of the packages built, in order.

    Raises:
        BuildStepError: At the first failing package; earlier packages keep
            their artifacts.
    """
    results: list[PackageBuildResult] = []
    for index, package in enumerate(order, start=1):
        source_dir = sources.get(package.name)
        if source_dir is None:
            raise BuildStepError(
                package.name,
                "prepare",
                "no source directory was acquired",
                code="missing_source",
            )
        logger.info("(%d/%d) %s", index, len(order), package.name)
        results.append(
            run_package(
                package,
                source_dir,
                settings.log_dir,
                configure=configure,
                build=build,
                timeout=settings.build_timeout,
            )
        )
    return results


__all__ = [
    "BuildAction",
    "compose_actions",
    "default_build_command",
    "is_already_done",
    "list_patches",
    "run_action",
    "run_package",
    "run_pipeline",
    "shell_action",
]
