"""Entry point of the developer task runner."""

from __future__ import annotations

import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from . import platform
from .arch import UefiArch
from .cargo import (
    ActionKind,
    Cargo,
    CargoAction,
    Feature,
    Package,
    TargetTypes,
    fix_nested_cargo_env,
)
from .disk import DiskCheckError
from .opt import (
    BuildOpt,
    ClippyOpt,
    DocOpt,
    MiriOpt,
    QemuOpt,
    TestLatestReleaseOpt,
    TestOpt,
    parse_args,
)
from .qemu import run_qemu
from .util import Command, command_to_string, run_cmd


def build(opt: BuildOpt) -> None:
    """Build all the uefi packages."""
    cargo = Cargo(
        action=CargoAction(ActionKind.BUILD),
        features=Feature.more_code(),
        packages=Package.all_except_xtask(),
        release=opt.release,
        target=opt.target,
        target_types=TargetTypes.BINS_EXAMPLES_LIB,
    )
    run_cmd(cargo.command())


def clippy(opt: ClippyOpt) -> None:
    """Run clippy on the UEFI packages, then on the task runner."""
    run_cmd(
        Cargo(
            action=CargoAction(ActionKind.CLIPPY),
            features=Feature.more_code(),
            packages=Package.all_except_xtask(),
            target=opt.target,
            warnings_as_errors=opt.warnings_as_errors,
            target_types=TargetTypes.BINS_EXAMPLES_LIB,
        ).command()
    )
    run_cmd(
        Cargo(
            action=CargoAction(ActionKind.CLIPPY),
            packages=[Package.XTASK],
            warnings_as_errors=opt.warnings_as_errors,
        ).command()
    )


def doc(opt: DocOpt) -> None:
    """Build the docs of the published packages."""
    cargo = Cargo(
        action=CargoAction(ActionKind.DOC, open=opt.open),
        features=Feature.more_code(),
        packages=Package.published(),
        warnings_as_errors=opt.warnings_as_errors,
    )
    run_cmd(cargo.command())


def run_miri() -> None:
    """Run unit tests and doctests under Miri."""
    cargo = Cargo(
        action=CargoAction(ActionKind.MIRI),
        features=[Feature.EXTS],
        packages=[Package.UEFI],
    )
    run_cmd(cargo.command())


def run_vm_tests(opt: QemuOpt) -> None:
    """Build the test runner and run it in QEMU."""
    features = [Feature.QEMU]
    # The multi-processor test does not work without kvm, so skip it
    # away from Linux as well as in the CI.
    if opt.ci or not platform.is_linux():
        features.append(Feature.CI)

    cargo = Cargo(
        action=CargoAction(ActionKind.BUILD),
        features=features,
        packages=[Package.UEFI_TEST_RUNNER],
        release=opt.release,
        target=opt.target,
        target_types=TargetTypes.BINS_EXAMPLES,
    )
    run_cmd(cargo.command())
    run_qemu(opt.target, opt)


def run_host_tests() -> None:
    """Run the tests that can run on the host without a VM."""
    run_cmd(
        Cargo(
            action=CargoAction(ActionKind.TEST),
            packages=[Package.XTASK],
        ).command()
    )
    # uefi-services has lang items that conflict with std, so only the
    # core packages are tested here, on the host target.
    run_cmd(
        Cargo(
            action=CargoAction(ActionKind.TEST),
            features=[Feature.EXTS],
            packages=[Package.UEFI, Package.UEFI_MACROS],
        ).command()
    )


def test_latest_release() -> None:
    """Build the template app in isolation against the published packages.

    The build command must also appear in BUILDING.md.
    """
    with tempfile.TemporaryDirectory() as tmp_name:
        tmp_dir = Path(tmp_name)
        run_cmd(Command("cp", ["--recursive", "--verbose", "template", tmp_dir]))

        build_cmd = Command("cargo")
        fix_nested_cargo_env(build_cmd)
        build_cmd.args.extend(["build", "--target", UefiArch.X86_64.as_triple()])
        build_cmd.cwd = tmp_dir / "template"

        building_md = Path("BUILDING.md").read_text(encoding="utf-8")
        expected = command_to_string(build_cmd)
        if expected not in building_md:
            raise RuntimeError(f"BUILDING.md does not contain: {expected}")
        run_cmd(build_cmd)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse the command line and run the chosen action."""
    opt = parse_args(argv)
    try:
        if isinstance(opt, BuildOpt):
            build(opt)
        elif isinstance(opt, ClippyOpt):
            clippy(opt)
        elif isinstance(opt, DocOpt):
            doc(opt)
        elif isinstance(opt, MiriOpt):
            run_miri()
        elif isinstance(opt, QemuOpt):
            run_vm_tests(opt)
        elif isinstance(opt, TestOpt):
            run_host_tests()
        elif isinstance(opt, TestLatestReleaseOpt):
            test_latest_release()
    except (
        OSError,
        RuntimeError,
        ValueError,
        EOFError,
        DiskCheckError,
        subprocess.CalledProcessError,
    ) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())