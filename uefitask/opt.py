"""Command-line options for the developer task runner."""

from __future__ import annotations

import argparse
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union

from .arch import UefiArch


@dataclass(frozen=True)
class BuildOpt:
    """Build all the uefi packages."""

    target: UefiArch = field(default_factory=UefiArch.default)
    release: bool = False


@dataclass(frozen=True)
class ClippyOpt:
    """Run clippy on all the packages."""

    target: UefiArch = field(default_factory=UefiArch.default)
    warnings_as_errors: bool = False


@dataclass(frozen=True)
class DocOpt:
    """Build the docs for the uefi packages."""

    open: bool = False
    warnings_as_errors: bool = False


@dataclass(frozen=True)
class MiriOpt:
    """Run unit tests and doctests under Miri."""


@dataclass(frozen=True)
class QemuOpt:
    """Build uefi-test-runner and run it in QEMU."""

    target: UefiArch = field(default_factory=UefiArch.default)
    release: bool = False
    disable_kvm: bool = False
    disable_network: bool = False
    ci: bool = False
    headless: bool = False
    ovmf_code: Optional[Path] = None
    ovmf_vars: Optional[Path] = None
    example: Optional[str] = None


@dataclass(frozen=True)
class TestOpt:
    """Run unit tests and doctests on the host."""


@dataclass(frozen=True)
class TestLatestReleaseOpt:
    """Build the template against the published packages."""


Opt = Union[
    BuildOpt, ClippyOpt, DocOpt, MiriOpt, QemuOpt, TestOpt, TestLatestReleaseOpt
]


def _parse_arch(text: str) -> UefiArch:
    try:
        return UefiArch.parse(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_target(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--target",
        type=_parse_arch,
        default=UefiArch.default(),
        help="UEFI target to build for",
    )


def _add_release(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--release", action="store_true", help="Build in release mode")


def _add_warnings(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--warnings-as-errors", action="store_true", help="Treat warnings as errors"
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with one sub-command per action."""
    parser = argparse.ArgumentParser(
        prog="xtask",
        description="Developer utility for running various tasks in uefi-rs.",
    )
    sub = parser.add_subparsers(dest="action", required=True)

    build = sub.add_parser("build", help=BuildOpt.__doc__)
    _add_target(build)
    _add_release(build)
    build.set_defaults(opt_class=BuildOpt)

    clippy = sub.add_parser("clippy", help=ClippyOpt.__doc__)
    _add_target(clippy)
    _add_warnings(clippy)
    clippy.set_defaults(opt_class=ClippyOpt)

    doc = sub.add_parser("doc", help=DocOpt.__doc__)
    doc.add_argument("--open", action="store_true", help="Open the docs in a browser")
    _add_warnings(doc)
    doc.set_defaults(opt_class=DocOpt)

    miri = sub.add_parser("miri", help=MiriOpt.__doc__)
    miri.set_defaults(opt_class=MiriOpt)

    run = sub.add_parser("run", help=QemuOpt.__doc__)
    _add_target(run)
    _add_release(run)
    run.add_argument(
        "--disable-kvm",
        action="store_true",
        help="Disable hardware accelerated virtualization support in QEMU",
    )
    run.add_argument(
        "--disable-network", action="store_true", help="Disable network tests"
    )
    run.add_argument(
        "--ci", action="store_true", help="Disable some tests that don't work in the CI"
    )
    run.add_argument("--headless", action="store_true", help="Run QEMU without a GUI")
    run.add_argument("--ovmf-code", type=Path, help="Path of an OVMF code file")
    run.add_argument("--ovmf-vars", type=Path, help="Path of an OVMF vars file")
    run.add_argument("--example", help="Run an example instead of the main binary")
    run.set_defaults(opt_class=QemuOpt)

    test = sub.add_parser("test", help=TestOpt.__doc__)
    test.set_defaults(opt_class=TestOpt)

    latest = sub.add_parser("test-latest-release", help=TestLatestReleaseOpt.__doc__)
    latest.set_defaults(opt_class=TestLatestReleaseOpt)

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Opt:
    """Parse the command line into the options object of the chosen action."""
    namespace = build_parser().parse_args(argv)
    opt_class = namespace.opt_class
    values = vars(namespace)
    kwargs = {f.name: values[f.name] for f in dataclasses.fields(opt_class)}
    return opt_class(**kwargs)