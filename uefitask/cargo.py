"""Building cargo command lines for the workspace packages."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Iterable, Optional

from .arch import UefiArch
from .util import Command


class Package(Enum):
    """A package in the workspace."""

    UEFI = "uefi"
    UEFI_APP = "uefi_app"
    UEFI_MACROS = "uefi-macros"
    UEFI_SERVICES = "uefi-services"
    UEFI_TEST_RUNNER = "uefi-test-runner"
    XTASK = "xtask"

    @classmethod
    def published(cls) -> list[Package]:
        """All published packages."""
        return [cls.UEFI, cls.UEFI_MACROS, cls.UEFI_SERVICES]

    @classmethod
    def all_except_xtask(cls) -> list[Package]:
        """All the packages except for xtask."""
        return [
            cls.UEFI,
            cls.UEFI_APP,
            cls.UEFI_MACROS,
            cls.UEFI_SERVICES,
            cls.UEFI_TEST_RUNNER,
        ]


class Feature(Enum):
    """A cargo feature that can be enabled."""

    ALLOC = "alloc"
    EXTS = "exts"
    LOGGER = "logger"

    CI = "uefi-test-runner/ci"
    QEMU = "uefi-test-runner/qemu"

    @classmethod
    def more_code(cls) -> list[Feature]:
        """Features that enable more code in the root uefi package."""
        return [cls.ALLOC, cls.EXTS, cls.LOGGER]


def comma_separated_features(features: Iterable[Feature]) -> str:
    """Join feature names with commas."""
    return ",".join(feature.value for feature in features)


class TargetTypes(Enum):
    """Which target types (libs, bins, examples) a command includes."""

    DEFAULT = "default"
    BINS_EXAMPLES = "bins-examples"
    BINS_EXAMPLES_LIB = "bins-examples-lib"

    def args(self) -> tuple[str, ...]:
        """Return the cargo arguments selecting these target types."""
        if self is TargetTypes.BINS_EXAMPLES:
            return ("--bins", "--examples")
        if self is TargetTypes.BINS_EXAMPLES_LIB:
            # Singular: a package can only include one lib.
            return ("--bins", "--examples", "--lib")
        return ()


class ActionKind(Enum):
    """The cargo subcommand to run."""

    BUILD = "build"
    CLIPPY = "clippy"
    DOC = "doc"
    MIRI = "miri"
    TEST = "test"


@dataclass(frozen=True)
class CargoAction:
    """A cargo action; ``open`` only applies to documentation builds."""

    kind: ActionKind
    open: bool = False


def sanitized_path(orig_path: str) -> str:
    """Return PATH with entries under a ``.rustup`` directory removed."""
    kept = [
        entry
        for entry in orig_path.split(os.pathsep)
        if ".rustup" not in PurePath(entry).parts
    ]
    return os.pathsep.join(kept)


def fix_nested_cargo_env(cmd: Command) -> None:
    """Unset variables cargo sets that break nested toolchain selection."""
    cmd.env["RUSTC"] = None
    cmd.env["RUSTDOC"] = None
    cmd.env["PATH"] = sanitized_path(os.environ.get("PATH", ""))


@dataclass
class Cargo:
    """A cargo invocation over a set of packages."""

    action: CargoAction
    features: list[Feature] = field(default_factory=list)
    packages: list[Package] = field(default_factory=list)
    release: bool = False
    target: Optional[UefiArch] = None
    warnings_as_errors: bool = False
    target_types: TargetTypes = TargetTypes.DEFAULT

    def command(self) -> Command:
        """Build the command; raises ValueError if no packages are given."""
        cmd = Command("cargo")
        fix_nested_cargo_env(cmd)

        kind = self.action.kind
        extra_args: list[str] = []
        tool_args: list[str] = []

        if kind is ActionKind.CLIPPY and self.warnings_as_errors:
            tool_args.extend(["-D", "warnings"])
        elif kind is ActionKind.DOC:
            if self.warnings_as_errors:
                cmd.env["RUSTDOCFLAGS"] = "-Dwarnings"
            if self.action.open:
                extra_args.append("--open")
        elif kind is ActionKind.MIRI:
            cmd.env["MIRIFLAGS"] = "-Zmiri-tag-raw-pointers"

        cmd.args.append(kind.value)
        if kind is ActionKind.MIRI:
            cmd.args.append("test")

        if self.release:
            cmd.args.append("--release")

        if self.target is not None:
            cmd.args.extend(
                [
                    "--target",
                    self.target.as_triple(),
                    "-Zbuild-std=core,compiler_builtins,alloc",
                    "-Zbuild-std-features=compiler-builtins-mem",
                ]
            )

        if not self.packages:
            raise ValueError("packages cannot be empty")
        for package in self.packages:
            cmd.args.extend(["--package", package.value])

        if self.features:
            cmd.args.extend(["--features", comma_separated_features(self.features)])

        cmd.args.extend(self.target_types.args())
        cmd.args.extend(extra_args)

        if tool_args:
            cmd.args.append("--")
            cmd.args.extend(tool_args)

        return cmd