"""Locating OVMF firmware code and vars files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Union

from . import platform
from .arch import UefiArch
from .opt import QemuOpt

PathArg = Union[str, "os.PathLike[str]"]


class OvmfFileType(Enum):
    """Which of the two OVMF files is meant."""

    CODE = "code"
    VARS = "vars"


@dataclass(frozen=True)
class OvmfPaths:
    """Paths of an OVMF code file and its matching vars file."""

    code: Path
    vars: Path

    def get_path(self, file_type: OvmfFileType) -> Path:
        """Return the path for the given file type."""
        return self.code if file_type is OvmfFileType.CODE else self.vars

    @classmethod
    def _of(cls, code: str, vars_: str) -> OvmfPaths:
        return cls(Path(code), Path(vars_))

    @classmethod
    def arch_linux(cls, arch: UefiArch) -> OvmfPaths:
        """Arch Linux OVMF paths for the given guest arch."""
        if arch is UefiArch.AARCH64:
            # Package "edk2-armvirt".
            return cls._of(
                "/usr/share/edk2-armvirt/aarch64/QEMU_CODE.fd",
                "/usr/share/edk2-armvirt/aarch64/QEMU_VARS.fd",
            )
        if arch is UefiArch.IA32:
            # Package "edk2-ovmf".
            return cls._of(
                "/usr/share/edk2-ovmf/ia32/OVMF_CODE.fd",
                "/usr/share/edk2-ovmf/ia32/OVMF_VARS.fd",
            )
        return cls._of(
            "/usr/share/edk2-ovmf/x64/OVMF_CODE.fd",
            "/usr/share/edk2-ovmf/x64/OVMF_VARS.fd",
        )

    @classmethod
    def centos_linux(cls, arch: UefiArch) -> Optional[OvmfPaths]:
        """CentOS OVMF paths, or None where there is no package."""
        if arch is UefiArch.AARCH64:
            # Package "edk2-aarch64".
            return cls._of(
                "/usr/share/edk2/aarch64/QEMU_EFI-pflash.raw",
                "/usr/share/edk2/aarch64/vars-template-pflash.raw",
            )
        if arch is UefiArch.IA32:
            # There's no official ia32 package.
            return None
        # The CentOS package has no plain "OVMF_CODE.fd".
        return cls._of(
            "/usr/share/edk2/ovmf/OVMF_CODE.secboot.fd",
            "/usr/share/edk2/ovmf/OVMF_VARS.fd",
        )

    @classmethod
    def debian_linux(cls, arch: UefiArch) -> OvmfPaths:
        """Debian (and Ubuntu) OVMF paths for the given guest arch."""
        if arch is UefiArch.AARCH64:
            # Package "qemu-efi-aarch64".
            return cls._of(
                "/usr/share/AAVMF/AAVMF_CODE.fd",
                "/usr/share/AAVMF/AAVMF_VARS.fd",
            )
        if arch is UefiArch.IA32:
            # Package "ovmf-ia32".
            return cls._of(
                "/usr/share/OVMF/OVMF32_CODE_4M.secboot.fd",
                "/usr/share/OVMF/OVMF32_VARS_4M.fd",
            )
        # Package "ovmf".
        return cls._of(
            "/usr/share/OVMF/OVMF_CODE.fd",
            "/usr/share/OVMF/OVMF_VARS.fd",
        )

    @classmethod
    def fedora_linux(cls, arch: UefiArch) -> OvmfPaths:
        """Fedora OVMF paths for the given guest arch."""
        if arch is UefiArch.AARCH64:
            # Package "edk2-aarch64".
            return cls._of(
                "/usr/share/edk2/aarch64/QEMU_EFI-pflash.raw",
                "/usr/share/edk2/aarch64/vars-template-pflash.raw",
            )
        if arch is UefiArch.IA32:
            # Package "edk2-ovmf-ia32".
            return cls._of(
                "/usr/share/edk2/ovmf-ia32/OVMF_CODE.fd",
                "/usr/share/edk2/ovmf-ia32/OVMF_VARS.fd",
            )
        # Package "edk2-ovmf".
        return cls._of(
            "/usr/share/edk2/ovmf/OVMF_CODE.fd",
            "/usr/share/edk2/ovmf/OVMF_VARS.fd",
        )

    @classmethod
    def windows(cls, arch: UefiArch) -> OvmfPaths:
        """Windows OVMF paths from the default QEMU installation."""
        if arch is UefiArch.AARCH64:
            return cls._of(
                r"C:\Program Files\qemu\share\edk2-aarch64-code.fd",
                r"C:\Program Files\qemu\share\edk2-arm-vars.fd",
            )
        if arch is UefiArch.IA32:
            return cls._of(
                r"C:\Program Files\qemu\share\edk2-i386-code.fd",
                r"C:\Program Files\qemu\share\edk2-i386-vars.fd",
            )
        # There's no x86_64 vars file, but the i386 one works.
        return cls._of(
            r"C:\Program Files\qemu\share\edk2-x86_64-code.fd",
            r"C:\Program Files\qemu\share\edk2-i386-vars.fd",
        )

    @classmethod
    def get_candidate_paths(cls, arch: UefiArch) -> list[OvmfPaths]:
        """Candidate locations for the given guest arch on this host."""
        candidates: list[OvmfPaths] = []
        if platform.is_linux():
            candidates.append(cls.arch_linux(arch))
            centos = cls.centos_linux(arch)
            if centos is not None:
                candidates.append(centos)
            candidates.append(cls.debian_linux(arch))
            candidates.append(cls.fedora_linux(arch))
        if platform.is_windows():
            candidates.append(cls.windows(arch))
        return candidates

    @classmethod
    def find_ovmf_file(
        cls,
        file_type: OvmfFileType,
        user_provided_path: Optional[PathArg],
        candidates: Sequence[OvmfPaths],
    ) -> Path:
        """Find an OVMF file of the given type.

        A user-provided path is always used and must exist. Otherwise the
        first existing candidate is returned. FileNotFoundError is raised
        when nothing is found.
        """
        if user_provided_path is not None:
            path = Path(user_provided_path)
            if path.exists():
                return path
            raise FileNotFoundError(
                f"ovmf {file_type.value} file does not exist: {path}"
            )

        for candidate in candidates:
            path = candidate.get_path(file_type)
            if path.exists():
                return path

        searched = [str(c.get_path(file_type)) for c in candidates]
        raise FileNotFoundError(
            f"no ovmf {file_type.value} file found in candidates: {searched}"
        )

    @classmethod
    def find(cls, opt: QemuOpt, arch: UefiArch) -> OvmfPaths:
        """Find the OVMF code and vars files to use."""
        candidates = cls.get_candidate_paths(arch)
        code = cls.find_ovmf_file(OvmfFileType.CODE, opt.ovmf_code, candidates)
        vars_ = cls.find_ovmf_file(OvmfFileType.VARS, opt.ovmf_vars, candidates)
        return cls(code, vars_)