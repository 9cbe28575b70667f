from pathlib import Path

import pytest

from uefitask import platform
from uefitask.arch import UefiArch
from uefitask.opt import QemuOpt
from uefitask.ovmf import OvmfFileType, OvmfPaths


@pytest.fixture
def firmware(tmp_path):
    code = tmp_path / "code.fd"
    vars_ = tmp_path / "vars.fd"
    code.write_bytes(b"\x00")
    vars_.write_bytes(b"\x00")
    return code, vars_


def test_get_path_selects_file():
    paths = OvmfPaths(Path("a"), Path("b"))
    assert paths.get_path(OvmfFileType.CODE) == Path("a")
    assert paths.get_path(OvmfFileType.VARS) == Path("b")


def test_known_distro_paths():
    assert OvmfPaths.debian_linux(UefiArch.X86_64).code == Path(
        "/usr/share/OVMF/OVMF_CODE.fd"
    )
    assert OvmfPaths.arch_linux(UefiArch.AARCH64).vars == Path(
        "/usr/share/edk2-armvirt/aarch64/QEMU_VARS.fd"
    )
    assert OvmfPaths.centos_linux(UefiArch.X86_64).code == Path(
        "/usr/share/edk2/ovmf/OVMF_CODE.secboot.fd"
    )


def test_centos_has_no_ia32():
    assert OvmfPaths.centos_linux(UefiArch.IA32) is None


def test_centos_and_fedora_share_aarch64():
    assert OvmfPaths.centos_linux(UefiArch.AARCH64) == OvmfPaths.fedora_linux(
        UefiArch.AARCH64
    )


def test_windows_x86_64_uses_i386_vars():
    assert OvmfPaths.windows(UefiArch.X86_64).vars == OvmfPaths.windows(
        UefiArch.IA32
    ).vars


@pytest.mark.parametrize("arch", list(UefiArch))
def test_candidates_come_from_known_locations(arch):
    known = [
        OvmfPaths.arch_linux(arch),
        OvmfPaths.centos_linux(arch),
        OvmfPaths.debian_linux(arch),
        OvmfPaths.fedora_linux(arch),
        OvmfPaths.windows(arch),
    ]
    candidates = OvmfPaths.get_candidate_paths(arch)
    assert all(candidate in known for candidate in candidates)
    assert (len(candidates) > 0) == (platform.is_linux() or platform.is_windows())


def test_user_path_is_used(firmware):
    code, _ = firmware
    found = OvmfPaths.find_ovmf_file(OvmfFileType.CODE, code, [])
    assert found == code


def test_missing_user_path_raises(tmp_path):
    missing = tmp_path / "missing.fd"
    with pytest.raises(FileNotFoundError, match="ovmf vars file does not exist"):
        OvmfPaths.find_ovmf_file(OvmfFileType.VARS, missing, [])


def test_first_existing_candidate_wins(tmp_path, firmware):
    code, vars_ = firmware
    absent = OvmfPaths(tmp_path / "no_code", tmp_path / "no_vars")
    present = OvmfPaths(code, vars_)
    candidates = [absent, present]
    assert OvmfPaths.find_ovmf_file(OvmfFileType.CODE, None, candidates) == code
    assert OvmfPaths.find_ovmf_file(OvmfFileType.VARS, None, candidates) == vars_


def test_no_candidate_found_raises(tmp_path):
    absent = OvmfPaths(tmp_path / "no_code", tmp_path / "no_vars")
    with pytest.raises(FileNotFoundError, match="no ovmf code file found"):
        OvmfPaths.find_ovmf_file(OvmfFileType.CODE, None, [absent])


def test_find_with_user_paths(firmware):
    code, vars_ = firmware
    opt = QemuOpt(ovmf_code=code, ovmf_vars=vars_)
    assert OvmfPaths.find(opt, UefiArch.X86_64) == OvmfPaths(code, vars_)


def test_find_with_missing_user_code(tmp_path, firmware):
    _, vars_ = firmware
    opt = QemuOpt(ovmf_code=tmp_path / "gone.fd", ovmf_vars=vars_)
    with pytest.raises(FileNotFoundError, match="ovmf code file does not exist"):
        OvmfPaths.find(opt, UefiArch.AARCH64)