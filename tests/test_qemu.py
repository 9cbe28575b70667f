import io
import json
from pathlib import Path

import pytest

from uefitask.arch import UefiArch
from uefitask.opt import QemuOpt
from uefitask.pipe import Io
from uefitask.qemu import (
    PflashMode,
    add_pflash_args,
    build_esp_dir,
    echo_filtered_stdout,
    process_qemu_io,
    qemu_executable,
    run_qemu,
    strip_ansi,
    successful_exit_code,
)
from uefitask.util import Command


def make_io(data: bytes) -> Io:
    return Io(io.BytesIO(data), io.BytesIO())


HANDSHAKE = b'{"QMP": {"version": {}}}\n{"return": {}}\n'


def test_pflash_read_only():
    cmd = Command("qemu")
    add_pflash_args(cmd, "/fw/code.fd", PflashMode.READ_ONLY)
    assert cmd.args == ["-drive", "if=pflash,format=raw,readonly=on,file=/fw/code.fd"]


def test_pflash_read_write():
    cmd = Command("qemu")
    add_pflash_args(cmd, "/tmp/vars", PflashMode.READ_WRITE)
    assert cmd.args[1].startswith("if=pflash,format=raw,readonly=off,file=")
    assert cmd.args[1].endswith("vars")


@pytest.mark.parametrize(
    "line, expected",
    [
        ("\x1b[0m\x1b[1;37mHello", "Hello"),
        ("\x9b2Jplain", "plain"),
        ("no escapes", "no escapes"),
    ],
)
def test_strip_ansi(line, expected):
    assert strip_ansi(line) == expected


def test_echo_filtered_stdout():
    child = make_io(b"  \x1b[32mINFO\x1b[0m hello  \nsecond\n")
    out = io.StringIO()
    echo_filtered_stdout(child, out)
    assert out.getvalue().splitlines() == ["INFO hello", "second"]


def test_handshake_sends_capabilities(tmp_path):
    monitor = make_io(HANDSHAKE)
    serial = make_io(b"just a log line\n")
    process_qemu_io(monitor, serial, tmp_path)
    assert json.loads(monitor.writer.getvalue()) == {"execute": "qmp_capabilities"}
    assert serial.writer.getvalue() == b""


def test_bad_greeting_raises(tmp_path):
    with pytest.raises(RuntimeError):
        process_qemu_io(make_io(b"garbage\n"), make_io(b""), tmp_path)


def test_bad_handshake_reply_raises(tmp_path):
    monitor = make_io(b'{"QMP": {}}\n{"error": {}}\n')
    with pytest.raises(RuntimeError):
        process_qemu_io(monitor, make_io(b""), tmp_path)


def prepare_screenshot(tmp_path, monkeypatch, actual: bytes, expected: bytes):
    work = tmp_path / "work"
    ref_dir = work / "uefi-test-runner" / "screenshots"
    ref_dir.mkdir(parents=True)
    (ref_dir / "gop_test.ppm").write_bytes(expected)
    shots = tmp_path / "shots"
    shots.mkdir()
    (shots / "screenshot.ppm").write_bytes(actual)
    monkeypatch.chdir(work)
    return shots


def test_screenshot_request(tmp_path, monkeypatch):
    shots = prepare_screenshot(tmp_path, monkeypatch, b"P6 image", b"P6 image")
    monitor = make_io(HANDSHAKE + b'{"event": "RESUME"}\n{"return": {}}\n')
    serial = make_io(b"SCREENSHOT: gop_test\r\n")
    process_qemu_io(monitor, serial, shots)
    assert serial.writer.getvalue() == b"OK\n"
    written = monitor.writer.getvalue().decode()
    assert '"execute":"screendump"' in written
    assert str(shots / "screenshot.ppm").replace("\\", "\\\\") in written


def test_screenshot_mismatch(tmp_path, monkeypatch):
    shots = prepare_screenshot(tmp_path, monkeypatch, b"actual", b"expected")
    monitor = make_io(HANDSHAKE + b'{"return": {}}\n')
    serial = make_io(b"SCREENSHOT: gop_test\n")
    with pytest.raises(RuntimeError):
        process_qemu_io(monitor, serial, shots)


def test_build_esp_dir_main_binary(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_dir = Path("target") / "x86_64-unknown-uefi" / "debug"
    build_dir.mkdir(parents=True)
    (build_dir / "uefi-test-runner.efi").write_bytes(b"runner")
    esp = build_esp_dir(QemuOpt())
    assert esp == build_dir / "esp"
    boot = esp / "EFI" / "Boot"
    assert (boot / "BootX64.efi").read_bytes() == b"runner"
    assert (boot / "test_input.txt").read_text() == "test input data"


def test_build_esp_dir_example(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_dir = Path("target") / "aarch64-unknown-uefi" / "release"
    (build_dir / "examples").mkdir(parents=True)
    (build_dir / "examples" / "hello_world.efi").write_bytes(b"hello")
    opt = QemuOpt(target=UefiArch.AARCH64, release=True, example="hello_world")
    esp = build_esp_dir(opt)
    assert (esp / "EFI" / "Boot" / "BootAA64.efi").read_bytes() == b"hello"


def test_build_esp_dir_missing_binary(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        build_esp_dir(QemuOpt(target=UefiArch.IA32))


@pytest.mark.parametrize(
    "arch, exe",
    [
        (UefiArch.AARCH64, "qemu-system-aarch64"),
        (UefiArch.IA32, "qemu-system-x86_64"),
        (UefiArch.X86_64, "qemu-system-x86_64"),
    ],
)
def test_qemu_executable(arch, exe):
    assert qemu_executable(arch) == exe


@pytest.mark.parametrize(
    "arch, code",
    [(UefiArch.AARCH64, 0), (UefiArch.IA32, 0), (UefiArch.X86_64, 3)],
)
def test_successful_exit_code(arch, code):
    assert successful_exit_code(arch) == code


def test_run_qemu_without_build_fails(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        run_qemu(UefiArch.X86_64, QemuOpt())