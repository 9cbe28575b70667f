"""Running the test runner in QEMU and talking to it while it runs."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
import tempfile
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO, Union

from . import platform
from .arch import UefiArch
from .disk import check_mbr_test_disk, create_mbr_test_disk
from .net import EchoService
from .opt import QemuOpt
from .ovmf import OvmfPaths
from .pipe import Io, Pipe
from .util import Command, command_to_string

PathArg = Union[str, "os.PathLike[str]"]

# Detects the ANSI escape codes the console output protocol adds when
# writing to the serial device.
_ANSI_ESCAPE = re.compile(r"(\x9b|\x1b\[)[0-?]*[ -/]*[@-~]")

_SCREENSHOT_PREFIX = "SCREENSHOT: "
_SCREENSHOT_DIR = Path("uefi-test-runner") / "screenshots"

_BOOT_FILE_NAMES = {
    UefiArch.AARCH64: "BootAA64.efi",
    UefiArch.IA32: "BootIA32.efi",
    UefiArch.X86_64: "BootX64.efi",
}


class PflashMode(Enum):
    """Whether a pflash drive is read-only; the value is QEMU's setting."""

    READ_ONLY = "on"
    READ_WRITE = "off"


def add_pflash_args(cmd: Command, file: PathArg, mode: PflashMode) -> None:
    """Add a raw pflash drive backed by ``file`` to the command."""
    cmd.args.extend(
        [
            "-drive",
            f"if=pflash,format=raw,readonly={mode.value},file={os.fspath(file)}",
        ]
    )


def strip_ansi(line: str) -> str:
    """Remove ANSI escape codes from a line."""
    return _ANSI_ESCAPE.sub("", line)


def _lines(io: Io) -> Iterator[str]:
    """Yield lines until the stream ends or can no longer be read."""
    while True:
        try:
            yield io.read_line()
        except (EOFError, OSError, ValueError):
            return


def echo_filtered_stdout(child_io: Io, out: Optional[TextIO] = None) -> None:
    """Print each line of the child's output with escape codes removed."""
    stream = out if out is not None else sys.stdout
    for line in _lines(child_io):
        print(strip_ansi(line.strip()), file=stream)


def _expect_return(reply: Any) -> None:
    if reply != {"return": {}}:
        raise RuntimeError(f"unexpected QEMU monitor reply: {reply!r}")


def process_qemu_io(monitor_io: Io, serial_io: Io, tmp_dir: PathArg) -> None:
    """Run the monitor handshake, then serve screenshot requests from the VM."""
    greeting = monitor_io.read_line()
    if not greeting.startswith('{"QMP":'):
        raise RuntimeError(f"unexpected QEMU monitor greeting: {greeting!r}")
    monitor_io.write_json({"execute": "qmp_capabilities"})
    _expect_return(monitor_io.read_json())

    for line in _lines(serial_io):
        # Escape codes need no stripping here: the request is written via
        # the serial protocol, not the console output protocol.
        line = line.rstrip()
        if not line.startswith(_SCREENSHOT_PREFIX):
            continue
        reference_name = line[len(_SCREENSHOT_PREFIX):]
        screenshot_path = Path(tmp_dir) / "screenshot.ppm"

        monitor_io.write_json(
            {
                "execute": "screendump",
                "arguments": {"filename": str(screenshot_path)},
            }
        )

        # Wait for QEMU's acknowledgement, ignoring events.
        reply = monitor_io.read_json()
        while isinstance(reply, dict) and "event" in reply:
            reply = monitor_io.read_json()
        _expect_return(reply)

        # Tell the VM that the screenshot was taken.
        serial_io.write_all("OK\n")

        reference_file = _SCREENSHOT_DIR / f"{reference_name}.ppm"
        expected = reference_file.read_bytes()
        actual = screenshot_path.read_bytes()
        if expected != actual:
            raise RuntimeError(
                f"screenshot does not match reference {reference_file}"
            )


def build_esp_dir(opt: QemuOpt) -> Path:
    """Create the EFI boot directory that QEMU mounts as a FAT drive."""
    build_mode = "release" if opt.release else "debug"
    build_dir = Path("target") / opt.target.as_triple() / build_mode
    esp_dir = build_dir / "esp"
    boot_dir = esp_dir / "EFI" / "Boot"
    if opt.example is not None:
        built_file = build_dir / "examples" / f"{opt.example}.efi"
    else:
        built_file = build_dir / "uefi-test-runner.efi"
    boot_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(built_file, boot_dir / _BOOT_FILE_NAMES[opt.target])

    # A test file used in the media protocol tests.
    (boot_dir / "test_input.txt").write_text("test input data")
    return esp_dir


def qemu_executable(arch: UefiArch) -> str:
    """Return the QEMU system emulator for the given guest arch."""
    match arch:
        case UefiArch.AARCH64:
            return "qemu-system-aarch64"
        case UefiArch.IA32 | UefiArch.X86_64:
            return "qemu-system-x86_64"
    raise ValueError(f"unsupported arch: {arch!r}")


def successful_exit_code(arch: UefiArch) -> int:
    """Return the exit code QEMU reports when the tests pass.

    On x86_64 the test runner exits through the debug-exit device with a
    custom code of 3.
    """
    match arch:
        case UefiArch.AARCH64 | UefiArch.IA32:
            return 0
        case UefiArch.X86_64:
            return 3
    raise ValueError(f"unsupported arch: {arch!r}")


@contextmanager
def _killed_on_exit(proc: subprocess.Popen) -> Iterator[subprocess.Popen]:
    """Make sure the child process is gone when the block is left."""
    try:
        yield proc
    finally:
        if proc.poll() is None:
            try:
                proc.kill()
            except OSError as exc:
                print(f"failed to kill process: {exc}", file=sys.stderr)
            try:
                proc.wait()
            except OSError as exc:
                print(f"failed to wait for process exit: {exc}", file=sys.stderr)


def _add_machine_args(cmd: Command, arch: UefiArch, opt: QemuOpt) -> None:
    if arch is UefiArch.AARCH64:
        # A generic ARM environment with a very common 64-bit CPU.
        cmd.args.extend(["-machine", "virt"])
        cmd.args.extend(["-cpu", "cortex-a72"])
        return

    cmd.args.extend(["-machine", "q35"])
    # The multi-processor services test needs exactly 4 CPUs.
    cmd.args.extend(["-smp", "4"])
    cmd.args.extend(["-m", "256M"])
    if platform.is_linux() and not opt.disable_kvm and not opt.ci:
        cmd.args.append("--enable-kvm")
    # Exit instead of rebooting in the CI.
    if opt.ci:
        cmd.args.append("-no-reboot")
    # Map the QEMU exit signal to port f4.
    cmd.args.extend(["-device", "isa-debug-exit,iobase=0xf4,iosize=0x04"])


def run_qemu(arch: UefiArch, opt: QemuOpt) -> None:
    """Boot the built test runner in QEMU and check that it succeeded."""
    esp_dir = build_esp_dir(opt)

    cmd = Command(qemu_executable(arch))
    if platform.is_windows():
        # The Windows installer does not put QEMU on the PATH.
        cmd.env["PATH"] = os.environ.get("PATH", "") + r";C:\Program Files\qemu"

    # QEMU enables many default devices which slow down boot.
    cmd.args.append("-nodefaults")
    cmd.args.extend(["-device", "virtio-rng-pci"])
    _add_machine_args(cmd, arch, opt)

    with tempfile.TemporaryDirectory() as tmp_name:
        tmp_dir = Path(tmp_name)

        ovmf_paths = OvmfPaths.find(opt, arch)
        # Use a writable copy of the vars file; some AArch64 firmware
        # will not boot otherwise.
        ovmf_vars = tmp_dir / "ovmf_vars"
        shutil.copyfile(ovmf_paths.vars, ovmf_vars)
        add_pflash_args(cmd, ovmf_paths.code, PflashMode.READ_ONLY)
        add_pflash_args(cmd, ovmf_vars, PflashMode.READ_WRITE)

        # Mount the local ESP directory as a FAT partition.
        cmd.args.extend(["-drive", f"format=raw,file=fat:rw:{os.fspath(esp_dir)}"])

        # Even headless, QEMU emulates a display so screenshots work.
        cmd.args.extend(["-vga", "std"])
        if opt.headless:
            cmd.args.extend(["-display", "none"])

        test_disk = tmp_dir / "test_disk.fat.img"
        create_mbr_test_disk(test_disk)
        cmd.args.extend(["-drive", f"format=raw,file={os.fspath(test_disk)}"])

        monitor_pipe = Pipe.create(tmp_dir, "qemu-monitor")
        serial_pipe = Pipe.create(tmp_dir, "serial")

        # The first serial device carries logs to stdout; the second is
        # used for screenshot requests and replies.
        cmd.args.extend(["-serial", "stdio"])
        cmd.args.extend(["-serial", serial_pipe.qemu_arg])
        cmd.args.extend(["-qmp", monitor_pipe.qemu_arg])

        echo_service: Optional[EchoService] = None
        if not opt.disable_network and opt.example is None:
            cmd.args.extend(
                [
                    "-nic",
                    "user,model=e1000,net=192.168.17.0/24,"
                    "tftp=uefi-test-runner/tftp/,bootfile=fake-boot-file",
                ]
            )
            echo_service = EchoService.start()

        print(command_to_string(cmd))

        try:
            try:
                proc = subprocess.Popen(
                    cmd.argv(),
                    env=cmd.build_env(),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                )
            except OSError as exc:
                raise RuntimeError(f"failed to launch qemu: {exc}") from exc

            with _killed_on_exit(proc):
                monitor_io = monitor_pipe.open_io()
                serial_io = serial_pipe.open_io()
                child_io = Io(proc.stdout, proc.stdin)

                stdout_thread = threading.Thread(
                    target=echo_filtered_stdout, args=(child_io,), daemon=True
                )
                stdout_thread.start()

                error: Optional[BaseException] = None
                try:
                    process_qemu_io(monitor_io, serial_io, tmp_dir)
                except Exception as exc:
                    error = exc
                exit_code = proc.wait()
                stdout_thread.join()
        finally:
            if echo_service is not None:
                echo_service.close()

        if error is not None:
            raise error

        if exit_code < 0:
            raise RuntimeError(f"qemu was terminated by a signal: {-exit_code}")
        expected = successful_exit_code(arch)
        if exit_code != expected:
            raise RuntimeError(
                f"qemu exited with code {exit_code}, expected {expected}"
            )

        check_mbr_test_disk(test_disk)