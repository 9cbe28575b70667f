# uefitask

A developer task runner for a workspace of UEFI packages. It wraps `cargo`
for building, linting, documenting and testing. It can also boot the test
runner application under QEMU with OVMF firmware. While the VM runs, the task
runner answers the screenshot requests the application sends over a serial
pipe and runs a UDP echo service for the network tests. When the VM has
finished, it checks the test disk that the VM has modified.

## Installation

```
pip install .
```

To run the package's own tests:

```
pip install ".[test]"
pytest
```

## Usage

Run every command from the root of the workspace, because paths such as
`target/`, `template/`, `BUILDING.md` and `uefi-test-runner/screenshots/`
are taken relative to the current directory.

```
uefitask build [--target {aarch64,ia32,x86_64}] [--release]
uefitask clippy [--target ...] [--warnings-as-errors]
uefitask doc [--open] [--warnings-as-errors]
uefitask miri
uefitask run [--target ...] [--release] [--disable-kvm] [--disable-network]
             [--ci] [--headless] [--ovmf-code PATH] [--ovmf-vars PATH]
             [--example NAME]
uefitask test
uefitask test-latest-release
```

- `build`: builds every UEFI package, with its bins, examples and lib, for the
  target.
- `clippy`: lints the UEFI packages for the target, then lints the `xtask`
  package on the host.
- `doc`: builds the documentation of the published packages (`uefi`,
  `uefi-macros`, `uefi-services`).
- `miri`: runs the `uefi` package's tests under Miri.
- `run`: builds `uefi-test-runner` and boots it in QEMU.
  - The boot directory is made under `target/<triple>/<debug|release>/esp`.
  - If `--ovmf-code` and `--ovmf-vars` are not given, the usual install
    locations on Arch, CentOS, Debian/Ubuntu and Fedora (on Linux) or the
    default QEMU install directory (on Windows) are searched.
  - Unless `--disable-network` or `--example` is given, a UDP echo service
    listens on 127.0.0.1, port 21572.
  - The run succeeds when QEMU exits with the expected code: 3 on x86_64,
    0 on the other targets.
- `test`: runs the host-side unit tests.
- `test-latest-release`: copies `template/` to a temporary directory and
  builds it there. It first checks that the build command appears in
  `BUILDING.md`.

The default target is `x86_64`. Every command prints each program it starts
before running it. If that program fails, the command stops, prints an
error, and exits with status 1.

## Library use

The modules can also be used from Python:

- `uefitask.cargo.Cargo(...).command()` builds a `cargo` command line as a
  `uefitask.util.Command`.
- `uefitask.util.command_to_string` renders a command as
  `VAR=val program args`.
- `uefitask.util.run_cmd` prints a command and runs it. It raises
  `subprocess.CalledProcessError` if the command fails.
- `uefitask.ovmf.OvmfPaths.find` locates the firmware files.
- `uefitask.disk.build_mbr_test_disk` returns the bytes of the MBR/FAT12
  test disk image.
- `uefitask.disk.check_mbr_test_disk` verifies a modified image. It raises
  `DiskCheckError` if the image is not as expected.
- `uefitask.net.EchoService` can be used as a context manager.

## What it does not do

This package only drives the workspace. It does not contain the UEFI
libraries or the test runner application itself, and it builds neither of
them without `cargo`. The `run` command needs the following to be installed:

- the QEMU system emulator: `qemu-system-x86_64` or `qemu-system-aarch64`
- OVMF firmware files

The named pipes it uses for talking to QEMU work only on Unix-family systems
and on Windows.