"""Two-way communication pipes with QEMU and line/JSON I/O over them."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Union

from . import platform

PathArg = Union[str, "os.PathLike[str]"]


class Io:
    """Line-oriented reading and writing over a pair of binary streams."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self.reader = reader
        self.writer = writer

    def read_line(self) -> str:
        """Read one line including its newline; raise EOFError at end."""
        line = self.reader.readline()
        if not line:
            raise EOFError("EOF reached")
        return line.decode("utf-8")

    def read_json(self) -> Any:
        """Read one line and parse it as JSON."""
        return json.loads(self.read_line())

    def write_all(self, text: str) -> None:
        """Write text and flush."""
        self.writer.write(text.encode("utf-8"))
        self.writer.flush()

    def write_json(self, value: Any) -> None:
        """Write compact JSON with nothing after it.

        A trailing newline would make QEMU's pipe reader hang on Windows.
        """
        self.write_all(json.dumps(value, separators=(",", ":")))


@dataclass(frozen=True)
class Pipe:
    """A named pipe pair (Unix) or duplex pipe (Windows) for QEMU."""

    qemu_arg: str
    input_path: Path
    output_path: Path

    @classmethod
    def create(cls, directory: PathArg, base_name: str) -> Pipe:
        """Prepare the pipe before launching QEMU."""
        directory = Path(directory)
        if platform.is_unix():
            input_path = directory / f"{base_name}.in"
            output_path = directory / f"{base_name}.out"
            os.mkfifo(input_path, 0o666)
            os.mkfifo(output_path, 0o666)
            return cls(f"pipe:{directory / base_name}", input_path, output_path)
        if platform.is_windows():
            # QEMU creates the pipe itself and adds the "\\.\pipe\" prefix.
            return cls(
                f"pipe:{base_name}",
                Path(rf"\\.\pipe\{base_name}"),
                Path(),
            )
        raise NotImplementedError("unsupported platform")

    def open_io(self) -> Io:
        """Open the pipe for reading and writing."""
        if platform.is_unix():
            reader = open(self.output_path, "rb")
            writer = open(self.input_path, "wb")
            return Io(reader, writer)
        if platform.is_windows():
            handle = windows_open_pipe(self.input_path)
            return Io(handle, handle)
        raise NotImplementedError("unsupported platform")


def windows_open_pipe(path: PathArg, max_attempts: int = 100) -> BinaryIO:
    """Connect to a duplex named pipe, retrying until QEMU has created it."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return open(path, "r+b", buffering=0)
        except OSError:
            if attempt >= max_attempts:
                raise
            time.sleep(0.1)