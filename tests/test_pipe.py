import io
import stat
import threading

import pytest

from uefitask.pipe import Io, Pipe, windows_open_pipe


def _io(data=b""):
    return Io(io.BytesIO(data), io.BytesIO())


def test_read_line_and_eof():
    stream = _io(b"first\nsecond\n")
    assert stream.read_line() == "first\n"
    assert stream.read_line() == "second\n"
    with pytest.raises(EOFError):
        stream.read_line()


def test_read_json():
    stream = _io(b'{"return": {}}\n')
    assert stream.read_json() == {"return": {}}


def test_write_json_is_compact_without_newline():
    stream = _io()
    stream.write_json({"execute": "qmp_capabilities"})
    assert stream.writer.getvalue() == b'{"execute":"qmp_capabilities"}'


def test_write_all():
    stream = _io()
    stream.write_all("OK\n")
    assert stream.writer.getvalue() == b"OK\n"


def test_json_round_trip():
    out = _io()
    value = {"execute": "screendump", "arguments": {"filename": "x.ppm"}}
    out.write_json(value)
    back = _io(out.writer.getvalue() + b"\n")
    assert back.read_json() == value


def test_create_makes_fifos(tmp_path):
    pipe = Pipe.create(tmp_path, "serial")
    assert pipe.qemu_arg == f"pipe:{tmp_path / 'serial'}"
    assert stat.S_ISFIFO(pipe.input_path.stat().st_mode)
    assert stat.S_ISFIFO(pipe.output_path.stat().st_mode)


def test_open_io_communicates(tmp_path):
    pipe = Pipe.create(tmp_path, "qemu-monitor")
    received = []

    def peer():
        with open(pipe.output_path, "wb") as out, open(pipe.input_path, "rb") as inp:
            received.append(inp.readline())
            out.write(b"hello\n")
            out.flush()

    thread = threading.Thread(target=peer, daemon=True)
    thread.start()
    stream = pipe.open_io()
    stream.write_all("ping\n")
    assert stream.read_line() == "hello\n"
    thread.join(timeout=5)
    stream.reader.close()
    stream.writer.close()
    assert received == [b"ping\n"]


def test_windows_open_pipe_gives_up(tmp_path):
    with pytest.raises(OSError):
        windows_open_pipe(tmp_path / "missing" / "pipe", max_attempts=1)