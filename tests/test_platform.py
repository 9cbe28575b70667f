import os
import sys

import pytest

from uefitask import platform


def test_unix_and_windows_are_exclusive():
    assert not (platform.is_unix() and platform.is_windows())


def test_linux_implies_unix():
    if platform.is_linux():
        assert platform.is_unix()
    else:
        assert sys.platform.startswith("linux") is False


@pytest.mark.parametrize(
    "value, expected",
    [("linux", True), ("darwin", False), ("win32", False)],
)
def test_is_linux_follows_sys_platform(monkeypatch, value, expected):
    monkeypatch.setattr(sys, "platform", value)
    assert platform.is_linux() is expected


def test_windows_family(monkeypatch):
    monkeypatch.setattr(os, "name", "nt")
    result = (platform.is_windows(), platform.is_unix())
    monkeypatch.undo()
    assert result == (True, False)


def test_unix_family(monkeypatch):
    monkeypatch.setattr(os, "name", "posix")
    result = (platform.is_windows(), platform.is_unix())
    monkeypatch.undo()
    assert result == (False, True)