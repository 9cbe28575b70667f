"""Task runner for building, checking and testing UEFI applications under QEMU."""

__version__ = "0.1.0"