import socket

from uefitask.net import EchoService


def _exchange(port, message):
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.settimeout(5)
        client.sendto(message, ("127.0.0.1", port))
        data, _ = client.recvfrom(1024)
        return data


def test_reverses_payload():
    with EchoService.start(0) as service:
        reply = _exchange(service.port, bytes([4, 1, 2, 3, 4]))
    assert reply == bytes([4, 4, 3, 2, 1])


def test_empty_payload():
    with EchoService.start(0) as service:
        assert _exchange(service.port, bytes([0])) == bytes([0])


def test_malformed_packet_ignored_then_valid_answered():
    with EchoService.start(0) as service:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
            client.settimeout(5)
            client.sendto(bytes([9, 1]), ("127.0.0.1", service.port))
            client.sendto(bytes([2, 7, 8]), ("127.0.0.1", service.port))
            data, _ = client.recvfrom(1024)
    assert data == bytes([2, 8, 7])


def test_close_stops_thread():
    service = EchoService.start(0)
    port = service.port
    service.close()
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", port))
        assert sock.getsockname()[1] == port