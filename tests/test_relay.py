"""Tests for sockstun.relay module."""

import asyncio
import logging
import socket

import pytest
from unittest.mock import MagicMock

from sockstun.address import AddressSpec
from sockstun.errors import FragmentedDatagram, InvalidAddressType, InvalidStateError
from sockstun.packets import BoundEndpoint, build_udp_datagram
from sockstun.relay import AsyncUDPRelay, UDPRelay, relay_address, unwrap


def _bound(host, port):
    return BoundEndpoint(AddressSpec.from_host(host), port)


class TestRelayAddress:
    """Tests for relay_address."""

    def test_specific_address(self):
        """Test a concrete bind address is used as-is."""
        assert relay_address(_bound("10.0.0.5", 4000), "proxy") == ("10.0.0.5", 4000)

    def test_unspecified_falls_back_to_proxy(self):
        """Test 0.0.0.0 means the proxy host itself."""
        assert relay_address(_bound("0.0.0.0", 4000), "proxy.local") == ("proxy.local", 4000)

    def test_unspecified_without_proxy_host(self):
        """Test the bind address is kept when the proxy host is unknown."""
        assert relay_address(_bound("::", 4000)) == ("::", 4000)


class TestUnwrap:
    """Tests for unwrap."""

    def test_strips_header(self):
        """Test payload and source are returned."""
        datagram = unwrap(build_udp_datagram(b"ok", "8.8.8.8", 53))
        assert datagram.data == b"ok"
        assert (datagram.host, datagram.port) == ("8.8.8.8", 53)

    def test_fragment_rejected(self):
        """Test FRAG other than zero is not supported."""
        with pytest.raises(ValueError, match="Fragmented"):
            unwrap(b"\x00\x00\x01\x01\x01\x01\x01\x01\x00\x01data")

    def test_fragment_error_carries_frag(self):
        """Test the fragment error reports the FRAG value."""
        with pytest.raises(FragmentedDatagram) as exc_info:
            unwrap(b"\x00\x00\x03\x01\x01\x01\x01\x01\x00\x01data")
        assert exc_info.value.frag == 3


class TestUDPRelay:
    """Tests for the blocking UDPRelay."""

    def test_send_frames_payload(self, mock_socket):
        """Test the header is prepended and sent to the relay endpoint."""
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)

        relay.send(b"a", "127.0.0.1", 9999)

        mock_socket.sendto.assert_called_once_with(
            b"\x00\x00\x00\x01\x7f\x00\x00\x01\x27\x0fa",
            ("127.0.0.1", 5000),
        )

    def test_timeout_applied(self, mock_socket):
        """Test the receive timeout is set on the socket."""
        UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket, timeout=2.0)
        mock_socket.settimeout.assert_called_once_with(2.0)

    def test_receive_strips_header(self, mock_socket):
        """Test inbound datagrams are unwrapped."""
        mock_socket.recvfrom.return_value = (build_udp_datagram(b"ok", "1.2.3.4", 7), ("127.0.0.1", 5000))
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)

        datagram = relay.receive()

        assert datagram.data == b"ok"
        assert datagram.host == "1.2.3.4"

    def test_receive_invalid_address_type(self, mock_socket):
        """Test malformed datagrams raise instead of returning data."""
        mock_socket.recvfrom.return_value = (b"\x00\x00\x00\x09junk", ("127.0.0.1", 5000))
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)

        with pytest.raises(InvalidAddressType):
            relay.receive()

    def test_receive_skips_fragments(self, mock_socket, caplog):
        """Test fragmented datagrams are dropped with a warning."""
        mock_socket.recvfrom.side_effect = [
            (b"\x00\x00\x02\x01\x01\x01\x01\x01\x00\x01frag", ("127.0.0.1", 5000)),
            (build_udp_datagram(b"whole", "1.1.1.1", 1), ("127.0.0.1", 5000)),
        ]
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)

        with caplog.at_level(logging.WARNING, logger="sockstun.relay"):
            datagram = relay.receive()

        assert datagram.data == b"whole"
        assert "fragmented" in caplog.text

    def test_receive_truncated_not_skipped(self, mock_socket):
        """Test only fragments are skipped; truncated datagrams still raise."""
        mock_socket.recvfrom.return_value = (b"\x00\x00\x00\x01\x01", ("127.0.0.1", 5000))
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)

        with pytest.raises(ValueError) as exc_info:
            relay.receive()
        assert not isinstance(exc_info.value, FragmentedDatagram)
        mock_socket.recvfrom.assert_called_once()

    def test_closed_relay(self, mock_socket):
        """Test a closed relay refuses to send."""
        relay = UDPRelay(_bound("127.0.0.1", 5000), sock=mock_socket)
        relay.close()
        relay.close()

        mock_socket.close.assert_called_once()
        with pytest.raises(InvalidStateError):
            relay.send(b"x", "1.1.1.1", 1)

    def test_creates_socket(self):
        """Test a datagram socket is created when none is supplied."""
        with UDPRelay(_bound("127.0.0.1", 5000)) as relay:
            assert relay.sock.type == socket.SOCK_DGRAM
        assert relay.closed


class TestAsyncUDPRelay:
    """Tests for AsyncUDPRelay as a datagram protocol."""

    @pytest.mark.asyncio
    async def test_send_uses_transport(self):
        """Test outgoing payloads are framed onto the transport."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000))
        transport = MagicMock()
        relay.connection_made(transport)

        relay.send(b"a", "example.com", 80)

        transport.sendto.assert_called_once_with(b"\x00\x00\x00\x03\x0bexample.com\x00\x50a")

    @pytest.mark.asyncio
    async def test_send_before_open(self):
        """Test send requires an open transport."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000))
        with pytest.raises(InvalidStateError):
            relay.send(b"a", "1.1.1.1", 1)

    @pytest.mark.asyncio
    async def test_queue_receive(self):
        """Test datagrams are queued when no callback is registered."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000))
        relay.datagram_received(build_udp_datagram(b"ok", "1.2.3.4", 7), ("127.0.0.1", 5000))

        datagram = await relay.receive()

        assert datagram.data == b"ok"

    @pytest.mark.asyncio
    async def test_callback_receive(self):
        """Test the on_receive callback gets each payload."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000))
        received = []
        relay.on_receive(received.append)

        relay.datagram_received(build_udp_datagram(b"ok", "1.2.3.4", 7), ("127.0.0.1", 5000))

        assert [d.data for d in received] == [b"ok"]

    @pytest.mark.asyncio
    async def test_malformed_dropped(self, caplog):
        """Test malformed datagrams never reach the callback."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000))
        callback = MagicMock()
        relay.on_receive(callback)

        with caplog.at_level(logging.WARNING, logger="sockstun.relay"):
            relay.datagram_received(b"\x00\x00\x00\x09junk", ("127.0.0.1", 5000))

        callback.assert_not_called()
        assert "Dropping UDP datagram" in caplog.text

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, caplog):
        """Test datagrams beyond max_queued are dropped with a warning."""
        relay = AsyncUDPRelay(_bound("127.0.0.1", 5000), max_queued=1)

        with caplog.at_level(logging.WARNING, logger="sockstun.relay"):
            relay.datagram_received(build_udp_datagram(b"first", "1.2.3.4", 7), ("127.0.0.1", 5000))
            relay.datagram_received(build_udp_datagram(b"second", "1.2.3.4", 7), ("127.0.0.1", 5000))

        assert "receive queue is full" in caplog.text
        assert (await relay.receive()).data == b"first"

        relay.datagram_received(build_udp_datagram(b"third", "1.2.3.4", 7), ("127.0.0.1", 5000))
        assert (await relay.receive()).data == b"third"

    @pytest.mark.asyncio
    async def test_round_trip_over_loopback(self):
        """Test a datagram sent through a fake relay comes back unwrapped."""
        loop = asyncio.get_running_loop()
        echoed = loop.create_future()

        class EchoRelay(asyncio.DatagramProtocol):
            def connection_made(self, transport):
                self.transport = transport

            def datagram_received(self, data, addr):
                # Echo the payload back with the same header, as a relay would.
                self.transport.sendto(data, addr)
                if not echoed.done():
                    echoed.set_result(data)

        server, _ = await loop.create_datagram_endpoint(EchoRelay, local_addr=("127.0.0.1", 0))
        port = server.get_extra_info("sockname")[1]
        try:
            relay = await AsyncUDPRelay.open(_bound("127.0.0.1", port), local_addr=("127.0.0.1", 0))
            relay.send(b"ping", "10.0.0.1", 7)
            datagram = await asyncio.wait_for(relay.receive(), 2.0)

            assert await echoed == build_udp_datagram(b"ping", "10.0.0.1", 7)
            assert datagram.data == b"ping"
            assert (datagram.host, datagram.port) == ("10.0.0.1", 7)
            relay.close()
            await relay.wait_closed()
        finally:
            server.close()
