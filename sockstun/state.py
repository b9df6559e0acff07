"""
Sans-IO SOCKS5 handshake state machine.

The machine never touches a socket: callers feed it raw reply bytes and write
out the messages it returns.

    INITIAL -> GREETING_SENT [-> AUTHENTICATION_SENT] -> REQUEST_SENT -> ESTABLISHED

Any protocol or channel failure moves the machine to FAILED, which is terminal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from .constants import DEFAULT_METHODS, AuthMethod, Command, ConnectionState, ReplyStatus, AUTH_GRANTED
from .errors import (
    AuthenticationFailed,
    AuthenticationMethodRejected,
    InvalidStateError,
    RequestRejected,
    SocksError,
    UnsupportedAuthenticationMethod,
)
from .packets import (
    BoundEndpoint,
    Credentials,
    build_auth_request,
    build_greeting,
    build_request,
    is_offerable,
    parse_auth_reply,
    parse_connection_reply,
    parse_handshake_reply,
)

logger = logging.getLogger(__name__)


class HandshakeStateMachine:
    """
    Drive one control channel through greeting, optional authentication and
    a single connection request.

    Args:
        methods: Authentication methods offered in the greeting.
    """

    def __init__(self, methods: Iterable[int] = DEFAULT_METHODS) -> None:
        offered = tuple(AuthMethod(m) for m in methods)
        for method in offered:
            if not is_offerable(method):
                raise ValueError(f"Cannot offer authentication method {method!r}")
        self.methods = offered
        self.state = ConnectionState.INITIAL
        self.command: Command | None = None
        self.bound: BoundEndpoint | None = None
        self._request: bytes | None = None
        self._credentials: Credentials | None = None
        self._ready = False

    @property
    def established(self) -> bool:
        return self.state is ConnectionState.ESTABLISHED

    @property
    def failed(self) -> bool:
        return self.state is ConnectionState.FAILED

    def _require(self, *states: ConnectionState) -> None:
        if self.state not in states:
            expected = " or ".join(s.name for s in states)
            raise InvalidStateError(f"Operation requires state {expected}, current state is {self.state.name}")

    def _move(self, new: ConnectionState) -> None:
        logger.debug("SOCKS5 state %s -> %s", self.state.name, new.name)
        self.state = new

    def fail(self) -> None:
        """Mark the channel as unusable."""
        if self.state is not ConnectionState.FAILED:
            self._move(ConnectionState.FAILED)
        self._credentials = None

    @contextmanager
    def _failing(self) -> Iterator[None]:
        try:
            yield
        except (SocksError, ValueError):
            self.fail()
            raise

    def start(
        self,
        host: str,
        port: int,
        command: int = Command.CONNECT,
        credentials: Credentials | None = None,
    ) -> bytes:
        """
        Begin establishment and return the greeting to send.

        The connection request and any authentication request are encoded
        up front so that length errors surface before a single byte goes out.
        """
        self._require(ConnectionState.INITIAL)
        command = Command(command)
        request = build_request(host, port, command)
        if credentials is not None:
            build_auth_request(credentials.username, credentials.password)
        greeting = build_greeting(self.methods)
        self.command = command
        self._request = request
        self._credentials = credentials
        self._move(ConnectionState.GREETING_SENT)
        return greeting

    def receive_handshake_reply(self, data: bytes) -> bytes | None:
        """
        Consume the method selection reply.

        Returns the authentication request to send, or None when the proxy
        selected no authentication and the connection request can follow.
        """
        self._require(ConnectionState.GREETING_SENT)
        if self._ready:
            raise InvalidStateError("Handshake reply already consumed")
        with self._failing():
            reply = parse_handshake_reply(data)
            method = reply.method
            logger.debug("SOCKS5 proxy selected auth method %#04x", method)
            if method == AuthMethod.NO_ACCEPTABLE:
                raise AuthenticationMethodRejected("no acceptable methods")
            if method not in self.methods:
                raise UnsupportedAuthenticationMethod(method)
            if method == AuthMethod.NO_AUTH:
                self._ready = True
                self._credentials = None
                return None
            if self._credentials is None:
                raise AuthenticationFailed("Proxy requires username/password authentication but no credentials were given")
            creds = self._credentials
            self._credentials = None
            auth = build_auth_request(creds.username, creds.password)
        self._move(ConnectionState.AUTHENTICATION_SENT)
        return auth

    def receive_auth_reply(self, data: bytes) -> None:
        self._require(ConnectionState.AUTHENTICATION_SENT)
        if self._ready:
            raise InvalidStateError("Authentication reply already consumed")
        with self._failing():
            reply = parse_auth_reply(data)
            if reply.status != AUTH_GRANTED:
                raise AuthenticationFailed("authentication failed")
        self._ready = True

    def send_request(self) -> bytes:
        """Return the connection request; valid once authentication is settled."""
        self._require(ConnectionState.GREETING_SENT, ConnectionState.AUTHENTICATION_SENT)
        if not self._ready or self._request is None:
            raise InvalidStateError("Authentication has not completed")
        request = self._request
        self._request = None
        self._move(ConnectionState.REQUEST_SENT)
        return request

    def receive_connection_reply(self, data: bytes) -> BoundEndpoint:
        self._require(ConnectionState.REQUEST_SENT)
        with self._failing():
            reply = parse_connection_reply(data)
            if reply.status != ReplyStatus.GRANTED:
                raise RequestRejected(reply.status)
        self.bound = reply.bound
        logger.debug("SOCKS5 %s granted, bound to %s:%d", self.command.name, reply.bound.host, reply.bound.port)
        self._move(ConnectionState.ESTABLISHED)
        return reply.bound
