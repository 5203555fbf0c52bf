"""
tcpgate.core
~~~~~~~~~~~~
Non-blocking TCP gate with optional Basic-Auth and a per-read idle timeout.

Bytes are never parsed as HTTP; each read is only scanned for an
``Authorization`` line.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional, Set

from .auth import CredentialStore, find_auth_header, validate_basic_auth
from .config import Config
from .logger import GateLogger

BUFFER = 2048

UNAUTHORIZED_RESPONSE = (
    b"HTTP/1.1 401 Unauthorized\r\n"
    b'WWW-Authenticate: Basic realm="Restricted"\r\n'
    b"Content-Length: 0\r\n\r\n"
)
TIMEOUT_RESPONSE = b"HTTP/1.1 408 Request Timeout\r\nContent-Length: 0\r\n\r\n"


def run_gate(config: Config, log: GateLogger | None = None) -> None:
    gate = GateServer(config, log)
    asyncio.run(gate.serve_forever(install_signals=True))


class GateServer:
    def __init__(self, cfg: Config, log: GateLogger | None = None) -> None:
        self.cfg = cfg
        self.credentials: CredentialStore = cfg.credentials()
        self.log = log or GateLogger()
        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Set[asyncio.Task] = set()
        self._stopped: Optional[asyncio.Event] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._prev_handler = None
        self._signals: tuple = ()

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def start(self) -> None:
        """Bind the listener.  Bind failures propagate to the caller."""
        self._stopped = asyncio.Event()
        self._server = await asyncio.start_server(
            self._handle_client,
            host=self.cfg.listen_host,
            port=self.cfg.listen_port,
        )
        loop = asyncio.get_running_loop()
        self._prev_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._on_loop_error)

        bind_str = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        self.log.listening(bind_str, self.cfg.idle_timeout, self.credentials.enabled)

    async def serve_forever(self, install_signals: bool = False) -> None:
        if self._server is None:
            await self.start()
        if install_signals:
            loop = asyncio.get_running_loop()
            self._signals = (signal.SIGINT, signal.SIGTERM)
            for sig in self._signals:
                loop.add_signal_handler(sig, self._request_stop)

        async with self._server:
            await self._stopped.wait()

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for task in list(self._sessions):
            task.cancel()
        await asyncio.gather(*self._sessions, return_exceptions=True)
        await self._server.wait_closed()

        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals = ()
        if loop.get_exception_handler() == self._on_loop_error:
            loop.set_exception_handler(self._prev_handler)
        self._stopped.set()

    def _request_stop(self) -> None:
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self.stop())

    def _on_loop_error(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        # asyncio's accept loop reports failures here and keeps serving
        self.log.server_error(context.get("message", "-"), context.get("exception"))

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_ip = f"{peer[0]}:{peer[1]}" if peer else "-"

        if self.cfg.max_sessions and len(self._sessions) >= self.cfg.max_sessions:
            self.log.capacity(peer_ip, self.cfg.max_sessions)
            await _close(writer)
            return

        task = asyncio.current_task()
        self._sessions.add(task)
        try:
            session = Session(reader, writer, peer_ip, self.credentials, self.cfg.idle_timeout, self.log)
            await session.run()
        finally:
            self._sessions.discard(task)


class Session:
    """One accepted connection, read sequentially until it is closed."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer_ip: str,
        credentials: CredentialStore,
        idle_timeout: float,
        log: GateLogger,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.peer_ip = peer_ip
        self.credentials = credentials
        self.idle_timeout = idle_timeout
        self.log = log
        self.authorized = not credentials.enabled

    async def run(self) -> None:
        self.log.accepted(self.peer_ip)
        reason = "error"
        try:
            reason = await self._read_loop()
        except asyncio.CancelledError:
            reason = "shutdown"
            raise
        finally:
            await _close(self.writer)
            self.log.closed(self.peer_ip, reason)

    async def _read_loop(self) -> str:
        while True:
            try:
                data = await asyncio.wait_for(self.reader.read(BUFFER), timeout=self.idle_timeout)
            except asyncio.TimeoutError:
                await self._send(TIMEOUT_RESPONSE)
                self.log.timeout(self.peer_ip, self.idle_timeout)
                return "timeout"
            except OSError as e:
                self.log.io_error(self.peer_ip, "read", e)
                return "read_error"

            if not data:
                return "peer_closed"

            if not await self._on_data(data):
                return "unauthorized"

    async def _on_data(self, data: bytes) -> bool:
        """Handle one chunk; False means the connection must be rejected."""
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            self.log.non_text(self.peer_ip, len(data))
            text = None

        if not self.credentials.enabled:
            if text is not None:
                self.log.received(self.peer_ip, text, self.authorized)
            return True

        header = find_auth_header(text) if text is not None else None
        if header is None:
            if text is not None and not self.authorized:
                self.log.awaiting_auth(self.peer_ip, text)
            elif text is not None:
                self.log.received(self.peer_ip, text, self.authorized)
            return True

        if validate_basic_auth(header, self.credentials, self.peer_ip, self.log):
            self.authorized = True
            self.log.received(self.peer_ip, text, self.authorized)
            return True

        self.authorized = False
        await self._send(UNAUTHORIZED_RESPONSE)
        self.log.unauthorized(self.peer_ip)
        return False

    async def _send(self, payload: bytes) -> None:
        try:
            self.writer.write(payload)
            await self.writer.drain()
        except OSError as e:
            self.log.io_error(self.peer_ip, "write", e)


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
