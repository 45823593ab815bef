"""Blocking TCP client for the daemon protocol.

Used by the CLI and by integration tests. One client holds one persistent
connection, so exec events and responses for other requests may arrive
interleaved; messages not matching the id being waited for are kept in a
backlog until someone asks for them.

Usage:
    with DaemonClient(port=7071) as client:
        print(client.request("listDir", {"path": "."}))
        for message in client.exec_stream("echo hi"):
            ...
"""

import itertools
import socket
from typing import Any, Dict, Iterator, List, Optional

from vcce.core.configs import DEFAULT_PORT
from vcce.daemon.protocol import FrameBuffer, encode_frame


class DaemonClient:
    """
    Lightweight client for daemon communication.

    Designed for minimal overhead:
    - Uses stdlib socket
    - Same length-prefixed JSON framing as the server
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        timeout: float = 30.0,
    ):
        """
        Initialize client (connects lazily).

        Args:
            host: Daemon address
            port: Daemon TCP port
            timeout: Socket timeout in seconds
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self._sock: Optional[socket.socket] = None
        self._buffer = FrameBuffer()
        self._backlog: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def __enter__(self) -> "DaemonClient":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def connect(self) -> None:
        if self._sock is None:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def is_daemon_running(self) -> bool:
        """Check if the daemon accepts connections and answers health."""
        try:
            response = self.request("health")
            return bool(response.get("ok"))
        except OSError:
            return False

    def send_raw(self, data: bytes) -> None:
        """Write raw bytes (tests use this to split or corrupt frames)."""
        self.connect()
        self._sock.sendall(data)

    def send(self, cmd: str, args: Optional[Dict[str, Any]] = None, request_id: Any = None) -> Any:
        """Send a request without waiting. Returns the request id."""
        if request_id is None:
            request_id = next(self._ids)
        self.send_raw(encode_frame({"id": request_id, "cmd": cmd, "args": args or {}}))
        return request_id

    def receive(self) -> Optional[Dict[str, Any]]:
        """
        Next message from the server (backlog first).

        Returns None when the server closed the connection.

        Raises:
            socket.timeout: If nothing arrives within the timeout
        """
        if self._backlog:
            return self._backlog.pop(0)
        while True:
            for message in self._buffer.messages():
                self._backlog.append(message)
            if self._backlog:
                return self._backlog.pop(0)
            chunk = self._sock.recv(65536)
            if not chunk:
                return None
            self._buffer.feed(chunk)

    def _receive_matching(self, predicate) -> Optional[Dict[str, Any]]:
        for i, message in enumerate(self._backlog):
            if predicate(message):
                return self._backlog.pop(i)
        skipped = []
        try:
            while True:
                message = self.receive()
                if message is None or predicate(message):
                    return message
                skipped.append(message)
        finally:
            self._backlog[:0] = skipped

    def wait_response(self, request_id: Any) -> Optional[Dict[str, Any]]:
        """Wait for the response (not events) of a request."""
        return self._receive_matching(lambda m: m.get("id") == request_id and "ok" in m)

    def request(self, cmd: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a request and return its response.

        Raises:
            ConnectionError: If the server closed the connection first
        """
        request_id = self.send(cmd, args)
        response = self.wait_response(request_id)
        if response is None:
            raise ConnectionError("Daemon closed the connection")
        return response

    def exec_stream(self, command: str, cwd: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Run a command remotely and yield the ack followed by its events.

        Iteration ends after the ``exit`` event (or a failed ack).
        """
        args = {"command": command}
        if cwd:
            args["cwd"] = cwd
        request_id = self.send("exec", args)

        ack = self.wait_response(request_id)
        if ack is None:
            raise ConnectionError("Daemon closed the connection")
        yield ack
        if not ack.get("ok"):
            return

        while True:
            event = self._receive_matching(lambda m: m.get("id") == request_id and "event" in m)
            if event is None:
                raise ConnectionError("Daemon closed the connection before exit")
            yield event
            if event["event"] == "exit":
                return
