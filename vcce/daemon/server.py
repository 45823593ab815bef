"""Async TCP server for the VCCE daemon.

This module implements the long-running process that:
1. Accepts editor connections on a TCP port (default 7071)
2. Reassembles length-prefixed JSON frames from each connection
3. Dispatches requests and streams exec output back on the same socket

Usage:
    python -m vcce.daemon.server [--host HOST] [--port PORT]

    Or use the CLI:
    vcce serve
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from vcce.core.configs import ServerConfig, get_server_config, load_raw_config
from vcce.core.errors import MalformedPayload
from vcce.daemon.dispatcher import CommandDispatcher, Connection
from vcce.daemon.protocol import FrameBuffer, decode_frame, make_response
from vcce.daemon.state import DaemonState

logger = logging.getLogger(__name__)

READ_CHUNK = 65536


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class DaemonServer:
    """
    Async TCP server for the daemon.

    Handles concurrent client connections using asyncio. Within one
    connection requests are handled in arrival order; exec output is
    written from background tasks as it is produced.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        state: Optional[DaemonState] = None,
    ):
        """
        Initialize daemon server.

        Args:
            config: Server configuration (defaults to ServerConfig())
            state: Shared daemon state (created from config if omitted)
        """
        self.config = config or ServerConfig()
        self.state = state or DaemonState(self.config)
        self.dispatcher = CommandDispatcher(self.state)

        self.server: Optional[asyncio.AbstractServer] = None
        self.port: Optional[int] = None
        self._connections = set()
        self._shutdown_event: asyncio.Event = asyncio.Event()

    async def open(self) -> None:
        """Bind the listening socket (port 0 picks a free port)."""
        self.server = await asyncio.start_server(
            self._handle_client,
            host=self.config.host,
            port=self.config.port,
        )
        self.port = self.server.sockets[0].getsockname()[1]
        logger.info(f"VCCE daemon listening on {self.config.host}:{self.port}")

    async def start(self) -> None:
        """Start the daemon and serve until a shutdown signal."""
        logger.info("Starting VCCE daemon...")
        await self.open()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

        async with self.server:
            await self._shutdown_event.wait()

        await self.close()

    def shutdown(self) -> None:
        self._shutdown_event.set()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single client connection until EOF or a framing error."""
        peer = writer.get_extra_info("peername")
        connection = Connection(writer, peer)
        self._connections.add(connection)
        buffer = FrameBuffer(max_frame_bytes=self.config.max_frame_bytes)
        logger.info(f"Client connected {peer}")

        try:
            while not connection.closed:
                chunk = await reader.read(READ_CHUNK)
                if not chunk:
                    break
                buffer.feed(chunk)

                # Every complete frame in the chunk, not just the first
                try:
                    for payload in buffer.frames():
                        request = decode_frame(payload)
                        await self.dispatcher.dispatch(request, connection)
                        await connection.drain()
                except MalformedPayload as e:
                    logger.warning(f"Malformed frame from {peer}: {e}; closing connection")
                    message = "Invalid JSON" if type(e) is MalformedPayload else str(e)
                    connection.send(make_response(None, False, message))
                    await connection.drain()
                    break
        except ConnectionError as e:
            logger.debug(f"Socket error from {peer}: {e}")
        finally:
            connection.closed = True
            self._connections.discard(connection)
            if self.config.kill_orphans:
                self.state.processes.kill_owner(connection.id)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.info(f"Client disconnected {peer}")

    def _signal_handler(self) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def close(self) -> None:
        """Stop accepting connections and terminate running processes."""
        logger.info("Cleaning up...")

        if self.server:
            self.server.close()
            await self.server.wait_closed()

        await self.state.processes.shutdown()
        self.state.contexts.clear()
        self.state.patches.clear()
        logger.info("Daemon stopped")


def run_daemon(
    host: Optional[str] = None,
    port: Optional[int] = None,
    config: Optional[ServerConfig] = None,
) -> None:
    """
    Run the daemon server in the foreground.

    Args:
        host: Listen address (overrides config)
        port: Listen port (overrides config)
        config: Preloaded configuration (defaults to config file + env)
    """
    if config is None:
        try:
            config = get_server_config(load_raw_config())
        except ValueError as e:
            configure_logging()
            logger.error(f"Failed to load config: {e}")
            sys.exit(1)

    if host is not None:
        config.host = host
    if port is not None:
        config.port = port

    configure_logging(config.log_level)
    server = DaemonServer(config=config)
    asyncio.run(server.start())


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="VCCE daemon server")
    parser.add_argument("--host", help="Listen address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Listen port (default: $PORT or 7071)")

    args = parser.parse_args()

    run_daemon(host=args.host, port=args.port)
