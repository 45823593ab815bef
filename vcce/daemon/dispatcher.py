"""Command routing for decoded requests.

Two kinds of handlers:
- request/response handlers return the response fields for one reply;
- stream handlers return an acknowledgment and keep emitting events for
  the same request id through an EventSink after the ack was written.

Any error raised by a handler is reported as ``{"ok": false, "data": msg}``;
it never closes the connection.
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional
import uuid

from vcce.core.errors import DaemonError, FrameTooLarge, MissingArgument, UnknownCommand
from vcce.daemon.protocol import encode_frame, make_event, make_response
from vcce.daemon.state import DaemonState
from vcce.tools import file_ops

logger = logging.getLogger(__name__)


class Connection:
    """Write side of one client connection."""

    def __init__(self, writer: asyncio.StreamWriter, peer: Any = None):
        self.writer = writer
        self.peer = peer
        self.id = uuid.uuid4().hex
        self.closed = False

    def send(self, message: Dict[str, Any]) -> None:
        """Frame and queue a message. Silently dropped once the peer is gone."""
        if self.closed or self.writer.is_closing():
            logger.debug(f"Dropping message for closed connection {self.peer}: id={message.get('id')!r}")
            return
        try:
            frame = encode_frame(message)
        except FrameTooLarge as e:
            logger.error(f"Response for id={message.get('id')!r} too large to send: {e}")
            frame = encode_frame(make_response(message.get("id"), False, f"Response too large: {e}"))
        self.writer.write(frame)

    async def drain(self) -> None:
        if self.closed:
            return
        try:
            await self.writer.drain()
        except ConnectionError as e:
            logger.debug(f"Connection {self.peer} lost while draining: {e}")
            self.closed = True


class EventSink:
    """
    Streaming capability scoped to one request id.

    Events emitted before ``open()`` are held back so that they can never
    overtake the acknowledgment. The sink closes itself after ``exit``.
    """

    def __init__(self, connection: Connection, request_id: Any):
        self.connection = connection
        self.request_id = request_id
        self.closed = False
        self._open = False
        self._pending = []

    def emit(self, event: str, data: Optional[str] = None, code: Optional[int] = None) -> None:
        if self.closed:
            logger.warning(f"Event {event!r} after exit for id={self.request_id!r} ignored")
            return
        message = make_event(self.request_id, event, data=data, code=code)
        if event == "exit":
            self.closed = True
        if self._open:
            self.connection.send(message)
        else:
            self._pending.append(message)

    def open(self) -> None:
        self._open = True
        for message in self._pending:
            self.connection.send(message)
        self._pending.clear()

    async def drain(self) -> None:
        await self.connection.drain()


def _require(args: Dict[str, Any], name: str) -> Any:
    value = args.get(name)
    if value is None or value == "":
        raise MissingArgument(name)
    return value


def _error_message(error: Exception) -> str:
    return str(error) or error.__class__.__name__


class CommandDispatcher:
    """
    Maps ``cmd`` names to handlers.

    One dispatcher serves every connection; per-connection data (the
    writer, owned processes) travels in the Connection object.
    """

    def __init__(self, state: DaemonState):
        self.state = state
        self._handlers: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
            "readFile": self._handle_read_file,
            "writeFile": self._handle_write_file,
            "listDir": self._handle_list_dir,
            "listDirs": self._handle_list_dirs,
            "createDir": self._handle_create_dir,
            "deleteFile": self._handle_delete_file,
            "deleteDir": self._handle_delete_dir,
            "isDir": self._handle_is_dir,
            "rename": self._handle_rename,
            "aiChat": self._handle_ai_chat,
            "setApiKey": self._handle_set_api_key,
            "aiStatus": self._handle_ai_status,
            "aiApprove": self._handle_ai_approve,
            "health": self._handle_health,
        }
        self._stream_handlers: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
            "exec": self._handle_exec,
        }
        # Needs the connection but replies once
        self._connection_handlers: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
            "execKill": self._handle_exec_kill,
        }

    @property
    def commands(self):
        return sorted([*self._handlers, *self._stream_handlers, *self._connection_handlers])

    async def dispatch(self, request: Any, connection: Connection) -> None:
        """Handle one decoded request and write its response (and events)."""
        request_id = request.get("id") if isinstance(request, dict) else None
        sink = None

        try:
            if not isinstance(request, dict):
                raise DaemonError("Invalid request: expected a JSON object")
            cmd = request.get("cmd")
            if not isinstance(cmd, str):
                raise UnknownCommand(cmd)
            args = request.get("args")
            if args is None:
                args = {}
            if not isinstance(args, dict):
                raise DaemonError("Invalid request: 'args' must be an object")

            if cmd in self._handlers:
                response = await self._handlers[cmd](args)
            elif cmd in self._stream_handlers:
                sink = EventSink(connection, request_id)
                response = await self._stream_handlers[cmd](request_id, args, sink, connection)
            elif cmd in self._connection_handlers:
                response = await self._connection_handlers[cmd](args, connection)
            else:
                raise UnknownCommand(cmd)
        except (DaemonError, OSError, ValueError, TypeError) as e:
            logger.debug(f"Request id={request_id!r} failed: {e}")
            response = {"ok": False, "data": _error_message(e)}
        except Exception as e:
            logger.exception(f"Unexpected error handling request id={request_id!r}: {e}")
            response = {"ok": False, "data": _error_message(e)}

        response = dict(response)
        response["id"] = request_id
        connection.send(response)
        if sink is not None:
            sink.open()

    # ------------------------------------------------------------------
    # File commands

    async def _handle_read_file(self, args):
        return {"ok": True, "data": await file_ops.read_file(_require(args, "path"))}

    async def _handle_write_file(self, args):
        data = args.get("data")
        if data is None:
            raise MissingArgument("data")
        if not isinstance(data, str):
            raise TypeError("'data' must be a string")
        await file_ops.write_file(_require(args, "path"), data)
        return {"ok": True}

    async def _handle_list_dir(self, args):
        return {"ok": True, "data": await file_ops.list_dir(args.get("path") or ".")}

    async def _handle_list_dirs(self, args):
        return {"ok": True, "data": await file_ops.list_dirs(args.get("path") or ".")}

    async def _handle_create_dir(self, args):
        await file_ops.create_dir(_require(args, "path"))
        return {"ok": True}

    async def _handle_delete_file(self, args):
        await file_ops.delete_file(_require(args, "path"))
        return {"ok": True}

    async def _handle_delete_dir(self, args):
        await file_ops.delete_dir(_require(args, "path"), recursive=bool(args.get("recursive")))
        return {"ok": True}

    async def _handle_is_dir(self, args):
        return {"ok": True, "data": await file_ops.is_dir(_require(args, "path"))}

    async def _handle_rename(self, args):
        await file_ops.rename(_require(args, "oldPath"), _require(args, "newPath"))
        return {"ok": True}

    # ------------------------------------------------------------------
    # Process commands

    async def _handle_exec(self, request_id, args, sink: EventSink, connection: Connection):
        command = args.get("command")
        if not command:
            return {"ok": False, "data": "No command provided"}
        if not isinstance(command, str):
            raise TypeError("'command' must be a string")

        cwd = args.get("cwd") or os.getcwd()
        if not isinstance(cwd, str):
            raise TypeError("'cwd' must be a string")
        logger.info(f"exec id={request_id!r} in {cwd}: {command}")
        self.state.processes.start(connection.id, request_id, command, cwd, sink)
        return {"ok": True, "started": True}

    async def _handle_exec_kill(self, args, connection: Connection):
        exec_id = args.get("execId")
        if exec_id is None:
            raise MissingArgument("execId")
        if not self.state.processes.kill(connection.id, exec_id):
            return {"ok": False, "data": f"No running process for id {exec_id!r}"}
        return {"ok": True}

    # ------------------------------------------------------------------
    # AI commands

    async def _handle_ai_chat(self, args):
        project_path = _require(args, "projectPath")
        messages = args.get("messages")
        if messages is None:
            raise MissingArgument("messages")
        result = await self.state.assistant.chat(
            project_path,
            messages,
            new_session=bool(args.get("newSession")),
        )
        return {"ok": True, "data": result.reply, "meta": result.meta()}

    async def _handle_set_api_key(self, args):
        key = _require(args, "key")
        if not isinstance(key, str):
            raise TypeError("'key' must be a string")
        self.state.completer.set_api_key(key)
        return {"ok": True}

    async def _handle_ai_status(self, args):
        return {"ok": True, "data": self.state.ai_status()}

    async def _handle_ai_approve(self, args):
        patch_id = _require(args, "patchId")
        if args.get("apply"):
            changed = await self.state.patches.approve(patch_id)
            return {"ok": True, "data": {"applied": changed}}
        await self.state.patches.discard(patch_id)
        return {"ok": True, "data": {"discarded": patch_id}}

    async def _handle_health(self, args):
        return {"ok": True, "data": self.state.get_stats()}
