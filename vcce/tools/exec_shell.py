"""Streaming shell command execution for the ``exec`` command.

A command runs in a shell under the requested working directory. Its
stdout and stderr are forwarded chunk by chunk (as the OS delivers them)
to an event sink, followed by exactly one ``exit`` event:

    {"id": 7, "event": "stdout", "data": "hi\\n"}
    {"id": 7, "event": "exit", "code": 0}

Each process runs in its own session so that terminating it also
terminates anything the shell started.
"""

import asyncio
import codecs
import json
import logging
import os
import signal
from typing import Any, Dict, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096

# Reported when the process could not be spawned at all
SPAWN_FAILED_EXIT_CODE = -1


class EventSink(Protocol):
    def emit(self, event: str, data: Optional[str] = None, code: Optional[int] = None) -> None:
        ...

    async def drain(self) -> None:
        ...


def _id_key(request_id: Any) -> str:
    # Request ids are arbitrary JSON values, not necessarily hashable
    return json.dumps(request_id, sort_keys=True)


async def _pump(stream: asyncio.StreamReader, event: str, sink: EventSink) -> None:
    """Forward one output stream to the sink until EOF."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            tail = decoder.decode(b"", final=True)
            if tail:
                sink.emit(event, tail)
            break
        text = decoder.decode(chunk)
        if text:
            sink.emit(event, text)
            await sink.drain()


def terminate_process(process: asyncio.subprocess.Process, sig: int = signal.SIGTERM) -> bool:
    """Signal a running process group. Returns False if it already exited."""
    if process.returncode is not None:
        return False
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return False
    return True


async def stream_command(
    command: str,
    cwd: Optional[str],
    sink: EventSink,
    on_spawn=None,
) -> int:
    """
    Run a shell command and stream its output to sink.

    Args:
        command: Shell command line
        cwd: Working directory (None = daemon's cwd)
        sink: Receives stdout/stderr/exit events
        on_spawn: Optional callback receiving the Process once started

    Returns:
        The exit code that was reported in the ``exit`` event.
        Spawn failures are reported as a stderr event plus
        SPAWN_FAILED_EXIT_CODE.
    """
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Failed to start command {command!r} in {cwd}: {e}")
        sink.emit("stderr", f"Failed to start command: {e}\n")
        sink.emit("exit", code=SPAWN_FAILED_EXIT_CODE)
        return SPAWN_FAILED_EXIT_CODE

    logger.debug(f"Started pid {process.pid}: {command!r} (cwd={cwd})")
    if on_spawn is not None:
        on_spawn(process)

    try:
        await asyncio.gather(
            _pump(process.stdout, "stdout", sink),
            _pump(process.stderr, "stderr", sink),
        )
        code = await process.wait()
    except asyncio.CancelledError:
        terminate_process(process, signal.SIGKILL)
        await process.wait()
        sink.emit("exit", code=process.returncode)
        raise

    logger.debug(f"Process {process.pid} exited with code {code}")
    sink.emit("exit", code=code)
    return code


class ProcessRunner:
    """
    Tracks running ``exec`` processes per owning connection.

    Processes are keyed by (owner, request id) so that a connection can
    terminate its own commands (execKill) and have them cleaned up when it
    disconnects.
    """

    def __init__(self):
        self._running: Dict[Tuple[str, str], asyncio.subprocess.Process] = {}
        # Started but not spawned yet; a kill requested meanwhile lands in _doomed
        self._spawning: Set[Tuple[str, str]] = set()
        self._doomed: Set[Tuple[str, str]] = set()
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._running)

    def start(self, owner: str, request_id: Any, command: str, cwd: Optional[str], sink: EventSink) -> asyncio.Task:
        """Schedule a command; events flow to sink asynchronously."""
        key = (owner, _id_key(request_id))

        def register(process: asyncio.subprocess.Process) -> None:
            self._spawning.discard(key)
            self._running[key] = process
            if key in self._doomed:
                self._doomed.discard(key)
                terminate_process(process)

        async def run() -> int:
            try:
                return await stream_command(command, cwd, sink, on_spawn=register)
            finally:
                self._spawning.discard(key)
                self._doomed.discard(key)
                # A newer exec reusing the same id may own the slot by now
                process = self._running.get(key)
                if process is not None and process.returncode is not None:
                    del self._running[key]

        self._spawning.add(key)
        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def kill(self, owner: str, request_id: Any) -> bool:
        """Terminate one running command. Returns False if none is running."""
        key = (owner, _id_key(request_id))
        process = self._running.get(key)
        if process is None:
            if key in self._spawning:
                self._doomed.add(key)
                return True
            return False
        logger.info(f"Terminating pid {process.pid} (request {request_id!r})")
        return terminate_process(process)

    def kill_owner(self, owner: str) -> int:
        """Terminate every command started by owner. Returns how many were signalled."""
        killed = 0
        for key in self._spawning:
            if key[0] == owner:
                self._doomed.add(key)
                killed += 1
        for (process_owner, _), process in list(self._running.items()):
            if process_owner == owner and terminate_process(process):
                killed += 1
        if killed:
            logger.info(f"Terminated {killed} orphaned process(es)")
        return killed

    async def shutdown(self) -> None:
        """Terminate everything and wait for the pump tasks to finish."""
        self._doomed.update(self._spawning)
        for process in list(self._running.values()):
            terminate_process(process)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
