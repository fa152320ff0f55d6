# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Client for the agent's RPC mode over newline-delimited JSON on stdio.

The agent is spawned as ``pi --mode rpc``. Commands are written one JSON
object per line, ``{"id": "req-1", "type": "get_state", ...}``. Responses
(``{"type": "response", "id", "command", "success", "data", "error"}``)
resolve the matching pending command; every other line is queued as an
event for :meth:`PiRpcClient.events`.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections import deque
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Final, cast

from ..errors import TransportError
from ..runtime.logging import StructuredLogger, get_logger

logger: StructuredLogger = get_logger(__name__, context={"component": "rpc_client"})

_SENTINEL: Final[dict[str, Any]] = {"_sentinel": True}
_DEFAULT_ARGS: Final[tuple[str, ...]] = ("--mode", "rpc")
_STOP_TIMEOUT: Final = 5.0
_STDERR_LINES: Final = 500


class RpcClientError(TransportError):
    """Error from the agent RPC client."""


class PiRpcClient:
    """Owns the agent subprocess and demultiplexes its stdout.

    Responses are matched to commands by ``id``. Older agents omit the id
    and echo the command name instead; those responses resolve the oldest
    pending command of that name.
    """

    def __init__(
        self,
        executable: str = "pi",
        args: Sequence[str] = _DEFAULT_ARGS,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        request_timeout: float | None = 30.0,
        suppress_stderr: bool = True,
    ) -> None:
        super().__init__()
        self._executable = executable
        self._args = tuple(args)
        self._extra_env = dict(env) if env else {}
        self._cwd = cwd
        self._request_timeout = request_timeout
        self._suppress_stderr = suppress_stderr
        self._proc: asyncio.subprocess.Process | None = None
        self._next_id = 0
        self._pending: dict[str, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._message_queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._read_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_lines: deque[str] = deque(maxlen=_STDERR_LINES)

    @property
    def running(self) -> bool:
        return self._read_task is not None and not self._read_task.done()

    @property
    def stderr_output(self) -> str:
        """Return the most recent stderr lines of the agent."""
        return "\n".join(self._stderr_lines)

    async def start(self) -> None:
        """Spawn the agent subprocess and begin reading."""
        merged_env = {**os.environ, **self._extra_env}
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self._executable,
                *self._args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                cwd=self._cwd,
            )
        except OSError as error:
            raise RpcClientError(
                f"Failed to start {self._executable}: {error}", operation="start"
            ) from error
        self._read_task = asyncio.create_task(self._read_loop())
        if self._proc.stderr is not None:  # pragma: no branch
            self._stderr_task = asyncio.create_task(self._stderr_loop())
        logger.info(
            "Agent process started.",
            event="rpc.started",
            context={"executable": self._executable, "args": list(self._args)},
        )

    async def stop(self) -> None:
        """Terminate the subprocess and fail every pending command."""
        if self._read_task is not None:
            _ = self._read_task.cancel()
            self._read_task = None

        if self._stderr_task is not None:
            _ = self._stderr_task.cancel()
            self._stderr_task = None

        if self._proc is not None:
            if self._proc.stdin is not None:  # pragma: no branch
                self._proc.stdin.close()
            try:
                _ = await asyncio.wait_for(self._proc.wait(), timeout=_STOP_TIMEOUT)
            except TimeoutError:
                self._proc.kill()
                _ = await self._proc.wait()
            self._proc = None

        self._fail_pending("Client stopped with pending requests")

    async def send_command(
        self,
        command: str,
        params: Mapping[str, object] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send ``command`` and await its response.

        Returns the response's ``data`` object (empty when absent).

        Raises:
            RpcClientError: If the agent rejects the command, does not
                answer within the timeout, or has exited.
        """
        if self._read_task is None:
            raise RpcClientError("Client not started", operation=command)
        if self._read_task.done():
            raise RpcClientError(
                f"Agent process exited before {command}", operation=command
            )

        self._next_id += 1
        req_id = f"req-{self._next_id}"
        msg: dict[str, Any] = {**(params or {}), "id": req_id, "type": command}

        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        self._pending[req_id] = (command, future)

        try:
            await self._write(msg)
        except RpcClientError:
            _ = self._pending.pop(req_id, None)
            raise
        except OSError as error:
            _ = self._pending.pop(req_id, None)
            raise RpcClientError(
                f"Failed to send request {command}: {error}", operation=command
            ) from error

        effective_timeout = timeout if timeout is not None else self._request_timeout
        try:
            resp = await asyncio.wait_for(future, timeout=effective_timeout)
        except TimeoutError:
            _ = self._pending.pop(req_id, None)
            raise RpcClientError(
                f"Timeout waiting for response to {command} (id={req_id})",
                operation=command,
            ) from None

        if resp.get("success") is False:
            error = resp.get("error") or "unknown error"
            raise RpcClientError(f"{command} failed: {error}", operation=command)
        data = resp.get("data")
        return cast(dict[str, Any], data) if isinstance(data, dict) else {}

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield non-response messages until the subprocess exits."""
        while True:
            msg = await self._message_queue.get()
            if msg is _SENTINEL:
                # Leave the marker for any later consumer.
                self._message_queue.put_nowait(_SENTINEL)
                return
            yield msg

    def drain_events(self) -> int:
        """Discard queued events without waiting; returns how many were dropped."""
        dropped = 0
        while not self._message_queue.empty():
            msg = self._message_queue.get_nowait()
            if msg is _SENTINEL:
                self._message_queue.put_nowait(_SENTINEL)
                break
            dropped += 1
        if dropped:
            logger.debug(
                "Dropped queued events.",
                event="rpc.events_drained",
                context={"count": dropped},
            )
        return dropped

    # ---- internal ----

    async def _write(self, msg: dict[str, Any]) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise RpcClientError("Client not started")  # pragma: no cover
        data = json.dumps(msg, separators=(",", ":")) + "\n"
        self._proc.stdin.write(data.encode())
        await self._proc.stdin.drain()

    async def _read_loop(self) -> None:
        if self._proc is None or self._proc.stdout is None:
            return  # pragma: no cover

        try:
            while True:
                raw = await self._proc.stdout.readline()
                if not raw:
                    break

                line = raw.decode(errors="replace").strip()
                if not line:
                    continue

                parsed = self._try_parse(line)
                if parsed is None:
                    continue

                self._route_message(parsed)

        except asyncio.CancelledError:
            pass
        finally:
            await self._message_queue.put(_SENTINEL)
            self._fail_pending("Agent process exited unexpectedly")
            logger.info("Agent output closed.", event="rpc.closed")

    def _try_parse(self, line: str) -> dict[str, Any] | None:
        try:
            parsed: Any = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(
                "Ignoring non-JSON output line.",
                event="rpc.invalid_json",
                context={"line": line[:200]},
            )
            return None

        if not isinstance(parsed, dict):
            return None
        return cast(dict[str, Any], parsed)

    def _route_message(self, parsed: dict[str, Any]) -> None:
        if parsed.get("type") != "response" and parsed.get("kind") != "response":
            self._message_queue.put_nowait(parsed)
            return

        req_id = parsed.get("id")
        entry = self._pending.pop(req_id, None) if isinstance(req_id, str) else None
        if entry is None:
            entry = self._pop_by_command(parsed.get("command"))
        if entry is None:
            logger.debug(
                "Dropping response without a pending command.",
                event="rpc.orphan_response",
                context={"id": req_id, "command": parsed.get("command")},
            )
            return
        _command, future = entry
        if not future.done():
            future.set_result(parsed)

    def _pop_by_command(
        self, command: object
    ) -> tuple[str, asyncio.Future[dict[str, Any]]] | None:
        if not isinstance(command, str):
            return None
        for req_id, (pending_command, _future) in self._pending.items():
            if pending_command == command:
                return self._pending.pop(req_id)
        return None

    def _fail_pending(self, message: str) -> None:
        for command, future in self._pending.values():
            if not future.done():
                future.set_exception(RpcClientError(message, operation=command))
        self._pending.clear()

    async def _stderr_loop(self) -> None:
        if self._proc is None or self._proc.stderr is None:
            return  # pragma: no cover

        try:
            while True:
                raw = await self._proc.stderr.readline()
                if not raw:
                    break
                line = raw.decode(errors="replace").rstrip()
                self._stderr_lines.append(line)
                if not self._suppress_stderr:
                    logger.debug(
                        "Agent stderr.", event="rpc.stderr", context={"line": line}
                    )
        except asyncio.CancelledError:
            pass


__all__ = ["PiRpcClient", "RpcClientError"]
