"""Direct subprocess transport: prompt on stdin, output streamed from stdout."""

from __future__ import annotations

import codecs
import logging
import os
import shlex
import subprocess
import threading
from pathlib import Path
from typing import IO

from docpilot.agent.models import TaskKind, TaskResult
from docpilot.agent.routing import TierProfile
from docpilot.agent.transport.base import TransportError, TransportListener, TransportRequest

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 4096
_STDERR_TAIL_CHARS = 500


class ProcessTaskHandle:
    """Kill switch for one spawned agent process."""

    def __init__(self, process: subprocess.Popen[bytes], *, grace_seconds: float) -> None:
        self.process = process
        self.grace_seconds = grace_seconds
        self._killed = threading.Event()

    @property
    def killed(self) -> bool:
        return self._killed.is_set()

    def kill(self) -> None:
        if self._killed.is_set():
            return
        self._killed.set()
        threading.Thread(
            target=_terminate_process,
            args=(self.process, self.grace_seconds),
            daemon=True,
            name=f"docpilot-reaper-{self.process.pid}",
        ).start()


class DirectProcessTransport:
    """Run the agent CLI per task, rendered from a command template.

    The template may reference ``{model}`` and ``{target}``; tier flags are
    appended after rendering. The prompt is written to the process stdin.
    Every stdout chunk is reported as the whole output accumulated so far.
    When ``stream_dir`` is set the output is also mirrored to a stream log so
    another process can show the last output.
    """

    def __init__(
        self,
        *,
        command_template: str,
        kill_grace_seconds: float = 2.0,
        stream_dir: Path | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.kill_grace_seconds = kill_grace_seconds
        self.stream_dir = stream_dir
        self.extra_env = dict(extra_env or {})
        self._last_output: dict[TaskKind, str] = {}
        self._last_output_lock = threading.Lock()

    def send(self, request: TransportRequest, listener: TransportListener) -> ProcessTaskHandle:
        run_args = build_run_args(
            command_template=self.command_template,
            profile=request.profile,
            target=request.target,
        )
        env = os.environ.copy()
        env.update(self.extra_env)
        env["DOCPILOT_TASK_ID"] = request.task_id
        env["DOCPILOT_TASK_KIND"] = request.kind.value
        env["DOCPILOT_TARGET"] = str(request.target)
        env["DOCPILOT_MODEL"] = request.profile.model
        cwd = request.target.parent if request.target.parent.is_dir() else None

        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                cwd=cwd,
            )
        except FileNotFoundError as error:
            raise TransportError(
                f"Agent command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise TransportError(
                f"Agent command failed to start: {error}",
                transient=True,
            ) from error

        handle = ProcessTaskHandle(process, grace_seconds=self.kill_grace_seconds)
        self._record_output(request.kind, "")
        threading.Thread(
            target=_write_stdin,
            args=(process.stdin, request.prompt),
            daemon=True,
            name=f"docpilot-stdin-{request.task_id[:8]}",
        ).start()
        threading.Thread(
            target=self._pump,
            args=(request, process, handle, listener),
            daemon=True,
            name=f"docpilot-{request.kind.value}-{request.task_id[:8]}",
        ).start()
        logger.info(
            "Started %s task %s (pid=%s, model=%s)",
            request.kind.value,
            request.task_id,
            process.pid,
            request.profile.model,
        )
        return handle

    def read_last_output(self, kind: TaskKind) -> str:
        with self._last_output_lock:
            if kind in self._last_output:
                return self._last_output[kind]
        path = self._stream_path(kind)
        if path is None:
            return ""
        try:
            return path.read_text("utf-8")
        except (OSError, UnicodeDecodeError):
            return ""

    def _stream_path(self, kind: TaskKind) -> Path | None:
        if self.stream_dir is None:
            return None
        return self.stream_dir / f"docpilot-{kind.value}-stream.log"

    def _record_output(self, kind: TaskKind, text: str) -> None:
        with self._last_output_lock:
            self._last_output[kind] = text
        path = self._stream_path(kind)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, "utf-8")
        except OSError as error:
            logger.warning("Failed to persist %s stream log: %s", kind.value, error)

    def _pump(
        self,
        request: TransportRequest,
        process: subprocess.Popen[bytes],
        handle: ProcessTaskHandle,
        listener: TransportListener,
    ) -> None:
        stderr_chunks: list[str] = []
        stderr_thread = threading.Thread(
            target=_drain,
            args=(process.stderr, stderr_chunks),
            daemon=True,
        )
        stderr_thread.start()

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        accumulated = ""
        stdout = process.stdout
        if stdout is None:
            process.wait()
            if not handle.killed:
                listener.on_error("Agent process has no output stream")
            return
        while True:
            chunk = stdout.read1(_CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                break
            text = decoder.decode(chunk)
            if not text:
                continue
            accumulated += text
            self._record_output(request.kind, accumulated)
            if not handle.killed:
                listener.on_data(accumulated)
        tail = decoder.decode(b"", final=True)
        if tail:
            accumulated += tail
            self._record_output(request.kind, accumulated)

        returncode = process.wait()
        stderr_thread.join(timeout=1)
        if handle.killed:
            logger.info("Task %s killed (exit=%s)", request.task_id, returncode)
            return
        if returncode == 0:
            listener.on_complete(TaskResult(output=accumulated))
            return
        stderr_text = "".join(stderr_chunks).strip()
        message = (
            stderr_text[-_STDERR_TAIL_CHARS:]
            if stderr_text
            else f"Assistant exited with code {returncode}"
        )
        logger.warning("Task %s failed with exit code %s", request.task_id, returncode)
        listener.on_error(message)


def build_run_args(*, command_template: str, profile: TierProfile, target: Path) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise TransportError("Agent command template is empty.", transient=False)
    try:
        rendered = stripped.format(
            model=shlex.quote(profile.model),
            target=shlex.quote(str(target)),
        )
    except (KeyError, IndexError) as error:
        raise TransportError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise TransportError("Agent command template rendered empty command.", transient=False)
    return [*argv, *profile.cli_args()]


def _write_stdin(stdin: IO[bytes] | None, prompt: str) -> None:
    if stdin is None:
        return
    try:
        stdin.write(prompt.encode("utf-8"))
        stdin.flush()
    except (BrokenPipeError, ValueError, OSError):
        logger.debug("Agent process closed stdin before the prompt was fully written")
    finally:
        try:
            stdin.close()
        except OSError:
            pass


def _drain(stream: IO[bytes] | None, sink: list[str]) -> None:
    if stream is None:
        return
    for raw in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        sink.append(raw.decode("utf-8", errors="replace"))


def _terminate_process(process: subprocess.Popen[bytes], grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=grace_seconds)
