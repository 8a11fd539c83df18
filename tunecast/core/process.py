"""
External process wrapper.

spawn() starts a child with piped stdio and returns a ProcessHandle, or None
when the executable cannot be started at all. The handle's `done` future
resolves with exit code 0 or fails with ProcessError. Closing the handle
(directly or by leaving its `with` block) closes our pipe ends, kills the
child if it is still running and reaps it.
"""

import logging
import subprocess
import threading
from collections import deque
from concurrent.futures import Future
from pathlib import Path

from tunecast.core.constants import PIPE_CHUNK_SIZE, STDERR_TAIL_LINES
from tunecast.core.error_codes import ProcessError

logger = logging.getLogger(__name__)

_KILL_WAIT_SEC = 5


class ProcessHandle:
    """A running child process plus the helper threads that watch it."""

    def __init__(self, command: str, argv: list[str], proc: subprocess.Popen):
        self.command = command
        self.argv = argv
        self._proc = proc
        self.done: Future = Future()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._closed = False
        self._lock = threading.Lock()
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"{command}-stderr", daemon=True,
        )
        self._waiter_thread = threading.Thread(
            target=self._wait_for_exit, name=f"{command}-wait", daemon=True,
        )

    def _start_watchers(self):
        self._stderr_thread.start()
        self._waiter_thread.start()

    # ── Streams ───────────────────────────────────────────────────────

    @property
    def stdin(self):
        return self._proc.stdin

    @property
    def stdout(self):
        return self._proc.stdout

    @property
    def stderr(self):
        return self._proc.stderr

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.poll()

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    # ── Watchers ──────────────────────────────────────────────────────

    def _drain_stderr(self):
        stream = self._proc.stderr
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b''):
                line = raw.decode('utf-8', errors='replace').rstrip()
                if line:
                    self._stderr_tail.append(line)
                    logger.debug("[%s %d] %s", self.command, self._proc.pid, line)
        except (OSError, ValueError) as e:
            logger.debug("stderr of %s closed: %s", self.command, e)

    def _wait_for_exit(self):
        try:
            code = self._proc.wait()
        except Exception as e:
            self.done.set_exception(e)
            return
        # stderr reaches EOF once the child is gone
        self._stderr_thread.join(timeout=_KILL_WAIT_SEC)
        if code == 0:
            self.done.set_result(code)
        else:
            self.done.set_exception(ProcessError(self.command, code, self.stderr_tail))

    # ── Completion / cleanup ──────────────────────────────────────────

    def wait(self, timeout: float | None = None) -> int:
        """Block until the process exits. Raises ProcessError on non-zero exit."""
        return self.done.result(timeout)

    def close(self):
        """Close pipes, kill the child if still running, reap it. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self._proc.poll() is None:
            logger.debug("Killing %s (pid %d)", self.command, self._proc.pid)
            try:
                self._proc.kill()
            except OSError as e:
                logger.debug("Kill of %s failed: %s", self.command, e)

        for stream in (self._proc.stdin, self._proc.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except (OSError, ValueError) as e:
                logger.debug("Closing pipe of %s: %s", self.command, e)

        try:
            self._proc.wait(timeout=_KILL_WAIT_SEC)
        except subprocess.TimeoutExpired:
            logger.warning("%s (pid %d) did not exit after kill", self.command, self._proc.pid)

        self._waiter_thread.join(timeout=_KILL_WAIT_SEC)
        if self._proc.stderr is not None:
            try:
                self._proc.stderr.close()
            except (OSError, ValueError) as e:
                logger.debug("Closing stderr of %s: %s", self.command, e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def spawn(command: str, args: list, cwd: Path | str | None = None,
          stdin=subprocess.PIPE, stdout=subprocess.PIPE) -> ProcessHandle | None:
    """
    Start `command` with `args` (argument array, never a shell string).
    Returns None if the process cannot be started (missing executable,
    permission denied, bad cwd).
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Process args must be a list/tuple, not a string")

    argv = [command, *(str(a) for a in args)]
    logger.debug("Spawning: %s (cwd=%s)", ' '.join(argv), cwd)
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=stdin,
            stdout=stdout,
            stderr=subprocess.PIPE,
            shell=False,
        )
    except (OSError, ValueError) as e:
        logger.error("Failed to start %s: %s", command, e)
        return None

    handle = ProcessHandle(command, argv, proc)
    handle._start_watchers()
    return handle


def pipe_streams(src, dst, chunk_size: int = PIPE_CHUNK_SIZE,
                 name: str = "pipe") -> threading.Thread:
    """
    Forward bytes from src to dst on a background thread.

    Each chunk is written with a blocking write, so src is not read again
    until dst has accepted the previous chunk. EOF on src closes dst.
    """
    read = getattr(src, 'read1', src.read)

    def _forward():
        total = 0
        try:
            while True:
                chunk = read(chunk_size)
                if not chunk:
                    break
                dst.write(chunk)
                total += len(chunk)
        except BrokenPipeError:
            logger.debug("%s: reader went away after %d bytes", name, total)
        except (OSError, ValueError) as e:
            logger.debug("%s: stream closed after %d bytes: %s", name, total, e)
        finally:
            try:
                dst.close()
            except (OSError, ValueError) as e:
                logger.debug("%s: closing destination: %s", name, e)
        logger.debug("%s: forwarded %d bytes", name, total)

    thread = threading.Thread(target=_forward, name=name, daemon=True)
    thread.start()
    return thread
