"""Run commands with decrypted content in their environment or in a temporary file."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from typing import IO, List, Union

try:
    import pwd
except ImportError:  # not available on Windows
    pwd = None  # type: ignore[assignment]

log = logging.getLogger(__name__)

RunResult = Union["subprocess.Popen[bytes]", "subprocess.CompletedProcess[bytes]"]


@dataclass
class ExecOpts:
    """Options for running a command with decrypted content."""

    command: str
    plaintext: bytes = b""
    background: bool = False
    fifo: bool = False
    user: str = ""
    filename: str = ""


def _is_windows() -> bool:
    return os.name == "nt"


def build_command(command: str) -> List[str]:
    """Return the argument vector that runs a command line through the system shell."""
    if _is_windows():
        return ["cmd.exe", "/C", command]
    return ["/bin/sh", "-c", command]


def get_file(directory: str, filename: str) -> IO[bytes]:
    """Create a new temporary file in a directory, its name starting with filename."""
    return tempfile.NamedTemporaryFile(mode="wb", dir=directory, prefix=filename, delete=False)


def get_pipe(directory: str, filename: str) -> str:
    """Create a named pipe in a directory and return its path."""
    if _is_windows():
        raise OSError("fifos are not available on windows")
    path = os.path.join(directory, filename)
    os.mkfifo(path, 0o600)
    return path


def write_pipe(pipe: str, contents: bytes) -> None:
    """Write contents into an existing named pipe, blocking until a reader opens it."""
    if _is_windows():
        raise OSError("fifos are not available on windows")
    try:
        fd = os.open(pipe, os.O_WRONLY)
    except OSError:
        try:
            os.remove(pipe)
        except OSError:
            pass
        raise
    with os.fdopen(fd, "wb") as handle:
        handle.write(contents)


def switch_user(username: str) -> None:
    """Switch the running process to another user; raises KeyError if unknown."""
    if _is_windows() or pwd is None:
        raise OSError("user switching not available on windows")
    uid = pwd.getpwnam(username).pw_uid
    os.setgid(uid)
    os.setuid(uid)
    os.setreuid(uid, uid)
    os.setregid(uid, uid)


def _write_pipe_in_background(pipe: str, contents: bytes) -> None:
    try:
        write_pipe(pipe, contents)
    except OSError as exc:
        log.error("Could not write to pipe %s: %s", pipe, exc)


def _run(args: List[str], env: dict, background: bool) -> RunResult:
    if background:
        return subprocess.Popen(args, env=env)
    return subprocess.run(args, env=env, check=True)


def exec_with_file(opts: ExecOpts) -> RunResult:
    """Run a command with the plaintext in a temporary file or pipe.

    Every ``{}`` in the command is replaced with the file's path. Raises
    CalledProcessError if a foreground command exits with a non-zero status.
    """
    if opts.user:
        switch_user(opts.user)

    fifo = opts.fifo
    if _is_windows() and fifo:
        log.warning("no fifos on windows, use --no-fifo next time")
        fifo = False

    with tempfile.TemporaryDirectory(prefix=".sops") as directory:
        if fifo:
            # Opening a pipe for writing blocks until there is a reader.
            filename = get_pipe(directory, opts.filename)
            threading.Thread(
                target=_write_pipe_in_background,
                args=(filename, opts.plaintext),
                daemon=True,
            ).start()
        else:
            with get_file(directory, opts.filename) as handle:
                handle.write(opts.plaintext)
                filename = handle.name

        args = build_command(opts.command.replace("{}", filename))
        return _run(args, dict(os.environ), opts.background)


def exec_with_env(opts: ExecOpts) -> RunResult:
    """Run a command with NAME=value lines of the plaintext added to its environment.

    Empty lines and lines starting with '#' are ignored. Raises
    CalledProcessError if a foreground command exits with a non-zero status.
    """
    if opts.user:
        switch_user(opts.user)

    env = dict(os.environ)
    for line in opts.plaintext.split(b"\n"):
        if not line or line.startswith(b"#"):
            continue
        name, sep, value = line.decode("utf-8", "surrogateescape").partition("=")
        if not sep:
            log.debug("Skipping environment line without '='")
            continue
        env[name] = value

    return _run(build_command(opts.command), env, opts.background)