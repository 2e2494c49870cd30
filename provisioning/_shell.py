# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import shlex
import subprocess
from abc import ABCMeta
from abc import abstractmethod
from subprocess import CalledProcessError
from subprocess import CompletedProcess
from typing import Mapping
from typing import Optional
from typing import Sequence

_DEFAULT_RUN_TIMEOUT_SEC = 600


class _CalledProcessError(CalledProcessError):

    def __str__(self):
        stderr = (self.stderr or b'').decode(errors='backslashreplace')[-5000:]
        if self.returncode is None:
            result = "no exit status"
        else:
            result = f"exit status {self.returncode}"
        return f"Command {command_to_script(self.cmd)} died with {result}: {stderr.strip()}"


def command_to_script(command):
    if isinstance(command, str):
        return command
    return shlex.join([os.fspath(arg) if isinstance(arg, os.PathLike) else str(arg) for arg in command])


class Shell(metaclass=ABCMeta):

    @abstractmethod
    def run(
            self,
            args: Sequence[str],
            input: Optional[bytes] = None,  # noqa PyShadowingBuiltins
            env: Optional[Mapping[str, str]] = None,
            timeout_sec: float = _DEFAULT_RUN_TIMEOUT_SEC,
            check=True,
            ) -> CompletedProcess:
        pass

    @abstractmethod
    def run_attached(self, args: Sequence[str]) -> int:
        """Run with the terminal of the current process; for prompts."""
        pass


class _LocalShell(Shell):

    def __repr__(self):
        return '<LocalShell>'

    def run(self, args, input=None, env=None, timeout_sec=_DEFAULT_RUN_TIMEOUT_SEC, check=True):
        args = [str(arg) for arg in args]
        _logger.info("Run: %s", command_to_script(args))
        r = subprocess.run(
            args,
            input=input,
            # The command may hang waiting for input when no input is actually needed.
            stdin=subprocess.DEVNULL if input is None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
            timeout=timeout_sec,
            close_fds=True,
            )
        _logger.debug("Exit status %d; stdout: %s", r.returncode, r.stdout.decode(errors='backslashreplace'))
        if r.stderr:
            _logger.debug("Stderr: %s", r.stderr.decode(errors='backslashreplace'))
        if check and r.returncode != 0:
            raise _CalledProcessError(r.returncode, args, r.stdout, r.stderr)
        return r

    def run_attached(self, args):
        args = [str(arg) for arg in args]
        _logger.info("Run attached: %s", command_to_script(args))
        return subprocess.run(args).returncode


local_shell = _LocalShell()
_logger = logging.getLogger(__name__)
