# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Run actions as the restricted service identity.

The privileged run reaches the restricted identity through sudo.
This gives the identity's permissions, but not its login session:
there is no user D-Bus, so "systemctl --user" and everything built on it
fails. Such failures are recognized by their diagnostics and reported
as deferred, any other failure aborts the run.
"""
import logging
import re
from enum import Enum
from pathlib import PurePosixPath
from subprocess import CompletedProcess
from textwrap import dedent
from typing import Collection
from typing import NamedTuple
from typing import Optional
from typing import Sequence

from provisioning._context import ExecutionContext
from provisioning._errors import PhaseExecutionError
from provisioning._errors import PreconditionError
from provisioning._shell import Shell

_COMMAND_NOT_FOUND = 127
# Elevation inside a delegated action would give back what the boundary takes away.
_elevation_re = re.compile(r'(?:^|[\s;&|(`$])(?:sudo|su|doas|pkexec|runuser|setpriv)(?=\s|$)', re.MULTILINE)
_preamble = (
    'set -euo pipefail\n'
    'export PATH="$HOME/.npm-global/bin:$PATH"\n'
    'cd\n'
    )


class Identity(NamedTuple):
    name: str
    home: PurePosixPath

    @classmethod
    def restricted(cls, name: str) -> 'Identity':
        if name == 'root' or not re.fullmatch(r'[a-z_][a-z0-9_-]{0,31}', name):
            raise PreconditionError(f"Unsuitable name for a restricted identity: {name!r}")
        return cls(name, PurePosixPath('/home', name))


class SessionDependency(NamedTuple):
    """A trailing step needing a real login session of the identity."""

    capability: str
    failure_markers: Collection[bytes]

    def matches(self, stderr: bytes) -> bool:
        stderr = stderr.lower()
        return any(marker.lower() in stderr for marker in self.failure_markers)


class UserAction:

    def __init__(
            self,
            description: str,
            script: str,
            env_names: Sequence[str] = (),
            input: Optional[bytes] = None,  # noqa PyShadowingBuiltins
            session_dependency: Optional[SessionDependency] = None,
            timeout_sec: float = 600,
            ):
        self.description = description
        self.script = dedent(script).strip()
        self.env_names = tuple(env_names)
        self.input = input
        self.session_dependency = session_dependency
        self.timeout_sec = timeout_sec

    def __repr__(self):
        return f'{UserAction.__name__}({self.description!r})'


class SessionLimitedWarning(NamedTuple):
    capability: str
    detail: str


class Status(Enum):
    OK = 'ok'
    FAILED = 'failed'
    DEFERRED_SESSION_LIMITED = 'deferred'


class Outcome(NamedTuple):
    status: Status
    warning: Optional[SessionLimitedWarning] = None
    detail: str = ''

    @classmethod
    def ok(cls):
        return cls(Status.OK)

    @classmethod
    def failed(cls, detail: str):
        return cls(Status.FAILED, detail=detail)

    @classmethod
    def deferred(cls, warning: SessionLimitedWarning):
        return cls(Status.DEFERRED_SESSION_LIMITED, warning=warning, detail=warning.detail)


class PrivilegeBoundary:

    def __init__(self, shell: Shell):
        self._shell = shell

    def run_as(self, identity: Identity, action: UserAction, context: ExecutionContext) -> Outcome:
        outcome = self._classify(action, self._execute(identity, action, context))
        if outcome.status is Status.OK:
            _logger.info("%s: %s: done", identity.name, action.description)
        elif outcome.status is Status.DEFERRED_SESSION_LIMITED:
            _logger.warning(
                "%s: %s: %s deferred, needs a login session: %s",
                identity.name, action.description, outcome.warning.capability, outcome.detail)
        else:
            raise PhaseExecutionError(f"{identity.name}: {action.description}: {outcome.detail}")
        return outcome

    def probe(self, identity: Identity, action: UserAction, context: ExecutionContext) -> CompletedProcess:
        """Run a query; the caller interprets the exit status."""
        return self._execute(identity, action, context)

    def _execute(self, identity: Identity, action: UserAction, context: ExecutionContext) -> CompletedProcess:
        if identity.name == 'root':
            raise PreconditionError(f"{action!r} must not run as root")
        if _elevation_re.search(action.script):
            raise PreconditionError(f"{action!r} attempts privilege elevation as {identity.name}")
        values = context.to_environment()
        unknown = [name for name in action.env_names if name not in values]
        if unknown:
            raise PreconditionError(f"{action!r} requests values not in the context: {unknown}")
        env = {'PATH': '/usr/local/bin:/usr/bin:/bin'}
        env.update({name: values[name] for name in action.env_names})
        args = ['sudo', '-u', identity.name, '-H']
        if action.env_names:
            args.append('--preserve-env=' + ','.join(action.env_names))
        args.extend(['--', 'bash', '-c', _preamble + action.script])
        return self._shell.run(
            args, input=action.input, env=env, timeout_sec=action.timeout_sec, check=False)

    @staticmethod
    def _classify(action: UserAction, result: CompletedProcess) -> Outcome:
        if result.returncode == 0:
            return Outcome.ok()
        stderr = result.stderr or b''
        detail = stderr.decode(errors='backslashreplace').strip()[-2000:]
        dependency = action.session_dependency
        if dependency is not None and dependency.matches(stderr):
            return Outcome.deferred(SessionLimitedWarning(dependency.capability, detail))
        if result.returncode == _COMMAND_NOT_FOUND:
            return Outcome.failed(f"command not found: {detail}")
        return Outcome.failed(f"exit status {result.returncode}: {detail}")


_logger = logging.getLogger(__name__)
