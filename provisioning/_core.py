# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from abc import ABCMeta
from abc import abstractmethod
from enum import Enum
from subprocess import CalledProcessError
from subprocess import TimeoutExpired
from typing import Iterable
from typing import List
from typing import Optional
from typing import Sequence

from provisioning._boundary import Identity
from provisioning._boundary import Outcome
from provisioning._boundary import PrivilegeBoundary
from provisioning._boundary import SessionLimitedWarning
from provisioning._boundary import Status
from provisioning._boundary import UserAction
from provisioning._context import ExecutionContext
from provisioning._errors import PhaseExecutionError
from provisioning._errors import RestartRequired
from provisioning._reboot import RebootBoundary
from provisioning._reboot import RunState

# External tools failing, or printing what their parsers cannot read.
_tool_errors = (CalledProcessError, TimeoutExpired, OSError, ValueError, LookupError, RuntimeError)


class Privilege(Enum):
    PRIVILEGED = 'privileged'
    RESTRICTED = 'restricted'


class Phase(metaclass=ABCMeta):
    """Idempotent step: a goal state, a check for it and a way to reach it."""

    privilege: Privilege
    touches_kernel = False

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.name!r}>'

    @abstractmethod
    def is_satisfied(self, context: ExecutionContext) -> bool:
        pass


class HostPhase(Phase, metaclass=ABCMeta):
    privilege = Privilege.PRIVILEGED

    @abstractmethod
    def apply(self, context: ExecutionContext) -> Outcome:
        pass


class UserPhase(Phase, metaclass=ABCMeta):
    """Runs as the restricted identity; actions go through the boundary."""

    privilege = Privilege.RESTRICTED

    def __init__(self, name: str, boundary: PrivilegeBoundary, identity: Identity):
        super().__init__(name)
        self._boundary = boundary
        self.identity = identity

    @abstractmethod
    def actions(self, context: ExecutionContext) -> Iterable[UserAction]:
        """Yield actions one by one; the next is taken after the previous is run."""
        pass

    def _succeeds(self, action: UserAction, context: ExecutionContext) -> bool:
        return self._boundary.probe(self.identity, action, context).returncode == 0


class RunReport:

    def __init__(self):
        self.state: Optional[RunState] = None
        self.applied: List[str] = []
        self.skipped: List[str] = []
        self.warnings: List[SessionLimitedWarning] = []
        self.restart_scheduled = False

    def __repr__(self):
        return (
            f'<{RunReport.__name__} {self.state}: '
            f'applied {len(self.applied)}, skipped {len(self.skipped)}, '
            f'warnings {len(self.warnings)}, restart {self.restart_scheduled}>')


class PhaseExecutor:

    def __init__(self, reboot: RebootBoundary, boundary: PrivilegeBoundary):
        self._reboot = reboot
        self._boundary = boundary

    def run(self, phases: Sequence[Phase], context: ExecutionContext) -> RunReport:
        report = RunReport()
        try:
            report.state = self._enter(context)
            for phase in phases:
                self._run_phase(phase, context, report)
        except RestartRequired as e:
            _logger.warning("%s: this run stops here", e)
            report.restart_scheduled = True
        return report

    def _enter(self, context: ExecutionContext) -> RunState:
        try:
            return self._reboot.enter(context)
        except _tool_errors as e:
            raise PhaseExecutionError(f"Resumption: {e}") from e

    def _run_phase(self, phase: Phase, context: ExecutionContext, report: RunReport):
        if phase.touches_kernel and report.state is RunState.RESUMED:
            _logger.info("Phase %s: done before restart, not repeated", phase.name)
            report.skipped.append(phase.name)
            return
        try:
            if phase.is_satisfied(context):
                _logger.info("Phase %s: already satisfied, skip", phase.name)
                report.skipped.append(phase.name)
            else:
                _logger.info("Phase %s: apply as %s", phase.name, phase.privilege.value)
                for outcome in self._apply(phase, context):
                    if outcome.status is Status.DEFERRED_SESSION_LIMITED:
                        report.warnings.append(outcome.warning)
                report.applied.append(phase.name)
            if phase.touches_kernel:
                self._reboot.restart_if_required(context)
        except _tool_errors as e:
            raise PhaseExecutionError(f"Phase {phase.name}: {e}") from e

    def _apply(self, phase: Phase, context: ExecutionContext) -> Iterable[Outcome]:
        if isinstance(phase, HostPhase):
            yield phase.apply(context)
        elif isinstance(phase, UserPhase):
            for action in phase.actions(context):
                yield self._boundary.run_as(phase.identity, action, context)
        else:
            raise TypeError(f"Unknown kind of phase: {phase!r}")


_logger = logging.getLogger(__name__)
