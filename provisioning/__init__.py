# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Turn a fresh minimal host into a running deployment in one pass.

Provisioning is the process of creating and setting up IT infrastructure.
See: https://www.redhat.com/en/topics/automation/what-is-provisioning

A deployment is an ordered list of phases.
Every phase knows its goal state, checks it and is skipped if it is
already reached. The second run must not "accumulate" changes.
Running it multiple times must be safe. If a run fails, fix the cause
and run it again from the start: there is no rollback.

Phases run either as root or as the restricted service identity.
The latter go through the privilege boundary, which passes only
the values an action asks for and never the environment of root.

The run survives one kind of interruption by itself: a restart of the
host after a kernel upgrade. See provisioning._reboot.

It is desirable that external commands be run in the most raw form,
so that it is clear what is being run and it is easy to copy from the log.

Configuration must be as non-invasive as possible.
Alter the defaults as little as possible.
The default configuration is usually the most tested and secure.
"""
from provisioning._boundary import Identity
from provisioning._boundary import Outcome
from provisioning._boundary import PrivilegeBoundary
from provisioning._boundary import SessionLimitedWarning
from provisioning._boundary import UserAction
from provisioning._context import ExecutionContext
from provisioning._core import HostPhase
from provisioning._core import Phase
from provisioning._core import PhaseExecutor
from provisioning._core import RunReport
from provisioning._core import UserPhase
from provisioning._errors import PhaseExecutionError
from provisioning._errors import PreconditionError
from provisioning._errors import ProvisioningError
from provisioning._errors import RestartRequired
from provisioning._reboot import RebootBoundary

__all__ = [
    'ExecutionContext',
    'HostPhase',
    'Identity',
    'Outcome',
    'Phase',
    'PhaseExecutionError',
    'PhaseExecutor',
    'PreconditionError',
    'PrivilegeBoundary',
    'ProvisioningError',
    'RebootBoundary',
    'RestartRequired',
    'RunReport',
    'SessionLimitedWarning',
    'UserAction',
    'UserPhase',
    ]
