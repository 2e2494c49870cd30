# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/


class ProvisioningError(Exception):
    pass


class PreconditionError(ProvisioningError):
    """Nothing on the host has been changed because of this error."""


class PhaseExecutionError(ProvisioningError):
    """The host is left as the last completed step made it."""


class RestartRequired(Exception):
    """The host is being restarted; the run continues in a new process."""

    def __init__(self, restarts: int):
        super().__init__(f"Host restart #{restarts} scheduled")
        self.restarts = restarts
