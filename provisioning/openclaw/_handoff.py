# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Script to be run by a human from a real login session of the service user.

User systemd needs the user's D-Bus session, which "sudo -u" and "su -"
don't provide. What can only be done from such a session is left in a
script in the user's home; it checks the session, finishes the deferred
steps and deletes itself.
"""
import shlex
from pathlib import Path
from pathlib import PurePosixPath
from typing import Collection
from typing import NamedTuple

from jinja2 import Environment
from jinja2 import FileSystemLoader
from jinja2 import StrictUndefined

from provisioning._boundary import Identity
from provisioning._context import ExecutionContext

ARTIFACT_NAME = 'finish-setup.sh'


class HandoffArtifact(NamedTuple):
    path: PurePosixPath
    content: str
    mode: str = '700'


class HandoffFinalizer:
    """Pure generation: the same input always gives the same script."""

    def __init__(self, gateway_unit: str):
        self._gateway_unit = gateway_unit
        self._env = Environment(
            loader=FileSystemLoader(Path(__file__).with_name('templates')),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
            )
        self._env.filters['quote'] = lambda value: shlex.quote(str(value))

    def artifact_path(self, identity: Identity) -> PurePosixPath:
        return identity.home / ARTIFACT_NAME

    def emit(
            self,
            identity: Identity,
            deferred_capabilities: Collection[str],
            context: ExecutionContext,
            ) -> HandoffArtifact:
        path = self.artifact_path(identity)
        template = self._env.get_template(ARTIFACT_NAME + '.j2')
        content = template.render(
            user=identity.name,
            artifact_name=ARTIFACT_NAME,
            artifact_path=str(path),
            deferred=sorted(deferred_capabilities),
            unit=self._gateway_unit,
            gateway_port=context.gateway_port,
            )
        return HandoffArtifact(path, content)
