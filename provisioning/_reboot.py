# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Continue provisioning across a restart of the host.

After a kernel upgrade, apt may hang until the host is restarted.
The run cannot survive the restart, so the continuation is kept on disk:
a marker file says "this is a resumed run", and an @reboot crontab entry
starts the run again with the same values in its environment.
Both are removed by the resumed run as soon as it starts.
Only one resume point exists: right after the system update.
"""
import json
import logging
import shlex
from abc import ABCMeta
from abc import abstractmethod
from datetime import datetime
from datetime import timezone
from enum import Enum
from pathlib import Path
from typing import Mapping
from typing import NamedTuple
from typing import Sequence

from provisioning._apt import PackageManager
from provisioning._context import ExecutionContext
from provisioning._errors import PhaseExecutionError
from provisioning._errors import RestartRequired
from provisioning._shell import Shell
from provisioning._shell import command_to_script

RESUME_POINT = 'after-system-update'
# Cron starts @reboot jobs with PATH=/usr/bin:/bin; useradd, ufw and visudo are in sbin.
CRON_PATH = '/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin'


class RunState(Enum):
    FRESH = 'fresh'
    RESUMED = 'resumed'


class ResumptionMarker:

    def __init__(self, path: Path):
        self._path = path

    def __repr__(self):
        return f'{ResumptionMarker.__name__}({str(self._path)!r})'

    def exists(self) -> bool:
        return self._path.exists()

    def create(self, restarts: int):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({
            'resume_point': RESUME_POINT,
            'restarts': restarts,
            'created_at': datetime.now(timezone.utc).isoformat(timespec='seconds'),
            }))
        _logger.info("%r: created, restarts: %d", self, restarts)

    def consume(self) -> int:
        """Delete and return the number of restarts so far."""
        try:
            record = json.loads(self._path.read_text())
        except ValueError:
            _logger.warning("%r: unreadable, assume one restart", self)
            record = {'resume_point': RESUME_POINT, 'restarts': 1}
        self.remove()
        if record.get('resume_point') != RESUME_POINT:
            raise PhaseExecutionError(f"{self!r}: unknown resume point {record.get('resume_point')!r}")
        return int(record.get('restarts', 1))

    def remove(self):
        self._path.unlink(missing_ok=True)
        _logger.info("%r: removed", self)


class ScheduledResumption(NamedTuple):
    tag: str
    command: Sequence[str]
    cwd: Path
    env: Mapping[str, str]
    log_file: Path

    def crontab_line(self) -> str:
        variables = {'PATH': CRON_PATH, **self.env}
        env = ' '.join(f'{name}={shlex.quote(value)}' for name, value in variables.items())
        line = (
            f'@reboot cd {shlex.quote(str(self.cwd))} && '
            f'{env} {command_to_script(self.command)} '
            f'>>{shlex.quote(str(self.log_file))} 2>&1 # {self.tag}')
        return _escape_percent(line)


class Scheduler(metaclass=ABCMeta):

    @abstractmethod
    def entries(self, tag: str) -> Sequence[str]:
        pass

    @abstractmethod
    def install(self, resumption: ScheduledResumption):
        """Replace entries with the same tag; there is never more than one."""
        pass

    @abstractmethod
    def remove(self, tag: str) -> int:
        pass


class Crontab(Scheduler):

    def __init__(self, shell: Shell):
        self._shell = shell

    def __repr__(self):
        return f'<{Crontab.__name__} via {self._shell!r}>'

    def entries(self, tag):
        return [line for line in self._read() if _is_tagged(line, tag)]

    def install(self, resumption):
        lines = [line for line in self._read() if not _is_tagged(line, resumption.tag)]
        lines.append(resumption.crontab_line())
        self._write(lines)
        _logger.info("Crontab: resumption scheduled: %s", resumption.tag)

    def remove(self, tag):
        lines = self._read()
        kept = [line for line in lines if not _is_tagged(line, tag)]
        if len(kept) != len(lines):
            self._write(kept)
        _logger.info("Crontab: %d entries removed: %s", len(lines) - len(kept), tag)
        return len(lines) - len(kept)

    def _read(self):
        r = self._shell.run(['crontab', '-l'], check=False)
        if r.returncode != 0:
            if b'no crontab' in r.stderr.lower():
                return []
            r.check_returncode()
        return r.stdout.decode().splitlines()

    def _write(self, lines):
        self._shell.run(['crontab', '-'], input=''.join(line + '\n' for line in lines).encode())


def _is_tagged(line: str, tag: str) -> bool:
    return line.endswith(f'# {_escape_percent(tag)}')


def _escape_percent(text: str) -> str:
    """Unescaped "%" in a crontab command is a newline.

    >>> _escape_percent('date +%F # /opt/100%')
    'date +\\\\%F # /opt/100\\\\%'
    """
    return text.replace('%', '\\%')


class Machine(metaclass=ABCMeta):

    @abstractmethod
    def restart(self):
        pass


class LocalMachine(Machine):

    def __init__(self, shell: Shell):
        self._shell = shell

    def restart(self):
        _logger.warning("Restarting the host; provisioning will resume automatically")
        self._shell.run(['systemctl', 'reboot'])


class RebootBoundary:

    def __init__(
            self,
            marker: ResumptionMarker,
            scheduler: Scheduler,
            machine: Machine,
            packages: PackageManager,
            resumption_template: ScheduledResumption,
            max_restarts: int,
            ):
        self._marker = marker
        self._scheduler = scheduler
        self._machine = machine
        self._packages = packages
        self._template = resumption_template
        self._max_restarts = max_restarts
        self._restarts = 0

    def enter(self, context: ExecutionContext) -> RunState:
        if not self._marker.exists():
            _logger.info("No resumption marker: fresh run")
            return RunState.FRESH
        try:
            self._restarts = self._marker.consume()
        finally:
            self._scheduler.remove(self._template.tag)
        _logger.info("Resumed after restart #%d", self._restarts)
        if self._packages.restart_required():
            _logger.warning("Restart is still required after restart #%d", self._restarts)
            self._restart(context)
        return RunState.RESUMED

    def restart_if_required(self, context: ExecutionContext):
        if self._packages.restart_required():
            _logger.warning("Kernel or core libraries updated: restart before going on")
            self._restart(context)

    def _restart(self, context: ExecutionContext):
        if self._restarts >= self._max_restarts:
            raise PhaseExecutionError(
                f"Restart is still required after {self._restarts} restarts; "
                f"investigate the host, then run again")
        restarts = self._restarts + 1
        self._marker.create(restarts)
        try:
            self._scheduler.install(self._template._replace(env=context.to_environment()))
        except BaseException:
            self._marker.remove()
            raise
        self._machine.restart()
        raise RestartRequired(restarts)


_logger = logging.getLogger(__name__)
