# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import re
from abc import ABCMeta
from abc import abstractmethod
from pathlib import Path
from typing import Collection
from typing import Sequence

from provisioning._shell import Shell


class PackageManager(metaclass=ABCMeta):

    @abstractmethod
    def update_index(self):
        pass

    @abstractmethod
    def upgrade(self):
        pass

    @abstractmethod
    def pending_upgrades(self) -> int:
        pass

    @abstractmethod
    def restart_required(self) -> bool:
        pass

    @abstractmethod
    def missing(self, packages: Collection[str]) -> Sequence[str]:
        pass

    @abstractmethod
    def install(self, packages: Collection[str]):
        """Install; already installed packages are not an error."""
        pass


class Apt(PackageManager):

    def __init__(self, shell: Shell, restart_required_flag: Path):
        self._shell = shell
        self._restart_required_flag = restart_required_flag

    def __repr__(self):
        return f'<{Apt.__name__} via {self._shell!r}>'

    def update_index(self):
        self._shell.run(['apt-get', 'update', '-qq'], env=self._env())

    def upgrade(self):
        self._shell.run(['apt-get', 'upgrade', '-y', '-qq'], env=self._env(), timeout_sec=3600)

    def pending_upgrades(self) -> int:
        r = self._shell.run(['apt-get', '--simulate', 'upgrade'], env=self._env())
        return _count_upgraded(r.stdout)

    def restart_required(self) -> bool:
        # Created by update-notifier-common hooks; lives on tmpfs, so a restart clears it.
        return self._restart_required_flag.exists()

    def missing(self, packages):
        r = self._shell.run(
            ['dpkg-query', '-W', '-f=${Package} ${Status}\\n', *packages],
            env=self._env(),
            check=False,
            )
        installed = _installed_packages(r.stdout)
        return [p for p in packages if p not in installed]

    def install(self, packages):
        self._shell.run(['apt-get', 'install', '-y', '-qq', *packages], env=self._env(), timeout_sec=3600)
        _logger.info("Installed or already present: %s", ' '.join(packages))

    @staticmethod
    def _env():
        return {**os.environ, 'DEBIAN_FRONTEND': 'noninteractive'}


def _count_upgraded(simulate_output: bytes) -> int:
    """Parse the summary of "apt-get --simulate upgrade".

    >>> _count_upgraded(b'Calculating upgrade...\\n3 upgraded, 0 newly installed, 0 to remove and 1 not upgraded.\\n')
    3
    >>> _count_upgraded(b'0 upgraded, 0 newly installed, 0 to remove and 0 not upgraded.\\n')
    0
    """
    match = re.search(rb'^(\d+) upgraded, (\d+) newly installed', simulate_output, re.MULTILINE)
    if match is None:
        raise RuntimeError(f"Cannot find summary in apt-get output: {simulate_output[-500:]!r}")
    return int(match[1]) + int(match[2])


def _installed_packages(dpkg_query_output: bytes) -> Collection[str]:
    r"""Parse "dpkg-query -W" output; packages never seen are not listed at all.

    >>> sorted(_installed_packages(b'curl install ok installed\njq deinstall ok config-files\n'))
    ['curl']
    >>> sorted(_installed_packages(b'git:amd64 install ok installed\n'))
    ['git']
    """
    result = set()
    for line in dpkg_query_output.decode().splitlines():
        [package, _, status] = line.partition(' ')
        if status == 'install ok installed':
            [name, _, _arch] = package.partition(':')
            result.add(name)
    return result


_logger = logging.getLogger(__name__)
