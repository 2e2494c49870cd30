# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from pathlib import Path
from typing import Mapping
from typing import NamedTuple

from provisioning._apt import Apt
from provisioning._apt import PackageManager
from provisioning._firewall import Firewall
from provisioning._firewall import Ufw
from provisioning._reboot import Crontab
from provisioning._reboot import LocalMachine
from provisioning._reboot import Machine
from provisioning._reboot import Scheduler
from provisioning._shell import Shell
from provisioning._users import Accounts
from provisioning._users import LinuxAccounts


class Host(NamedTuple):
    """Privileged collaborators; substituted by fakes in tests."""

    packages: PackageManager
    accounts: Accounts
    firewall: Firewall
    scheduler: Scheduler
    machine: Machine


def local_host(shell: Shell, config: Mapping[str, str]) -> Host:
    return Host(
        packages=Apt(shell, Path(config['restart_required_flag'])),
        accounts=LinuxAccounts(shell),
        firewall=Ufw(shell),
        scheduler=Crontab(shell),
        machine=LocalMachine(shell),
        )
