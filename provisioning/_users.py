# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import subprocess
from abc import ABCMeta
from abc import abstractmethod
from pathlib import Path
from typing import Collection

from provisioning._errors import PhaseExecutionError
from provisioning._shell import Shell


class Accounts(metaclass=ABCMeta):

    @abstractmethod
    def exists(self, username: str) -> bool:
        pass

    @abstractmethod
    def create(self, username: str, shell: str):
        """Create with home dir; an existing user is reused."""
        pass

    @abstractmethod
    def groups(self, username: str) -> Collection[str]:
        pass

    @abstractmethod
    def add_to_group(self, username: str, group: str):
        pass

    @abstractmethod
    def has_passwordless_sudo(self, username: str) -> bool:
        pass

    @abstractmethod
    def grant_passwordless_sudo(self, username: str):
        pass

    @abstractmethod
    def linger_enabled(self, username: str) -> bool:
        pass

    @abstractmethod
    def enable_linger(self, username: str):
        pass

    @abstractmethod
    def password_is_set(self, username: str) -> bool:
        pass

    @abstractmethod
    def set_password(self, username: str):
        """Prompt on the terminal."""
        pass

    @abstractmethod
    def authorized_keys_synced(self, username: str) -> bool:
        pass

    @abstractmethod
    def copy_authorized_keys(self, username: str):
        pass


class LinuxAccounts(Accounts):

    def __init__(
            self,
            shell: Shell,
            sudoers_dir=Path('/etc/sudoers.d'),
            linger_dir=Path('/var/lib/systemd/linger'),
            source_authorized_keys=Path('/root/.ssh/authorized_keys'),
            ):
        self._shell = shell
        self._sudoers_dir = sudoers_dir
        self._linger_dir = linger_dir
        self._source_authorized_keys = source_authorized_keys

    def __repr__(self):
        return f'<{LinuxAccounts.__name__} via {self._shell!r}>'

    def exists(self, username):
        return self._shell.run(['id', '-u', username], check=False).returncode == 0

    def create(self, username, shell):
        r = self._shell.run(['useradd', '-m', '-s', shell, username], check=False)
        if r.returncode == 0:
            _logger.info("%s: user added", username)
        elif b'exist' in r.stderr.lower():
            _logger.info("%s: user already exists", username)
        else:
            _logger.error("%s: failure: %s", username, r.stderr)
            raise subprocess.CalledProcessError(r.returncode, r.args, r.stdout, r.stderr)

    def groups(self, username):
        r = self._shell.run(['id', '-nG', username])
        return r.stdout.decode().split()

    def add_to_group(self, username, group):
        self._shell.run(['usermod', '-aG', group, username])

    def has_passwordless_sudo(self, username):
        try:
            return self._sudoers_file(username).read_text() == self._sudoers_line(username)
        except FileNotFoundError:
            return False

    def grant_passwordless_sudo(self, username):
        path = self._sudoers_file(username)
        self._shell.run(
            ['install', '-m', '440', '/dev/stdin', path],
            input=self._sudoers_line(username).encode())
        # A broken file in sudoers.d disables sudo for everyone.
        r = self._shell.run(['visudo', '-cf', path], check=False)
        if r.returncode != 0:
            self._shell.run(['rm', '-f', path])
            raise PhaseExecutionError(f"Rejected by visudo: {path}: {r.stderr.decode().strip()}")

    def linger_enabled(self, username):
        return self._linger_dir.joinpath(username).exists()

    def enable_linger(self, username):
        self._shell.run(['loginctl', 'enable-linger', username])
        _logger.info("%s: linger enabled", username)

    def password_is_set(self, username):
        r = self._shell.run(['passwd', '-S', username])
        return _password_status_usable(r.stdout)

    def set_password(self, username):
        if self._shell.run_attached(['passwd', username]) != 0:
            raise PhaseExecutionError(f"Password for {username} was not set")

    def authorized_keys_synced(self, username):
        if not self._source_authorized_keys.exists():
            return True
        target = self._home(username) / '.ssh' / 'authorized_keys'
        try:
            return target.read_bytes() == self._source_authorized_keys.read_bytes()
        except FileNotFoundError:
            return False

    def copy_authorized_keys(self, username):
        if not self._source_authorized_keys.exists():
            _logger.info("No %s to copy", self._source_authorized_keys)
            return
        ssh_dir = self._home(username) / '.ssh'
        ownership = ['-o', username, '-g', username]
        self._shell.run(['install', '-d', '-m', '700', *ownership, ssh_dir])
        self._shell.run([
            'install', '-m', '600', *ownership,
            self._source_authorized_keys, ssh_dir / 'authorized_keys',
            ])
        _logger.info("%s: key-based SSH login enabled", username)

    def _sudoers_file(self, username):
        return self._sudoers_dir / username

    @staticmethod
    def _sudoers_line(username):
        return f'{username} ALL=(ALL) NOPASSWD:ALL\n'

    def _home(self, username):
        r = self._shell.run(['getent', 'passwd', username])
        return Path(r.stdout.decode().strip().split(':')[5])


def _password_status_usable(passwd_status_output: bytes) -> bool:
    """Tell if a password can be used for login.

    >>> _password_status_usable(b'openclaw P 2026-01-01 0 99999 7 -1\\n')
    True
    >>> _password_status_usable(b'openclaw L 2026-01-01 0 99999 7 -1\\n')
    False
    >>> _password_status_usable(b'openclaw NP 2026-01-01 0 99999 7 -1\\n')
    False
    """
    [_user, status, *_] = passwd_status_output.decode().split()
    return status == 'P'


_logger = logging.getLogger(__name__)
