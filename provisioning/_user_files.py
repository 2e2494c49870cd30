# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import shlex
from pathlib import PurePosixPath
from typing import Mapping
from typing import Sequence

from provisioning._boundary import UserAction


def install_file(path: PurePosixPath, data: bytes, mode: str) -> UserAction:
    """Write atomically, create parent dirs, leave no stale content behind."""
    return UserAction(
        f"Install {path}",
        f'install -D -m {mode} /dev/stdin {_q(path)}',
        input=data,
        )


def make_dirs(paths: Sequence[PurePosixPath], mode: str) -> UserAction:
    return UserAction(
        f"Make dirs {', '.join(str(p) for p in paths)}",
        f'install -d -m {mode} ' + ' '.join(_q(p) for p in paths),
        )


def read_file(path: PurePosixPath) -> UserAction:
    return UserAction(f"Read {path}", f'cat -- {_q(path)}')


def file_exists(path: PurePosixPath) -> UserAction:
    return UserAction(f"Check {path}", f'test -f {_q(path)}')


def file_modes(paths: Sequence[PurePosixPath]) -> UserAction:
    return UserAction(
        "Query permissions",
        "stat -c '%a %n' -- " + ' '.join(_q(p) for p in paths),
        )


def change_modes(modes: Mapping[PurePosixPath, str]) -> UserAction:
    return UserAction(
        "Harden permissions",
        '\n'.join(f'chmod {mode} {_q(path)}' for path, mode in modes.items()),
        )


def parse_modes(stat_output: bytes) -> Mapping[PurePosixPath, str]:
    """Parse output of file_modes().

    >>> parse_modes(b'700 /home/u/.openclaw\\n600 /home/u/.openclaw/openclaw.json\\n')
    {PurePosixPath('/home/u/.openclaw'): '700', PurePosixPath('/home/u/.openclaw/openclaw.json'): '600'}
    """
    result = {}
    for line in stat_output.decode().splitlines():
        if not line.strip():
            continue
        [mode, _, path] = line.partition(' ')
        result[PurePosixPath(path)] = mode
    return result


def _q(path: PurePosixPath) -> str:
    return shlex.quote(str(path))
