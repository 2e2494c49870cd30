# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import fnmatch
import logging
import socket
from configparser import ConfigParser
from pathlib import Path
from typing import Mapping
from typing import NamedTuple
from typing import Sequence
from typing import Tuple


def read_config(*paths: Path, host: str = '') -> Mapping[str, str]:
    """Merge the shipped defaults.ini with local overrides.

    The first file is the shipped one: its keys are the only ones known.
    Later files, normally /etc/openclaw-provisioning.ini, may be absent.
    A section applies if its name, as a host mask, matches this host:
    "[defaults]" applies everywhere, "[gw-eu-*]" to some gateways.
    A suffix like "[gw-eu-*;v2]" ranks the section: v2 beats v1 beats
    no suffix, whichever file it comes from. Among equal ranks,
    /etc wins over the shipped file, and a later section over an earlier one.
    Unknown keys are dropped with a warning: a typo must not pass for an override.
    """
    host = host or socket.gethostname()
    [shipped, *local] = paths
    applicable = [*_applicable_sections(shipped, 0, host)]
    known = {key for section in applicable for key, _value in section.items}
    for file_index, path in enumerate(local, 1):
        for section in _applicable_sections(path, file_index, host):
            unknown = {key for key, _value in section.items} - known
            if unknown:
                _logger.warning("Config %s: [%s]: ignore unknown %s", path, section.name, ', '.join(sorted(unknown)))
            items = [(key, value) for key, value in section.items if key in known]
            applicable.append(section._replace(items=items))
    config = {}
    for section in sorted(applicable, key=lambda s: (s.version, s.file_index, s.position)):
        config.update(section.items)
    return config


class _Section(NamedTuple):
    name: str
    version: int
    file_index: int
    position: int
    items: Sequence[Tuple[str, str]]


def _applicable_sections(path: Path, file_index: int, host: str):
    parser = ConfigParser(interpolation=None)
    if not parser.read(path):
        _logger.debug("Config %s: absent", path)
        return
    for position, name in enumerate(parser.sections()):
        mask, version = _parse_section_header(name)
        if fnmatch.fnmatch(host, mask):
            _logger.debug("Config %s: [%s]: applies to %s", path, name, host)
            yield _Section(name, version, file_index, position, parser.items(name))


def _parse_section_header(section):
    """Split section name into a host mask and a rank.

    >>> _parse_section_header('defaults')
    ('*', 0)
    >>> _parse_section_header('gw-eu-*;v3')
    ('gw-eu-*', 3)
    >>> _parse_section_header('gw-eu-*')
    ('gw-eu-*', 0)
    >>> _parse_section_header('gw-eu-*;3')
    Traceback (most recent call last):
    ...
    ValueError: Section [gw-eu-*;3]: expected ";v<number>", got ";3"
    """
    if section == 'defaults':
        return '*', 0
    mask, _semicolon, rank = section.partition(';')
    if not rank:
        return mask, 0
    if rank.startswith('v') and rank[1:].isdigit():
        return mask, int(rank[1:])
    raise ValueError(f'Section [{section}]: expected ";v<number>", got ";{rank}"')


_logger = logging.getLogger(__name__)

global_config = read_config(
    Path(__file__).with_name('defaults.ini'),
    Path('/etc/openclaw-provisioning.ini'),
    )
