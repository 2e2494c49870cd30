# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from abc import ABCMeta
from abc import abstractmethod
from typing import Collection
from typing import NamedTuple
from typing import Optional

from provisioning._shell import Shell


class FirewallRule(NamedTuple):
    action: str  # allow or deny
    port: int
    protocol: str
    comment: str = ''

    def key(self):
        """Comments are documentation, not a part of the rule."""
        return self.action, self.port, self.protocol


class FirewallStatus(NamedTuple):
    active: bool
    default_incoming: Optional[str]
    default_outgoing: Optional[str]
    rules: Collection[FirewallRule]


class FirewallPolicy(NamedTuple):
    default_incoming: str
    default_outgoing: str
    rules: Collection[FirewallRule]

    def is_enforced(self, status: FirewallStatus) -> bool:
        if not status.active:
            return False
        if status.default_incoming != self.default_incoming:
            return False
        if status.default_outgoing != self.default_outgoing:
            return False
        present = {rule.key() for rule in status.rules}
        return all(rule.key() in present for rule in self.rules)


class Firewall(metaclass=ABCMeta):

    @abstractmethod
    def status(self) -> FirewallStatus:
        pass

    @abstractmethod
    def set_defaults(self, incoming: str, outgoing: str):
        pass

    @abstractmethod
    def add_rule(self, rule: FirewallRule):
        """Adding an existing rule is not an error."""
        pass

    @abstractmethod
    def enable(self):
        pass

    def enforce(self, policy: FirewallPolicy):
        self.set_defaults(policy.default_incoming, policy.default_outgoing)
        for rule in policy.rules:
            self.add_rule(rule)
        self.enable()


class Ufw(Firewall):

    def __init__(self, shell: Shell):
        self._shell = shell

    def __repr__(self):
        return f'<{Ufw.__name__} via {self._shell!r}>'

    def status(self):
        r = self._shell.run(['ufw', 'status', 'verbose'])
        return _parse_status(r.stdout)

    def set_defaults(self, incoming, outgoing):
        self._shell.run(['ufw', 'default', incoming, 'incoming'])
        self._shell.run(['ufw', 'default', outgoing, 'outgoing'])

    def add_rule(self, rule):
        command = ['ufw', rule.action, f'{rule.port}/{rule.protocol}']
        if rule.comment:
            command.extend(['comment', rule.comment])
        r = self._shell.run(command)
        _logger.info("%s: %s", rule, r.stdout.decode().strip())

    def enable(self):
        # Without --force, ufw asks whether to disrupt existing SSH connections.
        self._shell.run(['ufw', '--force', 'enable'])
        _logger.info("Firewall active")


_default_re = re.compile(r'^Default: (\w+) \(incoming\), (\w+) \(outgoing\)', re.MULTILINE)
_rule_re = re.compile(
    r'^(?P<port>\d+)/(?P<protocol>tcp|udp)\s+'
    r'(?P<action>ALLOW|DENY|REJECT|LIMIT)(?: IN)?\s+'
    r'\S+(?:\s+\(v6\))?'
    r'(?:\s+# (?P<comment>.*))?$',
    re.MULTILINE)


def _parse_status(output: bytes) -> FirewallStatus:
    r"""Parse "ufw status verbose"; IPv6 duplicates collapse into one rule.

    >>> status = _parse_status(
    ...     b'Status: active\n'
    ...     b'Logging: on (low)\n'
    ...     b'Default: deny (incoming), allow (outgoing), disabled (routed)\n'
    ...     b'New profiles: skip\n'
    ...     b'\n'
    ...     b'To                         Action      From\n'
    ...     b'--                         ------      ----\n'
    ...     b'22/tcp                     ALLOW IN    Anywhere                   # SSH\n'
    ...     b'18789/tcp                  DENY IN     Anywhere                   # gateway\n'
    ...     b'22/tcp (v6)                ALLOW IN    Anywhere (v6)              # SSH\n')
    >>> status.active, status.default_incoming, status.default_outgoing
    (True, 'deny', 'allow')
    >>> sorted(status.rules)
    [FirewallRule(action='allow', port=22, protocol='tcp', comment='SSH'), FirewallRule(action='deny', port=18789, protocol='tcp', comment='gateway')]
    >>> _parse_status(b'Status: inactive\n')
    FirewallStatus(active=False, default_incoming=None, default_outgoing=None, rules=set())
    """
    text = output.decode()
    active = 'Status: active' in text
    default = _default_re.search(text)
    rules = set()
    for line in text.splitlines():
        line = line.replace(' (v6)', '', 1).rstrip()
        match = _rule_re.match(line)
        if match is None:
            continue
        rules.add(FirewallRule(
            match['action'].lower(),
            int(match['port']),
            match['protocol'],
            (match['comment'] or '').strip(),
            ))
    return FirewallStatus(
        active,
        default[1] if default else None,
        default[2] if default else None,
        rules,
        )


_logger = logging.getLogger(__name__)
