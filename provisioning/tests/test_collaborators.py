# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import tempfile
import unittest
from pathlib import Path
from subprocess import CalledProcessError

from provisioning._apt import Apt
from provisioning._errors import PhaseExecutionError
from provisioning._firewall import FirewallPolicy
from provisioning._firewall import FirewallRule
from provisioning._firewall import Ufw
from provisioning._users import LinuxAccounts
from provisioning.tests._recording_shell import RecordingShell


class TestApt(unittest.TestCase):

    def setUp(self):
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.flag = Path(temp_dir.name, 'reboot-required')
        self.shell = RecordingShell()
        self.apt = Apt(self.shell, self.flag)

    def test_pending(self):
        self.shell.answer(
            ['apt-get', '--simulate', 'upgrade'],
            stdout=b'Calculating upgrade...\n2 upgraded, 1 newly installed, 0 to remove and 0 not upgraded.\n')
        self.assertEqual(self.apt.pending_upgrades(), 3)

    def test_missing(self):
        self.shell.answer(
            ['dpkg-query'], 1,
            stdout=b'curl install ok installed\n',
            stderr=b'dpkg-query: no packages found matching jq\n')
        self.assertEqual(self.apt.missing(['curl', 'jq']), ['jq'])

    def test_noninteractive(self):
        self.apt.install(['curl', 'jq'])
        self.assertEqual(self.shell.commands, [['apt-get', 'install', '-y', '-qq', 'curl', 'jq']])

    def test_restart_flag(self):
        self.assertFalse(self.apt.restart_required())
        self.flag.touch()
        self.assertTrue(self.apt.restart_required())


class TestUfw(unittest.TestCase):

    def test_enforce(self):
        shell = RecordingShell()
        policy = FirewallPolicy('deny', 'allow', [
            FirewallRule('allow', 22, 'tcp', 'SSH'),
            FirewallRule('deny', 18789, 'tcp', 'OpenClaw gateway - localhost only'),
            ])
        Ufw(shell).enforce(policy)
        self.assertEqual(shell.commands, [
            ['ufw', 'default', 'deny', 'incoming'],
            ['ufw', 'default', 'allow', 'outgoing'],
            ['ufw', 'allow', '22/tcp', 'comment', 'SSH'],
            ['ufw', 'deny', '18789/tcp', 'comment', 'OpenClaw gateway - localhost only'],
            ['ufw', '--force', 'enable'],
            ])

    def test_enforced(self):
        shell = RecordingShell()
        shell.answer(['ufw', 'status'], stdout=(
            b'Status: active\n'
            b'Default: deny (incoming), allow (outgoing), disabled (routed)\n'
            b'\n'
            b'To                         Action      From\n'
            b'--                         ------      ----\n'
            b'22/tcp                     ALLOW IN    Anywhere                   # SSH\n'
            b'18789/tcp                  DENY IN     Anywhere\n'))
        policy = FirewallPolicy('deny', 'allow', [
            FirewallRule('allow', 22, 'tcp'),
            FirewallRule('deny', 18789, 'tcp', 'other comment'),
            ])
        self.assertTrue(policy.is_enforced(Ufw(shell).status()))
        stricter = policy._replace(rules=[*policy.rules, FirewallRule('allow', 443, 'tcp')])
        self.assertFalse(stricter.is_enforced(Ufw(shell).status()))


class TestLinuxAccounts(unittest.TestCase):

    def setUp(self):
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.root = Path(temp_dir.name)
        (self.root / 'sudoers.d').mkdir()
        (self.root / 'linger').mkdir()
        self.shell = RecordingShell()
        self.accounts = LinuxAccounts(
            self.shell,
            sudoers_dir=self.root / 'sudoers.d',
            linger_dir=self.root / 'linger',
            source_authorized_keys=self.root / 'authorized_keys',
            )

    def test_create_existing(self):
        self.shell.answer(['useradd'], 9, stderr=b"useradd: user 'openclaw' already exists\n")
        self.accounts.create('openclaw', '/bin/bash')

    def test_create_failure(self):
        self.shell.answer(['useradd'], 1, stderr=b"useradd: cannot lock /etc/passwd\n")
        with self.assertRaises(CalledProcessError):
            self.accounts.create('openclaw', '/bin/bash')

    def test_sudoers(self):
        self.assertFalse(self.accounts.has_passwordless_sudo('openclaw'))
        self.accounts.grant_passwordless_sudo('openclaw')
        path = str(self.root / 'sudoers.d' / 'openclaw')
        self.assertEqual(self.shell.commands, [
            ['install', '-m', '440', '/dev/stdin', path],
            ['visudo', '-cf', path],
            ])
        self.assertEqual(self.shell.inputs[0], b'openclaw ALL=(ALL) NOPASSWD:ALL\n')
        (self.root / 'sudoers.d' / 'openclaw').write_bytes(self.shell.inputs[0])
        self.assertTrue(self.accounts.has_passwordless_sudo('openclaw'))

    def test_sudoers_rejected(self):
        self.shell.answer(['visudo'], 1, stderr=b'syntax error near line 1\n')
        with self.assertRaisesRegex(PhaseExecutionError, 'syntax error'):
            self.accounts.grant_passwordless_sudo('openclaw')
        self.assertEqual(self.shell.commands[-1], ['rm', '-f', str(self.root / 'sudoers.d' / 'openclaw')])

    def test_linger(self):
        self.assertFalse(self.accounts.linger_enabled('openclaw'))
        self.accounts.enable_linger('openclaw')
        self.assertEqual(self.shell.commands, [['loginctl', 'enable-linger', 'openclaw']])
        (self.root / 'linger' / 'openclaw').touch()
        self.assertTrue(self.accounts.linger_enabled('openclaw'))

    def test_password(self):
        self.shell.answer(['passwd', '-S'], stdout=b'openclaw L 2026-01-01 0 99999 7 -1\n')
        self.assertFalse(self.accounts.password_is_set('openclaw'))
        self.shell.attached_returncode = 10
        with self.assertRaises(PhaseExecutionError):
            self.accounts.set_password('openclaw')
        self.assertEqual(self.shell.attached, [['passwd', 'openclaw']])

    def test_authorized_keys(self):
        home = self.root / 'home' / 'openclaw'
        self.shell.answer(['getent', 'passwd'], stdout=f'openclaw:x:1001:1001::{home}:/bin/bash\n'.encode())
        self.assertTrue(self.accounts.authorized_keys_synced('openclaw'))
        (self.root / 'authorized_keys').write_text('ssh-ed25519 AAAA admin\n')
        self.assertFalse(self.accounts.authorized_keys_synced('openclaw'))
        self.accounts.copy_authorized_keys('openclaw')
        self.assertIn(
            ['install', '-m', '600', '-o', 'openclaw', '-g', 'openclaw',
             str(self.root / 'authorized_keys'), str(home / '.ssh' / 'authorized_keys')],
            self.shell.commands)
