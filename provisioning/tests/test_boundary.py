# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import unittest
from pathlib import PurePosixPath

from provisioning._boundary import Identity
from provisioning._boundary import PrivilegeBoundary
from provisioning._boundary import SessionDependency
from provisioning._boundary import Status
from provisioning._boundary import UserAction
from provisioning._errors import PhaseExecutionError
from provisioning._errors import PreconditionError
from provisioning.tests._fakes import make_context
from provisioning.tests._recording_shell import RecordingShell

_session = SessionDependency('user-service', [b'Failed to connect to bus'])


class TestIdentity(unittest.TestCase):

    def test_home(self):
        self.assertEqual(Identity.restricted('openclaw').home, PurePosixPath('/home/openclaw'))

    def test_root_refused(self):
        with self.assertRaises(PreconditionError):
            Identity.restricted('root')

    def test_odd_names_refused(self):
        for name in ['', 'Upper', 'with space', 'a;rm', '-dash']:
            with self.subTest(name=name):
                with self.assertRaises(PreconditionError):
                    Identity.restricted(name)


class TestPrivilegeBoundary(unittest.TestCase):

    def setUp(self):
        self.shell = RecordingShell()
        self.boundary = PrivilegeBoundary(self.shell)
        self.identity = Identity.restricted('openclaw')
        self.context = make_context('sk-test-1234')

    def test_command_line(self):
        self.boundary.run_as(self.identity, UserAction("List", 'ls -la'), self.context)
        [command] = self.shell.commands
        self.assertEqual(command[:6], ['sudo', '-u', 'openclaw', '-H', '--', 'bash'])
        self.assertEqual(command[6], '-c')
        self.assertTrue(command[7].startswith('set -euo pipefail\n'))
        self.assertTrue(command[7].endswith('\nls -la'))

    def test_only_requested_values_pass(self):
        action = UserAction("Use key", 'echo "${#OPENROUTER_API_KEY}"', env_names=['OPENROUTER_API_KEY'])
        self.boundary.run_as(self.identity, action, self.context)
        [command] = self.shell.commands
        self.assertIn('--preserve-env=OPENROUTER_API_KEY', command)
        self.assertNotIn('sk-test-1234', ' '.join(command))

    def test_no_values_by_default(self):
        probe = self.boundary.probe(self.identity, UserAction("Env", 'env'), self.context)
        self.assertEqual(probe.returncode, 0)
        self.assertFalse(any(arg.startswith('--preserve-env') for arg in self.shell.commands[0]))

    def test_unknown_value_refused(self):
        action = UserAction("Use secret", 'true', env_names=['AWS_SECRET_ACCESS_KEY'])
        with self.assertRaisesRegex(PreconditionError, 'AWS_SECRET_ACCESS_KEY'):
            self.boundary.run_as(self.identity, action, self.context)
        self.assertEqual(self.shell.commands, [])

    def test_elevation_refused(self):
        for script in ['sudo apt-get install jq', 'true && su - root', 'x=$(doas id)', 'pkexec\n']:
            with self.subTest(script=script):
                with self.assertRaises(PreconditionError):
                    self.boundary.run_as(self.identity, UserAction("Elevate", script), self.context)
        self.assertEqual(self.shell.commands, [])

    def test_words_resembling_elevation_allowed(self):
        script = 'echo pseudo-terminal; ls ~/sudoku; echo summary'
        self.boundary.run_as(self.identity, UserAction("Harmless", script), self.context)
        self.assertEqual(len(self.shell.commands), 1)

    def test_root_refused(self):
        with self.assertRaises(PreconditionError):
            self.boundary.run_as(Identity('root', PurePosixPath('/root')), UserAction("Id", 'id'), self.context)
        self.assertEqual(self.shell.commands, [])

    def test_session_limited_failure_deferred(self):
        self.shell.answer(['sudo'], 1, stderr=b'Failed to connect to bus: No medium found\n')
        action = UserAction("Start service", 'systemctl --user start app', session_dependency=_session)
        outcome = self.boundary.run_as(self.identity, action, self.context)
        self.assertIs(outcome.status, Status.DEFERRED_SESSION_LIMITED)
        self.assertEqual(outcome.warning.capability, 'user-service')
        self.assertIn('No medium found', outcome.warning.detail)

    def test_other_failure_aborts(self):
        self.shell.answer(['sudo'], 2, stderr=b'E: disk full\n')
        action = UserAction("Start service", 'systemctl --user start app', session_dependency=_session)
        with self.assertRaisesRegex(PhaseExecutionError, 'exit status 2: E: disk full'):
            self.boundary.run_as(self.identity, action, self.context)

    def test_session_failure_without_dependency_aborts(self):
        self.shell.answer(['sudo'], 1, stderr=b'Failed to connect to bus: No medium found\n')
        with self.assertRaises(PhaseExecutionError):
            self.boundary.run_as(self.identity, UserAction("Plain", 'systemctl --user status'), self.context)

    def test_command_not_found(self):
        self.shell.answer(['sudo'], 127, stderr=b'bash: line 1: openclaw: command not found\n')
        with self.assertRaisesRegex(PhaseExecutionError, 'command not found'):
            self.boundary.run_as(self.identity, UserAction("Version", 'openclaw --version'), self.context)

    def test_probe_does_not_raise(self):
        self.shell.answer(['sudo'], 1)
        r = self.boundary.probe(self.identity, UserAction("Check", 'test -f x'), self.context)
        self.assertEqual(r.returncode, 1)


class TestSessionDependency(unittest.TestCase):

    def test_case_insensitive(self):
        dependency = SessionDependency('x', [b'$DBUS_SESSION_BUS_ADDRESS'])
        self.assertTrue(dependency.matches(b'Failed: $dbus_session_bus_address not set'))
        self.assertFalse(dependency.matches(b'permission denied'))
