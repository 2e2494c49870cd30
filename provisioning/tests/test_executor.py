# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import tempfile
import unittest
from pathlib import Path
from subprocess import CalledProcessError

from provisioning._apt import Apt
from provisioning._boundary import Identity
from provisioning._boundary import Outcome
from provisioning._boundary import PrivilegeBoundary
from provisioning._boundary import SessionDependency
from provisioning._boundary import UserAction
from provisioning._core import HostPhase
from provisioning._core import PhaseExecutor
from provisioning._core import UserPhase
from provisioning._errors import PhaseExecutionError
from provisioning._reboot import RebootBoundary
from provisioning._reboot import ResumptionMarker
from provisioning._reboot import ScheduledResumption
from provisioning.openclaw._phases import SystemUpdate
from provisioning.tests._fakes import FakeMachine
from provisioning.tests._fakes import FakePackages
from provisioning.tests._fakes import FakeScheduler
from provisioning.tests._fakes import make_context
from provisioning.tests._recording_shell import RecordingShell


class _Counter(HostPhase):

    def __init__(self, name, done=False, touches_kernel=False):
        super().__init__(name)
        self.done = done
        self.touches_kernel = touches_kernel
        self.applied = 0

    def is_satisfied(self, context):
        return self.done

    def apply(self, context):
        self.applied += 1
        self.done = True
        return Outcome.ok()


class _Failing(HostPhase):

    def is_satisfied(self, context):
        return False

    def apply(self, context):
        raise CalledProcessError(100, ['apt-get', 'install', 'nonexistent'], b'', b'E: Unable to locate package')


class _Unparsable(HostPhase):

    def __init__(self, name, error):
        super().__init__(name)
        self._error = error

    def is_satisfied(self, context):
        raise self._error

    def apply(self, context):
        raise self._error


class _StartService(UserPhase):

    def is_satisfied(self, context):
        return False

    def actions(self, context):
        yield UserAction("Prepare", 'true')
        yield UserAction(
            "Start service",
            'systemctl --user start app',
            session_dependency=SessionDependency('user-service', [b'Failed to connect to bus']))


class _ScriptedShell(RecordingShell):
    """Answer with the given results in turn, then with success."""

    def __init__(self):
        super().__init__()
        self.results = []

    def run(self, args, input=None, env=None, timeout_sec=600, check=True):
        if self.results:
            [returncode, stderr] = self.results.pop(0)
            self._answers = [([], returncode, b'', stderr)]
        else:
            self._answers = []
        return super().run(args, input, env, timeout_sec, check)


class TestPhaseExecutor(unittest.TestCase):

    def setUp(self):
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.packages = FakePackages()
        self.scheduler = FakeScheduler()
        self.machine = FakeMachine(self.packages)
        self.marker_path = Path(temp_dir.name, 'resume.json')
        self.marker = ResumptionMarker(self.marker_path)
        self.shell = _ScriptedShell()
        self.boundary = PrivilegeBoundary(self.shell)
        self.identity = Identity.restricted('svc')
        self.context = make_context()

    def _executor(self):
        template = ScheduledResumption('tag', ['run'], Path('/'), {}, Path('/dev/null'))
        reboot = RebootBoundary(self.marker, self.scheduler, self.machine, self.packages, template, 2)
        return PhaseExecutor(reboot, self.boundary)

    def test_order_and_skip(self):
        first, second, third = _Counter('first'), _Counter('second', done=True), _Counter('third')
        report = self._executor().run([first, second, third], self.context)
        self.assertEqual(report.applied, ['first', 'third'])
        self.assertEqual(report.skipped, ['second'])
        self.assertEqual(second.applied, 0)
        again = self._executor().run([first, second, third], self.context)
        self.assertEqual(again.applied, [])
        self.assertEqual(first.applied, 1)

    def test_failure_stops_the_run(self):
        after = _Counter('after')
        with self.assertRaisesRegex(PhaseExecutionError, 'Phase broken: .*exit status 100') as caught:
            self._executor().run([_Counter('before'), _Failing('broken'), after], self.context)
        self.assertIsInstance(caught.exception.__cause__, CalledProcessError)
        self.assertEqual(after.applied, 0)

    def test_deferred_is_collected(self):
        self.shell.results = [(0, b''), (1, b'Failed to connect to bus: No medium found\n')]
        phases = [_StartService('service', self.boundary, self.identity), _Counter('after')]
        report = self._executor().run(phases, self.context)
        self.assertEqual(report.applied, ['service', 'after'])
        [warning] = report.warnings
        self.assertEqual(warning.capability, 'user-service')
        self.assertEqual(len(self.shell.commands), 2)

    def test_restart_stops_the_run(self):
        self.packages.restart_flag = True
        update, after = _Counter('update', touches_kernel=True), _Counter('after')
        report = self._executor().run([update, after], self.context)
        self.assertTrue(report.restart_scheduled)
        self.assertEqual(report.applied, ['update'])
        self.assertEqual(after.applied, 0)
        self.assertEqual(self.machine.restarts, 1)

        resumed = self._executor().run([_Counter('update', touches_kernel=True), after], self.context)
        self.assertEqual(resumed.skipped, ['update'])
        self.assertEqual(resumed.applied, ['after'])
        self.assertFalse(self.marker.exists())

    def test_unreadable_apt_output(self):
        shell = RecordingShell()
        shell.answer(['apt-get', '--simulate', 'upgrade'], stdout=b'')
        apt = Apt(shell, Path('/nonexistent/reboot-required'))
        after = _Counter('after')
        with self.assertRaisesRegex(PhaseExecutionError, 'Phase system-update: Cannot find summary') as caught:
            self._executor().run([SystemUpdate(apt), after], self.context)
        self.assertIsInstance(caught.exception.__cause__, RuntimeError)
        self.assertEqual(after.applied, 0)

    def test_unreadable_tool_output(self):
        for error in ValueError("not enough values to unpack"), IndexError("list index out of range"):
            with self.subTest(error=type(error).__name__):
                with self.assertRaisesRegex(PhaseExecutionError, 'Phase passwd: ') as caught:
                    self._executor().run([_Unparsable('passwd', error)], self.context)
                self.assertIs(caught.exception.__cause__, error)

    def test_unreadable_marker(self):
        self.marker_path.write_text('{"resume_point": "elsewhere"}')
        with self.assertRaisesRegex(PhaseExecutionError, 'elsewhere'):
            self._executor().run([_Counter('first')], self.context)
        self.assertFalse(self.marker.exists())
