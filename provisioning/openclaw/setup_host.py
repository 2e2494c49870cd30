# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Provision a fresh minimal Ubuntu host with OpenClaw.

Run as root on the host itself:
    export OPENROUTER_API_KEY="sk-or-your-key-here"
    python3 -m provisioning.openclaw.setup_host

Safe to run multiple times: completed steps are skipped.
If the system update needs a restart, the host restarts and the run
resumes by itself; see the log file for its output.
"""
import argparse
import logging
import os
import shutil
import socket
import sys
from pathlib import Path
from typing import Sequence

from provisioning._boundary import Identity
from provisioning._boundary import PrivilegeBoundary
from provisioning._config import global_config
from provisioning._context import ExecutionContext
from provisioning._core import PhaseExecutor
from provisioning._core import RunReport
from provisioning._errors import PreconditionError
from provisioning._errors import ProvisioningError
from provisioning._host import local_host
from provisioning._logging import init_file_logging
from provisioning._logging import init_stream_logging
from provisioning._reboot import RebootBoundary
from provisioning._reboot import ResumptionMarker
from provisioning._reboot import ScheduledResumption
from provisioning._shell import local_shell
from provisioning.openclaw._handoff import ARTIFACT_NAME
from provisioning.openclaw._phases import Handoff
from provisioning.openclaw._phases import build_phases

_required_tools = ['apt-get', 'sudo', 'crontab', 'systemctl', 'loginctl', 'useradd']


def main(args: Sequence[str]) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        '--log-file',
        type=Path,
        default=Path(global_config['log_file']),
        help="detailed log, also of the run resumed after restart; default: %(default)s")
    parsed_args = parser.parse_args(args)
    try:
        context = ExecutionContext.from_environment(os.environ, global_config)
        identity = Identity.restricted(context.user)
        _check_preconditions()
        init_file_logging(parsed_args.log_file)
        _print_banner(context)
        host = local_host(local_shell, global_config)
        boundary = PrivilegeBoundary(local_shell)
        reboot = RebootBoundary(
            ResumptionMarker(Path(global_config['resume_marker'])),
            host.scheduler,
            host.machine,
            host.packages,
            resumption_template(parsed_args.log_file),
            int(global_config['max_restarts']),
            )
        phases = build_phases(host, boundary, identity, global_config, prompt_allowed=sys.stdin.isatty())
        report = PhaseExecutor(reboot, boundary).run(phases, context)
        _logger.info("Finished: %r", report)
        if report.restart_scheduled:
            print(f"Host is restarting; provisioning resumes by itself. Follow: {parsed_args.log_file}")
            return 0
        [handoff] = [phase for phase in phases if isinstance(phase, Handoff)]
        _print_report(report, identity, context, handoff_pending=bool(handoff.deferred_capabilities(context)))
    except ProvisioningError as e:
        _logger.debug("Fatal error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def resumption_template(log_file: Path) -> ScheduledResumption:
    return ScheduledResumption(
        tag=f'openclaw-provisioning {Path(__file__).resolve()}',
        command=[sys.executable, '-m', 'provisioning.openclaw.setup_host'],
        cwd=Path(__file__).resolve().parents[2],
        env={},
        log_file=log_file,
        )


def _check_preconditions():
    if os.geteuid() != 0:
        raise PreconditionError("Must run as root")
    missing = [tool for tool in _required_tools if shutil.which(tool) is None]
    if missing:
        raise PreconditionError(f"Required tools not found: {', '.join(missing)}; Ubuntu/Debian with apt is expected")


def _print_banner(context: ExecutionContext):
    print()
    print("==============================================")
    print("  OpenClaw: minimal host setup")
    print("==============================================")
    print(f"API key: {context.masked_api_key()}")
    print(f"Primary model: {context.primary_model}")
    print(flush=True)


def _print_report(report: RunReport, identity: Identity, context: ExecutionContext, handoff_pending: bool):
    print()
    print("==============================================")
    for name in report.applied:
        print(f"[OK] {name}")
    for name in report.skipped:
        print(f"[OK] {name} (already done)")
    print(f"[OK] User: {identity.name}")
    print(f"[OK] Model: {context.primary_model}")
    print(f"[OK] Gateway: localhost:{context.gateway_port}")
    if report.warnings:
        print()
        print("Needs one more manual step:")
        for warning in report.warnings:
            print(f"[!] {warning.capability}: {warning.detail.splitlines()[-1] if warning.detail else ''}")
    if handoff_pending:
        print()
        print(f"[!] Complete setup by logging in as {identity.name}:")
        print()
        print(f"    ssh {identity.name}@{socket.gethostname()}")
        print(f"    bash {ARTIFACT_NAME}")
        print()
        print("  This starts the gateway service with proper systemd/dbus.")
        print(f"  Do NOT use 'su - {identity.name}': user systemd won't work there.")
    print("==============================================", flush=True)


_logger = logging.getLogger(__name__)


if __name__ == '__main__':
    init_stream_logging()
    exit(main(sys.argv[1:]))
