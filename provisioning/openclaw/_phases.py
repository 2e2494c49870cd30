# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import Collection
from typing import Mapping
from typing import Sequence

from provisioning._apt import PackageManager
from provisioning._boundary import Identity
from provisioning._boundary import Outcome
from provisioning._boundary import PrivilegeBoundary
from provisioning._boundary import SessionLimitedWarning
from provisioning._context import ExecutionContext
from provisioning._core import HostPhase
from provisioning._core import Phase
from provisioning._core import UserPhase
from provisioning._errors import PhaseExecutionError
from provisioning._firewall import Firewall
from provisioning._firewall import FirewallPolicy
from provisioning._firewall import FirewallRule
from provisioning._host import Host
from provisioning._user_files import change_modes
from provisioning._user_files import file_exists
from provisioning._user_files import file_modes
from provisioning._user_files import install_file
from provisioning._user_files import make_dirs
from provisioning._user_files import parse_modes
from provisioning._user_files import read_file
from provisioning._users import Accounts
from provisioning.openclaw._app import GATEWAY_SERVICE
from provisioning.openclaw._app import app_version
from provisioning.openclaw._app import install_app
from provisioning.openclaw._app import onboard
from provisioning.openclaw._app import service_active
from provisioning.openclaw._handoff import HandoffFinalizer
from provisioning.openclaw._settings import render_settings
from provisioning.openclaw._settings import settings_digest

ACCOUNT_PASSWORD = 'account-password'
_ADMIN_GROUP = 'sudo'


class SystemUpdate(HostPhase):
    """Upgrade installed packages; may pull a new kernel."""

    touches_kernel = True

    def __init__(self, packages: PackageManager):
        super().__init__('system-update')
        self._packages = packages

    def is_satisfied(self, context):
        # Without a fresh index, "nothing to upgrade" means nothing.
        self._packages.update_index()
        return self._packages.pending_upgrades() == 0

    def apply(self, context):
        self._packages.upgrade()
        return Outcome.ok()


class Dependencies(HostPhase):
    """dbus-user-session is what makes user systemd work on minimal images.

    It must be installed before the user is created and linger is enabled.
    """

    def __init__(self, packages: PackageManager, names: Collection[str]):
        super().__init__('dependencies')
        self._packages = packages
        self._names = names

    def is_satisfied(self, context):
        return not self._packages.missing(self._names)

    def apply(self, context):
        self._packages.update_index()
        self._packages.install(self._names)
        return Outcome.ok()


class ServiceAccount(HostPhase):

    def __init__(self, accounts: Accounts, identity: Identity):
        super().__init__('service-account')
        self._accounts = accounts
        self._user = identity.name

    def is_satisfied(self, context):
        if not self._accounts.exists(self._user):
            return False
        if _ADMIN_GROUP not in self._accounts.groups(self._user):
            return False
        return self._accounts.has_passwordless_sudo(self._user)

    def apply(self, context):
        if self._accounts.exists(self._user):
            _logger.info("User %s already exists, reuse", self._user)
        else:
            self._accounts.create(self._user, '/bin/bash')
        if _ADMIN_GROUP not in self._accounts.groups(self._user):
            self._accounts.add_to_group(self._user, _ADMIN_GROUP)
        if not self._accounts.has_passwordless_sudo(self._user):
            self._accounts.grant_passwordless_sudo(self._user)
        return Outcome.ok()


class Linger(HostPhase):
    """User services keep running without an active login."""

    def __init__(self, accounts: Accounts, identity: Identity):
        super().__init__('linger')
        self._accounts = accounts
        self._user = identity.name

    def is_satisfied(self, context):
        return self._accounts.linger_enabled(self._user)

    def apply(self, context):
        self._accounts.enable_linger(self._user)
        return Outcome.ok()


class AccountPassword(HostPhase):
    """Password for SSH login; user systemd only works in a direct login."""

    def __init__(self, accounts: Accounts, identity: Identity, prompt_allowed: bool):
        super().__init__('account-password')
        self._accounts = accounts
        self._user = identity.name
        self._prompt_allowed = prompt_allowed

    def is_satisfied(self, context):
        return self._accounts.password_is_set(self._user)

    def apply(self, context):
        if not self._prompt_allowed:
            return Outcome.deferred(SessionLimitedWarning(
                ACCOUNT_PASSWORD,
                f"No terminal to prompt for a password; run 'passwd {self._user}' as root"))
        print(f"Set a password for {self._user!r}; it is needed for SSH login", flush=True)
        self._accounts.set_password(self._user)
        return Outcome.ok()


class AuthorizedKeys(HostPhase):

    def __init__(self, accounts: Accounts, identity: Identity):
        super().__init__('authorized-keys')
        self._accounts = accounts
        self._user = identity.name

    def is_satisfied(self, context):
        return self._accounts.authorized_keys_synced(self._user)

    def apply(self, context):
        self._accounts.copy_authorized_keys(self._user)
        return Outcome.ok()


class FirewallPhase(HostPhase):

    def __init__(self, firewall: Firewall):
        super().__init__('firewall')
        self._firewall = firewall

    def is_satisfied(self, context):
        return firewall_policy(context).is_enforced(self._firewall.status())

    def apply(self, context):
        self._firewall.enforce(firewall_policy(context))
        return Outcome.ok()


def firewall_policy(context: ExecutionContext) -> FirewallPolicy:
    return FirewallPolicy('deny', 'allow', [
        FirewallRule('allow', context.ssh_port, 'tcp', 'SSH'),
        FirewallRule('deny', context.gateway_port, 'tcp', 'OpenClaw gateway - localhost only'),
        ])


class InstallApp(UserPhase):

    def __init__(self, boundary: PrivilegeBoundary, identity: Identity, installer_url: str):
        super().__init__('install-app', boundary, identity)
        self._installer_url = installer_url

    def is_satisfied(self, context):
        return self._succeeds(app_version(), context)

    def actions(self, context):
        yield install_app(self._installer_url)
        r = self._boundary.probe(self.identity, app_version(), context)
        if r.returncode != 0:
            raise PhaseExecutionError("OpenClaw installation failed: openclaw --version does not work")
        _logger.info("OpenClaw installed: %s", r.stdout.decode().strip())


class WriteSettings(UserPhase):

    def __init__(self, boundary: PrivilegeBoundary, identity: Identity, config: Mapping[str, str]):
        super().__init__('settings', boundary, identity)
        self._config = config
        self._app_dir = identity.home / '.openclaw'
        self._settings = self._app_dir / 'openclaw.json'
        # Outside the app dir: the app never sees it, its edits don't touch it.
        self._digest = identity.home / '.openclaw-provisioning' / 'openclaw.json.sha256'

    def is_satisfied(self, context):
        if not self._succeeds(file_exists(self._settings), context):
            return False
        r = self._boundary.probe(self.identity, read_file(self._digest), context)
        if r.returncode != 0:
            return False
        return r.stdout.decode() == settings_digest(render_settings(context, self._config))

    def actions(self, context):
        text = render_settings(context, self._config)
        yield make_dirs([
            self._app_dir,
            self._app_dir / 'credentials',
            self._app_dir / 'workspace',
            ], '700')
        yield install_file(self._settings, text.encode(), '600')
        yield install_file(self._digest, settings_digest(text).encode(), '600')


class HardenPermissions(UserPhase):

    def __init__(self, boundary: PrivilegeBoundary, identity: Identity):
        super().__init__('permissions', boundary, identity)
        app_dir = identity.home / '.openclaw'
        self._modes = {
            app_dir: '700',
            app_dir / 'openclaw.json': '600',
            app_dir / 'credentials': '700',
            }

    def is_satisfied(self, context):
        r = self._boundary.probe(self.identity, file_modes(list(self._modes)), context)
        return r.returncode == 0 and parse_modes(r.stdout) == self._modes

    def actions(self, context):
        yield change_modes(self._modes)


class Onboarding(UserPhase):
    """Auth profile first, then the gateway service.

    Without a user session, the service part fails; that is deferred
    to the handoff script.
    """

    def __init__(self, boundary: PrivilegeBoundary, identity: Identity, onboard_marker: str):
        super().__init__('onboarding', boundary, identity)
        self._marker = identity.home / onboard_marker

    def is_satisfied(self, context):
        return self._succeeds(file_exists(self._marker), context)

    def actions(self, context):
        yield onboard()


class Handoff(UserPhase):

    def __init__(
            self,
            boundary: PrivilegeBoundary,
            identity: Identity,
            finalizer: HandoffFinalizer,
            gateway_unit: str,
            ):
        super().__init__('handoff', boundary, identity)
        self._finalizer = finalizer
        self._gateway_unit = gateway_unit

    def deferred_capabilities(self, context) -> Collection[str]:
        if self._succeeds(service_active(self._gateway_unit), context):
            return set()
        return {GATEWAY_SERVICE}

    def is_satisfied(self, context):
        deferred = self.deferred_capabilities(context)
        if not deferred:
            return True
        artifact = self._finalizer.emit(self.identity, deferred, context)
        r = self._boundary.probe(self.identity, read_file(artifact.path), context)
        return r.returncode == 0 and r.stdout.decode() == artifact.content

    def actions(self, context):
        deferred = self.deferred_capabilities(context)
        artifact = self._finalizer.emit(self.identity, deferred, context)
        yield install_file(artifact.path, artifact.content.encode(), artifact.mode)


def build_phases(
        host: Host,
        boundary: PrivilegeBoundary,
        identity: Identity,
        config: Mapping[str, str],
        prompt_allowed: bool,
        ) -> Sequence[Phase]:
    return [
        SystemUpdate(host.packages),
        Dependencies(host.packages, config['packages'].split()),
        ServiceAccount(host.accounts, identity),
        Linger(host.accounts, identity),
        AccountPassword(host.accounts, identity, prompt_allowed),
        AuthorizedKeys(host.accounts, identity),
        FirewallPhase(host.firewall),
        InstallApp(boundary, identity, config['installer_url']),
        WriteSettings(boundary, identity, config),
        HardenPermissions(boundary, identity),
        Onboarding(boundary, identity, config['onboard_marker']),
        Handoff(boundary, identity, HandoffFinalizer(config['gateway_unit']), config['gateway_unit']),
        ]


_logger = logging.getLogger(__name__)
