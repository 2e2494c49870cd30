# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import shlex

from provisioning._boundary import SessionDependency
from provisioning._boundary import UserAction
from provisioning._context import API_KEY_VARIABLE

GATEWAY_SERVICE = 'gateway-service'

# What "systemctl --user" says when there is no user bus, as under sudo.
_no_user_session = SessionDependency(GATEWAY_SERVICE, [
    b'failed to connect to bus',
    b'no medium found',
    b'$dbus_session_bus_address',
    b'xdg_runtime_dir',
    b'systemctl --user unavailable',
    ])


def install_app(installer_url: str) -> UserAction:
    # The installer is told not to onboard; onboarding needs the key and runs later.
    return UserAction(
        "Install OpenClaw",
        f'curl -fsSL {shlex.quote(installer_url)} | bash -s -- --no-onboard',
        timeout_sec=1800,
        )


def app_version() -> UserAction:
    return UserAction("Query OpenClaw version", 'openclaw --version')


def onboard() -> UserAction:
    """Set up the auth profile, then the gateway user service.

    The last step is the one that fails under sudo.
    """
    return UserAction(
        "Onboard OpenClaw",
        f'openclaw onboard'
        f' --auth-choice apiKey'
        f' --token-provider openrouter'
        f' --token "${API_KEY_VARIABLE}"'
        f' --install-daemon',
        env_names=[API_KEY_VARIABLE],
        session_dependency=_no_user_session,
        timeout_sec=900,
        )


def service_active(unit: str) -> UserAction:
    # With linger enabled, the user manager runs without a login; this reaches it.
    return UserAction(
        f"Query {unit}",
        'export XDG_RUNTIME_DIR="/run/user/$(id -u)"\n'
        f'systemctl --user is-active --quiet {shlex.quote(unit)}',
        )
