# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from typing import Mapping
from typing import NamedTuple
from typing import Sequence

from provisioning._errors import PreconditionError

API_KEY_VARIABLE = 'OPENROUTER_API_KEY'


class ExecutionContext(NamedTuple):
    """Values supplied once by the operator and threaded through the run.

    Survives a host restart only through to_environment(): the scheduled
    resumption re-supplies exactly these variables.
    """

    api_key: str
    user: str
    primary_model: str
    fallback_models: Sequence[str]
    gateway_port: int
    ssh_port: int

    def __repr__(self):
        return (
            f'{ExecutionContext.__name__}('
            f'api_key={self.masked_api_key()!r}, user={self.user!r}, '
            f'primary_model={self.primary_model!r}, fallback_models={self.fallback_models!r}, '
            f'gateway_port={self.gateway_port!r}, ssh_port={self.ssh_port!r})')

    @classmethod
    def from_environment(cls, env: Mapping[str, str], config: Mapping[str, str]) -> 'ExecutionContext':
        api_key = env.get(API_KEY_VARIABLE, '').strip()
        if not api_key:
            raise PreconditionError(
                f"{API_KEY_VARIABLE} not set; "
                f"export {API_KEY_VARIABLE}=\"sk-or-your-key-here\"")
        fallback_models = env.get('OPENCLAW_FALLBACK_MODELS', config['fallback_models'])
        return cls(
            api_key=api_key,
            user=env.get('OPENCLAW_USER', config['user']),
            primary_model=env.get('OPENCLAW_PRIMARY_MODEL', config['primary_model']),
            fallback_models=tuple(fallback_models.split()),
            gateway_port=_port(env.get('OPENCLAW_GATEWAY_PORT', config['gateway_port'])),
            ssh_port=_port(env.get('OPENCLAW_SSH_PORT', config['ssh_port'])),
            )

    def to_environment(self) -> Mapping[str, str]:
        return {
            API_KEY_VARIABLE: self.api_key,
            'OPENCLAW_USER': self.user,
            'OPENCLAW_PRIMARY_MODEL': self.primary_model,
            'OPENCLAW_FALLBACK_MODELS': ' '.join(self.fallback_models),
            'OPENCLAW_GATEWAY_PORT': str(self.gateway_port),
            'OPENCLAW_SSH_PORT': str(self.ssh_port),
            }

    def masked_api_key(self) -> str:
        """Show just enough to recognize the key.

        >>> ExecutionContext('sk-or-v1-0123456789abcdef', 'u', 'm', (), 1, 2).masked_api_key()
        'sk-or-v1-012...cdef'
        >>> ExecutionContext('short', 'u', 'm', (), 1, 2).masked_api_key()
        '***'
        """
        if len(self.api_key) <= 16:
            return '***'
        return self.api_key[:12] + '...' + self.api_key[-4:]


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise PreconditionError(f"Port must be a number, got {value!r}")
    if not 0 < port < 65536:
        raise PreconditionError(f"Port out of range: {port}")
    return port
