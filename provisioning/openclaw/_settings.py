# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""OpenClaw settings file: ~/.openclaw/openclaw.json.

The format is JSON5: comments and trailing commas are allowed.
The schema is strictly validated by the gateway;
an unknown key prevents it from starting.
That's why only keys from the allowlist below are ever written.
See: https://docs.openclaw.ai/gateway/configuration
"""
import hashlib
import json
import re
from typing import Any
from typing import Mapping

from provisioning._context import ExecutionContext

# None is a leaf; the _ANY key stands for user-chosen names, e.g. model ids.
_ANY = object()
_KNOWN_KEYS = {
    'gateway': {
        'port': None,
        'mode': None,
        'bind': None,
        'auth': {'mode': None},
        },
    'env': {'OPENROUTER_API_KEY': None},
    'agents': {
        'defaults': {
            'model': {'primary': None, 'fallbacks': None},
            'models': {_ANY: {'alias': None, 'thinking': None}},
            },
        },
    }


class UnknownSettingsKey(ValueError):
    pass


def settings_document(context: ExecutionContext, config: Mapping[str, str]) -> Mapping[str, Any]:
    models = {
        context.primary_model: {
            'alias': config['primary_model_alias'],
            'thinking': config['primary_model_thinking'],
            },
        }
    # The primary keeps its own alias when also listed as a fallback.
    for fallback in context.fallback_models[:1]:
        models.setdefault(fallback, {'alias': config['fallback_model_alias']})
    return {
        'gateway': {
            'port': context.gateway_port,
            'mode': 'local',
            'bind': 'loopback',
            'auth': {'mode': 'token'},
            },
        'env': {'OPENROUTER_API_KEY': context.api_key},
        'agents': {
            'defaults': {
                'model': {
                    'primary': context.primary_model,
                    'fallbacks': list(context.fallback_models),
                    },
                'models': models,
                },
            },
        }


def validate_keys(document: Mapping[str, Any], known=None, path=''):
    """Refuse anything the gateway would reject.

    >>> validate_keys({'gateway': {'port': 1}})
    >>> validate_keys({'agents': {'defaults': {'models': {'any/model': {'alias': 'a'}}}}})
    >>> validate_keys({'gateway': {'tls': True}})
    Traceback (most recent call last):
    ...
    provisioning.openclaw._settings.UnknownSettingsKey: gateway.tls
    """
    if known is None:
        known = _KNOWN_KEYS
    for key, value in document.items():
        key_path = f'{path}.{key}' if path else key
        if key in known:
            sub_known = known[key]
        elif _ANY in known:
            sub_known = known[_ANY]
        else:
            raise UnknownSettingsKey(key_path)
        if isinstance(value, Mapping):
            if sub_known is None:
                raise UnknownSettingsKey(f"{key_path} must not be a section")
            validate_keys(value, sub_known, key_path)
        elif sub_known is not None:
            raise UnknownSettingsKey(f"{key_path} must be a section")


def render_settings(context: ExecutionContext, config: Mapping[str, str]) -> str:
    document = settings_document(context, config)
    validate_keys(document)
    header = [
        '// OpenClaw: managed by openclaw-provisioning',
        f'// Primary model: {context.primary_model} via OpenRouter',
        '// Docs: https://docs.openclaw.ai/gateway/configuration',
        ]
    return '{\n' + ''.join('  ' + line + '\n' for line in header) + '\n' + _dump_members(document, 1) + '}\n'


def settings_digest(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest() + '\n'


_identifier_re = re.compile(r'[A-Za-z_$][A-Za-z0-9_$]*')


def _dump_members(mapping: Mapping[str, Any], level: int) -> str:
    r"""Dump object members in JSON5 with unquoted keys where possible.

    >>> print(_dump_members({'a': 1, 'b/c': {'d': [True, 'x']}}, 1), end='')
      a: 1,
      "b/c": {
        d: [
          true,
          "x",
        ],
      },
    """
    indent = '  ' * level
    result = ''
    for key, value in mapping.items():
        key_text = key if _identifier_re.fullmatch(key) else json.dumps(key)
        result += f'{indent}{key_text}: {_dump_value(value, level)},\n'
    return result


def _dump_value(value: Any, level: int) -> str:
    indent = '  ' * level
    if isinstance(value, Mapping):
        return '{\n' + _dump_members(value, level + 1) + indent + '}'
    if isinstance(value, list):
        items = ''.join(f'{indent}  {_dump_value(item, level + 1)},\n' for item in value)
        return '[\n' + items + indent + ']'
    return json.dumps(value)
