# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""OpenClaw gateway on a minimal Ubuntu host, with OpenRouter models.

Entry point: python3 -m provisioning.openclaw.setup_host
"""
from provisioning.openclaw._handoff import HandoffArtifact
from provisioning.openclaw._handoff import HandoffFinalizer
from provisioning.openclaw._phases import build_phases
from provisioning.openclaw._settings import render_settings

__all__ = [
    'HandoffArtifact',
    'HandoffFinalizer',
    'build_phases',
    'render_settings',
    ]
