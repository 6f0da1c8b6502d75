from __future__ import annotations

import copy
from typing import Any

import pytest

from agentkit.spec import AgentManifest, parse_manifest

CLINIC_MANIFEST: dict[str, Any] = {
    "manifest_version": "1.0",
    "metadata": {
        "id": "agent-clinic",
        "name": "Clinic Assistant",
        "slug": "clinic-assistant",
        "domain": "healthcare",
        "owner": "care-team",
        "risk_level": "high",
        "data_classification": "confidential",
    },
    "prd": {
        "purpose": "Help patients describe their symptoms",
        "scope": "Symptom intake only, no diagnosis",
        "context_problem": "Clinics lose time collecting symptoms by phone",
    },
    "fsm": {
        "initial_state": "welcome",
        "states": [
            {
                "id": "welcome",
                "name": "Welcome",
                "description": "Greet the patient and find out why they are here.",
                "prompt_blocks": [
                    {"role": "instructions", "content": "Ask how you can help.", "priority": 1},
                    {"role": "system", "content": "Be kind and brief.", "priority": 5},
                    {"role": "examples", "content": "User: hi\nAssistant: Hello! How can I help?"},
                ],
                "allowed_tools": [],
                "transitions": [
                    {"when": {"type": "intent", "value": "headache|pain"}, "to_state": "triage"},
                ],
            },
            {
                "id": "triage",
                "name": "Triage",
                "description": "Collect symptom details.",
                "allowed_tools": ["symptoms.analyze"],
                "memory_writes": [{"path": "symptoms.reported", "type": "append", "description": "reported symptoms"}],
                "is_terminal": True,
            },
        ],
    },
    "tools": {
        "tools": [
            {
                "type": "http",
                "name": "symptoms.analyze",
                "description": "Analyze the reported symptoms and return a severity.",
                "endpoint": "https://clinic.example/analyze",
                "method": "POST",
                "parameters": {"text": {"type": "string", "required": True}},
            },
            {
                "type": "http",
                "name": "billing.lookup",
                "description": "Look up the patient's open invoices.",
                "endpoint": "https://clinic.example/billing",
                "method": "GET",
                "parameters": {"patient_id": {"type": "string", "required": True}},
            },
        ],
    },
    "memory": {"pii_flags": [{"path": "patient.email", "type": "email"}]},
    "versions": [
        {"version": "1.2.0", "created_at": "2024-05-01T00:00:00Z", "created_by": "care-team", "status": "approved"},
    ],
}


@pytest.fixture
def manifest_data() -> dict[str, Any]:
    return copy.deepcopy(CLINIC_MANIFEST)


@pytest.fixture
def manifest(manifest_data: dict[str, Any]) -> AgentManifest:
    return parse_manifest(manifest_data)


def single_state_manifest(*, fallback: bool = False, max_iterations: int = 10) -> AgentManifest:
    """Manifest with one non-terminal state and no transitions, optionally with a fallback desk."""
    data = copy.deepcopy(CLINIC_MANIFEST)
    states: list[dict[str, Any]] = [{"id": "loop", "name": "Loop", "max_iterations": max_iterations}]
    if fallback:
        states.append({"id": "human_desk", "name": "Human Desk"})
    data["fsm"] = {"initial_state": "loop", "states": states}
    if fallback:
        data["fsm"]["fallback_state"] = "human_desk"
    return parse_manifest(data)


@pytest.fixture
def make_single_state():
    return single_state_manifest
