from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from sbx_server.app.models import ModelRecord, OwnerConfig, ProviderRecord, SkillRecord
from sbx_server.app.workspaces.agent_config import (
    editor_settings,
    render_skill_document,
    synthesize_agent_config,
)

CONFIG_DIR = "/root/.config/opencode"


def _owner_config(**overrides) -> OwnerConfig:
    providers = [
        ProviderRecord(
            provider_id="anthropic",
            name="Anthropic",
            api_key="sk-secret-1",
            env_var_name="ANTHROPIC_API_KEY",
            models=[
                ModelRecord(model_id="claude-sonnet", name="Sonnet", is_default=True),
                ModelRecord(model_id="claude-old", is_enabled=False),
            ],
        ),
        ProviderRecord(
            provider_id="ollama",
            base_url="http://ollama:11434/v1",
            npm="@ai-sdk/openai-compatible",
            headers={"X-Team": "core"},
            models=[ModelRecord(model_id="llama3")],
        ),
        ProviderRecord(provider_id="openai", api_key="sk-off", env_var_name="OPENAI_API_KEY", is_enabled=False),
    ]
    return OwnerConfig(providers=overrides.get("providers", providers), skills=overrides.get("skills", []))


@pytest.mark.unit
def test_document_references_secrets_by_env_and_never_inlines_them() -> None:
    cfg = synthesize_agent_config(_owner_config(), config_dir=CONFIG_DIR)
    doc = cfg.document

    assert doc["$schema"].startswith("https://")
    assert doc["enabled_providers"] == ["anthropic", "ollama"]
    assert doc["disabled_providers"] == ["openai"]
    assert doc["provider"]["anthropic"]["options"]["apiKey"] == "{env:ANTHROPIC_API_KEY}"
    assert "apiKey" not in doc["provider"]["ollama"].get("options", {})
    assert doc["provider"]["ollama"]["options"]["baseURL"] == "http://ollama:11434/v1"
    assert doc["provider"]["ollama"]["options"]["headers"] == {"X-Team": "core"}
    assert list(doc["provider"]["anthropic"]["models"]) == ["claude-sonnet"]
    assert doc["model"] == "anthropic/claude-sonnet"

    serialized = json.dumps(doc)
    assert "sk-secret-1" not in serialized
    assert "sk-off" not in serialized
    assert cfg.environment == {"ANTHROPIC_API_KEY": "sk-secret-1"}


@pytest.mark.unit
def test_model_left_unset_unless_exactly_one_default() -> None:
    providers = [
        ProviderRecord(provider_id="a", models=[ModelRecord(model_id="m1", is_default=True)]),
        ProviderRecord(provider_id="b", models=[ModelRecord(model_id="m2", is_default=True)]),
    ]
    assert "model" not in synthesize_agent_config(_owner_config(providers=providers), config_dir=CONFIG_DIR).document
    assert "model" not in synthesize_agent_config(OwnerConfig(), config_dir=CONFIG_DIR).document


@pytest.mark.unit
def test_files_include_config_document_and_skills() -> None:
    skills = [
        SkillRecord(name="deploy-notes", content="---\nname: deploy-notes\n---\n\nBody"),
        SkillRecord(name="lint", description="Run linters", body="Use ruff.", metadata={"owner": "qa"}),
    ]
    cfg = synthesize_agent_config(_owner_config(skills=skills), config_dir=CONFIG_DIR)
    by_path = {f.path: f.content.decode("utf-8") for f in cfg.files}

    assert json.loads(by_path[f"{CONFIG_DIR}/opencode.json"]) == cfg.document
    assert by_path[f"{CONFIG_DIR}/skill/deploy-notes/SKILL.md"].endswith("Body")
    lint = by_path[f"{CONFIG_DIR}/skill/lint/SKILL.md"]
    assert lint.startswith('---\nname: lint\ndescription: "Run linters"\n')
    assert 'metadata:\n  "owner": "qa"\n---\n\nUse ruff.' in lint


@pytest.mark.unit
def test_front_matter_values_are_quoted() -> None:
    doc = render_skill_document(
        SkillRecord(
            name="deploy",
            description="Deploy: staging\nthen prod",
            license="MIT: see LICENSE",
            metadata={"note": "a: b", "multi": "x\ny"},
        )
    )
    header = doc.split("---\n")[1]
    assert 'description: "Deploy: staging\\nthen prod"\n' in header
    assert 'license: "MIT: see LICENSE"\n' in header
    assert '  "note": "a: b"\n' in header
    assert '  "multi": "x\\ny"\n' in header
    assert len([line for line in header.splitlines() if line.startswith("description:")]) == 1
    assert len(header.splitlines()) == 6


@pytest.mark.unit
@pytest.mark.parametrize("name", ["../escape", "Upper", "a--b", "", "x" * 65, "with/slash"])
def test_invalid_skill_names_are_rejected_by_the_model(name: str) -> None:
    with pytest.raises(ValidationError):
        SkillRecord(name=name)


@pytest.mark.unit
@pytest.mark.parametrize("name", ["../escape", "Upper", "a--b", "", "x" * 65, "with/slash"])
def test_invalid_skill_names_are_rejected_by_synthesis(name: str) -> None:
    skill = SkillRecord.model_construct(name=name, description="", content="", body="", metadata={})
    with pytest.raises(ValueError):
        synthesize_agent_config(OwnerConfig(skills=[skill]), config_dir=CONFIG_DIR)


@pytest.mark.unit
def test_render_skill_document_prefers_stored_content() -> None:
    assert render_skill_document(SkillRecord(name="s", content="raw")) == "raw"


@pytest.mark.unit
def test_editor_settings_disable_telemetry_updates_and_welcome() -> None:
    s = editor_settings()
    assert s["telemetry.telemetryLevel"] == "off"
    assert s["update.mode"] == "none"
    assert s["workbench.startupEditor"] == "none"
    assert s["workbench.welcomePage.walkthroughs.openOnInstall"] is False
