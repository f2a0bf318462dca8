from __future__ import annotations

"""
Config synthesis for the agent and editor services.

Turns an owner's provider/model/skill records into:
- the agent's JSON config document (secrets referenced via env, never inlined)
- the environment carrying those secrets
- the files to materialize under the agent's config directory
- the static editor preferences

Pure functions; nothing here touches the runtime.
"""

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sbx_server.app.models import SLUG_RE, OwnerConfig, ProviderRecord, SkillRecord
from sbx_server.app.workspaces.launch import FileMaterialization

__all__ = [
    "AGENT_CONFIG_SCHEMA",
    "AGENT_CONFIG_FILENAME",
    "AgentConfig",
    "validate_skill_name",
    "render_skill_document",
    "synthesize_agent_config",
    "editor_settings",
    "editor_settings_file",
]

logger = logging.getLogger("sandbox_manager")

AGENT_CONFIG_SCHEMA = "https://opencode.ai/config.json"
AGENT_CONFIG_FILENAME = "opencode.json"
SKILL_DIRNAME = "skill"
SKILL_FILENAME = "SKILL.md"


@dataclass(frozen=True)
class AgentConfig:
    document: Dict[str, Any]
    environment: Dict[str, str] = field(default_factory=dict)
    files: List[FileMaterialization] = field(default_factory=list)


def validate_skill_name(name: str) -> str:
    """
    Skill names become directory names, so only lowercase slugs are accepted.
    """
    if not name or len(name) > 64 or not SLUG_RE.match(name):
        raise ValueError(
            f"Invalid skill name {name!r}: use 1-64 lowercase alphanumerics with single hyphen separators"
        )
    return name


def render_skill_document(skill: SkillRecord) -> str:
    """
    SKILL.md text for a skill: the stored document if present, otherwise a YAML
    front-matter header built from the structured fields followed by the body.
    """
    if skill.content:
        return skill.content
    # Free-text values are emitted as JSON strings, which YAML reads as
    # double-quoted scalars.
    lines = ["---", f"name: {skill.name}", f"description: {json.dumps(skill.description)}"]
    if skill.license:
        lines.append(f"license: {json.dumps(skill.license)}")
    if skill.compatibility:
        lines.append(f"compatibility: {json.dumps(skill.compatibility)}")
    if skill.metadata:
        lines.append("metadata:")
        for key, value in skill.metadata.items():
            lines.append(f"  {json.dumps(key)}: {json.dumps(value)}")
    lines.append("---")
    return "\n".join(lines) + "\n\n" + (skill.body or "")


def _provider_entry(provider: ProviderRecord) -> Dict[str, Any]:
    entry: Dict[str, Any] = {}
    if provider.npm:
        entry["npm"] = provider.npm
    if provider.name:
        entry["name"] = provider.name

    options: Dict[str, Any] = {}
    if provider.base_url:
        options["baseURL"] = provider.base_url
    if provider.env_var_name:
        options["apiKey"] = "{env:%s}" % provider.env_var_name
    if provider.headers:
        options["headers"] = dict(provider.headers)
    if options:
        entry["options"] = options

    models: Dict[str, Any] = {}
    for model in provider.models:
        if not model.is_enabled:
            continue
        spec: Dict[str, Any] = {}
        if model.name:
            spec["name"] = model.name
        if model.options:
            spec["options"] = dict(model.options)
        models[model.model_id] = spec
    if models:
        entry["models"] = models
    return entry


def synthesize_agent_config(owner_config: OwnerConfig, *, config_dir: str) -> AgentConfig:
    """
    Build the agent config document, secret environment and files.

    - Every enabled provider gets an entry; its key is an `{env:VAR}` reference.
    - `model` is set only when exactly one enabled model of an enabled provider
      is marked default.
    - Secrets go to `environment` only for providers that declare a variable and
      have a key.

    Raises:
        ValueError if a skill name is not a valid slug.
    """
    providers: Dict[str, Any] = {}
    enabled: List[str] = []
    disabled: List[str] = []
    environment: Dict[str, str] = {}
    defaults: List[str] = []

    for provider in owner_config.providers:
        if not provider.is_enabled:
            disabled.append(provider.provider_id)
            continue
        enabled.append(provider.provider_id)
        providers[provider.provider_id] = _provider_entry(provider)
        if provider.env_var_name and provider.api_key:
            environment[provider.env_var_name] = provider.api_key
        for model in provider.models:
            if model.is_enabled and model.is_default:
                defaults.append(f"{provider.provider_id}/{model.model_id}")

    document: Dict[str, Any] = {
        "$schema": AGENT_CONFIG_SCHEMA,
        "provider": providers,
        "enabled_providers": enabled,
        "disabled_providers": disabled,
    }
    if len(defaults) == 1:
        document["model"] = defaults[0]
    elif len(defaults) > 1:
        logger.warning("Multiple default models configured (%s); leaving model unset", ", ".join(defaults))

    files = [
        FileMaterialization.from_text(
            posixpath.join(config_dir, AGENT_CONFIG_FILENAME),
            json.dumps(document, indent=2) + "\n",
        )
    ]
    for skill in owner_config.skills:
        name = validate_skill_name(skill.name)
        files.append(
            FileMaterialization.from_text(
                posixpath.join(config_dir, SKILL_DIRNAME, name, SKILL_FILENAME),
                render_skill_document(skill),
            )
        )

    return AgentConfig(document=document, environment=environment, files=files)


def editor_settings() -> Dict[str, Any]:
    """
    Static editor preferences: no telemetry, no update checks, no welcome flow.
    """
    return {
        "workbench.startupEditor": "none",
        "workbench.welcomePage.walkthroughs.openOnInstall": False,
        "workbench.tips.enabled": False,
        "security.workspace.trust.enabled": False,
        "security.workspace.trust.startupPrompt": "never",
        "git.openRepositoryInParentFolders": "always",
        "workbench.colorTheme": "Default Dark Modern",
        "window.autoDetectColorScheme": True,
        "telemetry.telemetryLevel": "off",
        "update.mode": "none",
        "extensions.autoUpdate": False,
        "workbench.secondarySideBar.visible": False,
        "workbench.secondarySideBar.defaultVisibility": "hidden",
        "editor.minimap.enabled": False,
        "workbench.layoutControl.enabled": False,
    }


def editor_settings_file(path: str, uid: int = 1000, gid: int = 1000) -> FileMaterialization:
    return FileMaterialization.from_text(
        path,
        json.dumps(editor_settings(), indent=2) + "\n",
        uid=uid,
        gid=gid,
    )
