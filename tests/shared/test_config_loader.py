"""Tests for pydantic-settings-backed shared configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from packages.storage_shared.config import load_settings, resolve_component_settings
from resources.adapters.fedora.config import FedoraAdapterSettings
from services.state.payload_storage.config import (
    SERVICE_COMPONENT_ID,
    PayloadStorageSettings,
)


def test_load_settings_uses_storage_precedence_cascade(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Init params should override env, env should override YAML, then defaults."""
    config_file = tmp_path / "storage.yaml"
    config_file.write_text(
        "\n".join(
            [
                "logging:",
                "  level: WARNING",
                "components:",
                "  adapter:",
                "    fedora:",
                "      namespace: fromyaml",
                "      username: yaml-user",
                "  service:",
                "    payload_storage:",
                "      search_page_size: 25",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("FEDORA_STORAGE_LOGGING__LEVEL", "ERROR")
    monkeypatch.setenv("FEDORA_STORAGE_COMPONENTS__ADAPTER__FEDORA__NAMESPACE", "env")

    settings = load_settings(
        cli_params={"logging": {"level": "DEBUG"}},
        config_path=config_file,
    )

    fedora = resolve_component_settings(
        settings=settings,
        component_id="adapter_fedora",
        model=FedoraAdapterSettings,
    )
    service = resolve_component_settings(
        settings=settings,
        component_id=SERVICE_COMPONENT_ID,
        model=PayloadStorageSettings,
    )

    assert settings.logging.level == "DEBUG"
    assert fedora.namespace == "env"
    assert fedora.username == "yaml-user"
    assert service.search_page_size == 25


def test_load_settings_uses_model_defaults_when_sources_missing(tmp_path: Path) -> None:
    """Settings should fall back to model defaults when env and YAML are absent."""
    settings = load_settings(config_path=tmp_path / "storage.yaml")
    fedora = resolve_component_settings(
        settings=settings,
        component_id="adapter_fedora",
        model=FedoraAdapterSettings,
    )

    assert settings.logging.service == "fedora-storage"
    assert settings.logging.level == "INFO"
    assert settings.logging.json_output is True
    assert fedora == FedoraAdapterSettings()


def test_flat_component_keys_are_rejected(tmp_path: Path) -> None:
    """Component settings must be grouped under their kind namespace."""
    with pytest.raises(ValidationError):
        load_settings(
            cli_params={"components": {"adapter_fedora": {"namespace": "x"}}},
            config_path=tmp_path / "storage.yaml",
        )


def test_resolve_component_settings_rejects_unknown_kind(tmp_path: Path) -> None:
    """Component ids must use a known kind prefix."""
    settings = load_settings(config_path=tmp_path / "storage.yaml")

    with pytest.raises(ValueError):
        resolve_component_settings(
            settings=settings,
            component_id="substrate_postgres",
            model=FedoraAdapterSettings,
        )
