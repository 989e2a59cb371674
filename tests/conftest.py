from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import ELEMENT_DATABASE, openai_config
from variantkit.config.loader import ConfigLoader
from variantkit.core.models import ElementDatabase, PageData
from variantkit.logging.artifacts import ArtifactManager
from variantkit.logging.audit import GenerationAuditLogger


@pytest.fixture()
def pipeline_settings():
    config_path = Path(__file__).resolve().parents[1] / "config" / "pipeline.json"
    return ConfigLoader.load(config_path)


@pytest.fixture()
def element_database():
    return ElementDatabase.model_validate(ELEMENT_DATABASE)


@pytest.fixture()
def page_data(element_database):
    return PageData(element_database=element_database)


@pytest.fixture()
def provider_config():
    return openai_config()


@pytest.fixture()
def artifact_manager(tmp_path):
    return ArtifactManager(tmp_path / "artifacts")


@pytest.fixture()
def audit_logger(tmp_path):
    return GenerationAuditLogger(tmp_path / "artifacts")
