"""
Fixtures compartilhadas dos testes.

Provides:
    - data_dir: diretório temporário de dados para cada teste (autouse)
    - seeded: base de demonstração carregada (módulos, clientes, técnicos, turmas)
    - client: TestClient da API com a base de demonstração
"""

import pytest
from fastapi.testclient import TestClient

from scheduling.config import get_settings
from scheduling.seed import seed_demo_data
from scheduling.storage import init_storage


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Cada teste grava em seu próprio diretório de dados."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SEED_DEMO_DATA", "false")
    monkeypatch.setenv("INSTALLATION_MODULE_CODE", "MOD-01")
    monkeypatch.setenv("ENVIRONMENT", "local")
    get_settings.cache_clear()
    init_storage()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture()
def seeded(data_dir):
    assert seed_demo_data() is True
    return data_dir


@pytest.fixture()
def client(data_dir, monkeypatch):
    monkeypatch.setenv("SEED_DEMO_DATA", "true")
    get_settings.cache_clear()

    from app.main import app

    with TestClient(app) as test_client:
        yield test_client


# ── Helpers ───────────────────────────────────────────────────────────────


def block(module_id, order, start, duration):
    return {
        "module_id": module_id,
        "order_in_cohort": order,
        "start_day_offset": start,
        "duration_days": duration,
    }


def cohort_draft(**overrides):
    draft = {
        "code": "TUR-900",
        "name": "Turma de teste",
        "start_date": "2026-03-09",
        "technician_id": None,
        "status": "Planejada",
        "capacity_companies": 5,
        "blocks": [block("mod-02", 1, 1, 3), block("mod-03", 2, 4, 2)],
    }
    draft.update(overrides)
    return draft
