from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuração da aplicação (variáveis de ambiente ou arquivo .env)."""

    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Diretório dos arquivos JSON de registros
    DATA_DIR: Path = Path("data")

    # Módulo global de instalação (pré-requisito implícito de todos os outros)
    INSTALLATION_MODULE_CODE: str = "MOD-01"

    SEED_DEMO_DATA: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("INSTALLATION_MODULE_CODE")
    @classmethod
    def normalize_installation_code(cls, v: str) -> str:
        return v.strip().upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()
