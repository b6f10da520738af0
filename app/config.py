"""
Konfiguration - liest Einstellungen aus Umgebungsvariablen bzw. .env-Datei.
"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_TEMPLATE_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)),
    "config",
    "document_template.json"
)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "ja", "on")


class Settings(BaseModel):
    llm_enabled: bool = False
    llm_url: str = "http://localhost:11434"
    llm_model: str = "mistral-small"
    template_path: str = DEFAULT_TEMPLATE_PATH
    max_rounds: int = 8
    activity_threshold: float = 0.7
    log_level: str = "INFO"
    # Referenz- und Ausgabepfade der HTTP-API müssen hier drunter liegen
    workspace_root: str = "."
    cors_origins: List[str] = []

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            llm_enabled=_env_bool("LLM_ENABLED"),
            llm_url=os.getenv("LOCAL_LLM_URL", "http://localhost:11434"),
            llm_model=os.getenv("LOCAL_LLM_MODEL", "mistral-small"),
            template_path=os.getenv("SPEC_TEMPLATE_PATH", DEFAULT_TEMPLATE_PATH),
            max_rounds=int(os.getenv("SPEC_MAX_ROUNDS", "8")),
            activity_threshold=float(os.getenv("ACTIVITY_THRESHOLD", "0.7")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            workspace_root=os.getenv("SPEC_WORKSPACE_ROOT", "."),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
        )


# Singleton-Instanz
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Gibt die Singleton-Instanz der Einstellungen zurück."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
