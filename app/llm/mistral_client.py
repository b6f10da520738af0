import logging
from typing import List, Optional, Dict, Any

import requests
from pydantic import BaseModel, Field

from app.config import Settings

logger = logging.getLogger(__name__)


class LLMReply(BaseModel):
    """Antworttext des Modells samt Token-Verbrauch (soweit vom Server gemeldet)."""
    content: str
    model: str
    usage: Dict[str, Any] = Field(default_factory=dict)


class MistralClient:
    """
    Client für ein lokales Mistral-Modell (Ollama, LM Studio, vLLM).

    Wird nur für optionale Hilfsaufgaben genutzt: Frageformulierung,
    Aktivitätsklassifikation, Themenvorschläge und Feldextraktion.
    Fehler werden als RuntimeError gemeldet; Aufrufer fallen dann auf
    deterministisches Verhalten zurück.
    """
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "mistral-small",
        timeout: int = 120
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

        # Erkenne Server-Typ anhand der URL
        self._is_ollama = "11434" in self.base_url or "ollama" in self.base_url.lower()

        if self._is_ollama:
            self._chat_endpoint = f"{self.base_url}/api/chat"
        else:
            # OpenAI-kompatible API (LM Studio, vLLM, etc.)
            self._chat_endpoint = f"{self.base_url}/v1/chat/completions"

        logger.info(f"🤖 LLM-Client: {self.model} @ {self._chat_endpoint}")

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["MistralClient"]:
        """Erzeugt einen Client, falls das LLM in der Konfiguration aktiviert ist."""
        if not settings.llm_enabled:
            return None
        return cls(base_url=settings.llm_url, model=settings.llm_model)

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: Optional[Dict[str, Any]] = None,
    ) -> LLMReply:
        """Sendet eine Chat-Completion-Anfrage an das lokale Modell."""
        if self._is_ollama:
            payload: Dict[str, Any] = {
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": temperature},
            }
            if max_tokens is not None:
                payload["options"]["num_predict"] = max_tokens
            if json_mode is not None:
                payload["format"] = "json"
        else:
            payload = {
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
                "stream": False,
            }
            if max_tokens is not None:
                payload["max_tokens"] = max_tokens
            if json_mode is not None:
                payload["response_format"] = json_mode

        data = self._post(payload)

        if self._is_ollama:
            content = data.get("message", {}).get("content", "")
            usage = {
                "prompt_tokens": data.get("prompt_eval_count", 0),
                "completion_tokens": data.get("eval_count", 0),
            }
        else:
            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as e:
                raise RuntimeError(f"Unerwartete Antwort vom LLM-Server: {data}") from e
            usage = data.get("usage", {})

        return LLMReply(content=content or "", model=self.model, usage=usage)

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                self._chat_endpoint,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.ConnectionError as e:
            raise RuntimeError(
                f"Verbindung zu {self.base_url} fehlgeschlagen. "
                f"Läuft der lokale LLM-Server?"
            ) from e
        except requests.exceptions.Timeout as e:
            raise RuntimeError("Timeout bei der Anfrage an das lokale Modell.") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise RuntimeError(f"Fehler bei lokaler LLM-Anfrage: {e}") from e

    def is_available(self) -> bool:
        """Prüft, ob der lokale LLM-Server erreichbar ist."""
        url = f"{self.base_url}/api/tags" if self._is_ollama else f"{self.base_url}/v1/models"
        try:
            return requests.get(url, timeout=5).status_code == 200
        except requests.exceptions.RequestException:
            return False
