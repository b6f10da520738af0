import json
from typing import Dict, Any

from interview.errors import TemplateError

FIELD_TYPES = ("text", "choice", "multiple_choice")


class TemplateRepo:
    def __init__(self, path: str):
        self.path = path
        try:
            with open(path, "r", encoding="utf-8") as f:
                self.config: Dict[str, Any] = json.load(f)
        except FileNotFoundError as e:
            raise TemplateError(f"Vorlage nicht gefunden: {path}") from e
        except json.JSONDecodeError as e:
            raise TemplateError(f"Vorlage ist kein gültiges JSON: {path} ({e})") from e
        self._validate()

    def _validate(self):
        sections = self.config.get("sections")
        if not isinstance(sections, dict) or not sections:
            raise TemplateError(f"Vorlage ohne Abschnitte: {self.path}")
        seen = set()
        for section_id, section in sections.items():
            for field_id, field_def in section.get("fields", {}).items():
                if field_id in seen:
                    raise TemplateError(f"Feld '{field_id}' ist mehrfach definiert")
                seen.add(field_id)
                if field_def.get("type", "text") not in FIELD_TYPES:
                    raise TemplateError(f"Unbekannter Feldtyp bei '{field_id}': {field_def.get('type')}")
                if field_def.get("type") in ("choice", "multiple_choice") and not field_def.get("options"):
                    raise TemplateError(f"Auswahlfeld '{field_id}' ohne Optionen")

    def name(self) -> str:
        return self.config.get("template_name", "Specification")

    def activity_field(self) -> str:
        return self.config.get("activity_field", "activity_kind")

    def sections(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.config.get("sections", {}))
