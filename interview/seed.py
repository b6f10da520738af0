"""
Seed-Verarbeitung: liest Datei oder Beschreibung ein und leitet
erste Fakten für den Entscheidungsstand ab.
"""
import json
import logging
import os
import re
from typing import Dict, Any, Optional, List

from app.models import SeedInput, SeedKind, AnswerValue
from interview.decision_state import Fact, FactSource
from interview.errors import UnresolvableSeedError
from interview.template_schema import DocumentTemplate, EXTRA_FIELDS_SECTION

logger = logging.getLogger(__name__)

RECORD_MARKER = "decision-record:"
RECORD_PATTERN = re.compile(r"<!--\s*decision-record:\s*(\{.*?\})\s*-->", re.DOTALL)
VALUE_LINE_PATTERN = re.compile(r"^- \*\*(?P<label>.+?):\*\* (?P<value>.*)$")


def load_seed_text(seed: SeedInput) -> str:
    """
    Liest den Text des Seeds.

    Raises:
        UnresolvableSeedError: Datei fehlt/ist nicht lesbar oder Beschreibung ist leer
    """
    if seed.kind == SeedKind.DESCRIPTION:
        if not seed.payload.strip():
            raise UnresolvableSeedError(seed.payload, "leere Beschreibung")
        return seed.payload.strip()

    path = os.path.expanduser(seed.payload)
    if not os.path.isfile(path):
        raise UnresolvableSeedError(seed.payload, "Datei nicht gefunden")
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise UnresolvableSeedError(seed.payload, str(e)) from e

    logger.info(f"📄 Seed-Datei gelesen: {path} ({len(text)} Zeichen)")
    return text


def encode_decision_record(record: Dict[str, Any]) -> str:
    """Serialisiert den Entscheidungsdatensatz als HTML-Kommentar (unsichtbar im Markdown)."""
    payload = json.dumps(record, ensure_ascii=False, sort_keys=True)
    payload = payload.replace("-->", "--\\u003e")
    return f"<!-- {RECORD_MARKER} {payload} -->"


def extract_decision_record(text: str) -> Optional[Dict[str, Any]]:
    """
    Sucht den Entscheidungsdatensatz eines früher erzeugten Dokuments.

    Returns:
        Dict mit "facts" und "extra_fields" oder None
    """
    m = RECORD_PATTERN.search(text)
    if not m:
        return None
    try:
        record = json.loads(m.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"⚠️  Entscheidungsdatensatz nicht lesbar, ignoriere ihn: {e}")
        return None
    if not isinstance(record, dict) or not isinstance(record.get("facts", {}), dict):
        logger.warning("⚠️  Entscheidungsdatensatz hat ein unerwartetes Format, ignoriere ihn")
        return None
    extra_fields = record.get("extra_fields", {})
    if not isinstance(extra_fields, dict):
        extra_fields = {}
    return {
        "facts": record.get("facts", {}),
        "extra_fields": {k: v for k, v in extra_fields.items() if isinstance(v, dict)},
    }


def summarize_seed(text: str, max_length: int = 500) -> str:
    """Erster Prosa-Absatz des Seeds, ohne Überschriften und Codeblöcke."""
    text = RECORD_PATTERN.sub("", text)
    in_code = False
    paragraph: List[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("```"):
            in_code = not in_code
            continue
        if in_code or line.startswith("#") or line.startswith("<!--"):
            if paragraph:
                break
            continue
        if not line:
            if paragraph:
                break
            continue
        paragraph.append(line.lstrip("-*> ").strip())

    summary = " ".join(" ".join(paragraph).split())
    if len(summary) > max_length:
        summary = summary[:max_length].rsplit(" ", 1)[0]
    return summary


def format_value(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    # Folgezeilen einrücken, damit der Listeneintrag zusammenbleibt
    return "\n  ".join(str(value).strip().splitlines())


def _normalize(text: str) -> str:
    return "\n".join(line.strip() for line in text.strip().splitlines())


def visible_values(text: str) -> Dict[str, Dict[str, str]]:
    """
    Liest die sichtbaren `- **Label:** Wert`-Zeilen eines gerenderten Dokuments.

    Returns:
        Dict Abschnittstitel -> {Label: Wert}
    """
    sections: Dict[str, Dict[str, str]] = {}
    current: Optional[Dict[str, str]] = None
    label: Optional[str] = None
    for line in RECORD_PATTERN.sub("", text).splitlines():
        if line.startswith("## "):
            current = sections.setdefault(line[3:].strip(), {})
            label = None
            continue
        if current is None:
            continue
        m = VALUE_LINE_PATTERN.match(line)
        if m:
            label = m.group("label")
            current[label] = m.group("value").strip()
        elif label is not None and line.startswith("  "):
            current[label] += "\n" + line.strip()
        else:
            label = None
    return sections


def parse_visible_value(field_def: Dict[str, Any], text: str) -> Optional[AnswerValue]:
    """Wandelt einen sichtbaren Wert zurück; None, wenn er nicht zum Feld passt."""
    field_type = field_def.get("type", "text")
    canonical = {o["label"].lower(): o["label"] for o in field_def.get("options", [])}
    custom = field_type == "text" or bool(field_def.get("allow_custom"))

    def resolve(item: str) -> Optional[str]:
        item = item.strip()
        if not item:
            return None
        if item.lower() in canonical:
            return canonical[item.lower()]
        return item if custom else None

    if field_type == "multiple_choice":
        items = [resolve(i) for i in text.split(",")]
        if not items or any(i is None for i in items):
            return None
        return items
    return resolve(_normalize(text))


def reconcile_record(text: str, record: Dict[str, Any], template: DocumentTemplate) -> Dict[str, AnswerValue]:
    """
    Gleicht den Entscheidungsdatensatz mit dem sichtbaren Dokument ab.

    Sichtbare Zeilen haben Vorrang: geänderte Werte ersetzen den Datensatz,
    gelöschte oder ungültige Zeilen machen das Feld wieder offen.
    Ohne Datensatz (leere facts) werden nur die sichtbaren Werte gelesen.
    """
    facts = dict(record["facts"])
    shown = visible_values(text)

    for section_id, section in template.sections().items():
        title = section.get("title", section_id)
        if not template.is_rendered(section_id) or title not in shown:
            continue
        fields = dict(section.get("fields", {}))
        if section_id == EXTRA_FIELDS_SECTION:
            for field_id, field_def in sorted(record["extra_fields"].items()):
                fields.setdefault(field_id, field_def)

        for field_id, field_def in fields.items():
            visible = shown[title].get(field_def.get("label", field_id))
            if visible is None:
                if not template.is_field_active(dict(field_def, section_id=section_id), facts):
                    continue
                if facts.pop(field_id, None) is not None:
                    logger.info(f"✏️  '{field_id}' wurde aus dem Dokument entfernt und wird erneut gefragt")
                continue
            if field_id in facts and _normalize(visible) == _normalize(format_value(facts[field_id])):
                continue
            value = parse_visible_value(field_def, visible)
            if value is None:
                logger.warning(f"⚠️  Geänderter Wert für '{field_id}' passt nicht zur Vorlage: {visible!r}")
                facts.pop(field_id, None)
                continue
            if field_id in facts:
                logger.info(f"✏️  '{field_id}' im Dokument geändert: {facts[field_id]!r} -> {value!r}")
            facts[field_id] = value
    return facts


def seed_facts(seed: SeedInput, text: str, template: Optional[DocumentTemplate] = None) -> Dict[str, Any]:
    """
    Leitet die Start-Fakten aus dem Seed ab.

    Returns:
        Dict mit "facts" (Liste von Fact), "extra_fields" und "from_record"
    """
    facts: List[Fact] = []
    extra_fields: Dict[str, Dict[str, Any]] = {}

    record = extract_decision_record(text) if seed.kind == SeedKind.REFERENCE else None
    values: Dict[str, Any] = {}
    if record:
        logger.info(f"♻️  Entscheidungsdatensatz gefunden: {len(record['facts'])} Fakten")
        values = reconcile_record(text, record, template) if template is not None else record["facts"]
        extra_fields = record["extra_fields"]
    elif template is not None:
        # Dokument im Vorlagenformat, dessen Datensatz verloren ging
        values = reconcile_record(text, {"facts": {}, "extra_fields": {}}, template)
        if values:
            logger.info(f"📑 {len(values)} Werte aus sichtbaren Abschnitten übernommen")

    for field_id, value in values.items():
        if not (isinstance(value, str) or (isinstance(value, list) and all(isinstance(v, str) for v in value))):
            logger.warning(f"⚠️  Wert für '{field_id}' im Datensatz übersprungen: {value!r}")
            continue
        facts.append(Fact(field_id=field_id, value=value, source=FactSource.SEED))

    if not record and "feature_summary" not in values:
        summary = summarize_seed(text)
        if summary:
            facts.append(Fact(field_id="feature_summary", value=summary, source=FactSource.SEED))

    if seed.kind == SeedKind.REFERENCE:
        # Referenzierte Datei ist zugleich das Ausgabeziel
        facts.append(Fact(field_id="output_path", value=seed.payload, source=FactSource.SEED))

    return {"facts": facts, "extra_fields": extra_fields, "from_record": record is not None}
