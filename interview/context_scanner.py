"""
Codebase-Scanner: sammelt ableitbare Fakten aus einem Zielprojekt
(Framework, Testframework, vorhandene Schichten).
"""
import json
import logging
import os
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

# Verzeichnis -> Komponente, die im Projekt bereits etabliert ist
LAYER_DIRS = {
    "app/Http/Controllers": "Controller",
    "app/Http/Requests": "Form Request",
    "app/Actions": "Action class",
    "app/Models": "Model",
    "app/Jobs": "Job",
    "app/Listeners": "Event/Listener",
    "app/Http/Middleware": "Middleware",
    "app/Services": "Service class",
    "app/Console/Commands": "Console command",
    "app/Livewire": "Blade/Livewire component",
    "app/View/Components": "Blade/Livewire component",
    "resources/views": "Blade/Livewire component",
}


def _read_json(path: str) -> Optional[Dict[str, Any]]:
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"⚠️  {path} nicht lesbar: {e}")
        return None


def _composer_packages(root: str) -> Dict[str, str]:
    composer = _read_json(os.path.join(root, "composer.json")) or {}
    packages: Dict[str, str] = {}
    for section in ("require", "require-dev"):
        payload = composer.get(section)
        if isinstance(payload, dict):
            for name, version in payload.items():
                packages[str(name)] = str(version)
    return packages


def scan_codebase(root: Optional[str]) -> Dict[str, Any]:
    """
    Untersucht ein Projektverzeichnis.

    Returns:
        Dictionary mit evidence (Liste), facts (field_id -> Wert)
        und recommendations (field_id -> Liste von Labels)
    """
    result: Dict[str, Any] = {"root": root, "evidence": [], "facts": {}, "recommendations": {}}
    if not root:
        return result
    if not os.path.isdir(root):
        logger.warning(f"⚠️  Codebase-Verzeichnis nicht gefunden: {root}")
        return result

    evidence: List[str] = []
    packages = _composer_packages(root)

    if "laravel/framework" in packages or os.path.isfile(os.path.join(root, "artisan")):
        evidence.append("framework:laravel")
        result["framework"] = "Laravel"

    # Testframework: Pest hat Vorrang vor reinem PHPUnit
    if "pestphp/pest" in packages or os.path.isfile(os.path.join(root, "tests", "Pest.php")):
        evidence.append("tests:pest")
        result["facts"]["test_framework"] = "Pest"
    elif "phpunit/phpunit" in packages or os.path.isfile(os.path.join(root, "phpunit.xml")):
        evidence.append("tests:phpunit")
        result["facts"]["test_framework"] = "PHPUnit"

    components: List[str] = []
    for rel, component in LAYER_DIRS.items():
        if os.path.isdir(os.path.join(root, *rel.split("/"))):
            evidence.append(f"dir:{rel}")
            if component not in components:
                components.append(component)
    if components:
        result["existing_components"] = components

    if os.path.isdir(os.path.join(root, "database", "migrations")):
        evidence.append("dir:database/migrations")
    if os.path.isfile(os.path.join(root, "routes", "api.php")):
        evidence.append("file:routes/api.php")
        if "laravel/sanctum" in packages:
            evidence.append("package:laravel/sanctum")
            result["recommendations"]["authentication"] = ["API token (Sanctum)"]

    result["evidence"] = sorted(evidence)
    logger.info(f"🔎 Codebase gescannt: {root} ({len(evidence)} Hinweise)")
    return result
