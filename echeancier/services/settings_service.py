from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[2]


def data_dir() -> Path:
    """Répertoire des données : $ECHEANCIER_DATA_DIR sinon <racine>/data."""
    env_path = os.environ.get("ECHEANCIER_DATA_DIR")
    return Path(env_path) if env_path else ROOT_DIR / "data"


def _load_json(path: os.PathLike | str) -> Any:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable settings file %s (%s), using defaults", p, e)
        return None


class SettingsService:
    """Lecture tolérante de data/settings.json (fichier absent ou corrompu -> valeurs par défaut)."""

    def __init__(self, path: Optional[os.PathLike | str] = None):
        self.path = Path(path) if path else data_dir() / "settings.json"

    def load(self) -> Dict[str, Any]:
        s = _load_json(self.path)
        return s if isinstance(s, dict) else {}

    def _float(self, key: str, default: float) -> float:
        raw = self.load().get(key)
        try:
            return float(raw) if raw not in (None, "") else default
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s in %s: %r", key, self.path, raw)
            return default

    @property
    def default_vat_rate(self) -> float:
        return self._float("tva_pct", 20.0)

    @property
    def default_deposit_pct(self) -> float:
        return self._float("acompte_pct", 30.0)

    @property
    def exports_dir(self) -> Path:
        exports = self.load().get("exports")
        agenda = exports.get("agenda_dir") if isinstance(exports, dict) else None
        return Path(agenda) if agenda else ROOT_DIR / "exports" / "agenda"
