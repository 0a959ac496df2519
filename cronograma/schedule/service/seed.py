"""YAML seed document used to initialize empty slots.

The seed file (seed.yaml) is user-editable: it has the same shape as a slot
document (instructors, scheduleRows, globalConfig). If it does not exist the
built-in sample schedule is written there on first start.
"""
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from ..models import Snapshot

logger = logger.bind(module="schedule.seed")

_HEADER = (
    "# Cronograma seed schedule\n"
    "# Used only to initialize empty draft/published slots.\n"
    "# Day keys may be ISO dates (2024-06-25) or legacy day numbers ('25').\n\n"
)

DEFAULT_SEED: dict[str, Any] = {
    "instructors": [
        {"id": "instructor-1", "name": "JUAN PABLO HERNANDEZ", "city": "Bucaramanga", "regional": "BUCARAMANGA"},
        {"id": "instructor-2", "name": "ZULAY VERA", "city": "Cúcuta", "regional": "NORTE"},
    ],
    "scheduleRows": [
        {
            "id": "instructor-1",
            "instructor": "JUAN PABLO HERNANDEZ",
            "city": "Bucaramanga",
            "regional": "BUCARAMANGA",
            "events": {
                "25": [{"id": "evt-1", "title": "ESCUELA DE PROMOTORES", "details": "Módulo Formativo Líquidos",
                        "time": "Presencial - 8:00 a.m. a 5:00 p.m.", "location": "Bucaramanga", "color": "#d42639"}],
                "26": [{"id": "evt-2", "title": "ESCUELA DE PROMOTORES", "details": "Módulo de Lubricantes",
                        "time": "Presencial - 8:00 a.m. a 5:00 p.m.", "location": "Bucaramanga", "color": "#d42639"}],
                "27": [{"id": "evt-3", "title": "ESCUELA DE PROMOTORES", "details": "Módulo A Tu Servicio",
                        "time": "Presencial - 8:00 a.m. a 5:00 p.m.", "location": "Bucaramanga", "color": "#d42639"}],
            },
        },
        {
            "id": "instructor-2",
            "instructor": "ZULAY VERA",
            "city": "Cúcuta",
            "regional": "NORTE",
            "events": {
                "26": [{"id": "evt-4", "title": "NUEVO PROTOCOLO DE SERVICIO TERPEL",
                        "details": ["Sesión Virtual 1 - 8:00 a.m. a 9:30 a.m.",
                                    "Sesión Virtual 2 - 10:30 a.m. a 12:00 p.m.",
                                    "Sesión Virtual 3 - 2:30 p.m. a 4:00 p.m."],
                        "location": "Todas las Regionales", "color": "#f46780", "modality": "Virtual"}],
                "27": [{"id": "evt-5", "title": "VIVE TERPEL - VIVEPITS",
                        "details": ["Sesión Virtual 1 - 8:00 a.m. a 9:30 a.m.",
                                    "Sesión Virtual 2 - 10:30 a.m. a 12:00 p.m.",
                                    "Sesión Virtual 3 - 2:30 p.m. a 4:00 p.m."],
                        "location": "Todas las Regionales", "color": "#f46780", "modality": "Virtual"}],
            },
        },
    ],
    "globalConfig": {
        "title": "Cronograma 2024",
        "titlesByWindow": {},
        "currentWindow": {"startDate": "2024-06-24", "endDate": "2024-06-28"},
        "viewMode": "weekly",
    },
}


def default_seed() -> Snapshot:
    return Snapshot.from_dict(DEFAULT_SEED)


def load_seed(path: str | Path) -> Snapshot:
    """Load the seed file, writing the built-in sample if it is missing."""
    path = Path(path).expanduser()
    if not path.exists():
        snapshot = default_seed()
        write_seed(path, snapshot)
        logger.info(f"Wrote default seed to {path}")
        return snapshot

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    snapshot = Snapshot.from_dict(data)
    logger.info(
        f"Loaded seed from {path}: {len(snapshot.instructors)} instructors, "
        f"{sum(r.event_count() for r in snapshot.rows)} events"
    )
    return snapshot


def write_seed(path: str | Path, snapshot: Snapshot) -> None:
    """Write a snapshot as a seed file (atomic)."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = snapshot.to_dict()
    data.pop("lastUpdated", None)

    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        f.write(_HEADER)
        yaml.dump(
            data,
            f,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )
    temp_path.replace(path)
