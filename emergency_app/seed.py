"""Synthetic dispatch records served when neither live nor cached data exist."""
from typing import List

from .dates import parse_local_date
from .extract import extract_coordinates, extract_district
from .models import EmergencyRecord, Location

_SEED_ROWS = [
    ("2026001565", "EMERGENCIA MEDICA",
     "AV. SAN FELIPE (-12.0828,-77.0513) Nro. 601 - JESUS MARIA", "12/01/2026 08:30:54 p.m."),
    ("2026001563", "INCENDIO URBANO",
     "Av. Abancay cdra. 5 (-12.0486,-77.0431) - Cercado de Lima", "12/01/2026 02:35:00 p.m."),
    ("2026001561", "ACCIDENTE DE TRANSITO",
     "Av. Javier Prado Este (-12.0893,-76.9981) - San Borja", "12/01/2026 02:28:00 p.m."),
]


def dispatch_seed() -> List[EmergencyRecord]:
    out = []
    for numparte, tipo, ubicacion, hora in _SEED_ROWS:
        out.append(EmergencyRecord(
            id=numparte,
            source_reference_code=numparte,
            classified_type=tipo,
            raw_phenomenon_text=tipo,
            description=f"Reporte {numparte}",
            location=Location(
                region="Lima",
                province="Lima",
                district=extract_district(ubicacion),
                free_text_address=ubicacion,
            ),
            coordinates=extract_coordinates(ubicacion),
            occurred_at=parse_local_date(hora).instant,
            source_tag="dispatch-table",
        ))
    return out
