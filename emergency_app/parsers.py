"""Parsers that turn raw upstream payloads into EmergencyRecords."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from .classify import classify_phenomenon
from .dates import from_epoch_ms, parse_local_date, utc_now
from .extract import extract_coordinates, extract_district
from .models import AffectedCounts, Coordinates, EmergencyRecord, Location

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "Ubicación desconocida"


# =========================
# Dispatch table (HTML)
# =========================

def _cell_text(cell: Tag, nested: str) -> str:
    """Text of the nested element if it has any, else the whole cell."""
    inner = cell.find(nested)
    if inner is not None:
        text = inner.get_text(" ", strip=True)
        if text:
            return text
    return cell.get_text(" ", strip=True)


def _parse_row(cells: List[Tag], now: Callable[[], datetime]) -> Optional[EmergencyRecord]:
    numparte = _cell_text(cells[0], "span")
    hora_raw = _cell_text(cells[1], "span")
    ubicacion = _cell_text(cells[2], "p")
    tipo = _cell_text(cells[3], "span")

    if not (numparte and ubicacion and tipo):
        return None

    occurred = parse_local_date(hora_raw, now=now)
    return EmergencyRecord(
        id=numparte,
        source_reference_code=numparte,
        # dispatch categories are already the portal's own closed set
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
        occurred_at=occurred.instant,
        occurred_at_is_fallback=occurred.is_fallback,
        source_tag="dispatch-table",
    )


def parse_dispatch_table(html: str, now: Callable[[], datetime] = utc_now) -> List[EmergencyRecord]:
    """Extract records from the portal's 24h table, in row order.

    Bad rows are skipped; a page without the table simply yields [].
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows = soup.select("table tbody tr")
    records: List[EmergencyRecord] = []
    skipped = 0

    for index, row in enumerate(rows):
        try:
            cells = row.find_all("td")
            if len(cells) < 4:
                skipped += 1
                continue
            record = _parse_row(cells, now)
        except Exception as e:
            logger.error(f"[Dispatch] error parsing row {index}: {e}")
            skipped += 1
            continue

        if record is None:
            skipped += 1
            continue
        records.append(record)
        if len(records) <= 3:
            logger.debug(
                f"[Dispatch] parsed {record.id} - {record.classified_type[:30]} at {record.coordinates}"
            )

    logger.info(f"[Dispatch] parsed {len(records)} rows ({skipped} skipped of {len(rows)})")
    return records


# =========================
# Geo-feature service (ArcGIS JSON)
# =========================

def _count(attrs: Dict[str, Any], key: str) -> int:
    try:
        return max(0, int(attrs.get(key) or 0))
    except (TypeError, ValueError):
        return 0


def _feature_coordinates(feature: Dict[str, Any], attrs: Dict[str, Any]) -> Optional[Coordinates]:
    geom = feature.get("geometry") or {}
    lon, lat = geom.get("x"), geom.get("y")
    if lon is None or lat is None:
        lon, lat = attrs.get("NUM_POSX"), attrs.get("NUM_POSY")
    if lon is None or lat is None:
        return None
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        logger.warning(f"[Geo] coordinates out of range ({lat}, {lon}); ignoring")
        return None
    return Coordinates(lat=lat, lon=lon)


def geo_feature_to_record(
    feature: Dict[str, Any], index: int, now: Callable[[], datetime] = utc_now
) -> EmergencyRecord:
    attrs = feature.get("attributes") or {}
    object_id = attrs.get("OBJECTID") or index
    fenomeno = (attrs.get("FENOMENO") or "").strip()
    distrito = (attrs.get("DISTRITO") or "").strip()
    occurred = from_epoch_ms(attrs.get("FECHA"), now=now)

    return EmergencyRecord(
        id=f"indeci-{object_id}",
        source_reference_code=f"INDECI-{object_id}",
        classified_type=classify_phenomenon(fenomeno),
        raw_phenomenon_text=fenomeno,
        description=(attrs.get("DESCRIPCION") or "").strip() or fenomeno,
        location=Location(
            region=(attrs.get("REGION") or "").strip(),
            province=(attrs.get("PROVINCIA") or "").strip(),
            district=distrito,
            free_text_address=distrito or UNKNOWN_ADDRESS,
        ),
        coordinates=_feature_coordinates(feature, attrs),
        occurred_at=occurred.instant,
        occurred_at_is_fallback=occurred.is_fallback,
        affected_counts=AffectedCounts(
            deaths=_count(attrs, "FALLECIDOS"),
            injured=_count(attrs, "HERIDOS"),
            missing=_count(attrs, "DESAPARECIDOS"),
            displaced=_count(attrs, "DAMNIFICADOS"),
            affected_total=_count(attrs, "AFECTADOS_DIRECTOS"),
            housing_units=_count(attrs, "VIVIENDAS_AFECTADAS"),
        ),
        source_tag="geo-feature",
    )


def parse_geo_features(payload: Dict[str, Any], now: Callable[[], datetime] = utc_now) -> List[EmergencyRecord]:
    features = payload.get("features") or []
    records: List[EmergencyRecord] = []
    for idx, feature in enumerate(features):
        try:
            records.append(geo_feature_to_record(feature, idx, now=now))
        except Exception as e:
            logger.error(f"[Geo] skipping feature {idx}: {e}")
    return records
