import unicodedata
from typing import Optional, Sequence, Tuple

UNKNOWN_TYPE = "OTRO"

# Order matters: "LLUVIAS E INUNDACIONES" must land on LLUVIA INTENSA.
PHENOMENON_RULES: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("LLUVIA INTENSA", ("LLUVIA", "TORMENTA")),
    ("DESLIZAMIENTO", ("DESLIZA", "DERRUMBE", "HUAICO", "HUAYCO")),
    ("INUNDACION", ("INUNDA",)),
    ("SISMO", ("SISMO", "TERREMOTO")),
    ("HELADA", ("HELADA", "FRIO")),
    ("SEQUIA", ("SEQUIA", "DEFICIT")),
    ("INCENDIO FORESTAL", ("INCENDIO", "FUEGO")),
    ("VANDALISMO", ("VANDALISMO",)),
    ("ACCIDENTE", ("ACCIDENTE",)),
)


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).upper()


def classify_phenomenon(label: Optional[str]) -> str:
    """Map a free-text phenomenon to a canonical type; unknown labels pass through."""
    if not label or not label.strip():
        return UNKNOWN_TYPE
    folded = _fold(label)
    for canonical, needles in PHENOMENON_RULES:
        if any(n in folded for n in needles):
            return canonical
    return label
