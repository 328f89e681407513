"""Header sniffing: propose a target field for each CSV column.

Matching is driven by an ordered alias dictionary. Every header is normalized
(accents stripped, lowercased, separators collapsed to ``_``) and compared
against the aliases of each field in dictionary order, first by exact match
and then by token match so ``telefono_movil`` or ``phone1`` still resolve.
"""

import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

CUSTOM_FIELD_PREFIX = "custom_field:"
CRM_FIELD_PREFIX = "crm_"
IGNORE = "ignore"

# Ordered: earlier fields win ties.
FIELD_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("phone", ("phone", "telefono", "celular", "movil", "mobile", "cel", "whatsapp")),
    ("phone_code", ("phone_code", "codigo_pais", "country_code", "cod_pais")),
    ("first_name_2", ("first_name_2", "segundo_nombre", "second_name", "middle_name")),
    ("first_name", ("first_name", "nombre", "nombres", "name")),
    ("last_name_2", ("last_name_2", "apellido_m", "apellido_materno", "second_last_name")),
    ("last_name", ("last_name", "apellido", "apellidos", "surname", "apellido_p", "apellido_paterno")),
    ("email", ("email", "correo", "mail", "e_mail", "correo_electronico")),
    ("codigo", ("codigo", "code", "employee_code")),
    ("role", ("role", "rol")),
    ("manager_email", ("manager_email", "manager", "jefe", "supervisor", "ejecutivo")),
)

FOH_AGENT_MARKERS: tuple[str, ...] = ("agent", "agente", "ejecutivo")
FOH_ORDER_MARKERS: tuple[str, ...] = ("orden", "order")

STANDARD_FIELDS: frozenset[str] = frozenset(
    {name for name, _ in FIELD_ALIASES} | {"phone_order"}
)

_NON_WORD = re.compile(r"[^a-z0-9_]")
_UNDERSCORES = re.compile(r"_+")


@dataclass
class UnmatchedColumn:
    """A header with no suggestion, left for manual mapping."""

    index: int
    name: str

    def as_dict(self) -> dict[str, int | str]:
        return {"index": self.index, "name": self.name}


@dataclass
class SniffResult:
    """Suggested mapping keyed by column index plus the columns left over."""

    suggestions: dict[int, str] = field(default_factory=dict)
    unmatched: list[UnmatchedColumn] = field(default_factory=list)


def strip_accents(value: str) -> str:
    """Remove combining marks (``á`` -> ``a``, ``ñ`` -> ``n``)."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_header(header: str) -> str:
    """Normalize a header for alias matching.

    Args:
        header: Raw header text.

    Returns:
        Lowercase ASCII with spaces/hyphens turned into single underscores.
    """
    value = strip_accents(header).lower().strip()
    value = value.replace(" ", "_").replace("-", "_")
    value = _NON_WORD.sub("", value)
    return _UNDERSCORES.sub("_", value).strip("_")


def _tokens(normalized: str) -> list[str]:
    return [t for t in (part.rstrip("0123456789") for part in normalized.split("_")) if t]


def _contains_run(tokens: list[str], alias_tokens: list[str]) -> bool:
    size = len(alias_tokens)
    return any(tokens[i : i + size] == alias_tokens for i in range(len(tokens) - size + 1))


def match_field(header: str) -> str | None:
    """Return the standard field a header refers to, or None.

    Exact normalized matches are tried across the whole dictionary before
    any token match, so ``apellido_m`` never falls through to ``last_name``.
    """
    normalized = normalize_header(header)
    if not normalized:
        return None
    stripped = normalized.rstrip("0123456789").rstrip("_")
    for target, aliases in FIELD_ALIASES:
        if normalized in aliases or stripped in aliases:
            return target
    tokens = _tokens(normalized)
    for target, aliases in FIELD_ALIASES:
        for alias in aliases:
            if _contains_run(tokens, alias.split("_")):
                return target
    return None


def _foh_field(normalized: str) -> str | None:
    if any(marker in normalized for marker in FOH_AGENT_MARKERS):
        return "manager_email"
    if any(marker in normalized for marker in FOH_ORDER_MARKERS):
        return "phone_order"
    return None


def sniff_headers(
    headers: list[str],
    *,
    is_foh: bool = False,
    custom_labels: Iterable[str] = (),
) -> SniffResult:
    """Propose a mapping for an ordered header row.

    Args:
        headers: Header cells in file order.
        is_foh: Apply the FOH agent/order column rules first.
        custom_labels: The tenant's known custom field labels.

    Returns:
        SniffResult with suggestions and unmatched columns.
    """
    known_labels = {label.strip().lower() for label in custom_labels}
    result = SniffResult()
    for index, raw in enumerate(headers):
        header = raw.strip()
        normalized = normalize_header(header)
        if not normalized:
            continue
        target = _foh_field(normalized) if is_foh else None
        if target is None:
            target = match_field(header)
        if target is None and header.lower() in known_labels:
            target = f"{CUSTOM_FIELD_PREFIX}{header}"
        if target is None:
            result.unmatched.append(UnmatchedColumn(index=index, name=header))
            continue
        result.suggestions[index] = target
    return result


def display_suggestion(target: str | None) -> str | None:
    """Collapse ``custom_field:<label>`` to ``custom_field`` for the mapping UI."""
    if target is not None and target.startswith(CUSTOM_FIELD_PREFIX):
        return "custom_field"
    return target


def header_key(header: str) -> str:
    """Comparison key for template matching: trimmed and case-folded."""
    return header.strip().casefold()


def mapping_from_template(headers: list[str], template_mapping: Mapping[str, str]) -> dict[int, str]:
    """Translate a template's header->field mapping onto column indices.

    Args:
        headers: Header row of the new upload.
        template_mapping: Stored mapping keyed by header text.

    Returns:
        Mapping of column index to field for headers the template knows.
    """
    by_key = {header_key(name): target for name, target in template_mapping.items()}
    mapping: dict[int, str] = {}
    for index, header in enumerate(headers):
        target = by_key.get(header_key(header))
        if target and target != IGNORE:
            mapping[index] = target
    return mapping


def clean_mapping(raw: Mapping[str | int, str | None], column_count: int) -> dict[int, str]:
    """Normalize a confirmed mapping from the UI.

    Keys are column indices (strings from JSON). Blank, ``ignore`` and
    ``unmatched_*`` targets are dropped, as are indices outside the header.

    Args:
        raw: Column index -> target field.
        column_count: Number of header columns.

    Returns:
        Mapping of int column index to target field.

    Raises:
        ValueError: If a key is not an integer index.
    """
    mapping: dict[int, str] = {}
    for key, target in raw.items():
        try:
            index = int(key)
        except (TypeError, ValueError) as exc:
            msg = f"Invalid column index: {key!r}"
            raise ValueError(msg) from exc
        if target is None:
            continue
        target = target.strip()
        if not target or target == IGNORE or target.startswith("unmatched_"):
            continue
        if 0 <= index < column_count:
            mapping[index] = target
    return mapping
