"""Staging row construction and validation rules.

Rules run in a fixed order and the first failure wins:

1. required fields (phone always, first name unless FOH)
2. formats (phone 7-15 digits, country code 1-5 digits, email regex, column
   lengths, known role)
3. uniqueness against the tenant's persisted records (phone, then email)
4. uniqueness within the batch (phone, then email)
5. manager reference resolves to a tenant user

A batch collision is decided only by rows with a LOWER row number, valid or
not. A row's verdict therefore depends on its own values plus the rows before
it, which is what makes revalidating a subset equal to revalidating the batch.
"""

import re
import unicodedata
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from crm_api.lib.importer.sniffer import CRM_FIELD_PREFIX, CUSTOM_FIELD_PREFIX
from crm_api.models.user import UserRole

EMAIL_RE = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9._-]+\.[A-Za-z]{2,}$")
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15
PHONE_CODE_MAX_DIGITS = 5
# Widths of the user and prospect columns a committed row is written to
MAX_LENGTHS = {"first_name": 255, "last_name": 255, "email": 255, "manager_email": 255, "codigo": 100}
FOH_EMAIL_DOMAIN = "foh.com"
FOH_DEFAULT_ROLE = "standard"

MSG_PHONE_REQUIRED = "phone: phone is required"
MSG_FIRST_NAME_REQUIRED = "first_name: first name is required"
MSG_PHONE_FORMAT = "phone: invalid phone format"
MSG_PHONE_CODE_FORMAT = "phone_code: invalid country code"
MSG_EMAIL_FORMAT = "email: invalid email format"
MSG_TOO_LONG = "{field}: value exceeds {limit} characters"
MSG_ROLE_UNKNOWN = "role: unknown role"
MSG_PHONE_TAKEN = "phone: phone already registered"
MSG_EMAIL_TAKEN = "email: email already registered"
MSG_PHONE_DUPLICATE = "phone: duplicate phone in batch"
MSG_EMAIL_DUPLICATE = "email: duplicate email in batch"
MSG_MANAGER_MISSING = "manager: assigned manager not found"


class StagingRow(Protocol):
    """Attributes the validator reads from a staged row."""

    row_number: int
    phone: str | None
    phone_code: str | None
    email: str | None
    first_name: str | None
    last_name: str | None
    codigo: str | None
    role: str | None
    manager_email: str | None


@dataclass
class StagedValues:
    """Field values produced from one CSV row under a confirmed mapping."""

    row_number: int
    phone: str | None = None
    phone_code: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    codigo: str | None = None
    role: str | None = None
    manager_email: str | None = None
    phone_order: int | None = None
    custom_fields: dict[str, Any] = field(default_factory=dict)
    crm_fields: dict[str, Any] = field(default_factory=dict)

    def as_model_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for a TempImportUser."""
        return {
            "row_number": self.row_number,
            "phone": self.phone,
            "phone_code": self.phone_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "codigo": self.codigo,
            "role": self.role,
            "manager_email": self.manager_email,
            "phone_order": self.phone_order,
            "custom_fields": self.custom_fields or None,
            "crm_fields": self.crm_fields or None,
        }


@dataclass
class ValidationContext:
    """Tenant state the rules check against.

    Attributes:
        is_foh: FOH imports do not require a first name.
        persisted_phones: Normalized phones already taken in the tenant.
        persisted_emails: Lowercased emails already taken in the tenant.
        known_managers: Lowercased manager references that resolve to a user.
    """

    is_foh: bool = False
    persisted_phones: Collection[str] = frozenset()
    persisted_emails: Collection[str] = frozenset()
    known_managers: Collection[str] = frozenset()


def normalize_phone(value: str | None) -> str | None:
    """Keep digits only and drop leading zeros; None when nothing is left."""
    if value is None:
        return None
    digits = re.sub(r"[^0-9]", "", value).lstrip("0")
    return digits or None


def normalize_email(value: str | None) -> str | None:
    """Trim and lowercase an email; None when blank."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def normalize_reference(value: str | None) -> str | None:
    """Key used to resolve a manager reference (email or username)."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def is_valid_phone(phone: str | None) -> bool:
    return phone is not None and phone.isdigit() and PHONE_MIN_DIGITS <= len(phone) <= PHONE_MAX_DIGITS


def is_valid_email(email: str | None) -> bool:
    return email is not None and EMAIL_RE.match(email) is not None


def is_valid_phone_code(phone_code: str | None) -> bool:
    return phone_code is None or (phone_code.isdigit() and len(phone_code) <= PHONE_CODE_MAX_DIGITS)


def parameterize(value: str | None) -> str:
    """Slug a tenant name for synthesized emails ("Financiera Oh" -> "financiera_oh")."""
    if not value or not value.strip():
        return "import"
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "_", ascii_value.strip().lower()).strip("_")
    return slug or "import"


def synthesized_email(phone: str, *, is_foh: bool, client_name: str | None) -> str:
    """Email derived from the phone for rows that carry none (always, for FOH)."""
    domain = FOH_EMAIL_DOMAIN if is_foh else f"{parameterize(client_name)}.com"
    return f"{phone}@{domain}"


def _clean_cell(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > 1 and cleaned.startswith('"') and cleaned.endswith('"'):
        cleaned = cleaned[1:-1].strip()
    return cleaned or None


def _join(first: str | None, second: str) -> str:
    return f"{first} {second}" if first else second


def build_staging_row(
    values: list[str],
    mapping: Mapping[int, str],
    *,
    row_number: int,
    is_foh: bool = False,
    client_name: str | None = None,
    default_phone_code: str = "51",
) -> StagedValues:
    """Convert one CSV row into staging values.

    Args:
        values: Cells of the row in column order.
        mapping: Confirmed column index -> target field.
        row_number: 1-based data row position.
        is_foh: Apply FOH overrides (derived email, default role, phone order).
        client_name: Tenant name, used to synthesize missing emails.
        default_phone_code: Country code applied when the row has none.

    Returns:
        The staged values, not yet validated.
    """
    staged = StagedValues(row_number=row_number)
    for index in sorted(mapping):
        if index >= len(values):
            continue
        target = mapping[index]
        value = _clean_cell(values[index])
        if value is None:
            continue
        match target:
            case "phone":
                staged.phone = normalize_phone(value)
            case "phone_code":
                staged.phone_code = normalize_phone(value) or value
            case "first_name":
                staged.first_name = value
            case "first_name_2":
                staged.first_name = _join(staged.first_name, value)
            case "last_name":
                staged.last_name = value
            case "last_name_2":
                staged.last_name = _join(staged.last_name, value)
            case "email":
                staged.email = normalize_email(value)
            case "codigo":
                staged.codigo = value
            case "role":
                staged.role = value
            case "manager_email":
                staged.manager_email = value
            case "phone_order":
                if value.isdigit():
                    staged.phone_order = int(value)
            case _ if target.startswith(CUSTOM_FIELD_PREFIX):
                staged.custom_fields[target[len(CUSTOM_FIELD_PREFIX) :]] = value
            case _ if target.startswith(CRM_FIELD_PREFIX):
                staged.crm_fields[target[len(CRM_FIELD_PREFIX) :]] = value
            case _:
                staged.custom_fields[target] = value

    if not staged.phone_code:
        staged.phone_code = default_phone_code

    if is_foh:
        if staged.phone:
            staged.email = synthesized_email(staged.phone, is_foh=True, client_name=client_name)
        if not staged.role:
            staged.role = FOH_DEFAULT_ROLE
        if staged.phone_order is None:
            staged.phone_order = row_number
    elif not staged.email and staged.phone:
        staged.email = synthesized_email(staged.phone, is_foh=False, client_name=client_name)

    return staged


def check_row(
    row: StagingRow,
    context: ValidationContext,
    *,
    earlier_phones: Collection[str] = frozenset(),
    earlier_emails: Collection[str] = frozenset(),
) -> str | None:
    """Apply the rules to one row.

    Args:
        row: The staged row.
        context: Tenant state.
        earlier_phones: Phones carried by rows with a lower row number.
        earlier_emails: Emails carried by rows with a lower row number.

    Returns:
        The first failing rule's message, or None when the row is valid.
    """
    phone = row.phone
    email = normalize_email(row.email)

    if not phone:
        return MSG_PHONE_REQUIRED
    if not context.is_foh and not (row.first_name and row.first_name.strip()):
        return MSG_FIRST_NAME_REQUIRED

    if not is_valid_phone(phone):
        return MSG_PHONE_FORMAT
    if not is_valid_phone_code(row.phone_code):
        return MSG_PHONE_CODE_FORMAT
    if email is not None and not is_valid_email(email):
        return MSG_EMAIL_FORMAT
    for name, limit in MAX_LENGTHS.items():
        value = getattr(row, name)
        if value is not None and len(value) > limit:
            return MSG_TOO_LONG.format(field=name, limit=limit)
    if row.role and UserRole.parse(row.role) is None:
        return MSG_ROLE_UNKNOWN

    if phone in context.persisted_phones:
        return MSG_PHONE_TAKEN
    if email is not None and email in context.persisted_emails:
        return MSG_EMAIL_TAKEN

    if phone in earlier_phones:
        return MSG_PHONE_DUPLICATE
    if email is not None and email in earlier_emails:
        return MSG_EMAIL_DUPLICATE

    manager = normalize_reference(row.manager_email)
    if manager is not None and manager not in context.known_managers:
        return MSG_MANAGER_MISSING
    return None


def evaluate_rows(
    rows: Iterable[StagingRow],
    context: ValidationContext,
    *,
    targets: Collection[int] | None = None,
) -> dict[int, str | None]:
    """Validate rows in row-number order.

    ``rows`` must contain every row that shares a phone or email with a
    target row, otherwise batch duplicates can be missed.

    Args:
        rows: Staged rows of one import (any order).
        context: Tenant state.
        targets: Row numbers to report on; all rows when None.

    Returns:
        Mapping of row number to error message (None for valid rows).
    """
    seen_phones: set[str] = set()
    seen_emails: set[str] = set()
    verdicts: dict[int, str | None] = {}
    for row in sorted(rows, key=lambda r: r.row_number):
        if targets is None or row.row_number in targets:
            verdicts[row.row_number] = check_row(
                row, context, earlier_phones=seen_phones, earlier_emails=seen_emails
            )
        if row.phone:
            seen_phones.add(row.phone)
        email = normalize_email(row.email)
        if email:
            seen_emails.add(email)
    return verdicts
