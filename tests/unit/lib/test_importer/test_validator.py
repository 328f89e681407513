"""Unit tests for staging row construction and validation rules."""

from types import SimpleNamespace

import pytest

from crm_api.lib.importer.validator import (
    MSG_EMAIL_DUPLICATE,
    MSG_EMAIL_FORMAT,
    MSG_EMAIL_TAKEN,
    MSG_FIRST_NAME_REQUIRED,
    MSG_MANAGER_MISSING,
    MSG_PHONE_CODE_FORMAT,
    MSG_PHONE_DUPLICATE,
    MSG_PHONE_FORMAT,
    MSG_PHONE_REQUIRED,
    MSG_PHONE_TAKEN,
    MSG_ROLE_UNKNOWN,
    ValidationContext,
    build_staging_row,
    check_row,
    evaluate_rows,
    normalize_email,
    normalize_phone,
    parameterize,
    synthesized_email,
)


def _row(row_number: int = 1, **overrides) -> SimpleNamespace:
    values = {
        "row_number": row_number,
        "phone": "51999999991",
        "phone_code": "51",
        "email": None,
        "first_name": "Ana",
        "last_name": None,
        "codigo": None,
        "role": None,
        "manager_email": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestNormalizers:
    def test_phone_keeps_digits_without_leading_zeros(self) -> None:
        assert normalize_phone("+51 (999) 999-991") == "51999999991"
        assert normalize_phone("0987654321") == "987654321"

    def test_phone_without_digits(self) -> None:
        assert normalize_phone("000") is None
        assert normalize_phone("n/a") is None
        assert normalize_phone(None) is None

    def test_email(self) -> None:
        assert normalize_email("  Ana@Mail.COM ") == "ana@mail.com"
        assert normalize_email("   ") is None

    def test_parameterize(self) -> None:
        assert parameterize("Financiera Oh") == "financiera_oh"
        assert parameterize("Café & Co.") == "cafe_co"
        assert parameterize(None) == "import"

    def test_synthesized_email(self) -> None:
        assert synthesized_email("987654321", is_foh=True, client_name="Financiera Oh") == "987654321@foh.com"
        assert synthesized_email("987654321", is_foh=False, client_name="Financiera Oh") == "987654321@financiera_oh.com"


class TestBuildStagingRow:
    """Tests for turning CSV cells into staging values."""

    def test_user_row_joins_second_surname_and_synthesizes_email(self) -> None:
        staged = build_staging_row(
            ["Perez", "Gomez", "Juan", "987654321", "", "jefe@financiera.pe"],
            {0: "last_name", 1: "last_name_2", 2: "first_name", 3: "phone", 4: "email", 5: "manager_email"},
            row_number=1,
            client_name="Financiera Oh",
        )
        assert staged.last_name == "Perez Gomez"
        assert staged.first_name == "Juan"
        assert staged.phone == "987654321"
        assert staged.phone_code == "51"
        assert staged.email == "987654321@financiera_oh.com"
        assert staged.manager_email == "jefe@financiera.pe"

    def test_foh_row_overrides(self) -> None:
        staged = build_staging_row(
            ["987654321", "ANDREA GARCIA", "ana@mail.com"],
            {0: "phone", 1: "manager_email", 2: "email"},
            row_number=3,
            is_foh=True,
        )
        assert staged.email == "987654321@foh.com"
        assert staged.role == "standard"
        assert staged.phone_order == 3

    def test_foh_explicit_phone_order(self) -> None:
        staged = build_staging_row(["987654321", "7"], {0: "phone", 1: "phone_order"}, row_number=1, is_foh=True)
        assert staged.phone_order == 7

    def test_custom_and_crm_fields(self) -> None:
        staged = build_staging_row(
            ["987654321", "Lima", "A", "x", ""],
            {0: "phone", 1: "custom_field:Sede", 2: "crm_segment", 3: "whatever", 4: "custom_field:Vacio"},
            row_number=1,
        )
        assert staged.custom_fields == {"Sede": "Lima", "whatever": "x"}
        assert staged.crm_fields == {"segment": "A"}
        kwargs = staged.as_model_kwargs()
        assert kwargs["custom_fields"] == {"Sede": "Lima", "whatever": "x"}

    def test_explicit_phone_code_and_email(self) -> None:
        staged = build_staging_row(
            ["+1", "5551234567", "Ana@Mail.com"],
            {0: "phone_code", 1: "phone", 2: "email"},
            row_number=1,
            default_phone_code="51",
        )
        assert staged.phone_code == "1"
        assert staged.email == "ana@mail.com"

    def test_missing_cells_are_ignored(self) -> None:
        staged = build_staging_row(["987654321"], {0: "phone", 3: "first_name"}, row_number=2)
        assert staged.first_name is None
        assert staged.row_number == 2


class TestCheckRow:
    """Tests for rule order: first failure wins."""

    def test_valid_row(self) -> None:
        assert check_row(_row(), ValidationContext()) is None

    def test_phone_required_before_first_name(self) -> None:
        assert check_row(_row(phone=None, first_name=None), ValidationContext()) == MSG_PHONE_REQUIRED

    def test_first_name_required_except_foh(self) -> None:
        assert check_row(_row(first_name=" "), ValidationContext()) == MSG_FIRST_NAME_REQUIRED
        assert check_row(_row(first_name=None), ValidationContext(is_foh=True)) is None

    @pytest.mark.parametrize("phone", ["123456", "1234567890123456", "12ab567"])
    def test_phone_format(self, phone: str) -> None:
        assert check_row(_row(phone=phone), ValidationContext()) == MSG_PHONE_FORMAT

    def test_email_format(self) -> None:
        assert check_row(_row(email="not-an-email"), ValidationContext()) == MSG_EMAIL_FORMAT

    @pytest.mark.parametrize("phone_code", ["123456", "5a", "+51"])
    def test_phone_code_format(self, phone_code: str) -> None:
        assert check_row(_row(phone_code=phone_code), ValidationContext()) == MSG_PHONE_CODE_FORMAT

    def test_phone_code_checked_before_email(self) -> None:
        row = _row(phone_code="999999", email="not-an-email")
        assert check_row(row, ValidationContext()) == MSG_PHONE_CODE_FORMAT

    @pytest.mark.parametrize(
        ("field", "limit"),
        [("first_name", 255), ("last_name", 255), ("manager_email", 255), ("codigo", 100)],
    )
    def test_values_longer_than_their_column(self, field: str, limit: int) -> None:
        assert check_row(_row(**{field: "x" * limit}), ValidationContext(known_managers={"x" * 255})) is None
        assert (
            check_row(_row(**{field: "x" * (limit + 1)}), ValidationContext())
            == f"{field}: value exceeds {limit} characters"
        )

    def test_overlong_email_is_reported_as_too_long(self) -> None:
        email = "a" * 250 + "@mail.com"
        assert check_row(_row(email=email), ValidationContext()) == "email: value exceeds 255 characters"

    def test_role_must_be_known(self) -> None:
        assert check_row(_row(role="Gerente"), ValidationContext()) == MSG_ROLE_UNKNOWN
        assert check_row(_row(role="super-admin"), ValidationContext()) is None
        assert check_row(_row(role="AGENT"), ValidationContext()) is None

    def test_persisted_phone_beats_batch_duplicate(self) -> None:
        context = ValidationContext(persisted_phones={"51999999991"})
        assert check_row(_row(), context, earlier_phones={"51999999991"}) == MSG_PHONE_TAKEN

    def test_persisted_email_is_case_insensitive(self) -> None:
        context = ValidationContext(persisted_emails={"ana@mail.com"})
        assert check_row(_row(email="ANA@mail.com"), context) == MSG_EMAIL_TAKEN

    def test_batch_duplicates(self) -> None:
        context = ValidationContext()
        assert check_row(_row(), context, earlier_phones={"51999999991"}) == MSG_PHONE_DUPLICATE
        assert check_row(_row(email="ana@mail.com"), context, earlier_emails={"ana@mail.com"}) == MSG_EMAIL_DUPLICATE

    def test_manager_reference(self) -> None:
        context = ValidationContext(known_managers={"jefe@financiera.pe"})
        assert check_row(_row(manager_email="Jefe@Financiera.pe"), context) is None
        assert check_row(_row(manager_email="nadie@financiera.pe"), context) == MSG_MANAGER_MISSING


class TestEvaluateRows:
    """Tests for batch evaluation in row-number order."""

    def test_second_occurrence_is_the_duplicate(self) -> None:
        rows = [_row(2, first_name="Ana2"), _row(1, first_name="Ana")]
        verdicts = evaluate_rows(rows, ValidationContext())
        assert verdicts[1] is None
        assert MSG_PHONE_DUPLICATE in verdicts[2]

    def test_invalid_earlier_row_still_claims_its_phone(self) -> None:
        rows = [_row(1, first_name=None), _row(2)]
        verdicts = evaluate_rows(rows, ValidationContext())
        assert verdicts == {1: MSG_FIRST_NAME_REQUIRED, 2: MSG_PHONE_DUPLICATE}

    def test_targets_limit_the_report(self) -> None:
        rows = [_row(1), _row(2), _row(3, phone="51999999993")]
        verdicts = evaluate_rows(rows, ValidationContext(), targets={2})
        assert verdicts == {2: MSG_PHONE_DUPLICATE}

    def test_email_duplicates_across_different_phones(self) -> None:
        rows = [_row(1, email="ana@mail.com"), _row(2, phone="51999999992", email="Ana@mail.com")]
        assert evaluate_rows(rows, ValidationContext())[2] == MSG_EMAIL_DUPLICATE
