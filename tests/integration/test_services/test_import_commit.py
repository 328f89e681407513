"""Integration tests for committing validated imports into users and prospects."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import DataError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.lib.importer.errors import ImportStateError
from crm_api.lib.importer.parser import generate_sample_csv
from crm_api.models.client import Client
from crm_api.models.import_job import ImportJob, ImportStatus
from crm_api.models.prospect import Prospect
from crm_api.models.temp_import_user import TempImportUser
from crm_api.models.user import User, UserRole
from crm_api.services import custom_field_service, import_commit_service
from crm_api.services.import_commit_service import MSG_DATA, MSG_INTEGRITY, begin_commit, commit_import, process_commit

PHONE_NAME = {"0": "phone", "1": "first_name"}


async def _count_users(session: AsyncSession, **filters) -> int:
    query = select(func.count(User.id))
    for name, value in filters.items():
        query = query.where(getattr(User, name) == value)
    return (await session.execute(query)).scalar_one()


def _contacts(count: int) -> str:
    lines = ["phone,first_name"] + [f"5199999990{i},Contact{i}" for i in range(1, count + 1)]
    return "\n".join(lines) + "\n"


class TestCommitImport:
    """Tests for the row-by-row commit."""

    @pytest.mark.asyncio
    async def test_creates_users_for_valid_rows_only(
        self, async_session: AsyncSession, create_validated_import, tenant: Client
    ) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n51999999991,Ana2\n", PHONE_NAME)

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.COMPLETED
        assert job.records_created == 1
        assert job.records_failed == 0
        assert job.progress == 1
        assert job.completed_at is not None
        result = await async_session.execute(select(User).where(User.phone == "51999999991"))
        user = result.scalar_one()
        assert user.first_name == "Ana"
        assert user.email == "51999999991@financiera_oh.com"
        assert user.role == "standard"
        assert user.import_id == job.id
        assert user.client_id == tenant.id

    @pytest.mark.asyncio
    async def test_second_commit_is_rejected_without_duplicates(
        self, async_session: AsyncSession, create_validated_import
    ) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n", PHONE_NAME)
        await commit_import(async_session, job.id)

        with pytest.raises(ImportStateError):
            await commit_import(async_session, job.id)

        assert await _count_users(async_session, phone="51999999991") == 1

    @pytest.mark.asyncio
    async def test_begin_requires_validated_status(
        self, async_session: AsyncSession, create_validated_import
    ) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n", PHONE_NAME)
        await begin_commit(async_session, job.id)

        with pytest.raises(ImportStateError, match="validated"):
            await begin_commit(async_session, job.id)

    @pytest.mark.asyncio
    async def test_process_requires_processing_status(
        self, async_session: AsyncSession, create_validated_import
    ) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n", PHONE_NAME)
        with pytest.raises(ImportStateError, match="not processing"):
            await process_commit(async_session, job.id)

    @pytest.mark.asyncio
    async def test_record_created_since_validation_fails_that_row(
        self, async_session: AsyncSession, create_validated_import, tenant: Client
    ) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n51999999992,Luis\n", PHONE_NAME)
        async_session.add(User(client_id=tenant.id, email="race@financiera.pe", phone="51999999992", hashed_password="x"))
        await async_session.commit()

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.ERROR
        assert job.records_created == 1
        assert job.records_failed == 1
        assert job.error_summary == "1 of 2 rows failed to import"
        assert job.error_log == [{"row": 2, "phone": "51999999992", "error": "phone: phone already registered"}]

    @pytest.mark.asyncio
    async def test_rows_are_marked_processed(self, async_session: AsyncSession, create_validated_import) -> None:
        job = await create_validated_import("phone,first_name\n51999999991,Ana\n51999999992,\n", PHONE_NAME)
        await commit_import(async_session, job.id)

        result = await async_session.execute(
            select(TempImportUser.row_number, TempImportUser.processed)
            .where(TempImportUser.import_id == job.id)
            .order_by(TempImportUser.row_number)
        )
        assert result.all() == [(1, True), (2, False)]

    @pytest.mark.asyncio
    async def test_manager_and_custom_fields(
        self, async_session: AsyncSession, create_validated_import, tenant: Client, admin_user: User
    ) -> None:
        job = await create_validated_import(
            "phone,first_name,jefe,sede,segmento,rol\n51999999991,Ana,admin@financiera.pe,Lima,A,Supervisor\n",
            {
                "0": "phone",
                "1": "first_name",
                "2": "manager_email",
                "3": "custom_field:Sede",
                "4": "crm_segment",
                "5": "role",
            },
        )
        await commit_import(async_session, job.id)

        user = (await async_session.execute(select(User).where(User.phone == "51999999991"))).scalar_one()
        assert user.manager_id == admin_user.id
        assert user.custom_fields == {"segment": "A", "Sede": "Lima"}
        assert user.role == "supervisor"
        labels = await custom_field_service.list_labels(async_session, tenant.id)
        assert set(labels) == {"Sede", "segment"}

    @pytest.mark.asyncio
    async def test_foh_import_creates_standard_users(
        self, async_session: AsyncSession, create_validated_import, admin_user: User
    ) -> None:
        job = await create_validated_import(
            "phone,agent_name\n987654321,admin@financiera.pe\n",
            {"0": "phone", "1": "manager_email"},
            import_type="foh",
        )
        await commit_import(async_session, job.id)

        user = (await async_session.execute(select(User).where(User.phone == "987654321"))).scalar_one()
        assert user.email == "987654321@foh.com"
        assert user.role == "standard"
        assert user.manager_id == admin_user.id

    @pytest.mark.asyncio
    async def test_prospect_import(self, async_session: AsyncSession, create_validated_import) -> None:
        job = await create_validated_import(
            "phone,first_name,last_name,email\n987654321,Juan,Perez,Juan@Mail.com\n",
            {"0": "phone", "1": "first_name", "2": "last_name", "3": "email"},
            import_type="prospect",
        )
        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.COMPLETED
        prospect = (await async_session.execute(select(Prospect))).scalar_one()
        assert prospect.name == "Juan Perez"
        assert prospect.email == "juan@mail.com"
        assert prospect.status == "active"
        assert await _count_users(async_session, phone="987654321") == 0


class TestFohAgents:
    """Tests for resolving FOH agent names to users."""

    @staticmethod
    async def _agent(session: AsyncSession, client: Client, email: str, import_string: str) -> User:
        agent = User(
            client_id=client.id,
            email=email,
            username=email,
            role=UserRole.AGENT,
            import_string=import_string,
            hashed_password="x",
        )
        session.add(agent)
        await session.commit()
        await session.refresh(agent)
        return agent

    @pytest.mark.asyncio
    async def test_sample_file_validates_and_links_agents(
        self, async_session: AsyncSession, create_validated_import, tenant: Client
    ) -> None:
        andrea = await self._agent(async_session, tenant, "andrea@financiera.pe", "Andrea Garcia")
        brenda = await self._agent(async_session, tenant, "brenda@financiera.pe", "Brenda Gonzalez")

        job = await create_validated_import(
            generate_sample_csv("foh").decode("utf-8-sig"),
            {"0": "phone", "1": "first_name", "2": "last_name", "3": "manager_email", "4": "phone_order"},
            import_type="foh",
        )
        assert job.valid_count == 2
        assert job.invalid_count == 0

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.COMPLETED
        users = (await async_session.execute(select(User).where(User.import_id == job.id))).scalars().all()
        assert {u.phone: u.manager_id for u in users} == {"987654321": andrea.id, "987654322": brenda.id}

    @pytest.mark.asyncio
    async def test_imported_users_get_their_name_as_import_string(
        self, async_session: AsyncSession, create_validated_import
    ) -> None:
        job = await create_validated_import(
            "phone,first_name,last_name\n51999999991,Ana,Torres\n",
            {"0": "phone", "1": "first_name", "2": "last_name"},
        )
        await commit_import(async_session, job.id)

        user = (await async_session.execute(select(User).where(User.phone == "51999999991"))).scalar_one()
        assert user.import_string == "Ana Torres"

        foh = await create_validated_import(
            "phone,agent\n987654321,ana torres\n", {"0": "phone", "1": "manager_email"}, import_type="foh"
        )
        assert foh.invalid_count == 0


class TestRowFailuresDuringCommit:
    """A database error on one row fails that row and the commit carries on."""

    @pytest.mark.asyncio
    async def test_unique_violation_fails_only_that_row(
        self,
        async_session: AsyncSession,
        create_validated_import,
        tenant: Client,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        job = await create_validated_import(_contacts(3), PHONE_NAME)
        async_session.add(
            User(client_id=tenant.id, email="race@financiera.pe", phone="51999999902", hashed_password="x")
        )
        await async_session.commit()
        # Skip the pre-insert lookup so the insert itself hits the unique constraint
        monkeypatch.setattr(import_commit_service, "_conflict", AsyncMock(return_value=None))

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.ERROR
        assert job.records_created == 2
        assert job.records_failed == 1
        assert job.progress == 3
        assert job.error_log == [{"row": 2, "phone": "51999999902", "error": MSG_INTEGRITY}]
        assert await _count_users(async_session, phone="51999999903") == 1
        assert await _count_users(async_session, phone="51999999902") == 1
        result = await async_session.execute(
            select(TempImportUser.processed, TempImportUser.error_message).where(
                TempImportUser.import_id == job.id, TempImportUser.row_number == 2
            )
        )
        assert result.one() == (True, MSG_INTEGRITY)

    @pytest.mark.asyncio
    async def test_rejected_value_fails_only_that_row(
        self, async_session: AsyncSession, create_validated_import, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        job = await create_validated_import(_contacts(3), PHONE_NAME)
        original = import_commit_service.promote_row

        async def reject_second_row(session: AsyncSession, job: ImportJob, row: TempImportUser) -> str | None:
            if row.row_number == 2:
                raise DataError("INSERT INTO users", {}, Exception("value too long for type character varying(20)"))
            return await original(session, job, row)

        monkeypatch.setattr(import_commit_service, "promote_row", reject_second_row)

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.ERROR
        assert job.records_created == 2
        assert job.error_log == [{"row": 2, "phone": "51999999902", "error": MSG_DATA}]
        assert await _count_users(async_session, import_id=job.id) == 2


class TestCancelDuringCommit:
    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_row(
        self, async_session: AsyncSession, create_validated_import, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        job = await create_validated_import(_contacts(5), PHONE_NAME)
        original = import_commit_service.promote_row
        promoted = 0

        async def promote_then_cancel(session: AsyncSession, job: ImportJob, row: TempImportUser) -> str | None:
            nonlocal promoted
            error = await original(session, job, row)
            promoted += 1
            if promoted == 2:
                await session.execute(
                    update(ImportJob)
                    .where(ImportJob.id == job.id)
                    .values(status=ImportStatus.CANCELLED)
                    .execution_options(synchronize_session=False)
                )
            return error

        monkeypatch.setattr(import_commit_service, "promote_row", promote_then_cancel)

        job = await commit_import(async_session, job.id)

        assert job.status == ImportStatus.CANCELLED
        assert job.records_created == 2
        assert job.progress == 2
        assert await _count_users(async_session, import_id=job.id) == 2
        remaining = (
            await async_session.execute(
                select(func.count(TempImportUser.id)).where(
                    TempImportUser.import_id == job.id, TempImportUser.processed.is_(False)
                )
            )
        ).scalar_one()
        assert remaining == 3
