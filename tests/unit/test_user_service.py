"""Unit tests for UserService: provisioning and role assignment."""

from __future__ import annotations

import pytest
from sqlmodel import col, select

from sunup.auth.roles import Role
from sunup.config.settings import get_settings
from sunup.exceptions import CrossTenantAccess, Forbidden, ValidationError
from sunup.models.database import AuditLog, User, UserRole
from sunup.services.users import UserService


async def _roles(session_factory, user_id: str) -> list[UserRole]:
    async with session_factory() as session:
        stmt = (
            select(UserRole)
            .where(col(UserRole.user_id) == user_id)
            .order_by(col(UserRole.created_at))
        )
        return list((await session.execute(stmt)).scalars().all())


@pytest.mark.unit
class TestCreateUser:
    async def test_defaults_to_setter_in_own_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            created = await UserService(session, seed.identity("recruiter-a")).create_user(
                "New.Hire@Example.com", "New", "Hire"
            )
        assert created.user.tenant_id == seed.tenant_a
        assert created.user.email == "new.hire@example.com"
        assert created.user.auth_subject.startswith("pending_")
        assert created.roles == [Role.SETTER]
        assert created.tenant.name == "SunCo Solar"
        rows = await _roles(session_factory, created.user.id)
        assert [(r.role, r.is_primary) for r in rows] == [("Setter", True)]

    async def test_first_role_is_primary(self, session_factory, seed) -> None:
        async with session_factory() as session:
            created = await UserService(session, seed.identity("admin-a")).create_user(
                "dual@example.com",
                "Dual",
                "Role",
                roles=["Consultant", "Trainer"],
                auth_subject="user_2abc",
            )
        assert created.user.auth_subject == "user_2abc"
        rows = await _roles(session_factory, created.user.id)
        assert {r.role: r.is_primary for r in rows} == {"Consultant": True, "Trainer": False}

    async def test_invalid_role(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="Invalid role"):
                await UserService(session, seed.identity("admin-a")).create_user(
                    "x@example.com", "X", "Y", roles=["Overlord"]
                )

    async def test_duplicate_email_system_wide(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="already exists"):
                await UserService(session, seed.identity("admin-a")).create_user(
                    "setter-b@example.com", "Copy", "Cat"
                )

    async def test_non_admin_cannot_target_other_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(Forbidden, match="other tenants"):
                await UserService(session, seed.identity("recruiter-a")).create_user(
                    "x@example.com", "X", "Y", tenant_id=seed.tenant_b
                )

    async def test_admin_can_target_other_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            created = await UserService(session, seed.identity("admin-a")).create_user(
                "remote@example.com", "Remote", "Hire", tenant_id=seed.tenant_b
            )
        assert created.user.tenant_id == seed.tenant_b
        async with session_factory() as session:
            audits = (await session.execute(select(AuditLog))).scalars().all()
        assert [a.resource_type for a in audits] == ["create_user"]

    async def test_non_admin_cannot_choose_roles(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(Forbidden, match="assign roles"):
                await UserService(session, seed.identity("recruiter-a")).create_user(
                    "climber@example.com", "Climb", "Er", roles=["System Administrator"]
                )
        async with session_factory() as session:
            users = (await session.execute(select(User))).scalars().all()
        assert "climber@example.com" not in {u.email for u in users}

    async def test_setter_cannot_create(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(Forbidden):
                await UserService(session, seed.identity("setter-a")).create_user(
                    "x@example.com", "X", "Y"
                )


@pytest.mark.unit
class TestListAndStatus:
    async def test_manager_sees_own_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            users = await UserService(session, seed.identity("manager-a")).list_users()
        assert {u.tenant_id for u in users} == {seed.tenant_a}

    async def test_admin_sees_every_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            users = await UserService(session, seed.identity("admin-a")).list_users()
        assert {u.tenant_id for u in users} == {seed.tenant_a, seed.tenant_b}

    async def test_limit_is_capped_by_settings(
        self, session_factory, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("USER_LIST_MAX_LIMIT", "2")
        get_settings.cache_clear()
        try:
            async with session_factory() as session:
                users = await UserService(session, seed.identity("admin-a")).list_users(limit=100)
        finally:
            monkeypatch.delenv("USER_LIST_MAX_LIMIT")
            get_settings.cache_clear()
        assert len(users) == 2

    async def test_deactivate_user(self, session_factory, seed) -> None:
        async with session_factory() as session:
            user = await UserService(session, seed.identity("recruiter-a")).set_user_active_status(
                seed.user_id("setter-a"), False
            )
        assert user.is_active is False

    async def test_non_admin_cannot_touch_other_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(CrossTenantAccess):
                await UserService(
                    session, seed.identity("recruiter-a")
                ).set_user_active_status(seed.user_id("setter-b"), False)
        async with session_factory() as session:
            assert (await session.get(User, seed.user_id("setter-b"))).is_active

    async def test_admin_can_touch_other_tenant(self, session_factory, seed) -> None:
        async with session_factory() as session:
            user = await UserService(session, seed.identity("admin-a")).set_user_active_status(
                seed.user_id("setter-b"), False
            )
        assert user.is_active is False


@pytest.mark.unit
class TestUpdateUserRole:
    async def test_add_and_remove(self, session_factory, seed) -> None:
        target = seed.user_id("setter-a")
        async with session_factory() as session:
            message = await UserService(session, seed.identity("admin-a")).update_user_role(
                target, "Trainer", "add"
            )
        assert message == 'Role "Trainer" added to user setter-a@example.com'
        assert {r.role for r in await _roles(session_factory, target)} == {"Setter", "Trainer"}

        async with session_factory() as session:
            await UserService(session, seed.identity("admin-a")).update_user_role(
                target, "Trainer", "remove"
            )
        assert {r.role for r in await _roles(session_factory, target)} == {"Setter"}

    async def test_non_admin_cannot_grant_roles(self, session_factory, seed) -> None:
        recruiter = seed.user_id("recruiter-a")
        async with session_factory() as session:
            with pytest.raises(Forbidden):
                await UserService(session, seed.identity("recruiter-a")).update_user_role(
                    recruiter, "System Administrator", "add"
                )
        assert {r.role for r in await _roles(session_factory, recruiter)} == {"Recruiter"}

        async with session_factory() as session:
            with pytest.raises(Forbidden):
                await UserService(session, seed.identity("recruiter-a")).update_user_role(
                    seed.user_id("setter-a"), "Setter", "remove"
                )

    async def test_add_existing_role(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="already has role"):
                await UserService(session, seed.identity("admin-a")).update_user_role(
                    seed.user_id("setter-a"), "Setter", "add"
                )

    async def test_remove_missing_role(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="doesn't have role"):
                await UserService(session, seed.identity("admin-a")).update_user_role(
                    seed.user_id("setter-a"), "Finance", "remove"
                )


@pytest.mark.unit
class TestRoleAssignments:
    async def test_assign_primary_moves_flag(self, session_factory, seed) -> None:
        target = seed.user_id("setter-a")
        async with session_factory() as session:
            row = await UserService(session, seed.identity("admin-a")).assign_role(
                target, "Consultant", is_primary=True
            )
        assert row.is_primary
        primaries = [r.role for r in await _roles(session_factory, target) if r.is_primary]
        assert primaries == ["Consultant"]

    async def test_assign_requires_admin(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(Forbidden):
                await UserService(session, seed.identity("recruiter-a")).assign_role(
                    seed.user_id("setter-a"), "Trainer"
                )

    async def test_assign_duplicate(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="already assigned"):
                await UserService(session, seed.identity("admin-a")).assign_role(
                    seed.user_id("setter-a"), "Setter"
                )

    async def test_assign_other_tenant_user(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(CrossTenantAccess):
                await UserService(session, seed.identity("admin-a")).assign_role(
                    seed.user_id("setter-b"), "Trainer"
                )

    async def test_cannot_deactivate_last_role(self, session_factory, seed) -> None:
        only = (await _roles(session_factory, seed.user_id("setter-a")))[0]
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="last active role"):
                await UserService(session, seed.identity("admin-a")).deactivate_role(only.id)

    async def test_deactivate_primary_hands_over(self, session_factory, seed) -> None:
        target = seed.user_id("setter-a")
        async with session_factory() as session:
            await UserService(session, seed.identity("admin-a")).assign_role(target, "Trainer")
        setter_row = next(
            r for r in await _roles(session_factory, target) if r.role == "Setter"
        )
        async with session_factory() as session:
            deactivated = await UserService(session, seed.identity("admin-a")).deactivate_role(
                setter_row.id
            )
        assert deactivated.is_active is False
        assert deactivated.is_primary is False
        rows = {r.role: r for r in await _roles(session_factory, target)}
        assert rows["Trainer"].is_primary

    async def test_set_primary(self, session_factory, seed) -> None:
        target = seed.user_id("setter-a")
        async with session_factory() as session:
            trainer = await UserService(session, seed.identity("admin-a")).assign_role(
                target, "Trainer"
            )
        async with session_factory() as session:
            await UserService(session, seed.identity("admin-a")).set_primary_role(
                target, trainer.id
            )
        rows = {r.role: r.is_primary for r in await _roles(session_factory, target)}
        assert rows == {"Setter": False, "Trainer": True}

    async def test_set_primary_wrong_user(self, session_factory, seed) -> None:
        other_row = (await _roles(session_factory, seed.user_id("manager-a")))[0]
        async with session_factory() as session:
            with pytest.raises(ValidationError, match="does not belong"):
                await UserService(session, seed.identity("admin-a")).set_primary_role(
                    seed.user_id("setter-a"), other_row.id
                )


@pytest.mark.unit
class TestRoleQueries:
    async def test_list_own_roles(self, session_factory, seed) -> None:
        async with session_factory() as session:
            rows = await UserService(session, seed.identity("setter-a")).list_user_roles(
                seed.user_id("setter-a")
            )
        assert [r.role for r in rows] == ["Setter"]

    async def test_list_others_requires_admin(self, session_factory, seed) -> None:
        async with session_factory() as session:
            with pytest.raises(Forbidden):
                await UserService(session, seed.identity("setter-a")).list_user_roles(
                    seed.user_id("manager-a")
                )

    async def test_admin_lists_others(self, session_factory, seed) -> None:
        async with session_factory() as session:
            rows = await UserService(session, seed.identity("admin-a")).list_user_roles(
                seed.user_id("manager-a")
            )
        assert [r.role for r in rows] == ["Sales Manager"]

    async def test_my_roles_only_active(self, session_factory, seed) -> None:
        async with session_factory() as session:
            session.add(
                UserRole(
                    user_id=seed.user_id("setter-a"),
                    role="Finance",
                    is_active=False,
                    tenant_id=seed.tenant_a,
                )
            )
            await session.commit()
        async with session_factory() as session:
            rows = await UserService(session, seed.identity("setter-a")).get_my_roles()
        assert [r.role for r in rows] == ["Setter"]

    async def test_current_user(self, session_factory, seed) -> None:
        async with session_factory() as session:
            me = await UserService(session, seed.identity("manager-a")).get_current_user()
        assert me.user.email == "manager-a@example.com"
        assert me.roles == [Role.SALES_MANAGER]
        assert me.primary_role is Role.SALES_MANAGER
