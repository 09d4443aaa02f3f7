"""Tests for AccessControl role grants and guards."""

import pytest

from helpers import ADMIN, KEEPER, LIQUIDATOR, OUTSIDER
from perpcore.access import AccessControl, Role
from perpcore.exceptions import Unauthorized


@pytest.fixture
def access() -> AccessControl:
    return AccessControl(ADMIN)


class TestInitialRoles:
    def test_admin_holds_admin_and_keeper(self, access: AccessControl) -> None:
        assert access.admin == ADMIN
        assert access.has_role(ADMIN, Role.ADMIN)
        assert access.has_role(ADMIN, Role.KEEPER)

    def test_admin_is_not_a_liquidator_by_default(self, access: AccessControl) -> None:
        assert not access.has_role(ADMIN, Role.LIQUIDATOR)

    def test_empty_admin_rejected(self) -> None:
        with pytest.raises(ValueError):
            AccessControl("")


class TestRequire:
    def test_passes_with_any_listed_role(self, access: AccessControl) -> None:
        access.grant(ADMIN, KEEPER, Role.KEEPER)
        access.require(KEEPER, Role.ADMIN, Role.KEEPER)

    def test_raises_without_role(self, access: AccessControl) -> None:
        with pytest.raises(Unauthorized):
            access.require(OUTSIDER, Role.KEEPER)


class TestGrantRevoke:
    def test_grant_and_revoke(self, access: AccessControl) -> None:
        access.grant(ADMIN, LIQUIDATOR, Role.LIQUIDATOR)
        assert access.has_role(LIQUIDATOR, Role.LIQUIDATOR)

        access.revoke(ADMIN, LIQUIDATOR, Role.LIQUIDATOR)
        assert not access.has_role(LIQUIDATOR, Role.LIQUIDATOR)

    def test_non_admin_cannot_grant(self, access: AccessControl) -> None:
        access.grant(ADMIN, KEEPER, Role.KEEPER)
        with pytest.raises(Unauthorized):
            access.grant(KEEPER, OUTSIDER, Role.KEEPER)
        assert not access.has_role(OUTSIDER, Role.KEEPER)

    def test_admin_role_cannot_be_granted_or_revoked(self, access: AccessControl) -> None:
        with pytest.raises(ValueError):
            access.grant(ADMIN, OUTSIDER, Role.ADMIN)
        with pytest.raises(ValueError):
            access.revoke(ADMIN, ADMIN, Role.ADMIN)


class TestTransferAdmin:
    def test_transfer_moves_admin_and_keeper(self, access: AccessControl) -> None:
        access.transfer_admin(ADMIN, OUTSIDER)

        assert access.admin == OUTSIDER
        assert access.has_role(OUTSIDER, Role.ADMIN)
        assert access.has_role(OUTSIDER, Role.KEEPER)
        assert not access.has_role(ADMIN, Role.ADMIN)
        assert not access.has_role(ADMIN, Role.KEEPER)

    def test_old_admin_loses_control(self, access: AccessControl) -> None:
        access.transfer_admin(ADMIN, OUTSIDER)
        with pytest.raises(Unauthorized):
            access.grant(ADMIN, KEEPER, Role.KEEPER)
