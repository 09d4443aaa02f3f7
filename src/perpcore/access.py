"""Role-based guards for mutating operations.

Every mutating operation starts with ``access.require(caller, ...)``.
Identities are opaque strings (addresses, key ids).
"""

from enum import Enum

from perpcore.exceptions import Unauthorized
from perpcore.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """Operator roles."""

    ADMIN = "admin"  # full control, role transfer, tier replacement, breaker reset
    KEEPER = "keeper"  # price ingestion, funding updates, earnings mode, fills
    LIQUIDATOR = "liquidator"  # liquidation calls only


class AccessControl:
    """Holds role grants for one market.

    The admin starts with ADMIN and KEEPER. LIQUIDATOR is always an
    explicit grant so the admin does not collect liquidation rewards by
    default.

    Args:
        admin: Identity of the initial admin.
    """

    def __init__(self, admin: str) -> None:
        if not admin:
            raise ValueError("admin identity must be non-empty")
        self._grants: dict[Role, set[str]] = {role: set() for role in Role}
        self._admin = admin
        self._grants[Role.ADMIN].add(admin)
        self._grants[Role.KEEPER].add(admin)

    @property
    def admin(self) -> str:
        return self._admin

    def has_role(self, identity: str, role: Role) -> bool:
        return identity in self._grants[role]

    def require(self, caller: str, *roles: Role) -> None:
        """Raise Unauthorized unless caller holds at least one of roles."""
        if any(caller in self._grants[role] for role in roles):
            return
        logger.warning(
            "unauthorized_call",
            caller=caller,
            required=[role.value for role in roles],
        )
        raise Unauthorized(
            f"{caller!r} lacks required role: {', '.join(r.value for r in roles)}"
        )

    def grant(self, caller: str, identity: str, role: Role) -> None:
        """Grant role to identity. Admin only; ADMIN moves via transfer_admin."""
        self.require(caller, Role.ADMIN)
        if role is Role.ADMIN:
            raise ValueError("use transfer_admin to change the admin")
        self._grants[role].add(identity)
        logger.info("role_granted", identity=identity, role=role.value)

    def revoke(self, caller: str, identity: str, role: Role) -> None:
        """Revoke role from identity. Admin only; the admin cannot be revoked."""
        self.require(caller, Role.ADMIN)
        if role is Role.ADMIN:
            raise ValueError("use transfer_admin to change the admin")
        self._grants[role].discard(identity)
        logger.info("role_revoked", identity=identity, role=role.value)

    def transfer_admin(self, caller: str, new_admin: str) -> None:
        """Hand the ADMIN role (and its KEEPER grant) to new_admin."""
        self.require(caller, Role.ADMIN)
        if not new_admin:
            raise ValueError("admin identity must be non-empty")
        self._grants[Role.ADMIN] = {new_admin}
        self._grants[Role.KEEPER].discard(self._admin)
        self._grants[Role.KEEPER].add(new_admin)
        logger.info("admin_transferred", old_admin=self._admin, new_admin=new_admin)
        self._admin = new_admin
