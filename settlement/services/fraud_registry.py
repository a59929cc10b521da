"""settlement.services.fraud_registry
====================================
Mini-README: Append-only registry of suspicious-activity flags. Components raise flags
through ``flag_safely`` so a storage hiccup never blocks the operation being flagged;
only the administrative ``resolve`` step mutates an existing flag.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..exceptions import NotFoundError, ValidationFailedError
from ..logger import get_logger
from ..models import AuditAction, AuditLog, FraudFlag, FraudFlagType, utcnow
from ..repositories import AuditLogRepository, FraudFlagFilters, FraudFlagRepository

LOGGER = get_logger(__name__)
MIN_SEVERITY = 1
MAX_SEVERITY = 5


def clamp_severity(severity: int) -> int:
    return min(MAX_SEVERITY, max(MIN_SEVERITY, int(severity)))


@dataclass
class FraudFlagPage:
    items: list[FraudFlag]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.page_size) if self.page_size else 0


class FraudFlagRegistry:
    """Creates, lists and resolves fraud flags."""

    def __init__(self, flags: FraudFlagRepository, audit_logs: AuditLogRepository):
        self._flags = flags
        self._audit_logs = audit_logs

    async def create(
        self,
        *,
        type: FraudFlagType,
        severity: int,
        description: str,
        user_id: str | None = None,
        creator_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FraudFlag:
        flag = FraudFlag(
            user_id=user_id,
            creator_id=creator_id,
            type=FraudFlagType(type),
            severity=clamp_severity(severity),
            description=description,
            details=dict(metadata or {}),
        )
        flag = await self._flags.add(flag)
        LOGGER.warning(
            "Fraud flag raised id=%s type=%s severity=%s creator=%s user=%s",
            flag.id,
            flag.type.value,
            flag.severity,
            creator_id,
            user_id,
        )
        return flag

    async def flag_safely(self, **kwargs: Any) -> FraudFlag | None:
        """Best-effort ``create``: storage failures are logged, never raised."""

        try:
            return await self.create(**kwargs)
        except Exception as exc:  # noqa: BLE001 - flags must never fail the caller
            LOGGER.error("Failed to persist fraud flag %s: %s", kwargs.get("type"), exc)
            await self._flags.rollback()
            return None

    async def resolve(self, flag_id: str, resolver_id: str, resolution: str) -> FraudFlag:
        flag = await self._flags.get(flag_id)
        if flag is None:
            raise NotFoundError("Fraud flag not found.")
        if flag.is_resolved:
            raise ValidationFailedError("Fraud flag has already been resolved.")

        flag.is_resolved = True
        flag.resolved_by = resolver_id
        flag.resolved_at = utcnow()
        flag.resolution = resolution.strip()
        flag = await self._flags.save(flag)

        await self._audit_logs.add(
            AuditLog(
                admin_id=resolver_id,
                action=AuditAction.FRAUD_FLAG_RESOLVED,
                target_type="fraud_flag",
                target_id=flag.id,
                details={"resolution": flag.resolution, "type": flag.type.value},
            )
        )
        LOGGER.info("Fraud flag %s resolved by %s", flag.id, resolver_id)
        return flag

    async def list(
        self,
        filters: FraudFlagFilters | None = None,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> FraudFlagPage:
        """Return flags ordered by severity then recency."""

        page = max(1, page)
        page_size = max(1, min(page_size, 100))
        items, total = await self._flags.search(
            filters or FraudFlagFilters(),
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return FraudFlagPage(items=items, total=total, page=page, page_size=page_size)

    async def count_unresolved(self) -> int:
        return await self._flags.count_unresolved()
