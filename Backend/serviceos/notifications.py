"""
Notification service.

Other services (assignments, quotes, contracts) call create_notification()
to alert a user. The recipient lookup and the insert go through the system
override, because the caller may be a job or another tenant's flow; every
read and update a user makes on their own notifications goes through the
normal tenant-scoped path.
"""

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .tenancy.client import TenantClient
from .tenancy.context import require_current, with_system_context
from .tenancy.errors import RecordNotFound
from .tenancy.interceptor import utcnow


logger = logging.getLogger(__name__)

UNREAD = 0
READ = 1


class LoaiThongBao(str, Enum):
    PHAN_CONG = "PHAN_CONG"
    BAO_GIA = "BAO_GIA"
    HOP_DONG = "HOP_DONG"
    KHO = "KHO"
    HE_THONG = "HE_THONG"
    KHAC = "KHAC"


class NotificationCreate(BaseModel):
    id_nguoi_nhan: str = Field(min_length=1)
    tieu_de: str = Field(min_length=1, max_length=255)
    noi_dung: Optional[str] = None
    loai_thong_bao: LoaiThongBao = LoaiThongBao.KHAC
    id_doi_tuong_lien_quan: Optional[str] = None
    loai_doi_tuong: Optional[str] = None


class NotificationService:
    def __init__(self, client: TenantClient):
        self.client = client

    # ────────────────────────────────────────────────────────────────
    # Internal (called by other services)
    # ────────────────────────────────────────────────────────────────

    async def create_notification(
        self,
        notification: NotificationCreate,
        tenant_id: str,
        creator_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Create a notification for a user of `tenant_id`.

        Args:
            notification: What to send and to whom
            tenant_id: Tenant the recipient must belong to
            creator_id: Originating user, recorded when no actor is bound

        Returns:
            The notification row, or None when the recipient does not exist
            in that tenant (the caller's own flow is not interrupted)
        """
        recipient = await with_system_context(
            self.client.model("NguoiDung").find_first,
            {"id": notification.id_nguoi_nhan, "id_doanh_nghiep": tenant_id},
            reason="verify notification recipient belongs to target tenant",
        )
        if recipient is None:
            logger.warning("Notification recipient not found: %s", notification.id_nguoi_nhan)
            return None

        created = await with_system_context(
            self.client.model("ThongBao").create,
            {
                "id_doanh_nghiep": tenant_id,
                "id_nguoi_nhan": notification.id_nguoi_nhan,
                "tieu_de": notification.tieu_de,
                "noi_dung": notification.noi_dung,
                "loai_thong_bao": notification.loai_thong_bao.value,
                "id_doi_tuong_lien_quan": notification.id_doi_tuong_lien_quan,
                "loai_doi_tuong": notification.loai_doi_tuong,
                "da_xem": UNREAD,
                "nguoi_tao_id": creator_id,
            },
            reason="create notification for recipient",
        )
        logger.info("Created notification %s for user %s", created["id"], notification.id_nguoi_nhan)
        return created

    # ────────────────────────────────────────────────────────────────
    # Current user
    # ────────────────────────────────────────────────────────────────

    @staticmethod
    def _recipient_filter(**extra: Any) -> dict[str, Any]:
        return {"id_nguoi_nhan": require_current().actor_id, **extra}

    async def list_mine(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        da_xem: Optional[bool] = None,
        loai_thong_bao: Optional[LoaiThongBao] = None,
    ) -> dict[str, Any]:
        where = self._recipient_filter()
        if da_xem is not None:
            where["da_xem"] = READ if da_xem else UNREAD
        if loai_thong_bao is not None:
            where["loai_thong_bao"] = loai_thong_bao.value

        notifications = self.client.model("ThongBao")
        data, total, unread = await asyncio.gather(
            notifications.find_many(
                where, order_by={"ngay_tao": "desc"}, skip=(page - 1) * limit, take=limit
            ),
            notifications.count(where),
            notifications.count(self._recipient_filter(da_xem=UNREAD)),
        )
        return {
            "data": data,
            "meta": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if limit else 0,
                "unread_count": unread,
            },
        }

    async def get_one(self, notification_id: str) -> dict[str, Any]:
        found = await self.client.model("ThongBao").find_first(
            self._recipient_filter(id=notification_id)
        )
        if found is None:
            raise RecordNotFound(f"Notification not found: {notification_id}", model="ThongBao")
        return found

    async def unread_count(self) -> int:
        return await self.client.model("ThongBao").count(self._recipient_filter(da_xem=UNREAD))

    async def mark_as_read(self, notification_id: str) -> dict[str, Any]:
        notification = await self.get_one(notification_id)
        if notification["da_xem"] == READ:
            return notification
        return await self.client.model("ThongBao").update(
            {"id": notification_id}, {"da_xem": READ, "ngay_xem": utcnow()}
        )

    async def mark_all_read(self) -> int:
        count = await self.client.model("ThongBao").update_many(
            self._recipient_filter(da_xem=UNREAD), {"da_xem": READ, "ngay_xem": utcnow()}
        )
        logger.info("Marked %d notifications as read", count)
        return count

    async def remove(self, notification_id: str) -> dict[str, Any]:
        await self.get_one(notification_id)
        return await self.client.model("ThongBao").delete({"id": notification_id})


__all__ = ["LoaiThongBao", "NotificationCreate", "NotificationService"]
