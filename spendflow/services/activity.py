"""
Activity tracking for SpendFlow.

``last_active_at`` is a non-essential write: when the store reports a quota
or rate-limit error the quota circuit breaker opens and further touches are
skipped until the breaker lets a probe through.
"""

from __future__ import annotations

import logging

from spendflow.core.context import ProcessingContext
from spendflow.lib.exceptions import CircuitOpenError, StoreError
from spendflow.lib.security import hash_uid
from spendflow.models import User
from spendflow.models.base import utcnow

logger = logging.getLogger(__name__)


class ActivityService:
    def __init__(self, ctx: ProcessingContext) -> None:
        self.ctx = ctx

    async def touch(self, user_id: str, email: str | None = None) -> bool:
        """
        Record activity for ``user_id``, creating the user row on first sight.

        Returns:
            True if the write happened, False if it was skipped or failed
        """
        breaker = self.ctx.quota_breaker
        store = self.ctx.store
        try:
            async with breaker:
                now = utcnow()
                user = await store.get(User, user_id)
                if user is None:
                    await store.create(
                        User,
                        id=user_id,
                        email=email,
                        currency=self.ctx.settings.default_currency,
                        last_active_at=now,
                    )
                else:
                    values = {"last_active_at": now}
                    if email and email != user.email:
                        values["email"] = email
                    await store.update(User, user_id, **values)
        except CircuitOpenError:
            logger.debug("activity_touch_skipped user_hash=%s", hash_uid(user_id))
            return False
        except StoreError as exc:
            logger.warning(
                "activity_touch_failed user_hash=%s error=%s", hash_uid(user_id), type(exc).__name__
            )
            return False
        return True
