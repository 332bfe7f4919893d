from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from monjapro.models.billing import SubscriptionPlan
from monjapro.models.profile import Profile
from monjapro.services.common import coerce_uuid

logger = logging.getLogger(__name__)


class Profiles:
    @staticmethod
    def grant_premium(db: Session, user_id, plan: SubscriptionPlan) -> bool:
        """Mark the user's profile premium on ``plan``. False if no profile row."""
        result = db.execute(
            update(Profile)
            .where(Profile.id == coerce_uuid(user_id))
            .values(premium=True, plan=plan.value, updated_at=datetime.now(timezone.utc))
        )
        db.commit()
        if result.rowcount == 0:
            logger.warning("No profile for user %s; premium not granted", user_id)
            return False
        logger.info("Profile %s upgraded to premium (%s)", user_id, plan.value)
        return True


profiles = Profiles()
