"""Security gateway: injection screening, moderation, audit log, auto-archive."""

import logging
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from listpilot.core.config import settings
from listpilot.models.conversation import Conversation, utcnow
from listpilot.models.security import SecurityViolation
from listpilot.services.security.injection import InjectionVerdict, detect_injection
from listpilot.services.security.moderation import ModerationClassifier, ModerationVerdict

logger = logging.getLogger(__name__)


class SecurityGateway:
    def __init__(
        self,
        engine: Engine,
        classifier: ModerationClassifier,
        violation_threshold: int | None = None,
        violation_window_hours: int | None = None,
    ):
        self.engine = engine
        self.classifier = classifier
        self.violation_threshold = (
            settings.violation_threshold if violation_threshold is None else violation_threshold
        )
        self.violation_window = timedelta(
            hours=settings.violation_window_hours if violation_window_hours is None else violation_window_hours
        )

    def screen(self, text: str, context_titles: tuple[str, ...] = ()) -> InjectionVerdict:
        return detect_injection(text, context_titles)

    async def moderate(self, text: str) -> ModerationVerdict:
        """Run the moderation classifier. UpstreamFailure propagates (fail closed)."""
        return await self.classifier.classify(text)

    def record_violation(
        self,
        *,
        violation_type: str,
        action_taken: str,
        detected_patterns: list[str] | None = None,
        risk_score: float = 0.0,
        moderation_scores: dict | None = None,
        details: str = "",
        message_id: int | None = None,
        conversation_id: int | None = None,
        user_id: int | None = None,
        organization_id: int | None = None,
    ) -> int | None:
        """Append an audit record. A failed write is logged, never raised."""
        try:
            with Session(self.engine) as session:
                violation = SecurityViolation(
                    violation_type=violation_type,
                    action_taken=action_taken,
                    detected_patterns=list(detected_patterns or []),
                    risk_score=risk_score,
                    moderation_scores=dict(moderation_scores or {}),
                    details=details,
                    message_id=message_id,
                    conversation_id=conversation_id,
                    user_id=user_id,
                    organization_id=organization_id,
                )
                session.add(violation)
                session.commit()
                session.refresh(violation)
        except Exception:
            logger.exception(f"Failed to write security violation ({violation_type}/{action_taken})")
            return None

        logger.warning(
            f"Security violation {violation.id}: type={violation_type} action={action_taken} "
            f"score={risk_score} patterns={detected_patterns} conversation={conversation_id} user={user_id}"
        )
        return violation.id

    def recent_blocked_count(self, organization_id: int) -> int:
        cutoff = utcnow() - self.violation_window
        with Session(self.engine) as session:
            return session.exec(
                select(func.count(SecurityViolation.id)).where(
                    SecurityViolation.organization_id == organization_id,
                    SecurityViolation.action_taken == "blocked",
                    SecurityViolation.created_at > cutoff,
                )
            ).one()

    def check_auto_archive(self, conversation_id: int, organization_id: int) -> bool:
        """Archive the conversation once the organization crosses the violation threshold."""
        if self.violation_threshold <= 0:
            return False
        try:
            count = self.recent_blocked_count(organization_id)
            if count < self.violation_threshold:
                return False

            with Session(self.engine) as session:
                conv = session.get(Conversation, conversation_id)
                if not conv or conv.status != "active":
                    return False
                conv.status = "archived"
                conv.meta = {
                    **(conv.meta or {}),
                    "archived_reason": f"auto-archived after {count} blocked messages",
                }
                conv.updated_at = utcnow()
                session.add(conv)
                session.commit()
        except Exception:
            logger.exception(f"Auto-archive check failed for conversation {conversation_id}")
            return False

        logger.warning(
            f"Conversation {conversation_id} auto-archived: organization {organization_id} "
            f"has {count} blocked messages in the last {self.violation_window}"
        )
        return True
