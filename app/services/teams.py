"""
Team (tenant) service: creation, soft-disable and suggestion quota counters.
"""

import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Team
from app.errors import NotFoundError
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class TeamService:
    def __init__(self, session_factory: sessionmaker, default_suggestions_limit: int = 20):
        self.session_factory = session_factory
        self.default_suggestions_limit = default_suggestions_limit

    def create(
        self,
        name: str,
        suggestions_limit: Optional[int] = None,
        auto_approve_threshold: Optional[int] = None,
        team_id: Optional[str] = None,
    ) -> Team:
        with self.session_factory() as db:
            team = Team(
                name=name,
                suggestions_limit=(
                    suggestions_limit
                    if suggestions_limit is not None
                    else self.default_suggestions_limit
                ),
                auto_approve_threshold=auto_approve_threshold,
            )
            if team_id:
                team.id = team_id
            db.add(team)
            db.commit()
            db.refresh(team)
        logger.info(f"Created team {team.id} ({name})")
        return team

    def get(self, team_id: str) -> Team:
        with self.session_factory() as db:
            team = db.get(Team, team_id)
            if team is None:
                raise NotFoundError("Team", team_id)
            return team

    def list_active(self) -> List[Team]:
        with self.session_factory() as db:
            return db.query(Team).filter(Team.disabled.is_(False)).all()

    def set_disabled(self, team_id: str, disabled: bool = True) -> Team:
        """Soft-disable (or re-enable) a team. Teams are never deleted."""
        with self.session_factory() as db:
            team = db.get(Team, team_id)
            if team is None:
                raise NotFoundError("Team", team_id)
            team.disabled = disabled
            db.commit()
            db.refresh(team)
        logger.info(f"Team {team_id} {'disabled' if disabled else 'enabled'}")
        return team

    def set_auto_approve_threshold(self, team_id: str, threshold: Optional[int]) -> Team:
        if threshold is not None and not 0 <= threshold <= 100:
            raise ValueError("auto_approve_threshold must be between 0 and 100")
        with self.session_factory() as db:
            team = db.get(Team, team_id)
            if team is None:
                raise NotFoundError("Team", team_id)
            team.auto_approve_threshold = threshold
            db.commit()
            db.refresh(team)
            return team

    def reset_usage(self, team_id: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(Team)
                .where(Team.id == team_id)
                .values(suggestions_used=0, updated_at=utcnow())
            )
            db.commit()


def has_quota(team: Team) -> bool:
    return team.suggestions_used < team.suggestions_limit


def consume_quota(db: Session, team_id: str) -> bool:
    """
    Atomically take one suggestion from the team's quota inside db's transaction.

    Returns False when the quota is exhausted; the counter is untouched then.
    """
    result = db.execute(
        update(Team)
        .where(Team.id == team_id, Team.suggestions_used < Team.suggestions_limit)
        .values(suggestions_used=Team.suggestions_used + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
