import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, case, func, insert, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import CALL_OUTCOMES, CallLog, CallStatus, Team, TeamMember, VerificationStatus
from time_utils import ensure_timezone, now_tz

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_MINUTES = int(os.environ.get("CALL_LOCK_TIMEOUT_MINUTES", "5"))


class TeamNotFoundError(LookupError):
    pass


class InvalidCallStatusError(ValueError):
    pass


@dataclass
class LockResult:
    success: bool
    message: str
    call_log: Optional[CallLog] = None


def serialize_call_log(log: Optional[CallLog]) -> Optional[Dict[str, Any]]:
    if log is None:
        return None
    return {
        "teamId": log.team_id,
        "callStatus": log.call_status.value,
        "calledBy": log.called_by,
        "lockedBy": log.locked_by,
        "lockedAt": ensure_timezone(log.locked_at),
        "notes": log.notes,
        "lastCalledAt": ensure_timezone(log.last_called_at),
    }


class CallLogService:
    """Coordinates phone follow-up across callers with one lock per team.

    A lock is the ``locked_by``/``locked_at`` pair on the team's call log row.
    Claims go through a single conditional upsert so two callers racing for
    the same team cannot both win, and locks older than the timeout are
    released before any claim or listing is served.
    """

    def __init__(
        self,
        lock_timeout: timedelta = timedelta(minutes=LOCK_TIMEOUT_MINUTES),
        clock: Callable[[], datetime] = now_tz,
    ):
        self.lock_timeout = lock_timeout
        self._clock = clock

    def _stale_before(self, now: datetime) -> datetime:
        return now - self.lock_timeout

    def _get_log(self, db: Session, team_id: int) -> Optional[CallLog]:
        return (
            db.query(CallLog)
            .filter(CallLog.team_id == team_id)
            .execution_options(populate_existing=True)
            .first()
        )

    def _ensure_team(self, db: Session, team_id: int) -> None:
        if not db.query(Team.id).filter(Team.id == team_id).first():
            raise TeamNotFoundError(f"Team {team_id} not found")

    def release_stale_locks(self, db: Session) -> int:
        stale_before = self._stale_before(self._clock())
        result = db.execute(
            update(CallLog)
            .where(CallLog.locked_by.isnot(None), CallLog.locked_at < stale_before)
            .values(locked_by=None, locked_at=None, call_status=CallStatus.NOT_CALLED)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            logger.info("Released %s stale call locks", result.rowcount)
        return result.rowcount or 0

    def list_teams(self, db: Session) -> List[Dict[str, Any]]:
        self.release_stale_locks(db)

        teams = (
            db.query(Team)
            .filter(Team.verification_status == VerificationStatus.PENDING)
            .order_by(Team.created_at.desc(), Team.id.desc())
            .all()
        )
        team_ids = [team.id for team in teams]
        leaders = {}
        logs = {}
        if team_ids:
            for member in (
                db.query(TeamMember)
                .filter(TeamMember.team_id.in_(team_ids), TeamMember.is_leader.is_(True))
                .order_by(TeamMember.id.asc())
                .all()
            ):
                leaders.setdefault(member.team_id, member)
            for log in (
                db.query(CallLog)
                .filter(CallLog.team_id.in_(team_ids))
                .execution_options(populate_existing=True)
                .all()
            ):
                logs[log.team_id] = log

        entries = []
        for team in teams:
            leader = leaders.get(team.id)
            log = logs.get(team.id)
            entries.append(
                {
                    "teamId": team.id,
                    "teamName": team.team_name,
                    "leaderName": leader.full_name if leader else "Unknown",
                    "leaderPhone": leader.phone if leader else "N/A",
                    "leaderEmail": leader.email if leader else "N/A",
                    "callStatus": log.call_status.value if log else CallStatus.NOT_CALLED.value,
                    "calledBy": log.called_by if log else None,
                    "lockedBy": log.locked_by if log else None,
                    "lockedAt": ensure_timezone(log.locked_at) if log else None,
                    "notes": log.notes if log else None,
                    "lastCalledAt": ensure_timezone(log.last_called_at) if log else None,
                }
            )
        return entries

    def _claim_upsert(self, db: Session, team_id: int, caller_name: str, now: datetime) -> bool:
        table = CallLog.__table__
        dialect = db.get_bind().dialect.name
        claimable = or_(
            table.c.locked_by.is_(None),
            table.c.locked_by == caller_name,
            table.c.locked_at < self._stale_before(now),
        )
        carried_status = case(
            (table.c.call_status != CallStatus.BEING_CALLED, table.c.call_status),
            else_=table.c.previous_status,
        )
        values = dict(
            team_id=team_id,
            call_status=CallStatus.BEING_CALLED,
            locked_by=caller_name,
            locked_at=now,
        )

        if dialect in ("postgresql", "sqlite"):
            dialect_insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = dialect_insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.team_id],
                set_={
                    "call_status": stmt.excluded.call_status,
                    "previous_status": carried_status,
                    "locked_by": stmt.excluded.locked_by,
                    "locked_at": stmt.excluded.locked_at,
                    "updated_at": func.now(),
                },
                where=claimable,
            )
            result = db.execute(stmt)
            db.commit()
            return bool(result.rowcount)

        # Generic path: conditional update, then insert; a concurrent insert
        # surfaces as IntegrityError and the conditional update decides.
        update_stmt = (
            update(table)
            .where(and_(table.c.team_id == team_id, claimable))
            .values(
                previous_status=carried_status,
                call_status=CallStatus.BEING_CALLED,
                locked_by=caller_name,
                locked_at=now,
            )
        )
        if db.execute(update_stmt).rowcount:
            db.commit()
            return True
        try:
            db.execute(insert(table).values(**values))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
        claimed = bool(db.execute(update_stmt).rowcount)
        db.commit()
        return claimed

    def acquire(self, db: Session, team_id: int, caller_name: str) -> LockResult:
        self._ensure_team(db, team_id)
        self.release_stale_locks(db)

        now = self._clock()
        if self._claim_upsert(db, team_id, caller_name, now):
            logger.info("Team %s locked for calling by %s", team_id, caller_name)
            return LockResult(True, "Team locked for calling", self._get_log(db, team_id))

        holder = self._get_log(db, team_id)
        holder_name = holder.locked_by if holder and holder.locked_by else "another caller"
        return LockResult(False, f"Team is currently being called by {holder_name}")

    def complete(
        self,
        db: Session,
        team_id: int,
        outcome: CallStatus,
        caller_name: str,
        notes: Optional[str] = None,
    ) -> LockResult:
        # Any caller may record an outcome, lock or not.
        if outcome not in CALL_OUTCOMES:
            raise InvalidCallStatusError(
                "Invalid status. Must be: CALLED_WILL_VERIFY, CALLED_NOT_PICKED, or CALLED_REJECTED"
            )
        self._ensure_team(db, team_id)

        now = self._clock()
        log = self._get_log(db, team_id)
        if log is None:
            log = CallLog(team_id=team_id)
            db.add(log)
        log.call_status = outcome
        log.previous_status = outcome
        log.called_by = caller_name
        log.notes = notes or None
        log.last_called_at = now
        log.locked_by = None
        log.locked_at = None
        try:
            db.commit()
        except IntegrityError:
            # lost a race creating the row; write onto the winner's row
            db.rollback()
            log = self._get_log(db, team_id)
            log.call_status = outcome
            log.previous_status = outcome
            log.called_by = caller_name
            log.notes = notes or None
            log.last_called_at = now
            log.locked_by = None
            log.locked_at = None
            db.commit()
        db.refresh(log)
        logger.info("Team %s call outcome %s recorded by %s", team_id, outcome.value, caller_name)
        return LockResult(True, "Call status updated", log)

    def release(self, db: Session, team_id: int, caller_name: str) -> LockResult:
        log = self._get_log(db, team_id)
        if log is None or log.locked_by != caller_name:
            return LockResult(False, "You do not have the lock on this team")

        if log.called_by and log.previous_status is not None:
            restored = log.previous_status
        else:
            restored = CallStatus.NOT_CALLED

        result = db.execute(
            update(CallLog)
            .where(CallLog.team_id == team_id, CallLog.locked_by == caller_name)
            .values(call_status=restored, locked_by=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if not result.rowcount:
            return LockResult(False, "You do not have the lock on this team")
        logger.info("Team %s lock released by %s", team_id, caller_name)
        return LockResult(True, "Lock released", self._get_log(db, team_id))

    def stats(self, db: Session) -> Dict[str, int]:
        rows = (
            db.query(CallLog.call_status, func.count(Team.id))
            .select_from(Team)
            .outerjoin(CallLog, CallLog.team_id == Team.id)
            .filter(Team.verification_status == VerificationStatus.PENDING)
            .group_by(CallLog.call_status)
            .all()
        )
        counts: Dict[Optional[CallStatus], int] = {status: int(count) for status, count in rows}
        total = sum(counts.values())
        return {
            "total": total,
            "notCalled": counts.get(CallStatus.NOT_CALLED, 0) + counts.get(None, 0),
            "beingCalled": counts.get(CallStatus.BEING_CALLED, 0),
            "willVerify": counts.get(CallStatus.CALLED_WILL_VERIFY, 0),
            "notPicked": counts.get(CallStatus.CALLED_NOT_PICKED, 0),
            "rejected": counts.get(CallStatus.CALLED_REJECTED, 0),
        }
