import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from models import CallLog, SyncJob, SyncJobStatus, Team, TeamMember
from registration_import import TeamAggregate
from time_utils import now_tz

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    new_teams: int = 0
    updated_teams: int = 0
    removed_teams: int = 0
    errors: List[str] = field(default_factory=list)


def _build_members(team: TeamAggregate) -> List[TeamMember]:
    return [
        TeamMember(
            full_name=member.full_name,
            email=member.email,
            phone=member.phone,
            college_name=team.college_name,
            degree=member.degree,
            year_of_study=member.year_of_study,
            is_leader=member.is_leader,
        )
        for member in team.members
    ]


class TeamImporter:
    """Applies a freshly aggregated registration export to the store.

    Teams are matched on their external Unstop id, so re-running an import
    with the same file converges to the same state. Every team commits on its
    own; a failing team is reported and the rest of the batch continues.
    """

    def __init__(self, clock: Callable[[], datetime] = now_tz):
        self._clock = clock

    def start_job(self, db: Session, filename: Optional[str] = None) -> SyncJob:
        job = SyncJob(job_type="registration_sync", status=SyncJobStatus.RUNNING, source_filename=filename)
        db.add(job)
        db.commit()
        db.refresh(job)
        return job

    def fail_job(self, db: Session, job: SyncJob, message: str) -> None:
        db.rollback()
        job.status = SyncJobStatus.FAILED
        job.error_message = message
        job.completed_at = self._clock()
        db.commit()

    def _remove_missing(self, db: Session, keep_ids: set, result: ImportResult) -> None:
        existing = db.query(Team.id, Team.unstop_team_id, Team.team_name).all()
        for team_pk, unstop_id, team_name in existing:
            if unstop_id in keep_ids:
                continue
            try:
                db.query(CallLog).filter(CallLog.team_id == team_pk).delete(synchronize_session=False)
                team = db.query(Team).filter(Team.id == team_pk).first()
                if team:
                    db.delete(team)
                db.commit()
                result.removed_teams += 1
                logger.info("Removed team not in upload: %s", team_name)
            except Exception as exc:
                db.rollback()
                result.errors.append(f"Failed to remove team {team_name}: {exc}")
                logger.error("Failed to remove team %s: %s", team_name, exc)

    def _upsert_team(self, db: Session, data: TeamAggregate) -> bool:
        synced_at = self._clock()
        team = db.query(Team).filter(Team.unstop_team_id == data.unstop_team_id).first()
        if team:
            team.team_name = data.team_name
            team.college_name = data.college_name
            team.team_size = data.team_size
            team.verification_status = data.verification_status
            team.last_sync_at = synced_at
            db.query(TeamMember).filter(TeamMember.team_id == team.id).delete(synchronize_session=False)
            db.expire(team, ["members"])
            for member in _build_members(data):
                member.team_id = team.id
                db.add(member)
            db.commit()
            return False

        team = Team(
            unstop_team_id=data.unstop_team_id,
            team_name=data.team_name,
            college_name=data.college_name,
            team_size=data.team_size,
            verification_status=data.verification_status,
            last_sync_at=synced_at,
            members=_build_members(data),
        )
        db.add(team)
        db.commit()
        return True

    def import_teams(
        self,
        db: Session,
        teams: List[TeamAggregate],
        job: Optional[SyncJob] = None,
        replace_all: bool = True,
        *,
        total_rows: int = 0,
        skipped_rows: int = 0,
    ) -> ImportResult:
        result = ImportResult()

        if replace_all:
            self._remove_missing(db, {team.unstop_team_id for team in teams}, result)

        for data in teams:
            try:
                if self._upsert_team(db, data):
                    result.new_teams += 1
                else:
                    result.updated_teams += 1
            except Exception as exc:
                db.rollback()
                message = f"Failed to process team {data.team_name}: {exc}"
                result.errors.append(message)
                logger.error(message)

        if job is not None:
            job.total_rows = total_rows
            job.new_records = result.new_teams
            job.updated_records = result.updated_teams
            job.removed_records = result.removed_teams
            job.failed_records = len(result.errors)
            job.skipped_rows = skipped_rows
            job.status = SyncJobStatus.COMPLETED
            job.completed_at = self._clock()
            db.commit()

        logger.info(
            "Import finished: %s new, %s updated, %s removed, %s errors",
            result.new_teams,
            result.updated_teams,
            result.removed_teams,
            len(result.errors),
        )
        return result
