from datetime import datetime, timezone

from conftest import make_row
from models import CallLog, CallStatus, SyncJobStatus, Team, TeamMember, VerificationStatus
from registration_import import normalize_team_rows
from team_sync import TeamImporter


def _clock():
    return datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _teams(rows):
    return normalize_team_rows(rows).teams


def _sample_rows():
    return [
        make_row("T1", "Alpha", "Asha", email="asha@x.com", mobile="9876543210", role="Team Leader"),
        make_row("T1", "Alpha", "Bala", email="bala@x.com"),
        make_row("T2", "Beta", "Chitra", email="chitra@x.com", role="Team Leader", status="Pending"),
    ]


def test_first_import_creates_teams_and_members(db):
    importer = TeamImporter(clock=_clock)

    result = importer.import_teams(db, _teams(_sample_rows()))

    assert (result.new_teams, result.updated_teams, result.removed_teams) == (2, 0, 0)
    assert result.errors == []
    alpha = db.query(Team).filter(Team.unstop_team_id == "T1").one()
    assert alpha.team_size == 2
    assert alpha.verification_status == VerificationStatus.VERIFIED
    assert alpha.leader.full_name == "Asha"
    assert alpha.leader.college_name == "MIT"
    beta = db.query(Team).filter(Team.unstop_team_id == "T2").one()
    assert beta.verification_status == VerificationStatus.PENDING


def test_reimporting_same_file_is_idempotent(db):
    importer = TeamImporter(clock=_clock)
    importer.import_teams(db, _teams(_sample_rows()))
    ids_before = {t.unstop_team_id: t.id for t in db.query(Team).all()}

    result = importer.import_teams(db, _teams(_sample_rows()))

    assert (result.new_teams, result.updated_teams, result.removed_teams) == (0, 2, 0)
    db.expire_all()
    assert {t.unstop_team_id: t.id for t in db.query(Team).all()} == ids_before
    assert db.query(TeamMember).count() == 3


def test_update_replaces_members_and_keeps_surrogate_id(db):
    importer = TeamImporter(clock=_clock)
    importer.import_teams(db, _teams(_sample_rows()))
    alpha_id = db.query(Team.id).filter(Team.unstop_team_id == "T1").scalar()

    rows = [
        make_row("T1", "Alpha v2", "Dev", email="dev@x.com", role="Team Leader", status="Pending"),
        make_row("T2", "Beta", "Chitra", email="chitra@x.com", role="Team Leader", status="Pending"),
    ]
    importer.import_teams(db, _teams(rows))

    db.expire_all()
    alpha = db.query(Team).filter(Team.unstop_team_id == "T1").one()
    assert alpha.id == alpha_id
    assert alpha.team_name == "Alpha v2"
    assert alpha.verification_status == VerificationStatus.PENDING
    assert [m.full_name for m in alpha.members] == ["Dev"]
    assert alpha.team_size == 1


def test_teams_missing_from_upload_are_removed_with_call_logs(db):
    importer = TeamImporter(clock=_clock)
    importer.import_teams(db, _teams(_sample_rows()))
    beta_id = db.query(Team.id).filter(Team.unstop_team_id == "T2").scalar()
    db.add(CallLog(team_id=beta_id, call_status=CallStatus.CALLED_NOT_PICKED, called_by="Alice"))
    db.commit()

    result = importer.import_teams(db, _teams(_sample_rows()[:2]))

    assert result.removed_teams == 1
    assert result.updated_teams == 1
    db.expire_all()
    assert db.query(Team).filter(Team.unstop_team_id == "T2").first() is None
    assert db.query(CallLog).count() == 0
    assert db.query(TeamMember).filter(TeamMember.team_id == beta_id).count() == 0


def test_replace_all_false_keeps_missing_teams(db):
    importer = TeamImporter(clock=_clock)
    importer.import_teams(db, _teams(_sample_rows()))

    result = importer.import_teams(db, _teams(_sample_rows()[:2]), replace_all=False)

    assert result.removed_teams == 0
    assert db.query(Team).count() == 2


def test_failing_team_is_reported_and_batch_continues(db):
    class FlakyImporter(TeamImporter):
        def _upsert_team(self, db, data):
            if data.unstop_team_id == "T1":
                raise RuntimeError("boom")
            return super()._upsert_team(db, data)

    result = FlakyImporter(clock=_clock).import_teams(db, _teams(_sample_rows()))

    assert result.new_teams == 1
    assert result.errors == ["Failed to process team Alpha: boom"]
    assert [t.unstop_team_id for t in db.query(Team).all()] == ["T2"]


def test_job_records_counts(db):
    importer = TeamImporter(clock=_clock)
    job = importer.start_job(db, "export.csv")
    assert job.status == SyncJobStatus.RUNNING

    importer.import_teams(db, _teams(_sample_rows()), job, total_rows=4, skipped_rows=1)

    db.refresh(job)
    assert job.status == SyncJobStatus.COMPLETED
    assert (job.total_rows, job.new_records, job.updated_records) == (4, 2, 0)
    assert (job.removed_records, job.failed_records, job.skipped_rows) == (0, 0, 1)
    assert job.completed_at is not None


def test_fail_job_marks_job_failed(db):
    importer = TeamImporter(clock=_clock)
    job = importer.start_job(db, "export.csv")

    importer.fail_job(db, job, "bad file")

    db.refresh(job)
    assert job.status == SyncJobStatus.FAILED
    assert job.error_message == "bad file"
