from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from email_bulk import Recipient, TargetGroup
from models import CommunicationLog, CommunicationStatus, Team, TeamMember, VerificationStatus
from time_utils import ensure_timezone

EXPORT_HEADERS = [
    "Team ID",
    "Team Name",
    "College",
    "Team Size",
    "Verification Status",
    "Leader Name",
    "Leader Email",
    "Leader Phone",
    "Last Sync",
]

TARGET_GROUP_FILTERS = {
    TargetGroup.UNVERIFIED_ALL: (VerificationStatus.PENDING, False),
    TargetGroup.UNVERIFIED_LEADER: (VerificationStatus.PENDING, True),
    TargetGroup.VERIFIED_ALL: (VerificationStatus.VERIFIED, False),
    TargetGroup.VERIFIED_LEADER: (VerificationStatus.VERIFIED, True),
    TargetGroup.ALL: (None, False),
}


class TeamNotFound(LookupError):
    pass


class InvalidTransitionError(ValueError):
    pass


def _member_dict(member: TeamMember) -> Dict[str, Any]:
    return {
        "id": member.id,
        "fullName": member.full_name,
        "email": member.email,
        "phone": member.phone,
        "degree": member.degree,
        "yearOfStudy": member.year_of_study,
        "isLeader": member.is_leader,
    }


def team_dict(team: Team, include_members: bool = True) -> Dict[str, Any]:
    leader = team.leader
    payload = {
        "id": team.id,
        "unstopTeamId": team.unstop_team_id,
        "teamName": team.team_name,
        "collegeName": team.college_name,
        "teamSize": team.team_size,
        "verificationStatus": team.verification_status.value,
        "lastSyncAt": ensure_timezone(team.last_sync_at),
        "leader": _member_dict(leader) if leader else None,
    }
    if include_members:
        payload["members"] = [_member_dict(member) for member in team.members]
    return payload


def _teams_with_members(db: Session, status: Optional[VerificationStatus] = None) -> List[Team]:
    query = db.query(Team).options(selectinload(Team.members))
    if status is not None:
        query = query.filter(Team.verification_status == status)
    return query.order_by(Team.created_at.desc(), Team.id.desc()).all()


def team_stats(db: Session) -> Dict[str, int]:
    rows = db.query(Team.verification_status, func.count(Team.id)).group_by(Team.verification_status).all()
    counts = {status: int(count) for status, count in rows}
    return {
        "total": sum(counts.values()),
        "verified": counts.get(VerificationStatus.VERIFIED, 0),
        "pending": counts.get(VerificationStatus.PENDING, 0),
        "rejected": counts.get(VerificationStatus.REJECTED, 0),
    }


def verified_teams_with_leaders(db: Session) -> List[Dict[str, Any]]:
    return [team_dict(team) for team in _teams_with_members(db, VerificationStatus.VERIFIED)]


def unverified_leader_contacts(db: Session) -> List[Dict[str, Any]]:
    contacts = []
    for team in _teams_with_members(db, VerificationStatus.PENDING):
        leader = team.leader
        contacts.append({
            "teamId": team.id,
            "teamName": team.team_name,
            "leaderName": leader.full_name if leader else "Unknown",
            "leaderEmail": leader.email if leader else "N/A",
            "leaderPhone": leader.phone if leader else "N/A",
            "verificationStatus": team.verification_status.value,
        })
    return contacts


def unverified_phone_numbers(db: Session) -> List[str]:
    rows = (
        db.query(TeamMember.phone)
        .join(Team, Team.id == TeamMember.team_id)
        .filter(Team.verification_status == VerificationStatus.PENDING, TeamMember.is_leader.is_(True))
        .order_by(Team.id.asc())
        .all()
    )
    return [phone for (phone,) in rows if phone]


def unverified_all_contacts(db: Session) -> List[Dict[str, Any]]:
    contacts = []
    for team in _teams_with_members(db, VerificationStatus.PENDING):
        for member in team.members:
            contacts.append({
                "teamId": team.id,
                "teamName": team.team_name,
                "name": member.full_name,
                "email": member.email,
                "phone": member.phone,
                "isLeader": member.is_leader,
            })
    return contacts


def verify_team(db: Session, team_id: int) -> Team:
    team = db.query(Team).filter(Team.id == team_id).first()
    if not team:
        raise TeamNotFound(f"Team {team_id} not found")
    if team.verification_status == VerificationStatus.REJECTED:
        raise InvalidTransitionError("Rejected teams cannot be verified")
    if team.verification_status != VerificationStatus.VERIFIED:
        team.verification_status = VerificationStatus.VERIFIED
        db.commit()
        db.refresh(team)
    return team


def export_rows(db: Session, status: Optional[VerificationStatus] = None) -> List[List[Any]]:
    rows = []
    for team in _teams_with_members(db, status):
        leader = team.leader
        last_sync = ensure_timezone(team.last_sync_at)
        rows.append([
            team.unstop_team_id,
            team.team_name,
            team.college_name or "",
            team.team_size,
            team.verification_status.value,
            leader.full_name if leader else "N/A",
            leader.email if leader else "N/A",
            leader.phone if leader else "N/A",
            last_sync.isoformat() if last_sync else "",
        ])
    return rows


def resolve_recipients(db: Session, group: TargetGroup) -> List[Recipient]:
    status, leaders_only = TARGET_GROUP_FILTERS[group]
    recipients = []
    for team in _teams_with_members(db, status):
        for member in team.members:
            if leaders_only and not member.is_leader:
                continue
            recipients.append(Recipient(
                email=member.email,
                name=member.full_name,
                team_id=team.id,
                member_id=member.id,
                team_name=team.team_name,
            ))
    return recipients


def recipient_counts(db: Session) -> Dict[str, int]:
    rows = (
        db.query(Team.verification_status, TeamMember.is_leader, func.count(TeamMember.id))
        .join(TeamMember, TeamMember.team_id == Team.id)
        .group_by(Team.verification_status, TeamMember.is_leader)
        .all()
    )
    totals: Dict[VerificationStatus, int] = {}
    leaders: Dict[VerificationStatus, int] = {}
    for status, is_leader, count in rows:
        totals[status] = totals.get(status, 0) + int(count)
        if is_leader:
            leaders[status] = leaders.get(status, 0) + int(count)

    unverified_all = totals.get(VerificationStatus.PENDING, 0)
    verified_all = totals.get(VerificationStatus.VERIFIED, 0)
    return {
        TargetGroup.UNVERIFIED_ALL.value: unverified_all,
        TargetGroup.UNVERIFIED_LEADER.value: leaders.get(VerificationStatus.PENDING, 0),
        TargetGroup.VERIFIED_ALL.value: verified_all,
        TargetGroup.VERIFIED_LEADER.value: leaders.get(VerificationStatus.VERIFIED, 0),
        TargetGroup.ALL.value: sum(totals.values()),
    }


def email_stats(db: Session, recent_limit: int = 50) -> Dict[str, Any]:
    by_subject = (
        db.query(CommunicationLog.subject, func.count(CommunicationLog.id))
        .filter(CommunicationLog.channel == "EMAIL", CommunicationLog.status == CommunicationStatus.SENT)
        .group_by(CommunicationLog.subject)
        .order_by(func.count(CommunicationLog.id).desc())
        .all()
    )
    total_sent = (
        db.query(func.count(CommunicationLog.id))
        .filter(CommunicationLog.channel == "EMAIL", CommunicationLog.status == CommunicationStatus.SENT)
        .scalar()
    )
    total_failed = (
        db.query(func.count(CommunicationLog.id))
        .filter(CommunicationLog.channel == "EMAIL", CommunicationLog.status == CommunicationStatus.FAILED)
        .scalar()
    )
    recent = (
        db.query(CommunicationLog)
        .filter(CommunicationLog.channel == "EMAIL")
        .order_by(CommunicationLog.id.desc())
        .limit(recent_limit)
        .all()
    )
    return {
        "totalSent": int(total_sent or 0),
        "totalFailed": int(total_failed or 0),
        "bySubject": [{"subject": subject or "No Subject", "sentCount": int(count)} for subject, count in by_subject],
        "recentEmails": [
            {
                "id": log.id,
                "subject": log.subject,
                "recipientEmail": log.recipient_email,
                "status": log.status.value,
                "sentAt": ensure_timezone(log.sent_at),
                "failedAt": ensure_timezone(log.failed_at),
                "errorMessage": log.error_message,
            }
            for log in recent
        ],
    }
