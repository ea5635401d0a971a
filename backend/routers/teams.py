from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Optional
import csv
import io
import logging
import os
from openpyxl import Workbook

from database import get_db
from dependencies import get_email_dispatcher, get_team_importer
from email_bulk import BulkEmailDispatcher, Recipient, parse_target_group
from email_templates import build_verification_reminder_email, list_email_templates
from models import VerificationStatus
from registration_import import RegistrationFileError, normalize_team_rows, read_registration_rows
from schemas import (
    CustomEmailRequest,
    CustomRecipientsEmailRequest,
    ExportFormatEnum,
    UploadStats,
    VerificationStatusEnum,
)
from team_sync import TeamImporter
from time_utils import now_tz
import team_service

router = APIRouter()
logger = logging.getLogger(__name__)

UPLOAD_MAX_BYTES = int(os.environ.get("UPLOAD_MAX_BYTES", str(10 * 1024 * 1024)))
ALLOWED_UPLOAD_EXTENSIONS = (".csv", ".xlsx")


def _require_email_content(subject: Optional[str], html: Optional[str]):
    subject = str(subject or "").strip()
    html = str(html or "").strip()
    if not subject or not html:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subject and HTML content are required")
    return subject, html


def _run_import(importer: TeamImporter, db: Session, filename: str, contents: bytes):
    rows = read_registration_rows(filename, contents)

    job = importer.start_job(db, filename)
    logger.info("Starting registration import (job %s): %s rows from %s", job.id, len(rows), filename)

    try:
        normalized = normalize_team_rows(rows)
        logger.info("Normalized %s teams, skipped %s rows", len(normalized.teams), len(normalized.skipped_rows))
        result = importer.import_teams(
            db,
            normalized.teams,
            job,
            replace_all=True,
            total_rows=len(rows),
            skipped_rows=len(normalized.skipped_rows),
        )
    except Exception as exc:
        logger.exception("Registration import failed (job %s)", job.id)
        importer.fail_job(db, job, str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process CSV")
    return job, normalized, result


@router.post("/teams/upload-csv")
async def upload_csv(
    request: Request,
    file: UploadFile = File(...),
    importer: TeamImporter = Depends(get_team_importer),
    db: Session = Depends(get_db),
):
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_UPLOAD_EXTENSIONS):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only CSV or Excel .xlsx files are allowed")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(contents) > UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is too large")

    # parsing and reconciliation block on openpyxl and the database
    try:
        job, normalized, result = await run_in_threadpool(_run_import, importer, db, filename, contents)
    except RegistrationFileError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    skipped = [row.to_dict() for row in normalized.skipped_rows]
    request.app.state.last_skipped_rows = skipped

    stats = UploadStats(
        total_teams=len(normalized.teams),
        new_teams=result.new_teams,
        updated_teams=result.updated_teams,
        removed_teams=result.removed_teams,
        skipped_rows=len(skipped),
        errors=len(result.errors),
    )
    return {
        "success": True,
        "message": "CSV processed successfully",
        "jobId": job.id,
        "stats": stats.model_dump(by_alias=True),
        "skippedRows": skipped,
        "errors": result.errors,
    }


@router.get("/teams/skipped-rows")
def get_skipped_rows(request: Request):
    skipped = getattr(request.app.state, "last_skipped_rows", [])
    return {"success": True, "count": len(skipped), "skippedRows": skipped}


@router.get("/teams/stats")
def get_team_stats(db: Session = Depends(get_db)):
    return {"success": True, "stats": team_service.team_stats(db)}


@router.get("/teams/verified")
def get_verified_teams(db: Session = Depends(get_db)):
    teams = team_service.verified_teams_with_leaders(db)
    return {"success": True, "count": len(teams), "teams": teams}


@router.get("/teams/unverified")
def get_unverified_teams(db: Session = Depends(get_db)):
    teams = team_service.unverified_leader_contacts(db)
    return {"success": True, "count": len(teams), "teams": teams}


@router.get("/teams/unverified/phone-numbers")
def get_unverified_phone_numbers(db: Session = Depends(get_db)):
    phone_numbers = team_service.unverified_phone_numbers(db)
    return {"success": True, "count": len(phone_numbers), "phoneNumbers": phone_numbers}


@router.get("/teams/unverified/all-contacts")
def get_unverified_all_contacts(db: Session = Depends(get_db)):
    contacts = team_service.unverified_all_contacts(db)
    return {"success": True, "count": len(contacts), "contacts": contacts}


@router.patch("/teams/{team_id}/verify")
def verify_team(team_id: int, db: Session = Depends(get_db)):
    try:
        team = team_service.verify_team(db, team_id)
    except team_service.TeamNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    except team_service.InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    logger.info("Team %s (%s) manually verified", team.id, team.team_name)
    return {"success": True, "message": "Team verified successfully", "team": team_service.team_dict(team)}


@router.get("/teams/export")
def export_teams(
    status_value: Optional[str] = Query(None, alias="status"),
    format: ExportFormatEnum = ExportFormatEnum.CSV,
    db: Session = Depends(get_db),
):
    status_filter = None
    if status_value:
        try:
            status_filter = VerificationStatusEnum(status_value.strip().upper())
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
    verification = VerificationStatus(status_filter.value) if status_filter else None
    rows = team_service.export_rows(db, verification)

    label = (status_filter.value if status_filter else "all").lower()
    stamp = now_tz().strftime("%Y%m%d%H%M%S")

    if format == ExportFormatEnum.XLSX:
        wb = Workbook()
        ws = wb.active
        ws.title = "Teams"
        ws.append(team_service.EXPORT_HEADERS)
        for row in rows:
            ws.append(row)
        stream = io.BytesIO()
        wb.save(stream)
        stream.seek(0)
        headers = {"Content-Disposition": f"attachment; filename=teams_{label}_{stamp}.xlsx"}
        return StreamingResponse(
            stream,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers=headers,
        )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(team_service.EXPORT_HEADERS)
    for row in rows:
        writer.writerow(row)
    headers = {"Content-Disposition": f"attachment; filename=teams_{label}_{stamp}.csv"}
    return StreamingResponse(iter([output.getvalue()]), media_type="text/csv", headers=headers)


@router.post("/teams/send-verification-reminders")
def send_verification_reminders(
    dispatcher: BulkEmailDispatcher = Depends(get_email_dispatcher),
    db: Session = Depends(get_db),
):
    recipients = team_service.resolve_recipients(db, parse_target_group("unverified_all"))
    subject, html = build_verification_reminder_email()
    result = dispatcher.dispatch(db, recipients, subject, html, template_name="verification_reminder")
    return {"success": True, "message": "Verification reminders sent", "stats": result.stats()}


@router.post("/teams/send-custom-email")
def send_custom_email(
    payload: CustomEmailRequest,
    dispatcher: BulkEmailDispatcher = Depends(get_email_dispatcher),
    db: Session = Depends(get_db),
):
    subject, html = _require_email_content(payload.subject, payload.html_content)
    try:
        group = parse_target_group(payload.target_group)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid targetGroup")

    recipients = team_service.resolve_recipients(db, group)
    if not recipients:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No recipients found for the selected target group")

    logger.info("Sending custom email to %s recipients (%s)", len(recipients), group.value)
    result = dispatcher.dispatch(db, recipients, subject, html, template_name="custom")
    return {"success": True, "message": "Custom emails sent", "stats": result.stats(), "errors": result.errors}


@router.post("/teams/send-custom-email-recipients")
def send_custom_email_to_recipients(
    payload: CustomRecipientsEmailRequest,
    dispatcher: BulkEmailDispatcher = Depends(get_email_dispatcher),
    db: Session = Depends(get_db),
):
    subject, html = _require_email_content(payload.subject, payload.html_content)
    if not payload.recipients:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Recipients list is required and cannot be empty")

    recipients = [
        Recipient(email=item.email.strip(), name=(item.name or "").strip(), team_name="N/A")
        for item in payload.recipients
    ]
    logger.info("Sending custom email to %s recipients without a team", len(recipients))
    result = dispatcher.dispatch(db, recipients, subject, html, template_name="custom_no_team")
    return {"success": True, "message": "Custom emails sent to recipients", "stats": result.stats(), "errors": result.errors}


@router.get("/teams/email-templates")
def get_email_templates():
    return {"success": True, "templates": list_email_templates()}


@router.get("/teams/email-stats")
def get_email_stats(db: Session = Depends(get_db)):
    return {"success": True, "stats": team_service.email_stats(db)}


@router.get("/teams/email-recipient-counts")
def get_email_recipient_counts(db: Session = Depends(get_db)):
    return {"success": True, "counts": team_service.recipient_counts(db)}
