import csv
import io
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from models import VerificationStatus

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = os.environ.get("DEFAULT_COUNTRY_CODE", "91")
HEADER_ROW_OFFSET = 2  # 1-indexed rows plus the header line

COL_TEAM_ID = "Team ID"
COL_TEAM_NAME = "Team Name"
COL_ROLE = "Candidate role"
COL_NAME = "Candidate's Name"
COL_EMAIL = "Candidate's Email"
COL_MOBILE = "Candidate's Mobile"
COL_ORGANISATION = "Candidate's Organisation"
COL_COURSE = "Course"
COL_GRADUATION_YEAR = "Year of Graduation"
COL_REG_STATUS = "Reg. Status"

LEADER_ROLE = "team leader"
COMPLETE_STATUS = "complete"

REASON_MISSING_TEAM_NAME = "Missing Team Name"
REASON_MISSING_TEAM_ID = "Missing Team ID"

NON_DIGIT_RE = re.compile(r"\D")
LEADING_INT_RE = re.compile(r"^\s*(\d+)")


class RegistrationFileError(ValueError):
    pass


@dataclass
class MemberRecord:
    full_name: str
    email: str
    phone: str
    is_leader: bool
    degree: Optional[str] = None
    year_of_study: Optional[int] = None


@dataclass
class TeamAggregate:
    unstop_team_id: str
    team_name: str
    college_name: str
    verification_status: VerificationStatus
    team_size: int = 0
    leader: Optional[MemberRecord] = None
    members: List[MemberRecord] = field(default_factory=list)


@dataclass
class SkippedRow:
    row_number: int
    candidate_name: str
    candidate_email: str
    candidate_phone: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "candidateName": self.candidate_name,
            "candidateEmail": self.candidate_email,
            "candidatePhone": self.candidate_phone,
            "reason": self.reason,
        }


@dataclass
class NormalizeResult:
    teams: List[TeamAggregate]
    skipped_rows: List[SkippedRow]


def normalize_phone(raw: Optional[str]) -> str:
    digits = NON_DIGIT_RE.sub("", str(raw or ""))
    if len(digits) == 10:
        digits = f"{DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_year(value: Any) -> Optional[int]:
    match = LEADING_INT_RE.match(_clean(value))
    if not match:
        return None
    return int(match.group(1))


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_blank(row: Dict[str, str]) -> bool:
    return not any(_clean(value) for value in row.values())


def _drop_trailing_blank(rows: List[Dict[str, str]]) -> List[Dict[str, str]]:
    # Interior blank rows stay so row numbers keep matching the file.
    while rows and _is_blank(rows[-1]):
        rows.pop()
    return rows


def _read_csv(contents: bytes) -> List[Dict[str, str]]:
    try:
        text = contents.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise RegistrationFileError("CSV file must be UTF-8 encoded") from exc

    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if not header or not any(_clean(cell) for cell in header):
        raise RegistrationFileError("CSV header row is empty")
    headers = [_clean(cell) for cell in header]

    rows = []
    for values in reader:
        rows.append({
            key: (values[i] if i < len(values) else "")
            for i, key in enumerate(headers)
            if key
        })
    return _drop_trailing_blank(rows)


def _read_xlsx(contents: bytes) -> List[Dict[str, str]]:
    try:
        wb = load_workbook(filename=io.BytesIO(contents), read_only=True, data_only=True)
    except Exception as exc:
        raise RegistrationFileError("Could not open Excel workbook") from exc

    try:
        ws = wb.active
        sheet_rows = ws.iter_rows(values_only=True)
        header = next(sheet_rows, None)
        if not header or not any(cell is not None for cell in header):
            raise RegistrationFileError("Excel header row is empty")
        headers = [_clean(cell) for cell in header]

        rows = []
        for values in sheet_rows:
            values = values or ()
            rows.append({
                key: (_cell_to_str(values[i]) if i < len(values) else "")
                for i, key in enumerate(headers)
                if key
            })
        return _drop_trailing_blank(rows)
    finally:
        wb.close()


def read_registration_rows(filename: str, contents: bytes) -> List[Dict[str, str]]:
    """Decode an uploaded registration export into header-keyed rows.

    Accepts the Unstop CSV export and the same sheet saved as ``.xlsx``.
    """
    extension = Path(filename or "").suffix.lower()
    if extension == ".xlsx":
        return _read_xlsx(contents)
    if extension == ".csv":
        return _read_csv(contents)
    raise RegistrationFileError("Only CSV or Excel .xlsx files are supported")


def _skip(index: int, row: Dict[str, Any], reason: str) -> SkippedRow:
    return SkippedRow(
        row_number=index + HEADER_ROW_OFFSET,
        candidate_name=_clean(row.get(COL_NAME)) or "Unknown",
        candidate_email=_clean(row.get(COL_EMAIL)) or "N/A",
        candidate_phone=_clean(row.get(COL_MOBILE)) or "N/A",
        reason=reason,
    )


def normalize_team_rows(rows: List[Dict[str, Any]]) -> NormalizeResult:
    """Group flat registration rows into one aggregate per external team id.

    Rows without a team name or team id are returned as skipped rows instead.
    Team name and organisation come from the first row seen for a team, while
    the verification status and the leader snapshot follow the last row that
    sets them.
    """
    teams: Dict[str, TeamAggregate] = {}
    skipped_rows: List[SkippedRow] = []

    for index, row in enumerate(rows):
        if not row:
            continue

        team_name = _clean(row.get(COL_TEAM_NAME))
        team_id = _clean(row.get(COL_TEAM_ID))

        if not team_name:
            logger.warning("Skipping row %s without Team Name", index + HEADER_ROW_OFFSET)
            skipped_rows.append(_skip(index, row, REASON_MISSING_TEAM_NAME))
            continue
        if not team_id:
            logger.warning("Skipping row %s without Team ID", index + HEADER_ROW_OFFSET)
            skipped_rows.append(_skip(index, row, REASON_MISSING_TEAM_ID))
            continue

        is_leader = _clean(row.get(COL_ROLE)).lower() == LEADER_ROLE
        is_complete = _clean(row.get(COL_REG_STATUS)).lower() == COMPLETE_STATUS
        status = VerificationStatus.VERIFIED if is_complete else VerificationStatus.PENDING

        member = MemberRecord(
            full_name=_clean(row.get(COL_NAME)) or "Unknown",
            email=_clean(row.get(COL_EMAIL)).lower(),
            phone=normalize_phone(row.get(COL_MOBILE)),
            is_leader=is_leader,
            degree=_clean(row.get(COL_COURSE)) or None,
            year_of_study=_parse_year(row.get(COL_GRADUATION_YEAR)),
        )

        team = teams.get(team_id)
        if team is None:
            team = TeamAggregate(
                unstop_team_id=team_id,
                team_name=team_name,
                college_name=_clean(row.get(COL_ORGANISATION)) or "Unknown College",
                verification_status=status,
            )
            teams[team_id] = team

        team.verification_status = status
        team.members.append(member)
        team.team_size = len(team.members)
        if is_leader:
            if team.leader is not None:
                team.leader.is_leader = False
            team.leader = member

    return NormalizeResult(teams=list(teams.values()), skipped_rows=skipped_rows)
