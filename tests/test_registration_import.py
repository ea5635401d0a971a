import io

import pytest
from openpyxl import Workbook

from conftest import make_row
from models import VerificationStatus
from registration_import import (
    RegistrationFileError,
    normalize_phone,
    normalize_team_rows,
    read_registration_rows,
)


def test_normalize_phone():
    assert normalize_phone("9876543210") == "+919876543210"
    assert normalize_phone("+91 98765 43210") == "+919876543210"
    assert normalize_phone("123") == "+123"
    assert normalize_phone("(987) 654-3210") == "+919876543210"
    assert normalize_phone("") == "+"
    assert normalize_phone(None) == "+"


def test_rows_missing_team_name_or_id_are_skipped():
    rows = [
        make_row("T1", "", "No Name Team", email="a@x.com", mobile="9876543210"),
        make_row("", "Alpha", "No Id"),
        make_row("  ", "   ", "Blank Both"),
        make_row("T2", "Beta", "Kept"),
    ]

    result = normalize_team_rows(rows)

    assert [team.unstop_team_id for team in result.teams] == ["T2"]
    assert [(s.row_number, s.reason) for s in result.skipped_rows] == [
        (2, "Missing Team Name"),
        (3, "Missing Team ID"),
        (4, "Missing Team Name"),
    ]
    first = result.skipped_rows[0]
    assert first.candidate_name == "No Name Team"
    assert first.candidate_email == "a@x.com"
    assert first.candidate_phone == "9876543210"
    assert result.skipped_rows[1].candidate_email == "N/A"


def test_rows_grouped_by_team_id_with_first_seen_name():
    rows = [
        make_row("T1", "Alpha", "Asha", email=" ASHA@X.COM ", mobile="9876543210", role="Team Leader"),
        make_row("T2", "Beta", "Bala"),
        make_row("T1", "Alpha Renamed", "Chitra", organisation="Other College"),
    ]

    result = normalize_team_rows(rows)

    assert [team.unstop_team_id for team in result.teams] == ["T1", "T2"]
    alpha = result.teams[0]
    assert alpha.team_name == "Alpha"
    assert alpha.college_name == "MIT"
    assert alpha.team_size == 2
    assert [m.full_name for m in alpha.members] == ["Asha", "Chitra"]
    assert alpha.leader.full_name == "Asha"
    assert alpha.leader.email == "asha@x.com"
    assert alpha.leader.phone == "+919876543210"


def test_team_status_follows_last_row_processed():
    complete_last = [
        make_row("T1", "Alpha", "A", status="Incomplete"),
        make_row("T1", "Alpha", "B", status="Complete"),
    ]
    incomplete_last = [
        make_row("T1", "Alpha", "A", status="Complete"),
        make_row("T1", "Alpha", "B", status="Incomplete"),
    ]

    assert normalize_team_rows(complete_last).teams[0].verification_status == VerificationStatus.VERIFIED
    assert normalize_team_rows(incomplete_last).teams[0].verification_status == VerificationStatus.PENDING


def test_last_leader_row_wins_and_missing_leader_is_allowed():
    rows = [
        make_row("T1", "Alpha", "First Lead", role="Team Leader"),
        make_row("T1", "Alpha", "Second Lead", role="team leader"),
        make_row("T2", "Beta", "Only Member"),
    ]

    teams = normalize_team_rows(rows).teams

    assert teams[0].leader.full_name == "Second Lead"
    assert [m.is_leader for m in teams[0].members] == [False, True]
    assert teams[1].leader is None


def test_member_defaults_and_year_parsing():
    row = make_row("T1", "Alpha", "", organisation="")
    row["Course"] = " B.Tech "
    row["Year of Graduation"] = "2027"
    other = make_row("T1", "Alpha", "Dev")
    other["Year of Graduation"] = "n/a"

    team = normalize_team_rows([row, other]).teams[0]

    assert team.college_name == "Unknown College"
    assert team.members[0].full_name == "Unknown"
    assert team.members[0].degree == "B.Tech"
    assert team.members[0].year_of_study == 2027
    assert team.members[1].year_of_study is None


def test_read_csv_keeps_interior_blank_rows_and_drops_trailing_ones():
    content = (
        "\ufeffTeam ID,Team Name,Candidate role,Candidate's Name,Extra\n"
        "T1,Alpha,Team Leader,Asha,ignored\n"
        ",,,,\n"
        "T1,Alpha,Team Member,Bala\n"
        ",,,,\n"
        "\n"
    ).encode("utf-8")

    rows = read_registration_rows("export.CSV", content)

    assert len(rows) == 3
    assert rows[0]["Team ID"] == "T1"
    assert not any(rows[1].values())
    assert rows[2]["Candidate's Name"] == "Bala"
    assert rows[2]["Extra"] == ""


def test_skipped_row_numbers_match_file_lines():
    content = (
        "Team ID,Team Name,Candidate's Name\n"
        "T1,Alpha,Asha\n"
        ",,\n"
        "T2,,Bala\n"
    ).encode("utf-8")

    result = normalize_team_rows(read_registration_rows("export.csv", content))

    assert [(s.row_number, s.candidate_name, s.reason) for s in result.skipped_rows] == [
        (3, "Unknown", "Missing Team Name"),
        (4, "Bala", "Missing Team Name"),
    ]
    assert [team.unstop_team_id for team in result.teams] == ["T1"]


def test_read_xlsx_rows():
    wb = Workbook()
    ws = wb.active
    ws.append(["Team ID", "Team Name", "Candidate's Mobile"])
    ws.append([101.0, "Alpha", 9876543210])
    ws.append([None, None, None])
    stream = io.BytesIO()
    wb.save(stream)

    rows = read_registration_rows("export.xlsx", stream.getvalue())

    assert rows == [{"Team ID": "101", "Team Name": "Alpha", "Candidate's Mobile": "9876543210"}]


def test_read_rejects_unknown_extension():
    with pytest.raises(RegistrationFileError):
        read_registration_rows("export.pdf", b"%PDF")
