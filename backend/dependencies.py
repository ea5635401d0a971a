from fastapi import Request

from call_log_service import CallLogService
from email_bulk import BulkEmailDispatcher
from team_sync import TeamImporter


def get_team_importer(request: Request) -> TeamImporter:
    return request.app.state.team_importer


def get_call_log_service(request: Request) -> CallLogService:
    return request.app.state.call_log_service


def get_email_dispatcher(request: Request) -> BulkEmailDispatcher:
    return request.app.state.email_dispatcher
