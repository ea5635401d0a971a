from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from pathlib import Path
import os
import logging

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import Base, engine
from call_log_service import CallLogService
from email_bulk import BulkEmailDispatcher
from team_sync import TeamImporter
from routers import call_log, teams

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def _cors_origins():
    raw = os.environ.get("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(
    *,
    team_importer: TeamImporter = None,
    call_log_service: CallLogService = None,
    email_dispatcher: BulkEmailDispatcher = None,
    create_tables: bool = True,
) -> FastAPI:
    app = FastAPI(title="Hackathon Registration Admin API", version="1.0.0")

    app.state.team_importer = team_importer or TeamImporter()
    app.state.call_log_service = call_log_service or CallLogService()
    app.state.email_dispatcher = email_dispatcher or BulkEmailDispatcher()
    app.state.last_skipped_rows = []

    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    def health():
        return {"status": "ok"}

    api_router.include_router(teams.router)
    api_router.include_router(call_log.router)
    app.include_router(api_router)

    origins = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=origins != ["*"],
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if create_tables:
        @app.on_event("startup")
        def startup_event():
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables ensured")

    return app


app = create_app()
