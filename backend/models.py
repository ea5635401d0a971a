from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SQLEnum, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
import enum


class VerificationStatus(enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class CallStatus(enum.Enum):
    NOT_CALLED = "NOT_CALLED"
    BEING_CALLED = "BEING_CALLED"
    CALLED_WILL_VERIFY = "CALLED_WILL_VERIFY"
    CALLED_NOT_PICKED = "CALLED_NOT_PICKED"
    CALLED_REJECTED = "CALLED_REJECTED"


CALL_OUTCOMES = (
    CallStatus.CALLED_WILL_VERIFY,
    CallStatus.CALLED_NOT_PICKED,
    CallStatus.CALLED_REJECTED,
)


class CommunicationStatus(enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class SyncJobStatus(enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    unstop_team_id = Column(String(64), unique=True, index=True, nullable=False)
    team_name = Column(String(255), nullable=False)
    college_name = Column(String(255), nullable=True)
    team_size = Column(Integer, default=0, nullable=False)
    verification_status = Column(SQLEnum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False, index=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.id",
    )
    call_log = relationship(
        "CallLog",
        back_populates="team",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def leader(self):
        for member in self.members:
            if member.is_leader:
                return member
        return None


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(32), nullable=False)
    college_name = Column(String(255), nullable=True)
    degree = Column(String(255), nullable=True)
    year_of_study = Column(Integer, nullable=True)
    is_leader = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    team = relationship("Team", back_populates="members")


class CallLog(Base):
    __tablename__ = "call_logs"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), unique=True, nullable=False)
    call_status = Column(SQLEnum(CallStatus), default=CallStatus.NOT_CALLED, nullable=False)
    previous_status = Column(SQLEnum(CallStatus), nullable=True)  # last recorded outcome, restored on release
    locked_by = Column(String(255), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    called_by = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    last_called_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    team = relationship("Team", back_populates="call_log")


class CommunicationLog(Base):
    __tablename__ = "communication_logs"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, nullable=True, index=True)  # custom recipients have no team
    member_id = Column(Integer, nullable=True)
    channel = Column(String(20), default="EMAIL", nullable=False)
    template_name = Column(String(100), nullable=True)
    subject = Column(String(500), nullable=True)
    content = Column(Text, nullable=True)
    recipient_email = Column(String(255), nullable=False)
    status = Column(SQLEnum(CommunicationStatus), nullable=False, index=True)
    provider = Column(String(50), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String(50), default="registration_sync", nullable=False)
    status = Column(SQLEnum(SyncJobStatus), default=SyncJobStatus.RUNNING, nullable=False)
    source_filename = Column(String(255), nullable=True)
    total_rows = Column(Integer, default=0)
    new_records = Column(Integer, default=0)
    updated_records = Column(Integer, default=0)
    removed_records = Column(Integer, default=0)
    failed_records = Column(Integer, default=0)
    skipped_rows = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)


class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
