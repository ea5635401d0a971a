from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from enum import Enum


class VerificationStatusEnum(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class CallOutcomeEnum(str, Enum):
    CALLED_WILL_VERIFY = "CALLED_WILL_VERIFY"
    CALLED_NOT_PICKED = "CALLED_NOT_PICKED"
    CALLED_REJECTED = "CALLED_REJECTED"


class ExportFormatEnum(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CallerRequest(_CamelModel):
    caller_name: Optional[str] = Field(None, alias="callerName")


class CallStatusUpdateRequest(_CamelModel):
    status: Optional[str] = None
    caller_name: Optional[str] = Field(None, alias="callerName")
    notes: Optional[str] = None


class CustomEmailRequest(_CamelModel):
    subject: Optional[str] = None
    html_content: Optional[str] = Field(None, alias="htmlContent")
    target_group: Optional[str] = Field(None, alias="targetGroup")


class CustomRecipient(BaseModel):
    email: str
    name: Optional[str] = None


class CustomRecipientsEmailRequest(_CamelModel):
    subject: Optional[str] = None
    html_content: Optional[str] = Field(None, alias="htmlContent")
    recipients: List[CustomRecipient] = Field(default_factory=list)


class UploadStats(_CamelModel):
    total_teams: int = Field(0, serialization_alias="totalTeams")
    new_teams: int = Field(0, serialization_alias="newTeams")
    updated_teams: int = Field(0, serialization_alias="updatedTeams")
    removed_teams: int = Field(0, serialization_alias="removedTeams")
    skipped_rows: int = Field(0, serialization_alias="skippedRows")
    errors: int = 0
