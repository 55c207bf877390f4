from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    status: str
    version: str


class ConversionAccepted(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")


class CancelResponse(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    canceled: bool
