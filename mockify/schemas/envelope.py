from pydantic import BaseModel, Field


class ErrorInfo(BaseModel):
    code: str
    message: str
    field: str | None = None
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion
    suggested_action: str | None = None
    parameters: dict = Field(default_factory=dict)
