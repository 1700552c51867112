from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: str


class LedgerErrorDetail(BaseModel):
    error: str
    details: str


class LedgerErrorResponse(BaseModel):
    detail: LedgerErrorDetail
