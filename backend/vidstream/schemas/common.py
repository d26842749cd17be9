"""Shared Pydantic schemas."""
from pydantic import BaseModel


class MessageResponse(BaseModel):
    message: str


class StatusResponse(BaseModel):
    status: str = "success"
    message: str
