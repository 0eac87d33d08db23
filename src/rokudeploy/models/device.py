"""Device response models."""

from typing import Optional

from pydantic import BaseModel, Field


class DeviceResponse(BaseModel):
    """Status code and decoded body of one device HTTP exchange."""

    status_code: int
    body: Optional[str] = None


class DeviceMessages(BaseModel):
    """Messages scraped from a device response body, in page order."""

    errors: list[str] = Field(default_factory=list)
    infos: list[str] = Field(default_factory=list)
    successes: list[str] = Field(default_factory=list)


class PublishResult(BaseModel):
    message: str
    results: DeviceResponse
