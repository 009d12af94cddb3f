from typing import Optional

from pydantic import BaseModel, Field, HttpUrl


class StartSessionRequest(BaseModel):
    url: HttpUrl


class TrainingToggle(BaseModel):
    enabled: bool


class BoundingBox(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class CaptureRequest(BaseModel):
    bounding_box: Optional[BoundingBox] = Field(
        default=None,
        description="Page area to capture; the whole viewport when omitted.",
    )
