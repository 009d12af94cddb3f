from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from sitewalker.models.recording import Point, RecordingSession

EventType = Literal["navigation", "dom_detection", "login", "captcha", "screenshot", "error", "action"]
BrowserActionType = Literal["click", "type", "scroll", "navigate", "screenshot", "hover", "wait"]
CrawlStatus = Literal["idle", "crawling", "completed", "error", "recording", "stopped"]


class CrawlEvent(BaseModel):
    """Human-readable audit-trail entry emitted while a run progresses."""

    id: str
    timestamp: str
    type: EventType
    url: str
    message: str
    details: dict = Field(default_factory=dict)


class BrowserAction(BaseModel):
    id: str
    timestamp: str
    type: BrowserActionType
    url: str
    position: Optional[Point] = None
    element_selector: Optional[str] = None
    element_text: Optional[str] = None
    input_text: Optional[str] = None
    scroll_amount: Optional[int] = None


class CrawlProgress(BaseModel):
    current_url: str
    pages_discovered: int
    pages_crawled: int
    success_rate: float
    elapsed_time: int  # milliseconds
    status: CrawlStatus
    events: List[CrawlEvent] = Field(default_factory=list)
    browser_actions: List[BrowserAction] = Field(default_factory=list)
    latest_screenshot: Optional[str] = None
    session: Optional[RecordingSession] = None
