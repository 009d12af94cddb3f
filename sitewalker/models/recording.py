from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ActionType = Literal[
    "navigation",
    "click",
    "type",
    "scroll",
    "keydown",
    "keyup",
    "mousemove",
    "manual_capture",
    "modal_interaction",
    "modal_content_change",
    "modal_tracking_start",
    "modal_training",
]


class Point(BaseModel):
    x: float
    y: float


class Dimensions(BaseModel):
    width: float
    height: float
    top: float
    left: float


class DiscoveredLink(BaseModel):
    href: str
    text: str
    title: Optional[str] = None
    element_type: str
    selector: str
    position: Optional[Point] = None
    is_internal: bool
    is_button: bool


class ActionStep(BaseModel):
    action_description: str
    screenshot: Optional[str] = None


class CaptureDetails(BaseModel):
    timestamp: str
    filename: str
    capture_type: Literal["area", "viewport"]
    dimensions: dict
    page_url: str
    page_title: str


class RecordedAction(BaseModel):
    """One user or system interaction, in chronological order within a session."""

    id: str
    timestamp: str
    type: ActionType
    from_url: str
    to_url: str
    actions: List[ActionStep]
    position: Optional[Point] = None
    element_selector: Optional[str] = None
    element_text: Optional[str] = None
    element_id: Optional[str] = None
    element_type: Optional[str] = None
    element_name: Optional[str] = None
    element_placeholder: Optional[str] = None
    element_href: Optional[str] = None
    input_text: Optional[str] = None
    key: Optional[str] = None
    scroll_delta: Optional[Point] = None
    screenshot_before: Optional[str] = None
    screenshot_after: Optional[str] = None
    discovered_links: Optional[List[DiscoveredLink]] = None
    capture_details: Optional[CaptureDetails] = None

    @property
    def description(self) -> str:
        return self.actions[0].action_description if self.actions else self.type


class TriggeredBy(BaseModel):
    action_type: str
    action_description: str
    element_selector: Optional[str] = None
    element_text: Optional[str] = None


class ModalStateChange(BaseModel):
    timestamp: str
    triggered_by: TriggeredBy
    change_description: str
    screenshot: Optional[str] = None
    content_diff: Optional[str] = None


class DetectedModal(BaseModel):
    id: str
    timestamp: str
    triggered_by: TriggeredBy
    modal_selector: Optional[str] = None
    modal_content: Optional[str] = None
    screenshot: Optional[str] = None
    score: int = 0
    reasons: List[str] = Field(default_factory=list)
    dimensions: Optional[Dimensions] = None
    state_changes: List[ModalStateChange] = Field(default_factory=list)


class RecordingSession(BaseModel):
    id: str
    start_time: str
    end_time: Optional[str] = None
    start_url: str
    actions: List[RecordedAction] = Field(default_factory=list)
    screenshots: List[str] = Field(default_factory=list)
    modals: List[DetectedModal] = Field(default_factory=list)
