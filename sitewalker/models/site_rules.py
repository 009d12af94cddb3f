from typing import List, Optional

from pydantic import BaseModel, Field


class ContextElement(BaseModel):
    tag_name: str
    class_name: str = ""
    position: str = "static"
    z_index: int = 0
    level: int
    relationship: str  # "parent" or "sibling"


class TrainingPayload(BaseModel):
    """Feature snapshot of the element an operator labeled in training mode."""

    tag_name: str
    primary_class: Optional[str] = None
    all_classes: str = ""
    element_id: Optional[str] = None
    position: str = "static"
    z_index: int = 0
    width: float = 0
    height: float = 0
    top: float = 0
    left: float = 0
    background_color: Optional[str] = None
    text_preview: str = ""
    modal_score: int = 0
    has_form_elements: bool = False
    component_type: str = "modal"
    component_name: Optional[str] = None
    url: Optional[str] = None
    context_elements: List[ContextElement] = Field(default_factory=list)


class TrainedComponent(BaseModel):
    id: str
    page_url: str
    page_path: str
    type: str
    name: str
    selector: str
    training_data: TrainingPayload
    created_at: str
    last_updated: str


class SiteRules(BaseModel):
    """All trained components of one hostname, versioned per persisted change."""

    domain: str
    version: int = 0
    last_updated: str
    trained_components: List[TrainedComponent] = Field(default_factory=list)
