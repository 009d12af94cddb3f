from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from sitewalker.models.recording import RecordingSession

ErrorType = Literal["timeout", "404", "javascript_error", "other"]


class Position(BaseModel):
    x: float = 0
    y: float = 0


class DiscoveredVia(BaseModel):
    selector: str
    link_text: str
    element_type: str


class LinkRelationship(BaseModel):
    """A followed edge between two crawled pages."""

    from_url: str = Field(serialization_alias="from")
    to: str
    label: str
    selector: str
    element_type: str
    position: Position = Field(default_factory=Position)
    discovery_timestamp: str


class PageLinks(BaseModel):
    internal: List[str] = Field(default_factory=list)
    external: List[str] = Field(default_factory=list)


class ImageRef(BaseModel):
    src: str
    alt: str = ""


class FormInfo(BaseModel):
    action: str
    method: str
    fields: List[str]


class ClickableElement(BaseModel):
    index: int
    tag_name: str
    text_content: str
    inner_text: str
    class_name: str
    element_id: str
    href: str
    is_visible: bool
    has_login_text: bool


class PageContent(BaseModel):
    text_content: str = ""
    markdown: str = ""
    headings: List[str] = Field(default_factory=list)
    links: PageLinks = Field(default_factory=PageLinks)
    images: List[ImageRef] = Field(default_factory=list)
    forms: List[FormInfo] = Field(default_factory=list)
    clickable_elements: List[ClickableElement] = Field(default_factory=list)


class TechnicalData(BaseModel):
    response_headers: Dict[str, str] = Field(default_factory=dict)
    page_size: int = 0
    dom_elements_count: int = 0
    javascript_errors: List[str] = Field(default_factory=list)
    console_logs: List[str] = Field(default_factory=list)


class ScreenshotInfo(BaseModel):
    filename: str
    full_page: bool
    viewport: Dict[str, int]


class PageData(BaseModel):
    """Extracted content of one successfully navigated URL."""

    model_config = {"frozen": True}

    url: str
    title: str
    meta_description: str
    status_code: int
    depth: int
    parent_url: Optional[str]
    discovery_path: List[str]
    discovered_via: Optional[DiscoveredVia] = None
    crawl_timestamp: str
    load_time: int  # milliseconds
    content: PageContent
    technical_data: TechnicalData
    screenshot: Optional[ScreenshotInfo] = None


class CrawlError(BaseModel):
    url: str
    error_type: ErrorType
    error_message: str
    timestamp: str
    retry_attempts: int = 0


class CrawlMetadata(BaseModel):
    start_url: str
    start_time: str
    end_time: Optional[str] = None
    total_pages: int = 0
    successful_crawls: int = 0
    failed_crawls: int = 0
    max_depth: int
    crawl_id: str


class NavigationPath(BaseModel):
    path: str
    depth: int
    parent: Optional[str]
    children: List[str]


class SiteStructure(BaseModel):
    domain: str
    navigation_paths: List[NavigationPath]
    link_relationships: List[LinkRelationship]
    sitemap: Dict[str, Any]


class Assets(BaseModel):
    stylesheets: List[str] = Field(default_factory=list)
    scripts: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    documents: List[str] = Field(default_factory=list)


class CrawlResult(BaseModel):
    crawl_metadata: CrawlMetadata
    site_structure: SiteStructure
    pages: List[PageData]
    assets: Assets = Field(default_factory=Assets)
    errors: List[CrawlError]
    recording: Optional[RecordingSession] = None
