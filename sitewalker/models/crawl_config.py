from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, HttpUrl

CrawlMode = Literal["crawl", "scrape", "record"]


class DomainRestrictions(BaseModel):
    stay_within_domain: bool = True
    include_subdomains: bool = False


class LoginCredentials(BaseModel):
    username: str
    password: str


class CrawlConfig(BaseModel):
    """Immutable parameters for one crawl, scrape or record run."""

    model_config = {"frozen": True}

    start_url: HttpUrl
    max_depth: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum link depth from the start URL (0–10).",
    )
    rate_limit: int = Field(
        default=30,
        ge=1,
        description="Maximum page-task starts per rate-limit interval.",
    )
    rate_limit_interval: float = Field(
        default=60.0,
        gt=0,
        description="Length of the rate-limit window in seconds.",
    )
    concurrency: int = Field(default=3, ge=1, le=10)
    mode: CrawlMode = "crawl"
    sample_mode: bool = Field(
        default=False,
        description="Follow only the first discovered link on every page.",
    )
    follow_link_tags: List[str] = Field(default_factory=lambda: ["a", "button"])
    domain_restrictions: Optional[DomainRestrictions] = None
    login_credentials: Optional[LoginCredentials] = None
    training_mode: bool = False
    custom_headers: Dict[str, str] = Field(default_factory=dict)
    file_type_filters: List[str] = Field(
        default_factory=list,
        description="File extensions (e.g. '.pdf') that are never navigated to.",
        examples=[[".pdf", ".zip"]],
    )
    max_retries: int = Field(
        default=1,
        ge=0,
        le=5,
        description="How many times a timed-out navigation is retried.",
    )
