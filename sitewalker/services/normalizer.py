"""URL normalisation and scoping: canonical form, domain scope, slugs and breadcrumbs."""

import re
import unicodedata
from typing import Iterable, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from sitewalker.models.crawl_config import DomainRestrictions


def normalize_url(url: str) -> str:
    """Return the canonical form of *url* used for the visited set.

    The fragment is dropped, query parameters are sorted by name (values of a
    repeated name keep their order) and a trailing slash is removed from every
    path except the root.  Applying the function twice gives the same result.
    Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
        netloc = parts.netloc.lower()
    except ValueError:
        return url

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    params = parse_qsl(parts.query, keep_blank_values=True)
    query = urlencode(sorted(params, key=lambda item: item[0]))

    return urlunsplit((parts.scheme.lower(), netloc, path, query, ""))


def is_within_domain(
    url: str,
    start_url: str,
    restrictions: Optional[DomainRestrictions],
) -> bool:
    """Return True when *url* falls inside the crawl's domain scope.

    Without restrictions, or with ``stay_within_domain`` off, every host is in
    scope.  Otherwise the host must equal the start host, or, when subdomains
    are included, end with ``"." + start host``.
    """
    if restrictions is None or not restrictions.stay_within_domain:
        return True

    host = (urlsplit(url).hostname or "").lower()
    start_host = (urlsplit(start_url).hostname or "").lower()
    if not host:
        return False
    if host == start_host:
        return True
    return restrictions.include_subdomains and host.endswith("." + start_host)


def should_skip(url: str, file_type_filters: Iterable[str]) -> bool:
    """Return True when the URL path ends in one of the filtered file extensions."""
    path = urlsplit(url).path.lower()
    for extension in file_type_filters:
        extension = extension.lower().strip()
        if not extension:
            continue
        if not extension.startswith("."):
            extension = "." + extension
        if path.endswith(extension):
            return True
    return False


def generate_slug(url: str) -> str:
    """Return a filesystem-safe slug for screenshot names; ``home`` for the root.

    The slug is lowercased, ASCII-only, and uses underscores between path
    segments.
    """
    path = urlsplit(url).path.strip("/")
    if not path:
        return "home"

    slug = unicodedata.normalize("NFKD", unquote(path))
    slug = slug.encode("ascii", "ignore").decode("ascii")

    # Collapse every run of non-alphanumeric characters (slashes included)
    slug = re.sub(r"[^a-z0-9]+", "_", slug.lower()).strip("_")

    return slug[:80] or "page"


def _segment_title(segment: str) -> str:
    if segment.isdigit():
        return f"#{segment}"
    words = re.split(r"[-_]+", unquote(segment))
    return " ".join(word.capitalize() for word in words if word)


def generate_breadcrumb(url: str) -> str:
    """Return a human-readable trail such as ``Home > About Us > #12``."""
    segments = [s for s in urlsplit(url).path.split("/") if s]
    return " > ".join(["Home"] + [_segment_title(s) for s in segments])
