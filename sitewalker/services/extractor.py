"""Page-data extraction from rendered HTML."""

import re
from typing import Dict, Iterable, List, NamedTuple, Optional
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup, Comment, Tag
from markdownify import markdownify

from sitewalker.models.crawl_result import Assets, FormInfo, ImageRef, PageContent, PageLinks, Position

MAX_TEXT_LENGTH = 5000
CRAWL_MODE_HEADINGS = 3

# location.href = '/x' or window.location = "/x" inside an onclick handler
_ONCLICK_NAV_RE = re.compile(r"""(?:location\.href|window\.location)\s*=\s*['"]([^'"]+)['"]""")
# Any absolute or root-relative URL inside an attribute value
_ATTR_URL_RE = re.compile(r"""(?:https?://|/)[^\s"'`)]+""")

_SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")
_REMOVE_TAGS = {"script", "style", "noscript", "iframe", "object", "embed", "svg", "canvas", "template"}
_HIDDEN_STYLE_RE = re.compile(r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE)
_JUNK_ATTRS = re.compile(r"^(style|on\w+)$", re.IGNORECASE)
_DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".csv", ".zip", ".txt")


class OutboundLink(NamedTuple):
    url: str
    label: str
    selector: str
    element_type: str  # "anchor" or "button"
    position: Position


class ExtractedPage(NamedTuple):
    title: str
    meta_description: str
    content: PageContent
    outbound: List[OutboundLink]
    assets: Assets
    dom_elements_count: int
    page_size: int


def _absolute(base_url: str, href: str) -> Optional[str]:
    href = href.strip()
    if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
        return None
    url = urldefrag(urljoin(base_url, href))[0]
    if urlsplit(url).scheme not in ("http", "https"):
        return None
    return url


def _selector(tag: Tag) -> str:
    if tag.get("id"):
        return f"#{tag['id']}"
    classes = [c for c in tag.get("class", []) if c]
    if classes:
        return f"{tag.name}.{'.'.join(classes)}"
    return tag.name


def _extract_title(soup: BeautifulSoup) -> str:
    title_tag = soup.find("title")
    if title_tag and title_tag.get_text(strip=True):
        return title_tag.get_text(strip=True)
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def _extract_description(soup: BeautifulSoup) -> str:
    meta = soup.find("meta", attrs={"name": "description"})
    if meta and meta.get("content"):
        return str(meta["content"]).strip()
    og_desc = soup.find("meta", attrs={"property": "og:description"})
    if og_desc and og_desc.get("content"):
        return str(og_desc["content"]).strip()
    return ""


def _extract_headings(soup: BeautifulSoup) -> List[str]:
    headings = []
    for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        text = h.get_text(" ", strip=True)
        if text:
            headings.append(text)
    return headings


def _extract_links(soup: BeautifulSoup, base_url: str) -> PageLinks:
    """Classify every anchor and attribute-embedded URL as internal or external."""
    host = urlsplit(base_url).hostname
    links = PageLinks()
    seen: set = set()

    def add(url: Optional[str]) -> None:
        if not url or url in seen:
            return
        seen.add(url)
        if urlsplit(url).hostname == host:
            links.internal.append(url)
        else:
            links.external.append(url)

    for a in soup.find_all("a", href=True):
        add(_absolute(base_url, str(a["href"])))

    for el in soup.select("button[onclick], div[onclick], span[onclick], [data-href], [data-url]"):
        for attr in ("onclick", "data-href", "data-url"):
            for match in _ATTR_URL_RE.findall(el.get(attr) or ""):
                add(_absolute(base_url, match))
    return links


def _extract_images(soup: BeautifulSoup, base_url: str) -> List[ImageRef]:
    seen: set = set()
    images: List[ImageRef] = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src:
            continue
        abs_url = urljoin(base_url, src)
        if abs_url not in seen:
            seen.add(abs_url)
            images.append(ImageRef(src=abs_url, alt=img.get("alt") or ""))
    return images


def _extract_forms(soup: BeautifulSoup, base_url: str) -> List[FormInfo]:
    forms = []
    for form in soup.find_all("form"):
        fields = [
            str(field["name"])
            for field in form.find_all(["input", "textarea", "select"])
            if field.get("name")
        ]
        forms.append(
            FormInfo(
                action=urljoin(base_url, form.get("action") or ""),
                method=(form.get("method") or "get").lower(),
                fields=fields,
            )
        )
    return forms


def _extract_assets(soup: BeautifulSoup, base_url: str) -> Assets:
    assets = Assets()
    for link in soup.find_all("link", href=True):
        rel = [r.lower() for r in link.get("rel", [])]
        if "stylesheet" in rel:
            assets.stylesheets.append(urljoin(base_url, link["href"]))
    for script in soup.find_all("script", src=True):
        assets.scripts.append(urljoin(base_url, script["src"]))
    for image in _extract_images(soup, base_url):
        assets.images.append(image.src)
    for a in soup.find_all("a", href=True):
        url = _absolute(base_url, str(a["href"]))
        if url and urlsplit(url).path.lower().endswith(_DOCUMENT_EXTENSIONS):
            assets.documents.append(url)
    for bucket in (assets.stylesheets, assets.scripts, assets.documents):
        bucket[:] = list(dict.fromkeys(bucket))
    return assets


def _clean_tree(html: str) -> BeautifulSoup:
    """Return a copy of the document without scripts, comments and hidden nodes."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(_REMOVE_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        if not isinstance(tag, Tag) or tag.decomposed:
            continue
        inline_style = tag.get("style", "")
        if inline_style and _HIDDEN_STYLE_RE.search(inline_style):
            tag.decompose()
            continue
        for attr in [a for a in tag.attrs if _JUNK_ATTRS.match(a)]:
            del tag[attr]
    return soup


def _find_main_content(soup: BeautifulSoup):
    for selector in ("article", "main", '[role="main"]'):
        node = soup.select_one(selector)
        if node:
            return node
    return soup.find("body") or soup


def extract_outbound_links(
    soup: BeautifulSoup,
    base_url: str,
    follow_link_tags: Iterable[str] = ("a", "button"),
    positions: Optional[Dict[str, Position]] = None,
) -> List[OutboundLink]:
    """Links the crawler may follow, in document order.

    ``a`` enables anchors; ``button`` enables buttons whose ``onclick``
    assigns ``location.href``/``window.location``.
    """
    tags = {t.lower() for t in follow_link_tags}
    positions = positions or {}
    found: List[OutboundLink] = []

    if "a" in tags:
        for a in soup.find_all("a", href=True):
            url = _absolute(base_url, str(a["href"]))
            if url:
                label = a.get_text(" ", strip=True) or a.get("title") or ""
                found.append(OutboundLink(url, label, _selector(a), "anchor", positions.get(url, Position())))

    if "button" in tags:
        for button in soup.select("button[onclick]"):
            match = _ONCLICK_NAV_RE.search(button.get("onclick") or "")
            url = _absolute(base_url, match.group(1)) if match else None
            if url:
                label = button.get_text(" ", strip=True)
                found.append(OutboundLink(url, label, _selector(button), "button", positions.get(url, Position())))

    return found


def extract_page(
    html: str,
    base_url: str,
    mode: str = "crawl",
    follow_link_tags: Iterable[str] = ("a", "button"),
    positions: Optional[Dict[str, Position]] = None,
) -> ExtractedPage:
    """Extract page data from *html*.

    ``crawl`` mode keeps navigation data only: no text, no images and the
    first three headings.  ``scrape`` mode adds the visible text (capped at
    ``MAX_TEXT_LENGTH`` characters), every heading, images and a Markdown
    rendition of the main content.
    """
    soup = BeautifulSoup(html, "lxml")
    headings = _extract_headings(soup)
    content = PageContent(
        headings=headings[:CRAWL_MODE_HEADINGS] if mode == "crawl" else headings,
        links=_extract_links(soup, base_url),
        forms=_extract_forms(soup, base_url),
    )

    if mode != "crawl":
        clean = _clean_tree(html)
        body = clean.find("body") or clean
        text = re.sub(r"\s+", " ", body.get_text(" ", strip=True))
        content.text_content = text[:MAX_TEXT_LENGTH]
        content.images = _extract_images(soup, base_url)
        content.markdown = markdownify(str(_find_main_content(clean)), heading_style="ATX").strip()

    return ExtractedPage(
        title=_extract_title(soup),
        meta_description=_extract_description(soup),
        content=content,
        outbound=extract_outbound_links(soup, base_url, follow_link_tags, positions),
        assets=_extract_assets(soup, base_url),
        dom_elements_count=len(soup.find_all(True)),
        page_size=len(html.encode()),
    )
