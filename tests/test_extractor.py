"""Tests for sitewalker.services.extractor."""

from bs4 import BeautifulSoup

from sitewalker.models.crawl_result import Position
from sitewalker.services.extractor import MAX_TEXT_LENGTH, extract_outbound_links, extract_page

BASE = "https://example.com/"

PAGE_HTML = """
<html>
<head>
  <title>Acme Tools</title>
  <meta name="description" content="Tools for every job.">
  <link rel="stylesheet" href="/static/site.css">
  <script src="/static/app.js"></script>
</head>
<body>
  <nav><a href="/about" id="about-link">About us</a> <a href="/blog/#latest" class="nav item">Blog</a></nav>
  <main>
    <h1>Welcome</h1>
    <h2>Hammers</h2>
    <h3>Saws</h3>
    <h4>Drills</h4>
    <p>Quality tools since 1901.</p>
    <img src="/img/hammer.png" alt="A hammer">
    <a href="https://partner.org/deal">Partner deal</a>
    <a href="/docs/catalog.pdf">Catalog</a>
    <a href="mailto:sales@example.com">Mail</a>
    <a href="javascript:void(0)">Nothing</a>
    <button onclick="window.location='/contact'">Contact</button>
    <button onclick="alert('hi')">Hi</button>
    <form action="/search" method="POST"><input name="q"><select name="sort"></select></form>
    <div style="display:none">Hidden promo</div>
  </main>
  <script>var tracking = true;</script>
</body>
</html>
"""


class TestExtractPageCrawlMode:
    def test_metadata(self):
        page = extract_page(PAGE_HTML, BASE)
        assert page.title == "Acme Tools"
        assert page.meta_description == "Tools for every job."
        assert page.page_size == len(PAGE_HTML.encode())
        assert page.dom_elements_count > 10

    def test_keeps_navigation_data_only(self):
        content = extract_page(PAGE_HTML, BASE).content
        assert content.headings == ["Welcome", "Hammers", "Saws"]
        assert content.text_content == ""
        assert content.images == []
        assert content.markdown == ""

    def test_links_split_by_host(self):
        links = extract_page(PAGE_HTML, BASE).content.links
        assert "https://example.com/about" in links.internal
        assert "https://example.com/contact" in links.internal
        assert links.external == ["https://partner.org/deal"]

    def test_forms(self):
        forms = extract_page(PAGE_HTML, BASE).content.forms
        assert len(forms) == 1
        assert forms[0].action == "https://example.com/search"
        assert forms[0].method == "post"
        assert forms[0].fields == ["q", "sort"]

    def test_assets(self):
        assets = extract_page(PAGE_HTML, BASE).assets
        assert assets.stylesheets == ["https://example.com/static/site.css"]
        assert assets.scripts == ["https://example.com/static/app.js"]
        assert assets.images == ["https://example.com/img/hammer.png"]
        assert assets.documents == ["https://example.com/docs/catalog.pdf"]


class TestExtractPageScrapeMode:
    def test_full_content(self):
        content = extract_page(PAGE_HTML, BASE, mode="scrape").content
        assert content.headings == ["Welcome", "Hammers", "Saws", "Drills"]
        assert "Quality tools since 1901." in content.text_content
        assert content.images[0].alt == "A hammer"
        assert "# Welcome" in content.markdown

    def test_scripts_and_hidden_nodes_are_not_text(self):
        content = extract_page(PAGE_HTML, BASE, mode="scrape").content
        assert "tracking" not in content.text_content
        assert "Hidden promo" not in content.text_content

    def test_text_is_capped(self):
        html = "<html><body><p>" + "word " * 3000 + "</p></body></html>"
        content = extract_page(html, BASE, mode="scrape").content
        assert len(content.text_content) == MAX_TEXT_LENGTH


class TestExtractOutboundLinks:
    def _soup(self):
        return BeautifulSoup(PAGE_HTML, "lxml")

    def test_anchors_and_navigating_buttons_in_document_order(self):
        links = extract_outbound_links(self._soup(), BASE)
        assert [link.url for link in links] == [
            "https://example.com/about",
            "https://example.com/blog/",
            "https://partner.org/deal",
            "https://example.com/docs/catalog.pdf",
            "https://example.com/contact",
        ]
        assert links[-1].element_type == "button"
        assert links[-1].label == "Contact"

    def test_selectors_and_labels(self):
        links = extract_outbound_links(self._soup(), BASE)
        assert (links[0].selector, links[0].label) == ("#about-link", "About us")
        assert links[1].selector == "a.nav.item"

    def test_anchor_only(self):
        links = extract_outbound_links(self._soup(), BASE, follow_link_tags=["a"])
        assert all(link.element_type == "anchor" for link in links)

    def test_positions_attached(self):
        positions = {"https://example.com/about": Position(x=12, y=34)}
        links = extract_outbound_links(self._soup(), BASE, positions=positions)
        assert links[0].position == Position(x=12, y=34)
        assert links[1].position == Position()
