"""Tests for sitewalker.services.normalizer."""

from sitewalker.models.crawl_config import DomainRestrictions
from sitewalker.services.normalizer import (
    generate_breadcrumb,
    generate_slug,
    is_within_domain,
    normalize_url,
    should_skip,
)


class TestNormalizeUrl:
    def test_drops_fragment(self):
        assert normalize_url("https://example.com/about#team") == "https://example.com/about"

    def test_sorts_query_parameters(self):
        assert normalize_url("https://example.com/s?b=2&a=1") == "https://example.com/s?a=1&b=2"

    def test_repeated_parameter_keeps_value_order(self):
        assert normalize_url("https://example.com/s?t=2&a=0&t=1") == "https://example.com/s?a=0&t=2&t=1"

    def test_strips_trailing_slash(self):
        assert normalize_url("https://example.com/about/") == "https://example.com/about"

    def test_root_keeps_its_slash(self):
        assert normalize_url("https://example.com") == "https://example.com/"
        assert normalize_url("https://example.com/") == "https://example.com/"

    def test_lowercases_scheme_and_host_only(self):
        assert normalize_url("HTTPS://Example.COM/About") == "https://example.com/About"

    def test_idempotent(self):
        for url in (
            "https://example.com/a/b/?z=1&y=2#frag",
            "https://example.com",
            "http://sub.example.com/x?q=",
        ):
            once = normalize_url(url)
            assert normalize_url(once) == once

    def test_unparseable_input_returned_unchanged(self):
        assert normalize_url("http://[::1") == "http://[::1"


class TestIsWithinDomain:
    start = "https://example.com/"

    def test_no_restrictions_allows_everything(self):
        assert is_within_domain("https://other.org/", self.start, None)

    def test_stay_within_domain_off_allows_everything(self):
        restrictions = DomainRestrictions(stay_within_domain=False)
        assert is_within_domain("https://other.org/", self.start, restrictions)

    def test_same_host_allowed(self):
        assert is_within_domain("https://example.com/a", self.start, DomainRestrictions())

    def test_subdomain_rejected_by_default(self):
        assert not is_within_domain("https://blog.example.com/", self.start, DomainRestrictions())

    def test_subdomain_allowed_when_included(self):
        restrictions = DomainRestrictions(include_subdomains=True)
        assert is_within_domain("https://blog.example.com/", self.start, restrictions)

    def test_lookalike_host_is_not_a_subdomain(self):
        restrictions = DomainRestrictions(include_subdomains=True)
        assert not is_within_domain("https://notexample.com/", self.start, restrictions)

    def test_other_host_rejected(self):
        assert not is_within_domain("https://other.org/", self.start, DomainRestrictions())


class TestShouldSkip:
    def test_matches_extension(self):
        assert should_skip("https://example.com/report.PDF", [".pdf"])

    def test_extension_without_dot(self):
        assert should_skip("https://example.com/archive.zip", ["zip"])

    def test_query_string_ignored(self):
        assert not should_skip("https://example.com/page?file=a.pdf", [".pdf"])

    def test_no_filters(self):
        assert not should_skip("https://example.com/report.pdf", [])


class TestSlugAndBreadcrumb:
    def test_root_slug_is_home(self):
        assert generate_slug("https://example.com/") == "home"

    def test_slug_joins_segments(self):
        assert generate_slug("https://example.com/About-Us/Team/") == "about_us_team"

    def test_slug_is_ascii(self):
        assert generate_slug("https://example.com/caf%C3%A9") == "cafe"

    def test_slug_is_bounded(self):
        assert len(generate_slug("https://example.com/" + "a" * 200)) == 80

    def test_breadcrumb(self):
        assert generate_breadcrumb("https://example.com/about-us/12") == "Home > About Us > #12"

    def test_breadcrumb_for_root(self):
        assert generate_breadcrumb("https://example.com/") == "Home"
