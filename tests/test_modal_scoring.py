"""Tests for sitewalker.services.modal_scoring."""

from fakes import snapshot

from sitewalker.services.modal_scoring import (
    MODAL_THRESHOLD,
    TRAINED_MATCH_SCORE,
    ElementSnapshot,
    pick_candidate,
    score,
    selector_for,
)


def _snap(**overrides) -> ElementSnapshot:
    return ElementSnapshot.model_validate(snapshot(**overrides))


class TestScore:
    def test_sign_in_dialog_scores_above_threshold(self):
        result = score(_snap())
        assert result.score >= MODAL_THRESHOLD
        assert "position fixed" in result.reasons
        assert "contains form controls" in result.reasons

    def test_hidden_element_scores_zero(self):
        assert score(_snap(display="none")).score == 0
        assert score(_snap(visibility="hidden")).score == 0
        assert score(_snap(opacity=0)).score == 0

    def test_small_element_scores_zero(self):
        assert score(_snap(rect={"x": 0, "y": 0, "width": 40, "height": 400})).score == 0

    def test_full_viewport_backdrop_scores_zero(self):
        backdrop = _snap(rect={"x": 0, "y": 0, "width": 1366, "height": 768})
        assert score(backdrop).score == 0

    def test_trained_match_scores_exactly_95(self):
        snap = _snap(display="none", matched_selectors=["div.login-box"])
        result = score(snap, ["div.login-box"])
        assert result.score == TRAINED_MATCH_SCORE == 95

    def test_unmatched_trained_rule_falls_back_to_heuristic(self):
        assert score(_snap(), ["div.other"]).score == score(_snap()).score

    def test_keyword_matches_whole_words_only(self):
        plain = _snap(text="", has_form_elements=False)
        # "ok" inside "bookmark" and "token" is not a keyword
        assert score(_snap(text="bookmark token", has_form_elements=False)).score == score(plain).score
        assert score(_snap(text="OK", has_form_elements=False)).score == score(plain).score + 5

    def test_class_bonus_is_capped(self):
        base = _snap(classes="plain")
        loaded = _snap(classes="modal dialog popup overlay lightbox")
        assert score(loaded).score - score(base).score == 30


class TestScoreMonotonicity:
    """Adding a modal signal never lowers the score."""

    base = dict(
        position="static",
        z_index=0,
        classes="box",
        text="",
        has_form_elements=False,
        rect={"x": 0, "y": 0, "width": 120, "height": 120},
    )

    def _score(self, **changes) -> int:
        return score(_snap(**{**self.base, **changes})).score

    def test_z_index(self):
        assert self._score(z_index=150) >= self._score()
        assert self._score(z_index=2000) >= self._score(z_index=150)

    def test_position(self):
        assert self._score(position="absolute") >= self._score()
        assert self._score(position="fixed") >= self._score(position="absolute")

    def test_class_keyword(self):
        assert self._score(classes="box modal") >= self._score()

    def test_form_controls(self):
        assert self._score(has_form_elements=True) >= self._score()

    def test_novelty(self):
        assert self._score(is_new=True) >= self._score()

    def test_content_keyword(self):
        assert self._score(text="Please sign in") >= self._score()


class TestSelectorFor:
    def test_prefers_id(self):
        assert selector_for(_snap(element_id="login", classes="a b")) == "#login"

    def test_first_class(self):
        assert selector_for(_snap(classes="modal-dialog show")) == ".modal-dialog"

    def test_tag_fallback(self):
        assert selector_for(_snap(classes="")) == "div"


class TestPickCandidate:
    def test_none_when_nothing_reaches_threshold(self):
        weak = _snap(position="static", z_index=0, classes="", text="", has_form_elements=False)
        assert pick_candidate([weak]) is None

    def test_highest_score_wins(self):
        weak = _snap(index=0, z_index=0, classes="panel")
        strong = _snap(index=1)
        assert pick_candidate([weak, strong]).snapshot.index == 1

    def test_ties_keep_document_order(self):
        first = _snap(index=0)
        second = _snap(index=1)
        assert pick_candidate([first, second]).snapshot.index == 0

    def test_trained_rule_beats_heuristic(self):
        trained = _snap(index=3, classes="box", position="static", z_index=0, matched_selectors=[".box"])
        heuristic = _snap(index=0)
        picked = pick_candidate([heuristic, trained], [".box"])
        assert picked.snapshot.index == 3
        assert picked.score == 95
