"""Modal-likeness scoring of element snapshots.

Everything here works on :class:`ElementSnapshot`, a plain serialisable record
collected in the page, so scoring can be exercised without a browser.
"""

import re
from typing import Iterable, List, NamedTuple, Optional, Sequence

from pydantic import BaseModel, Field

# Elements below this score are never considered modals
MODAL_THRESHOLD = 50
TRAINED_MATCH_SCORE = 95

MIN_SIZE = 50  # px, both dimensions
BACKDROP_COVERAGE = 0.95  # fraction of the viewport area

POSITION_WEIGHTS = {"fixed": 30, "absolute": 20}
Z_INDEX_HIGH, Z_INDEX_HIGH_WEIGHT = 1000, 25
Z_INDEX_MID, Z_INDEX_MID_WEIGHT = 100, 15
SIZE_WEIGHT = 25
KEYWORD_WEIGHT = 5
CLASS_WEIGHT = 10
CLASS_WEIGHT_CAP = 30
FORM_WEIGHT = 15
NOVELTY_WEIGHT = 20

CONTENT_KEYWORDS = (
    "login",
    "log in",
    "sign in",
    "sign up",
    "register",
    "password",
    "email",
    "confirm",
    "save",
    "submit",
    "cancel",
    "close",
    "ok",
)
CLASS_KEYWORDS = ("modal", "dialog", "popup", "overlay", "lightbox")

_KEYWORD_RES = [
    (kw, re.compile(r"\b" + re.escape(kw).replace(r"\ ", r"\s+") + r"\b", re.IGNORECASE))
    for kw in CONTENT_KEYWORDS
]


class Rect(BaseModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class Viewport(BaseModel):
    width: float = 1920
    height: float = 1080


class ElementSnapshot(BaseModel):
    """Computed-style facts about one DOM element."""

    index: int = -1
    tag: str
    element_id: str = ""
    classes: str = ""
    position: str = "static"
    z_index: int = 0
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    rect: Rect = Field(default_factory=Rect)
    viewport: Viewport = Field(default_factory=Viewport)
    text: str = ""
    has_form_elements: bool = False
    matched_selectors: List[str] = Field(default_factory=list)
    # Set by the detector: the signature was absent from the previous scan
    is_new: bool = False

    @property
    def class_list(self) -> List[str]:
        return self.classes.split()

    @property
    def signature(self) -> str:
        return f"{self.tag}|{self.classes}"


class ModalScore(NamedTuple):
    score: int
    reasons: List[str]


def _is_visible(snapshot: ElementSnapshot) -> bool:
    return (
        snapshot.display != "none"
        and snapshot.visibility != "hidden"
        and snapshot.opacity > 0
    )


def score(snapshot: ElementSnapshot, trained_rules: Iterable[str] = ()) -> ModalScore:
    """Return the modal score of *snapshot* and the reasons that contributed.

    *trained_rules* are selectors of trained components for the current page.
    When the snapshot matched one of them in the page, the score is exactly
    ``TRAINED_MATCH_SCORE`` and the heuristic is not consulted.
    """
    for selector in trained_rules:
        if selector in snapshot.matched_selectors:
            return ModalScore(TRAINED_MATCH_SCORE, [f"trained rule {selector}"])

    rect, viewport = snapshot.rect, snapshot.viewport
    if not _is_visible(snapshot):
        return ModalScore(0, ["hidden"])
    if rect.width < MIN_SIZE or rect.height < MIN_SIZE:
        return ModalScore(0, ["too small"])
    viewport_area = viewport.width * viewport.height
    if viewport_area and rect.width * rect.height >= BACKDROP_COVERAGE * viewport_area:
        return ModalScore(0, ["covers viewport"])

    total = 0
    reasons: List[str] = []

    position_weight = POSITION_WEIGHTS.get(snapshot.position, 0)
    if position_weight:
        total += position_weight
        reasons.append(f"position {snapshot.position}")

    if snapshot.z_index > Z_INDEX_HIGH:
        total += Z_INDEX_HIGH_WEIGHT
        reasons.append(f"z-index {snapshot.z_index}")
    elif snapshot.z_index > Z_INDEX_MID:
        total += Z_INDEX_MID_WEIGHT
        reasons.append(f"z-index {snapshot.z_index}")

    if (
        300 < rect.width < viewport.width * 0.8
        and 200 < rect.height < viewport.height * 0.8
    ):
        total += SIZE_WEIGHT
        reasons.append("modal-sized")

    for keyword, pattern in _KEYWORD_RES:
        if pattern.search(snapshot.text):
            total += KEYWORD_WEIGHT
            reasons.append(f"keyword '{keyword}'")

    class_text = snapshot.classes.lower()
    class_bonus = 0
    for keyword in CLASS_KEYWORDS:
        if keyword in class_text:
            class_bonus += CLASS_WEIGHT
            reasons.append(f"class contains '{keyword}'")
    total += min(class_bonus, CLASS_WEIGHT_CAP)

    if snapshot.has_form_elements:
        total += FORM_WEIGHT
        reasons.append("contains form controls")

    if snapshot.is_new:
        total += NOVELTY_WEIGHT
        reasons.append("newly appeared")

    return ModalScore(total, reasons)


def selector_for(snapshot: ElementSnapshot) -> str:
    """``#id``, else ``.first-class``, else the tag name."""
    if snapshot.element_id:
        return f"#{snapshot.element_id}"
    if snapshot.class_list:
        return f".{snapshot.class_list[0]}"
    return snapshot.tag


class Candidate(NamedTuple):
    snapshot: ElementSnapshot
    score: int
    reasons: List[str]


def pick_candidate(
    snapshots: Sequence[ElementSnapshot],
    trained_rules: Iterable[str] = (),
    threshold: int = MODAL_THRESHOLD,
) -> Optional[Candidate]:
    """Return the best-scoring snapshot at or above *threshold*.

    A snapshot matching a trained rule wins over any heuristic score.  Ties
    keep the earliest snapshot, which is document order.
    """
    rules = list(trained_rules)
    best: Optional[Candidate] = None
    best_key = None
    for snapshot in snapshots:
        value, reasons = score(snapshot, rules)
        if value < threshold:
            continue
        key = (any(rule in snapshot.matched_selectors for rule in rules), value)
        if best is None or key > best_key:
            best = Candidate(snapshot, value, reasons)
            best_key = key
    return best
