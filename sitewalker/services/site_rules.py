"""Per-domain storage of trained component rules."""

import logging
import os
import re
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import urlsplit

from pydantic import ValidationError

from sitewalker.models.site_rules import SiteRules, TrainedComponent, TrainingPayload

logger = logging.getLogger(__name__)

# Class names emitted by CSS-in-JS tooling are unique enough to use on their own
_GENERATED_CLASS_RE = re.compile(r"styled__|-sc-[a-z0-9]+-\d+$|^css-[a-z0-9]{5,}$", re.IGNORECASE)
_ID_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")
_DOMAIN_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9.-]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _primary_class(payload: TrainingPayload) -> Optional[str]:
    if payload.primary_class and payload.primary_class != "no-class":
        return payload.primary_class
    return None


def component_id(payload: TrainingPayload) -> str:
    """Derive a stable id from primary class, tag, position and z-index."""
    parts = []
    primary = _primary_class(payload)
    if primary:
        parts.append(primary)
    if payload.tag_name:
        parts.append(payload.tag_name.lower())
    if payload.position:
        parts.append(payload.position)
    if payload.z_index:
        parts.append(f"z{payload.z_index}")
    return _ID_UNSAFE_RE.sub("", "_".join(parts)) or f"component_{int(time.time() * 1000)}"


def training_selector(payload: TrainingPayload) -> str:
    """Return the selector a trained component is matched by.

    Preference: generated class alone, ``tag.class``, tag, ``#id``, ``div``.
    """
    primary = _primary_class(payload)
    tag = payload.tag_name.lower() if payload.tag_name else ""
    if primary:
        if _GENERATED_CLASS_RE.search(primary) or not tag:
            return f".{primary}"
        return f"{tag}.{primary}"
    if tag:
        return tag
    if payload.element_id:
        return f"#{payload.element_id}"
    return "div"


def components_for(rules: Optional[SiteRules], page_url: str) -> List[TrainedComponent]:
    """Trained components that apply to *page_url* (same path or same full URL)."""
    if rules is None:
        return []
    path = urlsplit(page_url).path or "/"
    return [c for c in rules.trained_components if c.page_path == path or c.page_url == page_url]


class SiteRulesStore:
    """One JSON :class:`SiteRules` document per hostname under *base_dir*.

    Every mutation bumps ``version`` and rewrites the whole document through a
    temporary file, so readers never observe a partial write.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def path_for(self, domain: str) -> Path:
        safe = _DOMAIN_UNSAFE_RE.sub("_", domain.lower()) or "_"
        return self.base_dir / f"{safe}.json"

    def load(self, domain: str) -> Optional[SiteRules]:
        path = self.path_for(domain)
        if not path.exists():
            return None
        return SiteRules.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, rules: SiteRules) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(rules.domain)
        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(rules.model_dump_json(indent=2))
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def train(self, domain: str, page_url: str, payload) -> Optional[TrainedComponent]:
        """Append or update the component described by *payload* on *page_url*.

        Returns the stored component, or ``None`` when *payload* is malformed.
        Read and write errors propagate.
        """
        try:
            data = payload if isinstance(payload, TrainingPayload) else TrainingPayload.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed training payload for %s: %s", domain, exc)
            return None

        rules = self.load(domain) or SiteRules(domain=domain, last_updated=_now())
        cid = component_id(data)
        now = _now()

        existing = next(
            (i for i, c in enumerate(rules.trained_components) if c.id == cid and c.page_url == page_url),
            None,
        )
        component_type = data.component_type or "modal"
        component = TrainedComponent(
            id=cid,
            page_url=page_url,
            page_path=urlsplit(page_url).path or "/",
            type=component_type,
            name=data.component_name or f"{component_type}_{int(time.time() * 1000)}",
            selector=training_selector(data),
            training_data=data,
            created_at=rules.trained_components[existing].created_at if existing is not None else now,
            last_updated=now,
        )
        if existing is not None:
            rules.trained_components[existing] = component
        else:
            rules.trained_components.append(component)

        rules.version += 1
        rules.last_updated = now
        self.save(rules)

        logger.info(
            "%s trained component %s",
            "Updated" if existing is not None else "Added",
            component.name,
            extra={"domain": domain, "component_id": cid, "version": rules.version},
        )
        return component

    def delete(self, domain: str, component_id: str) -> bool:
        rules = self.load(domain)
        if rules is None:
            return False
        kept = [c for c in rules.trained_components if c.id != component_id]
        if len(kept) == len(rules.trained_components):
            return False
        rules.trained_components = kept
        rules.version += 1
        rules.last_updated = _now()
        self.save(rules)
        logger.info("Deleted trained component", extra={"domain": domain, "component_id": component_id})
        return True
