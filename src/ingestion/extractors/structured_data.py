"""
Structured-data (JSON-LD) event extraction.

Pages that embed schema.org Event objects get extracted deterministically,
with no completion-service call. Handles @graph containers, nested events
(subEvent, itemListElement, ...) and the usual field-name variations.
"""

import logging
import re
from typing import Any, Iterable, List, Optional

from bs4 import BeautifulSoup

from src.ingestion.extractors.response_repair import repair_json
from src.schemas.event import CandidateEvent

logger = logging.getLogger(__name__)

_EVENT_TYPE = re.compile(r"event", re.IGNORECASE)
_NON_EVENT_TYPES = {"eventvenue", "eventreservation"}
_LD_SCRIPT = re.compile(
    r"<script[^>]*type\s*=\s*[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
    re.IGNORECASE | re.DOTALL,
)


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    """Flatten a JSON-LD value (string, list, {"@value"}, {"name"}) to text."""
    if value is None:
        return None
    if isinstance(value, list):
        return _text(value[0]) if value else None
    if isinstance(value, dict):
        return _text(_first(value.get("@value"), value.get("name"), value.get("url")))
    text = str(value).strip()
    return text or None


def _is_event(node: dict) -> bool:
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return any(
        isinstance(t, str) and _EVENT_TYPE.search(t) and t.lower() not in _NON_EVENT_TYPES
        for t in types
    )


def collect_event_nodes(data: Any) -> List[dict]:
    """Recursively collect every dict whose @type matches /event/i."""
    found: List[dict] = []

    def visit(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                visit(item)
        elif isinstance(node, dict):
            if _is_event(node):
                found.append(node)
            for key, value in node.items():
                if key == "@context":
                    continue
                if isinstance(value, (dict, list)):
                    visit(value)

    visit(data)
    return found


def _location_parts(location: Any) -> tuple:
    """Return (venue, city) from a schema.org location value."""
    if isinstance(location, list):
        location = location[0] if location else None
    if isinstance(location, str):
        return location.strip() or None, None
    if not isinstance(location, dict):
        return None, None

    venue = _text(location.get("name"))
    address = location.get("address")
    city = None
    if isinstance(address, dict):
        city = _text(_first(address.get("addressLocality"), address.get("city")))
    city = city or _text(location.get("city"))
    return venue, city


def _image(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return _image(value[0]) if value else None
    if isinstance(value, dict):
        return _text(_first(value.get("url"), value.get("contentUrl")))
    return _text(value)


def node_to_candidate(node: dict) -> Optional[CandidateEvent]:
    """Map a schema.org Event node to a CandidateEvent."""
    title = _text(_first(node.get("name"), node.get("headline"), node.get("title")))
    if not title:
        return None

    venue, city = _location_parts(node.get("location"))
    category = _text(node.get("eventType")) or _text(node.get("genre"))
    if not category:
        raw_type = node.get("@type")
        raw_type = raw_type[0] if isinstance(raw_type, list) and raw_type else raw_type
        if isinstance(raw_type, str) and raw_type.lower() != "event":
            # MusicEvent -> Music, SportsEvent -> Sports
            category = re.sub(r"Event$", "", raw_type) or None

    return CandidateEvent(
        title=title,
        description=_text(node.get("description")),
        date=_text(
            _first(
                node.get("startDate"),
                node.get("start_time"),
                node.get("date"),
                node.get("start_date"),
            )
        ),
        end_date=_text(_first(node.get("endDate"), node.get("end_date"))),
        city=city,
        venue=venue,
        category=category,
        url=_text(_first(node.get("url"), node.get("@id"))),
        image_url=_image(node.get("image")),
        expected_attendees=node.get("maximumAttendeeCapacity"),
    )


def _script_blocks(content: str) -> Iterable[str]:
    if "<" not in content:
        return []
    soup = BeautifulSoup(content, "lxml")
    blocks = [
        tag.string or tag.get_text()
        for tag in soup.find_all("script", attrs={"type": re.compile("ld\\+json", re.I)})
    ]
    if blocks:
        return blocks
    # Markdown renderings sometimes keep raw script tags in code spans
    return [m.group(1) for m in _LD_SCRIPT.finditer(content)]


class StructuredDataExtractor:
    """Extract events from JSON-LD script blocks."""

    def extract(self, content: str) -> List[CandidateEvent]:
        """
        Return candidates from every JSON-LD block in content.

        Blocks that fail to parse (even after repair) are skipped.
        """
        events: List[CandidateEvent] = []
        if not content:
            return events

        for raw in _script_blocks(content):
            data = repair_json(raw or "")
            if data is None:
                logger.debug("Skipping unparseable JSON-LD block")
                continue
            if isinstance(data, dict) and "@graph" in data:
                data = data["@graph"]
            for node in collect_event_nodes(data):
                candidate = node_to_candidate(node)
                if candidate is not None:
                    events.append(candidate)

        if events:
            logger.debug(f"Structured data yielded {len(events)} events")
        return events
