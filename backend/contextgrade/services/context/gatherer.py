"""
Context Gatherer

Collects signals from external sources to inform a decision.
The resulting bundle is opaque to the decision engine: it is stored in the
context snapshot verbatim and only read back by extract_decision_facts().
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import httpx

from ...config import Settings
from .sources import (
    gather_website_signals,
    gather_search_signals,
    gather_reddit_signals,
    gather_twitter_signals,
)

logger = logging.getLogger(__name__)

SignalBundle = Dict[str, Any]


@dataclass
class EntityProfile:
    """The facts about a subject entity that collaborators may see."""
    name: str
    domain: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def empty_signal_bundle() -> SignalBundle:
    """Negative-default bundle returned when nothing could be gathered."""
    return {
        "website": {"exists": False},
        "search": {},
    }


class ContextGatherer:
    """
    Orchestrates the signal sources for one entity.

    gather() must not raise - a failing source leaves its negative default
    in the bundle.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self.http_client = http_client

    def gather(self, entity: EntityProfile) -> SignalBundle:
        logger.info(f"Gathering context signals for {entity.name}")
        signals = empty_signal_bundle()

        try:
            if entity.domain:
                signals["website"] = gather_website_signals(
                    entity.domain,
                    timeout=self.settings.context_timeout_seconds,
                    client=self.http_client,
                )
            else:
                logger.warning(f"No domain provided for {entity.name}, skipping website signals")

            signals["search"] = gather_search_signals(entity.name)
            signals["reddit"] = gather_reddit_signals(entity.name)
            signals["twitter"] = gather_twitter_signals(entity.name)

            logger.info(f"Context gathering complete for {entity.name}: {len(signals)} sources")
        except Exception as e:
            # Return whatever was collected so far
            logger.error(f"Error gathering context signals for {entity.name}: {e}", exc_info=True)

        return signals


def _source(signals: Any, name: str) -> Dict[str, Any]:
    value = signals.get(name) if isinstance(signals, dict) else None
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def extract_decision_facts(signals: SignalBundle) -> List[str]:
    """
    Turn a signal bundle into reasoning lines for the recommender.

    Accepts any shape: sources that are missing or not shaped as expected
    contribute no facts.
    """
    facts: List[str] = []

    website = _source(signals, "website")
    description = website.get("description")
    if not website.get("exists"):
        facts.append("No website found or website inaccessible")
    elif isinstance(description, str) and description:
        facts.append(f"Company description: {description[:200]}")

    if _source(signals, "search").get("sentiment") == "negative":
        facts.append("Negative sentiment detected in search results")

    complaints = _number(_source(signals, "reddit").get("complaints"))
    if complaints is not None and complaints > 0:
        facts.append(f"{complaints} complaint(s) found on Reddit")

    if _source(signals, "twitter").get("sentiment") == "negative":
        facts.append("Negative sentiment detected on Twitter/X")

    for source, label in (("g2", "G2"), ("trustpilot", "Trustpilot")):
        rating = _number(_source(signals, source).get("rating"))
        if rating is not None and rating < 3.0:
            facts.append(f"Low {label} rating: {rating}/5")

    return facts
