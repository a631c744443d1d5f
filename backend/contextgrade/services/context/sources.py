"""
Context Source Collectors

Individual functions for gathering signals from specific sources.
Website is a real fetch; search, Reddit and Twitter/X are neutral stubs
until their integrations exist.
"""
import logging
import re
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = "ContextGrade/1.0 (Decision Intelligence Bot)"

DESCRIPTION_NAME_RE = re.compile(r"^description$", re.IGNORECASE)
OG_DESCRIPTION_RE = re.compile(r"^og:description$", re.IGNORECASE)
PARAGRAPH_LIMIT = 300


def normalize_domain(domain: str) -> str:
    """Strip protocol and trailing slash: 'https://acme.io/' -> 'acme.io'."""
    domain = re.sub(r"^https?://", "", domain.strip(), flags=re.IGNORECASE)
    return domain.rstrip("/")


def _meta_content(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def extract_description(html: str) -> Optional[str]:
    """Meta description, then og:description, then the first <p> (300 chars)."""
    soup = BeautifulSoup(html, "html.parser")

    description = _meta_content(soup, name=DESCRIPTION_NAME_RE)
    if description:
        return description

    description = _meta_content(soup, property=OG_DESCRIPTION_RE)
    if description:
        return description

    paragraph = soup.find("p")
    if paragraph is not None:
        text = paragraph.get_text(strip=True)
        if text:
            return text[:PARAGRAPH_LIMIT]

    return None


def gather_website_signals(
    domain: str,
    timeout: float = 5.0,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """
    Fetch the company website and summarize it.

    Never raises: an unreachable, slow or non-2xx site yields {"exists": False}.
    """
    url = f"https://{normalize_domain(domain)}"
    logger.debug(f"Gathering website signals for {domain} ({url})")

    owns_client = client is None
    if owns_client:
        client = httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    try:
        response = client.get(url)
        if response.status_code >= 400:
            logger.warning(f"Website not accessible: {domain} (status {response.status_code})")
            return {"exists": False}

        html = response.text
        signals: Dict[str, Any] = {"exists": True, "content_length": len(html)}
        description = extract_description(html)
        if description:
            signals["description"] = description
        return signals
    except httpx.TimeoutException:
        logger.warning(f"Website fetch timeout: {domain}")
        return {"exists": False}
    except httpx.HTTPError as e:
        logger.warning(f"Error fetching website {domain}: {e}")
        return {"exists": False}
    finally:
        if owns_client:
            client.close()


def gather_search_signals(company_name: str) -> Dict[str, Any]:
    logger.debug(f"Gathering search signals (stub) for {company_name}")
    return {"sentiment": "neutral", "snippets": []}


def gather_reddit_signals(company_name: str) -> Dict[str, Any]:
    logger.debug(f"Gathering Reddit signals (stub) for {company_name}")
    return {"mentions": 0, "complaints": 0, "sentiment": "neutral"}


def gather_twitter_signals(company_name: str) -> Dict[str, Any]:
    logger.debug(f"Gathering Twitter signals (stub) for {company_name}")
    return {"mentions": 0, "sentiment": "neutral"}
