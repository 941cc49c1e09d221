"""
Domain classification for strategy selection.

Maps a target URL onto a site category, a complexity profile and the
known scraping issues of that domain. Everything here is a pure function
of the URL string, so one analyzer may be shared between concurrent
scrapes.
"""

from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from utils.logger import get_logger

from .types import ScrapingStrategy, SiteAnalysis, SiteCategory, SiteComplexity

logger = get_logger(__name__)

# Declared order doubles as the tie-break between equally specific matches.
SITE_PATTERNS: Dict[SiteCategory, Tuple[str, ...]] = {
    SiteCategory.NEWS: (
        "bbc.com",
        "cnn.com",
        "nytimes.com",
        "reuters.com",
        "theguardian.com",
        "washingtonpost.com",
        "wsj.com",
        "npr.org",
        "techcrunch.com",
        "news.ycombinator.com",
        "reddit.com",
    ),
    SiteCategory.BLOG: (
        "medium.com",
        "dev.to",
        "hashnode.com",
        "substack.com",
        "wordpress.com",
        "blogger.com",
        "tumblr.com",
    ),
    SiteCategory.ECOMMERCE: (
        "amazon.com",
        "ebay.com",
        "shopify.com",
        "etsy.com",
        "walmart.com",
        "target.com",
        "bestbuy.com",
        "alibaba.com",
    ),
    SiteCategory.SOCIAL: (
        "twitter.com",
        "x.com",
        "facebook.com",
        "instagram.com",
        "linkedin.com",
        "tiktok.com",
        "youtube.com",
        "pinterest.com",
    ),
    SiteCategory.SPA: (
        "gmail.com",
        "outlook.com",
        "notion.so",
        "figma.com",
        "canva.com",
        "slack.com",
        "discord.com",
        "trello.com",
    ),
    SiteCategory.EDUCATIONAL: (
        "coursera.org",
        "udemy.com",
        "edx.org",
        "khanacademy.org",
        "eduveda.academy",
        "mit.edu",
        "stanford.edu",
        "harvard.edu",
    ),
    SiteCategory.GOVERNMENT: ("gov.uk", "gov.in", "whitehouse.gov", "europa.eu"),
    SiteCategory.CORPORATE: (
        "microsoft.com",
        "google.com",
        "apple.com",
        "meta.com",
        "openai.com",
    ),
}

# Substring heuristics, checked in order when no curated pattern matches.
HEURISTIC_RULES: Tuple[Tuple[Tuple[str, ...], SiteCategory], ...] = (
    (("shop", "store", "buy"), SiteCategory.ECOMMERCE),
    (("blog", "news"), SiteCategory.BLOG),
    (("edu", "academy", "learn"), SiteCategory.EDUCATIONAL),
    (("gov",), SiteCategory.GOVERNMENT),
)

KNOWN_ISSUES: Dict[str, Tuple[str, ...]] = {
    "amazon.com": ("Dynamic content loading", "Anti-bot measures"),
    "facebook.com": ("Heavy JavaScript", "Login required"),
    "twitter.com": ("Rate limiting", "Dynamic loading"),
    "linkedin.com": ("Login walls", "Anti-scraping"),
    "instagram.com": ("Login required", "Dynamic content"),
}

FAST_CATEGORIES = frozenset(
    {SiteCategory.NEWS, SiteCategory.BLOG, SiteCategory.EDUCATIONAL}
)
STEALTH_CATEGORIES = frozenset({SiteCategory.SPA, SiteCategory.SOCIAL})

DEGRADED_ISSUE = "URL parsing failed"


def normalize_host(url: str) -> Optional[str]:
    """Lower-cased hostname without a leading ``www.``, or None if unparsable."""
    if not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host or None


def _host_matches(host: str, pattern: str) -> bool:
    return host == pattern or host.endswith("." + pattern)


def categorize_host(host: str) -> SiteCategory:
    best: Optional[Tuple[int, SiteCategory]] = None
    for category, patterns in SITE_PATTERNS.items():
        for pattern in patterns:
            if _host_matches(host, pattern) and (best is None or len(pattern) > best[0]):
                best = (len(pattern), category)
    if best:
        return best[1]

    for needles, category in HEURISTIC_RULES:
        if any(needle in host for needle in needles):
            return category
    return SiteCategory.UNKNOWN


def assess_complexity(category: SiteCategory) -> SiteComplexity:
    if category in STEALTH_CATEGORIES:
        return SiteComplexity.COMPLEX
    if category in FAST_CATEGORIES:
        return SiteComplexity.SIMPLE
    return SiteComplexity.MODERATE


def known_issues_for(host: str) -> List[str]:
    issues: List[str] = []
    for site, site_issues in KNOWN_ISSUES.items():
        if _host_matches(host, site):
            issues.extend(site_issues)
    return issues


def heuristic_strategy(
    category: SiteCategory, complexity: SiteComplexity
) -> ScrapingStrategy:
    """Static strategy rule, used whenever no learned strategy exists."""
    if complexity == SiteComplexity.SIMPLE and category in FAST_CATEGORIES:
        return ScrapingStrategy.FAST
    if category in STEALTH_CATEGORIES or complexity == SiteComplexity.COMPLEX:
        return ScrapingStrategy.STEALTH
    return ScrapingStrategy.BALANCED


class SiteAnalyzer:
    """Classifies target domains; never raises for bad input."""

    def analyze(self, url: str) -> SiteAnalysis:
        host = normalize_host(url)
        if host is None:
            logger.warning("Failed to analyze site URL: %r", url)
            return degraded_analysis()

        category = categorize_host(host)
        complexity = assess_complexity(category)
        analysis = SiteAnalysis(
            domain=host,
            category=category,
            complexity=complexity,
            known_issues=tuple(known_issues_for(host)),
            recommended_strategy=heuristic_strategy(category, complexity),
        )
        logger.debug(
            "Analyzed %s: category=%s complexity=%s strategy=%s",
            host,
            category.value,
            complexity.value,
            analysis.recommended_strategy.value,
        )
        return analysis


def degraded_analysis() -> SiteAnalysis:
    return SiteAnalysis(
        domain="unknown",
        category=SiteCategory.UNKNOWN,
        complexity=SiteComplexity.MODERATE,
        known_issues=(DEGRADED_ISSUE,),
        recommended_strategy=ScrapingStrategy.BALANCED,
    )
