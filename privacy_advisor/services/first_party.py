"""
First-party and CDN domain classification.

Decides whether a domain contacted during a scan belongs to the same
organization as the scanned site, so that first-party infrastructure is not
reported as third-party data sharing.
"""

from functools import lru_cache
from typing import Dict, List

import tldextract

# Bundled public suffix snapshot only; classification never hits the network.
_extractor = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)

# Root registrable domain -> infrastructure domains owned by the same organization
KNOWN_FIRST_PARTY_PATTERNS: Dict[str, List[str]] = {
    'github.com': ['githubusercontent.com', 'githubassets.com', 'github.io'],
    'google.com': ['gstatic.com', 'googleusercontent.com', 'ggpht.com'],
    'facebook.com': ['fbcdn.net', 'fbsbx.com'],
    'twitter.com': ['twimg.com', 't.co'],
    'x.com': ['twimg.com', 't.co'],
    'amazon.com': ['media-amazon.com', 'ssl-images-amazon.com'],
    'wikipedia.org': ['wikimedia.org', 'wikidata.org', 'wikis.world'],
    'microsoft.com': ['microsoftonline.com', 'live.com', 'msn.com'],
    'apple.com': ['icloud.com', 'mzstatic.com', 'cdn-apple.com'],
    'linkedin.com': ['licdn.com'],
    'reddit.com': ['redd.it', 'redditstatic.com'],
    'stackoverflow.com': ['sstatic.net', 'stackexchange.com'],
    'youtube.com': ['ytimg.com', 'googlevideo.com'],
    'netflix.com': ['nflxext.com', 'nflximg.net', 'nflxvideo.net'],
}

KNOWN_CDN_PATTERNS = (
    'cloudflare.com',
    'fastly.net',
    'akamai.net',
    'cloudfront.net',
    'cdn77.com',
    'jsdelivr.net',
    'unpkg.com',
    'cdnjs.com',
    'bootstrapcdn.com',
    'fontawesome.com',
    'typekit.net',
    'fonts.googleapis.com',
    'fonts.gstatic.com',
)


@lru_cache(maxsize=4096)
def registrable_domain(hostname: str) -> str:
    """
    Return the eTLD+1 of a hostname, or '' if it has none.

    >>> registrable_domain('api.github.com')
    'github.com'
    >>> registrable_domain('www.bbc.co.uk')
    'bbc.co.uk'
    """
    parts = _extractor(hostname.strip().lower().rstrip('.'))
    if not parts.domain or not parts.suffix:
        return ''
    return f"{parts.domain}.{parts.suffix}"


def is_first_party(domain: str, root_domain: str) -> bool:
    """
    Determine if a domain belongs to the same organization as root_domain.

    Args:
        domain: The domain to check (e.g., 'github.githubassets.com')
        root_domain: The root domain being scanned (e.g., 'github.com')

    Returns:
        True if the domain is first-party
    """
    if not domain or not root_domain:
        return False

    normalized_domain = domain.lower().strip()
    normalized_root = root_domain.lower().strip()

    if normalized_domain == normalized_root:
        return True

    domain_registrable = registrable_domain(normalized_domain)
    root_registrable = registrable_domain(normalized_root)

    if domain_registrable and domain_registrable == root_registrable:
        return True

    if root_registrable:
        patterns = KNOWN_FIRST_PARTY_PATTERNS.get(root_registrable, [])
        if any(fragment in normalized_domain for fragment in patterns):
            return True

    return False


def is_known_cdn(domain: str) -> bool:
    """True if domain is served by a well-known CDN, independent of the scanned site."""
    normalized_domain = domain.lower()
    return any(cdn in normalized_domain for cdn in KNOWN_CDN_PATTERNS)
