"""
Heuristic tour-link extraction from university homepages.

Three passes of decreasing recall and increasing precision:

1. extract_links()      -- every <a href> and <iframe src> on the page
2. find_tour_links()    -- links whose text/href carries a tour keyword
                           (English + Russian/Kazakh-site Russian) or whose host
                           belongs to a map provider family
3. find_map_urls()      -- provider host match only; this is what becomes a
                           LinkCandidate

find_tour_subpages() picks keyword-matched pages on the university's own site
("Virtual tour", "Кампус", ...) for a bounded second fetch pass.
"""
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from campustour.tours.coordinates import extract_coordinates
from campustour.tours.models import ExtractedLink, LinkCandidate, MapUrl
from campustour.tours.providers import detect_provider, provider_for_host

# Matched against both the href and the link text (both lowercased)
TOUR_KEYWORDS: tuple[str, ...] = (
    "tour", "campus", "panorama", "3d", "virtual", "map", "street",
    "тур", "кампус", "панорама", "карта", "виртуальный",
    "экскурсия", "прогулка",
)

_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


def _clean_href(raw: str, base_url: str | None) -> str | None:
    href = (raw or "").strip()
    if not href or href.startswith("#") or href.lower().startswith(_SKIP_SCHEMES):
        return None
    if href.startswith("//"):
        href = "https:" + href
    if base_url:
        href = urljoin(base_url, href)
    return href


def extract_links(html: str, base_url: str | None = None) -> list[ExtractedLink]:
    """
    Return every anchor and iframe target in html, in document order.

    Relative hrefs are resolved against base_url when given. Lazy-loaded
    iframes (data-src) are included.
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    links: list[ExtractedLink] = []

    for a in soup.find_all("a", href=True):
        href = _clean_href(a["href"], base_url)
        if href:
            links.append(ExtractedLink(href=href, text=a.get_text(" ", strip=True), kind="link"))

    for frame in soup.find_all("iframe"):
        href = _clean_href(frame.get("src") or frame.get("data-src") or "", base_url)
        if href:
            links.append(ExtractedLink(href=href, text=(frame.get("title") or "").strip(), kind="iframe"))

    return links


def _keyword_hits(link: ExtractedLink) -> int:
    text = link.text.lower()
    href = link.href.lower()
    return sum(1 for kw in TOUR_KEYWORDS if kw in text or kw in href)


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def find_tour_links(links: list[ExtractedLink]) -> list[ExtractedLink]:
    """Keep links that carry a tour keyword or point at a map provider host."""
    return [
        link for link in links
        if _keyword_hits(link) > 0 or provider_for_host(_host(link.href)) is not None
    ]


def find_map_urls(links: list[ExtractedLink]) -> list[MapUrl]:
    """Reduce links to (url, provider) pairs by map-page host matching. Deduplicated, document order."""
    seen: set[str] = set()
    map_urls: list[MapUrl] = []
    for link in find_tour_links(links):
        provider = detect_provider(link.href)
        if provider is None or link.href in seen:
            continue
        seen.add(link.href)
        map_urls.append(MapUrl(url=link.href, provider=provider))
    return map_urls


def _bare_host(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def _same_site(host: str, site_host: str) -> bool:
    return bool(host) and _bare_host(host) == _bare_host(site_host)


def find_tour_subpages(links: list[ExtractedLink], base_url: str, limit: int = 3) -> list[str]:
    """
    Return up to `limit` same-site pages that look like tour/campus pages.

    Ranked by keyword hits (ties keep document order). Provider hosts, the
    base page itself and non-HTTP targets are excluded.
    """
    if limit <= 0:
        return []
    site_host = _host(base_url)
    base_norm = base_url.rstrip("/")
    scored: list[tuple[int, int, str]] = []
    seen: set[str] = set()

    for position, link in enumerate(links):
        if link.kind != "link":
            continue
        url = link.href.split("#", 1)[0]
        if not url.lower().startswith(("http://", "https://")):
            continue
        if url.rstrip("/") == base_norm or url in seen:
            continue
        if not _same_site(_host(url), site_host):
            continue
        hits = _keyword_hits(link)
        if hits == 0:
            continue
        seen.add(url)
        scored.append((-hits, position, url))

    scored.sort()
    return [url for _, _, url in scored[:limit]]


def build_candidates(map_urls: list[MapUrl]) -> list[LinkCandidate]:
    """Attach URL-embedded coordinates (provider axis order applied) to each map URL."""
    candidates = []
    for item in map_urls:
        coords = extract_coordinates(item.url, item.provider)
        candidates.append(LinkCandidate(
            url=item.url,
            provider=item.provider,
            latitude=coords.lat if coords else None,
            longitude=coords.lng if coords else None,
            origin="extractor",
        ))
    return candidates
