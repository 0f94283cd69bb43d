# product_pipeline/images/canonicalizer.py

"""Collapse CDN size variants of the same image into one best URL.

Storefront CDNs serve one picture under many URLs: ``_1200x1200``,
``_grande`` or ``?width=800`` variants of the same file.  This module
reduces every candidate to a *normalized base key*, groups candidates by
key and keeps the highest-quality URL of each group.

The function is pure: no I/O, no shared mutable state.
"""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urlsplit

from product_pipeline.models.product import (
    CanonicalImage,
    RawCandidateImage,
)

logger = logging.getLogger("product_pipeline.images")

# Width at or above which a numeric marker counts as "largest known"
LARGEST_KNOWN_WIDTH = 4000

# Quality tiers, highest first
TIER_LARGEST = 5
TIER_UNMARKED = 4
TIER_NAMED_LARGE = 3
TIER_NUMERIC = 2
TIER_NAMED_SMALL = 1

_TOP_NAMES = frozenset({"original", "master"})
_LARGE_NAMES = frozenset({"large", "grande"})
_SMALL_NAMES = frozenset(
    {"pico", "icon", "thumb", "small", "compact", "medium"}
)
_SIZE_NAMES = _TOP_NAMES | _LARGE_NAMES | _SMALL_NAMES

# ``_1200x1200``, ``_4000x``, ``_600x600_crop_center`` before the extension
_DIMENSION_SUFFIX_RE = re.compile(
    r"_(?P<width>\d+)x(?P<height>\d*)(?:_crop_[a-z]+)?"
    r"(?P<ext>\.[A-Za-z0-9]+)$"
)
_NAMED_SUFFIX_RE = re.compile(
    r"_(?P<name>" + "|".join(sorted(_SIZE_NAMES)) + r")"
    r"(?P<ext>\.[A-Za-z0-9]+)$"
)


@dataclass(frozen=True)
class CdnFamily:
    """A CDN that encodes size variants in the path or query string."""

    name: str
    hosts: tuple[str, ...] = ()
    path_markers: tuple[str, ...] = ()
    resize_params: frozenset[str] = frozenset()
    identity_params: frozenset[str] = frozenset()
    width_params: tuple[str, ...] = ()

    def matches(self, host: str, path: str) -> bool:
        """Return True if the URL is served by this family."""
        if any(
            host == h or host.endswith("." + h) for h in self.hosts
        ):
            return True
        return any(marker in path for marker in self.path_markers)


CDN_FAMILIES: tuple[CdnFamily, ...] = (
    CdnFamily(
        name="shopify",
        hosts=("cdn.shopify.com",),
        path_markers=("/cdn/shop/", "/cdn/shopifycloud/"),
        resize_params=frozenset({"width", "height", "crop"}),
        identity_params=frozenset({"v"}),
        width_params=("width",),
    ),
    CdnFamily(
        name="zara",
        hosts=("static.zara.net",),
        resize_params=frozenset({"w"}),
        identity_params=frozenset({"ts"}),
        width_params=("w",),
    ),
    CdnFamily(
        name="salesforce",
        path_markers=("/dw/image/",),
        resize_params=frozenset(
            {"sw", "sh", "sm", "sfrm", "q", "bgcolor"}
        ),
        width_params=("sw",),
    ),
)


@dataclass
class CanonicalizeResult:
    """Deduplicated images plus the count of unparseable candidates."""

    images: list[CanonicalImage] = field(
        default_factory=lambda: list[CanonicalImage]()
    )
    malformed_count: int = 0

    @property
    def urls(self) -> list[str]:
        return [img.url for img in self.images]


@dataclass(frozen=True)
class _ParsedCandidate:
    url: str
    key: str
    quality: tuple[int, int]


def _normalise_scheme(url: str) -> str:
    """Treat protocol-relative URLs as https."""
    if url.startswith("//"):
        return "https:" + url
    return url


def find_family(host: str, path: str) -> CdnFamily | None:
    """Return the CDN family serving *host*/*path*, if recognised."""
    for family in CDN_FAMILIES:
        if family.matches(host, path):
            return family
    return None


def strip_variant_markers(path: str) -> str:
    """Remove size/variant tokens that sit immediately before the extension."""
    stripped = _DIMENSION_SUFFIX_RE.sub(r"\g<ext>", path)
    return _NAMED_SUFFIX_RE.sub(r"\g<ext>", stripped)


def quality_score(
    path: str,
    query: list[tuple[str, str]],
    family: CdnFamily | None = None,
) -> tuple[int, int]:
    """Score a URL variant as ``(tier, width)``; bigger is better."""
    width: int | None = None
    dim = _DIMENSION_SUFFIX_RE.search(path)
    if dim:
        width = int(dim.group("width"))
    elif family is not None:
        for key, value in query:
            if key in family.width_params and value.isdigit():
                width = int(value)
                break

    named = _NAMED_SUFFIX_RE.search(path)
    name = named.group("name") if named else None

    if (width is not None and width >= LARGEST_KNOWN_WIDTH) or (
        name in _TOP_NAMES
    ):
        return (TIER_LARGEST, width or 0)
    if name in _LARGE_NAMES:
        return (TIER_NAMED_LARGE, 0)
    if width is not None:
        return (TIER_NUMERIC, width)
    if name in _SMALL_NAMES:
        return (TIER_NAMED_SMALL, 0)
    return (TIER_UNMARKED, 0)


def _parse_candidate(raw_url: object) -> _ParsedCandidate | None:
    """Reduce a candidate to its base key and quality score."""
    if not isinstance(raw_url, str):
        return None
    url = _normalise_scheme(raw_url.strip())
    if not url:
        return None
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not host:
        return None

    family = find_family(host, parts.path)
    if family is None:
        # Unknown CDN: the URL is its own key, mid-tier quality
        return _ParsedCandidate(
            url=url, key=url, quality=(TIER_UNMARKED, 0)
        )

    query = parse_qsl(parts.query, keep_blank_values=True)
    identity = sorted(
        (k, v) for k, v in query if k in family.identity_params
    )
    key = host + strip_variant_markers(parts.path)
    if identity:
        key += "?" + urlencode(identity)
    return _ParsedCandidate(
        url=url,
        key=key,
        quality=quality_score(parts.path, query, family),
    )


def canonicalize(
    candidates: list[RawCandidateImage],
) -> CanonicalizeResult:
    """Deduplicate *candidates* down to one best URL per base key.

    Groups are emitted in the order their key was first seen, so the
    page's primary image stays first.  Within a group a later variant
    replaces the incumbent only if it scores strictly higher.
    """
    best: dict[str, _ParsedCandidate] = {}
    malformed = 0

    for candidate in candidates:
        parsed = _parse_candidate(candidate.url)
        if parsed is None:
            malformed += 1
            logger.debug(
                "Dropped malformed image candidate %r (origin=%s)",
                candidate.url,
                candidate.origin,
            )
            continue

        incumbent = best.get(parsed.key)
        if incumbent is None:
            best[parsed.key] = parsed
        elif parsed.quality > incumbent.quality:
            # Re-assigning an existing key keeps its insertion slot
            best[parsed.key] = parsed

    images = [
        CanonicalImage(key=key, url=entry.url)
        for key, entry in best.items()
    ]
    collapsed = len(candidates) - malformed - len(images)
    if collapsed or malformed:
        logger.info(
            "Canonicalized %d candidates into %d images "
            "(%d variants collapsed, %d malformed)",
            len(candidates),
            len(images),
            collapsed,
            malformed,
        )
    return CanonicalizeResult(images=images, malformed_count=malformed)
