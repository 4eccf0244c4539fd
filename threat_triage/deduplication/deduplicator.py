"""Deduplication of items reported by several sources.

Items are compared pairwise with a priority cascade (URL, shared CVE, title
similarity, indicator overlap) and merged into ``DuplicateGroup``s.
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple, Union
from urllib.parse import urlsplit

from threat_triage import extraction
from threat_triage.models import (
    NO_MATCH, DuplicateGroup, DuplicateMatch, NormalizedItem, ThreatRecord,
)

logger = logging.getLogger(__name__)

STRATEGIES = ('greedy', 'transitive')

CVE_TITLE_THRESHOLD = 0.6
TITLE_THRESHOLD = 0.85
IOC_OVERLAP_THRESHOLD = 0.5
IOC_TITLE_THRESHOLD = 0.5

Entry = Union[NormalizedItem, ThreatRecord]


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str) -> float:
    """
    Case-insensitive similarity between two strings.

    Args:
        a: First string
        b: Second string

    Returns:
        Ratio in [0, 1]; two empty strings are identical
    """
    a = (a or '').lower()
    b = (b or '').lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / max_len


def normalize_url_for_comparison(url: str) -> str:
    """Scheme, host and path of a URL without query, fragment or trailing slash."""
    if not url:
        return ''
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url.lower().strip()
    if not parts.scheme or not parts.netloc:
        return url.lower().strip()
    path = parts.path[:-1] if parts.path.endswith('/') else parts.path
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"


def _indicator_overlap(text_a: str, text_b: str) -> float:
    iocs_a = extraction.extract_iocs(text_a)
    iocs_b = extraction.extract_iocs(text_b)
    if not iocs_a.network_total or not iocs_b.network_total:
        return 0.0
    common = (
        len(set(iocs_a.ips) & set(iocs_b.ips))
        + len(set(iocs_a.domains) & set(iocs_b.domains))
        + len(set(iocs_a.hashes) & set(iocs_b.hashes))
    )
    return common / min(iocs_a.network_total, iocs_b.network_total)


def are_duplicates(a: Any, b: Any) -> DuplicateMatch:
    """
    Decide whether two items describe the same threat.

    The first rule that matches wins: normalized URL equality, a shared CVE
    with similar titles, near-identical titles, then overlapping indicators
    with moderately similar titles. The result does not depend on argument
    order.

    Args:
        a: Item or record with title, link, tags and description
        b: Item or record with title, link, tags and description

    Returns:
        DuplicateMatch describing the first rule that matched
    """
    url_a = normalize_url_for_comparison(a.link)
    url_b = normalize_url_for_comparison(b.link)
    if url_a and url_a == url_b:
        return DuplicateMatch(True, 'url', 1.0)

    title_similarity = similarity_ratio(a.title, b.title)

    shared_cves = set(extraction.cve_tags(a.tags)) & set(extraction.cve_tags(b.tags))
    if shared_cves and title_similarity >= CVE_TITLE_THRESHOLD:
        return DuplicateMatch(True, 'cve', 0.95)

    if title_similarity >= TITLE_THRESHOLD:
        return DuplicateMatch(True, 'title', title_similarity)

    overlap = _indicator_overlap(f"{a.title} {a.description or ''}", f"{b.title} {b.description or ''}")
    if overlap >= IOC_OVERLAP_THRESHOLD and title_similarity >= IOC_TITLE_THRESHOLD:
        return DuplicateMatch(True, 'ioc', 0.75)

    return NO_MATCH


def _comparison_view(entry: Entry) -> NormalizedItem:
    """
    The item an entry is compared by.

    A merged record is compared through the member that started its group.
    That member matched nothing in earlier groups, so deduplicating records
    a second time never merges them further.
    """
    if isinstance(entry, ThreatRecord):
        return entry.group.members[0]
    return entry


def _greedy_clusters(entries: Sequence[Entry]) -> List[Tuple[List[int], List[DuplicateMatch]]]:
    """Join each entry to the first group holding any member it matches."""
    clusters = []
    for index, entry in enumerate(entries):
        placed = False
        for members, matches in clusters:
            for member_index in members:
                match = are_duplicates(entry, entries[member_index])
                if match.is_duplicate:
                    members.append(index)
                    matches.append(match)
                    placed = True
                    break
            if placed:
                break
        if not placed:
            clusters.append(([index], []))
    return clusters


def _transitive_clusters(entries: Sequence[Entry]) -> List[Tuple[List[int], List[DuplicateMatch]]]:
    """Connected components of the pairwise match graph (union-find)."""
    parent = list(range(len(entries)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    joins: Dict[int, DuplicateMatch] = {}
    for i in range(len(entries)):
        for j in range(i + 1, len(entries)):
            match = are_duplicates(entries[i], entries[j])
            if not match.is_duplicate:
                continue
            root_i, root_j = find(i), find(j)
            if root_i != root_j:
                # Smaller index stays the root so components keep input order.
                low, high = sorted((root_i, root_j))
                parent[high] = low
                joins.setdefault(j, match)

    components: Dict[int, List[int]] = {}
    for index in range(len(entries)):
        components.setdefault(find(index), []).append(index)

    clusters = []
    for root in sorted(components):
        members = components[root]
        matches = [joins[m] for m in members[1:] if m in joins]
        clusters.append((members, matches))
    return clusters


def _merge(entries: Sequence[Entry], members: List[int],
           matches: List[DuplicateMatch]) -> ThreatRecord:
    if len(members) == 1:
        entry = entries[members[0]]
        if isinstance(entry, ThreatRecord):
            return entry
        return ThreatRecord.from_item(entry)

    items: List[NormalizedItem] = []
    all_matches: List[DuplicateMatch] = []
    for index in members:
        entry = entries[index]
        if isinstance(entry, ThreatRecord):
            items.extend(entry.group.members)
            all_matches.extend(entry.group.matches)
        else:
            items.append(entry)
    all_matches.extend(matches)
    return ThreatRecord.from_group(DuplicateGroup.from_members(items, all_matches))


def deduplicate(items: Sequence[Entry], strategy: str = 'greedy') -> List[ThreatRecord]:
    """
    Collapse duplicate items into merged threat records.

    Args:
        items: Normalized items, or records from an earlier deduplication
        strategy: 'greedy' joins the first group with any matching member;
            'transitive' merges every connected component of the match graph

    Returns:
        One record per group, in order of each group's first member
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown deduplication strategy '{strategy}'")
    if not items:
        return []

    views = [_comparison_view(entry) for entry in items]
    if strategy == 'transitive':
        clusters = _transitive_clusters(views)
    else:
        clusters = _greedy_clusters(views)

    records = [_merge(items, members, matches) for members, matches in clusters]
    logger.info(f"Deduplicated {len(items)} items to {len(records)} records ({strategy})")
    return records
