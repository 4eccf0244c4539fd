"""Typed indicator extraction from free text.

Every extractor returns an ordered, de-duplicated tuple so results are
deterministic and safe to compare across items.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Tuple

CVE_PATTERN = re.compile(r'\bCVE-\d{4}-\d{4,}\b', re.IGNORECASE)
CVE_TAG_PATTERN = re.compile(r'^CVE-\d{4}-\d{4,}$', re.IGNORECASE)
TECHNIQUE_PATTERN = re.compile(r'\bT\d{4}(?:\.\d{3})?\b', re.IGNORECASE)
TECHNIQUE_TAG_PATTERN = re.compile(r'^T\d{4}(?:\.\d{3})?$', re.IGNORECASE)
CWE_PATTERN = re.compile(r'\bCWE-\d+\b', re.IGNORECASE)
APT_GROUP_PATTERN = re.compile(r'\bAPT-?(\d+)\b', re.IGNORECASE)
APT_TAG_PATTERN = re.compile(r'^APT\d+$', re.IGNORECASE)

IPV4_PATTERN = re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')
DOMAIN_PATTERN = re.compile(r'\b(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}\b', re.IGNORECASE)
EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
HASH_PATTERN = re.compile(r'\b(?:[a-f0-9]{64}|[a-f0-9]{40}|[a-f0-9]{32})\b', re.IGNORECASE)

HASH_ALGORITHMS = {32: 'md5', 40: 'sha1', 64: 'sha256'}

KEYWORD_TAGS = (
    ('RANSOMWARE', re.compile(r'ransom', re.IGNORECASE)),
    ('ZERO-DAY', re.compile(r'zero[- ]?day|0[- ]?day', re.IGNORECASE)),
    ('APT', re.compile(r'apt-?\d+|advanced persistent threat', re.IGNORECASE)),
    ('MALWARE', re.compile(r'malware', re.IGNORECASE)),
    ('PHISHING', re.compile(r'phishing', re.IGNORECASE)),
    ('EXPLOIT', re.compile(r'exploit', re.IGNORECASE)),
)

MALWARE_FAMILIES = (
    'wannacry', 'notpetya', 'blackenergy', 'carbanak', 'sofacy', 'x-agent',
    'komplex', 'zebrocy', 'cozyduke', 'miniduke', 'seaduke', 'sunburst',
    'teardrop', 'hoplight', 'electricfish', 'badcall', 'hardrain', 'applejeus',
    'blindingcan', 'winnti', 'highnoon', 'poisonplug', 'shadowpad', 'crosswalk',
    'griffon', 'powersource', 'boostwrite', 'pillowmint', 'snake', 'uroburos',
    'carbon', 'gazer', 'mosquito', 'crutch', 'fanny', 'equationdrug',
    'grayfish', 'doublefantasy', 'triplefantasy', 'darkside', 'industroyer',
    'vpnfilter', 'olympic destroyer', 'emotet', 'trickbot', 'qakbot',
    'cobalt strike', 'mimikatz', 'metasploit', 'empire', 'covenant',
)

# Name shapes such as "PlugRAT" or "X-Agent"; case-sensitive on purpose.
MALWARE_NAME_PATTERNS = (
    re.compile(r'\b[A-Z][a-z]+(?:RAT|Trojan|Backdoor|Wiper|Ransomware)\b'),
    re.compile(r'\b[A-Z][\w-]+(?:Agent|CAN|Loader|Dropper|Stealer)\b'),
)

TOOL_NAMES = (
    'mimikatz', 'cobalt strike', 'metasploit', 'powershell empire', 'impacket',
    'bloodhound', 'sharphound', 'rubeus', 'kerberoast', 'psexec', 'wmi',
    'powershell', 'cmd', 'certutil', 'bitsadmin', 'responder', 'crackmapexec',
    'empire',
)

SECTOR_KEYWORDS = {
    'Government': ('government', 'federal', 'state', 'municipal', 'agencies', 'agency'),
    'Financial': ('bank', 'financial', 'fintech', 'payment', 'cryptocurrency'),
    'Healthcare': ('healthcare', 'hospital', 'medical', 'health'),
    'Energy': ('energy', 'oil', 'gas', 'utility', 'power'),
    'Technology': ('tech', 'software', 'saas', 'cloud'),
    'Defense': ('defense', 'military', 'army', 'navy', 'air force'),
    'Telecommunications': ('telecom', 'telco', '5g', 'network provider'),
    'Manufacturing': ('manufacturing', 'industrial', 'factory'),
    'Education': ('education', 'university', 'school', 'academic'),
    'Retail': ('retail', 'ecommerce', 'shopping'),
    'Media': ('media', 'news', 'journalism', 'press', 'broadcasting'),
}

INDUSTRY_KEYWORDS = (
    'government', 'military', 'defense', 'financial', 'banking', 'healthcare',
    'energy', 'technology', 'retail', 'hospitality', 'manufacturing',
    'telecommunications', 'education', 'media', 'entertainment',
)

COUNTRY_KEYWORDS = (
    'united states', 'usa', 'u.s.', 'america', 'ukraine', 'russia', 'china',
    'iran', 'north korea', 'israel', 'saudi arabia', 'uae', 'qatar', 'germany',
    'france', 'uk', 'united kingdom', 'britain', 'japan', 'south korea',
    'taiwan', 'india', 'australia', 'canada', 'mexico', 'brazil',
)

ORGANIZATION_SUFFIXES = (
    'Corp', 'Corporation', 'Inc', 'LLC', 'Ltd', 'Company', 'Group',
    'International', 'Global', 'Systems', 'Technologies', 'Solutions',
)

_PUNCTUATION = ',.;:()[]"\''


@dataclass(frozen=True)
class IndicatorSet:
    """Indicators of compromise found in one piece of text."""

    ips: Tuple[str, ...] = ()
    domains: Tuple[str, ...] = ()
    emails: Tuple[str, ...] = ()
    hashes: Tuple[str, ...] = ()
    cves: Tuple[str, ...] = ()

    @property
    def network_total(self) -> int:
        """Count of IP, domain and hash indicators."""
        return len(self.ips) + len(self.domains) + len(self.hashes)


def unique(values: Iterable[str]) -> Tuple[str, ...]:
    """De-duplicate while keeping first-seen order."""
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


@lru_cache(maxsize=512)
def _term_pattern(term: str, prefix_only: bool = False):
    suffix = '' if prefix_only else r'(?!\w)'
    return re.compile(r'(?<!\w)' + re.escape(term) + suffix, re.IGNORECASE)


def contains_term(text: str, term: str, prefix_only: bool = False) -> bool:
    """Word-bounded, case-insensitive containment check."""
    if not text or not term:
        return False
    return _term_pattern(term, prefix_only).search(text) is not None


def extract_cves(text: str) -> Tuple[str, ...]:
    return unique(m.upper() for m in CVE_PATTERN.findall(text or ''))


def cve_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    """Tags that are CVE identifiers, uppercased."""
    return unique(tag.upper() for tag in tags if CVE_TAG_PATTERN.match(tag))


def extract_techniques(text: str) -> Tuple[str, ...]:
    return unique(m.upper() for m in TECHNIQUE_PATTERN.findall(text or ''))


def technique_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    return unique(tag.upper() for tag in tags if TECHNIQUE_TAG_PATTERN.match(tag))


def extract_cwes(text: str) -> Tuple[str, ...]:
    return unique(m.upper() for m in CWE_PATTERN.findall(text or ''))


def extract_apt_groups(text: str) -> Tuple[str, ...]:
    """Numbered APT group names such as ``APT28``."""
    return unique(f'APT{number}' for number in APT_GROUP_PATTERN.findall(text or ''))


def apt_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    return unique(tag.upper() for tag in tags if APT_TAG_PATTERN.match(tag))


def extract_keyword_tags(text: str) -> Tuple[str, ...]:
    return tuple(tag for tag, pattern in KEYWORD_TAGS if pattern.search(text or ''))


def extract_ips(text: str) -> Tuple[str, ...]:
    ips = []
    for candidate in IPV4_PATTERN.findall(text or ''):
        if all(int(part) <= 255 for part in candidate.split('.')):
            ips.append(candidate)
    return unique(ips)


def extract_domains(text: str) -> Tuple[str, ...]:
    return unique(m.lower() for m in DOMAIN_PATTERN.findall(text or ''))


def extract_emails(text: str) -> Tuple[str, ...]:
    return unique(m.lower() for m in EMAIL_PATTERN.findall(text or ''))


def extract_hashes(text: str) -> Tuple[str, ...]:
    return unique(m.lower() for m in HASH_PATTERN.findall(text or ''))


def hash_algorithm(value: str) -> str:
    """Name the hash algorithm implied by a hex digest's length."""
    return HASH_ALGORITHMS.get(len(value), 'unknown')


def extract_iocs(text: str) -> IndicatorSet:
    """
    Extract every indicator-of-compromise category from text.

    Args:
        text: Free text (title, description, tags)

    Returns:
        IndicatorSet with IPs, domains, emails, hashes and CVEs
    """
    return IndicatorSet(
        ips=extract_ips(text),
        domains=extract_domains(text),
        emails=extract_emails(text),
        hashes=extract_hashes(text),
        cves=extract_cves(text),
    )


def extract_malware(text: str) -> Tuple[str, ...]:
    """Lowercased malware family names from the keyword list and name shapes."""
    text = text or ''
    names = [family for family in MALWARE_FAMILIES if contains_term(text, family)]
    for pattern in MALWARE_NAME_PATTERNS:
        names.extend(match.lower() for match in pattern.findall(text))
    return unique(names)


def extract_tools(text: str) -> Tuple[str, ...]:
    return unique(tool for tool in TOOL_NAMES if contains_term(text, tool))


def extract_sectors(text: str) -> Tuple[str, ...]:
    """Sector names whose keywords appear in the text (prefix match)."""
    return tuple(
        sector for sector, keywords in SECTOR_KEYWORDS.items()
        if any(contains_term(text, keyword, prefix_only=True) for keyword in keywords)
    )


def extract_industries(text: str) -> Tuple[str, ...]:
    return unique(word for word in INDUSTRY_KEYWORDS if contains_term(text, word, prefix_only=True))


def extract_countries(text: str) -> Tuple[str, ...]:
    return unique(country for country in COUNTRY_KEYWORDS if contains_term(text, country))


def extract_organizations(text: str) -> Tuple[str, ...]:
    """
    Guess organization names from corporate suffixes.

    The suffix word plus up to two preceding words form the name, e.g.
    "Acme Widgets Corp".
    """
    words = (text or '').split()
    organizations = []
    for index, word in enumerate(words):
        if word.strip(_PUNCTUATION) in ORGANIZATION_SUFFIXES:
            phrase = ' '.join(w.strip(_PUNCTUATION) for w in words[max(0, index - 2):index + 1])
            organizations.append(phrase)
    return unique(organizations)
