"""Reference profile sets used by the attribution enrichers.

Each set is validated into typed, immutable profiles. A malformed document
raises ``ValidationError``; the loader logs it and substitutes an empty set so
the matching enricher simply finds nothing.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from threat_triage.errors import CacheMiss, CacheReadError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AptProfile:
    id: str
    name: str
    aliases: Tuple[str, ...] = ()
    country: str = ''
    malware: Tuple[str, ...] = ()
    techniques: Tuple[str, ...] = ()
    tools: Tuple[str, ...] = ()
    targeted_sectors: Tuple[str, ...] = ()
    targeted_countries: Tuple[str, ...] = ()
    mitre_attack_id: str = ''


@dataclass(frozen=True)
class Campaign:
    name: str
    date: str = ''
    description: str = ''
    targets: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ActorProfile:
    id: str
    name: str
    aliases: Tuple[str, ...] = ()
    type: str = ''
    country: str = ''
    sophistication: str = ''
    status: str = ''
    motivation: Tuple[str, ...] = ()
    ttps: Tuple[str, ...] = ()
    malware_families: Tuple[str, ...] = ()
    ips: Tuple[str, ...] = ()
    domains: Tuple[str, ...] = ()
    target_industries: Tuple[str, ...] = ()
    target_countries: Tuple[str, ...] = ()
    campaigns: Tuple[Campaign, ...] = ()


@dataclass(frozen=True)
class RansomwareVictim:
    id: str
    victim_name: str
    ransomware_group: str
    industry: str = ''
    severity: str = ''
    status: str = ''
    discovered_date: str = ''


@dataclass(frozen=True)
class PasteFinding:
    id: str
    title: str = ''
    paste_site: str = ''
    category: str = ''
    severity: str = ''
    discovered_date: str = ''
    iocs: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class DetectionRule:
    id: str
    name: str
    severity: str = ''
    status: str = ''
    platform: str = ''
    techniques: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CountryRisk:
    name: str
    risk_score: int = 0
    risk_level: str = ''
    region: str = ''
    trend: str = ''


@dataclass(frozen=True)
class ProfileSets:
    """Every reference set the enrichers draw on."""

    apt_groups: Tuple[AptProfile, ...] = ()
    actors: Tuple[ActorProfile, ...] = ()
    victims: Tuple[RansomwareVictim, ...] = ()
    pastes: Tuple[PasteFinding, ...] = ()
    detections: Tuple[DetectionRule, ...] = ()
    countries: Tuple[CountryRisk, ...] = ()


def _entries(document: Any, key: str) -> List[Mapping[str, Any]]:
    if not isinstance(document, Mapping):
        raise ValidationError(f"Profile document must be an object with '{key}'")
    entries = document.get(key, [])
    if not isinstance(entries, list):
        raise ValidationError(f"'{key}' must be a list")
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ValidationError(f"'{key}[{index}]' must be an object")
    return entries


def _text(entry: Mapping[str, Any], key: str, required: bool = False) -> str:
    value = entry.get(key)
    if value in (None, ''):
        if required:
            raise ValidationError(f"Profile entry is missing '{key}': {dict(entry)!r:.120}")
        return ''
    if not isinstance(value, (str, int, float)):
        raise ValidationError(f"'{key}' must be a string")
    return str(value)


def _strings(entry: Mapping[str, Any], key: str, id_key: Optional[str] = None) -> Tuple[str, ...]:
    """A list of strings, or of objects whose ``id_key`` holds the string."""
    values = entry.get(key) or []
    if not isinstance(values, list):
        raise ValidationError(f"'{key}' must be a list")
    result = []
    for value in values:
        if isinstance(value, Mapping) and id_key:
            value = value.get(id_key)
        if not isinstance(value, str) or not value:
            raise ValidationError(f"'{key}' contains an invalid entry: {value!r}")
        result.append(value)
    return tuple(result)


def _mapping(entry: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = entry.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"'{key}' must be an object")
    return value


def parse_apt_profiles(document: Any) -> Tuple[AptProfile, ...]:
    """Parse an ``{"groups": [...]}`` APT profile document."""
    return tuple(
        AptProfile(
            id=_text(entry, 'id', required=True),
            name=_text(entry, 'name', required=True),
            aliases=_strings(entry, 'aliases'),
            country=_text(entry, 'country'),
            malware=_strings(entry, 'malware', id_key='name'),
            techniques=_strings(entry, 'techniques', id_key='id'),
            tools=_strings(entry, 'tools'),
            targeted_sectors=_strings(entry, 'targetedSectors'),
            targeted_countries=_strings(entry, 'targetedCountries'),
            mitre_attack_id=_text(entry, 'mitreAttackId'),
        )
        for entry in _entries(document, 'groups')
    )


def parse_actor_profiles(document: Any) -> Tuple[ActorProfile, ...]:
    """Parse a ``{"threatActors": [...]}`` actor document."""
    actors = []
    for entry in _entries(document, 'threatActors'):
        infrastructure = _mapping(entry, 'infrastructure')
        targets = _mapping(entry, 'targets')
        campaigns = tuple(
            Campaign(
                name=_text(campaign, 'name', required=True),
                date=_text(campaign, 'date'),
                description=_text(campaign, 'description'),
                targets=_strings(campaign, 'targets'),
            )
            for campaign in _entries(entry, 'campaigns')
        )
        actors.append(ActorProfile(
            id=_text(entry, 'id', required=True),
            name=_text(entry, 'name', required=True),
            aliases=_strings(entry, 'aliases'),
            type=_text(entry, 'type'),
            country=_text(entry, 'country'),
            sophistication=_text(entry, 'sophistication'),
            status=_text(entry, 'status'),
            motivation=_strings(entry, 'motivation'),
            ttps=_strings(entry, 'ttps', id_key='id'),
            malware_families=_strings(entry, 'malwareFamilies'),
            ips=_strings(infrastructure, 'ips'),
            domains=_strings(infrastructure, 'domains'),
            target_industries=_strings(targets, 'industries'),
            target_countries=_strings(targets, 'countries'),
            campaigns=campaigns,
        ))
    return tuple(actors)


def parse_dark_web_intel(document: Any) -> Tuple[Tuple[RansomwareVictim, ...], Tuple[PasteFinding, ...]]:
    """Parse a ``{"ransomwareVictims": [...], "pasteFindings": [...]}`` document."""
    victims = tuple(
        RansomwareVictim(
            id=_text(entry, 'id', required=True),
            victim_name=_text(entry, 'victimName', required=True),
            ransomware_group=_text(entry, 'ransomwareGroup', required=True),
            industry=_text(entry, 'industry'),
            severity=_text(entry, 'severity'),
            status=_text(entry, 'status'),
            discovered_date=_text(entry, 'discoveredDate'),
        )
        for entry in _entries(document, 'ransomwareVictims')
    )
    pastes = []
    for entry in _entries(document, 'pasteFindings'):
        iocs = _mapping(entry, 'iocs')
        pastes.append(PasteFinding(
            id=_text(entry, 'id', required=True),
            title=_text(entry, 'title'),
            paste_site=_text(entry, 'pasteSite'),
            category=_text(entry, 'category'),
            severity=_text(entry, 'severity'),
            discovered_date=_text(entry, 'discoveredDate'),
            iocs={kind: _strings(iocs, kind) for kind in ('ips', 'domains', 'emails', 'hashes', 'cves')},
        ))
    return victims, tuple(pastes)


def parse_detection_rules(document: Any) -> Tuple[DetectionRule, ...]:
    """Parse a ``{"detections": [...]}`` rule catalogue."""
    return tuple(
        DetectionRule(
            id=_text(entry, 'id', required=True),
            name=_text(entry, 'name', required=True),
            severity=_text(entry, 'severity').upper(),
            status=_text(entry, 'status').lower(),
            platform=_text(entry, 'platform'),
            techniques=tuple(t.upper() for t in _strings(entry, 'techniques', id_key='id')),
        )
        for entry in _entries(document, 'detections')
    )


def parse_country_risks(document: Any) -> Tuple[CountryRisk, ...]:
    """Parse a ``{"countries": [...]}`` geopolitical risk table."""
    countries = []
    for entry in _entries(document, 'countries'):
        score = entry.get('riskScore', 0)
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValidationError(f"'riskScore' must be a number: {score!r}")
        countries.append(CountryRisk(
            name=_text(entry, 'name', required=True),
            risk_score=int(score),
            risk_level=_text(entry, 'riskLevel').lower(),
            region=_text(entry, 'region'),
            trend=_text(_mapping(entry, 'trends'), 'direction'),
        ))
    return tuple(countries)


class ProfileLoader:
    """Loads reference sets from the cache, falling back to JSON files."""

    # (cache key, config section) per reference set
    SOURCES = {
        'apt': ('apt-profiles', 'apt'),
        'actors': ('threat-actors', 'actors'),
        'dark_web': ('dark-web-intel', 'dark_web'),
        'detections': ('detections', 'detections'),
        'countries': ('geopolitical-risks', 'geopolitical'),
    }

    def __init__(self, config=None, cache=None):
        """
        Initialize loader.

        Args:
            config: Config instance providing ``enrichment.<set>.profiles`` paths
            cache: Optional CacheGateway checked before the files
        """
        self.config = config
        self.cache = cache

    def load(self) -> ProfileSets:
        """Load and validate every reference set."""
        victims, pastes = self._load('dark_web', parse_dark_web_intel, ((), ()))
        return ProfileSets(
            apt_groups=self._load('apt', parse_apt_profiles, ()),
            actors=self._load('actors', parse_actor_profiles, ()),
            victims=victims,
            pastes=pastes,
            detections=self._load('detections', parse_detection_rules, ()),
            countries=self._load('countries', parse_country_risks, ()),
        )

    def _load(self, name: str, parser: Callable[[Any], Any], empty: Any) -> Any:
        cache_key, section = self.SOURCES[name]
        document = self._read_cache(cache_key)
        origin = f"cache key '{cache_key}'"
        if document is None:
            path = self._profile_path(section)
            if path is None or not path.exists():
                logger.info(f"No {name} reference set available")
                return empty
            origin = str(path)
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    document = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Invalid {name} reference set in {origin}: {e}")
                return empty

        try:
            profiles = parser(document)
        except ValidationError as e:
            logger.warning(f"Invalid {name} reference set in {origin}: {e}")
            return empty
        logger.debug(f"Loaded {name} reference set from {origin}")
        return profiles

    def _read_cache(self, key: str) -> Any:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except CacheMiss:
            return None
        except CacheReadError as e:
            logger.warning(f"Could not read '{key}' from cache: {e}")
            return None

    def _profile_path(self, section: str) -> Optional[Path]:
        if self.config is None:
            return None
        return self.config.resolve_path(self.config.get(f'enrichment.{section}.profiles'))
