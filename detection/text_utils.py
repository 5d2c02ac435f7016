"""Geographic and text helpers used for event matching."""
import math
import re
import unicodedata
from typing import List, Set

EARTH_RADIUS_KM = 6371

# Words carrying no distinctive information in French event names
EVENT_NAME_STOPWORDS = frozenset([
    # Articles
    'le', 'la', 'les', 'un', 'une', 'des',
    # Prepositions
    'de', 'du', 'en', 'au', 'aux', 'a',
    # Edition words
    'edition', 'eme', 'ere', 'decouverte', 'nouveau', 'nouvelle',
    # Organizer words
    'by', 'organise', 'presente', 'propose',
    # Generic event types
    'trail', 'course', 'semi', 'marathon', 'km', 'run', 'running',
    'corrida', 'foulees', 'relais', 'marche', 'randonnee',
    # Generic qualifiers
    'grand', 'grande', 'petit', 'petite', 'super', 'mega',
    'international', 'nationale', 'regional', 'departemental',
    # Time of day
    'nocturne', 'diurne', 'matinal', 'vesperale',
])

_EDITION_PATTERNS = [
    # "Trail des Cimes - 12ème édition"
    re.compile(r'\s*[-–—]\s*\d+\s*[eèé]?(?:me)?\s+[eé]?ditions?\s*$', re.IGNORECASE),
    # "Trail des Cimes 12e edition"
    re.compile(r'\s+\d+\s*[eèé]?(?:me)?\s+[eé]?ditions?\s*$', re.IGNORECASE),
    # "3ème Trail des Cimes", "12e Corrida"
    re.compile(r'\b\d+\s*(?:[eèé]me|[eè]re|er|e)\b', re.IGNORECASE),
    # "édition" left behind by the ordinal: "Semi-marathon 1ère édition"
    re.compile(r'\s*[-–—]?\s+[eé]ditions?\s*$', re.IGNORECASE),
    # "#4", "n°5", "No. 5"
    re.compile(r'\s*[#№]\s*\d+', re.IGNORECASE),
    re.compile(r'\s*\bn[o°]?\.?\s*\d+', re.IGNORECASE),
    # trailing year, optionally in parentheses
    re.compile(r'\s*[-–—]?\s*\(?\d{4}\)?\s*$'),
    # trailing parenthetical
    re.compile(r'\s*\([^)]+\)\s*$'),
    # dangling separator
    re.compile(r'\s*[-–—]\s*$'),
]

_SAINT_PREFIX = re.compile(r'^(?:saint|sainte|st|ste)\s+')
_CEDEX_SUFFIX = re.compile(r'\s+cedex(?:\s*\d+)?$')
_PUNCTUATION = re.compile(r'[^\w\s]|_')
_WHITESPACE = re.compile(r'\s+')


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points.

    Args:
        lat1: Latitude of the first point in degrees
        lon1: Longitude of the first point in degrees
        lat2: Latitude of the second point in degrees
        lon2: Longitude of the second point in degrees

    Returns:
        Distance in kilometers
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(d_lon / 2) ** 2
    )
    # Rounding can push ``a`` just above 1 for antipodal points
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def normalize_string(value: str) -> str:
    """
    Normalize text for comparison.

    Lowercases, removes accents, replaces punctuation with spaces and
    collapses whitespace. Applying it twice gives the same result.
    """
    if not value:
        return ''
    decomposed = unicodedata.normalize('NFD', value.lower())
    without_accents = ''.join(
        char for char in decomposed if not unicodedata.combining(char)
    )
    cleaned = _PUNCTUATION.sub(' ', without_accents)
    return _WHITESPACE.sub(' ', cleaned).strip()


def normalize_city(city: str) -> str:
    """Normalize a city name so that "Saint-Étienne" equals "St Etienne"."""
    normalized = normalize_string(city)
    normalized = _SAINT_PREFIX.sub('st ', normalized)
    normalized = _CEDEX_SUFFIX.sub('', normalized)
    return normalized.strip()


def remove_edition_number(name: str) -> str:
    """
    Strip edition ordinals and years from an event name.

    "Marathon de Paris 2025" -> "Marathon de Paris"
    "3ème Trail des Cimes" -> "Trail des Cimes"
    """
    if not name:
        return ''
    result = name
    for pattern in _EDITION_PATTERNS:
        result = pattern.sub('', result)
    return _WHITESPACE.sub(' ', result).strip()


def remove_stopwords(
    text: str,
    stopwords: Set[str] = EVENT_NAME_STOPWORDS,
    min_word_length: int = 3
) -> str:
    """Remove stop words and short words from normalized text."""
    return ' '.join(
        word for word in text.split()
        if len(word) >= min_word_length and word not in stopwords
    )


def extract_keywords(name: str) -> List[str]:
    """Significant keywords of an event name, in name order."""
    normalized = normalize_string(remove_edition_number(name))
    return remove_stopwords(normalized).split()
