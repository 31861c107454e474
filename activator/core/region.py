"""
Region codes, localized names and normalization.

normalize_region() accepts an ISO code or a country name in English,
Hebrew or Arabic and returns the ISO code; unknown input is upper-cased.
"""

from typing import Dict, Optional

REGION_NAMES: Dict[str, Dict[str, str]] = {
    "US": {"en": "United States", "he": "ארצות הברית", "ar": "الولايات المتحدة"},
    "CA": {"en": "Canada", "he": "קנדה", "ar": "كندا"},
    "AR": {"en": "Argentina", "he": "ארגנטינה", "ar": "الأرجنتين"},
    "TR": {"en": "Turkey", "he": "טורקיה", "ar": "تركيا"},
    "DE": {"en": "Germany", "he": "גרמניה", "ar": "ألمانيا"},
    "AU": {"en": "Australia", "he": "אוסטרליה", "ar": "أستراليا"},
    "SG": {"en": "Singapore", "he": "סינגפור", "ar": "سنغافورة"},
    "IN": {"en": "India", "he": "הודו", "ar": "الهند"},
    "UA": {"en": "Ukraine", "he": "אוקראינה", "ar": "أوكرانيا"},
    "EG": {"en": "Egypt", "he": "מצרים", "ar": "مصر"},
    "IL": {"en": "Israel", "he": "ישראל", "ar": "إسرائيل"},
    "HK": {"en": "Hong Kong", "he": "הונג קונג", "ar": "هونغ كونغ"},
    "JP": {"en": "Japan", "he": "יפן", "ar": "اليابان"},
    "CN": {"en": "China", "he": "סין", "ar": "الصين"},
    "BR": {"en": "Brazil", "he": "ברזיל", "ar": "البرازيل"},
    "PK": {"en": "Pakistan", "he": "פקיסטן", "ar": "باكستان"},
    "CO": {"en": "Colombia", "he": "קולומביה", "ar": "كولومبيا"},
    "MX": {"en": "Mexico", "he": "מקסיקו", "ar": "المكسيك"},
    "AE": {"en": "United Arab Emirates", "he": "איחוד האמירויות", "ar": "الإمارات العربية المتحدة"},
    "PH": {"en": "Philippines", "he": "פיליפינים", "ar": "الفلبين"},
    "TW": {"en": "Taiwan", "he": "טייוואן", "ar": "تايوان"},
    "KR": {"en": "South Korea", "he": "דרום קוריאה", "ar": "كوريا الجنوبية"},
    "TH": {"en": "Thailand", "he": "תאילנד", "ar": "تايلاند"},
    "NZ": {"en": "New Zealand", "he": "ניו זילנד", "ar": "نيوزيلندا"},
    "ZA": {"en": "South Africa", "he": "דרום אפריקה", "ar": "جنوب أفريقيا"},
    "GB": {"en": "United Kingdom", "he": "בריטניה", "ar": "المملكة المتحدة"},
    "NG": {"en": "Nigeria", "he": "ניגריה", "ar": "نيجيريا"},
}

GLOBAL_REGIONS = frozenset({"GLOBAL", "WW", "WORLDWIDE"})

GLOBAL_MARKET = "US"


def _build_lookup() -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for code, names in REGION_NAMES.items():
        for name in names.values():
            if name:
                lookup[name.lower()] = code
        lookup[code.lower()] = code
    return lookup


_LOOKUP = _build_lookup()


def normalize_region(value: Optional[str]) -> Optional[str]:
    """Map a region code or localized country name to its ISO code."""
    if value is None:
        return None
    return _LOOKUP.get(value.strip().lower(), value.strip().upper())


def region_name(code: str, language: str = "en") -> str:
    names = REGION_NAMES.get(code.upper())
    if names is None:
        return code
    return names.get(language) or names["en"]


def is_global_region(region: Optional[str]) -> bool:
    if not region:
        return False
    return region.strip().upper() in GLOBAL_REGIONS


def regions_match(account_region: Optional[str], key_region: Optional[str]) -> bool:
    """Global keys match any account; otherwise compare normalized codes."""
    if is_global_region(key_region):
        return True
    return normalize_region(account_region) == normalize_region(key_region)
