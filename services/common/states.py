# CREATE FILE: services/common/states.py

from typing import Optional

US_STATE_CODES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
    "DC",
    # Territories
    "AS", "GU", "MP", "PR", "VI",
})


def normalize_state_code(code) -> Optional[str]:
    """Trim a state code; returns None for non-strings and blanks"""
    if not isinstance(code, str):
        return None
    trimmed = code.strip()
    return trimmed or None


def is_valid_state_code(code) -> bool:
    """True for an upper-case two-letter US state, DC or territory code"""
    normalized = normalize_state_code(code)
    return normalized is not None and normalized in US_STATE_CODES
