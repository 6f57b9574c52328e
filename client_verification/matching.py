"""Identity matching of extracted document fields against a stored client profile.

Both checks must pass for a client to be verified:

- Name: the normalized extracted ``Name`` must contain the normalized first
  name and the normalized last name as substrings, in any order. This is
  deliberately looser than an exact match; ``"DOE JOHN"`` and
  ``"JOHN MICHAEL DOE"`` both match ``John Doe``.
- Date of birth: the extracted ``Date of Birth`` must parse with
  ``client_verification.dates.parse_date`` to exactly the stored date.

Example
-------
>>> import datetime, uuid
>>> from client_verification.models import ClientProfile, ExtractedData
>>> profile = ClientProfile(client_id=uuid.uuid4(), first_name="John", last_name="Doe",
...                         date_of_birth=datetime.date(1990, 1, 15))
>>> data = ExtractedData(keyValuePairs={"Name": "  john   DOE ", "Date of Birth": "15 Jan 1990"})
>>> verify(profile, data)
True
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from client_verification.constants import FIELD_DATE_OF_BIRTH, FIELD_NAME
from client_verification.dates import parse_date
from client_verification.models import ClientProfile, ExtractedData

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class FieldMatch:
    """Per-field outcome of matching one extraction result against a profile."""
    name_match: bool
    dob_match: bool

    @property
    def verified(self) -> bool:
        return self.name_match and self.dob_match


def normalize_name(value: str) -> str:
    """Trim, upper-case and collapse internal whitespace runs to single spaces."""
    return _WHITESPACE.sub(" ", value.strip().upper())


def _lookup(pairs: Mapping[str, str], key: str) -> Optional[str]:
    value = pairs.get(key)
    if value is None or not value.strip():
        return None
    return value


def name_matches(profile: ClientProfile, pairs: Mapping[str, str]) -> bool:
    extracted = _lookup(pairs, FIELD_NAME)
    if extracted is None:
        logger.warning("No name found in extracted data for client %s", profile.client_id)
        return False

    normalized = normalize_name(extracted)
    first = normalize_name(profile.first_name)
    last = normalize_name(profile.last_name)
    first_present = first in normalized
    last_present = last in normalized
    logger.debug(
        "Name verification: extracted=%r first=%r (present: %s) last=%r (present: %s)",
        normalized, first, first_present, last, last_present,
    )
    return first_present and last_present


def dob_matches(profile: ClientProfile, pairs: Mapping[str, str]) -> bool:
    extracted = _lookup(pairs, FIELD_DATE_OF_BIRTH)
    if extracted is None:
        logger.warning("No date of birth found in extracted data for client %s", profile.client_id)
        return False

    parsed = parse_date(extracted.strip())
    if parsed is None:
        logger.warning("Failed to parse extracted date of birth %r for client %s", extracted, profile.client_id)
        return False

    match = parsed == profile.date_of_birth
    logger.debug(
        "DOB verification: extracted=%r parsed=%s profile=%s match=%s",
        extracted, parsed, profile.date_of_birth, match,
    )
    return match


def match_fields(profile: ClientProfile, extracted_data: ExtractedData) -> FieldMatch:
    """Run both field checks and return the per-field report."""
    pairs = extracted_data.key_value_pairs
    return FieldMatch(name_match=name_matches(profile, pairs), dob_match=dob_matches(profile, pairs))


def verify(profile: ClientProfile, extracted_data: ExtractedData) -> bool:
    """Return True when both the name and the date of birth match the profile."""
    return match_fields(profile, extracted_data).verified
