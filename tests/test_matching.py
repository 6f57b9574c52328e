import datetime
import uuid

import pytest

from client_verification.matching import match_fields, name_matches, normalize_name, verify
from client_verification.models import ClientProfile, ExtractedData


def make_profile(**overrides):
    data = {
        "client_id": uuid.uuid4(),
        "first_name": "John",
        "last_name": "Doe",
        "date_of_birth": datetime.date(1990, 1, 15),
    }
    data.update(overrides)
    return ClientProfile(**data)


def extracted(**pairs):
    return ExtractedData(keyValuePairs=pairs)


def test_normalize_name_trims_uppercases_and_collapses():
    assert normalize_name("  john   DOE ") == "JOHN DOE"
    assert normalize_name("mary\tann\nsmith") == "MARY ANN SMITH"


def test_verify_with_messy_name_and_text_month():
    data = ExtractedData(keyValuePairs={"Name": "  john   DOE ", "Date of Birth": "15 Jan 1990"})
    assert verify(make_profile(), data) is True


@pytest.mark.parametrize("name", ["DOE JOHN", "JOHN MICHAEL DOE", "Mr. John Doe"])
def test_name_match_is_substring_in_any_order(name):
    assert name_matches(make_profile(), {"Name": name}) is True


def test_name_mismatch_when_last_name_missing():
    assert name_matches(make_profile(), {"Name": "JOHN SMITH"}) is False


def test_unsupported_date_layout_fails_dob_match():
    result = match_fields(make_profile(), ExtractedData(keyValuePairs={"Name": "John Doe", "Date of Birth": "1990.01.15"}))
    assert result.name_match is True
    assert result.dob_match is False
    assert result.verified is False


def test_different_date_fails():
    data = ExtractedData(keyValuePairs={"Name": "John Doe", "Date of Birth": "16/01/1990"})
    assert verify(make_profile(), data) is False


def test_missing_fields_fail():
    result = match_fields(make_profile(), extracted())
    assert result.name_match is False
    assert result.dob_match is False


def test_blank_fields_are_treated_as_missing():
    data = ExtractedData(keyValuePairs={"Name": "   ", "Date of Birth": ""})
    result = match_fields(make_profile(), data)
    assert result == type(result)(name_match=False, dob_match=False)


def test_profile_without_date_of_birth_never_matches():
    data = ExtractedData(keyValuePairs={"Name": "John Doe", "Date of Birth": "15 Jan 1990"})
    assert verify(make_profile(date_of_birth=None), data) is False
