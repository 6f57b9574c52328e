import json
import uuid

import pytest

from client_verification.exceptions import DecodeError
from client_verification.validation import decode_verification_result, export_result_json_schema, now_iso

CLIENT_ID = "6f1c9c1e-6d52-4c36-9a43-1c1f9b0e6c0a"


def payload(**overrides):
    body = {
        "clientId": CLIENT_ID,
        "extractedData": {
            "text": ["REPUBLIC OF EXAMPLE"],
            "keyValuePairs": {"Name": "JOHN DOE", "Date of Birth": "15 Jan 1990"},
            "tables": [],
        },
        "timestamp": "2024-05-01T10:00:00Z",
    }
    body.update(overrides)
    return json.dumps(body).encode("utf-8")


def test_decode_ok():
    result = decode_verification_result(payload())
    assert result.client_id == uuid.UUID(CLIENT_ID)
    assert result.extracted_data.key_value_pairs["Date of Birth"] == "15 Jan 1990"
    assert result.extracted_data.text == ["REPUBLIC OF EXAMPLE"]
    assert result.timestamp is not None


def test_decode_without_optional_fields():
    raw = json.dumps({"clientId": CLIENT_ID, "extractedData": {"keyValuePairs": {}}})
    result = decode_verification_result(raw)
    assert result.extracted_data.tables == []
    assert result.timestamp is None


def test_decode_malformed_json():
    with pytest.raises(DecodeError):
        decode_verification_result(b"{not json")


@pytest.mark.parametrize("missing", ["clientId", "extractedData"])
def test_decode_missing_required_key(missing):
    body = json.loads(payload())
    del body[missing]
    with pytest.raises(DecodeError) as exc_info:
        decode_verification_result(json.dumps(body))
    assert exc_info.value.reason


def test_decode_missing_key_value_pairs():
    with pytest.raises(DecodeError):
        decode_verification_result(payload(extractedData={"text": []}))


def test_decode_non_string_pair_value():
    with pytest.raises(DecodeError):
        decode_verification_result(payload(extractedData={"keyValuePairs": {"Name": ["JOHN", "DOE"]}}))


def test_decode_bad_uuid():
    with pytest.raises(DecodeError) as exc_info:
        decode_verification_result(payload(clientId="client-42"))
    assert "clientId" in exc_info.value.reason
    assert isinstance(exc_info.value, ValueError)


def test_schema_uses_wire_names():
    schema = export_result_json_schema()
    assert "clientId" in schema["properties"]
    assert "extractedData" in schema["properties"]


def test_now_iso_is_utc_with_z_suffix():
    value = now_iso()
    assert value.endswith("Z")
    assert "." not in value
