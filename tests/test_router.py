import pytest
from gasguard.router import route_request

@pytest.mark.asyncio
async def test_route_analyze_action(bad_contract):
    request = {
        "request_id": "test-1",
        "action": "analyze",
        "payload": {"code": bad_contract, "source": "bad.rs"}
    }
    response = await route_request(request)

    assert response["request_id"] == "test-1"
    assert response["type"] == "success"
    assert response["data"]["source"] == "bad.rs"
    assert len(response["data"]["violations"]) == 5
    assert response["data"]["summary"].startswith("Scan Summary: 5 total violations")

@pytest.mark.asyncio
async def test_route_analyze_parse_error():
    request = {
        "request_id": "test-2",
        "action": "analyze",
        "payload": {"code": "struct Test { field: u64 }", "language": "soroban"}
    }
    response = await route_request(request)

    assert response["type"] == "error"
    assert response["data"] is None
    assert response["error"]["code"] == "PARSE_ERROR"
    assert "Missing required Soroban macro" in response["error"]["message"]

@pytest.mark.asyncio
async def test_route_analyze_missing_code():
    request = {
        "request_id": "test-3",
        "action": "analyze",
        "payload": {"code": "   "}
    }
    response = await route_request(request)

    assert response["error"]["code"] == "MISSING_CODE"

@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"code": "fn main() {}"},
    {"code": "#[contracttype]\npub struct A { pub x: u64 }", "language": "cobol"},
])
async def test_route_analyze_unsupported_language(payload):
    request = {"request_id": "test-4", "action": "analyze", "payload": payload}
    response = await route_request(request)

    assert response["type"] == "error"
    assert response["error"]["code"] == "UNSUPPORTED_LANGUAGE"

@pytest.mark.asyncio
async def test_route_detect_language(bad_contract):
    request = {
        "request_id": "test-5",
        "action": "detect_language",
        "payload": {"code": bad_contract}
    }
    response = await route_request(request)

    assert response["type"] == "success"
    assert response["data"]["language"] == "soroban"

@pytest.mark.asyncio
async def test_route_list_rules():
    request = {"request_id": "test-6", "action": "list_rules", "payload": {}}
    response = await route_request(request)

    rules = response["data"]["rules"]
    assert len(rules) == 7
    assert rules[0]["id"] == "soroban-unused-state-variables"
    assert rules[0]["severity"] == "warning"

@pytest.mark.asyncio
async def test_route_unknown_action():
    request = {
        "request_id": "test-7",
        "action": "unknown_action",
        "payload": {}
    }
    response = await route_request(request)

    assert response["request_id"] == "test-7"
    assert response["type"] == "error"
    assert response["error"]["code"] == "UNKNOWN_ACTION"

@pytest.mark.asyncio
async def test_route_invalid_payload():
    # Missing 'action' field or other validation errors
    request = {
        "request_id": "test-8",
        # action missing
        "payload": {}
    }
    response = await route_request(request)

    assert response["type"] == "error"
    assert response["error"]["code"] == "INTERNAL_ERROR"
    assert response["request_id"] == "test-8"
