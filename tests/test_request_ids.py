from smb_erp.core.id_utils import REQUEST_ID_MAX_LENGTH, new_request_id


def test_request_id_is_echoed_in_header_and_error_envelope(test_context):
    client, _ = test_context

    res = client.get("/auth/me", headers={"X-Request-ID": "trace-42"})

    assert res.status_code == 401
    assert res.headers["x-request-id"] == "trace-42"
    assert res.json()["error"]["request_id"] == "trace-42"


def test_request_id_generated_when_missing_or_unusable(test_context):
    client, _ = test_context

    res = client.get("/health")

    assert res.status_code == 200
    assert res.headers["x-request-id"]
    assert new_request_id("x" * (REQUEST_ID_MAX_LENGTH + 1)) != "x" * (REQUEST_ID_MAX_LENGTH + 1)
    assert new_request_id("   ") != ""
