import json
from pathlib import Path

from smb_erp.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_order_routes_document_conflict_responses():
    schema = app.openapi()
    for prefix in ("/purchases", "/sales"):
        responses = schema["paths"][f"{prefix}/{{order_id}}/status"]["patch"]["responses"]
        assert "409" in responses
        assert "422" in responses


def test_conflict_responses_list_each_domain_code():
    schema = app.openapi()
    conflict = schema["paths"]["/sales"]["post"]["responses"]["409"]
    examples = conflict["content"]["application/json"]["examples"]
    assert {"insufficient_stock", "invalid_transition", "conflict"} <= set(examples)
    assert examples["insufficient_stock"]["value"]["error"]["code"] == "insufficient_stock"
