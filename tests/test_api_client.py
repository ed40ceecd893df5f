import pytest
from unittest.mock import MagicMock

from requests.exceptions import ConnectionError as RequestsConnectionError, HTTPError
from assembly_stock_calculator.api_client import ApiClient

MOCK_API_URL = "http://mock-inventory.local/"
MOCK_API_TOKEN = "mock_token_123"


def make_response(payload=None, status_code=200, json_error=False):
    """Builds a mocked requests.Response."""
    response = MagicMock(name=f"Response{status_code}")
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = HTTPError(f"{status_code} Error", response=response)
    return response


@pytest.fixture
def api_client():
    """Provides an ApiClient whose HTTP session is a MagicMock keyed by request path."""
    client = ApiClient(MOCK_API_URL, MOCK_API_TOKEN, timeout=3)
    routes = {}

    def fake_get(url, params=None, timeout=None):
        path = url[len(client.base_url):]
        if path not in routes:
            return make_response({"message": "Not found"}, status_code=404)
        route = routes[path]
        if isinstance(route, Exception):
            raise route
        return route

    client.session = MagicMock(name="Session")
    client.session.get.side_effect = fake_get
    yield client, routes


# --- Test Cases ---

def test_api_client_initialization():
    client = ApiClient(MOCK_API_URL, MOCK_API_TOKEN)
    assert client.base_url == "http://mock-inventory.local"
    assert client.timeout == 10.0
    assert client.session.headers["Authorization"] == f"Bearer {MOCK_API_TOKEN}"
    assert client.session.headers["Accept"] == "application/json"

def test_get_parts_unwraps_data_envelope(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response({"success": True, "data": [{"_id": "p1", "name": "Bracket"}]})

    parts, warnings = client.get_parts()

    assert parts == [{"_id": "p1", "name": "Bracket"}]
    assert warnings == []
    client.session.get.assert_called_once_with(
        "http://mock-inventory.local/api/parts", params={"limit": 1000}, timeout=3
    )

def test_get_parts_accepts_keyed_page_and_bare_list(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response({"parts": [{"_id": "p1"}], "total": 1})
    assert client.get_parts()[0] == [{"_id": "p1"}]

    routes["/api/parts"] = make_response([{"_id": "p2"}])
    assert client.get_parts()[0] == [{"_id": "p2"}]

def test_get_parts_unexpected_shape(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response({"count": 3})

    parts, warnings = client.get_parts()

    assert parts is None
    assert "Unexpected response shape for parts" in warnings[0]

def test_get_parts_http_error_uses_body_message(api_client, caplog):
    client, routes = api_client
    routes["/api/parts"] = make_response({"message": "Invalid token"}, status_code=401)

    parts, warnings = client.get_parts()

    assert parts is None
    assert "Status 401" in warnings[0]
    assert "Invalid token" in warnings[0]
    assert "API HTTPError fetching parts" in caplog.text

def test_get_parts_http_error_without_json_body(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response(status_code=500, json_error=True)

    parts, warnings = client.get_parts()

    assert parts is None
    assert "Status 500" in warnings[0]

def test_get_parts_invalid_json(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response(json_error=True)

    parts, warnings = client.get_parts()

    assert parts is None
    assert "invalid JSON" in warnings[0]

def test_get_parts_connection_error(api_client):
    client, routes = api_client
    routes["/api/parts"] = RequestsConnectionError("refused")

    parts, warnings = client.get_parts()

    assert parts is None
    assert "RequestException" in warnings[0]
    assert "refused" in warnings[0]

def test_get_assembly_details(api_client):
    client, routes = api_client
    routes["/api/assemblies/a1/details"] = make_response({"data": {"name": "Frame", "details": [{"part_id": "p1", "quantity_required": 2}]}})

    details, warnings = client.get_assembly_details("a1")

    assert details == [{"part_id": "p1", "quantity_required": 2}]
    assert warnings == []

def test_get_assembly_details_not_found(api_client, caplog):
    client, _ = api_client

    details, warnings = client.get_assembly_details("missing")

    assert details is None
    assert "not found" in warnings[0]
    assert "Status: 404" in caplog.text

def test_get_assemblies_attaches_bom(api_client):
    client, routes = api_client
    routes["/api/assemblies"] = make_response({"data": [
        {"_id": "a1", "name": "Frame"},
        {"_id": "a2", "name": "Lost BOM"},
        {"name": "No id"},
        {"_id": "a3", "name": "Inline", "bom_items": [{"part_id": "p1", "quantity_required": 1}]},
    ]})
    routes["/api/assemblies/a1/details"] = make_response({"data": {"details": [{"part_id": "p1", "quantity_required": 2}]}})

    assemblies, warnings = client.get_assemblies()

    assert [a["_id"] for a in assemblies] == ["a1", "a2", "a3"]
    assert assemblies[0]["bom_items"] == [{"part_id": "p1", "quantity_required": 2}]
    assert assemblies[1]["bom_items"] == []
    assert assemblies[2]["bom_items"] == [{"part_id": "p1", "quantity_required": 1}]
    assert any("without an id" in w for w in warnings)
    assert any("a2" in w for w in warnings)

def test_get_snapshot_success(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response({"data": [{"_id": "p1", "name": "Bracket", "quantity_in_stock": 10}]})
    routes["/api/assemblies"] = make_response({"data": [{"_id": "a1", "name": "Frame"}]})
    routes["/api/assemblies/a1/details"] = make_response({"data": {"details": [
        {"part_id": {"_id": "p1", "name": "Bracket"}, "quantity_required": 3},
    ]}})
    routes["/api/purchase-orders"] = make_response({"data": [{
        "_id": "po1", "supplier_name": "Acme", "order_number": "PO-0001",
        "items": [{"_id": "l1", "part_id": "p1", "quantity_ordered": 5}],
    }]})
    routes["/api/raw-items"] = make_response({"data": [{"_id": "ri1", "name": "Steel sheet", "quantity_in_stock": 4}]})
    routes["/api/raw-item-purchase-orders"] = make_response({"data": [{
        "_id": "po2", "supplier_name": "Steel Supply",
        "items": [{"_id": "l2", "raw_item_id": "ri1", "quantity_ordered": 8}],
    }]})

    snapshot, warnings = client.get_snapshot()

    assert warnings == []
    assert snapshot.parts["p1"].quantity_in_stock == 10
    assert snapshot.assemblies[0].bom_items[0].part_id == "p1"
    assert snapshot.purchase_orders[0].lines[0].quantity_ordered == 5
    assert snapshot.raw_items["ri1"].quantity_in_stock == 4
    assert snapshot.purchase_orders[1].lines[0].raw_item_id == "ri1"

def test_get_snapshot_without_parts_fails(api_client):
    client, _ = api_client

    snapshot, warnings = client.get_snapshot()

    assert snapshot is None
    assert warnings

def test_get_snapshot_tolerates_missing_orders(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response([{"_id": "p1", "name": "Bracket"}])
    routes["/api/assemblies"] = make_response([])

    snapshot, warnings = client.get_snapshot()

    assert snapshot is not None
    assert snapshot.purchase_orders == []
    assert any("purchase orders" in w for w in warnings)
    assert snapshot.raw_items == {}
    assert any("raw items" in w for w in warnings)

def test_get_snapshot_invalid_records(api_client):
    client, routes = api_client
    routes["/api/parts"] = make_response([{"name": "No id"}])
    routes["/api/assemblies"] = make_response([])
    routes["/api/purchase-orders"] = make_response([])

    snapshot, warnings = client.get_snapshot()

    assert snapshot is None
    assert "could not be converted" in warnings[-1]

def test_get_raw_items(api_client):
    client, routes = api_client
    routes["/api/raw-items"] = make_response({"raw_items": [{"_id": "ri1", "name": "Steel sheet"}], "total": 1})

    raw_items, warnings = client.get_raw_items()

    assert raw_items == [{"_id": "ri1", "name": "Steel sheet"}]
    assert warnings == []
    client.session.get.assert_called_once_with(
        "http://mock-inventory.local/api/raw-items", params={"limit": 1000}, timeout=3
    )

def test_get_raw_item_purchase_orders_not_found(api_client):
    client, _ = api_client

    orders, warnings = client.get_raw_item_purchase_orders()

    assert orders is None
    assert "raw item purchase orders not found" in warnings[0]
