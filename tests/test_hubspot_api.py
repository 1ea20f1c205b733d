from .utils import headers_for


def test_objects_use_stored_token_when_body_has_none(api_client):
    headers = headers_for(api_client, "crm@example.com")
    assert api_client.post("/hubspot/objects", json={}, headers=headers).status_code == 400

    api_client.post("/user/profile", json={"token": "pat-1"}, headers=headers)
    r = api_client.post("/api/hubspot/objects", json={}, headers=headers)
    assert r.status_code == 200, r.text
    assert [o["id"] for o in r.json()] == ["contacts", "deals"]


def test_revoked_token_is_reported(api_client):
    headers = headers_for(api_client, "revoked@example.com")
    r = api_client.post("/hubspot/objects", json={"token": "bad"}, headers=headers)
    assert r.status_code == 401
    assert "rejected" in r.json()["detail"]


def test_properties_by_type(api_client):
    headers = headers_for(api_client, "props@example.com")
    r = api_client.post("/hubspot/properties", json={"token": "pat-1", "objectTypes": ["deals"]}, headers=headers)
    assert r.status_code == 200, r.text
    deals = r.json()["deals"]
    assert [p["name"] for p in deals["properties"]] == ["amount", "dealstage", "closedate"]
    assert deals["groups"][0]["name"] == "dealinformation"

    state = api_client.get("/user/state", headers=headers).json()["state"]
    assert [p["name"] for p in state["availableProperties"]["deals"]] == ["amount", "dealstage", "closedate"]

    r = api_client.post("/hubspot/properties", json={"token": "pat-1", "objectTypes": []}, headers=headers)
    assert r.status_code == 400
