import uuid

import pytest

from conftest import API


@pytest.fixture
def linked(reviewer_client, software_payload, requester_payload):
    """Existing software and requester records to build requests from."""
    software = reviewer_client.post(f"{API}/software", json=software_payload()).json()["software"]
    requester = reviewer_client.post(f"{API}/requesters", json=requester_payload()).json()["requester"]
    return software, requester


def test_create_request_returns_nested_records(reviewer_client, linked, td_request_id):
    software, requester = linked
    r = reviewer_client.post(
        f"{API}/requests",
        json={"td_request_id": td_request_id, "software_id": software["id"], "requester_id": requester["id"]},
    )
    assert r.status_code == 201
    created = r.json()["software_request"]
    assert created["td_request_id"] == td_request_id
    assert created["software"] == software
    assert created["requester"] == requester


def test_create_request_conflicts_and_validation(reviewer_client, linked, td_request_id):
    software, requester = linked
    body = {"td_request_id": td_request_id, "software_id": software["id"], "requester_id": requester["id"]}
    assert reviewer_client.post(f"{API}/requests", json=body).status_code == 201
    assert reviewer_client.post(f"{API}/requests", json=body).status_code == 409

    unknown = {**body, "td_request_id": "99999999", "software_id": str(uuid.uuid4())}
    assert reviewer_client.post(f"{API}/requests", json=unknown).status_code == 409

    for td in ("1234", "123456789", "1234567a"):
        r = reviewer_client.post(f"{API}/requests", json={**body, "td_request_id": td})
        assert r.status_code == 400, td

    assert reviewer_client.post(f"{API}/requests", json={**body, "software_id": "abc"}).status_code == 400


def test_update_and_delete_request(reviewer_client, linked, td_request_id):
    software, requester = linked
    body = {"td_request_id": td_request_id, "software_id": software["id"], "requester_id": requester["id"]}
    request_id = reviewer_client.post(f"{API}/requests", json=body).json()["software_request"]["id"]
    url = f"{API}/requests/{request_id}"

    new_td = str(int(td_request_id) + 50000000)
    assert reviewer_client.patch(url, json={"td_request_id": new_td}).status_code == 204
    found = reviewer_client.get(f"{API}/requests", params={"filter": f"td_request_id:{new_td}"}).json()
    assert [item["software_request"]["id"] for item in found["software_requests"]] == [request_id]

    assert reviewer_client.patch(url, json={"td_request_id": "12"}).status_code == 400
    assert reviewer_client.patch(url, json={}).status_code == 400

    assert reviewer_client.delete(url).status_code == 204
    assert reviewer_client.delete(url).status_code == 404
    # the linked records are left in place
    assert reviewer_client.delete(f"{API}/software/{software['id']}").status_code == 204


def test_requests_filter_by_related_fields(reviewer_client, linked, td_request_id):
    software, requester = linked
    body = {"td_request_id": td_request_id, "software_id": software["id"], "requester_id": requester["id"]}
    request_id = reviewer_client.post(f"{API}/requests", json=body).json()["software_request"]["id"]

    by_software = reviewer_client.get(
        f"{API}/requests", params={"filter": f"software_name:{software['software_name']}"}
    ).json()
    assert [i["software_request"]["id"] for i in by_software["software_requests"]] == [request_id]
    assert by_software["metadata"]["total_records"] == 1

    by_requester = reviewer_client.get(
        f"{API}/requests", params={"filter": f"requester_email:{requester['email'].upper()}"}
    ).json()
    assert [i["software_request"]["id"] for i in by_requester["software_requests"]] == [request_id]


def test_requests_have_no_sort_fields(reviewer_client):
    r = reviewer_client.get(f"{API}/requests", params={"sort": "td_request_id"})
    assert r.status_code == 400
