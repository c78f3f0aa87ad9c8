import uuid

from konsider.models import REVIEW_OPTION_FIELDS

from conftest import API, REVIEWER, unique_word


def _create(client, payload):
    r = client.post(f"{API}/reviews", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["software_review"]


def test_create_review_builds_every_record(reviewer_client, reviewer_id, review_payload):
    payload = review_payload()
    review = _create(reviewer_client, payload)

    assert review["reviewer"]["id"] == str(reviewer_id)
    assert review["reviewer"]["email"] == REVIEWER["email"]
    assert review["exported"] is False
    assert review["review_notes"] == payload["review_notes"]
    for field in REVIEW_OPTION_FIELDS:
        assert review[field] == payload[field]

    request = review["software_request"]
    assert request["td_request_id"] == payload["software_request"]["td_request_id"]
    assert request["software"]["software_name"] == payload["software_request"]["software"]["software_name"]
    assert request["requester"]["email"] == payload["software_request"]["requester"]["email"]

    listed = reviewer_client.get(
        f"{API}/requests", params={"filter": f"td_request_id:{request['td_request_id']}"}
    ).json()
    assert listed["metadata"]["total_records"] == 1


def test_invalid_review_persists_nothing(reviewer_client, review_payload, software_payload):
    software = software_payload(software_version="1.0")
    r = reviewer_client.post(f"{API}/reviews", json=review_payload(software=software))
    assert r.status_code == 400

    found = reviewer_client.get(f"{API}/software", params={"filter": f"software_name:{software['software_name']}"})
    assert found.json() == {"metadata": {}, "software": []}

    for overrides in ({"review_notes": "<b>bold</b>"}, {"is_supported": "MAYBE"}, {"review_notes": " "}):
        assert reviewer_client.post(f"{API}/reviews", json=review_payload(**overrides)).status_code == 400


def test_duplicate_review_rolls_back_all_inserts(reviewer_client, review_payload, software_payload, td_request_id):
    _create(reviewer_client, review_payload(td_request_id=td_request_id))

    fresh_software = software_payload()
    r = reviewer_client.post(
        f"{API}/reviews", json=review_payload(software=fresh_software, td_request_id=td_request_id)
    )
    assert r.status_code == 409
    assert r.json() == {"error": "CONFLICT"}

    found = reviewer_client.get(
        f"{API}/software", params={"filter": f"software_name:{fresh_software['software_name']}"}
    )
    assert found.json()["software"] == []


def test_review_reusing_existing_software_conflicts(reviewer_client, review_payload, software_payload):
    software = software_payload()
    assert reviewer_client.post(f"{API}/software", json=software).status_code == 201
    r = reviewer_client.post(f"{API}/reviews", json=review_payload(software=software))
    assert r.status_code == 409


def test_update_review(reviewer_client, review_payload):
    review = _create(reviewer_client, review_payload())
    url = f"{API}/reviews/{review['id']}"

    r = reviewer_client.patch(url, json={"is_supported": "FALSE", "review_notes": "Vendor dropped support"})
    assert r.status_code == 204
    found = reviewer_client.get(
        f"{API}/reviews",
        params={"filter": f"td_request_id:{review['software_request']['td_request_id']}"},
    ).json()["software_reviews"][0]["software_review"]
    assert found["is_supported"] == "FALSE"
    assert found["review_notes"] == "Vendor dropped support"
    assert found["is_current_version"] == review["is_current_version"]

    assert reviewer_client.patch(url, json={}).status_code == 400
    assert reviewer_client.patch(url, json={"is_supported": "MAYBE"}).status_code == 400
    assert reviewer_client.patch(url, json={"review_notes": "a{b}"}).status_code == 400
    assert reviewer_client.patch(f"{API}/reviews/{uuid.uuid4()}", json={"is_supported": "TRUE"}).status_code == 404


def test_export_review_as_pdf(reviewer_client, review_payload):
    review = _create(reviewer_client, review_payload())
    name = review["software_request"]["software"]["software_name"]

    r = reviewer_client.get(f"{API}/reviews/{review['id']}")
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["content-disposition"] == f'attachment; filename="{name}.pdf"'
    assert r.content.startswith(b"%PDF")

    exported = reviewer_client.get(
        f"{API}/reviews", params={"filter": f"software_name:{name}"}
    ).json()["software_reviews"][0]["software_review"]
    assert exported["exported"] is True

    # a second download is still allowed
    assert reviewer_client.get(f"{API}/reviews/{review['id']}").status_code == 200
    assert reviewer_client.get(f"{API}/reviews/{uuid.uuid4()}").status_code == 404


def test_reviews_filter(reviewer_client, review_payload, requester_payload):
    requester = requester_payload()
    first = _create(reviewer_client, review_payload(requester=requester))

    by_requester = reviewer_client.get(
        f"{API}/reviews", params={"filter": f"requester_email:{requester['email']}"}
    ).json()
    assert [i["software_review"]["id"] for i in by_requester["software_reviews"]] == [first["id"]]

    by_reviewer = reviewer_client.get(
        f"{API}/reviews", params={"filter": f"reviewer_email:{REVIEWER['email']}", "per_page": 100}
    ).json()
    assert first["id"] in [i["software_review"]["id"] for i in by_reviewer["software_reviews"]]

    not_exported = reviewer_client.get(
        f"{API}/reviews", params={"filter": "exported:false", "per_page": 100}
    ).json()
    assert all(i["software_review"]["exported"] is False for i in not_exported["software_reviews"])

    nonsense = reviewer_client.get(f"{API}/reviews", params={"filter": "exported:maybe"}).json()
    assert nonsense == {"metadata": {}, "software_reviews": []}

    assert reviewer_client.get(f"{API}/reviews", params={"filter": "review_notes:fine"}).status_code == 400


def test_delete_review_keeps_request(reviewer_client, review_payload):
    review = _create(reviewer_client, review_payload())
    assert reviewer_client.delete(f"{API}/reviews/{review['id']}").status_code == 204
    assert reviewer_client.delete(f"{API}/reviews/{review['id']}").status_code == 404

    td = review["software_request"]["td_request_id"]
    remaining = reviewer_client.get(f"{API}/requests", params={"filter": f"td_request_id:{td}"}).json()
    assert remaining["metadata"]["total_records"] == 1


def test_reviews_require_auth(anon_client, review_payload):
    assert anon_client.get(f"{API}/reviews").status_code == 401
    assert anon_client.post(f"{API}/reviews", json=review_payload()).status_code == 401
    assert anon_client.get(f"{API}/reviews/{uuid.uuid4()}").status_code == 401


def test_review_with_unicode_software_name_downloads(reviewer_client, review_payload, software_payload):
    name = f"Café{unique_word('x')}"
    review = _create(reviewer_client, review_payload(software=software_payload(software_name=name)))
    r = reviewer_client.get(f"{API}/reviews/{review['id']}")
    assert r.status_code == 200
    assert r.content.startswith(b"%PDF")
