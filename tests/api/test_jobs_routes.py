"""
Route tests for /jobs.
"""
from unittest.mock import AsyncMock

from contentops.services.claim_scheduler import claim_batch

HEADERS = {"X-Tenant-ID": "tenant-a"}


def test_tenant_header_required(client):
    response = client.get("/jobs")

    assert response.status_code == 400
    assert "X-Tenant-ID" in response.json()["detail"]


def test_create_text_job_for_products(client, tenant):
    response = client.post(
        "/jobs/text",
        headers=HEADERS,
        json={
            "source_scope": "products",
            "source_ids": ["p1", "p2", "p1"],
            "attributes": ["name", "seoTitle"],
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["kind"] == "text_optimization"
    assert body["status"] == "PENDING"
    assert body["total_items"] == 4
    assert body["credits_reserved"] == 4

    credits = client.get("/credits", headers=HEADERS).json()
    assert credits["credits_used"] == 4


def test_create_text_job_expands_collections(client, tenant, fake_catalog):
    fake_catalog.list_collection_products = AsyncMock(return_value=["p1", "p2", "p3"])

    response = client.post(
        "/jobs/text",
        headers=HEADERS,
        json={"source_scope": "collections", "source_ids": ["summer"], "attributes": ["description"]},
    )

    assert response.status_code == 201
    assert response.json()["total_items"] == 3
    fake_catalog.list_collection_products.assert_awaited_once_with("summer", "tenant-a")


def test_create_text_job_rejects_unknown_attribute(client, tenant):
    response = client.post(
        "/jobs/text",
        headers=HEADERS,
        json={"source_ids": ["p1"], "attributes": ["price"]},
    )

    assert response.status_code == 400


def test_insufficient_credits_is_402_with_amounts(client, make_tenant):
    make_tenant("tenant-a", credits_total=20, credits_used=0)

    response = client.post(
        "/jobs/images",
        headers=HEADERS,
        json={
            "images": [
                {"product_id": "p1", "image_url": "https://img/1.jpg"},
                {"product_id": "p2", "image_url": "https://img/2.jpg"},
            ]
        },
    )

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["required"] == 30
    assert detail["available"] == 20
    assert client.get("/jobs", headers=HEADERS).json() == []


def test_create_blog_job_one_item_per_post(client, tenant):
    response = client.post(
        "/jobs/blogs",
        headers=HEADERS,
        json={"posts": [{"idea": "Linen care"}, {"title": "Summer picks"}], "target_lang": "de"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["total_items"] == 2
    assert body["credits_reserved"] == 50


def test_get_and_list_jobs(client, tenant):
    created = client.post(
        "/jobs/blogs", headers=HEADERS, json={"posts": [{"idea": "Linen care"}]}
    ).json()

    fetched = client.get(f"/jobs/{created['id']}", headers=HEADERS)
    items = client.get(f"/jobs/{created['id']}/items", headers=HEADERS)

    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]
    assert items.json()[0]["payload"]["idea"] == "Linen care"
    assert items.json()[0]["status"] == "PENDING"
    assert [j["id"] for j in client.get("/jobs?status=PENDING", headers=HEADERS).json()] == [created["id"]]
    assert client.get("/jobs?status=DONE", headers=HEADERS).json() == []


def test_jobs_are_tenant_scoped(client, make_tenant):
    make_tenant("tenant-a")
    make_tenant("tenant-b")
    created = client.post(
        "/jobs/blogs", headers=HEADERS, json={"posts": [{"idea": "Linen care"}]}
    ).json()

    other = {"X-Tenant-ID": "tenant-b"}
    assert client.get(f"/jobs/{created['id']}", headers=other).status_code == 404
    assert client.get(f"/jobs/{created['id']}/items", headers=other).status_code == 404
    assert client.post(f"/jobs/{created['id']}/cancel", headers=other).status_code == 404


def test_cancel_job_refunds_unclaimed_items(client, db, tenant):
    created = client.post(
        "/jobs/images",
        headers=HEADERS,
        json={"images": [{"product_id": f"p{i}", "image_url": f"https://img/{i}.jpg"} for i in range(3)]},
    ).json()
    claim_batch(db, 1)

    response = client.post(f"/jobs/{created['id']}/cancel", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["job"]["status"] == "CANCELED"
    assert body["refunded_items"] == 2
    assert body["refunded_credits"] == 30
    assert client.get("/credits", headers=HEADERS).json()["credits_used"] == 15

    again = client.post(f"/jobs/{created['id']}/cancel", headers=HEADERS)
    assert again.status_code == 409
