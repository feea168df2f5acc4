from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import AUNDH, DADAR, KOTHRUD, PUNE, make_report, store_report, weekly_reports
from kendra_reports.periods import week_start
from kendra_reports.server import create_app

ADMIN_HEADERS = {"X-User-Id": "u-admin"}
KOTHRUD_HEADERS = {"X-User-Id": "u-kothrud"}
DADAR_HEADERS = {"X-User-Id": "u-dadar"}


@pytest.fixture
async def api_gateway(seeded_gateway):
    for report in weekly_reports(3, KOTHRUD) + weekly_reports(2, AUNDH) + weekly_reports(2, DADAR):
        await store_report(seeded_gateway, report)
    await store_report(seeded_gateway, make_report("r-dadar-note", DADAR, date(2025, 3, 3), description="Bhajan"))
    return seeded_gateway


@pytest.fixture
def client(api_gateway):
    with TestClient(create_app(gateway=api_gateway)) as test_client:
        yield test_client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_need_a_known_user(client):
    response = client.get("/reports")
    assert response.status_code == 401
    assert response.json()["detail"]["kind"] == "not_authenticated"
    assert client.get("/reports", headers={"X-User-Id": "u-ghost"}).status_code == 401


def test_member_listing_is_scoped(client):
    response = client.get("/reports", params={"kendra_id": DADAR.id}, headers=KOTHRUD_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["hasMore"] is False
    assert {row["kendra_id"] for row in body["data"]} == {KOTHRUD.id}
    assert body["data"][0]["kendra"]["city"]["city_name"] == "Pune"


def test_admin_listing_filters_and_pages(client):
    yuvti = client.get("/reports", params={"type": "Yuvti"}, headers=ADMIN_HEADERS).json()
    assert {row["kendra_id"] for row in yuvti["data"]} == {AUNDH.id}

    pune = client.get("/reports", params={"city_id": PUNE.id, "limit": 2}, headers=ADMIN_HEADERS).json()
    assert len(pune["data"]) == 2
    assert pune["hasMore"] is True

    found = client.get("/reports", params={"search": "bhajan"}, headers=ADMIN_HEADERS).json()
    assert [row["id"] for row in found["data"]] == ["r-dadar-note"]


def test_invalid_kendra_type_is_rejected(client):
    assert client.get("/reports", params={"type": "Seniors"}, headers=ADMIN_HEADERS).status_code == 422


def test_member_cannot_read_other_kendra_report(client):
    assert client.get("/reports/r-dadar-note", headers=KOTHRUD_HEADERS).status_code == 404
    assert client.get("/reports/r-dadar-note", headers=DADAR_HEADERS).status_code == 200
    assert client.get("/reports/missing", headers=ADMIN_HEADERS).status_code == 404


def test_report_lifecycle(client):
    monday = week_start(date.today())
    payload = {
        "kendra_id": KOTHRUD.id,
        "week_start_date": monday.isoformat(),
        "yuva_kendra_attendance": 10,
        "bhavferni_attendance": 3,
        "pravachan_attendance": 7,
    }
    created = client.post("/reports", json=payload, headers=KOTHRUD_HEADERS)
    assert created.status_code == 201
    report = created.json()
    assert report["week_end_date"] == (monday + timedelta(days=6)).isoformat()
    assert report["created_by"] == "u-kothrud"

    denied = client.patch(f"/reports/{report['id']}", json={"description": "x"}, headers=DADAR_HEADERS)
    assert denied.status_code == 403
    assert denied.json()["detail"]["kind"] == "permission_denied"

    edited = client.patch(
        f"/reports/{report['id']}", json={"description": "Guest talk"}, headers=KOTHRUD_HEADERS
    )
    assert edited.json()["description"] == "Guest talk"

    assert client.delete(f"/reports/{report['id']}", headers=KOTHRUD_HEADERS).status_code == 204
    assert client.get(f"/reports/{report['id']}", headers=ADMIN_HEADERS).status_code == 404


def test_create_report_validation_errors(client):
    tuesday = week_start(date.today()) + timedelta(days=1)
    response = client.post(
        "/reports",
        json={
            "kendra_id": KOTHRUD.id,
            "week_start_date": tuesday.isoformat(),
            "yuva_kendra_attendance": 1,
            "bhavferni_attendance": 1,
            "pravachan_attendance": 1,
        },
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "not_week_start"

    unknown = client.post("/reports", json={"kendra_id": KOTHRUD.id, "bogus": 1}, headers=ADMIN_HEADERS)
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["kind"] == "invalid_payload"


def test_dashboard_endpoints(client):
    stats = client.get("/dashboard/stats", headers=ADMIN_HEADERS).json()["data"]
    assert stats["totalReports"] == 8
    assert stats["activeKendras"] == 3
    assert "lastWeekTotal" not in stats

    member_stats = client.get("/dashboard/stats", headers=KOTHRUD_HEADERS).json()["data"]
    assert member_stats["totalReports"] == 3
    assert "activeKendras" not in member_stats
    assert member_stats["lastWeekTotal"] == 0

    trends = client.get("/dashboard/trends", params={"weeks": 2}, headers=DADAR_HEADERS).json()["data"]
    assert [point["week"] for point in trends] == ["2025-01-13", "2025-03-03"]


def test_reference_data_endpoints(client):
    cities = client.get("/cities", headers=KOTHRUD_HEADERS).json()["data"]
    assert [city["city_name"] for city in cities] == ["Mumbai", "Pune"]

    kendras = client.get("/kendras", params={"city_id": PUNE.id}, headers=KOTHRUD_HEADERS).json()["data"]
    assert [kendra["kendra_name"] for kendra in kendras] == ["Aundh", "Kothrud"]

    assert client.get("/users", headers=KOTHRUD_HEADERS).status_code == 403
    users = client.get("/users", params={"kendra_id": DADAR.id}, headers=ADMIN_HEADERS).json()["data"]
    assert [user["id"] for user in users] == ["u-dadar"]
