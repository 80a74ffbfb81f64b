"""Summary: HTTP tests for the Mailcast service.

Importance: Drives FastAPI endpoints through the publish, send, retry, and unsubscribe flows.
Alternatives: Exercise the services without HTTP.
"""

from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from mailcast.api import create_app
from mailcast.config import AppConfig
from mailcast.delivery import MockDeliveryChannel
from mailcast.jobs import InlineJobRunner
from mailcast.models import ContentItem, Recipient


class ClosingJobRunner(InlineJobRunner):
    def __init__(self) -> None:
        self.closed = False

    def shutdown(self, wait: bool = True) -> None:
        self.closed = True


def _build_config(db_path: str, api_key: str = "") -> AppConfig:
    return AppConfig(
        db_path=db_path,
        api_host="127.0.0.1",
        api_port=8000,
        api_key=api_key,
        site_url="http://testserver",
        from_address="newsletter@example.com",
        support_address="support@example.com",
        chunk_size=2,
        error_max_length=2000,
        recipient_limit=0,
        job_workers=1,
        delivery_provider="mock",
        delivery_batch_size=1000,
        smtp_host="localhost",
        smtp_port=25,
        smtp_user=None,
        smtp_password=None,
        smtp_use_tls=False,
        smtp_timeout=5.0,
        mailgun_domain="",
        mailgun_api_key="",
        mailgun_base_url="https://api.mailgun.net/v3",
        http_timeout=5.0,
    )


def _client(tmp_path: Path, channel: MockDeliveryChannel, api_key: str = "") -> TestClient:
    config = _build_config(str(tmp_path / "test.db"), api_key=api_key)
    return TestClient(create_app(config, jobs=InlineJobRunner(), channel=channel))


def test_api_publish_sends_and_reports_batches(tmp_path: Path) -> None:
    """Summary: Verify publishing content sends it and exposes the dispatch.

    Importance: Confirms the HTTP layer wires into record creation and the dispatcher.
    Alternatives: Validate only the service layer.
    """

    channel = MockDeliveryChannel()
    client = _client(tmp_path, channel)
    assert client.get("/health").json() == {"status": "ok"}
    for email in ("a@example.com", "b@example.com", "c@example.com"):
        assert client.post("/recipients", json={"email": email}).status_code == 200
    content = client.post("/content", json={"title": "Launch", "html": "<p>We shipped</p>"}).json()
    assert content["status"] == "draft"

    published = client.post(f"/content/{content['id']}/publish")
    assert published.status_code == 200
    dispatch = published.json()["dispatch"]
    assert dispatch["recipient_count"] == 3

    detail = client.get(f"/dispatches/{dispatch['id']}").json()
    assert detail["status"] == "submitted"
    assert len(detail["meta"]) == 1
    batches = client.get(f"/dispatches/{dispatch['id']}/batches").json()
    assert [batch["recipient_count"] for batch in batches] == [2, 1]
    assert channel.sent[0]["subject"] == "Launch"

    again = client.post(f"/content/{content['id']}/publish").json()
    assert again["dispatch"]["id"] == dispatch["id"]
    assert len(channel.sent) == 1


def test_api_publish_without_audience_or_while_importing(tmp_path: Path) -> None:
    channel = MockDeliveryChannel()
    client = _client(tmp_path, channel)
    empty = client.post("/content", json={"title": "Nobody", "html": "<p>...</p>"}).json()
    assert client.post(f"/content/{empty['id']}/publish").json() == {"dispatch": None}

    client.post("/recipients", json={"email": "a@example.com"})
    archived = client.post("/content", json={"title": "Archive", "html": "<p>Old</p>"}).json()
    response = client.post(f"/content/{archived['id']}/publish", json={"importing": True})
    dispatch = response.json()["dispatch"]
    assert client.get(f"/dispatches/{dispatch['id']}").json()["status"] == "pending"
    assert channel.sent == []


def test_api_retry_failed_dispatch(tmp_path: Path) -> None:
    """Summary: Verify a failed dispatch can be retried over HTTP.

    Importance: Operators recover from provider outages without touching the database.
    Alternatives: Re-publish the content under a new id.
    """

    channel = MockDeliveryChannel(error=RuntimeError("provider outage"))
    client = _client(tmp_path, channel)
    client.post("/recipients", json={"email": "a@example.com"})
    content = client.post("/content", json={"title": "Retry", "html": "<p>Again</p>"}).json()
    dispatch = client.post(f"/content/{content['id']}/publish").json()["dispatch"]
    failed = client.get(f"/dispatches/{dispatch['id']}").json()
    assert failed["status"] == "failed"
    assert failed["error"] == "provider outage"

    channel.error = None
    assert client.post(f"/dispatches/{dispatch['id']}/retry").status_code == 200
    assert client.get(f"/dispatches/{dispatch['id']}").json()["status"] == "submitted"

    refused = client.post(f"/dispatches/{dispatch['id']}/retry")
    assert refused.status_code == 400
    assert refused.json()["detail"] == "Only failed dispatches can be retried"
    assert client.post("/dispatches/999/retry").status_code == 404


def test_api_unsubscribe(tmp_path: Path) -> None:
    client = _client(tmp_path, MockDeliveryChannel(), api_key="secret")
    headers = {"X-API-Key": "secret"}
    recipient = client.post("/recipients", json={"email": "a@example.com"}, headers=headers).json()

    response = client.get("/unsubscribe/", params={"uuid": recipient["uuid"]})
    assert response.status_code == 200
    assert response.json()["subscribed"] is False
    listed = client.get("/recipients", params={"subscribed": True}, headers=headers).json()
    assert listed["total"] == 0

    missing = client.get("/unsubscribe/", params={"uuid": "nobody"})
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Unsubscribe failed! Could not find member"
    assert client.get("/unsubscribe/").status_code == 404
    assert client.get("/unsubscribe/", params={"preview": "1"}).status_code == 400


def test_api_requires_key_when_configured(tmp_path: Path) -> None:
    client = _client(tmp_path, MockDeliveryChannel(), api_key="secret")
    assert client.get("/health").status_code == 200
    assert client.post("/recipients", json={"email": "a@example.com"}).status_code == 401
    wrong = client.get("/recipients", headers={"X-API-Key": "nope"})
    assert wrong.status_code == 401


def test_api_validation_and_test_email(tmp_path: Path) -> None:
    channel = MockDeliveryChannel()
    client = _client(tmp_path, channel)
    assert client.post("/recipients", json={"email": "broken"}).status_code == 400
    assert client.post("/content", json={"title": "", "html": ""}).status_code == 422
    assert client.post("/content/5/test-email", json={"emails": ["a@example.com"]}).status_code == 404

    content = client.post("/content", json={"title": "Preview", "html": "<p>Soon</p>"}).json()
    response = client.post(
        f"/content/{content['id']}/test-email", json={"emails": ["editor@example.com"]}
    )
    assert response.status_code == 200
    assert response.json()["batches"][0]["kind"] == "success"
    assert channel.sent[0]["subject"] == "[Test] Preview"
    assert client.get("/dispatches/1").status_code == 404


def test_api_shutdown_closes_services(tmp_path: Path) -> None:
    """Summary: Verify stopping the app releases the job runner and the trigger listener.

    Importance: Worker threads must not outlive the server.
    Alternatives: Rely on interpreter exit to reap the pool.
    """

    jobs = ClosingJobRunner()
    channel = MockDeliveryChannel()
    app = create_app(_build_config(str(tmp_path / "test.db")), jobs=jobs, channel=channel)
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert jobs.closed is False

    assert jobs.closed is True
    services = app.state.services
    services.directory.add(Recipient(email="late@example.com"))
    content = services.content.create(ContentItem(title="Late", html="<p>After</p>"))
    services.content.publish(content.id)
    assert channel.sent == []
