"""Tests for the email notification gateway."""

import json

import httpx

from talenthub.service.email import EmailService


def _brevo_service(handler, **kwargs):
    return EmailService(
        brevo_api_key="brevo-test-key",
        brevo_api_url="https://brevo.test/v3/smtp/email",
        from_email="noreply@talenthub.com",
        frontend_url="https://app.talenthub.test/",
        api_url="https://api.talenthub.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_unconfigured_service_is_dev_mode():
    service = EmailService()
    assert not service.is_configured
    assert not service.uses_brevo
    assert not service.uses_smtp


async def test_dev_mode_logs_and_reports_success():
    service = EmailService()
    assert await service.send_verification_email("ann@example.com", "tok") is True
    assert await service.send_two_factor_code("ann@example.com", "123456") is True


def test_verification_links():
    service = EmailService(
        frontend_url="https://app.talenthub.test/", api_url="https://api.talenthub.test"
    )
    frontend, api = service.verification_links("abc")
    assert frontend == "https://app.talenthub.test/v1/verify-email?token=abc"
    assert api == "https://api.talenthub.test/api/v1/email-test/show-verification?token=abc"


async def test_brevo_request_shape():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["api_key"] = request.headers.get("api-key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"messageId": "<1@brevo>"})

    service = _brevo_service(handler)
    assert service.is_configured
    assert await service.send_verification_email("ann@example.com", "tok-123") is True

    body = captured["body"]
    assert captured["url"] == "https://brevo.test/v3/smtp/email"
    assert captured["api_key"] == "brevo-test-key"
    assert body["to"] == [{"email": "ann@example.com"}]
    assert body["sender"] == {"name": "TalentHub", "email": "noreply@talenthub.com"}
    assert body["subject"] == "Verify Your TalentHub Account"
    assert "https://app.talenthub.test/v1/verify-email?token=tok-123" in body["htmlContent"]
    assert "show-verification?token=tok-123" in body["textContent"]


async def test_two_factor_code_in_body():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={})

    service = _brevo_service(handler)
    assert await service.send_two_factor_code("ann@example.com", "482913") is True
    assert captured["body"]["subject"] == "Your TalentHub 2FA Code"
    assert "482913" in captured["body"]["textContent"]
    assert "10 minutes" in captured["body"]["textContent"]


async def test_brevo_rejection_returns_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    service = _brevo_service(handler)
    assert await service.send_verification_email("ann@example.com", "tok") is False


async def test_brevo_unreachable_returns_false():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = _brevo_service(handler)
    assert await service.send_two_factor_code("ann@example.com", "123456") is False


async def test_smtp_failure_returns_false():
    # Nothing listens on port 1; the connect error is reported, not raised
    service = EmailService(smtp_host="127.0.0.1", smtp_port=1, timeout=1.0)
    assert service.uses_smtp
    assert await service.send_verification_email("ann@example.com", "tok") is False
