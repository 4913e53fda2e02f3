# FILE: tests/test_notifier.py
"""
Admin webhook notifier
"""
import json

import httpx

from exam_engine.services.notifier import AdminNotifier

WEBHOOK = "https://hooks.example.test/exam-admin"


def _notifier(handler):
    return AdminNotifier(WEBHOOK, background=False, transport=httpx.MockTransport(handler))


def test_send_posts_json_payload():
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(204)

    assert _notifier(handler).send("AI grading fallback used", "details") is True

    assert str(received[0].url) == WEBHOOK
    body = json.loads(received[0].content)
    assert body["subject"] == "AI grading fallback used"
    assert body["message"] == "details"
    assert "sent_at" in body


def test_failed_delivery_is_reported_not_raised():
    assert _notifier(lambda request: httpx.Response(503)).send("subject", "message") is False


def test_transport_error_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert _notifier(handler).send("subject", "message") is False


def test_without_webhook_only_logs():
    assert AdminNotifier(None).send("subject", "message") is False


def test_notify_runs_inline_when_not_in_background():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    _notifier(handler).notify("subject", "message")

    assert len(calls) == 1
