import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json

import requests

from agent_models import AgentState
from notifications import CompositeNotifier, NotificationEvent, WebhookNotifier
from sessions import InMemorySessionStore


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_get_or_create_is_idempotent():
    store = InMemorySessionStore(clock=_Clock())
    a = store.get_or_create("sess-abc", user_id="u1")
    b = store.get_or_create("sess-abc", user_id="someone-else")
    _assert(a is b and b.user_id == "u1", "Existing session should be returned untouched")
    _assert(a.context.session_id == "sess-abc", "Context not bound to session id")
    _assert(a.current_state == AgentState.GREETING, "New sessions start at greeting")
    _assert("sess-abc" in store and len(store) == 1, "Store bookkeeping")
    _assert(store.delete("sess-abc") and not store.delete("sess-abc"), "Delete should report removal once")


def test_cleanup_ttl_and_capacity():
    clock = _Clock()
    store = InMemorySessionStore(ttl_sec=60, max_sessions=2, clock=clock)
    store.get_or_create("old-session")
    clock.now += 120
    for sid in ("s-one-1", "s-two-2", "s-three-3"):
        clock.now += 1
        store.save(store.get_or_create(sid))
    removed = store.cleanup()
    _assert(removed == ["old-session", "s-one-1"], f"Unexpected eviction order: {removed}")
    _assert(sorted(s.session_id for s in store.list_all()) == ["s-three-3", "s-two-2"], "Wrong survivors")


def test_session_serialisation():
    store = InMemorySessionStore(clock=_Clock())
    session = store.get_or_create("sess-ser")
    data = session.to_dict(include_messages=False)
    _assert(data["current_state"] == "greeting" and "messages" not in data, f"Bad summary: {data}")
    _assert(session.to_dict()["messages"] == [], "Messages should be included by default")


class _FailingHttp:
    def __init__(self):
        self.calls = 0

    def post(self, url, json=None, timeout=None):
        self.calls += 1
        raise requests.ConnectionError("connection refused")


class _Recorder:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def test_webhook_failures_are_swallowed():
    http = _FailingHttp()
    recorder = _Recorder()
    webhook = WebhookNotifier("https://hooks.example.com/x", session=http)
    notifier = CompositeNotifier([webhook, recorder])
    notifier.notify(NotificationEvent(type="security_alert", session_id="sess-1", severity="high"))
    webhook.close()
    _assert(http.calls == 1, "Webhook not attempted")
    _assert(len(recorder.events) == 1, "Later sinks must still receive the event")
    _assert(recorder.events[0].to_dict()["type"] == "security_alert", "Event payload mismatch")


if __name__ == "__main__":
    test_get_or_create_is_idempotent()
    test_cleanup_ttl_and_capacity()
    test_session_serialisation()
    test_webhook_failures_are_swallowed()
    print(json.dumps({"ok": True}))
