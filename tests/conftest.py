"""Shared pytest fixtures for the bookmark tests."""

import asyncio
import json
import logging

import pytest

from core.model import BookmarkTree, Folder, Link
from services.link_checker import ProbeFailed, ProbeTimeout


SCENARIO = {
    "roots": {
        "bookmark_bar": {
            "id": "1", "name": "Bar", "type": "folder",
            "children": [
                {"id": "2", "name": "Example", "type": "url", "url": "https://example.com"},
            ],
        },
        "other": {"id": "3", "name": "Other", "type": "folder", "children": []},
    },
    "version": 1,
}


class FakeFetcher:
    """In-process stand-in for the network.

    Outcomes per URL:
      "ok"        primary probe succeeds
      "timeout"   primary probe times out
      "hang"      primary probe never answers
      "blocked"   both probes fail
      "hang2"     primary fails, secondary never answers
      int         primary fails, secondary returns that status code
      "boom"      primary raises an unexpected exception
    """

    def __init__(self, outcomes=None, default="ok", delay=0.0):
        self.outcomes = dict(outcomes or {})
        self.default = default
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def outcome(self, url):
        return self.outcomes.get(url, self.default)

    async def fetch_opaque(self, url, timeout):
        self.calls.append(("opaque", url))
        outcome = self.outcome(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if outcome == "ok":
                return None
            if outcome == "timeout":
                raise ProbeTimeout(url)
            if outcome == "hang":
                await asyncio.sleep(3600)
            if outcome == "boom":
                raise RuntimeError("unexpected")
            raise ProbeFailed(url)
        finally:
            self.in_flight -= 1

    async def fetch_status(self, url, timeout):
        self.calls.append(("status", url))
        outcome = self.outcome(url)
        if isinstance(outcome, int):
            return outcome
        if outcome == "hang2":
            await asyncio.sleep(3600)
        raise ProbeFailed(url)

    def urls(self, mode="opaque"):
        return [url for kind, url in self.calls if kind == mode]


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def scenario_data():
    return json.loads(json.dumps(SCENARIO))


@pytest.fixture
def scenario_json(scenario_data):
    return json.dumps(scenario_data)


@pytest.fixture
def nested_tree():
    """bar: [a, F1[b, F2[c], d]], other: [e, F3[]], synced: [f]"""
    return BookmarkTree(
        bookmark_bar=Folder(id="1", name="Bookmarks bar", children=[
            Link(id="10", name="a", url="https://a.example"),
            Folder(id="20", name="F1", children=[
                Link(id="11", name="b", url="https://b.example"),
                Folder(id="21", name="F2", children=[
                    Link(id="12", name="c", url="https://c.example"),
                ]),
                Link(id="13", name="d", url=""),
            ]),
        ]),
        other=Folder(id="2", name="Other bookmarks", children=[
            Link(id="14", name="e", url="https://e.example", date_added="13300000000000000"),
            Folder(id="22", name="F3"),
        ]),
        synced=Folder(id="3", name="Mobile bookmarks", children=[
            Link(id="15", name="f", url="https://f.example"),
        ]),
    )


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
