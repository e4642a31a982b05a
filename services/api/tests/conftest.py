"""
Shared fixtures: in-memory storage, test settings, a TestClient wired to
both through dependency overrides, and a small framed-page builder.
"""
import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from adapters.sqlite import SqliteAdapter
from core.approval import PinAttemptTracker
from core.deps import get_attempt_tracker, get_storage
from embed import Document, Element, Rect
from settings import Settings, get_settings

OWNER = {"x-owner-email": "agency@example.com"}
OTHER_OWNER = {"x-owner-email": "rival@example.com"}


class FakeClock:
    """Settable naive-UTC clock for the approval service."""

    def __init__(self, now: datetime = datetime(2025, 3, 1, 12, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def storage():
    return SqliteAdapter.from_url("sqlite://")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="development",
        web_base_url="http://review.test",
        smtp_host="",
        smtp_user="",
    )


@pytest.fixture
def client(storage, settings):
    from main import app

    attempts = PinAttemptTracker(max_attempts=settings.pin_max_attempts, window_seconds=60)
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_attempt_tracker] = lambda: attempts
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_page(path: str = "/pricing") -> Document:
    """
    A 1280x800 viewport over a 2000px tall page:

        header.site-header.flex.p-4      (0,0 1280x80)
          a#hero-cta                     (100,20 200x40)
          button[data-testid=buy]        (400,20 100x40)
        main                             (0,100 1280x1800)
          div.card.featured.mt-2         (0,100 400x300)
          div.card.p-4                   (420,100 400x300)
          ul                             (0,1000 400x300)
            li x3                        (100px rows)
    """
    doc = Document(f"https://site.test{path}", inner_width=1280, inner_height=800)
    doc.body.box = Rect(0, 0, 1280, 2000)

    header = doc.body.append(Element("header", classes=["site-header", "flex", "p-4"], box=Rect(0, 0, 1280, 80)))
    header.append(Element("a", id="hero-cta", box=Rect(100, 20, 200, 40)))
    header.append(Element("button", attrs={"data-testid": "buy"}, box=Rect(400, 20, 100, 40)))

    main = doc.body.append(Element("main", box=Rect(0, 100, 1280, 1800)))
    main.append(Element("div", classes=["card", "featured", "mt-2"], box=Rect(0, 100, 400, 300)))
    main.append(Element("div", classes=["card", "p-4"], box=Rect(420, 100, 400, 300)))
    ul = main.append(Element("ul", box=Rect(0, 1000, 400, 300)))
    for i in range(3):
        ul.append(Element("li", box=Rect(0, 1000 + i * 100, 400, 100)))
    return doc


@pytest.fixture
def page():
    return make_page()
