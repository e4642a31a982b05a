"""
Tests for the review page session: embed detection, page tracking,
pin numbering and viewport projection, end to end with the embed script.
"""
from datetime import datetime, timedelta

import pytest

from core.errors import ValidationError
from core.protocol import PinClicked
from embed import EmbedScript, FramePort, Timeline, connect_frames
from models import Anchor, Comment, CommentStatus
from review import LoadStatus, ReviewSession

from conftest import make_page

T0 = datetime(2025, 3, 1, 9, 0, 0)


def comment(comment_id, page_url="/pricing", x=10.0, y=10.0, minutes=0, status=CommentStatus.OPEN, anchor=None):
    return Comment(
        comment_id=comment_id,
        project_id="p-1",
        page_url=page_url,
        message=f"note {comment_id}",
        status=status,
        click_x=x,
        click_y=y,
        anchor=anchor,
        created_at=T0 + timedelta(minutes=minutes),
    )


class Review:
    """Review page and framed site sharing one timeline."""

    def __init__(self, with_embed=True, path="/pricing"):
        self.timeline = Timeline()
        self.page = make_page(path)
        self.host = FramePort(self.timeline, "https://review.test")
        self.frame = FramePort(self.timeline, "https://site.test")
        connect_frames(self.host, self.frame)
        self.paths = []
        self.session = ReviewSession(self.timeline, self.host, on_path_change=self.paths.append)
        self.session.start()
        self.script = None
        if with_embed:
            self.script = EmbedScript(self.page, self.timeline, self.frame)
            self.script.boot()
        self.timeline.flush()

    def rendered(self):
        return sorted(self.script.overlay.placements)


class TestDetection:
    """Tests for embed detection and the load timeout."""

    def test_nothing_arrives(self):
        """No handshake and no load event: the preview is unavailable."""
        r = Review(with_embed=False)
        assert r.session.load_status == LoadStatus.LOADING
        r.timeline.advance(3999)
        assert r.session.load_status == LoadStatus.LOADING
        r.timeline.advance(1)
        assert r.session.load_status == LoadStatus.UNAVAILABLE
        assert r.session.manual_mode

    def test_loaded_without_script(self):
        """A page without the script loads but stays in manual mode."""
        r = Review(with_embed=False)
        r.session.on_frame_loaded()
        r.timeline.advance(5000)
        assert r.session.load_status == LoadStatus.LOADED
        assert r.session.manual_mode

    def test_handshake_detects_embed(self):
        """Handshake switches to automatic path tracking."""
        r = Review()
        assert r.session.embed_detected
        assert r.session.load_status == LoadStatus.LOADED
        assert r.session.current_path == "/pricing"
        assert r.paths == ["/pricing"]
        r.timeline.advance(10000)
        assert r.session.load_status == LoadStatus.LOADED

    def test_detection_is_one_way(self):
        """Manual page entry is refused once the script has spoken."""
        r = Review()
        assert r.session.set_manual_path("/somewhere") is False
        assert r.session.current_path == "/pricing"


class TestManualMode:
    """Tests for manual page entry."""

    def test_manual_path(self):
        """Paths starting with / are taken as-is."""
        r = Review(with_embed=False)
        assert r.session.set_manual_path("/about") is True
        assert r.session.current_path == "/about"
        assert r.paths == ["/about"]

    def test_manual_path_validated(self):
        """A path without a leading slash is rejected."""
        r = Review(with_embed=False)
        with pytest.raises(ValidationError):
            r.session.set_manual_path("about")
        assert r.session.current_path == "/"

    def test_manual_comment_has_no_anchor(self):
        """Without the embed the draft is ready at once."""
        r = Review(with_embed=False)
        r.session.set_manual_path("/about")
        draft = r.session.begin_comment(120.4, 80.6)
        assert draft.anchor_resolved
        assert draft.anchor is None
        assert (draft.click_x, draft.click_y) == (120, 81)
        assert draft.page_url == "/about"
        assert r.session.pending_anchors == {}


class TestPins:
    """Tests for visibility, ordering and numbering."""

    def setup_method(self):
        self.comments = [
            comment("c-3", minutes=3),
            comment("c-2", minutes=2, status=CommentStatus.RESOLVED),
            comment("c-1", minutes=1),
            comment("c-0", minutes=0, page_url="/about"),
        ]

    def test_visible_newest_first_numbered_oldest_first(self):
        """The list reads newest first; pin numbers count up by age."""
        r = Review()
        r.session.set_comments(self.comments)
        assert [c.comment_id for c in r.session.visible_comments()] == ["c-3", "c-1"]
        pins = r.session.render_pins_message().pins
        assert [(p.id, p.number) for p in pins] == [("c-1", 1), ("c-3", 2)]

    def test_pins_pushed_to_embed(self):
        """Comment changes re-render the embed overlay."""
        r = Review()
        r.session.set_comments(self.comments)
        r.timeline.flush()
        assert r.rendered() == ["c-1", "c-3"]

        r.session.set_filter(CommentStatus.RESOLVED)
        r.timeline.flush()
        assert r.rendered() == ["c-2"]

    def test_navigation_swaps_pins(self):
        """A client-side navigation shows the new page's pins only."""
        r = Review()
        r.session.set_comments(self.comments)
        r.session.focus_comment("c-3")
        r.timeline.flush()

        r.page.push_state("/about")
        r.timeline.advance(500)
        assert r.session.current_path == "/about"
        assert r.paths == ["/pricing", "/about"]
        assert r.session.active_comment_id is None
        assert r.rendered() == ["c-0"]

    def test_no_push_before_detection(self):
        """Nothing is posted to a page that never announced itself."""
        r = Review(with_embed=False)
        assert r.session.push_pins() is False

    def test_active_pin_marked(self):
        """The focused comment's pin carries the active class."""
        r = Review()
        r.session.set_comments(self.comments)
        r.session.focus_comment("c-1")
        r.timeline.flush()
        assert "active" in r.page.get_element_by_id("annota-pin-c-1").classes
        assert "active" not in r.page.get_element_by_id("annota-pin-c-3").classes


class TestViewportPins:
    """Tests for host-side projection."""

    def test_without_scroll_report(self):
        """Before any scroll report pins pass through in document space."""
        r = Review(with_embed=False)
        r.session.set_manual_path("/pricing")
        r.session.set_comments([comment("a", x=5, y=3000)])
        [vp] = r.session.viewport_pins()
        assert (vp.x, vp.y) == (5, 3000)

    def test_culled_outside_viewport(self):
        """Pins more than 40px outside the viewport are left out."""
        r = Review()
        r.session.set_comments(
            [
                comment("a", y=1100, minutes=1),
                comment("b", y=100, minutes=2),
                comment("c", y=1840, minutes=3),
                comment("d", y=1841, minutes=4),
            ]
        )
        r.page.scroll_to(0, 1000)
        r.timeline.next_frame()
        r.timeline.flush()
        assert r.session.scroll.scroll_y == 1000

        pins = r.session.viewport_pins()
        assert [(p.comment_id, p.number, p.y) for p in pins] == [("a", 1, 100), ("c", 3, 840)]

    def test_width_drift_for_unanchored(self):
        """Unanchored pins shift by half the width change, anchored ones do not."""
        r = Review()
        hero = Anchor(selector="#hero-cta", offset_x_pct=0.5, offset_y_pct=0.5)
        r.session.set_comments([comment("free", x=500, y=100, minutes=1), comment("pinned", x=200, y=40, minutes=2, anchor=hero)])
        assert r.session.initial_width == 1280

        r.page.resize(1000, 800)
        r.timeline.next_frame()
        r.timeline.flush()
        xs = {p.comment_id: p.x for p in r.session.viewport_pins()}
        assert xs == {"free": 360, "pinned": 200}


class TestNewComment:
    """Tests for begin_comment with anchor resolution."""

    def test_anchor_resolved_end_to_end(self):
        """A click on the overlay comes back with the element under it."""
        r = Review()
        draft = r.session.begin_comment(150, 30)
        assert draft.anchor_resolved is False
        assert (draft.click_x, draft.click_y) == (150, 30)

        r.timeline.flush()
        assert draft.anchor_resolved is True
        assert draft.anchor.selector == "#hero-cta"
        assert draft.anchor.offset_x_pct == pytest.approx(0.25)
        assert draft.anchor.tag_name == "A"

        draft.message = "Make this bigger"
        body = draft.to_create_body()
        assert body["pageUrl"] == "/pricing"
        assert body["anchor"]["selector"] == "#hero-cta"

    def test_click_on_scrolled_page(self):
        """Document coordinates add the reported scroll offset."""
        r = Review()
        r.page.scroll_to(0, 600)
        r.timeline.next_frame()
        r.timeline.flush()
        draft = r.session.begin_comment(40, 550)
        assert (draft.click_x, draft.click_y) == (40, 1150)
        r.timeline.flush()
        assert draft.anchor.selector == "body > main > ul > li:nth-child(2)"

    def test_no_anchor_under_click(self):
        """Empty areas resolve to a draft without an anchor."""
        r = Review()
        draft = r.session.begin_comment(1279, 90)
        r.timeline.flush()
        assert draft.anchor_resolved
        assert draft.anchor is None
        assert "anchor" not in draft.to_create_body()

    def test_cancelled_draft_ignores_late_answer(self):
        """An anchor answer for a cancelled draft is dropped."""
        r = Review()
        draft = r.session.begin_comment(150, 30)
        r.session.cancel_comment(draft)
        r.timeline.flush()
        assert draft.anchor is None
        assert draft.anchor_resolved is False


class TestPinClicked:
    """Tests for selecting comments from the page."""

    def test_click_focuses_comment(self):
        """Clicking a pin in the page selects its comment."""
        r = Review()
        r.session.set_comments([comment("c-1")])
        r.timeline.flush()
        assert r.script.click_pin("c-1")
        r.timeline.flush()
        assert r.session.active_comment_id == "c-1"
        assert "active" in r.page.get_element_by_id("annota-pin-c-1").classes

    def test_click_switches_filter(self):
        """A resolved comment switches the list to the resolved filter."""
        r = Review()
        r.session.set_comments([comment("c-1"), comment("c-2", status=CommentStatus.RESOLVED)])
        r.frame.post_message(PinClicked(comment_id="c-2").to_wire())
        r.timeline.flush()
        assert r.session.filter_status == CommentStatus.RESOLVED
        assert r.session.active_comment_id == "c-2"
        assert r.rendered() == ["c-2"]

    def test_unknown_comment_ignored(self):
        """Stale pin ids change nothing."""
        r = Review()
        r.frame.post_message(PinClicked(comment_id="gone").to_wire())
        r.timeline.flush()
        assert r.session.active_comment_id is None
