import pytest

from src.zagent.errors import QueueNotFoundError
from src.zagent.retrieval.context import RetrievalContext
from src.zagent.retrieval.outcome import Api, Dom, Empty, found
from src.zagent.retrieval.retriever import DualSourceRetriever
from src.zagent.schemas import Identity, Queue, QueueMatch, QueueTicket


BASE = "https://acme.zendesk.com"


def _queue(source, n):
    return Queue(source=source, tickets=[QueueTicket(ticket_id=str(i + 1)) for i in range(n)])


class FakeApi:
    def __init__(self, queue=None, match=None, identity=None, fail=False):
        self.queue = queue
        self.match = match
        self.identity = identity
        self.fail = fail
        self.calls = []

    def read_queue(self, ctx, view_id, count=None):
        self.calls.append(("read_queue", view_id, count))
        if self.fail:
            raise RuntimeError("fetch blew up")
        return self.queue

    def find_queue(self, ctx, name):
        if self.fail:
            raise RuntimeError("fetch blew up")
        return self.match

    def read_identity(self, ctx):
        return self.identity


class FakeDom:
    def __init__(self, queue=None, match=None, identity=None):
        self.queue = queue
        self.match = match
        self.identity = identity
        self.navigated = []
        self.reads = 0

    def wait_ready(self, ctx):
        return None

    def navigate(self, ctx, url):
        self.navigated.append(url)
        ctx.page.url = url

    def open_path(self, ctx, path):
        self.navigated.append(path)
        return QueueMatch(id=None, score=100, href=f"{BASE}{path}", source="config")

    def read_queue(self, ctx, count=None):
        self.reads += 1
        return self.queue

    def find_queue(self, ctx, name):
        return self.match

    def read_identity(self, ctx):
        return self.identity


def _ctx(fake_page, url=f"{BASE}/agent/filters/55"):
    return RetrievalContext.for_page(fake_page(url=url))


def test_non_empty_api_result_wins(fake_page):
    api, dom = FakeApi(queue=_queue("api", 3)), FakeDom(queue=_queue("dom", 5))
    outcome = DualSourceRetriever(api, dom).read_queue(_ctx(fake_page), count=10)
    assert isinstance(outcome, Api)
    assert outcome.entity.result_count == 3
    assert api.calls == [("read_queue", "55", 10)]
    assert dom.reads == 0


def test_api_failure_falls_back_to_dom(fake_page):
    api, dom = FakeApi(fail=True), FakeDom(queue=_queue("dom", 2))
    outcome = DualSourceRetriever(api, dom).read_queue(_ctx(fake_page))
    assert isinstance(outcome, Dom)
    assert outcome.source == "dom"
    assert outcome.entity.result_count == 2


def test_empty_api_result_falls_back_to_dom(fake_page):
    api, dom = FakeApi(queue=_queue("api", 0)), FakeDom(queue=_queue("dom", 1))
    assert isinstance(DualSourceRetriever(api, dom).read_queue(_ctx(fake_page)), Dom)


def test_both_empty_is_empty_outcome(fake_page):
    api, dom = FakeApi(queue=_queue("api", 0)), FakeDom(queue=_queue("dom", 0))
    outcome = DualSourceRetriever(api, dom).read_queue(_ctx(fake_page))
    assert outcome == Empty("queue")
    assert outcome.entity is None
    assert not found(outcome)


def test_api_skipped_without_view_id(fake_page):
    api, dom = FakeApi(queue=_queue("api", 3)), FakeDom(queue=_queue("dom", 1))
    outcome = DualSourceRetriever(api, dom).read_queue(_ctx(fake_page, f"{BASE}/agent/dashboard"))
    assert isinstance(outcome, Dom)
    assert api.calls == []


def test_outcome_rejects_mismatched_source():
    with pytest.raises(ValueError):
        Api(_queue("dom", 1))


def test_numeric_queue_name_is_taken_as_view_id(fake_page):
    api, dom = FakeApi(), FakeDom()
    ctx = _ctx(fake_page, f"{BASE}/agent/home")
    match = DualSourceRetriever(api, dom).open_queue(ctx, "456")
    assert match.id == "456"
    assert match.score == 100
    assert match.source == "id"
    assert dom.navigated == [f"{BASE}/agent/filters/456"]


def test_configured_path_wins_over_name(fake_page):
    dom = FakeDom()
    match = DualSourceRetriever(FakeApi(), dom).open_queue(_ctx(fake_page), "Support", "/agent/filters/123")
    assert match.source == "config"
    assert dom.navigated == ["/agent/filters/123"]


def test_queue_lookup_falls_back_to_page_links(fake_page):
    hit = QueueMatch(id="77", score=80, name="Support Open", href=f"{BASE}/agent/filters/77", source="dom")
    dom = FakeDom(match=hit)
    match = DualSourceRetriever(FakeApi(fail=True), dom).open_queue(_ctx(fake_page), "open")
    assert match is hit
    assert dom.navigated == [f"{BASE}/agent/filters/77"]


def test_unknown_queue_raises(fake_page):
    with pytest.raises(QueueNotFoundError, match="Could not find queue: Legal"):
        DualSourceRetriever(FakeApi(), FakeDom()).open_queue(_ctx(fake_page), " Legal ")


def test_identity_prefers_api(fake_page):
    api = FakeApi(identity=Identity(source="api", id="1", name="Agent"))
    dom = FakeDom(identity=Identity(source="dom", name="Other"))
    outcome = DualSourceRetriever(api, dom).read_identity(_ctx(fake_page))
    assert outcome.entity.name == "Agent"
    assert outcome.entity.authenticated
