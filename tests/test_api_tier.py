from src.zagent.retrieval.api import ApiTier, next_page_path, score_name_match
from src.zagent.retrieval.context import RetrievalContext


BASE = "https://acme.zendesk.com"


def _paged(prefix: str, pages: int, per_page: int, key: str = "results"):
    """Canned API where page N links to page N+1 forever (up to ``pages``)."""
    api = {}
    for n in range(1, pages + 1):
        path = f"{prefix}?page={n}"
        rows = [{"id": (n - 1) * per_page + i + 1} for i in range(per_page)]
        nxt = f"{BASE}{prefix}?page={n + 1}" if n < pages else None
        api[path] = {key: rows, "next_page": nxt}
    return api


def test_item_cap_stops_after_first_page(fake_page):
    page = fake_page(api=_paged("/api/v2/things.json", 5, 100))
    rows = ApiTier().get_all_pages(page, "/api/v2/things.json?page=1", max_items=10, max_pages=20)
    assert len(rows) == 10
    assert [r["id"] for r in rows] == list(range(1, 11))
    assert page.fetched == ["/api/v2/things.json?page=1"]


def test_page_cap_stops_even_with_more_pages(fake_page):
    page = fake_page(api=_paged("/api/v2/things.json", 10, 3))
    rows = ApiTier().get_all_pages(page, "/api/v2/things.json?page=1", max_items=None, max_pages=2)
    assert len(rows) == 6
    assert len(page.fetched) == 2


def test_pagination_stops_without_next_page_or_on_error(fake_page):
    page = fake_page(api=_paged("/api/v2/things.json", 2, 4))
    rows = ApiTier().get_all_pages(page, "/api/v2/things.json?page=1", max_items=None, max_pages=50)
    assert len(rows) == 8

    page = fake_page(api={})
    assert ApiTier().get_all_pages(page, "/api/v2/things.json?page=1") == []


def test_next_page_path():
    assert next_page_path(f"{BASE}/api/v2/search.json?page=2&query=x") == "/api/v2/search.json?page=2&query=x"
    assert next_page_path(None) is None
    assert next_page_path("not a url") is None


def test_malformed_body_is_no_data(fake_page):
    page = fake_page(api={"/api/v2/users/me.json": lambda: {"ok": True, "status": 200, "data": None}})
    ctx = RetrievalContext.for_page(page)
    assert ApiTier().read_identity(ctx) is None


def test_read_ticket_resolves_users_in_one_batch(fake_page):
    api = {
        "/api/v2/tickets/42.json": {"ticket": {
            "id": 42, "subject": " Printer  on fire ", "status": "open", "priority": "high",
            "requester_id": 7, "assignee_id": 8, "tags": ["hw", "urgent"],
        }},
        "/api/v2/tickets/42/comments.json?sort_order=desc": {"comments": [
            {"author_id": 8, "created_at": "2024-05-02T10:00:00Z", "plain_body": "On it"},
            {"author_id": 7, "created_at": "2024-05-01T09:00:00Z", "plain_body": "Help"},
            {"author_id": 7, "created_at": "2024-04-30T09:00:00Z", "plain_body": "Older"},
        ]},
        "/api/v2/users/show_many.json?ids=7%2C8": {"users": [
            {"id": 7, "name": "Req Person"}, {"id": 8, "name": "", "email": "agent@acme.test"},
        ]},
    }
    page = fake_page(url=f"{BASE}/agent/tickets/42", api=api)
    ticket = ApiTier().read_ticket(RetrievalContext.for_page(page), "42", count=2)

    assert ticket.source == "api"
    assert ticket.ticket_id == "42"
    assert ticket.subject == "Printer on fire"
    assert ticket.requester == "Req Person"
    assert ticket.assignee == "agent@acme.test"
    assert ticket.tags == ["hw", "urgent"]
    assert [c.text for c in ticket.comments] == ["Help", "On it"]
    assert [p for p in page.fetched if "users" in p] == ["/api/v2/users/show_many.json?ids=7%2C8"]


def test_read_ticket_not_found(fake_page):
    page = fake_page(url=f"{BASE}/agent/tickets/9")
    assert ApiTier().read_ticket(RetrievalContext.for_page(page), "9") is None


def test_find_queue_scores_names(fake_page):
    api = {
        "/api/v2/views.json?page[size]=100": {"views": [
            {"id": 1, "title": "Support - Open tickets"},
            {"id": 2, "title": "Support"},
            {"id": 3, "title": "Billing"},
        ]},
        "/api/v2/views/active.json?page[size]=100": {"views": [{"id": 4, "title": "Support"}]},
    }
    page = fake_page(api=api)
    match = ApiTier().find_queue(RetrievalContext.for_page(page), "support")
    assert match.id == "2"
    assert match.score == 100
    assert match.href == f"{BASE}/agent/filters/2"
    assert match.source == "api"

    assert ApiTier().find_queue(RetrievalContext.for_page(page), "Escalations") is None


def test_score_name_match():
    assert score_name_match("Support", "support") == 100
    assert score_name_match("Support Open", "open") == 80
    assert score_name_match("Open", "tier 2 open queue") == 60
    assert score_name_match("Billing", "support") == -1
    assert score_name_match("", "x") == -1


def test_read_queue_full_sync_and_count(fake_page):
    api = {
        "/api/v2/views/55.json": {"view": {"title": "Support Open"}},
        "/api/v2/views/55/tickets.json?per_page=100": {
            "tickets": [{"id": 1, "subject": "A", "status": "new", "requester_id": 7},
                        {"id": 2, "subject": "B", "status": "open", "assignee_id": 8}],
            "next_page": None,
        },
        "/api/v2/views/55/tickets.json?per_page=1": {
            "tickets": [{"id": 1, "subject": "A", "status": "new"}],
            "next_page": f"{BASE}/api/v2/views/55/tickets.json?per_page=1&page=2",
        },
        "/api/v2/users/show_many.json?ids=7%2C8": {"users": [{"id": 7, "name": "Req"}]},
    }
    page = fake_page(url=f"{BASE}/agent/filters/55", api=api)
    ctx = RetrievalContext.for_page(page)

    queue = ApiTier().read_queue(ctx, "55")
    assert queue.full_sync is True
    assert queue.queue_name == "Support Open"
    assert [t.ticket_id for t in queue.tickets] == ["1", "2"]
    assert queue.tickets[0].requester == "Req"
    assert queue.tickets[1].assignee == "8"
    assert queue.tickets[0].url == f"{BASE}/agent/tickets/1"

    limited = ApiTier().read_queue(ctx, "55", count=1)
    assert limited.full_sync is False
    assert limited.result_count == 1


def test_search_keeps_only_tickets(fake_page):
    path = "/api/v2/search.json?query=type%3Aticket%20printer&per_page=5"
    api = {path: {"results": [
        {"id": 1, "result_type": "ticket", "subject": "Printer", "description": "x" * 600},
        {"id": 2, "result_type": "user", "name": "Printer Guy"},
    ], "next_page": None}}
    page = fake_page(api=api)
    result = ApiTier().search(RetrievalContext.for_page(page), "printer", count=5)
    assert result.source == "api"
    assert result.result_count == 1
    assert len(result.results[0].snippet) == 500
    assert result.page_url == f"{BASE}/agent/search/1?query=printer"
