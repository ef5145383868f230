"""tests/test_smoke.py"""

import pytest


@pytest.mark.parametrize(
    "path",
    [
        "/",                 # list view
        "/rules",            # rule cards
        "/export.csv",       # CSV download
        "/static/style.css", # static assets
    ],
)
def test_read_routes_ok(client, path):
    rv = client.get(path)
    assert rv.status_code == 200


@pytest.mark.parametrize("path", ["/", "/rules", "/export.csv", "/edit?id=1"])
def test_security_headers(client, path):
    rv = client.get(path)
    assert rv.headers["X-Content-Type-Options"] == "nosniff"
    assert rv.headers["X-Frame-Options"] == "DENY"
    assert rv.headers["Referrer-Policy"] == "same-origin"


def test_security_headers_on_redirects(client, form):
    rv = client.post("/add", data=form)
    assert rv.headers["X-Frame-Options"] == "DENY"


def test_index_prefills_today(client):
    from datetime import date

    rv = client.get("/")
    assert f'value="{date.today().isoformat()}"'.encode() in rv.data


def test_index_shows_count_and_rows(client, add_mistake):
    add_mistake(topic="graphs")
    add_mistake(topic="trees")
    html = client.get("/").data.decode()
    assert "2 mistakes" in html
    assert html.count('<article class="mistake"') == 2


def test_index_echoes_filters(client, add_mistake):
    add_mistake(topic="graphs")
    html = client.get("/?q=edge&topic=graphs&from=2024-01-01&to=2024-12-31").data.decode()
    assert 'name="q" placeholder="Search text"' in html
    assert 'value="edge"' in html
    assert '<option value="graphs" selected>' in html
    assert 'value="2024-01-01"' in html
    assert 'value="2024-12-31"' in html
    # export link keeps the same filters
    assert "/export.csv?q=edge&amp;topic=graphs&amp;from=2024-01-01&amp;to=2024-12-31" in html


def test_index_cap(client, add_mistake, monkeypatch):
    from mistakelog.app import app

    for _ in range(3):
        add_mistake()
    monkeypatch.setitem(app.config, "LIST_LIMIT", 2)
    html = client.get("/").data.decode()
    assert html.count('<article class="mistake"') == 2


@pytest.mark.parametrize("which", ["from", "to"])
def test_index_rejects_bad_filter_date(client, which):
    rv = client.get(f"/?{which}=2024-02-31")
    assert rv.status_code == 400
    assert f"Invalid &#39;{which}&#39; date".encode() in rv.data


def test_blank_filters_are_ignored(client, add_mistake):
    add_mistake()
    html = client.get("/?q=+++&topic=&from=&to=").data.decode()
    assert html.count('<article class="mistake"') == 1


def test_not_found(client):
    rv = client.get("/does/not/exist")
    assert rv.status_code == 404
    assert b"Page not found" in rv.data
