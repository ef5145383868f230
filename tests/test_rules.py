"""
tests/test_rules.py
"""
from __future__ import annotations

import pytest

from mistakelog.app import app, render_markdown_html


def test_rules_view_lists_cards_in_search_order(client, add_mistake):
    add_mistake(date="2024-01-01", fix_rule="Older rule")
    add_mistake(date="2024-02-01", fix_rule="Newer rule")

    html = client.get("/rules").data.decode()
    assert html.count('<article class="rule-card"') == 2
    assert html.index("Newer rule") < html.index("Older rule")
    assert "2 rules" in html


def test_rules_view_filters(client, add_mistake):
    add_mistake(topic="graphs", fix_rule="Graph rule")
    add_mistake(topic="trees", fix_rule="Tree rule")

    html = client.get("/rules?topic=trees").data.decode()
    assert "Tree rule" in html
    assert "Graph rule" not in html
    assert "1 rule\n" in html


def test_rules_view_renders_markdown(client, add_mistake):
    add_mistake(fix_rule="Always **sort** first", pattern_to_remember="`i < j`")
    html = client.get("/rules").data.decode()
    assert "<strong>sort</strong>" in html
    assert "<code>i &lt; j</code>" in html


def test_rules_view_escapes_raw_html(client, add_mistake):
    add_mistake(fix_rule="<script>alert(1)</script>")
    html = client.get("/rules").data.decode()
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_rules_cap(client, add_mistake, monkeypatch):
    for _ in range(3):
        add_mistake()
    monkeypatch.setitem(app.config, "RULES_LIMIT", 1)
    html = client.get("/rules").data.decode()
    assert html.count('<article class="rule-card"') == 1


@pytest.mark.parametrize("query", ["from=2024-1-1", "to=31-01-2024"])
def test_rules_rejects_bad_dates(client, query):
    assert client.get(f"/rules?{query}").status_code == 400


def test_markdown_helper_blank():
    assert render_markdown_html("") == ""
    assert render_markdown_html(None) == ""


@pytest.mark.parametrize("source", [
    "[click](javascript:alert(document.cookie))",
    "[click](JaVaScRiPt:alert(1))",
    "[click](data:text/html;base64,PHNjcmlwdD4=)",
])
def test_rules_view_drops_script_links(client, add_mistake, source):
    add_mistake(fix_rule=source)
    html = client.get("/rules").data.decode()
    assert "click</a>" in html
    assert 'href="javascript:' not in html.lower()
    assert 'href="data:' not in html


def test_markdown_drops_script_image_source():
    html = render_markdown_html("![x](javascript:alert(1))")
    assert "<img" in html
    assert "src=" not in html


@pytest.mark.parametrize("url", [
    "https://example.com/a?b=1",
    "http://example.com",
    "mailto:me@example.com",
    "/rules?topic=graphs",
    "#top",
    "notes/graphs.md",
])
def test_markdown_keeps_safe_links(url):
    assert f'href="{url}"' in render_markdown_html(f"[ok]({url})")
