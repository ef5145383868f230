#!/usr/bin/env python3
"""
A single-file local log of mistakes and the rules learned from them.
"""

import csv
import io
import os
import re
import secrets
import sqlite3
from datetime import date, datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import NamedTuple
from urllib.parse import urlencode, urlparse

import click
import markdown
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    url_for,
)
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor
from markupsafe import Markup

################################################################################
# Imports & constants
################################################################################

DB_FILE = Path(os.environ.get("MISTAKES_DB", "mistakes.sqlite3"))
SECRET_KEY = os.environ.get("MISTAKES_SECRET_KEY") or secrets.token_hex(32)
HOST = os.environ.get("MISTAKES_HOST", "127.0.0.1")
PORT = int(os.environ.get("MISTAKES_PORT", "8080"))

LIST_LIMIT = 200
RULES_LIMIT = 500
EXPORT_LIMIT = 10_000
MAX_ID = 2**63 - 1  # largest SQLite INTEGER

DATE_FMT = "%Y-%m-%d"
DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

# user-editable columns, in table order (also the form field names)
FORM_FIELDS = (
    "topic",
    "date",
    "problem_statement",
    "what_i_missed",
    "fix_rule",
    "pattern_to_remember",
)
# columns searched by the free-text filter
TEXT_FIELDS = (
    "topic",
    "problem_statement",
    "what_i_missed",
    "fix_rule",
    "pattern_to_remember",
)
CSV_HEADER = (
    "id",
    "date",
    "topic",
    "problem_statement",
    "what_i_missed",
    "fix_rule",
    "pattern_to_remember",
    "created_at",
)
SELECT_SQL = (
    "SELECT id, topic, date, problem_statement, what_i_missed, fix_rule, "
    "pattern_to_remember, created_at FROM mistakes"
)

try:
    __version__ = version("mistakelog")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    LIST_LIMIT=LIST_LIMIT,
    RULES_LIMIT=RULES_LIMIT,
    EXPORT_LIMIT=EXPORT_LIMIT,
)
app.logger.setLevel("INFO")

BASE_MD_EXTENSIONS = [
    "sane_lists",
    "pymdownx.superfences",
    "pymdownx.betterem",
    "pymdownx.tilde",
    "pymdownx.mark",
]
SAFE_URL_SCHEMES = {"", "http", "https", "mailto"}
_URL_JUNK_RE = re.compile(r"[\x00-\x20\x7f]+")


def is_safe_url(url: str) -> bool:
    """Relative links and http(s)/mailto only."""
    cleaned = _URL_JUNK_RE.sub("", url)
    scheme, sep, _ = cleaned.partition(":")
    if not sep or "/" in scheme or "?" in scheme or "#" in scheme:
        return True  # no scheme: relative path, query or fragment
    return scheme.lower() in SAFE_URL_SCHEMES


class SafeLinkTreeprocessor(Treeprocessor):
    """Drop ``href``/``src`` values that point at a script scheme."""

    def run(self, root):
        for el in root.iter():
            for attr in ("href", "src"):
                url = el.get(attr)
                if url is not None and not is_safe_url(url):
                    del el.attrib[attr]


class EscapeHtmlExtension(Extension):
    """
    Show raw HTML typed into a note as text instead of markup, and keep
    links and images to http, https, mailto or relative targets.
    """

    def extendMarkdown(self, md):
        md.preprocessors.deregister("html_block")
        md.inlinePatterns.deregister("html")
        # after "inline" (20), which builds the <a>/<img> elements
        md.treeprocessors.register(SafeLinkTreeprocessor(md), "safe_links", 5)


def _markdown_extensions():
    return BASE_MD_EXTENSIONS + [EscapeHtmlExtension()]


def render_markdown_html(text: str | None) -> str:
    if not text:
        return ""
    # one renderer per call; Markdown instances keep state between conversions
    return markdown.markdown(text, extensions=_markdown_extensions())


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(render_markdown_html(text))


@app.template_filter("ts")
def ts_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


###############################################################################
# Database helpers
###############################################################################
_SCHEMA_READY: set[str] = set()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS mistakes (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  topic TEXT NOT NULL,
  date TEXT NOT NULL, -- YYYY-MM-DD
  problem_statement TEXT NOT NULL,
  what_i_missed TEXT NOT NULL,
  fix_rule TEXT NOT NULL,
  pattern_to_remember TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_mistakes_date ON mistakes(date DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_mistakes_topic ON mistakes(topic);
"""


def get_db():
    if "db" not in g:
        path = app.config["DATABASE"]
        g.db = sqlite3.connect(path)
        g.db.row_factory = sqlite3.Row
        # an in-memory database is new for every connection
        if path == ":memory:" or path not in _SCHEMA_READY:
            init_db(g.db)
            _SCHEMA_READY.add(path)
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db=None):
    """Create the mistakes table and its indexes. Safe to run on every start."""
    db = db if db is not None else get_db()
    db.executescript(SCHEMA_SQL)
    db.commit()
    app.logger.info("Schema ready in %s", app.config["DATABASE"])


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


###############################################################################
# Mistakes repository
###############################################################################
class MistakeLogError(Exception):
    """Base class for errors raised by the repository."""


class StorageError(MistakeLogError):
    """
    The database failed a statement.

    The message is safe to show to the user; the driver error is chained
    as ``__cause__``.
    """


class MistakeNotFound(MistakeLogError, LookupError):
    def __init__(self, mistake_id: int):
        super().__init__(f"No mistake with id {mistake_id}")
        self.mistake_id = mistake_id


class Filters(NamedTuple):
    """Optional search filters; an empty string means "not set"."""

    term: str = ""
    topic: str = ""
    date_from: str = ""
    date_to: str = ""

    @property
    def active(self) -> bool:
        return any(self)

    def as_args(self) -> dict[str, str]:
        """Query-string form (``q``, ``topic``, ``from``, ``to``)."""
        return {
            "q": self.term,
            "topic": self.topic,
            "from": self.date_from,
            "to": self.date_to,
        }


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def filter_clause(filters: Filters) -> tuple[str, list]:
    """
    Turn *filters* into ``(where_sql, params)``.

    Every value is bound through a ``?`` placeholder; *where_sql* is empty
    when no filter is active. Clauses are ANDed; the text term matches a
    literal substring of any text column.
    """
    where: list[str] = []
    params: list = []

    if filters.topic:
        where.append("topic = ?")
        params.append(filters.topic)
    if filters.date_from:
        where.append("date >= ?")
        params.append(filters.date_from)
    if filters.date_to:
        where.append("date <= ?")
        params.append(filters.date_to)

    term = filters.term.strip()
    if term:
        like = f"%{_like_escape(term)}%"
        where.append(
            "("
            + " OR ".join(f"{col} LIKE ? ESCAPE '\\'" for col in TEXT_FIELDS)
            + ")"
        )
        params.extend([like] * len(TEXT_FIELDS))

    return " AND ".join(where), params


def search_mistakes(filters: Filters, *, limit: int, db) -> list[sqlite3.Row]:
    """Newest date first, ties broken by newest id, at most *limit* rows."""
    where, params = filter_clause(filters)
    sql = SELECT_SQL
    if where:
        sql += f" WHERE {where}"
    sql += " ORDER BY date DESC, id DESC LIMIT ?"
    try:
        return db.execute(sql, (*params, limit)).fetchall()
    except sqlite3.Error as exc:
        raise StorageError("Failed to load mistakes") from exc


def insert_mistake(fields: dict[str, str], *, db) -> int:
    """
    Store a validated mistake and return its new id.

    *fields* carries the six form fields plus ``created_at``.
    """
    cols = FORM_FIELDS + ("created_at",)
    try:
        cur = db.execute(
            f"INSERT INTO mistakes ({', '.join(cols)}) VALUES (?,?,?,?,?,?,?)",
            tuple(fields[c] for c in cols),
        )
        db.commit()
    except sqlite3.Error as exc:
        raise StorageError("Failed to save mistake") from exc
    return int(cur.lastrowid)


def get_mistake(mistake_id: int, *, db) -> sqlite3.Row:
    try:
        row = db.execute(f"{SELECT_SQL} WHERE id = ?", (mistake_id,)).fetchone()
    except sqlite3.Error as exc:
        raise StorageError("Failed to load mistake") from exc
    if row is None:
        raise MistakeNotFound(mistake_id)
    return row


def update_mistake(mistake_id: int, fields: dict[str, str], *, db) -> None:
    """Overwrite the six editable fields; ``id`` and ``created_at`` stay."""
    assignments = ", ".join(f"{c} = ?" for c in FORM_FIELDS)
    try:
        cur = db.execute(
            f"UPDATE mistakes SET {assignments} WHERE id = ?",
            (*(fields[c] for c in FORM_FIELDS), mistake_id),
        )
        db.commit()
    except sqlite3.Error as exc:
        raise StorageError("Failed to update mistake") from exc
    if cur.rowcount == 0:
        raise MistakeNotFound(mistake_id)


def delete_mistake(mistake_id: int, *, db) -> None:
    """Remove a mistake; a missing id is not an error."""
    try:
        db.execute("DELETE FROM mistakes WHERE id = ?", (mistake_id,))
        db.commit()
    except sqlite3.Error as exc:
        raise StorageError("Failed to delete mistake") from exc


def list_topics(*, db) -> list[str]:
    try:
        rows = db.execute(
            "SELECT DISTINCT topic FROM mistakes ORDER BY topic COLLATE NOCASE"
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError("Failed to load topics") from exc
    return [r["topic"] for r in rows]


###############################################################################
# Input helpers
###############################################################################
def is_valid_date(value: str | None) -> bool:
    """Strict ``YYYY-MM-DD`` that names a real calendar day."""
    if not value or not DATE_RE.fullmatch(value):
        return False
    try:
        datetime.strptime(value, DATE_FMT)
    except ValueError:
        return False
    return True


def clean_mistake_form(form) -> tuple[dict[str, str], str | None]:
    """
    Trim the six mistake fields out of *form* (any mapping).

    Returns ``(fields, error)``; *error* is a short message for the user,
    or ``None`` when the fields are fit to store.
    """
    fields = {k: (form.get(k) or "").strip() for k in FORM_FIELDS}
    if not all(fields.values()):
        return fields, "All fields are required."
    if not is_valid_date(fields["date"]):
        return fields, "Invalid date format. Use YYYY-MM-DD."
    return fields, None


def parse_id(raw: str | None) -> int | None:
    """Positive integer id, or ``None``."""
    raw = (raw or "").strip()
    if not raw.isascii() or not raw.isdigit():
        return None
    value = int(raw)
    return value if 0 < value <= MAX_ID else None


def request_filters() -> Filters:
    """Read ``q``/``topic``/``from``/``to``; malformed dates are a 400."""
    args = request.args
    filters = Filters(
        term=args.get("q", "").strip(),
        topic=args.get("topic", "").strip(),
        date_from=args.get("from", "").strip(),
        date_to=args.get("to", "").strip(),
    )
    if filters.date_from and not is_valid_date(filters.date_from):
        abort(400, description="Invalid 'from' date. Use YYYY-MM-DD.")
    if filters.date_to and not is_valid_date(filters.date_to):
        abort(400, description="Invalid 'to' date. Use YYYY-MM-DD.")
    return filters


def request_id() -> int:
    """The ``id`` from the query string, else from the form body."""
    raw = request.args.get("id") or request.form.get("id")
    mistake_id = parse_id(raw)
    if mistake_id is None:
        abort(400, description="Missing/invalid id")
    return mistake_id


def same_site_path(target: str | None) -> str | None:
    """
    Reduce *target* to ``path?query`` if it points back at this site,
    otherwise return ``None``.
    """
    if not target:
        return None
    parts = urlparse(target)
    if parts.scheme or parts.netloc:
        if parts.scheme not in ("http", "https") or parts.netloc != request.host:
            return None
    elif not target.startswith("/") or target.startswith(("//", "/\\")):
        return None
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def redirect_back():
    """303 to the page the user came from (``next`` field, then Referer)."""
    target = (
        same_site_path(request.form.get("next"))
        or same_site_path(request.referrer)
        or url_for("index")
    )
    return redirect(target, code=303)


def filters_href(endpoint: str, filters: Filters) -> str:
    params = {k: v for k, v in filters.as_args().items() if v}
    base = url_for(endpoint)
    return f"{base}?{urlencode(params)}" if params else base


def mistakes_csv(rows) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADER)
    for m in rows:
        writer.writerow([m[c] for c in CSV_HEADER])
    return buf.getvalue()


# Expose helpers to templates
app.jinja_env.globals["filters_href"] = filters_href
app.jinja_env.globals["version"] = __version__


###############################################################################
# Templates + Views
###############################################################################


def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or 'Mistake Log' }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<link rel="stylesheet" href="{{ url_for('static', filename='style.css') }}">
<body>
{% macro filter_form(endpoint, filters, topics) -%}
    <form class="filters" method="get" action="{{ url_for(endpoint) }}">
        <input type="search" name="q" placeholder="Search text"
               aria-label="Search text" value="{{ filters.term }}">
        <select name="topic" aria-label="Topic">
            <option value="">All topics</option>
            {% for t in topics %}
            <option value="{{ t }}" {% if t == filters.topic %}selected{% endif %}>{{ t }}</option>
            {% endfor %}
            {% if filters.topic and filters.topic not in topics %}
            <option value="{{ filters.topic }}" selected>{{ filters.topic }}</option>
            {% endif %}
        </select>
        <input type="date" name="from" aria-label="From" value="{{ filters.date_from }}">
        <input type="date" name="to" aria-label="To" value="{{ filters.date_to }}">
        <button>Filter</button>
        {% if filters.active %}<a href="{{ url_for(endpoint) }}">Clear</a>{% endif %}
    </form>
{%- endmacro %}
{% macro mistake_fields(m, topics, today) -%}
    <div class="row">
        <label>Topic
            <input name="topic" list="topic-list" required class="writing-input"
                   value="{{ m['topic'] if m else '' }}">
        </label>
        <label>Date
            <input type="date" name="date" required
                   value="{{ m['date'] if m else today }}">
        </label>
    </div>
    <label>Problem
        <textarea name="problem_statement" rows="2" required class="writing-area">{{ m['problem_statement'] if m else '' }}</textarea>
    </label>
    <label>What I missed
        <textarea name="what_i_missed" rows="2" required class="writing-area">{{ m['what_i_missed'] if m else '' }}</textarea>
    </label>
    <label>Fix rule
        <textarea name="fix_rule" rows="2" required class="writing-area">{{ m['fix_rule'] if m else '' }}</textarea>
    </label>
    <label>Pattern to remember
        <textarea name="pattern_to_remember" rows="2" required class="writing-area">{{ m['pattern_to_remember'] if m else '' }}</textarea>
    </label>
    <datalist id="topic-list">
        {% for t in topics %}<option value="{{ t }}">{% endfor %}
    </datalist>
{%- endmacro %}
<div class="container">
    <header class="site-header">
        <h1><a href="{{ url_for('index') }}">Mistake Log</a></h1>
        <nav aria-label="Primary">
            <a href="{{ url_for('index') }}"
            {% if kind=='index' %}aria-current="page"{% endif %}>Log</a>
            <a href="{{ url_for('rules') }}"
            {% if kind=='rules' %}aria-current="page"{% endif %}>Rules</a>
        </nav>
    </header>
    {% with msgs = get_flashed_messages() %}
    {% if msgs %}
        <div role="status" aria-live="polite" class="toast">
        {% for msg in msgs %}{{ msg }}{% if not loop.last %}<br>{% endif %}{% endfor %}
        </div>
    {% endif %}
    {% endwith %}
    <main id="main-content" role="main">
"""

TEMPL_EPILOG = """
    </main>
    <footer class="site-footer">
        mistakelog <span>v{{ version }}</span>
    </footer>
</div>
</body>
</html>
"""

TEMPL_INDEX = wrap("""
{% block body %}
    <section class="add">
        <h2>Log a mistake</h2>
        <form method="post" action="{{ url_for('add') }}">
            {{ mistake_fields(None, topics, today) }}
            <button>Save</button>
        </form>
    </section>
    <hr>
    {{ filter_form('index', filters, topics) }}
    <p class="count">
        {{ count }} mistake{{ '' if count == 1 else 's' }}
        · <a href="{{ filters_href('export_csv', filters) }}">Export CSV</a>
        · <a href="{{ filters_href('rules', filters) }}">Rule cards</a>
    </p>
    {% for m in mistakes %}
    <article class="mistake" id="m-{{ m['id'] }}">
        <header>
            <span class="pill">{{ m['topic'] }}</span>
            <time datetime="{{ m['date'] }}">{{ m['date'] }}</time>
        </header>
        <dl>
            <dt>Problem</dt><dd>{{ m['problem_statement'] }}</dd>
            <dt>What I missed</dt><dd>{{ m['what_i_missed'] }}</dd>
            <dt>Fix rule</dt><dd>{{ m['fix_rule'] }}</dd>
            <dt>Pattern</dt><dd>{{ m['pattern_to_remember'] }}</dd>
        </dl>
        <footer>
            <a href="{{ url_for('edit', id=m['id']) }}">Edit</a>
            <form method="post" action="{{ url_for('delete', id=m['id']) }}" class="inline"
                  onsubmit="return confirm('Delete this mistake?');">
                <button class="danger">Delete</button>
            </form>
        </footer>
    </article>
    {% else %}
    <p class="empty">No mistakes match.</p>
    {% endfor %}
{% endblock %}
""")

TEMPL_EDIT = wrap("""
{% block body %}
    <h2>Edit mistake #{{ m['id'] }}</h2>
    <form method="post" action="{{ url_for('edit', id=m['id']) }}">
        <input type="hidden" name="next" value="{{ back }}">
        {{ mistake_fields(m, topics, None) }}
        <button>Save changes</button>
        <a href="{{ back }}" style="margin-left:1rem;">Cancel</a>
    </form>
    <p class="meta">Logged {{ m['created_at']|ts }}</p>
    <form method="post" action="{{ url_for('delete', id=m['id']) }}"
          onsubmit="return confirm('Delete this mistake?');">
        <input type="hidden" name="next" value="{{ back }}">
        <button class="danger">Delete</button>
    </form>
{% endblock %}
""")

TEMPL_RULES = wrap("""
{% block body %}
    {{ filter_form('rules', filters, topics) }}
    <p class="count">
        {{ count }} rule{{ '' if count == 1 else 's' }}
        · <a href="{{ filters_href('export_csv', filters) }}">Export CSV</a>
    </p>
    <div class="cards">
    {% for m in items %}
        <article class="rule-card">
            <div class="rule">{{ m['fix_rule']|md }}</div>
            <div class="pattern">{{ m['pattern_to_remember']|md }}</div>
            <details>
                <summary>Context</summary>
                <h4>Problem</h4>
                {{ m['problem_statement']|md }}
                <h4>What I missed</h4>
                {{ m['what_i_missed']|md }}
            </details>
            <footer>
                <span class="pill">{{ m['topic'] }}</span>
                <time datetime="{{ m['date'] }}">{{ m['date'] }}</time>
                · <a href="{{ url_for('edit', id=m['id']) }}">edit</a>
            </footer>
        </article>
    {% else %}
        <p class="empty">No rules match.</p>
    {% endfor %}
    </div>
{% endblock %}
""")


@app.route("/")
def index():
    filters = request_filters()
    db = get_db()
    mistakes = search_mistakes(filters, limit=app.config["LIST_LIMIT"], db=db)
    return render_template_string(
        TEMPL_INDEX,
        title="Mistake Log",
        kind="index",
        filters=filters,
        mistakes=mistakes,
        count=len(mistakes),
        topics=list_topics(db=db),
        today=date.today().isoformat(),
    )


@app.route("/add", methods=["POST"])
def add():
    fields, error = clean_mistake_form(request.form)
    if error:
        abort(400, description=error)

    fields["created_at"] = utc_now().isoformat(timespec="seconds")
    mistake_id = insert_mistake(fields, db=get_db())
    app.logger.info("Added mistake %s", mistake_id)
    flash("Mistake saved.")
    return redirect_back()


@app.route("/edit", methods=["GET", "POST"])
def edit():
    mistake_id = request_id()
    db = get_db()

    if request.method == "POST":
        fields, error = clean_mistake_form(request.form)
        if error:
            abort(400, description=error)
        update_mistake(mistake_id, fields, db=db)
        app.logger.info("Updated mistake %s", mistake_id)
        flash("Mistake updated.")
        return redirect_back()

    m = get_mistake(mistake_id, db=db)
    return render_template_string(
        TEMPL_EDIT,
        title=f"Edit #{m['id']}",
        m=m,
        back=same_site_path(request.referrer) or url_for("index"),
        topics=list_topics(db=db),
    )


@app.route("/delete", methods=["POST"])
def delete():
    mistake_id = request_id()
    delete_mistake(mistake_id, db=get_db())
    app.logger.info("Deleted mistake %s", mistake_id)
    flash("Mistake deleted.")
    return redirect_back()


@app.route("/rules")
def rules():
    filters = request_filters()
    db = get_db()
    items = search_mistakes(filters, limit=app.config["RULES_LIMIT"], db=db)
    return render_template_string(
        TEMPL_RULES,
        title="Rules",
        kind="rules",
        filters=filters,
        items=items,
        count=len(items),
        topics=list_topics(db=db),
    )


@app.route("/export.csv")
def export_csv():
    filters = request_filters()
    rows = search_mistakes(filters, limit=app.config["EXPORT_LIMIT"], db=get_db())
    return Response(
        mistakes_csv(rows),
        mimetype="text/csv",
        headers={"Content-Disposition": 'attachment; filename="mistakes.csv"'},
    )


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "same-origin",  # keeps Referer for redirect_back
        }
    )
    return resp


###############################################################################
# Error pages
###############################################################################
TEMPL_ERROR = wrap("""
{% block body %}
  <h2 style="margin-top:0">{{ heading }}</h2>
  <p>{{ message }}</p>
  <p><a href="{{ url_for('index') }}">Back to the log</a></p>
{% endblock %}
""")


def _error_page(heading: str, message: str, status: int, headers=None):
    return (
        render_template_string(
            TEMPL_ERROR, title=heading, heading=heading, message=message
        ),
        status,
        headers or {},
    )


@app.errorhandler(400)
def bad_request(exc):
    return _error_page("Bad request", exc.description, 400)


@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return _error_page("Page not found", "The page you asked for doesn’t exist.", 404)


@app.errorhandler(MistakeNotFound)
def mistake_not_found(exc):
    return _error_page("Page not found", str(exc), 404)


@app.errorhandler(405)
def method_not_allowed(exc):
    allow = ", ".join(sorted(exc.valid_methods or []))
    return _error_page(
        "Method not allowed",
        f"{request.method} is not supported here.",
        405,
        {"Allow": allow} if allow else None,
    )


@app.errorhandler(StorageError)
def storage_error(exc):
    app.logger.exception(
        "%s on %s %s", exc, request.method, request.path, exc_info=exc
    )
    return _error_page("Internal Server Error", str(exc), 500)


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page. Flask has already logged the traceback; with debug
    on, the Werkzeug debugger is shown instead of this page.
    """
    return _error_page(
        "Internal Server Error", "Something went wrong. Please try again.", 500
    )


###############################################################################
# CLI – schema, CSV export + import
###############################################################################
def _date_option(ctx, param, value):
    value = (value or "").strip()
    if value and not is_valid_date(value):
        raise click.BadParameter("use YYYY-MM-DD")
    return value


@app.cli.command("init-db")
def cli_init_db():
    """Create the mistakes table (no-op if it is already there)."""
    init_db()
    click.secho(f"\n✅  Schema ready in {app.config['DATABASE']}", fg="green")


@app.cli.command("export-csv")
@click.option(
    "--out",
    type=click.Path(dir_okay=False, writable=True),
    help="Write to this file instead of stdout.",
)
@click.option("--q", "term", default="", help="Text that must appear in a field.")
@click.option("--topic", default="", help="Exact topic.")
@click.option("--from", "date_from", default="", callback=_date_option)
@click.option("--to", "date_to", default="", callback=_date_option)
def cli_export_csv(out, term, topic, date_from, date_to):
    """Export mistakes as CSV, newest first."""
    filters = Filters(term.strip(), topic.strip(), date_from, date_to)
    try:
        rows = search_mistakes(filters, limit=app.config["EXPORT_LIMIT"], db=get_db())
    except StorageError as exc:
        raise click.ClickException(str(exc)) from exc

    text = mistakes_csv(rows)
    if not out:
        click.echo(text, nl=False)
        return
    with open(out, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)
    click.secho(f"Exported {len(rows)} mistake(s) to {out}", fg="green")


@app.cli.command("import-csv")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def cli_import_csv(path):
    """Import mistakes from a CSV file in the export format."""
    db = get_db()
    imported = 0
    skipped: list[tuple[int, str]] = []

    with open(path, encoding="utf-8", newline="") as fh:
        reader = csv.DictReader(fh)
        missing = [c for c in FORM_FIELDS if c not in (reader.fieldnames or [])]
        if missing:
            raise click.ClickException(f"Missing column(s): {', '.join(missing)}")

        for row in reader:
            fields, error = clean_mistake_form(row)
            if error:
                skipped.append((reader.line_num, error))
                continue
            fields["created_at"] = (row.get("created_at") or "").strip() or (
                utc_now().isoformat(timespec="seconds")
            )
            try:
                insert_mistake(fields, db=db)
            except StorageError as exc:
                raise click.ClickException(str(exc)) from exc
            imported += 1

    click.secho(f"Imported {imported} mistake(s).", fg="green")
    for line_num, error in skipped:
        click.secho(f"  skipped line {line_num}: {error}", fg="yellow")


###############################################################################
# main
###############################################################################
def main() -> None:
    with app.app_context():
        init_db()  # a broken database stops us here, before serving
    app.run(host=HOST, port=PORT)


if __name__ == "__main__":
    main()
