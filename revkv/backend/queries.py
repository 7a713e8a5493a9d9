"""
SQL schema and query templates for the SQLite revision log.

Every statement the SQLite backend issues is a module-level constant,
built once at import. Parameters are always bound, never formatted in.

Table schema:
    revkv:
        - id INTEGER PRIMARY KEY AUTOINCREMENT (the revision)
        - name TEXT (key)
        - created INTEGER (0/1)
        - deleted INTEGER (0/1)
        - create_revision INTEGER
        - prev_revision INTEGER (reserved, never populated)
        - lease INTEGER (reserved)
        - value BLOB
        - old_value BLOB
        - UNIQUE (name, prev_revision)

How to change safely:
    - DDL must stay idempotent (IF NOT EXISTS)
    - Every read path must go through the max-id-per-name join
"""

from __future__ import annotations

TABLE = "revkv"

SCHEMA: tuple[str, ...] = (
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0,
        create_revision INTEGER NOT NULL DEFAULT 0,
        prev_revision INTEGER,
        lease INTEGER,
        value BLOB,
        old_value BLOB
    )
    """,
    f"CREATE INDEX IF NOT EXISTS {TABLE}_name_index ON {TABLE} (name)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_name_id_index ON {TABLE} (name, id)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_id_deleted_index ON {TABLE} (id, deleted)",
    f"CREATE INDEX IF NOT EXISTS {TABLE}_prev_revision_index ON {TABLE} (prev_revision)",
    # Reserved for compaction markers; unreachable while prev_revision stays NULL
    f"CREATE UNIQUE INDEX IF NOT EXISTS {TABLE}_name_prev_revision_uindex "
    f"ON {TABLE} (name, prev_revision)",
)

COLUMNS = (
    "kv.id, kv.name, kv.created, kv.deleted, kv.create_revision, "
    "kv.prev_revision, kv.lease, kv.value, kv.old_value"
)

CURRENT_REVISION_SQL = f"SELECT COALESCE(MAX(rkv.id), 0) AS id FROM {TABLE} AS rkv"

SIZE_SQL = (
    "SELECT page_count * page_size AS size "
    "FROM pragma_page_count(), pragma_page_size()"
)

INSERT_SQL = f"""
    INSERT INTO {TABLE} (name, created, deleted, create_revision,
                         prev_revision, lease, value, old_value)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

# Exact keys compare with '=' so '%', '_' and case are literal.
# Hierarchical prefixes use a half-open range on the binary collation,
# which keeps the (name, id) index usable.
_EXACT_MATCH = "mkv.name = ?"
_PREFIX_MATCH = "mkv.name >= ? AND mkv.name < ?"


def _list_sql(match: str) -> str:
    return f"""
        SELECT {COLUMNS}
        FROM {TABLE} AS kv
        JOIN (
            SELECT MAX(mkv.id) AS id
            FROM {TABLE} AS mkv
            WHERE {match}
            GROUP BY mkv.name
        ) maxkv ON maxkv.id = kv.id
        WHERE (kv.deleted = 0 OR ?)
        ORDER BY kv.id ASC
    """


def _count_sql(list_sql: str) -> str:
    return f"SELECT COUNT(c.id) AS count FROM ({list_sql}) c"


LIST_EXACT_SQL = _list_sql(_EXACT_MATCH)
LIST_PREFIX_SQL = _list_sql(_PREFIX_MATCH)
LIST_EXACT_LIMIT_SQL = LIST_EXACT_SQL + " LIMIT ?"
LIST_PREFIX_LIMIT_SQL = LIST_PREFIX_SQL + " LIMIT ?"

COUNT_EXACT_SQL = _count_sql(LIST_EXACT_SQL)
COUNT_PREFIX_SQL = _count_sql(LIST_PREFIX_SQL)


def prefix_upper_bound(prefix: str) -> str:
    """Smallest string greater than every string starting with prefix.

    Python compares str by code point, which matches SQLite's BINARY
    collation over UTF-8 text.
    """
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


def match_params(prefix: str, hierarchical: bool) -> tuple[str, ...]:
    """Bind parameters for the name filter of a visibility query."""
    if hierarchical:
        return (prefix, prefix_upper_bound(prefix))
    return (prefix,)
