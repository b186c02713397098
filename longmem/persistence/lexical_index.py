"""
SQLite FTS5 lexical index over memory text
"""

import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import aiosqlite

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_match_query(query: str) -> Optional[str]:
    """OR-match every distinct word, each quoted so FTS5 syntax never leaks in"""
    seen = []
    for token in _TOKEN_RE.findall(query.lower()):
        if token not in seen:
            seen.append(token)
    if not seen:
        return None
    return " OR ".join(f'"{token}"' for token in seen)


class LexicalIndex:
    """BM25 keyword index kept beside the vector collection"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def initialize(self):
        """Create the FTS5 table if it does not exist yet (raises if FTS5 is unavailable)"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
                    id UNINDEXED,
                    text,
                    scope UNINDEXED,
                    tokenize = 'porter unicode61'
                )
            """)
            await db.commit()

    async def add(self, rows: Iterable[Tuple[str, str, str]]):
        """Insert (id, text, scope) rows"""
        rows = list(rows)
        if not rows:
            return
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "INSERT INTO memories_fts (id, text, scope) VALUES (?, ?, ?)",
                rows
            )
            await db.commit()

    async def delete(self, ids: Sequence[str]):
        """Remove rows by memory id"""
        if not ids:
            return
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "DELETE FROM memories_fts WHERE id = ?",
                [(memory_id,) for memory_id in ids]
            )
            await db.commit()

    async def count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM memories_fts") as cursor:
                row = await cursor.fetchone()
                return int(row[0]) if row else 0

    async def search(
        self,
        query: str,
        limit: int,
        scope_filter: Optional[List[str]] = None
    ) -> List[Tuple[str, float]]:
        """
        Keyword search ranked by BM25.

        Returns:
            (memory id, raw score) pairs, best first; raw score is the negated
            FTS5 bm25() rank, so larger is more relevant
        """
        match = build_match_query(query)
        if match is None:
            return []

        sql = "SELECT id, bm25(memories_fts) AS rank FROM memories_fts WHERE memories_fts MATCH ?"
        params: list = [match]

        if scope_filter:
            placeholders = ", ".join("?" for _ in scope_filter)
            sql += f" AND (scope IN ({placeholders}) OR scope IS NULL OR scope = '')"
            params.extend(scope_filter)

        sql += " ORDER BY rank LIMIT ?"
        params.append(limit)

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()

        return [(row[0], -float(row[1])) for row in rows]
