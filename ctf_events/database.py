"""
Database operations for CTF events.
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from .errors import ConflictError, NotFoundError
from .models import (
    AnswerRecord,
    Category,
    Event,
    Hint,
    Participant,
    Question,
    QuestionSet,
    Solution,
    utcnow,
)
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

QUESTION_COLUMNS = (
    "title",
    "description",
    "points",
    "difficulty",
    "product",
    "environment",
    "answer",
    "hint",
    "solution",
    "active",
)
QUESTION_SET_COLUMNS = ("title", "description", "categories", "active")
EVENT_COLUMNS = (
    "name",
    "description",
    "question_set_ref",
    "snapshot",
    "event_code",
    "event_date",
    "duration",
    "active",
)


def _now() -> str:
    return utcnow().isoformat()


class DatabaseManager:
    """Manages database operations with per-call connections and caching."""

    def __init__(
        self,
        db_path: str,
        config: Any,
    ) -> None:
        self.db_path = db_path
        self.config = config
        # Simple in-memory cache with TTL
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._cache_ttl = 30  # 30 seconds TTL

    def _get_cache_key(self, *args: Any) -> str:
        """
        Generate a cache key from arguments.

        @param args: Variable arguments to create cache key from
        @return: String cache key generated from arguments
        """
        return ":".join(str(arg) for arg in args)

    def _get_from_cache(
        self,
        cache_key: str,
    ) -> Optional[Any]:
        """
        Get value from cache if valid.

        @param cache_key: String cache key to lookup
        @return: Cached data if valid, None if expired or not found
        """
        if cache_key in self._cache:
            data, timestamp = self._cache[cache_key]

            if time.time() - timestamp < self._cache_ttl:
                return data
            else:
                del self._cache[cache_key]
        return None

    def _set_cache(
        self,
        cache_key: str,
        data: Any,
    ) -> None:
        self._cache[cache_key] = (data, time.time())

    def _invalidate_cache(
        self,
        pattern: Optional[str] = None,
    ) -> None:
        """
        Invalidate cache entries matching pattern or all if None.

        @param pattern: Optional string pattern to match cache keys against
        """
        if pattern is None:
            self._cache.clear()
        else:
            keys_to_remove = [k for k in self._cache if pattern in k]
            for key in keys_to_remove:
                del self._cache[key]

    def invalidate_leaderboard(self, event_id: int) -> None:
        self._invalidate_cache(self._get_cache_key("leaderboard", event_id) + ":")

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection in autocommit mode with foreign keys enforced.

        Statements commit individually unless wrapped in transaction().
        """
        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection holding the database write lock until exit.

        BEGIN IMMEDIATE serializes writers, so a read-check-write sequence
        inside the block cannot interleave with another one.
        """
        async with self.connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            else:
                await db.execute("COMMIT")

    @asynccontextmanager
    async def _use(
        self,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> AsyncIterator[aiosqlite.Connection]:
        if conn is not None:
            yield conn
        else:
            async with self.connect() as db:
                yield db

    async def init_db(self) -> None:
        """
        Initialize the SQLite database with schema and indexes.

        Creates tables, indexes, and performs schema migrations if needed.
        """
        async with self.connect() as db:
            # Enable WAL mode for better concurrent access
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.execute("PRAGMA temp_store=MEMORY")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS questions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    points INTEGER NOT NULL CHECK (points > 0),
                    difficulty TEXT NOT NULL,
                    product TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    hint TEXT NOT NULL,
                    solution TEXT NOT NULL,
                    created_by TEXT NOT NULL DEFAULT '',
                    creator_email TEXT NOT NULL DEFAULT '',
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS question_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    categories TEXT NOT NULL DEFAULT '[]',
                    created_by TEXT NOT NULL DEFAULT '',
                    creator_email TEXT NOT NULL DEFAULT '',
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    question_set_ref INTEGER NOT NULL,
                    snapshot TEXT NOT NULL,
                    event_code TEXT NOT NULL,
                    event_date TEXT NOT NULL,
                    duration INTEGER NOT NULL DEFAULT 60,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_by TEXT NOT NULL DEFAULT '',
                    creator_email TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL DEFAULT '',
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    organization TEXT NOT NULL DEFAULT '',
                    joined_at TEXT NOT NULL,
                    score INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (event_id, user_id)
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS answers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    question_id INTEGER NOT NULL,
                    question_title TEXT NOT NULL,
                    category_name TEXT NOT NULL,
                    user_answer TEXT NOT NULL,
                    is_correct INTEGER NOT NULL,
                    hint_used INTEGER NOT NULL DEFAULT 0,
                    points_awarded INTEGER NOT NULL,
                    credited INTEGER NOT NULL DEFAULT 0,
                    submitted_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS hint_requests (
                    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    question_id INTEGER NOT NULL,
                    requested_at TEXT NOT NULL,
                    PRIMARY KEY (event_id, user_id, question_id)
                )
            """)

            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_event_code
                ON events(event_code)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_event_question_set
                ON events(question_set_ref)
            """)
            # At most one point-granting row per participant and question
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_answers_credit
                ON answers(event_id, user_id, question_id) WHERE credited = 1
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_answers_event_user
                ON answers(event_id, user_id, submitted_at)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_participants_score
                ON participants(event_id, score DESC, joined_at ASC)
            """)

            await self._migrate_schema(db)

    async def _migrate_schema(
        self,
        db: aiosqlite.Connection,
    ) -> None:
        """
        Handle database schema migrations.

        @param db: Active database connection
        """
        cursor = await db.execute("PRAGMA table_info(questions)")
        columns = await cursor.fetchall()
        column_names = [column[1] for column in columns]

        if "environment" not in column_names:
            logger.info("Migrating database schema to add questions.environment column...")
            await db.execute(
                "ALTER TABLE questions ADD COLUMN environment TEXT NOT NULL DEFAULT ''"
            )
            logger.info("Schema migration completed.")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_question(row: aiosqlite.Row) -> Question:
        return Question(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            points=row["points"],
            difficulty=row["difficulty"],
            product=row["product"],
            environment=row["environment"],
            answer=row["answer"],
            hint=Hint.from_dict(json.loads(row["hint"])),
            solution=Solution.from_dict(json.loads(row["solution"])),
            created_by=row["created_by"],
            creator_email=row["creator_email"],
            active=bool(row["active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_question_set(row: aiosqlite.Row) -> QuestionSet:
        return QuestionSet(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            categories=[Category.from_dict(c) for c in json.loads(row["categories"])],
            created_by=row["created_by"],
            creator_email=row["creator_email"],
            active=bool(row["active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        return Event(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            question_set_ref=row["question_set_ref"],
            snapshot=Snapshot.from_dict(json.loads(row["snapshot"])),
            event_code=row["event_code"],
            event_date=row["event_date"],
            duration=row["duration"],
            active=bool(row["active"]),
            created_by=row["created_by"],
            creator_email=row["creator_email"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_answer(row: aiosqlite.Row) -> AnswerRecord:
        return AnswerRecord(
            id=row["id"],
            event_id=row["event_id"],
            user_id=row["user_id"],
            question_id=row["question_id"],
            question_title=row["question_title"],
            category_name=row["category_name"],
            user_answer=row["user_answer"],
            is_correct=bool(row["is_correct"]),
            hint_used=bool(row["hint_used"]),
            points_awarded=row["points_awarded"],
            credited=bool(row["credited"]),
            submitted_at=row["submitted_at"],
        )

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        """Encode a model value for storage in the given column."""
        if column in ("hint", "solution", "snapshot"):
            return json.dumps(value.to_dict())
        if column == "categories":
            return json.dumps([c.to_dict() for c in value])
        if column == "active":
            return int(bool(value))
        return value

    async def _update_columns(
        self,
        db: aiosqlite.Connection,
        table: str,
        allowed: Tuple[str, ...],
        row_id: int,
        fields: Dict[str, Any],
    ) -> int:
        columns = [c for c in allowed if c in fields]
        assignments = ", ".join(f"{c} = ?" for c in columns + ["updated_at"])
        values = [self._encode(c, fields[c]) for c in columns] + [_now(), row_id]
        cursor = await db.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            values,
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def create_question(
        self,
        title: str,
        description: str,
        points: int,
        difficulty: str,
        product: str,
        answer: str,
        hint: Hint,
        solution: Solution,
        environment: str = "",
        created_by: str = "",
        creator_email: str = "",
        active: bool = True,
    ) -> Question:
        """
        Insert a new catalog question.

        @return: The stored question with its assigned id
        """
        now = _now()
        async with self.connect() as db:
            cursor = await db.execute(
                "INSERT INTO questions (title, description, points, difficulty, product, "
                "environment, answer, hint, solution, created_by, creator_email, active, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    title,
                    description,
                    points,
                    difficulty,
                    product,
                    environment,
                    answer,
                    json.dumps(hint.to_dict()),
                    json.dumps(solution.to_dict()),
                    created_by,
                    creator_email,
                    int(active),
                    now,
                    now,
                ),
            )
            question_id = cursor.lastrowid

        logger.info("Created question %s (%s)", question_id, title)
        return await self.get_question(question_id)

    async def get_question(
        self,
        question_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Question:
        """
        Fetch a catalog question.

        @raise NotFoundError: If the question does not exist
        """
        async with self._use(conn) as db:
            cursor = await db.execute("SELECT * FROM questions WHERE id = ?", (question_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("Question not found")
        return self._row_to_question(row)

    async def get_questions_by_ids(
        self,
        question_ids: List[int],
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Dict[int, Question]:
        """
        Fetch several questions at once; missing ids are simply absent.

        @param question_ids: Ids to resolve
        @return: Mapping of id to question
        """
        if not question_ids:
            return {}
        placeholders = ", ".join("?" for _ in question_ids)
        async with self._use(conn) as db:
            cursor = await db.execute(
                f"SELECT * FROM questions WHERE id IN ({placeholders})",
                list(question_ids),
            )
            rows = await cursor.fetchall()
        return {row["id"]: self._row_to_question(row) for row in rows}

    async def list_questions(self) -> List[Question]:
        async with self.connect() as db:
            cursor = await db.execute("SELECT * FROM questions ORDER BY created_at DESC, id DESC")
            rows = await cursor.fetchall()
        return [self._row_to_question(row) for row in rows]

    async def update_question(
        self,
        question_id: int,
        fields: Dict[str, Any],
    ) -> Question:
        """
        Apply a partial update to a catalog question.

        @param fields: Column name to new value; hint/solution are model values
        @raise NotFoundError: If the question does not exist
        """
        async with self.connect() as db:
            updated = await self._update_columns(
                db, "questions", QUESTION_COLUMNS, question_id, fields
            )
        if not updated:
            raise NotFoundError("Question not found")
        return await self.get_question(question_id)

    async def delete_question(self, question_id: int) -> None:
        async with self.connect() as db:
            cursor = await db.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        if not cursor.rowcount:
            raise NotFoundError("Question not found")

    # ------------------------------------------------------------------
    # Question sets
    # ------------------------------------------------------------------

    async def create_question_set(
        self,
        title: str,
        description: str,
        categories: List[Category],
        created_by: str = "",
        creator_email: str = "",
        active: bool = True,
    ) -> QuestionSet:
        now = _now()
        async with self.connect() as db:
            cursor = await db.execute(
                "INSERT INTO question_sets (title, description, categories, created_by, "
                "creator_email, active, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    title,
                    description,
                    self._encode("categories", categories),
                    created_by,
                    creator_email,
                    int(active),
                    now,
                    now,
                ),
            )
            question_set_id = cursor.lastrowid

        logger.info("Created question set %s (%s)", question_set_id, title)
        return await self.get_question_set(question_set_id)

    async def get_question_set(
        self,
        question_set_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> QuestionSet:
        """
        Fetch a question set.

        @raise NotFoundError: If the set does not exist
        """
        async with self._use(conn) as db:
            cursor = await db.execute(
                "SELECT * FROM question_sets WHERE id = ?", (question_set_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("Question set not found")
        return self._row_to_question_set(row)

    async def list_question_sets(self) -> List[QuestionSet]:
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT * FROM question_sets ORDER BY created_at DESC, id DESC"
            )
            rows = await cursor.fetchall()
        return [self._row_to_question_set(row) for row in rows]

    async def update_question_set(
        self,
        question_set_id: int,
        fields: Dict[str, Any],
    ) -> QuestionSet:
        async with self.connect() as db:
            updated = await self._update_columns(
                db, "question_sets", QUESTION_SET_COLUMNS, question_set_id, fields
            )
        if not updated:
            raise NotFoundError("Question set not found")
        return await self.get_question_set(question_set_id)

    async def delete_question_set(self, question_set_id: int) -> None:
        async with self.connect() as db:
            cursor = await db.execute(
                "DELETE FROM question_sets WHERE id = ?", (question_set_id,)
            )
        if not cursor.rowcount:
            raise NotFoundError("Question set not found")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(
        self,
        name: str,
        description: str,
        question_set_ref: int,
        snapshot: Snapshot,
        event_code: str,
        event_date: str,
        duration: int = 60,
        active: bool = True,
        created_by: str = "",
        creator_email: str = "",
    ) -> Event:
        """
        Insert an event with its embedded snapshot.

        @raise ConflictError: If the event code is already in use
        """
        now = _now()
        try:
            async with self.connect() as db:
                cursor = await db.execute(
                    "INSERT INTO events (name, description, question_set_ref, snapshot, "
                    "event_code, event_date, duration, active, created_by, creator_email, "
                    "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        name,
                        description,
                        question_set_ref,
                        self._encode("snapshot", snapshot),
                        event_code,
                        event_date,
                        duration,
                        int(active),
                        created_by,
                        creator_email,
                        now,
                        now,
                    ),
                )
                event_id = cursor.lastrowid
        except aiosqlite.IntegrityError as e:
            raise ConflictError("Event code already in use") from e

        logger.info("Created event %s (%s) with code %s", event_id, name, event_code)
        return await self.get_event(event_id)

    async def get_event(
        self,
        event_id: int,
        conn: Optional[aiosqlite.Connection] = None,
        with_participants: bool = True,
    ) -> Event:
        """
        Load an event document: snapshot and, optionally, its roster.

        @raise NotFoundError: If the event does not exist
        """
        async with self._use(conn) as db:
            cursor = await db.execute("SELECT * FROM events WHERE id = ?", (event_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("Event not found")
            event = self._row_to_event(row)
            if with_participants:
                event.participants = await self.get_participants(event_id, conn=db)
        return event

    async def get_event_by_code(
        self,
        event_code: str,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Optional[Event]:
        async with self._use(conn) as db:
            cursor = await db.execute(
                "SELECT id FROM events WHERE event_code = ?", (event_code,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self.get_event(row["id"], conn=db)

    async def event_code_in_use(
        self,
        event_code: str,
        exclude_event_id: Optional[int] = None,
    ) -> bool:
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM events WHERE event_code = ? AND id != ?",
                (event_code, exclude_event_id or -1),
            )
            return await cursor.fetchone() is not None

    async def list_events(
        self,
        active_only: bool = False,
        user_id: Optional[str] = None,
    ) -> List[Event]:
        """
        List events, newest event date first.

        @param active_only: Only events flagged active
        @param user_id: Only events this user has joined
        @return: Events without their rosters
        """
        query = "SELECT e.* FROM events e"
        params: List[Any] = []
        clauses = []
        if user_id is not None:
            query += " JOIN participants p ON p.event_id = e.id"
            clauses.append("p.user_id = ?")
            params.append(user_id)
        if active_only:
            clauses.append("e.active = 1")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY e.event_date DESC, e.id DESC"

        async with self.connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def update_event(
        self,
        event_id: int,
        fields: Dict[str, Any],
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        """
        Apply a partial update to an event row.

        @param fields: Column name to new value; "snapshot" takes a Snapshot
        @raise NotFoundError: If the event does not exist
        @raise ConflictError: If a new event code collides with another event
        """
        try:
            async with self._use(conn) as db:
                updated = await self._update_columns(db, "events", EVENT_COLUMNS, event_id, fields)
        except aiosqlite.IntegrityError as e:
            raise ConflictError("Event code already in use") from e
        if not updated:
            raise NotFoundError("Event not found")

    async def save_snapshot(
        self,
        event_id: int,
        snapshot: Snapshot,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        await self.update_event(event_id, {"snapshot": snapshot}, conn=conn)

    async def delete_event(self, event_id: int) -> None:
        """Delete an event; roster, ledger and hint log cascade."""
        async with self.connect() as db:
            cursor = await db.execute("DELETE FROM events WHERE id = ?", (event_id,))
        if not cursor.rowcount:
            raise NotFoundError("Event not found")
        self.invalidate_leaderboard(event_id)

    async def find_event_ids_by_question_set(self, question_set_id: int) -> List[int]:
        async with self.connect() as db:
            cursor = await db.execute(
                "SELECT id FROM events WHERE question_set_ref = ? ORDER BY id",
                (question_set_id,),
            )
            return [row["id"] for row in await cursor.fetchall()]

    async def find_event_ids_embedding_question(self, question_id: int) -> List[int]:
        """
        Find every event whose snapshot embeds the given catalog question.

        @param question_id: originalId to search for
        @return: Event ids in ascending order
        """
        async with self.connect() as db:
            cursor = await db.execute(
                """
                SELECT DISTINCT e.id
                FROM events e,
                     json_each(e.snapshot, '$.categories') AS c,
                     json_each(c.value, '$.questions') AS q
                WHERE json_extract(q.value, '$.originalId') = ?
                ORDER BY e.id
            """,
                (question_id,),
            )
            return [row["id"] for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def add_participant(
        self,
        participant: Participant,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        """
        Add a user to an event roster.

        @raise ConflictError: If the user already joined
        """
        try:
            async with self._use(conn) as db:
                await db.execute(
                    "INSERT INTO participants (event_id, user_id, display_name, email, "
                    "first_name, last_name, organization, joined_at, score) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)",
                    (
                        participant.event_id,
                        participant.user_id,
                        participant.display_name,
                        participant.email,
                        participant.first_name,
                        participant.last_name,
                        participant.organization,
                        participant.joined_at or _now(),
                    ),
                )
        except aiosqlite.IntegrityError as e:
            raise ConflictError("You have already joined this event") from e
        self.invalidate_leaderboard(participant.event_id)

    async def get_participants(
        self,
        event_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> List[Participant]:
        """
        Load the roster with each participant's credited question ids.

        @param event_id: Event whose roster to load
        @return: Participants in join order
        """
        async with self._use(conn) as db:
            cursor = await db.execute(
                "SELECT * FROM participants WHERE event_id = ? ORDER BY joined_at, user_id",
                (event_id,),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                "SELECT user_id, question_id FROM answers "
                "WHERE event_id = ? AND credited = 1 ORDER BY id",
                (event_id,),
            )
            credits = await cursor.fetchall()

        answered: Dict[str, List[int]] = {}
        for user_id, question_id in credits:
            answered.setdefault(user_id, []).append(question_id)

        return [
            Participant(
                event_id=row["event_id"],
                user_id=row["user_id"],
                display_name=row["display_name"],
                email=row["email"],
                first_name=row["first_name"],
                last_name=row["last_name"],
                organization=row["organization"],
                joined_at=row["joined_at"],
                score=row["score"],
                answered_questions=answered.get(row["user_id"], []),
            )
            for row in rows
        ]

    async def add_to_score(
        self,
        event_id: int,
        user_id: str,
        points: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        async with self._use(conn) as db:
            await db.execute(
                "UPDATE participants SET score = score + ? WHERE event_id = ? AND user_id = ?",
                (points, event_id, user_id),
            )

    # ------------------------------------------------------------------
    # Answer ledger and hint log
    # ------------------------------------------------------------------

    async def append_answer(
        self,
        record: AnswerRecord,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> AnswerRecord:
        """
        Append one attempt to the ledger.

        @raise aiosqlite.IntegrityError: If a second credited row is written
            for the same participant and question
        """
        async with self._use(conn) as db:
            cursor = await db.execute(
                "INSERT INTO answers (event_id, user_id, question_id, question_title, "
                "category_name, user_answer, is_correct, hint_used, points_awarded, "
                "credited, submitted_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.event_id,
                    record.user_id,
                    record.question_id,
                    record.question_title,
                    record.category_name,
                    record.user_answer,
                    int(record.is_correct),
                    int(record.hint_used),
                    record.points_awarded,
                    int(record.credited),
                    record.submitted_at,
                ),
            )
        return replace(record, id=cursor.lastrowid)

    async def has_credit(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> bool:
        async with self._use(conn) as db:
            cursor = await db.execute(
                "SELECT 1 FROM answers WHERE event_id = ? AND user_id = ? "
                "AND question_id = ? AND credited = 1",
                (event_id, user_id, question_id),
            )
            return await cursor.fetchone() is not None

    async def list_answers(
        self,
        event_id: int,
        user_id: Optional[str] = None,
    ) -> List[AnswerRecord]:
        """
        Ledger rows for an event, newest first.

        @param user_id: Restrict to one participant
        """
        query = "SELECT * FROM answers WHERE event_id = ?"
        params: List[Any] = [event_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY submitted_at DESC, id DESC"

        async with self.connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_answer(row) for row in rows]

    async def record_hint_request(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
    ) -> bool:
        """
        Record that a hint was disclosed; repeats are ignored.

        @return: True if this was the first disclosure
        """
        async with self.connect() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO hint_requests (event_id, user_id, question_id, "
                "requested_at) VALUES (?, ?, ?, ?)",
                (event_id, user_id, question_id, _now()),
            )
            return cursor.rowcount == 1

    async def hint_disclosed(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> bool:
        async with self._use(conn) as db:
            cursor = await db.execute(
                "SELECT 1 FROM hint_requests WHERE event_id = ? AND user_id = ? "
                "AND question_id = ?",
                (event_id, user_id, question_id),
            )
            return await cursor.fetchone() is not None

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    async def get_leaderboard(
        self,
        event_id: int,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """
        Roster ordered by score (highest first) then join time.

        @param event_id: Event to rank
        @param limit: Maximum number of entries to return
        @return: List of dictionaries with player name, score and solve count
        """
        max_entries = self.config.get("ui", "max_leaderboard_entries")
        # SQLite reads a negative LIMIT as unbounded
        actual_limit = max(1, min(limit, max_entries) if max_entries else limit)

        cache_key = self._get_cache_key("leaderboard", event_id, actual_limit)
        cached_data = self._get_from_cache(cache_key)
        if cached_data is not None:
            return cached_data

        async with self.connect() as db:
            cursor = await db.execute(
                """
                SELECT
                    p.user_id,
                    p.display_name,
                    p.organization,
                    p.score,
                    p.joined_at,
                    (SELECT COUNT(*) FROM answers a
                     WHERE a.event_id = p.event_id AND a.user_id = p.user_id
                       AND a.credited = 1) AS solved
                FROM participants p
                WHERE p.event_id = ?
                ORDER BY p.score DESC, p.joined_at ASC
                LIMIT ?
            """,
                (event_id, actual_limit),
            )
            rows = await cursor.fetchall()

        result = [
            {
                "user": row["user_id"],
                "player": row["display_name"],
                "organization": row["organization"],
                "score": row["score"],
                "solved": row["solved"],
                "joined_at": row["joined_at"],
            }
            for row in rows
        ]
        self._set_cache(cache_key, result)
        return result

    async def print_events_summary(self) -> None:
        """
        Print every event with its top participants to the console.
        """
        print("\n" + "=" * 50)
        print("EVENTS")
        print("=" * 50)

        async with self.connect() as db:
            cursor = await db.execute("""
                SELECT e.name, e.event_code, e.event_date, p.display_name, p.score
                FROM events e
                LEFT JOIN participants p ON p.event_id = e.id
                ORDER BY e.event_date DESC, e.id, p.score DESC, p.joined_at ASC
            """)
            rows = await cursor.fetchall()

        if not rows:
            print("No events yet")
            return

        current_event = None
        position = 0

        for name, code, event_date, player, score in rows:
            if (name, code) != current_event:
                current_event = (name, code)
                position = 0
                print(f"\n{name} [{code}] {event_date[:16]}:")
                print("-" * 20)

            if player is None:
                print("   No participants yet")
                continue

            position += 1
            print(f"{position:2d}. {player:<20} Score: {score:5d}")
