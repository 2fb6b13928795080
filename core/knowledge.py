import json
import logging
import math
import re
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

log = logging.getLogger(__name__)

CATEGORIES = (
    "strategy",
    "product",
    "sales",
    "partnerships",
    "competitive",
    "market",
    "team",
    "operations",
)
PRIORITIES = ("low", "medium", "high", "urgent")
STATUSES = ("active", "in_progress", "completed", "archived", "cancelled")

DEFAULT_CATEGORY = "strategy"
DEFAULT_PRIORITY = "medium"
DEFAULT_SEARCH_THRESHOLD = 0.1
PLACEHOLDER_TITLE = "Manual Capture"
CAPTURE_TAGS = ("telegram", "captured")

CATEGORY_KEYWORDS: Dict[str, Sequence[str]] = {
    "sales": (
        "pricing", "price", "deal", "client", "customer", "revenue", "enterprise",
        "contract", "sales", "upsell", "churn", "pipeline", "quota",
    ),
    "product": ("feature", "roadmap", "ux", "release", "launch", "product", "onboarding", "mvp"),
    "partnerships": ("partner", "partnership", "integration", "alliance", "collab"),
    "competitive": ("competitor", "competition", "rival", "benchmark"),
    "market": ("market", "trend", "segment", "audience", "tam"),
    "team": ("hire", "hiring", "team", "culture", "headcount", "recruit"),
    "operations": ("process", "ops", "operations", "budget", "cost", "infrastructure", "workflow"),
}

ENHANCE_PROMPT = """Analyze the following business idea/insight and provide a structured response.

Content: "{content}"
Original title: "{title}"

Reply with JSON only:
{{
  "title": "clear title, max 80 characters",
  "description": "summary, max 200 characters",
  "suggestedCategory": "one of: {categories}",
  "suggestedPriority": "one of: {priorities}",
  "suggestedTags": ["tag1", "tag2", "tag3"]
}}"""


def _new_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _shorten(text: str, limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(x * y for x, y in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(x * x for x in vec_a))
    norm_b = math.sqrt(sum(y * y for y in vec_b))
    if not norm_a or not norm_b:
        return 0.0
    return dot / (norm_a * norm_b)


def infer_category(text: str) -> str:
    lowered = (text or "").lower()
    best, best_hits = DEFAULT_CATEGORY, 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if re.search(rf"\b{re.escape(keyword)}\b", lowered))
        if hits > best_hits:
            best, best_hits = category, hits
    return best


def title_from_content(content: str, limit: int = 80) -> str:
    lines = [line.strip() for line in (content or "").splitlines() if line.strip()]
    if not lines:
        return "Strategic Idea"
    return lines[0][:limit]


def extract_json_object(raw: str) -> Optional[dict]:
    start = (raw or "").find("{")
    end = (raw or "").rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


@dataclass
class Reminder:
    id: str
    idea_id: str
    scheduled_for: float
    type: str = "once"
    message: Optional[str] = None
    is_active: bool = True
    is_sent: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Reminder":
        return cls(
            id=row["id"],
            idea_id=row["idea_id"],
            scheduled_for=row["scheduled_for"],
            type=row["type"],
            message=row["message"],
            is_active=bool(row["is_active"]),
            is_sent=bool(row["is_sent"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ideaId": self.idea_id,
            "type": self.type,
            "scheduledFor": self.scheduled_for,
            "message": self.message,
            "isActive": self.is_active,
            "isSent": self.is_sent,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Idea:
    id: str
    title: str
    content: str
    user_id: str
    category: str = DEFAULT_CATEGORY
    priority: str = DEFAULT_PRIORITY
    status: str = "active"
    tags: List[str] = field(default_factory=list)
    chat_id: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    reminders: List[Reminder] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row, reminders: Optional[List[Reminder]] = None) -> "Idea":
        try:
            tags = json.loads(row["tags"] or "[]")
        except json.JSONDecodeError:
            tags = []
        return cls(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            user_id=row["user_id"],
            category=row["category"],
            priority=row["priority"],
            status=row["status"],
            tags=tags,
            chat_id=row["chat_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            reminders=reminders or [],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "tags": list(self.tags),
            "userId": self.user_id,
            "chatId": self.chat_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "reminders": [reminder.to_dict() for reminder in self.reminders],
        }


@dataclass
class IdeaSearchResult:
    idea: Idea
    score: float

    @property
    def distance(self) -> float:
        return 1 - self.score

    def to_dict(self) -> dict:
        return {"idea": self.idea.to_dict(), "score": self.score, "distance": self.distance}


@dataclass
class IdeaFilter:
    user_id: Optional[str] = None
    chat_id: Optional[int] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def where(self) -> tuple:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (
            ("user_id", self.user_id),
            ("chat_id", self.chat_id),
            ("category", self.category),
            ("priority", self.priority),
            ("status", self.status),
        ):
            if value is not None:
                clauses.append(f"{column}=?")
                params.append(value)
        sql = " AND ".join(clauses)
        return (f"WHERE {sql}" if sql else ""), params

    def accepts_tags(self, tags: Sequence[str]) -> bool:
        if not self.tags:
            return True
        return bool(set(self.tags) & set(tags))


class OpenAIEmbedder:
    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        if not response.data:
            raise ValueError("embedding response was empty")
        return list(response.data[0].embedding)


class KnowledgeStore:
    """SQLite-backed idea store with embedding similarity search."""

    def __init__(self, db_path: Path, embedder) -> None:
        self.db_path = Path(db_path)
        self.embedder = embedder
        self.conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        if self.conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ideas(
                  id TEXT PRIMARY KEY,
                  title TEXT NOT NULL,
                  content TEXT NOT NULL,
                  category TEXT NOT NULL,
                  priority TEXT NOT NULL,
                  status TEXT NOT NULL,
                  tags TEXT NOT NULL DEFAULT '[]',
                  user_id TEXT NOT NULL,
                  chat_id INTEGER,
                  created_at REAL NOT NULL,
                  updated_at REAL NOT NULL,
                  embedding TEXT NOT NULL DEFAULT '[]'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminders(
                  id TEXT PRIMARY KEY,
                  idea_id TEXT NOT NULL,
                  type TEXT NOT NULL,
                  scheduled_for REAL NOT NULL,
                  message TEXT,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  is_sent INTEGER NOT NULL DEFAULT 0,
                  created_at REAL NOT NULL,
                  updated_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS ideas_user ON ideas(user_id)")
        self.conn = conn
        log.info("knowledge store ready at %s", self.db_path)

    def _db(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("knowledge store is not initialized")
        return self.conn

    def _reminders_for(self, idea_id: str) -> List[Reminder]:
        rows = self._db().execute(
            "SELECT * FROM reminders WHERE idea_id=? ORDER BY scheduled_for", (idea_id,)
        ).fetchall()
        return [Reminder.from_row(row) for row in rows]

    def _insert_reminders(self, idea_id: str, title: str, schedule: Sequence[float]) -> None:
        now = time.time()
        for when in schedule:
            self._db().execute(
                """
                INSERT INTO reminders(id, idea_id, type, scheduled_for, message, created_at, updated_at)
                VALUES(?, ?, 'once', ?, ?, ?, ?)
                """,
                (_new_id(), idea_id, float(when), f"Review strategic idea: {title}", now, now),
            )

    async def create(
        self,
        *,
        title: str,
        content: str,
        user_id: str,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Sequence[str] = (),
        chat_id: Optional[int] = None,
        reminders: Sequence[float] = (),
    ) -> Idea:
        vector = await self.embedder.embed(f"{title} {content}")
        now = time.time()
        idea = Idea(
            id=_new_id(),
            title=title,
            content=content,
            user_id=str(user_id),
            category=category if category in CATEGORIES else DEFAULT_CATEGORY,
            priority=priority if priority in PRIORITIES else DEFAULT_PRIORITY,
            tags=list(dict.fromkeys(tags)),
            chat_id=chat_id,
            created_at=now,
            updated_at=now,
        )
        db = self._db()
        with db:
            db.execute(
                """
                INSERT INTO ideas(id, title, content, category, priority, status, tags,
                                  user_id, chat_id, created_at, updated_at, embedding)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    idea.id,
                    idea.title,
                    idea.content,
                    idea.category,
                    idea.priority,
                    idea.status,
                    json.dumps(idea.tags),
                    idea.user_id,
                    idea.chat_id,
                    idea.created_at,
                    idea.updated_at,
                    json.dumps(vector),
                ),
            )
            self._insert_reminders(idea.id, idea.title, reminders)
        idea.reminders = self._reminders_for(idea.id)
        log.info("idea %s created for user %s (%d reminders)", idea.id, idea.user_id, len(idea.reminders))
        return idea

    def get(self, idea_id: str) -> Optional[Idea]:
        row = self._db().execute("SELECT * FROM ideas WHERE id=?", (idea_id,)).fetchone()
        if row is None:
            return None
        return Idea.from_row(row, self._reminders_for(idea_id))

    async def update(self, idea_id: str, **changes: Any) -> Optional[Idea]:
        idea = self.get(idea_id)
        if idea is None:
            return None
        for key in ("title", "content", "category", "priority", "status", "tags"):
            value = changes.get(key)
            if value:
                setattr(idea, key, list(value) if key == "tags" else value)
        if idea.category not in CATEGORIES or idea.priority not in PRIORITIES or idea.status not in STATUSES:
            raise ValueError("invalid category, priority or status")
        embedding_sql, params = "", []
        if changes.get("title") or changes.get("content"):
            vector = await self.embedder.embed(f"{idea.title} {idea.content}")
            embedding_sql, params = ", embedding=?", [json.dumps(vector)]
        idea.updated_at = time.time()
        db = self._db()
        with db:
            db.execute(
                f"""
                UPDATE ideas SET title=?, content=?, category=?, priority=?, status=?, tags=?,
                                 updated_at=?{embedding_sql}
                WHERE id=?
                """,
                [
                    idea.title,
                    idea.content,
                    idea.category,
                    idea.priority,
                    idea.status,
                    json.dumps(idea.tags),
                    idea.updated_at,
                    *params,
                    idea.id,
                ],
            )
            if changes.get("reminders") is not None:
                db.execute("DELETE FROM reminders WHERE idea_id=?", (idea.id,))
                self._insert_reminders(idea.id, idea.title, changes["reminders"])
        idea.reminders = self._reminders_for(idea.id)
        log.info("idea %s updated", idea.id)
        return idea

    def delete(self, idea_id: str) -> bool:
        db = self._db()
        with db:
            cursor = db.execute("DELETE FROM ideas WHERE id=?", (idea_id,))
            db.execute("DELETE FROM reminders WHERE idea_id=?", (idea_id,))
        deleted = cursor.rowcount > 0
        log.info("idea %s deleted=%s", idea_id, deleted)
        return deleted

    async def search(
        self,
        query: str,
        *,
        limit: int = 10,
        threshold: float = DEFAULT_SEARCH_THRESHOLD,
        filter: Optional[IdeaFilter] = None,
    ) -> List[IdeaSearchResult]:
        query_vector = await self.embedder.embed(query)
        filter = filter or IdeaFilter()
        where, params = filter.where()
        rows = self._db().execute(f"SELECT * FROM ideas {where}", params).fetchall()
        results: List[IdeaSearchResult] = []
        for row in rows:
            idea = Idea.from_row(row)
            if not filter.accepts_tags(idea.tags):
                continue
            try:
                vector = json.loads(row["embedding"] or "[]")
            except json.JSONDecodeError:
                continue
            score = cosine_similarity(query_vector, vector)
            if score >= threshold:
                results.append(IdeaSearchResult(idea=idea, score=score))
        results.sort(key=lambda item: item.score, reverse=True)
        log.debug("search %r matched %d of %d ideas", query[:50], len(results), len(rows))
        return results[:limit]

    def list(self, filter: Optional[IdeaFilter] = None, limit: int = 50) -> List[Idea]:
        filter = filter or IdeaFilter()
        where, params = filter.where()
        rows = self._db().execute(
            f"SELECT * FROM ideas {where} ORDER BY created_at DESC", params
        ).fetchall()
        ideas = [Idea.from_row(row) for row in rows]
        return [idea for idea in ideas if filter.accepts_tags(idea.tags)][:limit]

    def get_due_reminders(self, now: Optional[float] = None) -> List[Reminder]:
        now = time.time() if now is None else now
        rows = self._db().execute(
            """
            SELECT * FROM reminders
            WHERE is_active=1 AND is_sent=0 AND scheduled_for<=?
            ORDER BY scheduled_for
            """,
            (now,),
        ).fetchall()
        return [Reminder.from_row(row) for row in rows]

    def mark_reminder_sent(self, reminder_id: str) -> None:
        db = self._db()
        with db:
            db.execute(
                "UPDATE reminders SET is_sent=1, updated_at=? WHERE id=?",
                (time.time(), reminder_id),
            )

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None


class KnowledgeService:
    """Feature-level access to the knowledge store.

    ``enabled`` flips to False for the rest of the process when the store
    cannot be initialised; every method then returns an empty result.
    """

    def __init__(self, store: Optional[KnowledgeStore], completion=None) -> None:
        self.store = store
        self.completion = completion
        self.enabled = store is not None
        if not self.enabled:
            log.info("knowledge service created without a store (disabled)")

    def initialize(self) -> bool:
        if not self.enabled or self.store is None:
            return False
        try:
            self.store.initialize()
        except Exception as exc:
            log.error("knowledge store failed to initialize, disabling ideas: %s", exc)
            self.enabled = False
            return False
        return True

    def _ready(self) -> bool:
        return self.enabled and self.store is not None

    async def _enhance(self, content: str, title: str) -> dict:
        if self.completion is None:
            return {}
        prompt = ENHANCE_PROMPT.format(
            content=content,
            title=title,
            categories=", ".join(CATEGORIES),
            priorities=", ".join(PRIORITIES),
        )
        try:
            response = await self.completion.complete(prompt, [], is_command=True)
        except Exception as exc:
            log.warning("idea enhancement failed: %s", exc)
            return {}
        parsed = extract_json_object(response.text)
        if parsed is None:
            log.debug("idea enhancement returned no JSON: %s", response.text[:200])
            return {}
        return parsed

    async def capture_idea(
        self,
        content: str,
        user_id: str,
        chat_id: Optional[int] = None,
        *,
        title: str = PLACEHOLDER_TITLE,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Sequence[str] = (),
        remind_at: Optional[float] = None,
        enhance: bool = True,
    ) -> Optional[Idea]:
        if not self._ready():
            return None
        final_title = title
        final_content = content
        final_category = category
        final_priority = priority
        final_tags = [*tags, *CAPTURE_TAGS]
        needs_title = title == PLACEHOLDER_TITLE or len(title) < 10
        if enhance and needs_title and len(content) > 10:
            suggestion = await self._enhance(content, title)
            if suggestion:
                final_title = str(suggestion.get("title") or "").strip()[:80] or final_title
                description = str(suggestion.get("description") or "").strip()
                if description and description != content:
                    final_content = f"{description}\n\nOriginal content: {content}"
                if final_category is None and suggestion.get("suggestedCategory") in CATEGORIES:
                    final_category = suggestion["suggestedCategory"]
                if final_priority is None and suggestion.get("suggestedPriority") in PRIORITIES:
                    final_priority = suggestion["suggestedPriority"]
                suggested_tags = suggestion.get("suggestedTags") or []
                if isinstance(suggested_tags, list):
                    final_tags.extend(str(tag) for tag in suggested_tags if str(tag).strip())
                    final_tags.append("ai-enhanced")
        if final_title == PLACEHOLDER_TITLE:
            final_title = title_from_content(content)
        try:
            idea = await self.store.create(
                title=final_title,
                content=final_content,
                user_id=str(user_id),
                category=final_category or infer_category(content),
                priority=final_priority or DEFAULT_PRIORITY,
                tags=final_tags,
                chat_id=chat_id,
                reminders=[remind_at] if remind_at else [],
            )
        except Exception as exc:
            log.error("failed to capture idea for user %s in chat %s: %s", user_id, chat_id, exc)
            return None
        log.info("captured idea %s [%s] for user %s", idea.id, idea.category, user_id)
        return idea

    async def search(
        self,
        query: str,
        user_id: str,
        limit: int = 5,
        category: Optional[str] = None,
    ) -> List[IdeaSearchResult]:
        if not self._ready():
            return []
        return await self.store.search(
            query,
            limit=limit,
            threshold=DEFAULT_SEARCH_THRESHOLD,
            filter=IdeaFilter(user_id=str(user_id), category=category),
        )

    async def safe_search(self, query: str, user_id: str, limit: int = 5) -> List[IdeaSearchResult]:
        try:
            return await self.search(query, user_id, limit)
        except Exception as exc:
            log.error("idea search failed for user %s: %s", user_id, exc)
            return []

    def list_user_ideas(self, user_id: str, limit: int = 20) -> List[Idea]:
        if not self._ready():
            return []
        try:
            return self.store.list(IdeaFilter(user_id=str(user_id)), limit)
        except Exception as exc:
            log.error("failed to list ideas for user %s: %s", user_id, exc)
            return []

    def get(self, idea_id: str) -> Optional[Idea]:
        if not self._ready():
            return None
        return self.store.get(idea_id)

    async def update(self, idea_id: str, user_id: str, **changes: Any) -> Optional[Idea]:
        if not self._ready():
            return None
        existing = self.store.get(idea_id)
        if existing is None or existing.user_id != str(user_id):
            log.warning(
                "user %s attempted to update idea %s they do not own (exists=%s)",
                user_id,
                idea_id,
                existing is not None,
            )
            return None
        try:
            return await self.store.update(idea_id, **changes)
        except Exception as exc:
            log.error("failed to update idea %s: %s", idea_id, exc)
            return None

    def delete(self, idea_id: str, user_id: str) -> bool:
        if not self._ready():
            return False
        try:
            existing = self.store.get(idea_id)
            if existing is None or existing.user_id != str(user_id):
                log.warning(
                    "user %s attempted to delete idea %s they do not own (exists=%s)",
                    user_id,
                    idea_id,
                    existing is not None,
                )
                return False
            return self.store.delete(idea_id)
        except Exception as exc:
            log.error("failed to delete idea %s for user %s: %s", idea_id, user_id, exc)
            return False

    def get_due_reminders(self, now: Optional[float] = None) -> List[Reminder]:
        if not self._ready():
            return []
        try:
            return self.store.get_due_reminders(now)
        except Exception as exc:
            log.error("failed to load due reminders: %s", exc)
            return []

    def mark_reminder_sent(self, reminder_id: str) -> None:
        if not self._ready():
            return
        try:
            self.store.mark_reminder_sent(reminder_id)
        except Exception as exc:
            log.error("failed to mark reminder %s sent: %s", reminder_id, exc)

    def stats(self, user_id: Optional[str] = None) -> dict:
        if not self._ready():
            return {"count": 0, "categories": {}}
        ideas = self.store.list(IdeaFilter(user_id=str(user_id)) if user_id else None, 1000)
        categories: Dict[str, int] = {}
        for idea in ideas:
            categories[idea.category] = categories.get(idea.category, 0) + 1
        return {"count": len(ideas), "categories": categories}

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
