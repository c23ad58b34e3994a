"""
Cross-session context tracking.

Keeps one ``SessionContext`` per conversation session: topics, facts,
preferences and pending items accrete while the session is active; after it
ends the context's relevance decays daily until it is archived. Contexts that
share topics are linked to each other, and recent contexts feed a
"welcome back" summary for the next session.
"""

import asyncio
import json
import math
import re
import uuid
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from memory_engine.config.settings import SessionContextConfig
from memory_engine.errors import StorageError, describe
from memory_engine.events import EventEmitter
from memory_engine.generation.completion import CompletionClient
from memory_engine.telemetry import get_logger

from .extractor import extract_topics
from .schemas import PendingItem, Preference, SessionContext, now_ms

logger = get_logger(__name__)

CONTEXTS_FILE = "session-contexts.json"

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

PREFERENCE_CONFIDENCE_STEP = 0.1
PRUNE_RELEVANCE_MARGIN = 0.1
SMART_CONTEXT_LIMIT = 5
SMART_CONTEXT_MIN_RELEVANCE = 0.2

WELCOME_BACK_PROMPT = """You are a personal assistant greeting a returning user.

Recent sessions:
{sessions}

Pending items:
{pending_items}

Known preferences:
{preferences}

Write a short, friendly welcome-back message (2-3 sentences) that mentions what
we last worked on and any open items. Respond as JSON: {{"summaryText": "..."}}"""

CONTEXT_SUMMARY_PROMPT = """Summarize this conversation session in 1-2 sentences:
Topics discussed: {topics}
Key facts: {facts}
Exchange count: {exchanges}

Focus on the main activities and outcomes."""

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


# ============================================================================
# Result types
# ============================================================================

class ContextRetrievalOptions(BaseModel):
    """Filters for ``retrieve_relevant_context``."""
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    min_relevance: Optional[float] = None
    session_ids: List[str] = Field(default_factory=list)
    current_topics: List[str] = Field(default_factory=list)
    include_resolved: bool = False
    limit: int = Field(10, ge=1)


class ContextRetrievalResult(BaseModel):
    contexts: List[SessionContext]
    aggregated_topics: List[str]
    aggregated_facts: List[str]
    pending_items: List[PendingItem]
    preferences: List[Preference]
    total_matches: int


class SessionSnapshot(BaseModel):
    session_id: str
    summary: str
    topics: List[str]
    timestamp: int


class WelcomeBackSummary(BaseModel):
    has_relevant_context: bool
    last_session_time: Optional[int] = None
    time_since_last_session: Optional[str] = None
    continuable_topics: List[str] = Field(default_factory=list)
    pending_items: List[PendingItem] = Field(default_factory=list)
    relevant_facts: List[str] = Field(default_factory=list)
    preferences: List[Preference] = Field(default_factory=list)
    summary_text: str = ""
    most_relevant_session: Optional[SessionSnapshot] = None


class SmartContext(BaseModel):
    relevant_facts: List[str]
    preferences: List[Preference]
    pending_items: List[PendingItem]
    context_summary: str


# ============================================================================
# Helpers
# ============================================================================

def format_time_since(timestamp: int, now: Optional[int] = None) -> str:
    """Human-readable elapsed time, e.g. ``3 hours ago`` or ``last week``."""
    diff = (now if now is not None else now_ms()) - timestamp
    minutes = diff // MINUTE_MS
    hours = diff // HOUR_MS
    days = diff // DAY_MS

    if minutes < 60:
        return "1 minute ago" if minutes == 1 else f"{max(0, minutes)} minutes ago"
    if hours < 24:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if days < 7:
        return "yesterday" if days == 1 else f"{days} days ago"
    if days < 30:
        weeks = days // 7
        return "last week" if weeks == 1 else f"{weeks} weeks ago"
    months = days // 30
    return "last month" if months == 1 else f"{months} months ago"


def topic_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    """Case-insensitive Jaccard overlap; 0 when either side is empty."""
    set_a = {t.lower() for t in a}
    set_b = {t.lower() for t in b}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def dedupe_preferences(preferences: Iterable[Preference]) -> List[Preference]:
    """Keep the highest-confidence preference per (category, key)."""
    best: Dict[str, Preference] = {}
    for pref in preferences:
        current = best.get(pref.identity)
        if current is None or pref.confidence > current.confidence:
            best[pref.identity] = pref
    return list(best.values())


def _recent_relevant_order(a: SessionContext, b: SessionContext) -> int:
    # Recency dominates unless both fall within a day of each other
    time_diff = b.last_activity - a.last_activity
    if abs(time_diff) > DAY_MS:
        return time_diff
    if b.relevance > a.relevance:
        return 1
    if b.relevance < a.relevance:
        return -1
    return 0


def _prune_order(a: SessionContext, b: SessionContext) -> int:
    relevance_diff = b.relevance - a.relevance
    if abs(relevance_diff) > PRUNE_RELEVANCE_MARGIN:
        return 1 if relevance_diff > 0 else -1
    return b.last_activity - a.last_activity


# ============================================================================
# Manager
# ============================================================================

class SessionContextManager(EventEmitter):
    """
    Maintains context across conversation sessions for continuity.

    Events: ``context-created``, ``context-updated``, ``context-ended``,
    ``context-decayed``, ``context-archived``, ``contexts-linked``,
    ``context-reset``, ``welcome-summary-generated``, ``error``.
    """

    def __init__(
        self,
        config: Optional[SessionContextConfig] = None,
        completion: Optional[CompletionClient] = None,
    ):
        """
        Args:
            config: Session context configuration
            completion: Optional completion collaborator for summaries
        """
        super().__init__()
        self.config = config or SessionContextConfig()
        self.completion = completion
        self.storage_dir = Path(self.config.storage_dir)

        self._contexts: Dict[str, SessionContext] = {}
        self.active_context_id: Optional[str] = None
        self.is_dirty = False
        self.is_initialized = False

        self._auto_save_task: Optional[asyncio.Task] = None
        self._decay_task: Optional[asyncio.Task] = None

    @property
    def file_path(self) -> Path:
        return self.storage_dir / CONTEXTS_FILE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, now: Optional[int] = None) -> None:
        """Load saved contexts, apply pending decay and start periodic tasks."""
        if self.is_initialized:
            return

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create context storage directory: {e}") from e

        await self._load_contexts()
        self.apply_time_decay(now)

        self._auto_save_task = asyncio.create_task(self._auto_save_loop())
        self._decay_task = asyncio.create_task(self._decay_loop())

        self.is_initialized = True
        logger.info("session_contexts_initialized", loaded=len(self._contexts))

    async def shutdown(self) -> None:
        """End the active context, stop periodic tasks and save."""
        if self.active_context_id is not None:
            await self.end_context(generate_summary=True)

        for task in (self._auto_save_task, self._decay_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error("context_task_failed", error=describe(e))
        self._auto_save_task = None
        self._decay_task = None

        if self.is_dirty:
            await self.save()

        self.remove_all_listeners()
        self.is_initialized = False
        logger.info("session_contexts_shutdown")

    async def _auto_save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.auto_save_interval)
            if not self.is_dirty:
                continue
            try:
                await self.save()
            except StorageError as e:
                logger.error("context_auto_save_failed", error=str(e))

    async def _decay_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.decay_check_interval)
            self.apply_time_decay()
            try:
                await self.archive_old_contexts()
            except StorageError as e:
                logger.error("context_archive_save_failed", error=str(e))

    # ------------------------------------------------------------------
    # Active context
    # ------------------------------------------------------------------

    def start_context(
        self,
        session_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[int] = None,
    ) -> SessionContext:
        """Create a context for a new session and make it active."""
        ts = now if now is not None else now_ms()
        context = SessionContext(
            id=f"ctx_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            created_at=ts,
            updated_at=ts,
            metadata=metadata or {},
        )
        self._contexts[context.id] = context
        self.active_context_id = context.id
        self.is_dirty = True

        self.emit("context-created", {"context_id": context.id, "session_id": session_id})
        logger.info("context_started", context_id=context.id, session_id=session_id)
        return context

    def get_active_context(self) -> Optional[SessionContext]:
        if self.active_context_id is None:
            return None
        return self._contexts.get(self.active_context_id)

    def get_context(self, context_id: str) -> Optional[SessionContext]:
        return self._contexts.get(context_id)

    def get_context_by_session_id(self, session_id: str) -> Optional[SessionContext]:
        for context in self._contexts.values():
            if context.session_id == session_id:
                return context
        return None

    def all_contexts(self) -> List[SessionContext]:
        return list(self._contexts.values())

    def update_context(
        self,
        topics: Optional[List[str]] = None,
        key_facts: Optional[List[str]] = None,
        preferences: Optional[List[Preference]] = None,
        pending_items: Optional[List[PendingItem]] = None,
        summary: Optional[str] = None,
        exchange_count: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Optional[SessionContext]:
        """
        Merge new information into the active context.

        Topics and facts are unioned in arrival order. A preference seen
        again takes the new value and gains confidence (capped at 1.0).
        New topics trigger context linking.

        Returns:
            The updated context, or None when no context is active
        """
        context = self.get_active_context()
        if context is None:
            logger.warning("update_without_active_context")
            return None

        ts = now if now is not None else now_ms()

        if topics:
            context.topics = list(dict.fromkeys(context.topics + list(topics)))
        if key_facts:
            context.key_facts = list(dict.fromkeys(context.key_facts + list(key_facts)))
        if preferences:
            for pref in preferences:
                self._observe_preference(context, pref, ts)
        if pending_items:
            context.pending_items.extend(pending_items)
        if summary is not None:
            context.summary = summary
        if exchange_count is not None:
            context.exchange_count = exchange_count

        context.updated_at = ts
        self.is_dirty = True

        if self.config.enable_context_linking and topics:
            self._update_context_links(context)

        self.emit("context-updated", {"context_id": context.id})
        return context

    def add_pending_item(self, description: str, now: Optional[int] = None) -> PendingItem:
        """Record an open item on the active context (if any) and return it."""
        ts = now if now is not None else now_ms()
        item = PendingItem(
            id=f"pending_{uuid.uuid4().hex[:12]}",
            description=description,
            created_at=ts,
        )
        context = self.get_active_context()
        if context is not None:
            context.pending_items.append(item)
            context.updated_at = ts
            self.is_dirty = True
        return item

    def resolve_pending_item(
        self,
        item_id: str,
        resolution: Optional[str] = None,
        now: Optional[int] = None,
    ) -> bool:
        """
        Resolve a pending item in any context.

        Returns:
            True if an unresolved item was found and resolved
        """
        ts = now if now is not None else now_ms()
        for context in self._contexts.values():
            for item in context.pending_items:
                if item.id != item_id:
                    continue
                if not item.resolve(resolution, now=ts):
                    return False
                context.updated_at = ts
                self.is_dirty = True
                return True
        return False

    async def end_context(self, generate_summary: bool = True, now: Optional[int] = None) -> None:
        """
        Finalize the active context and save immediately.

        The closing summary comes from the completion collaborator when
        available, otherwise from a template over topics and facts.
        """
        context = self.get_active_context()
        if context is None:
            return

        ts = now if now is not None else now_ms()
        context.ended_at = ts
        context.updated_at = ts

        if generate_summary and context.exchange_count > 0:
            summary = await self._generate_context_summary(context)
            if summary:
                context.summary = summary
            elif not context.summary:
                context.summary = self._fallback_context_summary(context)

        self.is_dirty = True
        self.active_context_id = None
        await self.save()

        self.emit("context-ended", {"session_id": context.session_id})
        logger.info(
            "context_ended",
            context_id=context.id,
            exchange_count=context.exchange_count,
        )

    # ------------------------------------------------------------------
    # Decay and archival
    # ------------------------------------------------------------------

    def apply_time_decay(self, now: Optional[int] = None) -> int:
        """
        Decay the relevance of every non-active context.

        Decay is measured from the later of the last update and the last
        decay, so repeated ticks compound to ``(1 - rate) ** days``.

        Returns:
            Number of contexts whose relevance changed
        """
        ts = now if now is not None else now_ms()
        base = 1.0 - self.config.decay_rate_per_day
        changed = 0

        for context in self._contexts.values():
            if context.id == self.active_context_id:
                continue

            since = max(context.updated_at, context.decayed_at or 0)
            days = max(0.0, (ts - since) / DAY_MS)
            new_relevance = max(0.0, context.relevance * math.pow(base, days))
            context.decayed_at = max(ts, since)

            if new_relevance != context.relevance:
                context.relevance = new_relevance
                changed += 1
                self.emit(
                    "context-decayed",
                    {"session_id": context.session_id, "relevance": new_relevance},
                )

        if changed:
            self.is_dirty = True
        return changed

    async def archive_old_contexts(self, now: Optional[int] = None) -> int:
        """Delete contexts below the relevance floor or past the age ceiling."""
        ts = now if now is not None else now_ms()
        max_age_ms = self.config.max_context_age_days * DAY_MS
        archived: List[SessionContext] = []

        for context_id, context in list(self._contexts.items()):
            if context_id == self.active_context_id:
                continue
            too_old = ts - context.created_at > max_age_ms
            if context.relevance < self.config.min_relevance_threshold or too_old:
                del self._contexts[context_id]
                archived.append(context)

        for context in archived:
            self.emit("context-archived", {"session_id": context.session_id})

        if archived:
            self.is_dirty = True
            await self.save()
            logger.info("contexts_archived", count=len(archived))
        return len(archived)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def retrieve_relevant_context(
        self,
        options: Optional[ContextRetrievalOptions] = None,
    ) -> ContextRetrievalResult:
        """
        Find contexts relevant to the current conversation.

        When current topics are given, each candidate's relevance is scaled
        by ``0.5 + 0.5 * overlap`` for ranking only; stored relevance is
        not touched.
        """
        options = options or ContextRetrievalOptions()
        results = list(self._contexts.values())

        if options.start_time is not None:
            results = [c for c in results if c.created_at >= options.start_time]
        if options.end_time is not None:
            results = [c for c in results if c.created_at <= options.end_time]

        min_relevance = (
            options.min_relevance
            if options.min_relevance is not None
            else self.config.min_relevance_threshold
        )
        results = [c for c in results if c.relevance >= min_relevance]

        if options.session_ids:
            results = [c for c in results if c.session_id in options.session_ids]

        if options.current_topics:
            results = [
                c.model_copy(
                    update={"relevance": c.relevance * (0.5 + 0.5 * topic_overlap(options.current_topics, c.topics))},
                    deep=True,
                )
                for c in results
            ]

        results.sort(key=lambda c: c.relevance, reverse=True)
        results = results[:options.limit]

        topics: List[str] = []
        facts: List[str] = []
        pending: List[PendingItem] = []
        prefs: List[Preference] = []
        for context in results:
            topics.extend(context.topics)
            facts.extend(context.key_facts)
            pending.extend(
                p for p in context.pending_items if options.include_resolved or not p.resolved
            )
            prefs.extend(context.preferences)

        return ContextRetrievalResult(
            contexts=results,
            aggregated_topics=list(dict.fromkeys(topics)),
            aggregated_facts=list(dict.fromkeys(facts)),
            pending_items=pending,
            preferences=dedupe_preferences(prefs),
            total_matches=len(results),
        )

    def get_smart_context(self, query: str, current_topics: Optional[List[str]] = None) -> SmartContext:
        """Build a compact context line for injecting into the next prompt."""
        topics = list(current_topics or [])
        topics.extend(t for t in sorted(extract_topics(query)) if t not in topics)

        result = self.retrieve_relevant_context(
            ContextRetrievalOptions(
                current_topics=topics,
                limit=SMART_CONTEXT_LIMIT,
                min_relevance=SMART_CONTEXT_MIN_RELEVANCE,
            )
        )

        parts: List[str] = []
        if result.contexts:
            if result.aggregated_facts:
                parts.append(f"Known facts: {'; '.join(result.aggregated_facts[:3])}")
            if result.pending_items:
                parts.append(f"Pending items: {'; '.join(p.description for p in result.pending_items[:2])}")
            if result.preferences:
                prefs = "; ".join(f"{p.key}: {p.value}" for p in result.preferences[:3])
                parts.append(f"User preferences: {prefs}")

        return SmartContext(
            relevant_facts=result.aggregated_facts,
            preferences=result.preferences,
            pending_items=result.pending_items,
            context_summary=". ".join(parts),
        )

    async def generate_welcome_back_summary(self, now: Optional[int] = None) -> WelcomeBackSummary:
        """
        Summarize recent sessions for a returning user.

        Uses the completion collaborator for the prose and falls back to a
        template when it is absent, fails or returns nothing.
        """
        ts = now if now is not None else now_ms()
        max_items = self.config.welcome_summary_max_items
        contexts = self._recent_relevant_contexts(max_items)

        if not contexts:
            return WelcomeBackSummary(has_relevant_context=False)

        last = contexts[0]
        time_since = format_time_since(last.last_activity, ts)

        pending: List[PendingItem] = []
        topics: List[str] = []
        facts: List[str] = []
        prefs: List[Preference] = []
        for context in contexts:
            pending.extend(p for p in context.pending_items if not p.resolved)
            topics.extend(context.topics)
            facts.extend(context.key_facts)
            prefs.extend(context.preferences)
        prefs = dedupe_preferences(prefs)

        text = await self._generate_llm_welcome(contexts, pending, prefs, ts)
        if not text:
            text = self._fallback_welcome(last, pending, time_since)

        summary = WelcomeBackSummary(
            has_relevant_context=True,
            last_session_time=last.last_activity,
            time_since_last_session=time_since,
            continuable_topics=list(dict.fromkeys(topics))[:max_items],
            pending_items=pending[:max_items],
            relevant_facts=facts[:max_items],
            preferences=prefs,
            summary_text=text,
            most_relevant_session=SessionSnapshot(
                session_id=last.session_id,
                summary=last.summary,
                topics=list(last.topics),
                timestamp=last.last_activity,
            ),
        )
        self.emit(
            "welcome-summary-generated",
            {"topics": len(summary.continuable_topics), "pending": len(summary.pending_items)},
        )
        return summary

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reset_all_context(self) -> None:
        self._contexts.clear()
        self.active_context_id = None
        self.is_dirty = True
        await self.save()
        self.emit("context-reset", {})
        logger.info("contexts_reset")

    def get_stats(self, now: Optional[int] = None) -> Dict[str, Any]:
        ts = now if now is not None else now_ms()
        contexts = list(self._contexts.values())
        pending = [p for c in contexts for p in c.pending_items]
        return {
            "total_contexts": len(contexts),
            "active_context_id": self.active_context_id,
            "average_relevance": (
                sum(c.relevance for c in contexts) / len(contexts) if contexts else 0.0
            ),
            "total_pending_items": len(pending),
            "unresolved_pending_items": sum(1 for p in pending if not p.resolved),
            "total_preferences": sum(len(c.preferences) for c in contexts),
            "oldest_context_age_ms": max((ts - c.created_at for c in contexts), default=None),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self) -> None:
        payload = {
            "contexts": [c.to_wire() for c in self._contexts.values()],
            "activeContextId": self.active_context_id,
            "savedAt": now_ms(),
        }
        try:
            await asyncio.to_thread(self._write_json, self.file_path, payload)
        except OSError as e:
            logger.error("contexts_save_failed", error=str(e))
            self.emit("error", {"error": str(e), "operation": "save"})
            raise StorageError(f"Failed to save session contexts: {e}") from e
        self.is_dirty = False

    async def _load_contexts(self) -> None:
        if not self.file_path.exists():
            logger.info("no_saved_contexts", path=str(self.file_path))
            return

        try:
            data = await asyncio.to_thread(self._read_json, self.file_path)
            contexts = [SessionContext.from_wire(c) for c in data.get("contexts", [])]
        except (OSError, ValueError) as e:
            logger.error("contexts_load_failed", error=str(e))
            self.emit("error", {"error": str(e), "operation": "load"})
            raise StorageError(f"Failed to load session contexts: {e}") from e

        self._contexts = {c.id: c for c in contexts}
        self._prune_old_contexts()

    def _prune_old_contexts(self) -> None:
        limit = self.config.max_session_contexts
        if len(self._contexts) <= limit:
            return
        ordered = sorted(self._contexts.values(), key=cmp_to_key(_prune_order))
        removed = len(ordered) - limit
        self._contexts = {c.id: c for c in ordered[:limit]}
        self.is_dirty = True
        logger.info("contexts_pruned", removed=removed)

    @staticmethod
    def _write_json(path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        tmp.replace(path)

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _observe_preference(context: SessionContext, pref: Preference, ts: int) -> None:
        for existing in context.preferences:
            if existing.identity == pref.identity:
                existing.value = pref.value
                existing.confidence = min(1.0, max(existing.confidence, pref.confidence) + PREFERENCE_CONFIDENCE_STEP)
                existing.last_confirmed = ts
                existing.confirmation_count += 1
                return
        context.preferences.append(pref.model_copy())

    def _update_context_links(self, context: SessionContext) -> None:
        if not context.topics:
            return

        cap = self.config.max_related_sessions
        related = list(context.related_session_ids)

        for other in self._contexts.values():
            if other.id == context.id or other.session_id == context.session_id:
                continue
            if topic_overlap(context.topics, other.topics) <= self.config.topic_overlap_threshold:
                continue

            if other.session_id not in related:
                related.append(other.session_id)
            if context.session_id not in other.related_session_ids:
                other.related_session_ids = (other.related_session_ids + [context.session_id])[-cap:] if cap else []

            self.emit(
                "contexts-linked",
                {"session_id": context.session_id, "other_session_id": other.session_id},
            )

        # Oldest links are evicted first
        context.related_session_ids = related[-cap:] if cap else []

    def _recent_relevant_contexts(self, limit: int) -> List[SessionContext]:
        candidates = [
            c for c in self._contexts.values()
            if c.relevance >= self.config.min_relevance_threshold
            and c.id != self.active_context_id
        ]
        candidates.sort(key=cmp_to_key(_recent_relevant_order))
        return candidates[:limit]

    async def _chat(self, prompt: str, purpose: str) -> Optional[str]:
        if self.completion is None:
            return None
        try:
            response = await self.completion.chat(prompt)
        except Exception as e:
            logger.warning("completion_fallback", purpose=purpose, error=describe(e))
            return None
        text = (response.content or "").strip()
        return text or None

    async def _generate_context_summary(self, context: SessionContext) -> Optional[str]:
        prompt = CONTEXT_SUMMARY_PROMPT.format(
            topics=", ".join(context.topics),
            facts="; ".join(context.key_facts),
            exchanges=context.exchange_count,
        )
        return await self._chat(prompt, "context_summary")

    @staticmethod
    def _fallback_context_summary(context: SessionContext) -> str:
        parts: List[str] = []
        if context.topics:
            parts.append(f"Discussed {', '.join(context.topics[:3])}.")
        if context.key_facts:
            parts.append(f"Noted: {context.key_facts[0]}")
        parts.append(f"{context.exchange_count} exchanges.")
        return " ".join(parts)

    async def _generate_llm_welcome(
        self,
        contexts: List[SessionContext],
        pending: List[PendingItem],
        prefs: List[Preference],
        ts: int,
    ) -> Optional[str]:
        if self.completion is None:
            return None

        sessions = "\n".join(
            f"- {c.summary or ', '.join(c.topics)} ({format_time_since(c.last_activity, ts)})"
            for c in contexts[:3]
        )
        pending_text = "\n".join(f"- {p.description}" for p in pending[:3]) or "None"
        prefs_text = "\n".join(f"- {p.key}: {p.value}" for p in prefs[:3]) or "None"

        text = await self._chat(
            WELCOME_BACK_PROMPT.format(
                sessions=sessions,
                pending_items=pending_text,
                preferences=prefs_text,
            ),
            "welcome_back",
        )
        if text is None:
            return None

        match = _JSON_OBJECT_RE.search(text)
        if match:
            try:
                parsed = json.loads(match.group(0))
            except json.JSONDecodeError:
                return text
            if isinstance(parsed, dict) and parsed.get("summaryText"):
                return str(parsed["summaryText"])
        return text

    @staticmethod
    def _fallback_welcome(last: SessionContext, pending: List[PendingItem], time_since: str) -> str:
        parts = [f"Last time we talked was {time_since}."]
        if last.topics:
            parts.append(f"We discussed {', '.join(last.topics[:3])}.")
        if len(pending) == 1:
            parts.append(f"There's still a pending item: {pending[0].description}")
        elif pending:
            parts.append(f"There are {len(pending)} pending items, including: {pending[0].description}")
        return " ".join(parts)
