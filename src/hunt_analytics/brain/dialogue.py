"""
Dialogue sessions: asking a human why an anomaly happened.

Each session walks one anomaly's hypotheses in confidence order and asks
their verification questions one turn at a time:

    AWAITING_START --start()--> AWAITING_ANSWER --submit_answer()--> EVALUATING
    EVALUATING --confirmed--> RESOLVED
    EVALUATING --unconfirmed, turns and hypotheses left--> AWAITING_ANSWER
    EVALUATING --unconfirmed, otherwise--> ESCALATED (open question)
    ESCALATED --submit_answer()--> EVALUATING --> TERMINATED

Guarantees per session:
- exactly one ``AnomalyResponse`` per answered turn
- a hypothesis is asked at most once
- at most ``max_turns`` hypothesis turns, plus the final escalated turn

The manager owns every session; callers only hold the session id and get
``SessionView`` snapshots back. Each session has its own lock, so answers to
one session are serialized while other sessions proceed in parallel.

When a session resolves or terminates, follow-up re-checks are scheduled and
a resolution summary is written to the retrieval store. Responses are written
as they happen; if the store stays down after retries the session waits in
EVALUATING with a failure marker until ``retry_pending`` succeeds.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

from hunt_analytics.brain.followup import FollowUpScheduler, FollowUpTask
from hunt_analytics.brain.hypothesis import Hypothesis, follow_up_hypothesis, question_context
from hunt_analytics.brain.matching import AnswerEvaluation, AnswerMatcher
from hunt_analytics.brain.templates import DEFAULT_TEMPLATES, HypothesisCategory, TemplateTable, render
from hunt_analytics.config import DialogueConfig, RetryConfig
from hunt_analytics.core.models import Anomaly
from hunt_analytics.exceptions import (
    ExternalServiceError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from hunt_analytics.llm.embeddings import Embedder, HashingEmbedder
from hunt_analytics.llm.questions import QuestionPlan, QuestionWriter
from hunt_analytics.retry import call_with_retry
from hunt_analytics.store.retrieval import (
    DEFAULT_COLLECTION,
    RESOLUTION_TYPE,
    RESPONSE_TYPE,
    PastPattern,
    RetrievalStore,
    recall_past_patterns,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class SessionState(str, Enum):
    AWAITING_START = "awaiting_start"
    AWAITING_ANSWER = "awaiting_answer"
    EVALUATING = "evaluating"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.RESOLVED, SessionState.TERMINATED)


class AnswerType(str, Enum):
    CHOICE = "choice"
    FREE_TEXT = "free_text"


class SessionPurpose(str, Enum):
    """Why a session was opened."""

    DIAGNOSIS = "diagnosis"
    """First interrogation of a fresh anomaly."""

    EFFECT_PERSISTENCE = "effect_persistence"
    """Short / medium-term re-check: is the effect still there?"""

    PATTERN_CONFIRMATION = "pattern_confirmation"
    """Long-term re-check: has the cause recurred?"""

    YEARLY_STRATEGY = "yearly_strategy"
    """Yearly re-check: plan for it this season?"""


@dataclass(frozen=True)
class Question:
    """A question put to the user."""

    session_id: str
    text: str
    turn: int
    hypothesis_id: Optional[str] = None
    choices: tuple[str, ...] = ()

    @property
    def open_ended(self) -> bool:
        return self.hypothesis_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "text": self.text,
            "turn": self.turn,
            "hypothesis_id": self.hypothesis_id,
            "choices": list(self.choices),
            "open_ended": self.open_ended,
        }


@dataclass(frozen=True)
class AnomalyResponse:
    """One answered turn. Created once, never changed."""

    response_id: str
    session_ref: str
    anomaly_ref: str
    question: str
    answer_text: str
    answer_type: AnswerType
    confirmed_hypothesis_id: Optional[str]
    impact_tag: str
    timestamp: datetime
    hypothesis_id: Optional[str] = None
    turn: int = 0
    purpose: SessionPurpose = SessionPurpose.DIAGNOSIS

    def to_payload(self) -> dict[str, Any]:
        day, _, product_id = self.anomaly_ref.partition("|")
        return {
            "type": RESPONSE_TYPE,
            "response_id": self.response_id,
            "session_id": self.session_ref,
            "anomaly_ref": self.anomaly_ref,
            "anomaly_date": day,
            "product_id": product_id,
            "question": self.question,
            "answer_text": self.answer_text,
            "answer_type": self.answer_type.value,
            "confirmed_hypothesis_id": self.confirmed_hypothesis_id,
            "hypothesis_id": self.hypothesis_id,
            "impact_tag": self.impact_tag,
            "turn": self.turn,
            "purpose": self.purpose.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class _PendingTurn:
    """A turn that has been evaluated but not yet persisted."""

    response: AnomalyResponse
    evaluation: AnswerEvaluation
    next_state: SessionState
    next_hypothesis: Optional[Hypothesis] = None


@dataclass
class DialogueSession:
    """Mutable session record. Only the manager touches it."""

    session_id: str
    anomaly_ref: str
    hypotheses: list[Hypothesis]
    max_turns: int
    purpose: SessionPurpose = SessionPurpose.DIAGNOSIS
    anomaly: Optional[Anomaly] = None
    state: SessionState = SessionState.AWAITING_START
    asked_hypotheses: list[str] = field(default_factory=list)
    turn_count: int = 0
    plan: Optional[QuestionPlan] = None
    past_patterns: list[PastPattern] = field(default_factory=list)
    current_question: Optional[Question] = None
    confirmed_hypothesis_id: Optional[str] = None
    responses: list[AnomalyResponse] = field(default_factory=list)
    outcome: Optional[str] = None
    failure: Optional[str] = None
    follow_up_task_id: Optional[str] = None
    follow_ups: list[FollowUpTask] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    pending: Optional[_PendingTurn] = field(default=None, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def hypothesis(self, hypothesis_id: str) -> Hypothesis:
        for h in self.hypotheses:
            if h.hypothesis_id == hypothesis_id:
                return h
        raise KeyError(hypothesis_id)

    def next_unasked(self) -> Optional[Hypothesis]:
        for h in self.hypotheses:
            if h.hypothesis_id not in self.asked_hypotheses:
                return h
        return None


@dataclass(frozen=True)
class SessionView:
    """Read-only snapshot of a session."""

    session_id: str
    anomaly_ref: str
    state: SessionState
    purpose: SessionPurpose
    turn_count: int
    max_turns: int
    asked_hypotheses: tuple[str, ...]
    current_question: Optional[Question]
    confirmed_hypothesis_id: Optional[str]
    responses: tuple[AnomalyResponse, ...]
    outcome: Optional[str]
    failure: Optional[str]
    follow_up_task_ids: tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    past_patterns: tuple[PastPattern, ...] = ()

    @classmethod
    def of(cls, session: DialogueSession) -> "SessionView":
        return cls(
            session_id=session.session_id,
            anomaly_ref=session.anomaly_ref,
            state=session.state,
            purpose=session.purpose,
            turn_count=session.turn_count,
            max_turns=session.max_turns,
            asked_hypotheses=tuple(session.asked_hypotheses),
            current_question=session.current_question,
            confirmed_hypothesis_id=session.confirmed_hypothesis_id,
            responses=tuple(session.responses),
            outcome=session.outcome,
            failure=session.failure,
            follow_up_task_ids=tuple(t.task_id for t in session.follow_ups),
            created_at=session.created_at,
            updated_at=session.updated_at,
            past_patterns=tuple(session.past_patterns),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "anomaly_ref": self.anomaly_ref,
            "state": self.state.value,
            "purpose": self.purpose.value,
            "turn_count": self.turn_count,
            "max_turns": self.max_turns,
            "asked_hypotheses": list(self.asked_hypotheses),
            "current_question": self.current_question.to_dict() if self.current_question else None,
            "confirmed_hypothesis_id": self.confirmed_hypothesis_id,
            "responses": [r.to_payload() for r in self.responses],
            "outcome": self.outcome,
            "failure": self.failure,
            "follow_up_task_ids": list(self.follow_up_task_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "past_patterns": [p.to_dict() for p in self.past_patterns],
        }


@dataclass(frozen=True)
class TurnOutcome:
    """What happened after an answer was submitted."""

    session_id: str
    state: SessionState
    response: Optional[AnomalyResponse]
    evaluation: Optional[AnswerEvaluation]
    next_question: Optional[Question] = None
    follow_ups: tuple[FollowUpTask, ...] = ()
    failure: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return bool(self.evaluation and self.evaluation.confirmed)


_FOLLOW_UP_PURPOSES = {
    "effect_persistence": SessionPurpose.EFFECT_PERSISTENCE,
    "pattern_confirmation": SessionPurpose.PATTERN_CONFIRMATION,
    "yearly_strategy": SessionPurpose.YEARLY_STRATEGY,
}


# =============================================================================
# Manager
# =============================================================================

class DialogueSessionManager:
    """Arena of dialogue sessions keyed by session id."""

    def __init__(
        self,
        config: Optional[DialogueConfig] = None,
        scheduler: Optional[FollowUpScheduler] = None,
        store: Optional[RetrievalStore] = None,
        writer: Optional[QuestionWriter] = None,
        embedder: Optional[Embedder] = None,
        templates: TemplateTable = DEFAULT_TEMPLATES,
        matcher: Optional[AnswerMatcher] = None,
        retry: Optional[RetryConfig] = None,
        collection: str = DEFAULT_COLLECTION,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or DialogueConfig()
        self.scheduler = scheduler
        self.store = store
        self.writer = writer
        self.embedder = embedder or HashingEmbedder()
        self.templates = templates
        self.matcher = matcher or AnswerMatcher()
        self.retry = retry or RetryConfig()
        self.collection = collection
        self.clock = clock

        self._sessions: dict[str, DialogueSession] = {}
        self._anomalies: dict[str, Anomaly] = {}
        # Confirmed category per anomaly, reused when a follow-up reopens it
        self._categories: dict[str, HypothesisCategory] = {}
        self._lock = threading.Lock()

    # === LOOKUP ===

    def _get(self, session_id: str) -> DialogueSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No session '{session_id}'", detail={"session_id": session_id})
        return session

    def get(self, session_id: str) -> SessionView:
        session = self._get(session_id)
        with session.lock:
            return SessionView.of(session)

    def list_sessions(self, state: Optional[Union[SessionState, str]] = None) -> list[SessionView]:
        with self._lock:
            sessions = list(self._sessions.values())
        views = []
        for session in sessions:
            with session.lock:
                if state is None or session.state == SessionState(state):
                    views.append(SessionView.of(session))
        return sorted(views, key=lambda v: v.created_at)

    # === LIFECYCLE ===

    def open_session(
        self,
        anomaly: Anomaly,
        hypotheses: Sequence[Hypothesis],
        purpose: SessionPurpose = SessionPurpose.DIAGNOSIS,
    ) -> SessionView:
        """Register a new session in AWAITING_START."""
        return self._open(anomaly.ref, hypotheses, purpose, anomaly=anomaly)

    def _open(
        self,
        anomaly_ref: str,
        hypotheses: Sequence[Hypothesis],
        purpose: SessionPurpose,
        anomaly: Optional[Anomaly] = None,
        follow_up_task_id: Optional[str] = None,
    ) -> SessionView:
        if not hypotheses:
            raise ValidationError("A session needs at least one hypothesis")

        unique: list[Hypothesis] = []
        seen = set()
        for h in hypotheses:
            if h.anomaly_ref != anomaly_ref:
                raise ValidationError(
                    f"Hypothesis {h.hypothesis_id} belongs to {h.anomaly_ref}, not {anomaly_ref}",
                    detail={"hypothesis_id": h.hypothesis_id},
                )
            if h.hypothesis_id not in seen:
                seen.add(h.hypothesis_id)
                unique.append(h)

        now = self.clock()
        session = DialogueSession(
            session_id=f"sess_{uuid.uuid4().hex[:12]}",
            anomaly_ref=anomaly_ref,
            hypotheses=unique,
            max_turns=self.config.max_turns,
            purpose=purpose,
            anomaly=anomaly,
            follow_up_task_id=follow_up_task_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._sessions[session.session_id] = session
            if anomaly is not None:
                self._anomalies[anomaly_ref] = anomaly

        logger.info(f"Opened {purpose.value} session {session.session_id} for {anomaly_ref}")
        return SessionView.of(session)

    def start(self, session_id: str) -> Question:
        """Ask the primary question (highest-confidence hypothesis first)."""
        session = self._get(session_id)
        with session.lock:
            self._require(session, SessionState.AWAITING_START, "start")

            if session.purpose == SessionPurpose.DIAGNOSIS:
                session.past_patterns = self._recall(session)
            if self.writer is not None and session.anomaly is not None and session.plan is None:
                session.plan = self.writer.write(session.anomaly, session.hypotheses, session.past_patterns)

            question = self._ask(session, session.hypotheses[0])
            session.state = SessionState.AWAITING_ANSWER
            session.updated_at = self.clock()
            return question

    def submit_answer(
        self,
        session_id: str,
        answer_text: str,
        answer_type: Union[AnswerType, str] = AnswerType.FREE_TEXT,
    ) -> TurnOutcome:
        """Evaluate an answer to the current question and move the session on.

        Raises:
            SessionNotFoundError: unknown id.
            SessionStateError: the session is not waiting for an answer.
            ValidationError: empty answer.
        """
        session = self._get(session_id)
        answer_type = AnswerType(answer_type)
        if not answer_text or not answer_text.strip():
            raise ValidationError("Answer text is empty", detail={"session_id": session_id})

        with session.lock:
            if session.state not in (SessionState.AWAITING_ANSWER, SessionState.ESCALATED):
                raise SessionStateError(
                    f"Session {session_id} is {session.state.value}, not waiting for an answer",
                    detail={"session_id": session_id, "state": session.state.value},
                )

            escalated = session.state == SessionState.ESCALATED
            session.state = SessionState.EVALUATING
            session.turn_count += 1
            session.updated_at = self.clock()

            if escalated:
                session.pending = self._evaluate_final(session, answer_text.strip(), answer_type)
            else:
                session.pending = self._evaluate_turn(session, answer_text.strip(), answer_type)

            return self._commit(session)

    def retry_pending(self, session_id: str) -> TurnOutcome:
        """Try again to persist a turn whose store write failed."""
        session = self._get(session_id)
        with session.lock:
            if session.state != SessionState.EVALUATING or session.pending is None:
                raise SessionStateError(
                    f"Session {session_id} has no pending turn",
                    detail={"session_id": session_id, "state": session.state.value},
                )
            return self._commit(session)

    def abandon(self, session_id: str, reason: str = "abandoned") -> SessionView:
        """Terminate a session without scheduling follow-ups."""
        session = self._get(session_id)
        with session.lock:
            if session.state.is_terminal:
                raise SessionStateError(
                    f"Session {session_id} already {session.state.value}",
                    detail={"session_id": session_id, "state": session.state.value},
                )
            return self._terminate(session, reason)

    def _terminate(self, session: DialogueSession, reason: str) -> SessionView:
        """End a session without follow-ups. Caller holds ``session.lock``."""
        if session.pending is not None:
            # Keep the answer in the session even though it never reached the store
            session.responses.append(session.pending.response)
            session.pending = None

        session.state = SessionState.TERMINATED
        session.outcome = reason
        session.current_question = None
        session.updated_at = self.clock()
        self._write_resolution(session)
        logger.info(f"Session {session.session_id} {reason} after {session.turn_count} turns")
        return SessionView.of(session)

    def expire_idle(self, now: Optional[datetime] = None) -> list[SessionView]:
        """Terminate sessions left waiting longer than ``idle_timeout``. No-op when unset."""
        timeout = self.config.idle_timeout
        if timeout is None:
            return []
        now = now or self.clock()

        with self._lock:
            sessions = list(self._sessions.values())

        expired = []
        for session in sessions:
            # Check and terminate under one hold so a late answer cannot slip in between
            with session.lock:
                waiting = session.state in (
                    SessionState.AWAITING_START, SessionState.AWAITING_ANSWER, SessionState.ESCALATED,
                )
                if not waiting or now - session.updated_at <= timeout:
                    continue
                expired.append(self._terminate(session, "expired"))

        if expired:
            logger.info(f"Expired {len(expired)} idle sessions")
        return expired

    def reopen(self, task: FollowUpTask) -> SessionView:
        """Open a fresh session for a due follow-up task."""
        template = self.templates.follow_up(task.kind.value)
        with self._lock:
            anomaly = self._anomalies.get(task.anomaly_ref)
            category = self._categories.get(task.anomaly_ref, HypothesisCategory.INTERNAL)

        hypothesis = follow_up_hypothesis(
            task.anomaly_ref,
            template,
            explanation=task.explanation,
            task_id=task.task_id,
            version=self.templates.version,
            category=category,
            anomaly=anomaly,
        )
        return self._open(
            task.anomaly_ref,
            [hypothesis],
            _FOLLOW_UP_PURPOSES[template.purpose],
            anomaly=anomaly,
            follow_up_task_id=task.task_id,
        )

    # === TURN LOGIC ===

    @staticmethod
    def _require(session: DialogueSession, state: SessionState, action: str):
        if session.state != state:
            raise SessionStateError(
                f"Cannot {action} session {session.session_id} in state {session.state.value}",
                detail={"session_id": session.session_id, "state": session.state.value},
            )

    def _ask(self, session: DialogueSession, hypothesis: Hypothesis) -> Question:
        if hypothesis.hypothesis_id in session.asked_hypotheses:
            raise SessionStateError(f"Hypothesis {hypothesis.hypothesis_id} was already asked")

        if session.plan is not None:
            text = session.plan.question_for(hypothesis)
            first = hypothesis.hypothesis_id == session.hypotheses[0].hypothesis_id
            choices = tuple(session.plan.choices) if first else hypothesis.choices
        else:
            text = hypothesis.primary_question
            choices = hypothesis.choices

        session.asked_hypotheses.append(hypothesis.hypothesis_id)
        question = Question(
            session_id=session.session_id,
            text=text,
            turn=session.turn_count + 1,
            hypothesis_id=hypothesis.hypothesis_id,
            choices=choices,
        )
        session.current_question = question
        return question

    def _ask_open(self, session: DialogueSession) -> Question:
        context = question_context(session.anomaly_ref, session.anomaly)
        question = Question(
            session_id=session.session_id,
            text=render(self.templates.escalation_question, **context),
            turn=session.turn_count + 1,
            choices=self.templates.escalation_choices,
        )
        session.current_question = question
        return question

    def _response(
        self,
        session: DialogueSession,
        answer_text: str,
        answer_type: AnswerType,
        confirmed_id: Optional[str],
        impact_tag: str,
    ) -> AnomalyResponse:
        question = session.current_question
        return AnomalyResponse(
            response_id=f"resp_{session.session_id}_{session.turn_count}",
            session_ref=session.session_id,
            anomaly_ref=session.anomaly_ref,
            question=question.text if question else "",
            answer_text=answer_text,
            answer_type=answer_type,
            confirmed_hypothesis_id=confirmed_id,
            impact_tag=impact_tag,
            timestamp=self.clock(),
            hypothesis_id=question.hypothesis_id if question else None,
            turn=session.turn_count,
            purpose=session.purpose,
        )

    def _infer_tag(self, answer_text: str, fallback: str) -> str:
        return self.matcher.infer_tag(answer_text, self.templates.hypothesis_templates()) or fallback

    def _evaluate_turn(self, session: DialogueSession, answer_text: str, answer_type: AnswerType) -> _PendingTurn:
        hypothesis = session.hypothesis(session.current_question.hypothesis_id)
        # A re-check asks about one known explanation, so no other cause competes with it
        competing = (
            self.templates.topic_patterns()
            if session.purpose == SessionPurpose.DIAGNOSIS else []
        )
        evaluation = self.matcher.evaluate(
            answer_text, answer_type, hypothesis.expected_pattern, competing,
        )

        if evaluation.confirmed:
            response = self._response(
                session, answer_text, answer_type, hypothesis.hypothesis_id, hypothesis.impact_tag,
            )
            return _PendingTurn(response, evaluation, SessionState.RESOLVED)

        response = self._response(
            session, answer_text, answer_type, None, self._infer_tag(answer_text, "unconfirmed"),
        )

        # Follow-up checks ask one thing; a "no" there is an answer, not a reason to escalate
        if session.purpose != SessionPurpose.DIAGNOSIS:
            return _PendingTurn(response, evaluation, SessionState.TERMINATED)

        next_hypothesis = session.next_unasked()
        if session.turn_count < session.max_turns and next_hypothesis is not None:
            return _PendingTurn(response, evaluation, SessionState.AWAITING_ANSWER, next_hypothesis)
        return _PendingTurn(response, evaluation, SessionState.ESCALATED)

    def _evaluate_final(self, session: DialogueSession, answer_text: str, answer_type: AnswerType) -> _PendingTurn:
        response = self._response(
            session, answer_text, answer_type, None, self._infer_tag(answer_text, "other"),
        )
        return _PendingTurn(response, AnswerEvaluation(confirmed=False), SessionState.TERMINATED)

    def _commit(self, session: DialogueSession) -> TurnOutcome:
        """Persist the pending response, then apply its transition.

        On a store failure the session stays in EVALUATING with the pending
        turn kept for ``retry_pending``.
        """
        pending = session.pending
        try:
            self._persist(
                pending.response.response_id,
                pending.response.answer_text,
                pending.response.to_payload(),
            )
        except ExternalServiceError as e:
            session.failure = f"response not saved: {e}"
            logger.error(f"Session {session.session_id}: {session.failure}")
            return TurnOutcome(
                session_id=session.session_id,
                state=session.state,
                response=pending.response,
                evaluation=pending.evaluation,
                failure=session.failure,
            )

        session.pending = None
        session.failure = None
        session.responses.append(pending.response)
        session.state = pending.next_state
        session.updated_at = self.clock()

        next_question = None
        if pending.next_state == SessionState.AWAITING_ANSWER:
            next_question = self._ask(session, pending.next_hypothesis)
            logger.info(
                f"Session {session.session_id}: turn {session.turn_count} unconfirmed, "
                f"asking {pending.next_hypothesis.hypothesis_id}"
            )
        elif pending.next_state == SessionState.ESCALATED:
            next_question = self._ask_open(session)
            logger.info(f"Session {session.session_id}: escalated after {session.turn_count} turns")
        else:
            session.current_question = None
            if pending.next_state == SessionState.RESOLVED:
                session.confirmed_hypothesis_id = pending.response.confirmed_hypothesis_id
                session.outcome = "confirmed"
            elif session.purpose == SessionPurpose.DIAGNOSIS:
                session.outcome = "explained_by_user"
            else:
                session.outcome = "not_confirmed"
            self._finish(session)

        return TurnOutcome(
            session_id=session.session_id,
            state=session.state,
            response=pending.response,
            evaluation=pending.evaluation,
            next_question=next_question,
            follow_ups=tuple(session.follow_ups),
            failure=session.failure,
        )

    # === SIDE EFFECTS ===

    def _recall(self, session: DialogueSession) -> list[PastPattern]:
        """Earlier explained anomalies of the same product. Lookup failures only cost context."""
        anomaly = session.anomaly
        if self.store is None or anomaly is None or self.config.history_limit <= 0:
            return []
        text = " ".join(h.title for h in session.hypotheses)
        try:
            return call_with_retry(
                lambda: recall_past_patterns(
                    self.store,
                    self.collection,
                    self.embedder.embed(text),
                    anomaly.product_id,
                    before=anomaly.date,
                    days=self.config.history_days,
                    limit=self.config.history_limit,
                ),
                self.retry,
                operation=f"recall history for {session.anomaly_ref}",
            )
        except ExternalServiceError as e:
            logger.warning(f"Session {session.session_id}: past patterns unavailable: {e}")
            return []

    def _persist(self, record_id: str, text: str, payload: dict[str, Any]):
        if self.store is None:
            return
        call_with_retry(
            lambda: self.store.store(self.collection, record_id, self.embedder.embed(text), payload),
            self.retry,
            operation=f"store {payload.get('type')} {record_id}",
        )

    def _explanation(self, session: DialogueSession) -> str:
        if session.confirmed_hypothesis_id:
            return session.hypothesis(session.confirmed_hypothesis_id).title
        if session.responses:
            return session.responses[-1].answer_text[:120]
        return ""

    def _finish(self, session: DialogueSession):
        """Schedule follow-ups and write the resolution summary. Failures stay in the session."""
        if session.confirmed_hypothesis_id and session.purpose == SessionPurpose.DIAGNOSIS:
            with self._lock:
                self._categories[session.anomaly_ref] = session.hypothesis(
                    session.confirmed_hypothesis_id
                ).category

        # Re-checks themselves never schedule further re-checks
        if self.scheduler is not None and session.purpose == SessionPurpose.DIAGNOSIS:
            try:
                session.follow_ups = self.scheduler.schedule(
                    session.anomaly_ref, self.clock(), explanation=self._explanation(session),
                )
            except ExternalServiceError as e:
                session.failure = f"follow-ups not scheduled: {e}"
                logger.error(f"Session {session.session_id}: {session.failure}")

        self._write_resolution(session)
        logger.info(
            f"Session {session.session_id} {session.state.value} ({session.outcome}) "
            f"after {session.turn_count} turns"
        )

    def _write_resolution(self, session: DialogueSession):
        day, _, product_id = session.anomaly_ref.partition("|")
        confirmed = (
            session.hypothesis(session.confirmed_hypothesis_id)
            if session.confirmed_hypothesis_id else None
        )
        summary = (
            f"{session.anomaly_ref} {session.purpose.value}: {session.outcome}. "
            f"{confirmed.title if confirmed else self._explanation(session)}"
        )
        payload = {
            "type": RESOLUTION_TYPE,
            "session_id": session.session_id,
            "anomaly_ref": session.anomaly_ref,
            "anomaly_date": day,
            "product_id": product_id,
            "purpose": session.purpose.value,
            "state": session.state.value,
            "outcome": session.outcome,
            "confirmed_hypothesis_id": session.confirmed_hypothesis_id,
            "category": confirmed.category.value if confirmed else None,
            "impact_tag": confirmed.impact_tag if confirmed else (
                session.responses[-1].impact_tag if session.responses else None
            ),
            "turn_count": session.turn_count,
            "follow_up_task_id": session.follow_up_task_id,
            "summary": summary,
        }
        try:
            self._persist(f"res_{session.session_id}", summary, payload)
        except ExternalServiceError as e:
            session.failure = f"resolution not saved: {e}"
            logger.error(f"Session {session.session_id}: {session.failure}")
