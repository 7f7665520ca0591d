import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agent_models import AgentAction, AgentState, ConversationContext, Intention, StateChange
from logging_config import get_logger

Guard = Callable[[Dict[str, Any]], bool]


@dataclass(frozen=True)
class Transition:
    from_state: AgentState
    trigger: Intention
    to_state: AgentState
    guard: Optional[Guard] = None
    name: str = ""

    def accepts(self, data: Dict[str, Any]) -> bool:
        return self.guard is None or bool(self.guard(data))

    @property
    def label(self) -> str:
        return self.name or f"{self.from_state.value}->{self.to_state.value}"


@dataclass
class TransitionResult:
    success: bool
    new_state: AgentState
    previous_state: Optional[AgentState]
    available_actions: List[AgentAction] = field(default_factory=list)
    trigger: Optional[Intention] = None
    rule: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "new_state": self.new_state.value,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "available_actions": [a.value for a in self.available_actions],
            "trigger": self.trigger.value if self.trigger else None,
            "rule": self.rule,
            "reason": self.reason,
        }


def _not_fast_track(data: Dict[str, Any]) -> bool:
    return not data.get("fast_track")


S = AgentState
I = Intention

# Order matters: the first rule whose guard accepts wins.
BASE_TRANSITIONS: Tuple[Transition, ...] = (
    Transition(S.GREETING, I.JOB_INQUIRY, S.JOB_DISCUSSION),
    Transition(S.GREETING, I.CV_UPLOAD, S.DOCUMENT_COLLECTION),
    Transition(S.GREETING, I.SALARY_QUESTION, S.Q_AND_A),
    Transition(S.GREETING, I.BENEFITS_QUESTION, S.Q_AND_A),
    Transition(S.GREETING, I.JAILBREAK_ATTEMPT, S.JAILBREAK_DETECTED),
    Transition(S.GREETING, I.APPLICATION_STATUS, S.APPLICATION_REVIEW),
    Transition(S.GREETING, I.INTERVIEW_PREP, S.INTERVIEW_PREPARATION),
    Transition(S.GREETING, I.FAREWELL, S.CLOSING),
    Transition(S.JOB_DISCUSSION, I.SALARY_QUESTION, S.Q_AND_A),
    Transition(S.JOB_DISCUSSION, I.BENEFITS_QUESTION, S.Q_AND_A),
    Transition(S.JOB_DISCUSSION, I.EXPERIENCE_VALIDATION, S.SURVEY),
    Transition(S.JOB_DISCUSSION, I.FAREWELL, S.CLOSING),
    Transition(S.JOB_DISCUSSION, I.HELP_REQUEST, S.JOB_PRESENTATION),
    Transition(S.Q_AND_A, I.EXPERIENCE_VALIDATION, S.SURVEY),
    Transition(S.Q_AND_A, I.CV_UPLOAD, S.CV_PROCESSING),
    Transition(S.Q_AND_A, I.FAREWELL, S.CLOSING),
    Transition(S.SURVEY, I.CV_UPLOAD, S.CV_PROCESSING),
    Transition(S.SURVEY, I.TECHNICAL_SKILLS_DISCUSSION, S.TECHNICAL_VALIDATION),
    Transition(S.SURVEY, I.FAREWELL, S.CLOSING),
    Transition(S.CV_PROCESSING, I.TECHNICAL_SKILLS_DISCUSSION, S.TECHNICAL_VALIDATION),
    Transition(S.CV_PROCESSING, I.EXPERIENCE_VALIDATION, S.SKILL_ASSESSMENT, _not_fast_track, "cv_processing->skill_assessment"),
    Transition(S.CV_PROCESSING, I.EXPERIENCE_VALIDATION, S.FINAL_INTERVIEW, name="cv_processing->final_interview"),
    Transition(S.CV_PROCESSING, I.CV_UPLOAD, S.CV_UPLOADED),
    Transition(S.TECHNICAL_VALIDATION, I.EXPERIENCE_VALIDATION, S.SKILL_ASSESSMENT, _not_fast_track, "technical_validation->skill_assessment"),
    Transition(S.TECHNICAL_VALIDATION, I.EXPERIENCE_VALIDATION, S.FINAL_INTERVIEW, name="technical_validation->final_interview"),
    Transition(S.SKILL_ASSESSMENT, I.EXPERIENCE_VALIDATION, S.FINAL_INTERVIEW),
    Transition(S.SKILL_ASSESSMENT, I.FAREWELL, S.EVALUATION),
    Transition(S.FINAL_INTERVIEW, I.FAREWELL, S.CLOSING),
    Transition(S.EVALUATION, I.FAREWELL, S.CLOSING),
    Transition(S.APPLICATION_REVIEW, I.INTERVIEW_PREP, S.INTERVIEW_SCHEDULING),
    Transition(S.APPLICATION_REVIEW, I.CV_UPLOAD, S.DOCUMENT_COLLECTION),
    Transition(S.APPLICATION_REVIEW, I.FAREWELL, S.CLOSING),
    Transition(S.INTERVIEW_PREPARATION, I.EXPERIENCE_VALIDATION, S.INTERVIEW_SCHEDULING),
    Transition(S.INTERVIEW_PREPARATION, I.FAREWELL, S.CLOSING),
    Transition(S.INTERVIEW_SCHEDULING, I.FAREWELL, S.CLOSING),
    Transition(S.INTERVIEW_SCHEDULING, I.CV_UPLOAD, S.DOCUMENT_COLLECTION),
    Transition(S.DOCUMENT_COLLECTION, I.CV_UPLOAD, S.CV_UPLOADED),
    Transition(S.DOCUMENT_COLLECTION, I.FAREWELL, S.CLOSING),
    Transition(S.CV_UPLOADED, I.APPLICATION_STATUS, S.APPLICATION_REVIEW),
    Transition(S.CV_UPLOADED, I.FAREWELL, S.CLOSING),
    Transition(S.ERROR, I.HELP_REQUEST, S.Q_AND_A),
    Transition(S.JAILBREAK_DETECTED, I.HELP_REQUEST, S.Q_AND_A),
) + tuple(
    Transition(state, I.UNKNOWN, S.ERROR)
    for state in (
        S.GREETING,
        S.JOB_DISCUSSION,
        S.Q_AND_A,
        S.SURVEY,
        S.CV_PROCESSING,
        S.TECHNICAL_VALIDATION,
        S.SKILL_ASSESSMENT,
        S.FINAL_INTERVIEW,
    )
)

A = AgentAction

STATE_ACTIONS: Dict[AgentState, Tuple[AgentAction, ...]] = {
    S.GREETING: (A.SEND_GREETING, A.PRESENT_JOB, A.REQUEST_CLARIFICATION),
    S.JOB_PRESENTATION: (A.PRESENT_JOB, A.ANSWER_QUESTION, A.ASK_SURVEY_QUESTION),
    S.JOB_DISCUSSION: (A.PRESENT_JOB, A.ANSWER_QUESTION, A.ASK_SURVEY_QUESTION),
    S.Q_AND_A: (A.ANSWER_QUESTION, A.ASK_SURVEY_QUESTION, A.REQUEST_CLARIFICATION),
    S.SURVEY: (A.ASK_SURVEY_QUESTION, A.PROCESS_CV, A.VALIDATE_TECHNICAL_SKILLS),
    S.DOCUMENT_COLLECTION: (A.PROCESS_CV, A.REQUEST_CLARIFICATION, A.ASK_SURVEY_QUESTION),
    S.CV_PROCESSING: (A.PROCESS_CV, A.VALIDATE_TECHNICAL_SKILLS, A.ASK_SURVEY_QUESTION),
    S.CV_UPLOADED: (A.VALIDATE_TECHNICAL_SKILLS, A.ASK_SURVEY_QUESTION, A.CONDUCT_SKILL_ASSESSMENT),
    S.TECHNICAL_VALIDATION: (A.VALIDATE_TECHNICAL_SKILLS, A.CONDUCT_SKILL_ASSESSMENT, A.ASK_SURVEY_QUESTION),
    S.SKILL_ASSESSMENT: (A.CONDUCT_SKILL_ASSESSMENT, A.CONDUCT_FINAL_INTERVIEW, A.GENERATE_REPORT),
    S.APPLICATION_REVIEW: (A.GENERATE_REPORT, A.ANSWER_QUESTION, A.REQUEST_CLARIFICATION),
    S.INTERVIEW_SCHEDULING: (A.CONDUCT_FINAL_INTERVIEW, A.REQUEST_CLARIFICATION, A.ASK_SURVEY_QUESTION),
    S.INTERVIEW_PREPARATION: (A.CONDUCT_SKILL_ASSESSMENT, A.CONDUCT_FINAL_INTERVIEW, A.REQUEST_CLARIFICATION),
    S.FINAL_INTERVIEW: (A.CONDUCT_FINAL_INTERVIEW, A.GENERATE_REPORT, A.END_CONVERSATION),
    S.EVALUATION: (A.GENERATE_REPORT, A.END_CONVERSATION),
    S.CLOSING: (A.END_CONVERSATION, A.GENERATE_REPORT),
    S.ERROR: (A.HANDLE_ERROR, A.REQUEST_CLARIFICATION, A.SEND_GREETING),
    S.JAILBREAK_DETECTED: (A.BLOCK_JAILBREAK, A.REQUEST_CLARIFICATION),
}


def build_transition_table(custom_transitions: Optional[Sequence[Transition]] = None) -> Tuple[Transition, ...]:
    """Base table with custom rules appended after it."""
    return BASE_TRANSITIONS + tuple(custom_transitions or ())


class AgentStateMachine:
    """Transition table operator bound to one conversation context.

    The table is plain data built once; guards are looked up and run in
    table order for the current ``(state, intention)`` pair.
    """

    def __init__(
        self,
        context: Optional[ConversationContext] = None,
        transitions: Optional[Sequence[Transition]] = None,
        custom_transitions: Optional[Sequence[Transition]] = None,
        state_actions: Optional[Dict[AgentState, Sequence[AgentAction]]] = None,
        enable_state_history: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.context = context or ConversationContext()
        if transitions is not None:
            self.transitions = tuple(transitions) + tuple(custom_transitions or ())
        else:
            self.transitions = build_transition_table(custom_transitions)
        self.state_actions = {k: tuple(v) for k, v in (state_actions or STATE_ACTIONS).items()}
        self.enable_state_history = enable_state_history
        self.logger = logger or get_logger("state")

    @property
    def current_state(self) -> AgentState:
        return self.context.current_state

    @property
    def previous_state(self) -> Optional[AgentState]:
        return self.context.previous_state

    def transitions_from(self, state: AgentState) -> List[Transition]:
        return [t for t in self.transitions if t.from_state == state]

    def _find(self, intention: Intention, data: Dict[str, Any]) -> Optional[Transition]:
        for t in self.transitions:
            if t.from_state == self.current_state and t.trigger == intention and t.accepts(data):
                return t
        return None

    def _merged_data(self, context_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        data = dict(self.context.data)
        data.update(context_data or {})
        return data

    def can_transition(self, intention: Intention, context_data: Optional[Dict[str, Any]] = None) -> bool:
        return self._find(intention, self._merged_data(context_data)) is not None

    def transition(self, intention: Intention, context_data: Optional[Dict[str, Any]] = None) -> TransitionResult:
        data = self._merged_data(context_data)
        rule = self._find(intention, data)
        current = self.current_state
        if rule is None:
            self.logger.debug("transition_rejected state=%s intention=%s", current.value, intention.value)
            return TransitionResult(
                success=False,
                new_state=current,
                previous_state=self.previous_state,
                available_actions=self.get_available_actions(),
                trigger=intention,
                reason=f"No valid transition found for intention: {intention.value} from state: {current.value}",
            )

        self._move(rule.to_state, intention)
        if context_data:
            self.context.data.update(context_data)
        self.logger.info("state_transition from=%s to=%s trigger=%s", current.value, rule.to_state.value, intention.value)
        return TransitionResult(
            success=True,
            new_state=rule.to_state,
            previous_state=current,
            available_actions=self.get_available_actions(),
            trigger=intention,
            rule=rule.label,
        )

    def force_transition(self, state: AgentState, reason: str = "") -> TransitionResult:
        current = self.current_state
        self._move(state, None, forced=True, reason=reason)
        self.context.data["force_transition_reason"] = reason or "unspecified"
        self.logger.warning("forced_transition from=%s to=%s reason=%s", current.value, state.value, reason or "-")
        return TransitionResult(
            success=True,
            new_state=state,
            previous_state=current,
            available_actions=self.get_available_actions(),
            rule="forced",
            reason=reason or None,
        )

    def _move(self, to_state: AgentState, trigger: Optional[Intention], forced: bool = False, reason: str = ""):
        ctx = self.context
        if self.enable_state_history:
            ctx.state_history.append(
                StateChange(from_state=ctx.current_state, to_state=to_state, trigger=trigger, forced=forced, reason=reason)
            )
        ctx.previous_state = ctx.current_state
        ctx.current_state = to_state

    def reset(self, state: AgentState = AgentState.GREETING, keep_history: bool = False):
        ctx = self.context
        ctx.current_state = state
        ctx.previous_state = None
        ctx.data.clear()
        if not keep_history:
            ctx.state_history.clear()

    def get_available_actions(self, state: Optional[AgentState] = None) -> List[AgentAction]:
        return list(self.state_actions.get(state or self.current_state, ()))

    def get_state_history(self) -> List[StateChange]:
        return list(self.context.state_history)

    def get_context(self) -> ConversationContext:
        return self.context

    def validate_configuration(self) -> List[str]:
        """Return configuration problems; an empty list means the table is sound."""
        issues = []
        for state in AgentState:
            if not self.state_actions.get(state):
                issues.append(f"State {state.value} has no available actions")

        for t in self.transitions:
            if t.to_state not in self.state_actions:
                issues.append(f"Transition {t.label} targets state without actions: {t.to_state.value}")

        reachable = {AgentState.GREETING}
        queue = deque([AgentState.GREETING])
        while queue:
            state = queue.popleft()
            for t in self.transitions_from(state):
                if t.to_state not in reachable:
                    reachable.add(t.to_state)
                    queue.append(t.to_state)
        for state in AgentState:
            if state not in reachable:
                issues.append(f"State {state.value} is unreachable from {AgentState.GREETING.value}")
        return issues
