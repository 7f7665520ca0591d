import logging
import os
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from agent_models import AgentState, ContextValidity, ConversationMessage, Intention, JobApplication
from cv_parser import CVAnalysis, CVParser, JobRequirements, ParsingResult, ParsingStatus
from intention_detector import IntentionDetector, IntentionResult
from jailbreak_detector import JailbreakDetector, ThreatAssessment, ThreatContext
from logging_config import get_logger
from notifications import (
    CV_UPLOADED,
    ESCALATION_REQUESTED,
    SECURITY_ALERT,
    SESSION_ENDED,
    SESSION_STARTED,
    NotificationEvent,
    notifier_from_env,
)
from sessions import InMemorySessionStore, Session
from state_machine import AgentStateMachine, Transition, TransitionResult, build_transition_table

ENGINE_VERSION = "1.0.0"

BLOCKED_RESPONSE = (
    "I'm sorry, but I cannot process that request due to security concerns. "
    "Please rephrase your message in a professional manner."
)
ERROR_RESPONSE = "I apologize, but I encountered an error processing your message. Please try again."

DEFAULT_RESPONSES = {
    Intention.GREETING: (
        "Hello! Welcome to {{company}}'s recruiting assistant. I can tell you about open positions, "
        "answer questions about salary and benefits, or help with your application. What would you like to know?"
    ),
    Intention.JOB_INQUIRY: (
        "We have several open positions. Which role or area are you interested in, so I can share the details?"
    ),
    Intention.SALARY_QUESTION: (
        "Compensation depends on the role and your experience. I can share the salary range once we've "
        "identified the position that fits you best."
    ),
    Intention.BENEFITS_QUESTION: (
        "Our benefits include health insurance, paid time off, a retirement plan and a learning budget. "
        "Is there a specific benefit you'd like to know more about?"
    ),
    Intention.EXPERIENCE_VALIDATION: (
        "Thanks for sharing your experience. Could you tell me more about your most recent role and the projects you worked on?"
    ),
    Intention.TECHNICAL_SKILLS_DISCUSSION: (
        "Let's talk about your technical skills. Which technologies do you use most day to day?"
    ),
    Intention.EDUCATION_DISCUSSION: "Thanks! Could you share your highest degree or any certifications relevant to the role?",
    Intention.AVAILABILITY_DISCUSSION: "Good to know. When would you be available to start, and do you have a notice period?",
    Intention.LOCATION_QUESTION: (
        "Our roles can be on-site, hybrid or remote depending on the team. Do you have a location preference?"
    ),
    Intention.COMPANY_CULTURE_QUESTION: (
        "At {{company}} we value collaboration, ownership and continuous learning. "
        "Is there anything specific about the team you'd like to know?"
    ),
    Intention.CAREER_GROWTH_QUESTION: (
        "We support growth through mentorship, training budgets and clear career paths. "
        "What direction would you like your career to take?"
    ),
    Intention.CV_UPLOAD: "Please upload your CV (PDF, DOCX, TXT, HTML or JSON) and I'll review it right away.",
    Intention.HELP_REQUEST: (
        "I'm happy to help! I can tell you about open positions, explain the application process, "
        "answer salary and benefits questions, or review your CV."
    ),
    Intention.APPLICATION_STATUS: (
        "Let me check on your application. Once your CV is on file I can tell you where you are in the process."
    ),
    Intention.INTERVIEW_PREP: (
        "I can help you prepare for your interview. Expect questions about your experience, your technical skills "
        "and situations you've handled. Would you like some practice questions?"
    ),
    Intention.FAREWELL: (
        "Thank you for your time! Good luck with your application, and come back any time if you have more questions."
    ),
    Intention.ESCALATION: "I'll connect you with a member of our recruiting team. Someone will follow up with you shortly.",
    Intention.JAILBREAK_ATTEMPT: (
        "I can only help with questions about our open positions and your application. "
        "Let's keep our conversation focused on your job search."
    ),
    Intention.UNKNOWN: (
        "I'm not sure I understood that. Could you rephrase? I can help with open positions, "
        "salary and benefits, or your application."
    ),
}

NEXT_STEPS = {
    AgentState.GREETING: ["Ask about open positions", "Upload your CV"],
    AgentState.JOB_PRESENTATION: ["Review the job requirements", "Ask about salary or benefits"],
    AgentState.JOB_DISCUSSION: ["Ask about salary or benefits", "Share your experience"],
    AgentState.Q_AND_A: ["Share your experience", "Upload your CV"],
    AgentState.SURVEY: ["Describe your technical skills", "Upload your CV"],
    AgentState.DOCUMENT_COLLECTION: ["Upload your CV"],
    AgentState.CV_PROCESSING: ["Discuss your technical skills", "Confirm your experience"],
    AgentState.CV_UPLOADED: ["Check your application status", "Discuss your technical skills"],
    AgentState.TECHNICAL_VALIDATION: ["Complete the technical questions", "Confirm your experience"],
    AgentState.SKILL_ASSESSMENT: ["Complete the skill assessment"],
    AgentState.APPLICATION_REVIEW: ["Prepare for your interview", "Upload updated documents"],
    AgentState.INTERVIEW_SCHEDULING: ["Confirm an interview slot"],
    AgentState.INTERVIEW_PREPARATION: ["Review common interview questions", "Share your experience"],
    AgentState.FINAL_INTERVIEW: ["Attend the final interview"],
    AgentState.EVALUATION: ["Wait for the evaluation result"],
    AgentState.CLOSING: ["Watch your email for updates"],
    AgentState.ERROR: ["Ask for help to continue"],
    AgentState.JAILBREAK_DETECTED: ["Ask a question about the job or your application"],
}

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class ResponseTemplate:
    id: str
    text: str
    intentions: Tuple[Intention, ...]
    states: Tuple[AgentState, ...] = ()
    validity: Optional[ContextValidity] = None
    priority: int = 0
    enabled: bool = True

    @property
    def variables(self) -> List[str]:
        return _PLACEHOLDER_RE.findall(self.text)

    def applies(self, intention: Intention, state: AgentState, validity: ContextValidity, variables: Dict[str, str]) -> bool:
        if not self.enabled or intention not in self.intentions:
            return False
        if self.states and state not in self.states:
            return False
        if self.validity is not None and validity != self.validity:
            return False
        return all(variables.get(v) for v in self.variables)


DEFAULT_TEMPLATES = (
    ResponseTemplate(
        "greeting_repeat",
        "Hello again! How else can I help you with your job search?",
        (Intention.GREETING,),
        validity=ContextValidity.INVALID,
        priority=20,
    ),
    ResponseTemplate(
        "greeting_named",
        "Hello {{candidate_name}}! Welcome back to {{company}}. How can I help you with your application today?",
        (Intention.GREETING,),
        priority=10,
    ),
    ResponseTemplate(
        "job_presentation",
        "The {{job_title}} position at {{company}} is open. Would you like to hear about the requirements, "
        "the salary range or the benefits?",
        (Intention.JOB_INQUIRY,),
        priority=10,
    ),
    ResponseTemplate(
        "application_status_cv",
        "Thanks {{candidate_name}}, your CV is on file and your application is under review. "
        "We'll contact you about next steps soon.",
        (Intention.APPLICATION_STATUS,),
        priority=10,
    ),
    ResponseTemplate(
        "skills_from_cv",
        "I can see {{skills}} on your CV. Which of these have you used most recently?",
        (Intention.TECHNICAL_SKILLS_DISCUSSION,),
        priority=10,
    ),
    ResponseTemplate(
        "recovered_from_security",
        "Of course. I can help with open positions, the application process, or questions about {{company}}.",
        (Intention.HELP_REQUEST,),
        states=(AgentState.Q_AND_A,),
        priority=5,
    ),
)


@dataclass
class ActionRecord:
    type: str
    detail: str = ""


@dataclass
class MessageResult:
    response: str
    state: AgentState
    intention: IntentionResult
    threat: Optional[ThreatAssessment]
    transition: Optional[TransitionResult]
    session_id: str
    actions: List[ActionRecord] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    security_flags: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "processing_time_ms": self.processing_time_ms,
            "security_flags": list(self.security_flags),
            "next_steps": list(self.next_steps),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "response": self.response,
            "state": self.state.value,
            "intention": self.intention.to_dict(),
            "threat": self.threat.to_dict() if self.threat else None,
            "transition": self.transition.to_dict() if self.transition else None,
            "actions": [{"type": a.type, "detail": a.detail} for a in self.actions],
            "metadata": self.metadata,
        }


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes"}


class RecruitmentEngine:
    def __init__(
        self,
        intention_detector: Optional[IntentionDetector] = None,
        jailbreak_detector: Optional[JailbreakDetector] = None,
        cv_parser: Optional[CVParser] = None,
        session_store=None,
        notifier=None,
        templates: Optional[Sequence[ResponseTemplate]] = None,
        custom_transitions: Optional[Sequence[Transition]] = None,
        max_conversation_length: Optional[int] = None,
        block_on_security: Optional[bool] = None,
        company_name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        load_dotenv()

        self.logger = logger or get_logger("engine")
        self.clock = clock
        self.company_name = company_name or (os.getenv("COMPANY_NAME", "our company").strip() or "our company")
        self.max_conversation_length = (
            max_conversation_length
            if max_conversation_length is not None
            else int(os.getenv("MAX_CONVERSATION_LENGTH", "50"))
        )

        self.intention_detector = intention_detector or IntentionDetector(
            confidence_threshold=float(os.getenv("INTENTION_CONFIDENCE_THRESHOLD", "0.7")),
            enable_multi_language=_env_flag("ENABLE_MULTI_LANGUAGE", "true"),
            enable_jailbreak_detection=_env_flag("ENABLE_JAILBREAK_DETECTION", "true"),
            logger=get_logger("intention"),
        )
        self.jailbreak_detector = jailbreak_detector or JailbreakDetector(
            confidence_threshold=float(os.getenv("JAILBREAK_CONFIDENCE_THRESHOLD", "0.6")),
            risk_score_threshold=float(os.getenv("JAILBREAK_RISK_THRESHOLD", "70")),
            block_on_high_risk=_env_flag("BLOCK_ON_HIGH_RISK", "true"),
            max_requests_per_minute=int(os.getenv("MAX_REQUESTS_PER_MINUTE", "30")),
            enable_semantic_analysis=_env_flag("ENABLE_SEMANTIC_ANALYSIS", "false"),
            enable_ml_classification=_env_flag("ENABLE_ML_CLASSIFICATION", "false"),
            clock=clock,
            logger=get_logger("security"),
        )
        self.cv_parser = cv_parser or CVParser(
            max_file_size=int(os.getenv("CV_MAX_FILE_SIZE", str(10 * 1024 * 1024))),
            confidence_threshold=float(os.getenv("CV_CONFIDENCE_THRESHOLD", "0.7")),
            logger=get_logger("cv"),
        )
        self.sessions = session_store or InMemorySessionStore(
            ttl_sec=int(os.getenv("SESSION_TTL_SEC", "3600")),
            max_sessions=int(os.getenv("MAX_SESSIONS", "500")),
            clock=clock,
        )
        self.notifier = notifier or notifier_from_env()
        self.block_on_security = (
            block_on_security if block_on_security is not None else self.jailbreak_detector.block_on_high_risk
        )
        self.templates = sorted(templates if templates is not None else DEFAULT_TEMPLATES, key=lambda t: -t.priority)
        self.transitions = build_transition_table(custom_transitions)

        issues = AgentStateMachine(transitions=self.transitions).validate_configuration()
        for issue in issues:
            self.logger.warning("state_table_issue %s", issue)

        self._started_at = clock()
        self._analytics = {
            "total_sessions": 0,
            "total_messages": 0,
            "security_events": 0,
            "errors": 0,
            "intention_counts": Counter(),
            "intention_accuracy": None,
            "state_transitions": Counter(),
            "cv_uploads": 0,
            "cv_parse_success": 0,
        }

    def get_status_info(self):
        return {
            "engine_version": ENGINE_VERSION,
            "company": self.company_name,
            "active_sessions": len(self.sessions.list_all()),
            "uptime_sec": int(self.clock() - self._started_at),
            "max_conversation_length": self.max_conversation_length,
            "block_on_security": self.block_on_security,
            "intention_detector": self.intention_detector.config_snapshot(),
            "supported_cv_formats": [f.value for f in self.cv_parser.supported_formats],
        }

    # -- sessions -------------------------------------------------------------

    def _open_session(self, session_id: str, metadata: Optional[Dict[str, Any]] = None) -> Session:
        metadata = metadata or {}
        self.cleanup_sessions()
        created = self.sessions.get(session_id) is None
        session = self.sessions.get_or_create(
            session_id,
            user_id=metadata.get("user_id"),
            max_messages=self.max_conversation_length,
            metadata={k: metadata[k] for k in ("ip_address", "user_agent", "language") if metadata.get(k)},
        )
        if session.state_machine is None:
            session.state_machine = AgentStateMachine(
                context=session.context,
                transitions=self.transitions,
                logger=get_logger("state"),
            )
        if created:
            self._analytics["total_sessions"] += 1
            self.logger.info("session_started session_id=%s", session_id)
            self._notify(SESSION_STARTED, session_id)
            # A new session can push the store past capacity.
            self.cleanup_sessions()
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def list_sessions(self) -> List[Session]:
        return self.sessions.list_all()

    def set_job(self, session_id: str, job: JobApplication) -> Session:
        session = self._open_session(session_id)
        session.context.job = job
        self.sessions.save(session)
        return session

    def end_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        summary = session.to_dict(include_messages=False)
        summary["duration_sec"] = round(self.clock() - session.created_at, 1)
        self.sessions.delete(session_id)
        self.jailbreak_detector.forget(session_id)
        self._notify(SESSION_ENDED, session_id, data={"message_count": session.message_count})
        self.logger.info("session_ended session_id=%s messages=%d", session_id, session.message_count)
        return summary

    def cleanup_sessions(self) -> List[str]:
        removed = self.sessions.cleanup(self.clock()) if hasattr(self.sessions, "cleanup") else []
        for session_id in removed:
            self.jailbreak_detector.forget(session_id)
        if removed:
            self.logger.info("sessions_cleaned count=%d", len(removed))
        return removed

    # -- message pipeline -----------------------------------------------------

    def process_message(self, text: str, session_id: str, metadata: Optional[Dict[str, Any]] = None) -> MessageResult:
        start = self.clock()
        metadata = metadata or {}
        session = None
        snapshot = None
        try:
            session = self._open_session(session_id, metadata)
            snapshot = _snapshot(session)
            machine = session.state_machine
            ctx = session.context
            now = self.clock()

            threat_ctx = ThreatContext.from_conversation(
                ctx,
                now,
                user_id=session.user_id,
                ip_address=metadata.get("ip_address"),
                user_agent=metadata.get("user_agent"),
                session_age_sec=now - session.created_at,
            )
            threat = self.jailbreak_detector.assess(text, threat_ctx)
            if threat.is_jailbreak and self.block_on_security:
                return self._blocked(session, text, threat, start)

            intention = self.intention_detector.detect(text, ctx)
            transition = machine.transition(intention.intention, {"last_intention": intention.intention.value})
            state = machine.current_state

            variables = self._template_variables(session)
            response = self._select_response(intention, state, variables)
            actions = self._derive_actions(session, intention, transition)

            flags = []
            if intention.intention == Intention.JAILBREAK_ATTEMPT:
                flags.append("unsafe_content" if intention.metadata.get("reason") == "unsafe_content" else "jailbreak_intention")
            if threat.detected_types and not threat.is_jailbreak:
                flags.append("suspicious_content")

            self._append_history(session, text, response, intention.intention, intention.confidence, now)
            self._record_analytics(intention, transition, security_event=bool(flags))
            if intention.intention == Intention.JAILBREAK_ATTEMPT:
                self._notify(SECURITY_ALERT, session_id, severity="medium", data={"source": "intention_detector"})
            self.sessions.save(session)

            self.logger.info(
                "message_processed session_id=%s intention=%s confidence=%.2f state=%s risk=%d",
                session_id,
                intention.intention.value,
                intention.confidence,
                state.value,
                threat.risk_score,
            )
            return MessageResult(
                response=response,
                state=state,
                intention=intention,
                threat=threat,
                transition=transition,
                session_id=session_id,
                actions=actions,
                next_steps=list(NEXT_STEPS.get(state, [])),
                security_flags=flags,
                processing_time_ms=int((self.clock() - start) * 1000),
            )
        except Exception:
            self.logger.exception("message_processing_failed session_id=%s", session_id)
            if session is not None and snapshot is not None:
                _restore(session, snapshot)
            self._analytics["errors"] += 1
            self._analytics["total_messages"] += 1
            state = session.context.current_state if session is not None else AgentState.GREETING
            return MessageResult(
                response=ERROR_RESPONSE,
                state=state,
                intention=IntentionResult(Intention.UNKNOWN, 0.0, ContextValidity.REQUIRES_CLARIFICATION, {"reason": "processing_error"}),
                threat=None,
                transition=None,
                session_id=session_id,
                next_steps=list(NEXT_STEPS.get(state, [])),
                security_flags=["processing_error"],
                processing_time_ms=int((self.clock() - start) * 1000),
            )

    def _blocked(self, session: Session, text: str, threat: ThreatAssessment, start: float) -> MessageResult:
        machine = session.state_machine
        transition = machine.force_transition(AgentState.GREETING, reason="security_block")
        intention = IntentionResult(
            Intention.JAILBREAK_ATTEMPT,
            threat.confidence,
            ContextValidity.INVALID,
            {"source": "jailbreak_detector", "risk_score": threat.risk_score},
        )
        self._append_history(session, text, BLOCKED_RESPONSE, Intention.JAILBREAK_ATTEMPT, threat.confidence, self.clock())
        self._record_analytics(intention, None, security_event=True)
        self._notify(
            SECURITY_ALERT,
            session.session_id,
            severity=threat.severity.value,
            data={"risk_score": threat.risk_score, "types": [t.value for t in threat.detected_types]},
        )
        self.sessions.save(session)
        self.logger.warning(
            "message_blocked session_id=%s risk=%d severity=%s",
            session.session_id,
            threat.risk_score,
            threat.severity.value,
        )
        return MessageResult(
            response=BLOCKED_RESPONSE,
            state=machine.current_state,
            intention=intention,
            threat=threat,
            transition=transition,
            session_id=session.session_id,
            actions=[ActionRecord("block_message", "Message blocked by security screening"), ActionRecord("send_message", "refusal")],
            next_steps=list(NEXT_STEPS[AgentState.GREETING]),
            security_flags=["blocked_jailbreak"],
            processing_time_ms=int((self.clock() - start) * 1000),
        )

    def _template_variables(self, session: Session) -> Dict[str, str]:
        ctx = session.context
        profile = ctx.candidate_profile
        job = ctx.job
        return {
            "candidate_name": profile.full_name if profile else "",
            "skills": ", ".join(profile.skill_names()[:3]) if profile else "",
            "job_title": job.title if job else "",
            "company": (job.company if job and job.company else self.company_name),
        }

    def _select_response(self, intention: IntentionResult, state: AgentState, variables: Dict[str, str]) -> str:
        for template in self.templates:
            if template.applies(intention.intention, state, intention.context_validity, variables):
                return render_template(template.text, variables)
        text = DEFAULT_RESPONSES.get(intention.intention, DEFAULT_RESPONSES[Intention.UNKNOWN])
        return render_template(text, variables)

    def _derive_actions(self, session: Session, intention: IntentionResult, transition: TransitionResult) -> List[ActionRecord]:
        actions = [ActionRecord("send_message", intention.intention.value)]
        state = transition.new_state
        if intention.intention == Intention.CV_UPLOAD and session.context.candidate_profile is None:
            actions.append(ActionRecord("request_documents", "Awaiting CV upload"))
        if transition.success and state == AgentState.CV_UPLOADED and session.context.candidate_profile is not None:
            actions.append(ActionRecord("update_profile", "Candidate profile confirmed"))
        if state in (AgentState.INTERVIEW_SCHEDULING, AgentState.INTERVIEW_PREPARATION) and transition.success:
            actions.append(ActionRecord("schedule_interview", "Interview scheduling requested"))
        if intention.intention == Intention.ESCALATION:
            actions.append(ActionRecord("escalate_to_human", "Candidate asked for a recruiter"))
            self._notify(ESCALATION_REQUESTED, session.session_id, severity="medium")
        if state == AgentState.CLOSING:
            actions.append(ActionRecord("end_conversation", "Conversation closing"))
        return actions

    def _append_history(self, session: Session, text: str, response: str, intention: Intention, confidence: float, now: float):
        ctx = session.context
        ctx.messages.append(ConversationMessage(role="user", content=text if isinstance(text, str) else "", timestamp=now, intention=intention, confidence=confidence))
        ctx.messages.append(ConversationMessage(role="assistant", content=response, timestamp=self.clock()))
        ctx.previous_intentions.append(intention)
        limit = max(0, session.max_messages)
        del ctx.messages[: max(0, len(ctx.messages) - limit)]
        del ctx.previous_intentions[: max(0, len(ctx.previous_intentions) - limit)]
        session.message_count += 1

    def _record_analytics(self, intention: IntentionResult, transition: Optional[TransitionResult], security_event: bool):
        a = self._analytics
        a["total_messages"] += 1
        a["intention_counts"][intention.intention.value] += 1
        if security_event:
            a["security_events"] += 1
        else:
            previous = a["intention_accuracy"]
            a["intention_accuracy"] = intention.confidence if previous is None else 0.9 * previous + 0.1 * intention.confidence
        if transition is not None and transition.success and transition.previous_state:
            a["state_transitions"][f"{transition.previous_state.value}->{transition.new_state.value}"] += 1

    def _notify(self, event_type: str, session_id: str, severity: str = "info", data: Optional[Dict[str, Any]] = None):
        self.notifier.notify(NotificationEvent(type=event_type, session_id=session_id, severity=severity, data=data or {}))

    # -- documents ------------------------------------------------------------

    def handle_document_upload(self, content: bytes, filename: str, mime_type: Optional[str], session_id: str) -> ParsingResult:
        try:
            session = self._open_session(session_id)
            result = self.cv_parser.parse(content, filename, mime_type)
            self._analytics["cv_uploads"] += 1
            if not result.success:
                return result

            self._analytics["cv_parse_success"] += 1
            ctx = session.context
            ctx.candidate_profile = ctx.candidate_profile.merge(result.profile) if ctx.candidate_profile else result.profile
            machine = session.state_machine
            if machine.can_transition(Intention.CV_UPLOAD):
                transition = machine.transition(Intention.CV_UPLOAD, {"cv_filename": filename})
                self._record_analytics_transition(transition)
            ctx.messages.append(ConversationMessage(role="system", content=f"CV uploaded: {filename}", timestamp=self.clock()))
            result.metadata["session_state"] = machine.current_state.value
            self.sessions.save(session)
            self._notify(CV_UPLOADED, session_id, data={"filename": filename, "skills": ctx.candidate_profile.skill_names()})
            return result
        except Exception:
            self.logger.exception("document_upload_failed session_id=%s filename=%s", session_id, filename)
            self._analytics["errors"] += 1
            return ParsingResult(success=False, status=ParsingStatus.FAILED, errors=["Internal error while processing document"])

    def _record_analytics_transition(self, transition: TransitionResult):
        if transition.success and transition.previous_state:
            self._analytics["state_transitions"][f"{transition.previous_state.value}->{transition.new_state.value}"] += 1

    def analyze_candidate(self, session_id: str, requirements: Optional[JobRequirements] = None) -> Optional[CVAnalysis]:
        session = self.sessions.get(session_id)
        if session is None or session.context.candidate_profile is None:
            return None
        job = session.context.job
        if requirements is None and job is not None and (job.required_skills or job.min_experience):
            requirements = JobRequirements(
                required_skills=list(job.required_skills),
                preferred_skills=list(job.preferred_skills),
                min_experience=job.min_experience,
            )
        analysis = self.cv_parser.analyze(session.context.candidate_profile, requirements)
        if analysis.fit_score is not None:
            # Strong fits skip the skill assessment step.
            session.context.data["fast_track"] = analysis.fit_score >= 85
        return analysis

    # -- reporting ------------------------------------------------------------

    def get_analytics(self) -> Dict[str, Any]:
        a = self._analytics
        total = sum(a["intention_counts"].values())
        common = [
            {"intention": k, "count": v, "percentage": round(v * 100 / total, 1)}
            for k, v in a["intention_counts"].most_common()
        ]
        sessions = self.sessions.list_all()
        durations = [s.last_activity - s.created_at for s in sessions]
        return {
            "total_sessions": a["total_sessions"],
            "active_sessions": len(sessions),
            "total_messages": a["total_messages"],
            "security_events": a["security_events"],
            "errors": a["errors"],
            "common_intentions": common,
            "intention_accuracy": round(a["intention_accuracy"], 3) if a["intention_accuracy"] is not None else None,
            "state_transitions": dict(a["state_transitions"]),
            "cv_uploads": a["cv_uploads"],
            "cv_parsing_success_rate": round(a["cv_parse_success"] / a["cv_uploads"], 3) if a["cv_uploads"] else None,
            "average_session_duration_sec": round(sum(durations) / len(durations), 1) if durations else 0.0,
        }

    def get_security_stats(self) -> Dict[str, Any]:
        return self.jailbreak_detector.get_stats()


def render_template(text: str, variables: Dict[str, str]) -> str:
    return _PLACEHOLDER_RE.sub(lambda m: str(variables.get(m.group(1)) or m.group(0)), text)


def _snapshot(session: Session) -> Dict[str, Any]:
    ctx = session.context
    return {
        "current_state": ctx.current_state,
        "previous_state": ctx.previous_state,
        "messages": list(ctx.messages),
        "previous_intentions": list(ctx.previous_intentions),
        "state_history": list(ctx.state_history),
        "data": dict(ctx.data),
        "message_count": session.message_count,
    }


def _restore(session: Session, snap: Dict[str, Any]):
    ctx = session.context
    ctx.current_state = snap["current_state"]
    ctx.previous_state = snap["previous_state"]
    ctx.messages[:] = snap["messages"]
    ctx.previous_intentions[:] = snap["previous_intentions"]
    ctx.state_history[:] = snap["state_history"]
    ctx.data.clear()
    ctx.data.update(snap["data"])
    session.message_count = snap["message_count"]
