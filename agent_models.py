"""Closed vocabularies and conversation records shared across the agent."""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from cv_parser import CandidateProfile


class Intention(str, Enum):
    GREETING = "greeting"
    JOB_INQUIRY = "job_inquiry"
    SALARY_QUESTION = "salary_question"
    BENEFITS_QUESTION = "benefits_question"
    EXPERIENCE_VALIDATION = "experience_validation"
    TECHNICAL_SKILLS_DISCUSSION = "technical_skills_discussion"
    EDUCATION_DISCUSSION = "education_discussion"
    AVAILABILITY_DISCUSSION = "availability_discussion"
    LOCATION_QUESTION = "location_question"
    COMPANY_CULTURE_QUESTION = "company_culture_question"
    CAREER_GROWTH_QUESTION = "career_growth_question"
    CV_UPLOAD = "cv_upload"
    HELP_REQUEST = "help_request"
    APPLICATION_STATUS = "application_status"
    INTERVIEW_PREP = "interview_prep"
    FAREWELL = "farewell"
    ESCALATION = "escalation"
    JAILBREAK_ATTEMPT = "jailbreak_attempt"
    UNKNOWN = "unknown"


class ContextValidity(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    REQUIRES_CLARIFICATION = "requires_clarification"


class AgentState(str, Enum):
    GREETING = "greeting"
    JOB_PRESENTATION = "job_presentation"
    JOB_DISCUSSION = "job_discussion"
    Q_AND_A = "q_and_a"
    SURVEY = "survey"
    DOCUMENT_COLLECTION = "document_collection"
    CV_PROCESSING = "cv_processing"
    CV_UPLOADED = "cv_uploaded"
    TECHNICAL_VALIDATION = "technical_validation"
    SKILL_ASSESSMENT = "skill_assessment"
    APPLICATION_REVIEW = "application_review"
    INTERVIEW_SCHEDULING = "interview_scheduling"
    INTERVIEW_PREPARATION = "interview_preparation"
    FINAL_INTERVIEW = "final_interview"
    EVALUATION = "evaluation"
    CLOSING = "closing"
    ERROR = "error"
    JAILBREAK_DETECTED = "jailbreak_detected"


class AgentAction(str, Enum):
    SEND_GREETING = "send_greeting"
    PRESENT_JOB = "present_job"
    ANSWER_QUESTION = "answer_question"
    ASK_SURVEY_QUESTION = "ask_survey_question"
    PROCESS_CV = "process_cv"
    VALIDATE_TECHNICAL_SKILLS = "validate_technical_skills"
    CONDUCT_SKILL_ASSESSMENT = "conduct_skill_assessment"
    CONDUCT_FINAL_INTERVIEW = "conduct_final_interview"
    GENERATE_REPORT = "generate_report"
    END_CONVERSATION = "end_conversation"
    HANDLE_ERROR = "handle_error"
    BLOCK_JAILBREAK = "block_jailbreak"
    REQUEST_CLARIFICATION = "request_clarification"


@dataclass
class ConversationMessage:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)
    intention: Optional[Intention] = None
    confidence: Optional[float] = None
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "intention": self.intention.value if self.intention else None,
            "confidence": self.confidence,
        }


@dataclass
class JobApplication:
    job_id: str
    title: str
    company: str = ""
    location: str = ""
    required_skills: List[str] = field(default_factory=list)
    preferred_skills: List[str] = field(default_factory=list)
    min_experience: float = 0.0
    status: str = "open"


@dataclass
class StateChange:
    from_state: AgentState
    to_state: AgentState
    trigger: Optional[Intention]
    timestamp: float = field(default_factory=time.time)
    forced: bool = False
    reason: str = ""


@dataclass
class ConversationContext:
    """Per-session mutable conversation record.

    The state machine writes ``current_state``, ``previous_state``,
    ``state_history`` and ``data``; the orchestrator appends to
    ``messages`` and ``previous_intentions``.
    """

    session_id: str = ""
    current_state: AgentState = AgentState.GREETING
    previous_state: Optional[AgentState] = None
    previous_intentions: List[Intention] = field(default_factory=list)
    messages: List[ConversationMessage] = field(default_factory=list)
    state_history: List[StateChange] = field(default_factory=list)
    candidate_profile: Optional["CandidateProfile"] = None
    job: Optional[JobApplication] = None
    data: Dict[str, Any] = field(default_factory=dict)
    language: str = "en"

    @property
    def job_id(self) -> Optional[str]:
        return self.job.job_id if self.job else None

    def user_messages(self, limit: Optional[int] = None) -> List[ConversationMessage]:
        items = [m for m in self.messages if m.role == "user"]
        return items[-limit:] if limit else items
