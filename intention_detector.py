import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from agent_models import AgentState, ContextValidity, ConversationContext, Intention
from logging_config import get_logger
from pattern_matcher import (
    PatternLike,
    calculate_confidence,
    clean_text,
    compile_pattern,
    is_safe_text,
    round_score,
)

DETECTOR_VERSION = "2.1.0"
UNKNOWN_CONFIDENCE = 0.3
THRESHOLD_MARGIN = 0.05

# intention -> language -> patterns
DEFAULT_PATTERNS: Dict[Intention, Dict[str, List[str]]] = {
    Intention.JAILBREAK_ATTEMPT: {
        "en": [
            r"\b(ignore|forget|disregard)\s+(previous|all|your)\s+(instructions|rules|guidelines)\b",
            r"\b(ignore|forget|disregard)\s*all\s*(previous|instructions)\b",
            r"\b(system|admin|debug|developer|god)\s+(mode|prompt|access|override)\b",
            r"\b(pretend|act as|role.?play)\b",
            r"\b(off.?topic|change subject|different topic)\b",
            r"\boverride\s+(your|the)\s+(guidelines|rules|instructions)\b",
        ],
        "es": [r"\b(ignora|olvida)\s+(todas\s+)?(las\s+)?instrucciones\b"],
        "fr": [r"\b(ignore|ignorez|oublie|oubliez)\s+(toutes\s+)?(les\s+)?instructions\b"],
    },
    Intention.ESCALATION: {
        "en": [
            r"\b(escalate|human|agent|representative|manager|supervisor)\b",
            r"\b(talk to.*human|speak to.*human|human.*help)\b",
            r"\b(escalation|transfer|escalate.*call)\b",
        ],
        "es": [r"\bhablar con (un|una) (humano|persona|agente)\b"],
        "fr": [r"\bparler (à|a) (un|une) (humain|personne|conseiller)\b"],
    },
    Intention.FAREWELL: {
        "en": [
            r"\b(bye|goodbye|see you|farewell|thanks|thank you|adios|au revoir)\b",
            r"^(that's all|no more questions|i'm done|finished)\b",
            r"\b(thank you for your time)\b",
            r"\b(see you later)\b",
            r"\b(i am done|i'm done)\b",
            r"\b(done with questions)\b",
        ],
        "es": [r"\b(gracias|hasta luego|nos vemos)\b"],
        "fr": [r"\b(merci|à bientôt|bonne journée)\b"],
    },
    Intention.APPLICATION_STATUS: {
        "en": [
            r"\b(application|status|update|progress)\b",
            r"\b(what is the status|where is my application|how is my application)\b",
            r"\b(application status|status of application|application progress)\b",
        ],
        "es": [r"\b(estado de (mi|la) (solicitud|postulación))\b"],
        "fr": [r"\b(statut|état) de (ma|la) candidature\b"],
    },
    Intention.INTERVIEW_PREP: {
        "en": [
            r"\b(interview|preparation|prep|prepare)\b",
            r"\b(interview prep|interview preparation|prepare for interview)\b",
            r"\b(help.*interview|interview.*help)\b",
        ],
        "es": [r"\b(entrevista|prepararme)\b"],
        "fr": [r"\b(entretien|préparer)\b"],
    },
    Intention.SALARY_QUESTION: {
        "en": [
            r"\b(salary|wage|pay|compensation|money|income)\b",
            r"\b(how much|price|cost|rate|budget)\b",
            r"\b(dollars|euro|currency|payment)\b",
            r"\bsalary\s+(for|range|is|amount)\b",
        ],
        "es": [r"\b(salario|sueldo|cuánto pagan)\b"],
        "fr": [r"\b(salaire|rémunération)\b"],
    },
    Intention.BENEFITS_QUESTION: {
        "en": [
            r"\b(benefits|perks|advantages|insurance|health)\b",
            r"\b(vacation|holidays|time off|pto)\b",
            r"\b(retirement|pension|401k|bonus)\b",
        ],
        "es": [r"\b(beneficios|prestaciones|vacaciones|seguro)\b"],
        "fr": [r"\b(avantages|mutuelle|congés)\b"],
    },
    Intention.CV_UPLOAD: {
        "en": [
            r"\b(cv|resume|curriculum|vitae)\b",
            r"\b(upload|attach|send|share)\b.*\b(file|document|pdf)\b",
        ],
        "es": [r"\b(currículum|hoja de vida)\b"],
        "fr": [r"\b(mon cv|envoyer mon cv)\b"],
    },
    Intention.EXPERIENCE_VALIDATION: {
        "en": [
            r"\b(years? of experience|experience (in|with|as))\b",
            r"\bi (have|'ve) (been )?(worked|working)\b",
            r"\bmy (experience|background|previous role|last job)\b",
            r"\bi (worked|work) (as|at|for|on)\b",
            r"\b\d+\+?\s+years?\b",
        ],
        "es": [r"\b(años de experiencia|mi experiencia)\b"],
        "fr": [r"\b(ans d'expérience|mon expérience)\b"],
    },
    Intention.TECHNICAL_SKILLS_DISCUSSION: {
        "en": [
            r"\b(technical skills?|tech stack|programming languages?|frameworks?)\b",
            r"\b(python|java|javascript|typescript|react|node(\.js)?|sql|aws|docker|kubernetes|golang)\b",
            r"\bi (know|use|code in|program in)\b",
        ],
        "es": [r"\b(habilidades técnicas|lenguajes? de programación)\b"],
        "fr": [r"\b(compétences techniques|langages? de programmation)\b"],
    },
    Intention.EDUCATION_DISCUSSION: {
        "en": [r"\b(degree|diploma|university|college|bachelor'?s?|master'?s?|phd|certification|graduated)\b"],
        "es": [r"\b(título|universidad|licenciatura)\b"],
        "fr": [r"\b(diplôme|université)\b"],
    },
    Intention.AVAILABILITY_DISCUSSION: {
        "en": [r"\b(availability|available to start|start date|notice period|when can i start|full.?time|part.?time)\b"],
        "es": [r"\b(disponibilidad)\b"],
        "fr": [r"\b(disponibilité)\b"],
    },
    Intention.LOCATION_QUESTION: {
        "en": [r"\b(location|located|remote|relocat\w*|on.?site|hybrid|office|where is)\b"],
        "es": [r"\b(ubicación|remoto|dónde está)\b"],
        "fr": [r"\b(lieu|télétravail|où se trouve)\b"],
    },
    Intention.COMPANY_CULTURE_QUESTION: {
        "en": [r"\b(culture|team|values|work environment|work.?life balance|mission)\b"],
        "es": [r"\b(cultura|equipo)\b"],
        "fr": [r"\b(culture d'entreprise|équipe)\b"],
    },
    Intention.CAREER_GROWTH_QUESTION: {
        "en": [r"\b(career growth|growth|promotion|advancement|career path|training|mentorship)\b"],
        "es": [r"\b(crecimiento|ascenso)\b"],
        "fr": [r"\b(évolution|promotion)\b"],
    },
    Intention.JOB_INQUIRY: {
        "en": [
            r"\b(job|position|role|opening|vacancy|opportunity)\b",
            r"\b(work|working|employment|career)\b",
            r"\b(apply|application|applying)\b",
            r"\b(requirements|qualifications|skills needed)\b",
            r"what\s+jobs?\s+do\s+you\s+have",
            r"what\s+positions?\s+are\s+available",
            r"available\s+positions?",
            r"tell\s+me\s+about\s+the\s+job",
            r"what\s+is\s+the\s+job\s+about",
        ],
        "es": [
            r"qué\s+trabajos?\s+tienen",
            r"trabajos?\s+disponibles?",
            r"puestos?\s+disponibles?",
            r"hola.*qué\s+trabajos",
        ],
        "fr": [
            r"quels?\s+emplois?\s+avez-vous",
            r"postes?\s+disponibles?",
        ],
    },
    Intention.GREETING: {
        "en": [r"^(hi|hello|hey|good morning|good afternoon|good evening)\b"],
        "es": [r"^(hola|buenos días|buenas tardes|buenas noches)\b"],
        "fr": [r"^(bonjour|bonsoir|salut)\b"],
    },
    Intention.HELP_REQUEST: {
        "en": [
            r"\b(help|assist|support|guide|explain)\b",
            r"\b(how to|what is|what does|can you)\b",
            r"\b(confused|don't understand|unclear)\b",
            r"\b(need assistance|i need)\b",
            r"\b(how do i|how should i)\b",
        ],
        "es": [r"\b(ayuda|ayúdame|no entiendo)\b"],
        "fr": [r"\b(aide|aidez-moi|je ne comprends pas)\b"],
    },
}

# Security first, then escalation and farewell, then specific topics,
# then job inquiry, greeting and finally generic help.
PRIORITY_ORDER: Tuple[Intention, ...] = (
    Intention.JAILBREAK_ATTEMPT,
    Intention.ESCALATION,
    Intention.FAREWELL,
    Intention.APPLICATION_STATUS,
    Intention.INTERVIEW_PREP,
    Intention.SALARY_QUESTION,
    Intention.BENEFITS_QUESTION,
    Intention.CV_UPLOAD,
    Intention.EXPERIENCE_VALIDATION,
    Intention.TECHNICAL_SKILLS_DISCUSSION,
    Intention.EDUCATION_DISCUSSION,
    Intention.AVAILABILITY_DISCUSSION,
    Intention.LOCATION_QUESTION,
    Intention.COMPANY_CULTURE_QUESTION,
    Intention.CAREER_GROWTH_QUESTION,
    Intention.JOB_INQUIRY,
    Intention.GREETING,
    Intention.HELP_REQUEST,
)

QUESTION_STATES = {AgentState.Q_AND_A, AgentState.JOB_PRESENTATION, AgentState.JOB_DISCUSSION}
DOCUMENT_STATES = {AgentState.SURVEY, AgentState.CV_PROCESSING, AgentState.DOCUMENT_COLLECTION}


@dataclass(frozen=True)
class IntentionResult:
    intention: Intention
    confidence: float
    context_validity: ContextValidity
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.context_validity == ContextValidity.VALID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intention": self.intention.value,
            "confidence": self.confidence,
            "context_validity": self.context_validity.value,
            "metadata": dict(self.metadata),
        }


class IntentionDetector:
    def __init__(
        self,
        confidence_threshold: float = 0.7,
        enable_multi_language: bool = True,
        enable_jailbreak_detection: bool = True,
        default_language: str = "en",
        custom_patterns: Optional[Dict[Intention, Iterable[PatternLike]]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.confidence_threshold = confidence_threshold
        self.enable_multi_language = enable_multi_language
        self.enable_jailbreak_detection = enable_jailbreak_detection
        self.default_language = default_language
        self.custom_patterns = {Intention(k): list(v) for k, v in (custom_patterns or {}).items()}
        self.logger = logger or get_logger("intention")
        self._patterns = self._build_patterns()

    def _build_patterns(self):
        patterns = {}
        for intention in PRIORITY_ORDER:
            if intention == Intention.JAILBREAK_ATTEMPT and not self.enable_jailbreak_detection:
                continue
            entries = []
            for language, items in DEFAULT_PATTERNS.get(intention, {}).items():
                if not self.enable_multi_language and language != self.default_language:
                    continue
                entries.extend((language, compile_pattern(p)) for p in items)
            # Custom patterns are additive and never replace the defaults.
            entries.extend(("custom", compile_pattern(p)) for p in self.custom_patterns.get(intention, []))
            if entries:
                patterns[intention] = entries
        return patterns

    def update_config(self, **changes):
        for key, value in changes.items():
            if not hasattr(self, key) or key.startswith("_") or key == "logger":
                raise ValueError(f"Unknown intention detector option: {key}")
            if key == "custom_patterns":
                value = {Intention(k): list(v) for k, v in (value or {}).items()}
            setattr(self, key, value)
        self._patterns = self._build_patterns()

    def supported_intentions(self) -> List[Intention]:
        return [i for i in PRIORITY_ORDER if i in self._patterns]

    def config_snapshot(self) -> Dict[str, Any]:
        return {
            "confidence_threshold": self.confidence_threshold,
            "enable_multi_language": self.enable_multi_language,
            "enable_jailbreak_detection": self.enable_jailbreak_detection,
            "default_language": self.default_language,
        }

    def detect(self, message, context: Optional[ConversationContext] = None) -> IntentionResult:
        if not isinstance(message, str) or not message.strip():
            return self._result(Intention.UNKNOWN, 0.0, ContextValidity.REQUIRES_CLARIFICATION, reason="empty_message")

        # Safety pre-filter runs even when jailbreak patterns are disabled.
        if not is_safe_text(message):
            return self._result(Intention.JAILBREAK_ATTEMPT, 1.0, ContextValidity.INVALID, reason="unsafe_content")

        cleaned = clean_text(message)
        for rank, intention in enumerate(PRIORITY_ORDER):
            entries = self._patterns.get(intention)
            if not entries:
                continue
            best = None
            for language, pattern in entries:
                score = calculate_confidence(cleaned, pattern, 0.8)
                if score > 0 and (best is None or score > best[0]):
                    best = (score, language, pattern)
            if best is None:
                continue

            score, language, pattern = best
            confidence = min(1.0, round_score(max(score, self.confidence_threshold + THRESHOLD_MARGIN), 1))
            validity = self.validate_context(intention, context)
            self.logger.debug(
                "intention_detected intention=%s confidence=%.2f validity=%s",
                intention.value,
                confidence,
                validity.value,
            )
            return self._result(
                intention,
                confidence,
                validity,
                matched_pattern=pattern.pattern,
                language=language,
                priority_rank=rank,
            )

        return self._result(Intention.UNKNOWN, UNKNOWN_CONFIDENCE, ContextValidity.REQUIRES_CLARIFICATION, reason="no_pattern_matched")

    def validate_context(self, intention: Intention, context: Optional[ConversationContext]) -> ContextValidity:
        ctx = context or ConversationContext()
        if intention == Intention.GREETING:
            if Intention.GREETING in ctx.previous_intentions:
                return ContextValidity.INVALID
            return ContextValidity.VALID
        if intention == Intention.JOB_INQUIRY:
            return ContextValidity.VALID if ctx.job_id else ContextValidity.REQUIRES_CLARIFICATION
        if intention in (Intention.SALARY_QUESTION, Intention.BENEFITS_QUESTION):
            return ContextValidity.VALID if ctx.current_state in QUESTION_STATES else ContextValidity.REQUIRES_CLARIFICATION
        if intention == Intention.CV_UPLOAD:
            return ContextValidity.VALID if ctx.current_state in DOCUMENT_STATES else ContextValidity.REQUIRES_CLARIFICATION
        if intention == Intention.JAILBREAK_ATTEMPT:
            return ContextValidity.INVALID
        if intention == Intention.UNKNOWN:
            return ContextValidity.REQUIRES_CLARIFICATION
        return ContextValidity.VALID

    def is_context_valid(self, intention: Intention, context: Optional[ConversationContext]) -> bool:
        return self.validate_context(intention, context) == ContextValidity.VALID

    def _result(self, intention, confidence, validity, **details) -> IntentionResult:
        metadata = {"detector_version": DETECTOR_VERSION, "config": self.config_snapshot()}
        metadata.update(details)
        return IntentionResult(intention=intention, confidence=confidence, context_validity=validity, metadata=metadata)
