import logging
import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from agent_models import ConversationContext, ConversationMessage, Intention
from logging_config import get_logger, log_security
from pattern_matcher import compile_pattern, escape, round_score


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}
SEVERITY_MULTIPLIER = {Severity.LOW: 1.0, Severity.MEDIUM: 1.5, Severity.HIGH: 2.0, Severity.CRITICAL: 3.0}


def higher_severity(a: Severity, b: Severity) -> Severity:
    return a if a.rank >= b.rank else b


class JailbreakType(str, Enum):
    PROMPT_INJECTION = "prompt_injection"
    ROLE_PLAY = "role_play"
    IGNORE_INSTRUCTIONS = "ignore_instructions"
    SYSTEM_PROMPT_EXTRACTION = "system_prompt_extraction"
    HARMFUL_CONTENT = "harmful_content"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    DATA_EXTRACTION = "data_extraction"
    BYPASS_SAFETY = "bypass_safety"
    SOCIAL_ENGINEERING = "social_engineering"
    CONTEXT_MANIPULATION = "context_manipulation"


class DetectionMethod(str, Enum):
    PATTERN_MATCHING = "pattern_matching"
    KEYWORD_ANALYSIS = "keyword_analysis"
    CONTEXT_ANALYSIS = "context_analysis"
    BEHAVIORAL_ANALYSIS = "behavioral_analysis"
    SEMANTIC_ANALYSIS = "semantic_analysis"
    ML_CLASSIFICATION = "ml_classification"


TYPE_DESCRIPTIONS = {
    JailbreakType.PROMPT_INJECTION: "Injected instructions intended to override the assistant prompt",
    JailbreakType.ROLE_PLAY: "Request to assume a privileged or different persona",
    JailbreakType.IGNORE_INSTRUCTIONS: "Request to ignore the assistant's instructions",
    JailbreakType.SYSTEM_PROMPT_EXTRACTION: "Attempt to reveal the system prompt or configuration",
    JailbreakType.HARMFUL_CONTENT: "Request for harmful content or commands",
    JailbreakType.PRIVILEGE_ESCALATION: "Attempt to obtain elevated access",
    JailbreakType.DATA_EXTRACTION: "Attempt to extract stored data",
    JailbreakType.BYPASS_SAFETY: "Attempt to disable or bypass safety measures",
    JailbreakType.SOCIAL_ENGINEERING: "Claims of authority used to manipulate the assistant",
    JailbreakType.CONTEXT_MANIPULATION: "Repeated manipulation attempts across the conversation",
}

MITIGATIONS = {
    JailbreakType.PROMPT_INJECTION: "Implement stricter input validation and sanitization",
    JailbreakType.ROLE_PLAY: "Enforce role verification and refuse persona changes",
    JailbreakType.IGNORE_INSTRUCTIONS: "Keep system instructions immutable and restate them on refusal",
    JailbreakType.SYSTEM_PROMPT_EXTRACTION: "Never echo configuration or prompt text in responses",
    JailbreakType.HARMFUL_CONTENT: "Block the request and review the session manually",
    JailbreakType.PRIVILEGE_ESCALATION: "Verify identity out of band before granting any access",
    JailbreakType.DATA_EXTRACTION: "Restrict data access to the candidate's own records",
    JailbreakType.BYPASS_SAFETY: "Strengthen content filters and safety checks",
    JailbreakType.SOCIAL_ENGINEERING: "Do not act on unverified claims of authority",
    JailbreakType.CONTEXT_MANIPULATION: "Monitor the session and consider ending the conversation",
}

SUSPICIOUS_CONTEXT_TERMS = ("ignore", "bypass", "override", "admin", "system")
CONTEXT_WINDOW = 5
REPEAT_THRESHOLD = 3
RAPID_GAP_SEC = 2.0
LONG_MESSAGE_CHARS = 1000
ENCODED_TOKEN_MIN = 20
RATE_WINDOW_SEC = 60

_ENCODED_RUN_RE = re.compile(r"[A-Za-z0-9+/]{21,}={0,2}")
_HEX_RE = re.compile(r"^(?:0x)?[0-9a-fA-F]+$")


@dataclass(frozen=True)
class JailbreakPattern:
    id: str
    pattern: Union[str, Pattern]
    type: JailbreakType
    severity: Severity
    description: str
    confidence: float
    enabled: bool = True


@dataclass(frozen=True)
class KeywordRule:
    id: str
    keywords: Tuple[str, ...]
    type: JailbreakType
    severity: Severity
    confidence: float
    case_sensitive: bool = False
    whole_word: bool = False
    enabled: bool = True


DEFAULT_PATTERNS = (
    JailbreakPattern(
        "ignore_instructions",
        r"ignore\s+(all\s+)?(previous\s+)?(instructions|prompts|rules|guidelines)",
        JailbreakType.IGNORE_INSTRUCTIONS,
        Severity.HIGH,
        "Attempt to ignore system instructions",
        0.8,
    ),
    JailbreakPattern(
        "role_play_admin",
        r"(?:act\s+as|pretend\s+to\s+be|you\s+are\s+now|roleplay\s+as)\s+(?:an?\s+)?"
        r"(?:admin|administrator|developer|creator|god|master|user|different|other)",
        JailbreakType.ROLE_PLAY,
        Severity.HIGH,
        "Attempt to assume privileged role",
        0.85,
    ),
    JailbreakPattern(
        "system_prompt_extraction",
        r"(?:show|tell|reveal|display|print)\s+(?:me\s+)?(?:your\s+)?(?:system\s+)?(?:prompt|instructions|rules|guidelines|configuration)",
        JailbreakType.SYSTEM_PROMPT_EXTRACTION,
        Severity.MEDIUM,
        "Attempt to extract system prompts",
        0.7,
    ),
    JailbreakPattern(
        "harmful_content_request",
        r"(?:how\s+to|teach\s+me|help\s+me)\s+(?:hack|break|bypass|exploit|attack|harm|hurt|kill|destroy)",
        JailbreakType.HARMFUL_CONTENT,
        Severity.CRITICAL,
        "Request for harmful content",
        0.9,
    ),
    JailbreakPattern(
        "privilege_escalation",
        r"(?:sudo|root|admin|superuser|override|bypass|elevate)\s+(?:access|privileges|permissions|rights)",
        JailbreakType.PRIVILEGE_ESCALATION,
        Severity.HIGH,
        "Attempt to escalate privileges",
        0.75,
    ),
    JailbreakPattern(
        "data_extraction",
        r"(?:extract|dump|export|download|access)\s+(?:data|database|files|information|records|user\s+data)",
        JailbreakType.DATA_EXTRACTION,
        Severity.CRITICAL,
        "Attempt to extract sensitive data",
        0.8,
    ),
    JailbreakPattern(
        "bypass_safety",
        r"(?:bypass|disable|turn\s+off|override)\s+(?:safety|security|protection|filters|guards|limitations)",
        JailbreakType.BYPASS_SAFETY,
        Severity.HIGH,
        "Attempt to bypass safety measures",
        0.8,
    ),
    JailbreakPattern(
        "social_engineering",
        r"(?:i\s+am\s+the|i\s+am\s+your)\s+(?:owner|creator|developer|admin|boss|manager|supervisor)",
        JailbreakType.SOCIAL_ENGINEERING,
        Severity.MEDIUM,
        "Social engineering attempt",
        0.6,
    ),
)

DEFAULT_KEYWORDS = (
    KeywordRule(
        "jailbreak_terms",
        ("jailbreak", "do anything now", "evil mode", "developer mode"),
        JailbreakType.BYPASS_SAFETY,
        Severity.HIGH,
        0.9,
    ),
    KeywordRule(
        "dan_persona",
        ("DAN",),
        JailbreakType.BYPASS_SAFETY,
        Severity.HIGH,
        0.9,
        case_sensitive=True,
        whole_word=True,
    ),
    KeywordRule(
        "prompt_injection",
        ("prompt injection", "token injection", "context injection"),
        JailbreakType.PROMPT_INJECTION,
        Severity.HIGH,
        0.85,
    ),
    KeywordRule(
        "command_injection",
        ("rm -rf", "DROP TABLE", "SELECT * FROM", "wget", "curl"),
        JailbreakType.HARMFUL_CONTENT,
        Severity.CRITICAL,
        0.95,
        case_sensitive=True,
        whole_word=True,
    ),
)


@dataclass
class ThreatContext:
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    history: List[ConversationMessage] = field(default_factory=list)
    seconds_since_last_message: Optional[float] = None
    session_age_sec: Optional[float] = None
    previous_detections: int = 0

    @classmethod
    def from_conversation(cls, context: ConversationContext, now: float, **extra) -> "ThreatContext":
        users = context.user_messages()
        gap = (now - users[-1].timestamp) if users else None
        return cls(
            session_id=context.session_id or None,
            history=list(context.messages[-10:]),
            seconds_since_last_message=gap,
            previous_detections=context.previous_intentions.count(Intention.JAILBREAK_ATTEMPT),
            **extra,
        )


@dataclass(frozen=True)
class ThreatAssessment:
    is_jailbreak: bool
    severity: Severity
    confidence: float
    risk_score: int
    detected_types: Tuple[JailbreakType, ...] = ()
    detection_methods: Tuple[DetectionMethod, ...] = ()
    reasoning: Tuple[str, ...] = ()
    matched_patterns: Tuple[str, ...] = ()
    suspicious_keywords: Tuple[str, ...] = ()
    context_flags: Tuple[str, ...] = ()
    message_length: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_jailbreak": self.is_jailbreak,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "risk_score": self.risk_score,
            "detected_types": [t.value for t in self.detected_types],
            "detection_methods": [m.value for m in self.detection_methods],
            "reasoning": list(self.reasoning),
            "matched_patterns": list(self.matched_patterns),
            "suspicious_keywords": list(self.suspicious_keywords),
            "context_flags": list(self.context_flags),
            "message_length": self.message_length,
        }


@dataclass
class SecurityAction:
    action: str
    reason: str
    duration_sec: Optional[int] = None
    notify_admin: bool = False


@dataclass
class ThreatAnalysis:
    overall_risk: str
    risk_score: int
    threat_vectors: List[Dict[str, str]]
    mitigation_suggestions: List[str]
    recommended_actions: List[SecurityAction]
    contextual_factors: Dict[str, Any]
    assessment: ThreatAssessment


class _Findings:
    """Evidence gathered by one detection stage."""

    def __init__(self, method: DetectionMethod):
        self.method = method
        self.types: List[JailbreakType] = []
        self.confidence = 0.0
        self.severity = Severity.LOW
        self.reasoning: List[str] = []
        self.patterns: List[str] = []
        self.keywords: List[str] = []
        self.flags: List[str] = []

    def add(self, jb_type: Optional[JailbreakType], severity: Severity, confidence: float, reason: str):
        if jb_type is not None and jb_type not in self.types:
            self.types.append(jb_type)
        self.severity = higher_severity(self.severity, severity)
        self.confidence = max(self.confidence, confidence)
        self.reasoning.append(reason)

    @property
    def has_signal(self) -> bool:
        return bool(self.types or self.flags or self.patterns or self.keywords or self.confidence > 0)


def _dedupe(items: Iterable) -> Tuple:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


def risk_tier(score: float) -> str:
    if score >= 90:
        return "critical"
    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


class JailbreakDetector:
    def __init__(
        self,
        confidence_threshold: float = 0.6,
        risk_score_threshold: float = 70,
        block_on_high_risk: bool = True,
        max_requests_per_minute: int = 30,
        enable_pattern_matching: bool = True,
        enable_keyword_analysis: bool = True,
        enable_context_analysis: bool = True,
        enable_behavioral_analysis: bool = True,
        enable_semantic_analysis: bool = False,
        enable_ml_classification: bool = False,
        enable_rate_limiting: bool = True,
        log_detections: bool = True,
        custom_patterns: Optional[Sequence[JailbreakPattern]] = None,
        custom_keywords: Optional[Sequence[KeywordRule]] = None,
        whitelisted_users: Optional[Iterable[str]] = None,
        blacklisted_users: Optional[Iterable[str]] = None,
        whitelisted_ips: Optional[Iterable[str]] = None,
        blacklisted_ips: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.confidence_threshold = confidence_threshold
        self.risk_score_threshold = risk_score_threshold
        self.block_on_high_risk = block_on_high_risk
        self.max_requests_per_minute = max_requests_per_minute
        self.enable_pattern_matching = enable_pattern_matching
        self.enable_keyword_analysis = enable_keyword_analysis
        self.enable_context_analysis = enable_context_analysis
        self.enable_behavioral_analysis = enable_behavioral_analysis
        self.enable_semantic_analysis = enable_semantic_analysis
        self.enable_ml_classification = enable_ml_classification
        self.enable_rate_limiting = enable_rate_limiting
        self.log_detections = log_detections
        self.custom_patterns = list(custom_patterns or [])
        self.custom_keywords = list(custom_keywords or [])
        self.whitelisted_users = set(whitelisted_users or [])
        self.blacklisted_users = set(blacklisted_users or [])
        self.whitelisted_ips = set(whitelisted_ips or [])
        self.blacklisted_ips = set(blacklisted_ips or [])
        self.clock = clock
        self.logger = logger or get_logger("security")

        self._rate_buckets: Dict[str, Deque[float]] = {}
        self._build_rules()
        self.reset_stats()

        # None marks a capability this build does not provide.
        self._stages = (
            (DetectionMethod.PATTERN_MATCHING, "enable_pattern_matching", self._pattern_stage),
            (DetectionMethod.KEYWORD_ANALYSIS, "enable_keyword_analysis", self._keyword_stage),
            (DetectionMethod.CONTEXT_ANALYSIS, "enable_context_analysis", self._context_stage),
            (DetectionMethod.BEHAVIORAL_ANALYSIS, "enable_behavioral_analysis", self._behavioral_stage),
            (DetectionMethod.SEMANTIC_ANALYSIS, "enable_semantic_analysis", None),
            (DetectionMethod.ML_CLASSIFICATION, "enable_ml_classification", None),
        )

    def _build_rules(self):
        self._patterns = [
            (p, compile_pattern(p.pattern))
            for p in list(DEFAULT_PATTERNS) + self.custom_patterns
            if p.enabled
        ]
        self._keyword_rules = []
        for rule in list(DEFAULT_KEYWORDS) + self.custom_keywords:
            if not rule.enabled:
                continue
            flags = 0 if rule.case_sensitive else re.IGNORECASE
            matchers = []
            for kw in rule.keywords:
                if rule.whole_word:
                    matchers.append((kw, re.compile(rf"\b{escape(kw)}\b", flags)))
                else:
                    matchers.append((kw, re.compile(escape(kw), flags)))
            self._keyword_rules.append((rule, matchers))

    def update_config(self, **changes):
        for key, value in changes.items():
            if not hasattr(self, key) or key.startswith("_") or key in {"logger", "clock"}:
                raise ValueError(f"Unknown jailbreak detector option: {key}")
            if key in {"whitelisted_users", "blacklisted_users", "whitelisted_ips", "blacklisted_ips"}:
                value = set(value or [])
            elif key in {"custom_patterns", "custom_keywords"}:
                value = list(value or [])
            setattr(self, key, value)
        self._build_rules()

    def reset_stats(self):
        self._stats = {
            "total_assessments": 0,
            "total_detections": 0,
            "by_type": Counter(),
            "by_severity": Counter(),
            "pattern_hits": Counter(),
            "average_confidence": 0.0,
            "average_risk_score": 0.0,
        }

    def get_stats(self) -> Dict[str, Any]:
        s = self._stats
        return {
            "total_assessments": s["total_assessments"],
            "total_detections": s["total_detections"],
            "detection_rate": round(s["total_detections"] / s["total_assessments"], 3) if s["total_assessments"] else 0.0,
            "by_type": dict(s["by_type"]),
            "by_severity": dict(s["by_severity"]),
            "top_patterns": [{"id": k, "count": v} for k, v in s["pattern_hits"].most_common(5)],
            "average_confidence": round(s["average_confidence"], 3),
            "average_risk_score": round(s["average_risk_score"], 2),
        }

    # -- assessment -----------------------------------------------------

    def assess(self, message, context: Optional[ThreatContext] = None) -> ThreatAssessment:
        ctx = context or ThreatContext()
        text = message if isinstance(message, str) else ""
        self._stats["total_assessments"] += 1

        assessment = self._preflight(text, ctx)
        if assessment is None:
            findings = []
            absent = []
            for method, flag, stage in self._stages:
                if not getattr(self, flag):
                    continue
                if stage is None:
                    absent.append(f"{method.value.replace('_', ' ').capitalize()} not implemented")
                    continue
                result = stage(text, ctx)
                # Weak signals are merged too so extra stages never lower the score.
                if result is not None and result.has_signal:
                    findings.append(result)
            assessment = self._combine(text, findings, absent)

        if assessment.is_jailbreak:
            self._record(assessment)
            if self.log_detections:
                log_security(
                    self.logger,
                    "jailbreak_detected session_id=%s severity=%s confidence=%.2f risk=%d types=%s",
                    ctx.session_id or "-",
                    assessment.severity.value,
                    assessment.confidence,
                    assessment.risk_score,
                    ",".join(t.value for t in assessment.detected_types) or "-",
                )
        return assessment

    def _preflight(self, text: str, ctx: ThreatContext) -> Optional[ThreatAssessment]:
        if (ctx.user_id and ctx.user_id in self.whitelisted_users) or (ctx.ip_address and ctx.ip_address in self.whitelisted_ips):
            return ThreatAssessment(
                is_jailbreak=False,
                severity=Severity.LOW,
                confidence=0.0,
                risk_score=0,
                reasoning=("Safe result - no threats detected",),
                message_length=len(text),
            )
        if (ctx.user_id and ctx.user_id in self.blacklisted_users) or (ctx.ip_address and ctx.ip_address in self.blacklisted_ips):
            return self._blocked(text, "User or IP is blacklisted")
        if self.enable_rate_limiting and ctx.session_id and self._rate_exceeded(ctx.session_id):
            return self._blocked(text, "Rate limit exceeded")
        return None

    def _rate_exceeded(self, key: str) -> bool:
        now = self.clock()
        q = self._rate_buckets.setdefault(key, deque())
        while q and (now - q[0]) > RATE_WINDOW_SEC:
            q.popleft()
        q.append(now)
        return len(q) > self.max_requests_per_minute

    def forget(self, session_id: str) -> None:
        """Drop the rate-limit window kept for a finished session."""
        self._rate_buckets.pop(session_id, None)

    def _blocked(self, text: str, reason: str) -> ThreatAssessment:
        return ThreatAssessment(
            is_jailbreak=True,
            severity=Severity.CRITICAL,
            confidence=1.0,
            risk_score=100,
            detected_types=(JailbreakType.BYPASS_SAFETY,),
            detection_methods=(DetectionMethod.BEHAVIORAL_ANALYSIS,),
            reasoning=(f"Blocked: {reason}",),
            context_flags=("preflight_block",),
            message_length=len(text),
        )

    def _pattern_stage(self, text: str, ctx: ThreatContext) -> Optional[_Findings]:
        f = _Findings(DetectionMethod.PATTERN_MATCHING)
        for rule, compiled in self._patterns:
            if compiled.search(text):
                f.patterns.append(rule.id)
                f.add(rule.type, rule.severity, rule.confidence, f"Matched pattern {rule.id}: {rule.description}")
        return f

    def _keyword_stage(self, text: str, ctx: ThreatContext) -> Optional[_Findings]:
        f = _Findings(DetectionMethod.KEYWORD_ANALYSIS)
        for rule, matchers in self._keyword_rules:
            hits = [kw for kw, rx in matchers if rx.search(text)]
            if hits:
                f.keywords.extend(hits)
                f.add(rule.type, rule.severity, rule.confidence, f"Suspicious keywords ({rule.id}): {', '.join(hits)}")
        return f

    def _context_stage(self, text: str, ctx: ThreatContext) -> Optional[_Findings]:
        if not ctx.history and ctx.seconds_since_last_message is None:
            return None
        f = _Findings(DetectionMethod.CONTEXT_ANALYSIS)

        recent = [m for m in ctx.history[-CONTEXT_WINDOW:] if m.role == "user"]
        repeats = sum(1 for m in recent if any(term in m.content.lower() for term in SUSPICIOUS_CONTEXT_TERMS))
        if repeats >= REPEAT_THRESHOLD:
            f.flags.append("repeated_suspicious_terms")
            f.add(
                JailbreakType.CONTEXT_MANIPULATION,
                Severity.HIGH,
                0.7,
                f"Suspicious terms repeated in {repeats} of the last {CONTEXT_WINDOW} messages",
            )

        gap = ctx.seconds_since_last_message
        if gap is not None and gap < RAPID_GAP_SEC:
            f.flags.append("rapid_messaging")
            f.add(None, Severity.LOW, 0.3, f"Message sent {gap:.1f}s after the previous one")
        return f

    def _behavioral_stage(self, text: str, ctx: ThreatContext) -> Optional[_Findings]:
        f = _Findings(DetectionMethod.BEHAVIORAL_ANALYSIS)
        if len(text) > LONG_MESSAGE_CHARS:
            f.flags.append("excessive_length")
            f.add(None, Severity.LOW, 0.2, f"Message length {len(text)} exceeds {LONG_MESSAGE_CHARS} characters")

        encoded = [m.group(0) for m in _ENCODED_RUN_RE.finditer(text) if _looks_encoded(m.group(0))]
        if encoded:
            f.flags.append("encoded_content")
            f.add(JailbreakType.BYPASS_SAFETY, Severity.MEDIUM, 0.6, f"Found {len(encoded)} run(s) that look base64/hex encoded")
        return f

    def _combine(self, text: str, findings: List[_Findings], absent: List[str]) -> ThreatAssessment:
        confidence = 0.0
        severity = Severity.LOW
        for f in findings:
            confidence = max(confidence, f.confidence)
            severity = higher_severity(severity, f.severity)

        types = _dedupe(t for f in findings for t in f.types)
        methods = _dedupe(f.method for f in findings)
        raw = confidence * 50 * SEVERITY_MULTIPLIER[severity] + 5 * len(methods) + 10 * len(types)
        risk = int(min(100, max(0, round_score(raw, 0))))

        reasoning = [r for f in findings for r in f.reasoning] + absent
        if not findings:
            reasoning.insert(0, "Safe result - no threats detected")

        return ThreatAssessment(
            is_jailbreak=confidence >= self.confidence_threshold or risk >= self.risk_score_threshold,
            severity=severity,
            confidence=round_score(confidence, 2),
            risk_score=risk,
            detected_types=types,
            detection_methods=methods,
            reasoning=tuple(reasoning),
            matched_patterns=_dedupe(p for f in findings for p in f.patterns),
            suspicious_keywords=_dedupe(k for f in findings for k in f.keywords),
            context_flags=_dedupe(flag for f in findings for flag in f.flags),
            message_length=len(text),
        )

    def _record(self, a: ThreatAssessment):
        s = self._stats
        s["total_detections"] += 1
        n = s["total_detections"]
        s["by_severity"][a.severity.value] += 1
        for t in a.detected_types:
            s["by_type"][t.value] += 1
        for p in a.matched_patterns:
            s["pattern_hits"][p] += 1
        s["average_confidence"] += (a.confidence - s["average_confidence"]) / n
        s["average_risk_score"] += (a.risk_score - s["average_risk_score"]) / n

    # -- analysis -------------------------------------------------------

    def analyze_threat(
        self,
        message,
        context: Optional[ThreatContext] = None,
        assessment: Optional[ThreatAssessment] = None,
    ) -> ThreatAnalysis:
        ctx = context or ThreatContext()
        a = assessment or self.assess(message, ctx)

        vectors = [
            {"type": t.value, "description": TYPE_DESCRIPTIONS[t], "severity": a.severity.value}
            for t in a.detected_types
        ]
        mitigations = [MITIGATIONS[t] for t in a.detected_types]
        if a.risk_score > 80:
            mitigations.append("Require additional authentication for this session")

        if a.severity == Severity.CRITICAL:
            actions = [SecurityAction("block", "Critical security threat detected", notify_admin=True)]
        elif a.severity == Severity.HIGH:
            actions = [
                SecurityAction("warn", "High-risk content detected", notify_admin=True),
                SecurityAction("rate_limit", "Throttle the session after a high-risk message", duration_sec=300),
            ]
        elif a.severity == Severity.MEDIUM:
            actions = [SecurityAction("log", "Medium-risk content recorded for review")]
        else:
            actions = []

        factors = {
            "message_length": a.message_length,
            "message_count": len(ctx.history),
            "previous_detections": ctx.previous_detections,
            "rapid_messaging": "rapid_messaging" in a.context_flags,
            "encoded_content": "encoded_content" in a.context_flags,
            "session_age_sec": ctx.session_age_sec,
        }
        return ThreatAnalysis(
            overall_risk=risk_tier(a.risk_score),
            risk_score=a.risk_score,
            threat_vectors=vectors,
            mitigation_suggestions=mitigations,
            recommended_actions=actions,
            contextual_factors=factors,
            assessment=a,
        )


def _looks_encoded(run: str) -> bool:
    body = run.rstrip("=")
    if len(body) <= ENCODED_TOKEN_MIN:
        return False
    if _HEX_RE.match(body) and not body.isdigit():
        return True

    padded = run.endswith("=")
    mixed_case = any(c.isupper() for c in body) and any(c.islower() for c in body)
    if not mixed_case or not (padded or "+" in body or any(c.isdigit() for c in body)):
        return False
    # Slash-joined words such as Python3/Django/PostgreSQL.
    if "/" in body and not padded:
        return max(len(part) for part in body.split("/")) > ENCODED_TOKEN_MIN
    return True
