import html
import json
import logging
import re
import time
from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pdfplumber
import requests
from docx import Document

from logging_config import get_logger
from pattern_matcher import round_score

PARSER_VERSION = "1.2.0"
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class CVFormat(str, Enum):
    PDF = "pdf"
    DOC = "doc"
    DOCX = "docx"
    TXT = "txt"
    HTML = "html"
    JSON = "json"
    UNKNOWN = "unknown"


class ParsingStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ExperienceLevel(str, Enum):
    ENTRY = "entry"
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    LEAD = "lead"
    PRINCIPAL = "principal"


EXTENSION_FORMATS = {
    ".pdf": CVFormat.PDF,
    ".doc": CVFormat.DOC,
    ".docx": CVFormat.DOCX,
    ".txt": CVFormat.TXT,
    ".html": CVFormat.HTML,
    ".htm": CVFormat.HTML,
    ".json": CVFormat.JSON,
}

# Structured formats carry more reliable fields than heuristic text.
FORMAT_CONFIDENCE = {
    CVFormat.TXT: 0.75,
    CVFormat.PDF: 0.7,
    CVFormat.DOCX: 0.75,
    CVFormat.HTML: 0.7,
    CVFormat.JSON: 0.95,
}

DEFAULT_SUPPORTED_FORMATS = (CVFormat.PDF, CVFormat.DOCX, CVFormat.TXT, CVFormat.HTML, CVFormat.JSON)

# Canonical name -> aliases. Matched only against explicit spans in the text.
SKILL_ALIASES = {
    "Python": ["python"],
    "Java": ["java"],
    "JavaScript": ["javascript", "js", "ecmascript"],
    "TypeScript": ["typescript", "ts"],
    "C++": ["c++", "cpp"],
    "C#": ["c#", "csharp"],
    "Go": ["golang", "go language"],
    "Ruby": ["ruby"],
    "PHP": ["php"],
    "Rust": ["rust"],
    "Kotlin": ["kotlin"],
    "React": ["react", "react.js", "reactjs"],
    "Angular": ["angular", "angularjs"],
    "Vue.js": ["vue", "vue.js", "vuejs"],
    "Node.js": ["node", "node.js", "nodejs"],
    "Django": ["django"],
    "FastAPI": ["fastapi"],
    "Flask": ["flask"],
    "Spring Boot": ["spring boot", "springboot"],
    "HTML": ["html", "html5"],
    "CSS": ["css", "css3"],
    "AWS": ["aws", "amazon web services"],
    "Azure": ["azure", "microsoft azure"],
    "GCP": ["gcp", "google cloud"],
    "Docker": ["docker"],
    "Kubernetes": ["kubernetes", "k8s"],
    "Terraform": ["terraform"],
    "Linux": ["linux", "ubuntu", "debian", "centos"],
    "Git": ["git"],
    "GitHub Actions": ["github actions"],
    "CI/CD": ["ci/cd", "cicd"],
    "SQL": ["sql"],
    "PostgreSQL": ["postgres", "postgresql"],
    "MySQL": ["mysql"],
    "MongoDB": ["mongodb", "mongo"],
    "Redis": ["redis"],
    "Kafka": ["kafka"],
    "PyTorch": ["pytorch"],
    "TensorFlow": ["tensorflow"],
    "Machine Learning": ["machine learning"],
    "LangChain": ["langchain"],
}

SOFT_SKILLS = (
    "communication",
    "leadership",
    "teamwork",
    "collaboration",
    "problem solving",
    "time management",
    "adaptability",
    "critical thinking",
    "mentoring",
)

SPOKEN_LANGUAGES = ("english", "spanish", "french", "german", "portuguese", "italian", "mandarin", "hindi", "arabic", "japanese")

PROFICIENCY_WORDS = (
    ("expert", ("expert", "mastery")),
    ("advanced", ("advanced", "proficient", "strong")),
    ("beginner", ("basic", "beginner", "familiar", "exposure")),
)

DEGREE_RE = re.compile(
    r"\b(ph\.?d|doctorate|master'?s?|m\.?sc|mba|bachelor'?s?|b\.?sc|b\.?tech|m\.?tech|associate degree)\b",
    re.IGNORECASE,
)
INSTITUTION_RE = re.compile(r"([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*)*\s+(?:University|College|Institute|School)(?:\s+of\s+[A-Z][\w-]*)*)")
TITLE_RE = re.compile(
    r"\b(engineer|developer|manager|analyst|designer|consultant|architect|scientist|administrator|lead)\b",
    re.IGNORECASE,
)
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?<!\w)(\+?\d[\d\s().-]{7,}\d)(?!\w)")
LINKEDIN_RE = re.compile(r"(?:https?://)?(?:www\.)?linkedin\.com/in/[\w-]+/?", re.IGNORECASE)
GITHUB_RE = re.compile(r"(?:https?://)?(?:www\.)?github\.com/[\w-]+/?", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
SECTION_RE = re.compile(r"^\s*(summary|profile|objective|about me)\s*:?\s*(.*)$", re.IGNORECASE)
NAME_LABEL_RE = re.compile(r"(?i)\bname\b\s*[:\-]\s*([A-Za-z][A-Za-z .'-]{1,60})")

NAME_BLOCKED_TOKENS = {
    "resume",
    "curriculum",
    "vitae",
    "cv",
    "email",
    "phone",
    "linkedin",
    "github",
    "profile",
    "summary",
    "objective",
}


def _skill_regex(alias: str):
    return re.compile(rf"(?<![a-z0-9.]){re.escape(alias)}(?![a-z0-9]|\.[a-z0-9])", re.IGNORECASE)


_SKILL_MATCHERS = [(canonical, [_skill_regex(a) for a in aliases]) for canonical, aliases in SKILL_ALIASES.items()]
_ALIAS_TO_CANONICAL = {a: c for c, aliases in SKILL_ALIASES.items() for a in aliases + [c.lower()]}


def canonical_skill(name: str) -> str:
    key = (name or "").strip().lower()
    return _ALIAS_TO_CANONICAL.get(key, (name or "").strip())


def experience_level(years: float) -> ExperienceLevel:
    if years < 1:
        return ExperienceLevel.ENTRY
    if years < 3:
        return ExperienceLevel.JUNIOR
    if years < 6:
        return ExperienceLevel.MID
    if years < 10:
        return ExperienceLevel.SENIOR
    if years < 15:
        return ExperienceLevel.LEAD
    return ExperienceLevel.PRINCIPAL


@dataclass
class ContactInfo:
    email: str = ""
    phone: str = ""
    linkedin: str = ""
    github: str = ""
    location: str = ""


@dataclass
class WorkExperience:
    company: str
    position: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: str = ""
    technologies: List[str] = field(default_factory=list)

    @property
    def duration_months(self) -> int:
        if not self.start_date:
            return 0
        end = self.end_date or date.today()
        return max(0, (end.year - self.start_date.year) * 12 + (end.month - self.start_date.month))


@dataclass
class Education:
    institution: str = ""
    degree: str = ""
    field_of_study: str = ""
    graduation_year: Optional[int] = None


@dataclass
class Skill:
    name: str
    proficiency: str = "intermediate"
    category: str = "technical"
    years: Optional[float] = None


@dataclass
class CandidateProfile:
    full_name: str = ""
    contact: ContactInfo = field(default_factory=ContactInfo)
    summary: str = ""
    work_experience: List[WorkExperience] = field(default_factory=list)
    education: List[Education] = field(default_factory=list)
    technical_skills: List[Skill] = field(default_factory=list)
    soft_skills: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    total_years_experience: float = 0.0
    experience_level: ExperienceLevel = ExperienceLevel.ENTRY
    parsing_confidence: float = 0.0
    source_format: CVFormat = CVFormat.UNKNOWN
    updated_at: float = field(default_factory=time.time)

    def skill_names(self) -> List[str]:
        return [s.name for s in self.technical_skills]

    def merge(self, other: "CandidateProfile") -> "CandidateProfile":
        """Return a copy where every non-empty field of ``other`` wins."""
        updates = {}
        for f in fields(self):
            if f.name in {"contact", "experience_level", "total_years_experience"}:
                continue
            value = getattr(other, f.name)
            if value not in ("", None, [], 0, 0.0, CVFormat.UNKNOWN):
                updates[f.name] = value

        contact = replace(self.contact)
        for f in fields(ContactInfo):
            value = getattr(other.contact, f.name)
            if value:
                setattr(contact, f.name, value)
        updates["contact"] = contact

        if other.work_experience:
            updates["total_years_experience"] = other.total_years_experience
            updates["experience_level"] = other.experience_level
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "contact": vars(self.contact).copy(),
            "summary": self.summary,
            "work_experience": [
                {
                    "company": w.company,
                    "position": w.position,
                    "start_date": w.start_date.isoformat() if w.start_date else None,
                    "end_date": w.end_date.isoformat() if w.end_date else None,
                    "description": w.description,
                    "technologies": list(w.technologies),
                }
                for w in self.work_experience
            ],
            "education": [vars(e).copy() for e in self.education],
            "technical_skills": [{"name": s.name, "proficiency": s.proficiency} for s in self.technical_skills],
            "soft_skills": list(self.soft_skills),
            "languages": list(self.languages),
            "total_years_experience": self.total_years_experience,
            "experience_level": self.experience_level.value,
            "parsing_confidence": self.parsing_confidence,
            "source_format": self.source_format.value,
        }


@dataclass
class ParsingResult:
    success: bool
    status: ParsingStatus
    profile: Optional[CandidateProfile] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "profile": self.profile.to_dict() if self.profile else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": dict(self.metadata),
        }


@dataclass
class JobRequirements:
    required_skills: List[str] = field(default_factory=list)
    preferred_skills: List[str] = field(default_factory=list)
    min_experience: float = 0.0


@dataclass
class CVAnalysis:
    overall_score: int
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    fit_score: Optional[int] = None
    matched_skills: List[str] = field(default_factory=list)
    skill_gaps: List[str] = field(default_factory=list)
    experience_gaps: List[str] = field(default_factory=list)


class CVParser:
    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        confidence_threshold: float = 0.7,
        supported_formats: Iterable[CVFormat] = DEFAULT_SUPPORTED_FORMATS,
        logger: Optional[logging.Logger] = None,
    ):
        self.max_file_size = max_file_size
        self.confidence_threshold = confidence_threshold
        self.supported_formats = tuple(supported_formats)
        self.logger = logger or get_logger("cv")
        self._extractors = {
            CVFormat.TXT: self._extract_txt,
            CVFormat.PDF: self._extract_pdf,
            CVFormat.DOCX: self._extract_docx,
            CVFormat.HTML: self._extract_html,
        }

    def detect_format(self, filename: str = "", mime_type: Optional[str] = None) -> CVFormat:
        ext = Path(filename or "").suffix.lower()
        if ext in EXTENSION_FORMATS:
            return EXTENSION_FORMATS[ext]
        mime = (mime_type or "").lower()
        if "pdf" in mime:
            return CVFormat.PDF
        if "msword" in mime:
            return CVFormat.DOC
        if "wordprocessingml" in mime or "word" in mime:
            return CVFormat.DOCX
        if "json" in mime:
            return CVFormat.JSON
        if "html" in mime:
            return CVFormat.HTML
        if mime.startswith("text/"):
            return CVFormat.TXT
        return CVFormat.UNKNOWN

    def validate(self, content: bytes, cv_format: CVFormat) -> List[str]:
        errors = []
        if not content:
            errors.append("File is empty")
        elif len(content) > self.max_file_size:
            errors.append(f"File size exceeds maximum allowed size of {self.max_file_size} bytes")
        if cv_format not in self.supported_formats:
            errors.append(f"Unsupported file format: {cv_format.value}")
        return errors

    def parse(self, content: bytes, filename: str = "", mime_type: Optional[str] = None) -> ParsingResult:
        start = time.time()
        content = content or b""
        cv_format = self.detect_format(filename, mime_type)
        meta = {
            "filename": filename,
            "format": cv_format.value,
            "file_size": len(content),
            "parser_version": PARSER_VERSION,
        }

        errors = self.validate(content, cv_format)
        if errors:
            self.logger.info("cv_rejected filename=%s format=%s errors=%s", filename, cv_format.value, "; ".join(errors))
            return ParsingResult(success=False, status=ParsingStatus.FAILED, errors=errors, metadata=meta)

        try:
            if cv_format == CVFormat.JSON:
                result = self._parse_json(content, filename)
            else:
                text, pages = self._extractors[cv_format](content)
                meta["page_count"] = pages
                result = self.parse_text(text, cv_format=cv_format, filename=filename)
        except Exception as exc:
            self.logger.warning("cv_extraction_failed filename=%s format=%s error=%s", filename, cv_format.value, exc)
            return ParsingResult(
                success=False,
                status=ParsingStatus.FAILED,
                errors=[f"Could not read {cv_format.value.upper()} document: {exc}"],
                metadata=meta,
            )

        result.metadata.update(meta)
        result.metadata["processing_time_ms"] = int((time.time() - start) * 1000)
        self.logger.info(
            "cv_parsed filename=%s format=%s success=%s warnings=%d",
            filename,
            cv_format.value,
            result.success,
            len(result.warnings),
        )
        return result

    # -- format strategies ---------------------------------------------------

    def _extract_txt(self, content: bytes) -> Tuple[str, int]:
        return content.decode("utf-8", errors="ignore").strip(), 1

    def _extract_pdf(self, content: bytes) -> Tuple[str, int]:
        pages_text = []
        with pdfplumber.open(BytesIO(content)) as pdf:
            page_count = len(pdf.pages)
            for page in pdf.pages:
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    pages_text.append(page_text)
        return "\n".join(pages_text).strip(), page_count

    def _extract_docx(self, content: bytes) -> Tuple[str, int]:
        doc = Document(BytesIO(content))
        parts = [(p.text or "").strip() for p in doc.paragraphs]
        for table in doc.tables:
            for row in table.rows:
                parts.append(" | ".join((c.text or "").strip() for c in row.cells))
        return "\n".join([p for p in parts if p]).strip(), 1

    def _extract_html(self, content: bytes) -> Tuple[str, int]:
        raw = content.decode("utf-8", errors="ignore")
        raw = re.sub(r"(?is)<(script|style)\b.*?</\1>", " ", raw)
        raw = re.sub(r"(?i)<br\s*/?>|</(p|div|li|h[1-6]|tr)>", "\n", raw)
        text = html.unescape(re.sub(r"<[^>]+>", " ", raw))
        lines = [re.sub(r"[ \t]+", " ", ln).strip() for ln in text.splitlines()]
        return "\n".join(ln for ln in lines if ln), 1

    # -- heuristics -------------------------------------------------------------

    def parse_text(self, text: str, cv_format: CVFormat = CVFormat.TXT, filename: str = "") -> ParsingResult:
        raw = (text or "").strip()
        if not raw:
            return ParsingResult(
                success=False,
                status=ParsingStatus.FAILED,
                errors=["No readable text found in document"],
                metadata={"format": cv_format.value},
            )

        lines = [ln.strip() for ln in raw.splitlines() if ln.strip()]
        name = self._extract_name(lines, filename)
        contact = ContactInfo(
            email=_first(EMAIL_RE, raw),
            phone=_extract_phone(raw),
            linkedin=_first(LINKEDIN_RE, raw),
            github=_first(GITHUB_RE, raw),
        )
        skills = self._extract_skills(raw)
        experience = self._extract_experience(raw, lines, skills)
        total_years = _years_from_span(experience[0]) if experience else 0.0
        education = self._extract_education(lines)
        lowered = raw.lower()

        profile = CandidateProfile(
            full_name=name,
            contact=contact,
            summary=self._extract_summary(lines),
            work_experience=experience,
            education=education,
            technical_skills=skills,
            soft_skills=[s for s in SOFT_SKILLS if re.search(rf"\b{re.escape(s)}\b", lowered)],
            languages=[lang.capitalize() for lang in SPOKEN_LANGUAGES if re.search(rf"\b{lang}\b", lowered)],
            total_years_experience=total_years,
            experience_level=experience_level(total_years),
            parsing_confidence=FORMAT_CONFIDENCE.get(cv_format, 0.5),
            source_format=cv_format,
        )
        field_confidence = {
            "full_name": 0.5 if name else 0.0,
            "email": 0.95 if contact.email else 0.0,
            "technical_skills": 0.8 if skills else 0.0,
            "work_experience": 0.6 if experience else 0.0,
            "education": 0.6 if education else 0.0,
        }
        return self._finish(profile, {"word_count": len(raw.split()), "field_confidence": field_confidence})

    def _finish(self, profile: CandidateProfile, metadata: Dict[str, Any]) -> ParsingResult:
        warnings = []
        if not profile.full_name:
            warnings.append("Could not extract candidate name")
        if not profile.contact.email:
            warnings.append("Could not extract contact email")
        if not profile.work_experience:
            warnings.append("No work experience found")
        if not profile.technical_skills:
            warnings.append("No technical skills found")
        if profile.parsing_confidence < self.confidence_threshold:
            warnings.append(f"Low parsing confidence: {int(round(profile.parsing_confidence * 100))}%")
        return ParsingResult(
            success=True,
            status=ParsingStatus.PARTIAL if warnings else ParsingStatus.SUCCESS,
            profile=profile,
            warnings=warnings,
            metadata=metadata,
        )

    def _extract_name(self, lines: List[str], filename: str) -> str:
        for line in lines[:20]:
            m = NAME_LABEL_RE.search(line)
            if m:
                name = re.sub(r"\s+", " ", m.group(1)).strip()
                if 2 <= len(name) <= 60:
                    return name

        for line in lines[:3]:
            if "@" in line or any(ch.isdigit() for ch in line):
                continue
            words = re.findall(r"[A-Za-z][A-Za-z'-]*", line)
            if not (1 <= len(words) <= 5):
                continue
            if {w.lower() for w in words} & NAME_BLOCKED_TOKENS:
                continue
            return " ".join(words)

        stem = Path(filename).stem.strip() if filename else ""
        stem = re.sub(r"\s+", " ", re.sub(r"[_\-]+", " ", stem)).strip()
        if stem and not ({w.lower() for w in stem.split()} & NAME_BLOCKED_TOKENS):
            return stem.title()
        return ""

    def _extract_skills(self, raw: str) -> List[Skill]:
        found = []
        for canonical, matchers in _SKILL_MATCHERS:
            positions = [m.start() for rx in matchers for m in [rx.search(raw)] if m]
            if positions:
                found.append((min(positions), canonical))
        found.sort()

        lines = raw.lower().splitlines()
        skills = []
        for pos, canonical in found:
            line = _line_at(raw, pos, lines)
            skills.append(Skill(name=canonical, proficiency=_proficiency(line)))
        return skills

    def _extract_experience(self, raw: str, lines: List[str], skills: List[Skill]) -> List[WorkExperience]:
        current = date.today().year
        years = [int(y) for y in YEAR_RE.findall(raw) if 1990 < int(y) <= current]
        if len(years) < 2:
            return []
        title = next((ln for ln in lines if TITLE_RE.search(ln) and len(ln) <= 80), "Professional Experience")
        return [
            WorkExperience(
                company="Not specified",
                position=title,
                start_date=date(min(years), 1, 1),
                end_date=date(max(years), 12, 31),
                description="Derived from dates found in the document",
                technologies=[s.name for s in skills],
            )
        ]

    def _extract_education(self, lines: List[str]) -> List[Education]:
        items = []
        for line in lines:
            m = DEGREE_RE.search(line)
            if not m:
                continue
            inst = INSTITUTION_RE.search(line)
            field_match = re.search(r"\b(?:in|of)\s+([A-Z][A-Za-z ]{2,40}?)(?:,|\s+at\b|\s+from\b|\s*\(|$)", line[m.end():])
            years = [int(y) for y in YEAR_RE.findall(line)]
            items.append(
                Education(
                    institution=inst.group(1).strip() if inst else "",
                    degree=m.group(1),
                    field_of_study=field_match.group(1).strip() if field_match else "",
                    graduation_year=max(years) if years else None,
                )
            )
        return items

    def _extract_summary(self, lines: List[str]) -> str:
        for idx, line in enumerate(lines):
            m = SECTION_RE.match(line)
            if m:
                parts = [m.group(2)] if m.group(2) else []
                parts.extend(lines[idx + 1: idx + 3])
                return " ".join(p for p in parts if p).strip()
        return " ".join(lines[:3])

    def _parse_json(self, content: bytes, filename: str) -> ParsingResult:
        try:
            data = json.loads(content.decode("utf-8", errors="strict"))
        except ValueError as exc:
            return ParsingResult(success=False, status=ParsingStatus.FAILED, errors=[f"Invalid JSON document: {exc}"])
        if not isinstance(data, dict):
            return ParsingResult(success=False, status=ParsingStatus.FAILED, errors=["JSON document must be an object"])

        contact = data.get("contact") if isinstance(data.get("contact"), dict) else data
        skills = []
        for item in data.get("skills") or data.get("technical_skills") or []:
            if isinstance(item, dict):
                name = str(item.get("name") or "").strip()
                if name:
                    skills.append(Skill(name=canonical_skill(name), proficiency=str(item.get("proficiency") or "intermediate")))
            elif str(item).strip():
                skills.append(Skill(name=canonical_skill(str(item))))

        experience = []
        for item in data.get("experience") or data.get("work_experience") or []:
            if not isinstance(item, dict):
                continue
            experience.append(
                WorkExperience(
                    company=str(item.get("company") or ""),
                    position=str(item.get("position") or item.get("title") or ""),
                    start_date=_parse_date(item.get("start_date")),
                    end_date=_parse_date(item.get("end_date")),
                    description=str(item.get("description") or ""),
                    technologies=[str(t) for t in item.get("technologies") or []],
                )
            )
        education = [
            Education(
                institution=str(e.get("institution") or ""),
                degree=str(e.get("degree") or ""),
                field_of_study=str(e.get("field_of_study") or e.get("field") or ""),
                graduation_year=_parse_int(e.get("graduation_year")),
            )
            for e in data.get("education") or []
            if isinstance(e, dict)
        ]
        total_years = round(sum(w.duration_months for w in experience) / 12, 1)

        profile = CandidateProfile(
            full_name=str(data.get("full_name") or data.get("name") or "").strip(),
            contact=ContactInfo(
                email=str(contact.get("email") or ""),
                phone=str(contact.get("phone") or ""),
                linkedin=str(contact.get("linkedin") or ""),
                github=str(contact.get("github") or ""),
                location=str(contact.get("location") or ""),
            ),
            summary=str(data.get("summary") or ""),
            work_experience=experience,
            education=education,
            technical_skills=skills,
            soft_skills=[str(s) for s in data.get("soft_skills") or []],
            languages=[str(s) for s in data.get("languages") or []],
            total_years_experience=total_years,
            experience_level=experience_level(total_years),
            parsing_confidence=FORMAT_CONFIDENCE[CVFormat.JSON],
            source_format=CVFormat.JSON,
        )
        return self._finish(profile, {"field_confidence": {"all": FORMAT_CONFIDENCE[CVFormat.JSON]}})

    # -- analysis ---------------------------------------------------------------

    def analyze(self, profile: CandidateProfile, requirements: Optional[JobRequirements] = None) -> CVAnalysis:
        years = profile.total_years_experience
        score = 50.0
        if profile.contact.email:
            score += 10
        if profile.work_experience:
            score += 20
        if profile.education:
            score += 10
        if profile.technical_skills:
            score += 15
        if profile.summary:
            score += 5
        score += min(years * 2, 20)
        score *= profile.parsing_confidence
        overall = int(min(100, max(0, round_score(score, 0))))

        strengths, weaknesses, suggestions = [], [], []
        if years >= 5:
            strengths.append(f"Extensive professional experience ({years} years)")
        if len(profile.technical_skills) >= 5:
            strengths.append(f"Broad technical skill set ({len(profile.technical_skills)} skills)")
        if profile.education:
            strengths.append("Formal education listed")

        if not profile.work_experience:
            weaknesses.append("No work experience listed")
            suggestions.append("Add work history with dates, employers and responsibilities")
        if len(profile.technical_skills) < 3:
            weaknesses.append("Limited technical skills listed")
            suggestions.append("List the tools, languages and frameworks you use regularly")
        if not profile.summary:
            weaknesses.append("Missing professional summary")
            suggestions.append("Add a short professional summary at the top of the CV")
        if not profile.contact.email:
            suggestions.append("Include a contact email address")

        analysis = CVAnalysis(overall_score=overall, strengths=strengths, weaknesses=weaknesses, suggestions=suggestions)
        if requirements is None:
            return analysis

        have = {s.lower() for s in (canonical_skill(n) for n in profile.skill_names())}
        fit = 50
        if years >= requirements.min_experience:
            fit += 20
        else:
            analysis.experience_gaps.append(
                f"Requires {requirements.min_experience:g} years of experience, profile shows {years:g}"
            )
        for skill in requirements.required_skills:
            if canonical_skill(skill).lower() in have:
                fit += 15
                analysis.matched_skills.append(skill)
            else:
                analysis.skill_gaps.append(skill)
        for skill in requirements.preferred_skills:
            if canonical_skill(skill).lower() in have:
                fit += 5
                analysis.matched_skills.append(skill)
        analysis.fit_score = min(100, fit)

        for skill in analysis.skill_gaps:
            analysis.suggestions.append(
                f"Build {skill} experience: https://www.coursera.org/search?query={requests.utils.quote(skill)}"
            )
        return analysis


def _first(rx, text: str) -> str:
    m = rx.search(text)
    if not m:
        return ""
    return (m.group(1) if rx.groups else m.group(0)).strip()


def _line_at(raw: str, pos: int, lines: List[str]) -> str:
    if not lines:
        return ""
    return lines[min(raw.count("\n", 0, pos), len(lines) - 1)]


def _extract_phone(raw: str) -> str:
    for m in PHONE_RE.finditer(raw):
        digits = sum(ch.isdigit() for ch in m.group(1))
        if 9 <= digits <= 15:
            return m.group(1).strip()
    return ""


def _proficiency(line: str) -> str:
    for tier, words in PROFICIENCY_WORDS:
        if any(re.search(rf"\b{w}\b", line) for w in words):
            return tier
    return "intermediate"


def _years_from_span(exp: WorkExperience) -> float:
    months = (exp.end_date.year - exp.start_date.year) * 12 + 11
    return round(months / 12, 1)


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    text = str(value).strip()
    if text.lower() in {"present", "current", "now"}:
        return None
    m = re.match(r"^(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?", text)
    if not m:
        return None
    return date(int(m.group(1)), int(m.group(2) or 1), int(m.group(3) or 1))


def _parse_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
