import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import json
from io import BytesIO

from docx import Document

from cv_parser import CandidateProfile, CVFormat, CVParser, JobRequirements, ParsingStatus, Skill, canonical_skill

JANE = b"Jane Smith\njane@example.com\nExperienced in JavaScript, React, Node.js, Python"


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


def test_plain_text_profile():
    res = CVParser().parse(JANE, "jane.txt", "text/plain")
    _assert(res.success, f"Parse failed: {res.errors}")
    p = res.profile
    _assert(p.full_name == "Jane Smith", f"Bad name: {p.full_name}")
    _assert(p.contact.email == "jane@example.com", f"Bad email: {p.contact.email}")
    _assert(p.skill_names() == ["JavaScript", "React", "Node.js", "Python"], f"Bad skills: {p.skill_names()}")
    _assert(res.status == ParsingStatus.PARTIAL, "Missing experience should make the result partial")
    _assert("No work experience found" in res.warnings, f"Warnings: {res.warnings}")
    _assert(res.metadata["format"] == "txt" and res.metadata["file_size"] == len(JANE), "Metadata missing")


def test_empty_file_fails_cleanly():
    res = CVParser().parse(b"", "empty.txt")
    _assert(not res.success and res.status == ParsingStatus.FAILED, "Empty file must fail")
    _assert(res.profile is None, "Failed parse must not carry a profile")
    _assert(any("empty" in e.lower() for e in res.errors), f"Errors: {res.errors}")


def test_rejects_oversize_and_unknown_formats():
    parser = CVParser(max_file_size=10)
    big = parser.parse(b"x" * 11, "cv.txt")
    _assert(big.errors == ["File size exceeds maximum allowed size of 10 bytes"], f"Errors: {big.errors}")
    odd = CVParser().parse(b"MZ\x90\x00", "cv.exe", "application/octet-stream")
    _assert(odd.errors == ["Unsupported file format: unknown"], f"Errors: {odd.errors}")
    legacy = CVParser().parse(b"\xd0\xcf\x11\xe0", "cv.doc")
    _assert(legacy.errors == ["Unsupported file format: doc"], f"Errors: {legacy.errors}")


def test_format_detection():
    parser = CVParser()
    _assert(parser.detect_format("a.PDF") == CVFormat.PDF, "Extension should be case-insensitive")
    _assert(parser.detect_format("upload", "application/json") == CVFormat.JSON, "MIME fallback failed")
    _assert(parser.detect_format("upload", "text/plain") == CVFormat.TXT, "text/* should map to txt")
    _assert(parser.detect_format("upload") == CVFormat.UNKNOWN, "No hints should be unknown")
    _assert(parser.detect_format("upload", "application/msword") == CVFormat.DOC, "msword is legacy doc")
    docx_mime = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    _assert(parser.detect_format("upload", docx_mime) == CVFormat.DOCX, "wordprocessingml should map to docx")
    legacy = parser.parse(b"\xd0\xcf\x11\xe0", "upload", "application/msword")
    _assert(legacy.errors == ["Unsupported file format: doc"], f"Errors: {legacy.errors}")


def test_corrupt_pdf_is_reported():
    res = CVParser().parse(b"%PDF-1.4 not really a pdf", "cv.pdf")
    _assert(not res.success, "Corrupt PDF should fail")
    _assert(res.errors[0].startswith("Could not read PDF document"), f"Errors: {res.errors}")


def test_docx_profile():
    doc = Document()
    doc.add_paragraph("Maria Garcia")
    doc.add_paragraph("maria@example.com | +1 415 555 0199")
    doc.add_paragraph("Senior Software Engineer 2015 - 2023")
    doc.add_paragraph("Skills: Python, Django, PostgreSQL")
    doc.add_paragraph("Bachelor of Science in Computer Science, Stanford University, 2014")
    buf = BytesIO()
    doc.save(buf)

    res = CVParser().parse(buf.getvalue(), "maria.docx")
    _assert(res.success, f"DOCX parse failed: {res.errors}")
    p = res.profile
    _assert(p.full_name == "Maria Garcia", f"Bad name: {p.full_name}")
    _assert(p.skill_names() == ["Python", "Django", "PostgreSQL"], f"Bad skills: {p.skill_names()}")
    _assert(p.contact.phone.endswith("0199"), f"Bad phone: {p.contact.phone}")
    _assert(p.work_experience and p.total_years_experience >= 8, f"Experience span: {p.total_years_experience}")
    _assert(p.education and p.education[0].institution == "Stanford University", f"Education: {p.education}")


def test_html_strips_markup_and_scripts():
    html_doc = (
        b"<html><body><h1>John Doe</h1><p>Email: john@doe.io</p>"
        b"<script>var lang = 'python';</script><p>Skills: Docker &amp; AWS</p></body></html>"
    )
    res = CVParser().parse(html_doc, "john.html")
    _assert(res.success, f"HTML parse failed: {res.errors}")
    _assert(res.profile.full_name == "John Doe", f"Bad name: {res.profile.full_name}")
    _assert(res.profile.skill_names() == ["Docker", "AWS"], f"Script content leaked: {res.profile.skill_names()}")


def test_json_profile():
    payload = {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "skills": ["python", {"name": "k8s", "proficiency": "expert"}],
        "experience": [{"company": "Engines Ltd", "position": "Engineer", "start_date": "2015-01", "end_date": "2020-12"}],
    }
    res = CVParser().parse(json.dumps(payload).encode("utf-8"), "ada.json")
    _assert(res.success, f"JSON parse failed: {res.errors}")
    p = res.profile
    _assert(p.skill_names() == ["Python", "Kubernetes"], f"Bad skills: {p.skill_names()}")
    _assert(p.technical_skills[1].proficiency == "expert", "Proficiency lost")
    _assert(p.parsing_confidence == 0.95, "JSON is the most reliable format")
    _assert(p.total_years_experience == 5.9, f"Years: {p.total_years_experience}")

    broken = CVParser().parse(b"{not json", "broken.json")
    _assert(not broken.success and broken.errors[0].startswith("Invalid JSON document"), f"Errors: {broken.errors}")


def test_profile_merge_prefers_new_values():
    old = CandidateProfile(full_name="Jane Smith", summary="Frontend developer", technical_skills=[Skill("React")])
    new = CandidateProfile(full_name="", technical_skills=[Skill("Python")])
    new.contact.email = "jane@new.example"
    merged = old.merge(new)
    _assert(merged.full_name == "Jane Smith", "Empty value overwrote existing name")
    _assert(merged.summary == "Frontend developer", "Summary lost")
    _assert(merged.skill_names() == ["Python"], "New skills should replace old ones")
    _assert(merged.contact.email == "jane@new.example", "Contact not merged")


def test_analysis_against_requirements():
    parser = CVParser()
    profile = parser.parse(JANE, "jane.txt").profile
    plain = parser.analyze(profile)
    _assert(plain.fit_score is None, "Fit score requires requirements")
    _assert(0 <= plain.overall_score <= 100, f"Score out of range: {plain.overall_score}")

    req = JobRequirements(required_skills=["Python", "Kubernetes"], preferred_skills=["React"], min_experience=3)
    a = parser.analyze(profile, req)
    _assert(a.fit_score == 70, f"Unexpected fit score {a.fit_score}")
    _assert(a.matched_skills == ["Python", "React"] and a.skill_gaps == ["Kubernetes"], "Skill matching wrong")
    _assert(a.experience_gaps, "Experience gap not reported")
    _assert(any("coursera.org/search?query=Kubernetes" in s for s in a.suggestions), "Learning link missing")
    _assert(canonical_skill("nodejs") == "Node.js", "Alias not canonicalised")


if __name__ == "__main__":
    test_plain_text_profile()
    test_empty_file_fails_cleanly()
    test_rejects_oversize_and_unknown_formats()
    test_format_detection()
    test_corrupt_pdf_is_reported()
    test_docx_profile()
    test_html_strips_markup_and_scripts()
    test_json_profile()
    test_profile_merge_prefers_new_values()
    test_analysis_against_requirements()
    print(json.dumps({"ok": True}))
