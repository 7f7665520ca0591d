import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import json
import tempfile

from validate_production_config import parse_env_file, validate

GOOD = {
    "API_KEY_REQUIRED": "true",
    "APP_API_KEY": "a" * 32,
    "MONITORING_KEY_REQUIRED": "true",
    "MONITORING_API_KEY": "m" * 32,
    "DISABLE_DOCS": "true",
    "ALLOW_NULL_ORIGIN": "false",
    "CORS_ORIGINS": "https://careers.example.com",
    "INTENTION_CONFIDENCE_THRESHOLD": "0.7",
    "JAILBREAK_RISK_THRESHOLD": "70",
    "MAX_CONVERSATION_LENGTH": "50",
    "NOTIFICATION_WEBHOOK_URL": "https://hooks.example.com/recruiting",
}


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


def test_good_profile_passes_strict():
    _assert(validate(GOOD, strict=True) == [], f"Errors: {validate(GOOD, strict=True)}")


def test_agent_thresholds_are_checked():
    env = dict(GOOD, INTENTION_CONFIDENCE_THRESHOLD="1.5", JAILBREAK_RISK_THRESHOLD="high", MAX_CONVERSATION_LENGTH="0")
    errors = validate(env)
    _assert("INTENTION_CONFIDENCE_THRESHOLD must be in (0, 1]." in errors, f"Errors: {errors}")
    _assert("JAILBREAK_RISK_THRESHOLD must be a number." in errors, f"Errors: {errors}")
    _assert("MAX_CONVERSATION_LENGTH must be a positive integer." in errors, f"Errors: {errors}")


def test_strict_mode_rules():
    env = dict(GOOD, APP_API_KEY="short", NOTIFICATION_WEBHOOK_URL="http://hooks.example.com")
    _assert(validate(env) == [], "Relaxed mode should accept short keys and http webhooks")
    strict = validate(env, strict=True)
    _assert("APP_API_KEY must be at least 24 chars in strict mode." in strict, f"Errors: {strict}")
    _assert("NOTIFICATION_WEBHOOK_URL should use https:// in strict mode." in strict, f"Errors: {strict}")


def test_open_cors_and_disabled_security():
    env = dict(GOOD, CORS_ORIGINS="*", BLOCK_ON_HIGH_RISK="false")
    errors = validate(env)
    _assert("CORS_ORIGINS must not include '*'." in errors, f"Errors: {errors}")
    _assert("BLOCK_ON_HIGH_RISK should be true in production." in errors, f"Errors: {errors}")


def test_parse_env_file():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / ".env"
        path.write_text('# comment\nAPP_API_KEY="abc"\nBROKEN LINE\nDISABLE_DOCS = true\n', encoding="utf-8")
        env = parse_env_file(path)
    _assert(env == {"APP_API_KEY": "abc", "DISABLE_DOCS": "true"}, f"Parsed: {env}")


if __name__ == "__main__":
    test_good_profile_passes_strict()
    test_agent_thresholds_are_checked()
    test_strict_mode_rules()
    test_open_cors_and_disabled_security()
    test_parse_env_file()
    print(json.dumps({"ok": True}))
