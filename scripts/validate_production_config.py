import argparse
from pathlib import Path

UNIT_THRESHOLDS = ("INTENTION_CONFIDENCE_THRESHOLD", "JAILBREAK_CONFIDENCE_THRESHOLD", "CV_CONFIDENCE_THRESHOLD")
POSITIVE_INTS = ("MAX_CONVERSATION_LENGTH", "MAX_REQUESTS_PER_MINUTE", "SESSION_TTL_SEC", "MAX_SESSIONS", "CV_MAX_FILE_SIZE")


def parse_env_file(path: Path) -> dict:
    values = {}
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")
    for raw in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        s = raw.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        k, v = s.split("=", 1)
        key = k.strip().lstrip("\ufeff")
        values[key] = v.strip().strip('"').strip("'")
    return values


def truthy(v: str) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "on"}


def _check_auth(env: dict, strict: bool, errors: list):
    if not truthy(env.get("API_KEY_REQUIRED", "")):
        errors.append("API_KEY_REQUIRED must be true.")
    app_key = env.get("APP_API_KEY", "").strip()
    if not app_key:
        errors.append("APP_API_KEY must be set.")
    elif strict and len(app_key) < 24:
        errors.append("APP_API_KEY must be at least 24 chars in strict mode.")

    if not truthy(env.get("MONITORING_KEY_REQUIRED", "true")):
        errors.append("MONITORING_KEY_REQUIRED should be true in production.")
    mon_key = env.get("MONITORING_API_KEY", "").strip()
    if not mon_key:
        errors.append("MONITORING_API_KEY should be set for admin endpoints.")
    elif strict and len(mon_key) < 24:
        errors.append("MONITORING_API_KEY should be at least 24 chars in strict mode.")


def _check_http(env: dict, strict: bool, errors: list):
    if not truthy(env.get("DISABLE_DOCS", "")):
        errors.append("DISABLE_DOCS must be true.")
    if truthy(env.get("ALLOW_NULL_ORIGIN", "false")):
        errors.append("ALLOW_NULL_ORIGIN must be false for production.")

    cors = env.get("CORS_ORIGINS", "").strip()
    if not cors:
        errors.append("CORS_ORIGINS must be set in production.")
    else:
        origins = [x.strip() for x in cors.split(",") if x.strip()]
        lowered = {o.lower() for o in origins}
        if "*" in lowered:
            errors.append("CORS_ORIGINS must not include '*'.")
        if "null" in lowered:
            errors.append("CORS_ORIGINS must not include 'null' in production.")
        if strict and any(o.startswith("http://") for o in origins):
            errors.append("CORS_ORIGINS should use https:// only in strict mode.")

    if strict and truthy(env.get("TRUST_X_FORWARDED_FOR", "false")):
        errors.append("TRUST_X_FORWARDED_FOR should be false unless behind trusted proxy.")


def _check_agent(env: dict, strict: bool, errors: list):
    for key in UNIT_THRESHOLDS:
        raw = env.get(key, "").strip()
        if not raw:
            continue
        try:
            value = float(raw)
        except ValueError:
            errors.append(f"{key} must be a number.")
            continue
        if not 0 < value <= 1:
            errors.append(f"{key} must be in (0, 1].")

    risk = env.get("JAILBREAK_RISK_THRESHOLD", "").strip()
    if risk:
        try:
            if not 0 <= float(risk) <= 100:
                errors.append("JAILBREAK_RISK_THRESHOLD must be between 0 and 100.")
        except ValueError:
            errors.append("JAILBREAK_RISK_THRESHOLD must be a number.")

    for key in POSITIVE_INTS:
        raw = env.get(key, "").strip()
        if not raw:
            continue
        try:
            if int(raw) <= 0:
                errors.append(f"{key} must be a positive integer.")
        except ValueError:
            errors.append(f"{key} must be a positive integer.")

    if not truthy(env.get("ENABLE_JAILBREAK_DETECTION", "true")):
        errors.append("ENABLE_JAILBREAK_DETECTION should be true in production.")
    if not truthy(env.get("BLOCK_ON_HIGH_RISK", "true")):
        errors.append("BLOCK_ON_HIGH_RISK should be true in production.")

    webhook = env.get("NOTIFICATION_WEBHOOK_URL", "").strip()
    if webhook and strict and not webhook.startswith("https://"):
        errors.append("NOTIFICATION_WEBHOOK_URL should use https:// in strict mode.")


def validate(env: dict, strict: bool = False) -> list[str]:
    errors = []
    _check_auth(env, strict, errors)
    _check_http(env, strict, errors)
    _check_agent(env, strict, errors)
    return errors


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate production-safe env policy.")
    parser.add_argument("--env-file", default=".env", help="Path to env file (default: .env)")
    parser.add_argument("--strict", action="store_true", help="Enable stricter production checks")
    args = parser.parse_args()

    env = parse_env_file(Path(args.env_file))
    errors = validate(env, strict=args.strict)
    if errors:
        print("Production config validation failed:")
        for e in errors:
            print(f"- {e}")
        return 1
    print("Production config validation passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
