"""
PII (Personally Identifiable Information) masking for log records.
"""
import re


UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)

# Keys whose values identify a person.
PII_FIELDS = {
    "email", "recipient", "recipient_email", "name", "recipient_name",
    "customer_name", "user_id", "customer_id", "actor_id",
}


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part and the domain."""
    if not email or "@" not in email:
        return email
    local, domain = email.rsplit("@", 1)
    if len(local) <= 2:
        masked = "**"
    else:
        masked = local[:2] + "*" * (len(local) - 2)
    return f"{masked}@{domain}"


def mask_name(name: str) -> str:
    if len(name) <= 2:
        return "**"
    return name[0] + "*" * (len(name) - 2) + name[-1]


def mask_uuid(uuid_str: str) -> str:
    """Mask UUID (show first 8 chars only)."""
    if len(uuid_str) < 8:
        return "*" * len(uuid_str)
    return uuid_str[:8] + "-****-****-****-************"


def mask_value(key: str, value: str) -> str:
    if "@" in value:
        return mask_email(value)
    if UUID_RE.match(value):
        return mask_uuid(value)
    if "name" in key:
        return mask_name(value)
    return value


def mask_pii_in_dict(data: dict) -> dict:
    """Mask PII in dictionary recursively. Order and task ids stay readable."""
    masked = {}
    for key, value in data.items():
        if isinstance(value, dict):
            masked[key] = mask_pii_in_dict(value)
        elif isinstance(value, list):
            masked[key] = [mask_pii_in_dict(item) if isinstance(item, dict) else item for item in value]
        elif key.lower() in PII_FIELDS and isinstance(value, str):
            masked[key] = mask_value(key.lower(), value)
        else:
            masked[key] = value
    return masked
