"""
anzen/agents/email_parser.py: Pharmaceutical inquiry extraction from email text.

Sends subject + body + sender to an OpenAI chat-completion model in JSON mode
and maps whatever key style the model answers with (camelCase, snake_case or
short names) onto one parsed-inquiry dict.

Sender domains are cached in crm_company_domains: once a domain is tied to a
company (by the model, or confirmed by a user in the CRM), later mail from that
domain gets that company name regardless of what the model guesses.
"""

import re
import json
import logging
from datetime import datetime

import requests

from anzen.core.db import get_db
from anzen.core.secrets import get_key

log = logging.getLogger("anzen.email_parser")

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
REQUEST_TIMEOUT = 60

URGENCY_LEVELS = ("low", "medium", "high", "urgent")
CONFIDENCE_SCORES = {"high": 0.9, "medium": 0.6, "low": 0.3}

WEBMAIL_DOMAINS = {
    "gmail.com", "googlemail.com", "yahoo.com", "yahoo.co.id", "ymail.com",
    "hotmail.com", "outlook.com", "live.com", "msn.com", "icloud.com", "me.com",
    "aol.com", "protonmail.com", "proton.me", "mail.com", "gmx.com", "zoho.com",
    "qq.com", "163.com", "126.com", "rediffmail.com",
}

SYSTEM_PROMPT = """You are an AI assistant specialized in parsing pharmaceutical industry inquiry emails. Extract key information from emails written in Indonesian or English.

Your task is to analyze the email and extract:
1. Product name (e.g., "Sodium Hypophosphite Pharma Grade IHS")
2. Quantity with units (e.g., "150 KG", "2 MT")
3. Supplier/Manufacturer name if mentioned
4. Country of origin if mentioned (Japan, China, India, etc.)
5. Company name from signature or context
6. Contact person name
7. Whether COA (Certificate of Analysis) is requested
8. Whether MSDS (Material Safety Data Sheet) is requested
9. Whether sample is requested
10. Whether price quotation is requested
11. Urgency level based on keywords like "urgent", "ASAP", "segera", "mendesak"
12. Any additional remarks or special requirements
13. Phone/WhatsApp number if present
14. Detect the primary language (Indonesian or English)

Return a JSON object with the extracted information. If information is not found, use null or false for boolean fields."""

USER_PROMPT = """Parse this pharmaceutical inquiry email:

SUBJECT: {subject}
FROM: {from_name} <{from_email}>

BODY:
{body}

Respond with a JSON object containing the extracted information."""

# parsed field → keys the model may use, in priority order
ALIASES = {
    "product_name": ("productName", "product_name", "product"),
    "specification": ("specification", "spec", "grade"),
    "quantity": ("quantity", "qty"),
    "supplier_name": ("supplierName", "supplier_name", "supplier", "manufacturer"),
    "supplier_country": ("supplierCountry", "supplier_country", "country", "countryOfOrigin",
                         "country_of_origin"),
    "company_name": ("companyName", "company_name", "company"),
    "contact_person": ("contactPerson", "contact_person", "contact"),
    "contact_phone": ("contactPhone", "contact_phone", "phone", "whatsapp"),
    "coa_requested": ("coaRequested", "coa_requested", "coa"),
    "msds_requested": ("msdsRequested", "msds_requested", "msds"),
    "sample_requested": ("sampleRequested", "sample_requested", "sample"),
    "price_requested": ("priceRequested", "price_requested", "price"),
    "urgency": ("urgency", "urgencyLevel", "urgency_level"),
    "remarks": ("remarks", "notes", "additional_info", "additionalInfo"),
    "confidence": ("confidence",),
    "confidence_score": ("confidenceScore", "confidence_score"),
    "detected_language": ("detectedLanguage", "detected_language", "language"),
    "delivery_date_expected": ("deliveryDateExpected", "delivery_date_expected", "deliveryDate"),
}


class ParseError(Exception):
    """The model call failed or returned something that is not a JSON object."""


# ── Model call ────────────────────────────────────────────────────────────────

def build_user_prompt(subject: str, body: str, from_email: str, from_name: str = "") -> str:
    return USER_PROMPT.format(subject=subject or "", body=body or "",
                              from_email=from_email or "", from_name=from_name or "")


def _call_openai(user_prompt: str) -> tuple:
    """POST to chat completions. Returns (decoded JSON object, raw content)."""
    api_key = get_key("openai_api_key")
    if not api_key:
        raise ParseError("OpenAI API key not configured")
    resp = requests.post(
        OPENAI_URL,
        headers={"Authorization": f"Bearer {api_key}",
                 "Content-Type": "application/json"},
        json={
            "model": get_key("openai_model"),
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
        },
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise ParseError(f"OpenAI API error {resp.status_code}: {resp.text[:300]}")
    content = resp.json()["choices"][0]["message"]["content"].strip()
    if content.startswith("```"):
        content = re.sub(r"^```\w*\n?", "", content)
        content = re.sub(r"\n?```$", "", content)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Model returned invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ParseError("Model returned JSON that is not an object")
    return data, content


# ── Normalisation ─────────────────────────────────────────────────────────────

def _first(ai: dict, field: str):
    """First truthy value among the aliases of `field`, else None."""
    for key in ALIASES[field]:
        value = ai.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _present(ai: dict, field: str) -> bool:
    return any(key in ai for key in ALIASES[field])


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "no", "0", "null", "none", "tidak")
    return bool(value)


def _text(value):
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v)
    return str(value).strip() or None


def confidence_score(ai: dict) -> float:
    """Numeric score from the model, else from its confidence label, else 0."""
    raw = _first(ai, "confidence_score")
    if raw is not None:
        try:
            score = float(raw)
            return max(0.0, min(score if score <= 1 else score / 100, 1.0))
        except (TypeError, ValueError):
            pass
    label = _first(ai, "confidence")
    if isinstance(label, str):
        return CONFIDENCE_SCORES.get(label.strip().lower(), 0.0)
    if isinstance(label, (int, float)):
        return max(0.0, min(float(label), 1.0))
    return 0.0


def normalize(ai: dict, from_email: str, from_name: str = "") -> dict:
    """Map a model answer onto the parsed-inquiry fields with defaults."""
    company = _text(_first(ai, "company_name"))
    contact = _text(_first(ai, "contact_person"))
    urgency = (_text(_first(ai, "urgency")) or "medium").lower()
    language = _text(_first(ai, "detected_language")) or "unknown"
    confidence = _first(ai, "confidence")

    parsed = {
        "product_name": _text(_first(ai, "product_name")) or "",
        "specification": _text(_first(ai, "specification")),
        "quantity": _text(_first(ai, "quantity")) or "",
        "supplier_name": _text(_first(ai, "supplier_name")),
        "supplier_country": _text(_first(ai, "supplier_country")),
        "company_name": company or "Unknown",
        "contact_person": contact or (from_name or None),
        "contact_email": from_email,
        "contact_phone": _text(_first(ai, "contact_phone")),
        "coa_requested": _flag(_first(ai, "coa_requested")),
        "msds_requested": _flag(_first(ai, "msds_requested")),
        "sample_requested": _flag(_first(ai, "sample_requested")),
        # price is assumed requested unless the model says otherwise
        "price_requested": _flag(_first(ai, "price_requested"))
        if _present(ai, "price_requested") else True,
        "urgency": urgency if urgency in URGENCY_LEVELS else "medium",
        "remarks": _text(_first(ai, "remarks")),
        "confidence": confidence.lower() if isinstance(confidence, str) else "medium",
        "confidence_score": confidence_score(ai),
        "detected_language": language,
        "delivery_date_expected": _text(_first(ai, "delivery_date_expected")),
        "auto_detected_company": bool(company),
        "auto_detected_contact": bool(contact),
    }
    parsed["purpose_icons"] = [name for name, flag in (
        ("coa", "coa_requested"), ("msds", "msds_requested"),
        ("sample", "sample_requested"), ("price", "price_requested")) if parsed[flag]]
    return parsed


# ── Domain → company cache ────────────────────────────────────────────────────

def sender_domain(email: str) -> str:
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().strip(">").lower()


def lookup_domain(domain: str) -> dict | None:
    if not domain:
        return None
    with get_db() as conn:
        row = conn.execute("SELECT * FROM crm_company_domains WHERE domain=?",
                           (domain,)).fetchone()
    return dict(row) if row else None


def _remember_domain(domain: str, company: str):
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO crm_company_domains (domain, company_name, is_confirmed, hit_count, "
            "created_at, updated_at) VALUES (?,?,0,1,?,?) "
            "ON CONFLICT(domain) DO UPDATE SET hit_count = hit_count + 1, updated_at = excluded.updated_at",
            (domain, company, now, now))


def confirm_domain(domain: str, company_name: str) -> dict:
    """User-confirmed mapping; overrides any earlier guess for the domain."""
    domain = (domain or "").strip().lower()
    company_name = (company_name or "").strip()
    if not domain or not company_name:
        raise ValueError("domain and company_name are required")
    if domain in WEBMAIL_DOMAINS:
        raise ValueError(f"{domain} is a public mail domain and cannot map to a company")
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO crm_company_domains (domain, company_name, is_confirmed, hit_count, "
            "created_at, updated_at) VALUES (?,?,1,0,?,?) "
            "ON CONFLICT(domain) DO UPDATE SET company_name = excluded.company_name, "
            "is_confirmed = 1, updated_at = excluded.updated_at",
            (domain, company_name, now, now))
    log.info("Domain confirmed: %s → %s", domain, company_name)
    return lookup_domain(domain)


def apply_domain_cache(parsed: dict) -> dict:
    domain = sender_domain(parsed.get("contact_email"))
    if not domain or domain in WEBMAIL_DOMAINS:
        return parsed
    cached = lookup_domain(domain)
    if cached:
        parsed["company_name"] = cached["company_name"]
        parsed["auto_detected_company"] = True
        _remember_domain(domain, cached["company_name"])
    elif parsed["company_name"] != "Unknown":
        _remember_domain(domain, parsed["company_name"])
    return parsed


# ── Entry point ───────────────────────────────────────────────────────────────

def parse_email(subject: str, body: str, from_email: str, from_name: str = "") -> dict:
    """Parse one email. Returns {"success", "data", "rawAiResponse"}.

    Raises ParseError when the model call fails; requests errors propagate.
    """
    ai, _raw = _call_openai(build_user_prompt(subject, body, from_email, from_name))
    parsed = apply_domain_cache(normalize(ai, from_email, from_name))
    log.info("Parsed email from %s: product=%r company=%r score=%.2f",
             from_email, parsed["product_name"][:60], parsed["company_name"],
             parsed["confidence_score"])
    return {"success": True, "data": parsed, "rawAiResponse": ai}
