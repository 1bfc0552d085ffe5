"""
Email-intent extraction.

Decides whether a model reply says it is going to create an email and, if
so, pulls the labelled fields out of the prose:

    I'll create this email for you.

    Name: Spring Sale Announcement
    Subject: 20% off everything this weekend
    Content: A short, upbeat email announcing the sale...

Decision rule (pure function of the text):
  - the lower-cased reply contains one of AFFIRMATIVE_PHRASES, AND
  - it contains both "name:" and "subject:".

Extraction takes the first match of each label, case-insensitive. Name and
Subject run to the end of their line. Content runs until the next line that
starts with a capitalized label ("Word:" / "Two Words:") or the end of the
text. Missing fields fall back to defaults (see _default_name etc.).

This is a text heuristic, not a grammar: paraphrased confirmations are
missed and casual mentions of the labels can trigger it.
"""

import logging
import re
from datetime import date
from typing import Optional

from chat_relay.models.chat import EmailIntent

logger = logging.getLogger(__name__)

AFFIRMATIVE_PHRASES = (
    "i'll create",
    "i will create",
    "creating this email",
    "i'll build",
    "i will build",
    "let me create",
)

DEFAULT_SUBJECT = "Message from our team"

# Label matching is case-insensitive; the "next label" lookahead for Content
# must stay case-sensitive so ordinary sentences containing a colon do not
# end the body early.
_NAME_RE = re.compile(r"\b(?i:name):[ \t]*([^\n]*)")
_SUBJECT_RE = re.compile(r"\b(?i:subject):[ \t]*([^\n]*)")
_CONTENT_RE = re.compile(
    r"\b(?i:content):[ \t]*(.*?)(?=\n[ \t*#-]*[A-Z][A-Za-z]*(?: [A-Z][A-Za-z]*)?\**:|\Z)",
    re.DOTALL,
)

# Markdown emphasis the model sometimes wraps around labels/values
_EMPHASIS_CHARS = "*_`"


def _clean(value: str) -> str:
    return value.strip().strip(_EMPHASIS_CHARS).strip()


def _first_match(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    value = _clean(match.group(1))
    return value or None


def _default_name(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"AI Email {today.isoformat()}"


def has_email_intent(text: str) -> bool:
    lowered = (text or "").lower()
    if "name:" not in lowered or "subject:" not in lowered:
        return False
    return any(phrase in lowered for phrase in AFFIRMATIVE_PHRASES)


def extract_email_intent(text: str, today: Optional[date] = None) -> Optional[EmailIntent]:
    """
    Return the EmailIntent signalled by ``text``, or None when the reply does
    not ask for an email to be created.
    """
    if not has_email_intent(text):
        return None

    name = _first_match(_NAME_RE, text)
    subject = _first_match(_SUBJECT_RE, text)
    content = _first_match(_CONTENT_RE, text)

    intent = EmailIntent(
        name=name or _default_name(today),
        subject=subject or DEFAULT_SUBJECT,
        body_description=content or text,
    )
    logger.info(
        "Email intent detected (name=%s, subject_found=%s, content_found=%s)",
        "found" if name else "default",
        subject is not None,
        content is not None,
    )
    return intent
