"""String normalization shared by matching, learning and account creation."""
import re
from typing import Optional

_LEGAL_SUFFIXES = re.compile(
    r"\b(inc|incorporated|corp|corporation|llc|ltd|limited|co|company|group"
    r"|holdings|plc|gmbh|sa|ag)\b\.?",
    re.IGNORECASE,
)
_PUNCTUATION = re.compile(r"[.,\-()&/'\"_]+")
_WHITESPACE = re.compile(r"\s+")

# Second-level labels that sit under a country code (mail.acme.co.uk -> acme).
_SECOND_LEVEL = {"co", "com", "net", "org", "ac", "gov", "edu", "ltd", "plc"}


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def normalize_company_name(name: str) -> str:
    """Lower-case, fold punctuation, strip legal suffixes, collapse whitespace.

    "Contoso Ltd." and "Contoso" both normalize to "contoso".
    """
    lowered = name.lower()
    stripped = _LEGAL_SUFFIXES.sub(" ", lowered)
    folded = _PUNCTUATION.sub(" ", stripped)
    normalized = collapse_whitespace(folded)
    # A name made only of suffixes ("The Company") keeps its plain form.
    return normalized or collapse_whitespace(_PUNCTUATION.sub(" ", lowered))


def normalize_email(email: str) -> Optional[str]:
    """Lower-cased, trimmed email, or None when it has no single '@'."""
    email = email.strip().lower()
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or "@" in domain:
        return None
    return email


def email_domain(email: str) -> Optional[str]:
    """Domain part of an email address, lower-cased, or None if malformed."""
    normalized = normalize_email(email)
    if normalized is None:
        return None
    domain = normalized.rsplit("@", 1)[1].strip(".")
    return domain if "." in domain else None


def registrable_label(domain: str) -> str:
    """The organisation label of a domain, used for fuzzy comparison.

    northwind.example -> northwind, mail.contoso.co.uk -> contoso,
    fabrikam-research.com -> fabrikam research
    """
    labels = [label for label in domain.lower().strip(".").split(".") if label]
    if len(labels) >= 3 and len(labels[-1]) == 2 and labels[-2] in _SECOND_LEVEL:
        label = labels[-3]
    elif len(labels) >= 2:
        label = labels[-2]
    else:
        label = labels[0] if labels else ""
    return collapse_whitespace(label.replace("-", " ").replace("_", " "))
