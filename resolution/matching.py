"""Matching engine: ranks candidate accounts for a call.

Pure functions over already-loaded data. Callers fetch the tenant's alias map
and accounts, then ask for candidates:

  1. Exact: a participant domain is a known alias (or an account's primary
     domain) -> confidence 1.0, method email_domain.
  2. Fuzzy: no exact hit on the call -> compare each domain's registrable
     label with account names; confidence = similarity x fuzzy_ceiling.
  3. Title: still nothing -> compare the call title the same way, scaled by
     the lower title_ceiling.

Auto-assignment only happens for exactly one candidate at or above
auto_resolve_threshold, so fuzzy matches (capped below it) always need a human.
"""
from typing import Iterable, Mapping, Optional, Sequence
from uuid import UUID

from rapidfuzz import fuzz

from resolution.config import ResolutionSettings
from resolution.normalize import email_domain, normalize_company_name, registrable_label
from schemas.resolution import MatchCandidate

EXACT_CONFIDENCE = 1.0


def eligible_domains(participants: Iterable, settings: ResolutionSettings) -> list[str]:
    """Distinct external participant domains that may identify an account.

    Drops free-mail providers, configured internal domains and any domain
    used by a host of the call.
    """
    participants = list(participants)
    excluded = set(settings.free_email_domains) | set(settings.internal_domains)
    for participant in participants:
        if participant.is_host and participant.email:
            domain = email_domain(participant.email)
            if domain:
                excluded.add(domain)

    domains = set()
    for participant in participants:
        if participant.is_host or not participant.email:
            continue
        domain = email_domain(participant.email)
        if domain and domain not in excluded:
            domains.add(domain)
    return sorted(domains)


def name_similarity(label: str, normalized_name: str) -> float:
    """Similarity in [0, 1] between a domain label or title and an account name."""
    if not label or not normalized_name:
        return 0.0
    score = max(
        fuzz.token_set_ratio(label, normalized_name),
        fuzz.ratio(label.replace(" ", ""), normalized_name.replace(" ", "")),
    )
    return score / 100.0


def duplicate_similarity(first: str, second: str) -> float:
    """Stricter whole-name similarity used when looking for duplicate accounts."""
    if not first or not second:
        return 0.0
    return fuzz.token_sort_ratio(first, second) / 100.0


def compute_candidates(
    participants: Iterable,
    *,
    aliases: Mapping[str, UUID],
    accounts: Sequence,
    settings: ResolutionSettings,
    title: Optional[str] = None,
) -> list[MatchCandidate]:
    """Return ranked candidates for a call, best first. Empty when nothing matches.

    participants: objects with ``email`` and ``is_host``.
    aliases: the tenant's {domain: account_id} map (may be pre-filtered to
        the call's domains).
    accounts: the tenant's accounts, objects with ``id``, ``name``,
        ``normalized_name``, ``domain`` and ``last_synced_at``.
    """
    by_id = {account.id: account for account in accounts}
    domains = eligible_domains(participants, settings)
    best: dict[UUID, MatchCandidate] = {}

    def offer(account, confidence: float, method: str, matched_on: str, reason: str) -> None:
        current = best.get(account.id)
        if current is not None and current.confidence >= confidence:
            return
        best[account.id] = MatchCandidate(
            account_id=account.id,
            account_name=account.name,
            confidence=round(confidence, 4),
            match_method=method,
            matched_on=matched_on,
            reason=reason,
        )

    primary: dict[str, list] = {}
    for account in accounts:
        if account.domain:
            primary.setdefault(account.domain.lower(), []).append(account)

    for domain in domains:
        if domain in aliases:
            account = by_id.get(aliases[domain])
            if account is not None:
                offer(account, EXACT_CONFIDENCE, "email_domain", domain,
                      f"{domain} is a known domain of {account.name}")
        else:
            for account in primary.get(domain, []):
                offer(account, EXACT_CONFIDENCE, "email_domain", domain,
                      f"{domain} is the primary domain of {account.name}")

    if not best:
        for domain in domains:
            label = registrable_label(domain)
            for account in accounts:
                similarity = name_similarity(label, account.normalized_name)
                if similarity >= settings.fuzzy_floor:
                    offer(account, similarity * settings.fuzzy_ceiling, "fuzzy_name", domain,
                          f"{domain} resembles {account.name} ({similarity:.0%})")

    if not best and title and settings.match_call_titles:
        normalized_title = normalize_company_name(title)
        for account in accounts:
            similarity = name_similarity(normalized_title, account.normalized_name)
            if similarity >= settings.fuzzy_floor:
                offer(account, similarity * settings.title_ceiling, "fuzzy_name", title,
                      f"Call title mentions {account.name} ({similarity:.0%})")

    return sorted(best.values(), key=lambda c: _rank_key(c, by_id[c.account_id]))


def _rank_key(candidate: MatchCandidate, account) -> tuple:
    synced = account.last_synced_at
    # Most recently synced first, never-synced last.
    synced_key = (0, -synced.timestamp()) if synced is not None else (1, 0.0)
    return (-candidate.confidence, synced_key, str(candidate.account_id))


def is_auto_resolvable(candidates: Sequence[MatchCandidate], settings: ResolutionSettings) -> bool:
    """True only for a single candidate at or above the auto-resolve threshold."""
    return (
        len(candidates) == 1
        and candidates[0].confidence >= settings.auto_resolve_threshold
    )


def best_match(candidates: Sequence[MatchCandidate]) -> tuple[Optional[float], str]:
    """(confidence, method) of the top candidate, or (None, "none")."""
    if not candidates:
        return None, "none"
    return candidates[0].confidence, candidates[0].match_method
