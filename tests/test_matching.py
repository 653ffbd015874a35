"""Unit tests for the matching engine. No database involved."""
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from resolution.config import ResolutionSettings
from resolution.matching import (
    best_match,
    compute_candidates,
    eligible_domains,
    is_auto_resolvable,
    name_similarity,
)
from resolution.normalize import normalize_company_name


SETTINGS = ResolutionSettings(internal_domains=frozenset({"ourco.example"}))
HOST = SimpleNamespace(email="rep@ourco.example", is_host=True)


def _person(email, is_host=False):
    return SimpleNamespace(email=email, is_host=is_host)


def _account(name, domain=None, synced=None, account_id=None):
    return SimpleNamespace(
        id=account_id or uuid.uuid4(),
        name=name,
        normalized_name=normalize_company_name(name),
        domain=domain,
        last_synced_at=synced,
    )


class TestEligibleDomains:
    def test_excludes_free_mail_internal_and_host_domains(self):
        participants = [
            HOST,
            _person("colleague@partner.example", is_host=True),
            _person("pat@gmail.com"),
            _person("ops@ourco.example"),
            _person("eve@partner.example"),
            _person("sam@Northwind.Example"),
            _person("sam2@northwind.example"),
            _person(None),
            _person("not-an-email"),
        ]
        assert eligible_domains(participants, SETTINGS) == ["northwind.example"]


class TestComputeCandidates:
    def test_alias_hit_is_exact(self):
        contoso = _account("Contoso")
        candidates = compute_candidates(
            [HOST, _person("kim@contoso.example")],
            aliases={"contoso.example": contoso.id},
            accounts=[contoso],
            settings=SETTINGS,
        )
        assert len(candidates) == 1
        assert candidates[0].account_id == contoso.id
        assert candidates[0].confidence == 1.0
        assert candidates[0].match_method == "email_domain"
        assert candidates[0].matched_on == "contoso.example"

    def test_primary_domain_counts_as_exact_hit(self):
        fabrikam = _account("Fabrikam", domain="fabrikam.example")
        candidates = compute_candidates(
            [HOST, _person("lee@fabrikam.example")],
            aliases={},
            accounts=[fabrikam],
            settings=SETTINGS,
        )
        assert [c.confidence for c in candidates] == [1.0]

    def test_fuzzy_match_on_registrable_label_stays_below_one(self):
        northwind = _account("Northwind Traders")
        candidates = compute_candidates(
            [HOST, _person("sam@northwind.example")],
            aliases={},
            accounts=[northwind, _account("Tailspin Toys")],
            settings=SETTINGS,
        )
        assert len(candidates) == 1
        assert candidates[0].account_id == northwind.id
        assert candidates[0].match_method == "fuzzy_name"
        assert 0 < candidates[0].confidence <= SETTINGS.fuzzy_ceiling
        assert candidates[0].confidence < 1.0

    def test_country_code_subdomain_resolves_to_organisation_label(self):
        northwind = _account("Northwind")
        candidates = compute_candidates(
            [HOST, _person("sam@mail.northwind.co.uk")],
            aliases={},
            accounts=[northwind],
            settings=SETTINGS,
        )
        assert candidates[0].account_id == northwind.id

    def test_exact_hit_suppresses_fuzzy_candidates(self):
        contoso = _account("Contoso")
        lookalike = _account("Contoso Pharma")
        candidates = compute_candidates(
            [HOST, _person("kim@contoso.example")],
            aliases={"contoso.example": contoso.id},
            accounts=[contoso, lookalike],
            settings=SETTINGS,
        )
        assert [c.account_id for c in candidates] == [contoso.id]

    def test_merges_per_account_by_maximum(self):
        contoso = _account("Contoso", domain="contoso.co")
        candidates = compute_candidates(
            [HOST, _person("kim@contoso.example"), _person("jo@contoso.co")],
            aliases={"contoso.example": contoso.id},
            accounts=[contoso],
            settings=SETTINGS,
        )
        assert len(candidates) == 1
        assert candidates[0].confidence == 1.0

    def test_ties_prefer_most_recently_synced_then_never_synced_last(self):
        old = _account("Old", synced=datetime(2025, 1, 1, tzinfo=timezone.utc))
        new = _account("New", synced=datetime(2026, 1, 1, tzinfo=timezone.utc))
        never = _account("Never")
        for account in (old, new, never):
            account.domain = "shared.example"
        candidates = compute_candidates(
            [HOST, _person("a@shared.example")],
            aliases={},
            accounts=[never, old, new],
            settings=SETTINGS,
        )
        assert [c.account_id for c in candidates] == [new.id, old.id, never.id]
        assert not is_auto_resolvable(candidates, SETTINGS)

    def test_free_mail_only_call_has_no_candidates(self):
        candidates = compute_candidates(
            [HOST, _person("someone@gmail.com")],
            aliases={"gmail.com": uuid.uuid4()},
            accounts=[_account("Gmail Fans")],
            settings=SETTINGS,
        )
        assert candidates == []

    def test_title_fallback_uses_lower_ceiling(self):
        litware = _account("Litware")
        candidates = compute_candidates(
            [HOST, _person("someone@gmail.com")],
            aliases={},
            accounts=[litware],
            settings=SETTINGS,
            title="Litware quarterly review",
        )
        assert len(candidates) == 1
        assert candidates[0].matched_on == "Litware quarterly review"
        assert candidates[0].confidence <= SETTINGS.title_ceiling

    def test_title_fallback_can_be_disabled(self):
        candidates = compute_candidates(
            [HOST, _person("someone@gmail.com")],
            aliases={},
            accounts=[_account("Litware")],
            settings=SETTINGS.model_copy(update={"match_call_titles": False}),
            title="Litware quarterly review",
        )
        assert candidates == []

    def test_no_zero_confidence_entries(self):
        candidates = compute_candidates(
            [HOST, _person("x@zzqy.example")],
            aliases={},
            accounts=[_account("Northwind Traders")],
            settings=SETTINGS,
        )
        assert candidates == []

    def test_inputs_are_not_mutated(self):
        aliases = {"contoso.example": uuid.uuid4()}
        accounts = [_account("Contoso")]
        compute_candidates(
            [HOST, _person("kim@contoso.example")],
            aliases=aliases,
            accounts=accounts,
            settings=SETTINGS,
        )
        assert len(aliases) == 1 and len(accounts) == 1


class TestAutoResolvePolicy:
    def test_single_exact_candidate_is_auto_resolvable(self):
        contoso = _account("Contoso")
        candidates = compute_candidates(
            [HOST, _person("kim@contoso.example")],
            aliases={"contoso.example": contoso.id},
            accounts=[contoso],
            settings=SETTINGS,
        )
        assert is_auto_resolvable(candidates, SETTINGS)
        assert best_match(candidates) == (1.0, "email_domain")

    def test_fuzzy_candidate_never_auto_resolves(self):
        northwind = _account("Northwind")
        candidates = compute_candidates(
            [HOST, _person("sam@northwind.example")],
            aliases={},
            accounts=[northwind],
            settings=SETTINGS,
        )
        assert candidates[0].confidence == pytest.approx(SETTINGS.fuzzy_ceiling)
        assert not is_auto_resolvable(candidates, SETTINGS)

    def test_two_exact_candidates_are_ambiguous(self):
        first, second = _account("Contoso"), _account("Fabrikam")
        candidates = compute_candidates(
            [HOST, _person("kim@contoso.example"), _person("lee@fabrikam.example")],
            aliases={"contoso.example": first.id, "fabrikam.example": second.id},
            accounts=[first, second],
            settings=SETTINGS,
        )
        assert len(candidates) == 2
        assert not is_auto_resolvable(candidates, SETTINGS)

    def test_empty_has_no_best_match(self):
        assert best_match([]) == (None, "none")
        assert not is_auto_resolvable([], SETTINGS)


def test_name_similarity_is_monotonic_in_overlap():
    assert name_similarity("northwind", "northwind") == 1.0
    assert name_similarity("northwind", "northwind traders") >= name_similarity(
        "northwind", "northwest traders"
    )
    assert name_similarity("", "northwind") == 0.0
