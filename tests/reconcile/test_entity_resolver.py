"""Tests for EntityResolver creation policy, fuzzy matching and tie-breaks."""

import pytest

from timesheet_app.models import (
    Branch,
    CrewMember,
    Estimate,
    Job,
    SalesPerson,
    SalesPersonBranch,
    Shift,
    db,
)
from timesheet_app.reconcile.errors import AmbiguousMatchError
from timesheet_app.reconcile.pipeline import EntityResolver, LookupCache


def _resolver():
    return EntityResolver(db.session, LookupCache())


def test_resolve_branch_creates_once_and_deduplicates(app):
    resolver = _resolver()
    first = resolver.resolve_branch("Kent")
    second = resolver.resolve_branch("  KENT ")
    db.session.commit()

    assert first.id == second.id
    assert db.session.query(Branch).count() == 1


def test_find_branch_without_create_returns_none(app):
    assert _resolver().resolve_branch("Everett", create=False) is None
    assert db.session.query(Branch).count() == 0


def test_ambiguous_branch_names_are_rejected(app):
    db.session.add_all([Branch(name="Kent"), Branch(name="KENT")])
    db.session.commit()

    with pytest.raises(AmbiguousMatchError) as excinfo:
        _resolver().resolve_branch("kent")

    assert sorted(excinfo.value.candidates) == ["KENT", "Kent"]
    assert excinfo.value.to_dict()["entityType"] == "branch"


def test_inactive_salesperson_is_never_returned(app):
    db.session.add(SalesPerson(name="Daniel Howard", is_active=False))
    db.session.commit()

    assert _resolver().resolve_sales_person("Daniel Howard") is None
    person = db.session.query(SalesPerson).one()
    assert person.is_active is False


def test_inactive_crew_member_is_never_returned(app):
    db.session.add(CrewMember(name="Eben Woodall", is_active=False))
    db.session.commit()

    resolver = _resolver()
    assert resolver.resolve_crew_member("Eben Woodall") is None
    assert resolver.resolve_crew_member("Eben Woodbell") is None
    assert db.session.query(CrewMember).one().is_active is False


def test_inactive_crew_member_loses_to_active_fuzzy_match(app):
    retired = CrewMember(name="Eben Woodbell", is_active=False)
    current = CrewMember(name="Eben Woodall")
    db.session.add_all([retired, current])
    db.session.commit()

    assert _resolver().resolve_crew_member("Eben Woodbell").id == current.id


def test_different_first_name_with_same_surname_does_not_match(app):
    db.session.add(CrewMember(name="Mark Lee"))
    db.session.commit()

    assert _resolver().resolve_crew_member("Mary Lee") is None


def test_estimate_for_another_year_does_not_match(app):
    kent = Branch(name="Kent")
    db.session.add(kent)
    db.session.flush()
    db.session.add(Estimate(name="Smith Attic 2024", branch_id=kent.id))
    db.session.commit()

    assert _resolver().resolve_estimate("Smith Attic 2025", kent.id) is None


def test_fuzzy_crew_member_match(app):
    db.session.add(CrewMember(name="Eben Woodall"))
    db.session.commit()

    member = _resolver().resolve_crew_member("Eben Woodbell")
    assert member is not None
    assert member.name == "Eben Woodall"


def test_similar_but_different_person_does_not_match(app):
    db.session.add(CrewMember(name="Jane Smith"))
    db.session.commit()

    assert _resolver().resolve_crew_member("John Smith") is None


def test_branch_link_is_assigned_only_once(app):
    kent = Branch(name="Kent")
    everett = Branch(name="Everett")
    person = SalesPerson(name="Daniel Price")
    db.session.add_all([kent, everett, person])
    db.session.commit()

    resolver = _resolver()
    resolver.resolve_sales_person("Daniel Price", kent.id)
    resolver.resolve_sales_person("Daniel Price", everett.id)
    db.session.commit()

    links = db.session.query(SalesPersonBranch).filter_by(sales_person_id=person.id).all()
    assert [link.branch_id for link in links] == [kent.id]


def test_resolution_without_link_leaves_branches_untouched(app):
    kent = Branch(name="Kent")
    member = CrewMember(name="Alice")
    db.session.add_all([kent, member])
    db.session.commit()

    _resolver().resolve_crew_member("Alice", kent.id, link=False)
    db.session.commit()

    assert db.session.get(CrewMember, member.id).branches == []


def test_tie_break_prefers_contact_channel(app):
    plain = CrewMember(name="Chris Lee")
    reachable = CrewMember(name="Chris  Lee", telegram_id="555")
    db.session.add_all([plain, reachable])
    db.session.commit()

    assert _resolver().resolve_crew_member("chris lee").id == reachable.id


def test_tie_break_prefers_more_active_work(app):
    idle = CrewMember(name="Sam Ortiz")
    busy = CrewMember(name="Sam Ortiz")
    db.session.add_all([idle, busy])
    db.session.flush()
    for index in range(2):
        job = Job(name=f"Open Job {index}")
        db.session.add(job)
        db.session.flush()
        db.session.add(Shift(job_id=job.id, crew_member_id=busy.id, hours=4))
    db.session.commit()

    assert _resolver().resolve_crew_member("Sam Ortiz").id == busy.id


def test_tie_break_falls_back_to_lowest_id(app):
    first = CrewMember(name="Pat Kim")
    second = CrewMember(name="Pat Kim")
    db.session.add_all([first, second])
    db.session.commit()

    assert _resolver().resolve_crew_member("Pat Kim").id == min(first.id, second.id)


def test_resolve_estimate_prefers_branch_then_global(app):
    kent = Branch(name="Kent")
    everett = Branch(name="Everett")
    db.session.add_all([kent, everett])
    db.session.flush()
    other = Estimate(name="Miller Residence", branch_id=everett.id)
    local = Estimate(name="Miller Residence", branch_id=kent.id)
    lonely = Estimate(name="Baker Attic Job", branch_id=everett.id)
    db.session.add_all([other, local, lonely])
    db.session.commit()

    resolver = _resolver()
    assert resolver.resolve_estimate("miller residence", kent.id).id == local.id
    assert resolver.resolve_estimate("Baker Attic Job", kent.id).id == lonely.id
    assert resolver.resolve_estimate("Baker Atic Job", kent.id).id == lonely.id
    assert resolver.resolve_estimate("Nothing Similar", kent.id) is None
