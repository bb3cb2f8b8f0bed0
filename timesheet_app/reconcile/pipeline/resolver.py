"""
Entity resolution for reconciled rows.

Creation policy:

* Branch: exact (normalized) match, created when missing. Several matches are
  ambiguous and reject the row.
* SalesPerson / CrewMember: exact then fuzzy match over *active* rows only.
  Never created and never reactivated. The first resolution of a person with
  no branch links links them to the row's branch; later rows add nothing.
* Estimate: exact then fuzzy match on the job name, branch first.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Type

from flask import current_app, has_app_context
from sqlalchemy import func, select

from timesheet_app.models import (
    Branch,
    CrewMember,
    CrewMemberBranch,
    Estimate,
    Job,
    JobStatus,
    SalesPerson,
    SalesPersonBranch,
    Shift,
    db,
)

from ..errors import AmbiguousMatchError
from .cache import LookupCache
from .matching import DEFAULT_THRESHOLD, normalize_name, rank_candidates, top_scoring

BRANCH_CACHE = "branch"


def _log_debug(message: str, *args, **extra) -> None:
    if has_app_context():
        current_app.logger.debug(message, *args, extra=extra)


class EntityResolver:
    """Resolve sheet names to persisted entities inside the caller's session."""

    def __init__(
        self,
        session=None,
        cache: LookupCache | None = None,
        *,
        threshold: float | None = None,
        closed_status_name: str | None = None,
    ) -> None:
        self.session = session or db.session
        self.cache = cache if cache is not None else LookupCache()
        config = current_app.config if has_app_context() else {}
        self.threshold = float(threshold if threshold is not None else config.get("RECON_FUZZY_THRESHOLD", DEFAULT_THRESHOLD))
        self.closed_status_name = closed_status_name or config.get("RECON_CLOSED_STATUS_NAME", "Closed Job")

    # ------------------------------------------------------------------ #
    # Branch
    # ------------------------------------------------------------------ #
    def find_branch(self, name: str) -> Optional[Branch]:
        """Return the single branch matching ``name`` or None; ambiguity raises."""
        normalized = normalize_name(name)
        if not normalized:
            return None

        cached_id = self.cache.get(BRANCH_CACHE, normalized)
        if cached_id is not None:
            branch = self.session.get(Branch, cached_id)
            if branch is not None:
                return branch

        matches = [branch for branch in self.session.scalars(select(Branch).order_by(Branch.id)) if normalize_name(branch.name) == normalized]
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"Multiple branches match '{name}'.",
                entity_type="branch",
                candidates=[branch.name for branch in matches],
            )
        if not matches:
            return None
        self.cache.set(BRANCH_CACHE, normalized, matches[0].id)
        return matches[0]

    def resolve_branch(self, name: str, *, create: bool = True) -> Optional[Branch]:
        branch = self.find_branch(name)
        if branch is not None or not create:
            return branch

        branch = Branch(name=" ".join(name.split()))
        self.session.add(branch)
        self.session.flush()
        self.cache.invalidate(BRANCH_CACHE)
        self.cache.set(BRANCH_CACHE, normalize_name(name), branch.id)
        if has_app_context():
            current_app.logger.info("Created branch '%s'", branch.name, extra={"branch_id": branch.id})
        return branch

    # ------------------------------------------------------------------ #
    # People
    # ------------------------------------------------------------------ #
    def resolve_sales_person(self, name: str, branch_id: int | None = None, *, link: bool = True) -> Optional[SalesPerson]:
        person = self._match_person(SalesPerson, name)
        if person is not None and link and branch_id is not None:
            self._assign_first_branch(SalesPersonBranch, "sales_person_id", person.id, branch_id)
        return person

    def resolve_crew_member(self, name: str, branch_id: int | None = None, *, link: bool = True) -> Optional[CrewMember]:
        member = self._match_person(CrewMember, name)
        if member is not None and link and branch_id is not None:
            self._assign_first_branch(CrewMemberBranch, "crew_member_id", member.id, branch_id)
        return member

    def _match_person(self, model: Type, name: str):
        normalized = normalize_name(name)
        if not normalized:
            return None
        pool: Sequence = self.session.scalars(
            select(model).where(model.is_active.is_(True)).order_by(model.id)
        ).all()
        if not pool:
            return None

        exact = [candidate for candidate in pool if normalize_name(candidate.name) == normalized]
        if exact:
            return self._break_tie(model, exact)

        scored = rank_candidates(name, pool, key=lambda candidate: candidate.name, threshold=self.threshold)
        best = top_scoring(scored)
        if not best:
            _log_debug("No %s match for '%s'", model.__tablename__, name, entity_type=model.__tablename__)
            return None
        chosen = self._break_tie(model, best)
        _log_debug(
            "Fuzzy matched %s '%s' to '%s' (score %.3f)",
            model.__tablename__,
            name,
            chosen.name,
            scored[0][0],
            entity_type=model.__tablename__,
        )
        return chosen

    def _break_tie(self, model: Type, candidates: List):
        """Prefer a reachable contact channel, then more active work, then the lowest id."""
        if len(candidates) == 1:
            return candidates[0]
        workload = self._active_workload(model, [candidate.id for candidate in candidates])
        return sorted(
            candidates,
            key=lambda candidate: (
                0 if candidate.telegram_id else 1,
                -workload.get(candidate.id, 0),
                candidate.id,
            ),
        )[0]

    def _active_workload(self, model: Type, ids: Iterable[int]) -> dict:
        ids = list(ids)
        closed_job_ids = (
            select(Job.id).join(JobStatus, Job.status_id == JobStatus.id).where(JobStatus.name == self.closed_status_name)
        )
        if model is CrewMember:
            stmt = (
                select(Shift.crew_member_id, func.count())
                .where(Shift.crew_member_id.in_(ids), Shift.job_id.not_in(closed_job_ids))
                .group_by(Shift.crew_member_id)
            )
        else:
            stmt = (
                select(Estimate.sales_person_id, func.count(Job.id))
                .join(Job, Job.estimate_id == Estimate.id)
                .where(Estimate.sales_person_id.in_(ids), Job.id.not_in(closed_job_ids))
                .group_by(Estimate.sales_person_id)
            )
        return {row[0]: row[1] for row in self.session.execute(stmt)}

    def _assign_first_branch(self, link_model: Type, owner_column: str, owner_id: int, branch_id: int) -> bool:
        """Link the owner to ``branch_id`` only when it has no branch links yet."""
        owner = getattr(link_model, owner_column)
        existing = self.session.scalar(select(func.count()).select_from(link_model).where(owner == owner_id))
        if existing:
            return False
        self.session.add(link_model(**{owner_column: owner_id, "branch_id": branch_id}))
        self.session.flush()
        _log_debug("Linked %s %s to branch %s", link_model.__tablename__, owner_id, branch_id)
        return True

    # ------------------------------------------------------------------ #
    # Estimate
    # ------------------------------------------------------------------ #
    def resolve_estimate(self, job_name: str, branch_id: int | None = None) -> Optional[Estimate]:
        normalized = normalize_name(job_name)
        if not normalized:
            return None
        pools = []
        if branch_id is not None:
            pools.append(select(Estimate).where(Estimate.branch_id == branch_id).order_by(Estimate.id))
        pools.append(select(Estimate).order_by(Estimate.id))

        for stmt in pools:
            estimates = self.session.scalars(stmt).all()
            exact = [estimate for estimate in estimates if normalize_name(estimate.name) == normalized]
            if exact:
                return exact[0]
            best = top_scoring(rank_candidates(job_name, estimates, key=lambda estimate: estimate.name, threshold=self.threshold))
            if best:
                return best[0]
        return None
