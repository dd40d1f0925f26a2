"""Repository layer for data access."""

from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Iterable, NamedTuple

from sqlalchemy import func, or_, select, union
from sqlalchemy.orm import Session, aliased

from redamigos.errors import GenerationCollision
from redamigos.logging_config import get_logger
from redamigos.storage.models import ActivityLog, Referral, ReferralStatus, User

logger = get_logger(__name__)


class ChildLink(NamedTuple):
    """Direct child of a user in the referral graph.

    ``node_id`` is the referral id for referral rows and the user id for
    users who joined through a code without a referral row.
    ``linked_user_id`` is the user whose own children continue the branch.
    """

    node_id: str
    name: str
    created_at: datetime
    parent_user_id: str
    linked_user_id: str | None


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, **fields: Any) -> User:
        """Create a user profile row.

        Returns:
            Created user (flushed, id assigned)
        """
        user = User(**fields)
        self.session.add(user)
        self.session.flush()
        logger.info("user_profile_created", user_id=user.id, parent_user_id=user.parent_user_id)
        return user

    def get_by_id(self, user_id: str) -> User | None:
        """Get user by ID."""
        return self.session.get(User, user_id)

    def get_by_identification(self, identification: str) -> User | None:
        return self.session.scalar(select(User).where(User.identification == identification))

    def get_by_auth_id(self, auth_id: str) -> User | None:
        return self.session.scalar(select(User).where(User.auth_id == auth_id))

    def get_by_code(self, code: str) -> User | None:
        return self.session.scalar(select(User).where(User.referral_code == code))

    def code_exists(self, code: str) -> bool:
        return self.session.scalar(select(func.count(User.id)).where(User.referral_code == code)) > 0

    def generate_referral_code(self, mint: Callable[[], str]) -> str:
        """Mint a candidate code and check it against issued codes.

        Raises:
            GenerationCollision: If the candidate is already taken
        """
        code = mint()
        if self.code_exists(code):
            logger.debug("referral_code_taken", code=code)
            raise GenerationCollision()
        return code

    def count(self) -> int:
        return self.session.scalar(select(func.count(User.id))) or 0

    def list_users(self, limit: int | None = None) -> list[User]:
        """List users, oldest first."""
        stmt = select(User).order_by(User.created_at.asc(), User.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    # ==================== GRAPH ====================

    def ancestor_ids(self, user_id: str) -> set[str]:
        """Every user above ``user_id``, through parent links and referral links."""
        seen: set[str] = set()
        frontier = {user_id}
        while frontier:
            parents = set(
                self.session.scalars(
                    select(User.parent_user_id).where(
                        User.id.in_(frontier),
                        User.parent_user_id.is_not(None),
                    )
                )
            )
            parents |= set(
                self.session.scalars(
                    select(Referral.referred_by).where(Referral.user_id.in_(frontier))
                )
            )
            frontier = parents - seen
            seen |= parents
        return seen

    def would_create_cycle(self, parent_id: str, child_user_id: str) -> bool:
        """True if linking child under parent makes someone their own ancestor."""
        if parent_id == child_user_id:
            return True
        return child_user_id in self.ancestor_ids(parent_id)

    def children_of(self, user_ids: Iterable[str]) -> dict[str, list[ChildLink]]:
        """Direct children for a batch of users, oldest first per parent."""
        ids = list(user_ids)
        if not ids:
            return {}

        referral_rows = self.session.execute(
            select(
                Referral.id,
                Referral.first_name,
                Referral.last_name,
                Referral.created_at,
                Referral.referred_by,
                Referral.user_id,
            ).where(Referral.referred_by.in_(ids))
        ).all()
        user_rows = self.session.execute(
            select(
                User.id,
                User.first_name,
                User.last_name,
                User.created_at,
                User.parent_user_id,
            ).where(User.parent_user_id.in_(ids))
        ).all()

        # A user already reachable through one of the parent's referral rows
        # is not listed a second time.
        represented = {(r.referred_by, r.user_id) for r in referral_rows if r.user_id}

        children: dict[str, list[ChildLink]] = defaultdict(list)
        for r in referral_rows:
            children[r.referred_by].append(
                ChildLink(r.id, f"{r.first_name} {r.last_name}", r.created_at, r.referred_by, r.user_id)
            )
        for u in user_rows:
            if (u.parent_user_id, u.id) in represented:
                continue
            children[u.parent_user_id].append(
                ChildLink(u.id, f"{u.first_name} {u.last_name}", u.created_at, u.parent_user_id, u.id)
            )

        for links in children.values():
            links.sort(key=lambda c: (c.created_at, c.node_id))
        return dict(children)

    def direct_child_counts(self, user_ids: Iterable[str]) -> dict[str, int]:
        """Number of direct children per user, one grouped query per table."""
        ids = list(user_ids)
        if not ids:
            return {}

        counts: dict[str, int] = defaultdict(int)
        referral_counts = (
            select(Referral.referred_by, func.count(Referral.id))
            .where(Referral.referred_by.in_(ids))
            .group_by(Referral.referred_by)
        )
        for parent_id, count in self.session.execute(referral_counts):
            counts[parent_id] += count

        linked = (
            select(Referral.id)
            .where(Referral.referred_by == User.parent_user_id, Referral.user_id == User.id)
            .exists()
        )
        user_counts = (
            select(User.parent_user_id, func.count(User.id))
            .where(User.parent_user_id.in_(ids), ~linked)
            .group_by(User.parent_user_id)
        )
        for parent_id, count in self.session.execute(user_counts):
            counts[parent_id] += count
        return dict(counts)

    def direct_referral_counts(self) -> dict[str, int]:
        """Referral rows per referrer, for every user at once."""
        stmt = select(Referral.referred_by, func.count(Referral.id)).group_by(Referral.referred_by)
        return {user_id: count for user_id, count in self.session.execute(stmt)}

    def network_sizes(self) -> dict[str, int]:
        """Transitive network size of every user in one recursive query.

        ``reach`` pairs each user with every user below it (itself included);
        the size is then the number of child nodes hanging off any reached
        user. UNION (not UNION ALL) keeps the recursion finite on bad data.
        """
        edges = union(
            select(User.parent_user_id.label("parent_id"), User.id.label("child_id")).where(
                User.parent_user_id.is_not(None)
            ),
            select(Referral.referred_by.label("parent_id"), Referral.user_id.label("child_id")).where(
                Referral.user_id.is_not(None)
            ),
        ).subquery("edges")

        reach = select(User.id.label("root_id"), User.id.label("member_id")).cte("reach", recursive=True)
        reach = reach.union(
            select(reach.c.root_id, edges.c.child_id)
            .select_from(reach)
            .join(edges, edges.c.parent_id == reach.c.member_id)
        )

        referral_nodes = (
            select(reach.c.root_id, func.count(Referral.id))
            .select_from(reach)
            .join(Referral, Referral.referred_by == reach.c.member_id)
            .group_by(reach.c.root_id)
        )

        child = aliased(User)
        linked = (
            select(Referral.id)
            .where(Referral.referred_by == child.parent_user_id, Referral.user_id == child.id)
            .exists()
        )
        user_nodes = (
            select(reach.c.root_id, func.count(child.id))
            .select_from(reach)
            .join(child, child.parent_user_id == reach.c.member_id)
            .where(~linked)
            .group_by(reach.c.root_id)
        )

        sizes: dict[str, int] = defaultdict(int)
        for root_id, count in self.session.execute(referral_nodes):
            sizes[root_id] += count
        for root_id, count in self.session.execute(user_nodes):
            sizes[root_id] += count
        return dict(sizes)


class ReferralRepository:
    """Repository for Referral entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, referred_by: str, **fields: Any) -> Referral:
        """Create a referral owned by ``referred_by``."""
        referral = Referral(referred_by=referred_by, **fields)
        self.session.add(referral)
        self.session.flush()
        logger.debug("referral_row_created", referral_id=referral.id, referred_by=referred_by)
        return referral

    def get(self, referral_id: str) -> Referral | None:
        return self.session.get(Referral, referral_id)

    def get_owned(self, owner_id: str, referral_id: str) -> Referral | None:
        """Get a referral only if ``owner_id`` referred it."""
        return self.session.scalar(
            select(Referral).where(Referral.id == referral_id, Referral.referred_by == owner_id)
        )

    def get_by_identification(self, identification: str) -> Referral | None:
        return self.session.scalar(select(Referral).where(Referral.identification == identification))

    def unlinked_by_identification(self, identification: str) -> list[Referral]:
        """Referral rows for a person who has not registered yet."""
        return list(
            self.session.scalars(
                select(Referral).where(
                    Referral.identification == identification,
                    Referral.user_id.is_(None),
                )
            )
        )

    def _owner_filter(self, owner_id: str, search: str | None, status: ReferralStatus | None):
        stmt = select(Referral).where(Referral.referred_by == owner_id)
        if status is not None:
            stmt = stmt.where(Referral.status == status)
        if search:
            term = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Referral.first_name).like(term),
                    func.lower(Referral.last_name).like(term),
                    Referral.identification.like(term),
                    func.lower(Referral.municipality).like(term),
                )
            )
        return stmt

    def list_for_owner(
        self,
        owner_id: str,
        search: str | None = None,
        status: ReferralStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Referral]:
        """List an owner's referrals, newest first."""
        stmt = self._owner_filter(owner_id, search, status).order_by(
            Referral.created_at.desc(), Referral.id.desc()
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def count_for_owner(
        self,
        owner_id: str,
        search: str | None = None,
        status: ReferralStatus | None = None,
    ) -> int:
        stmt = self._owner_filter(owner_id, search, status).subquery()
        return self.session.scalar(select(func.count()).select_from(stmt)) or 0

    def count_since(self, owner_id: str, since: datetime) -> int:
        """Count an owner's referrals created at or after ``since`` (naive UTC)."""
        return (
            self.session.scalar(
                select(func.count(Referral.id)).where(
                    Referral.referred_by == owner_id,
                    Referral.created_at >= since,
                )
            )
            or 0
        )

    def delete(self, referral: Referral) -> None:
        self.session.delete(referral)
        self.session.flush()


class ActivityRepository:
    """Repository for ActivityLog entries (append-only)."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLog:
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            metadata_json=metadata,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_user(self, user_id: str, limit: int | None = None, offset: int = 0) -> list[ActivityLog]:
        """Feed for a user, newest first."""
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.user_id == user_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))
