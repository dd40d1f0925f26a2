"""Network aggregator: referral trees, rankings and dashboard statistics.

Each aggregate has a primary path and a degraded fallback. Results carry a
``degraded`` flag so callers can tell a fallback apart from an empty network.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from redamigos.errors import NotFoundError, TransientError
from redamigos.logging_config import get_logger
from redamigos.settings import settings
from redamigos.storage.db import Database, db
from redamigos.storage.repo import ReferralRepository, UserRepository
from redamigos.storage.schemas import NetworkNode, NetworkResult, RankingResult, UserRanking, UserStats

logger = get_logger(__name__)

_StoreFailure = (SQLAlchemyError, TransientError)


def month_start_utc(now: datetime | None = None, tz_name: str | None = None) -> datetime:
    """First instant of the current campaign-local month, as naive UTC.

    Args:
        now: Reference time; naive values are read as campaign-local
        tz_name: IANA zone, defaults to settings.campaign_timezone
    """
    tz = ZoneInfo(tz_name or settings.campaign_timezone)
    if now is None:
        local_now = datetime.now(tz)
    elif now.tzinfo is None:
        local_now = now.replace(tzinfo=tz)
    else:
        local_now = now.astimezone(tz)

    start_local = local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start_local.astimezone(timezone.utc).replace(tzinfo=None)


class NetworkAggregator:
    """Computes derived network views from stored referral links."""

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    # ==================== NETWORK ====================

    def get_network(self, root_user_id: str) -> NetworkResult:
        """Referral tree below ``root_user_id`` in breadth-first order.

        Nodes are ordered by (level, created_at). Direct referrals are level 1.

        Raises:
            NotFoundError: Unknown root user
            TransientError: Store unreachable (fallback failed too)
        """
        try:
            nodes = self._traverse(root_user_id)
            return NetworkResult(root_id=root_user_id, nodes=nodes)
        except NotFoundError:
            raise
        except _StoreFailure as e:
            self.logger.warning("network_fallback_used", root_id=root_user_id, error=str(e))

        try:
            nodes = self._direct_only(root_user_id)
        except _StoreFailure as e:
            self.logger.error("network_unavailable", root_id=root_user_id, error=str(e))
            raise TransientError() from e
        return NetworkResult(root_id=root_user_id, nodes=nodes, degraded=True)

    def _traverse(self, root_user_id: str) -> list[NetworkNode]:
        """Level-by-level walk, one batched children query per level."""
        with self.db.session() as session:
            users = UserRepository(session)
            if not users.get_by_id(root_user_id):
                raise NotFoundError("Unknown profile")

            nodes: list[dict] = []
            seen_nodes: set[str] = set()
            expanded_users = {root_user_id}
            # (user whose children are next, node id of that user in the tree, users on the path)
            frontier = [(root_user_id, root_user_id, frozenset({root_user_id}))]
            level = 0

            while frontier:
                level += 1
                children = users.children_of({user_id for user_id, _, _ in frontier})
                next_frontier = []

                for user_id, parent_node_id, path in frontier:
                    for child in children.get(user_id, []):
                        if child.node_id in seen_nodes:
                            continue
                        seen_nodes.add(child.node_id)
                        node = {
                            "id": child.node_id,
                            "name": child.name,
                            "level": level,
                            "parent_id": parent_node_id,
                            "created_at": child.created_at,
                            "linked_user_id": child.linked_user_id,
                            "cycle_detected": False,
                        }
                        nodes.append(node)

                        linked = child.linked_user_id
                        if linked is None:
                            continue
                        if linked in path:
                            node["cycle_detected"] = True
                            self.logger.warning(
                                "network_cycle_detected",
                                root_id=root_user_id,
                                node_id=child.node_id,
                                user_id=linked,
                            )
                            continue
                        if linked in expanded_users:
                            continue
                        expanded_users.add(linked)
                        next_frontier.append((linked, child.node_id, path | {linked}))

                frontier = next_frontier

            counts = users.direct_child_counts(
                {n["linked_user_id"] for n in nodes if n["linked_user_id"]}
            )

        result = [
            NetworkNode(
                id=n["id"],
                name=n["name"],
                level=n["level"],
                parent_id=n["parent_id"],
                children_count=counts.get(n["linked_user_id"], 0) if n["linked_user_id"] else 0,
                created_at=n["created_at"],
                cycle_detected=n["cycle_detected"],
            )
            for n in nodes
        ]
        result.sort(key=lambda node: (node.level, node.created_at))
        return result

    def _direct_only(self, root_user_id: str) -> list[NetworkNode]:
        """Degraded view: direct referral rows only, all at level 1.

        Deeper levels and child counts are not computed here.
        """
        with self.db.session() as session:
            referrals = ReferralRepository(session).list_for_owner(root_user_id)
            nodes = [
                NetworkNode(
                    id=r.id,
                    name=r.full_name,
                    level=1,
                    parent_id=root_user_id,
                    children_count=0,
                    created_at=r.created_at,
                )
                for r in referrals
            ]
        nodes.sort(key=lambda node: node.created_at)
        return nodes

    # ==================== RANKING ====================

    def get_ranking(self, limit: int | None = settings.ranking_default_limit) -> RankingResult:
        """Users ordered by direct referrals, best first.

        Ties on total_referrals go to the earlier registration. When the
        aggregate queries fail, returns an unranked listing with zero counts
        and ``degraded=True``.

        Args:
            limit: Maximum entries; None ranks the whole population
        """
        try:
            entries = self._rank_all()
        except _StoreFailure as e:
            self.logger.warning("ranking_fallback_used", error=str(e))
            return RankingResult(entries=self._unranked(limit), degraded=True)

        if limit is not None:
            entries = entries[:limit]
        return RankingResult(entries=entries)

    def _rank_all(self) -> list[UserRanking]:
        with self.db.session() as session:
            users = UserRepository(session)
            direct = users.direct_referral_counts()
            sizes = users.network_sizes()
            rows = users.list_users()

            ordered = sorted(
                rows,
                key=lambda u: (-direct.get(u.id, 0), u.created_at, u.id),
            )
            return [
                UserRanking(
                    id=u.id,
                    name=u.full_name,
                    referral_code=u.referral_code,
                    municipality=u.municipality,
                    total_referrals=direct.get(u.id, 0),
                    network_size=sizes.get(u.id, 0),
                    rank=position,
                    created_at=u.created_at,
                )
                for position, u in enumerate(ordered, start=1)
            ]

    def _unranked(self, limit: int | None) -> list[UserRanking]:
        try:
            with self.db.session() as session:
                rows = UserRepository(session).list_users(limit=limit)
                return [
                    UserRanking(
                        id=u.id,
                        name=u.full_name,
                        referral_code=u.referral_code,
                        municipality=u.municipality,
                        total_referrals=0,
                        network_size=0,
                        rank=position,
                        created_at=u.created_at,
                    )
                    for position, u in enumerate(rows, start=1)
                ]
        except _StoreFailure as e:
            self.logger.error("ranking_unavailable", error=str(e))
            raise TransientError() from e

    # ==================== STATS ====================

    def get_stats(self, user_id: str, now: datetime | None = None) -> UserStats:
        """Dashboard numbers for ``user_id``.

        ``user_rank`` is the position over the whole population; it is None
        when the ranking ran degraded.

        Raises:
            NotFoundError: Unknown user
        """
        since = month_start_utc(now)
        with self.db.session() as session:
            users = UserRepository(session)
            if not users.get_by_id(user_id):
                raise NotFoundError("Unknown profile")
            referrals = ReferralRepository(session)
            total_users = users.count()
            total_referrals = referrals.count_for_owner(user_id)
            new_this_month = referrals.count_since(user_id, since)

        ranking = self.get_ranking(limit=None)
        entry = next((e for e in ranking.entries if e.id == user_id), None)

        return UserStats(
            total_users=total_users,
            total_referrals=total_referrals,
            total_network=entry.network_size if entry and not ranking.degraded else total_referrals,
            new_this_month=new_this_month,
            user_rank=entry.rank if entry and not ranking.degraded else None,
            degraded=ranking.degraded,
        )


# Singleton instance
network_aggregator = NetworkAggregator()
