"""Block service: bar and reinstate a user's referral participation."""

from sqlalchemy.orm import Session

from referrals.blocks.models import Block
from referrals.blocks.schemas import BlockRequest, UnblockRequest
from referrals.links.maintenance import LinkMaintenanceService, link_maintenance_service
from referrals.logging_config import get_logger
from referrals.lookups.service import BlockReasonService, block_reason_service
from referrals.storage.db import Database, db
from referrals.storage.repository import Repository
from referrals.users.service import UserService, user_service

logger = get_logger(__name__)


class BlockService:
    """Service for blocking users from referrals.

    Block is find-or-create and Unblock is find-or-noop, so repeating either
    call returns the current state without error.
    """

    def __init__(
        self,
        database: Database | None = None,
        link_maintenance: LinkMaintenanceService | None = None,
        users: UserService | None = None,
        block_reasons: BlockReasonService | None = None,
    ):
        self.db = database or db
        self.link_maintenance = link_maintenance or link_maintenance_service
        self.users = users or user_service
        self.block_reasons = block_reasons or block_reason_service
        self.logger = get_logger(__name__)

    def get_by_user_id_or_none(
        self,
        user_id: int,
        session: Session | None = None,
        for_update: bool = False,
    ) -> Block | None:
        """Get the user's active block, if any."""
        with self.db.session(session) as s:
            blocks = Repository(s, Block)
            return blocks.first(
                blocks.query(for_update).where(Block.user_id == user_id, Block.active.is_(True))
            )

    def is_blocked(self, user_id: int, session: Session | None = None) -> bool:
        return self.get_by_user_id_or_none(user_id, session=session) is not None

    def block(self, request: BlockRequest, username: str) -> Block:
        """Block a user.

        Args:
            request: Block request
            username: Acting administrator

        Returns:
            The new block, or the existing active block unchanged
        """
        actor = self.users.get_by_username(username)
        user = self.users.get_by_id(request.user_id)
        reason = self.block_reasons.get_by_id(request.reason_id)

        with self.db.session() as session:
            existing = self.get_by_user_id_or_none(user.id, session=session, for_update=True)
            if existing is not None:
                self.logger.info("user_already_blocked", user_id=user.id, block_id=existing.id)
                return existing

            block = Repository(session, Block).create(
                Block(
                    user_id=user.id,
                    reason_id=reason.id,
                    comment_block=request.comment,
                    active=True,
                    created_by_user_id=actor.id,
                    modified_by_user_id=actor.id,
                )
            )

            links_cancelled = 0
            if request.cancel_links:
                links_cancelled = self.link_maintenance.cancel_by_user_id(user.id, session=session)

            self.logger.info(
                "user_blocked",
                user_id=user.id,
                block_id=block.id,
                reason=reason.name,
                links_cancelled=links_cancelled,
                blocked_by=actor.id,
            )
            return block

    def unblock(self, request: UnblockRequest, username: str) -> Block | None:
        """Lift a user's active block.

        Returns:
            The deactivated block, or None if the user was not blocked
        """
        actor = self.users.get_by_username(username)
        user = self.users.get_by_id(request.user_id)

        with self.db.session() as session:
            block = self.get_by_user_id_or_none(user.id, session=session, for_update=True)
            if block is None:
                self.logger.info("user_not_blocked", user_id=user.id)
                return None

            block.active = False
            block.comment_unblock = request.comment
            block.modified_by_user_id = actor.id
            Repository(session, Block).update(block)

            self.logger.info(
                "user_unblocked",
                user_id=user.id,
                block_id=block.id,
                unblocked_by=actor.id,
            )
            return block


# Singleton instance
block_service = BlockService()
