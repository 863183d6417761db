"""
Settlement engine - the atomic unit of work behind approvals and purchases.

Every balance change in the system happens here, inside one database
transaction per call. A failed call rolls back completely and surfaces a
typed ``LedgerError``. Newly written ledger entries are folded into a block
after the unit commits; if that step fails the entries stay pending and the
next build picks them up.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from bluecarbon.core.config import Settings
from bluecarbon.core.constants import SYSTEM_PARTY
from bluecarbon.core.errors import (
    DuplicateRequest,
    Forbidden,
    InsufficientCredits,
    InvalidState,
    NotFound,
    StorageUnavailable,
    ValidationFailed
)
from bluecarbon.handlers.audit import AuditLog
from bluecarbon.handlers.blocks import BlockBuilder
from bluecarbon.handlers.ledger_store import (
    get_transaction_by_tx_id,
    get_transaction_for_purchase,
    insert_transaction,
    mark_rolled_back,
    new_transaction
)
from bluecarbon.models.audit import AuditActionType, AuditEvent
from bluecarbon.models.credit import (
    CertificateStatus,
    CreditTransaction,
    RewardRole,
    RewardTransaction,
    RewardType
)
from bluecarbon.models.ledger import Transaction, TransactionKind
from bluecarbon.models.project import APPROVABLE_STATUSES, Project, ProjectStatus
from bluecarbon.models.settings import SYSTEM_SETTINGS_ID, SystemSettings
from bluecarbon.models.user import User, UserRole
from bluecarbon.utils.hashing import compute_proof_hash, sha256_hex
from bluecarbon.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseParams:
    buyer_id: str
    contributor_id: str
    project_id: str
    credits: float
    amount: float
    idempotency_key: Optional[str]

    def matches(self, prior: CreditTransaction) -> bool:
        """Whether a stored purchase was made with these same parameters."""
        return (
            prior.buyer_id == self.buyer_id
            and prior.contributor_id == self.contributor_id
            and prior.project_id == self.project_id
            and prior.credits == self.credits
            and prior.amount == self.amount
        )


@dataclass
class PurchaseResult:
    """
    Ledger entry, certificate and balances produced by a purchase.

    On a replay the transaction and certificate are the original ones, while
    buyer, contributor and project are read as they stand now and reflect any
    purchases settled since.
    """
    transaction: Transaction
    credit_transaction: CreditTransaction
    buyer: User
    contributor: User
    project: Project
    replayed: bool = False


class PurchaseConflict(Exception):
    """A unique key collided inside the purchase unit; safe to retry."""


class SettlementEngine:
    """
    Entry points for the "project approved" and "purchase request" events.

    Args:
        session_factory: Durable store handle
        block_builder: Folds new ledger entries into blocks after each unit
        audit_log: Receives fire-and-forget audit events
        settings: Reward rates, retry bounds and the default minting flag
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        block_builder: BlockBuilder,
        audit_log: AuditLog,
        settings: Settings
    ):
        self._session_factory = session_factory
        self._block_builder = block_builder
        self._audit_log = audit_log
        self._settings = settings

    # ---- minting switch ---------------------------------------------------

    async def _minting_enabled(self, session: AsyncSession) -> bool:
        row = await session.get(SystemSettings, SYSTEM_SETTINGS_ID)
        if row is None:
            return self._settings.minting_enabled_default
        return row.minting_enabled

    async def get_minting_enabled(self) -> bool:
        try:
            async with self._session_factory() as session:
                return await self._minting_enabled(session)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Could not read minting status: {e}") from e

    async def set_minting_enabled(self, enabled: bool, admin_id: Optional[str] = None) -> bool:
        """Administratively enable or disable credit minting."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SystemSettings, SYSTEM_SETTINGS_ID)
                    if row is None:
                        row = SystemSettings(id=SYSTEM_SETTINGS_ID)
                        session.add(row)
                    previous = row.minting_enabled
                    row.minting_enabled = enabled
                    row.updated_at = utc_now()
                    row.updated_by = admin_id
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Could not update minting status: {e}") from e

        logger.info("Minting %s by %s", "enabled" if enabled else "disabled", admin_id or SYSTEM_PARTY)
        self._audit_log.record(AuditEvent(
            user_id=admin_id,
            action_type=AuditActionType.MINTING_TOGGLED,
            entity_type="system_settings",
            entity_id=str(SYSTEM_SETTINGS_ID),
            metadata={"previous": previous, "minting_enabled": enabled}
        ))
        return enabled

    # ---- approval ---------------------------------------------------------

    async def record_approval(
        self,
        project_id: str,
        beneficiary_id: str,
        credits: float,
        proof_ref: Optional[str] = None,
        approver_id: Optional[str] = None
    ) -> Transaction:
        """
        Mint credits for an approved project.

        Writes a Mint entry from 'system' to the beneficiary, marks the project
        verified and sets its available balance to the minted amount.

        Raises:
            NotFound: unknown project, beneficiary or approver
            InvalidState: project already finalized
            Forbidden: minting disabled, or the approver owns the project
            ValidationFailed: non-positive or non-finite credits
        """
        if not math.isfinite(credits) or credits <= 0:
            raise ValidationFailed("Credits must be a positive finite amount")

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if not await self._minting_enabled(session):
                        raise Forbidden("Credit minting is currently disabled")

                    project = await session.get(Project, project_id)
                    if not project:
                        raise NotFound(f"Project {project_id} not found")
                    if project.status not in APPROVABLE_STATUSES:
                        raise InvalidState(
                            f"Cannot approve a project with status '{project.status.value}'"
                        )

                    if approver_id:
                        approver = await session.get(User, approver_id)
                        if not approver:
                            raise NotFound(f"Approver {approver_id} not found")
                        if approver.id == project.user_id and approver.role != UserRole.ADMIN:
                            raise Forbidden(
                                "Conflict of interest: verifiers cannot approve their own projects"
                            )

                    if not await session.get(User, beneficiary_id):
                        raise NotFound(f"Beneficiary {beneficiary_id} not found")

                    timestamp = utc_now()
                    transaction = await insert_transaction(session, new_transaction(
                        kind=TransactionKind.MINT,
                        from_party=SYSTEM_PARTY,
                        to_party=beneficiary_id,
                        credits=credits,
                        project_id=project_id,
                        timestamp=timestamp,
                        proof_hash=compute_proof_hash(proof_ref)
                    ))

                    # Guarded so two concurrent approvals cannot both mint
                    result = await session.execute(
                        update(Project)
                        .where(Project.id == project_id, Project.status.in_(APPROVABLE_STATUSES))
                        .values(
                            status=ProjectStatus.VERIFIED,
                            credits_earned=credits,
                            verifier_id=approver_id or project.verifier_id,
                            reviewed_at=timestamp
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise InvalidState(f"Project {project_id} was finalized concurrently")
        except IntegrityError as e:
            raise StorageUnavailable(f"Approval conflicted with a concurrent write: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Approval failed: {e}") from e

        logger.info("Minted %s credits on project %s (tx %s)", credits, project_id, transaction.tx_id)
        await self._fold_pending(approver_id)

        self._audit_log.record(AuditEvent(
            user_id=approver_id,
            action_type=AuditActionType.PROJECT_APPROVED,
            entity_type="project",
            entity_id=project_id,
            metadata={
                "projectName": project.name,
                "contributorId": project.user_id,
                "beneficiaryId": beneficiary_id,
                "creditsIssued": credits,
                "transactionId": transaction.tx_id
            }
        ))
        return transaction

    # ---- purchase ---------------------------------------------------------

    async def purchase(
        self,
        buyer_id: str,
        contributor_id: str,
        project_id: str,
        credits: float,
        amount_paid: float = 0.0,
        idempotency_key: Optional[str] = None
    ) -> PurchaseResult:
        """
        Buy and retire credits from a verified project.

        Decrements the project's available balance, credits the buyer, grants
        Blue Points to buyer and contributor and writes the certificate and the
        Buy ledger entry, all in one unit. Calling again with the same
        idempotency key and parameters returns the original result without a
        second effect.

        Raises:
            ValidationFailed: non-positive or non-finite credits, or a negative or non-finite amount
            DuplicateRequest: idempotency key reused with other parameters
            NotFound: unknown buyer, contributor or project
            Forbidden: self-dealing, wrong roles, or project not owned by the contributor
            InvalidState: project not verified
            InsufficientCredits: more credits requested than available
        """
        if not math.isfinite(credits) or credits <= 0:
            raise ValidationFailed("Credits must be a positive finite amount")
        if not math.isfinite(amount_paid) or amount_paid < 0:
            raise ValidationFailed("Amount must be a non-negative finite amount")

        params = PurchaseParams(
            buyer_id=buyer_id,
            contributor_id=contributor_id,
            project_id=project_id,
            credits=float(credits),
            amount=float(amount_paid),
            idempotency_key=idempotency_key or None
        )

        retries = self._settings.purchase_max_retries
        for attempt in range(1, retries + 1):
            try:
                result = await self._purchase_once(params)
                break
            except PurchaseConflict as e:
                logger.info("Purchase conflict on attempt %d/%d: %s", attempt, retries, e)
            except SQLAlchemyError as e:
                raise StorageUnavailable(f"Purchase failed: {e}") from e
        else:
            raise StorageUnavailable(f"Purchase did not settle after {retries} attempts")

        if result.replayed:
            logger.info(
                "Duplicate request detected for idempotency key %s, returning purchase %s",
                idempotency_key, result.credit_transaction.id
            )
            return result

        logger.info(
            "Purchase %s: %s credits of project %s, buyer points=%s, contributor points=%s",
            result.credit_transaction.id, credits, project_id,
            result.buyer.reward_points, result.contributor.reward_points
        )
        await self._fold_pending(None)
        self._record_purchase(result)
        return result

    async def _purchase_once(self, params: PurchaseParams) -> PurchaseResult:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if params.idempotency_key:
                        prior = await self._find_prior_purchase(session, params)
                        if prior is not None:
                            return prior
                    return await self._settle_purchase(session, params)
            except IntegrityError as e:
                conflict = e

        # The unit rolled back; a concurrent retry may have claimed the key
        if params.idempotency_key:
            async with self._session_factory() as session:
                prior = await self._find_prior_purchase(session, params)
            if prior is not None:
                return prior
        raise PurchaseConflict(str(conflict.orig))

    async def _find_prior_purchase(
        self,
        session: AsyncSession,
        params: PurchaseParams
    ) -> Optional[PurchaseResult]:
        result = await session.execute(
            select(CreditTransaction).where(
                CreditTransaction.idempotency_key == params.idempotency_key
            )
        )
        prior = result.scalars().first()
        if prior is None:
            return None
        if not params.matches(prior):
            raise DuplicateRequest(
                f"Idempotency key '{params.idempotency_key}' was already used with different parameters"
            )

        return PurchaseResult(
            transaction=await get_transaction_for_purchase(session, prior.id),
            credit_transaction=prior,
            buyer=await session.get(User, prior.buyer_id),
            contributor=await session.get(User, prior.contributor_id),
            project=await session.get(Project, prior.project_id),
            replayed=True
        )

    async def _settle_purchase(self, session: AsyncSession, params: PurchaseParams) -> PurchaseResult:
        buyer = await session.get(User, params.buyer_id)
        if not buyer:
            raise NotFound(f"Buyer {params.buyer_id} not found")
        contributor = await session.get(User, params.contributor_id)
        if not contributor:
            raise NotFound(f"Contributor {params.contributor_id} not found")
        project = await session.get(Project, params.project_id)
        if not project:
            raise NotFound(f"Project {params.project_id} not found")

        if buyer.id == contributor.id:
            raise Forbidden("Contributors cannot purchase their own credits")
        if buyer.role != UserRole.BUYER:
            raise Forbidden(f"User {buyer.id} is not a buyer")
        if contributor.role != UserRole.CONTRIBUTOR:
            raise Forbidden(f"User {contributor.id} is not a contributor")
        if project.user_id != contributor.id:
            raise Forbidden("Project does not belong to this contributor")
        if project.status != ProjectStatus.VERIFIED:
            raise InvalidState("Project must be verified to purchase credits")

        # Check-and-decrement in one statement: zero rows means not enough left
        decremented = await session.execute(
            update(Project)
            .where(Project.id == project.id, Project.credits_earned >= params.credits)
            .values(credits_earned=Project.credits_earned - params.credits)
            .execution_options(synchronize_session=False)
        )
        if decremented.rowcount != 1:
            raise InsufficientCredits(project.id, params.credits, project.credits_earned)

        buyer_points = params.credits * self._settings.buyer_points_per_credit
        contributor_points = params.credits * self._settings.contributor_points_per_credit

        await session.execute(
            update(User)
            .where(User.id == buyer.id)
            .values(
                credits_purchased=User.credits_purchased + params.credits,
                reward_points=User.reward_points + buyer_points
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(User)
            .where(User.id == contributor.id)
            .values(reward_points=User.reward_points + contributor_points)
            .execution_options(synchronize_session=False)
        )

        timestamp = utc_now()
        credit_transaction = CreditTransaction(
            idempotency_key=params.idempotency_key,
            buyer_id=buyer.id,
            contributor_id=contributor.id,
            project_id=project.id,
            credits=params.credits,
            amount=params.amount,
            timestamp=timestamp,
            certificate_status=CertificateStatus.VALID
        )
        session.add(credit_transaction)
        await session.flush()

        session.add_all([
            RewardTransaction(
                user_id=buyer.id,
                points=buyer_points,
                type=RewardType.EARNED,
                role=RewardRole.BUYER,
                source_transaction_id=credit_transaction.id,
                created_at=timestamp
            ),
            RewardTransaction(
                user_id=contributor.id,
                points=contributor_points,
                type=RewardType.EARNED,
                role=RewardRole.CONTRIBUTOR,
                source_transaction_id=credit_transaction.id,
                created_at=timestamp
            )
        ])

        # Credits move from the contributor's project to the buyer
        transaction = await insert_transaction(session, new_transaction(
            kind=TransactionKind.BUY,
            from_party=contributor.id,
            to_party=buyer.id,
            credits=params.credits,
            project_id=project.id,
            timestamp=timestamp,
            proof_hash=compute_proof_hash(credit_transaction.id),
            credit_transaction_id=credit_transaction.id
        ))

        for row in (project, buyer, contributor):
            await session.refresh(row)

        return PurchaseResult(
            transaction=transaction,
            credit_transaction=credit_transaction,
            buyer=buyer,
            contributor=contributor,
            project=project
        )

    def _record_purchase(self, result: PurchaseResult) -> None:
        purchase = result.credit_transaction
        self._audit_log.record(AuditEvent(
            user_id=purchase.buyer_id,
            action_type=AuditActionType.CREDITS_PURCHASED,
            entity_type="credit_transaction",
            entity_id=purchase.id,
            metadata={
                "buyerId": purchase.buyer_id,
                "contributorId": purchase.contributor_id,
                "projectId": purchase.project_id,
                "credits": purchase.credits,
                "amount": purchase.amount,
                "projectName": result.project.name,
                "transactionId": result.transaction.tx_id
            }
        ))
        self._audit_log.record(AuditEvent(
            user_id=purchase.buyer_id,
            action_type=AuditActionType.REWARDS_ISSUED,
            entity_type="credit_transaction",
            entity_id=purchase.id,
            metadata={
                "buyerId": purchase.buyer_id,
                "buyerPoints": purchase.credits * self._settings.buyer_points_per_credit,
                "contributorId": purchase.contributor_id,
                "contributorPoints": purchase.credits * self._settings.contributor_points_per_credit
            }
        ))

    # ---- certificates -----------------------------------------------------

    async def revoke_certificate(
        self,
        credit_transaction_id: str,
        reason: Optional[str] = None,
        admin_id: Optional[str] = None
    ) -> CreditTransaction:
        """
        Mark a purchase certificate revoked. The ledger chain is not touched.

        In-process callers may omit admin_id; when given it must name an admin.

        Raises:
            NotFound: unknown certificate or admin
            Forbidden: caller is not an admin
            InvalidState: certificate already revoked
        """
        reason = reason or "No reason provided"
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if admin_id is not None:
                        admin = await session.get(User, admin_id)
                        if not admin:
                            raise NotFound(f"User {admin_id} not found")
                        if admin.role != UserRole.ADMIN:
                            raise Forbidden("Only admins can revoke certificates")

                    credit_transaction = await session.get(CreditTransaction, credit_transaction_id)
                    if not credit_transaction:
                        raise NotFound(f"Certificate {credit_transaction_id} not found")

                    result = await session.execute(
                        update(CreditTransaction)
                        .where(
                            CreditTransaction.id == credit_transaction_id,
                            CreditTransaction.certificate_status == CertificateStatus.VALID
                        )
                        .values(
                            certificate_status=CertificateStatus.REVOKED,
                            revoked_at=utc_now(),
                            revocation_reason=reason
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise InvalidState("Certificate is already revoked")
                    await session.refresh(credit_transaction)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Certificate revocation failed: {e}") from e

        logger.info("Certificate %s revoked by %s", credit_transaction_id, admin_id or SYSTEM_PARTY)
        self._audit_log.record(AuditEvent(
            user_id=admin_id,
            action_type=AuditActionType.CERTIFICATE_REVOKED,
            entity_type="credit_transaction",
            entity_id=credit_transaction_id,
            metadata={
                "reason": reason,
                "previousStatus": CertificateStatus.VALID.value,
                "newStatus": CertificateStatus.REVOKED.value
            }
        ))
        return credit_transaction

    # ---- rollback ---------------------------------------------------------

    async def rollback_transaction(self, tx_id: str, admin_id: str, reason: str) -> Transaction:
        """
        Reverse a ledger entry by appending a compensating Rollback entry.

        The original entry is marked rolled back; its contents and block stay
        as they are. Rewards granted by a rolled-back purchase are reversed once.

        Raises:
            NotFound: unknown transaction or admin
            Forbidden: caller is not an admin
            InvalidState: entry already rolled back, or is itself a rollback
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    admin = await session.get(User, admin_id)
                    if not admin:
                        raise NotFound(f"User {admin_id} not found")
                    if admin.role != UserRole.ADMIN:
                        raise Forbidden("Only admins can roll back ledger transactions")

                    original = await get_transaction_by_tx_id(session, tx_id)
                    if not original:
                        raise NotFound(f"Transaction {tx_id} not found")
                    if original.kind == TransactionKind.ROLLBACK:
                        raise InvalidState("Rollback entries cannot be rolled back")
                    if not await mark_rolled_back(session, original.id):
                        raise InvalidState(f"Transaction {tx_id} is already rolled back")

                    reversal = await insert_transaction(session, new_transaction(
                        kind=TransactionKind.ROLLBACK,
                        from_party=original.to_party,
                        to_party=original.from_party,
                        credits=original.credits,
                        project_id=original.project_id,
                        timestamp=utc_now(),
                        proof_hash=sha256_hex(original.tx_id)
                    ))

                    reversed_points = 0.0
                    if original.kind == TransactionKind.BUY and original.credit_transaction_id:
                        reversed_points = await self._reverse_rewards(
                            session, original.credit_transaction_id
                        )
        except IntegrityError as e:
            raise StorageUnavailable(f"Rollback conflicted with a concurrent write: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Rollback failed: {e}") from e

        logger.info("Transaction %s rolled back by %s", tx_id, admin_id)
        await self._fold_pending(admin_id)

        self._audit_log.record(AuditEvent(
            user_id=admin_id,
            action_type=AuditActionType.TRANSACTION_ROLLED_BACK,
            entity_type="transaction",
            entity_id=tx_id,
            metadata={
                "reason": reason,
                "kind": original.kind.value,
                "rollbackTransactionId": reversal.tx_id,
                "reversedPoints": reversed_points
            }
        ))
        return reversal

    async def _reverse_rewards(self, session: AsyncSession, credit_transaction_id: str) -> float:
        """Append REVERSAL rows for a purchase's EARNED rewards; no-op if already reversed."""
        result = await session.execute(
            select(RewardTransaction).where(
                RewardTransaction.source_transaction_id == credit_transaction_id
            )
        )
        rewards: List[RewardTransaction] = list(result.scalars().all())
        if any(r.type == RewardType.REVERSAL for r in rewards):
            logger.info("Rewards for purchase %s already reversed", credit_transaction_id)
            return 0.0

        reversed_points = 0.0
        for reward in rewards:
            session.add(RewardTransaction(
                user_id=reward.user_id,
                points=-reward.points,
                type=RewardType.REVERSAL,
                role=reward.role,
                source_transaction_id=credit_transaction_id
            ))
            await session.execute(
                update(User)
                .where(User.id == reward.user_id)
                .values(reward_points=User.reward_points - reward.points)
                .execution_options(synchronize_session=False)
            )
            reversed_points += reward.points
        return reversed_points

    # ---- blocks -----------------------------------------------------------

    async def _fold_pending(self, approver_id: Optional[str]) -> None:
        try:
            await self._block_builder.build_block_if_pending(approver_id)
        except StorageUnavailable as e:
            logger.warning("Block build deferred, entries stay pending: %s", e)
