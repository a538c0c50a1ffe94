"""Check issuance, redemption and scheduled principal legs

Addressing modes:
- Blank check: only the fee moves at write time; the sender's secret is kept
  for the single redemption that wins the claim.
- Targeted check: fee first, then (after a grace delay) the principal. The
  pending principal leg is recorded before the delay so a restart can resume
  it or flag it.

The house identity never pays itself a fee.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from formbank.config import settings
from formbank.domain.exceptions import (
    AccessDeniedError,
    GatewayFailure,
    GatewayLockout,
    GatewayTimeout,
    MissingRedemptionSecret,
    NotFoundError,
    StateConflict,
    StorageFailure,
    ValidationError,
)
from formbank.domain.models import CheckRedeemed, CheckStatus, CheckWritten, LegStatus, TransferRequest
from formbank.domain.pricing import check_fee_for
from formbank.domain.validation import parse_receiver, parse_secret, require_positive_amount
from formbank.infrastructure.clients.wallet import TransferGateway
from formbank.infrastructure.database.models import Check, ScheduledLeg
from formbank.infrastructure.database.repositories import LedgerStore
from formbank.infrastructure.observability.logging import log_reconciliation_required
from formbank.infrastructure.observability.metrics import (
    check_redemption_counter,
    checks_written_counter,
    claim_conflict_counter,
    reconciliation_counter,
)
from formbank.workflows.pipeline import flag_ambiguous_transfer

logger = logging.getLogger(__name__)

CHECK_FEE_REASON = "Check fee"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class CheckService:
    """Orchestrates checks between the ledger store and the wallet rail"""

    def __init__(
        self,
        store: LedgerStore,
        gateway: TransferGateway,
        lender_id: int | None = None,
        transfer_delay_seconds: float | None = None,
        public_base_url: str | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.lender_id = lender_id if lender_id is not None else settings.lender_user_id
        self.transfer_delay_seconds = (
            transfer_delay_seconds if transfer_delay_seconds is not None else settings.check_transfer_delay_seconds
        )
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    # Reads

    def list_checks(self, user_id: int) -> List[Check]:
        return self.store.checks.list_checks_for_user(user_id)

    def get_check(self, check_id: int) -> Check:
        check = self.store.checks.get_check(check_id)
        if check is None:
            raise NotFoundError("Check not found")
        return check

    def view_check(self, check_id: int, viewer_id: int) -> Check:
        """Sender, receiver, or anyone looking at a still-unclaimed blank check"""
        check = self.get_check(check_id)
        if check.sender_id == viewer_id or check.receiver_id == viewer_id:
            return check
        if check.receiver_id is None and check.status == CheckStatus.UNCASHED:
            return check
        raise AccessDeniedError("You do not have permission to view this check")

    def is_claimable_by(self, check: Check, user_id: int) -> bool:
        return check.receiver_id is None and check.status == CheckStatus.UNCASHED and check.sender_id != user_id

    def redemption_link(self, check_id: int) -> str:
        return f"{self.public_base_url}/v1/checks/{check_id}"

    # Issuance

    async def write_check(
        self,
        sender_id: int,
        receiver_id: Optional[int],
        amount: Any,
        secret: Any,
        memo: str = "",
    ) -> CheckWritten:
        receiver_id = parse_receiver(sender_id, receiver_id)
        amount = require_positive_amount(amount)
        secret = parse_secret(secret)
        memo = memo or ""
        fee = check_fee_for(amount)

        if receiver_id is None:
            result = await self._write_blank(sender_id, amount, fee, secret, memo)
        else:
            result = await self._write_targeted(sender_id, receiver_id, amount, fee, secret, memo)
        return result

    async def _write_blank(self, sender_id: int, amount: int, fee: int, secret: int, memo: str) -> CheckWritten:
        if sender_id != self.lender_id:
            try:
                await self._charge_fee(sender_id, fee, secret)
            except GatewayFailure:
                self._record(sender_id, None, amount, fee, CheckStatus.FAILED, memo)
                raise
            check = self._record_after_transfer(
                sender_id, None, amount, fee, CheckStatus.UNCASHED, memo, redemption_secret=secret
            )
        else:
            check = self._record(sender_id, None, amount, fee, CheckStatus.UNCASHED, memo, redemption_secret=secret)
        return CheckWritten(check_id=check.id, status=check.status, fee=fee)

    async def _write_targeted(
        self, sender_id: int, receiver_id: int, amount: int, fee: int, secret: int, memo: str
    ) -> CheckWritten:
        reason = memo or f"Check: {amount} digipogs"

        if sender_id == self.lender_id:
            try:
                await self._transfer(sender_id, receiver_id, amount, secret, reason)
            except GatewayFailure:
                self._record(sender_id, receiver_id, amount, fee, CheckStatus.FAILED, memo)
                raise
            check = self._record_after_transfer(sender_id, receiver_id, amount, fee, CheckStatus.COMPLETED, memo)
            return CheckWritten(check_id=check.id, status=check.status, fee=fee)

        try:
            await self._charge_fee(sender_id, fee, secret)
        except GatewayFailure:
            # No principal attempt once the fee is declined
            self._record(sender_id, receiver_id, amount, fee, CheckStatus.FAILED, memo)
            raise

        # Durable second leg: recorded before the delay, secret held until it runs
        check = self._record_after_transfer(
            sender_id, receiver_id, amount, fee, CheckStatus.UNCASHED, memo, redemption_secret=secret, count=False
        )
        due_at = datetime.now(timezone.utc) + timedelta(seconds=self.transfer_delay_seconds)
        try:
            leg = self.store.legs.insert_leg(check.id, sender_id, receiver_id, amount, reason, due_at)
        except StorageFailure:
            self._flag_unrecorded(check.id, "principal leg not recorded after fee was paid", sender_id, amount)
            raise

        await asyncio.sleep(self.transfer_delay_seconds)
        status = await self._run_leg(leg.id, check.id, sender_id, receiver_id, amount, secret, reason)
        if status is None:
            # Picked up by a resuming worker during the delay; it owns the outcome
            status = self.get_check(check.id).status
        return CheckWritten(check_id=check.id, status=status, fee=fee)

    async def _run_leg(
        self,
        leg_id: int,
        check_id: int,
        from_id: int,
        to_id: int,
        amount: int,
        secret: int,
        reason: str,
    ) -> Optional[str]:
        """
        Execute a recorded principal leg; re-raises the gateway error after finalizing.

        Returns None without sending when another runner already started the leg.
        """
        if not self.store.legs.claim_leg(leg_id):
            logger.info("Check leg already started elsewhere", extra={"check_id": check_id, "leg_id": leg_id})
            return None
        try:
            await self._transfer(from_id, to_id, amount, secret, reason)
        except GatewayFailure as e:
            self._finalize_leg(leg_id, check_id, CheckStatus.FAILED, str(e))
            raise
        self._finalize_leg(leg_id, check_id, CheckStatus.COMPLETED)
        return CheckStatus.COMPLETED

    def _finalize_leg(self, leg_id: int, check_id: int, status: str, error: Optional[str] = None) -> None:
        self.store.checks.clear_redemption_secret(check_id)
        self.store.checks.set_check_status(check_id, status)
        self.store.legs.mark_leg(leg_id, LegStatus.COMPLETED if status == CheckStatus.COMPLETED else LegStatus.FAILED, error)
        checks_written_counter.labels(mode="targeted", status=status).inc()

    async def resume_scheduled_legs(self) -> int:
        """
        Recover principal legs interrupted by a restart.

        Pending legs were never sent and are executed now (after any remaining
        delay). In-flight legs may or may not have moved funds, so they are
        flagged for manual reconciliation and never retried.

        Returns number of legs executed by this call; a leg another runner has
        already started is skipped.
        """
        for leg in self.store.legs.list_legs(LegStatus.IN_FLIGHT):
            self.store.legs.mark_leg(leg.id, LegStatus.NEEDS_RECONCILIATION, "interrupted while in flight")
            self.store.checks.clear_redemption_secret(leg.check_id)
            reconciliation_counter.inc()
            log_reconciliation_required(
                "check_leg",
                "principal leg interrupted while in flight",
                check_id=leg.check_id,
                leg_id=leg.id,
            )

        executed = 0
        for leg in self.store.legs.list_legs(LegStatus.PENDING):
            secret = self.store.checks.get_redemption_secret(leg.check_id)
            if secret is None:
                self.store.checks.set_check_status(leg.check_id, CheckStatus.FAILED)
                self.store.legs.mark_leg(leg.id, LegStatus.FAILED, "sender secret no longer stored")
                continue

            wait = (_as_utc(leg.due_at) - datetime.now(timezone.utc)).total_seconds()
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                status = await self._run_leg(
                    leg.id, leg.check_id, leg.from_id, leg.to_id, leg.amount, int(secret), leg.reason
                )
            except GatewayFailure as e:
                logger.warning(f"Resumed check leg failed: {e}", extra={"check_id": leg.check_id, "leg_id": leg.id})
                status = CheckStatus.FAILED
            if status is not None:
                executed += 1
        return executed

    # Redemption

    async def redeem_check(self, check_id: int, claimant_id: int) -> CheckRedeemed:
        """
        Claim an unclaimed blank check and pay it out to the claimant.

        Only the caller whose conditional claim succeeds reaches the rail; every
        other caller gets StateConflict.
        """
        check = self.get_check(check_id)
        if claimant_id == check.sender_id:
            raise ValidationError("You cannot redeem your own check")
        if check.receiver_id is not None or check.status != CheckStatus.UNCASHED:
            claim_conflict_counter.inc()
            raise StateConflict("Check already redeemed by someone else.")

        if not self.store.checks.claim_check(check_id, claimant_id):
            claim_conflict_counter.inc()
            raise StateConflict("Check already redeemed by someone else.")

        secret = self.store.checks.get_redemption_secret(check_id)
        if not secret:
            raise MissingRedemptionSecret(
                "Check cannot be redeemed: sender PIN was not stored. Ask the sender to write a new check."
            )

        reason = f"Check #{check_id}: {check.memo}" if check.memo else f"Check #{check_id} redemption"
        error = None
        locked = False
        try:
            await self._transfer(check.sender_id, claimant_id, check.amount, int(secret), reason)
            success = True
        except GatewayFailure as e:
            success = False
            error = str(e)
            locked = isinstance(e, GatewayLockout)
        finally:
            # Single use regardless of outcome
            self.store.checks.clear_redemption_secret(check_id)

        status = CheckStatus.COMPLETED if success else CheckStatus.FAILED
        self.store.checks.set_check_status(check_id, status)
        check_redemption_counter.labels(outcome=status).inc()
        logger.info(
            "Check redemption finished",
            extra={"check_id": check_id, "receiver_id": claimant_id, "outcome": status},
        )
        return CheckRedeemed(
            check_id=check_id,
            receiver_id=claimant_id,
            success=success,
            status=status,
            error=error,
            locked=locked,
        )

    # Helpers

    async def _charge_fee(self, sender_id: int, fee: int, secret: int) -> None:
        await self._transfer(sender_id, self.lender_id, fee, secret, CHECK_FEE_REASON)

    async def _transfer(self, from_id: int, to_id: int, amount: int, secret: int, reason: str) -> None:
        try:
            await self.gateway.transfer(
                TransferRequest(from_id=from_id, to_id=to_id, amount=amount, secret=secret, reason=reason)
            )
        except GatewayTimeout as e:
            # Settled locally as a failure, but the rail may have paid
            flag_ambiguous_transfer("check", reason, e, from_id=from_id, to_id=to_id, amount=amount)
            raise

    def _record(
        self,
        sender_id: int,
        receiver_id: Optional[int],
        amount: int,
        fee: int,
        status: str,
        memo: str,
        redemption_secret: Optional[int] = None,
        count: bool = True,
    ) -> Check:
        check = self.store.checks.insert_check(
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            fee=fee,
            status=status,
            memo=memo,
            redemption_secret=redemption_secret,
        )
        if count:
            mode = "blank" if receiver_id is None else "targeted"
            checks_written_counter.labels(mode=mode, status=status).inc()
        logger.info(
            "Check recorded",
            extra={"check_id": check.id, "sender_id": sender_id, "receiver_id": receiver_id, "status": status},
        )
        return check

    def _record_after_transfer(
        self,
        sender_id: int,
        receiver_id: Optional[int],
        amount: int,
        fee: int,
        status: str,
        memo: str,
        redemption_secret: Optional[int] = None,
        count: bool = True,
    ) -> Check:
        """Record a check whose fee or principal has already moved on the rail"""
        try:
            return self._record(
                sender_id, receiver_id, amount, fee, status, memo, redemption_secret=redemption_secret, count=count
            )
        except StorageFailure:
            self._flag_unrecorded(None, "check not recorded after funds moved", sender_id, amount, receiver_id=receiver_id)
            raise

    def _flag_unrecorded(
        self, check_id: Optional[int], detail: str, sender_id: int, amount: int, receiver_id: Optional[int] = None
    ) -> None:
        reconciliation_counter.inc()
        log_reconciliation_required(
            "check",
            detail,
            check_id=check_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
        )
