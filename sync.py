import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import NotFoundError, ProviderError, ValidationError
from models import LinkedAccount, Transaction, TransactionType
from money import amounts_differ, quantize
from teller import BankClient, ProviderTransaction, TellerClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], BankClient]


@dataclass
class SyncResult:
    synced: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def classify(record: ProviderTransaction) -> TransactionType:
    return TransactionType.income if record.amount > 0 else TransactionType.expense


class SyncEngine:
    def __init__(
        self,
        session: Session,
        user_id: str,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.client_factory = client_factory or TellerClient
        self.settings = get_settings()

    def _accounts(self, account_id: Optional[int]) -> list[LinkedAccount]:
        stmt = select(LinkedAccount).where(LinkedAccount.user_id == self.user_id)
        if account_id is not None:
            stmt = stmt.where(LinkedAccount.id == account_id)
        else:
            stmt = stmt.where(LinkedAccount.sync_enabled.is_(True))
        return list(self.session.scalars(stmt.order_by(LinkedAccount.id)).all())

    def sync(
        self,
        account_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> SyncResult:
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Start date must be before end date")
        accounts = self._accounts(account_id)
        if not accounts:
            raise NotFoundError("No linked accounts found")

        result = SyncResult()
        for account in accounts:
            linked_id, label = account.id, account.account_name
            try:
                records = self._fetch(account, start_date, end_date)
                self._apply(account, records, result)
            except ProviderError as exc:
                self.session.rollback()
                logger.warning(
                    f"sync_account_failed: account_id={linked_id} error={exc}"
                )
                result.errors.append(f"Account {label}: {exc}")
            except Exception as exc:
                self.session.rollback()
                logger.exception(
                    f"sync_account_failed: account_id={linked_id} error={exc!r}"
                )
                result.errors.append(f"Account {label}: {exc}")
        return result

    def _fetch(
        self,
        account: LinkedAccount,
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> list[ProviderTransaction]:
        client = self.client_factory(account.access_token)
        return client.list_transactions(
            account.provider_account_id,
            count=self.settings.sync_page_size,
            start_date=start_date or account.sync_start_date,
            end_date=end_date,
        )

    def _apply(
        self,
        account: LinkedAccount,
        records: list[ProviderTransaction],
        result: SyncResult,
    ) -> None:
        provider_ids = list({r.id for r in records})
        existing: dict[str, Transaction] = {}
        if provider_ids:
            rows = self.session.scalars(
                select(Transaction).where(
                    Transaction.user_id == self.user_id,
                    Transaction.provider_transaction_id.in_(provider_ids),
                )
            ).all()
            existing = {t.provider_transaction_id: t for t in rows}

        to_insert: list[Transaction] = []
        to_update: list[tuple[Transaction, ProviderTransaction]] = []
        synced = updated = skipped = 0
        seen: set[str] = set()
        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)

            amount = quantize(abs(record.amount))
            current = existing.get(record.id)
            if current is None:
                to_insert.append(
                    Transaction(
                        user_id=self.user_id,
                        budget_item_id=None,
                        linked_account_id=account.id,
                        date=record.date,
                        description=record.description or "(no description)",
                        amount=amount,
                        type=classify(record),
                        merchant=record.counterparty,
                        provider_transaction_id=record.id,
                        provider_account_id=account.provider_account_id,
                        status=record.status,
                    )
                )
                synced += 1
            elif current.status != record.status or amounts_differ(
                current.amount, amount
            ):
                to_update.append((current, record))
                updated += 1
            else:
                skipped += 1

        if to_insert:
            self.session.add_all(to_insert)
        for row, record in to_update:
            row.status = record.status
            row.amount = quantize(abs(record.amount))
            row.description = record.description or row.description
            if record.counterparty:
                row.merchant = record.counterparty
        account.last_synced_at = datetime.utcnow()
        self.session.commit()

        result.synced += synced
        result.updated += updated
        result.skipped += skipped
        logger.info(
            f"sync_account: account_id={account.id} synced={synced} "
            f"updated={updated} skipped={skipped}"
        )
