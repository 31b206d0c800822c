import http.client
import json
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

import teller
from config import get_settings
from database import Base
from errors import NotFoundError, ProviderError, ValidationError
from models import Transaction, TransactionType
from schemas import LinkedAccountIn
from services import LinkedAccountService
from sync import SyncEngine
from teller import ProviderTransaction, parse_provider_transaction

USER = "user-1"


class FakeBankClient:
    def __init__(self, feeds, calls):
        self.feeds = feeds
        self.calls = calls

    def list_transactions(self, account_id, *, count=None, start_date=None, end_date=None):
        self.calls.append(
            {
                "account_id": account_id,
                "count": count,
                "start_date": start_date,
                "end_date": end_date,
            }
        )
        feed = self.feeds[account_id]
        if isinstance(feed, Exception):
            raise feed
        return list(feed)


class FakeResponse:
    def __init__(self, body=b"", error=None):
        self.body = body
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def read(self):
        if self.error is not None:
            raise self.error
        return self.body


def _factory(feeds, calls=None):
    calls = calls if calls is not None else []
    return lambda _token: FakeBankClient(feeds, calls)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _link(session, provider_account_id, name="Checking", **extra):
    return LinkedAccountService(session, USER).create(
        LinkedAccountIn(
            access_token=f"token-{provider_account_id}",
            provider_account_id=provider_account_id,
            account_name=name,
            **extra,
        )
    )


def _record(txn_id, amount, status="posted", counterparty=None, day=date(2026, 3, 3)):
    return ProviderTransaction(
        id=txn_id,
        date=day,
        amount=Decimal(amount),
        description=f"Card purchase {txn_id}",
        status=status,
        counterparty=counterparty,
    )


def _by_provider_id(session):
    rows = session.scalars(select(Transaction)).all()
    return {t.provider_transaction_id: t for t in rows}


def test_sync_inserts_updates_and_skips():
    with _session() as session:
        account = _link(session, "acc_1")
        first = SyncEngine(
            session,
            USER,
            client_factory=_factory(
                {
                    "acc_1": [
                        _record("txn_a", "-10.00", status="pending"),
                        _record("txn_c", "-4.50"),
                    ]
                }
            ),
        ).sync()
        assert (first.synced, first.updated, first.skipped) == (2, 0, 0)

        second = SyncEngine(
            session,
            USER,
            client_factory=_factory(
                {
                    "acc_1": [
                        _record("txn_a", "-10.00", status="posted"),
                        _record("txn_b", "2500.00", counterparty="ACME Payroll"),
                        _record("txn_c", "-4.50"),
                    ]
                }
            ),
        ).sync()
        assert (second.synced, second.updated, second.skipped) == (1, 1, 1)
        assert second.errors == []

        rows = _by_provider_id(session)
        assert rows["txn_a"].status == "posted"
        assert rows["txn_a"].amount == Decimal("10.00")
        assert rows["txn_a"].type == TransactionType.expense
        assert rows["txn_b"].type == TransactionType.income
        assert rows["txn_b"].amount == Decimal("2500.00")
        assert rows["txn_b"].merchant == "ACME Payroll"
        assert rows["txn_b"].budget_item_id is None
        assert rows["txn_b"].linked_account_id == account.id


def test_resync_of_same_batch_is_idempotent():
    feed = {"acc_1": [_record("txn_a", "-10.00"), _record("txn_b", "-20.00")]}
    with _session() as session:
        _link(session, "acc_1")
        SyncEngine(session, USER, client_factory=_factory(feed)).sync()
        again = SyncEngine(session, USER, client_factory=_factory(feed)).sync()

        assert (again.synced, again.updated, again.skipped) == (0, 0, 2)
        assert len(_by_provider_id(session)) == 2


def test_duplicate_ids_in_one_batch_are_inserted_once():
    feed = {"acc_1": [_record("txn_a", "-10.00"), _record("txn_a", "-10.00")]}
    with _session() as session:
        _link(session, "acc_1")
        result = SyncEngine(session, USER, client_factory=_factory(feed)).sync()

        assert result.synced == 1
        assert len(_by_provider_id(session)) == 1


def test_update_keeps_merchant_and_categorization():
    with _session() as session:
        _link(session, "acc_1")
        SyncEngine(
            session,
            USER,
            client_factory=_factory(
                {"acc_1": [_record("txn_a", "-8.00", "pending", "Blue Bottle")]}
            ),
        ).sync()
        row = _by_provider_id(session)["txn_a"]
        row.is_non_earned = True
        session.commit()

        result = SyncEngine(
            session,
            USER,
            client_factory=_factory({"acc_1": [_record("txn_a", "-8.25", "posted")]}),
        ).sync()
        assert result.updated == 1

        row = _by_provider_id(session)["txn_a"]
        assert row.merchant == "Blue Bottle"
        assert row.amount == Decimal("8.25")
        assert row.is_non_earned


def test_provider_failure_is_isolated_per_account():
    with _session() as session:
        good = _link(session, "acc_good", name="Checking")
        bad = _link(session, "acc_bad", name="Savings")
        feeds = {
            "acc_good": [_record("txn_a", "-10.00")],
            "acc_bad": ProviderError("Bank authorization expired or revoked"),
        }

        result = SyncEngine(session, USER, client_factory=_factory(feeds)).sync()
        assert result.synced == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Account Savings:")

        session.refresh(good)
        session.refresh(bad)
        assert good.last_synced_at is not None
        assert bad.last_synced_at is None


def test_truncated_response_on_one_account_does_not_stop_the_rest(monkeypatch):
    requested = []
    body = json.dumps(
        [
            {
                "id": "txn_good",
                "date": "2026-03-03",
                "amount": "-12.00",
                "description": "Lunch",
                "status": "posted",
            }
        ]
    ).encode("utf-8")

    def fake_urlopen(req, timeout=None, context=None):
        requested.append(req.full_url)
        if "/accounts/acc_bad/" in req.full_url:
            return FakeResponse(error=http.client.IncompleteRead(b"[{"))
        return FakeResponse(body=body)

    monkeypatch.setattr(teller, "urlopen", fake_urlopen)
    with _session() as session:
        bad = _link(session, "acc_bad", name="Savings")
        good = _link(session, "acc_good", name="Checking")

        result = SyncEngine(session, USER).sync()
        assert result.synced == 1
        assert result.errors == ["Account Savings: Failed to reach bank provider"]
        assert [url.split("?")[0] for url in requested] == [
            "https://api.teller.io/accounts/acc_bad/transactions",
            "https://api.teller.io/accounts/acc_good/transactions",
        ]

        session.refresh(good)
        session.refresh(bad)
        assert good.last_synced_at is not None
        assert bad.last_synced_at is None
        assert set(_by_provider_id(session)) == {"txn_good"}


def test_unexpected_error_is_reported_for_that_account_only():
    with _session() as session:
        _link(session, "acc_bad", name="Savings")
        _link(session, "acc_good", name="Checking")
        feeds = {
            "acc_bad": ConnectionResetError("connection reset by peer"),
            "acc_good": [_record("txn_a", "-10.00")],
        }

        result = SyncEngine(session, USER, client_factory=_factory(feeds)).sync()
        assert result.synced == 1
        assert result.errors == ["Account Savings: connection reset by peer"]


def test_same_bank_account_linked_by_two_owners_syncs_separately():
    feed = {"acc_1": [_record("txn_a", "-10.00")]}
    with _session() as session:
        _link(session, "acc_1")
        LinkedAccountService(session, "user-2").create(
            LinkedAccountIn(
                access_token="token-joint",
                provider_account_id="acc_1",
                account_name="Joint",
            )
        )

        first = SyncEngine(session, USER, client_factory=_factory(feed)).sync()
        second = SyncEngine(session, "user-2", client_factory=_factory(feed)).sync()
        assert (first.synced, second.synced) == (1, 1)

        rows = session.scalars(select(Transaction)).all()
        assert sorted(t.user_id for t in rows) == [USER, "user-2"]


def test_sync_uses_account_start_date_and_page_size():
    calls = []
    with _session() as session:
        _link(session, "acc_1", sync_start_date=date(2026, 1, 1))
        SyncEngine(
            session, USER, client_factory=_factory({"acc_1": []}, calls)
        ).sync()

        assert calls[0]["start_date"] == date(2026, 1, 1)
        assert calls[0]["count"] == get_settings().sync_page_size

        SyncEngine(
            session, USER, client_factory=_factory({"acc_1": []}, calls)
        ).sync(start_date=date(2026, 2, 1), end_date=date(2026, 2, 28))
        assert calls[1]["start_date"] == date(2026, 2, 1)
        assert calls[1]["end_date"] == date(2026, 2, 28)


def test_sync_requires_accounts_and_ordered_dates():
    with _session() as session:
        engine = SyncEngine(session, USER, client_factory=_factory({}))
        with pytest.raises(NotFoundError):
            engine.sync()

        account = _link(session, "acc_1")
        LinkedAccountService(session, USER).set_sync_enabled(account.id, False)
        with pytest.raises(NotFoundError):
            engine.sync()
        with pytest.raises(ValidationError):
            engine.sync(start_date=date(2026, 3, 2), end_date=date(2026, 3, 1))

        result = SyncEngine(
            session, USER, client_factory=_factory({"acc_1": [_record("txn_a", "-1.00")]})
        ).sync(account_id=account.id)
        assert result.synced == 1


def test_parse_provider_transaction_reads_counterparty():
    record = parse_provider_transaction(
        {
            "id": "txn_123",
            "date": "2026-03-14",
            "amount": "-42.10",
            "description": " COFFEE SHOP ",
            "status": "posted",
            "details": {"counterparty": {"name": "Blue Bottle", "type": "organization"}},
        }
    )
    assert record.amount == Decimal("-42.10")
    assert record.description == "COFFEE SHOP"
    assert record.counterparty == "Blue Bottle"

    with pytest.raises(ProviderError):
        parse_provider_transaction({"id": "txn_1", "amount": "oops", "date": "2026-01-01"})
