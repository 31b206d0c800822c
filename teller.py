from __future__ import annotations

import base64
import http.client
import json
import ssl
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from config import get_settings
from errors import ProviderError


@dataclass(frozen=True)
class ProviderTransaction:
    id: str
    date: date
    amount: Decimal  # signed; positive is money in
    description: str
    status: str
    counterparty: Optional[str] = None


class BankClient(Protocol):
    def list_transactions(
        self,
        account_id: str,
        *,
        count: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ProviderTransaction]: ...


def parse_provider_transaction(payload: dict) -> ProviderTransaction:
    try:
        amount = Decimal(str(payload["amount"]))
        details = payload.get("details") or {}
        counterparty = (details.get("counterparty") or {}).get("name") or None
        return ProviderTransaction(
            id=str(payload["id"]),
            date=date.fromisoformat(payload["date"]),
            amount=amount,
            description=(payload.get("description") or "").strip(),
            status=str(payload.get("status") or ""),
            counterparty=counterparty,
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise ProviderError("Unexpected transaction payload from provider") from exc


class TellerClient:
    def __init__(self, access_token: str) -> None:
        self.settings = get_settings()
        self.access_token = access_token

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self.settings.teller_cert_path:
            context.load_cert_chain(
                self.settings.teller_cert_path, self.settings.teller_key_path
            )
        return context

    def _get(self, path: str, params: dict[str, object]) -> object:
        query = urlencode({k: v for k, v in params.items() if v is not None})
        url = f"{self.settings.teller_base_url.rstrip('/')}{path}"
        if query:
            url = f"{url}?{query}"
        token = base64.b64encode(f"{self.access_token}:".encode("utf-8")).decode(
            "ascii"
        )
        req = Request(
            url,
            headers={"Accept": "application/json", "Authorization": f"Basic {token}"},
        )
        try:
            with urlopen(
                req,
                timeout=self.settings.teller_timeout_secs,
                context=self._ssl_context(),
            ) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            if exc.code in (401, 403):
                raise ProviderError("Bank authorization expired or revoked") from exc
            raise ProviderError(f"Bank provider returned HTTP {exc.code}") from exc
        except (URLError, http.client.HTTPException, OSError) as exc:
            raise ProviderError("Failed to reach bank provider") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProviderError("Unreadable response from bank provider") from exc

    def list_transactions(
        self,
        account_id: str,
        *,
        count: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ProviderTransaction]:
        payload = self._get(
            f"/accounts/{account_id}/transactions",
            {
                "count": count,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        )
        if not isinstance(payload, list):
            raise ProviderError("Unexpected transactions response from provider")
        return [parse_provider_transaction(row) for row in payload]
