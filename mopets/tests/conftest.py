from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import pytest

from mopets.app.billing import (
    Account,
    AccountRole,
    BillingRepository,
    BillingService,
    InvalidSignatureError,
    PaymentGateway,
    PriceCatalog,
    SubscriptionProjector,
    SubscriptionRecord,
    SubscriptionTier,
    WebhookDispatcher,
    load_billing_config,
)

WEBHOOK_SECRET = "whsec_test"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class InMemoryBillingRepository(BillingRepository):
    def __init__(self) -> None:
        self.accounts: Dict[str, Account] = {}
        self.subscriptions: Dict[str, SubscriptionRecord] = {}
        self.writes: List[str] = []

    def add_account(self, account: Account) -> Account:
        self.accounts[account.account_id] = account
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    def claim_external_customer_id(self, account_id: str, customer_id: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        self.writes.append("claim_external_customer_id")
        if account.external_customer_id is None:
            account = account.model_copy(update={"external_customer_id": customer_id})
            self.accounts[account_id] = account
        return account

    def get_subscription(self, external_subscription_id: str) -> Optional[SubscriptionRecord]:
        return self.subscriptions.get(external_subscription_id)

    def save_subscription_projection(
        self,
        record: SubscriptionRecord,
        *,
        account_tier: SubscriptionTier,
        external_customer_id: Optional[str],
    ) -> Optional[SubscriptionRecord]:
        existing = self.subscriptions.get(record.external_subscription_id)
        if (
            existing is not None
            and existing.last_event_at is not None
            and record.last_event_at is not None
            and record.last_event_at < existing.last_event_at
        ):
            return None
        if existing is not None:
            record = record.model_copy(
                update={
                    "created_at": existing.created_at,
                    "last_event_at": record.last_event_at or existing.last_event_at,
                }
            )
        self.subscriptions[record.external_subscription_id] = record

        account = self.accounts.get(record.account_id)
        if account is not None:
            self.accounts[record.account_id] = account.model_copy(
                update={
                    "subscription_tier": account_tier,
                    "external_customer_id": account.external_customer_id or external_customer_id,
                }
            )
        self.writes.append("save_subscription_projection")
        return record

    def update_subscription_status(
        self,
        external_subscription_id: str,
        *,
        status: str,
        event_at: Optional[datetime],
    ) -> Optional[SubscriptionRecord]:
        existing = self.subscriptions.get(external_subscription_id)
        if existing is None:
            return None
        updated = existing.model_copy(
            update={
                "status": status,
                "last_event_at": event_at or existing.last_event_at,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self.subscriptions[external_subscription_id] = updated
        self.writes.append("update_subscription_status")
        return updated


class FakePaymentGateway(PaymentGateway):
    def __init__(self) -> None:
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.created_customers: List[Dict[str, Any]] = []
        self.checkout_sessions: List[Dict[str, Any]] = []
        self.portal_sessions: List[Dict[str, Any]] = []
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.retrieved_subscriptions: List[str] = []
        self.error: Optional[Exception] = None

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    def retrieve_customer(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        self._maybe_fail()
        return self.customers.get(customer_id)

    def create_customer(self, *, email: str, name: str, metadata: Dict[str, str]) -> Mapping[str, Any]:
        self._maybe_fail()
        customer = {
            "id": f"cus_{len(self.created_customers) + 1}",
            "email": email,
            "name": name,
            "metadata": dict(metadata),
        }
        self.created_customers.append(customer)
        self.customers[customer["id"]] = customer
        return customer

    def create_checkout_session(self, params: Dict[str, Any]) -> Mapping[str, Any]:
        self._maybe_fail()
        session_id = f"cs_{len(self.checkout_sessions) + 1}"
        self.checkout_sessions.append(params)
        return {"id": session_id, "url": f"https://checkout.test/{session_id}"}

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Mapping[str, Any]:
        self._maybe_fail()
        payload = {"customer": customer_id, "return_url": return_url}
        self.portal_sessions.append(payload)
        return {"id": f"bps_{len(self.portal_sessions)}", "url": f"https://portal.test/{customer_id}"}

    def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]:
        self._maybe_fail()
        self.retrieved_subscriptions.append(subscription_id)
        return self.subscriptions[subscription_id]

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        if not signature or not hmac.compare_digest(signature, sign_payload(payload)):
            raise InvalidSignatureError("Invalid signature")
        return json.loads(payload)


def subscription_payload(
    subscription_id: str = "sub_123",
    *,
    account_id: Optional[str] = "acct_1",
    price_id: str = "price_premium_monthly",
    status: str = "active",
    customer: str = "cus_1",
    period_start: int = 1_700_000_000,
    period_end: int = 1_702_592_000,
    cancel_at_period_end: bool = False,
) -> Dict[str, Any]:
    metadata = {"userId": account_id, "role": AccountRole.PET_OWNER.value} if account_id else {}
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": metadata,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price_id}}]},
    }


def event_payload(event_type: str, data_object: Mapping[str, Any], *, created: int = 1_700_000_100) -> Dict[str, Any]:
    return {
        "id": f"evt_{event_type.replace('.', '_')}_{created}",
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": dict(data_object)},
    }


@pytest.fixture
def billing_config():
    return load_billing_config(
        {
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "APP_BASE_URL": "https://mopets.test/",
        }
    )


@pytest.fixture
def repository():
    repo = InMemoryBillingRepository()
    repo.add_account(
        Account(
            account_id="acct_1",
            email="owner@mopets.test",
            display_name="Biscuit's Human",
            role=AccountRole.PET_OWNER,
        )
    )
    return repo


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def catalog(billing_config):
    return PriceCatalog.from_config(billing_config)


@pytest.fixture
def billing_service(repository, gateway, billing_config):
    return BillingService(repository=repository, gateway=gateway, config=billing_config)


@pytest.fixture
def projector(repository, catalog):
    return SubscriptionProjector(repository=repository, catalog=catalog)


@pytest.fixture
def dispatcher(gateway, projector):
    return WebhookDispatcher(gateway=gateway, projector=projector)


@pytest.fixture
def make_subscription():
    return subscription_payload


@pytest.fixture
def make_event():
    return event_payload


@pytest.fixture
def sign():
    return sign_payload
