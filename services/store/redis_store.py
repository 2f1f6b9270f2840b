"""Redis-backed record store for multi-process deployments.

Layout:
- one hash per record (``document:{id}``, ``transaction:{id}`` ...), one hash
  field per model field holding its JSON value, so partial updates are plain
  ``HSET`` calls that touch only the named fields
- owner index sets (``owner:{owner_id}:transactions`` ...)
- ``owner:{owner_id}:transactions:recent`` sorted by update time
- ``owner:{owner_id}:partners:by_global`` mapping global id to local id

Based on redis-py documentation:
https://redis.readthedocs.io/en/stable/
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, TypeVar

import redis
from pydantic import BaseModel
from pydantic_core import to_json

from services.store.memory import apply_update
from services.store.models import (
    BankSource,
    Category,
    Document,
    GlobalPartner,
    Partner,
    Transaction,
    UsageRecord,
    UserIdentity,
    utcnow,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _encode(fields: Mapping[str, Any]) -> dict[str, str]:
    return {name: to_json(value).decode() for name, value in fields.items()}


def _decode(model: type[ModelT], raw: Mapping[str, str]) -> ModelT | None:
    if not raw:
        return None
    return model.model_validate({name: json.loads(value) for name, value in raw.items()})


class RedisStore:
    """RecordStore implementation on top of redis-py."""

    def __init__(self, url: str, client: redis.Redis | None = None) -> None:
        """Initialize store.

        Args:
            url: Redis connection URL
            client: Pre-built client (optional, created lazily from url)
        """
        self.url = url
        self._client = client

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
            logger.info(f"Redis record store connected: {self.url}")
        return self._client

    def health_check(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except redis.RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    def _get(self, model: type[ModelT], key: str) -> ModelT | None:
        return _decode(model, self._get_client().hgetall(key))

    def _get_many(self, model: type[ModelT], keys: list[str]) -> list[ModelT]:
        if not keys:
            return []
        pipe = self._get_client().pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        records = [_decode(model, raw) for raw in pipe.execute()]
        return [r for r in records if r is not None]

    def _put(self, key: str, record: BaseModel, index_keys: tuple[str, ...] = ()) -> None:
        record_id = getattr(record, "id", None) or getattr(record, "owner_id")
        pipe = self._get_client().pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=_encode(dict(record)))
        for index_key in index_keys:
            pipe.sadd(index_key, record_id)
        pipe.execute()

    # Documents

    def get_document(self, document_id: str) -> Document | None:
        return self._get(Document, f"document:{document_id}")

    def save_document(self, document: Document) -> None:
        self._put(
            f"document:{document.id}",
            document,
            (f"owner:{document.owner_id}:documents",),
        )

    def update_document(self, document_id: str, fields: Mapping[str, Any]) -> None:
        key = f"document:{document_id}"
        current = self._get(Document, key)
        if current is None:
            raise KeyError(f"Document not found: {document_id}")
        fields = {**fields, "updated_at": utcnow()}
        # Validate before writing so a bad value never reaches Redis
        validated = apply_update(current, fields)
        self._get_client().hset(
            key, mapping=_encode({name: getattr(validated, name) for name in fields})
        )

    # Owner identity

    def get_user_identity(self, owner_id: str) -> UserIdentity | None:
        return self._get(UserIdentity, f"identity:{owner_id}")

    def save_user_identity(self, identity: UserIdentity) -> None:
        self._put(f"identity:{identity.owner_id}", identity)

    def list_active_sources(self, owner_id: str) -> list[BankSource]:
        ids = sorted(self._get_client().smembers(f"owner:{owner_id}:sources"))
        sources = self._get_many(BankSource, [f"source:{i}" for i in ids])
        return [s for s in sources if s.is_active]

    def save_source(self, source: BankSource) -> None:
        self._put(f"source:{source.id}", source, (f"owner:{source.owner_id}:sources",))

    # Transactions

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._get(Transaction, f"transaction:{transaction_id}")

    def save_transaction(self, transaction: Transaction) -> None:
        self._put(
            f"transaction:{transaction.id}",
            transaction,
            (f"owner:{transaction.owner_id}:transactions",),
        )
        self._get_client().zadd(
            f"owner:{transaction.owner_id}:transactions:recent",
            {transaction.id: transaction.updated_at.timestamp()},
        )

    def list_transactions(self, owner_id: str) -> list[Transaction]:
        ids = sorted(self._get_client().smembers(f"owner:{owner_id}:transactions"))
        return self._get_many(Transaction, [f"transaction:{i}" for i in ids])

    def list_transactions_by_partner_type(
        self, owner_id: str, partner_type: str
    ) -> list[Transaction]:
        return [t for t in self.list_transactions(owner_id) if t.partner_type == partner_type]

    def list_recent_transactions(self, owner_id: str, limit: int) -> list[Transaction]:
        ids = self._get_client().zrevrange(
            f"owner:{owner_id}:transactions:recent", 0, limit - 1
        )
        return self._get_many(Transaction, [f"transaction:{i}" for i in ids])

    def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> None:
        self.update_transactions({transaction_id: fields})

    def update_transactions(self, updates: Mapping[str, Mapping[str, Any]]) -> None:
        if not updates:
            return
        now = utcnow()
        staged: list[tuple[Transaction, dict[str, Any]]] = []
        for transaction_id, fields in updates.items():
            current = self.get_transaction(transaction_id)
            if current is None:
                raise KeyError(f"Transaction not found: {transaction_id}")
            merged = {**fields, "updated_at": now}
            validated = apply_update(current, merged)
            staged.append((validated, {name: getattr(validated, name) for name in merged}))

        pipe = self._get_client().pipeline(transaction=True)
        for transaction, fields in staged:
            pipe.hset(f"transaction:{transaction.id}", mapping=_encode(fields))
            pipe.zadd(
                f"owner:{transaction.owner_id}:transactions:recent",
                {transaction.id: now.timestamp()},
            )
        pipe.execute()

    # Partners

    def get_partner(self, partner_id: str) -> Partner | None:
        return self._get(Partner, f"partner:{partner_id}")

    def list_partners(self, owner_id: str) -> list[Partner]:
        ids = sorted(self._get_client().smembers(f"owner:{owner_id}:partners"))
        return self._get_many(Partner, [f"partner:{i}" for i in ids])

    def find_local_partner(self, owner_id: str, global_partner_id: str) -> Partner | None:
        partner_id = self._get_client().hget(
            f"owner:{owner_id}:partners:by_global", global_partner_id
        )
        if partner_id is None:
            return None
        partner = self.get_partner(partner_id)
        if partner is None or not partner.is_active:
            return None
        return partner

    def create_partner(self, partner: Partner) -> Partner:
        client = self._get_client()
        if client.exists(f"partner:{partner.id}"):
            raise ValueError(f"Partner already exists: {partner.id}")
        pipe = client.pipeline(transaction=True)
        pipe.hset(f"partner:{partner.id}", mapping=_encode(dict(partner)))
        pipe.sadd(f"owner:{partner.owner_id}:partners", partner.id)
        if partner.global_partner_id:
            pipe.hset(
                f"owner:{partner.owner_id}:partners:by_global",
                partner.global_partner_id,
                partner.id,
            )
        pipe.execute()
        return partner

    def get_global_partner(self, global_partner_id: str) -> GlobalPartner | None:
        return self._get(GlobalPartner, f"global_partner:{global_partner_id}")

    def list_global_partners(self) -> list[GlobalPartner]:
        ids = sorted(self._get_client().smembers("global_partners"))
        return self._get_many(GlobalPartner, [f"global_partner:{i}" for i in ids])

    def save_global_partner(self, partner: GlobalPartner) -> None:
        self._put(f"global_partner:{partner.id}", partner, ("global_partners",))

    # Categories

    def list_categories(self, owner_id: str) -> list[Category]:
        ids = sorted(self._get_client().smembers(f"owner:{owner_id}:categories"))
        return self._get_many(Category, [f"category:{i}" for i in ids])

    def save_category(self, category: Category) -> None:
        self._put(
            f"category:{category.id}",
            category,
            (f"owner:{category.owner_id}:categories",),
        )

    def update_category(self, category_id: str, fields: Mapping[str, Any]) -> None:
        key = f"category:{category_id}"
        current = self._get(Category, key)
        if current is None:
            raise KeyError(f"Category not found: {category_id}")
        validated = apply_update(current, fields)
        self._get_client().hset(
            key, mapping=_encode({name: getattr(validated, name) for name in fields})
        )

    # Usage ledger

    def append_usage(self, record: UsageRecord) -> None:
        self._get_client().rpush(f"owner:{record.owner_id}:usage", record.model_dump_json())

    def list_usage(self, owner_id: str) -> list[UsageRecord]:
        raw = self._get_client().lrange(f"owner:{owner_id}:usage", 0, -1)
        return [UsageRecord.model_validate_json(item) for item in raw]
