"""Persistence for accounts, conversation turns and continuations.

Two backends share one set of method names:

* ``Supabase*Repository`` talks to the ``accounts``, ``conversation_turns`` and
  ``continuations`` tables (see ``scripts/schema.sql``).
* ``InMemory*Repository`` keeps everything in process, guarded by a lock. It is
  what development and the test suite run on.

Every method returns fresh immutable snapshots from ``lib.models``. Balance
changes are atomic per phone number: the memory backend holds its lock across
the read-modify-write, the Supabase backend issues a conditional update on the
balance it read and retries when another writer got there first.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from supabase import create_client

from lib.config import Settings
from lib.error_handler import PersistenceError
from lib.models import Account, Continuation, ConversationTurn, Role, TurnType, utcnow

logger = logging.getLogger(__name__)

# ==================== In-memory backend ====================

class InMemoryAccountRepository:
    def __init__(self):
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.RLock()

    def get(self, phone: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(phone)

    def create(self, phone: str, balance: int, usage_count: int = 0) -> Optional[Account]:
        """Insert a new account. Returns None if the phone already has one."""
        with self._lock:
            if phone in self._accounts:
                return None
            account = Account(phone=phone, balance=balance, usage_count=usage_count)
            self._accounts[phone] = account
            return account

    def try_consume(self, phone: str) -> Optional[Account]:
        """Take one credit. Returns None when there is no account or no credit left."""
        with self._lock:
            current = self._accounts.get(phone)
            if current is None or current.balance <= 0:
                return None
            now = utcnow()
            updated = current.model_copy(update={
                'balance': current.balance - 1,
                'usage_count': current.usage_count + 1,
                'last_activity': now,
                'updated_at': now,
            })
            self._accounts[phone] = updated
            return updated

    def add_credits(self, phone: str, amount: int) -> Account:
        with self._lock:
            current = self._accounts.get(phone)
            if current is None:
                account = Account(phone=phone, balance=amount, usage_count=0)
            else:
                now = utcnow()
                account = current.model_copy(update={
                    'balance': current.balance + amount,
                    'usage_count': 0,
                    'last_activity': now,
                    'updated_at': now,
                })
            self._accounts[phone] = account
            return account

    def refund(self, phone: str) -> Optional[Account]:
        with self._lock:
            current = self._accounts.get(phone)
            if current is None:
                return None
            updated = current.model_copy(update={
                'balance': current.balance + 1,
                'usage_count': max(0, current.usage_count - 1),
                'updated_at': utcnow(),
            })
            self._accounts[phone] = updated
            return updated

    def delete(self, phone: str) -> bool:
        with self._lock:
            return self._accounts.pop(phone, None) is not None

class InMemoryTurnRepository:
    def __init__(self):
        self._turns: Dict[str, List[ConversationTurn]] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()

    def insert(
        self,
        phone: str,
        role: Role,
        content: str,
        turn_type: TurnType = TurnType.TEXT,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationTurn:
        with self._lock:
            turn = ConversationTurn(
                id=str(uuid4()),
                phone=phone,
                role=role,
                content=content,
                turn_type=turn_type,
                metadata=metadata or {},
                sequence=next(self._sequence),
            )
            self._turns.setdefault(phone, []).append(turn)
            return turn

    def recent(self, phone: str, limit: int) -> List[ConversationTurn]:
        """Most recent ``limit`` turns, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            turns = sorted(self._turns.get(phone, []), key=lambda t: (t.created_at, t.sequence))
            return turns[-limit:]

    def delete_for(self, phone: str) -> int:
        with self._lock:
            return len(self._turns.pop(phone, []))

class InMemoryContinuationRepository:
    def __init__(self):
        self._continuations: Dict[str, List[Continuation]] = {}
        self._lock = threading.RLock()

    def insert(
        self,
        phone: str,
        content: str,
        ttl: timedelta,
        origin_turn_id: Optional[str] = None
    ) -> Continuation:
        with self._lock:
            existing = self._continuations.setdefault(phone, [])
            index = max((c.sequence_index for c in existing), default=0) + 1
            now = utcnow()
            continuation = Continuation(
                id=str(uuid4()),
                phone=phone,
                content=content,
                origin_turn_id=origin_turn_id,
                sequence_index=index,
                total_parts=index,
                expires_at=now + ttl,
                created_at=now,
            )
            existing.append(continuation)
            return continuation

    def latest_active(self, phone: str, now: Optional[datetime] = None) -> Optional[Continuation]:
        now = now or utcnow()
        with self._lock:
            active = [c for c in self._continuations.get(phone, []) if not c.is_expired(now)]
            if not active:
                return None
            return max(active, key=lambda c: (c.created_at, c.sequence_index))

    def delete_for(self, phone: str) -> int:
        with self._lock:
            return len(self._continuations.pop(phone, []))

    def delete(self, continuation_id: str) -> bool:
        with self._lock:
            for phone, continuations in self._continuations.items():
                kept = [c for c in continuations if c.id != continuation_id]
                if len(kept) != len(continuations):
                    self._continuations[phone] = kept
                    return True
            return False

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        removed = 0
        with self._lock:
            for phone in list(self._continuations):
                kept = [c for c in self._continuations[phone] if not c.is_expired(now)]
                removed += len(self._continuations[phone]) - len(kept)
                self._continuations[phone] = kept
        return removed

# ==================== Supabase backend ====================

class _SupabaseRepository:
    table_name = ''

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def _table(self):
        return self.supabase.table(self.table_name)

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Supabase error during {action} on {self.table_name}: {str(e)}")
            raise PersistenceError(f"Failed to {action}: {str(e)}") from e

class SupabaseAccountRepository(_SupabaseRepository):
    table_name = 'accounts'

    def __init__(self, supabase_client, max_attempts: int = 5):
        super().__init__(supabase_client)
        self.max_attempts = max_attempts

    def get(self, phone: str) -> Optional[Account]:
        result = self._execute(
            self._table().select('*').eq('phone', phone).limit(1),
            'load account'
        )
        return Account.model_validate(result.data[0]) if result.data else None

    def create(self, phone: str, balance: int, usage_count: int = 0) -> Optional[Account]:
        now = utcnow().isoformat()
        row = {
            'phone': phone,
            'balance': balance,
            'usage_count': usage_count,
            'is_active': True,
            'last_activity': now,
            'created_at': now,
            'updated_at': now,
        }
        result = self._execute(
            self._table().upsert(row, on_conflict='phone', ignore_duplicates=True),
            'create account'
        )
        # An empty result means the phone already had a row
        return Account.model_validate(result.data[0]) if result.data else None

    def _compare_and_set(self, current: Account, changes: Dict[str, Any], action: str) -> Optional[Account]:
        changes = dict(changes, updated_at=utcnow().isoformat())
        result = self._execute(
            self._table().update(changes).eq('phone', current.phone).eq('balance', current.balance),
            action
        )
        return Account.model_validate(result.data[0]) if result.data else None

    def try_consume(self, phone: str) -> Optional[Account]:
        for attempt in range(self.max_attempts):
            current = self.get(phone)
            if current is None or current.balance <= 0:
                return None
            updated = self._compare_and_set(current, {
                'balance': current.balance - 1,
                'usage_count': current.usage_count + 1,
                'last_activity': utcnow().isoformat(),
            }, 'consume credit')
            if updated is not None:
                return updated
            logger.warning(f"Concurrent balance update for {phone}, retrying (attempt {attempt + 1})")
        raise PersistenceError(f"Could not consume credit for {phone}: balance kept changing")

    def add_credits(self, phone: str, amount: int) -> Account:
        for attempt in range(self.max_attempts):
            current = self.get(phone)
            if current is None:
                created = self.create(phone, balance=amount, usage_count=0)
                if created is not None:
                    return created
                continue
            updated = self._compare_and_set(current, {
                'balance': current.balance + amount,
                'usage_count': 0,
                'last_activity': utcnow().isoformat(),
            }, 'add credits')
            if updated is not None:
                return updated
            logger.warning(f"Concurrent balance update for {phone}, retrying (attempt {attempt + 1})")
        raise PersistenceError(f"Could not add credits for {phone}: balance kept changing")

    def refund(self, phone: str) -> Optional[Account]:
        for _ in range(self.max_attempts):
            current = self.get(phone)
            if current is None:
                return None
            updated = self._compare_and_set(current, {
                'balance': current.balance + 1,
                'usage_count': max(0, current.usage_count - 1),
            }, 'refund credit')
            if updated is not None:
                return updated
        raise PersistenceError(f"Could not refund credit for {phone}: balance kept changing")

    def delete(self, phone: str) -> bool:
        result = self._execute(self._table().delete().eq('phone', phone), 'delete account')
        return bool(result.data)

class SupabaseTurnRepository(_SupabaseRepository):
    table_name = 'conversation_turns'

    def insert(
        self,
        phone: str,
        role: Role,
        content: str,
        turn_type: TurnType = TurnType.TEXT,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationTurn:
        row = {
            'id': str(uuid4()),
            'phone': phone,
            'role': role.value,
            'content': content,
            'turn_type': turn_type.value,
            'metadata': metadata or {},
            'created_at': utcnow().isoformat(),
        }
        result = self._execute(self._table().insert(row), 'store conversation turn')
        if not result.data:
            raise PersistenceError(f"Conversation turn for {phone} was not stored")
        return ConversationTurn.model_validate(result.data[0])

    def recent(self, phone: str, limit: int) -> List[ConversationTurn]:
        if limit <= 0:
            return []
        result = self._execute(
            self._table()
            .select('*')
            .eq('phone', phone)
            .order('created_at', desc=True)
            .order('sequence', desc=True)
            .limit(limit),
            'load conversation history'
        )
        turns = [ConversationTurn.model_validate(row) for row in result.data or []]
        turns.reverse()
        return turns

    def delete_for(self, phone: str) -> int:
        result = self._execute(self._table().delete().eq('phone', phone), 'delete conversation history')
        return len(result.data or [])

class SupabaseContinuationRepository(_SupabaseRepository):
    table_name = 'continuations'

    def __init__(self, supabase_client, max_attempts: int = 5):
        super().__init__(supabase_client)
        self.max_attempts = max_attempts

    def _next_index(self, phone: str) -> int:
        latest = self._execute(
            self._table()
            .select('sequence_index')
            .eq('phone', phone)
            .order('sequence_index', desc=True)
            .limit(1),
            'load continuation index'
        )
        return latest.data[0]['sequence_index'] + 1 if latest.data else 1

    def insert(
        self,
        phone: str,
        content: str,
        ttl: timedelta,
        origin_turn_id: Optional[str] = None
    ) -> Continuation:
        for attempt in range(self.max_attempts):
            index = self._next_index(phone)
            now = utcnow()
            row = {
                'id': str(uuid4()),
                'phone': phone,
                'content': content,
                'origin_turn_id': origin_turn_id,
                'sequence_index': index,
                'total_parts': index,
                'expires_at': (now + ttl).isoformat(),
                'created_at': now.isoformat(),
            }
            # (phone, sequence_index) is unique; an empty result means another
            # reply took this index first
            result = self._execute(
                self._table().upsert(row, on_conflict='phone,sequence_index', ignore_duplicates=True),
                'store continuation'
            )
            if result.data:
                return Continuation.model_validate(result.data[0])
            logger.warning(f"Continuation index {index} for {phone} already taken, retrying (attempt {attempt + 1})")
        raise PersistenceError(f"Could not store continuation for {phone}: sequence index kept changing")

    def latest_active(self, phone: str, now: Optional[datetime] = None) -> Optional[Continuation]:
        now = now or utcnow()
        result = self._execute(
            self._table()
            .select('*')
            .eq('phone', phone)
            .gt('expires_at', now.isoformat())
            .order('created_at', desc=True)
            .order('sequence_index', desc=True)
            .limit(1),
            'load continuation'
        )
        return Continuation.model_validate(result.data[0]) if result.data else None

    def delete_for(self, phone: str) -> int:
        result = self._execute(self._table().delete().eq('phone', phone), 'delete continuations')
        return len(result.data or [])

    def delete(self, continuation_id: str) -> bool:
        result = self._execute(self._table().delete().eq('id', continuation_id), 'delete continuation')
        return bool(result.data)

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = self._execute(
            self._table().delete().lte('expires_at', now.isoformat()),
            'sweep expired continuations'
        )
        return len(result.data or [])

# ==================== Wiring ====================

@dataclass
class Repositories:
    accounts: Any
    turns: Any
    continuations: Any
    backend: str

def create_repositories(settings: Settings) -> Repositories:
    if settings.storage_backend == 'memory':
        logger.warning("Using in-memory storage; data is lost on restart")
        return Repositories(
            accounts=InMemoryAccountRepository(),
            turns=InMemoryTurnRepository(),
            continuations=InMemoryContinuationRepository(),
            backend='memory',
        )

    if settings.storage_backend != 'supabase':
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

    logger.info("Initializing Supabase client...")
    try:
        client = create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error(f"Error initializing Supabase client: {str(e)}")
        raise
    logger.info("Supabase client initialized successfully")

    return Repositories(
        accounts=SupabaseAccountRepository(client),
        turns=SupabaseTurnRepository(client),
        continuations=SupabaseContinuationRepository(client),
        backend='supabase',
    )
