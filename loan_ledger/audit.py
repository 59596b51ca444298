"""
Audit Trail Module

Hash-chained append-only audit log (SHA-256) for tamper detection.
Every state change to loans, payments, invoices and the account ledger is
recorded here.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_DELETED = "loan_deleted"
    LOAN_PAID_OFF = "loan_paid_off"
    
    # Payment events
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_DELETED = "payment_deleted"
    
    # Interest and reconciliation events
    INTEREST_ACCRUED = "interest_accrued"
    INVOICE_GENERATED = "invoice_generated"
    CONSISTENCY_DRIFT_DETECTED = "consistency_drift_detected"
    
    # Account ledger events
    ACCOUNT_TRANSACTION_RECORDED = "account_transaction_recorded"


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class AuditEvent:
    """
    Immutable audit event chained to its predecessor by hash
    """
    id: str
    sequence: int
    created_at: datetime
    event_type: AuditEventType
    entity_type: str        # loan, payment, invoice, account_transaction
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    
    def __post_init__(self):
        self.metadata = _jsonable(self.metadata or {})
    
    def calculate_hash(self) -> str:
        """SHA-256 over every field except ``current_hash``"""
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()
    
    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail
    """
    
    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
    
    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events
    
    def _chain_head(self):
        # (sequence, hash) of the newest event; reloaded so a rolled back
        # transaction never leaves a dangling link
        newest = self.storage.last(self.table_name)
        if newest is None:
            return 0, ""
        return newest['sequence'], newest['current_hash']
    
    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining
        
        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            
        Returns:
            Created AuditEvent
        """
        with self._lock:
            last_sequence, last_hash = self._chain_head()
            event = AuditEvent(
                id=str(uuid.uuid4()),
                sequence=last_sequence + 1,
                created_at=datetime.now(timezone.utc),
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                previous_hash=last_hash,
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event
    
    def get_events_for_entity(self, entity_type: str, entity_id: Any,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """
        Get audit events for one entity, oldest first
        
        Args:
            entity_type: Type of entity
            entity_id: ID of entity
            limit: Return only the most recent N events
        """
        records = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': str(entity_id)
        })
        events = sorted((AuditEvent.from_dict(data) for data in records),
                        key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events
    
    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._load_events() if e.event_type == event_type]
    
    def count_events(self) -> int:
        return self.storage.count(self.table_name)
    
    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain
        
        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }
        
        events = self._load_events()
        result['total_events'] = len(events)
        
        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash
        
        return result
