"""
Result objects returned by lifecycle and query operations.

Business failures (ineligible, wrong state, missing row, lost race) are
reported through these objects, never raised.
"""

from dataclasses import dataclass, field
from enum import Enum


class Outcome(str, Enum):
    APPLIED = 'applied'
    INELIGIBLE = 'ineligible'
    WRONG_STATE = 'wrong_state'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'


@dataclass
class TransitionResult:
    success: bool
    message: str
    outcome: Outcome
    reasons: list = field(default_factory=list)
    data: dict = field(default_factory=dict)

    @classmethod
    def applied(cls, message, **data):
        return cls(success=True, message=message, outcome=Outcome.APPLIED, data=data)

    @classmethod
    def failed(cls, outcome, message, reasons=None, **data):
        return cls(
            success=False,
            message=message,
            outcome=outcome,
            reasons=list(reasons) if reasons else [message],
            data=data,
        )

    def as_dict(self):
        return {
            'success': self.success,
            'message': self.message,
            'outcome': self.outcome.value,
            'reasons': list(self.reasons),
            'data': dict(self.data),
        }


@dataclass
class BatchResult:
    """
    Aggregate of independently executed per-id operations.

    results holds (entity_id, item_result) pairs in input order.
    """

    succeeded_count: int = 0
    failed_count: int = 0
    errors: list = field(default_factory=list)
    results: list = field(default_factory=list)

    @property
    def success(self):
        return self.failed_count == 0

    @property
    def updated_count(self):
        return self.succeeded_count

    def add_success(self, entity_id, result):
        self.succeeded_count += 1
        self.results.append((entity_id, result))

    def add_failure(self, entity_id, error, result=None):
        self.failed_count += 1
        self.errors.append(error)
        self.results.append((entity_id, result))

    def as_dict(self):
        return {
            'success': self.success,
            'succeeded_count': self.succeeded_count,
            'updated_count': self.updated_count,
            'failed_count': self.failed_count,
            'errors': list(self.errors),
            'results': [
                {
                    'id': entity_id,
                    'success': bool(result is not None and result.success),
                    'message': result.message if result is not None else None,
                }
                for entity_id, result in self.results
            ],
        }
