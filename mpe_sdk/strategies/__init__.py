"""
Payment strategies.
"""
from .base import BasePaidPaymentStrategy
from .default import DefaultPaymentStrategy, PaymentKind, decide_payment_kind
from .free_call import FreeCallPaymentStrategy
from .paid_call import PaidCallPaymentStrategy
from .prepaid import PrepaidPaymentStrategy

__all__ = [
    'BasePaidPaymentStrategy',
    'DefaultPaymentStrategy',
    'FreeCallPaymentStrategy',
    'PaidCallPaymentStrategy',
    'PaymentKind',
    'PrepaidPaymentStrategy',
    'decide_payment_kind',
]
