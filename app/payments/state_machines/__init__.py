"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    CardType,
    GatewayEventStatus,
    GatewayEventType,
    PaymentGateway,
    PaymentMethodType,
    PaymentSettlementStatus,
    PaymentStatus,
    RefundStatus,
    SettlementRequestStatus,
    SettlementRequestType,
)

__all__ = [
    "CardType",
    "GatewayEventStatus",
    "GatewayEventType",
    "PaymentGateway",
    "PaymentMethodType",
    "PaymentSettlementStatus",
    "PaymentStatus",
    "RefundStatus",
    "SettlementRequestStatus",
    "SettlementRequestType",
]
