"""Human-readable descriptions of ledger events for timeline display."""

from decimal import Decimal
from typing import Any

from contract_ledger.domain.values import StateEventDTO, StateEventType, TriggerKind


def format_amount(value: Any, signed: bool = False) -> str:
    amount = Decimal(str(value))
    text = f"{amount:,.2f}"
    if signed and amount >= 0:
        text = "+" + text
    return text


def _change_text(event: StateEventDTO, label: str) -> str:
    meta = event.metadata
    delta = format_amount(event.amount_delta, signed=True)
    old_total = meta.get("old_total_amount")
    new_total = meta.get("new_total_amount")
    if old_total is not None and new_total is not None:
        return (
            f"{label}: {format_amount(old_total)} -> {format_amount(new_total)} "
            f"({delta})"
        )
    return f"{label}: {delta}"


def _describe_amended(event: StateEventDTO) -> str:
    meta = event.metadata
    kind = event.triggered_by.kind

    if meta.get("is_compensating"):
        count = meta.get("superseded_events_count", 0)
        return (
            f"Compensating amendment for {count} superseded event(s): "
            f"{format_amount(event.amount_delta, signed=True)}"
        )
    if meta.get("is_correction"):
        return f"Ledger correction: {format_amount(event.amount_delta, signed=True)}"

    if kind is TriggerKind.PERFORMANCE_ACT:
        number = meta.get("act_number")
        label = f"Performance act No. {number}" if number else "Performance act"
        return _change_text(event, label)

    if kind is TriggerKind.SUPPLEMENTARY_AGREEMENT:
        number = meta.get("agreement_number")
        label = (
            f"Supplementary agreement No. {number}"
            if number
            else "Supplementary agreement"
        )
        return _change_text(event, label)

    return _change_text(event, "Contract amendment")


def _describe_superseded(
    event: StateEventDTO,
    target: StateEventDTO | None,
) -> str:
    reason = event.metadata.get("reason")

    if target is None:
        text = "Supersession of event"
        if reason:
            return f"{text}: {reason}"
        return f"{text} for {format_amount(abs(event.amount_delta))}"

    amount = format_amount(abs(target.amount_delta))
    if (
        target.event_type is StateEventType.SUPPLEMENTARY_AGREEMENT_CREATED
        or target.triggered_by.kind is TriggerKind.SUPPLEMENTARY_AGREEMENT
    ):
        number = target.metadata.get("agreement_number")
        subject = (
            f"supplementary agreement No. {number}"
            if number
            else "supplementary agreement"
        )
    elif target.event_type is StateEventType.AMENDED:
        subject = "contract amendment"
    elif target.event_type is StateEventType.CREATED:
        subject = "contract creation"
    else:
        subject = f"'{target.event_type.value}' event"

    text = f"Supersession of {subject} for {amount}"

    superseding_number = event.metadata.get("superseding_agreement_number")
    if superseding_number:
        text += f" (superseded by agreement No. {superseding_number})"
    elif reason:
        text += f" ({reason})"
    return text


def describe_event(
    event: StateEventDTO,
    superseded: StateEventDTO | None = None,
) -> str:
    """
    Describe ``event`` in one line.

    ``superseded`` is the target of a SUPERSEDED event, when the caller has
    it at hand; without it the description falls back to the event's own
    metadata.
    """
    event_type = event.event_type

    if event_type is StateEventType.CREATED:
        return f"Contract created for {format_amount(event.amount_delta)}"

    if event_type is StateEventType.AMENDED:
        return _describe_amended(event)

    if event_type is StateEventType.SUPERSEDED:
        return _describe_superseded(event, superseded)

    if event_type is StateEventType.SUPPLEMENTARY_AGREEMENT_CREATED:
        number = event.metadata.get("agreement_number")
        prefix = (
            f"Supplementary agreement No. {number}"
            if number
            else "Supplementary agreement"
        )
        return f"{prefix} created for {format_amount(event.amount_delta)}"

    if event_type is StateEventType.PAYMENT_CREATED:
        payment_type = event.metadata.get("payment_type")
        label = "Advance payment" if payment_type == "advance" else "Payment"
        return f"{label} of {format_amount(event.amount_delta)}"

    return f"Event of type {event_type.value}"
