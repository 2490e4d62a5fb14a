from datetime import datetime, timedelta

import pytest

from conftest import make_customer, make_policy
from ticketdesk.errors import InvalidRequest, InvalidTransition, NotFound
from ticketdesk.services.lifecycle import (
    check_transition, create_ticket, update_ticket, evaluate_sla, sweep_sla,
)
from ticketdesk.storage.models import TicketStatus, TicketPriority

NOW = datetime(2026, 5, 4, 10, 0)


@pytest.fixture
def ticket(db):
    customer, contact = make_customer(db)
    return create_ticket(db, {"title": "Fatura errada", "customer_id": customer.id, "contact_id": contact.id}, now=NOW)


class TestCreate:
    def test_defaults(self, ticket):
        assert ticket.number == "TK-202605-0001"
        assert ticket.status == TicketStatus.open
        assert ticket.priority == TicketPriority.normal
        assert ticket.channel == "whatsapp"
        assert ticket.created_at == NOW

    def test_contact_must_belong_to_customer(self, db):
        customer, _ = make_customer(db, number="5511900000001")
        _, other_contact = make_customer(db, number="5511900000002")
        with pytest.raises(InvalidRequest):
            create_ticket(db, {"title": "x", "customer_id": customer.id, "contact_id": other_contact.id})

    def test_unknown_contact(self, db):
        customer, _ = make_customer(db)
        with pytest.raises(NotFound):
            create_ticket(db, {"title": "x", "customer_id": customer.id, "contact_id": "missing"})

    def test_unknown_field(self, db):
        customer, contact = make_customer(db)
        with pytest.raises(InvalidRequest):
            create_ticket(db, {"title": "x", "customer_id": customer.id, "contact_id": contact.id, "number": "TK-1"})


class TestStatus:
    def test_resolved_at_is_stamped_once(self, db, ticket):
        t, changed = update_ticket(db, ticket.id, {"status": "resolved"}, now=NOW + timedelta(hours=1))
        assert changed
        assert t.resolved_at == NOW + timedelta(hours=1)

        update_ticket(db, ticket.id, {"status": "in_progress"}, now=NOW + timedelta(hours=2))
        t, _ = update_ticket(db, ticket.id, {"status": "resolved"}, now=NOW + timedelta(hours=3))
        assert t.resolved_at == NOW + timedelta(hours=1)

    def test_closed_at(self, db, ticket):
        t, _ = update_ticket(db, ticket.id, {"status": "closed"}, now=NOW + timedelta(days=1))
        assert t.closed_at == NOW + timedelta(days=1)

    def test_same_status_is_not_a_change(self, db, ticket):
        _, changed = update_ticket(db, ticket.id, {"status": "open"}, now=NOW)
        assert not changed

    def test_permissive_mode_allows_reopening(self, db, ticket):
        update_ticket(db, ticket.id, {"status": "closed"}, now=NOW, strict=False)
        t, changed = update_ticket(db, ticket.id, {"status": "open"}, now=NOW, strict=False)
        assert changed
        assert t.status == TicketStatus.open

    def test_strict_mode_rejects_closed_to_open(self, db, ticket):
        update_ticket(db, ticket.id, {"status": "resolved"}, now=NOW, strict=True)
        update_ticket(db, ticket.id, {"status": "closed"}, now=NOW, strict=True)
        with pytest.raises(InvalidTransition):
            update_ticket(db, ticket.id, {"status": "open"}, now=NOW, strict=True)

    def test_strict_table(self):
        check_transition(TicketStatus.open, TicketStatus.in_progress, strict=True)
        check_transition(TicketStatus.closed, TicketStatus.closed, strict=True)
        with pytest.raises(InvalidTransition):
            check_transition(TicketStatus.cancelled, TicketStatus.open, strict=True)
        with pytest.raises(InvalidTransition):
            check_transition(TicketStatus.open, TicketStatus.closed, strict=True)

    def test_unknown_status(self, db, ticket):
        with pytest.raises(InvalidRequest):
            update_ticket(db, ticket.id, {"status": "archived"})


class TestUpdate:
    def test_fields(self, db, ticket):
        t, changed = update_ticket(db, ticket.id, {
            "priority": "high", "assigned_agent_id": "agent-3", "metadata": {"plan": "fibra 500"},
        }, now=NOW)
        assert not changed
        assert t.priority == TicketPriority.high
        assert t.assigned_agent_id == "agent-3"
        assert t.meta == {"plan": "fibra 500"}

    @pytest.mark.parametrize("field", ["number", "sla_breached", "resolved_at", "created_at"])
    def test_read_only_fields(self, db, ticket, field):
        with pytest.raises(InvalidRequest):
            update_ticket(db, ticket.id, {field: "x"})

    def test_unknown_ticket(self, db):
        with pytest.raises(NotFound):
            update_ticket(db, "missing", {"title": "x"})


class TestSla:
    def test_no_policy_never_breaches(self, db, ticket):
        assert not evaluate_sla(ticket, None, NOW + timedelta(days=30))

    def test_first_response_overdue(self, db, ticket):
        policy = make_policy(db, first_response=30, resolution=600)
        assert not evaluate_sla(ticket, policy, NOW + timedelta(minutes=29))
        assert evaluate_sla(ticket, policy, NOW + timedelta(minutes=31))
        assert ticket.sla_breached

    def test_answered_in_time_but_resolution_overdue(self, db, ticket):
        policy = make_policy(db, first_response=30, resolution=120)
        ticket.first_response_at = NOW + timedelta(minutes=10)
        assert not evaluate_sla(ticket, policy, NOW + timedelta(minutes=100))
        assert evaluate_sla(ticket, policy, NOW + timedelta(minutes=121))

    def test_breach_is_never_cleared(self, db, ticket):
        make_policy(db, first_response=30)
        update_ticket(db, ticket.id, {"title": "x"}, now=NOW + timedelta(hours=2))
        t, _ = update_ticket(db, ticket.id, {"status": "resolved"}, now=NOW + timedelta(hours=3))
        assert t.sla_breached

    def test_resolved_without_reply_is_judged_at_resolution(self, db, ticket):
        make_policy(db, first_response=30, resolution=600)
        t, _ = update_ticket(db, ticket.id, {"status": "resolved"}, now=NOW + timedelta(minutes=20))
        assert not t.sla_breached
        t, _ = update_ticket(db, ticket.id, {"title": "Fatura revisada"}, now=NOW + timedelta(days=3))
        assert not t.sla_breached

    def test_explicit_policy_wins_over_priority_default(self, db):
        customer, contact = make_customer(db)
        make_policy(db, first_response=5)
        relaxed = make_policy(db, first_response=600, resolution=6000)
        t = create_ticket(db, {"title": "x", "customer_id": customer.id, "contact_id": contact.id,
                               "sla_policy_id": relaxed.id}, now=NOW)
        t, _ = update_ticket(db, t.id, {"title": "y"}, now=NOW + timedelta(minutes=60))
        assert not t.sla_breached

    def test_sweep(self, db, ticket):
        make_policy(db, first_response=30)
        assert sweep_sla(db, now=NOW + timedelta(minutes=10)) == 0
        assert sweep_sla(db, now=NOW + timedelta(minutes=45)) == 1
        db.refresh(ticket)
        assert ticket.sla_breached
        assert sweep_sla(db, now=NOW + timedelta(minutes=50)) == 0
