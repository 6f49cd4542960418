from datetime import date, timedelta

import pytest
from fastapi import HTTPException

from barbershop.domain.automations.service import REMINDER_TRIGGER, AutomationDispatcher
from barbershop.domain.automations.templates import format_br_date, render_template
from barbershop.models import Appointment, Client
from barbershop.models_automation import AutomationExecution, AutomationRule
from barbershop.models_whatsapp import WhatsAppMessage

from .conftest import TODAY, send_text_path


def add_appointment(db_session, barbershop, client, day, status="scheduled", service=None, start_time="10:00"):
    appointment = Appointment(
        barbershop_id=barbershop.id,
        client_id=client.id,
        service_id=service.id if service else None,
        appointment_date=day,
        start_time=start_time,
        status=status,
    )
    db_session.add(appointment)
    db_session.commit()
    return appointment


def add_rule(db_session, barbershop, rule_type, template, **kwargs):
    rule = AutomationRule(
        barbershop_id=barbershop.id,
        name=kwargs.pop("name", f"{rule_type} rule"),
        type=rule_type,
        message_template=template,
        **kwargs,
    )
    db_session.add(rule)
    db_session.commit()
    return rule


@pytest.fixture
def dispatcher(db_session, evolution):
    return AutomationDispatcher(db_session, evolution)


@pytest.fixture
def gateway_accepts_messages(gateway, connected_instance):
    gateway.on("POST", send_text_path(connected_instance), {"key": {"id": "MSG-1"}, "status": "PENDING"})
    return gateway


@pytest.mark.automations
class TestTemplates:
    def test_known_placeholders_are_replaced(self):
        message = render_template(
            "Olá {{client_name}}, {{barbershop_name}} te espera em {{ appointment_date }} às {{appointment_time}}",
            {"client_name": "João", "appointment_date": date(2026, 3, 11), "appointment_time": "14:30"},
            "Barbearia Central",
            TODAY,
        )
        assert message == "Olá João, Barbearia Central te espera em 11/03/2026 às 14:30"

    def test_iso_string_dates(self):
        message = render_template(
            "Olá {{client_name}}, amanhã {{appointment_date}}",
            {"client_name": "Ana", "appointment_date": "2024-01-16"},
        )
        assert message == "Olá Ana, amanhã 16/01/2024"

    def test_defaults_and_unknown_placeholders(self):
        message = render_template("{{client_name}} @ {{barbershop_name}} {{coupon}} {{service_name}}", {}, None, TODAY)
        assert message == "Cliente @ Nossa Barbearia {{coupon}} {{service_name}}"

    def test_expiry_date_is_a_week_out(self):
        assert render_template("até {{expiry_date}}", {}, today=TODAY) == "até 17/03/2026"

    def test_days_since_visit(self):
        assert render_template("{{days_since_visit}} dias", {"days_since_visit": 42}, today=TODAY) == "42 dias"

    def test_format_br_date(self):
        assert format_br_date("2026-03-11") == "11/03/2026"
        assert format_br_date(None) is None


@pytest.mark.automations
class TestCandidates:
    def test_reminder_targets_tomorrow(self, db_session, dispatcher, sample_barbershop, sample_client, haircut):
        tomorrow = TODAY + timedelta(days=1)
        kept = add_appointment(db_session, sample_barbershop, sample_client, tomorrow, service=haircut)
        add_appointment(db_session, sample_barbershop, sample_client, tomorrow, status="cancelled")
        add_appointment(db_session, sample_barbershop, sample_client, TODAY)
        rule = add_rule(db_session, sample_barbershop, "reminder", "Lembrete")

        candidates = dispatcher.find_candidates(rule, TODAY)

        assert [c["appointment_id"] for c in candidates] == [kept.id]
        assert candidates[0]["service_name"] == "Corte"
        assert candidates[0]["phone"] == "(11) 99999-8888"

    def test_follow_up_uses_configured_days(self, db_session, dispatcher, sample_barbershop, sample_client):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY - timedelta(days=5), status="completed")
        add_appointment(db_session, sample_barbershop, sample_client, TODAY - timedelta(days=3), status="completed")
        rule = add_rule(
            db_session, sample_barbershop, "follow_up", "Obrigado", trigger_conditions={"days_after_last_visit": 5}
        )

        candidates = dispatcher.find_candidates(rule, TODAY)

        assert len(candidates) == 1
        assert candidates[0]["last_visit"] == TODAY - timedelta(days=5)

    def test_churn_alert_uses_last_completed_visit(self, db_session, dispatcher, sample_barbershop, sample_client):
        regular = Client(barbershop_id=sample_barbershop.id, name="Pedro", phone="11977776666")
        db_session.add(regular)
        db_session.commit()
        add_appointment(db_session, sample_barbershop, sample_client, TODAY - timedelta(days=40), status="completed")
        add_appointment(db_session, sample_barbershop, regular, TODAY - timedelta(days=60), status="completed")
        add_appointment(db_session, sample_barbershop, regular, TODAY - timedelta(days=10), status="completed")
        rule = add_rule(db_session, sample_barbershop, "churn_alert", "Sentimos sua falta")

        candidates = dispatcher.find_candidates(rule, TODAY)

        assert [c["client_id"] for c in candidates] == [sample_client.id]
        assert candidates[0]["days_since_visit"] == 40

    def test_promotion_uses_rule_details(self, db_session, dispatcher, sample_barbershop, sample_client):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY - timedelta(days=2))
        default_rule = add_rule(db_session, sample_barbershop, "promotion", "{{promotion_details}}")
        custom_rule = add_rule(
            db_session, sample_barbershop, "promotion", "{{promotion_details}}", promotion_details="Barba grátis"
        )

        assert dispatcher.find_candidates(default_rule, TODAY)[0]["promotion_details"].startswith("Desconto")
        assert dispatcher.find_candidates(custom_rule, TODAY)[0]["promotion_details"] == "Barba grátis"


@pytest.mark.automations
class TestDispatch:
    @pytest.mark.anyio
    async def test_process_sends_and_logs(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client
    ):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=1), start_time="09:30")
        add_rule(db_session, sample_barbershop, "reminder", "{{client_name}}, amanhã às {{appointment_time}}")

        result = await dispatcher.process(sample_barbershop.id, TODAY)

        assert result == {"executed": 1, "failed": 0}
        execution = db_session.query(AutomationExecution).one()
        assert execution.status == "sent"
        assert execution.message == "João Silva, amanhã às 09:30"
        message = db_session.query(WhatsAppMessage).one()
        assert message.phone_number == "5511999998888"
        assert message.external_id == "MSG-1"

    @pytest.mark.anyio
    async def test_one_failure_does_not_stop_the_run(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client
    ):
        no_phone = Client(barbershop_id=sample_barbershop.id, name="Sem Telefone")
        db_session.add(no_phone)
        db_session.commit()
        tomorrow = TODAY + timedelta(days=1)
        add_appointment(db_session, sample_barbershop, no_phone, tomorrow, start_time="08:00")
        add_appointment(db_session, sample_barbershop, sample_client, tomorrow, start_time="09:00")
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete")

        result = await dispatcher.process(sample_barbershop.id, TODAY)

        assert result == {"executed": 1, "failed": 1}
        statuses = {e.client_id: e.status for e in db_session.query(AutomationExecution).all()}
        assert statuses == {no_phone.id: "failed", sample_client.id: "sent"}

    @pytest.mark.anyio
    async def test_disconnected_whatsapp_marks_execution_failed(
        self, db_session, dispatcher, gateway, connected_instance, sample_barbershop, sample_client
    ):
        connected_instance.status = "disconnected"
        db_session.commit()
        add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=1))
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete")

        result = await dispatcher.process(sample_barbershop.id, TODAY)

        assert result == {"executed": 0, "failed": 1}
        execution = db_session.query(AutomationExecution).one()
        assert execution.error_message == "WhatsApp is not connected"
        assert gateway.calls == []

    @pytest.mark.anyio
    async def test_no_active_rules(self, db_session, dispatcher, sample_barbershop):
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete", is_active=False)
        result = await dispatcher.process(sample_barbershop.id, TODAY)
        assert result["executed"] == 0
        assert result["message"] == "No active rules found"

    @pytest.mark.anyio
    async def test_event_rules_are_not_part_of_the_daily_run(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client
    ):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=1))
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete", trigger_type=REMINDER_TRIGGER)

        result = await dispatcher.process(sample_barbershop.id, TODAY)

        assert result["executed"] == 0
        assert gateway_accepts_messages.calls == []

    @pytest.mark.anyio
    async def test_staff_only_rule_never_hits_the_gateway(
        self, db_session, dispatcher, gateway, sample_barbershop, sample_admin, sample_client
    ):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=1))
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete", send_whatsapp=False, notify_staff=True)

        result = await dispatcher.process(sample_barbershop.id, TODAY)

        assert result == {"executed": 1, "failed": 0}
        assert gateway.calls == []

    @pytest.mark.anyio
    async def test_dispatch_for_appointment(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client
    ):
        appointment = add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=2))
        rule = add_rule(db_session, sample_barbershop, "reminder", "Confirmado", trigger_type="appointment_created")
        add_rule(db_session, sample_barbershop, "reminder", "Outro evento", trigger_type="appointment_cancelled")

        result = await dispatcher.dispatch_for_appointment(appointment.id, "appointment_created")

        assert result["appointmentId"] == appointment.id
        assert [r["ruleId"] for r in result["results"]] == [rule.id]
        assert result["results"][0]["status"] == "sent"

    @pytest.mark.anyio
    async def test_unexpected_send_error_is_contained(
        self, db_session, dispatcher, connected_instance, sample_barbershop, sample_client, monkeypatch
    ):
        async def exploding_send(*args, **kwargs):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(dispatcher.whatsapp, "send_message", exploding_send)
        appointment = add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=2))
        add_rule(db_session, sample_barbershop, "reminder", "Confirmado", trigger_type="appointment_created")
        add_rule(db_session, sample_barbershop, "reminder", "Até logo", trigger_type="appointment_created")

        result = await dispatcher.dispatch_for_appointment(appointment.id, "appointment_created")

        assert [r["status"] for r in result["results"]] == ["failed", "failed"]
        executions = db_session.query(AutomationExecution).all()
        assert [e.status for e in executions] == ["failed", "failed"]
        assert all(e.error_message == "Unexpected error: socket closed" for e in executions)

    @pytest.mark.anyio
    async def test_reminder_sweep_continues_after_unexpected_error(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client, monkeypatch
    ):
        other = Client(barbershop_id=sample_barbershop.id, name="Pedro", phone="11977776666")
        db_session.add(other)
        db_session.commit()
        tomorrow = TODAY + timedelta(days=1)
        add_appointment(db_session, sample_barbershop, sample_client, tomorrow, start_time="08:00")
        add_appointment(db_session, sample_barbershop, other, tomorrow, start_time="09:00")
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete", trigger_type=REMINDER_TRIGGER)
        real_send = dispatcher.whatsapp.send_message

        async def flaky_send(barbershop_id, phone, text, *args, **kwargs):
            if phone == sample_client.phone:
                raise RuntimeError("socket closed")
            return await real_send(barbershop_id, phone, text, *args, **kwargs)

        monkeypatch.setattr(dispatcher.whatsapp, "send_message", flaky_send)

        result = await dispatcher.send_appointment_reminders(TODAY)

        assert result == {"sent": 1, "skipped": 0, "failed": 1}
        statuses = {e.client_id: e.status for e in db_session.query(AutomationExecution).all()}
        assert statuses == {sample_client.id: "failed", other.id: "sent"}

    @pytest.mark.anyio
    async def test_dispatch_for_unknown_appointment(self, dispatcher):
        with pytest.raises(HTTPException) as exc:
            await dispatcher.dispatch_for_appointment(999, "appointment_created")
        assert exc.value.status_code == 404

    @pytest.mark.anyio
    async def test_reminders_are_sent_once_per_appointment(
        self, db_session, dispatcher, gateway_accepts_messages, sample_barbershop, sample_client
    ):
        add_appointment(db_session, sample_barbershop, sample_client, TODAY + timedelta(days=1))
        add_rule(db_session, sample_barbershop, "reminder", "Lembrete", trigger_type=REMINDER_TRIGGER)

        first = await dispatcher.send_appointment_reminders(TODAY)
        second = await dispatcher.send_appointment_reminders(TODAY)

        assert first == {"sent": 1, "skipped": 0, "failed": 0}
        assert second == {"sent": 0, "skipped": 1, "failed": 0}
        assert len(gateway_accepts_messages.calls) == 1
