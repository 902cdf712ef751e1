# tests/test_handlers.py
import pandas as pd
import pytest

from app.jobs.errors import PermanentJobError, TransientJobError
from app.jobs.handlers import (
    EmailJobHandler,
    InventoryJobHandler,
    JobContext,
    JobHandler,
    ReportsJobHandler,
    SmsJobHandler,
)
from app.jobs.payloads import JobCategory, parse_payload
from app.services.notifications import EmailRenderer
from app.services.reports import ReportWriter
from tests.helpers.fakes import ScriptedNotifications


async def claim_context(dispatcher, category, payload):
    job_id = await dispatcher.enqueue(category, payload)
    job = await dispatcher.claim_next(category, "w1", 60)
    assert job.id == job_id
    return parse_payload(category, job.payload), JobContext(job, dispatcher)


async def reload_context(dispatcher, job_id):
    return JobContext(await dispatcher.get(job_id), dispatcher)


@pytest.fixture
def renderer():
    return EmailRenderer("Bistro Bay", "http://localhost:3000")


async def test_bulk_email_retry_only_contacts_pending_recipients(dispatcher, renderer):
    notifications = ScriptedNotifications(transient={"b@example.com"}, permanent={"gone@example.com"})
    handler = EmailJobHandler(notifications, renderer)
    payload, ctx = await claim_context(dispatcher, "email", {
        "type": "general",
        "to": ["a@example.com", "b@example.com", "not-an-email", "gone@example.com", "a@example.com"],
        "subject": "Menu update",
        "data": {"message": "New spring menu"},
    })

    with pytest.raises(TransientJobError) as exc:
        await handler.handle(payload, ctx)
    assert exc.value.result == {
        "sent": ["a@example.com"],
        "rejected": ["not-an-email", "gone@example.com"],
        "pending": ["b@example.com"],
    }
    assert notifications.recipients("email") == ["a@example.com", "b@example.com", "gone@example.com"]

    # Next attempt: the provider recovered for b
    notifications.transient.clear()
    retry_ctx = await reload_context(dispatcher, ctx.job_id)
    summary = await handler.handle(payload, retry_ctx)

    assert notifications.recipients("email")[3:] == ["b@example.com"]
    assert summary["sent"] == ["a@example.com", "b@example.com"]
    assert summary["pending"] == []


async def test_all_recipients_rejected_is_permanent(dispatcher, renderer):
    handler = EmailJobHandler(ScriptedNotifications(), renderer)
    payload, ctx = await claim_context(dispatcher, "email", {
        "type": "general", "to": ["nope", "also nope"], "subject": "Hi",
    })

    with pytest.raises(PermanentJobError) as exc:
        await handler.handle(payload, ctx)
    assert exc.value.result["rejected"] == ["nope", "also nope"]


async def test_sms_numbers_are_normalized(dispatcher):
    notifications = ScriptedNotifications()
    handler = SmsJobHandler(notifications, default_country_code="+1")
    payload, ctx = await claim_context(dispatcher, "sms", {
        "type": "order-status",
        "to": ["(555) 123-4567", "0044 20 7946 0958", "12"],
        "message": "Your order is ready",
    })

    summary = await handler.handle(payload, ctx)

    assert notifications.recipients("sms") == ["+15551234567", "+442079460958"]
    assert summary["sent"] == ["(555) 123-4567", "0044 20 7946 0958"]
    assert summary["rejected"] == ["12"]


async def test_whatsapp_channel(dispatcher):
    notifications = ScriptedNotifications()
    handler = SmsJobHandler(notifications)
    payload, ctx = await claim_context(dispatcher, "sms", {
        "type": "waitlist-ready", "to": "+15551234567", "message": "Table ready", "use_whatsapp": True,
    })

    await handler.handle(payload, ctx)
    assert notifications.calls == [("whatsapp", "+15551234567")]


def test_handler_routes_must_cover_every_variant():
    class PartialHandler(JobHandler):
        category = JobCategory.INVENTORY

        def routes(self):
            return {"deduct-stock": None}

    with pytest.raises(RuntimeError, match="check-low-stock"):
        PartialHandler()


async def test_deduct_stock_job_resumes_after_partial_progress(dispatcher, deduction, scanner, seed):
    await seed.item("bun")
    await seed.item("patty")
    await seed.stock("1", "bun", 10)
    await seed.stock("1", "patty", 10)
    await seed.recipe("burger", {"bun": 1, "patty": 1})

    handler = InventoryJobHandler(deduction, scanner)
    payload, ctx = await claim_context(dispatcher, "inventory", {
        "type": "deduct-stock",
        "order_id": "ORD-7",
        "location_id": "1",
        "items": [{"item_id": "burger", "quantity": 2}],
    })

    first = await handler.handle(payload, ctx)
    assert first["fully_applied"] is True
    assert set((await dispatcher.get(ctx.job_id)).progress) == {"0:burger:bun", "0:burger:patty"}

    # A retry of the same job must not deduct again
    second = await handler.handle(payload, await reload_context(dispatcher, ctx.job_id))
    assert second["applied"] == []
    assert sorted(second["already_applied"]) == ["0:burger:bun", "0:burger:patty"]
    assert await seed.current_stock("1", "bun") == 8
    assert len(await seed.movements()) == 2


async def test_report_job_notifies_once(dispatcher, session_factory, settings, clock, seed):
    await seed.item("flour", minimum=5)
    await seed.stock("1", "flour", 3)

    writer = ReportWriter(session_factory, settings.report_directory, clock=clock)
    handler = ReportsJobHandler(writer, dispatcher)
    payload, ctx = await claim_context(dispatcher, "reports", {
        "type": "inventory-report", "location_id": "1", "format": "csv", "email": "manager@example.com",
    })

    result = await handler.handle(payload, ctx)
    assert result["rows"] == 1
    frame = pd.read_csv(result["path"])
    assert frame.loc[0, "item_id"] == "flour"
    assert bool(frame.loc[0, "low_stock"]) is True

    again = await handler.handle(payload, await reload_context(dispatcher, ctx.job_id))
    assert again["email_job_id"] == result["email_job_id"]

    counts = await dispatcher.counts()
    assert counts["email"] == {"waiting": 1}
    email_job = await dispatcher.get(result["email_job_id"])
    assert email_job.payload["type"] == "report-ready"
    assert email_job.payload["to"] == ["manager@example.com"]
