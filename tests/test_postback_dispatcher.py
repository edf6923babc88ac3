import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from sqlalchemy import select

from backoffice.core.exceptions import ValidationError
from backoffice.models import PostbackNotification
from backoffice.services.lead_state import NewLead, create_lead
from backoffice.services.postback_dispatcher import (
    AiohttpPostbackSender,
    PostbackDispatcher,
    PostbackVariables,
    SendOutcome,
    build_lead_payload,
    render_postback_url,
    validate_postback_url,
)

TIMEOUT = SendOutcome(False, error_message="Request timeout after 10s")


@pytest_asyncio.fixture
async def lead(db_session, affiliate, product):
    data = NewLead(
        customer_name="Maria Lopez",
        customer_phone="11 2345-6789",
        customer_phone_formatted="1123456789",
        quantity=2,
    )
    return await create_lead(db_session, affiliate, product, data, Decimal("20.00"))


def _dispatcher(session_factory, sender, sleeps=None):
    async def record_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return PostbackDispatcher(
        session_factory,
        sender,
        max_retries=3,
        retry_delays=[1, 5, 15],
        sleep=record_sleep,
    )


async def _notifications(session_factory):
    async with session_factory() as session:
        return list((await session.scalars(select(PostbackNotification))).all())


def test_render_replaces_every_placeholder():
    variables = PostbackVariables(lead_id=42, status="sale", payout="20.00", publisher_id="PUB1", product="Crema Facial")
    url = render_postback_url(
        "https://t.example.com/?a={leadId}&b={leadid}&c={status}&d={payout}"
        "&e={publisherId}&f={publisherid}&g={product}&h={producto}",
        variables,
    )
    assert url == (
        "https://t.example.com/?a=42&b=42&c=sale&d=20.00"
        "&e=PUB1&f=PUB1&g=Crema%20Facial&h=Crema%20Facial"
    )


@pytest.mark.parametrize("url", ["not a url", "ftp://example.com/pb", "https://", ""])
def test_invalid_urls_are_rejected(url):
    with pytest.raises(ValidationError):
        validate_postback_url(url)


def test_placeholder_urls_are_valid():
    assert validate_postback_url("  https://t.example.com/pb?id={leadId}  ") == "https://t.example.com/pb?id={leadId}"


@pytest.mark.asyncio
async def test_lead_payload_fields(lead):
    payload = build_lead_payload(lead, "Crema Facial", "sale", "hold")
    assert payload["leadId"] == lead.id
    assert payload["leadNumber"] == lead.lead_number
    assert payload["payout"] == "40.00"
    assert payload["value"] == "200.00"
    assert payload["previousStatus"] == "hold"
    assert "previousStatus" not in build_lead_payload(lead, "Crema Facial", "sale")


@pytest.mark.asyncio
async def test_missing_config_sends_nothing(session_factory, lead, make_sender):
    sender = make_sender()
    result = await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale")

    assert result is None
    assert sender.calls == []
    assert await _notifications(session_factory) == []


@pytest.mark.asyncio
async def test_disabled_config_sends_nothing(db_session, session_factory, postback_config, lead, make_sender):
    postback_config.is_enabled = False
    await db_session.commit()

    sender = make_sender()
    assert await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale") is None
    assert sender.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["rejected", "trash"])
async def test_status_without_url_sends_nothing(session_factory, postback_config, lead, status, make_sender):
    sender = make_sender()
    assert await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, status) is None
    assert sender.calls == []


@pytest.mark.asyncio
async def test_successful_dispatch(session_factory, affiliate, postback_config, lead, make_sender):
    sender = make_sender()
    record = await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale", "hold")

    assert record.status == "success"
    assert record.http_status == 200
    assert record.retry_count == 0
    assert record.lead_id == lead.id

    url, payload = sender.calls[0]
    assert url == (
        f"https://tracker.example.com/pb?id={lead.id}&s=sale&p=40.00"
        f"&pub={affiliate.id}&prod=Crema%20Facial"
    )
    assert payload["status"] == "sale"
    assert payload["previousStatus"] == "hold"
    assert payload["productName"] == "Crema Facial"

    rows = await _notifications(session_factory)
    assert len(rows) == 1
    assert rows[0].status == "success"


@pytest.mark.asyncio
async def test_publisher_id_is_used_when_present(
    db_session, session_factory, affiliate, product, postback_config, make_sender
):
    data = NewLead(
        customer_name="Ana",
        customer_phone="1199999999",
        customer_phone_formatted="1199999999",
        publisher_id="PUB7",
    )
    lead = await create_lead(db_session, affiliate, product, data, Decimal("20.00"))

    sender = make_sender()
    await _dispatcher(session_factory, sender).dispatch(affiliate.id, lead.id, "sale")
    assert "&pub=PUB7&" in sender.calls[0][0]


@pytest.mark.asyncio
async def test_lowercase_placeholders(session_factory, postback_config, lead, make_sender):
    sender = make_sender()
    await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "hold")
    assert sender.calls[0][0] == f"https://tracker.example.com/hold?id={lead.id}"


@pytest.mark.asyncio
async def test_retries_until_exhausted(db_session, session_factory, postback_config, lead, make_sender):
    sender = make_sender([TIMEOUT] * 4)
    sleeps = []

    record = await _dispatcher(session_factory, sender, sleeps).dispatch(lead.user_id, lead.id, "sale")

    assert record.status == "failed"
    assert record.retry_count == 3
    assert record.error_message == "Request timeout after 10s"
    assert len(sender.calls) == 4
    assert sleeps == [1, 5, 15]

    # Delivery failures never touch the lead
    await db_session.refresh(lead)
    assert lead.status == "pending"
    assert lead.version == 1


@pytest.mark.asyncio
async def test_retry_then_success(session_factory, postback_config, lead, make_sender):
    sender = make_sender([SendOutcome(False, 503, "busy", "HTTP 503: Service Unavailable")])

    record = await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale")

    assert record.status == "success"
    assert record.retry_count == 1
    assert record.error_message is None
    assert len(sender.calls) == 2

    rows = await _notifications(session_factory)
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_zero_retries_makes_one_attempt(session_factory, postback_config, lead, make_sender):
    sender = make_sender([TIMEOUT])
    dispatcher = PostbackDispatcher(session_factory, sender, max_retries=0, retry_delays=[1])

    record = await dispatcher.dispatch(lead.user_id, lead.id, "sale")
    assert record.status == "failed"
    assert record.retry_count == 0
    assert len(sender.calls) == 1


@pytest.mark.asyncio
async def test_sender_exceptions_become_failures(session_factory, postback_config, lead, make_sender):
    sender = make_sender([ValueError("boom")] * 4)

    record = await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale")
    assert record.status == "failed"
    assert record.error_message == "Unexpected error: boom"


@pytest.mark.asyncio
async def test_response_body_and_error_are_truncated(session_factory, postback_config, lead, make_sender):
    sender = make_sender([SendOutcome(False, 500, "x" * 5000, "e" * 2000)] * 4)

    record = await _dispatcher(session_factory, sender).dispatch(lead.user_id, lead.id, "sale")
    assert len(record.response_body) == 1000
    assert len(record.error_message) == 500


@pytest.mark.asyncio
async def test_send_test_uses_sample_values(session_factory, affiliate, make_sender):
    sender = make_sender()
    record = await _dispatcher(session_factory, sender).send_test(
        affiliate.id, "https://tracker.example.com/t?id={leadId}&p={payout}&prod={product}"
    )

    assert record.status == "success"
    assert record.lead_id is None
    assert record.target_status == "sale"

    url, payload = sender.calls[0]
    assert url == "https://tracker.example.com/t?id=999999&p=25.00&prod=Test%20Product"
    assert payload["test"] is True
    assert payload["publisherId"] == str(affiliate.id)


@pytest.mark.asyncio
async def test_send_test_rejects_invalid_url(session_factory, affiliate, make_sender):
    sender = make_sender()
    with pytest.raises(ValidationError):
        await _dispatcher(session_factory, sender).send_test(affiliate.id, "javascript:alert(1)")
    assert sender.calls == []


@pytest_asyncio.fixture
async def tracker():
    received = []

    async def ok(request):
        received.append(await request.json())
        return web.Response(text="OK")

    async def down(request):
        return web.Response(status=502, text="upstream down")

    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text="late")

    app = web.Application()
    app.router.add_post("/ok", ok)
    app.router.add_post("/down", down)
    app.router.add_post("/slow", slow)

    server = TestServer(app)
    await server.start_server()
    server.received = received
    yield server
    await server.close()


@pytest.mark.asyncio
async def test_aiohttp_sender_posts_json(tracker):
    sender = AiohttpPostbackSender(timeout_seconds=2, user_agent="test-agent")
    try:
        outcome = await sender.send(str(tracker.make_url("/ok")), {"leadId": 1})
    finally:
        await sender.close()

    assert outcome == SendOutcome(True, 200, "OK")
    assert tracker.received == [{"leadId": 1}]


@pytest.mark.asyncio
async def test_aiohttp_sender_reports_http_errors(tracker):
    sender = AiohttpPostbackSender(timeout_seconds=2, user_agent="test-agent")
    try:
        outcome = await sender.send(str(tracker.make_url("/down")), {})
    finally:
        await sender.close()

    assert not outcome.success
    assert outcome.http_status == 502
    assert outcome.response_body == "upstream down"
    assert outcome.error_message == "HTTP 502: Bad Gateway"


@pytest.mark.asyncio
async def test_aiohttp_sender_times_out(tracker):
    sender = AiohttpPostbackSender(timeout_seconds=0.1, user_agent="test-agent")
    try:
        outcome = await sender.send(str(tracker.make_url("/slow")), {})
    finally:
        await sender.close()

    assert not outcome.success
    assert outcome.http_status is None
    assert outcome.error_message == "Request timeout after 0.1s"
