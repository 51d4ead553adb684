from __future__ import annotations

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import FakeAvr, FakeDispatcher, alexa_request, wait_for
from pyavrctl import speech
from pyavrctl.receiver import AvrReceiver
from pyavrctl.skill import SkillHandler
from pyavrctl.web import create_app, create_receiver_app


def run_with_client(app, scenario):
    async def runner():
        async with TestClient(TestServer(app)) as client:
            await scenario(client)

    asyncio.run(runner())


def test_post_returns_alexa_response():
    dispatcher = FakeDispatcher()

    async def scenario(client):
        resp = await client.post("/", json=alexa_request(intent="On"))
        assert resp.status == 200
        assert await resp.json() == {
            "version": "1.0",
            "response": {
                "shouldEndSession": True,
                "outputSpeech": {"type": "PlainText", "text": speech.OK},
            },
        }
        assert dispatcher.calls == [("TurnOn", {})]

    run_with_client(create_app(SkillHandler(dispatcher)), scenario)


def test_bad_body_is_rejected():
    dispatcher = FakeDispatcher()

    async def scenario(client):
        resp = await client.post("/", data=b"not json", headers={"Content-Type": "application/json"})
        assert resp.status == 400
        resp = await client.post("/", json=["a", "list"])
        assert resp.status == 400
        assert dispatcher.calls == []

    run_with_client(create_app(SkillHandler(dispatcher)), scenario)


def _intent_body(intent):
    body = alexa_request(intent="On")
    body["request"]["intent"] = intent
    return body


@pytest.mark.parametrize(
    "body",
    [
        {"request": "IntentRequest"},
        {"request": {"type": "IntentRequest", "intent": "On"}},
        _intent_body({"name": "On", "slots": ["x"]}),
        _intent_body({"name": "On", "slots": {"On_slot": "x"}}),
        _intent_body({"name": ["On"]}),
    ],
)
def test_malformed_envelope_is_rejected(body):
    dispatcher = FakeDispatcher()

    async def scenario(client):
        resp = await client.post("/", json=body)
        assert resp.status == 400
        assert dispatcher.calls == []

    run_with_client(create_app(SkillHandler(dispatcher)), scenario)


def test_application_id_in_odd_envelope_is_rejected():
    dispatcher = FakeDispatcher()

    async def scenario(client):
        body = alexa_request(intent="On")
        body["context"] = "System"
        body["session"] = {"application": ["amzn1.ask.skill.test"]}
        resp = await client.post("/", json=body)
        assert resp.status == 400
        assert dispatcher.calls == []

    run_with_client(create_app(SkillHandler(dispatcher), "amzn1.ask.skill.test"), scenario)


def test_application_id_is_checked():
    dispatcher = FakeDispatcher()

    async def scenario(client):
        resp = await client.post("/", json=alexa_request(intent="On", application_id="amzn1.ask.skill.other"))
        assert resp.status == 400
        assert dispatcher.calls == []

        resp = await client.post("/", json=alexa_request(intent="On"))
        assert resp.status == 200
        assert dispatcher.calls == [("TurnOn", {})]

    run_with_client(create_app(SkillHandler(dispatcher), "amzn1.ask.skill.test"), scenario)


def test_other_routes_are_not_found():
    async def scenario(client):
        resp = await client.get("/status")
        assert resp.status == 404
        resp = await client.post("/other", json=alexa_request(intent="On"))
        assert resp.status == 404

    run_with_client(create_app(SkillHandler(FakeDispatcher())), scenario)


def test_receiver_app_drives_connection():
    async def runner():
        avr = await FakeAvr({"?P": ["PWR1\r\n"], "PO": ["PWR0\r\n"]}).start()
        receiver = AvrReceiver("127.0.0.1", avr.port, enable_heartbeat=False,
                               confirm_delay=None, request_timeout=1.0)
        app = create_receiver_app(receiver)
        async with TestClient(TestServer(app)) as client:
            await wait_for(lambda: receiver.snapshot().power_valid)
            resp = await client.post("/", json=alexa_request(intent="On"))
            assert resp.status == 200
            body = await resp.json()
            assert body["response"]["outputSpeech"]["text"] == speech.OK
            assert "PO" in avr.received
            assert receiver.snapshot().power is True
        await wait_for(lambda: not receiver.is_connected)
        await avr.stop()

    asyncio.run(runner())
