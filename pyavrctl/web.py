"""aiohttp web service for the Alexa skill.

Only one route is needed to accept json POST requests from Alexa. All
other routes return 404.
"""

import logging
from typing import Optional

from aiohttp import web

from pyavrctl.receiver import AvrReceiver
from pyavrctl.skill import MalformedRequest, SkillHandler

HANDLER_KEY = web.AppKey("skill_handler", SkillHandler)
APPLICATION_ID_KEY = web.AppKey("application_id", str)
RECEIVER_KEY = web.AppKey("receiver", AvrReceiver)

_logger = logging.getLogger(__name__)


def _application_id(body: dict) -> Optional[str]:
    for path in (("context", "System", "application"), ("session", "application")):
        section = body
        for key in path:
            section = section.get(key) if isinstance(section, dict) else None
        if isinstance(section, dict) and section.get("applicationId"):
            return section["applicationId"]
    return None


async def handle_skill_request(request: web.Request) -> web.Response:
    _logger.info("Request received...")
    try:
        body = await request.json()
    except ValueError as e:
        _logger.error(f"Could not deserialize request: {e}")
        raise web.HTTPBadRequest()
    if not isinstance(body, dict):
        _logger.error("Could not deserialize request: body is not an object")
        raise web.HTTPBadRequest()
    _logger.debug(f"{body}")

    expected_id = request.app.get(APPLICATION_ID_KEY)
    if expected_id and _application_id(body) != expected_id:
        _logger.error(f"Request is for application {_application_id(body)!r}, not this skill")
        raise web.HTTPBadRequest()

    try:
        response = await request.app[HANDLER_KEY].handle(body)
    except MalformedRequest as e:
        _logger.error(f"Malformed skill request: {e}")
        raise web.HTTPBadRequest()
    _logger.info("Sending back response...")
    _logger.debug(f"{response}")
    return web.json_response(response)


def create_app(handler: SkillHandler, application_id: Optional[str] = None) -> web.Application:
    app = web.Application()
    app[HANDLER_KEY] = handler
    if application_id:
        app[APPLICATION_ID_KEY] = application_id
    app.router.add_post("/", handle_skill_request)
    return app


async def _start_receiver(app: web.Application):
    await app[RECEIVER_KEY].start()


async def _close_receiver(app: web.Application):
    await app[RECEIVER_KEY].close()


def create_receiver_app(receiver: AvrReceiver, application_id: Optional[str] = None) -> web.Application:
    """Web app whose lifetime also drives the receiver connection."""
    app = create_app(SkillHandler(receiver.dispatcher), application_id)
    app[RECEIVER_KEY] = receiver
    app.on_startup.append(_start_receiver)
    app.on_cleanup.append(_close_receiver)
    return app


def run_app(receiver: AvrReceiver, port=8080, application_id: Optional[str] = None):
    _logger.info(f"Starting server on 0.0.0.0:{port}")
    web.run_app(create_receiver_app(receiver, application_id), host="0.0.0.0", port=port)
