"""Server-Sent-Events stream of realtime events."""

from __future__ import annotations

import json

import structlog
from django.conf import settings  # type: ignore
from django.http import StreamingHttpResponse  # type: ignore
from rest_framework import permissions, renderers, status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.users.identity import identity_for

from .services import session_registry
from .transport import ConnectionClosed, QueueConnection

logger = structlog.get_logger(__name__)


class EventStreamRenderer(renderers.BaseRenderer):
    media_type = "text/event-stream"
    format = "sse"
    charset = None

    def render(self, data, accepted_media_type=None, renderer_context=None):
        return json.dumps(data).encode() if data is not None else b""


def format_sse(message: dict) -> str:
    return f"event: {message['kind']}\ndata: {json.dumps(message)}\n\n"


def event_stream(connection: QueueConnection, subscriber_id, heartbeat: float):
    """Yield SSE frames until the client goes away"""
    try:
        yield f"event: ready\ndata: {json.dumps({'subscriberId': str(subscriber_id)})}\n\n"
        while True:
            try:
                message = connection.receive(timeout=heartbeat)
            except ConnectionClosed:
                break
            if message is None:
                yield ": keep-alive\n\n"
                continue
            yield format_sse(message)
    finally:
        session_registry.connection_lost(connection)
        connection.close()
        logger.info("realtime.stream_closed", subscriber_id=str(subscriber_id))


class EventStreamView(APIView):
    """
    GET /api/v1/realtime/stream/?watch=<resource_id>&watch=...

    Registers the caller's connection for the duration of the request.
    """

    permission_classes = [permissions.IsAuthenticated]
    renderer_classes = [renderers.JSONRenderer, EventStreamRenderer]

    def get(self, request):
        try:
            watched = [int(value) for value in request.query_params.getlist("watch")]
        except ValueError:
            return Response(
                {"code": "INVALID_INPUT", "detail": "watch must be a resource id"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        connection = QueueConnection(maxsize=getattr(settings, "REALTIME_QUEUE_SIZE", 100))
        subscriber_id = session_registry.register(identity_for(request.user), connection)
        for resource_id in watched:
            session_registry.watch(subscriber_id, resource_id)

        response = StreamingHttpResponse(
            event_stream(
                connection,
                subscriber_id,
                heartbeat=getattr(settings, "REALTIME_HEARTBEAT_SECONDS", 15),
            ),
            content_type="text/event-stream",
        )
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response
