import hmac
import json
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from voice.tools import TOOLS

logger = logging.getLogger(__name__)


def _tool_arguments(function: dict) -> dict:
    arguments = function.get("arguments", function.get("args")) or {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            return {}
    return arguments if isinstance(arguments, dict) else {}


class VapiWebhookView(APIView):
    """Handle tool calls from the Vapi voice assistant."""

    permission_classes: list = []
    authentication_classes: list = []

    def _is_authorized(self, request) -> bool:
        secret = settings.VAPI_WEBHOOK_SECRET
        if not secret:
            return True
        provided = request.META.get("HTTP_X_VAPI_SECRET", "")
        return hmac.compare_digest(provided.encode(), secret.encode())

    def post(self, request, *args, **kwargs):
        if not self._is_authorized(request):
            logger.warning("Rejected voice webhook with bad secret from %s", request.META.get("REMOTE_ADDR"))
            return Response({"error": "Unauthorized"}, status=status.HTTP_401_UNAUTHORIZED)

        message = request.data.get("message") if isinstance(request.data, dict) else None
        if not isinstance(message, dict) or message.get("type") != "tool-calls":
            return Response({"message": "OK"})

        results = []
        for tool_call in message.get("toolCalls") or []:
            function = tool_call.get("function") or {}
            name = function.get("name")
            tool = TOOLS.get(name)
            if tool is None:
                logger.info("Voice assistant called unknown tool %s", name)
                result = f"Error: Unknown tool {name}."
            else:
                result = tool(_tool_arguments(function))
            results.append({"toolCallId": tool_call.get("id"), "result": result})

        return Response({"results": results})
