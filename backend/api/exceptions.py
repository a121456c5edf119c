import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .analytics import AnalyticsError

logger = logging.getLogger(__name__)


def exception_handler(exc, context):
    """
    DRF handler plus two cases:
    - AnalyticsError (bad caller input to the engine) -> 400
    - anything unhandled -> logged, 500 with a generic message (detail only in DEBUG)
    """
    response = drf_exception_handler(exc, context)
    if response is not None:
        return response

    if isinstance(exc, AnalyticsError):
        return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

    view = context.get("view")
    logger.exception("Unhandled error in %s", view.__class__.__name__ if view else "view")
    message = str(exc) if settings.DEBUG else "Internal server error"
    return Response({"error": message}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
