from rest_framework.response import Response

from services.exceptions import DispatchError


def dispatch_error_response(exc: DispatchError) -> Response:
    """Render a service-layer error the same way across all endpoints."""
    return Response(
        {
            'success': False,
            'error': exc.error_code,
            'message': str(exc),
        },
        status=exc.status_code,
    )
