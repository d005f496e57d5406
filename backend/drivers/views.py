from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAdminUser, IsAuthenticated

from common.responses import dispatch_error_response
from drivers.serializers import (
    ApplicationDecisionSerializer,
    DriverApplicationSerializer,
    DriverApplicationSubmitSerializer,
)
from services.dispatch.coordinator import DispatchCoordinator
from services.exceptions import DispatchError


class DriverApplicationView(APIView):
    """
    POST: submit documents to become a driver.

    File fields carry references to files already stored by the upload
    service, e.g. "license_photo": "uploads/ab12.jpg".
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = DriverApplicationSubmitSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)

        try:
            application = DispatchCoordinator().submit_application(request.user, serializer.validated_data)
        except DispatchError as exc:
            return dispatch_error_response(exc)

        return Response({
            "success": True,
            "applicationId": application.application_id,
            "message": "Application submitted for verification.",
        }, status=status.HTTP_201_CREATED)


class PendingApplicationsView(APIView):
    """GET: applications awaiting review (admin only)."""
    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            applications = DispatchCoordinator().list_pending_applications()
        except DispatchError as exc:
            return dispatch_error_response(exc)

        serializer = DriverApplicationSerializer(applications, many=True)
        return Response(serializer.data)


class ApplicationDecisionView(APIView):
    """POST: approve or reject an application (admin only)."""
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = ApplicationDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            application = DispatchCoordinator().decide_application(
                request.user,
                data["applicationId"],
                data["verdict"],
                user_id=data.get("userId"),
            )
        except DispatchError as exc:
            return dispatch_error_response(exc)

        return Response({
            "success": True,
            "applicationId": application.application_id,
            "status": application.status,
            "message": "Status updated",
        })
