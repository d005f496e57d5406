import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.permissions import IsPassenger, IsVerifiedDriver
from common.responses import dispatch_error_response
from services.dispatch.coordinator import DispatchCoordinator
from services.exceptions import DispatchError
from services.ride_management import ride_lifecycle
from .serializers import (
    RideRequestSerializer,
    RideRequestCreateSerializer,
    RideAcceptSerializer,
    RideStatusUpdateSerializer,
)

logger = logging.getLogger(__name__)


def get_coordinator() -> DispatchCoordinator:
    return DispatchCoordinator()


# ==================== Passenger Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsPassenger])
def request_ride(request):
    """Price a trip, store it as `requested` and notify drivers."""
    serializer = RideRequestCreateSerializer(data=request.data, context={'request': request})
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = get_coordinator().request_ride(request.user, serializer.pickup, serializer.dropoff)
    except DispatchError as exc:
        return dispatch_error_response(exc)

    ride = result.ride
    return Response({
        'rideId': ride.id,
        'fare': ride.fare,
        'distanceKm': float(ride.distance_km),
        'message': result.message,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsPassenger])
def my_rides(request):
    """Passenger's ride history, newest first."""
    rides = ride_lifecycle.list_passenger_rides(request.user)
    serializer = RideRequestSerializer(rides, many=True)
    return Response({'count': len(serializer.data), 'rides': serializer.data})


# ==================== Driver Ride APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated, IsVerifiedDriver])
def open_rides(request):
    """Rides still waiting for a driver (fallback for drivers that were offline)."""
    rides = ride_lifecycle.list_open_rides()
    serializer = RideRequestSerializer(rides, many=True)
    return Response({'count': len(serializer.data), 'rides': serializer.data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsVerifiedDriver])
def accept_ride(request):
    """Accept a ride; exactly one driver wins when several accept at once."""
    serializer = RideAcceptSerializer(data=request.data, context={'request': request})
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = get_coordinator().accept_ride(request.user, serializer.validated_data['rideId'])
    except DispatchError as exc:
        return dispatch_error_response(exc)

    return Response({
        'success': True,
        'rideId': result.ride.id,
        'message': result.message,
    })


# ==================== Shared Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_ride_status(request):
    """Decline, cancel or complete a ride the caller takes part in."""
    serializer = RideStatusUpdateSerializer(data=request.data, context={'request': request})
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        result = get_coordinator().update_ride_status(request.user, data['rideId'], data['newStatus'])
    except DispatchError as exc:
        return dispatch_error_response(exc)

    return Response({
        'success': True,
        'rideId': result.ride.id,
        'status': result.ride.status,
        'message': result.message,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    try:
        ride = ride_lifecycle.get_ride_for_participant(request.user, ride_id)
    except DispatchError as exc:
        return dispatch_error_response(exc)
    return Response(RideRequestSerializer(ride).data)
