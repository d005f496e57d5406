from rest_framework import serializers

from common.utils.geo import is_valid_coordinate
from .models import RideRequest


class ClaimedUserMixin:
    """Client-sent user ids are only accepted when they match the token's user."""

    def check_claimed_user(self, value, field_name):
        request = self.context.get('request')
        if value is not None and request is not None and value != request.user.id:
            raise serializers.ValidationError({field_name: 'Does not match the authenticated user'})


class RideRequestSerializer(serializers.ModelSerializer):
    """Serializer for Ride Requests"""
    distance_km = serializers.FloatField(read_only=True)

    class Meta:
        model = RideRequest
        fields = ['id', 'passenger', 'driver', 'pickup_latitude', 'pickup_longitude',
                  'dropoff_latitude', 'dropoff_longitude', 'distance_km', 'fare',
                  'status', 'status_updated_by', 'requested_at', 'accepted_at',
                  'completed_at', 'cancelled_at']
        read_only_fields = fields


class RideRequestCreateSerializer(ClaimedUserMixin, serializers.Serializer):
    """Serializer for creating ride requests"""
    passengerId = serializers.IntegerField(required=False, allow_null=True)
    pickupLat = serializers.FloatField(min_value=-90, max_value=90)
    pickupLng = serializers.FloatField(min_value=-180, max_value=180)
    dropLat = serializers.FloatField(min_value=-90, max_value=90)
    dropLng = serializers.FloatField(min_value=-180, max_value=180)

    def validate(self, data):
        self.check_claimed_user(data.get('passengerId'), 'passengerId')
        if not is_valid_coordinate(data['pickupLat'], data['pickupLng']):
            raise serializers.ValidationError({'pickup': 'Invalid pickup coordinates'})
        if not is_valid_coordinate(data['dropLat'], data['dropLng']):
            raise serializers.ValidationError({'dropoff': 'Invalid drop-off coordinates'})
        return data

    @property
    def pickup(self):
        return (self.validated_data['pickupLat'], self.validated_data['pickupLng'])

    @property
    def dropoff(self):
        return (self.validated_data['dropLat'], self.validated_data['dropLng'])


class RideAcceptSerializer(ClaimedUserMixin, serializers.Serializer):
    """Serializer for a driver accepting a ride"""
    rideId = serializers.IntegerField(min_value=1)
    driverId = serializers.IntegerField(required=False, allow_null=True)
    # Accepted for client compatibility; events use the stored passenger.
    passengerId = serializers.IntegerField(required=False, allow_null=True)

    def validate(self, data):
        self.check_claimed_user(data.get('driverId'), 'driverId')
        return data


class RideStatusUpdateSerializer(ClaimedUserMixin, serializers.Serializer):
    """Serializer for declining, cancelling or completing a ride"""
    rideId = serializers.IntegerField(min_value=1)
    newStatus = serializers.CharField()
    actingUserId = serializers.IntegerField(required=False, allow_null=True)

    def validate(self, data):
        self.check_claimed_user(data.get('actingUserId'), 'actingUserId')
        return data
