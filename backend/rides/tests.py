import math
import threading
from decimal import Decimal
from unittest.mock import MagicMock, patch

from asgiref.sync import async_to_sync
from django.contrib.auth import get_user_model
from django.db import DatabaseError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate

from common.utils.geo import calculate_distance_km, is_valid_coordinate
from realtime.registry import ConnectionRegistry, Peer
from services.dispatch import events
from services.dispatch.coordinator import DispatchCoordinator
from services.exceptions import (
    ConflictError,
    DispatchError,
    ForbiddenError,
    InvalidCommandError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)
from services.pricing import FareTariff, estimate_fare
from services.ride_management import ride_lifecycle, transitions

from . import views
from .models import RideRequest

User = get_user_model()

PICKUP = (27.7000, 85.3000)
DROPOFF = (27.7172, 85.3240)


def reference_fare(p1, p2):
    lat1, lon1, lat2, lon2 = map(math.radians, (p1[0], p1[1], p2[0], p2[1]))
    a = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    road_km = 2 * 6371 * math.asin(math.sqrt(a)) * 1.5
    return road_km, max(100, int(math.floor(50 + road_km * 40 + 0.5)))


class FareEstimatorTests(SimpleTestCase):
    def test_known_trip_matches_formula(self):
        estimate = estimate_fare(PICKUP, DROPOFF)
        road_km, fare = reference_fare(PICKUP, DROPOFF)

        self.assertAlmostEqual(estimate.distance_km, road_km, places=9)
        self.assertEqual(estimate.fare, fare)
        self.assertEqual(estimate.fare, 232)
        self.assertAlmostEqual(estimate.distance_km, 4.56, delta=0.01)

    def test_estimate_is_deterministic(self):
        self.assertEqual(estimate_fare(PICKUP, DROPOFF), estimate_fare(PICKUP, DROPOFF))

    def test_distance_is_symmetric_and_zero_on_same_point(self):
        there = calculate_distance_km(*PICKUP, *DROPOFF)
        back = calculate_distance_km(*DROPOFF, *PICKUP)
        self.assertEqual(there, back)
        self.assertEqual(calculate_distance_km(*PICKUP, *PICKUP), 0)

    def test_short_trip_gets_minimum_fare(self):
        estimate = estimate_fare(PICKUP, PICKUP)
        self.assertEqual(estimate.distance_km, 0)
        self.assertEqual(estimate.fare, 100)

    def test_long_trip_scales_with_distance(self):
        # Kathmandu -> Pokhara, roughly 140 km as the crow flies
        estimate = estimate_fare((27.7172, 85.3240), (28.2096, 83.9856))
        _, fare = reference_fare((27.7172, 85.3240), (28.2096, 83.9856))
        self.assertEqual(estimate.fare, fare)
        self.assertGreater(estimate.fare, 8000)

    def test_custom_tariff(self):
        tariff = FareTariff.from_mapping({"BASE_FARE": 0, "PER_KM_RATE": 10, "MINIMUM_FARE": 0, "ROAD_FACTOR": 1})
        estimate = estimate_fare(PICKUP, DROPOFF, tariff)
        straight = calculate_distance_km(*PICKUP, *DROPOFF)
        self.assertEqual(estimate.fare, int(math.floor(straight * 10 + 0.5)))

    def test_coordinate_validation(self):
        self.assertTrue(is_valid_coordinate(27.7, 85.3))
        self.assertFalse(is_valid_coordinate(float("nan"), 85.3))
        self.assertFalse(is_valid_coordinate(91, 0))
        self.assertFalse(is_valid_coordinate(0, -181))
        self.assertFalse(is_valid_coordinate("north", 0))


class RideTransitionTests(SimpleTestCase):
    def test_accept_only_from_requested(self):
        transitions.ensure_can_accept(transitions.REQUESTED)
        for status in (transitions.ACCEPTED, transitions.DECLINED, transitions.CANCELLED, transitions.COMPLETED):
            with self.assertRaises(ConflictError):
                transitions.ensure_can_accept(status)

    def test_updates_allowed_from_active_states(self):
        for current in transitions.ACTIVE_STATUSES:
            transitions.ensure_can_update(current, transitions.DECLINED)
            transitions.ensure_can_update(current, transitions.CANCELLED)
        transitions.ensure_can_update(transitions.ACCEPTED, transitions.COMPLETED)

    def test_requested_ride_cannot_be_completed(self):
        with self.assertRaises(InvalidTransitionError):
            transitions.ensure_can_update(transitions.REQUESTED, transitions.COMPLETED)

    def test_terminal_states_are_sinks(self):
        for current in transitions.TERMINAL_STATUSES:
            for target in transitions.UPDATE_TARGETS:
                with self.assertRaises(InvalidTransitionError):
                    transitions.ensure_can_update(current, target)

    def test_unknown_target_rejected(self):
        with self.assertRaises(InvalidCommandError):
            transitions.ensure_can_update(transitions.REQUESTED, transitions.ACCEPTED)
        with self.assertRaises(InvalidCommandError):
            transitions.ensure_can_update(transitions.REQUESTED, "teleported")


class RideTestMixin:
    def setUp(self):
        self.passenger = User.objects.create_user(username='passenger', password='pass1234', role='passenger')
        self.other_passenger = User.objects.create_user(username='other', password='pass1234', role='passenger')
        self.drivers = [
            User.objects.create_user(
                username=f'driver_{i}', password='driver1234', role='driver', is_verified=True,
            )
            for i in range(4)
        ]
        self.driver_one, self.driver_two = self.drivers[0], self.drivers[1]

    def create_ride(self):
        return ride_lifecycle.create_ride_request(self.passenger, PICKUP, DROPOFF).ride


class RideLifecycleTests(RideTestMixin, TestCase):
    def test_new_ride_is_requested_without_driver(self):
        result = ride_lifecycle.create_ride_request(self.passenger, PICKUP, DROPOFF)
        ride = RideRequest.objects.get(pk=result.ride.id)

        self.assertEqual(ride.status, 'requested')
        self.assertIsNone(ride.driver_id)
        self.assertEqual(ride.fare, 232)
        self.assertEqual(ride.distance_km, Decimal('4.56'))
        self.assertIn('232', result.message)

    def test_accepts_after_the_first_conflict(self):
        ride = self.create_ride()
        outcomes = []
        for driver in self.drivers:
            try:
                ride_lifecycle.accept_ride(driver, ride.id)
                outcomes.append(('accepted', driver))
            except ConflictError:
                outcomes.append(('conflict', driver))

        winners = [driver for outcome, driver in outcomes if outcome == 'accepted']
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(outcomes) - len(winners), len(self.drivers) - 1)

        ride.refresh_from_db()
        self.assertEqual(ride.status, 'accepted')
        self.assertEqual(ride.driver, winners[0])
        self.assertIsNotNone(ride.accepted_at)

    def test_accept_missing_ride(self):
        with self.assertRaises(NotFoundError):
            ride_lifecycle.accept_ride(self.driver_one, 9999)

    def test_accept_after_cancel_conflicts(self):
        ride = self.create_ride()
        ride_lifecycle.update_ride_status(self.passenger, ride.id, 'cancelled')
        with self.assertRaises(ConflictError):
            ride_lifecycle.accept_ride(self.driver_one, ride.id)
        ride.refresh_from_db()
        self.assertIsNone(ride.driver_id)

    def test_complete_counts_rides_for_both_parties(self):
        ride = self.create_ride()
        ride_lifecycle.accept_ride(self.driver_one, ride.id)
        result = ride_lifecycle.update_ride_status(self.driver_one, ride.id, 'completed')

        self.assertEqual(result.ride.status, 'completed')
        self.assertEqual(result.ride.driver, self.driver_one)
        self.assertIsNotNone(result.ride.completed_at)
        self.assertEqual(result.extra['previous_status'], 'accepted')
        self.passenger.refresh_from_db()
        self.driver_one.refresh_from_db()
        self.assertEqual(self.passenger.completed_rides, 1)
        self.assertEqual(self.driver_one.completed_rides, 1)

    def test_unaccepted_ride_cannot_be_completed(self):
        ride = self.create_ride()
        with self.assertRaises(InvalidTransitionError):
            ride_lifecycle.update_ride_status(self.passenger, ride.id, 'completed')

        ride.refresh_from_db()
        self.passenger.refresh_from_db()
        self.assertEqual(ride.status, 'requested')
        self.assertIsNone(ride.driver_id)
        self.assertIsNone(ride.completed_at)
        self.assertEqual(self.passenger.completed_rides, 0)

    def test_terminal_ride_cannot_be_updated(self):
        for terminal in ('completed', 'declined', 'cancelled'):
            ride = self.create_ride()
            ride_lifecycle.accept_ride(self.driver_one, ride.id)
            ride_lifecycle.update_ride_status(self.passenger, ride.id, terminal)

            for target in ('completed', 'declined', 'cancelled'):
                with self.assertRaises(InvalidTransitionError):
                    ride_lifecycle.update_ride_status(self.passenger, ride.id, target)

            ride.refresh_from_db()
            self.assertEqual(ride.status, terminal)
            self.assertEqual(ride.driver, self.driver_one)

    def test_unbound_ride_may_be_declined_by_any_driver(self):
        ride = self.create_ride()
        result = ride_lifecycle.update_ride_status(self.driver_two, ride.id, 'declined')
        self.assertEqual(result.ride.status, 'declined')
        self.assertEqual(result.ride.status_updated_by, self.driver_two)
        self.assertIsNotNone(result.ride.cancelled_at)

    def test_outsider_cannot_update(self):
        ride = self.create_ride()
        with self.assertRaises(ForbiddenError):
            ride_lifecycle.update_ride_status(self.other_passenger, ride.id, 'cancelled')

        ride_lifecycle.accept_ride(self.driver_one, ride.id)
        with self.assertRaises(ForbiddenError):
            ride_lifecycle.update_ride_status(self.driver_two, ride.id, 'declined')

    def test_ride_visibility(self):
        ride = self.create_ride()
        self.assertEqual(ride_lifecycle.get_ride_for_participant(self.passenger, ride.id), ride)
        with self.assertRaises(ForbiddenError):
            ride_lifecycle.get_ride_for_participant(self.other_passenger, ride.id)

    def test_history_keeps_terminal_rides(self):
        first = self.create_ride()
        ride_lifecycle.update_ride_status(self.passenger, first.id, 'cancelled')
        second = self.create_ride()

        history = list(ride_lifecycle.list_passenger_rides(self.passenger))
        self.assertEqual({r.id for r in history}, {first.id, second.id})
        self.assertEqual([r.id for r in ride_lifecycle.list_open_rides()], [second.id])


class ConcurrentAcceptTests(TransactionTestCase):
    """Drivers accepting the same ride at once, each on its own connection."""

    def setUp(self):
        self.passenger = User.objects.create_user(username='passenger', password='pass1234')
        self.drivers = [
            User.objects.create_user(
                username=f'racer_{i}', password='driver1234', role='driver', is_verified=True,
            )
            for i in range(6)
        ]
        self.ride = ride_lifecycle.create_ride_request(self.passenger, PICKUP, DROPOFF).ride
        self.published = []
        self.coordinator = DispatchCoordinator(publish=lambda event, audience=None: self.published.append(event))

    def test_exactly_one_concurrent_accept_wins(self):
        if connection.vendor == 'sqlite' and connection.is_in_memory_db():
            self.skipTest('threads need a file-backed test database')

        barrier = threading.Barrier(len(self.drivers))
        outcomes = []

        def attempt(driver):
            try:
                barrier.wait(timeout=10)
                self.coordinator.accept_ride(driver, self.ride.id)
                outcomes.append(('accepted', driver.id))
            except DispatchError as exc:
                outcomes.append((exc.error_code, driver.id))
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt, args=(driver,)) for driver in self.drivers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        codes = sorted(code for code, _ in outcomes)
        self.assertEqual(codes, ['accepted'] + ['conflict'] * (len(self.drivers) - 1))

        winner_id = next(driver_id for code, driver_id in outcomes if code == 'accepted')
        self.ride.refresh_from_db()
        self.assertEqual(self.ride.status, 'accepted')
        self.assertEqual(self.ride.driver_id, winner_id)
        self.assertEqual([event['type'] for event in self.published], ['RIDE_ACCEPTED'])
        self.assertEqual(self.published[0]['driverId'], winner_id)


class RecordingSender:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.received = {}

    async def __call__(self, channel_name, message):
        if channel_name in self.failing:
            raise ConnectionResetError("peer gone")
        self.received.setdefault(channel_name, []).append(message["event"])


class DispatchCoordinatorTests(RideTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.sender = RecordingSender()
        self.registry = ConnectionRegistry(sender=self.sender, send_timeout=1)
        self.coordinator = DispatchCoordinator(publish=self.publish)

        self.peers = {
            'passenger': Peer('chan.passenger', self.passenger.id, 'passenger'),
            'other': Peer('chan.other', self.other_passenger.id, 'passenger'),
            'driver_one': Peer('chan.driver_one', self.driver_one.id, 'driver'),
            'driver_two': Peer('chan.driver_two', self.driver_two.id, 'driver'),
        }
        for peer in self.peers.values():
            async_to_sync(self.registry.register)(peer)

    def publish(self, event, audience=None):
        return async_to_sync(self.registry.broadcast)(event, audience=audience)

    def events_for(self, name):
        return self.sender.received.get(self.peers[name].channel_name, [])

    def test_end_to_end_ride_flow(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.coordinator.request_ride(self.passenger, PICKUP, DROPOFF)
        ride = result.ride

        for name in ('passenger', 'driver_one', 'driver_two'):
            event = self.events_for(name)[-1]
            self.assertEqual(event['type'], 'NEW_RIDE_REQUEST')
            self.assertEqual(event['rideId'], ride.id)
            self.assertEqual(event['fare'], ride.fare)
            self.assertEqual(event['pickup'], {'lat': PICKUP[0], 'lng': PICKUP[1]})
        self.assertEqual(self.events_for('other'), [])

        with self.captureOnCommitCallbacks(execute=True):
            self.coordinator.accept_ride(self.driver_one, ride.id)

        accepted = self.events_for('passenger')[-1]
        self.assertEqual(accepted, {
            'type': 'RIDE_ACCEPTED',
            'rideId': ride.id,
            'driverId': self.driver_one.id,
            'passengerId': self.passenger.id,
        })
        self.assertEqual(self.events_for('driver_two')[-1]['type'], 'RIDE_ACCEPTED')

        with self.captureOnCommitCallbacks(execute=True):
            self.coordinator.update_ride_status(self.passenger, ride.id, 'cancelled')

        update = self.events_for('driver_one')[-1]
        self.assertEqual(update, {
            'type': 'STATUS_UPDATE',
            'rideId': ride.id,
            'status': 'cancelled',
            'updaterId': self.passenger.id,
        })
        # Driver two was never bound to the ride
        self.assertEqual(self.events_for('driver_two')[-1]['type'], 'RIDE_ACCEPTED')

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(ConflictError):
                self.coordinator.accept_ride(self.driver_two, ride.id)
        self.assertEqual(callbacks, [])

    def test_failed_transition_publishes_nothing(self):
        ride = self.create_ride()
        ride_lifecycle.accept_ride(self.driver_one, ride.id)
        ride_lifecycle.update_ride_status(self.passenger, ride.id, 'completed')
        before = dict((k, list(v)) for k, v in self.sender.received.items())

        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InvalidTransitionError):
                self.coordinator.update_ride_status(self.passenger, ride.id, 'cancelled')

        self.assertEqual(self.sender.received, before)

    def test_dead_peer_dropped_during_fan_out(self):
        self.sender.failing.add('chan.driver_two')
        with self.captureOnCommitCallbacks(execute=True):
            self.coordinator.request_ride(self.passenger, PICKUP, DROPOFF)

        remaining = {p.channel_name for p in async_to_sync(self.registry.snapshot)()}
        self.assertNotIn('chan.driver_two', remaining)
        self.assertEqual(len(self.events_for('driver_one')), 1)
        self.assertEqual(len(self.events_for('passenger')), 1)

    def test_storage_failure_is_reported_generically(self):
        with patch.object(RideRequest.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                with self.assertRaises(StorageError) as ctx:
                    self.coordinator.request_ride(self.passenger, PICKUP, DROPOFF)
        self.assertNotIn('disk full', str(ctx.exception))
        self.assertEqual(callbacks, [])
        self.assertFalse(RideRequest.objects.exists())


class RideAudienceTests(SimpleTestCase):
    def test_participants_audience(self):
        passenger = Peer('a', 1, 'passenger')
        bound = Peer('b', 2, 'driver')
        other_driver = Peer('c', 3, 'driver')
        stranger = Peer('d', 4, 'passenger')

        audience = events.participants(1, 2)
        self.assertEqual([audience(p) for p in (passenger, bound, other_driver, stranger)], [True, True, False, False])

        open_audience = events.participants(1, None)
        self.assertEqual([open_audience(p) for p in (passenger, bound, other_driver, stranger)], [True, True, True, False])


class RideViewTests(RideTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()
        self.publish = MagicMock(return_value=1)
        patcher = patch('rides.views.get_coordinator', return_value=DispatchCoordinator(publish=self.publish))
        patcher.start()
        self.addCleanup(patcher.stop)

    def post(self, view, user, data):
        request = self.factory.post('/api/rides/', data, format='json')
        force_authenticate(request, user=user)
        return view(request)

    def request_body(self, **overrides):
        body = {
            'passengerId': self.passenger.id,
            'pickupLat': PICKUP[0], 'pickupLng': PICKUP[1],
            'dropLat': DROPOFF[0], 'dropLng': DROPOFF[1],
        }
        body.update(overrides)
        return body

    def test_request_ride(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.post(views.request_ride, self.passenger, self.request_body())

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['fare'], 232)
        self.assertEqual(response.data['distanceKm'], 4.56)
        self.assertEqual(response.data['message'], 'Ride requested! Fare: NPR 232')
        event = self.publish.call_args[0][0]
        self.assertEqual(event['type'], 'NEW_RIDE_REQUEST')
        self.assertEqual(event['rideId'], response.data['rideId'])

    def test_request_ride_rejects_bad_input(self):
        response = self.post(views.request_ride, self.passenger, self.request_body(pickupLat=123))
        self.assertEqual(response.status_code, 400)

        response = self.post(views.request_ride, self.passenger, self.request_body(passengerId=self.other_passenger.id))
        self.assertEqual(response.status_code, 400)

        response = self.post(views.request_ride, self.passenger, {'pickupLat': 1})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(RideRequest.objects.exists())

    def test_drivers_cannot_request_rides(self):
        response = self.post(views.request_ride, self.driver_one, self.request_body(passengerId=None))
        self.assertEqual(response.status_code, 403)

    def test_storage_failure_answers_500(self):
        with patch.object(RideRequest.objects, 'create', side_effect=DatabaseError('boom')):
            response = self.post(views.request_ride, self.passenger, self.request_body())
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['error'], 'storage_error')

    def test_accept_and_conflict(self):
        ride = self.create_ride()

        response = self.post(views.accept_ride, self.driver_one, {'rideId': ride.id, 'driverId': self.driver_one.id})
        self.assertEqual(response.status_code, 200)

        response = self.post(views.accept_ride, self.driver_two, {'rideId': ride.id})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'conflict')

        ride.refresh_from_db()
        self.assertEqual(ride.driver, self.driver_one)

    def test_unverified_driver_cannot_accept(self):
        ride = self.create_ride()
        unverified = User.objects.create_user(username='newbie', password='x1234567', role='driver')
        response = self.post(views.accept_ride, unverified, {'rideId': ride.id})
        self.assertEqual(response.status_code, 403)

    def test_accept_missing_ride_is_404(self):
        response = self.post(views.accept_ride, self.driver_one, {'rideId': 424242})
        self.assertEqual(response.status_code, 404)

    def test_update_status(self):
        ride = self.create_ride()
        body = {'rideId': ride.id, 'newStatus': 'cancelled', 'actingUserId': self.passenger.id}

        response = self.post(views.update_ride_status, self.passenger, body)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'cancelled')

        response = self.post(views.update_ride_status, self.passenger, body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_transition')

    def test_update_status_rejects_accepted_target(self):
        ride = self.create_ride()
        response = self.post(views.update_ride_status, self.passenger, {'rideId': ride.id, 'newStatus': 'accepted'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_command')

    def test_ride_detail_requires_participation(self):
        ride = self.create_ride()
        request = self.factory.get(f'/api/rides/{ride.id}/')
        force_authenticate(request, user=self.other_passenger)
        self.assertEqual(views.ride_detail(request, ride_id=ride.id).status_code, 403)

        request = self.factory.get(f'/api/rides/{ride.id}/')
        force_authenticate(request, user=self.passenger)
        response = views.ride_detail(request, ride_id=ride.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['fare'], 232)


class HealthCheckTests(TestCase):
    @override_settings(REDIS_URL=None)
    def test_reports_healthy_without_redis(self):
        from ridelive.views import health_check

        response = health_check(APIRequestFactory().get('/health/'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['services']['database'], 'healthy')
        self.assertEqual(response.data['services']['redis'], 'not configured')
