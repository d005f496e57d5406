from datetime import date
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from services.dispatch.coordinator import DispatchCoordinator
from services.driver_verification import workflow
from services.exceptions import (
    ActiveApplicationExistsError,
    ForbiddenError,
    InvalidCommandError,
    InvalidTransitionError,
    NotFoundError,
)

from .models import DriverApplication
from .views import ApplicationDecisionView, DriverApplicationView, PendingApplicationsView

User = get_user_model()


def documents(**overrides):
    data = {
        'first_name': 'Sita',
        'last_name': 'Gurung',
        'dob': date(1994, 3, 12),
        'citizenship_no': '12-34-567',
        'vehicle_type': 'bike',
        'plate_no': 'BA 12 PA 3456',
        'license_no': '01-06-0012345',
        'license_photo': 'uploads/license.jpg',
        'billbook_pages': 'uploads/bb1.jpg,uploads/bb2.jpg',
    }
    data.update(overrides)
    return data


class DriverVerificationWorkflowTests(TestCase):
    def setUp(self):
        self.applicant = User.objects.create_user(username='applicant', password='pass1234')
        self.admin = User.objects.create_user(username='admin', password='admin1234', is_staff=True)
        self.coordinator = DispatchCoordinator(publish=lambda event, audience=None: 0)

    def submit(self):
        return self.coordinator.submit_application(self.applicant, documents())

    def test_submit_creates_pending_application_without_role_change(self):
        application = self.submit()

        self.assertEqual(application.status, 'pending')
        self.assertEqual(application.user, self.applicant)
        self.applicant.refresh_from_db()
        self.assertEqual(self.applicant.role, 'passenger')
        self.assertFalse(self.applicant.is_verified)

    def test_second_pending_application_rejected(self):
        self.submit()
        with self.assertRaises(ActiveApplicationExistsError):
            self.submit()
        self.assertEqual(DriverApplication.objects.filter(user=self.applicant).count(), 1)

    def test_unique_constraint_backs_up_pending_check(self):
        self.submit()
        # Simulates a concurrent submission that passed the existence check
        with patch.object(workflow, 'has_pending_application', return_value=False):
            with self.assertRaises(ActiveApplicationExistsError):
                self.submit()

    def test_approval_promotes_applicant(self):
        application = self.submit()
        decided = self.coordinator.decide_application(self.admin, application.application_id, 'approved')

        self.assertEqual(decided.status, 'approved')
        self.assertEqual(decided.decided_by, self.admin)
        self.assertIsNotNone(decided.decided_at)
        self.applicant.refresh_from_db()
        self.assertEqual(self.applicant.role, 'driver')
        self.assertTrue(self.applicant.is_verified)
        self.assertFalse(workflow.list_pending_applications().exists())

    def test_rejection_leaves_role_untouched(self):
        application = self.submit()
        self.coordinator.decide_application(self.admin, application.application_id, 'rejected')

        self.applicant.refresh_from_db()
        self.assertEqual(self.applicant.role, 'passenger')
        self.assertFalse(self.applicant.is_verified)

    def test_can_reapply_after_rejection(self):
        first = self.submit()
        self.coordinator.decide_application(self.admin, first.application_id, 'rejected')
        second = self.submit()
        self.assertNotEqual(first.application_id, second.application_id)

    def test_application_is_decided_once(self):
        application = self.submit()
        self.coordinator.decide_application(self.admin, application.application_id, 'rejected')

        with self.assertRaises(InvalidTransitionError):
            self.coordinator.decide_application(self.admin, application.application_id, 'approved')

        self.applicant.refresh_from_db()
        self.assertEqual(self.applicant.role, 'passenger')

    def test_decision_errors(self):
        application = self.submit()

        with self.assertRaises(NotFoundError):
            self.coordinator.decide_application(self.admin, 9999, 'approved')
        with self.assertRaises(InvalidCommandError):
            self.coordinator.decide_application(self.admin, application.application_id, 'maybe')
        with self.assertRaises(InvalidCommandError):
            self.coordinator.decide_application(
                self.admin, application.application_id, 'approved', user_id=self.admin.id,
            )

        application.refresh_from_db()
        self.assertEqual(application.status, 'pending')

    def test_verified_driver_cannot_apply(self):
        driver = User.objects.create_user(username='driver', password='x1234567', role='driver', is_verified=True)
        with self.assertRaises(ForbiddenError):
            self.coordinator.submit_application(driver, documents())


class DriverApplicationViewTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.applicant = User.objects.create_user(username='applicant', password='pass1234')
        self.admin = User.objects.create_user(username='admin', password='admin1234', is_staff=True)

    def payload(self, **overrides):
        data = documents(dob='1994-03-12', billbook_pages=['uploads/bb1.jpg', 'uploads/bb2.jpg'])
        data.update(overrides)
        return data

    def call(self, view, user, method='post', data=None):
        request = getattr(self.factory, method)('/api/driver/', data, format='json')
        force_authenticate(request, user=user)
        return view.as_view()(request)

    def test_submit_and_approve(self):
        response = self.call(DriverApplicationView, self.applicant, data=self.payload(userId=self.applicant.id))
        self.assertEqual(response.status_code, 201)
        application_id = response.data['applicationId']
        self.assertEqual(
            DriverApplication.objects.get(pk=application_id).billbook_pages,
            'uploads/bb1.jpg,uploads/bb2.jpg',
        )

        response = self.call(PendingApplicationsView, self.admin, method='get')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([a['application_id'] for a in response.data], [application_id])

        response = self.call(ApplicationDecisionView, self.admin, data={
            'applicationId': application_id, 'userId': self.applicant.id, 'verdict': 'approved',
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'approved')
        self.applicant.refresh_from_db()
        self.assertTrue(self.applicant.is_verified_driver)

    def test_duplicate_submission_conflicts(self):
        self.assertEqual(self.call(DriverApplicationView, self.applicant, data=self.payload()).status_code, 201)

        response = self.call(DriverApplicationView, self.applicant, data=self.payload())
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'application_pending')

    def test_submission_validation(self):
        response = self.call(DriverApplicationView, self.applicant, data=self.payload(userId=self.admin.id))
        self.assertEqual(response.status_code, 400)

        response = self.call(DriverApplicationView, self.applicant, data={'first_name': 'Sita'})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(DriverApplication.objects.exists())

    def test_review_requires_admin(self):
        self.assertEqual(self.call(PendingApplicationsView, self.applicant, method='get').status_code, 403)
        response = self.call(ApplicationDecisionView, self.applicant, data={'applicationId': 1, 'verdict': 'approved'})
        self.assertEqual(response.status_code, 403)

    def test_deciding_twice_is_invalid_transition(self):
        application = workflow.submit_application(self.applicant, documents())
        body = {'applicationId': application.application_id, 'verdict': 'rejected'}

        self.assertEqual(self.call(ApplicationDecisionView, self.admin, data=body).status_code, 200)
        response = self.call(ApplicationDecisionView, self.admin, data=body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_transition')
