"""
Driver verification workflow.

A user submits one application at a time; an administrator approves or
rejects it once. Approval promotes the applicant to a verified driver in
the same transaction as the application update.
"""

import logging
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from drivers.models import DriverApplication
from services.exceptions import (
    ActiveApplicationExistsError,
    ForbiddenError,
    InvalidCommandError,
    InvalidTransitionError,
    NotFoundError,
)
from . import transitions

User = get_user_model()
logger = logging.getLogger(__name__)


def has_pending_application(user) -> bool:
    return DriverApplication.objects.filter(user=user, status=transitions.PENDING).exists()


def submit_application(user, documents: Dict[str, Any]) -> DriverApplication:
    """
    Store a pending driver application. Grants no role by itself.

    Args:
        user: applicant
        documents: validated personal/vehicle/license fields and stored file references

    Raises:
        ForbiddenError: user is already a verified driver
        ActiveApplicationExistsError: user already has a pending application
    """
    if getattr(user, 'is_verified_driver', False):
        raise ForbiddenError("You are already a verified driver")
    if has_pending_application(user):
        raise ActiveApplicationExistsError("You already have an application awaiting review")

    try:
        with transaction.atomic():
            application = DriverApplication.objects.create(user=user, **documents)
    except IntegrityError:
        # Lost a race against a concurrent submission from the same user.
        raise ActiveApplicationExistsError("You already have an application awaiting review")

    logger.info("Driver application %s submitted by user %s", application.application_id, user.id)
    return application


def list_pending_applications():
    return DriverApplication.objects.filter(status=transitions.PENDING).select_related('user')


@transaction.atomic
def decide_application(
    application_id: int,
    verdict: str,
    decided_by,
    user_id: Optional[int] = None,
) -> DriverApplication:
    """
    Approve or reject a pending application.

    Args:
        application_id: application to decide
        verdict: 'approved' or 'rejected'
        decided_by: staff user making the decision
        user_id: applicant id as seen by the admin client; must match if given

    Returns:
        The decided application

    Raises:
        NotFoundError, InvalidCommandError, InvalidTransitionError
    """
    try:
        application = DriverApplication.objects.get(pk=application_id)
    except DriverApplication.DoesNotExist:
        raise NotFoundError("Application not found")

    transitions.ensure_can_decide(application.status, verdict)
    if user_id is not None and int(user_id) != application.user_id:
        raise InvalidCommandError("userId does not match the application")

    updated = DriverApplication.objects.filter(
        pk=application_id,
        status=transitions.PENDING,
    ).update(status=verdict, decided_at=timezone.now(), decided_by=decided_by)
    if not updated:
        raise InvalidTransitionError("Application was already decided")

    if verdict == transitions.APPROVED:
        User.objects.filter(pk=application.user_id).update(role=User.ROLE_DRIVER, is_verified=True)
        logger.info("User %s promoted to driver via application %s", application.user_id, application_id)
    else:
        logger.info("Driver application %s rejected", application_id)

    application.refresh_from_db()
    return application
