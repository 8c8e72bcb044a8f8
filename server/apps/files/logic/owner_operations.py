"""Business logic for provisioning and resolving file owners.

The identity provider is outside this app: callers pass an already
verified opaque identity string, stored as the auth user's username.
"""

import logging

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AbstractBaseUser
from django.db import transaction

from server.apps.files.exceptions import OwnerNotFoundError

User = get_user_model()
logger = logging.getLogger(__name__)


def sync_owner(
    owner_id: str,
    email: str = '',
    first_name: str = '',
    last_name: str = '',
) -> AbstractBaseUser:
    """Find or create the owner, refreshing profile fields.

    Args:
        owner_id: Verified identity string.
        email: Current email address.
        first_name: Current first name.
        last_name: Current last name.

    Returns:
        Provisioned user.
    """
    with transaction.atomic():
        owner, created = User.objects.update_or_create(
            username=owner_id,
            defaults={
                'email': email,
                'first_name': first_name,
                'last_name': last_name,
            },
        )
    if created:
        owner.set_unusable_password()
        owner.save(update_fields=['password'])
        logger.info('Created owner %s', owner_id)
    else:
        logger.debug('Updated owner %s', owner_id)
    return owner


def resolve_owner(owner_id: str) -> AbstractBaseUser:
    """Get a provisioned owner.

    Args:
        owner_id: Verified identity string.

    Returns:
        User for this identity.

    Raises:
        OwnerNotFoundError: If the owner was never synced.
    """
    try:
        return User.objects.get(username=owner_id)
    except User.DoesNotExist as error:
        logger.warning('Owner not found: %s', owner_id)
        raise OwnerNotFoundError() from error
