import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_credit_profile(sender, instance, created, **kwargs):
    """
    Every account starts with an empty credit profile so ledger writes never race on creation.
    """
    if not created:
        return

    from billing.models import CreditProfile

    CreditProfile.objects.get_or_create(user=instance)
    logger.info("New user created: %s (%s)", instance.username, instance.email)
