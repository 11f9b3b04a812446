import logging

from django.core.mail import send_mail
from django.db import transaction as db_transaction

from payfac.settings import get_payfac_setting
from payfac.constants import (
    NOTIFICATION_SETTLEMENT_CREATED,
    NOTIFICATION_PAYOUT_SENT,
    NOTIFICATION_PAYOUT_COMPLETED,
    NOTIFICATION_PAYOUT_FAILED,
    NOTIFICATION_OPERATIONAL_ALERT,
)


logger = logging.getLogger(__name__)

SUBJECTS = {
    NOTIFICATION_SETTLEMENT_CREATED: "Settlement {reference} created",
    NOTIFICATION_PAYOUT_SENT: "Payout {reference} sent",
    NOTIFICATION_PAYOUT_COMPLETED: "Payout {reference} completed",
    NOTIFICATION_PAYOUT_FAILED: "Payout {reference} failed",
    NOTIFICATION_OPERATIONAL_ALERT: "[PayFac alert] {title}",
}


class NotificationService:
    """
    Fire-and-forget notifications to sub-merchants and the operations team

    Delivery problems are logged and never raised: a failed e-mail must not
    undo a settlement or a payout.
    """

    def notify(self, kind, sub_merchant=None, payload=None):
        """
        Send a notification

        Args:
            kind (str): One of the NOTIFICATION_* kinds
            sub_merchant: SubMerchant the notification is about (optional for alerts)
            payload (dict): JSON-serializable details

        Returns:
            bool: True if the notification was handed off
        """
        payload = payload or {}
        sub_merchant_id = str(sub_merchant.pk) if sub_merchant is not None else None

        try:
            if get_payfac_setting('USE_CELERY'):
                from payfac.tasks import send_notification_task
                send_notification_task.delay(kind, sub_merchant_id, payload)
                return True

            return self.deliver(kind, sub_merchant, payload)
        except Exception as e:
            logger.error(f"Could not send {kind} notification for {sub_merchant_id}: {str(e)}", exc_info=True)
            return False

    def notify_on_commit(self, kind, sub_merchant=None, payload=None):
        """Send the notification once the surrounding transaction commits"""
        db_transaction.on_commit(lambda: self.notify(kind, sub_merchant, payload))

    def alert(self, title, payload=None, sub_merchant=None):
        """Operational alert for the operations team"""
        payload = dict(payload or {})
        payload.setdefault('title', title)
        logger.warning(f"Operational alert: {title} {payload}")
        return self.notify(NOTIFICATION_OPERATIONAL_ALERT, sub_merchant, payload)

    def deliver(self, kind, sub_merchant, payload):
        """Deliver synchronously: e-mail when enabled, otherwise log only"""
        recipients = self._get_recipients(kind, sub_merchant)
        subject = self._format_subject(kind, payload)

        if not get_payfac_setting('SEND_EMAIL_NOTIFICATIONS') or not recipients:
            logger.info(f"Notification {kind}: {subject}")
            return True

        body = '\n'.join(f"{key}: {value}" for key, value in payload.items())
        send_mail(
            subject,
            body,
            get_payfac_setting('EMAIL_SENDER'),
            recipients,
            fail_silently=False,
        )
        logger.info(f"Notification {kind} e-mailed to {len(recipients)} recipient(s)")
        return True

    def _get_recipients(self, kind, sub_merchant):
        if kind == NOTIFICATION_OPERATIONAL_ALERT:
            return list(get_payfac_setting('OPERATIONS_ALERT_EMAILS'))
        if sub_merchant is not None and sub_merchant.email:
            return [sub_merchant.email]
        return []

    @staticmethod
    def _format_subject(kind, payload):
        template = SUBJECTS.get(kind, kind)
        try:
            return template.format(**payload)
        except KeyError:
            return template.split(' {')[0]
