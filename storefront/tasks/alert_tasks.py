from celery import Task
from celery.utils.log import get_task_logger

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.utils.email import build_email, send_email_smtp, smtp_configured

logger = get_task_logger(__name__)


class AlertTask(Task):
    """Base alert task with retries and backoff on SMTP failures."""
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 5}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True
    acks_late = True


@celery_app.task(base=AlertTask, bind=True)
def send_reconciliation_alert(
    self,
    intent_reference: str,
    user_id: int,
    amount: str,
    currency: str,
    reason: str,
):
    """Tell support about a captured payment that has no order."""
    text = (
        "A payment was captured but the order could not be created.\n\n"
        f"Payment intent: {intent_reference}\n"
        f"User id: {user_id}\n"
        f"Amount: {amount} {currency}\n"
        f"Reason: {reason}\n"
    )

    if not smtp_configured() or not settings.ALERTS_EMAIL_TO:
        logger.warning(
            "reconciliation_alert_not_emailed intent=%s user_id=%s amount=%s %s",
            intent_reference,
            user_id,
            amount,
            currency,
        )
        return False

    msg = build_email(
        to=settings.ALERTS_EMAIL_TO,
        subject=f"[Action needed] Payment without order - {intent_reference}",
        text=text,
    )
    send_email_smtp(msg)
    logger.info("reconciliation_alert_sent intent=%s", intent_reference)
    return True
