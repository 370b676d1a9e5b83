from collections.abc import AsyncGenerator

from fastapi import Depends

from app.core.clock import Clock, utc_now
from app.core.config import Settings, get_settings
from app.core.database import get_session_factory
from app.core.unit_of_work import UnitOfWork
from app.services.data_formatter import DataFormatter
from app.services.ipg_client import IpgClient
from app.services.message_signer import MessageSigner
from app.services.notification_service import NotificationService
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService
from app.services.slack_service import SlackService
from app.services.threeds_service import ThreeDSContextBuilder


async def get_unit_of_work() -> AsyncGenerator[UnitOfWork, None]:
    async with UnitOfWork(get_session_factory()) as uow:
        yield uow


def get_clock() -> Clock:
    return utc_now


def get_ipg_client(settings: Settings = Depends(get_settings)) -> IpgClient:
    return IpgClient(settings)


def get_message_signer(settings: Settings = Depends(get_settings)) -> MessageSigner:
    return MessageSigner(settings.IPG_SECRET_KEY)


def get_slack_service(settings: Settings = Depends(get_settings)) -> SlackService:
    return SlackService(settings.SLACK_ALERTS_URL, settings.ENVIRONMENT)


def get_payment_service(
    settings: Settings = Depends(get_settings),
    client: IpgClient = Depends(get_ipg_client),
    signer: MessageSigner = Depends(get_message_signer),
    clock: Clock = Depends(get_clock),
) -> PaymentService:
    return PaymentService(
        settings,
        client,
        signer,
        DataFormatter(settings.IPG_DEFAULT_LANGUAGE),
        ThreeDSContextBuilder(clock),
        clock,
    )


def get_notification_service(
    settings: Settings = Depends(get_settings),
    signer: MessageSigner = Depends(get_message_signer),
    alerts: SlackService = Depends(get_slack_service),
    clock: Clock = Depends(get_clock),
) -> NotificationService:
    return NotificationService(settings, signer, alerts, clock)


def get_reconciliation_service(
    settings: Settings = Depends(get_settings),
    payment_service: PaymentService = Depends(get_payment_service),
    clock: Clock = Depends(get_clock),
) -> ReconciliationService:
    return ReconciliationService(settings, payment_service, clock)
