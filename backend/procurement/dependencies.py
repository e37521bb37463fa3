"""FastAPI providers for settings and the external-service clients; tests override these."""
from fastapi import Depends

from procurement.config import Settings, settings as app_settings
from procurement.services.ai_service import AIService, CompletionClient
from procurement.services.email_service import RFPMailer
from procurement.services.inbox_service import InboxPoller


def get_settings() -> Settings:
    return app_settings


def get_ai_service(settings: Settings = Depends(get_settings)) -> AIService:
    return AIService(CompletionClient(settings.ai))


def get_mailer(settings: Settings = Depends(get_settings)) -> RFPMailer:
    return RFPMailer(settings.mail)


def get_inbox_poller(settings: Settings = Depends(get_settings)) -> InboxPoller:
    return InboxPoller(settings.mail)
