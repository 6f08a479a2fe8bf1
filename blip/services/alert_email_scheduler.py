"""
Alert Email Scheduler - Hourly error-rate alert digests

On every cron tick the job looks at a one-hour window that ends
``alert_ingestion_lag_minutes`` before now (the warehouse lags behind the
ledger), collects error-rate alerts for every saved contract and mails each
affected user one digest listing their contracts.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from croniter import croniter
from jinja2 import Environment, Template
import structlog

from blip.config.settings import Settings, get_settings
from blip.services.email_service import EmailDeliveryError, EmailService
from blip.services.history_service import HistoryService
from blip.services.identity_service import IdentityProviderClient, IdentityProviderError
from blip.services.saved_contracts_service import SavedContractsService
from blip.utils.contract_validation import is_valid_contract_id

logger = structlog.get_logger(__name__)

ALERT_EMAIL_SUBJECT = "Soroban Contract Alerts - Blip"

HTML_TEMPLATE = """
<h1>Soroban Contract Alerts - {{ generated_at }}</h1>
<p>Hello {{ user_name }},</p>
<p>We detected increased error rates for the following contracts in the last hour:</p>
{% for alert in alerts %}
<h2>Alert for Contract {{ alert.contractNickname }} ({{ alert.contractId | truncate_contract_id }})</h2>
<ul>
  <li>Total Transactions: {{ alert.totalTransactions }}</li>
  <li>Failed Transactions: {{ alert.failedTransactions }}</li>
  <li>Error Rate: {{ alert.errorRate }}%</li>
</ul>
{% endfor %}
<p>Please check your contracts for any issues.</p>
"""

TEXT_TEMPLATE = """
Soroban Contract Alerts

Hello {{ user_name }},

We detected increased error rates for the following contracts:
{% for alert in alerts %}
Alert for Contract {{ alert.contractNickname }} ({{ alert.contractId }})
- Total Transactions: {{ alert.totalTransactions }}
- Failed Transactions: {{ alert.failedTransactions }}
- Error Rate: {{ alert.errorRate }}%
{% endfor %}
Please check your contracts for any issues.

- Blip Team
"""


def truncate_contract_id(contract_id: str) -> str:
    """``CABCDE...WXYZ`` form for IDs longer than 10 characters."""
    if len(contract_id) <= 10:
        return contract_id
    return f"{contract_id[:6]}...{contract_id[-4:]}"


def _template(source: str, autoescape: bool) -> Template:
    environment = Environment(autoescape=autoescape, trim_blocks=True, lstrip_blocks=True)
    environment.filters["truncate_contract_id"] = truncate_contract_id
    return environment.from_string(source)


_HTML = _template(HTML_TEMPLATE, autoescape=True)
_TEXT = _template(TEXT_TEMPLATE, autoescape=False)


def render_alert_email(user_name: str, alerts: List[Dict[str, Any]], generated_at: datetime) -> Dict[str, str]:
    """Render the HTML and text bodies of one user's digest."""
    context = {
        "user_name": user_name,
        "alerts": alerts,
        "generated_at": generated_at.strftime("%A, %B %d, %Y at %H:%M:%S UTC"),
    }
    return {"html": _HTML.render(**context), "text": _TEXT.render(**context)}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertEmailScheduler:
    """Runs the alert digest job on a cron schedule"""

    def __init__(
        self,
        saved_contracts: SavedContractsService,
        history: HistoryService,
        identity: IdentityProviderClient,
        email: EmailService,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.saved_contracts = saved_contracts
        self.history = history
        self.identity = identity
        self.email = email
        self.settings = settings or get_settings()
        self.cron_expression = self.settings.alert_email_cron
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def alert_window(self, now: datetime) -> Dict[str, datetime]:
        end_time = now - timedelta(minutes=self.settings.alert_ingestion_lag_minutes)
        start_time = end_time - timedelta(minutes=self.settings.alert_window_minutes)
        return {"start_time": start_time, "end_time": end_time}

    def next_run(self, now: datetime) -> datetime:
        return croniter(self.cron_expression, now).get_next(datetime)

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Collect the alerts of the current window and email every affected user.

        Returns:
            Summary with the number of alerts, users notified and per-user failures
        """
        now = now or self._clock()
        window = self.alert_window(now)
        summary = {"alerts": 0, "usersNotified": 0, "failures": 0}

        saved = await self.saved_contracts.list_all_with_users()
        users_by_contract: Dict[str, List[Dict[str, Any]]] = {}
        for contract in saved:
            if not is_valid_contract_id(contract["contractId"]):
                logger.warning("alert_job_invalid_contract_skipped", contract_id=contract["contractId"])
                continue
            users_by_contract[contract["contractId"]] = contract["users"]

        if not users_by_contract:
            logger.info("alert_job_no_contracts")
            return summary

        alerts = await self.history.hourly_alerts(
            list(users_by_contract),
            window["start_time"],
            window["end_time"],
        )
        summary["alerts"] = len(alerts)
        logger.info(
            "alert_job_alerts_fetched",
            alerts=len(alerts),
            contracts=len(users_by_contract),
            start_time=window["start_time"].isoformat(),
            end_time=window["end_time"].isoformat(),
        )

        alerts_by_user: Dict[str, List[Dict[str, Any]]] = {}
        for alert in alerts:
            for user in users_by_contract.get(alert["contractId"], []):
                alerts_by_user.setdefault(user["userId"], []).append(
                    {**alert, "contractNickname": user["nickname"]}
                )

        for user_id, user_alerts in alerts_by_user.items():
            try:
                sent = await self._notify_user(user_id, user_alerts, now)
            except asyncio.CancelledError:
                raise
            except (IdentityProviderError, EmailDeliveryError) as e:
                summary["failures"] += 1
                logger.error("alert_email_user_failed", user_id=user_id, error=str(e))
                continue
            except Exception as e:
                summary["failures"] += 1
                logger.error("alert_email_user_failed", user_id=user_id, error=str(e), exc_info=True)
                continue
            if sent:
                summary["usersNotified"] += 1

        logger.info("alert_job_completed", **summary)
        return summary

    async def _notify_user(self, user_id: str, alerts: List[Dict[str, Any]], now: datetime) -> bool:
        profile = await self.identity.get_user(user_id)
        if not profile.email:
            logger.warning("alert_email_no_address", user_id=user_id)
            return False

        user_name = profile.first_name or "User"
        bodies = render_alert_email(user_name, alerts, now)
        await self.email.send_email(
            profile.email,
            ALERT_EMAIL_SUBJECT,
            html_body=bodies["html"],
            text_body=bodies["text"],
        )
        logger.info("alert_email_sent", user_id=user_id, alerts=len(alerts))
        return True

    async def _run_forever(self) -> None:
        while True:
            now = self._clock()
            delay = (self.next_run(now) - now).total_seconds()
            await asyncio.sleep(max(delay, 0))
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("alert_job_failed", error=str(e), exc_info=True)

    def start(self) -> None:
        if not self.settings.alert_emails_enabled:
            logger.info("alert_email_scheduler_disabled")
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run_forever())
        logger.info(
            "alert_email_scheduler_started",
            cron=self.cron_expression,
            next_run=self.next_run(self._clock()).isoformat(),
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("alert_email_scheduler_stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
