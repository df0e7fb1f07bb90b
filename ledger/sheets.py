import logging
import time
from typing import Optional
from zoneinfo import ZoneInfo

import requests
from jose import jwt

from .config import Settings, settings as default_settings
from .models import Business, Member
from .side_effects import ChargePosted
from .storage import LedgerStore

log = logging.getLogger("pdca.sheets")

TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
APPEND_URL = "https://sheets.googleapis.com/v4/spreadsheets/{sheet_id}/values/Sheet1!A:I:append"


class SheetsError(Exception):
    pass


def normalize_private_key(raw: str) -> str:
    # Env files usually carry the PEM with literal "\n" and surrounding quotes.
    return raw.strip().strip("'\"").replace("\\n", "\n")


class SpreadsheetLogger:
    """Mirrors posted charges to a Google Sheet, one row per charge."""

    def __init__(
        self,
        store: LedgerStore,
        settings: Settings = default_settings,
        session: Optional[requests.Session] = None,
    ):
        self.store = store
        self.settings = settings
        self.session = session or requests.Session()

    def _access_token(self) -> str:
        client_email = self.settings.GOOGLE_SHEETS_CLIENT_EMAIL
        private_key = self.settings.GOOGLE_SHEETS_PRIVATE_KEY
        if not client_email or not private_key:
            raise SheetsError("Missing GOOGLE_SHEETS_CLIENT_EMAIL or GOOGLE_SHEETS_PRIVATE_KEY")

        now = int(time.time())
        assertion = jwt.encode(
            {"iss": client_email, "scope": SHEETS_SCOPE, "aud": TOKEN_URL, "iat": now, "exp": now + 3600},
            normalize_private_key(private_key),
            algorithm="RS256",
        )
        r = self.session.post(
            TOKEN_URL,
            data={"grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer", "assertion": assertion},
            timeout=30,
        )
        if r.status_code != 200:
            raise SheetsError(f"Failed to get Google access token: {r.status_code} {r.text}")
        return r.json()["access_token"]

    def build_row(self, event: ChargePosted) -> list:
        member_row = self.store.get_member(event.member_id)
        business_row = self.store.get_business(event.business_id)
        member = Member.model_validate(member_row) if member_row else None
        business = Business.model_validate(business_row) if business_row else None
        local_time = event.created_at.astimezone(ZoneInfo(self.settings.SHEETS_TIMEZONE))
        return [
            member.full_name if member else "Unknown",
            member.member_code if member else "Unknown",
            business.name if business else "Unknown",
            float(event.amount),
            event.description or "",
            local_time.strftime("%d/%m/%Y %H:%M:%S"),
            float(event.balance_before),
            float(event.balance_after),
            event.source,
        ]

    def __call__(self, event: ChargePosted) -> None:
        sheet_id = self.settings.GOOGLE_SHEETS_SHEET_ID
        if not sheet_id:
            log.error("Missing GOOGLE_SHEETS_SHEET_ID, skipping sheet log for %s", event.transaction_id)
            return

        row = self.build_row(event)
        token = self._access_token()
        r = self.session.post(
            APPEND_URL.format(sheet_id=sheet_id),
            params={"valueInputOption": "USER_ENTERED"},
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json={"values": [row]},
            timeout=30,
        )
        if r.status_code >= 400:
            log.error("Sheets API error %s: %s", r.status_code, r.text)
        else:
            log.info("Transaction %s logged to sheet", event.transaction_id)
