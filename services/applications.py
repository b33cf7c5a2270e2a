"""Application lookup and draft creation."""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel

from services.eligibility import EligibilityResult
from storage.database import Database

logger = logging.getLogger(__name__)


class Application(BaseModel):
    application_id: str
    business_name: str = ""
    contact_name: str = ""
    phone: str = ""
    user_type: str = ""
    status: str = "draft"
    loan_amount: Optional[float] = None
    loan_chance: Optional[str] = None
    loan_score: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    def summary(self) -> Dict[str, Any]:
        return {
            "applicationId": self.application_id,
            "businessName": self.business_name or "Unknown",
            "status": self.status,
            "loanChance": self.loan_chance or "N/A",
            "lastUpdated": self.updated_at.isoformat(),
        }


class ApplicationService(Protocol):
    async def get(self, application_id: str) -> Optional[Application]: ...

    async def find(self, identifier: str) -> Optional[Application]: ...

    async def list_recent(self, limit: int = 50) -> List[Application]: ...

    async def create_draft(self, applicant: Dict[str, Any], eligibility: EligibilityResult) -> Application: ...


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text or "")


def _row_to_application(row) -> Application:
    return Application(
        application_id=row["id"],
        business_name=row["business_name"],
        contact_name=row["contact_name"],
        phone=row["phone"],
        user_type=row["user_type"],
        status=row["status"],
        loan_amount=row["loan_amount"],
        loan_chance=row["loan_chance"],
        loan_score=row["loan_score"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteApplicationService:
    def __init__(self, db: Database):
        self.db = db

    async def get(self, application_id: str) -> Optional[Application]:
        row = await self.db.fetch_one("SELECT * FROM applications WHERE id = ?", (application_id,))
        return _row_to_application(row) if row else None

    async def find(self, identifier: str) -> Optional[Application]:
        """Match by id, then business name (case-insensitive substring), then phone digits."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        by_id = await self.get(identifier)
        if by_id:
            return by_id

        row = await self.db.fetch_one(
            "SELECT * FROM applications WHERE lower(business_name) LIKE ? ORDER BY updated_at DESC LIMIT 1",
            (f"%{identifier.lower()}%",),
        )
        if row:
            return _row_to_application(row)

        digits = _digits(identifier)
        if len(digits) >= 7:
            for row in await self.db.fetch_all("SELECT * FROM applications WHERE phone != '' ORDER BY updated_at DESC"):
                if _digits(row["phone"]).endswith(digits[-10:]):
                    return _row_to_application(row)
        return None

    async def list_recent(self, limit: int = 50) -> List[Application]:
        rows = await self.db.fetch_all("SELECT * FROM applications ORDER BY updated_at DESC LIMIT ?", (limit,))
        return [_row_to_application(r) for r in rows]

    async def create_draft(self, applicant: Dict[str, Any], eligibility: EligibilityResult) -> Application:
        now = datetime.now(timezone.utc)
        app = Application(
            application_id=uuid.uuid4().hex,
            business_name=str(applicant.get("businessName") or ""),
            contact_name=str(applicant.get("name") or ""),
            phone=str(applicant.get("businessPhone") or ""),
            user_type=str(applicant.get("userType") or ""),
            loan_amount=applicant.get("requestedLoanAmount") or applicant.get("purchasePrice"),
            loan_chance=eligibility.chance,
            loan_score=eligibility.score,
            created_at=now,
            updated_at=now,
        )
        await self.db.execute(
            """
            INSERT INTO applications (id, business_name, contact_name, phone, user_type, status,
                                      loan_amount, loan_chance, loan_score, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (app.application_id, app.business_name, app.contact_name, app.phone, app.user_type, app.status,
             app.loan_amount, app.loan_chance, app.loan_score, now.isoformat(), now.isoformat()),
        )
        logger.info("Draft application %s created (%s chance)", app.application_id, app.loan_chance)
        return app
