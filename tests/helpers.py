import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import select

from qanoonmate.database import AsyncSessionLocal, Base, engine
from qanoonmate.dependencies.security import hash_password
from qanoonmate.main import app
from qanoonmate.models import ApplicationStatus, LawyerProfile, User

PASSWORD = "secret-pass-1"


async def _reset_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _insert_user(email, role, **fields):
    async with AsyncSessionLocal() as db:
        user = User(email=email, password_hash=hash_password(PASSWORD), role=role, is_active=True, **fields)
        db.add(user)
        await db.commit()
        return user.id


async def _approve_profile(user_id, **fields):
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(LawyerProfile).where(LawyerProfile.user_id == user_id))
        profile = result.scalar_one()
        profile.application_status = ApplicationStatus.APPROVED.value
        profile.identity_verified = True
        for field, value in fields.items():
            setattr(profile, field, value)
        await db.commit()


def future_iso(days=3, hours=0):
    return (datetime.now(timezone.utc) + timedelta(days=days, hours=hours)).replace(microsecond=0).isoformat()


class ApiTestCase(unittest.TestCase):
    """Fresh tables and a TestClient per test"""

    def setUp(self):
        asyncio.run(_reset_tables())
        self.client = TestClient(app)

    def run_async(self, coro):
        return asyncio.run(coro)

    # -- accounts ------------------------------------------------------------

    def register(self, email, role="client", **fields):
        payload = {"email": email, "password": PASSWORD, "first_name": fields.pop("first_name", "Test"), "role": role}
        payload.update(fields)
        response = self.client.post("/api/auth/register", json=payload)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def login(self, email, password=PASSWORD):
        response = self.client.post("/api/auth/login", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    def create_admin(self, email="admin@qanoonmate.pk"):
        self.run_async(_insert_user(email, "admin", first_name="Admin"))
        return self.login(email)

    def create_client(self, email="client@example.com", **fields):
        user = self.register(email, "client", **fields)
        return user, self.login(email)

    def create_lawyer(self, email="lawyer@example.com", approved=True, hourly_rate=Decimal("6000"), **fields):
        user = self.register(email, "lawyer", **fields)
        if approved:
            self.run_async(_approve_profile(user["id"], hourly_rate=hourly_rate))
        return user, self.login(email)

    # -- consultations -------------------------------------------------------

    def book(self, client_headers, lawyer_id, **fields):
        payload = {
            "lawyer_id": lawyer_id,
            "title": "Property dispute",
            "mode": "video",
            "scheduled_date": future_iso(),
            "duration": 60,
            "terms_accepted": True,
        }
        payload.update(fields)
        response = self.client.post("/api/consultations/book", json=payload, headers=client_headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()
