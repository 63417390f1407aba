"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 10 providers spread around central Accra (one offline, one inactive)
  - 4 service requests (pending, assigned, en route, completed)
  - 1 confirmed settlement transaction for the completed request
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from roadside.config import settings
from roadside.domain.entities import utcnow
from roadside.domain.enums import (
    PaymentStatus,
    RequestStatus,
    ServiceType,
    TransactionStatus,
    TransferStatus,
)
from roadside.domain.matching import provider_h3_cell
from roadside.domain.settlement import split_commission
from roadside.infrastructure.database import async_session_factory, engine
from roadside.infrastructure.models import (
    ProviderModel,
    ServiceRequestModel,
    TransactionModel,
)


PROVIDERS = [
    # Around central Accra
    {"name": "Kwame Mensah Towing", "lat": 5.6050, "lng": -0.1880, "types": ["towing"], "rating": 4.8},
    {"name": "Ama Owusu Auto", "lat": 5.6100, "lng": -0.1820, "types": [], "rating": 4.9},
    {"name": "Kofi Boateng Tyres", "lat": 5.5980, "lng": -0.1950, "types": ["tire_change"], "rating": 4.5},
    {"name": "Efua Asante Fuel", "lat": 5.6200, "lng": -0.1700, "types": ["fuel_delivery"], "rating": 4.7},
    {"name": "Yaw Darko Electrics", "lat": 5.5900, "lng": -0.2050, "types": ["electrical_fault", "battery_jump"], "rating": 4.6},
    # Further out
    {"name": "Akosua Addo Rescue", "lat": 5.6500, "lng": -0.1500, "types": [], "rating": 4.4},
    {"name": "Kojo Antwi Locksmith", "lat": 5.5600, "lng": -0.2300, "types": ["lockout_service"], "rating": 4.3},
    {"name": "Abena Osei Mechanics", "lat": 5.7000, "lng": -0.1000, "types": ["mechanic_fault"], "rating": 4.7},
    # Not matchable
    {"name": "Nana Agyeman (offline)", "lat": 5.6040, "lng": -0.1875, "types": [], "rating": 4.2, "available": False},
    {"name": "Esi Quaye (inactive)", "lat": 5.6045, "lng": -0.1872, "types": [], "rating": 4.1, "active": False},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM providers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Providers ─────────────────────────────────────────────────
        provider_models = []
        for i, p in enumerate(PROVIDERS):
            m = ProviderModel(
                full_name=p["name"],
                current_lat=p["lat"],
                current_lng=p["lng"],
                h3_cell=provider_h3_cell(p["lat"], p["lng"], settings.h3_resolution),
                is_available=p.get("available", True),
                is_active=p.get("active", True),
                service_types=p["types"],
                payout_recipient_code=f"RCP_seed{i:04d}",
                avg_rating=p["rating"],
                available_since=now,
                location_updated_at=now,
            )
            session.add(m)
            provider_models.append(m)
        await session.flush()
        print(f"  Created {len(provider_models)} providers")

        # ── Service requests ──────────────────────────────────────────
        requests_data = [
            {
                "code": "RSA-SEED01",
                "customer": "cust-001",
                "type": ServiceType.TOWING,
                "location": "Ring Road Central, near Kwame Nkrumah Circle",
                "pos": (5.5700, -0.2100),
                "status": RequestStatus.PENDING,
            },
            {
                "code": "RSA-SEED02",
                "customer": "cust-002",
                "type": ServiceType.TIRE_CHANGE,
                "location": "Oxford Street, Osu",
                "pos": (5.5560, -0.1820),
                "status": RequestStatus.ASSIGNED,
                "provider": provider_models[2],
                "assigned_at": now - timedelta(minutes=5),
            },
            {
                "code": "RSA-SEED03",
                "customer": "cust-003",
                "type": ServiceType.BATTERY_JUMP,
                "location": "Liberation Road, Airport Residential",
                "pos": (5.6050, -0.1710),
                "status": RequestStatus.EN_ROUTE,
                "provider": provider_models[4],
                "assigned_at": now - timedelta(minutes=40),
                "quoted_amount": 150.0,
                "paid": True,
            },
            {
                "code": "RSA-SEED04",
                "customer": "cust-004",
                "type": ServiceType.FUEL_DELIVERY,
                "location": "Spintex Road",
                "pos": (5.6350, -0.1200),
                "status": RequestStatus.COMPLETED,
                "provider": provider_models[3],
                "assigned_at": now - timedelta(hours=3),
                "quoted_amount": 200.0,
                "paid": True,
                "completed": True,
            },
        ]

        request_models = []
        for r in requests_data:
            provider = r.get("provider")
            quoted = r.get("quoted_amount")
            m = ServiceRequestModel(
                tracking_code=r["code"],
                customer_id=r["customer"],
                provider_id=provider.id if provider else None,
                service_type=r["type"],
                location=r["location"],
                customer_lat=r["pos"][0],
                customer_lng=r["pos"][1],
                status=r["status"],
                assigned_at=r.get("assigned_at"),
                quoted_amount=quoted,
                amount=quoted if r.get("paid") else None,
                provider_percentage=settings.provider_percentage if quoted else None,
                payment_status=PaymentStatus.PAID if r.get("paid") else PaymentStatus.UNPAID,
                payment_reference=f"{r['code']}-seed" if r.get("paid") else None,
            )
            if quoted:
                m.quoted_at = r["assigned_at"] + timedelta(minutes=5)
                m.quote_approved_at = r["assigned_at"] + timedelta(minutes=8)
                m.paid_at = r["assigned_at"] + timedelta(minutes=10)
            if r.get("completed"):
                m.customer_confirmed_at = now - timedelta(hours=1)
                m.provider_confirmed_payment_at = now - timedelta(minutes=50)
                m.completed_at = m.provider_confirmed_payment_at
            session.add(m)
            request_models.append(m)
        await session.flush()
        print(f"  Created {len(request_models)} service requests")

        # ── Settlement for the completed request ──────────────────────
        done = request_models[-1]
        split = split_commission(done.amount, done.provider_percentage)
        session.add(
            TransactionModel(
                service_request_id=done.id,
                amount=split.total,
                provider_percentage=split.provider_percentage,
                provider_amount=split.provider_amount,
                platform_amount=split.platform_amount,
                status=TransactionStatus.CONFIRMED,
                transfer_code="TRF_seed0001",
                transfer_status=TransferStatus.SUCCESS,
                transfer_initiated_at=done.customer_confirmed_at,
                transfer_completed_at=done.provider_confirmed_payment_at,
                confirmed_at=done.completed_at,
            )
        )
        await session.flush()
        print("  Created 1 settlement transaction")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
