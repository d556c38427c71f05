"""
Locust Load Test Suite

Principals come from the identity provider in production; here they are
minted locally with the service's SECRET_KEY.

Run scenarios:
  locust -f locustfile.py --tags contention   # Test overbooking of one slot
  locust -f locustfile.py --tags throughput   # Test slot list cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
from datetime import date, timedelta
from itertools import count

from locust import HttpUser, between, events, tag, task

from slotbooking.core.security import create_access_token
from slotbooking.schemas.principal import Principal

# Shared state
SLOT_IDS = []
CONTENTION_SLOT_ID = None
BOOKING_DATE = (date.today() + timedelta(days=7)).isoformat()

_user_ids = count(100000)


def member_headers(gender: str = "male") -> dict:
    principal = Principal(
        id=next(_user_ids),
        gender=gender,
        role="member",
        email_verified=True,
        email=None,
    )
    return {"Authorization": f"Bearer {create_access_token(principal, timedelta(hours=2))}"}


def admin_headers() -> dict:
    principal = Principal(id=1, role="admin", email_verified=True)
    return {"Authorization": f"Bearer {create_access_token(principal, timedelta(hours=2))}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: slots for {BOOKING_DATE} are created by the first user")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 members -> 10 places

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT current_bookings FROM slots WHERE id = X;
      SELECT COUNT(*) FROM bookings WHERE slot_id = X AND status = 'confirmed';
    Both should be equal and <= 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = member_headers("male")
        if not CONTENTION_SLOT_ID:
            resp = self.client.post(
                "/api/v1/slots/",
                json={
                    "date": BOOKING_DATE,
                    "start_time": "19:00",
                    "end_time": "20:00",
                    "gender": "male",
                    "max_capacity": 10,
                    "description": "Contention test slot",
                },
                headers=admin_headers(),
            )
            if resp.status_code == 201:
                globals()["CONTENTION_SLOT_ID"] = resp.json()["id"]
                print(f"\nCreated slot {CONTENTION_SLOT_ID} with 10 places\n")

    @tag("contention")
    @task
    def book_last_places(self):
        """Every member fights for the same 10 places."""
        if not CONTENTION_SLOT_ID:
            return

        with self.client.post(
            "/api/v1/bookings/",
            json={"slot_id": CONTENTION_SLOT_ID, "booking_date": BOOKING_DATE},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: full, lost race or already booked
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice, with Redis and with REDIS_ENABLED=false, and compare
    requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_slots_cached(self):
        self.client.get(
            f"/api/v1/slots/?date={BOOKING_DATE}&page=1&page_size=20",
            name="/api/v1/slots/ [cached]",
        )

    @tag("throughput", "read")
    @task(3)
    def get_slot_detail(self):
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}", name="/api/v1/slots/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = member_headers(random.choice(["male", "female"]))

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_slot(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"slot_id": 999999, "booking_date": BOOKING_DATE},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def past_date(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"slot_id": CONTENTION_SLOT_ID or 1, "booking_date": "2000-01-01"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 404))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"slot_id": 1, "booking_date": BOOKING_DATE},
            catch_response=True,
        ) as resp:
            self._expect(resp, (401,))


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some bookings, occasional cancellations.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.gender = random.choice(["male", "female"])
        self.headers = member_headers(self.gender)
        self.booking_ids = []

    @task(50)
    def browse_slots(self):
        resp = self.client.get(f"/api/v1/slots/?date={BOOKING_DATE}&gender={self.gender}")
        if resp.status_code == 200:
            for slot in resp.json().get("slots", []):
                if slot["id"] not in SLOT_IDS:
                    SLOT_IDS.append(slot["id"])

    @task(10)
    def book_slot(self):
        if not SLOT_IDS:
            return
        with self.client.post(
            "/api/v1/bookings/",
            json={"slot_id": random.choice(SLOT_IDS), "booking_date": BOOKING_DATE},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                self.booking_ids.append(resp.json()["id"])
                resp.success()
            elif resp.status_code in (400, 409):
                resp.success()  # wrong gender session or full

    @task(3)
    def cancel_booking(self):
        if self.booking_ids:
            booking_id = self.booking_ids.pop()
            self.client.put(
                f"/api/v1/bookings/{booking_id}/cancel",
                json={"reason": "load test"},
                headers=self.headers,
                name="/api/v1/bookings/{id}/cancel",
            )

    @task(5)
    def my_bookings(self):
        self.client.get("/api/v1/bookings/", headers=self.headers)
