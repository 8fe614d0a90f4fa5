"""
ShiftPOS Load Testing with Locust

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Prereqs (from backend/):
    python -m flask system init
    python -m flask users create --username seller_1 --password Password123 --role SELLER --location-id 1
    (one seller per simulated cashier: seller_1 .. seller_N)
    python -m flask stock set --location-id 1 --product-id 1 --quantity 100000

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1% (409 stock/credit rejections are expected outcomes, not errors)
"""

import itertools
import os
import random
import threading
import time
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task


# =============================================================================
# CONFIGURATION
# =============================================================================

ADMIN = {
    "username": os.environ.get("SHIFTPOS_ADMIN", "admin"),
    "password": os.environ.get("SHIFTPOS_ADMIN_PASSWORD", "Password123"),
}
SELLER_PASSWORD = os.environ.get("SHIFTPOS_SELLER_PASSWORD", "Password123")
SELLER_COUNT = int(os.environ.get("SHIFTPOS_SELLERS", "10"))
LOCATION_ID = int(os.environ.get("SHIFTPOS_LOCATION_ID", "1"))
PRODUCT_IDS = [int(p) for p in os.environ.get("SHIFTPOS_PRODUCT_IDS", "1").split(",")]

# Each simulated cashier logs in as its own seller (one open shift per seller)
_seller_numbers = itertools.count(1)
_seller_lock = threading.Lock()


def next_seller() -> str:
    with _seller_lock:
        n = next(_seller_numbers)
    return f"seller_{(n - 1) % SELLER_COUNT + 1}"


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class ShiftPOSUser(HttpUser):
    """
    Base user that authenticates on start.
    """
    wait_time = between(0.5, 2)
    abstract = True

    token: Optional[str] = None
    user_info: Optional[Dict] = None

    def credentials(self) -> Dict:
        raise NotImplementedError

    def on_start(self):
        """Login when user starts."""
        creds = self.credentials()
        response = self.client.post(
            "/api/auth/login",
            json={"username": creds["username"], "password": creds["password"]},
            name="auth/login"
        )
        if response.status_code == 200:
            data = response.json()
            self.token = data.get("token")
            self.user_info = data.get("user")

    def get_headers(self) -> Dict:
        """Get headers with auth token."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, method: str, path: str, ok=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, path, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok)
        return response


class CashierUser(ShiftPOSUser):
    """
    Seller working a shift: opens it, sells, checks stock, closes and reopens.
    """
    weight = 4

    shift_id: Optional[int] = None

    def credentials(self) -> Dict:
        return {"username": next_seller(), "password": SELLER_PASSWORD}

    def on_start(self):
        super().on_start()
        self.ensure_shift()

    def ensure_shift(self):
        active = self.timed("shifts/active", "GET", "/api/shifts/active")
        shift = active.json().get("shift") if active.status_code == 200 else None
        if shift:
            self.shift_id = shift["id"]
            return

        response = self.timed(
            "shifts/open", "POST", "/api/shifts/open", ok=(201,),
            json={"location_id": LOCATION_ID, "opening_float_cents": 10000},
        )
        if response.status_code == 201:
            self.shift_id = response.json()["shift"]["id"]

    @task(8)
    def cash_sale(self):
        """Single POST commits the whole sale."""
        if self.shift_id is None:
            self.ensure_shift()
            return
        lines = [
            {"product_id": pid, "quantity": random.randint(1, 3)}
            for pid in random.sample(PRODUCT_IDS, k=min(len(PRODUCT_IDS), random.randint(1, 3)))
        ]
        # 409 = stock ran out or the shift was closed underneath us
        response = self.timed("sales/create", "POST", "/api/sales", ok=(201, 409), json={
            "payment_method": "CASH",
            "lines": lines,
        })
        if response.status_code == 409 and response.json().get("error") == "NO_OPEN_SHIFT":
            self.shift_id = None

    @task(3)
    def check_availability(self):
        self.timed(
            "stock/availability", "GET", "/api/stock/availability",
            params={"location_id": LOCATION_ID, "product_ids": ",".join(str(p) for p in PRODUCT_IDS)},
        )

    @task(2)
    def list_products(self):
        self.timed("products/list", "GET", "/api/products")

    @task(1)
    def close_and_reopen(self):
        if self.shift_id is None:
            return
        summary = self.timed("shifts/get", "GET", f"/api/shifts/{self.shift_id}")
        if summary.status_code != 200:
            return
        expected = summary.json()["shift"]["summary"]["expected_cash_cents"]
        self.timed(
            "shifts/close", "POST", f"/api/shifts/{self.shift_id}/close", ok=(200, 409),
            json={"closing_cash_cents": expected, "notes": "load test"},
        )
        self.shift_id = None
        self.ensure_shift()


class AdminUser(ShiftPOSUser):
    """
    Administrator reading reports and topping up stock.
    """
    weight = 1

    def credentials(self) -> Dict:
        return ADMIN

    @task(3)
    def list_shifts(self):
        self.timed("shifts/list", "GET", "/api/shifts", params={"status": "OPEN"})

    @task(3)
    def list_sales(self):
        self.timed("sales/list", "GET", "/api/sales", params={"location_id": LOCATION_ID, "limit": 50})

    @task(2)
    def restock(self):
        product_id = random.choice(PRODUCT_IDS)
        self.timed(
            "stock/adjust", "PUT", f"/api/stock/{product_id}/{LOCATION_ID}",
            json={"quantity": random.randint(5, 20), "mode": "ADD", "note": "Load test restock"},
        )

    @task(1)
    def health_check(self):
        self.timed("system/health", "GET", "/health")


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 1000 if any(w in name for w in ("create", "open", "close", "adjust")) else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
              f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
