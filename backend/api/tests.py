import json
import math
import tempfile
from datetime import date
from decimal import Decimal
from io import StringIO
from pathlib import Path
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.test import APITestCase

from . import analytics
from .analytics import BillRecord, DeviceRef
from .models import Device, Bill, ConsumptionReading
from . import services

User = get_user_model()


def record(device_id=1, measured=None, paid=None, company=None, name=None, pk=None):
    return BillRecord(
        id=pk,
        device_id=device_id,
        company_consumption_kwh=company,
        measured_consumption_kwh=measured,
        amount_paid=paid,
        device=DeviceRef(id=device_id, name=name or f"Device {device_id}") if device_id is not None else None,
    )


def numbers(payload):
    """Every int/float inside a nested dict/list payload."""
    if isinstance(payload, dict):
        for value in payload.values():
            yield from numbers(value)
    elif isinstance(payload, list):
        for value in payload:
            yield from numbers(value)
    elif isinstance(payload, (int, float)) and not isinstance(payload, bool):
        yield payload


class SmokeTests(TestCase):
    def test_health(self):
        resp = self.client.get(reverse("health"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})


class SamplePreparationTests(SimpleTestCase):
    def test_device_ids_are_normalized(self):
        self.assertEqual(BillRecord(id=1, device_id="3").device_id, 3)
        self.assertEqual(BillRecord(id=1, device_id=3.0).device_id, 3)
        self.assertIsNone(BillRecord(id=1, device_id="").device_id)
        self.assertEqual(BillRecord(id=1, device_id="abc").device_id, "abc")

    def test_numeric_fields_coerced(self):
        r = BillRecord(id=1, amount_paid=Decimal("12.50"), measured_consumption_kwh="100")
        self.assertEqual(r.amount_paid, 12.5)
        self.assertEqual(r.measured_consumption_kwh, 100.0)

    def test_from_mapping_accepts_legacy_measured_key(self):
        r = BillRecord.from_mapping({
            "id": 7, "device_id": "2", "consumo_iot": "80.5", "amount_paid": 40,
            "device": {"id": 2, "name": "Kitchen"},
        })
        self.assertEqual(r.measured_consumption_kwh, 80.5)
        self.assertEqual(r.device_id, 2)
        self.assertEqual(r.device_name, "Kitchen")

    def test_analyzable_requires_measured_value(self):
        records = [record(measured=10, paid=5), record(measured=None, paid=5), record(measured=0, paid=5)]
        self.assertEqual(len(analytics.analyzable_records(records)), 2)

    def test_valid_payments_drop_missing_zero_and_negative(self):
        records = [record(paid=10), record(paid=0), record(paid=-3), record(paid=None), record(paid=float("nan"))]
        self.assertEqual(analytics.valid_payments(records), [10.0])

    def test_non_finite_values_count_as_missing(self):
        for raw in ("nan", "inf", "-Infinity", float("nan"), Decimal("NaN")):
            with self.subTest(raw=raw):
                self.assertIsNone(analytics.to_number(raw))


class DescriptiveStatisticsTests(SimpleTestCase):
    def test_mean(self):
        self.assertEqual(analytics.mean([]), 0)
        self.assertEqual(analytics.mean([10, 20, 30]), 20)

    def test_population_standard_deviation(self):
        self.assertEqual(analytics.standard_deviation([4, 4, 4, 4], 4), 0)
        self.assertAlmostEqual(analytics.standard_deviation([2, 4, 4, 4, 5, 5, 7, 9], 5), 2.0)
        self.assertEqual(analytics.standard_deviation([], 0), 0)

    def test_mean_by_device_groups_string_and_int_ids(self):
        records = [
            record(device_id="3", measured=1, paid=10, name="Garage"),
            record(device_id=3, measured=1, paid=21),
            record(device_id=4, measured=1, paid=None),
            record(device_id=None, measured=1, paid=99),
        ]
        result = analytics.mean_by_device(records)
        self.assertEqual(result, [
            {"device_id": 3, "device_name": "Garage", "mean": 15.5},
            {"device_id": 4, "device_name": "Device 4", "mean": 0},
        ])


class CorrelationTests(SimpleTestCase):
    def test_symmetric_and_self_correlation(self):
        x = [1, 2, 3, 5, 8]
        y = [2, 1, 4, 3, 7]
        self.assertAlmostEqual(analytics.correlation(x, y), analytics.correlation(y, x))
        self.assertAlmostEqual(analytics.correlation(x, x), 1.0)

    def test_degenerate_inputs_return_zero(self):
        self.assertEqual(analytics.correlation([], []), 0)
        self.assertEqual(analytics.correlation([1, 2], [1, 2, 3]), 0)
        self.assertEqual(analytics.correlation([5, 5, 5], [1, 2, 3]), 0)

    def test_missing_value_policies(self):
        records = [
            record(measured=10, paid=5, company=12),
            record(measured=20, paid=None, company=None),
        ]
        self.assertEqual(
            analytics.paired_values(records, "company_consumption_kwh", "measured_consumption_kwh", "exclude"),
            ([12.0], [10.0]),
        )
        self.assertEqual(
            analytics.paired_values(records, "measured_consumption_kwh", "amount_paid", "zero"),
            ([10.0, 20.0], [5.0, 0]),
        )
        with self.assertRaises(ValueError):
            analytics.paired_values(records, "measured_consumption_kwh", "amount_paid", "drop")


class LinearRegressionTests(SimpleTestCase):
    def test_recovers_noiseless_line(self):
        fit = analytics.linear_regression([1, 2, 3, 4], [3, 5, 7, 9])
        self.assertAlmostEqual(fit.slope, 2)
        self.assertAlmostEqual(fit.intercept, 1)
        self.assertAlmostEqual(fit.r_squared, 1)

    def test_degenerate_inputs(self):
        self.assertEqual(analytics.linear_regression([], []), (0, 0, 0))
        self.assertEqual(analytics.linear_regression([1, 2], [1]), (0, 0, 0))
        # identical x values: no slope can be fitted
        self.assertEqual(analytics.linear_regression([2, 2, 2], [1, 5, 9]), (0, 0, 0))

    def test_constant_y_has_zero_r_squared(self):
        fit = analytics.linear_regression([1, 2, 3], [4, 4, 4])
        self.assertAlmostEqual(fit.slope, 0)
        self.assertAlmostEqual(fit.intercept, 4)
        self.assertEqual(fit.r_squared, 0)


class ProbabilityTests(SimpleTestCase):
    def test_normal_cdf_reference_points(self):
        self.assertAlmostEqual(analytics.normal_cdf(0), 0.5, places=6)
        for z in (0.25, 1.0, 1.96, -0.7):
            self.assertAlmostEqual(analytics.normal_cdf(z), 0.5 * (1 + math.erf(z)), places=6)
        self.assertAlmostEqual(analytics.normal_cdf(-1.3) + analytics.normal_cdf(1.3), 1.0, places=9)
        self.assertEqual(analytics.normal_cdf(float("nan")), 0)

    def test_one_deviation_interval(self):
        records = [record(paid=10), record(paid=20), record(paid=30)]
        sd = math.sqrt(200 / 3)
        # z is fed to the erf approximation unscaled, so +-1 sd gives erf(1)
        self.assertEqual(analytics.compute_probability(records, 20 - sd, 20 + sd), 84.27)

    def test_widening_interval_never_decreases(self):
        records = [record(paid=v) for v in (40, 55, 61, 70, 90)]
        previous = 0
        for width in (1, 5, 10, 20, 50, 100):
            p = analytics.compute_probability(records, 63 - width, 63 + width)
            self.assertGreaterEqual(p, previous)
            previous = p
        self.assertEqual(analytics.compute_probability(records, -1e9, 1e9), 100)

    def test_degenerate_samples_give_zero(self):
        self.assertEqual(analytics.compute_probability([], 0, 100), 0)
        same = [record(paid=50), record(paid=50)]
        self.assertEqual(analytics.compute_probability(same, 0, 100), 0)

    def test_uses_payments_from_non_analyzable_records(self):
        records = [record(measured=None, paid=10), record(measured=None, paid=30)]
        self.assertEqual(analytics.compute_probability(records, 0, 40), 99.53)

    def test_invalid_bounds_rejected_before_computing(self):
        for lower, upper in ((10, 10), (20, 10), ("abc", 10), (None, 5), (float("inf"), 5)):
            with self.assertRaises(analytics.InvalidProbabilityBounds):
                analytics.compute_probability([], lower, upper)


class DistributionTests(SimpleTestCase):
    def test_percentages_sum_to_hundred(self):
        records = [record(1, measured=30), record(2, measured=45), record(3, measured=25), record(1, measured=None)]
        result = analytics.distribution_by_device(records)
        self.assertAlmostEqual(sum(d["percentage"] for d in result), 100.0)
        self.assertEqual([d["device"] for d in result], ["Device 1", "Device 2", "Device 3"])

    def test_zero_total_returns_empty(self):
        self.assertEqual(analytics.distribution_by_device([record(1, measured=0), record(2, measured=0)]), [])
        self.assertEqual(analytics.distribution_by_device([]), [])

    def test_records_without_device_are_grouped_as_unknown(self):
        result = analytics.distribution_by_device([record(None, measured=10), record(1, measured=10)])
        self.assertEqual(result[0], {"device": analytics.UNKNOWN_DEVICE_NAME, "percentage": 50.0})


class ComputeAnalyticsTests(SimpleTestCase):
    def test_empty_sample_is_all_zero(self):
        self.assertEqual(analytics.compute_analytics([]), analytics.empty_analytics())
        self.assertEqual(
            analytics.compute_analytics([record(measured=None, paid=10)]),
            analytics.empty_analytics(),
        )

    def test_end_to_end_scenario(self):
        records = [
            record(1, measured=100, paid=50, company=110),
            record(1, measured=200, paid=95, company=190),
            record(2, measured=50, paid=30, company=60),
        ]
        result = analytics.compute_analytics(records)

        self.assertEqual(round(result["mean"]["overall"], 2), 58.33)
        self.assertEqual(result["mean"]["by_device"], [
            {"device_id": 1, "device_name": "Device 1", "mean": 72.5},
            {"device_id": 2, "device_name": "Device 2", "mean": 30.0},
        ])
        distribution = {d["device"]: round(d["percentage"], 2) for d in result["distribution_by_device"]}
        self.assertEqual(distribution, {"Device 1": 85.71, "Device 2": 14.29})
        self.assertEqual(result["normal_distribution"]["mean"], result["mean"]["overall"])
        self.assertEqual(result["normal_distribution"]["standard_deviation"], result["standard_deviation"])
        self.assertGreater(result["correlation"]["company_vs_measured"], 0.9)
        self.assertGreater(result["regression"]["r_squared"], 0.9)
        self.assertGreater(result["regression"]["slope"], 0)

    def test_measured_vs_paid_counts_missing_amounts_as_zero(self):
        records = [
            record(1, measured=100, paid=50),
            record(1, measured=200, paid=100),
            record(1, measured=300, paid=None),
        ]
        result = analytics.compute_analytics(records)
        # the missing amount drags the fit down instead of being dropped
        self.assertLess(result["correlation"]["measured_vs_paid"], 1)
        self.assertEqual(result["mean"]["overall"], 75)

    def test_payment_summary_rounds(self):
        summary = analytics.payment_summary([record(paid=10), record(paid=20), record(paid=25)])
        self.assertEqual(summary, {"mean": 18.33, "standard_deviation": 6.24})
        self.assertEqual(analytics.payment_summary([]), {"mean": 0, "standard_deviation": 0})

    def test_non_finite_measurements_never_reach_the_result(self):
        for bad in ("nan", "inf", float("-inf")):
            with self.subTest(bad=bad):
                records = [
                    BillRecord.from_mapping({"id": 1, "device_id": 1, "consumo_iot": bad, "amount_paid": 10}),
                    BillRecord.from_mapping({
                        "id": 2, "device_id": 2, "consumo_iot": 5, "amount_paid": 20,
                        "device": {"id": 2, "name": "Shop"},
                    }),
                ]
                self.assertIsNone(records[0].measured_consumption_kwh)
                result = analytics.compute_analytics(records)
                self.assertEqual(result["distribution_by_device"], [{"device": "Shop", "percentage": 100.0}])
                self.assertTrue(all(math.isfinite(value) for value in numbers(result)))


class ApiTestBase(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="ana@example.com", email="ana@example.com", password="secret123")
        self.other = User.objects.create_user(username="bia@example.com", email="bia@example.com", password="secret123")
        self.client.force_authenticate(user=self.user)

    def make_device(self, owner=None, code="REL001", name="Meter", measured=None):
        return Device.objects.create(
            owner=owner or self.user, name=name, identification_code=code,
            property_address="Rua A, 1", measured_consumption_kwh=measured,
        )

    def make_bill(self, device, month, measured, paid, company=None):
        return Bill.objects.create(
            owner=device.owner, device=device, month_year=month,
            company_consumption_kwh=company, measured_consumption_kwh=measured,
            amount_paid=paid, price_per_kwh=Decimal("0.9"),
        )


class AuthApiTests(APITestCase):
    def test_register_then_obtain_token(self):
        resp = self.client.post(reverse("register"), {
            "email": "Carla@Example.com", "password": "secret123", "full_name": " Carla Souza ",
        }, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["user"]["email"], "carla@example.com")
        self.assertEqual(resp.json()["user"]["full_name"], "Carla Souza")
        self.assertIn("access", resp.json()["token"])

        resp = self.client.post(reverse("jwt-create"), {
            "username": "carla@example.com", "password": "secret123",
        }, format="json")
        self.assertEqual(resp.status_code, 200)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {resp.json()['access']}")
        resp = self.client.get(reverse("me"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["user"]["email"], "carla@example.com")

    def test_register_duplicate_email(self):
        User.objects.create_user(username="dup@example.com", password="secret123")
        resp = self.client.post(reverse("register"), {
            "email": "dup@example.com", "password": "secret123", "full_name": "Dup",
        }, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_login_ignores_email_case(self):
        User.objects.create_user(username="carla@example.com", email="carla@example.com", password="secret123")
        resp = self.client.post(reverse("jwt-create"), {
            "username": "Carla@Example.com", "password": "secret123",
        }, format="json")
        self.assertEqual(resp.status_code, 200, resp.content)
        self.assertIn("access", resp.json())

        resp = self.client.post(reverse("jwt-create"), {
            "username": "Carla@Example.com", "password": "wrong-pass",
        }, format="json")
        self.assertEqual(resp.status_code, 401)

    def test_dashboard_requires_auth(self):
        self.assertEqual(self.client.get(reverse("dashboard-analytics")).status_code, 401)


class DeviceApiTests(ApiTestBase):
    def test_codes_are_generated_in_sequence(self):
        url = reverse("device-list")
        first = self.client.post(url, {"name": "House", "property_address": "Rua A, 1"}, format="json")
        second = self.client.post(url, {"name": "Shop", "property_address": "Rua B, 2"}, format="json")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["identification_code"], "REL001")
        self.assertEqual(second.json()["identification_code"], "REL002")

    def test_codes_stay_unique_across_users(self):
        self.make_device(code="REL001")
        self.make_device(code="REL002")
        self.assertEqual(services.next_identification_code(self.other), "REL003")

    def test_devices_are_scoped_to_owner(self):
        self.make_device(owner=self.other, code="REL009")
        mine = self.make_device(code="REL001")
        resp = self.client.get(reverse("device-list"))
        self.assertEqual([d["id"] for d in resp.json()], [mine.pk])

    def test_readings_listed_newest_first(self):
        device = self.make_device()
        services.record_consumption("REL001", 10)
        services.record_consumption("REL001", 20)
        resp = self.client.get(reverse("device-readings", args=[device.pk]))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()), 2)
        self.assertEqual(resp.json()[0]["device_code"], "REL001")

    def test_create_regenerates_code_taken_meanwhile(self):
        # another user grabbed REL001 between code generation and save
        self.make_device(owner=self.other, code="REL001")
        with mock.patch("api.services.next_identification_code", side_effect=["REL001", "REL002"]) as generate:
            resp = self.client.post(reverse("device-list"), {
                "name": "House", "property_address": "Rua A, 1",
            }, format="json")
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertEqual(resp.json()["identification_code"], "REL002")
        self.assertEqual(generate.call_count, 2)
        self.assertEqual(Device.objects.filter(owner=self.user).count(), 1)

    def test_delete_device_with_bills_conflicts(self):
        device = self.make_device()
        self.make_bill(device, "2024-01-01", 100, 50)
        resp = self.client.delete(reverse("device-detail", args=[device.pk]))
        self.assertEqual(resp.status_code, 409)


class BillApiTests(ApiTestBase):
    def test_create_inherits_device_measurement(self):
        device = self.make_device(measured=Decimal("110.50"))
        resp = self.client.post(reverse("bill-list"), {
            "device_id": device.pk, "month_year": "2024-03", "company_consumption_kwh": 120,
            "amount_paid": 100, "price_per_kwh": 0.9,
        }, format="json")
        self.assertEqual(resp.status_code, 201, resp.content)
        body = resp.json()
        self.assertEqual(body["month_year"], "2024-03")
        self.assertEqual(body["measured_consumption_kwh"], 110.5)
        self.assertEqual(body["device"]["identification_code"], "REL001")
        self.assertEqual(Bill.objects.get().owner, self.user)

    def test_cannot_attach_other_users_device(self):
        device = self.make_device(owner=self.other, code="REL005")
        resp = self.client.post(reverse("bill-list"), {
            "device_id": device.pk, "month_year": "2024-03", "amount_paid": 100, "price_per_kwh": 0.9,
        }, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_rejects_bad_month_and_non_positive_amount(self):
        device = self.make_device()
        resp = self.client.post(reverse("bill-list"), {
            "device_id": device.pk, "month_year": "March", "amount_paid": 0, "price_per_kwh": 0.9,
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("month_year", resp.json())
        self.assertIn("amount_paid", resp.json())


class BillModelTests(ApiTestBase):
    def build_bill(self, device, day=1):
        return Bill(
            owner=self.user, device=device, month_year=date(2024, 3, day),
            amount_paid=Decimal("10.00"), price_per_kwh=Decimal("0.9"),
        )

    def test_full_clean_rejects_device_of_another_owner(self):
        bill = self.build_bill(self.make_device(owner=self.other, code="REL005"))
        with self.assertRaisesMessage(ValidationError, "not owned by user"):
            bill.full_clean()

    def test_full_clean_moves_month_to_first_day(self):
        bill = self.build_bill(self.make_device(), day=15)
        bill.full_clean()
        self.assertEqual(bill.month_year, date(2024, 3, 1))


class DashboardApiTests(ApiTestBase):
    def setUp(self):
        super().setUp()
        one = self.make_device(code="REL001", name="House")
        two = self.make_device(code="REL002", name="Shop")
        self.make_bill(one, "2024-01-01", 100, 50)
        self.make_bill(one, "2024-02-01", 200, 95)
        self.make_bill(two, "2024-01-01", 50, 30)

    def test_bills_listed_oldest_first(self):
        resp = self.client.get(reverse("dashboard-list"))
        months = [b["month_year"] for b in resp.json()["bills"]]
        self.assertEqual(months, ["2024-01", "2024-01", "2024-02"])

    def test_analytics(self):
        resp = self.client.get(reverse("dashboard-analytics"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertAlmostEqual(body["mean"]["overall"], 58.333, places=2)
        distribution = {d["device"]: round(d["percentage"], 2) for d in body["distribution_by_device"]}
        self.assertEqual(distribution, {"House": 85.71, "Shop": 14.29})

    def test_analytics_ignores_other_users(self):
        self.client.force_authenticate(user=self.other)
        resp = self.client.get(reverse("dashboard-analytics"))
        self.assertEqual(resp.json(), analytics.empty_analytics())

    def test_summary(self):
        resp = self.client.get(reverse("dashboard-summary"))
        self.assertEqual(resp.json()["mean"], 58.33)

    def test_probability(self):
        resp = self.client.get(reverse("dashboard-probability"), {"min": -1000, "max": 1000})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["probability"], 100)

    def test_probability_rejects_bad_bounds(self):
        url = reverse("dashboard-probability")
        self.assertEqual(self.client.get(url).status_code, 400)
        self.assertEqual(self.client.get(url, {"min": "x", "max": 10}).status_code, 400)
        self.assertEqual(self.client.get(url, {"min": 50, "max": 50}).status_code, 400)

    def test_probability_empty_sample_is_zero_not_error(self):
        self.client.force_authenticate(user=self.other)
        resp = self.client.get(reverse("dashboard-probability"), {"min": 10, "max": 20})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"probability": 0})


class ConsumptionApiTests(ApiTestBase):
    def setUp(self):
        super().setUp()
        self.device = self.make_device(code="REL001")
        self.client.force_authenticate(user=None)

    def test_record_via_query_string_is_case_insensitive(self):
        resp = self.client.get(reverse("consumption-record"), {"disp_id": "rel001", "consumo_wh": "120.5"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ConsumptionReading.objects.get().consumption_wh, 120.5)

    def test_record_via_json_body_with_legacy_key(self):
        resp = self.client.post(reverse("consumption-record"), {"disp_id": "REL001", "consumo": 80}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.device.readings.count(), 1)

    def test_unknown_device_and_bad_value(self):
        url = reverse("consumption-record")
        self.assertEqual(self.client.get(url, {"disp_id": "REL999", "consumo_wh": 1}).status_code, 404)
        self.assertEqual(self.client.get(url, {"disp_id": "REL001", "consumo_wh": "abc"}).status_code, 400)
        self.assertEqual(self.client.get(url, {"disp_id": "REL001", "consumo_wh": -5}).status_code, 400)

    def test_service_rejects_negative_values(self):
        with self.assertRaises(ValueError):
            services.record_consumption("REL001", -1)


class CommandTests(ApiTestBase):
    def test_rollup_consumption(self):
        device = self.make_device(code="REL001")
        ConsumptionReading.objects.create(device=device, consumption_wh=1500)
        ConsumptionReading.objects.create(device=device, consumption_wh=500)
        out = StringIO()
        call_command("rollup_consumption", stdout=out)
        device.refresh_from_db()
        self.assertEqual(device.measured_consumption_kwh, Decimal("2.00"))
        self.assertIn("Updated measured consumption for 1 devices", out.getvalue())

    def test_load_bills(self):
        self.make_device(code="REL001")
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bills.csv"
            path.write_text(
                "device_code,month_year,consumo_estimado,consumo_iot,valor_pago,preco_kwh\n"
                "rel001,2024-01,120,100,50.00,0.85\n"
                "REL001,2024-02,210,,95.00,0.85\n",
                encoding="utf-8",
            )
            call_command("load_bills", str(path), owner=self.user.username, dry_run=True, stdout=StringIO())
            self.assertEqual(Bill.objects.count(), 0)

            call_command("load_bills", str(path), owner=self.user.username, stdout=StringIO())
            call_command("load_bills", str(path), owner=self.user.username, stdout=StringIO())
        self.assertEqual(Bill.objects.count(), 2)
        feb = Bill.objects.get(month_year="2024-02-01")
        self.assertIsNone(feb.measured_consumption_kwh)
        self.assertEqual(feb.amount_paid, Decimal("95.00"))

    def test_load_bills_unknown_device(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bills.csv"
            path.write_text("device_code,month_year,amount_paid,price_per_kwh\nREL404,2024-01,10,1\n")
            with self.assertRaises(CommandError):
                call_command("load_bills", str(path), owner=self.user.username, stdout=StringIO())

    def test_load_bills_rejects_non_finite_numbers(self):
        self.make_device(code="REL001")
        for row in ("NaN,0.85,100", "50.00,Infinity,100", "50.00,0.85,nan"):
            with self.subTest(row=row), tempfile.TemporaryDirectory() as tmp:
                path = Path(tmp) / "bills.csv"
                path.write_text(
                    "device_code,month_year,valor_pago,preco_kwh,consumo_iot\n"
                    f"REL001,2024-01,{row}\n",
                    encoding="utf-8",
                )
                with self.assertRaisesMessage(CommandError, "Row 2: invalid"):
                    call_command("load_bills", str(path), owner=self.user.username, stdout=StringIO())
        self.assertEqual(Bill.objects.count(), 0)

    def test_load_bills_runs_model_validation(self):
        self.make_device(code="REL001")
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bills.csv"
            path.write_text(
                "device_code,month_year,amount_paid,price_per_kwh\n"
                "REL001,2024-01,123456789.00,0.85\n",
                encoding="utf-8",
            )
            with self.assertRaisesMessage(CommandError, "Row 2:"):
                call_command("load_bills", str(path), owner=self.user.username, stdout=StringIO())
        self.assertEqual(Bill.objects.count(), 0)

    def test_bill_analytics(self):
        device = self.make_device(code="REL001")
        self.make_bill(device, "2024-01-01", 100, 50)
        self.make_bill(device, "2024-02-01", 200, 100)
        out = StringIO()
        call_command("bill_analytics", self.user.username, "--min", "0", "--max", "1000", stdout=out)
        result = json.loads(out.getvalue())
        self.assertEqual(result["mean"]["overall"], 75)
        self.assertEqual(result["probability"], 100)

        with self.assertRaises(CommandError):
            call_command("bill_analytics", self.user.username, "--min", "5", "--max", "1", stdout=StringIO())
