import csv
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from api.models import Device, Bill


"""
This management command imports **monthly bills** from a CSV export into the database.

Purpose:
- Backfills bill history (e.g. from the utility's portal or the old spreadsheet)
  so the dashboard analytics have data to work with.
- Resolves each row's device by identification code and checks it belongs to
  the row's owner.
- Upserts by (device, month), so re-running the same file is safe; every row
  goes through the model validation (Bill.full_clean) before it is saved.
- Provides a dry-run mode for testing CSV validity without database changes.
"""

def norm(s):
    return (s or "").strip()


def parse_month(raw, row_num):
    value = norm(raw)[:7]
    try:
        year, month = (int(part) for part in value.split("-"))
        return date(year, month, 1)
    except ValueError:
        raise CommandError(f"Row {row_num}: invalid month (expected YYYY-MM): {raw!r}")


def parse_decimal(raw, row_num, column, required=False):
    value = norm(raw).replace(",", ".")
    if not value:
        if required:
            raise CommandError(f"Row {row_num}: {column} is required.")
        return None
    try:
        number = Decimal(value)
    except InvalidOperation:
        raise CommandError(f"Row {row_num}: invalid {column} value: {raw!r}")
    if not number.is_finite():
        raise CommandError(f"Row {row_num}: invalid {column} value: {raw!r}")
    return number


class Command(BaseCommand):
    help = "Load Bill rows from a CSV (owner, device_code, month_year, amounts...)."

    def add_arguments(self, parser):
        parser.add_argument("csv_path", type=str, help="Path to bills CSV")
        parser.add_argument("--owner", type=str, default=None, help="Username (if CSV doesn't include an owner column)")
        parser.add_argument("--dry-run", action="store_true", help="Parse and report only, no DB writes")
        parser.add_argument("--delimiter", default=",", help="CSV delimiter (default ,)")

    def handle(self, *args, **opts):
        csv_path = Path(opts["csv_path"]).resolve()
        if not csv_path.exists():
            raise CommandError(f"CSV not found: {csv_path}")

        owner_cli = opts["owner"]
        dry = opts["dry_run"]
        delimiter = opts["delimiter"]
        User = get_user_model()

        with csv_path.open(newline="", encoding="utf-8-sig") as f:
            reader = csv.reader(f, delimiter=delimiter)
            try:
                headers = next(reader)
            except StopIteration:
                self.stdout.write(self.style.WARNING("Empty CSV"))
                return
        headers_lower = [h.strip().lower() for h in headers]

        def idx_of(*candidates):
            for c in candidates:
                if c in headers_lower:
                    return headers_lower.index(c)
            return None

        owner_idx = idx_of("owner", "user", "username", "email")
        device_idx = idx_of("device_code", "identification_code", "codigo", "device")
        month_idx = idx_of("month_year", "month", "data")
        company_idx = idx_of("company_consumption_kwh", "consumo_estimado")
        measured_idx = idx_of("measured_consumption_kwh", "consumo_iot")
        paid_idx = idx_of("amount_paid", "valor_pago")
        price_idx = idx_of("price_per_kwh", "preco_kwh")

        if None in (device_idx, month_idx, paid_idx, price_idx):
            raise CommandError(
                f"CSV must include device_code/month_year/amount_paid/price_per_kwh columns. Found: {headers}"
            )

        default_owner = None
        if owner_idx is None:
            if not owner_cli:
                raise CommandError("No owner column in CSV. Provide --owner <username>.")
            try:
                default_owner = User.objects.get(username=owner_cli)
            except User.DoesNotExist:
                raise CommandError(f"User not found: {owner_cli}")

        created = 0
        updated = 0
        total = 0

        with csv_path.open(newline="", encoding="utf-8-sig") as f, transaction.atomic():
            reader = csv.reader(f, delimiter=delimiter)
            next(reader, None)  # skip header row

            for i, row in enumerate(reader, start=2):
                if not row:
                    continue
                total += 1

                owner = default_owner
                if owner_idx is not None:
                    username = norm(row[owner_idx])
                    try:
                        owner = User.objects.get(username=username)
                    except User.DoesNotExist:
                        raise CommandError(f"Row {i}: user not found: {username}")

                month_year = parse_month(row[month_idx], i)
                code = norm(row[device_idx])
                try:
                    device = Device.objects.get(identification_code__iexact=code, owner=owner)
                except Device.DoesNotExist:
                    raise CommandError(f"Row {i}: device {code!r} not found for {owner.username}")

                amount_paid = parse_decimal(row[paid_idx], i, "amount_paid", required=True)
                price = parse_decimal(row[price_idx], i, "price_per_kwh", required=True)
                if amount_paid <= 0 or price <= 0:
                    raise CommandError(f"Row {i}: amount_paid and price_per_kwh must be positive.")

                values = {
                    "owner": owner,
                    "company_consumption_kwh": (
                        parse_decimal(row[company_idx], i, "company_consumption_kwh")
                        if company_idx is not None else None
                    ),
                    "amount_paid": amount_paid,
                    "price_per_kwh": price,
                }
                # Leave measured empty so the bill inherits the device roll-up on create
                if measured_idx is not None:
                    measured = parse_decimal(row[measured_idx], i, "measured_consumption_kwh")
                    if measured is not None:
                        values["measured_consumption_kwh"] = measured

                if dry:
                    continue

                bill = Bill.objects.filter(device=device, month_year=month_year).first()
                created_flag = bill is None
                if created_flag:
                    bill = Bill(device=device, month_year=month_year)
                for field, value in values.items():
                    setattr(bill, field, value)
                try:
                    bill.full_clean()
                except ValidationError as e:
                    raise CommandError(f"Row {i}: {'; '.join(e.messages)}")
                bill.save()
                if created_flag:
                    created += 1
                else:
                    updated += 1

        self.stdout.write(self.style.SUCCESS(
            f"Processed {total} rows. Created: {created}, Updated: {updated}."
        ))
