"""
Devices push hourly Wh readings, but bills and analytics work with a monthly kWh figure.
This command rolls ConsumptionReadings up into Device.measured_consumption_kwh.

What it does for each device:
- Sum readings (Wh) inside the optional [since, until) window.
- Convert to kWh and store it on the device; new bills without a measured value inherit it.
"""

from datetime import timezone as dt_timezone

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from api.models import Device
from api.services import rollup_device_consumption


def parse_bound(raw, name):
    if not raw:
        return None
    dt = parse_datetime(raw.replace("Z", "+00:00"))
    if dt is None:
        raise CommandError(f"Could not parse --{name}: {raw!r}")
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt


class Command(BaseCommand):
    help = "Roll IoT consumption readings up into each device's measured kWh."

    def add_arguments(self, parser):
        parser.add_argument("--device", help="Optional device identification code to scope.")
        parser.add_argument("--since", help="ISO start bound (UTC, inclusive).")
        parser.add_argument("--until", help="ISO end bound (UTC, exclusive).")

    def handle(self, *args, **opts):
        code = (opts.get("device") or "").strip() or None
        since = parse_bound(opts.get("since"), "since")
        until = parse_bound(opts.get("until"), "until")
        if since and until and since >= until:
            raise CommandError("--since must be before --until.")

        qs = Device.objects.all()
        if code:
            qs = qs.filter(identification_code__iexact=code)

        devices = list(qs)
        if not devices:
            self.stdout.write("No devices to process.")
            return

        processed = 0
        for device in devices:
            kwh = rollup_device_consumption(device, since=since, until=until)
            if kwh is None:
                continue
            self.stdout.write(f"{device.identification_code}: {kwh} kWh")
            processed += 1

        self.stdout.write(self.style.SUCCESS(f"Updated measured consumption for {processed} devices."))
