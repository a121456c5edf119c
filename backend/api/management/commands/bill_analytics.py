import json

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from api import analytics
from api.services import fetch_bill_records


class Command(BaseCommand):
    help = "Print the dashboard analytics for a user as JSON (optionally with a [min, max] probability)."

    def add_arguments(self, parser):
        parser.add_argument("username", type=str)
        parser.add_argument("--min", type=float, default=None, help="Lower bound for the next-bill probability.")
        parser.add_argument("--max", type=float, default=None, help="Upper bound for the next-bill probability.")

    def handle(self, *args, **opts):
        User = get_user_model()
        try:
            user = User.objects.get(username=opts["username"])
        except User.DoesNotExist:
            raise CommandError(f"User not found: {opts['username']}")

        records = fetch_bill_records(user)
        result = analytics.compute_analytics(records)
        result["summary"] = analytics.payment_summary(records)

        if opts["min"] is not None or opts["max"] is not None:
            try:
                result["probability"] = analytics.compute_probability(records, opts["min"], opts["max"])
            except analytics.InvalidProbabilityBounds as e:
                raise CommandError(str(e))

        self.stdout.write(json.dumps(result, indent=2))
