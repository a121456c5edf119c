import math
from dataclasses import dataclass
from decimal import Decimal
from collections import namedtuple

"""
Bill analytics engine for the dashboard.

Purpose:
- Turns a user's bill records into descriptive statistics: device consumption
  distribution, mean / population standard deviation of amounts paid,
  Pearson correlations and an OLS fit of amount paid vs measured consumption.
- Estimates the probability that the next bill falls in a [min, max] range,
  treating amounts paid as normally distributed.
- Never touches the ORM: callers hand it a materialized list of BillRecord.

Degenerate samples (no records, zero variance, zero consumption) are not
errors; every numeric output falls back to 0 so the dashboard always gets a
render-safe payload. Only bad probability bounds raise.
"""

UNKNOWN_DEVICE_NAME = "Unknown"

MISSING_EXCLUDE = "exclude"
MISSING_ZERO = "zero"

# Abramowitz & Stegun 7.1.26 (max abs error 7.5e-8)
A1 = 0.254829592
A2 = -0.284496736
A3 = 1.421413741
A4 = -1.453152027
A5 = 1.061405429
P = 0.3275911


class AnalyticsError(ValueError):
    """Caller supplied input the engine refuses to compute on."""


class InvalidProbabilityBounds(AnalyticsError):
    pass


Regression = namedtuple("Regression", ["slope", "intercept", "r_squared"])


def to_number(value):
    """Coerce ORM / JSON values to float; None for missing, unparseable or non-finite."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, Decimal)):
            number = float(value)
        else:
            number = float(str(value).strip())
    except ValueError:
        return None
    # "nan" / "inf" parse as floats but are not measurements
    return number if math.isfinite(number) else None


def normalize_device_id(value):
    """
    Single normalization point for device ids.
    "3", 3 and 3.0 all become int 3 so they group together.
    """
    if value is None or value == "":
        return None
    number = to_number(value)
    if number is None:
        return str(value)
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class DeviceRef:
    id: object
    name: str


@dataclass(frozen=True)
class BillRecord:
    id: object
    device_id: object = None
    month_year: str = None
    company_consumption_kwh: float = None
    measured_consumption_kwh: float = None
    amount_paid: float = None
    price_per_kwh: float = None
    device: DeviceRef = None

    def __post_init__(self):
        # frozen dataclass: assign through object.__setattr__
        object.__setattr__(self, "device_id", normalize_device_id(self.device_id))
        for field in ("company_consumption_kwh", "measured_consumption_kwh",
                      "amount_paid", "price_per_kwh"):
            object.__setattr__(self, field, to_number(getattr(self, field)))

    @classmethod
    def from_mapping(cls, data):
        """
        Build a record from a JSON-like dict. Accepts the legacy `consumo_iot`
        key for measured consumption and a `device` dict of {id, name}.
        """
        measured = data.get("measured_consumption_kwh")
        if measured is None:
            measured = data.get("consumo_iot")
        device = data.get("device")
        if isinstance(device, dict):
            device = DeviceRef(id=device.get("id"), name=device.get("name"))
        return cls(
            id=data.get("id"),
            device_id=data.get("device_id"),
            month_year=data.get("month_year"),
            company_consumption_kwh=data.get("company_consumption_kwh"),
            measured_consumption_kwh=measured,
            amount_paid=data.get("amount_paid"),
            price_per_kwh=data.get("price_per_kwh"),
            device=device,
        )

    @property
    def device_name(self):
        if self.device is not None and self.device.name:
            return self.device.name
        return UNKNOWN_DEVICE_NAME


# --- Sample preparation ---

def is_valid_payment(value):
    return value is not None and math.isfinite(value) and value > 0


def analyzable_records(records):
    return [r for r in records if r.measured_consumption_kwh is not None]


def valid_payments(records):
    return [r.amount_paid for r in records if is_valid_payment(r.amount_paid)]


# --- Descriptive statistics ---

def mean(values):
    if not values:
        return 0
    return sum(values) / len(values)


def standard_deviation(values, avg):
    """Population standard deviation (divides by n, not n - 1)."""
    if not values:
        return 0
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def _finite_or_zero(value):
    if value is None or not math.isfinite(value):
        return 0
    return value


def _group_by_device(records):
    # insertion ordered: first appearance of each device wins the slot
    groups = {}
    for record in records:
        groups.setdefault(record.device_id, []).append(record)
    return groups


def mean_by_device(records):
    result = []
    for device_id, group in _group_by_device(records).items():
        if device_id is None:
            continue
        avg = mean(valid_payments(group))
        result.append({
            "device_id": device_id,
            "device_name": group[0].device_name,
            "mean": round(_finite_or_zero(avg), 2),
        })
    return result


# --- Correlation ---

def paired_values(records, x_field, y_field, treat_missing_as=MISSING_EXCLUDE):
    """
    Extract aligned (x, y) lists from records.

    treat_missing_as:
        "exclude" drops a record when either value is missing.
        "zero" keeps every record and substitutes 0 for missing values.
    """
    if treat_missing_as not in (MISSING_EXCLUDE, MISSING_ZERO):
        raise ValueError(f"treat_missing_as must be 'exclude' or 'zero', got {treat_missing_as!r}")

    xs, ys = [], []
    for record in records:
        x = getattr(record, x_field)
        y = getattr(record, y_field)
        if x is None or y is None:
            if treat_missing_as == MISSING_EXCLUDE:
                continue
            x = 0 if x is None else x
            y = 0 if y is None else y
        xs.append(x)
        ys.append(y)
    return xs, ys


def correlation(x, y):
    """Pearson product-moment correlation; 0 when undefined."""
    if len(x) != len(y) or not x:
        return 0

    mean_x = mean(x)
    mean_y = mean(y)
    numerator = 0
    sum_sq_x = 0
    sum_sq_y = 0
    for xi, yi in zip(x, y):
        dx = xi - mean_x
        dy = yi - mean_y
        numerator += dx * dy
        sum_sq_x += dx * dx
        sum_sq_y += dy * dy

    denominator = math.sqrt(sum_sq_x * sum_sq_y)
    if denominator == 0:
        return 0
    return numerator / denominator


# --- Linear regression ---

def linear_regression(x, y):
    """
    OLS fit y = slope * x + intercept.
    Returns Regression(0, 0, 0) for empty, mismatched or constant-x input.
    """
    n = len(x)
    if n == 0 or n != len(y):
        return Regression(0, 0, 0)

    sum_x = sum(x)
    sum_y = sum(y)
    sum_xy = sum(xi * yi for xi, yi in zip(x, y))
    sum_xx = sum(xi * xi for xi in x)

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return Regression(0, 0, 0)

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_res = sum((yi - (slope * xi + intercept)) ** 2 for xi, yi in zip(x, y))
    ss_tot = sum((yi - mean_y) ** 2 for yi in y)
    r_squared = 0 if ss_tot == 0 else 1 - ss_res / ss_tot

    return Regression(slope, intercept, r_squared)


# --- Normal distribution ---

def normal_cdf(z):
    """
    0.5 * (1 + erf(z)) via the A&S rational approximation.
    z goes in unscaled (no 1/sqrt(2)); dashboard figures have always been computed this way.
    """
    if math.isnan(z):
        return 0
    sign = 1 if z >= 0 else -1
    z = abs(z)
    t = 1.0 / (1.0 + P * z)
    y = 1.0 - (((((A5 * t + A4) * t) + A3) * t + A2) * t + A1) * t * math.exp(-z * z)
    return 0.5 * (1.0 + sign * y)


def validate_bounds(lower, upper):
    """Return (lower, upper) as floats or raise InvalidProbabilityBounds."""
    if lower is None or upper is None:
        raise InvalidProbabilityBounds("min and max are required")
    lower_value = to_number(lower)
    upper_value = to_number(upper)
    if lower_value is None or upper_value is None:
        raise InvalidProbabilityBounds("min and max must be finite numbers")
    if lower_value >= upper_value:
        raise InvalidProbabilityBounds("min must be lower than max")
    return lower_value, upper_value


def range_probability(avg, sd, lower, upper):
    """P(lower <= X <= upper) for X ~ N(avg, sd), as a percentage."""
    if not sd or not math.isfinite(sd):
        return 0
    z_min = (lower - avg) / sd
    z_max = (upper - avg) / sd
    probability = normal_cdf(z_max) - normal_cdf(z_min)
    probability = max(0, min(1, probability))
    return round(_finite_or_zero(probability * 100), 2)


def compute_probability(records, lower, upper):
    """
    Probability (percent) that the next bill amount lies in [lower, upper].
    Uses every record with a valid payment, analyzable or not.
    """
    lower, upper = validate_bounds(lower, upper)
    payments = valid_payments(records)
    if not payments:
        return 0
    avg = mean(payments)
    return range_probability(avg, standard_deviation(payments, avg), lower, upper)


# --- Device distribution ---

def distribution_by_device(records):
    totals = {}
    overall = 0
    for device_id, group in _group_by_device(analyzable_records(records)).items():
        total = sum(r.measured_consumption_kwh or 0 for r in group)
        totals[device_id] = (group[0].device_name, total)
        overall += total

    if overall == 0 or not math.isfinite(overall):
        return []
    return [
        {"device": name, "percentage": total / overall * 100}
        for name, total in totals.values()
    ]


# --- Orchestration ---

def empty_analytics():
    return {
        "distribution_by_device": [],
        "mean": {"overall": 0, "by_device": []},
        "standard_deviation": 0,
        "normal_distribution": {"mean": 0, "standard_deviation": 0},
        "correlation": {"company_vs_measured": 0, "measured_vs_paid": 0},
        "regression": {"slope": 0, "intercept": 0, "r_squared": 0},
    }


def compute_analytics(records):
    analyzable = analyzable_records(records)
    if not analyzable:
        return empty_analytics()

    payments = valid_payments(analyzable)
    overall_mean = mean(payments)
    overall_sd = standard_deviation(payments, overall_mean)

    company_vs_measured = correlation(*paired_values(
        analyzable, "company_consumption_kwh", "measured_consumption_kwh",
        treat_missing_as=MISSING_EXCLUDE,
    ))
    # Legacy behaviour: missing amounts count as 0 here, unlike the call above.
    measured, paid = paired_values(
        analyzable, "measured_consumption_kwh", "amount_paid",
        treat_missing_as=MISSING_ZERO,
    )
    fit = linear_regression(measured, paid)

    return {
        "distribution_by_device": distribution_by_device(analyzable),
        "mean": {
            "overall": _finite_or_zero(overall_mean),
            "by_device": mean_by_device(analyzable),
        },
        "standard_deviation": _finite_or_zero(overall_sd),
        "normal_distribution": {
            "mean": _finite_or_zero(overall_mean),
            "standard_deviation": _finite_or_zero(overall_sd),
        },
        "correlation": {
            "company_vs_measured": _finite_or_zero(company_vs_measured),
            "measured_vs_paid": _finite_or_zero(correlation(measured, paid)),
        },
        "regression": {
            "slope": _finite_or_zero(fit.slope),
            "intercept": _finite_or_zero(fit.intercept),
            "r_squared": _finite_or_zero(fit.r_squared),
        },
    }


def payment_summary(records):
    payments = valid_payments(records)
    avg = mean(payments)
    return {
        "mean": round(_finite_or_zero(avg), 2),
        "standard_deviation": round(_finite_or_zero(standard_deviation(payments, avg)), 2),
    }
