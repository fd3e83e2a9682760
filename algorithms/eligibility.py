from datetime import date, datetime, timedelta

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from redblood.exceptions import ValidationError

# Constants
MIN_AGE = 18
MAX_AGE = 65
MIN_WEIGHT_KG = 50
MIN_HEMOGLOBIN_MALE = 13.5  # g/dL
MIN_HEMOGLOBIN_FEMALE = 12.5  # g/dL
DONATION_INTERVAL_DAYS = 56  # 8 weeks

RESTRICTIONS = [
    'Recent tattoos or piercings (within 3-6 months)',
    'Recent travel to certain countries',
    'Certain medications',
    'Certain medical conditions',
    'Pregnancy or recent childbirth',
]


def as_date(value):
    """Coerce a date, datetime or ISO string to a date (None passes through)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        parsed = parse_date(value)
        if parsed is None:
            parsed_dt = parse_datetime(value)
            parsed = parsed_dt.date() if parsed_dt else None
        if parsed is not None:
            return parsed
    raise ValidationError(f"Invalid date: {value!r}")


def calculate_age(date_of_birth, today):
    """Age in whole years using calendar arithmetic."""
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def next_eligible_date(last_donation_date):
    last_donation_date = as_date(last_donation_date)
    if last_donation_date is None:
        return None
    return last_donation_date + timedelta(days=DONATION_INTERVAL_DAYS)


def check_eligibility(profile, today=None):
    """
    Check whether a donor may give blood today.

    Every rule is evaluated, so a donor can fail several at once:
    - Age between 18 and 65 (skipped when date_of_birth is unknown)
    - Weight of at least 50 kg
    - Hemoglobin of at least 13.5 g/dL (male) or 12.5 g/dL (otherwise)
    - 56 days since the last donation
    - No recent illness, medications, recent travel or pregnancy

    Args:
        profile (Mapping): date_of_birth, weight_kg, hemoglobin, gender,
            last_donation_date, recent_illness, medications, recent_travel,
            pregnant. Missing keys are treated as unknown.
        today (date): Evaluation date, defaults to the local date

    Returns:
        dict: eligible, reasons, next_eligible_date
    """
    today = as_date(today) or timezone.localdate()
    reasons = []
    next_date = None

    date_of_birth = as_date(profile.get('date_of_birth'))
    if date_of_birth:
        age = calculate_age(date_of_birth, today)
        if age < MIN_AGE:
            reasons.append(f'You must be at least {MIN_AGE} years old to donate blood')
        elif age > MAX_AGE:
            reasons.append(f'The maximum age for blood donation is {MAX_AGE} years')

    weight = profile.get('weight_kg')
    if weight is not None and weight < MIN_WEIGHT_KG:
        reasons.append(f'You must weigh at least {MIN_WEIGHT_KG} kg to donate blood')

    hemoglobin = profile.get('hemoglobin')
    if hemoglobin is not None:
        if profile.get('gender') == 'male':
            min_hemoglobin = MIN_HEMOGLOBIN_MALE
        else:
            min_hemoglobin = MIN_HEMOGLOBIN_FEMALE
        if hemoglobin < min_hemoglobin:
            reasons.append(
                f'Your hemoglobin level must be at least {min_hemoglobin} g/dL to donate blood'
            )

    last_donation = as_date(profile.get('last_donation_date'))
    if last_donation:
        days_since = (today - last_donation).days
        if days_since < DONATION_INTERVAL_DAYS:
            next_date = next_eligible_date(last_donation)
            remaining = DONATION_INTERVAL_DAYS - days_since
            reasons.append(
                f'You must wait at least {DONATION_INTERVAL_DAYS} days between whole blood donations. '
                f'You can donate again in {remaining} days.'
            )

    if profile.get('recent_illness'):
        reasons.append('You cannot donate if you have been ill recently')

    # Any medication disqualifies; there is no allowlist of safe medications
    if profile.get('medications'):
        reasons.append('Some medications may disqualify you from donating blood')

    if profile.get('recent_travel'):
        reasons.append('Recent travel to certain areas may disqualify you from donating blood')

    if profile.get('pregnant'):
        reasons.append('You cannot donate blood during pregnancy or for 6 weeks after giving birth')

    return {
        'eligible': not reasons,
        'reasons': reasons,
        'next_eligible_date': next_date,
    }


def eligibility_criteria():
    """Published thresholds, as shown to donors before they book."""
    return {
        'min_age': MIN_AGE,
        'max_age': MAX_AGE,
        'min_weight_kg': MIN_WEIGHT_KG,
        'min_hemoglobin': {
            'male': MIN_HEMOGLOBIN_MALE,
            'female': MIN_HEMOGLOBIN_FEMALE,
        },
        'donation_interval_days': DONATION_INTERVAL_DAYS,
        'restrictions': list(RESTRICTIONS),
    }
