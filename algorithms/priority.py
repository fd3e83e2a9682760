# algorithms/priority.py
from redblood.exceptions import ValidationError

URGENCY_LEVELS = ('low', 'medium', 'high', 'critical')

# Lower rank sorts first
URGENCY_RANK = {
    'critical': 0,
    'high': 1,
    'medium': 2,
    'low': 3,
}


def validate_urgency(urgency):
    if not isinstance(urgency, str) or urgency not in URGENCY_RANK:
        raise ValidationError(f"Urgency must be one of {', '.join(URGENCY_LEVELS)}")
    return urgency


def urgency_rank(urgency):
    """
    Convert urgency level to its sort rank. Unknown levels sort last.
    """
    return URGENCY_RANK.get(urgency, len(URGENCY_RANK))

