"""
Blood Type Compatibility Helper
Determines which donor blood types can donate to which recipient blood types
"""
from types import MappingProxyType

from redblood.exceptions import InvalidBloodType

BLOOD_TYPES = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')

# Blood type compatibility matrix: donor -> recipients
COMPATIBILITY = MappingProxyType({
    'O-': frozenset(['O-', 'O+', 'A-', 'A+', 'B-', 'B+', 'AB-', 'AB+']),  # Universal donor
    'O+': frozenset(['O+', 'A+', 'B+', 'AB+']),
    'A-': frozenset(['A-', 'A+', 'AB-', 'AB+']),
    'A+': frozenset(['A+', 'AB+']),
    'B-': frozenset(['B-', 'B+', 'AB-', 'AB+']),
    'B+': frozenset(['B+', 'AB+']),
    'AB-': frozenset(['AB-', 'AB+']),
    'AB+': frozenset(['AB+']),
})

# Recipient -> donors, derived from the matrix above so the two always agree
DONORS_FOR = MappingProxyType({
    recipient: frozenset(
        donor for donor, recipients in COMPATIBILITY.items() if recipient in recipients
    )
    for recipient in BLOOD_TYPES
})


def validate_blood_type(blood_type):
    if not isinstance(blood_type, str) or blood_type not in COMPATIBILITY:
        raise InvalidBloodType(f"Invalid blood type: {blood_type!r}")
    return blood_type


def is_compatible(donor_blood_type, recipient_blood_type):
    """
    Check if donor blood type is compatible with recipient

    Args:
        donor_blood_type: Donor's blood type (e.g., 'O+')
        recipient_blood_type: Recipient's blood type (e.g., 'A+')

    Returns:
        Boolean: True if compatible, False otherwise
    """
    validate_blood_type(donor_blood_type)
    validate_blood_type(recipient_blood_type)

    return recipient_blood_type in COMPATIBILITY[donor_blood_type]


def compatible_donors_for(recipient_blood_type):
    """
    Get the blood types that can donate to recipient

    Returns:
        frozenset of compatible donor blood types
    """
    return DONORS_FOR[validate_blood_type(recipient_blood_type)]


def compatible_recipients_for(donor_blood_type):
    """
    Get the blood types that can receive from donor

    Returns:
        frozenset of compatible recipient blood types
    """
    return COMPATIBILITY[validate_blood_type(donor_blood_type)]
