# donations/management/commands/import_centers.py
"""
Django Management Command to Import Donation Centers from Excel or CSV
Creates new centers and updates existing ones (matched by name)

USAGE:
    python manage.py import_centers path/to/centers.xlsx
    python manage.py import_centers path/to/centers.csv --dry-run
"""
import os

import pandas as pd
from django.core.management.base import BaseCommand, CommandError

from accounts.permissions import ADMIN, ActingUser
from donations import services
from redblood.exceptions import RedBloodError, ValidationError
from store.base import get_store

REQUIRED_COLUMNS = ['Name', 'Address', 'Latitude', 'Longitude']

# Imports run with staff rights
IMPORTER = ActingUser('import_centers', ADMIN)


def _text(row, column):
    if column not in row or pd.isna(row[column]):
        return None
    return str(row[column]).strip()


def _flag(row, column, default):
    value = _text(row, column)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'y')


def center_from_row(row):
    """Turn one spreadsheet row into donation center fields."""
    services_cell = _text(row, 'Services')
    center = {
        'name': _text(row, 'Name'),
        'address': _text(row, 'Address'),
        'location': {
            'latitude': float(row['Latitude']),
            'longitude': float(row['Longitude']),
        },
        'contact_info': {
            'phone': _text(row, 'Phone Number'),
            'email': _text(row, 'Email'),
            'website': _text(row, 'Website'),
        },
        'walk_in_allowed': _flag(row, 'Walk In Allowed', False),
        'appointment_required': _flag(row, 'Appointment Required', True),
    }
    if services_cell:
        center['services'] = [s.strip() for s in services_cell.split(',') if s.strip()]
    return center


class Command(BaseCommand):
    help = 'Import donation centers from an Excel or CSV file'

    def add_arguments(self, parser):
        parser.add_argument(
            'source_file',
            type=str,
            help='Path to .xlsx or .csv file containing donation center data'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Validate rows without writing anything'
        )

    def handle(self, *args, **options):
        source_file = options['source_file']
        dry_run = options['dry_run']

        if not os.path.exists(source_file):
            raise CommandError(f'File not found: {source_file}')

        if source_file.lower().endswith('.csv'):
            df = pd.read_csv(source_file)
        else:
            df = pd.read_excel(source_file)

        missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing_columns:
            raise CommandError(f'Missing columns: {", ".join(missing_columns)}')

        total = len(df)
        self.stdout.write(f"Found {total} donation centers in {source_file}")

        store = get_store()
        existing = {center.get('name'): center for center in store.query(services.CENTERS)}

        created_count = 0
        updated_count = 0
        errors = []

        for index, row in df.iterrows():
            label = f"[{index + 1}/{total}]"
            try:
                center = center_from_row(row)
                if not center['name']:
                    raise ValidationError('Name is empty')

                if dry_run:
                    services.validate_center_fields(center)
                    self.stdout.write(f"{label} OK: {center['name']}")
                    continue

                current = existing.get(center['name'])
                if current:
                    services.update_center(current['id'], center, IMPORTER, store=store)
                    updated_count += 1
                    self.stdout.write(self.style.WARNING(f"{label} Updated: {center['name']}"))
                else:
                    existing[center['name']] = services.create_center(center, IMPORTER, store=store)
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f"{label} Created: {center['name']}"))

            except (RedBloodError, ValueError, TypeError) as e:
                errors.append(f"row {index + 1}: {e}")
                self.stdout.write(self.style.ERROR(f"{label} Error: {e}"))

        self.stdout.write(f"Created: {created_count}")
        self.stdout.write(f"Updated: {updated_count}")
        self.stdout.write(f"Errors:  {len(errors)}")
        if errors and not dry_run:
            self.stdout.write(self.style.WARNING('Rows with errors were skipped'))
