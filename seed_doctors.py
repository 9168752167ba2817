#!/usr/bin/env python3
"""Seed doctors and their weekly availability into the clinic database.

Reads `doctors.csv` when given (columns: name, specialty, is_available,
qualification, experience_years, email, phone). Placeholder names such as
"Dr. 12" are replaced with deterministic generated names, stable across runs.
Without a CSV, `--count` doctors are generated.

Usage: python seed_doctors.py [--csv doctors.csv] [--count 10]
"""
import argparse
import csv
import random
import re
from pathlib import Path

import availability
from config import Config
from db import Store
from models import Doctor

FIRST_NAMES = [
    'Priya','Amit','Suman','Neha','Karan','Pooja','Vikram','Anita','Ritu','Siddharth','Isha','Rahul','Meera','Kavita','Ramesh'
]
LAST_NAMES = [
    'Sharma','Singh','Patel','Iyer','Nair','Bose','Kumar','Verma','Reddy','Desai','Kapoor','Das','Menon','Chopra','Gupta'
]
SPECIALTIES = ['General', 'Cardiology', 'ENT', 'Orthopedics', 'Dermatology', 'Pediatrics', 'Gynecology', 'Neurology']

# Monday-Friday, morning and afternoon clinics
DEFAULT_WEEK = [(day, start, end) for day in range(5) for start, end in (('09:00', '12:00'), ('14:00', '17:00'))]

NUMERIC_PATTERN = re.compile(r'^dr[\.\s]*\d+[-_]?\d*$', re.IGNORECASE)


def is_numeric_name(name: str) -> bool:
    if not name:
        return True
    n = name.strip()
    if NUMERIC_PATTERN.match(n.replace(' ', '').lower()):
        return True
    if n.lower().startswith('guest') or n.isdigit():
        return True
    return False


def make_name(seed: int) -> str:
    rnd = random.Random(seed)
    return f"Dr. {rnd.choice(FIRST_NAMES)} {rnd.choice(LAST_NAMES)}"


def load_rows(path: Path):
    with path.open(newline='', encoding='utf-8') as f:
        rows = list(csv.DictReader(f))
    for idx, r in enumerate(rows):
        if is_numeric_name(r.get('name') or ''):
            r['name'] = make_name(idx + 1)
    return rows


def generate_rows(count: int):
    rows = []
    for idx in range(count):
        rows.append({
            'name': make_name(idx + 1),
            'specialty': SPECIALTIES[idx % len(SPECIALTIES)],
            'is_available': '1',
            'experience_years': str((idx * 7) % 30 + 1),
        })
    return rows


def seed(store, rows, week=DEFAULT_WEEK):
    """Insert one Doctor per row plus the weekly templates; returns the new ids."""
    ids = []
    with store.session() as session:
        for r in rows:
            years = r.get('experience_years')
            doctor = Doctor(
                name=r.get('name'),
                specialty=r.get('specialty') or None,
                is_available=str(r.get('is_available', '1')).strip() in ('1', 'True', 'true', 't', 'yes'),
                qualification=r.get('qualification') or None,
                experience_years=int(years) if years and str(years).isdigit() else None,
                email=r.get('email') or None,
                phone=r.get('phone') or None,
            )
            session.add(doctor)
            session.flush()
            for day, start, end in week:
                availability.add_template(session, doctor.id, day, start, end)
            ids.append(doctor.id)
    return ids


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--csv', type=Path, default=None)
    parser.add_argument('--count', type=int, default=10)
    parser.add_argument('--database-url', default=Config.DATABASE_URL)
    args = parser.parse_args()

    if args.csv is not None and not args.csv.exists():
        print(f'No doctors CSV found at {args.csv}')
        return
    rows = load_rows(args.csv) if args.csv is not None else generate_rows(args.count)

    store = Store(args.database_url)
    store.create_all()
    ids = seed(store, rows)
    print(f'Seeded {len(ids)} doctors into {args.database_url}')


if __name__ == '__main__':
    main()
