#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
إنشاء ملف .uhc تجريبي للاختبار
Creates a test .uhc (SQLite container) file for import testing

يقوم بإنشاء ملف .uhc يحتوي على:
- Manifest (البيانات الوصفية)
- بيانات تجريبية (مباني، وحدات، أسر، أشخاص، علاقات، وثائق، مطالبات، مسوحات)
- Content checksum
- Digital signature (HMAC)

للتشغيل:
    python tools/create_test_uhc.py data/sample.uhc
    python tools/create_test_uhc.py data/dup.uhc --duplicate-person --unsigned
"""

import argparse
import sys
import uuid
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.config import PipelineSettings  # noqa: E402
from models.vocabulary import RELATION_OWNER, RELATION_TENANT, default_versions  # noqa: E402
from services.container_writer import ContainerWriter  # noqa: E402
from services.integrity_service import IntegrityVerifier  # noqa: E402

FIRST_NAMES = ["أحمد", "محمد", "فاطمة", "عائشة", "علي"]
FAMILY_NAMES = ["الأحمد", "الخطيب", "السعيد", "المصري", "الدمشقي"]


def create_test_buildings(count=3):
    """إنشاء بيانات مباني تجريبية"""
    buildings = []
    for i in range(1, count + 1):
        buildings.append({
            "id": f"B-{i:03d}",
            "governorate_code": "01",
            "district_code": "01",
            "sub_district_code": "01",
            "community_code": "001",
            "neighborhood_code": "001",
            "building_number": f"{i:05d}",
            "building_type": 1,
            "building_status": 1 if i % 2 else 2,
            "number_of_property_units": 2,
            "number_of_apartments": 2,
            "number_of_shops": 0,
            "number_of_floors": i + 1,
            # ~200 m apart so they are not proximity duplicates
            "latitude": 36.2000 + i * 0.002,
            "longitude": 37.1500 + i * 0.002,
        })
    return buildings


def create_test_units(buildings):
    """إنشاء بيانات وحدات تجريبية"""
    units = []
    for b in buildings:
        for n in (1, 2):
            units.append({
                "id": f"U-{b['id']}-{n}",
                "building_id": b["id"],
                "unit_identifier": f"{n:02d}",
                "unit_type": 1,
                "status": 1,
                "floor_number": n,
                "number_of_rooms": 3,
                "area_square_meters": 90.0 + n * 10,
            })
    return units


def create_test_people(units):
    """أسرة وشخص (رب الأسرة) لكل وحدة"""
    households, persons = [], []
    for i, unit in enumerate(units):
        person_id = f"P-{i + 1:03d}"
        household_id = f"H-{i + 1:03d}"
        first = FIRST_NAMES[i % len(FIRST_NAMES)]
        family = FAMILY_NAMES[i % len(FAMILY_NAMES)]
        households.append({
            "id": household_id,
            "property_unit_id": unit["id"],
            "head_of_household_name": f"{first} {family}",
            "household_size": 1,
            "male_count": 1,
            "female_count": 0,
            "head_of_household_person_id": person_id,
        })
        persons.append({
            "id": person_id,
            "family_name_arabic": family,
            "first_name_arabic": first,
            "father_name_arabic": "عبدالله",
            "national_id": f"0100{i + 1:07d}",
            "year_of_birth": 1970 + i,
            "gender": 1,
            "mobile_number": f"+963944{i + 1:06d}",
            "household_id": household_id,
        })
    return households, persons


def create_test_tenure(units, persons):
    """علاقة ملكية/إيجار، وثيقة، مطالبة ومسح"""
    relations, evidences, claims, surveys = [], [], [], []
    for i, (unit, person) in enumerate(zip(units, persons)):
        owner = i % 2 == 0
        relation = {
            "id": f"R-{i + 1:03d}",
            "person_id": person["id"],
            "property_unit_id": unit["id"],
            "relation_type": RELATION_OWNER if owner else RELATION_TENANT,
            "contract_type": None if owner else 3,
            "ownership_share": 100.0 if owner else None,
            "start_date": "2010-01-01",
        }
        relations.append(relation)
        evidences.append({
            "id": f"E-{i + 1:03d}",
            "evidence_type": 2 if owner else 3,
            "description": "Deed" if owner else "Rental contract",
            "original_file_name": f"doc-{i + 1}.jpg",
            "mime_type": "image/jpeg",
            "person_property_relation_id": relation["id"],
        })
        claims.append({
            "id": f"C-{i + 1:03d}",
            "property_unit_id": unit["id"],
            "claim_type": "ownership" if owner else "occupancy",
            "claim_source": 1,
            "primary_claimant_id": person["id"],
            "ownership_share": 100.0 if owner else None,
        })
        surveys.append({
            "id": f"S-{i + 1:03d}",
            "building_id": unit["building_id"],
            "property_unit_id": unit["id"],
            "survey_date": date.today().isoformat(),
            "type": 1,
        })
    return relations, evidences, claims, surveys


def build_writer(buildings=3, duplicate_person=False):
    writer = ContainerWriter(vocab_versions=default_versions())
    b = create_test_buildings(buildings)
    units = create_test_units(b)
    households, persons = create_test_people(units)
    relations, evidences, claims, surveys = create_test_tenure(units, persons)

    if duplicate_person:
        twin = dict(persons[0])
        twin["id"] = f"P-DUP-{uuid.uuid4().hex[:6]}"
        twin["household_id"] = None
        persons.append(twin)

    writer.add_rows("buildings", b)
    writer.add_rows("property_units", units)
    writer.add_rows("households", households)
    writer.add_rows("persons", persons)
    writer.add_rows("person_property_relations", relations)
    writer.add_rows("evidences", evidences)
    writer.add_rows("claims", claims)
    writer.add_rows("surveys", surveys)
    for e in evidences:
        writer.add_attachment(e["id"], f"scan of {e['original_file_name']}".encode("utf-8"),
                              e["original_file_name"])
    return writer


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a sample .uhc package")
    parser.add_argument("output", nargs="?", default="data/test_package.uhc")
    parser.add_argument("--buildings", type=int, default=3)
    parser.add_argument("--duplicate-person", action="store_true",
                        help="Add a second copy of the first person")
    parser.add_argument("--unsigned", action="store_true")
    args = parser.parse_args(argv)

    writer = build_writer(args.buildings, args.duplicate_person)
    verifier = IntegrityVerifier(PipelineSettings.from_config())
    path = writer.write(args.output, verifier=verifier, sign=not args.unsigned)

    print("=" * 60)
    print(f"✅ Package created: {path}")
    print(f"   package_id: {writer.package_id}")
    for table, rows in writer.tables.items():
        print(f"   {table}: {len(rows)}")
    print(f"   attachments: {len(writer.attachments)}")
    print("=" * 60)


if __name__ == "__main__":
    main()
