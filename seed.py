import os
import random
from datetime import timedelta
from faker import Faker
from app import create_app
from models import (
    db, User, Farmer, Farm, Report, ReportComment, Notification, ActivityLog,
    PestCategory, CropType, Barangay, SystemSetting, News, REPORT_TYPES, utcnow
)
from reference import DEFAULT_BARANGAYS, DEFAULT_CROP_TYPES, DEFAULT_PEST_TYPES

# Initialize Faker (Philippine locale for names and mobile numbers)
fake = Faker('en_PH')
app = create_app(os.environ.get('FLASK_CONFIG', 'development'))

MUNICIPALITY = 'Norala'
PROVINCE = 'South Cotabato'


def clear_data():
    """Deletes existing data to avoid duplicates (Order matters for Foreign Keys)"""
    print("🗑️  Cleaning old data...")
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    print("✅ Database cleared.")

# --------------------------------------------------
# 1. REFERENCE TABLES (Barangays, Pests, Crops, Settings)
# --------------------------------------------------
def seed_references():
    print("🏗️  Seeding Reference Tables...")

    barangays = []
    for item in DEFAULT_BARANGAYS:
        brgy = Barangay(
            name=item['name'],
            municipality=MUNICIPALITY,
            province=PROVINCE,
            latitude=item['latitude'],
            longitude=item['longitude']
        )
        db.session.add(brgy)
        barangays.append(brgy)

    affected = {'Corn Borer': 'Corn', 'Aphids': 'Vegetables, Corn'}
    for item in DEFAULT_PEST_TYPES:
        db.session.add(PestCategory(
            name=item['name'],
            description=fake.sentence(),
            severity_level=item['severity_level'],
            affected_crops=affected.get(item['name'], 'Rice')
        ))

    for item in DEFAULT_CROP_TYPES:
        db.session.add(CropType(name=item['name'], season=item['season'], description=fake.sentence()))

    for key, value, description in [
        ('app_name', 'CropAid', 'Application name'),
        ('municipality', MUNICIPALITY, 'Target municipality'),
        ('province', PROVINCE, 'Target province'),
    ]:
        db.session.add(SystemSetting(setting_key=key, setting_value=value, description=description))

    db.session.commit()
    return barangays

# --------------------------------------------------
# 2. USERS (Admin + Farmers with Farms)
# --------------------------------------------------
def seed_admin():
    print("🛡️  Seeding Admin...")
    admin = User(username="admin", email="admin@cropaid.local", role="admin")
    admin.set_password("admin123")
    db.session.add(admin)
    db.session.commit()
    return admin


def seed_farmers(barangays, count=20):
    print("👨‍🌾 Seeding Farmers & Farms...")

    farmers = []
    for i in range(count):
        try:
            barangay = random.choice(barangays)
            first_name, last_name = fake.first_name(), fake.last_name()

            user = User(
                username=f"farmer{i + 1}",
                email=f"farmer{i + 1}@cropaid.local",
                role="farmer"
            )
            user.set_password("password123")
            db.session.add(user)
            db.session.flush()

            farmer = Farmer(
                user_id=user.id,
                rsbsa_id=f"12-63-11-{i + 100:03d}",
                first_name=first_name,
                last_name=last_name,
                address_sitio=f"Purok {random.randint(1, 7)}",
                address_barangay=barangay.name,
                address_municipality=MUNICIPALITY,
                address_province=PROVINCE,
                cellphone=f"09{random.randint(100000000, 999999999)}",
                sex=random.choice(['Male', 'Female']),
                date_of_birth=fake.date_of_birth(minimum_age=25, maximum_age=70),
                civil_status=random.choice(['Single', 'Married', 'Widowed'])
            )
            db.session.add(farmer)
            db.session.flush()

            for _ in range(random.randint(1, 2)):
                sowing = fake.date_between(start_date='-120d', end_date='-30d')
                db.session.add(Farm(
                    farmer_id=farmer.id,
                    location_sitio=f"Sitio {fake.last_name()}",
                    location_barangay=barangay.name,
                    location_municipality=MUNICIPALITY,
                    location_province=PROVINCE,
                    latitude=barangay.latitude + random.uniform(-0.01, 0.01),
                    longitude=barangay.longitude + random.uniform(-0.01, 0.01),
                    farm_size_hectares=round(random.uniform(0.5, 5.0), 2),
                    planting_method=random.choice(['Direct Seeding', 'Transplanting']),
                    date_of_sowing=sowing,
                    date_of_transplanting=sowing + timedelta(days=21),
                    land_category=random.choice(['Irrigated', 'Rainfed']),
                    soil_type=random.choice(['Clay Loam', 'Sandy Loam', 'Silty Clay']),
                    topography=random.choice(['Flat', 'Rolling']),
                    irrigation_source=random.choice(['NIA', 'Pump', 'Rain']),
                    tenural_status=random.choice(['Owner', 'Tenant', 'Lessee']),
                    current_crop=random.choice(['Rice', 'Corn']),
                    cover_type=random.choice(['Multi-Risk', 'Natural Disaster']),
                    amount_cover=random.choice([20000, 30000, 40000]),
                    insurance_premium=random.choice([1200, 1800, 2400])
                ))

            db.session.commit()
            farmers.append(farmer)
        except Exception as e:
            db.session.rollback()
            print(f"Error seeding farmer {i}: {e}")

    return farmers

# --------------------------------------------------
# 3. REPORTS, COMMENTS & NOTIFICATIONS
# --------------------------------------------------
def seed_reports(farmers, admin, count=40):
    print("📋 Seeding Reports...")

    pests = [p.name for p in PestCategory.query.all()]
    for _ in range(count):
        farmer = random.choice(farmers)
        farm = random.choice(farmer.farms)
        report_type = random.choice(REPORT_TYPES)
        created = utcnow() - timedelta(days=random.randint(0, 30), hours=random.randint(0, 23))

        details = {
            'description': fake.sentence(),
            'cropType': farm.current_crop,
            'damageLevel': random.choice(['Low', 'Moderate', 'Severe']),
            'affectedArea': str(round(random.uniform(0.1, float(farm.farm_size_hectares)), 2))
        }
        if report_type in ('pest', 'mix'):
            details['pestType'] = random.choice(pests)

        report = Report(
            user_id=farmer.user_id,
            farm_id=farm.id,
            type=report_type,
            status='pending',
            details=details,
            location=farm.location_barangay,
            latitude=farm.latitude,
            longitude=farm.longitude,
            created_at=created,
            updated_at=created
        )
        db.session.add(report)
        db.session.flush()

        db.session.add(Notification(
            user_id=admin.id,
            type='new_report',
            title=f"New {report_type} report",
            message=f"A new {report_type} report has been submitted",
            reference_id=report.id,
            created_at=created
        ))

        outcome = random.choice(['pending', 'verified', 'verified', 'resolved', 'rejected'])
        if outcome != 'pending':
            reviewed = created + timedelta(hours=random.randint(2, 48))
            report.status = outcome
            report.admin_notes = fake.sentence()
            report.verified_by = admin.id
            report.verified_at = reviewed
            db.session.add(Notification(
                user_id=farmer.user_id,
                type='status_change',
                title=f"Report {outcome}",
                message=f"Your {report_type} report has been {outcome}",
                reference_id=report.id,
                is_read=random.choice([True, False]),
                created_at=reviewed
            ))
            db.session.add(ReportComment(
                report_id=report.id,
                user_id=admin.id,
                message=report.admin_notes,
                is_admin=True,
                created_at=reviewed
            ))

        db.session.add(ActivityLog(
            user_id=farmer.user_id,
            action='report_submit',
            entity_type='report',
            entity_id=report.id,
            details={'type': report_type},
            created_at=created
        ))

    db.session.commit()


def seed_news(admin):
    print("📰 Seeding News...")
    items = [
        ('Pest Alert: Black Bug Infestation Warning', 'alert', 'high'),
        ('New Seed Distribution Program', 'news', 'low'),
        ('Flood Warning: Low-lying Areas', 'alert', 'high'),
        ('Free Pest Control Training', 'news', 'low'),
        ('Fertilizer Subsidy Application Open', 'advisory', 'medium'),
    ]
    for days_ago, (title, news_type, priority) in enumerate(items, start=1):
        db.session.add(News(
            title=title,
            content=fake.paragraph(nb_sentences=4),
            type=news_type,
            priority=priority,
            author_id=admin.id,
            created_at=utcnow() - timedelta(days=days_ago)
        ))
    db.session.commit()

# --------------------------------------------------
# RUNNER
# --------------------------------------------------
if __name__ == '__main__':
    with app.app_context():
        # Create tables first if they don't exist
        db.create_all()

        clear_data()

        # Seed in order of dependency
        barangays = seed_references()
        admin = seed_admin()
        farmers = seed_farmers(barangays)
        if farmers:
            seed_reports(farmers, admin)
        seed_news(admin)

        print("✅ Seeding complete. Admin login: admin / admin123, farmers: farmer1..farmerN / password123")
