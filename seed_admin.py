import os

from app import create_app
from models import db, User

app = create_app(os.environ.get('FLASK_CONFIG', 'development'))

with app.app_context():
    # Check if admin already exists to avoid duplicates
    if not User.query.filter_by(username='admin').first():
        admin = User(
            username='admin',
            email=os.environ.get('ADMIN_EMAIL', 'admin@cropaid.local'),
            role='admin'
        )

        # This handles the hashing automatically
        admin.set_password(os.environ.get('ADMIN_PASSWORD', 'admin123'))

        db.session.add(admin)
        db.session.commit()
        print("✅ Admin user created successfully!")
    else:
        print("⚠️  Admin user already exists.")
