# crm_database.py

from extensions import db
from utils.datetime_utils import utc_now


# --- Organization Model ---
class Organization(db.Model):
    """Tenant boundary. Every contact, tag and import job belongs to one."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    # Denormalized so "how many contacts" never needs a table scan
    current_contacts = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now)

    users = db.relationship('User', backref='organization', lazy=True)


# --- User Model ---
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    # Flask-Login required properties
    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def get_id(self):
        return str(self.id)


# --- Contact Model ---
class Contact(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(254), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    company = db.Column(db.String(200), nullable=True)
    position = db.Column(db.String(150), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    custom_fields = db.Column(db.JSON, nullable=True)  # Extra spreadsheet columns
    status = db.Column(db.String(20), nullable=False, default='ACTIVE')
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)

    organization = db.relationship('Organization', backref=db.backref('contacts', lazy='dynamic'))

    # Email is unique per tenant, not globally. NULL emails never collide.
    __table_args__ = (
        db.UniqueConstraint('organization_id', 'email', name='uq_contact_organization_email'),
    )


# --- Tag Model ---
class Tag(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(7), nullable=False, default='#8b5cf6')
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'name', name='uq_tag_organization_name'),
    )


# --- ImportJob Model ---
class ImportJob(db.Model):
    """
    Durable record of a background contact import.

    The id doubles as the Celery task id so pollers and workers agree on a
    single handle. Status follows waiting -> active -> completed | failed.
    """
    __tablename__ = 'import_job'

    id = db.Column(db.String(64), primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='waiting', index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    result = db.Column(db.JSON, nullable=True)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True, index=True)
