from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLES = ('viewer', 'editor', 'admin')


# Database Models
class School(db.Model):
    __tablename__ = 'schools'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class SchoolAccess(db.Model):
    __tablename__ = 'school_access'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    user_id = db.Column(db.String(100), nullable=False)  # Opaque id from the identity provider
    role = db.Column(db.String(20), nullable=False, default='viewer')  # viewer, editor, admin
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    school = db.relationship('School', backref=db.backref('access_grants', lazy='dynamic'))

    # One grant per user per school
    __table_args__ = (db.UniqueConstraint('school_id', 'user_id', name='unique_school_user_access'),)

    def to_dict(self, include_school=False):
        data = {
            'id': self.id,
            'school_id': self.school_id,
            'user_id': self.user_id,
            'role': self.role,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_school:
            data['school'] = self.school.to_dict() if self.school else None
        return data


class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    student_id = db.Column(db.String(50), nullable=False)  # AC-No from the attendance device
    system_id = db.Column(db.String(36), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    class_department = db.Column(db.String(100), nullable=False, default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    school = db.relationship('School', backref=db.backref('students', lazy='dynamic'))

    # Unique constraint to prevent duplicate student IDs within the same school
    __table_args__ = (db.UniqueConstraint('school_id', 'student_id', name='unique_school_student_id'),)

    def to_dict(self):
        return {
            'id': self.id,
            'school_id': self.school_id,
            'student_id': self.student_id,
            'system_id': self.system_id,
            'name': self.name,
            'class_department': self.class_department,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Attendance(db.Model):
    __tablename__ = 'attendance'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)  # Internal Student.id
    date = db.Column(db.Date, nullable=False)
    punch_times = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship('Student', backref=db.backref('attendance_records', lazy='dynamic'))

    __table_args__ = (db.UniqueConstraint('student_id', 'date', name='unique_student_date'),)

    def to_dict(self, include_student=True):
        data = {
            'id': self.id,
            'student_id': self.student_id,
            'date': self.date.isoformat(),
            'punch_times': list(self.punch_times or []),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_student:
            data['students'] = self.student.to_dict() if self.student else None
        return data


class Expense(db.Model):
    __tablename__ = 'expenses'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    month_year = db.Column(db.String(7), nullable=False)  # YYYY-MM
    expense_name = db.Column(db.String(400), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    school = db.relationship('School', backref=db.backref('expenses', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'school_id': self.school_id,
            'month_year': self.month_year,
            'expense_name': self.expense_name,
            'amount': self.amount,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Meal(db.Model):
    __tablename__ = 'meals'

    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    day_of_week = db.Column(db.String(10), nullable=False)
    total_cost = db.Column(db.Float, nullable=False, default=0.0)  # Sum of item totals
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    school = db.relationship('School', backref=db.backref('meals', lazy='dynamic'))
    meal_items = db.relationship('MealItem', backref='meal', cascade='all, delete-orphan',
                                 order_by='MealItem.id')

    # One meal day per school per date
    __table_args__ = (db.UniqueConstraint('school_id', 'date', name='unique_school_meal_date'),)

    def recalculate_total(self):
        self.total_cost = round(sum(item.total for item in self.meal_items), 2)

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'school_id': self.school_id,
            'date': self.date.isoformat(),
            'day_of_week': self.day_of_week,
            'total_cost': self.total_cost,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data['meal_items'] = [item.to_dict() for item in self.meal_items]
        return data


class MealItem(db.Model):
    __tablename__ = 'meal_items'

    id = db.Column(db.Integer, primary_key=True)
    meal_id = db.Column(db.Integer, db.ForeignKey('meals.id'), nullable=False)
    item_name = db.Column(db.String(200), nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Float, nullable=False)  # unit_price * quantity

    def to_dict(self):
        return {
            'id': self.id,
            'meal_id': self.meal_id,
            'item_name': self.item_name,
            'unit_price': self.unit_price,
            'quantity': self.quantity,
            'total': self.total,
        }
