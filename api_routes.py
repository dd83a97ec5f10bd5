import calendar
import logging
import re
from datetime import date

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import or_

from app_models import db, ROLES, School, SchoolAccess, Student, Attendance, Expense, Meal, MealItem
from data_isolation_helpers import (
    from_json_field,
    from_query_arg,
    from_view_arg,
    get_current_user_id,
    get_json_object,
    get_role_permissions,
    get_user_role,
    school_role_required,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
MONTH_RE = re.compile(r'^\d{4}-\d{2}$')


def _to_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _month_bounds(month):
    year, month_num = (int(part) for part in month.split('-'))
    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, 1), date(year, month_num, last_day)


def _json_body():
    body = get_json_object()
    if body is None:
        abort(400, description='Invalid request body. Expected a JSON object.')
    return body


def _get_or_none(model, pk):
    return db.session.get(model, pk) if pk is not None else None


def _attendance_school_id(kwargs):
    attendance = _get_or_none(Attendance, kwargs.get('attendance_id'))
    return attendance.student.school_id if attendance else None


def _student_school_id(kwargs):
    body = _json_body()
    student = _get_or_none(Student, _to_int(body.get('student_id')))
    return student.school_id if student else None


def _access_school_id(kwargs):
    access = _get_or_none(SchoolAccess, _to_int(request.args.get('id')))
    return access.school_id if access else None


def _meal_school_id(kwargs):
    meal = _get_or_none(Meal, _to_int(request.args.get('mealId')))
    return meal.school_id if meal else None


def _meal_item_meal_school_id(kwargs):
    meal = _get_or_none(Meal, _to_int(_json_body().get('meal_id')))
    return meal.school_id if meal else None


def _meal_item_school_id(kwargs):
    item = _get_or_none(MealItem, _to_int(_json_body().get('itemId')))
    return item.meal.school_id if item else None


# Schools and access
@api_bp.route('/schools', methods=['GET'])
def list_schools():
    """Schools the user can reach, plus every grant on those schools"""
    user_id = request.args.get('user_id') or get_current_user_id()
    if not user_id:
        return jsonify({'error': 'Missing user_id'}), 400

    try:
        access_data = SchoolAccess.query.filter_by(user_id=user_id).all()
        school_ids = [a.school_id for a in access_data if a.school is not None]

        all_access_data = []
        if school_ids:
            all_access_data = SchoolAccess.query.filter(SchoolAccess.school_id.in_(school_ids)).all()

        return jsonify({
            'accessData': [a.to_dict(include_school=True) for a in access_data],
            'allAccessData': [a.to_dict() for a in all_access_data],
        })
    except Exception as e:
        logger.exception("Error fetching schools")
        return jsonify({'error': 'Internal Server Error', 'details': str(e)}), 500


@api_bp.route('/user-schools', methods=['GET'])
def user_schools():
    """Grants held by one user, each with its school, ordered by school name"""
    user_id = request.args.get('userId') or get_current_user_id()
    if not user_id:
        return jsonify({'error': 'Missing userId'}), 400

    access_data = (
        SchoolAccess.query.join(School)
        .filter(SchoolAccess.user_id == user_id)
        .order_by(School.name.asc())
        .all()
    )
    logger.info("Found %d access records for user %s", len(access_data), user_id)
    return jsonify([a.to_dict(include_school=True) for a in access_data])


@api_bp.route('/schools/create', methods=['POST'])
def create_school():
    body = _json_body()
    name = (body.get('name') or '').strip()
    user_id = body.get('user_id') or get_current_user_id()

    if not user_id or not name:
        return jsonify({'error': 'Missing user_id or name'}), 400

    try:
        school = School(name=name, address=body.get('address'))
        db.session.add(school)
        db.session.flush()

        # The creator administers the new school
        db.session.add(SchoolAccess(school_id=school.id, user_id=user_id, role='admin'))
        db.session.commit()

        logger.info("Created school %s (%s) for user %s", school.id, name, user_id)
        return jsonify({'success': True, 'school': school.to_dict()})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error creating school")
        return jsonify({'error': 'Failed to create school', 'details': str(e)}), 500


@api_bp.route('/schools/delete', methods=['DELETE'])
@school_role_required('admin', from_query_arg('id'))
def delete_school():
    """Delete a school together with everything that belongs to it"""
    id_param = request.args.get('id')
    if not id_param:
        return jsonify({'error': 'Missing school ID'}), 400
    school_id = _to_int(id_param)
    if school_id is None:
        return jsonify({'error': 'Invalid school ID'}), 400

    school = db.session.get(School, school_id)
    if school is None:
        return jsonify({'error': 'School not found'}), 404

    try:
        student_ids = db.select(Student.id).where(Student.school_id == school_id)
        Attendance.query.filter(Attendance.student_id.in_(student_ids)).delete(synchronize_session=False)
        Student.query.filter_by(school_id=school_id).delete(synchronize_session=False)
        Expense.query.filter_by(school_id=school_id).delete(synchronize_session=False)
        meal_ids = db.select(Meal.id).where(Meal.school_id == school_id)
        MealItem.query.filter(MealItem.meal_id.in_(meal_ids)).delete(synchronize_session=False)
        Meal.query.filter_by(school_id=school_id).delete(synchronize_session=False)
        SchoolAccess.query.filter_by(school_id=school_id).delete(synchronize_session=False)
        db.session.delete(school)
        db.session.commit()

        logger.info("Deleted school %s", school_id)
        return jsonify({'message': 'School deleted successfully'})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting school %s", school_id)
        return jsonify({'error': 'Failed to delete school', 'details': str(e)}), 500


@api_bp.route('/access/add', methods=['POST'])
@school_role_required('admin', from_json_field('school_id'))
def add_access():
    body = _json_body()
    school_id = _to_int(body.get('school_id'))
    user_id = body.get('user_id')
    role = body.get('role')

    if not school_id or not user_id or not role:
        return jsonify({'error': 'Missing required fields'}), 400
    if role not in ROLES:
        return jsonify({'error': f"Invalid role '{role}'. Expected one of: {', '.join(ROLES)}"}), 400
    if db.session.get(School, school_id) is None:
        return jsonify({'error': 'School not found'}), 404

    existing_access = SchoolAccess.query.filter_by(school_id=school_id, user_id=user_id).first()
    if existing_access:
        return jsonify({'error': 'User already has access to this school'}), 409

    try:
        access = SchoolAccess(school_id=school_id, user_id=user_id, role=role)
        db.session.add(access)
        db.session.commit()
        return jsonify({'success': True, 'access': access.to_dict()})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error adding user access")
        return jsonify({'error': 'Failed to add user access', 'details': str(e)}), 500


@api_bp.route('/access/remove', methods=['DELETE'])
@school_role_required('admin', _access_school_id)
def remove_access():
    id_param = request.args.get('id')
    if not id_param:
        return jsonify({'error': 'Missing access ID'}), 400
    access_id = _to_int(id_param)
    if access_id is None:
        return jsonify({'error': 'Invalid access ID'}), 400

    access = db.session.get(SchoolAccess, access_id)
    if access is None:
        return jsonify({'error': 'Access record not found'}), 404

    try:
        db.session.delete(access)
        db.session.commit()
        return jsonify({'success': True})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting access %s", access_id)
        return jsonify({'error': 'Failed to remove user access', 'details': str(e)}), 500


@api_bp.route('/role', methods=['GET'])
def user_role():
    user_id = request.args.get('userId') or get_current_user_id()
    school_id = _to_int(request.args.get('schoolId'))

    if not user_id or not school_id:
        return jsonify({'error': 'Missing userId or schoolId'}), 400

    role = get_user_role(user_id, school_id)
    return jsonify({'role': role, 'permissions': get_role_permissions(role)})


# Students
@api_bp.route('/students/<int:school_id>', methods=['GET'])
def list_students(school_id):
    students = Student.query.filter_by(school_id=school_id).order_by(Student.name.asc()).all()
    return jsonify([s.to_dict() for s in students])


# Attendance
@api_bp.route('/attendance', methods=['GET'])
def list_attendance():
    """
    Attendance for one school, either for a single day or a whole month.

    The month view is paginated; the day view carries a present/total summary.
    """
    school_id_param = request.args.get('school_id')
    month = request.args.get('month')
    single_date = request.args.get('date')
    sort_by = request.args.get('sortBy', 'date')
    sort_order = request.args.get('sortOrder', 'desc')
    search = request.args.get('search', '').strip()

    if not school_id_param:
        return jsonify({'error': 'school_id is required'}), 400
    school_id = _to_int(school_id_param)
    if school_id is None:
        return jsonify({'error': 'school_id must be a valid number'}), 400
    if db.session.get(School, school_id) is None:
        return jsonify({'error': 'School not found'}), 404

    query = Attendance.query.join(Student).filter(Student.school_id == school_id)

    if single_date:
        if not DATE_RE.match(single_date):
            return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD format'}), 400
        try:
            day = date.fromisoformat(single_date)
        except ValueError:
            return jsonify({'error': 'Invalid date value'}), 400
        query = query.filter(Attendance.date == day)
        is_paginated = False
    elif month:
        if not MONTH_RE.match(month):
            return jsonify({'error': 'Invalid month format. Use YYYY-MM format'}), 400
        try:
            start, end = _month_bounds(month)
        except (ValueError, calendar.IllegalMonthError):
            return jsonify({'error': 'Invalid month value'}), 400
        query = query.filter(Attendance.date >= start, Attendance.date <= end)
        is_paginated = True
    else:
        return jsonify({
            'error': 'Either month or date parameter must be provided',
            'details': "Provide either 'month' parameter (YYYY-MM format) or 'date' parameter (YYYY-MM-DD format)",
        }), 400

    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Student.name.ilike(pattern),
            Student.class_department.ilike(pattern),
            Student.student_id.ilike(pattern),
        ))

    descending = sort_order == 'desc'
    if sort_by == 'name':
        query = query.order_by(Student.name.desc() if descending else Student.name.asc())
    elif sort_by == 'class':
        query = query.order_by(
            Student.class_department.desc() if descending else Student.class_department.asc(),
            Student.name.asc(),
        )
    else:
        query = query.order_by(Attendance.date.desc() if descending else Attendance.date.asc(), Student.name.asc())

    page = max(1, _to_int(request.args.get('page'), 1))
    limit = min(50, max(10, _to_int(request.args.get('limit'), 25)))

    pagination = None
    summary = None
    if is_paginated:
        total = query.count()
        records = query.offset((page - 1) * limit).limit(limit).all()
        pagination = {
            'page': page,
            'limit': limit,
            'total': total,
            'hasMore': (page - 1) * limit + limit < total,
        }
    else:
        records = query.all()
        summary = {
            'total': len(records),
            'present': sum(1 for r in records if r.punch_times),
            'date': single_date,
        }

    return jsonify({
        'data': [r.to_dict() for r in records],
        'pagination': pagination,
        'summary': summary,
    })


@api_bp.route('/attendance', methods=['POST'])
@school_role_required('editor', _student_school_id)
def create_attendance():
    body = _json_body()
    student_pk = _to_int(body.get('student_id'))
    raw_date = body.get('date')

    if not student_pk or not raw_date:
        return jsonify({'error': 'Missing required fields'}), 400
    try:
        day = date.fromisoformat(str(raw_date)[:10])
    except ValueError:
        return jsonify({'error': 'Invalid date value'}), 400

    if db.session.get(Student, student_pk) is None:
        return jsonify({'error': 'Student not found'}), 404

    existing = Attendance.query.filter_by(student_id=student_pk, date=day).first()
    if existing:
        return jsonify({'error': 'Attendance already exists for this student on this date'}), 409

    try:
        attendance = Attendance(student_id=student_pk, date=day, punch_times=[])
        db.session.add(attendance)
        db.session.commit()
        return jsonify(attendance.to_dict())
    except Exception as e:
        db.session.rollback()
        logger.exception("Error creating attendance")
        return jsonify({'error': 'Server error', 'details': str(e)}), 500


@api_bp.route('/attendance/<int:attendance_id>/punch', methods=['PUT'])
@school_role_required('editor', _attendance_school_id)
def add_punch_time(attendance_id):
    body = _json_body()
    new_punch_time = str(body.get('newPunchTime') or '').strip()
    if not new_punch_time:
        return jsonify({'error': 'Missing punch time'}), 400

    attendance = db.session.get(Attendance, attendance_id)
    if attendance is None:
        return jsonify({'error': 'Attendance record not found'}), 404

    try:
        attendance.punch_times = sorted(set(attendance.punch_times or []) | {new_punch_time})
        db.session.commit()
        return jsonify(attendance.to_dict())
    except Exception as e:
        db.session.rollback()
        logger.exception("Error updating punch times")
        return jsonify({'error': 'Failed to update punch times', 'details': str(e)}), 500


@api_bp.route('/attendance/<int:attendance_id>/punch', methods=['DELETE'])
@school_role_required('editor', _attendance_school_id)
def remove_punch_time(attendance_id):
    body = _json_body()
    time_index = _to_int(body.get('timeIndex'))
    if time_index is None:
        return jsonify({'error': 'Missing timeIndex'}), 400

    attendance = db.session.get(Attendance, attendance_id)
    if attendance is None:
        return jsonify({'error': 'Attendance record not found'}), 404

    punch_times = list(attendance.punch_times or [])
    if not 0 <= time_index < len(punch_times):
        return jsonify({'error': 'timeIndex out of range'}), 400

    try:
        del punch_times[time_index]
        attendance.punch_times = punch_times
        db.session.commit()
        return jsonify(attendance.to_dict())
    except Exception as e:
        db.session.rollback()
        logger.exception("Error removing punch time")
        return jsonify({'error': 'Failed to remove punch time', 'details': str(e)}), 500


@api_bp.route('/attendance/<int:attendance_id>', methods=['DELETE'])
@school_role_required('editor', _attendance_school_id)
def delete_attendance(attendance_id):
    attendance = db.session.get(Attendance, attendance_id)
    if attendance is None:
        return jsonify({'error': 'Attendance record not found'}), 404

    try:
        db.session.delete(attendance)
        db.session.commit()
        return jsonify({'message': 'Deleted successfully'})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting attendance %s", attendance_id)
        return jsonify({'error': 'Failed to delete attendance', 'details': str(e)}), 500


@api_bp.route('/attendance/school/<int:school_id>', methods=['GET'])
def school_attendance(school_id):
    """Every attendance record of a school, newest first"""
    records = (
        Attendance.query.join(Student)
        .filter(Student.school_id == school_id)
        .order_by(Attendance.date.desc(), Student.name.asc())
        .all()
    )
    return jsonify([r.to_dict() for r in records])


@api_bp.route('/attendance-report', methods=['POST'])
def attendance_report():
    """Month of attendance for the selected students, feeding the PDF report"""
    body = _json_body()
    student_ids = body.get('studentIds')
    month = body.get('month')
    school_id = _to_int(body.get('schoolId'))

    if not student_ids or not month or not school_id:
        return jsonify({'error': 'Missing required parameters: studentIds, month, schoolId'}), 400
    if not isinstance(student_ids, list):
        return jsonify({'error': 'studentIds must be a non-empty array'}), 400
    if not MONTH_RE.match(str(month)):
        return jsonify({'error': 'Invalid month format. Use YYYY-MM format'}), 400

    try:
        start, end = _month_bounds(month)
    except (ValueError, calendar.IllegalMonthError):
        return jsonify({'error': 'Invalid month value'}), 400

    records = (
        Attendance.query.join(Student)
        .filter(
            Student.school_id == school_id,
            Student.student_id.in_([str(s) for s in student_ids]),
            Attendance.date >= start,
            Attendance.date <= end,
        )
        .order_by(Attendance.date.asc(), Student.name.asc())
        .all()
    )
    return jsonify([r.to_dict() for r in records])


# Expenses
@api_bp.route('/expenses', methods=['POST'])
@school_role_required('editor', from_json_field('school_id'))
def create_expense():
    body = _json_body()
    school_id = _to_int(body.get('school_id'))
    month_year = body.get('month_year')
    expense_name = (body.get('expense_name') or '').strip()
    amount = body.get('amount')

    if not school_id or not month_year or not expense_name or amount is None:
        return jsonify({'error': 'Missing required fields'}), 400
    if not MONTH_RE.match(str(month_year)):
        return jsonify({'error': 'Invalid month_year format. Use YYYY-MM format'}), 400
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        return jsonify({'error': 'amount must be a number'}), 400
    if db.session.get(School, school_id) is None:
        return jsonify({'error': 'School not found'}), 404

    try:
        expense = Expense(school_id=school_id, month_year=month_year, expense_name=expense_name, amount=amount)
        db.session.add(expense)
        db.session.commit()
        return jsonify(expense.to_dict()), 201
    except Exception as e:
        db.session.rollback()
        logger.exception("Error adding expense")
        return jsonify({'error': 'Internal Server Error', 'details': str(e)}), 500


@api_bp.route('/expenses/<int:school_id>', methods=['GET'])
def list_expenses(school_id):
    month = request.args.get('month')
    if not month:
        return jsonify({'error': 'Missing parameters'}), 400

    expenses = (
        Expense.query.filter_by(school_id=school_id, month_year=month)
        .order_by(Expense.created_at.asc(), Expense.id.asc())
        .all()
    )
    return jsonify([e.to_dict() for e in expenses])


@api_bp.route('/expenses/previousMonths/<int:school_id>', methods=['GET'])
def previous_expense_months(school_id):
    exclude_month = request.args.get('excludeMonth')
    if not exclude_month:
        return jsonify({'error': 'Missing parameters'}), 400

    rows = (
        db.session.query(Expense.month_year)
        .filter(Expense.school_id == school_id, Expense.month_year != exclude_month)
        .distinct()
        .order_by(Expense.month_year.desc())
        .all()
    )
    return jsonify([row[0] for row in rows])


@api_bp.route('/schools/<int:school_id>/copy-expenses', methods=['POST'])
@school_role_required('editor', from_view_arg('school_id'))
def copy_expenses(school_id):
    """Copy last month's expense lines into the current month, skipping names already there"""
    body = _json_body()
    previous_month = body.get('previousMonth')
    current_month = body.get('currentMonth')

    if not previous_month or not current_month:
        return jsonify({'error': 'Missing required data'}), 400

    try:
        previous_expenses = Expense.query.filter_by(school_id=school_id, month_year=previous_month).all()
        if not previous_expenses:
            return jsonify({'message': 'No expenses to copy', 'copied': 0})

        existing_names = {
            row[0] for row in db.session.query(Expense.expense_name)
            .filter_by(school_id=school_id, month_year=current_month).all()
        }
        new_expenses = [
            Expense(school_id=school_id, month_year=current_month,
                    expense_name=expense.expense_name, amount=expense.amount)
            for expense in previous_expenses
            if expense.expense_name not in existing_names
        ]
        if not new_expenses:
            return jsonify({'message': 'All expenses already exist for this month', 'copied': 0})

        db.session.add_all(new_expenses)
        db.session.commit()
        return jsonify({'message': f'Copied {len(new_expenses)} new expenses.', 'copied': len(new_expenses)})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error copying expenses")
        return jsonify({'error': 'Failed to copy expenses', 'details': str(e)}), 500


@api_bp.route('/schools/<int:school_id>/expenses/<int:expense_id>', methods=['PUT'])
@school_role_required('editor', from_view_arg('school_id'))
def update_expense(school_id, expense_id):
    expense = db.session.get(Expense, expense_id)
    if expense is None or expense.school_id != school_id:
        return jsonify({'error': 'Expense not found for this school'}), 404

    body = _json_body()
    try:
        if 'expense_name' in body:
            name = (body.get('expense_name') or '').strip()
            if not name:
                return jsonify({'error': 'expense_name cannot be empty'}), 400
            expense.expense_name = name
        if 'amount' in body:
            expense.amount = float(body['amount'])
    except (TypeError, ValueError):
        db.session.rollback()
        return jsonify({'error': 'amount must be a number'}), 400

    try:
        db.session.commit()
        return jsonify(expense.to_dict())
    except Exception as e:
        db.session.rollback()
        logger.exception("Error updating expense %s", expense_id)
        return jsonify({'error': 'Failed to update expense', 'details': str(e)}), 500


@api_bp.route('/schools/<int:school_id>/expenses/<int:expense_id>', methods=['DELETE'])
@school_role_required('editor', from_view_arg('school_id'))
def delete_expense(school_id, expense_id):
    expense = db.session.get(Expense, expense_id)
    if expense is None or expense.school_id != school_id:
        return jsonify({'error': 'Expense not found for this school'}), 404

    try:
        db.session.delete(expense)
        db.session.commit()
        return jsonify({'message': 'Expense deleted'})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting expense %s", expense_id)
        return jsonify({'error': 'Failed to delete expense', 'details': str(e)}), 500


# Meals and billing
def _meals_for_month(school_id, month, descending):
    query = Meal.query.filter_by(school_id=school_id)
    if month:
        start, end = _month_bounds(month)
        query = query.filter(Meal.date >= start, Meal.date <= end)
    return query.order_by(Meal.date.desc() if descending else Meal.date.asc()).all()


@api_bp.route('/meals', methods=['GET'])
def list_meals():
    school_id = _to_int(request.args.get('school_id'))
    month = request.args.get('month')

    if school_id is None:
        return jsonify({'error': 'Missing school_id query parameter'}), 400
    if month and not MONTH_RE.match(month):
        return jsonify({'error': 'Invalid month format. Use YYYY-MM format'}), 400

    try:
        meals = _meals_for_month(school_id, month, descending=True)
    except (ValueError, calendar.IllegalMonthError):
        return jsonify({'error': 'Invalid month value'}), 400

    logger.info("Found %d meals for school %s", len(meals), school_id)
    return jsonify([m.to_dict() for m in meals])


@api_bp.route('/meals/create', methods=['POST'])
@school_role_required('editor', from_json_field('school_id'))
def create_meal():
    body = _json_body()
    school_id = _to_int(body.get('school_id'))
    raw_date = body.get('date')

    if not school_id or not raw_date:
        return jsonify({'error': 'Missing required fields'}), 400
    try:
        day = date.fromisoformat(str(raw_date)[:10])
    except ValueError:
        return jsonify({'error': 'Invalid date value'}), 400
    if db.session.get(School, school_id) is None:
        return jsonify({'error': 'School not found'}), 404

    if Meal.query.filter_by(school_id=school_id, date=day).first():
        return jsonify({'error': 'A meal entry already exists for this date.'}), 409

    try:
        meal = Meal(school_id=school_id, date=day, day_of_week=day.strftime('%A'), total_cost=0.0)
        db.session.add(meal)
        db.session.commit()
        return jsonify({'success': True, 'meal': meal.to_dict()})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error creating meal")
        return jsonify({'error': 'Failed to create new meal', 'details': str(e)}), 500


@api_bp.route('/meals/delete', methods=['DELETE'])
@school_role_required('editor', _meal_school_id)
def delete_meal():
    meal_id = _to_int(request.args.get('mealId'))
    if meal_id is None:
        return jsonify({'error': 'Missing mealId'}), 400

    meal = db.session.get(Meal, meal_id)
    if meal is None:
        return jsonify({'error': 'Meal not found'}), 404

    try:
        # Items go with the meal through the relationship cascade
        db.session.delete(meal)
        db.session.commit()
        return jsonify({'success': True})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting meal %s", meal_id)
        return jsonify({'error': 'Failed to delete meal', 'details': str(e)}), 500


@api_bp.route('/meal-items/add', methods=['POST'])
@school_role_required('editor', _meal_item_meal_school_id)
def add_meal_item():
    body = _json_body()
    meal_id = _to_int(body.get('meal_id'))
    item_name = (body.get('item_name') or '').strip()
    unit_price = body.get('unit_price')
    quantity = body.get('quantity')

    if not meal_id or not item_name or unit_price is None or quantity is None:
        return jsonify({'error': 'Missing required fields'}), 400
    try:
        unit_price = float(unit_price)
        quantity = int(quantity)
    except (TypeError, ValueError):
        return jsonify({'error': 'unit_price and quantity must be numbers'}), 400

    meal = db.session.get(Meal, meal_id)
    if meal is None:
        return jsonify({'error': 'Meal not found'}), 404

    try:
        item = MealItem(meal_id=meal.id, item_name=item_name, unit_price=unit_price,
                        quantity=quantity, total=round(unit_price * quantity, 2))
        meal.meal_items.append(item)
        meal.recalculate_total()
        db.session.commit()
        return jsonify({'success': True, 'mealItem': item.to_dict(), 'totalCost': meal.total_cost})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error adding meal item")
        return jsonify({'error': 'Failed to add meal item', 'details': str(e)}), 500


@api_bp.route('/meal-items/delete', methods=['POST'])
@school_role_required('editor', _meal_item_school_id)
def delete_meal_item():
    body = _json_body()
    item_id = _to_int(body.get('itemId'))
    if item_id is None:
        return jsonify({'error': 'Missing itemId'}), 400

    item = db.session.get(MealItem, item_id)
    if item is None:
        return jsonify({'error': 'Meal item not found'}), 404

    try:
        meal = item.meal
        meal.meal_items.remove(item)
        meal.recalculate_total()
        db.session.commit()
        return jsonify({'success': True, 'totalCost': meal.total_cost})
    except Exception as e:
        db.session.rollback()
        logger.exception("Error deleting meal item %s", item_id)
        return jsonify({'error': 'Failed to delete meal item', 'details': str(e)}), 500


@api_bp.route('/billing/<int:school_id>', methods=['GET'])
def billing(school_id):
    """One month of meals with their items, oldest first, for invoices"""
    month = request.args.get('month')
    if not month:
        return jsonify({'error': 'Missing parameters'}), 400
    if not MONTH_RE.match(month):
        return jsonify({'error': 'Invalid month format. Use YYYY-MM format'}), 400

    try:
        meals = _meals_for_month(school_id, month, descending=False)
    except (ValueError, calendar.IllegalMonthError):
        return jsonify({'error': 'Invalid month value'}), 400
    return jsonify([m.to_dict() for m in meals])
