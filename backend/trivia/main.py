from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from trivia import db
from trivia.models import Admin

main = Blueprint('main', __name__)

@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({'error': 'Missing username or password'}), 400

    if Admin.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    admin = Admin(username=username)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    login_user(admin, remember=True)

    return jsonify({'success': True, 'user': admin.to_dict()}), 201

@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    admin = Admin.query.filter_by(username=data.get('username')).first()
    if admin and admin.check_password(data.get('password') or ''):
        login_user(admin, remember=True)
        return jsonify({'success': True, 'user': admin.to_dict()})
    return jsonify({'error': 'Invalid username or password'}), 401

@main.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})
