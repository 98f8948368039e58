from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager, jwt_required
from datetime import datetime, timezone
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
import logging
import os

from config import config
from models import db
from errors import CropAidError, ServerError
from credentials import admin_required, current_principal
from activity import ActivityRecorder
from notifications import NotificationDispatcher, NotificationService, parse_since
from accounts import AccountService
from reports import ReportService
from farms import FarmService
from admin import AdminService
from reference import ReferenceData, TTLCache

logger = logging.getLogger(__name__)


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )

    # Initialize extensions (SQLAlchemy)
    db.init_app(app)

    CORS(app,
         resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}},
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])

    jwt = JWTManager(app)

    # Missing token is 401; a token that is present but unusable is 403
    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'error': 'Authentication required'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({'error': 'Invalid or expired token'}), 403

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Invalid or expired token'}), 403

    # --- ERROR HANDLERS ---

    @app.errorhandler(CropAidError)
    def handle_cropaid_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return jsonify(ServerError().to_dict()), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code >= 500:
            return jsonify(ServerError().to_dict()), e.code
        return jsonify({'error': e.description}), e.code

    # --- SERVICES ---

    session = db.session
    recorder = ActivityRecorder(session)
    dispatcher = NotificationDispatcher(session)
    accounts = AccountService(session, recorder)
    reports = ReportService(session, dispatcher, recorder, app.config['MAX_PHOTO_BYTES'])
    farms = FarmService(session, recorder)
    notifications = NotificationService(session)
    admin = AdminService(session)
    reference = ReferenceData(session, TTLCache(
        ttl=app.config['REFERENCE_CACHE_TTL'],
        sweep_interval=app.config['REFERENCE_CACHE_SWEEP_INTERVAL']
    ))
    app.extensions['cropaid.reference'] = reference

    # --- HELPER FUNCTIONS ---

    def request_context():
        return {
            'ip_address': request.remote_addr,
            'user_agent': request.headers.get('User-Agent')
        }

    def json_body():
        data = request.get_json(silent=True)
        return {} if data is None else data

    def page_args(default_limit):
        page = request.args.get('page', 1, type=int) or 1
        limit = request.args.get('limit', default_limit, type=int) or default_limit
        return max(page, 1), min(max(limit, 1), app.config['MAX_PAGE_SIZE'])

    # ============ Health ============

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({
            'status': 'ok',
            'message': 'CropAid API is running',
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), 200

    # ============ Authentication Routes ============

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        user_id = accounts.register(json_body())
        return jsonify({'message': 'Registration successful', 'userId': user_id}), 201

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        return jsonify(accounts.login(json_body(), request_context())), 200

    # ============ Farmer Routes ============

    @app.route('/api/farmer/me', methods=['GET'])
    @jwt_required()
    def farmer_dashboard():
        return jsonify(farms.dashboard(current_principal())), 200

    @app.route('/api/farmer/profile', methods=['GET'])
    @jwt_required()
    def get_profile():
        return jsonify(farms.profile(current_principal())), 200

    @app.route('/api/farmer/profile', methods=['PATCH'])
    @jwt_required()
    def update_profile():
        profile = farms.update_profile(current_principal(), json_body(), request_context())
        return jsonify({'message': 'Profile updated', 'profile': profile}), 200

    @app.route('/api/farmer/farms', methods=['GET'])
    @jwt_required()
    def list_farms():
        return jsonify(farms.list_farms(current_principal())), 200

    @app.route('/api/farmer/farms', methods=['POST'])
    @jwt_required()
    def add_farm():
        farm = farms.add_farm(current_principal(), json_body(), request_context())
        return jsonify({'message': 'Farm added', 'farm': farm}), 201

    @app.route('/api/farmer/farm/<farm_id>', methods=['PUT', 'PATCH'])
    @jwt_required()
    def update_farm(farm_id):
        farm = farms.update_farm(current_principal(), farm_id, json_body(), request_context())
        return jsonify({'message': 'Farm updated', 'farm': farm}), 200

    @app.route('/api/farmer/farm/<farm_id>', methods=['DELETE'])
    @jwt_required()
    def delete_farm(farm_id):
        farms.delete_farm(current_principal(), farm_id, request_context())
        return jsonify({'message': 'Farm deleted'}), 200

    # ============ Report Routes ============

    @app.route('/api/reports', methods=['POST'])
    @jwt_required()
    def submit_report():
        return jsonify(reports.submit(current_principal(), json_body(), request_context())), 201

    @app.route('/api/reports/history', methods=['GET'])
    @jwt_required()
    def report_history():
        page, limit = page_args(10)
        return jsonify(reports.history(
            current_principal(), page, limit,
            status=request.args.get('status'),
            type=request.args.get('type')
        )), 200

    @app.route('/api/reports/<report_id>', methods=['GET'])
    @jwt_required()
    def get_report(report_id):
        return jsonify(reports.get(current_principal(), report_id)), 200

    @app.route('/api/reports/<report_id>/comments', methods=['GET'])
    @jwt_required()
    def get_comments(report_id):
        return jsonify(reports.comments(current_principal(), report_id)), 200

    @app.route('/api/reports/<report_id>/comments', methods=['POST'])
    @jwt_required()
    def add_comment(report_id):
        comment = reports.add_comment(current_principal(), report_id, json_body(), request_context())
        return jsonify(comment), 201

    # ============ Notification Routes ============

    @app.route('/api/notifications', methods=['GET'])
    @jwt_required()
    def get_notifications():
        return jsonify(notifications.list_for(current_principal())), 200

    @app.route('/api/notifications/unread-count', methods=['GET'])
    @jwt_required()
    def unread_count():
        since = parse_since(request.args.get('since'))
        return jsonify({'count': notifications.unread_count(current_principal(), since)}), 200

    @app.route('/api/notifications/<notification_id>/read', methods=['PATCH'])
    @jwt_required()
    def mark_read(notification_id):
        notification = notifications.mark_read(current_principal(), notification_id)
        return jsonify({'message': 'Notification marked as read', 'notification': notification.to_dict()}), 200

    @app.route('/api/notifications/read-all', methods=['PATCH'])
    @jwt_required()
    def mark_all_read():
        updated = notifications.mark_all_read(current_principal())
        return jsonify({'message': 'All notifications marked as read', 'updated': updated}), 200

    @app.route('/api/notifications/clear-read', methods=['DELETE'])
    @jwt_required()
    def clear_read():
        deleted = notifications.clear_read(current_principal())
        return jsonify({'message': 'Read notifications cleared', 'deleted': deleted}), 200

    @app.route('/api/notifications/<notification_id>', methods=['DELETE'])
    @jwt_required()
    def delete_notification(notification_id):
        notifications.delete(current_principal(), notification_id)
        return jsonify({'message': 'Notification deleted'}), 200

    # ============ Admin Routes ============

    @app.route('/api/admin/stats', methods=['GET'])
    @admin_required
    def admin_stats():
        return jsonify(admin.stats()), 200

    @app.route('/api/admin/farmers', methods=['GET'])
    @admin_required
    def admin_farmers():
        page, limit = page_args(app.config['ITEMS_PER_PAGE'])
        return jsonify(admin.farmers(
            page, limit,
            search=request.args.get('search', '').strip() or None,
            barangay=request.args.get('barangay') or None
        )), 200

    @app.route('/api/admin/farmers/<farmer_id>/status', methods=['PATCH'])
    @admin_required
    def admin_farmer_status(farmer_id):
        result = accounts.set_farmer_active(farmer_id, json_body())
        return jsonify({'message': 'Farmer status updated', **result}), 200

    @app.route('/api/admin/reports', methods=['GET'])
    @admin_required
    def admin_reports():
        page, limit = page_args(app.config['ITEMS_PER_PAGE'])
        return jsonify(reports.list_all(
            page, limit,
            status=request.args.get('status'),
            type=request.args.get('type'),
            barangay=request.args.get('barangay') or None,
            sort_by=request.args.get('sortBy', 'created_at'),
            sort_order=request.args.get('sortOrder', 'desc')
        )), 200

    @app.route('/api/admin/reports/map', methods=['GET'])
    @admin_required
    def admin_reports_map():
        return jsonify(reports.map_points(
            status=request.args.get('status'),
            type=request.args.get('type'),
            barangay=request.args.get('barangay') or None
        )), 200

    @app.route('/api/admin/reports/<report_id>/status', methods=['PATCH'])
    @admin_required
    def admin_report_status(report_id):
        report = reports.transition(current_principal(), report_id, json_body(), request_context())
        return jsonify({'message': 'Status updated', 'report': report}), 200

    @app.route('/api/admin/reports/<report_id>/photo', methods=['GET'])
    @admin_required
    def admin_report_photo(report_id):
        return jsonify(reports.photo(report_id)), 200

    # --- Users ---

    @app.route('/api/admin/users', methods=['GET'])
    @admin_required
    def admin_users():
        return jsonify(accounts.list_users()), 200

    @app.route('/api/admin/users', methods=['POST'])
    @admin_required
    def admin_create_user():
        user = accounts.create_user(json_body())
        return jsonify({'message': 'User created', 'id': user['id'], 'user': user}), 201

    @app.route('/api/admin/users/<user_id>', methods=['PATCH'])
    @admin_required
    def admin_update_user(user_id):
        return jsonify({'message': 'User updated', 'user': accounts.update_user(user_id, json_body())}), 200

    @app.route('/api/admin/users/<user_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_user(user_id):
        accounts.delete_user(current_principal(), user_id, request_context())
        return jsonify({'message': 'User deleted'}), 200

    @app.route('/api/admin/activity-logs', methods=['GET'])
    @admin_required
    def admin_activity_logs():
        page, limit = page_args(50)
        return jsonify(recorder.recent(
            page, limit,
            user_id=request.args.get('userId') or None,
            action=request.args.get('action') or None
        )), 200

    # --- Reference data ---

    @app.route('/api/admin/pest-categories', methods=['GET'])
    @admin_required
    def admin_pest_categories():
        return jsonify(reference.all_pest_categories()), 200

    @app.route('/api/admin/pest-categories', methods=['POST'])
    @admin_required
    def admin_create_pest_category():
        return jsonify(reference.create_pest_category(json_body())), 201

    @app.route('/api/admin/pest-categories/<item_id>', methods=['PUT'])
    @admin_required
    def admin_update_pest_category(item_id):
        return jsonify(reference.update_pest_category(item_id, json_body())), 200

    @app.route('/api/admin/pest-categories/<item_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_pest_category(item_id):
        reference.delete_pest_category(item_id)
        return jsonify({'message': 'Pest category deleted'}), 200

    @app.route('/api/admin/crop-types', methods=['GET'])
    @admin_required
    def admin_crop_types():
        return jsonify(reference.all_crop_types()), 200

    @app.route('/api/admin/crop-types', methods=['POST'])
    @admin_required
    def admin_create_crop_type():
        return jsonify(reference.create_crop_type(json_body())), 201

    @app.route('/api/admin/crop-types/<item_id>', methods=['PUT'])
    @admin_required
    def admin_update_crop_type(item_id):
        return jsonify(reference.update_crop_type(item_id, json_body())), 200

    @app.route('/api/admin/crop-types/<item_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_crop_type(item_id):
        reference.delete_crop_type(item_id)
        return jsonify({'message': 'Crop type deleted'}), 200

    @app.route('/api/admin/barangays', methods=['GET'])
    @admin_required
    def admin_barangays():
        return jsonify(reference.all_barangays()), 200

    @app.route('/api/admin/barangays', methods=['POST'])
    @admin_required
    def admin_create_barangay():
        barangay = reference.create_barangay(
            json_body(), app.config['DEFAULT_MUNICIPALITY'], app.config['DEFAULT_PROVINCE'])
        return jsonify(barangay), 201

    @app.route('/api/admin/settings', methods=['GET'])
    @admin_required
    def admin_settings():
        return jsonify(reference.settings()), 200

    @app.route('/api/admin/settings', methods=['PUT'])
    @admin_required
    def admin_update_settings():
        return jsonify({'message': 'Settings updated', 'settings': reference.update_settings(json_body())}), 200

    @app.route('/api/admin/news', methods=['POST'])
    @admin_required
    def admin_create_news():
        return jsonify(reference.create_news(current_principal(), json_body())), 201

    @app.route('/api/admin/news/<item_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_news(item_id):
        reference.delete_news(item_id)
        return jsonify({'message': 'News item deleted'}), 200

    # ============ Public Reference Routes ============

    @app.route('/api/barangays', methods=['GET'])
    def public_barangays():
        return jsonify(reference.barangays()), 200

    @app.route('/api/pest-types', methods=['GET'])
    def public_pest_types():
        return jsonify(reference.pest_types()), 200

    @app.route('/api/crop-types', methods=['GET'])
    def public_crop_types():
        return jsonify(reference.crop_types()), 200

    @app.route('/api/news', methods=['GET'])
    def public_news():
        return jsonify(reference.news()), 200

    @app.route('/api/options', methods=['GET'])
    def public_options():
        return jsonify(reference.options()), 200

    # Initialize DB tables if they don't exist
    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    app = create_app(os.environ.get('FLASK_CONFIG', 'development'))
    try:
        app.run(host='127.0.0.1', port=int(os.environ.get('PORT', 5000)), debug=app.config.get('DEBUG', False))
    finally:
        with app.app_context():
            db.engine.dispose()
