"""
Report lifecycle.

SCENARIO:
=========
Farmer "juan" (RSBSA 12-63-11-099) files a pest report. The admin finds it in
the pending list and verifies it with the note "confirmed in field". Juan now
has exactly one unread "Report verified" notification pointing at the report.
"""
import base64

import pytest

from errors import PayloadTooLarge, ValidationError
from models import db, Notification, Report, ReportComment
from credentials import Principal
from reports import ReportService, decoded_photo_size
from helpers import auth


PEST_REPORT = {
    'type': 'pest',
    'details': {'pestType': 'Rice Black Bug', 'damageLevel': 'Moderate', 'cropType': 'Rice', 'areaNote': 'near canal'},
    'location': 'Poblacion',
    'latitude': 6.2341,
    'longitude': 124.8741
}


@pytest.fixture
def report_id(client, farmer_token):
    response = client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token))
    assert response.status_code == 201
    return response.get_json()['id']


class TestScenario:

    def test_pest_report_verified_end_to_end(self, client, farmer_token, admin_token):
        created = client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token))
        assert created.status_code == 201
        report = created.get_json()
        assert report['status'] == 'pending'

        pending = client.get('/api/admin/reports?status=pending', headers=auth(admin_token)).get_json()
        assert pending['total'] == 1
        assert pending['items'][0]['id'] == report['id']
        assert pending['items'][0]['rsbsa_id'] == '12-63-11-099'

        verified = client.patch(f"/api/admin/reports/{report['id']}/status",
                                json={'status': 'verified', 'adminNotes': 'confirmed in field'},
                                headers=auth(admin_token))
        assert verified.status_code == 200

        inbox = client.get('/api/notifications', headers=auth(farmer_token)).get_json()
        assert inbox['unreadCount'] == 1
        assert len(inbox['notifications']) == 1
        notification = inbox['notifications'][0]
        assert notification['title'] == 'Report verified'
        assert notification['message'] == 'Your pest report has been verified'
        assert notification['reference_id'] == report['id']
        assert notification['type'] == 'status_change'


class TestSubmit:

    def test_details_keep_extra_keys(self, client, farmer_token):
        body = client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token)).get_json()
        assert body['details']['pestType'] == 'Rice Black Bug'
        assert body['details']['areaNote'] == 'near canal'
        assert body['has_photo'] is False

    def test_unknown_type_is_rejected(self, client, farmer_token):
        response = client.post('/api/reports', json={'type': 'earthquake'}, headers=auth(farmer_token))
        assert response.status_code == 400
        assert response.get_json()['fields'][0]['field'] == 'type'

    def test_coordinates_outside_service_area(self, client, farmer_token):
        response = client.post('/api/reports', json={**PEST_REPORT, 'latitude': 14.6, 'longitude': 121.0},
                               headers=auth(farmer_token))
        assert response.status_code == 400
        assert {f['field'] for f in response.get_json()['fields']} == {'latitude', 'longitude'}

    def test_notifies_every_admin(self, client, farmer_token, make_admin):
        first, second = make_admin('admin1'), make_admin('admin2')
        client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token))

        rows = db.session.query(Notification).filter_by(type='new_report').all()
        assert sorted(n.user_id for n in rows) == sorted([first, second])

    def test_without_admins_writes_one_shared_notification(self, client, farmer_token):
        client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token))
        rows = db.session.query(Notification).filter_by(type='new_report').all()
        assert len(rows) == 1
        assert rows[0].user_id is None

    def test_oversized_photo_writes_nothing(self, client, farmer_token):
        photo = base64.b64encode(b'\0' * (10 * 1024 * 1024 + 1)).decode()
        response = client.post('/api/reports', json={**PEST_REPORT, 'photoBase64': photo},
                               headers=auth(farmer_token))
        assert response.status_code == 400
        assert db.session.query(Report).count() == 0
        assert db.session.query(Notification).count() == 0

    def test_photo_as_data_url(self, client, farmer_token, admin_token):
        photo = 'data:image/png;base64,' + base64.b64encode(b'fake-png-bytes').decode()
        body = client.post('/api/reports', json={**PEST_REPORT, 'photoBase64': photo},
                           headers=auth(farmer_token)).get_json()
        assert body['has_photo'] is True

        response = client.get(f"/api/admin/reports/{body['id']}/photo", headers=auth(admin_token))
        assert response.get_json() == {'photo': photo}

    def test_not_base64_photo(self, client, farmer_token):
        response = client.post('/api/reports', json={**PEST_REPORT, 'photoBase64': 'not base64 at all!'},
                               headers=auth(farmer_token))
        assert response.status_code == 400
        assert response.get_json()['fields'][0]['field'] == 'photoBase64'

    def test_foreign_farm_is_rejected(self, client, farmer_token, register, login):
        register(username='pedro', email='pedro@example.com', rsbsaId='12-63-11-100')
        pedro_farm = client.get('/api/farmer/farms', headers=auth(login('pedro', 'secret123'))).get_json()[0]

        response = client.post('/api/reports', json={**PEST_REPORT, 'farmId': pedro_farm['id']},
                               headers=auth(farmer_token))
        assert response.status_code == 400

    def test_own_farm_fills_location(self, client, farmer_token):
        farm = client.get('/api/farmer/farms', headers=auth(farmer_token)).get_json()[0]
        body = client.post('/api/reports', json={'type': 'flood', 'farmId': farm['id']},
                           headers=auth(farmer_token)).get_json()
        assert body['farm_id'] == farm['id']
        assert body['location'] == 'Poblacion'


class TestPhotoLimit:

    def service(self):
        return ReportService(db.session, dispatcher=None, recorder=None, max_photo_bytes=16)

    def test_decoded_size(self):
        assert decoded_photo_size(base64.b64encode(b'x' * 16).decode()) == 16
        assert decoded_photo_size('data:image/jpeg;base64,' + base64.b64encode(b'abc').decode()) == 3

    def test_exact_limit_is_accepted(self, app):
        photo = base64.b64encode(b'x' * 16).decode()
        assert self.service()._check_photo(photo) == photo

    def test_one_byte_over_is_rejected(self, app):
        with pytest.raises(PayloadTooLarge):
            self.service()._check_photo(base64.b64encode(b'x' * 17).decode())

    def test_garbage_is_a_validation_error(self, app):
        with pytest.raises(ValidationError):
            self.service()._check_photo('%%%')


class TestHistoryAndAccess:

    def test_history_pages_and_filters(self, client, farmer_token):
        for report_type in ('pest', 'flood', 'flood', 'drought'):
            client.post('/api/reports', json={'type': report_type}, headers=auth(farmer_token))

        page = client.get('/api/reports/history?limit=3', headers=auth(farmer_token)).get_json()
        assert page['total'] == 4
        assert page['totalPages'] == 2
        assert len(page['items']) == 3

        floods = client.get('/api/reports/history?type=flood', headers=auth(farmer_token)).get_json()
        assert floods['total'] == 2

        everything = client.get('/api/reports/history?type=all&status=all', headers=auth(farmer_token)).get_json()
        assert everything['total'] == 4

    def test_history_is_own_reports_only(self, client, report_id, register, login):
        register(username='pedro', email='pedro@example.com', rsbsaId='12-63-11-100')
        token = login('pedro', 'secret123')
        assert client.get('/api/reports/history', headers=auth(token)).get_json()['total'] == 0

    def test_other_farmer_cannot_read_report(self, client, report_id, register, login):
        register(username='pedro', email='pedro@example.com', rsbsaId='12-63-11-100')
        response = client.get(f'/api/reports/{report_id}', headers=auth(login('pedro', 'secret123')))
        assert response.status_code == 403

    def test_owner_and_admin_can_read_report(self, client, report_id, farmer_token, admin_token):
        own = client.get(f'/api/reports/{report_id}', headers=auth(farmer_token)).get_json()
        assert own['first_name'] == 'Juan'
        assert client.get(f'/api/reports/{report_id}', headers=auth(admin_token)).status_code == 200

    def test_unknown_report(self, client, farmer_token):
        response = client.get('/api/reports/does-not-exist', headers=auth(farmer_token))
        assert response.status_code == 404


class TestTransition:

    def test_writes_fields_and_one_notification(self, client, report_id, admin_token):
        response = client.patch(f'/api/admin/reports/{report_id}/status',
                                json={'status': 'rejected', 'adminNotes': 'duplicate'},
                                headers=auth(admin_token))
        assert response.status_code == 200

        report = db.session.get(Report, report_id)
        assert report.status == 'rejected'
        assert report.admin_notes == 'duplicate'
        assert report.verified_at is not None
        assert report.verified_by is not None

        farmer_rows = db.session.query(Notification).filter_by(user_id=report.user_id).all()
        assert len(farmer_rows) == 1
        assert farmer_rows[0].title == 'Report rejected'

    def test_any_status_to_any_status(self, client, report_id, admin_token):
        for status in ('resolved', 'pending', 'verified', 'verified'):
            response = client.patch(f'/api/admin/reports/{report_id}/status', json={'status': status},
                                    headers=auth(admin_token))
            assert response.status_code == 200
        report = db.session.get(Report, report_id)
        # Re-applying a status notifies again
        assert db.session.query(Notification).filter_by(user_id=report.user_id).count() == 4

    def test_invalid_status(self, client, report_id, admin_token):
        response = client.patch(f'/api/admin/reports/{report_id}/status', json={'status': 'closed'},
                                headers=auth(admin_token))
        assert response.status_code == 400
        assert db.session.get(Report, report_id).status == 'pending'

    def test_unknown_report(self, client, admin_token):
        response = client.patch('/api/admin/reports/nope/status', json={'status': 'verified'},
                                headers=auth(admin_token))
        assert response.status_code == 404

    def test_farmer_cannot_transition(self, client, report_id, farmer_token):
        response = client.patch(f'/api/admin/reports/{report_id}/status', json={'status': 'verified'},
                                headers=auth(farmer_token))
        assert response.status_code == 403


class TestAdminListing:

    def test_filters_and_sorting(self, client, farmer_token, admin_token):
        client.post('/api/reports', json={'type': 'pest', 'location': 'Liberty'}, headers=auth(farmer_token))
        client.post('/api/reports', json={'type': 'flood', 'location': 'Kibid'}, headers=auth(farmer_token))

        liberty = client.get('/api/admin/reports?barangay=Liberty', headers=auth(admin_token)).get_json()
        assert [r['location'] for r in liberty['items']] == ['Liberty']

        by_location = client.get('/api/admin/reports?sortBy=location&sortOrder=asc',
                                 headers=auth(admin_token)).get_json()
        assert [r['location'] for r in by_location['items']] == ['Kibid', 'Liberty']

        # Unknown sort columns fall back to created_at
        fallback = client.get('/api/admin/reports?sortBy=password_hash', headers=auth(admin_token))
        assert fallback.status_code == 200

    def test_map_only_has_located_reports(self, client, farmer_token, admin_token):
        client.post('/api/reports', json=PEST_REPORT, headers=auth(farmer_token))
        client.post('/api/reports', json={'type': 'drought'}, headers=auth(farmer_token))
        points = client.get('/api/admin/reports/map', headers=auth(admin_token)).get_json()
        assert len(points) == 1
        assert points[0]['latitude'] == PEST_REPORT['latitude']

    def test_missing_photo(self, client, report_id, admin_token):
        response = client.get(f'/api/admin/reports/{report_id}/photo', headers=auth(admin_token))
        assert response.status_code == 404


class TestComments:

    def test_admin_comment_notifies_owner(self, client, report_id, farmer_token, admin_token):
        response = client.post(f'/api/reports/{report_id}/comments', json={'message': 'Team visiting Monday'},
                               headers=auth(admin_token))
        assert response.status_code == 201
        assert response.get_json()['is_admin'] is True

        owner_id = db.session.get(Report, report_id).user_id
        rows = db.session.query(Notification).filter_by(user_id=owner_id, type='comment').all()
        assert len(rows) == 1

        comments = client.get(f'/api/reports/{report_id}/comments', headers=auth(farmer_token)).get_json()
        assert [c['message'] for c in comments] == ['Team visiting Monday']

    def test_farmer_comment_notifies_admins(self, client, report_id, farmer_token, admin_token):
        client.post(f'/api/reports/{report_id}/comments', json={'message': 'It got worse'},
                    headers=auth(farmer_token))
        inbox = client.get('/api/notifications', headers=auth(admin_token)).get_json()
        assert any(n['type'] == 'comment' for n in inbox['notifications'])
        assert db.session.query(ReportComment).filter_by(is_admin=False).count() == 1

    def test_stranger_cannot_comment(self, client, report_id, register, login):
        register(username='pedro', email='pedro@example.com', rsbsaId='12-63-11-100')
        response = client.post(f'/api/reports/{report_id}/comments', json={'message': 'hi'},
                               headers=auth(login('pedro', 'secret123')))
        assert response.status_code == 403

    def test_empty_comment(self, client, report_id, farmer_token):
        response = client.post(f'/api/reports/{report_id}/comments', json={'message': '  '},
                               headers=auth(farmer_token))
        assert response.status_code == 400


def test_principal_helpers():
    assert Principal('u', 'admin').is_admin
    assert not Principal('u', 'farmer').is_admin
