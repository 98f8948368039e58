"""
Registration and login.

Registration writes a User, a Farmer and the first Farm in one transaction;
login accepts username, email or RSBSA ID and fails the same way for every
kind of bad input.
"""
from models import db, ActivityLog, Farm, Farmer, User
from helpers import auth, registration_payload


class TestRegistration:

    def test_creates_user_farmer_and_farm(self, register):
        response = register()
        assert response.status_code == 201
        body = response.get_json()
        assert 'token' not in body

        user = db.session.get(User, body['userId'])
        assert user.role == 'farmer'
        assert user.password_hash != 'secret123'
        assert user.farmer.rsbsa_id == '12-63-11-099'
        assert user.farmer.address_municipality == 'Norala'
        assert user.farmer.address_province == 'South Cotabato'
        assert len(user.farmer.farms) == 1
        assert float(user.farmer.farms[0].farm_size_hectares) == 1.5

    def test_role_in_body_is_ignored(self, register):
        body = register(role='admin').get_json()
        assert db.session.get(User, body['userId']).role == 'farmer'

    def test_duplicate_rsbsa_is_conflict_and_writes_nothing(self, register):
        assert register().status_code == 201

        response = register(username='pedro', email='pedro@example.com')
        assert response.status_code == 409
        assert response.get_json()['field'] == 'rsbsa_id'
        assert db.session.query(User).count() == 1
        assert db.session.query(Farmer).count() == 1
        assert db.session.query(Farm).count() == 1

    def test_duplicate_email_is_conflict(self, register):
        register()
        response = register(username='pedro', rsbsaId='12-63-11-100')
        assert response.status_code == 409
        assert response.get_json()['field'] == 'email'

    def test_duplicate_username_is_conflict(self, register):
        register()
        response = register(email='other@example.com', rsbsaId='12-63-11-100')
        assert response.status_code == 409
        assert response.get_json()['field'] == 'username'

    def test_reports_every_bad_field(self, client):
        payload = registration_payload(username='ju', password='123', cellphone='12345', farmLatitude=14.6)
        response = client.post('/api/auth/register', json=payload)
        assert response.status_code == 400

        fields = {f['field'] for f in response.get_json()['fields']}
        assert {'username', 'password', 'cellphone', 'farmLatitude'} <= fields
        assert db.session.query(User).count() == 0

    def test_missing_required_fields(self, client):
        response = client.post('/api/auth/register', json={'username': 'juan'})
        assert response.status_code == 400
        fields = {f['field'] for f in response.get_json()['fields']}
        assert {'password', 'rsbsaId', 'firstName', 'lastName'} <= fields

    def test_invalid_birth_date(self, register):
        response = register(dobMonth=2, dobDay=30, dobYear=1980)
        assert response.status_code == 400
        assert response.get_json()['fields'][0]['field'] == 'dobYear'

    def test_birth_date_is_stored(self, register):
        body = register(dobMonth=3, dobDay=14, dobYear=1980).get_json()
        farmer = db.session.get(User, body['userId']).farmer
        assert farmer.date_of_birth.isoformat() == '1980-03-14'

    def test_blank_optional_fields_are_accepted(self, register):
        response = register(email='', middleName='', cellphone='', sex='')
        assert response.status_code == 201

    def test_non_finite_farm_size(self, register):
        response = register(farmSize='Infinity')
        assert response.status_code == 400
        assert [f['field'] for f in response.get_json()['fields']] == ['farmSize']
        assert db.session.query(User).count() == 0

    def test_non_object_body(self, client):
        response = client.post('/api/auth/register', json=['juan'])
        assert response.status_code == 400


class TestLogin:

    def test_login_by_username_email_and_rsbsa(self, client, register):
        register()
        for identifier in ('juan', 'juan@example.com', '12-63-11-099'):
            response = client.post('/api/auth/login', json={'identifier': identifier, 'password': 'secret123'})
            assert response.status_code == 200
            body = response.get_json()
            assert body['role'] == 'farmer'
            assert body['user']['name'] == 'Juan Dela Cruz'
            assert body['user']['rsbsa'] == '12-63-11-099'
            assert body['token']

    def test_wrong_password_and_unknown_user_look_the_same(self, client, register):
        register()
        wrong = client.post('/api/auth/login', json={'identifier': 'juan', 'password': 'nope123'})
        unknown = client.post('/api/auth/login', json={'identifier': 'nobody', 'password': 'nope123'})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.get_json() == unknown.get_json() == {'error': 'Invalid credentials'}

    def test_inactive_user_cannot_log_in(self, client, register):
        user_id = register().get_json()['userId']
        db.session.get(User, user_id).is_active = False
        db.session.commit()

        response = client.post('/api/auth/login', json={'identifier': 'juan', 'password': 'secret123'})
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Invalid credentials'}

    def test_ambiguous_identifier_is_rejected(self, client, register, make_admin):
        register()
        # An admin whose username equals the farmer's RSBSA ID
        make_admin(username='12-63-11-099', password='secret123')
        response = client.post('/api/auth/login', json={'identifier': '12-63-11-099', 'password': 'secret123'})
        assert response.status_code == 401

    def test_login_is_logged(self, client, register):
        user_id = register().get_json()['userId']
        client.post('/api/auth/login', json={'identifier': 'juan', 'password': 'secret123'},
                    headers={'User-Agent': 'pytest-browser'})
        log = db.session.query(ActivityLog).filter_by(user_id=user_id, action='login').one()
        assert log.user_agent == 'pytest-browser'

    def test_token_works_on_protected_route(self, client, farmer_token):
        response = client.get('/api/farmer/me', headers=auth(farmer_token))
        assert response.status_code == 200
        assert response.get_json()['profile']['rsbsa'] == '12-63-11-099'
