"""Request builders shared by the test modules."""


def registration_payload(**overrides):
    data = {
        'username': 'juan',
        'email': 'juan@example.com',
        'password': 'secret123',
        'rsbsaId': '12-63-11-099',
        'firstName': 'Juan',
        'lastName': 'Dela Cruz',
        'cellphone': '09171234567',
        'sex': 'Male',
        'barangay': 'Poblacion',
        'farmBarangay': 'Poblacion',
        'farmLatitude': 6.2341,
        'farmLongitude': 124.8741,
        'farmSize': 1.5
    }
    data.update(overrides)
    return data


def auth(token):
    return {'Authorization': f'Bearer {token}'}
