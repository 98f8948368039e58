"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; ``app.py`` turns them into JSON responses.
"""


class CropAidError(Exception):
    status_code = 500
    message = 'Server error'

    def __init__(self, message=None, **payload):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.payload = payload

    def to_dict(self):
        data = {'error': self.message}
        data.update(self.payload)
        return data


class ValidationError(CropAidError):
    status_code = 400
    message = 'Invalid input'

    def __init__(self, fields=None, message=None):
        # fields: list of {'field': ..., 'message': ...}
        self.fields = list(fields or [])
        super().__init__(message, fields=self.fields)

    @classmethod
    def single(cls, field, message):
        return cls([{'field': field, 'message': message}])


class Unauthorized(CropAidError):
    status_code = 401
    message = 'Authentication required'


class InvalidCredentials(Unauthorized):
    message = 'Invalid credentials'


class TokenRejected(Unauthorized):
    status_code = 403
    message = 'Invalid or expired token'


class Forbidden(CropAidError):
    status_code = 403
    message = 'Forbidden'


class NotFound(CropAidError):
    status_code = 404
    message = 'Not found'


class Conflict(CropAidError):
    status_code = 409
    message = 'Already exists'

    def __init__(self, field, message=None):
        self.field = field
        super().__init__(message, field=field)


class PayloadTooLarge(CropAidError):
    status_code = 400
    message = 'Photo exceeds the maximum allowed size'


class ServerError(CropAidError):
    status_code = 500
    message = 'Server error'
