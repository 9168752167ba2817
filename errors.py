# errors.py
"""Error taxonomy shared by every coordination module.

Each error knows the HTTP status it maps to; app.py turns any ClinicError
into a JSON body of the form {'error': ..., 'code': ..., 'field': ...}.
"""


class ClinicError(Exception):
    status_code = 400
    code = 'clinic_error'

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        body = {'error': self.message, 'code': self.code}
        if self.field:
            body['field'] = self.field
        return body


class ValidationError(ClinicError):
    status_code = 400
    code = 'validation_error'


class MissingDescription(ValidationError):
    code = 'missing_description'

    def __init__(self, message='description is required'):
        super().__init__(message, field='description')


class NotFoundError(ClinicError):
    status_code = 404
    code = 'not_found'


class AuthorizationError(ClinicError):
    status_code = 403
    code = 'unauthorized'


class Unauthorized(AuthorizationError):
    pass


class ConflictError(ClinicError):
    status_code = 409
    code = 'conflict'


class SlotConflict(ConflictError):
    code = 'slot_conflict'


class DoctorUnavailable(ConflictError):
    code = 'doctor_unavailable'


class AlreadyCancelled(ConflictError):
    code = 'already_cancelled'


class BedOccupied(ConflictError):
    code = 'bed_occupied'


class QueueNumberTaken(ConflictError):
    code = 'queue_number_taken'


class InvalidTransition(ConflictError):
    code = 'invalid_transition'

    def __init__(self, entity, current, target):
        super().__init__(f'{entity} cannot move from {current} to {target}')
        self.current = current
        self.target = target
