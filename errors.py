class ApiError(Exception):
    """Error rendered to the client as {error, message} with an HTTP status"""
    status_code = 500

    def __init__(self, error, message, status_code=None):
        super().__init__(message)
        self.error = error
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.error, 'message': self.message}


class ValidationError(ApiError):
    status_code = 400


class AuthenticationError(ApiError):
    status_code = 401
