class AuthError(Exception):
    pass


class DuplicateUser(AuthError):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User {username!r} already exists")


class InvalidCredentials(AuthError):
    pass


class LoginRequired(AuthError):
    pass
